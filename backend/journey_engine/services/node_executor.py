import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from journey_engine.config import DISPATCH_BACKOFF_SECONDS, MAX_DISPATCH_ATTEMPTS
from journey_engine.models.journey import JourneyModel
from journey_engine.models.run import JourneyRunModel, RunStatus
from journey_engine.services.clock import utcnow
from journey_engine.services.collaborators import ContactDirectory, DonationRepository
from journey_engine.services.condition_evaluator import evaluate
from journey_engine.services.durations import parse_delay
from journey_engine.services.enrollment import EnrollmentService
from journey_engine.services.errors import DispatchError
from journey_engine.services.senders import ChannelSender, LoggingChannelSender, render_message
from journey_engine.services.tokens import opt_out_url

logger = logging.getLogger(__name__)


@dataclass
class NodeResult:
    """
    What executing one node means for the run.

    - next_node_id / next_delay: where the run goes and when it is due again
    - terminal: the run ends here with terminal_status
    - retry: stay on the same node (next_node_id is the node itself) and count an attempt
    - outcome / detail: what gets written to the run history
    """
    outcome: str
    next_node_id: Optional[str] = None
    next_delay: timedelta = timedelta(0)
    terminal: bool = False
    terminal_status: RunStatus = RunStatus.COMPLETED
    retry: bool = False
    detail: Optional[dict] = None


class NodeExecutor:
    def __init__(
        self,
        sender: Optional[ChannelSender] = None,
        donations: Optional[DonationRepository] = None,
        contacts: Optional[ContactDirectory] = None,
        enrollment: Optional[EnrollmentService] = None,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int = MAX_DISPATCH_ATTEMPTS,
        backoff_seconds: int = DISPATCH_BACKOFF_SECONDS,
    ):
        self.sender = sender or LoggingChannelSender()
        self.donations = donations or DonationRepository()
        self.contacts = contacts or ContactDirectory()
        self.enrollment = enrollment or EnrollmentService(contacts=self.contacts)
        self.clock = clock
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._handlers = {
            "entry": self._execute_entry,
            "message": self._execute_message,
            "condition": self._execute_condition,
            "journey_ref": self._execute_journey_ref,
        }

    async def execute(self, run: JourneyRunModel, node, journey: JourneyModel) -> NodeResult:
        handler = self._handlers.get(node.type)
        if handler is None:
            raise ValueError(f"Unknown node type: {node.type}")
        return await handler(run, node, journey)

    def _follow(self, journey: JourneyModel, node, outcome: str, branch: Optional[str] = None,
                node_delay: timedelta = timedelta(0), detail: Optional[dict] = None) -> NodeResult:
        edge = journey.edge_for(node.id, branch)
        if edge is None:
            # End of the sequence on this path.
            return NodeResult(outcome=outcome, terminal=True, detail=detail)
        return NodeResult(
            outcome=outcome,
            next_node_id=edge.target,
            next_delay=node_delay + parse_delay(edge.delay),
            detail=detail,
        )

    async def _execute_entry(self, run: JourneyRunModel, node, journey: JourneyModel) -> NodeResult:
        return self._follow(journey, node, outcome="advanced")

    async def _execute_message(self, run: JourneyRunModel, node, journey: JourneyModel) -> NodeResult:
        try:
            contact = await self.contacts.get_contact(run.contact_id)
            if contact is None:
                raise DispatchError(f"Contact {run.contact_id} not found", channel=node.channel)
            message = render_message(node, {
                "contact": contact,
                "journey": {"id": journey.journey_id, "name": journey.name},
                "run_id": run.run_id,
                "opt_out_url": opt_out_url(run.run_id, run.contact_id),
            })
            await self.sender.send(node.channel, run.contact_id, message)
        except Exception as e:
            return self._dispatch_failure(run, node, e)

        logger.info(f"[DISPATCH] {node.channel} sent to {run.contact_id} for run {run.run_id} (node {node.id})")
        return self._follow(
            journey,
            node,
            outcome="sent",
            node_delay=parse_delay(node.delay),
            detail={"channel": node.channel},
        )

    def _dispatch_failure(self, run: JourneyRunModel, node, error: Exception) -> NodeResult:
        attempts = run.attempt_count + 1
        detail = {"channel": node.channel, "error": str(error), "error_type": type(error).__name__, "attempt": attempts}

        if attempts < self.max_attempts:
            backoff = timedelta(seconds=self.backoff_seconds * 2 ** (attempts - 1))
            logger.warning(
                f"[DISPATCH] {node.channel} to {run.contact_id} failed (attempt {attempts}/{self.max_attempts}), "
                f"retrying in {backoff}: {error}"
            )
            return NodeResult(outcome="dispatch_error", next_node_id=node.id, next_delay=backoff, retry=True, detail=detail)

        logger.error(f"[DISPATCH] {node.channel} to {run.contact_id} failed after {attempts} attempts, run {run.run_id} failed: {error}")
        return NodeResult(outcome="dispatch_error", terminal=True, terminal_status=RunStatus.FAILED, detail=detail)

    async def _execute_condition(self, run: JourneyRunModel, node, journey: JourneyModel) -> NodeResult:
        aggregates = await self.donations.get_donation_aggregates(run.contact_id)
        met = evaluate(node.predicate, node.value, aggregates, now=self.clock())
        branch = "true" if met else "false"
        return self._follow(
            journey,
            node,
            outcome=branch,
            branch=branch,
            detail={
                "predicate": node.predicate,
                "value": node.value,
                "has_donated": aggregates.has_donated,
                "total_amount": aggregates.total_amount,
                "last_donation_date": aggregates.last_donation_date.isoformat() if aggregates.last_donation_date else None,
            },
        )

    async def _execute_journey_ref(self, run: JourneyRunModel, node, journey: JourneyModel) -> NodeResult:
        result = await self.enrollment.enroll(node.target_journey_id, [run.contact_id], source_run_id=run.run_id)
        # Chaining hands the contact over; the current run ends either way.
        return NodeResult(
            outcome="chained",
            terminal=True,
            detail={
                "target_journey_id": node.target_journey_id,
                "created": result.created,
                "skipped": [s.model_dump() for s in result.skipped],
            },
        )
