"""
The scheduler tick: find due runs, claim them, execute their current node,
and commit the transition.

A tick may run in several processes at once (Celery workers, the in-process
loop of the API). Nothing here holds a lock; a run belongs to whoever wins
the claim compare-and-swap, and a commit only lands while that claim holds.
"""
import asyncio
import logging
import os
import socket
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from journey_engine.config import (
    MAX_STEPS_PER_CLAIM,
    STALE_CLAIM_TIMEOUT_SECONDS,
    TICK_BATCH_SIZE,
    TICK_INTERVAL_SECONDS,
    WORKER_POOL_SIZE,
)
from journey_engine.models.journey import JourneyModel
from journey_engine.models.run import JourneyRunModel, RunHistoryEntry, RunStatus
from journey_engine.services.clock import utcnow
from journey_engine.services.enrollment import EnrollmentService
from journey_engine.services.node_executor import NodeExecutor, NodeResult
from journey_engine.services.run_repository import RunRepository

logger = logging.getLogger(__name__)


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:6]}"


@dataclass
class TickReport:
    claimed: int = 0
    conflicts: int = 0
    advanced: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    reclaimed: int = 0


class JourneyTicker:
    def __init__(
        self,
        repository: Optional[RunRepository] = None,
        executor: Optional[NodeExecutor] = None,
        clock: Callable[[], datetime] = utcnow,
        worker_id: Optional[str] = None,
        pool_size: int = WORKER_POOL_SIZE,
        batch_size: int = TICK_BATCH_SIZE,
        stale_timeout_seconds: int = STALE_CLAIM_TIMEOUT_SECONDS,
        max_steps: int = MAX_STEPS_PER_CLAIM,
        interval_seconds: float = TICK_INTERVAL_SECONDS,
    ):
        self.clock = clock
        self.repository = repository or RunRepository(clock=clock)
        self.executor = executor or NodeExecutor(
            clock=clock,
            enrollment=EnrollmentService(repository=self.repository),
        )
        self.worker_id = worker_id or default_worker_id()
        self.pool_size = pool_size
        self.batch_size = batch_size
        self.stale_timeout_seconds = stale_timeout_seconds
        self.max_steps = max_steps
        self.interval_seconds = interval_seconds
        self.running = False
        self.task = None

    def _log_run(self, run: JourneyRunModel, message: str, level: str = "info", **kwargs):
        """Structured logging for run execution"""
        log_data = {
            "worker_id": self.worker_id,
            "journey_id": run.journey_id,
            "run_id": run.run_id,
            "contact_id": run.contact_id,
            "message": message,
            **kwargs
        }
        getattr(logger, level)(f"[RUN] {log_data}")

    async def tick(self) -> TickReport:
        report = TickReport()
        now = self.clock()

        report.reclaimed = await self.repository.sweep_stale_claims(now - timedelta(seconds=self.stale_timeout_seconds))

        journeys = await JourneyModel.find({"status": "active"}).to_list()
        by_id = {journey.journey_id: journey for journey in journeys}
        due = await self.repository.find_due(list(by_id), now, self.batch_size)
        if not due:
            logger.debug(f"[TICK] {self.worker_id}: nothing due")
            return report

        semaphore = asyncio.Semaphore(self.pool_size)

        async def work(run: JourneyRunModel):
            async with semaphore:
                await self.process_run(run, by_id[run.journey_id], report)

        results = await asyncio.gather(*(work(run) for run in due), return_exceptions=True)
        for run, result in zip(due, results):
            if isinstance(result, Exception):
                # The claim (if any) is left to expire and the stale sweep returns the run.
                self._log_run(run, f"Unhandled error while processing: {result}", level="error", error_type=type(result).__name__)

        logger.info(f"[TICK] {self.worker_id}: {len(due)} due, {asdict(report)}")
        return report

    async def process_run(self, run: JourneyRunModel, journey: JourneyModel, report: TickReport) -> None:
        """Claim one run and walk it forward until it waits, ends, or hits the step limit."""
        previous_status = run.status
        claimed = await self.repository.claim(run, self.worker_id)
        if not claimed:
            report.conflicts += 1
            logger.debug(f"[RUN] {run.run_id} claimed elsewhere, skipping")
            return
        report.claimed += 1
        run = claimed

        current = await JourneyModel.find_one({"journey_id": journey.journey_id})
        if not current or current.status != "active":
            # Deactivated after the tick started: hand the run back untouched.
            await self.repository.commit(run, {"status": previous_status.value}, [])
            self._log_run(run, "Journey no longer active, run released", level="warning")
            return
        journey = current

        for step in range(self.max_steps):
            result = await self._execute(run, journey)
            changes, entries = self._transition(run, journey, result)

            if not await self.repository.commit(run, changes, entries, terminal=result.terminal):
                await self._commit_refused(run, entries, report)
                return

            report.advanced += 1
            if result.terminal:
                if result.terminal_status == RunStatus.FAILED:
                    report.failed += 1
                else:
                    report.completed += 1
                self._log_run(run, f"Run {result.terminal_status.value}", node_id=run.current_node_id, outcome=result.outcome)
                return

            if changes["status"] != RunStatus.ACTIVE.value:
                self._log_run(run, "Run waiting", next_node=changes.get("current_node_id", run.current_node_id),
                              scheduled_at=str(changes["scheduled_at"]), retry=result.retry)
                return

            # Zero-delay step: keep going while we can claim it again.
            refreshed = await self.repository.get(run.run_id)
            run = await self.repository.claim(refreshed, self.worker_id)
            if not run:
                return

        # Step limit reached; the run is active and due, the next tick picks it up.
        await self.repository.commit(run, {"status": RunStatus.ACTIVE.value}, [])
        self._log_run(run, f"Step limit of {self.max_steps} reached, continuing next tick", level="warning")

    async def _execute(self, run: JourneyRunModel, journey: JourneyModel) -> NodeResult:
        node = journey.node_by_id(run.current_node_id)
        if node is None:
            return NodeResult(
                outcome="error",
                terminal=True,
                terminal_status=RunStatus.FAILED,
                detail={"error": f"Node {run.current_node_id} not found in journey {journey.journey_id}"},
            )
        try:
            return await self.executor.execute(run, node, journey)
        except Exception as e:
            self._log_run(run, f"Node execution failed: {e}", level="error", node_id=node.id, node_type=node.type)
            return NodeResult(
                outcome="error",
                terminal=True,
                terminal_status=RunStatus.FAILED,
                detail={"error": str(e), "error_type": type(e).__name__},
            )

    def _transition(self, run: JourneyRunModel, journey: JourneyModel, result: NodeResult) -> Tuple[dict, List[RunHistoryEntry]]:
        now = self.clock()
        node = journey.node_by_id(run.current_node_id)
        node_type = node.type if node else None
        entries = [RunHistoryEntry(
            node_id=run.current_node_id,
            node_type=node_type,
            entered_at=now,
            outcome=result.outcome,
            attempt=run.attempt_count + 1,
            detail=result.detail,
        )]

        if result.terminal:
            changes = {"status": result.terminal_status.value, "scheduled_at": None}
            if result.terminal_status == RunStatus.FAILED:
                changes["error_message"] = (result.detail or {}).get("error") or result.outcome
            if result.outcome == "dispatch_error":
                changes["attempt_count"] = run.attempt_count + 1
            entries.append(RunHistoryEntry(
                node_id=run.current_node_id,
                node_type=node_type,
                entered_at=now,
                outcome=result.terminal_status.value,
            ))
            return changes, entries

        if result.retry:
            return {
                "status": RunStatus.WAITING_DELAY.value,
                "scheduled_at": now + result.next_delay,
                "attempt_count": run.attempt_count + 1,
            }, entries

        return {
            "current_node_id": result.next_node_id,
            "status": (RunStatus.ACTIVE if result.next_delay <= timedelta(0) else RunStatus.WAITING_DELAY).value,
            "scheduled_at": now + result.next_delay,
            "attempt_count": 0,
        }, entries

    async def _commit_refused(self, run: JourneyRunModel, entries: List[RunHistoryEntry], report: TickReport) -> None:
        latest = await self.repository.get(run.run_id)
        if latest.cancel_requested and latest.version == run.version and latest.status == RunStatus.PROCESSING:
            if await self.repository.finalize_cancelled(latest, entries=entries):
                report.cancelled += 1
                self._log_run(run, "Cancel requested during execution, run cancelled", node_id=run.current_node_id)
                return
        report.conflicts += 1
        self._log_run(run, "Claim lost before commit, result discarded", level="warning",
                      status=latest.status.value, version=latest.version)

    async def start(self):
        """Run ticks on a fixed interval inside the current event loop"""
        if self.running:
            logger.warning("Journey ticker is already running")
            return
        self.running = True
        self.task = asyncio.create_task(self._run_loop())
        logger.info(f"=== JOURNEY TICKER STARTED ({self.worker_id}, every {self.interval_seconds}s) ===")

    async def stop(self):
        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None
        logger.info("=== JOURNEY TICKER STOPPED ===")

    async def _run_loop(self):
        while self.running:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"[TICK] Tick failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)
