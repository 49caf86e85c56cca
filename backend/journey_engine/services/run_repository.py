"""
Persistence for journey runs.

Every state change that can race goes through a compare-and-swap on the
run's version: the filter names the version the caller last saw, and the
update bumps it. A write that matches nothing lost the race and changes
nothing.
"""
import logging
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from journey_engine.models.journey import JourneyModel
from journey_engine.models.run import (
    CLAIMABLE_STATUSES,
    JourneyRunModel,
    RunHistoryEntry,
    RunStatus,
    RunSummary,
    closed_enrollment_key,
    live_enrollment_key,
)
from journey_engine.services.clock import utcnow
from journey_engine.services.errors import ConcurrencyConflict, EnrollmentError, RunNotFound

logger = logging.getLogger(__name__)

CANCEL_ATTEMPTS = 5


def _history_docs(entries: List[RunHistoryEntry]) -> List[dict]:
    return [entry.model_dump() for entry in entries]


class RunRepository:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    @staticmethod
    def _collection():
        return JourneyRunModel.get_pymongo_collection()

    async def create_run(self, journey: JourneyModel, contact_id: str, source_run_id: Optional[str] = None) -> JourneyRunModel:
        entry = journey.entry_node()
        now = self.clock()
        run = JourneyRunModel(
            run_id=f"run_{uuid.uuid4().hex[:16]}",
            journey_id=journey.journey_id,
            contact_id=contact_id,
            organization_id=journey.organization_id,
            current_node_id=entry.id if entry else None,
            status=RunStatus.ACTIVE,
            scheduled_at=now,
            source_run_id=source_run_id,
            enrollment_key=live_enrollment_key(journey.journey_id, contact_id),
            created_at=now,
            updated_at=now,
        )
        try:
            await run.insert()
        except DuplicateKeyError:
            raise EnrollmentError(EnrollmentError.ALREADY_ENROLLED, contact_id)
        return run

    async def get(self, run_id: str) -> JourneyRunModel:
        run = await JourneyRunModel.find_one({"run_id": run_id})
        if not run:
            raise RunNotFound(run_id)
        return run

    async def find_live(self, journey_id: str, contact_id: str) -> Optional[JourneyRunModel]:
        return await JourneyRunModel.find_one({"enrollment_key": live_enrollment_key(journey_id, contact_id)})

    async def get_runs(self, journey_id: str) -> List[RunSummary]:
        runs = await JourneyRunModel.find({"journey_id": journey_id}).sort("-created_at").to_list()
        return [RunSummary.from_run(run) for run in runs]

    async def find_due(self, journey_ids: List[str], now: datetime, limit: int) -> List[JourneyRunModel]:
        if not journey_ids:
            return []
        return await JourneyRunModel.find({
            "journey_id": {"$in": journey_ids},
            "status": {"$in": [s.value for s in CLAIMABLE_STATUSES]},
            "scheduled_at": {"$lte": now},
        }).sort("scheduled_at").limit(limit).to_list()

    async def claim(self, run: JourneyRunModel, worker_id: str) -> Optional[JourneyRunModel]:
        """
        Move a due run to processing, provided nobody touched it since `run` was read.
        Returns the claimed run, or None when the claim was lost.
        """
        now = self.clock()
        result = await self._collection().update_one(
            {
                "run_id": run.run_id,
                "version": run.version,
                "status": {"$in": [s.value for s in CLAIMABLE_STATUSES]},
                "scheduled_at": {"$lte": now},
            },
            {
                "$set": {
                    "status": RunStatus.PROCESSING.value,
                    "claimed_by": worker_id,
                    "claimed_at": now,
                    "updated_at": now,
                },
                "$inc": {"version": 1},
            },
        )
        if result.modified_count != 1:
            return None
        return await self.get(run.run_id)

    async def commit(self, run: JourneyRunModel, changes: Dict, entries: List[RunHistoryEntry], terminal: bool = False) -> bool:
        """
        Write a worker's result and release its claim in one step.
        Refused when the claim is gone (stale sweep) or a cancel was requested meanwhile.
        """
        now = self.clock()
        fields = dict(changes)
        fields.update({"claimed_by": None, "claimed_at": None, "updated_at": now})
        if terminal:
            fields["enrollment_key"] = closed_enrollment_key(run.journey_id, run.contact_id, run.run_id)
            fields["completed_at"] = now

        update = {"$set": fields, "$inc": {"version": 1}}
        if entries:
            update["$push"] = {"history": {"$each": _history_docs(entries)}}

        result = await self._collection().update_one(
            {
                "run_id": run.run_id,
                "version": run.version,
                "status": RunStatus.PROCESSING.value,
                "cancel_requested": False,
            },
            update,
        )
        return result.modified_count == 1

    async def finalize_cancelled(self, run: JourneyRunModel, entries: Optional[List[RunHistoryEntry]] = None,
                                 reason: str = "cancel requested") -> bool:
        """Terminate a run as cancelled, recording whatever the interrupted step already did."""
        now = self.clock()
        closing = RunHistoryEntry(node_id=run.current_node_id, entered_at=now, outcome=RunStatus.CANCELLED.value,
                                  detail={"reason": reason})
        result = await self._collection().update_one(
            {"run_id": run.run_id, "version": run.version},
            {
                "$set": {
                    "status": RunStatus.CANCELLED.value,
                    "scheduled_at": None,
                    "claimed_by": None,
                    "claimed_at": None,
                    "cancel_requested": False,
                    "enrollment_key": closed_enrollment_key(run.journey_id, run.contact_id, run.run_id),
                    "completed_at": now,
                    "updated_at": now,
                },
                "$push": {"history": {"$each": _history_docs(list(entries or []) + [closing])}},
                "$inc": {"version": 1},
            },
        )
        return result.modified_count == 1

    async def cancel_run(self, run_id: str, reason: str = "cancelled by operator") -> JourneyRunModel:
        """
        Cancel a run. Idle runs are cancelled on the spot; a run a worker holds
        gets a cancel request that the worker honours instead of committing.
        Already terminal runs are returned unchanged.
        """
        for _ in range(CANCEL_ATTEMPTS):
            run = await self.get(run_id)
            if run.is_terminal:
                return run

            if run.status == RunStatus.PROCESSING:
                if run.cancel_requested:
                    return run
                result = await self._collection().update_one(
                    {"run_id": run_id, "version": run.version, "status": RunStatus.PROCESSING.value},
                    {"$set": {"cancel_requested": True}},
                )
                if result.modified_count == 1:
                    logger.info(f"[RUN] Cancel requested for in-flight run {run_id}")
                    return await self.get(run_id)
            elif await self.finalize_cancelled(run, reason=reason):
                logger.info(f"[RUN] Run {run_id} cancelled: {reason}")
                return await self.get(run_id)

        raise ConcurrencyConflict(run_id)

    async def sweep_stale_claims(self, cutoff: datetime) -> int:
        """Return runs whose claim is older than `cutoff` to the due queue. Returns how many were reclaimed."""
        stale = await JourneyRunModel.find({
            "status": RunStatus.PROCESSING.value,
            "claimed_at": {"$lt": cutoff},
        }).to_list()

        reclaimed = 0
        for run in stale:
            if run.cancel_requested:
                if await self.finalize_cancelled(run, reason="cancel requested while worker was lost"):
                    logger.info(f"[RUN] Stale run {run.run_id} had a pending cancel, cancelled")
                continue

            now = self.clock()
            result = await self._collection().update_one(
                {"run_id": run.run_id, "version": run.version, "status": RunStatus.PROCESSING.value},
                {
                    "$set": {
                        "status": RunStatus.ACTIVE.value,
                        "scheduled_at": now,
                        "claimed_by": None,
                        "claimed_at": None,
                        "updated_at": now,
                    },
                    "$inc": {"version": 1},
                },
            )
            if result.modified_count == 1:
                reclaimed += 1
                logger.warning(
                    f"[RUN] Reclaimed stale run {run.run_id} from {run.claimed_by} "
                    f"(claimed at {run.claimed_at}, node {run.current_node_id})"
                )
        return reclaimed
