import logging
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field

from journey_engine.models.journey import JourneyModel
from journey_engine.services.collaborators import ContactDirectory
from journey_engine.services.errors import EnrollmentError
from journey_engine.services.run_repository import RunRepository

logger = logging.getLogger(__name__)


class SkippedContact(BaseModel):
    contact_id: str
    reason: str


class EnrollmentResult(BaseModel):
    created: List[str] = Field(default_factory=list)
    skipped: List[SkippedContact] = Field(default_factory=list)


class EnrollmentService:
    """
    Creates runs. Used by the API for operator enrollments and by the node
    executor when a run reaches a journey reference node.
    """

    def __init__(self, repository: Optional[RunRepository] = None, contacts: Optional[ContactDirectory] = None):
        self.repository = repository or RunRepository()
        self.contacts = contacts or ContactDirectory()

    async def enroll(self, journey_id: str, contact_ids: Iterable[str], source_run_id: Optional[str] = None) -> EnrollmentResult:
        result = EnrollmentResult()
        unique_ids = list(dict.fromkeys(str(c).strip() for c in contact_ids if c and str(c).strip()))

        journey = await JourneyModel.find_one({"journey_id": journey_id})
        batch_reason = None
        if not journey:
            batch_reason = EnrollmentError.JOURNEY_NOT_FOUND
        elif journey.status != "active":
            batch_reason = EnrollmentError.JOURNEY_NOT_ACTIVE

        if batch_reason:
            logger.warning(f"[ENROLL] Journey {journey_id} cannot take enrollments: {batch_reason}")
            result.skipped = [SkippedContact(contact_id=c, reason=batch_reason) for c in unique_ids]
            return result

        for contact_id in unique_ids:
            try:
                run = await self._enroll_one(journey, contact_id, source_run_id)
                result.created.append(run.run_id)
            except EnrollmentError as e:
                result.skipped.append(SkippedContact(contact_id=contact_id, reason=e.reason))

        logger.info(
            f"[ENROLL] Journey {journey_id}: {len(result.created)} enrolled, {len(result.skipped)} skipped"
            + (f" (chained from {source_run_id})" if source_run_id else "")
        )
        return result

    async def _enroll_one(self, journey: JourneyModel, contact_id: str, source_run_id: Optional[str]):
        if not await self.contacts.exists(contact_id):
            raise EnrollmentError(EnrollmentError.CONTACT_NOT_FOUND, contact_id)

        if await self.repository.find_live(journey.journey_id, contact_id):
            raise EnrollmentError(EnrollmentError.ALREADY_ENROLLED, contact_id)

        # The unique enrollment key still catches a concurrent enrollment that slipped past the check above.
        return await self.repository.create_run(journey, contact_id, source_run_id=source_run_id)
