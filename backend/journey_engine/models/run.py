from beanie import Document, Indexed
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from enum import Enum

from journey_engine.services.clock import utcnow


class RunStatus(str, Enum):
    ACTIVE = "active"
    WAITING_DELAY = "waiting_delay"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


CLAIMABLE_STATUSES = (RunStatus.ACTIVE, RunStatus.WAITING_DELAY)
LIVE_STATUSES = (RunStatus.ACTIVE, RunStatus.WAITING_DELAY, RunStatus.PROCESSING)
TERMINAL_STATUSES = (RunStatus.COMPLETED, RunStatus.CANCELLED, RunStatus.FAILED)


class RunHistoryEntry(BaseModel):
    node_id: Optional[str] = None
    node_type: Optional[str] = None
    entered_at: datetime = Field(default_factory=utcnow)
    outcome: str = Field(..., examples=["sent"])
    attempt: int = 0
    detail: Optional[dict] = None


def live_enrollment_key(journey_id: str, contact_id: str) -> str:
    return f"{journey_id}:{contact_id}"


def closed_enrollment_key(journey_id: str, contact_id: str, run_id: str) -> str:
    return f"{journey_id}:{contact_id}:{run_id}"


class JourneyRunModel(Document):
    """
    One contact's execution state against one journey.

    Only the claim fields (status, version) are ever updated by more than one
    party, always through a compare-and-swap on version. Runs are never
    deleted; they finish in a terminal status.
    """
    run_id: Indexed(str, unique=True)
    journey_id: Indexed(str)
    contact_id: Indexed(str)
    organization_id: Optional[str] = None
    current_node_id: Optional[str] = None
    status: RunStatus = RunStatus.ACTIVE
    scheduled_at: Optional[datetime] = None
    attempt_count: int = 0
    version: int = 0
    claimed_by: Optional[str] = None
    claimed_at: Optional[datetime] = None
    cancel_requested: bool = False
    source_run_id: Optional[str] = None
    error_message: Optional[str] = None
    history: List[RunHistoryEntry] = Field(default_factory=list)
    # "<journey>:<contact>" while live, suffixed with the run id once terminal.
    # The unique index keeps one live run per (journey, contact).
    enrollment_key: Indexed(str, unique=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    class Settings:
        name = "journey_runs"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class RunSummary(BaseModel):
    """Read model behind the "enrolled contacts" view."""
    run_id: str
    journey_id: str
    contact_id: str
    status: RunStatus
    current_node_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    attempt_count: int = 0
    last_outcome: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_run(cls, run: JourneyRunModel) -> "RunSummary":
        return cls(
            run_id=run.run_id,
            journey_id=run.journey_id,
            contact_id=run.contact_id,
            status=run.status,
            current_node_id=run.current_node_id,
            scheduled_at=run.scheduled_at,
            attempt_count=run.attempt_count,
            last_outcome=run.history[-1].outcome if run.history else None,
            error_message=run.error_message,
            created_at=run.created_at,
            updated_at=run.updated_at,
            completed_at=run.completed_at,
        )
