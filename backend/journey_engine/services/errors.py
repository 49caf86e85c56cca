"""Exception taxonomy for the journey engine."""
from typing import Optional


class JourneyEngineError(Exception):
    """Base class for every error raised by the engine."""


class JourneyValidationError(JourneyEngineError):
    """The journey graph breaks a structural rule and cannot be activated."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class JourneyStateError(JourneyEngineError):
    """Illegal status transition, or a structural edit of an active journey."""


class JourneyNotFound(JourneyEngineError):
    def __init__(self, journey_id: str):
        super().__init__(f"Journey {journey_id} not found")
        self.journey_id = journey_id


class RunNotFound(JourneyEngineError):
    def __init__(self, run_id: str):
        super().__init__(f"Run {run_id} not found")
        self.run_id = run_id


class EnrollmentError(JourneyEngineError):
    """A single contact could not be enrolled. Reported per contact, never fatal for a batch."""

    JOURNEY_NOT_FOUND = "journey_not_found"
    JOURNEY_NOT_ACTIVE = "journey_not_active"
    CONTACT_NOT_FOUND = "contact_not_found"
    ALREADY_ENROLLED = "already_enrolled"

    def __init__(self, reason: str, contact_id: Optional[str] = None):
        super().__init__(reason if contact_id is None else f"{contact_id}: {reason}")
        self.reason = reason
        self.contact_id = contact_id


class DispatchError(JourneyEngineError):
    """The channel sender could not deliver a message. Retryable."""

    def __init__(self, message: str, channel: Optional[str] = None):
        super().__init__(message)
        self.channel = channel


class ConcurrencyConflict(JourneyEngineError):
    """A compare-and-swap on a run kept losing to other writers."""

    def __init__(self, run_id: str):
        super().__init__(f"Run {run_id} is being updated concurrently, try again")
        self.run_id = run_id
