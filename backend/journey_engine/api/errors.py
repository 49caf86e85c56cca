import logging

from fastapi import HTTPException
from pydantic import ValidationError

from journey_engine.services.errors import (
    ConcurrencyConflict,
    JourneyNotFound,
    JourneyStateError,
    JourneyValidationError,
    RunNotFound,
)

logger = logging.getLogger(__name__)


def http_error(e: Exception, action: str) -> HTTPException:
    """Map an engine exception to the HTTP error the API returns for it."""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, (JourneyNotFound, RunNotFound)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (JourneyValidationError, ValidationError, ValueError)):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, (JourneyStateError, ConcurrencyConflict)):
        return HTTPException(status_code=409, detail=str(e))
    logger.error(f"Error {action}: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Error {action}: {str(e)}")
