from fastapi import APIRouter, Query
from fastapi.responses import HTMLResponse
from pydantic import BaseModel
from typing import Optional
import logging

from journey_engine.api.errors import http_error
from journey_engine.api.journeys import run_repository
from journey_engine.models.run import RunSummary
from journey_engine.services.errors import RunNotFound
from journey_engine.services.tokens import InvalidToken, read_opt_out_token

logger = logging.getLogger(__name__)
router = APIRouter()

OPT_OUT_PAGE = """<!DOCTYPE html>
<html>
<head><title>{title}</title></head>
<body style="font-family: Arial, sans-serif; text-align: center; padding: 50px;">
<h2>{title}</h2>
<p>{message}</p>
</body>
</html>"""


class CancelRequest(BaseModel):
    reason: Optional[str] = None


@router.post("/runs/{run_id}/cancel", response_model=RunSummary)
async def cancel_run(run_id: str, request: Optional[CancelRequest] = None):
    """
    Cancel a run. A run that is being executed right now is cancelled by its
    worker as soon as the current step finishes; the response then still
    shows it as processing.
    """
    try:
        reason = (request.reason if request else None) or "cancelled by operator"
        run = await run_repository.cancel_run(run_id, reason=reason)
        return RunSummary.from_run(run)
    except Exception as e:
        raise http_error(e, f"cancelling run {run_id}")


@router.get("/runs/opt-out", response_class=HTMLResponse)
async def opt_out(token: str = Query(..., description="Signed opt-out token")):
    try:
        data = read_opt_out_token(token)
    except InvalidToken as e:
        return HTMLResponse(OPT_OUT_PAGE.format(title="Link not valid", message=str(e)), status_code=400)

    run_id = data["run_id"]
    try:
        await run_repository.cancel_run(run_id, reason="contact opted out")
        logger.info(f"[OPT_OUT] Contact {data.get('contact_id')} opted out of run {run_id}")
    except RunNotFound:
        logger.warning(f"[OPT_OUT] Opt-out for unknown run {run_id}")
    except Exception as e:
        raise http_error(e, f"processing opt-out for {run_id}")

    return HTMLResponse(OPT_OUT_PAGE.format(
        title="You have been unsubscribed",
        message="You will not receive further messages from this journey.",
    ))
