from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field
from typing import List, Optional
import logging

from journey_engine.api.errors import http_error
from journey_engine.models.journey import Edge, JourneyModel, JourneyNode
from journey_engine.models.run import RunSummary
from journey_engine.services.contact_import import parse_contact_file
from journey_engine.services.enrollment import EnrollmentResult, EnrollmentService
from journey_engine.services.journey_store import JourneyStore
from journey_engine.services.run_repository import RunRepository

logger = logging.getLogger(__name__)
router = APIRouter()

journey_store = JourneyStore()
run_repository = RunRepository()
enrollment_service = EnrollmentService(repository=run_repository)


class JourneyRequest(BaseModel):
    name: str
    organization_id: str
    description: str = ""
    nodes: List[JourneyNode] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    created_by: Optional[str] = None


class JourneyUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    nodes: Optional[List[JourneyNode]] = None
    edges: Optional[List[Edge]] = None


class ContactFile(BaseModel):
    name: Optional[str] = None
    content: str


class EnrollRequest(BaseModel):
    contacts: List[str] = Field(default_factory=list)
    contact_file: Optional[ContactFile] = None


class JourneyResponse(BaseModel):
    message: str
    journey: dict


def _journey_data(journey: JourneyModel) -> dict:
    return journey.model_dump(mode="json", exclude={"id", "revision_id"})


def _dump(items: Optional[list]) -> Optional[list]:
    if items is None:
        return None
    return [item.model_dump() for item in items]


@router.post("/journeys", response_model=JourneyResponse, status_code=201)
async def create_journey(request: JourneyRequest):
    try:
        journey = await journey_store.create(
            name=request.name,
            organization_id=request.organization_id,
            description=request.description,
            nodes=_dump(request.nodes),
            edges=_dump(request.edges),
            created_by=request.created_by,
        )
        return JourneyResponse(message="Journey created", journey=_journey_data(journey))
    except Exception as e:
        raise http_error(e, "creating journey")


@router.get("/journeys")
async def list_journeys(
    organization_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None, description="draft, active, inactive or all"),
):
    try:
        journeys = await journey_store.list_journeys(organization_id=organization_id, status=status)
        return {"journeys": [_journey_data(j) for j in journeys], "count": len(journeys)}
    except Exception as e:
        raise http_error(e, "listing journeys")


@router.get("/journeys/{journey_id}")
async def get_journey(journey_id: str):
    try:
        return _journey_data(await journey_store.get(journey_id))
    except Exception as e:
        raise http_error(e, f"loading journey {journey_id}")


@router.put("/journeys/{journey_id}", response_model=JourneyResponse)
async def update_journey(journey_id: str, request: JourneyUpdateRequest):
    try:
        journey = await journey_store.update(
            journey_id,
            name=request.name,
            description=request.description,
            nodes=_dump(request.nodes),
            edges=_dump(request.edges),
        )
        return JourneyResponse(message="Journey updated", journey=_journey_data(journey))
    except Exception as e:
        raise http_error(e, f"updating journey {journey_id}")


@router.post("/journeys/{journey_id}/activate", response_model=JourneyResponse)
async def activate_journey(journey_id: str):
    try:
        journey = await journey_store.activate(journey_id)
        return JourneyResponse(message="Journey activated", journey=_journey_data(journey))
    except Exception as e:
        raise http_error(e, f"activating journey {journey_id}")


@router.post("/journeys/{journey_id}/deactivate", response_model=JourneyResponse)
async def deactivate_journey(journey_id: str):
    try:
        journey = await journey_store.deactivate(journey_id)
        return JourneyResponse(message="Journey deactivated", journey=_journey_data(journey))
    except Exception as e:
        raise http_error(e, f"deactivating journey {journey_id}")


@router.post("/journeys/{journey_id}/enroll", response_model=EnrollmentResult)
async def enroll_contacts(journey_id: str, request: EnrollRequest):
    """
    Enroll contacts by id and/or from a CSV contact file with a contact_id column.
    Contacts that cannot be enrolled are reported under `skipped` with a reason.
    """
    try:
        contact_ids = list(request.contacts)
        if request.contact_file:
            contact_ids.extend(parse_contact_file(request.contact_file.content))
        if not contact_ids:
            raise HTTPException(status_code=422, detail="No contacts given")

        logger.info(f"[ENROLL] Enrollment request for journey {journey_id}: {len(contact_ids)} contacts")
        return await enrollment_service.enroll(journey_id, contact_ids)
    except Exception as e:
        raise http_error(e, f"enrolling contacts into {journey_id}")


@router.get("/journeys/{journey_id}/runs", response_model=List[RunSummary])
async def get_journey_runs(journey_id: str, status: Optional[str] = Query(None)):
    try:
        await journey_store.get(journey_id)
        runs = await run_repository.get_runs(journey_id)
        if status:
            runs = [run for run in runs if run.status.value == status]
        return runs
    except Exception as e:
        raise http_error(e, f"loading runs of {journey_id}")
