import uuid
from datetime import datetime

import pytest
from beanie import init_beanie

from fakes import MockDatabase, MutableClock, RecordingSender
from journey_engine.db.init import DOCUMENT_MODELS
from journey_engine.models.crm import ContactModel, DonationModel
from journey_engine.services.enrollment import EnrollmentService
from journey_engine.services.journey_store import JourneyStore
from journey_engine.services.node_executor import NodeExecutor
from journey_engine.services.run_repository import RunRepository
from journey_engine.services.ticker import JourneyTicker


@pytest.fixture
async def db():
    database = MockDatabase(f"journey_engine_test_{uuid.uuid4().hex[:8]}")
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    yield database


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def store(db, clock):
    return JourneyStore(clock=clock)


@pytest.fixture
def repository(db, clock):
    return RunRepository(clock=clock)


@pytest.fixture
def enrollment(repository):
    return EnrollmentService(repository=repository)


@pytest.fixture
def executor(sender, enrollment, clock):
    return NodeExecutor(sender=sender, enrollment=enrollment, clock=clock, max_attempts=3, backoff_seconds=300)


@pytest.fixture
def ticker(repository, executor, clock):
    return JourneyTicker(repository=repository, executor=executor, clock=clock, worker_id="worker-test")


@pytest.fixture
def add_contact(db):
    async def _add(contact_id: str, **fields) -> ContactModel:
        contact = ContactModel(id=contact_id, organization_id="org-1", **fields)
        await contact.insert()
        return contact
    return _add


@pytest.fixture
def add_donation(db):
    async def _add(donor_id: str, amount: float, donation_date: datetime, status: str = "completed") -> DonationModel:
        donation = DonationModel(donor=donor_id, organization_id="org-1", amount=amount,
                                 donation_date=donation_date, status=status)
        await donation.insert()
        return donation
    return _add


@pytest.fixture
def make_journey(store):
    async def _make(nodes, edges, name="Test journey", activate=True):
        journey = await store.create(name=name, organization_id="org-1", nodes=nodes, edges=edges)
        if activate:
            journey = await store.activate(journey.journey_id)
        return journey
    return _make
