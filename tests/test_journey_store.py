import pytest

from builders import condition, edge, email, entry, journey_ref, sms
from journey_engine.models.run import JourneyRunModel
from journey_engine.services.errors import JourneyNotFound, JourneyStateError, JourneyValidationError

pytestmark = pytest.mark.usefixtures("db")


def welcome_series():
    nodes = [entry(), email("welcome"), condition("gave", "has_donated"), sms("thanks"), email("ask")]
    edges = [
        edge("entry", "welcome"),
        edge("welcome", "gave", delay="2d"),
        edge("gave", "thanks", branch="true"),
        edge("gave", "ask", branch="false"),
    ]
    return nodes, edges


async def test_create_starts_as_draft(store):
    nodes, edges = welcome_series()
    journey = await store.create(name="Welcome", organization_id="org-1", nodes=nodes, edges=edges)

    assert journey.status == "draft"
    assert journey.journey_id.startswith("journey_")
    assert [n.type for n in journey.nodes] == ["entry", "message", "condition", "message", "message"]
    assert (await store.get(journey.journey_id)).name == "Welcome"


async def test_get_unknown_journey(store):
    with pytest.raises(JourneyNotFound):
        await store.get("journey_missing")


async def test_list_filters_by_organization_and_status(store, make_journey):
    nodes, edges = welcome_series()
    active = await make_journey(nodes, edges, name="Active")
    await make_journey(nodes, edges, name="Draft", activate=False)
    await store.create(name="Elsewhere", organization_id="org-2")

    assert {j.name for j in await store.list_journeys(organization_id="org-1")} == {"Active", "Draft"}
    assert [j.journey_id for j in await store.list_journeys(status="active")] == [active.journey_id]
    assert len(await store.list_journeys(status="all")) == 3


async def test_activate_valid_journey(store, make_journey, clock):
    nodes, edges = welcome_series()
    journey = await make_journey(nodes, edges)

    assert journey.status == "active"
    assert journey.activated_at == clock.now
    # Activating twice is a no-op.
    assert (await store.activate(journey.journey_id)).status == "active"


@pytest.mark.parametrize("nodes, edges, message", [
    ([], [], "no nodes"),
    ([email("a")], [], "exactly one entry"),
    ([entry(), entry("entry-2"), email("a")], [edge("entry", "a"), edge("entry-2", "a")], "exactly one entry"),
    ([entry(), email("a"), email("a")], [edge("entry", "a")], "Duplicate node id"),
    ([entry(), email("a")], [edge("entry", "a"), edge("a", "ghost")], "unknown node"),
    ([entry(), email("a")], [edge("entry", "a", delay="soon")], "Invalid delay"),
    ([entry(), email("a")], [edge("entry", "a"), edge("a", "entry")], "incoming edges"),
    ([entry()], [], "exactly one outgoing edge"),
    ([entry(), email("a"), sms("b"), sms("c")], [edge("entry", "a"), edge("a", "b"), edge("a", "c")], "at most one outgoing"),
    ([entry(), email("a", subject="")], [edge("entry", "a")], "missing a subject"),
    ([entry(), sms("a", body=" ")], [edge("entry", "a")], "missing a body"),
    ([entry(), email("a", delay="1 fortnight")], [edge("entry", "a")], "Invalid delay"),
    ([entry(), condition("c"), sms("t")], [edge("entry", "c"), edge("c", "t", branch="true")], "exactly one 'true' and one 'false'"),
    ([entry(), condition("c"), sms("t"), sms("f")],
     [edge("entry", "c"), edge("c", "t", branch="true"), edge("c", "f", branch="true")], "exactly one 'true' and one 'false'"),
    ([entry(), condition("c", "donation_amount_gt", "lots"), sms("t"), sms("f")],
     [edge("entry", "c"), edge("c", "t", branch="true"), edge("c", "f", branch="false")], "numeric value"),
    ([entry(), sms("a"), sms("b")], [edge("entry", "a"), edge("a", "b", branch="true")], "Only condition nodes"),
    ([entry(), journey_ref("r", "journey_other"), sms("a")], [edge("entry", "r"), edge("r", "a")], "cannot have outgoing"),
    ([entry(), sms("a"), sms("b")], [edge("entry", "a"), edge("a", "b"), edge("b", "a")], "Loop detected"),
    ([entry(), sms("a"), sms("island")], [edge("entry", "a")], "not reachable"),
])
async def test_activate_rejects_invalid_graphs(store, nodes, edges, message):
    journey = await store.create(name="Broken", organization_id="org-1", nodes=nodes, edges=edges)

    with pytest.raises(JourneyValidationError) as excinfo:
        await store.activate(journey.journey_id)

    assert message in excinfo.value.reason
    assert (await store.get(journey.journey_id)).status == "draft"


async def test_journey_ref_must_not_target_itself(store):
    journey = await store.create(name="Self", organization_id="org-1")
    await store.update(journey.journey_id, nodes=[entry(), journey_ref("r", journey.journey_id)], edges=[edge("entry", "r")])

    with pytest.raises(JourneyValidationError, match="its own journey"):
        await store.activate(journey.journey_id)


async def test_journey_ref_target_must_exist(store):
    journey = await store.create(name="Chained", organization_id="org-1",
                                 nodes=[entry(), journey_ref("r", "journey_gone")], edges=[edge("entry", "r")])

    with pytest.raises(JourneyValidationError, match="unknown journey"):
        await store.activate(journey.journey_id)


async def test_active_journey_structure_is_locked(store, make_journey):
    nodes, edges = welcome_series()
    journey = await make_journey(nodes, edges)

    with pytest.raises(JourneyStateError):
        await store.update(journey.journey_id, nodes=[entry(), sms("only")], edges=[edge("entry", "only")])

    renamed = await store.update(journey.journey_id, name="Welcome v2")
    assert renamed.name == "Welcome v2"


async def test_deactivate_and_edit_then_reactivate(store, make_journey):
    nodes, edges = welcome_series()
    journey = await make_journey(nodes, edges)

    journey = await store.deactivate(journey.journey_id)
    assert journey.status == "inactive"
    assert (await store.deactivate(journey.journey_id)).status == "inactive"

    await store.update(journey.journey_id, nodes=[entry(), sms("only")], edges=[edge("entry", "only")])
    assert (await store.activate(journey.journey_id)).status == "active"


async def test_deactivate_draft_is_a_state_error(store):
    journey = await store.create(name="Draft", organization_id="org-1")
    with pytest.raises(JourneyStateError):
        await store.deactivate(journey.journey_id)


async def test_reactivation_refused_while_runs_are_parked_on_removed_nodes(store, make_journey, enrollment, add_contact):
    nodes, edges = welcome_series()
    journey = await make_journey(nodes, edges)
    await add_contact("c-1")
    result = await enrollment.enroll(journey.journey_id, ["c-1"])
    run = await JourneyRunModel.find_one({"run_id": result.created[0]})
    assert run.current_node_id == "entry"

    await store.deactivate(journey.journey_id)
    await store.update(journey.journey_id, nodes=[entry("start"), sms("only")], edges=[edge("start", "only")])

    with pytest.raises(JourneyValidationError, match="no longer exist"):
        await store.activate(journey.journey_id)
