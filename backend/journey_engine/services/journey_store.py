import logging
import uuid
from collections import defaultdict
from typing import Callable, List, Optional

from pydantic import TypeAdapter

from journey_engine.models.journey import Edge, JourneyModel, JourneyNode
from journey_engine.models.run import JourneyRunModel, LIVE_STATUSES
from journey_engine.services.clock import utcnow
from journey_engine.services.condition_evaluator import coerce_value
from journey_engine.services.durations import parse_delay
from journey_engine.services.errors import JourneyNotFound, JourneyStateError, JourneyValidationError

logger = logging.getLogger(__name__)

_nodes_adapter = TypeAdapter(List[JourneyNode])
_edges_adapter = TypeAdapter(List[Edge])


def _edge_label(edge: Edge) -> str:
    return edge.id or f"{edge.source}->{edge.target}"


def validate_journey(journey: JourneyModel) -> None:
    """
    Check the graph rules a journey must satisfy before it can run.
    Raises JourneyValidationError with the first problem found.
    """
    nodes = journey.nodes
    if not nodes:
        raise JourneyValidationError("Journey has no nodes")

    by_id = {}
    for node in nodes:
        if node.id in by_id:
            raise JourneyValidationError(f"Duplicate node id {node.id}")
        by_id[node.id] = node

    entries = [node for node in nodes if node.type == "entry"]
    if len(entries) != 1:
        raise JourneyValidationError(f"Journey must have exactly one entry node, found {len(entries)}")
    entry = entries[0]

    outgoing = defaultdict(list)
    incoming = defaultdict(list)
    for edge in journey.edges:
        if edge.source not in by_id:
            raise JourneyValidationError(f"Edge {_edge_label(edge)} starts at unknown node {edge.source}")
        if edge.target not in by_id:
            raise JourneyValidationError(f"Edge {_edge_label(edge)} points to unknown node {edge.target}")
        try:
            parse_delay(edge.delay)
        except ValueError as e:
            raise JourneyValidationError(f"Edge {_edge_label(edge)}: {e}")
        outgoing[edge.source].append(edge)
        incoming[edge.target].append(edge)

    if incoming[entry.id]:
        raise JourneyValidationError(f"Entry node {entry.id} cannot have incoming edges")

    for node in nodes:
        out = outgoing[node.id]
        if node.type != "condition" and any(edge.branch for edge in out):
            raise JourneyValidationError(f"Only condition nodes can have branch edges, node {node.id} has one")

        if node.type == "entry":
            if len(out) != 1:
                raise JourneyValidationError(f"Entry node {node.id} must have exactly one outgoing edge, found {len(out)}")

        elif node.type == "message":
            if len(out) > 1:
                raise JourneyValidationError(f"Message node {node.id} can have at most one outgoing edge, found {len(out)}")
            if node.channel == "email" and not (node.subject or "").strip():
                raise JourneyValidationError(f"Email node {node.id} is missing a subject")
            if not node.body.strip():
                raise JourneyValidationError(f"Message node {node.id} is missing a body")
            try:
                parse_delay(node.delay)
            except ValueError as e:
                raise JourneyValidationError(f"Message node {node.id}: {e}")

        elif node.type == "condition":
            branches = sorted(edge.branch or "" for edge in out)
            if branches != ["false", "true"]:
                raise JourneyValidationError(
                    f"Condition node {node.id} needs exactly one 'true' and one 'false' edge, found {branches}"
                )
            try:
                coerce_value(node.predicate, node.value)
            except ValueError as e:
                raise JourneyValidationError(f"Condition node {node.id}: {e}")

        elif node.type == "journey_ref":
            if out:
                raise JourneyValidationError(f"Journey reference node {node.id} ends the run and cannot have outgoing edges")
            if not node.target_journey_id:
                raise JourneyValidationError(f"Journey reference node {node.id} has no target journey")
            if node.target_journey_id == journey.journey_id:
                raise JourneyValidationError(f"Journey reference node {node.id} cannot target its own journey")

    visiting, visited = set(), set()

    def visit(node_id):
        if node_id in visiting:
            raise JourneyValidationError(f"Loop detected involving node {node_id}")
        if node_id in visited:
            return
        visiting.add(node_id)
        for edge in outgoing[node_id]:
            visit(edge.target)
        visiting.remove(node_id)
        visited.add(node_id)

    visit(entry.id)

    unreachable = [node.id for node in nodes if node.id not in visited]
    if unreachable:
        raise JourneyValidationError(f"Nodes not reachable from the entry node: {', '.join(unreachable)}")


class JourneyStore:
    """Journey definitions and their draft -> active <-> inactive lifecycle."""

    def __init__(self, clock: Callable = utcnow):
        self.clock = clock

    validate = staticmethod(validate_journey)

    async def create(
        self,
        name: str,
        organization_id: str,
        nodes: Optional[list] = None,
        edges: Optional[list] = None,
        description: str = "",
        created_by: Optional[str] = None,
    ) -> JourneyModel:
        now = self.clock()
        journey = JourneyModel(
            journey_id=f"journey_{uuid.uuid4().hex[:12]}",
            name=name,
            organization_id=organization_id,
            description=description,
            status="draft",
            nodes=_nodes_adapter.validate_python(nodes or []),
            edges=_edges_adapter.validate_python(edges or []),
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        await journey.insert()
        logger.info(f"[JOURNEY] Created draft journey {journey.journey_id} ({name}) with {len(journey.nodes)} nodes")
        return journey

    async def get(self, journey_id: str) -> JourneyModel:
        journey = await JourneyModel.find_one({"journey_id": journey_id})
        if not journey:
            raise JourneyNotFound(journey_id)
        return journey

    async def list_journeys(self, organization_id: Optional[str] = None, status: Optional[str] = None) -> List[JourneyModel]:
        query = {}
        if organization_id:
            query["organization_id"] = organization_id
        if status and status != "all":
            query["status"] = status
        return await JourneyModel.find(query).sort("-created_at").to_list()

    async def update(
        self,
        journey_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        nodes: Optional[list] = None,
        edges: Optional[list] = None,
    ) -> JourneyModel:
        journey = await self.get(journey_id)

        if (nodes is not None or edges is not None) and journey.status == "active":
            raise JourneyStateError(
                f"Journey {journey_id} is active; deactivate it before changing nodes or edges"
            )

        if name is not None:
            journey.name = name
        if description is not None:
            journey.description = description
        if nodes is not None:
            journey.nodes = _nodes_adapter.validate_python(nodes)
        if edges is not None:
            journey.edges = _edges_adapter.validate_python(edges)
        journey.updated_at = self.clock()
        await journey.save()
        logger.info(f"[JOURNEY] Updated journey {journey_id}")
        return journey

    async def activate(self, journey_id: str) -> JourneyModel:
        journey = await self.get(journey_id)
        if journey.status == "active":
            return journey

        validate_journey(journey)
        await self._check_references(journey)
        await self._check_parked_runs(journey)

        journey.status = "active"
        journey.activated_at = self.clock()
        journey.updated_at = journey.activated_at
        await journey.save()
        logger.info(f"[JOURNEY] Journey {journey_id} activated")
        return journey

    async def deactivate(self, journey_id: str) -> JourneyModel:
        journey = await self.get(journey_id)
        if journey.status == "inactive":
            return journey
        if journey.status != "active":
            raise JourneyStateError(f"Journey {journey_id} is {journey.status}; only active journeys can be deactivated")

        # Live runs stay parked where they are until the journey is reactivated or they are cancelled.
        journey.status = "inactive"
        journey.updated_at = self.clock()
        await journey.save()
        logger.info(f"[JOURNEY] Journey {journey_id} deactivated, in-flight runs paused")
        return journey

    async def _check_references(self, journey: JourneyModel) -> None:
        for node in journey.nodes:
            if node.type == "journey_ref":
                target = await JourneyModel.find_one({"journey_id": node.target_journey_id})
                if not target:
                    raise JourneyValidationError(
                        f"Journey reference node {node.id} targets unknown journey {node.target_journey_id}"
                    )

    async def _check_parked_runs(self, journey: JourneyModel) -> None:
        node_ids = {node.id for node in journey.nodes}
        live_runs = await JourneyRunModel.find({
            "journey_id": journey.journey_id,
            "status": {"$in": [s.value for s in LIVE_STATUSES]},
        }).to_list()
        orphaned = sorted({run.current_node_id for run in live_runs if run.current_node_id not in node_ids})
        if orphaned:
            raise JourneyValidationError(
                f"In-flight runs are parked on nodes that no longer exist: {', '.join(map(str, orphaned))}"
            )
