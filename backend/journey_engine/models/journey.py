from beanie import Document, Indexed
from pydantic import BaseModel, Field
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime

from journey_engine.services.clock import utcnow


class NodeBase(BaseModel):
    id: str = Field(..., examples=["email-1"])
    title: Optional[str] = None
    # Canvas coordinates from the builder UI. Opaque to the engine.
    position: Optional[Dict[str, Any]] = None


class EntryNode(NodeBase):
    type: Literal["entry"] = "entry"


class MessageNode(NodeBase):
    type: Literal["message"] = "message"
    channel: Literal["email", "sms", "whatsapp"]
    subject: Optional[str] = None
    body: str = ""
    # Wait after this node's dispatch before following the outgoing edge.
    delay: Optional[str] = Field(default=None, examples=["2d"])


class ConditionNode(NodeBase):
    type: Literal["condition"] = "condition"
    predicate: Literal["has_donated", "donation_amount_gt", "days_since_last_donation_gt"]
    value: Optional[Union[int, float, str]] = None


class JourneyRefNode(NodeBase):
    type: Literal["journey_ref"] = "journey_ref"
    target_journey_id: str


JourneyNode = Annotated[
    Union[EntryNode, MessageNode, ConditionNode, JourneyRefNode],
    Field(discriminator="type"),
]

NODE_TYPES = ("entry", "message", "condition", "journey_ref")


class Edge(BaseModel):
    id: Optional[str] = None
    source: str
    target: str
    branch: Optional[Literal["true", "false"]] = None
    delay: Optional[str] = None


class JourneyModel(Document):
    journey_id: Indexed(str, unique=True)
    name: str = Field(..., examples=["Lapsed donor win-back"])
    organization_id: str
    description: str = ""
    status: Literal["draft", "active", "inactive"] = "draft"
    nodes: List[JourneyNode] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    activated_at: Optional[datetime] = None

    class Settings:
        name = "journeys"

    def node_by_id(self, node_id: Optional[str]):
        if node_id is None:
            return None
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def entry_node(self) -> Optional[EntryNode]:
        for node in self.nodes:
            if node.type == "entry":
                return node
        return None

    def outgoing(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def edge_for(self, node_id: str, branch: Optional[str] = None) -> Optional[Edge]:
        """The edge leaving node_id, or the edge for the given branch of a condition node."""
        for edge in self.outgoing(node_id):
            if branch is None or edge.branch == branch:
                return edge
        return None
