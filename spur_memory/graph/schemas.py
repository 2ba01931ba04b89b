"""
Memory graph data models.

Defines MemoryNode, MemoryEdge, Cluster and the request/response types of the
ingestion, query and maintenance APIs.
"""

import base64
import binascii
from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, Iterator, List, Literal, Optional, Set, Tuple, Union

from pydantic import BaseModel, Field, FiniteFloat, field_serializer, field_validator, model_validator


# Type aliases
NodeType = Literal["browser", "code", "message", "other"]
EdgeKind = Literal["temporal", "semantic"]

NODE_TYPES: Tuple[str, ...] = ("browser", "code", "message", "other")
EDGE_KINDS: Tuple[str, ...] = ("temporal", "semantic")


# ============================================================================
# Content variants
# ============================================================================

class BrowserContent(BaseModel):
    """A visited page."""

    kind: Literal["browser"] = "browser"
    url: str
    title: str = ""
    text: str = ""

    def snippet(self, max_chars: int = 100) -> str:
        return _truncate(self.title or self.url, max_chars)


class CodeContent(BaseModel):
    """An edit in a source file."""

    kind: Literal["code"] = "code"
    path: str
    language: Optional[str] = None
    excerpt: str = Field("", description="Edited code excerpt")

    def snippet(self, max_chars: int = 100) -> str:
        return _truncate(f"{self.path}: {self.excerpt}" if self.excerpt else self.path, max_chars)


class MessageContent(BaseModel):
    """A chat or mail message."""

    kind: Literal["message"] = "message"
    text: str
    sender: Optional[str] = None
    channel: Optional[str] = None

    def snippet(self, max_chars: int = 100) -> str:
        return _truncate(self.text, max_chars)


class OpaqueContent(BaseModel):
    """
    Fallback payload for activity kinds the engine does not model.

    `data` travels as base64 in JSON; a str given on input is decoded as base64.
    """

    kind: Literal["other"] = "other"
    data: bytes = b""
    mime_type: Optional[str] = None

    @field_validator("data", mode="before")
    @classmethod
    def _decode_base64(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except binascii.Error as e:
                raise ValueError(f"data must be base64 when given as text: {e}") from e
        return value

    @field_serializer("data", when_used="json")
    def _encode_base64(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")

    def snippet(self, max_chars: int = 100) -> str:
        return _truncate(f"<{self.mime_type or 'bytes'}: {len(self.data)} bytes>", max_chars)


Content = Annotated[
    Union[BrowserContent, CodeContent, MessageContent, OpaqueContent],
    Field(discriminator="kind"),
]


def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars - 3] + "..."


def _fill_content_kind(data: Any) -> Any:
    """Default a content dict's `kind` to the record's `type`."""
    if isinstance(data, dict):
        content = data.get("content")
        if isinstance(content, dict) and "kind" not in content and data.get("type") in NODE_TYPES:
            data = {**data, "content": {**content, "kind": data["type"]}}
    return data


# ============================================================================
# Graph records
# ============================================================================

class MemoryNode(BaseModel):
    """
    One stored activity record with its derived relevance.

    `relevance_score` is only ever written by relevance scoring or the decay
    pass; readers must not recompute it.
    """

    id: str = Field(..., description="Unique identifier")
    created_at: FiniteFloat = Field(..., description="Unix timestamp of the activity")
    type: NodeType = Field("other", description="Activity kind")
    content: Content
    embedding: Optional[List[FiniteFloat]] = Field(None, description="Fixed-dimension vector")

    # Graph membership
    cluster_id: Optional[str] = Field(None, description="Session cluster holding this node")

    # Usage tracking
    access_count: int = Field(0, ge=0, description="Number of times returned by a query")
    last_accessed_at: FiniteFloat = Field(..., description="Last query access (created_at initially)")

    # Derived
    relevance_score: float = Field(0.0, ge=0.0, le=1.0)
    archived: bool = False
    archived_at: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def _defaults(cls, data: Any) -> Any:
        data = _fill_content_kind(data)
        if isinstance(data, dict) and data.get("last_accessed_at") is None and "created_at" in data:
            data = {**data, "last_accessed_at": data["created_at"]}
        return data

    def to_storage_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready dict for the document store."""
        return self.model_dump(mode="json")

    @classmethod
    def from_storage_dict(cls, data: Dict[str, Any]) -> "MemoryNode":
        """Load from storage dict."""
        return cls.model_validate(data)


class MemoryEdge(BaseModel):
    """
    Relationship between two nodes.

    The pair is unordered: it is stored with source_id < target_id so that
    (kind, source_id, target_id) identifies at most one edge.
    """

    source_id: str
    target_id: str
    kind: EdgeKind
    weight: float = Field(..., ge=0.0, le=1.0)
    computed_at: float

    @model_validator(mode="after")
    def _order_pair(self) -> "MemoryEdge":
        if self.source_id == self.target_id:
            raise ValueError(f"Self-edge not allowed: {self.source_id}")
        if self.source_id > self.target_id:
            self.source_id, self.target_id = self.target_id, self.source_id
        return self

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.kind, self.source_id, self.target_id)

    def other(self, node_id: str) -> str:
        """Endpoint opposite to node_id."""
        return self.target_id if node_id == self.source_id else self.source_id


class Cluster(BaseModel):
    """A time-contiguous session of nodes."""

    id: str
    start_time: float
    end_time: float
    member_ids: Set[str] = Field(default_factory=set)

    @field_serializer("member_ids")
    def _sorted_members(self, value: Set[str]) -> List[str]:
        return sorted(value)

    def contains_time(self, ts: float) -> bool:
        return self.start_time <= ts <= self.end_time


# ============================================================================
# API types
# ============================================================================

class Activity(BaseModel):
    """Ingestion request."""

    type: NodeType
    timestamp: FiniteFloat = Field(..., description="Unix timestamp of the activity")
    content: Content
    embedding: Optional[List[FiniteFloat]] = None
    id: Optional[str] = Field(None, description="Caller-chosen node id; generated when unset")

    @model_validator(mode="before")
    @classmethod
    def _defaults(cls, data: Any) -> Any:
        return _fill_content_kind(data)

    class Config:
        json_schema_extra = {
            "example": {
                "type": "browser",
                "timestamp": 1696723200.0,
                "content": {"kind": "browser", "url": "https://docs.python.org/3/", "title": "Python docs"},
                "embedding": [0.1, 0.7, 0.2],
            }
        }


class QueryContext(BaseModel):
    """Query request."""

    embedding: List[FiniteFloat]
    type_filter: Optional[List[NodeType]] = Field(None, description="Restrict to these types")
    since: Optional[FiniteFloat] = Field(None, description="Only nodes created at or after")
    until: Optional[FiniteFloat] = Field(None, description="Only nodes created at or before")
    limit: Optional[int] = Field(None, ge=1, description="Max results (config default when unset)")
    min_score: FiniteFloat = Field(0.0, description="Drop hits with blended score below this")

    @field_validator("type_filter", mode="before")
    @classmethod
    def _single_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value


class QueryHit(BaseModel):
    """One ranked query result."""

    node_id: str
    content: Content
    score: float = Field(..., description="Blended score used for ranking")
    similarity: float
    relevance_score: float
    type: NodeType
    created_at: float
    last_accessed_at: float


class TickReport(BaseModel):
    """Outcome of one maintenance tick."""

    now: float
    decayed: int = 0
    archived: int = 0
    deleted: int = 0
    failed: int = 0
    cancelled: bool = False
    duration_ms: float = 0.0


class GraphStats(BaseModel):
    """Aggregate view of a graph instance."""

    total_nodes: int
    live_nodes: int
    archived_nodes: int
    total_edges: int
    edges_by_kind: Dict[str, int]
    clusters: int
    type_distribution: Dict[str, int]
    average_relevance: float
    relevance_distribution: Dict[str, int] = Field(..., description="high (>=0.7) / medium / low (<0.3)")
    average_degree: float


@dataclass(frozen=True)
class GraphSnapshot:
    """Read-only (node, score) pairs ordered by score descending."""

    entries: Tuple[Tuple[MemoryNode, float], ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[Tuple[MemoryNode, float]]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def ids(self) -> List[str]:
        return [node.id for node, _ in self.entries]

    def top(self, n: int) -> "GraphSnapshot":
        return GraphSnapshot(self.entries[:n])
