"""Test configuration and fixtures."""

from typing import Any, Callable, Dict, List, Optional

import pytest

from spur_memory.config import GraphConfig
from spur_memory.graph import MemoryGraph, MemoryNode, NodeStore


_CONTENT_BY_TYPE = {
    "browser": lambda i: {"kind": "browser", "url": f"https://example.com/{i}"},
    "code": lambda i: {"kind": "code", "path": f"src/{i}.py"},
    "message": lambda i: {"kind": "message", "text": f"note {i}"},
    "other": lambda i: {"kind": "other", "mime_type": "text/plain"},
}


@pytest.fixture
def make_node() -> Callable[..., MemoryNode]:
    """Factory for MemoryNode records; content follows the node type."""

    def _make(
        node_id: str,
        created_at: float = 0.0,
        embedding: Optional[List[float]] = None,
        node_type: str = "message",
        **fields: Any,
    ) -> MemoryNode:
        content = fields.pop("content", None) or _CONTENT_BY_TYPE[node_type](node_id)
        return MemoryNode(
            id=node_id,
            created_at=created_at,
            type=node_type,
            content=content,
            embedding=embedding,
            **fields,
        )

    return _make


@pytest.fixture
def make_activity() -> Callable[..., Dict[str, Any]]:
    """Factory for ingestion requests."""

    def _make(
        timestamp: float,
        embedding: Optional[List[float]] = None,
        node_type: str = "message",
        text: str = "standup notes",
        node_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if node_type == "browser":
            content: Dict[str, Any] = {"url": "https://docs.python.org/3/", "title": text}
        elif node_type == "code":
            content = {"path": "src/app.py", "excerpt": text}
        elif node_type == "other":
            content = {"mime_type": "text/plain"}
        else:
            content = {"text": text}
        activity: Dict[str, Any] = {"type": node_type, "timestamp": timestamp, "content": content}
        if embedding is not None:
            activity["embedding"] = embedding
        if node_id is not None:
            activity["id"] = node_id
        return activity

    return _make


@pytest.fixture
def store() -> NodeStore:
    """In-memory node store."""
    return NodeStore()


@pytest.fixture
def graph_config() -> GraphConfig:
    """Default configuration without post-ingest pruning."""
    return GraphConfig(pruning={"prune_on_ingest": False})


@pytest.fixture
def graph(graph_config):
    """In-memory graph with a frozen clock."""
    g = MemoryGraph(config=graph_config, clock=lambda: 0.0, graph_id="graph_test")
    yield g
    g.close()
