"""
spur-memory: an in-process memory graph for assistant applications.

Ingests timestamped activity records, clusters them into sessions, links
similar memories and answers relevance-ranked queries while decay and
pruning keep the graph bounded.
"""

from .config import GraphConfig, load_config
from .errors import (
    ConsistencyViolation,
    DuplicateId,
    InvalidActivity,
    InvalidConfiguration,
    MemoryGraphError,
    NotFound,
    TransientProviderFailure,
)
from .graph import Activity, MemoryGraph, QueryContext, QueryHit, TickReport

__version__ = "0.1.0"

__all__ = [
    "GraphConfig",
    "load_config",
    "ConsistencyViolation",
    "DuplicateId",
    "InvalidActivity",
    "InvalidConfiguration",
    "MemoryGraphError",
    "NotFound",
    "TransientProviderFailure",
    "Activity",
    "MemoryGraph",
    "QueryContext",
    "QueryHit",
    "TickReport",
]
