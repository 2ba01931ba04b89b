"""
Memory graph engine.

Provides:
- Node/edge/cluster store with secondary indexes
- Temporal session clustering
- Semantic similarity edges
- Relevance scoring, decay and pruning
- Relevance-ranked queries with access feedback
"""

from .schemas import (
    Activity,
    BrowserContent,
    Cluster,
    CodeContent,
    GraphSnapshot,
    GraphStats,
    MemoryEdge,
    MemoryNode,
    MessageContent,
    OpaqueContent,
    QueryContext,
    QueryHit,
    TickReport,
)
from .store import NodeStore
from .temporal import TemporalClusterer
from .semantic import SemanticLinker, cosine_similarity
from .relevance import RelevanceScorer
from .decay import DecayEngine
from .pruning import PruningEngine
from .query import QueryEngine
from .engine import MemoryGraph

__all__ = [
    "Activity",
    "BrowserContent",
    "Cluster",
    "CodeContent",
    "GraphSnapshot",
    "GraphStats",
    "MemoryEdge",
    "MemoryNode",
    "MessageContent",
    "OpaqueContent",
    "QueryContext",
    "QueryHit",
    "TickReport",
    "NodeStore",
    "TemporalClusterer",
    "SemanticLinker",
    "cosine_similarity",
    "RelevanceScorer",
    "DecayEngine",
    "PruningEngine",
    "QueryEngine",
    "MemoryGraph",
]
