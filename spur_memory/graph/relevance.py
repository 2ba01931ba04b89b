"""
Relevance scoring for memory nodes.

relevance = (w1*recency + w2*centrality + w3*frequency) / (w1 + w2 + w3)

- recency:    exp(-lambda * age_hours)
- centrality: mean weight of the node's semantic edges (0 if none)
- frequency:  min(1, access_count / access_saturation)

The result is the value persisted on the node. Time is always passed in.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional

from spur_memory.config.settings import RelevanceCfg
from .schemas import MemoryNode
from .store import NodeStore


@dataclass(frozen=True)
class RelevanceFactors:
    """Components of one relevance computation."""

    recency: float
    centrality: float
    frequency: float
    score: float


def recency(created_at: float, now: float, decay_lambda: float) -> float:
    """exp(-lambda * age_hours); nodes from the future count as age 0."""
    age_hours = max(0.0, now - created_at) / 3600.0
    return math.exp(-decay_lambda * age_hours)


def frequency(access_count: int, access_saturation: int) -> float:
    return min(1.0, access_count / access_saturation)


def combine(recency_value: float, centrality: float, frequency_value: float, config: RelevanceCfg) -> float:
    """Weighted mean of the three factors, clamped to [0, 1]."""
    total = config.recency_weight + config.centrality_weight + config.frequency_weight
    raw = (
        config.recency_weight * recency_value
        + config.centrality_weight * centrality
        + config.frequency_weight * frequency_value
    ) / total
    return min(1.0, max(0.0, raw))


class RelevanceScorer:
    """Computes and writes node relevance scores."""

    def __init__(self, config: Optional[RelevanceCfg] = None):
        self.config = config or RelevanceCfg()

    def factors(self, node: MemoryNode, centrality: float, now: float) -> RelevanceFactors:
        r = recency(node.created_at, now, self.config.decay_lambda)
        f = frequency(node.access_count, self.config.access_saturation)
        c = min(1.0, max(0.0, centrality))
        return RelevanceFactors(r, c, f, combine(r, c, f, self.config))

    def explain(self, store: NodeStore, node_id: str, now: float) -> RelevanceFactors:
        """Factors behind a node's score at `now`, without writing anything."""
        node = store.get(node_id)
        return self.factors(node, store.semantic_centrality(node_id), now)

    def mutator(self, store: NodeStore, now: float):
        """Store mutator that rewrites relevance_score at `now`."""

        def _rescore(node: MemoryNode) -> None:
            node.relevance_score = self.factors(node, store.semantic_centrality(node.id), now).score

        return _rescore

    def rescore(self, store: NodeStore, node_id: str, now: float) -> float:
        """Recompute and persist one node's score. Returns the new score."""
        return store.update(node_id, self.mutator(store, now)).relevance_score

    def rescore_many(self, store: NodeStore, node_ids: Iterable[str], now: float) -> List[str]:
        """Recompute several scores; ids that vanished are skipped."""
        updated, _ = store.update_many(dict.fromkeys(node_ids), self.mutator(store, now))
        return updated

    def record_access(self, store: NodeStore, node_id: str, now: float) -> MemoryNode:
        """Count a query access and rescore the node."""
        rescore = self.mutator(store, now)

        def _access(node: MemoryNode) -> None:
            node.access_count += 1
            node.last_accessed_at = now
            rescore(node)

        return store.update(node_id, _access)
