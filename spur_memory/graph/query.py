"""
Relevance-ranked memory queries.

blended = alpha * relevance_score + beta * similarity(query, node)

Ranking reads a point-in-time copy of the store; every returned node then
has its access statistics updated, so queries feed back into relevance.
"""

from contextlib import nullcontext
from dataclasses import dataclass
from typing import List, Optional

from spur_memory.config.settings import QueryCfg
from spur_memory.errors import InvalidActivity, NotFound
from spur_memory.telemetry import get_logger
from .decay import LockFactory
from .relevance import RelevanceScorer
from .schemas import QueryContext, QueryHit
from .semantic import query_similarities
from .store import NodeRow, NodeStore


logger = get_logger(__name__)


@dataclass(frozen=True)
class RankedRow:
    """A candidate with its ranking scores."""

    row: NodeRow
    score: float
    similarity: float


class QueryEngine:
    """
    Translates a query context into a ranked list of live nodes.

    Ties on blended score are broken by last_accessed_at (most recent first),
    then node id.
    """

    def __init__(self, scorer: RelevanceScorer, config: Optional[QueryCfg] = None):
        """
        Initialize query engine.

        Args:
            scorer: Relevance scorer used for access feedback
            config: Query weights and default limit
        """
        self.scorer = scorer
        self.config = config or QueryCfg()

    def rank(self, store: NodeStore, context: QueryContext) -> List[RankedRow]:
        """Rank matching live nodes without touching access statistics."""
        rows, matrix = store.rows(
            types=context.type_filter,
            since=context.since,
            until=context.until,
            live_only=True,
        )
        try:
            sims = query_similarities(matrix, context.embedding, len(rows))
        except ValueError as e:
            raise InvalidActivity(str(e)) from e

        alpha = self.config.relevance_weight
        beta = self.config.similarity_weight
        ranked = []
        for row, sim in zip(rows, sims):
            score = alpha * row.relevance_score + beta * float(sim)
            if score >= context.min_score:
                ranked.append(RankedRow(row, score, float(sim)))

        ranked.sort(key=lambda r: (-r.score, -r.row.last_accessed_at, r.row.id))
        limit = context.limit or self.config.default_limit
        return ranked[:limit]

    def search(
        self,
        store: NodeStore,
        context: QueryContext,
        now: float,
        feedback_lock: Optional[LockFactory] = None,
    ) -> List[QueryHit]:
        """
        Rank nodes and record an access on each returned one.

        Args:
            store: Store to query
            context: Query embedding, filters and limit
            now: Access time recorded on returned nodes
            feedback_lock: Context manager factory held while writing access
                statistics (the owning graph's mutation lock)

        Returns:
            Hits ordered by blended score descending
        """
        ranked = self.rank(store, context)
        hits: List[QueryHit] = []

        with (feedback_lock() if feedback_lock is not None else nullcontext()):
            for item in ranked:
                try:
                    node = self.scorer.record_access(store, item.row.id, now)
                except NotFound:
                    # Deleted by maintenance after ranking.
                    logger.info("query_hit_vanished", node_id=item.row.id)
                    continue
                hits.append(QueryHit(
                    node_id=node.id,
                    content=node.content,
                    score=item.score,
                    similarity=item.similarity,
                    relevance_score=item.row.relevance_score,
                    type=node.type,
                    created_at=node.created_at,
                    last_accessed_at=item.row.last_accessed_at,
                ))
        return hits
