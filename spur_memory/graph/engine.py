"""
Memory graph engine.

MemoryGraph is the single owner of one graph instance. It wires the store,
temporal clustering, semantic linking, relevance scoring, decay, pruning
and query components together and serialises every mutation through one
re-entrant lock.

Flow:
1. ingest: insert node -> cluster -> semantic edges -> rescore touched nodes
2. query: rank live nodes -> record access on each hit
3. tick: decay all live nodes -> archive/delete per pruning policy
"""

import json
import math
import threading
import time
import uuid
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Callable, Deque, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from spur_memory.config.settings import GraphConfig
from spur_memory.errors import (
    ConsistencyViolation,
    InvalidActivity,
    InvalidConfiguration,
    MemoryGraphError,
    TransientProviderFailure,
)
from spur_memory.persist.base import DocumentStore
from spur_memory.persist.sqlite_store import SQLiteDocumentStore
from spur_memory.telemetry import get_logger, log_step, timed_step
from .decay import DecayEngine
from .pruning import PruneResult, PruningEngine
from .query import QueryEngine
from .relevance import RelevanceFactors, RelevanceScorer
from .schemas import (
    Activity,
    Content,
    GraphSnapshot,
    GraphStats,
    MemoryEdge,
    MemoryNode,
    QueryContext,
    QueryHit,
    TickReport,
)
from .semantic import SemanticLinker, SimilarityFn, call_provider
from .store import NodeStore
from .temporal import TemporalClusterer


logger = get_logger(__name__)

Embedder = Callable[[Content], Sequence[float]]

EXPORT_FORMAT_VERSION = 1


def new_node_id() -> str:
    return f"mem_{uuid.uuid4().hex[:12]}"


class MemoryGraph:
    """
    One memory graph instance.

    Example:
        >>> graph = MemoryGraph()
        >>> node_id = graph.ingest({"type": "message", "timestamp": 0.0,
        ...                         "content": {"text": "standup notes"},
        ...                         "embedding": [1.0, 0.0]})
        >>> graph.query({"embedding": [1.0, 0.0]}, now=0.0)[0].node_id == node_id
        True
    """

    def __init__(
        self,
        config: Optional[Union[GraphConfig, Dict[str, Any]]] = None,
        backend: Optional[DocumentStore] = None,
        embedder: Optional[Embedder] = None,
        similarity_fn: Optional[SimilarityFn] = None,
        clock: Callable[[], float] = time.time,
        graph_id: Optional[str] = None,
    ):
        """
        Initialize a graph.

        Args:
            config: GraphConfig or a dict of its fields (defaults when None)
            backend: Document store to persist to. When None, a SQLite store
                is opened at config.storage.db_path if set, else in-memory.
            embedder: Fills in embeddings for activities that arrive without one
            similarity_fn: External similarity provider replacing cosine
            clock: Source of `now` when callers do not pass one
            graph_id: Identifier used in log records

        Raises:
            InvalidConfiguration: config values out of range
        """
        if config is None:
            config = GraphConfig()
        elif isinstance(config, dict):
            try:
                config = GraphConfig(**config)
            except ValidationError as e:
                raise InvalidConfiguration(f"Invalid graph config: {e}") from e
        self.config = config
        self.clock = clock
        self.graph_id = graph_id or f"graph_{uuid.uuid4().hex[:8]}"

        if backend is None and config.storage.db_path:
            backend = SQLiteDocumentStore(config.storage.db_path)
        self.store = NodeStore(backend, embedding_dim=config.semantic.embedding_dim)
        self.store.load()

        self.scorer = RelevanceScorer(config.relevance)
        self.clusterer = TemporalClusterer(config.temporal)
        self.linker = SemanticLinker(config.semantic, similarity_fn=similarity_fn)
        self.decay = DecayEngine(self.scorer, config.decay)
        self.pruning = PruningEngine(config.pruning)
        self.query_engine = QueryEngine(self.scorer, config.query)

        self.embedder = embedder
        self._embed_executor: Optional[ThreadPoolExecutor] = None
        if embedder is not None and config.semantic.provider_timeout_s is not None:
            self._embed_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="embedder")

        self.maintenance_history: Deque[TickReport] = deque(maxlen=config.storage.history_size)
        self._mutation_lock = threading.RLock()
        self._violation: Optional[ConsistencyViolation] = None
        self._closed = False

        logger.info(
            "graph_opened",
            graph_id=self.graph_id,
            nodes=self.store.count(),
            backend=type(self.store.backend).__name__,
        )

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @classmethod
    def open(cls, db_path: str, config: Optional[GraphConfig] = None, **kwargs: Any) -> "MemoryGraph":
        """Open (or create) a SQLite-backed graph at db_path."""
        return cls(config=config, backend=SQLiteDocumentStore(db_path), **kwargs)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.linker.close()
        if self._embed_executor is not None:
            self._embed_executor.shutdown(wait=False, cancel_futures=True)
        self.store.backend.close()
        logger.info("graph_closed", graph_id=self.graph_id)

    def __enter__(self) -> "MemoryGraph":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def halted(self) -> bool:
        """True once a consistency violation stopped mutations."""
        return self._violation is not None

    @contextmanager
    def _mutating(self) -> Iterator[None]:
        """Hold the mutation lock; refuse when the instance is halted."""
        with self._mutation_lock:
            if self._violation is not None:
                raise ConsistencyViolation(self._violation.problems)
            try:
                yield
            except ConsistencyViolation as e:
                self._halt(e)
                raise

    def _halt(self, error: ConsistencyViolation) -> None:
        if self._violation is None:
            self._violation = error
            logger.error("graph_halted", graph_id=self.graph_id, problems=error.problems[:5])

    def _verify(self, node_ids: Optional[Iterable[str]] = None) -> None:
        problems = self.store.verify(node_ids)
        if problems:
            error = ConsistencyViolation(problems)
            self._halt(error)
            raise error

    def _now(self, now: Optional[float]) -> float:
        return float(self.clock()) if now is None else float(now)

    # ========================================================================
    # Ingestion
    # ========================================================================

    def _embed(self, activity: Activity) -> Optional[List[float]]:
        if activity.embedding is not None or self.embedder is None:
            return activity.embedding
        try:
            vector = call_provider(
                self.embedder,
                activity.content,
                executor=self._embed_executor,
                timeout_s=self.config.semantic.provider_timeout_s,
                what="embedder",
            )
        except TransientProviderFailure as e:
            logger.warning("embedding_skipped", graph_id=self.graph_id, reason=str(e))
            return None
        return [float(x) for x in vector]

    def _build_node(self, activity: Activity) -> MemoryNode:
        embedding = self._embed(activity)
        if embedding is not None:
            if len(embedding) == 0:
                raise InvalidActivity("Embedding must not be empty")
            if not all(math.isfinite(x) for x in embedding):
                raise InvalidActivity("Embedding values must be finite")
        return MemoryNode(
            id=activity.id or new_node_id(),
            created_at=activity.timestamp,
            type=activity.type,
            content=activity.content,
            embedding=embedding,
            last_accessed_at=activity.timestamp,
        )

    def ingest(self, activity: Union[Activity, Dict[str, Any]], now: Optional[float] = None) -> str:
        """
        Add one activity to the graph.

        Args:
            activity: Activity or dict with type, timestamp, content, embedding
            now: Time used for scoring and edge timestamps (clock when None)

        Returns:
            The new node id

        Raises:
            InvalidActivity: malformed activity or embedding dimension mismatch
            DuplicateId: activity.id already present
            ConsistencyViolation: the graph is halted, or this ingestion broke
                an invariant (which halts it)
        """
        if not isinstance(activity, Activity):
            try:
                activity = Activity.model_validate(activity)
            except ValueError as e:
                raise InvalidActivity(str(e)) from e
        now = self._now(now)

        with timed_step(self.graph_id, "ingest") as fields:
            with self._mutating():
                node = self._build_node(activity)
                self.store.insert(node)
                try:
                    assignment = self.clusterer.assign(self.store, node.id, now)
                    link = self.linker.link(self.store, node.id, now)
                except ConsistencyViolation:
                    raise
                except MemoryGraphError:
                    self.store.delete(node.id)
                    raise

                touched = list(dict.fromkeys([node.id] + assignment.touched_ids + link.touched_ids))
                self.scorer.rescore_many(self.store, touched, now)
                self._verify(touched)

            fields.update(
                node_id=node.id,
                cluster_id=assignment.cluster_id,
                new_cluster=assignment.created,
                temporal_edges=assignment.edges_added,
                semantic_edges=link.edges_added,
                provider_failures=link.provider_failures,
            )
        return node.id

    def ingest_many(
        self,
        activities: Iterable[Union[Activity, Dict[str, Any]]],
        now: Optional[float] = None,
    ) -> List[str]:
        """
        Ingest a batch, then run a pruning pass when prune_on_ingest is set.

        Nodes ingested before a failing activity stay in the graph.
        """
        now = self._now(now)
        ids = [self.ingest(activity, now=now) for activity in activities]
        if self.config.pruning.prune_on_ingest and ids:
            result = self._prune(now)
            if result.archived or result.deleted:
                logger.info(
                    "post_ingest_prune",
                    graph_id=self.graph_id,
                    archived=result.archived,
                    deleted=result.deleted,
                )
        return ids

    # ========================================================================
    # Query
    # ========================================================================

    def query(self, context: Union[QueryContext, Dict[str, Any]], now: Optional[float] = None) -> List[QueryHit]:
        """
        Relevance-ranked retrieval. Records an access on every returned node.

        Raises:
            InvalidActivity: malformed context or embedding dimension mismatch
            ConsistencyViolation: the graph is halted
        """
        if not isinstance(context, QueryContext):
            try:
                context = QueryContext.model_validate(context)
            except ValueError as e:
                raise InvalidActivity(str(e)) from e
        now = self._now(now)

        with timed_step(self.graph_id, "query") as fields:
            if self._violation is not None:
                raise ConsistencyViolation(self._violation.problems)
            hits = self.query_engine.search(self.store, context, now, feedback_lock=self._mutating)
            self._verify(hit.node_id for hit in hits)
            fields.update(hits=len(hits), limit=context.limit or self.config.query.default_limit)
        return hits

    def record_access(self, node_id: str, now: Optional[float] = None) -> MemoryNode:
        """
        Record an interaction with a node outside of query().

        Bumps access_count and last_accessed_at, then rescores the node.

        Raises:
            NotFound: node absent
            ConsistencyViolation: the graph is halted
        """
        now = self._now(now)
        with self._mutating():
            node = self.scorer.record_access(self.store, node_id, now)
            self._verify([node_id])
        logger.debug("node_accessed", graph_id=self.graph_id, node_id=node_id, access_count=node.access_count)
        return node

    # ========================================================================
    # Maintenance
    # ========================================================================

    def _prune(self, now: float, cancel: Optional[threading.Event] = None) -> PruneResult:
        result = self.pruning.run(self.store, now, cancel=cancel, batch_lock=self._mutating)
        self._verify(result.archived_ids)
        return result

    def tick(self, now: Optional[float] = None, cancel: Optional[threading.Event] = None) -> TickReport:
        """
        One maintenance pass: decay every live node, then prune.

        Args:
            now: Reference time (clock when None)
            cancel: Set to stop the pass between batches

        Returns:
            TickReport with per-stage counts; failures are counted, not raised
        """
        now = self._now(now)
        if self._violation is not None:
            raise ConsistencyViolation(self._violation.problems)

        decayed = self.decay.run(self.store, now, cancel=cancel, batch_lock=self._mutating)
        if decayed.cancelled:
            pruned = PruneResult(cancelled=True)
        else:
            pruned = self._prune(now, cancel)

        report = TickReport(
            now=now,
            decayed=decayed.decayed,
            archived=pruned.archived,
            deleted=pruned.deleted,
            failed=decayed.failed + pruned.failed,
            cancelled=decayed.cancelled or pruned.cancelled,
            duration_ms=decayed.duration_ms + pruned.duration_ms,
        )
        self.maintenance_history.append(report)
        log_step(
            self.graph_id,
            "tick",
            report.duration_ms,
            {
                "decayed": report.decayed,
                "archived": report.archived,
                "deleted": report.deleted,
                "failed": report.failed,
                "cancelled": report.cancelled,
            },
        )
        return report

    def archive(self, node_id: str, now: Optional[float] = None) -> MemoryNode:
        """
        Archive one node regardless of score or protection.

        Raises:
            NotFound: node absent
        """
        now = self._now(now)

        def _archive(node: MemoryNode) -> None:
            if not node.archived:
                node.archived = True
                node.archived_at = now

        with self._mutating():
            node = self.store.update(node_id, _archive)
            self._verify([node_id])
        logger.info("node_archived", graph_id=self.graph_id, node_id=node_id, forced=True)
        return node

    # ========================================================================
    # Reads
    # ========================================================================

    def get_node(self, node_id: str) -> MemoryNode:
        """Detached copy of a node. Raises NotFound."""
        return self.store.get(node_id)

    def related(self, node_id: str, kind: Optional[str] = None, limit: int = 10) -> List[Tuple[MemoryNode, MemoryEdge]]:
        """
        Nodes connected to node_id, strongest edge first.

        Only live neighbours are returned. Raises NotFound.
        """
        out: List[Tuple[MemoryNode, MemoryEdge]] = []
        for edge in self.store.neighbors(node_id, kind):
            other = self.store.get(edge.other(node_id))
            if other.archived:
                continue
            out.append((other, edge))
            if len(out) >= limit:
                break
        return out

    def explain(self, node_id: str, now: Optional[float] = None) -> RelevanceFactors:
        """Relevance factors of a node at `now`; nothing is written."""
        return self.scorer.explain(self.store, node_id, self._now(now))

    def snapshot(self, limit: Optional[int] = None) -> GraphSnapshot:
        """Live nodes with their persisted scores, best first."""
        return self.store.snapshot(limit)

    def statistics(self) -> GraphStats:
        all_rows, _ = self.store.rows(live_only=False)
        live_rows = [row for row in all_rows if not row.archived]

        type_distribution: Dict[str, int] = {}
        buckets = {"high": 0, "medium": 0, "low": 0}
        for row in live_rows:
            type_distribution[row.type] = type_distribution.get(row.type, 0) + 1
            if row.relevance_score >= 0.7:
                buckets["high"] += 1
            elif row.relevance_score < 0.3:
                buckets["low"] += 1
            else:
                buckets["medium"] += 1

        total_edges = self.store.edge_count()
        average = sum(r.relevance_score for r in live_rows) / len(live_rows) if live_rows else 0.0
        return GraphStats(
            total_nodes=len(all_rows),
            live_nodes=len(live_rows),
            archived_nodes=len(all_rows) - len(live_rows),
            total_edges=total_edges,
            edges_by_kind={
                "temporal": self.store.edge_count("temporal"),
                "semantic": self.store.edge_count("semantic"),
            },
            clusters=self.store.cluster_count(),
            type_distribution=type_distribution,
            average_relevance=average,
            relevance_distribution=buckets,
            average_degree=(2.0 * total_edges / len(all_rows)) if all_rows else 0.0,
        )

    def check_consistency(self) -> None:
        """
        Verify every invariant across the whole graph.

        Raises:
            ConsistencyViolation: an invariant failed (the graph is halted)
        """
        with self._mutation_lock:
            self._verify()

    # ========================================================================
    # Export / import
    # ========================================================================

    def export_json(self, indent: Optional[int] = None) -> str:
        """Serialise every node, edge and cluster to a JSON document."""
        payload = {"version": EXPORT_FORMAT_VERSION, "graph_id": self.graph_id}
        payload.update(self.store.export_documents())
        return json.dumps(payload, indent=indent)

    def import_json(self, text: str) -> int:
        """
        Replace the graph contents with an export_json() document.

        Returns:
            Number of nodes imported

        Raises:
            InvalidActivity: malformed document
            ConsistencyViolation: imported data breaks an invariant
        """
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidActivity(f"Invalid export document: {e}") from e
        if not isinstance(payload, dict) or payload.get("version") != EXPORT_FORMAT_VERSION:
            raise InvalidActivity("Unsupported export document version")

        with self._mutating():
            try:
                count = self.store.import_documents(payload)
            except ValueError as e:
                raise InvalidActivity(f"Invalid export document: {e}") from e
            self._verify()
        logger.info("graph_imported", graph_id=self.graph_id, nodes=count)
        return count
