"""
Semantic similarity between memory nodes.

Candidate selection is an exact nearest-neighbour scan over unit-normalised
embeddings of live nodes (numpy), unioned with the node's cluster-mates.
Edge weights come from cosine similarity or from an injected provider.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

import numpy as np

from spur_memory.config.settings import SemanticCfg
from spur_memory.errors import TransientProviderFailure
from spur_memory.telemetry import get_logger
from .schemas import MemoryEdge
from .store import NodeStore, normalize_vector


logger = get_logger(__name__)

SimilarityFn = Callable[[Sequence[float], Sequence[float]], float]


def call_provider(
    fn: Callable[..., Any],
    *args: Any,
    executor: Optional[ThreadPoolExecutor] = None,
    timeout_s: Optional[float] = None,
    what: str = "provider",
) -> Any:
    """
    Call an external provider, bounded by a timeout when an executor is given.

    Raises:
        TransientProviderFailure: the call timed out or raised
    """
    if executor is None or timeout_s is None:
        try:
            return fn(*args)
        except Exception as e:
            raise TransientProviderFailure(f"{what} failed: {e}", e) from e

    future = executor.submit(fn, *args)
    try:
        return future.result(timeout=timeout_s)
    except FuturesTimeout as e:
        future.cancel()
        raise TransientProviderFailure(f"{what} timed out after {timeout_s}s", e) from e
    except Exception as e:
        raise TransientProviderFailure(f"{what} failed: {e}", e) from e


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero norm.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector shapes differ: {va.shape} vs {vb.shape}")
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


@dataclass
class Candidate:
    """A node considered for a semantic edge."""

    node_id: str
    similarity: float


@dataclass
class LinkResult:
    """Outcome of linking one node."""

    edges_added: int = 0
    provider_failures: int = 0
    touched_ids: List[str] = field(default_factory=list)


class SemanticLinker:
    """
    Creates semantic edges for newly ingested nodes.

    Scoring:
    - Candidates: same-cluster live members + top-K nearest live nodes
    - Order: (similarity desc, node id asc)
    - Edge when similarity > threshold, weight = similarity
    """

    def __init__(self, config: Optional[SemanticCfg] = None, similarity_fn: Optional[SimilarityFn] = None):
        """
        Initialize linker.

        Args:
            config: Semantic settings
            similarity_fn: Optional external similarity provider taking two raw
                embeddings; bounded by config.provider_timeout_s when set
        """
        self.config = config or SemanticCfg()
        self.similarity_fn = similarity_fn
        self._executor: Optional[ThreadPoolExecutor] = None
        if similarity_fn is not None and self.config.provider_timeout_s is not None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="similarity")

    def close(self) -> None:
        """Stop the provider worker threads."""
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def candidates(self, store: NodeStore, node_id: str) -> List[Candidate]:
        """
        Candidate neighbours of a node with their cosine similarity.

        Archived nodes and nodes without an embedding are never candidates,
        and a node without an embedding has no candidates.
        """
        vec = store.unit_vector(node_id)
        if vec is None:
            return []

        rows, matrix = store.rows(live_only=True)
        if matrix is None or not rows:
            return []

        sims = matrix @ vec
        index = {row.id: i for i, row in enumerate(rows) if row.has_embedding}

        ranked = sorted(
            (Candidate(row_id, clamp_unit(sims[i])) for row_id, i in index.items() if row_id != node_id),
            key=lambda c: (-c.similarity, c.node_id),
        )
        chosen = {c.node_id: c for c in ranked[: self.config.top_k]}

        node = store.get(node_id)
        if node.cluster_id is not None:
            for mate_id in store.cluster_member_ids(node.cluster_id):
                if mate_id != node_id and mate_id in index and mate_id not in chosen:
                    chosen[mate_id] = Candidate(mate_id, clamp_unit(sims[index[mate_id]]))

        return sorted(chosen.values(), key=lambda c: (-c.similarity, c.node_id))

    def _provider_similarity(self, a: Sequence[float], b: Sequence[float]) -> float:
        """Call the injected provider, bounded by the configured timeout."""
        value = call_provider(
            self.similarity_fn,
            a,
            b,
            executor=self._executor,
            timeout_s=self.config.provider_timeout_s,
            what="similarity provider",
        )
        return clamp_unit(value)

    def link(self, store: NodeStore, node_id: str, now: float) -> LinkResult:
        """
        Create semantic edges from a node to its qualifying candidates.

        Provider failures skip the affected edge and are logged; they never
        fail the ingestion.
        """
        result = LinkResult(touched_ids=[node_id])
        candidates = self.candidates(store, node_id)
        if not candidates:
            return result

        source_embedding = store.get(node_id).embedding if self.similarity_fn is not None else None

        for candidate in candidates:
            similarity = candidate.similarity
            if self.similarity_fn is not None:
                other = store.get(candidate.node_id).embedding
                try:
                    similarity = self._provider_similarity(source_embedding, other)
                except TransientProviderFailure as e:
                    result.provider_failures += 1
                    logger.warning(
                        "semantic_edge_skipped",
                        node_id=node_id,
                        candidate_id=candidate.node_id,
                        reason=str(e),
                    )
                    continue

            if similarity <= self.config.threshold:
                continue

            edge = MemoryEdge(
                source_id=node_id,
                target_id=candidate.node_id,
                kind="semantic",
                weight=similarity,
                computed_at=now,
            )
            if store.add_edge(edge):
                result.edges_added += 1
                result.touched_ids.append(candidate.node_id)

        logger.debug(
            "semantic_linked",
            node_id=node_id,
            candidates=len(candidates),
            edges=result.edges_added,
            provider_failures=result.provider_failures,
        )
        return result


def query_similarities(matrix: Optional[np.ndarray], embedding: Sequence[float], rows: int) -> np.ndarray:
    """
    Similarity of a query embedding against a matrix of unit vectors.

    Values are clamped to [0, 1]; a missing matrix or zero query gives zeros.
    """
    if matrix is None or rows == 0:
        return np.zeros(rows, dtype=np.float64)
    query = normalize_vector(list(embedding))
    if query.shape[0] != matrix.shape[1]:
        raise ValueError(f"Query embedding has dimension {query.shape[0]}, expected {matrix.shape[1]}")
    return np.clip(matrix @ query, 0.0, 1.0)
