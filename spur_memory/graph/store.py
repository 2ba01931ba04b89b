"""
Node/Edge store for the memory graph.

Owns node, edge and cluster lifetime. Edges live in a side table keyed by
(kind, source_id, target_id) with an adjacency index, never inside nodes.

Secondary indexes:
- (type, created_at) sorted lists
- created_at sorted list
- cluster_id -> member ids
- live (non-archived) id set and unit-normalised embedding vectors

Every mutation is written through to a DocumentStore under the prefixes
documented in spur_memory.persist.base.
"""

import json
import threading
from bisect import bisect_left, insort
from collections import defaultdict
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional, Set, Tuple

import numpy as np

from spur_memory.errors import ConsistencyViolation, DuplicateId, InvalidActivity, NotFound
from spur_memory.persist.base import DocumentStore, InMemoryDocumentStore
from spur_memory.telemetry import get_logger
from .schemas import NODE_TYPES, Cluster, GraphSnapshot, MemoryEdge, MemoryNode


logger = get_logger(__name__)

NODE_PREFIX = "node:"
EDGE_PREFIX = "edge:"
CLUSTER_PREFIX = "cluster:"

EdgeKey = Tuple[str, str, str]
Mutator = Callable[[MemoryNode], Optional[MemoryNode]]

_IMMUTABLE_FIELDS = ("id", "created_at", "type", "embedding")


class ReadWriteLock:
    """
    Many concurrent readers or one writer.

    The writer may re-enter both write() and read(). Waiting writers block new
    readers so maintenance cannot be starved by a stream of queries.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer: Optional[int] = None
        self._writer_depth = 0
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._writer_depth += 1
                owned = True
            else:
                owned = False
                while self._writer is not None or self._waiting_writers:
                    self._cond.wait()
                self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                if owned:
                    self._writer_depth -= 1
                else:
                    self._readers -= 1
                    if self._readers == 0:
                        self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._writer_depth += 1
            else:
                self._waiting_writers += 1
                while self._writer is not None or self._readers:
                    self._cond.wait()
                self._waiting_writers -= 1
                self._writer = me
                self._writer_depth = 1
        try:
            yield
        finally:
            with self._cond:
                self._writer_depth -= 1
                if self._writer_depth == 0:
                    self._writer = None
                    self._cond.notify_all()


class NodeRow(NamedTuple):
    """Scalar view of a node used by ranking scans."""

    id: str
    type: str
    created_at: float
    last_accessed_at: float
    relevance_score: float
    archived: bool = False
    has_embedding: bool = False


def normalize_vector(vector: List[float]) -> np.ndarray:
    arr = np.asarray(vector, dtype=np.float64)
    norm = float(np.linalg.norm(arr))
    if norm == 0.0 or not np.isfinite(norm):
        return np.zeros_like(arr)
    return arr / norm


def _edge_doc_key(key: EdgeKey) -> str:
    kind, source_id, target_id = key
    return f"{EDGE_PREFIX}{kind}:{source_id}:{target_id}"


class NodeStore:
    """
    In-process store for memory nodes, edges and clusters.

    Reads copy data out under the read lock, so callers never observe a
    half-applied update and never hold references into store state.
    """

    def __init__(self, backend: Optional[DocumentStore] = None, embedding_dim: Optional[int] = None):
        """
        Initialize store.

        Args:
            backend: Document store to write through to (in-memory when None)
            embedding_dim: Fixed embedding dimension; inferred from the first
                embedded node when None
        """
        self.backend = backend if backend is not None else InMemoryDocumentStore()
        self._configured_dim = embedding_dim
        self.embedding_dim = embedding_dim
        self._lock = ReadWriteLock()
        self._reset()

    def _reset(self) -> None:
        self.embedding_dim = self._configured_dim
        self._nodes: Dict[str, MemoryNode] = {}
        self._vectors: Dict[str, np.ndarray] = {}
        self._edges: Dict[EdgeKey, MemoryEdge] = {}
        self._adjacency: Dict[str, Set[EdgeKey]] = defaultdict(set)
        self._clusters: Dict[str, Cluster] = {}
        self._by_type: Dict[str, List[Tuple[float, str]]] = {t: [] for t in NODE_TYPES}
        self._by_time: List[Tuple[float, str]] = []
        self._by_cluster: Dict[str, Set[str]] = defaultdict(set)
        self._live: Set[str] = set()

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _persist_node(self, node: MemoryNode) -> Tuple[str, str]:
        return f"{NODE_PREFIX}{node.id}", json.dumps(node.to_storage_dict())

    def _persist_cluster(self, cluster: Cluster) -> Tuple[str, str]:
        return f"{CLUSTER_PREFIX}{cluster.id}", json.dumps(cluster.model_dump(mode="json"))

    def _persist_edge(self, edge: MemoryEdge) -> Tuple[str, str]:
        return _edge_doc_key(edge.key), json.dumps(edge.model_dump(mode="json"))

    def load(self) -> int:
        """
        Rebuild in-memory state and indexes from the backend.

        Returns:
            Number of nodes loaded
        """
        with self._lock.write():
            self._reset()
            for _, value in self.backend.scan_prefix(NODE_PREFIX):
                self._index_node(MemoryNode.from_storage_dict(json.loads(value)))
            for _, value in self.backend.scan_prefix(CLUSTER_PREFIX):
                cluster = Cluster.model_validate(json.loads(value))
                self._clusters[cluster.id] = cluster
            for _, value in self.backend.scan_prefix(EDGE_PREFIX):
                self._index_edge(MemoryEdge.model_validate(json.loads(value)))
            count = len(self._nodes)

        logger.info("store_loaded", nodes=count, edges=len(self._edges), clusters=len(self._clusters))
        return count

    # ------------------------------------------------------------------
    # Index maintenance (caller holds the write lock)
    # ------------------------------------------------------------------

    def _check_dimension(self, node: MemoryNode) -> None:
        if node.embedding is None:
            return
        if self.embedding_dim is None:
            self.embedding_dim = len(node.embedding)
        elif len(node.embedding) != self.embedding_dim:
            raise InvalidActivity(
                f"Embedding for {node.id} has dimension {len(node.embedding)}, expected {self.embedding_dim}"
            )

    def _index_node(self, node: MemoryNode) -> None:
        self._check_dimension(node)
        self._nodes[node.id] = node
        entry = (node.created_at, node.id)
        insort(self._by_type[node.type], entry)
        insort(self._by_time, entry)
        if node.cluster_id is not None:
            self._by_cluster[node.cluster_id].add(node.id)
        if not node.archived:
            self._live.add(node.id)
        if node.embedding is not None:
            self._vectors[node.id] = normalize_vector(node.embedding)

    def _unindex_node(self, node: MemoryNode) -> None:
        entry = (node.created_at, node.id)
        for sorted_list in (self._by_type[node.type], self._by_time):
            i = bisect_left(sorted_list, entry)
            if i < len(sorted_list) and sorted_list[i] == entry:
                del sorted_list[i]
        if node.cluster_id is not None:
            members = self._by_cluster.get(node.cluster_id)
            if members is not None:
                members.discard(node.id)
                if not members:
                    del self._by_cluster[node.cluster_id]
        self._live.discard(node.id)
        self._vectors.pop(node.id, None)
        del self._nodes[node.id]

    def _reindex_node(self, old: MemoryNode, new: MemoryNode) -> None:
        for name in _IMMUTABLE_FIELDS:
            if getattr(old, name) != getattr(new, name):
                raise ConsistencyViolation([f"update changed immutable field {name!r} of {old.id}"])
        if not 0.0 <= new.relevance_score <= 1.0:
            raise ConsistencyViolation([f"relevance_score {new.relevance_score} out of range for {old.id}"])
        if new.access_count < 0:
            raise ConsistencyViolation([f"negative access_count for {old.id}"])

        if old.cluster_id != new.cluster_id:
            if old.cluster_id is not None:
                members = self._by_cluster.get(old.cluster_id, set())
                members.discard(old.id)
                if not members:
                    self._by_cluster.pop(old.cluster_id, None)
            if new.cluster_id is not None:
                self._by_cluster[new.cluster_id].add(new.id)
        if new.archived:
            self._live.discard(new.id)
        else:
            self._live.add(new.id)
        self._nodes[new.id] = new

    def _index_edge(self, edge: MemoryEdge) -> None:
        self._edges[edge.key] = edge
        self._adjacency[edge.source_id].add(edge.key)
        self._adjacency[edge.target_id].add(edge.key)

    def _drop_edge(self, key: EdgeKey) -> None:
        edge = self._edges.pop(key)
        for endpoint in (edge.source_id, edge.target_id):
            keys = self._adjacency.get(endpoint)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._adjacency[endpoint]

    # ------------------------------------------------------------------
    # Node CRUD
    # ------------------------------------------------------------------

    def insert(self, node: MemoryNode) -> str:
        """
        Store a new node.

        Raises:
            DuplicateId: id already present
            InvalidActivity: embedding dimension mismatch
        """
        with self._lock.write():
            if node.id in self._nodes:
                raise DuplicateId(node.id)
            node = node.model_copy(deep=True)
            self._index_node(node)
            self.backend.put(*self._persist_node(node))
        return node.id

    def get(self, node_id: str) -> MemoryNode:
        """Return a detached copy of a node. Raises NotFound."""
        with self._lock.read():
            node = self._nodes.get(node_id)
            if node is None:
                raise NotFound("node", node_id)
            return node.model_copy(deep=True)

    def exists(self, node_id: str) -> bool:
        with self._lock.read():
            return node_id in self._nodes

    def update(self, node_id: str, mutator: Mutator) -> MemoryNode:
        """
        Apply an atomic partial update.

        The mutator receives a working copy and either mutates it in place
        (returning None) or returns a replacement. Fields must be assigned,
        not mutated through nested references.

        Returns:
            Copy of the committed node

        Raises:
            NotFound: node absent
            ConsistencyViolation: mutator broke a node invariant
        """
        with self._lock.write():
            current = self._nodes.get(node_id)
            if current is None:
                raise NotFound("node", node_id)
            working = current.model_copy()
            result = mutator(working)
            new = result if result is not None else working
            self._reindex_node(current, new)
            self.backend.put(*self._persist_node(new))
            return new.model_copy(deep=True)

    def update_many(self, node_ids: Iterable[str], mutator: Mutator) -> Tuple[List[str], Dict[str, Exception]]:
        """
        Apply the same mutator to several nodes under one write lock.

        Missing nodes and per-node errors are reported, not raised;
        ConsistencyViolation still propagates.

        Returns:
            (updated ids, {node_id: error})
        """
        updated: List[str] = []
        failed: Dict[str, Exception] = {}
        docs: List[Tuple[str, str]] = []
        with self._lock.write():
            try:
                for node_id in node_ids:
                    current = self._nodes.get(node_id)
                    if current is None:
                        failed[node_id] = NotFound("node", node_id)
                        continue
                    working = current.model_copy()
                    try:
                        result = mutator(working)
                    except ConsistencyViolation:
                        raise
                    except Exception as e:  # noqa: BLE001 - reported per node
                        failed[node_id] = e
                        continue
                    new = result if result is not None else working
                    self._reindex_node(current, new)
                    docs.append(self._persist_node(new))
                    updated.append(node_id)
            finally:
                self.backend.put_many(docs)
        return updated, failed

    def delete(self, node_id: str) -> int:
        """
        Hard-delete a node, its edges and its cluster membership.

        An emptied cluster record is removed as well.

        Returns:
            Number of edges removed
        """
        with self._lock.write():
            node = self._nodes.get(node_id)
            if node is None:
                raise NotFound("node", node_id)

            edge_keys = list(self._adjacency.get(node_id, ()))
            for key in edge_keys:
                self._drop_edge(key)
                self.backend.delete(_edge_doc_key(key))

            if node.cluster_id is not None and node.cluster_id in self._clusters:
                cluster = self._clusters[node.cluster_id]
                cluster.member_ids.discard(node_id)
                if cluster.member_ids:
                    self.backend.put(*self._persist_cluster(cluster))
                else:
                    del self._clusters[cluster.id]
                    self.backend.delete(f"{CLUSTER_PREFIX}{cluster.id}")

            self._unindex_node(node)
            self.backend.delete(f"{NODE_PREFIX}{node_id}")
        return len(edge_keys)

    # ------------------------------------------------------------------
    # Indexed lookups
    # ------------------------------------------------------------------

    def _copies(self, entries: Iterable[Tuple[float, str]], include_archived: bool) -> List[MemoryNode]:
        nodes = []
        for _, node_id in entries:
            node = self._nodes[node_id]
            if include_archived or not node.archived:
                nodes.append(node.model_copy(deep=True))
        return nodes

    def list_by_type(self, node_type: str, include_archived: bool = False) -> List[MemoryNode]:
        """Nodes of one type ordered by created_at."""
        if node_type not in NODE_TYPES:
            raise ValueError(f"Unknown node type: {node_type}")
        with self._lock.read():
            return self._copies(self._by_type[node_type], include_archived)

    def list_since(self, since: float, include_archived: bool = False) -> List[MemoryNode]:
        """Nodes created at or after `since`, ordered by created_at."""
        with self._lock.read():
            start = bisect_left(self._by_time, (since, ""))
            return self._copies(self._by_time[start:], include_archived)

    def list_by_cluster(self, cluster_id: str) -> List[MemoryNode]:
        """Members of a cluster ordered by created_at."""
        with self._lock.read():
            members = self._by_cluster.get(cluster_id, set())
            entries = sorted((self._nodes[m].created_at, m) for m in members)
            return self._copies(entries, include_archived=True)

    def cluster_member_ids(self, cluster_id: str) -> List[str]:
        with self._lock.read():
            return sorted(self._by_cluster.get(cluster_id, ()))

    def live_ids(self) -> List[str]:
        """Ids of non-archived nodes, sorted."""
        with self._lock.read():
            return sorted(self._live)

    def archived_ids(self) -> List[str]:
        with self._lock.read():
            return sorted(set(self._nodes) - self._live)

    def count(self, live_only: bool = False) -> int:
        with self._lock.read():
            return len(self._live) if live_only else len(self._nodes)

    def rows(
        self,
        types: Optional[Iterable[str]] = None,
        since: Optional[float] = None,
        until: Optional[float] = None,
        live_only: bool = True,
    ) -> Tuple[List[NodeRow], Optional[np.ndarray]]:
        """
        Point-in-time scalar rows plus a matrix of unit vectors.

        Rows without an embedding get a zero vector. The matrix is None when
        no node carries an embedding yet.
        """
        with self._lock.read():
            if types is None:
                entries: Iterable[Tuple[float, str]] = self._by_time
            else:
                merged: List[Tuple[float, str]] = []
                for t in set(types):
                    merged.extend(self._by_type[t])
                entries = sorted(merged)

            rows: List[NodeRow] = []
            for created_at, node_id in entries:
                if since is not None and created_at < since:
                    continue
                if until is not None and created_at > until:
                    continue
                if live_only and node_id not in self._live:
                    continue
                node = self._nodes[node_id]
                rows.append(NodeRow(
                    node.id,
                    node.type,
                    node.created_at,
                    node.last_accessed_at,
                    node.relevance_score,
                    node.archived,
                    node_id in self._vectors,
                ))

            if self.embedding_dim is None:
                return rows, None
            matrix = np.zeros((len(rows), self.embedding_dim), dtype=np.float64)
            for i, row in enumerate(rows):
                vec = self._vectors.get(row.id)
                if vec is not None:
                    matrix[i] = vec
            return rows, matrix

    def unit_vector(self, node_id: str) -> Optional[np.ndarray]:
        """Unit-normalised embedding of a node (copy), or None."""
        with self._lock.read():
            if node_id not in self._nodes:
                raise NotFound("node", node_id)
            vec = self._vectors.get(node_id)
            return None if vec is None else vec.copy()

    def snapshot(self, limit: Optional[int] = None) -> GraphSnapshot:
        """Live nodes with their persisted relevance, best first."""
        with self._lock.read():
            ordered = sorted(
                (self._nodes[i] for i in self._live),
                key=lambda n: (-n.relevance_score, n.id),
            )
            if limit is not None:
                ordered = ordered[:limit]
            return GraphSnapshot(tuple((n.model_copy(deep=True), n.relevance_score) for n in ordered))

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def add_edge(self, edge: MemoryEdge) -> bool:
        """
        Insert or replace an edge.

        Best effort: a missing endpoint is logged and the edge skipped.

        Returns:
            True if stored
        """
        with self._lock.write():
            missing = [i for i in (edge.source_id, edge.target_id) if i not in self._nodes]
            if missing:
                logger.warning("edge_skipped_missing_endpoint", kind=edge.kind, missing=missing)
                return False
            edge = edge.model_copy()
            self._index_edge(edge)
            self.backend.put(*self._persist_edge(edge))
        return True

    def get_edge(self, kind: str, a: str, b: str) -> Optional[MemoryEdge]:
        key = (kind, min(a, b), max(a, b))
        with self._lock.read():
            edge = self._edges.get(key)
            return None if edge is None else edge.model_copy()

    def neighbors(self, node_id: str, kind: Optional[str] = None) -> List[MemoryEdge]:
        """
        Edges touching a node ordered by (weight desc, other endpoint id asc).

        Raises:
            NotFound: node absent
        """
        with self._lock.read():
            if node_id not in self._nodes:
                raise NotFound("node", node_id)
            edges = [
                self._edges[key]
                for key in self._adjacency.get(node_id, ())
                if kind is None or key[0] == kind
            ]
            edges.sort(key=lambda e: (-e.weight, e.other(node_id)))
            return [e.model_copy() for e in edges]

    def semantic_centrality(self, node_id: str) -> float:
        """Mean weight of a node's semantic edges (0.0 when it has none)."""
        with self._lock.read():
            weights = sorted(
                self._edges[key].weight
                for key in self._adjacency.get(node_id, ())
                if key[0] == "semantic"
            )
            if not weights:
                return 0.0
            return float(sum(weights) / len(weights))

    def edge_count(self, kind: Optional[str] = None) -> int:
        with self._lock.read():
            if kind is None:
                return len(self._edges)
            return sum(1 for key in self._edges if key[0] == kind)

    def all_edges(self) -> List[MemoryEdge]:
        with self._lock.read():
            return [self._edges[k].model_copy() for k in sorted(self._edges)]

    # ------------------------------------------------------------------
    # Clusters
    # ------------------------------------------------------------------

    def assign_to_cluster(self, node_id: str, cluster: Cluster) -> None:
        """
        Atomically store a cluster record that includes node_id and point
        the node at it.
        """
        with self._lock.write():
            current = self._nodes.get(node_id)
            if current is None:
                raise NotFound("node", node_id)
            if current.cluster_id is not None and current.cluster_id != cluster.id:
                raise ConsistencyViolation([f"node {node_id} already belongs to cluster {current.cluster_id}"])
            cluster = cluster.model_copy(deep=True)
            cluster.member_ids.add(node_id)
            self._clusters[cluster.id] = cluster

            new = current.model_copy()
            new.cluster_id = cluster.id
            self._reindex_node(current, new)
            self.backend.put_many([self._persist_cluster(cluster), self._persist_node(new)])

    def get_cluster(self, cluster_id: str) -> Cluster:
        with self._lock.read():
            cluster = self._clusters.get(cluster_id)
            if cluster is None:
                raise NotFound("cluster", cluster_id)
            return cluster.model_copy(deep=True)

    def clusters(self) -> List[Cluster]:
        """All clusters ordered by start_time."""
        with self._lock.read():
            ordered = sorted(self._clusters.values(), key=lambda c: (c.start_time, c.id))
            return [c.model_copy(deep=True) for c in ordered]

    def cluster_count(self) -> int:
        with self._lock.read():
            return len(self._clusters)

    # ------------------------------------------------------------------
    # Consistency
    # ------------------------------------------------------------------

    def verify(self, node_ids: Optional[Iterable[str]] = None) -> List[str]:
        """
        Check graph invariants.

        Args:
            node_ids: Restrict node-level checks to these ids (all when None)

        Returns:
            Human-readable problems (empty when consistent)
        """
        problems: List[str] = []
        with self._lock.read():
            ids = list(self._nodes) if node_ids is None else [i for i in node_ids if i in self._nodes]
            for node_id in ids:
                node = self._nodes[node_id]
                if not 0.0 <= node.relevance_score <= 1.0:
                    problems.append(f"node {node_id} relevance_score {node.relevance_score} out of range")
                if node.cluster_id is not None:
                    cluster = self._clusters.get(node.cluster_id)
                    if cluster is None:
                        problems.append(f"node {node_id} references missing cluster {node.cluster_id}")
                    elif node_id not in cluster.member_ids:
                        problems.append(f"cluster {cluster.id} does not contain member {node_id}")
                for key in self._adjacency.get(node_id, ()):
                    edge = self._edges.get(key)
                    if edge is None or edge.other(node_id) not in self._nodes:
                        problems.append(f"edge {key} of {node_id} is dangling")

            if node_ids is None:
                seen: Set[str] = set()
                for cluster in self._clusters.values():
                    if not cluster.member_ids:
                        problems.append(f"cluster {cluster.id} is empty")
                    for member in cluster.member_ids:
                        if member in seen:
                            problems.append(f"node {member} is in more than one cluster")
                        seen.add(member)
                        node = self._nodes.get(member)
                        if node is None:
                            problems.append(f"cluster {cluster.id} lists missing node {member}")
                        elif node.cluster_id != cluster.id:
                            problems.append(f"node {member} cluster_id does not match cluster {cluster.id}")
                ordered = sorted(self._clusters.values(), key=lambda c: c.start_time)
                for prev, nxt in zip(ordered, ordered[1:]):
                    if nxt.start_time <= prev.end_time:
                        problems.append(f"clusters {prev.id} and {nxt.id} overlap in time")
        return problems

    # ------------------------------------------------------------------
    # Bulk export / import
    # ------------------------------------------------------------------

    def export_documents(self) -> Dict[str, list]:
        """JSON-ready dump of every node, edge and cluster."""
        with self._lock.read():
            return {
                "nodes": [self._nodes[i].to_storage_dict() for i in sorted(self._nodes)],
                "edges": [self._edges[k].model_dump(mode="json") for k in sorted(self._edges)],
                "clusters": [
                    c.model_dump(mode="json") for c in sorted(self._clusters.values(), key=lambda c: c.start_time)
                ],
            }

    def import_documents(self, data: Dict[str, list]) -> int:
        """
        Replace the store contents with an export_documents() dump.

        The dump is indexed and verified in a staging store first; on any
        error the current contents and backend are left untouched.

        Returns:
            Number of nodes imported

        Raises:
            InvalidActivity: the dump is inconsistent (duplicate ids, dimension
                mismatch, dangling edges, broken cluster membership)
        """
        nodes = [MemoryNode.from_storage_dict(d) for d in data.get("nodes", [])]
        edges = [MemoryEdge.model_validate(d) for d in data.get("edges", [])]
        clusters = [Cluster.model_validate(d) for d in data.get("clusters", [])]

        staging = NodeStore(embedding_dim=self._configured_dim)
        docs: List[Tuple[str, str]] = []
        with staging._lock.write():
            for node in nodes:
                if node.id in staging._nodes:
                    raise InvalidActivity(f"Duplicate node {node.id} in export document")
                staging._index_node(node)
                docs.append(staging._persist_node(node))
            for cluster in clusters:
                staging._clusters[cluster.id] = cluster
                docs.append(staging._persist_cluster(cluster))
            for edge in edges:
                if edge.source_id not in staging._nodes or edge.target_id not in staging._nodes:
                    raise InvalidActivity(f"Edge {edge.key} references a missing node")
                staging._index_edge(edge)
                docs.append(staging._persist_edge(edge))

        problems = staging.verify()
        if problems:
            raise InvalidActivity(f"Inconsistent export document: {'; '.join(problems[:5])}")

        with self._lock.write():
            for prefix in (NODE_PREFIX, EDGE_PREFIX, CLUSTER_PREFIX):
                for key, _ in list(self.backend.scan_prefix(prefix)):
                    self.backend.delete(key)
            self._adopt(staging)
            self.backend.put_many(docs)
        return len(nodes)

    def _adopt(self, other: "NodeStore") -> None:
        """Take over another store's in-memory state (caller holds the write lock)."""
        self.embedding_dim = other.embedding_dim
        self._nodes = other._nodes
        self._vectors = other._vectors
        self._edges = other._edges
        self._adjacency = other._adjacency
        self._clusters = other._clusters
        self._by_type = other._by_type
        self._by_time = other._by_time
        self._by_cluster = other._by_cluster
        self._live = other._live
