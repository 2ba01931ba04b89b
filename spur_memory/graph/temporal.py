"""
Temporal clustering of memory nodes into sessions.

Sliding-gap rule: a node joins the latest cluster when it arrives within
`gap_threshold_s` of that cluster's end; otherwise a new cluster opens.
Clusters never merge retroactively and their time ranges never overlap.
"""

import uuid
from bisect import bisect_right
from dataclasses import dataclass
from typing import List, Optional

from spur_memory.config.settings import TemporalCfg
from spur_memory.telemetry import get_logger
from .schemas import Cluster, MemoryEdge
from .store import NodeStore


logger = get_logger(__name__)


def temporal_weight(gap_s: float) -> float:
    """Edge weight for two nodes `gap_s` seconds apart: 1 / (1 + minutes)."""
    return 1.0 / (1.0 + abs(gap_s) / 60.0)


def new_cluster_id() -> str:
    return f"clu_{uuid.uuid4().hex[:12]}"


@dataclass
class ClusterAssignment:
    """Where a node landed and what changed."""

    cluster_id: str
    created: bool
    edges_added: int
    touched_ids: List[str]


class TemporalClusterer:
    """
    Assigns newly ingested nodes to session clusters.

    Holds no state of its own: cluster records live in the NodeStore.
    """

    def __init__(self, config: Optional[TemporalCfg] = None):
        """
        Initialize clusterer.

        Args:
            config: Temporal settings (defaults: 30 minute gap)
        """
        self.config = config or TemporalCfg()

    def _locate(self, clusters: List[Cluster], ts: float) -> Optional[Cluster]:
        """Cluster a timestamp belongs to under the sliding-gap rule, if any."""
        if not clusters:
            return None

        starts = [c.start_time for c in clusters]
        i = bisect_right(starts, ts) - 1
        if i >= 0 and clusters[i].contains_time(ts):
            return clusters[i]

        latest = clusters[-1]
        if ts > latest.end_time and ts - latest.end_time <= self.config.gap_threshold_s:
            return latest

        # Out-of-order arrival outside every range gets its own cluster.
        return None

    def assign(self, store: NodeStore, node_id: str, now: Optional[float] = None) -> ClusterAssignment:
        """
        Place a node into a cluster and link it to its cluster-mates.

        Args:
            store: Store holding the node
            node_id: Node to place (must not already be clustered)
            now: Edge computation time (the node timestamp when None)

        Returns:
            ClusterAssignment with the cluster id and nodes touched by new edges
        """
        node = store.get(node_id)
        ts = node.created_at
        target = self._locate(store.clusters(), ts)

        if target is None:
            cluster = Cluster(id=new_cluster_id(), start_time=ts, end_time=ts)
            created = True
        else:
            cluster = target
            cluster.start_time = min(cluster.start_time, ts)
            cluster.end_time = max(cluster.end_time, ts)
            created = False

        mates = sorted(cluster.member_ids)
        store.assign_to_cluster(node_id, cluster)

        edges_added = 0
        touched = [node_id]
        for mate_id in mates:
            mate = store.get(mate_id)
            edge = MemoryEdge(
                source_id=node_id,
                target_id=mate_id,
                kind="temporal",
                weight=temporal_weight(ts - mate.created_at),
                computed_at=ts if now is None else now,
            )
            if store.add_edge(edge):
                edges_added += 1
                touched.append(mate_id)

        logger.debug(
            "node_clustered",
            node_id=node_id,
            cluster_id=cluster.id,
            created=created,
            members=len(mates) + 1,
            temporal_edges=edges_added,
        )
        return ClusterAssignment(cluster.id, created, edges_added, touched)

    @staticmethod
    def max_internal_gap(store: NodeStore, cluster_id: str) -> float:
        """Largest gap between consecutive members of a cluster, in seconds."""
        times = [n.created_at for n in store.list_by_cluster(cluster_id)]
        if len(times) < 2:
            return 0.0
        return max(b - a for a, b in zip(times, times[1:]))
