"""
Graph pruning.

Keeps the live node count bounded:
1. Above `ceiling`, archive the lowest-value unprotected nodes until the live
   count reaches floor(ceiling * load_factor).
2. Hard-delete nodes archived for longer than the retention horizon,
   cascading their edges and emptied clusters.
"""

import threading
import time
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import List, Optional

from spur_memory.config.settings import PruningCfg
from spur_memory.errors import NotFound
from spur_memory.telemetry import get_logger
from .decay import LockFactory
from .schemas import MemoryNode
from .store import NodeStore


logger = get_logger(__name__)


class _Skip(Exception):
    """Node no longer qualifies for archiving."""


@dataclass
class PruneResult:
    """Outcome of one pruning pass."""

    archived: int = 0
    deleted: int = 0
    failed: int = 0
    cancelled: bool = False
    archived_ids: List[str] = field(default_factory=list)
    deleted_ids: List[str] = field(default_factory=list)
    duration_ms: float = 0.0


class PruningEngine:
    """
    Archives and deletes low-value nodes.

    Archive order: relevance asc, then last_accessed_at asc, then id asc.
    Nodes accessed within the protected window are never archived.
    """

    def __init__(self, config: Optional[PruningCfg] = None):
        self.config = config or PruningCfg()

    def is_protected(self, node_last_accessed_at: float, now: float) -> bool:
        return now - node_last_accessed_at < self.config.protected_window_s

    def select_for_archive(self, store: NodeStore, now: float) -> List[str]:
        """
        Ids to archive so the live count drops to the target.

        Empty when the live count is within the ceiling. May return fewer
        than needed when too many nodes are protected.
        """
        rows, _ = store.rows(live_only=True)
        if len(rows) <= self.config.ceiling:
            return []

        excess = len(rows) - self.config.target_live
        eligible = [r for r in rows if not self.is_protected(r.last_accessed_at, now)]
        eligible.sort(key=lambda r: (r.relevance_score, r.last_accessed_at, r.id))
        selected = [r.id for r in eligible[:excess]]

        if len(selected) < excess:
            logger.warning(
                "prune_target_unreachable",
                live=len(rows),
                target=self.config.target_live,
                protected=len(rows) - len(eligible),
            )
        return selected

    def select_for_deletion(self, store: NodeStore, now: float) -> List[str]:
        """Archived nodes past the retention horizon."""
        expired = []
        for node_id in store.archived_ids():
            try:
                node = store.get(node_id)
            except NotFound:
                continue
            archived_at = node.archived_at if node.archived_at is not None else node.last_accessed_at
            if now - archived_at > self.config.retention_horizon_s:
                expired.append(node_id)
        return expired

    def _archive_mutator(self, now: float):
        def _archive(node: MemoryNode) -> None:
            if node.archived or self.is_protected(node.last_accessed_at, now):
                raise _Skip(node.id)
            node.archived = True
            node.archived_at = now

        return _archive

    def run(
        self,
        store: NodeStore,
        now: float,
        cancel: Optional[threading.Event] = None,
        batch_lock: Optional[LockFactory] = None,
    ) -> PruneResult:
        """
        Run one pruning pass (archive, then delete).

        Args:
            store: Store to prune
            now: Reference time
            cancel: Checked between batches; a set event stops the pass
            batch_lock: Context manager factory held around each batch

        Returns:
            PruneResult with archived/deleted/failed counts
        """
        start = time.perf_counter()
        result = PruneResult()
        size = self.config.batch_size
        lock = batch_lock if batch_lock is not None else nullcontext

        to_archive = self.select_for_archive(store, now)
        mutator = self._archive_mutator(now)
        for offset in range(0, len(to_archive), size):
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                break
            with lock():
                updated, failed = store.update_many(to_archive[offset:offset + size], mutator)
            result.archived_ids.extend(updated)
            for node_id, error in failed.items():
                if not isinstance(error, _Skip):
                    result.failed += 1
                    logger.warning("archive_node_failed", node_id=node_id, error=str(error))

        if not result.cancelled:
            to_delete = self.select_for_deletion(store, now)
            for offset in range(0, len(to_delete), size):
                if cancel is not None and cancel.is_set():
                    result.cancelled = True
                    break
                with lock():
                    for node_id in to_delete[offset:offset + size]:
                        try:
                            store.delete(node_id)
                        except NotFound as e:
                            result.failed += 1
                            logger.warning("delete_node_failed", node_id=node_id, error=str(e))
                            continue
                        result.deleted_ids.append(node_id)

        result.archived = len(result.archived_ids)
        result.deleted = len(result.deleted_ids)
        result.duration_ms = (time.perf_counter() - start) * 1000
        if result.cancelled:
            logger.info("prune_cancelled", archived=result.archived, deleted=result.deleted)
        return result
