"""
Memory decay.

Refreshes the recency component of every live node's relevance score so
that scores fall continuously, not only on access. Decay never changes
access counts and never deletes anything.
"""

import threading
import time
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Callable, ContextManager, Optional

from spur_memory.config.settings import DecayCfg
from spur_memory.telemetry import get_logger
from .relevance import RelevanceScorer
from .store import NodeStore


logger = get_logger(__name__)

LockFactory = Callable[[], ContextManager]


@dataclass
class DecayResult:
    """Outcome of one decay pass."""

    decayed: int = 0
    failed: int = 0
    cancelled: bool = False
    duration_ms: float = 0.0


class DecayEngine:
    """
    Batched, cancellable rescoring of all live nodes.

    Running twice with the same `now` yields identical scores.
    """

    def __init__(self, scorer: RelevanceScorer, config: Optional[DecayCfg] = None):
        """
        Initialize decay engine.

        Args:
            scorer: Relevance scorer whose formula is applied
            config: Decay settings (batch size)
        """
        self.scorer = scorer
        self.config = config or DecayCfg()

    def run(
        self,
        store: NodeStore,
        now: float,
        cancel: Optional[threading.Event] = None,
        batch_lock: Optional[LockFactory] = None,
    ) -> DecayResult:
        """
        Apply decay to every live node.

        Args:
            store: Store to update
            now: Reference time for recency
            cancel: Checked between batches; a set event stops the pass
            batch_lock: Context manager factory held around each batch
                (the owning graph's mutation lock)

        Returns:
            DecayResult with counts of decayed and failed nodes
        """
        start = time.perf_counter()
        result = DecayResult()
        node_ids = store.live_ids()
        size = self.config.batch_size
        rescore = self.scorer.mutator(store, now)

        def mutator(node):
            # Archived between listing and this batch.
            if not node.archived:
                rescore(node)

        for offset in range(0, len(node_ids), size):
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                logger.info("decay_cancelled", processed=offset, remaining=len(node_ids) - offset)
                break

            batch = node_ids[offset:offset + size]
            with (batch_lock() if batch_lock is not None else nullcontext()):
                updated, failed = store.update_many(batch, mutator)

            result.decayed += len(updated)
            result.failed += len(failed)
            for node_id, error in failed.items():
                logger.warning("decay_node_failed", node_id=node_id, error=str(error))

        result.duration_ms = (time.perf_counter() - start) * 1000
        return result
