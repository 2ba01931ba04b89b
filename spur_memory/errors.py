"""
Error taxonomy for the memory graph engine.

Callers of ingest/query see one of these kinds; maintenance ticks count
per-node failures instead of raising.
"""

from typing import Optional


class MemoryGraphError(Exception):
    """Base class for all memory graph errors."""


class NotFound(MemoryGraphError):
    """A referenced node, edge or cluster id is absent."""

    def __init__(self, kind: str, ref: str):
        self.kind = kind
        self.ref = ref
        super().__init__(f"{kind} not found: {ref}")


class DuplicateId(MemoryGraphError):
    """Ingestion collision; the caller must retry with a new id."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node id already present: {node_id}")


class InvalidConfiguration(MemoryGraphError):
    """Out-of-range weights or thresholds. Fatal at startup."""


class InvalidActivity(MemoryGraphError):
    """Malformed activity record (e.g. embedding dimension mismatch)."""


class TransientProviderFailure(MemoryGraphError):
    """Embedding/similarity provider timed out or failed for one call."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class ConsistencyViolation(MemoryGraphError):
    """
    An internal invariant check failed.

    The owning graph instance stops accepting mutations once this is raised.
    """

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        summary = "; ".join(self.problems[:5])
        if len(self.problems) > 5:
            summary += f" (+{len(self.problems) - 5} more)"
        super().__init__(f"Memory graph consistency violation: {summary}")
