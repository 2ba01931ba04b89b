"""
Abstract document-store contract for memory graph persistence.

The graph store writes JSON documents under key prefixes:
- node:<id>
- edge:<kind>:<source_id>:<target_id>
- cluster:<id>

Any backend implementing get/put/delete/scan_prefix can be plugged in.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional, Tuple


class DocumentStore(ABC):
    """Key → JSON document storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the document for key, or None."""

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        """Insert or replace the document for key."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete key. Returns True if something was removed."""

    @abstractmethod
    def scan_prefix(self, prefix: str) -> Iterator[Tuple[str, str]]:
        """Yield (key, document) pairs whose key starts with prefix, in key order."""

    def put_many(self, items: List[Tuple[str, str]]) -> None:
        """Write several documents. Backends may override to batch."""
        for key, value in items:
            self.put(key, value)

    def close(self) -> None:
        """Release backend resources."""

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store, used by default and in tests."""

    def __init__(self):
        self._docs: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._docs.get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self._docs[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._docs.pop(key, None) is not None

    def scan_prefix(self, prefix: str) -> Iterator[Tuple[str, str]]:
        with self._lock:
            items = sorted((k, v) for k, v in self._docs.items() if k.startswith(prefix))
        yield from items

    def __len__(self) -> int:
        return len(self._docs)
