"""
Persistence layer for the memory graph.

Provides:
- Abstract document-store contract (get/put/delete/scan-by-prefix)
- In-memory backend
- SQLite backend (WAL mode)
"""

from .base import DocumentStore, InMemoryDocumentStore
from .sqlite_store import SQLiteDocumentStore

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "SQLiteDocumentStore",
]
