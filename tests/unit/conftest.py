"""
Shared fixtures for unit tests.
"""
import pytest

from spur_memory.persist import InMemoryDocumentStore, SQLiteDocumentStore


@pytest.fixture
def sqlite_docs(tmp_path):
    """Create a temporary SQLiteDocumentStore instance."""
    db_path = tmp_path / "memory.db"
    docs = SQLiteDocumentStore(db_path)
    yield docs
    docs.close()


@pytest.fixture(params=["memory", "sqlite"])
def docs(request, tmp_path):
    """Every DocumentStore backend, for contract tests."""
    if request.param == "memory":
        yield InMemoryDocumentStore()
        return
    backend = SQLiteDocumentStore(tmp_path / "contract.db")
    yield backend
    backend.close()
