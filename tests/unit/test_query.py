"""
Unit tests for the query engine (blended ranking and access feedback).
"""

from contextlib import contextmanager

import pytest

from spur_memory.config import QueryCfg
from spur_memory.errors import InvalidActivity
from spur_memory.graph import QueryContext, QueryEngine, RelevanceScorer


def _engine(**cfg):
    return QueryEngine(RelevanceScorer(), QueryCfg(**cfg))


def test_blended_score(store, make_node):
    """score = 0.4 * relevance + 0.6 * similarity."""
    store.insert(make_node("a", embedding=[1.0, 0.0], relevance_score=0.5))
    store.insert(make_node("b", embedding=[0.0, 1.0], relevance_score=1.0))

    ranked = _engine().rank(store, QueryContext(embedding=[1.0, 0.0]))

    assert [r.row.id for r in ranked] == ["a", "b"]
    assert ranked[0].score == pytest.approx(0.4 * 0.5 + 0.6 * 1.0)
    assert ranked[1].score == pytest.approx(0.4)


def test_filters(store, make_node):
    store.insert(make_node("m_old", created_at=10.0, embedding=[1.0, 0.0]))
    store.insert(make_node("m_new", created_at=100.0, embedding=[1.0, 0.0]))
    store.insert(make_node("code", created_at=100.0, embedding=[1.0, 0.0], node_type="code"))
    store.insert(make_node("gone", created_at=100.0, embedding=[1.0, 0.0], archived=True))
    engine = _engine()

    by_type = engine.rank(store, QueryContext(embedding=[1.0, 0.0], type_filter="message"))
    assert sorted(r.row.id for r in by_type) == ["m_new", "m_old"]

    by_time = engine.rank(store, QueryContext(embedding=[1.0, 0.0], since=50.0, until=200.0))
    assert sorted(r.row.id for r in by_time) == ["code", "m_new"]


def test_ties_broken_by_last_access_then_id(store, make_node):
    store.insert(make_node("b", embedding=[1.0, 0.0], last_accessed_at=5.0))
    store.insert(make_node("a", embedding=[1.0, 0.0], last_accessed_at=5.0))
    store.insert(make_node("c", embedding=[1.0, 0.0], last_accessed_at=9.0))

    ranked = _engine().rank(store, QueryContext(embedding=[2.0, 0.0]))

    assert [r.row.id for r in ranked] == ["c", "a", "b"]


def test_limit_and_min_score(store, make_node):
    for i in range(15):
        store.insert(make_node(f"n{i:02d}", embedding=[1.0, i / 10]))
    engine = _engine(default_limit=10)

    assert len(engine.rank(store, QueryContext(embedding=[1.0, 0.0]))) == 10
    assert len(engine.rank(store, QueryContext(embedding=[1.0, 0.0], limit=3))) == 3

    strict = engine.rank(store, QueryContext(embedding=[1.0, 0.0], limit=50, min_score=0.55))
    assert strict
    assert all(r.score >= 0.55 for r in strict)
    assert len(strict) < 15


def test_dimension_mismatch(store, make_node):
    store.insert(make_node("a", embedding=[1.0, 0.0]))
    with pytest.raises(InvalidActivity):
        _engine().rank(store, QueryContext(embedding=[1.0, 0.0, 0.0]))


def test_empty_store(store):
    assert _engine().search(store, QueryContext(embedding=[1.0]), now=0.0) == []


def test_search_records_access(store, make_node):
    """Returned nodes count an access; the hit carries the ranking-time score."""
    store.insert(make_node("a", created_at=0.0, embedding=[1.0, 0.0], relevance_score=0.3))
    store.insert(make_node("b", created_at=0.0, embedding=[0.0, 1.0]))

    hits = _engine().search(store, QueryContext(embedding=[1.0, 0.0], limit=1), now=60.0)

    assert [h.node_id for h in hits] == ["a"]
    assert hits[0].relevance_score == 0.3
    assert hits[0].content.text == "note a"
    node = store.get("a")
    assert node.access_count == 1
    assert node.last_accessed_at == 60.0
    assert node.relevance_score != 0.3
    assert store.get("b").access_count == 0


def test_search_holds_feedback_lock(store, make_node):
    store.insert(make_node("a", embedding=[1.0]))
    entered = []

    @contextmanager
    def lock():
        entered.append(True)
        yield

    _engine().search(store, QueryContext(embedding=[1.0]), now=0.0, feedback_lock=lock)

    assert entered == [True]
