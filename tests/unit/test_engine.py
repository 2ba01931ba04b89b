"""
Unit tests for MemoryGraph (ingest, query, tick and the supplementary API).

Tests:
- ingest(): ids, validation errors, clustering and semantic edges
- query(): round trip and access feedback
- tick(): decay half-life, pruning floor, history
- consistency halting
- related/archive/statistics/export/import
"""

import json
import threading
import time

import pytest

from spur_memory.config import GraphConfig
from spur_memory.errors import ConsistencyViolation, DuplicateId, InvalidActivity, NotFound
from spur_memory.graph import MemoryGraph
from spur_memory.persist import InMemoryDocumentStore


MINUTE = 60.0
HOUR = 3600.0
DAY = 24 * HOUR


# ============================================================================
# Ingestion
# ============================================================================

def test_ingest_returns_generated_id(graph, make_activity):
    node_id = graph.ingest(make_activity(0.0, [1.0, 0.0]), now=0.0)

    assert node_id.startswith("mem_")
    node = graph.get_node(node_id)
    assert node.type == "message"
    assert node.content.text == "standup notes"
    assert node.cluster_id is not None
    assert 0.0 < node.relevance_score <= 1.0


def test_ingest_accepts_caller_id(graph, make_activity):
    assert graph.ingest(make_activity(0.0, node_id="chosen")) == "chosen"


def test_ingest_duplicate_id(graph, make_activity):
    graph.ingest(make_activity(0.0, [1.0, 0.0], node_id="dup"))
    with pytest.raises(DuplicateId):
        graph.ingest(make_activity(5.0, [1.0, 0.0], node_id="dup"))
    assert graph.statistics().total_nodes == 1


@pytest.mark.parametrize("activity", [
    {"type": "message", "timestamp": 0.0},
    {"type": "video", "timestamp": 0.0, "content": {"text": "x"}},
    {"type": "browser", "timestamp": 0.0, "content": {"title": "no url"}},
    {"type": "message", "timestamp": 0.0, "content": {"text": "x"}, "embedding": []},
])
def test_ingest_rejects_malformed_activity(graph, activity):
    with pytest.raises(InvalidActivity):
        graph.ingest(activity)
    assert graph.statistics().total_nodes == 0


@pytest.mark.parametrize("timestamp, embedding", [
    (float("nan"), [1.0, 0.0]),
    (float("inf"), [1.0, 0.0]),
    (-float("inf"), None),
    (5.0, [float("nan"), 1.0]),
    (5.0, [1.0, float("inf")]),
])
def test_ingest_rejects_non_finite_values(graph, make_activity, timestamp, embedding):
    """Non-finite input is rejected before any mutation and never halts the graph."""
    graph.ingest(make_activity(0.0, [1.0, 0.0]))

    with pytest.raises(InvalidActivity):
        graph.ingest(make_activity(timestamp, embedding))

    assert graph.halted is False
    assert graph.statistics().total_nodes == 1
    graph.ingest(make_activity(10.0, [1.0, 0.0]))
    graph.check_consistency()


def test_non_finite_embedder_output_rejected(graph_config, make_activity):
    with MemoryGraph(config=graph_config, embedder=lambda content: [float("nan"), 1.0]) as graph:
        with pytest.raises(InvalidActivity):
            graph.ingest(make_activity(0.0))
        assert graph.halted is False
        assert graph.statistics().total_nodes == 0


def test_ingest_dimension_mismatch(graph, make_activity):
    graph.ingest(make_activity(0.0, [1.0, 0.0]))
    with pytest.raises(InvalidActivity):
        graph.ingest(make_activity(1.0, [1.0, 0.0, 0.0]))
    assert graph.statistics().total_nodes == 1
    graph.check_consistency()


def test_ingest_clusters_by_gap(graph, make_activity):
    """Activities at 0, 5 and 40 minutes form two sessions."""
    a = graph.ingest(make_activity(0.0))
    b = graph.ingest(make_activity(5 * MINUTE))
    c = graph.ingest(make_activity(40 * MINUTE))

    assert graph.get_node(a).cluster_id == graph.get_node(b).cluster_id
    assert graph.get_node(c).cluster_id != graph.get_node(a).cluster_id
    assert graph.statistics().clusters == 2
    assert graph.store.get_edge("temporal", a, b).weight == pytest.approx(1 / 6)


def test_ingest_links_similar_nodes(graph, make_activity):
    a = graph.ingest(make_activity(0.0, [1.0, 0.0]))
    b = graph.ingest(make_activity(DAY, [0.95, 0.05]))

    edge = graph.store.get_edge("semantic", a, b)
    assert edge is not None
    assert graph.explain(a, now=DAY).centrality == pytest.approx(edge.weight)


def test_embedder_fills_missing_embedding(graph_config, make_activity):
    seen = []

    def embedder(content):
        seen.append(content.text)
        return [1.0, 0.0]

    with MemoryGraph(config=graph_config, embedder=embedder) as g:
        node_id = g.ingest(make_activity(0.0, text="hello"))
        assert g.get_node(node_id).embedding == [1.0, 0.0]
    assert seen == ["hello"]


def test_failing_embedder_still_ingests(graph_config, make_activity):
    def embedder(content):
        raise TimeoutError("embedding service unavailable")

    with MemoryGraph(config=graph_config, embedder=embedder) as g:
        node_id = g.ingest(make_activity(0.0))
        assert g.get_node(node_id).embedding is None


def test_provider_timeout_does_not_fail_ingest(make_activity):
    """A slow similarity provider only costs the edge."""
    release = threading.Event()

    def provider(a, b):
        release.wait(5)
        return 1.0

    cfg = GraphConfig(semantic={"provider_timeout_s": 0.05}, pruning={"prune_on_ingest": False})
    g = MemoryGraph(config=cfg, similarity_fn=provider)
    try:
        g.ingest(make_activity(0.0, [1.0, 0.0]))
        g.ingest(make_activity(DAY, [1.0, 0.0]))
        assert g.statistics().edges_by_kind["semantic"] == 0
        assert g.statistics().total_nodes == 2
    finally:
        release.set()
        g.close()


# ============================================================================
# Query
# ============================================================================

def test_ingest_then_query_round_trip(graph, make_activity):
    """The just-ingested node is the top hit for its own embedding."""
    graph.ingest(make_activity(0.0, [0.0, 1.0, 0.0]), now=0.0)
    target = graph.ingest(make_activity(10.0, [0.2, 0.3, 0.9]), now=10.0)

    hits = graph.query({"embedding": [0.2, 0.3, 0.9]}, now=10.0)

    assert hits[0].node_id == target
    assert hits[0].similarity == pytest.approx(1.0)


def test_query_feeds_back_into_relevance(graph, make_activity):
    node_id = graph.ingest(make_activity(0.0, [1.0, 0.0]), now=0.0)

    graph.query({"embedding": [1.0, 0.0]}, now=HOUR)
    graph.query({"embedding": [1.0, 0.0]}, now=2 * HOUR)

    node = graph.get_node(node_id)
    assert node.access_count == 2
    assert node.last_accessed_at == 2 * HOUR


def test_query_excludes_archived(graph, make_activity):
    keep = graph.ingest(make_activity(0.0, [1.0, 0.0]))
    drop = graph.ingest(make_activity(DAY, [1.0, 0.0]))

    graph.archive(drop, now=DAY)

    assert [h.node_id for h in graph.query({"embedding": [1.0, 0.0]}, now=DAY)] == [keep]


def test_query_rejects_bad_context(graph):
    with pytest.raises(InvalidActivity):
        graph.query({"embedding": [1.0], "limit": 0})


@pytest.mark.parametrize("context", [
    {"embedding": [float("nan"), 0.0]},
    {"embedding": [1.0, 0.0], "since": float("nan")},
    {"embedding": [1.0, 0.0], "until": float("inf")},
    {"embedding": [1.0, 0.0], "min_score": float("nan")},
])
def test_query_rejects_non_finite_context(graph, make_activity, context):
    graph.ingest(make_activity(0.0, [1.0, 0.0]))

    with pytest.raises(InvalidActivity):
        graph.query(context, now=0.0)

    assert graph.halted is False


def test_record_access_updates_node(graph, make_activity):
    node_id = graph.ingest(make_activity(0.0, [1.0, 0.0]), now=0.0)

    node = graph.record_access(node_id, now=DAY)

    assert node.access_count == 1
    assert node.last_accessed_at == DAY
    assert graph.get_node(node_id).access_count == 1
    assert node.relevance_score == pytest.approx(graph.explain(node_id, now=DAY).score)
    with pytest.raises(NotFound):
        graph.record_access("ghost")


# ============================================================================
# Maintenance
# ============================================================================

def test_recency_halves_after_half_life(graph, make_activity):
    node_id = graph.ingest(make_activity(0.0), now=0.0)
    assert graph.explain(node_id, now=0.0).recency == pytest.approx(1.0)

    report = graph.tick(now=72 * HOUR)

    assert report.decayed == 1
    assert graph.explain(node_id, now=72 * HOUR).recency == pytest.approx(0.5, rel=1e-6)
    assert graph.get_node(node_id).relevance_score == pytest.approx(0.25, rel=1e-6)


def test_ingest_batch_prunes_to_floor(make_activity):
    """12 old nodes over a ceiling of 10 leave 9 live, 3 archived."""
    cfg = GraphConfig(pruning={"ceiling": 10, "load_factor": 0.9})
    with MemoryGraph(config=cfg) as g:
        ids = g.ingest_many(
            [make_activity(i * MINUTE, [1.0, float(i)]) for i in range(12)],
            now=30 * DAY,
        )
        stats = g.statistics()

    assert len(ids) == 12
    assert stats.live_nodes == 9
    assert stats.archived_nodes == 3


def test_tick_prunes_and_records_history(make_activity):
    cfg = GraphConfig(pruning={"ceiling": 10, "prune_on_ingest": False}, storage={"history_size": 2})
    with MemoryGraph(config=cfg) as g:
        for i in range(12):
            g.ingest(make_activity(i * MINUTE), now=i * MINUTE)
        assert g.statistics().live_nodes == 12

        g.tick(now=2 * DAY)
        g.tick(now=3 * DAY)
        report = g.tick(now=200 * DAY)

        assert list(g.maintenance_history)[-1] == report
        assert len(g.maintenance_history) == 2
        assert g.statistics().live_nodes == 9
        assert report.deleted == 3


def test_tick_cancelled(graph, make_activity):
    graph.ingest(make_activity(0.0))
    cancel = threading.Event()
    cancel.set()

    report = graph.tick(now=HOUR, cancel=cancel)

    assert report.cancelled is True
    assert report.decayed == 0


def test_tick_uses_clock(make_activity, graph_config):
    with MemoryGraph(config=graph_config, clock=lambda: 5 * HOUR) as g:
        g.ingest(make_activity(0.0))
        assert g.tick().now == 5 * HOUR


# ============================================================================
# Consistency
# ============================================================================

def test_violation_halts_mutations(graph, make_activity, monkeypatch):
    graph.ingest(make_activity(0.0, [1.0, 0.0]))
    monkeypatch.setattr(graph.store, "verify", lambda node_ids=None: ["orphaned cluster reference"])

    with pytest.raises(ConsistencyViolation) as exc_info:
        graph.ingest(make_activity(1.0, [1.0, 0.0]))
    assert exc_info.value.problems == ["orphaned cluster reference"]

    monkeypatch.undo()
    assert graph.halted is True
    with pytest.raises(ConsistencyViolation):
        graph.ingest(make_activity(2.0, [1.0, 0.0]))
    with pytest.raises(ConsistencyViolation):
        graph.tick(now=HOUR)
    with pytest.raises(ConsistencyViolation):
        graph.query({"embedding": [1.0, 0.0]})

    # Reads keep working.
    assert graph.statistics().total_nodes == 2


def test_check_consistency_on_corrupt_backend(make_node):
    backend = InMemoryDocumentStore()
    backend.put("node:a", json.dumps(make_node("a", cluster_id="missing").to_storage_dict()))

    g = MemoryGraph(backend=backend)
    with pytest.raises(ConsistencyViolation):
        g.check_consistency()
    assert g.halted is True


def test_healthy_graph_passes_check(graph, make_activity):
    for i in range(5):
        graph.ingest(make_activity(i * MINUTE, [1.0, i / 5]))
    graph.tick(now=DAY)
    graph.check_consistency()
    assert graph.halted is False


# ============================================================================
# Supplementary API
# ============================================================================

def test_related_returns_live_neighbours(graph, make_activity):
    a = graph.ingest(make_activity(0.0, [1.0, 0.0]))
    b = graph.ingest(make_activity(MINUTE, [1.0, 0.0]))
    c = graph.ingest(make_activity(2 * MINUTE, [0.0, 1.0]))

    semantic = graph.related(a, kind="semantic")
    assert [node.id for node, _ in semantic] == [b]

    graph.archive(b, now=0.0)
    assert [node.id for node, _ in graph.related(a)] == [c]

    with pytest.raises(NotFound):
        graph.related("ghost")


def test_archive_ignores_protection(graph, make_activity):
    node_id = graph.ingest(make_activity(0.0))

    node = graph.archive(node_id, now=1.0)

    assert node.archived is True
    assert node.archived_at == 1.0
    with pytest.raises(NotFound):
        graph.archive("ghost")


def test_statistics(graph, make_activity):
    graph.ingest(make_activity(0.0, [1.0, 0.0]))
    graph.ingest(make_activity(MINUTE, [1.0, 0.0], node_type="browser"))
    code = graph.ingest(make_activity(2 * MINUTE, [0.0, 1.0], node_type="code"))
    graph.archive(code, now=0.0)

    stats = graph.statistics()

    assert stats.total_nodes == 3
    assert stats.live_nodes == 2
    assert stats.archived_nodes == 1
    assert stats.type_distribution == {"message": 1, "browser": 1}
    assert stats.edges_by_kind == {"temporal": 3, "semantic": 1}
    assert stats.total_edges == 4
    assert stats.average_degree == pytest.approx(8 / 3)
    assert sum(stats.relevance_distribution.values()) == 2


def test_snapshot(graph, make_activity):
    for i in range(3):
        graph.ingest(make_activity(i * DAY), now=3 * DAY)
    snap = graph.snapshot(limit=2)
    assert len(snap) == 2
    scores = [score for _, score in snap]
    assert scores == sorted(scores, reverse=True)


def test_export_import_round_trip(graph, graph_config, make_activity):
    for i in range(4):
        graph.ingest(make_activity(i * MINUTE, [1.0, i / 4]))
    text = graph.export_json()

    with MemoryGraph(config=graph_config) as other:
        assert other.import_json(text) == 4
        assert json.loads(other.export_json())["nodes"] == json.loads(text)["nodes"]
        assert other.statistics() == graph.statistics()
        other.check_consistency()


def test_import_rejects_unknown_version(graph):
    with pytest.raises(InvalidActivity):
        graph.import_json(json.dumps({"version": 99, "nodes": []}))
    with pytest.raises(InvalidActivity):
        graph.import_json("not json")


def test_failed_import_keeps_previous_graph(graph_config, make_activity):
    """A rejected import leaves the in-memory graph and the backend unchanged."""
    backend = InMemoryDocumentStore()
    with MemoryGraph(config=graph_config, backend=backend, graph_id="graph_keep") as graph:
        graph.ingest(make_activity(0.0, [1.0, 0.0], node_id="keep1"))
        graph.ingest(make_activity(MINUTE, [0.9, 0.1], node_id="keep2"))
        before = graph.export_json()
        docs_before = len(backend)

        payload = json.loads(before)
        bad = dict(payload["nodes"][0], id="wide", embedding=[1.0, 0.0, 0.0], cluster_id=None)
        payload["nodes"].append(bad)

        with pytest.raises(InvalidActivity):
            graph.import_json(json.dumps(payload))

        assert graph.halted is False
        assert len(backend) == docs_before
        assert graph.export_json() == before
        graph.check_consistency()

    with MemoryGraph(config=graph_config, backend=backend, graph_id="graph_keep") as reopened:
        assert reopened.export_json() == before


def test_sqlite_backed_graph_survives_reopen(tmp_path, make_activity):
    cfg = GraphConfig(storage={"db_path": str(tmp_path / "memory.db")})
    with MemoryGraph(config=cfg) as g:
        node_id = g.ingest(make_activity(0.0, [1.0, 0.0]), now=0.0)
        g.query({"embedding": [1.0, 0.0]}, now=HOUR)

    with MemoryGraph(config=cfg) as reopened:
        node = reopened.get_node(node_id)
        assert node.access_count == 1
        assert node.embedding == [1.0, 0.0]
        reopened.check_consistency()


# ============================================================================
# Concurrency
# ============================================================================

def test_concurrent_ingest_query_and_tick(graph, make_activity):
    """Foreground and maintenance calls interleave without breaking invariants."""
    errors = []
    start = time.time()

    def ingest_task(worker):
        try:
            for i in range(25):
                graph.ingest(make_activity(worker * DAY + i * MINUTE, [1.0, worker, i / 25]), now=start)
        except Exception as e:
            errors.append(e)

    def query_task():
        try:
            for _ in range(25):
                graph.query({"embedding": [1.0, 0.0, 0.0], "limit": 5}, now=start)
        except Exception as e:
            errors.append(e)

    def tick_task():
        try:
            for _ in range(5):
                graph.tick(now=start)
        except Exception as e:
            errors.append(e)

    mismatched = []

    def stats_task():
        for _ in range(25):
            stats = graph.statistics()
            if stats.total_nodes != stats.live_nodes + stats.archived_nodes:
                mismatched.append(stats)
            if sum(stats.type_distribution.values()) != stats.live_nodes:
                mismatched.append(stats)

    threads = [threading.Thread(target=ingest_task, args=(w,)) for w in range(3)]
    threads += [
        threading.Thread(target=query_task),
        threading.Thread(target=tick_task),
        threading.Thread(target=stats_task),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert mismatched == []
    assert graph.statistics().total_nodes == 75
    graph.check_consistency()
