"""
CLI utility for memory graph databases.

Usage:
    spur-memory-admin --db data/memory.db --stats
    spur-memory-admin --db data/memory.db --stats --top 10
    spur-memory-admin --db data/memory.db --tick
    spur-memory-admin --db data/memory.db --export backup.json
    spur-memory-admin --db data/memory.db --import backup.json
    spur-memory-admin --db data/memory.db --vacuum
"""

import argparse
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from spur_memory.config import GraphConfig, load_config
from spur_memory.errors import MemoryGraphError
from spur_memory.graph import MemoryGraph
from spur_memory.persist import SQLiteDocumentStore


def format_bytes(bytes_val: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "KB", "MB", "GB"]:
        if bytes_val < 1024:
            return f"{bytes_val:.1f} {unit}"
        bytes_val /= 1024
    return f"{bytes_val:.1f} TB"


def format_time(ts: float) -> str:
    """Format unix timestamp as human-readable string."""
    if not ts:
        return "never"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def _open_graph(db_path: Path, config: GraphConfig) -> MemoryGraph:
    return MemoryGraph(config=config, backend=SQLiteDocumentStore(db_path))


def show_stats(db_path: Path, config: GraphConfig, top: int = 5) -> int:
    """
    Print graph and storage statistics.

    Args:
        db_path: SQLite database holding the graph
        config: Graph configuration
        top: Number of highest-relevance live nodes to list
    """
    print(f"Memory graph: {db_path}\n")

    with _open_graph(db_path, config) as graph:
        stats = graph.statistics()
        storage = graph.store.backend.stats()
        snapshot = graph.snapshot(limit=top) if top > 0 else None

    print(f"{'Nodes':<22} {stats.total_nodes:>10,}")
    print(f"{'  live':<22} {stats.live_nodes:>10,}")
    print(f"{'  archived':<22} {stats.archived_nodes:>10,}")
    print(f"{'Edges':<22} {stats.total_edges:>10,}")
    for kind, count in sorted(stats.edges_by_kind.items()):
        print(f"{'  ' + kind:<22} {count:>10,}")
    print(f"{'Clusters':<22} {stats.clusters:>10,}")
    print(f"{'Average degree':<22} {stats.average_degree:>10.2f}")
    print(f"{'Average relevance':<22} {stats.average_relevance:>10.3f}")
    print()

    print(f"{'Type':<15} {'Live':>10}")
    print("=" * 26)
    for node_type, count in sorted(stats.type_distribution.items()):
        print(f"{node_type:<15} {count:>10,}")
    print()

    print(f"{'Relevance':<15} {'Live':>10}")
    print("=" * 26)
    for bucket in ("high", "medium", "low"):
        print(f"{bucket:<15} {stats.relevance_distribution.get(bucket, 0):>10,}")
    print()

    if snapshot:
        print(f"{'Score':>6}  {'Type':<8} Memory")
        print("=" * 60)
        for node, score in snapshot:
            print(f"{score:>6.3f}  {node.type:<8} {node.content.snippet(44)}")
        print()

    print(
        f"Storage: {storage['count']:,} documents, {format_bytes(storage['total_bytes'])}, "
        f"oldest {format_time(storage['oldest_ts'])}, newest {format_time(storage['newest_ts'])}"
    )
    return 0


def run_tick(db_path: Path, config: GraphConfig, now: Optional[float]) -> int:
    """Run one decay and pruning pass."""
    with _open_graph(db_path, config) as graph:
        report = graph.tick(now)

    print(f"Tick at {format_time(report.now)}")
    print(f"   decayed   {report.decayed:>10,}")
    print(f"   archived  {report.archived:>10,}")
    print(f"   deleted   {report.deleted:>10,}")
    print(f"   failed    {report.failed:>10,}")
    print(f"   took      {report.duration_ms:>10.1f} ms")
    return 1 if report.failed else 0


def export_graph(db_path: Path, config: GraphConfig, out_path: Path) -> int:
    """Write the whole graph to a JSON file."""
    with _open_graph(db_path, config) as graph:
        text = graph.export_json(indent=2)
        count = graph.store.count()
    out_path.write_text(text, encoding="utf-8")
    print(f"Exported {count:,} nodes to {out_path}")
    return 0


def import_graph(db_path: Path, config: GraphConfig, in_path: Path) -> int:
    """Replace the graph contents with a JSON export."""
    if not in_path.exists():
        print(f"Export file not found: {in_path}")
        return 1
    with _open_graph(db_path, config) as graph:
        count = graph.import_json(in_path.read_text(encoding="utf-8"))
    print(f"Imported {count:,} nodes from {in_path}")
    return 0


def vacuum_db(db_path: Path) -> int:
    """Reclaim space after deletions."""
    with SQLiteDocumentStore(db_path) as store:
        before = store.stats()["total_bytes"]
        store.vacuum()
    print(f"Vacuumed {db_path} ({format_bytes(before)} of documents)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Manage a memory graph database (stats, maintenance, export/import)"
    )
    parser.add_argument("--db", type=Path, required=True, help="SQLite database path")
    parser.add_argument("--config", type=Path, help="JSON graph config (defaults when omitted)")
    parser.add_argument("--stats", action="store_true", help="Show graph statistics")
    parser.add_argument("--top", type=int, default=5, metavar="N",
                        help="With --stats, list the N most relevant memories (0 to skip)")
    parser.add_argument("--tick", action="store_true", help="Run one decay + pruning pass")
    parser.add_argument("--now", type=float, help="Reference unix time for --tick (default: current time)")
    parser.add_argument("--export", type=Path, metavar="FILE", help="Export the graph to a JSON file")
    parser.add_argument("--import", dest="import_file", type=Path, metavar="FILE",
                        help="Replace the graph with a JSON export")
    parser.add_argument("--vacuum", action="store_true", help="Vacuum the database")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not (args.stats or args.tick or args.export or args.import_file or args.vacuum):
        parser.print_help()
        print("\nError: specify at least one of --stats, --tick, --export, --import, --vacuum")
        return 1

    if not args.db.exists() and not args.import_file:
        print(f"Database not found: {args.db}")
        return 1

    try:
        config = load_config(args.config) if args.config else GraphConfig()

        exit_code = 0
        if args.import_file:
            exit_code |= import_graph(args.db, config, args.import_file)
        if args.tick:
            exit_code |= run_tick(args.db, config, args.now)
        if args.stats:
            exit_code |= show_stats(args.db, config, args.top)
        if args.export:
            exit_code |= export_graph(args.db, config, args.export)
        if args.vacuum:
            exit_code |= vacuum_db(args.db)
    except MemoryGraphError as e:
        print(f"Error: {e}")
        return 1

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
