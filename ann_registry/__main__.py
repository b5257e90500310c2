"""
ann_registry CLI Entrypoint

Commands:
    ann-registry inspect PATH                     Print dump statistics as JSON
    ann-registry query PATH --k K --vector 1,2,3  Print nearest labels
    ann-registry demo                             Run the three-vector example
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import NoReturn, Optional, Sequence

from ann_registry.core.config import RegistryConfig
from ann_registry.observability.logging import LogLevel, setup_logging

DEMO_VECTORS = (
    ("id", [1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0]),
    ("id2", [2.0, 2.0, 2.0, 2.0, 1.0, 1.0, 1.0, 1.0]),
    ("id3", [0.0, 0.0, 0.0, 0.0, 1.0, 1.0, 1.0, 1.0]),
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ann-registry",
        description="Named HNSW vector indexes: inspect and query dump files",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )
    parser.add_argument(
        "--log-level",
        choices=[level.name for level in LogLevel],
        default=None,
        help="Minimum log level (default: ANN_REGISTRY_LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=None,
        help="Emit logs as JSON lines on stderr (default: ANN_REGISTRY_LOG_JSON)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # inspect command
    inspect_parser = subparsers.add_parser("inspect", help="Show statistics of a dump file")
    inspect_parser.add_argument("path", help="Path to an index dump")

    # query command
    query_parser = subparsers.add_parser("query", help="Search a dump file")
    query_parser.add_argument("path", help="Path to an index dump")
    query_parser.add_argument(
        "--k", "-k",
        type=int,
        default=10,
        help="Number of neighbors (default: 10)",
    )
    query_parser.add_argument(
        "--vector",
        required=True,
        help="Comma-separated query components, e.g. 1,0.5,0",
    )
    query_parser.add_argument(
        "--ef",
        type=int,
        default=None,
        help="Search beam width (default: index config)",
    )

    # demo command
    subparsers.add_parser("demo", help="Build and search a three-vector index")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> NoReturn:
    """Main CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    config_result = RegistryConfig.from_env()
    config = config_result.unwrap_or(RegistryConfig())
    setup_logging(
        LogLevel.from_name(args.log_level or config.log_level),
        json_output=config.log_json if args.json_logs is None else args.json_logs,
    )
    if config_result.is_err():
        print(f"warning: {config_result.error}; using defaults", file=sys.stderr)

    if args.command == "inspect":
        sys.exit(_run_inspect(args, config))
    if args.command == "query":
        sys.exit(_run_query(args, config))
    if args.command == "demo":
        sys.exit(_run_demo(config))

    parser.print_help()
    sys.exit(0)


def _get_version() -> str:
    """Get package version."""
    try:
        from ann_registry import __version__
        return __version__
    except ImportError:
        return "0.0.0-unknown"


def _run_inspect(args: argparse.Namespace, config: RegistryConfig) -> int:
    from ann_registry.index.hnsw import HNSWIndex

    loaded = HNSWIndex.load(args.path, config.hnsw)
    if loaded.is_err():
        print(f"error: {loaded.error}", file=sys.stderr)
        return 1

    stats = loaded.unwrap().stats()
    print(json.dumps(stats.to_dict(), indent=2))
    return 0


def _run_query(args: argparse.Namespace, config: RegistryConfig) -> int:
    from ann_registry.index.hnsw import HNSWIndex

    try:
        query = [float(part) for part in args.vector.split(",") if part.strip()]
    except ValueError:
        print(f"error: invalid vector {args.vector!r}", file=sys.stderr)
        return 1

    loaded = HNSWIndex.load(args.path, config.hnsw)
    if loaded.is_err():
        print(f"error: {loaded.error}", file=sys.stderr)
        return 1

    index = loaded.unwrap()
    if not index.is_built:
        print("error: index has not been built", file=sys.stderr)
        return 1

    hits = index.search_with_distances(query, args.k, args.ef)
    if hits.is_err():
        print(f"error: {hits.error}", file=sys.stderr)
        return 1

    print(json.dumps([hit.to_dict() for hit in hits.unwrap()], indent=2))
    return 0


def _run_demo(config: RegistryConfig) -> int:
    from ann_registry.registry import IndexRegistry

    registry = IndexRegistry(RegistryConfig(hnsw=config.hnsw, metrics_enabled=False))
    registry.create("demo", dimension=8)
    for label, vector in DEMO_VECTORS:
        registry.add("demo", vector, label)

    status = registry.build("demo", "euclidean")
    print(f"build: {status}")
    if status != "Ok":
        return 1

    query = DEMO_VECTORS[0][1]
    hits = registry.search_hits("demo", 3, query).unwrap()
    for hit in hits:
        print(f"{hit.rank}\t{hit.label}\t{hit.distance:.6f}")
    return 0


if __name__ == "__main__":
    main()
