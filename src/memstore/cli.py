"""
Command-line interface for memstore.

Sub-commands
------------
add     – Store a piece of text as a new memory record.
search  – Retrieve the best-scoring memories for a query.
recent  – List the newest memories, without scoring.
compact – Drop everything but the newest N memories.
count   – Print the number of stored memories.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time

from .config import resolve_config
from .errors import MemstoreError
from .intelligence import SECONDS_PER_DAY
from .memory import DEFAULT_KEEP, DEFAULT_RECENT_LIMIT, DEFAULT_SEARCH_LIMIT, MemoryManager
from .models import DEFAULT_KIND, DEFAULT_WEIGHT, Record

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 200


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="memstore",
        description="Local single-file memory store for AI agents.",
    )
    parser.add_argument(
        "--path",
        default=None,
        metavar="PATH",
        help="Store file (default: $MEMSTORE_PATH or memory/memories.bin). "
             "A .log or .txt suffix selects the text encoding.",
    )
    parser.add_argument(
        "--dim",
        type=int,
        default=None,
        metavar="N",
        help="Vector dimension for new stores; existing stores must match "
             "(default: $MEMSTORE_VECTOR_DIM, or 256 for new stores).",
    )
    parser.add_argument(
        "--no-conflict-check",
        action="store_true",
        help="Let the last writer win instead of failing on a concurrent save.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")

    sub = parser.add_subparsers(dest="command", required=True)

    # add
    p_add = sub.add_parser("add", help="Store text as a new memory.")
    p_add.add_argument("--text", default=None, help="Text to store (reads stdin if omitted).")
    p_add.add_argument("--kind", default=DEFAULT_KIND,
                       help=f"Category label, e.g. profile, state, summary, manual "
                            f"(default: {DEFAULT_KIND}).")
    p_add.add_argument("--weight", type=float, default=DEFAULT_WEIGHT, metavar="W",
                       help="Importance multiplier; use > 2.0 for 'remember this' "
                            f"(default: {DEFAULT_WEIGHT}).")

    # search
    p_search = sub.add_parser("search", help="Retrieve relevant memories.")
    p_search.add_argument("--query", required=True, help="Natural-language query.")
    p_search.add_argument("--limit", type=int, default=DEFAULT_SEARCH_LIMIT, metavar="N",
                          help=f"Number of results to return (default: {DEFAULT_SEARCH_LIMIT}).")
    p_search.add_argument("--json", action="store_true", dest="as_json",
                          help="Output results as JSON.")

    # recent
    p_recent = sub.add_parser("recent", help="List the newest memories.")
    p_recent.add_argument("--limit", type=int, default=DEFAULT_RECENT_LIMIT, metavar="N",
                          help=f"Number of records to show (default: {DEFAULT_RECENT_LIMIT}).")
    p_recent.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # compact
    p_compact = sub.add_parser("compact", help="Keep only the newest memories.")
    p_compact.add_argument("--keep", type=int, default=DEFAULT_KEEP, metavar="N",
                           help=f"Number of records to retain (default: {DEFAULT_KEEP}).")

    # count
    sub.add_parser("count", help="Print the number of stored memories.")

    return parser


def _snippet(text: str, limit: int = SNIPPET_CHARS) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."


def _format_age(ts: int, now: float) -> str:
    seconds = max(0, int(now) - ts)
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < SECONDS_PER_DAY:
        return f"{seconds // 3600}h"
    return f"{seconds / SECONDS_PER_DAY:.1f}d"


def _record_dict(record: Record) -> dict:
    return {
        "id": record.id,
        "ts": record.ts,
        "kind": record.kind,
        "weight": record.weight,
        "text": record.text,
    }


def _run(args: argparse.Namespace, manager: MemoryManager) -> int:
    now = time.time()

    if args.command == "add":
        text = args.text
        if text is None:
            text = sys.stdin.read()
        record = manager.add(text, kind=args.kind, weight=args.weight)
        print(record.id)

    elif args.command == "search":
        results = manager.search(args.query, limit=args.limit)
        if args.as_json:
            print(json.dumps(
                [dict(_record_dict(r.record), score=round(r.score, 4),
                      similarity=round(r.similarity, 4)) for r in results],
                indent=2, ensure_ascii=False,
            ))
            return 0
        if not results:
            print("No memories found.")
            return 0
        for r in results:
            rec = r.record
            print(f"{rec.id}\t{r.score:.3f}\t{rec.kind}\tw={rec.weight:g}\t"
                  f"{_format_age(rec.ts, now)}\t{_snippet(rec.text)}")

    elif args.command == "recent":
        records = manager.recent(limit=args.limit)
        if args.as_json:
            print(json.dumps([_record_dict(r) for r in records], indent=2, ensure_ascii=False))
            return 0
        if not records:
            print("No memories stored.")
            return 0
        for rec in records:
            print(f"{rec.id}\t{rec.kind}\tw={rec.weight:g}\t"
                  f"{_format_age(rec.ts, now)}\t{_snippet(rec.text)}")

    elif args.command == "compact":
        removed = manager.compact(keep=args.keep)
        print(f"Removed {removed} record(s); {manager.count()} remain.")

    elif args.command == "count":
        print(manager.count())

    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = resolve_config(
            path=args.path,
            vector_dim=args.dim,
            check_conflicts=False if args.no_conflict_check else None,
        )
        return _run(args, MemoryManager(config))
    except MemstoreError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc.describe()}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
