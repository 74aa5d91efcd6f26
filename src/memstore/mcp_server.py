"""
MCP (Model Context Protocol) server for memstore.

Exposes the MemoryManager as a set of agent tools so that an assistant can
persist and recall memories across sessions.

Run as a stdio server:
    python -m memstore.mcp_server

Or via the installed entry-point:
    memstore-mcp

Configuration comes from the same environment variables as the CLI
(MEMSTORE_PATH, MEMSTORE_VECTOR_DIM, MEMSTORE_CONFLICT_CHECK).
"""

from __future__ import annotations

import json
import time

from mcp.server.fastmcp import FastMCP

from .config import resolve_config
from .errors import MemstoreError
from .intelligence import SECONDS_PER_DAY
from .memory import DEFAULT_KEEP, DEFAULT_RECENT_LIMIT, DEFAULT_SEARCH_LIMIT, MemoryManager
from .models import DEFAULT_KIND, DEFAULT_WEIGHT

# Lazily initialised so importing the module never touches the environment.
_manager: MemoryManager | None = None


def _get_manager() -> MemoryManager:
    global _manager
    if _manager is None:
        _manager = MemoryManager(resolve_config())
    return _manager


# ---------------------------------------------------------------------------
# FastMCP server
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "memstore",
    instructions=(
        "Long-term local memory for the agent. "
        "Use `add_memory` to save one short, self-contained fact per call "
        "(who/what/when in plain words, no pronouns that depend on the "
        "conversation). Use kind 'profile' for stable user facts, 'state' "
        "for ongoing tasks, 'summary' for session summaries. Give a weight "
        "above 2.0 to anything the user explicitly asked you to remember. "
        "Use `search_memories` at the start of a session or whenever past "
        "context might help. Use `recent_memories` to see the latest entries "
        "and `compact_memories` to cap the store size."
    ),
)


def _error(exc: MemstoreError) -> str:
    return f"Error: {exc.describe()}"


@mcp.tool()
def add_memory(
    text: str,
    kind: str = DEFAULT_KIND,
    weight: float = DEFAULT_WEIGHT,
) -> str:
    """
    Store a memory for later retrieval.

    Args:
        text:   The fact, preference, decision or summary to remember.
        kind:   Category label (profile, state, summary, manual, ...).
        weight: Importance multiplier; above 2.0 means "always remember".

    Returns:
        A confirmation message with the new record ID.
    """
    try:
        record = _get_manager().add(text, kind=kind, weight=weight)
    except MemstoreError as exc:
        return _error(exc)
    return f"Stored memory {record.id}."


@mcp.tool()
def search_memories(query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> str:
    """
    Retrieve the memories that best match a natural-language query.

    Results are ranked by similarity plus half the stored weight plus a
    recency bonus that fades over days.

    Args:
        query: Question or topic to search for.
        limit: Maximum number of memories to return.

    Returns:
        JSON array of memories with id, kind, weight, score, age_days, text.
    """
    try:
        results = _get_manager().search(query, limit=limit)
    except MemstoreError as exc:
        return _error(exc)
    if not results:
        return "No memories found."

    now = time.time()
    return json.dumps(
        [
            {
                "id": r.record.id,
                "kind": r.record.kind,
                "weight": r.record.weight,
                "score": round(r.score, 4),
                "age_days": round(max(0.0, now - r.record.ts) / SECONDS_PER_DAY, 2),
                "text": r.record.text,
            }
            for r in results
        ],
        indent=2,
        ensure_ascii=False,
    )


@mcp.tool()
def recent_memories(limit: int = DEFAULT_RECENT_LIMIT) -> str:
    """
    List the most recently stored memories, newest first (no ranking).

    Args:
        limit: Maximum number of entries to return.

    Returns:
        JSON array of memories with id, ts, kind, weight and text.
    """
    try:
        records = _get_manager().recent(limit=limit)
    except MemstoreError as exc:
        return _error(exc)
    if not records:
        return "No memories stored."
    return json.dumps(
        [
            {"id": r.id, "ts": r.ts, "kind": r.kind, "weight": r.weight, "text": r.text}
            for r in records
        ],
        indent=2,
        ensure_ascii=False,
    )


@mcp.tool()
def compact_memories(keep: int = DEFAULT_KEEP) -> str:
    """
    Permanently drop all but the newest *keep* memories.

    Args:
        keep: Number of memories to retain.

    Returns:
        A message with the number of memories removed.
    """
    try:
        removed = _get_manager().compact(keep=keep)
    except MemstoreError as exc:
        return _error(exc)
    return f"Removed {removed} {'memory' if removed == 1 else 'memories'}."


@mcp.tool()
def count_memories() -> str:
    """
    Return the total number of memories currently stored.

    Returns:
        A short message with the count.
    """
    try:
        n = _get_manager().count()
    except MemstoreError as exc:
        return _error(exc)
    return f"{n} {'memory' if n == 1 else 'memories'} stored."


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------


def main() -> None:
    """Run the MCP server over stdio."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
