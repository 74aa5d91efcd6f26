"""
MemoryManager: one short-lived command against the record store.

Each call loads the whole store, performs a single operation and, for
mutating operations, atomically rewrites the store before returning.
No state is kept between calls, so separate managers (or processes) can
target different stores safely.

Usage example::

    from memstore import MemoryManager, resolve_config

    memory = MemoryManager(resolve_config(path="./memory/agent.bin"))

    # Remember something the user asked to keep
    record = memory.add("User prefers the dark theme.", kind="profile", weight=3.0)

    # Later, recall relevant context for a new prompt
    for hit in memory.search("theme preference", limit=3):
        print(hit.score, hit.record.text)
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable

from . import index as ann
from . import store as record_store
from .config import MemstoreConfig
from .embedding import encode
from .errors import ValidationError
from .intelligence import ScoredRecord, candidate_count, compact, next_id, rank, recent
from .models import DEFAULT_KIND, DEFAULT_WEIGHT, Record, Store

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 3
DEFAULT_RECENT_LIMIT = 20
DEFAULT_KEEP = 5000


def _require_positive_limit(limit: int, operation: str) -> None:
    if not isinstance(limit, int) or limit <= 0:
        raise ValidationError(f"limit must be a positive integer, got {limit!r}",
                              operation=operation)


class MemoryManager:
    """
    Engine facade used by the CLI and the MCP server.

    Responsibilities
    ----------------
    * **Add** – Validates the input, embeds the text, appends a new record
      with a fresh monotonic id and saves the store.
    * **Search** – Builds a throwaway ANN index over every stored vector,
      fetches candidates for the query and re-ranks them by the composite
      score (similarity + weight + recency).
    * **Recent / Compact** – Lists the newest records, or drops everything
      but the newest *keep* records.

    Parameters
    ----------
    config:
        Resolved configuration (store path, vector dimension, conflict
        check).  Defaults to :class:`MemstoreConfig` defaults.
    clock:
        Callable returning the current Unix time in seconds.  Injectable
        so tests can control record timestamps and ages.
    brute_force_threshold:
        Stores with at most this many records are searched exactly.
    """

    def __init__(
        self,
        config: MemstoreConfig | None = None,
        clock: Callable[[], float] = time.time,
        brute_force_threshold: int = ann.BRUTE_FORCE_THRESHOLD,
    ) -> None:
        self.config = config or MemstoreConfig()
        self._clock = clock
        self.brute_force_threshold = brute_force_threshold

    @property
    def path(self):
        return self.config.path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load(self) -> Store:
        """Load the configured store (empty if it does not exist yet)."""
        return record_store.load(self.config.path, vector_dim=self.config.vector_dim)

    def add(
        self,
        text: str,
        kind: str = DEFAULT_KIND,
        weight: float = DEFAULT_WEIGHT,
    ) -> Record:
        """
        Store *text* as a new record and return it.

        Two identical calls create two distinct records; ``add`` is never
        idempotent.
        """
        if not text or not text.strip():
            raise ValidationError("text must not be empty", operation="add", path=self.path)
        if not kind:
            raise ValidationError("kind must not be empty", operation="add", path=self.path)
        if not isinstance(weight, (int, float)) or not math.isfinite(weight) or weight <= 0:
            raise ValidationError(f"weight must be a positive number, got {weight!r}",
                                  operation="add", path=self.path)

        store = self.load()
        now = self._clock()
        record = Record(
            id=next_id(store, now_ms=int(now * 1000)),
            ts=int(now),
            kind=kind,
            weight=float(weight),
            text=text,
            vector=tuple(encode(text, store.vector_dim).tolist()),
        )
        record_store.append(store, record)
        record_store.save(store, self.config.path, check_conflicts=self.config.check_conflicts)
        logger.info("Added record %d (kind=%s, weight=%.2f)", record.id, kind, record.weight)
        return record

    def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[ScoredRecord]:
        """
        Return up to *limit* records ranked by composite score.

        An empty store yields an empty list.
        """
        if not query or not query.strip():
            raise ValidationError("query must not be empty", operation="search", path=self.path)
        _require_positive_limit(limit, "search")

        store = self.load()
        if not store.records:
            return []

        query_vec = encode(query, store.vector_dim)
        k = candidate_count(limit, len(store.records))
        with ann.build(store.records, brute_force_threshold=self.brute_force_threshold) as idx:
            candidates = ann.query(idx, query_vec, k)
            logger.debug(
                "Fetched %d candidate(s) of %d record(s) (%s)",
                len(candidates), len(store.records), "hnsw" if idx.approximate else "exact",
            )
        return rank(candidates, store.records, now=int(self._clock()), limit=limit)

    def recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> list[Record]:
        """Up to *limit* most recently created records, newest first."""
        _require_positive_limit(limit, "recent")
        return recent(self.load(), limit)

    def compact(self, keep: int = DEFAULT_KEEP) -> int:
        """
        Keep only the *keep* newest records and return how many were removed.

        Irreversible.  Nothing is written when no record would be dropped.
        """
        if not isinstance(keep, int) or keep < 0:
            raise ValidationError(f"keep must be a non-negative integer, got {keep!r}",
                                  operation="compact", path=self.path)

        store = self.load()
        compacted, removed = compact(store, keep)
        if removed:
            record_store.save(compacted, self.config.path,
                              check_conflicts=self.config.check_conflicts)
            logger.info("Compacted %s: removed %d, kept %d", self.path, removed, len(compacted))
        return removed

    def count(self) -> int:
        """Return the total number of stored records."""
        return len(self.load().records)
