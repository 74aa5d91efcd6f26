"""
Ranking and retention logic layered on top of the raw record store.

  - Composite scoring that blends similarity, manual weight and recency
  - Re-ranking of ANN candidates into the final search results
  - Recency listing and compaction (keep the N newest records)
  - Monotonic id generation
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Iterable, Sequence

from .errors import ValidationError
from .models import Record, Store

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Multiplier applied to a record's weight in the composite score (uncapped).
WEIGHT_FACTOR: float = 0.5

SECONDS_PER_DAY: int = 86400

#: ANN candidates fetched per requested result before re-ranking.
CANDIDATE_MULTIPLIER: int = 10
MIN_CANDIDATES: int = 10


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def recency(ts: int, now: int) -> float:
    """Recency component in (0, 1]: ``1 / (1 + age_days)``."""
    age_days = max(0.0, (now - ts) / SECONDS_PER_DAY)
    return 1.0 / (1.0 + age_days)


def score(similarity: float, weight: float, ts: int, now: int) -> float:
    """
    Composite ranking score.

    ``similarity + weight * 0.5 + 1 / (1 + age_days)`` where ``age_days``
    is the non-negative fractional age of the record in days.
    """
    return similarity + weight * WEIGHT_FACTOR + recency(ts, now)


@dataclass(frozen=True)
class ScoredRecord:
    record: Record
    score: float
    similarity: float


def candidate_count(limit: int, total: int) -> int:
    """How many ANN neighbours to fetch for a search returning *limit* results."""
    return min(total, max(MIN_CANDIDATES, limit * CANDIDATE_MULTIPLIER))


def rank(
    candidates: Iterable[tuple[int, float]],
    records: Sequence[Record],
    now: int,
    limit: int,
) -> list[ScoredRecord]:
    """
    Re-rank ``(record_id, similarity)`` candidates by composite score.

    Ordering is score descending, then newer ``ts``, then larger ``id``.
    Duplicate candidate ids are collapsed; unknown ids are ignored.
    """
    by_id = {r.id: r for r in records}
    scored: dict[int, ScoredRecord] = {}
    for record_id, similarity in candidates:
        rec = by_id.get(record_id)
        if rec is None or record_id in scored:
            continue
        scored[record_id] = ScoredRecord(
            record=rec,
            score=score(similarity, rec.weight, rec.ts, now),
            similarity=similarity,
        )

    ordered = sorted(
        scored.values(),
        key=lambda s: (s.score, s.record.ts, s.record.id),
        reverse=True,
    )
    return ordered[:limit]


# ---------------------------------------------------------------------------
# Recency and retention
# ---------------------------------------------------------------------------


def newest_first(records: Iterable[Record]) -> list[Record]:
    return sorted(records, key=lambda r: (r.ts, r.id), reverse=True)


def recent(store: Store, limit: int) -> list[Record]:
    """Up to *limit* records, newest first, without any scoring."""
    if limit <= 0:
        raise ValidationError(f"limit must be positive, got {limit}", operation="recent")
    return newest_first(store.records)[:limit]


def compact(store: Store, keep: int) -> tuple[Store, int]:
    """
    Keep only the *keep* newest records.

    Returns the compacted store (same version, dimension and generation)
    and the number of records removed.  ``keep = 0`` empties the store.
    """
    if not isinstance(keep, int) or keep < 0:
        raise ValidationError(f"keep must be a non-negative integer, got {keep!r}",
                              operation="compact")
    if len(store.records) <= keep:
        return replace(store, records=list(store.records)), 0
    kept = newest_first(store.records)[:keep]
    return replace(store, records=kept), len(store.records) - keep


# ---------------------------------------------------------------------------
# ID generation
# ---------------------------------------------------------------------------


def now_millis() -> int:
    return time.time_ns() // 1_000_000


def next_id(store: Store, now_ms: int | None = None) -> int:
    """
    Return a new record id: the current millisecond clock, bumped past the
    largest existing id when the clock has not moved on.
    """
    if now_ms is None:
        now_ms = now_millis()
    return max(now_ms, store.max_id() + 1)
