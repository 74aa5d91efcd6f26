"""
Data model: the stored memory unit and the store that holds them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

#: Current on-disk format version.
STORE_VERSION: int = 1

#: Embedding dimension used when a store is created without an explicit one.
DEFAULT_VECTOR_DIM: int = 256

DEFAULT_KIND: str = "summary"
DEFAULT_WEIGHT: float = 1.0


@dataclass(frozen=True)
class Record:
    """
    One stored memory.

    ``id`` is a millisecond-derived, strictly increasing integer; ``ts`` is
    the creation time in whole Unix seconds.  ``vector`` holds float32
    values as Python floats so that equality survives a round trip through
    either encoding.
    """

    id: int
    ts: int
    kind: str
    weight: float
    text: str
    vector: tuple[float, ...]


@dataclass
class Store:
    """The full persisted database."""

    version: int = STORE_VERSION
    vector_dim: int = DEFAULT_VECTOR_DIM
    records: list[Record] = field(default_factory=list)
    #: Number of successful saves; used to detect a concurrent writer.
    generation: int = 0

    def __len__(self) -> int:
        return len(self.records)

    def max_id(self) -> int:
        return max((r.id for r in self.records), default=0)
