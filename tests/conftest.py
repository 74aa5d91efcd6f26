"""
Shared pytest fixtures for memstore tests.

Every test gets its own store file under ``tmp_path`` and a controllable
clock, so record ids, timestamps and recency scores are reproducible.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from memstore.config import MemstoreConfig
from memstore.embedding import encode
from memstore.memory import MemoryManager
from memstore.models import Record

#: 2024-01-01T00:00:00Z
START_TIME = 1_704_067_200.0


class FakeClock:
    """Callable returning a fixed Unix time that tests advance explicitly."""

    def __init__(self, start: float = START_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_record(
    id: int,
    text: str = "hello world",
    ts: int | None = None,
    kind: str = "summary",
    weight: float = 1.0,
    dim: int = 256,
) -> Record:
    """Build a record with a real embedding of *text*."""
    return Record(
        id=id,
        ts=int(START_TIME) + id if ts is None else ts,
        kind=kind,
        weight=weight,
        text=text,
        vector=tuple(encode(text, dim).tolist()),
    )


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the developer's MEMSTORE_* variables out of the tests."""
    for name in ("MEMSTORE_PATH", "MEMSTORE_VECTOR_DIM", "MEMSTORE_CONFLICT_CHECK"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "memory" / "memories.bin"


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def memory_manager(store_path: Path, clock: FakeClock) -> MemoryManager:
    """MemoryManager writing to a per-test store with a fake clock."""
    return MemoryManager(MemstoreConfig(path=store_path), clock=clock)
