"""Tests for MemoryManager – the per-command engine facade."""

from __future__ import annotations

from pathlib import Path

import pytest

import memstore.store as record_store
from memstore.config import MemstoreConfig
from memstore.errors import ConcurrentModification, CorruptStore, ValidationError
from memstore.intelligence import SECONDS_PER_DAY
from memstore.memory import MemoryManager
from memstore.models import Store
from conftest import FakeClock, make_record


class TestMemoryManagerAdd:
    def test_add_returns_record(self, memory_manager: MemoryManager, clock: FakeClock):
        record = memory_manager.add("Remember that the user likes coffee.", kind="profile",
                                    weight=2.5)
        assert record.kind == "profile"
        assert record.weight == 2.5
        assert record.ts == int(clock.now)
        assert record.id == int(clock.now * 1000)
        assert len(record.vector) == 256

    def test_add_creates_store_file(self, memory_manager: MemoryManager, store_path: Path):
        assert not store_path.exists()
        memory_manager.add("First memory.")
        assert store_path.exists()
        assert memory_manager.count() == 1

    def test_ids_unique_within_same_millisecond(self, memory_manager: MemoryManager):
        ids = [memory_manager.add(f"memory {i}").id for i in range(5)]
        assert ids == sorted(ids)
        assert len(set(ids)) == 5

    def test_identical_adds_create_distinct_records(self, memory_manager: MemoryManager):
        a = memory_manager.add("same text")
        b = memory_manager.add("same text")
        assert a.id != b.id
        assert memory_manager.count() == 2

    def test_defaults(self, memory_manager: MemoryManager):
        record = memory_manager.add("defaults")
        assert record.kind == "summary"
        assert record.weight == 1.0

    @pytest.mark.parametrize("text", ["", "   \n"])
    def test_empty_text_rejected(self, memory_manager: MemoryManager, store_path: Path, text):
        with pytest.raises(ValidationError):
            memory_manager.add(text)
        assert not store_path.exists()

    @pytest.mark.parametrize("weight", [0, -1.0, float("nan"), float("inf")])
    def test_invalid_weight_rejected(self, memory_manager: MemoryManager, weight):
        with pytest.raises(ValidationError):
            memory_manager.add("text", weight=weight)

    def test_text_with_separators_survives(self, memory_manager: MemoryManager):
        text = "a|b\\c\nd"
        memory_manager.add(text)
        assert memory_manager.recent(1)[0].text == text


class TestMemoryManagerSearch:
    def test_empty_store_returns_empty_list(self, memory_manager: MemoryManager):
        assert memory_manager.search("anything") == []

    @pytest.mark.parametrize("query", ["", "  "])
    def test_empty_query_rejected(self, memory_manager: MemoryManager, query):
        with pytest.raises(ValidationError):
            memory_manager.search(query)

    @pytest.mark.parametrize("limit", [0, -2])
    def test_non_positive_limit_rejected(self, memory_manager: MemoryManager, limit):
        with pytest.raises(ValidationError):
            memory_manager.search("x", limit=limit)

    def test_returns_exactly_limit_sorted_unique(self, memory_manager: MemoryManager,
                                                 clock: FakeClock):
        for i in range(30):
            memory_manager.add(f"fact number {i} about topic{i % 4}", weight=1.0 + (i % 3))
            clock.advance(3600)
        results = memory_manager.search("fact about topic2", limit=7)
        assert len(results) == 7
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)
        ids = [r.record.id for r in results]
        assert len(set(ids)) == 7
        stored = {r.id for r in memory_manager.load().records}
        assert set(ids) <= stored

    def test_limit_larger_than_store(self, memory_manager: MemoryManager):
        memory_manager.add("one")
        memory_manager.add("two")
        assert len(memory_manager.search("one", limit=10)) == 2

    def test_hnsw_path(self, store_path: Path, clock: FakeClock):
        manager = MemoryManager(MemstoreConfig(path=store_path), clock=clock,
                                brute_force_threshold=0)
        for i in range(40):
            manager.add(f"entry {i} concerning area{i}")
        results = manager.search("entry 13 concerning area13", limit=2)
        assert len(results) == 2
        assert results[0].record.text == "entry 13 concerning area13"

    def test_identical_texts_hnsw_matches_exact(self, store_path: Path, clock: FakeClock):
        now = int(clock.now)
        records = [make_record(i + 1, "deploy the api service", ts=now - 200 + i) for i in range(200)]
        records += [make_record(201 + i, f"noise entry {i} quartz{i}", ts=now - 400 + i)
                    for i in range(100)]
        record_store.save(Store(records=records), store_path)

        def search(threshold: int) -> list[int]:
            manager = MemoryManager(MemstoreConfig(path=store_path), clock=clock,
                                    brute_force_threshold=threshold)
            return [r.record.id for r in manager.search("deploy the api service", limit=3)]

        assert search(0) == search(10**9) == [200, 199, 198]

    def test_weight_dominance(self, memory_manager: MemoryManager):
        low = memory_manager.add("the build server is in Frankfurt", weight=1.0)
        high = memory_manager.add("the build server is in Frankfurt", weight=2.0)
        results = memory_manager.search("build server location", limit=2)
        assert [r.record.id for r in results] == [high.id, low.id]
        assert results[0].score > results[1].score

    def test_recency_decay(self, memory_manager: MemoryManager, clock: FakeClock):
        old = memory_manager.add("weekly sync moved to Thursday")
        clock.advance(10 * SECONDS_PER_DAY)
        new = memory_manager.add("weekly sync moved to Thursday")
        results = memory_manager.search("weekly sync", limit=2)
        assert [r.record.id for r in results] == [new.id, old.id]
        assert results[0].score > results[1].score

    def test_chinese_preference_scenario(self, memory_manager: MemoryManager):
        memory_manager.add("用户偏好暗色主题", kind="profile", weight=3.0)
        memory_manager.add("明天部署到生产", kind="state", weight=2.5)
        memory_manager.add("默认使用浅色主题", kind="summary", weight=1.0)

        results = memory_manager.search("主题偏好", limit=2)
        texts = [r.record.text for r in results]
        assert len(results) == 2
        assert texts[0] == "用户偏好暗色主题"
        if "默认使用浅色主题" in texts:
            assert texts.index("用户偏好暗色主题") < texts.index("默认使用浅色主题")


class TestMemoryManagerRecent:
    def test_newest_first(self, memory_manager: MemoryManager, clock: FakeClock):
        for text in ("first", "second", "third"):
            memory_manager.add(text)
            clock.advance(5)
        assert [r.text for r in memory_manager.recent(limit=2)] == ["third", "second"]

    def test_ignores_weight(self, memory_manager: MemoryManager, clock: FakeClock):
        memory_manager.add("heavy", weight=50.0)
        clock.advance(1)
        memory_manager.add("light", weight=0.1)
        assert memory_manager.recent(limit=1)[0].text == "light"

    def test_empty_store(self, memory_manager: MemoryManager):
        assert memory_manager.recent() == []

    def test_invalid_limit(self, memory_manager: MemoryManager):
        with pytest.raises(ValidationError):
            memory_manager.recent(limit=0)


class TestMemoryManagerCompact:
    def test_keeps_newest(self, memory_manager: MemoryManager, clock: FakeClock):
        for i in range(6):
            memory_manager.add(f"memory {i}")
            clock.advance(60)
        assert memory_manager.compact(keep=2) == 4
        assert sorted(r.text for r in memory_manager.recent(10)) == ["memory 4", "memory 5"]

    def test_keep_zero(self, memory_manager: MemoryManager):
        memory_manager.add("doomed")
        assert memory_manager.compact(keep=0) == 1
        assert memory_manager.count() == 0

    def test_noop_does_not_rewrite(self, memory_manager: MemoryManager, store_path: Path):
        memory_manager.add("stay")
        before = store_path.stat().st_mtime_ns, store_path.read_bytes()
        assert memory_manager.compact(keep=10) == 0
        assert (store_path.stat().st_mtime_ns, store_path.read_bytes()) == before

    def test_negative_keep_rejected(self, memory_manager: MemoryManager):
        with pytest.raises(ValidationError):
            memory_manager.compact(keep=-1)


class TestMemoryManagerStoreHandling:
    def test_dimension_is_fixed_per_store(self, store_path: Path, clock: FakeClock):
        MemoryManager(MemstoreConfig(path=store_path, vector_dim=64), clock=clock).add("x")
        other = MemoryManager(MemstoreConfig(path=store_path, vector_dim=128), clock=clock)
        with pytest.raises(CorruptStore, match="dimension mismatch"):
            other.count()

    def test_unconfigured_dimension_follows_store(self, store_path: Path, clock: FakeClock):
        MemoryManager(MemstoreConfig(path=store_path, vector_dim=64), clock=clock).add("x y")
        manager = MemoryManager(MemstoreConfig(path=store_path), clock=clock)
        assert len(manager.add("z").vector) == 64
        assert len(manager.search("x", limit=1)) == 1

    def test_corrupt_file_surfaces(self, memory_manager: MemoryManager, store_path: Path):
        store_path.parent.mkdir(parents=True)
        store_path.write_bytes(b"\x00" * 10)
        with pytest.raises(CorruptStore):
            memory_manager.search("anything")

    def test_concurrent_writer_detected(self, memory_manager: MemoryManager, store_path: Path,
                                        monkeypatch):
        memory_manager.add("base")
        real_load = record_store.load

        def _load_then_race(path, vector_dim=None):
            store = real_load(path, vector_dim=vector_dim)
            # Another process saves in between our load and our save.
            record_store.save(real_load(path), path)
            return store

        monkeypatch.setattr(record_store, "load", _load_then_race)
        with pytest.raises(ConcurrentModification):
            memory_manager.add("lost update")
        monkeypatch.undo()
        assert [r.text for r in memory_manager.recent(10)] == ["base"]

    def test_separate_managers_use_separate_stores(self, tmp_path: Path, clock: FakeClock):
        a = MemoryManager(MemstoreConfig(path=tmp_path / "a.bin"), clock=clock)
        b = MemoryManager(MemstoreConfig(path=tmp_path / "b.log"), clock=clock)
        a.add("only in a")
        b.add("only in b")
        assert [r.text for r in a.recent()] == ["only in a"]
        assert [r.text for r in b.recent()] == ["only in b"]
