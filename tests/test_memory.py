"""Tests for ensemble/memory.py."""

import logging
from typing import Any

import pytest

from config.config_loader import MemoryConfig
from ensemble.memory import DAY_SEC, AgentMemoryBank, retention_score
from ensemble.models import MemoryKind
from ensemble.storage import InMemoryStore, JsonFileStore, MemoryStore, StorageError


class FailingStore(MemoryStore):
    async def save(self, namespace: str, name: str, data: dict[str, Any]) -> None:
        raise StorageError(namespace, name, "disk full")

    async def load(self, namespace: str, name: str) -> dict[str, Any] | None:
        raise StorageError(namespace, name, "unreadable")


@pytest.fixture
def bank(clock) -> AgentMemoryBank:
    return AgentMemoryBank("architect-1", MemoryConfig(), InMemoryStore(), clock=clock)


@pytest.mark.parametrize(
    "age,recency,count,importance",
    [
        (0, 0, 0, 0.0),
        (0, 0, 50, 1.0),
        (365 * DAY_SEC, 365 * DAY_SEC, 0, 0.0),
        (-5, -5, -1, 2.0),
        (3 * DAY_SEC, DAY_SEC, 4, 0.6),
    ],
)
def test_retention_score_in_unit_interval(age, recency, count, importance):
    assert 0.0 <= retention_score(age, recency, count, importance) <= 1.0


def test_retention_score_fresh_and_important_is_one():
    assert retention_score(0, 0, 10, 1.0) == pytest.approx(1.0)


async def test_short_term_overflow_promotes_once(bank):
    for i in range(101):
        await bank.store(MemoryKind.SHORT_TERM, f"observation number {i}", {"importance": 0.6})
    assert len(bank.short_term) == 100
    assert bank.stats.promotions == 1
    assert len(bank.long_term) == 1
    promoted = next(iter(bank.long_term.values()))
    assert promoted.content == "observation number 0"
    assert promoted.metadata.promoted is True


async def test_short_term_overflow_drops_unimportant(bank):
    for i in range(101):
        await bank.store(MemoryKind.SHORT_TERM, f"note {i}", {"importance": 0.4})
    assert len(bank.short_term) == 100
    assert bank.stats.promotions == 0
    assert bank.long_term == {}


async def test_importance_heuristic(bank):
    item_id = await bank.store(
        MemoryKind.SHORT_TERM, "A critical choice on storage", {"source": "user", "type": "decision"}
    )
    item = next(m for m in bank.short_term if m.id == item_id)
    assert item.metadata.importance == pytest.approx(0.95)


async def test_explicit_importance_is_clamped(bank):
    await bank.store(MemoryKind.SHORT_TERM, "loud", {"importance": 5})
    await bank.store(MemoryKind.SHORT_TERM, "quiet", {"importance": -1})
    assert [m.metadata.importance for m in bank.short_term] == [1.0, 0.0]


async def test_unknown_kind_goes_to_short_term(bank):
    await bank.store("scratchpad", "something to keep")
    assert len(bank.short_term) == 1
    assert bank.short_term[0].kind is MemoryKind.SHORT_TERM


async def test_retrieve_finds_and_reinforces(bank):
    await bank.store(MemoryKind.SHORT_TERM, "Token bucket limits bursts per client", {"importance": 0.5})
    recall = await bank.retrieve("token bucket")
    assert recall.found
    assert recall.top.content == "Token bucket limits bursts per client"
    assert recall.top.metadata.access_count == 1
    assert recall.grouped["facts"] == [recall.top]


async def test_reinforcement_from_fifth_access(bank):
    await bank.store(MemoryKind.SHORT_TERM, "alpha beta gamma", {"importance": 0.5})
    for _ in range(4):
        await bank.retrieve("alpha")
    assert bank.short_term[0].metadata.importance == pytest.approx(0.5)
    await bank.retrieve("alpha")
    assert bank.short_term[0].metadata.importance == pytest.approx(0.55)


async def test_retrieve_misses(bank):
    await bank.store(MemoryKind.SHORT_TERM, "Token bucket limits bursts")
    recall = await bank.retrieve("kubernetes autoscaling")
    assert recall.found is False
    assert recall.top is None


async def test_working_memory_only_when_requested(bank):
    await bank.store(MemoryKind.WORKING, "current topic: rate limiter design")
    assert (await bank.retrieve("rate limiter")).found is False
    recall = await bank.retrieve("rate limiter", kinds=[MemoryKind.WORKING])
    assert recall.found


async def test_min_importance_and_max_age_filters(bank, clock):
    await bank.store(MemoryKind.SHORT_TERM, "old cache note", {"importance": 0.9})
    clock.advance(3600)
    await bank.store(MemoryKind.SHORT_TERM, "new cache note", {"importance": 0.2})
    assert [m.item.content for m in (await bank.retrieve("cache", min_importance=0.5)).memories] == ["old cache note"]
    assert [m.item.content for m in (await bank.retrieve("cache", max_age=60)).memories] == ["new cache note"]


async def test_semantic_memory_by_concept(bank):
    await bank.store(MemoryKind.SEMANTIC, "Redis counters expire automatically")
    assert "redis" in bank.semantic
    recall = await bank.retrieve("redis", kinds=[MemoryKind.SEMANTIC])
    assert recall.found
    assert len(recall.memories) == 1
    assert recall.grouped["concepts"][0].content == "Redis counters expire automatically"


async def test_procedural_memory_by_name(bank):
    await bank.store(MemoryKind.PROCEDURAL, "Implement the sliding window with sorted sets")
    assert bank.procedural["implement"].usage_count == 1
    recall = await bank.retrieve("implement", kinds=[MemoryKind.PROCEDURAL])
    assert recall.grouped["procedures"][0].content.startswith("Implement")


async def test_forgetting_curve_removes_low_retention(bank, clock):
    await bank.store(MemoryKind.LONG_TERM, "trivia nobody needs", {"importance": 0.0})
    await bank.store(MemoryKind.LONG_TERM, "core architecture principle", {"importance": 1.0})
    clock.advance(365 * DAY_SEC)
    assert bank.apply_forgetting_curve() == 1
    assert [m.content for m in bank.long_term.values()] == ["core architecture principle"]
    assert all(m.metadata.decay >= 0.1 for m in bank.long_term.values())
    assert bank.stats.forgotten == 1


async def test_decayed_episodes_hidden_by_default(bank, clock):
    await bank.store(MemoryKind.EPISODIC, "Deployed the canary release")
    clock.advance(30 * DAY_SEC)
    await bank.consolidate()
    assert bank.episodic[0].metadata.decay < 0.3
    assert (await bank.retrieve("canary release")).found is False
    assert (await bank.retrieve("canary release", include_decayed=True)).found


async def test_consolidation_promotes_merges_and_clears_working(bank):
    await bank.store(MemoryKind.SHORT_TERM, "important finding about quotas", {"importance": 0.8})
    await bank.store(MemoryKind.LONG_TERM, "use redis for counters")
    await bank.store(MemoryKind.LONG_TERM, "use redis for counters")
    await bank.store(MemoryKind.WORKING, "scratch")
    await bank.consolidate()
    contents = sorted(m.content for m in bank.long_term.values())
    assert contents == ["important finding about quotas", "use redis for counters"]
    assert bank.stats.merged == 1
    assert bank.stats.promotions == 1
    assert bank.working == []


async def test_consolidation_triggered_by_short_term_pressure(clock):
    bank = AgentMemoryBank("qa-1", MemoryConfig(max_short_term=10), InMemoryStore(), clock=clock)
    for i in range(8):
        await bank.store(MemoryKind.SHORT_TERM, f"entry {i}")
    assert bank.stats.consolidations >= 1


async def _fill(bank: AgentMemoryBank) -> None:
    await bank.store(MemoryKind.SHORT_TERM, "short note on limits")
    await bank.store(MemoryKind.LONG_TERM, "long lived principle")
    await bank.store(MemoryKind.EPISODIC, "ran the load test")
    await bank.store(MemoryKind.SEMANTIC, "Throttling protects downstream services")
    await bank.store(MemoryKind.WORKING, "current topic")
    await bank.store(MemoryKind.PROCEDURAL, "Design the quota table")


def _contents(bank: AgentMemoryBank) -> dict[str, list[str]]:
    return {
        "short": [m.content for m in bank.short_term],
        "long": [m.content for m in bank.long_term.values()],
        "episodic": [m.content for m in bank.episodic],
        "semantic": [m.content for items in bank.semantic.values() for m in items],
        "working": [m.content for m in bank.working],
        "procedural": [m.content for p in bank.procedural.values() for m in p.steps],
    }


async def test_persist_and_reload_round_trip(bank, clock):
    await _fill(bank)
    assert await bank.persist() is True

    restored = AgentMemoryBank("architect-1", MemoryConfig(), bank._store, clock=clock)
    assert await restored.load() is True
    assert restored.counts() == bank.counts()
    assert _contents(restored) == _contents(bank)
    assert restored.indexes.semantic.keys() == bank.indexes.semantic.keys()


async def test_json_file_store_round_trip(tmp_path, clock):
    store = JsonFileStore(tmp_path / "memory")
    bank = AgentMemoryBank("researcher-1", MemoryConfig(), store, clock=clock)
    await _fill(bank)
    assert await bank.persist() is True
    assert store.path_for("researcher-1", "memory").exists()
    assert store.path_for("researcher-1", "indexes").exists()

    restored = AgentMemoryBank("researcher-1", MemoryConfig(), store, clock=clock)
    assert await restored.load() is True
    assert _contents(restored) == _contents(bank)


async def test_load_missing_returns_false(bank):
    assert await bank.load() is False


async def test_load_corrupt_artifact_returns_false(bank, caplog):
    bank._store.blobs[("architect-1", "memory")] = "{not json"
    with caplog.at_level(logging.WARNING):
        assert await bank.load() is False
    assert "Could not load memory" in caplog.text


async def test_missing_indexes_are_rebuilt(bank, clock):
    await _fill(bank)
    await bank.persist()
    del bank._store.blobs[("architect-1", "indexes")]

    restored = AgentMemoryBank("architect-1", MemoryConfig(), bank._store, clock=clock)
    assert await restored.load() is True
    assert "throttling" in restored.indexes.semantic


async def test_persist_failure_keeps_memory(clock, caplog):
    bank = AgentMemoryBank("dev-1", MemoryConfig(), FailingStore(), clock=clock)
    await bank.store(MemoryKind.SHORT_TERM, "still here")
    with caplog.at_level(logging.WARNING):
        assert await bank.persist() is False
    assert bank.stats.persist_failures == 1
    assert len(bank.short_term) == 1
    assert "keeping in-memory state" in caplog.text


async def test_statistics_and_clear(bank):
    await _fill(bank)
    stats = bank.statistics()
    assert stats["counts"]["episodic"] == 1
    assert stats["procedures"] == 1
    bank.clear()
    assert all(v == 0 for v in bank.counts().values())
