"""Tests for ensemble/storage.py."""

import pytest

from ensemble.storage import InMemoryStore, JsonFileStore, StorageError


async def test_json_store_save_and_load(tmp_path):
    store = JsonFileStore(tmp_path)
    await store.save("agent-1", "memory", {"short_term": [1, 2]})
    assert await store.load("agent-1", "memory") == {"short_term": [1, 2]}
    assert (tmp_path / "agent-1" / "memory.json").exists()


async def test_json_store_missing_returns_none(tmp_path):
    assert await JsonFileStore(tmp_path).load("nobody", "memory") is None


async def test_json_store_sanitizes_names(tmp_path):
    store = JsonFileStore(tmp_path)
    path = store.path_for("../evil/agent", "memory")
    assert path.parent.parent == tmp_path


async def test_json_store_corrupt_file_raises(tmp_path):
    store = JsonFileStore(tmp_path)
    path = store.path_for("agent-1", "memory")
    path.parent.mkdir(parents=True)
    path.write_text("{broken", encoding="utf-8")
    with pytest.raises(StorageError, match="read failed"):
        await store.load("agent-1", "memory")


async def test_json_store_non_object_raises(tmp_path):
    store = JsonFileStore(tmp_path)
    path = store.path_for("agent-1", "memory")
    path.parent.mkdir(parents=True)
    path.write_text("[1, 2, 3]", encoding="utf-8")
    with pytest.raises(StorageError, match="not a JSON object"):
        await store.load("agent-1", "memory")


async def test_json_store_unserializable_raises(tmp_path):
    with pytest.raises(StorageError, match="write failed"):
        await JsonFileStore(tmp_path).save("agent-1", "memory", {"bad": object()})


async def test_in_memory_store_round_trip():
    store = InMemoryStore()
    await store.save("a", "indexes", {"semantic": {"redis": ["x"]}})
    assert await store.load("a", "indexes") == {"semantic": {"redis": ["x"]}}
    assert await store.load("a", "memory") is None


async def test_in_memory_store_unserializable_raises():
    with pytest.raises(StorageError):
        await InMemoryStore().save("a", "memory", {"bad": {1, 2}})
