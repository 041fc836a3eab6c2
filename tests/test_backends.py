"""Tests for key-value persistence backends."""

import json

import pytest

from cortex.memory.backends import (
    InMemoryBackend,
    JsonFileBackend,
    KeyValueBackend,
    RedisBackend,
    build_backend,
)


@pytest.mark.asyncio
async def test_in_memory_roundtrip():
    backend = InMemoryBackend()
    await backend.set("k", "v")
    assert await backend.get("k") == "v"
    await backend.delete("k")
    assert await backend.get("k") is None
    await backend.delete("missing")


@pytest.mark.asyncio
async def test_json_file_persists_across_instances(tmp_path):
    path = tmp_path / "nested" / "memory.json"
    first = JsonFileBackend(path)
    await first.set("agent_memory_nova", "[]")
    assert json.loads(path.read_text(encoding="utf-8")) == {"agent_memory_nova": "[]"}

    second = JsonFileBackend(path)
    assert await second.get("agent_memory_nova") == "[]"
    await second.delete("agent_memory_nova")
    assert json.loads(path.read_text(encoding="utf-8")) == {}


@pytest.mark.asyncio
async def test_json_file_unreadable_starts_empty(tmp_path):
    path = tmp_path / "memory.json"
    path.write_text("garbage{", encoding="utf-8")
    backend = JsonFileBackend(path)
    assert await backend.get("anything") is None
    await backend.set("k", "v")
    assert json.loads(path.read_text(encoding="utf-8")) == {"k": "v"}


def test_build_backend_kinds(tmp_path):
    assert isinstance(build_backend("memory"), InMemoryBackend)
    assert isinstance(build_backend("file", file_path=str(tmp_path / "m.json")), JsonFileBackend)
    assert isinstance(build_backend("redis", redis_url="redis://localhost:6379/0"), RedisBackend)


def test_backends_satisfy_protocol(tmp_path):
    assert isinstance(InMemoryBackend(), KeyValueBackend)
    assert isinstance(JsonFileBackend(tmp_path / "m.json"), KeyValueBackend)
