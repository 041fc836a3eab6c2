"""Tests for the namespaced memory store."""

import asyncio

import pytest

from cortex.memory.backends import InMemoryBackend
from cortex.memory.store import MemoryStore, MemoryStoreError, namespace_key, unique_contents


def test_namespace_key_normalises_name():
    assert namespace_key("  Nova   Prime ") == "agent_memory_nova_prime"
    assert namespace_key("NOVA") == namespace_key("nova")


@pytest.mark.asyncio
async def test_add_lists_newest_first(store):
    await store.add("Nova", "first")
    await store.add("Nova", "second")
    assert await store.contents("Nova") == ["second", "first"]


@pytest.mark.asyncio
async def test_add_deduplicates_case_insensitively(store):
    original = await store.add("Nova", "The sky is orange")
    again = await store.add("Nova", "the SKY is orange")
    assert again.id == original.id
    assert await store.contents("Nova") == ["The sky is orange"]


@pytest.mark.asyncio
async def test_add_rejects_empty_content(store):
    with pytest.raises(MemoryStoreError):
        await store.add("Nova", "   ")


@pytest.mark.asyncio
async def test_delete_and_clear(store):
    record = await store.add("Nova", "fact one")
    await store.add("Nova", "fact two")
    assert await store.delete("Nova", record.id) is True
    assert await store.delete("Nova", record.id) is False
    assert await store.contents("Nova") == ["fact two"]
    await store.clear("Nova")
    assert await store.list_records("Nova") == []


@pytest.mark.asyncio
async def test_namespaces_are_independent(store):
    await store.add("Nova", "nova fact")
    await store.add("Orion", "orion fact")
    assert await store.contents("Nova") == ["nova fact"]
    assert await store.contents("Orion") == ["orion fact"]


@pytest.mark.asyncio
async def test_reconcile_preserves_identity_of_retained(store):
    kept = await store.add("Nova", "keep me")
    await store.add("Nova", "drop me")
    records = await store.reconcile("Nova", ["keep me", "brand new"])
    by_content = {r.content: r for r in records}
    assert set(by_content) == {"keep me", "brand new"}
    assert by_content["keep me"].id == kept.id
    assert by_content["keep me"].created_at == kept.created_at


@pytest.mark.asyncio
async def test_migrate_unions_namespaces():
    backend = InMemoryBackend()
    store = MemoryStore(backend)
    await store.add("Nova", "A")
    await store.add("Nova", "B")
    await store.add("Nova-2", "B")
    await store.add("Nova-2", "C")
    existing_b = next(r for r in await store.list_records("Nova-2") if r.content == "B")

    merged = await store.migrate("Nova", "Nova-2")

    assert {r.content for r in merged} == {"A", "B", "C"}
    assert len(merged) == 3
    assert set(await store.contents("Nova-2")) == {"A", "B", "C"}
    assert await store.contents("Nova") == []
    assert namespace_key("Nova") not in backend.keys()
    # The destination's copy wins on collision.
    assert next(r for r in merged if r.content == "B").id == existing_b.id


@pytest.mark.asyncio
async def test_migrate_to_same_key_is_noop(store):
    await store.add("Nova", "A")
    assert [r.content for r in await store.migrate("Nova", "nova")] == ["A"]


def test_unique_contents_folds_case():
    assert unique_contents(["Straße", "STRASSE", "", "  ", "tea", "Tea"]) == ["Straße", "tea"]


@pytest.mark.asyncio
async def test_reconcile_collapses_case_variants(store):
    await store.add("Nova", "the street is Straße")
    records = await store.reconcile("Nova", ["the street is Straße", "the street is STRASSE", "coffee"])
    assert sorted(r.content for r in records) == ["coffee", "the street is Straße"]
    assert len(await store.list_records("Nova")) == 2


@pytest.mark.asyncio
async def test_migrate_collapses_case_variants(store):
    await store.add("Nova", "Likes Tea")
    kept = await store.add("Nova-2", "likes tea")
    merged = await store.migrate("Nova", "Nova-2")
    assert [r.id for r in merged] == [kept.id]


@pytest.mark.asyncio
async def test_corrupt_state_reads_empty_and_resets():
    backend = InMemoryBackend()
    store = MemoryStore(backend)
    await backend.set(namespace_key("Nova"), "{not json")
    assert await store.list_records("Nova") == []
    assert await backend.get(namespace_key("Nova")) is None
    await store.add("Nova", "fresh start")
    assert await store.contents("Nova") == ["fresh start"]


@pytest.mark.asyncio
async def test_wrong_shape_is_treated_as_corrupt():
    backend = InMemoryBackend()
    store = MemoryStore(backend)
    await backend.set(namespace_key("Nova"), '[{"id": "1"}]')
    assert await store.contents("Nova") == []


@pytest.mark.asyncio
async def test_concurrent_adds_lose_nothing(store):
    facts = [f"fact {i}" for i in range(25)]
    await asyncio.gather(*(store.add("Nova", f) for f in facts))
    assert set(await store.contents("Nova")) == set(facts)


@pytest.mark.asyncio
async def test_interleaved_add_and_delete(store):
    doomed = await store.add("Nova", "doomed")
    await asyncio.gather(store.delete("Nova", doomed.id), store.add("Nova", "survivor"))
    assert await store.contents("Nova") == ["survivor"]
