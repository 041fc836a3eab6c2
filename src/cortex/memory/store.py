"""Per-agent persistent memory.

Each agent owns a namespace keyed by its normalised display name.  A
namespace is an ordered list of :class:`MemoryRecord` objects, newest first,
stored as one JSON document on a :class:`~cortex.memory.backends.KeyValueBackend`.

Operations on one namespace are serialised by a per-namespace
:class:`asyncio.Lock`, so an interleaved ``add`` and ``delete`` can never
lose an update.  Different namespaces proceed independently.  A persisted
value that fails to decode is logged, the key is reset, and the namespace
reads as empty; corruption never reaches the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from cortex.memory.backends import KeyValueBackend

log = logging.getLogger(__name__)

MEMORY_PREFIX = "agent_memory_"

_WHITESPACE = re.compile(r"\s+")


class MemoryStoreError(ValueError):
    """Raised for invalid arguments, never for persistence problems."""


@dataclass(frozen=True)
class MemoryRecord:
    """A single atomic piece of knowledge."""

    id: str
    content: str
    created_at: datetime

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "content": self.content,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryRecord:
        content = data["content"]
        if not isinstance(content, str):
            raise TypeError(f"content must be a string, got {type(content).__name__}")
        return cls(
            id=str(data["id"]),
            content=content,
            created_at=datetime.fromisoformat(data["createdAt"]),
        )

    @classmethod
    def new(cls, content: str) -> MemoryRecord:
        return cls(id=str(uuid.uuid4()), content=content, created_at=datetime.now(timezone.utc))


def namespace_key(agent_name: str) -> str:
    """Stable storage key for *agent_name*: lowercased, whitespace runs as ``_``."""
    return MEMORY_PREFIX + _WHITESPACE.sub("_", agent_name.strip()).lower()


def unique_contents(contents: list[str]) -> list[str]:
    """Non-empty entries of *contents* in order, dropping case-insensitive repeats."""
    seen: set[str] = set()
    unique = []
    for content in contents:
        if not isinstance(content, str) or not content.strip():
            continue
        folded = content.casefold()
        if folded not in seen:
            seen.add(folded)
            unique.append(content)
    return unique


class MemoryStore:
    """Namespaced CRUD, reconciliation and rename-migration over a backend."""

    def __init__(self, backend: KeyValueBackend) -> None:
        self._backend = backend
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    # -- Encoding -----------------------------------------------------------

    async def _read(self, key: str) -> list[MemoryRecord]:
        raw = await self._backend.get(key)
        if raw is None:
            return []
        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                raise TypeError(f"expected a list, got {type(data).__name__}")
            return [MemoryRecord.from_dict(item) for item in data]
        except (ValueError, TypeError, KeyError) as exc:
            log.error("Corrupt memory state under %s, resetting: %s", key, exc)
            await self._backend.delete(key)
            return []

    async def _write(self, key: str, records: list[MemoryRecord]) -> None:
        await self._backend.set(key, json.dumps([r.to_dict() for r in records], ensure_ascii=False))

    # -- Public API ---------------------------------------------------------

    async def list_records(self, agent_name: str) -> list[MemoryRecord]:
        key = namespace_key(agent_name)
        async with self._lock(key):
            return await self._read(key)

    async def contents(self, agent_name: str) -> list[str]:
        return [r.content for r in await self.list_records(agent_name)]

    async def add(self, agent_name: str, content: str) -> MemoryRecord:
        """Store *content*, or return the existing record if it is a
        case-insensitive duplicate."""
        content = content.strip() if isinstance(content, str) else ""
        if not content:
            raise MemoryStoreError("memory content must be non-empty text")
        key = namespace_key(agent_name)
        async with self._lock(key):
            records = await self._read(key)
            folded = content.casefold()
            for record in records:
                if record.content.casefold() == folded:
                    log.debug("Skipping duplicate memory for %s: %s", agent_name, content[:80])
                    return record
            record = MemoryRecord.new(content)
            await self._write(key, [record, *records])
        log.info("Stored memory %s for %s.", record.id[:8], agent_name)
        return record

    async def delete(self, agent_name: str, memory_id: str) -> bool:
        """Delete one record.  Returns ``False`` if the id was unknown."""
        key = namespace_key(agent_name)
        async with self._lock(key):
            records = await self._read(key)
            remaining = [r for r in records if r.id != memory_id]
            if len(remaining) == len(records):
                return False
            await self._write(key, remaining)
        log.info("Deleted memory %s for %s.", memory_id[:8], agent_name)
        return True

    async def clear(self, agent_name: str) -> None:
        key = namespace_key(agent_name)
        async with self._lock(key):
            await self._write(key, [])
        log.info("Cleared all memories for %s.", agent_name)

    async def reconcile(self, agent_name: str, contents: list[str]) -> list[MemoryRecord]:
        """Make the namespace hold exactly *contents*.

        Entries of *contents* that differ only in case collapse to the first
        one.  Records whose exact content is retained keep their id and
        timestamp; other records are dropped; new contents get fresh records
        at the front.  Returns the resulting records.
        """
        wanted = unique_contents(contents)
        wanted_set = set(wanted)
        key = namespace_key(agent_name)
        async with self._lock(key):
            existing = await self._read(key)
            kept: list[MemoryRecord] = []
            present: set[str] = set()
            for record in existing:
                if record.content in wanted_set and record.content not in present:
                    kept.append(record)
                    present.add(record.content)
            added = [MemoryRecord.new(c) for c in wanted if c not in present]
            # Newest first, matching add().
            result = [*reversed(added), *kept]
            await self._write(key, result)
        if added or len(kept) != len(existing):
            log.info(
                "Reconciled memory for %s: +%d / -%d.",
                agent_name, len(added), len(existing) - len(kept),
            )
        return result

    async def migrate(self, old_name: str, new_name: str) -> list[MemoryRecord]:
        """Move *old_name*'s memories under *new_name* and drop the old key.

        Records already under *new_name* win when contents collide, ignoring
        case; nothing else is dropped.  Returns the destination records.
        """
        old_key, new_key = namespace_key(old_name), namespace_key(new_name)
        if old_key == new_key:
            return await self.list_records(new_name)

        # Fixed acquisition order so two opposite renames cannot deadlock.
        first, second = sorted((old_key, new_key))
        async with self._lock(first), self._lock(second):
            old_records = await self._read(old_key)
            new_records = await self._read(new_key)
            by_content: dict[str, MemoryRecord] = {}
            for record in [*old_records, *new_records]:
                by_content[record.content.casefold()] = record
            merged = list(by_content.values())
            await self._write(new_key, merged)
            await self._backend.delete(old_key)
        log.info(
            "Migrated %d memories from %s to %s (%d total).",
            len(old_records), old_name, new_name, len(merged),
        )
        return merged

    async def close(self) -> None:
        await self._backend.close()
