"""Key-value persistence surfaces for the memory store.

The store only needs three string operations, so backends are tiny:

- :class:`InMemoryBackend` -- process-local dict, for tests and ephemeral runs.
- :class:`JsonFileBackend` -- one JSON object on disk, rewritten atomically.
- :class:`RedisBackend` -- a Redis server via ``redis.asyncio``.

Values are opaque strings; the store owns the encoding.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

import redis.asyncio as aioredis

log = logging.getLogger(__name__)


@runtime_checkable
class KeyValueBackend(Protocol):
    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def close(self) -> None:
        ...


class InMemoryBackend:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def close(self) -> None:
        return None

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileBackend:
    """All keys in a single JSON object file.

    The whole file is read on first access and cached; every write replaces
    the file through a temporary sibling so a crash never leaves a truncated
    document behind.  An unreadable file is logged and treated as empty.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._data: dict[str, str] | None = None
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, str]:
        if not self._path.is_file():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log.error("Memory file %s is unreadable, starting empty: %s", self._path, exc)
            return {}
        if not isinstance(raw, dict):
            log.error("Memory file %s does not hold an object, starting empty.", self._path)
            return {}
        return {str(k): v for k, v in raw.items() if isinstance(v, str)}

    def _write(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".memory-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False, indent=2)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    async def _loaded(self) -> dict[str, str]:
        if self._data is None:
            self._data = await asyncio.to_thread(self._read)
        return self._data

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return (await self._loaded()).get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            data = await self._loaded()
            data[key] = value
            await asyncio.to_thread(self._write, dict(data))

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = await self._loaded()
            if data.pop(key, None) is not None:
                await asyncio.to_thread(self._write, dict(data))

    async def close(self) -> None:
        return None


class RedisBackend:
    """Keys stored as plain Redis strings under a common prefix."""

    def __init__(self, url: str, prefix: str = "cortex:") -> None:
        self._client = aioredis.Redis.from_url(url, decode_responses=True)
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> str | None:
        return await self._client.get(self._key(key))

    async def set(self, key: str, value: str) -> None:
        await self._client.set(self._key(key), value)

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def close(self) -> None:
        await self._client.aclose()


def build_backend(kind: str, *, file_path: str = "data/memory.json", redis_url: str = "") -> KeyValueBackend:
    """Create the backend named by ``MEMORY_BACKEND``."""
    if kind == "redis":
        return RedisBackend(redis_url)
    if kind == "file":
        return JsonFileBackend(file_path)
    return InMemoryBackend()
