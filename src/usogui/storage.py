"""Persistent key/value store for client-side state.

Records are JSON envelopes of the form ``{"value": ..., "timestamp": <epoch>}``.
Anything that fails to decode or lacks those two keys raises
``MalformedCacheEntry`` so callers can treat it as absent.
"""

from __future__ import annotations

import json
import time
from typing import Any, Protocol

import redis.asyncio as redis

from usogui.config import Settings
from usogui.exceptions import MalformedCacheEntry


class KeyValueStore(Protocol):
    """Minimal async string store used for progress, settings and cache mirrors."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_prefix(self, prefix: str) -> int: ...

    async def close(self) -> None: ...


class MemoryStore:
    """In-process store. Used for anonymous sessions without Redis and in tests."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        # TTL is enforced by the envelope timestamp on read
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def delete_prefix(self, prefix: str) -> int:
        keys = [k for k in self._data if k.startswith(prefix)]
        for key in keys:
            del self._data[key]
        return len(keys)

    async def close(self) -> None:
        return None

    def __len__(self) -> int:
        return len(self._data)


class RedisStore:
    """Redis-backed store (redis.asyncio)."""

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> RedisStore:
        client = redis.from_url(  # type: ignore[no-untyped-call]
            url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=20,
        )
        return cls(client)

    async def get(self, key: str) -> str | None:
        return await self._redis.get(key)

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        if ttl_seconds:
            await self._redis.setex(key, max(1, int(ttl_seconds)), value)
        else:
            await self._redis.set(key, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def delete_prefix(self, prefix: str) -> int:
        keys = [key async for key in self._redis.scan_iter(match=f"{prefix}*")]
        if not keys:
            return 0
        return int(await self._redis.delete(*keys))

    async def close(self) -> None:
        await self._redis.aclose()


def open_store(settings: Settings) -> KeyValueStore:
    """Build the store configured by ``storage_backend``."""
    if settings.storage_backend == "redis":
        return RedisStore.from_url(settings.redis_url)
    if settings.storage_backend == "memory":
        return MemoryStore()
    msg = f"Unknown storage backend: {settings.storage_backend}"
    raise ValueError(msg)


def encode_envelope(value: Any, timestamp: float | None = None) -> str:
    """Wrap a value in the persisted JSON envelope."""
    return json.dumps({"value": value, "timestamp": time.time() if timestamp is None else timestamp})


def decode_envelope(key: str, raw: str) -> tuple[Any, float]:
    """Decode a persisted envelope into ``(value, timestamp)``.

    Raises:
        MalformedCacheEntry: If the payload is not a valid envelope.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedCacheEntry(key, f"invalid JSON: {e}") from e

    if not isinstance(data, dict) or "value" not in data or "timestamp" not in data:
        raise MalformedCacheEntry(key, "missing value/timestamp")

    timestamp = data["timestamp"]
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        raise MalformedCacheEntry(key, "timestamp is not a number")

    return data["value"], float(timestamp)
