"""Key-value backends for sessions and rate-limit counters.

``mutate`` is the only write primitive: an atomic read-modify-write of one
key. Redis implements it with an optimistic WATCH/MULTI transaction so that
several service instances can share sessions.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import WatchError

logger = logging.getLogger(__name__)

Mutation = Callable[[dict[str, Any] | None], dict[str, Any] | None]


class SessionBackend(ABC):
    """Atomic per-key JSON document store."""

    @abstractmethod
    async def get(self, key: str) -> dict[str, Any] | None: ...

    @abstractmethod
    async def mutate(self, key: str, fn: Mutation, ttl: int) -> dict[str, Any] | None:
        """Atomically replace the value of ``key`` with ``fn(current)``.

        Args:
            key: Record key
            fn: Pure function of the current value (None if absent); returning
                None deletes the key
            ttl: Expiry of the written value in seconds

        Returns:
            The value written (None if deleted)
        """

    @abstractmethod
    async def scan(self, prefix: str) -> list[str]:
        """Keys starting with ``prefix``."""

    async def close(self) -> None:
        return None


class InMemorySessionBackend(SessionBackend):
    """Single-process backend for development and tests."""

    def __init__(self) -> None:
        self._data: dict[str, tuple[dict[str, Any], float]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> dict[str, Any] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires = entry
        if time.monotonic() >= expires:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> dict[str, Any] | None:
        value = self._live(key)
        return json.loads(json.dumps(value)) if value is not None else None

    async def mutate(self, key: str, fn: Mutation, ttl: int) -> dict[str, Any] | None:
        async with self._lock:
            current = self._live(key)
            new = fn(json.loads(json.dumps(current)) if current is not None else None)
            if new is None:
                self._data.pop(key, None)
            else:
                self._data[key] = (new, time.monotonic() + ttl)
            return new

    async def scan(self, prefix: str) -> list[str]:
        return [key for key in list(self._data) if key.startswith(prefix)]


class RedisSessionBackend(SessionBackend):
    """Redis backend with optimistic transactions.

    Key TTL mirrors the record's expiry, so abandoned sessions disappear on
    their own.
    """

    MAX_RETRIES = 10

    def __init__(self, redis_url: str, client: aioredis.Redis | None = None) -> None:
        self._redis = client or aioredis.from_url(redis_url, decode_responses=True)

    async def get(self, key: str) -> dict[str, Any] | None:
        raw = await self._redis.get(key)
        return json.loads(raw) if raw else None

    async def mutate(self, key: str, fn: Mutation, ttl: int) -> dict[str, Any] | None:
        async with self._redis.pipeline(transaction=True) as pipe:
            for _ in range(self.MAX_RETRIES):
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    new = fn(json.loads(raw) if raw else None)
                    pipe.multi()
                    if new is None:
                        pipe.delete(key)
                    else:
                        pipe.set(key, json.dumps(new), ex=ttl)
                    await pipe.execute()
                    return new
                except WatchError:
                    logger.debug(f"Concurrent update on {key}, retrying")
                    continue
        raise RuntimeError(f"Could not update {key} after {self.MAX_RETRIES} attempts")

    async def scan(self, prefix: str) -> list[str]:
        return [key async for key in self._redis.scan_iter(match=f"{prefix}*")]

    async def close(self) -> None:
        await self._redis.aclose()


def create_session_backend(backend: str, redis_url: str) -> SessionBackend:
    """Build the configured backend ('redis' or 'memory')."""
    if backend == "memory":
        return InMemorySessionBackend()
    return RedisSessionBackend(redis_url)
