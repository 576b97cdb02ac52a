"""Unit tests for session key-value backends."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import WatchError

from docintake.session.backends import (
    InMemorySessionBackend,
    RedisSessionBackend,
    create_session_backend,
)


def _increment(raw: dict | None) -> dict:
    return {"count": (raw or {}).get("count", 0) + 1}


class TestInMemoryBackend:
    @pytest.mark.asyncio
    async def test_mutate_and_get(self) -> None:
        backend = InMemorySessionBackend()

        await backend.mutate("k", _increment, ttl=60)
        written = await backend.mutate("k", _increment, ttl=60)

        assert written == {"count": 2}
        assert await backend.get("k") == {"count": 2}

    @pytest.mark.asyncio
    async def test_returning_none_deletes(self) -> None:
        backend = InMemorySessionBackend()
        await backend.mutate("k", _increment, ttl=60)

        assert await backend.mutate("k", lambda raw: None, ttl=60) is None
        assert await backend.get("k") is None

    @pytest.mark.asyncio
    async def test_values_are_copies(self) -> None:
        backend = InMemorySessionBackend()
        await backend.mutate("k", lambda raw: {"items": [1]}, ttl=60)

        value = await backend.get("k")
        assert value is not None
        value["items"].append(2)

        assert await backend.get("k") == {"items": [1]}

    @pytest.mark.asyncio
    async def test_ttl_expiry(self) -> None:
        backend = InMemorySessionBackend()
        with patch("docintake.session.backends.time.monotonic", return_value=1000.0):
            await backend.mutate("k", _increment, ttl=10)
        with patch("docintake.session.backends.time.monotonic", return_value=1011.0):
            assert await backend.get("k") is None

    @pytest.mark.asyncio
    async def test_scan_by_prefix(self) -> None:
        backend = InMemorySessionBackend()
        for key in ("session:a", "session:b", "ratelimit:a"):
            await backend.mutate(key, _increment, ttl=60)

        assert sorted(await backend.scan("session:")) == ["session:a", "session:b"]


@pytest.fixture
def redis_pipe() -> MagicMock:
    pipe = MagicMock()
    pipe.watch = AsyncMock()
    pipe.get = AsyncMock(return_value=json.dumps({"count": 1}))
    pipe.execute = AsyncMock(return_value=[True])
    return pipe


@pytest.fixture
def redis_client(redis_pipe: MagicMock) -> MagicMock:
    client = MagicMock()
    client.pipeline.return_value.__aenter__ = AsyncMock(return_value=redis_pipe)
    client.pipeline.return_value.__aexit__ = AsyncMock(return_value=False)
    return client


class TestRedisBackend:
    @pytest.mark.asyncio
    async def test_mutate_writes_with_ttl(
        self, redis_client: MagicMock, redis_pipe: MagicMock
    ) -> None:
        backend = RedisSessionBackend("redis://unused", client=redis_client)

        written = await backend.mutate("k", _increment, ttl=30)

        assert written == {"count": 2}
        redis_pipe.watch.assert_awaited_once_with("k")
        redis_pipe.multi.assert_called_once()
        redis_pipe.set.assert_called_once_with("k", json.dumps({"count": 2}), ex=30)

    @pytest.mark.asyncio
    async def test_mutate_retries_on_concurrent_update(
        self, redis_client: MagicMock, redis_pipe: MagicMock
    ) -> None:
        redis_pipe.get = AsyncMock(side_effect=[json.dumps({"count": 1}), json.dumps({"count": 5})])
        redis_pipe.execute = AsyncMock(side_effect=[WatchError(), [True]])
        backend = RedisSessionBackend("redis://unused", client=redis_client)

        written = await backend.mutate("k", _increment, ttl=30)

        assert written == {"count": 6}
        assert redis_pipe.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_mutate_gives_up_after_max_retries(
        self, redis_client: MagicMock, redis_pipe: MagicMock
    ) -> None:
        redis_pipe.execute = AsyncMock(side_effect=WatchError())
        backend = RedisSessionBackend("redis://unused", client=redis_client)

        with pytest.raises(RuntimeError, match="Could not update"):
            await backend.mutate("k", _increment, ttl=30)
        assert redis_pipe.execute.await_count == RedisSessionBackend.MAX_RETRIES

    @pytest.mark.asyncio
    async def test_mutate_delete(self, redis_client: MagicMock, redis_pipe: MagicMock) -> None:
        backend = RedisSessionBackend("redis://unused", client=redis_client)

        assert await backend.mutate("k", lambda raw: None, ttl=30) is None
        redis_pipe.delete.assert_called_once_with("k")

    @pytest.mark.asyncio
    async def test_get(self, redis_client: MagicMock) -> None:
        redis_client.get = AsyncMock(return_value='{"state": "idle"}')
        backend = RedisSessionBackend("redis://unused", client=redis_client)

        assert await backend.get("k") == {"state": "idle"}


def test_create_session_backend() -> None:
    assert isinstance(create_session_backend("memory", "redis://unused"), InMemorySessionBackend)
    assert isinstance(
        create_session_backend("redis", "redis://localhost:6379/0"), RedisSessionBackend
    )
