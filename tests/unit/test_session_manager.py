"""Unit tests for the conversation session manager."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from docintake.session.backends import InMemorySessionBackend
from docintake.session.manager import SessionManager
from docintake.session.models import RateLimited, SessionState
from docintake.shared.config import Settings


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manager(clock: FakeClock) -> SessionManager:
    settings = Settings(
        session_ttl_seconds=3600,
        rate_limit_max_requests=3,
        rate_limit_window_seconds=60,
        rate_limit_block_seconds=300,
    )
    return SessionManager(InMemorySessionBackend(), settings, clock=clock)


class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_new_session_is_idle(self, manager: SessionManager, clock: FakeClock) -> None:
        session = await manager.get_or_create("+919876543210", "t1")

        assert session.state == SessionState.IDLE
        assert session.context == {}
        assert session.expires_at == clock.now + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_advance_merges_context(self, manager: SessionManager, clock: FakeClock) -> None:
        session = await manager.get_or_create("+919876543210", "t1")
        clock.advance(seconds=5)

        session = await manager.advance(
            session, state=SessionState.AWAITING_DOCUMENT, context={"category": "invoice"}
        )
        session = await manager.advance(session, context={"extra": 1}, client_id="c1")

        assert session.state == SessionState.AWAITING_DOCUMENT
        assert session.context == {"category": "invoice", "extra": 1}
        assert session.client_id == "c1"
        assert session.state_changed_at == clock.now
        assert session.version == 2

    @pytest.mark.asyncio
    async def test_clear_keeps_client(self, manager: SessionManager) -> None:
        session = await manager.get_or_create("+919876543210", "t1")
        session = await manager.advance(
            session, state=SessionState.PROCESSING, context={"category": "receipt"}, client_id="c1"
        )

        session = await manager.clear(session)

        assert session.state == SessionState.IDLE
        assert session.context == {}
        assert session.client_id == "c1"

    @pytest.mark.asyncio
    async def test_sessions_scoped_by_tenant(self, manager: SessionManager) -> None:
        session = await manager.get_or_create("+919876543210", "t1")
        await manager.advance(session, state=SessionState.AWAITING_DOCUMENT)

        other = await manager.get_or_create("+919876543210", "t2")

        assert other.state == SessionState.IDLE


class TestSessionExpiry:
    @pytest.mark.asyncio
    async def test_expired_session_is_absent(self, manager: SessionManager, clock: FakeClock) -> None:
        session = await manager.get_or_create("+919876543210", "t1")
        await manager.advance(session, state=SessionState.AWAITING_DOCUMENT, context={"a": 1})
        clock.advance(hours=1, seconds=1)

        assert await manager.get("+919876543210", "t1") is None
        fresh = await manager.get_or_create("+919876543210", "t1")
        assert fresh.state == SessionState.IDLE
        assert fresh.context == {}
        assert fresh.version == 0

    @pytest.mark.asyncio
    async def test_activity_refreshes_expiry(self, manager: SessionManager, clock: FakeClock) -> None:
        session = await manager.get_or_create("+919876543210", "t1")
        await manager.advance(session, state=SessionState.AWAITING_DOCUMENT)
        clock.advance(minutes=50)
        await manager.get_or_create("+919876543210", "t1")
        clock.advance(minutes=50)

        session = await manager.get("+919876543210", "t1")

        assert session is not None
        assert session.state == SessionState.AWAITING_DOCUMENT


class TestRateLimit:
    @pytest.mark.asyncio
    async def test_blocks_after_limit(self, manager: SessionManager) -> None:
        for expected in (1, 2, 3):
            counter = await manager.check_rate_limit("whatsapp:+919876543210")
            assert counter.count == expected

        with pytest.raises(RateLimited) as exc_info:
            await manager.check_rate_limit("whatsapp:+919876543210")
        assert exc_info.value.retry_after == 300

    @pytest.mark.asyncio
    async def test_stays_blocked_then_resets_to_one(
        self, manager: SessionManager, clock: FakeClock
    ) -> None:
        for _ in range(3):
            await manager.check_rate_limit("id")
        with pytest.raises(RateLimited):
            await manager.check_rate_limit("id")

        clock.advance(seconds=100)
        with pytest.raises(RateLimited) as exc_info:
            await manager.check_rate_limit("id")
        assert exc_info.value.retry_after == 200

        clock.advance(seconds=201)
        counter = await manager.check_rate_limit("id")
        assert counter.count == 1
        assert counter.blocked_until is None

    @pytest.mark.asyncio
    async def test_window_resets_count(self, manager: SessionManager, clock: FakeClock) -> None:
        for _ in range(3):
            await manager.check_rate_limit("id")
        clock.advance(seconds=61)

        counter = await manager.check_rate_limit("id")

        assert counter.count == 1

    @pytest.mark.asyncio
    async def test_identities_counted_separately(self, manager: SessionManager) -> None:
        for _ in range(3):
            await manager.check_rate_limit("a")

        counter = await manager.check_rate_limit("b")

        assert counter.count == 1


class TestPurge:
    @pytest.mark.asyncio
    async def test_purge_removes_expired_records(
        self, manager: SessionManager, clock: FakeClock
    ) -> None:
        await manager.get_or_create("old", "t1")
        await manager.check_rate_limit("old")
        clock.advance(hours=1, seconds=1)
        await manager.get_or_create("new", "t1")
        await manager.check_rate_limit("new")

        removed = await manager.purge_expired()

        assert removed == 2
        assert await manager.get("new", "t1") is not None
        keys = await manager.backend.scan("")
        assert sorted(keys) == ["ratelimit:new", "session:t1:new"]

    @pytest.mark.asyncio
    async def test_purge_keeps_blocked_counter(
        self, manager: SessionManager, clock: FakeClock
    ) -> None:
        for _ in range(4):
            try:
                await manager.check_rate_limit("noisy")
            except RateLimited:
                pass
        clock.advance(seconds=120)

        assert await manager.purge_expired() == 0


class TestSerialization:
    @pytest.mark.asyncio
    async def test_events_of_one_identity_run_in_order(self, manager: SessionManager) -> None:
        order: list[str] = []

        async def handle(name: str, delay: float) -> None:
            async with manager.serialized("t1:+919876543210"):
                order.append(f"{name}-start")
                await asyncio.sleep(delay)
                order.append(f"{name}-end")

        first = asyncio.create_task(handle("first", 0.05))
        await asyncio.sleep(0)
        second = asyncio.create_task(handle("second", 0))
        await asyncio.gather(first, second)

        assert order == ["first-start", "first-end", "second-start", "second-end"]
        assert manager._locks == {}

    @pytest.mark.asyncio
    async def test_different_identities_do_not_block(self, manager: SessionManager) -> None:
        async with manager.serialized("a"):
            async with manager.serialized("b"):
                assert set(manager._locks) == {"a", "b"}
