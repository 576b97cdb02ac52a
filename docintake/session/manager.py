"""Conversation session manager.

Owns session lifecycle (create, advance, clear, expire), per-identity rate
limiting and per-identity serialization of inbound events. All persistence
goes through ``SessionBackend.mutate``.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

from docintake.identity.identifiers import mask
from docintake.session.backends import SessionBackend
from docintake.session.models import (
    ConversationSession,
    RateLimitCounter,
    RateLimited,
    SessionState,
)
from docintake.shared.config import Settings

logger = logging.getLogger(__name__)

SESSION_PREFIX = "session:"
RATE_PREFIX = "ratelimit:"


def utcnow() -> datetime:
    return datetime.now(UTC)


class SessionManager:
    """Session store facade used by the intake state machine."""

    def __init__(
        self,
        backend: SessionBackend,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize manager.

        Args:
            backend: Atomic key-value backend
            settings: Session TTL and rate limit settings
            clock: Source of the current time (injectable for tests)
        """
        self.backend = backend
        self.clock = clock
        self.ttl = timedelta(seconds=settings.session_ttl_seconds)
        self.max_requests = settings.rate_limit_max_requests
        self.window = timedelta(seconds=settings.rate_limit_window_seconds)
        self.block = timedelta(seconds=settings.rate_limit_block_seconds)
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @staticmethod
    def session_key(tenant_id: str, identity: str) -> str:
        return f"{SESSION_PREFIX}{tenant_id}:{identity}"

    def _new_session(self, identity: str, tenant_id: str, now: datetime) -> ConversationSession:
        return ConversationSession(
            identity=identity,
            tenant_id=tenant_id,
            created_at=now,
            last_activity=now,
            state_changed_at=now,
            expires_at=now + self.ttl,
        )

    def _load(self, raw: dict[str, Any] | None, now: datetime) -> ConversationSession | None:
        if raw is None:
            return None
        session = ConversationSession.model_validate(raw)
        return None if session.is_expired(now) else session

    @asynccontextmanager
    async def serialized(self, identity: str) -> AsyncIterator[None]:
        """Process events of one identity one at a time, in arrival order.

        asyncio.Lock wakes waiters FIFO; the lock is dropped once nobody
        holds or waits for it.
        """
        lock = self._locks.setdefault(identity, asyncio.Lock())
        self._waiters[identity] = self._waiters.get(identity, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[identity] -= 1
            if self._waiters[identity] == 0:
                del self._waiters[identity]
                self._locks.pop(identity, None)

    async def get(self, identity: str, tenant_id: str) -> ConversationSession | None:
        """Live session for the identity, None if absent or expired."""
        raw = await self.backend.get(self.session_key(tenant_id, identity))
        return self._load(raw, self.clock())

    async def get_or_create(self, identity: str, tenant_id: str) -> ConversationSession:
        """Load the live session or start a fresh idle one; refreshes expiry."""
        now = self.clock()

        def touch(raw: dict[str, Any] | None) -> dict[str, Any]:
            session = self._load(raw, now)
            if session is None:
                if raw is not None:
                    logger.info(f"Session for {mask(identity)} expired, starting fresh")
                session = self._new_session(identity, tenant_id, now)
            else:
                session.last_activity = now
                session.expires_at = now + self.ttl
            return session.model_dump(mode="json")

        raw = await self.backend.mutate(
            self.session_key(tenant_id, identity), touch, int(self.ttl.total_seconds())
        )
        return ConversationSession.model_validate(raw)

    async def advance(
        self,
        session: ConversationSession,
        state: SessionState | None = None,
        context: dict[str, Any] | None = None,
        client_id: str | None = None,
        replace_context: bool = False,
    ) -> ConversationSession:
        """Update state/context/client of a session.

        Args:
            session: Session being updated
            state: New state (unchanged if None)
            context: Context entries to merge (or replace with ``replace_context``)
            client_id: Resolved client to bind to the session
            replace_context: Replace the whole context instead of merging

        Returns:
            The stored session, with bumped version and refreshed expiry
        """
        now = self.clock()

        def update(raw: dict[str, Any] | None) -> dict[str, Any]:
            current = self._load(raw, now) or session.model_copy(deep=True)
            if state is not None and state != current.state:
                current.state = state
                current.state_changed_at = now
            if context is not None:
                current.context = dict(context) if replace_context else {**current.context, **context}
            if client_id is not None:
                current.client_id = client_id
            current.last_activity = now
            current.expires_at = now + self.ttl
            current.version += 1
            return current.model_dump(mode="json")

        raw = await self.backend.mutate(
            self.session_key(session.tenant_id, session.identity),
            update,
            int(self.ttl.total_seconds()),
        )
        return ConversationSession.model_validate(raw)

    async def clear(self, session: ConversationSession) -> ConversationSession:
        """Back to idle with an empty context; the bound client is kept."""
        return await self.advance(session, state=SessionState.IDLE, context={}, replace_context=True)

    async def check_rate_limit(self, identity: str) -> RateLimitCounter:
        """Count one request for the identity.

        Raises:
            RateLimited: If the identity is (or just became) blocked
        """
        now = self.clock()

        def count(raw: dict[str, Any] | None) -> dict[str, Any]:
            counter = (
                RateLimitCounter.model_validate(raw)
                if raw
                else RateLimitCounter(identity=identity, window_start=now)
            )
            if counter.blocked_until is not None:
                if now < counter.blocked_until:
                    return counter.model_dump(mode="json")
                counter = RateLimitCounter(identity=identity, window_start=now)
            elif now - counter.window_start > self.window:
                counter = RateLimitCounter(identity=identity, window_start=now)
            counter.count += 1
            if counter.count > self.max_requests:
                counter.blocked_until = now + self.block
                logger.warning(f"Rate limit exceeded for {mask(identity)}, blocking")
            return counter.model_dump(mode="json")

        ttl = int((self.window + self.block).total_seconds())
        raw = await self.backend.mutate(f"{RATE_PREFIX}{identity}", count, ttl)
        counter = RateLimitCounter.model_validate(raw)
        if counter.blocked_until is not None and now < counter.blocked_until:
            retry_after = max(1, int((counter.blocked_until - now).total_seconds()))
            raise RateLimited(identity, retry_after)
        return counter

    async def purge_expired(self) -> int:
        """Delete expired sessions and stale rate-limit counters.

        Returns:
            Number of records removed
        """
        now = self.clock()
        removed = 0

        def drop_expired_session(raw: dict[str, Any] | None) -> dict[str, Any] | None:
            return raw if self._load(raw, now) is not None else None

        def drop_stale_counter(raw: dict[str, Any] | None) -> dict[str, Any] | None:
            if raw is None:
                return None
            counter = RateLimitCounter.model_validate(raw)
            if counter.blocked_until is not None and now < counter.blocked_until:
                return raw
            if counter.blocked_until is None and now - counter.window_start <= self.window:
                return raw
            return None

        ttl = int(self.ttl.total_seconds())
        for key in await self.backend.scan(SESSION_PREFIX):
            if await self.backend.mutate(key, drop_expired_session, ttl) is None:
                removed += 1
        rate_ttl = int((self.window + self.block).total_seconds())
        for key in await self.backend.scan(RATE_PREFIX):
            if await self.backend.mutate(key, drop_stale_counter, rate_ttl) is None:
                removed += 1

        if removed:
            logger.info(f"Purged {removed} expired session records")
        return removed
