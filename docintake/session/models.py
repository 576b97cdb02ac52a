"""Conversation session and rate-limit records."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_DOCUMENT_CATEGORY = "awaiting_document_category"
    AWAITING_DOCUMENT = "awaiting_document"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    PROCESSING = "processing"


class ConversationSession(BaseModel):
    """Per-identity conversation state.

    An expired session (``now > expires_at``) is treated exactly as an
    absent one.
    """

    identity: str
    tenant_id: str
    client_id: str | None = None
    state: SessionState = SessionState.IDLE
    context: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    last_activity: datetime
    state_changed_at: datetime
    expires_at: datetime
    version: int = 0

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class RateLimitCounter(BaseModel):
    """Requests seen for one identity in the current window."""

    identity: str
    count: int = 0
    window_start: datetime
    blocked_until: datetime | None = None


class RateLimited(Exception):
    """Identity exceeded its request budget."""

    def __init__(self, identity: str, retry_after: int) -> None:
        super().__init__(f"Rate limited, retry after {retry_after}s")
        self.identity = identity
        self.retry_after = retry_after
