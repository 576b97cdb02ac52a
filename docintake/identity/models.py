"""Tenant, client and vendor records."""

import uuid
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class ClientStatus(str, Enum):
    ACTIVE = "active"
    PENDING_ONBOARDING = "pending_onboarding"


class Tenant(BaseModel):
    """An accountant (or firm) owning a set of end-clients.

    Attributes:
        endpoint: Channel endpoint clients write to (business phone number or
            inbound email address)
        auto_provision: Create placeholder clients for unknown senders
    """

    id: str
    name: str
    endpoint: str
    email_endpoint: str | None = None
    auto_provision: bool = True
    greeting: str | None = None


class Client(BaseModel):
    """An end-client of a tenant."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tenant_id: str
    name: str
    phone: str | None = None
    email: str | None = None
    status: ClientStatus = ClientStatus.ACTIVE
    business_type: str = Field("proprietorship", description="Decides the KYC checklist")
    created_via: str = "manual"
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Vendor(BaseModel):
    """Invoice issuer known to a tenant's ledger."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tenant_id: str
    name: str
    normalized_name: str
    tax_id: str | None = None
    aliases: list[str] = Field(default_factory=list)
