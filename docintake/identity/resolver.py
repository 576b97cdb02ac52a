"""Identity resolution: channel endpoint → tenant, sender identifier → client.

A sender is looked up under every canonical variant of its number, always
scoped to one tenant.
"""

import logging
import re

from docintake.identity.identifiers import mask, normalize_identifier
from docintake.identity.models import Client, ClientStatus, Tenant
from docintake.identity.store import IdentityStore
from docintake.shared.config import Settings

logger = logging.getLogger(__name__)


class IdentityResolutionError(Exception):
    """Base class for identity resolution failures.

    Both subclasses surface to the sender as the same generic message.
    """


class TenantNotConfigured(IdentityResolutionError):
    """No tenant owns the channel endpoint the message arrived on."""


class ClientNotFound(IdentityResolutionError):
    """Sender is unknown to the tenant and the tenant does not auto-provision."""


class IdentityResolver:
    """Resolve inbound messages to tenants and clients."""

    def __init__(self, store: IdentityStore, settings: Settings) -> None:
        self.store = store
        self.country_code = settings.default_country_code

    async def resolve_tenant(self, endpoint: str) -> Tenant:
        """Find the tenant owning a channel endpoint.

        Raises:
            TenantNotConfigured: If no tenant owns the endpoint
        """
        variants = normalize_identifier(endpoint, self.country_code) or [endpoint]
        tenant = await self.store.find_tenant(variants)
        if tenant is None:
            logger.warning(f"No tenant configured for endpoint {mask(endpoint)}")
            raise TenantNotConfigured(endpoint)
        return tenant

    async def resolve_client(self, tenant: Tenant, raw_identifier: str) -> Client:
        """Find (or provision) the client behind a sender identifier.

        Idempotent: resolving the same identifier twice yields the same client.

        Args:
            tenant: Tenant the message was addressed to
            raw_identifier: Sender phone number or email address

        Returns:
            Matching client, or a new pending_onboarding placeholder

        Raises:
            ClientNotFound: No match and the tenant does not auto-provision
        """
        variants = normalize_identifier(raw_identifier, self.country_code)
        if not variants:
            raise ClientNotFound(raw_identifier)

        client = await self.store.find_client(tenant.id, variants)
        if client is not None:
            logger.debug(f"Resolved {mask(raw_identifier)} to client {client.id}")
            return client

        if not tenant.auto_provision:
            logger.info(f"Unknown sender {mask(raw_identifier)} for tenant {tenant.id}")
            raise ClientNotFound(raw_identifier)

        canonical = variants[0]
        is_email = "@" in canonical
        placeholder = Client(
            tenant_id=tenant.id,
            name=f"Client_{re.sub(r'[^0-9A-Za-z]', '', canonical.split('@')[0])[-4:]}",
            phone=None if is_email else canonical,
            email=canonical if is_email else None,
            status=ClientStatus.PENDING_ONBOARDING,
            created_via="email" if is_email else "whatsapp",
        )
        client = await self.store.create_client(placeholder, variants)
        logger.info(
            f"Provisioned placeholder client {client.id} for {mask(raw_identifier)} "
            f"(tenant {tenant.id})"
        )
        return client
