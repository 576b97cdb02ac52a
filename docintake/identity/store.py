"""Identity store: tenants, clients and vendors.

The store is an external collaborator in production (tenant configuration is
owned elsewhere); ``InMemoryIdentityStore`` serves single-process deployments
and tests, optionally seeded from a JSON file.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from docintake.identity.identifiers import canonical_identifier
from docintake.identity.models import Client, Tenant, Vendor

logger = logging.getLogger(__name__)


class IdentityStore(ABC):
    """Keyed lookups for identity resolution."""

    @abstractmethod
    async def find_tenant(self, endpoints: list[str]) -> Tenant | None:
        """Find the tenant owning any of the given endpoint variants."""

    @abstractmethod
    async def find_client(self, tenant_id: str, identifiers: list[str]) -> Client | None:
        """Find a client of the tenant whose phone or email matches any variant.

        Variants are tried in order; the first hit wins.
        """

    @abstractmethod
    async def get_client(self, client_id: str) -> Client | None: ...

    @abstractmethod
    async def create_client(self, client: Client, identifiers: list[str]) -> Client:
        """Insert a client unless one already matches ``identifiers``.

        Returns:
            The stored client (the existing one if it was created concurrently)
        """

    @abstractmethod
    async def update_client(self, client: Client) -> Client: ...

    @abstractmethod
    async def list_vendors(self, tenant_id: str) -> list[Vendor]: ...

    @abstractmethod
    async def save_vendor(self, vendor: Vendor) -> Vendor: ...


class InMemoryIdentityStore(IdentityStore):
    """Process-local identity store.

    Client phone numbers and emails are stored in canonical form
    (``+<cc><number>``, lower-case email) so lookups by variant match
    however the record was typed.
    """

    def __init__(self, country_code: str = "91") -> None:
        self.country_code = country_code
        self._tenants: dict[str, Tenant] = {}
        self._clients: dict[str, Client] = {}
        self._vendors: dict[str, Vendor] = {}
        self._lock = asyncio.Lock()

    def add_tenant(self, tenant: Tenant) -> Tenant:
        tenant = tenant.model_copy(
            update={
                "endpoint": canonical_identifier(tenant.endpoint, self.country_code)
                or tenant.endpoint,
                "email_endpoint": canonical_identifier(tenant.email_endpoint, self.country_code),
            }
        )
        self._tenants[tenant.id] = tenant
        return tenant

    def add_client(self, client: Client) -> Client:
        client = self._canonical(client)
        self._clients[client.id] = client
        return client

    def _canonical(self, client: Client) -> Client:
        return client.model_copy(
            update={
                "phone": canonical_identifier(client.phone, self.country_code),
                "email": canonical_identifier(client.email, self.country_code),
            }
        )

    @classmethod
    def from_file(cls, path: str | Path, country_code: str = "91") -> "InMemoryIdentityStore":
        """Load tenants and clients from a JSON seed file.

        Expected shape::

            {"tenants": [{"id": ..., "name": ..., "endpoint": ...,
                          "clients": [{"name": ..., "phone": ...}]}]}

        Raises:
            FileNotFoundError: If the file does not exist
            pydantic.ValidationError: If a record is malformed
        """
        store = cls(country_code)
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        for raw in data.get("tenants", []):
            clients = raw.pop("clients", [])
            tenant = store.add_tenant(Tenant(**raw))
            for client in clients:
                store.add_client(Client(tenant_id=tenant.id, **client))
        logger.info(
            f"Loaded {len(store._tenants)} tenants and {len(store._clients)} clients from {path}"
        )
        return store

    async def find_tenant(self, endpoints: list[str]) -> Tenant | None:
        wanted = {e.lower() for e in endpoints}
        for tenant in self._tenants.values():
            keys = {tenant.endpoint.lower()}
            if tenant.email_endpoint:
                keys.add(tenant.email_endpoint.lower())
            if keys & wanted:
                return tenant
        return None

    async def find_client(self, tenant_id: str, identifiers: list[str]) -> Client | None:
        candidates = [c for c in self._clients.values() if c.tenant_id == tenant_id]
        for identifier in identifiers:
            for client in candidates:
                if identifier in (client.phone, client.email):
                    return client
        return None

    async def get_client(self, client_id: str) -> Client | None:
        return self._clients.get(client_id)

    async def create_client(self, client: Client, identifiers: list[str]) -> Client:
        async with self._lock:
            existing = await self.find_client(client.tenant_id, identifiers)
            if existing is not None:
                return existing
            return self.add_client(client)

    async def update_client(self, client: Client) -> Client:
        return self.add_client(client)

    async def list_vendors(self, tenant_id: str) -> list[Vendor]:
        return [v for v in self._vendors.values() if v.tenant_id == tenant_id]

    async def save_vendor(self, vendor: Vendor) -> Vendor:
        self._vendors[vendor.id] = vendor
        return vendor
