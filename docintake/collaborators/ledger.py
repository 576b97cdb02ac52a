"""Ledger collaborator: receives auto-approved and human-approved invoices.

The ledger (accounting entries, balance sheet) lives in another service; this
module only knows how to hand over one committed invoice.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from docintake.extraction.schema import Document, StructuredInvoiceResult
from docintake.identity.models import Vendor
from docintake.shared.config import Settings

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """The ledger did not accept the invoice."""


class LedgerClient(ABC):
    @abstractmethod
    async def commit(
        self,
        document: Document,
        result: StructuredInvoiceResult,
        vendor: Vendor,
    ) -> str:
        """Commit one invoice.

        Returns:
            Ledger entry identifier

        Raises:
            LedgerError: If the ledger refused or could not be reached
        """


def ledger_payload(document: Document, result: StructuredInvoiceResult, vendor: Vendor) -> dict[str, Any]:
    """JSON body describing one invoice for the ledger."""
    return {
        "document_id": document.id,
        "tenant_id": document.tenant_id,
        "client_id": document.client_id,
        "vendor": {"id": vendor.id, "name": vendor.name, "tax_id": vendor.tax_id},
        "invoice": result.model_dump(
            mode="json",
            exclude={"raw_text", "field_confidence", "document_id"},
        ),
    }


class HttpLedgerClient(LedgerClient):
    """POSTs invoices to the ledger service."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self.url = settings.ledger_url
        self._client = client or httpx.AsyncClient(timeout=settings.collaborator_timeout_seconds)

    async def commit(
        self,
        document: Document,
        result: StructuredInvoiceResult,
        vendor: Vendor,
    ) -> str:
        try:
            response = await self._post(ledger_payload(document, result, vendor))
        except httpx.HTTPError as e:
            raise LedgerError(f"Ledger commit failed for document {document.id}: {e}") from e

        entry_id = str(response.json().get("id", document.id))
        logger.info(f"Committed document {document.id} to ledger as {entry_id}")
        return entry_id

    @retry(
        retry=retry_if_exception_type((httpx.ConnectError, httpx.RemoteProtocolError)),
        wait=wait_exponential_jitter(initial=1, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _post(self, body: dict[str, Any]) -> httpx.Response:
        response = await self._client.post(self.url, json=body)
        response.raise_for_status()
        return response

    async def close(self) -> None:
        await self._client.aclose()
