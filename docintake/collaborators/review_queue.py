"""Review queue collaborator: human review of needs-review documents."""

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
from docintake.shared.config import Settings
from docintake.validation.engine import ConfidenceVerdict

logger = logging.getLogger(__name__)


class ReviewQueueError(Exception):
    """The review queue could not take the item."""


class ReviewQueue(ABC):
    @abstractmethod
    async def submit(
        self,
        document: Document,
        result: StructuredInvoiceResult,
        verdict: ConfidenceVerdict,
    ) -> None:
        """Queue a document for human review.

        Raises:
            ReviewQueueError: If the queue is unreachable
        """

    @abstractmethod
    async def route_to_manual_edit(self, document_id: str) -> None:
        """Flag a queued document for manual correction."""


class HttpReviewQueue(ReviewQueue):
    """Review queue service reached over HTTP."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self.url = settings.review_queue_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=settings.collaborator_timeout_seconds)

    async def submit(
        self,
        document: Document,
        result: StructuredInvoiceResult,
        verdict: ConfidenceVerdict,
    ) -> None:
        body = {
            "document_id": document.id,
            "tenant_id": document.tenant_id,
            "client_id": document.client_id,
            "storage_ref": document.storage_ref,
            "priority": verdict.priority.value if verdict.priority else None,
            "reason": verdict.review_reason,
            "unclear_fields": verdict.unclear_fields,
            "score": verdict.score,
            "findings": [f.model_dump(mode="json") for f in verdict.findings],
            "extraction": result.model_dump(mode="json", exclude={"raw_text"}),
        }
        try:
            await self._post(f"{self.url}/items", body)
        except httpx.HTTPError as e:
            raise ReviewQueueError(f"Review submit failed for document {document.id}: {e}") from e
        logger.info(f"Queued document {document.id} for review (priority={body['priority']})")

    async def route_to_manual_edit(self, document_id: str) -> None:
        try:
            await self._post(f"{self.url}/items/{document_id}/manual-edit", {})
        except httpx.HTTPError as e:
            raise ReviewQueueError(f"Manual edit routing failed for {document_id}: {e}") from e
        logger.info(f"Routed document {document_id} to manual edit")

    @retry(
        retry=retry_if_exception_type((httpx.ConnectError, httpx.RemoteProtocolError)),
        wait=wait_exponential_jitter(initial=1, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _post(self, url: str, body: dict[str, Any]) -> httpx.Response:
        response = await self._client.post(url, json=body)
        response.raise_for_status()
        return response

    async def close(self) -> None:
        await self._client.aclose()
