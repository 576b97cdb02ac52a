"""Document repository: document records, extraction results, duplicate index.

When object storage is disabled the raw content is kept by the repository
itself under a ``memory://`` storage reference. The repository also holds
per-client KYC checklists and the documents still waiting to reach the review
queue.
"""

import logging
import re
from abc import ABC, abstractmethod

import redis.asyncio as aioredis
from pydantic import TypeAdapter

from docintake.extraction.schema import Document, StructuredInvoiceResult
from docintake.intake.kyc import KycChecklistItem
from docintake.validation.engine import ConfidenceVerdict

logger = logging.getLogger(__name__)

MEMORY_REF_PREFIX = "memory://"
REVIEW_PENDING_KEY = "review-pending"

_CHECKLIST = TypeAdapter(list[KycChecklistItem])


def invoice_key(tenant_id: str, result: StructuredInvoiceResult) -> str | None:
    """Duplicate-index key: tenant + issuer + invoice number.

    The issuer is its tax ID when known, else its normalized name. Returns
    None when either part is missing (duplicates cannot be detected).
    """
    if not result.invoice_number:
        return None
    issuer = result.issuer.tax_id or re.sub(r"[^a-z0-9]", "", (result.issuer.name or "").lower())
    if not issuer:
        return None
    number = re.sub(r"\s+", "", result.invoice_number).upper()
    return f"{tenant_id}:{issuer}:{number}"


class DocumentRepository(ABC):
    """Persistence for documents and their latest extraction result."""

    @abstractmethod
    async def save(self, document: Document) -> None: ...

    @abstractmethod
    async def get(self, document_id: str) -> Document | None: ...

    @abstractmethod
    async def save_result(self, result: StructuredInvoiceResult) -> None: ...

    @abstractmethod
    async def get_result(self, document_id: str) -> StructuredInvoiceResult | None: ...

    @abstractmethod
    async def put_content(self, document_id: str, data: bytes) -> str:
        """Keep raw content; returns a ``memory://`` storage reference."""

    @abstractmethod
    async def get_content(self, storage_ref: str) -> bytes | None: ...

    @abstractmethod
    async def find_invoice(self, key: str) -> str | None:
        """Document id already recorded under a duplicate-index key."""

    @abstractmethod
    async def record_invoice(self, key: str, document_id: str) -> None: ...

    @abstractmethod
    async def forget_invoice(self, key: str, document_id: str) -> None:
        """Drop an index entry, if it still points at ``document_id``."""

    @abstractmethod
    async def get_checklist(self, client_id: str) -> list[KycChecklistItem] | None: ...

    @abstractmethod
    async def save_checklist(self, client_id: str, checklist: list[KycChecklistItem]) -> None: ...

    @abstractmethod
    async def mark_review_pending(self, document_id: str, verdict: ConfidenceVerdict) -> None:
        """Remember a needs-review document the review queue could not take."""

    @abstractmethod
    async def pending_reviews(self) -> dict[str, ConfidenceVerdict]: ...

    @abstractmethod
    async def clear_review_pending(self, document_id: str) -> None: ...

    async def is_duplicate(self, tenant_id: str, result: StructuredInvoiceResult) -> bool:
        key = invoice_key(tenant_id, result)
        if key is None:
            return False
        existing = await self.find_invoice(key)
        return existing is not None and existing != result.document_id


class InMemoryDocumentRepository(DocumentRepository):
    """Process-local repository for development and tests."""

    def __init__(self) -> None:
        self.documents: dict[str, Document] = {}
        self.results: dict[str, StructuredInvoiceResult] = {}
        self.contents: dict[str, bytes] = {}
        self.invoices: dict[str, str] = {}
        self.checklists: dict[str, list[KycChecklistItem]] = {}
        self.review_pending: dict[str, ConfidenceVerdict] = {}

    async def save(self, document: Document) -> None:
        self.documents[document.id] = document.model_copy(deep=True)

    async def get(self, document_id: str) -> Document | None:
        document = self.documents.get(document_id)
        return document.model_copy(deep=True) if document else None

    async def save_result(self, result: StructuredInvoiceResult) -> None:
        self.results[result.document_id] = result.model_copy(deep=True)

    async def get_result(self, document_id: str) -> StructuredInvoiceResult | None:
        result = self.results.get(document_id)
        return result.model_copy(deep=True) if result else None

    async def put_content(self, document_id: str, data: bytes) -> str:
        self.contents[document_id] = data
        return f"{MEMORY_REF_PREFIX}{document_id}"

    async def get_content(self, storage_ref: str) -> bytes | None:
        return self.contents.get(storage_ref.removeprefix(MEMORY_REF_PREFIX))

    async def find_invoice(self, key: str) -> str | None:
        return self.invoices.get(key)

    async def record_invoice(self, key: str, document_id: str) -> None:
        self.invoices.setdefault(key, document_id)

    async def forget_invoice(self, key: str, document_id: str) -> None:
        if self.invoices.get(key) == document_id:
            del self.invoices[key]

    async def get_checklist(self, client_id: str) -> list[KycChecklistItem] | None:
        checklist = self.checklists.get(client_id)
        return [item.model_copy() for item in checklist] if checklist is not None else None

    async def save_checklist(self, client_id: str, checklist: list[KycChecklistItem]) -> None:
        self.checklists[client_id] = [item.model_copy() for item in checklist]

    async def mark_review_pending(self, document_id: str, verdict: ConfidenceVerdict) -> None:
        self.review_pending[document_id] = verdict

    async def pending_reviews(self) -> dict[str, ConfidenceVerdict]:
        return dict(self.review_pending)

    async def clear_review_pending(self, document_id: str) -> None:
        self.review_pending.pop(document_id, None)


class RedisDocumentRepository(DocumentRepository):
    """Redis-backed repository shared by all service instances."""

    def __init__(
        self,
        redis_url: str,
        content_ttl_seconds: int = 86400,
        client: aioredis.Redis | None = None,
    ) -> None:
        self._redis = client or aioredis.from_url(redis_url)
        self.content_ttl_seconds = content_ttl_seconds

    async def save(self, document: Document) -> None:
        await self._redis.set(f"document:{document.id}", document.model_dump_json())

    async def get(self, document_id: str) -> Document | None:
        raw = await self._redis.get(f"document:{document_id}")
        return Document.model_validate_json(raw) if raw else None

    async def save_result(self, result: StructuredInvoiceResult) -> None:
        await self._redis.set(f"document-result:{result.document_id}", result.model_dump_json())

    async def get_result(self, document_id: str) -> StructuredInvoiceResult | None:
        raw = await self._redis.get(f"document-result:{document_id}")
        return StructuredInvoiceResult.model_validate_json(raw) if raw else None

    async def put_content(self, document_id: str, data: bytes) -> str:
        await self._redis.set(f"document-content:{document_id}", data, ex=self.content_ttl_seconds)
        return f"{MEMORY_REF_PREFIX}{document_id}"

    async def get_content(self, storage_ref: str) -> bytes | None:
        raw = await self._redis.get(
            f"document-content:{storage_ref.removeprefix(MEMORY_REF_PREFIX)}"
        )
        return bytes(raw) if raw is not None else None

    async def find_invoice(self, key: str) -> str | None:
        raw = await self._redis.get(f"invoice:{key}")
        if raw is None:
            return None
        return raw.decode() if isinstance(raw, bytes) else str(raw)

    async def record_invoice(self, key: str, document_id: str) -> None:
        await self._redis.set(f"invoice:{key}", document_id, nx=True)

    async def forget_invoice(self, key: str, document_id: str) -> None:
        if await self.find_invoice(key) == document_id:
            await self._redis.delete(f"invoice:{key}")

    async def get_checklist(self, client_id: str) -> list[KycChecklistItem] | None:
        raw = await self._redis.get(f"kyc-checklist:{client_id}")
        return _CHECKLIST.validate_json(raw) if raw else None

    async def save_checklist(self, client_id: str, checklist: list[KycChecklistItem]) -> None:
        await self._redis.set(f"kyc-checklist:{client_id}", _CHECKLIST.dump_json(checklist))

    async def mark_review_pending(self, document_id: str, verdict: ConfidenceVerdict) -> None:
        await self._redis.hset(REVIEW_PENDING_KEY, document_id, verdict.model_dump_json())

    async def pending_reviews(self) -> dict[str, ConfidenceVerdict]:
        raw = await self._redis.hgetall(REVIEW_PENDING_KEY)
        pending = {}
        for key, value in raw.items():
            document_id = key.decode() if isinstance(key, bytes) else str(key)
            pending[document_id] = ConfidenceVerdict.model_validate_json(value)
        return pending

    async def clear_review_pending(self, document_id: str) -> None:
        await self._redis.hdel(REVIEW_PENDING_KEY, document_id)

    async def close(self) -> None:
        await self._redis.aclose()
