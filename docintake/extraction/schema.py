"""Document and invoice data models for structured extraction.

Every provider payload is mapped into ``StructuredInvoiceResult`` at the
adapter boundary, so validation never deals with provider-specific shapes.
"""

import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class DocumentCategory(str, Enum):
    """Declared or inferred document category."""

    INVOICE = "invoice"
    RECEIPT = "receipt"
    KYC_IDENTITY = "kyc_identity"
    KYC_REGISTRATION = "kyc_registration"

    @property
    def is_kyc(self) -> bool:
        return self in (DocumentCategory.KYC_IDENTITY, DocumentCategory.KYC_REGISTRATION)


class DocumentChannel(str, Enum):
    """Channel a document arrived through."""

    WHATSAPP = "whatsapp"
    EMAIL = "email"
    WEB = "web"


class DocumentStatus(str, Enum):
    """Document lifecycle status."""

    RECEIVED = "received"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    VALIDATED = "validated"
    APPROVED = "approved"
    NEEDS_REVIEW = "needs_review"
    REJECTED = "rejected"


class TaxScheme(str, Enum):
    """Jurisdiction scheme a tax component belongs to."""

    SAME_JURISDICTION = "same_jurisdiction"
    CROSS_JURISDICTION = "cross_jurisdiction"
    OTHER = "other"


class Severity(str, Enum):
    """Severity of a validation finding."""

    CRITICAL = "critical"
    WARNING = "warning"


class Party(BaseModel):
    """Issuer or recipient of an invoice."""

    name: str | None = Field(None, description="Legal or trade name")
    tax_id: str | None = Field(None, description="Tax identifier (e.g. GSTIN)")


class LineItem(BaseModel):
    """One invoice line."""

    description: str | None = None
    quantity: Decimal | None = None
    unit_rate: Decimal | None = None
    amount: Decimal | None = None


class TaxComponent(BaseModel):
    """One named tax component (CGST, SGST, IGST, cess, VAT...)."""

    name: str
    rate: Decimal | None = Field(None, description="Rate in percent")
    amount: Decimal
    scheme: TaxScheme = TaxScheme.OTHER


class Finding(BaseModel):
    """A failed validation rule."""

    rule: str
    severity: Severity
    message: str
    fields: list[str] = Field(default_factory=list)


# Fields whose confidence decides whether an extraction attempt is acceptable.
CORE_FIELDS: tuple[str, ...] = (
    "issuer_name",
    "invoice_number",
    "issue_date",
    "line_items",
    "tax_breakdown",
    "grand_total",
)

ALL_FIELDS: tuple[str, ...] = (
    "issuer_name",
    "issuer_tax_id",
    "recipient_name",
    "recipient_tax_id",
    "invoice_number",
    "issue_date",
    "due_date",
    "line_items",
    "tax_breakdown",
    "grand_total",
    "currency",
)


class StructuredInvoiceResult(BaseModel):
    """Provider-agnostic normalized extraction output.

    Created once per successful provider attempt. A later attempt in the
    fallback chain supersedes an earlier one; results are never merged.
    """

    document_id: str
    issuer: Party = Field(default_factory=Party)
    recipient: Party = Field(default_factory=Party)
    invoice_number: str | None = None
    issue_date: date | None = None
    due_date: date | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    subtotal: Decimal | None = None
    tax_breakdown: list[TaxComponent] = Field(default_factory=list)
    round_off: Decimal | None = None
    grand_total: Decimal | None = None
    currency: str | None = "INR"
    field_confidence: dict[str, float] = Field(default_factory=dict)
    provider_id: str
    provider_confidence: float = Field(0.0, ge=0, le=1)
    raw_text: str = ""
    degraded: bool = False

    def field_value(self, name: str) -> Any:
        """Return the value of a logical field by name."""
        mapping: dict[str, Any] = {
            "issuer_name": self.issuer.name,
            "issuer_tax_id": self.issuer.tax_id,
            "recipient_name": self.recipient.name,
            "recipient_tax_id": self.recipient.tax_id,
            "invoice_number": self.invoice_number,
            "issue_date": self.issue_date,
            "due_date": self.due_date,
            "line_items": self.line_items,
            "tax_breakdown": self.tax_breakdown,
            "grand_total": self.grand_total,
            "currency": self.currency,
        }
        if name not in mapping:
            raise KeyError(name)
        return mapping[name]

    def has_field(self, name: str) -> bool:
        value = self.field_value(name)
        if isinstance(value, list | str):
            return len(value) > 0
        return value is not None

    def populated_fields(self) -> list[str]:
        return [name for name in ALL_FIELDS if name != "currency" and self.has_field(name)]

    def is_empty(self) -> bool:
        """True when nothing at all was extracted (no text, no fields)."""
        return not self.raw_text.strip() and not self.populated_fields()

    def line_items_total(self) -> Decimal | None:
        amounts = [item.amount for item in self.line_items if item.amount is not None]
        if not amounts:
            return None
        return sum(amounts, Decimal("0"))

    def tax_total(self) -> Decimal:
        return sum((c.amount for c in self.tax_breakdown), Decimal("0"))

    def scheme_total(self, scheme: TaxScheme) -> Decimal:
        return sum(
            (c.amount for c in self.tax_breakdown if c.scheme == scheme),
            Decimal("0"),
        )

    def confidence_for(self, name: str) -> float:
        """Provider-reported confidence for a field (0 when the field is missing)."""
        if not self.has_field(name):
            return 0.0
        return self.field_confidence.get(name, self.provider_confidence)

    def acceptance_confidence(self) -> float:
        """Mean core-field confidence, capped by the provider's own confidence."""
        scores = [self.confidence_for(name) for name in CORE_FIELDS]
        mean = sum(scores) / len(scores)
        return round(min(mean, self.provider_confidence), 4)


class InvalidTransition(ValueError):
    """Raised when a document status change is not allowed."""


_ALLOWED_TRANSITIONS: dict[DocumentStatus, set[DocumentStatus]] = {
    DocumentStatus.RECEIVED: {DocumentStatus.EXTRACTING, DocumentStatus.REJECTED},
    DocumentStatus.EXTRACTING: {DocumentStatus.EXTRACTED, DocumentStatus.REJECTED},
    DocumentStatus.EXTRACTED: {DocumentStatus.VALIDATED, DocumentStatus.REJECTED},
    DocumentStatus.VALIDATED: {
        DocumentStatus.APPROVED,
        DocumentStatus.NEEDS_REVIEW,
        DocumentStatus.REJECTED,
    },
    DocumentStatus.NEEDS_REVIEW: {DocumentStatus.APPROVED, DocumentStatus.REJECTED},
    DocumentStatus.APPROVED: set(),
    DocumentStatus.REJECTED: set(),
}


class StatusChange(BaseModel):
    status: DocumentStatus
    at: datetime


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Document(BaseModel):
    """One submitted file and its lifecycle.

    Never deleted by the pipeline: approved and rejected are visible end states.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tenant_id: str
    client_id: str
    channel: DocumentChannel
    category: DocumentCategory = DocumentCategory.INVOICE
    kyc_type: str | None = Field(None, description="Classified KYC document type")
    storage_ref: str | None = None
    file_name: str | None = None
    content_type: str | None = None
    reply_to: str | None = Field(None, description="Channel address of the submitter")
    reply_via: str | None = Field(None, description="Channel handle replies are sent from")
    status: DocumentStatus = DocumentStatus.RECEIVED
    extraction_confidence: float | None = None
    findings: list[Finding] = Field(default_factory=list)
    verdict: str | None = None
    review_reason: str | None = None
    status_history: list[StatusChange] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)

    def model_post_init(self, __context: Any) -> None:
        if not self.status_history:
            self.status_history.append(StatusChange(status=self.status, at=self.created_at))

    @property
    def is_terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS[self.status]

    def transition(self, status: DocumentStatus, now: datetime | None = None) -> None:
        """Move to a new lifecycle status, recording the transition time.

        Raises:
            InvalidTransition: If the move is not part of the lifecycle
        """
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Document {self.id}: cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        self.status_history.append(StatusChange(status=status, at=now or _utcnow()))
