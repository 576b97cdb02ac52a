"""Intent classification and reply texts for the intake conversation."""

import re
from decimal import Decimal
from enum import Enum

from docintake.channel.models import Button, InboundEvent
from docintake.extraction.schema import DocumentCategory, StructuredInvoiceResult
from docintake.intake import kyc
from docintake.intake.kyc import KycChecklistItem, KycDocumentType
from docintake.validation.engine import ConfidenceVerdict


class Intent(str, Enum):
    CANCEL = "cancel"
    MENU = "menu"
    UPLOAD = "upload"
    CATEGORY = "category"
    APPROVE = "approve"
    CORRECT = "correct"
    REJECT = "reject"
    MEDIA = "media"
    OTHER = "other"


_KEYWORDS: list[tuple[Intent, re.Pattern[str]]] = [
    (Intent.CANCEL, re.compile(r"^(cancel|stop|exit|quit)\b")),
    (Intent.MENU, re.compile(r"^(hi|hello|hey|menu|help|start|namaste)\b")),
    (Intent.UPLOAD, re.compile(r"^(upload|send|submit|new)\b")),
    (Intent.APPROVE, re.compile(r"^(yes|approve|ok|okay|confirm)\b")),
    (Intent.CORRECT, re.compile(r"^(edit|change|fix|wrong)\b")),
    (Intent.REJECT, re.compile(r"^(no|reject|discard|delete)\b")),
]

_CATEGORY_WORDS: dict[str, DocumentCategory] = {
    "invoice": DocumentCategory.INVOICE,
    "bill": DocumentCategory.INVOICE,
    "receipt": DocumentCategory.RECEIPT,
    "kyc": DocumentCategory.KYC_IDENTITY,
    "pan": DocumentCategory.KYC_IDENTITY,
    "aadhaar": DocumentCategory.KYC_IDENTITY,
    "registration": DocumentCategory.KYC_REGISTRATION,
    "gst certificate": DocumentCategory.KYC_REGISTRATION,
}


def classify(event: InboundEvent) -> tuple[Intent, DocumentCategory | None]:
    """Classify an inbound event into an intent (plus category, if any)."""
    if event.kind == "media":
        return Intent.MEDIA, None

    if event.reply_id:
        reply = event.reply_id
        if reply.startswith("category:"):
            try:
                return Intent.CATEGORY, DocumentCategory(reply.split(":", 1)[1])
            except ValueError:
                return Intent.OTHER, None
        try:
            return Intent(reply), None
        except ValueError:
            return Intent.OTHER, None

    text = (event.text or "").strip().lower()
    if not text:
        return Intent.OTHER, None
    for intent, pattern in _KEYWORDS:
        if pattern.search(text):
            return intent, None
    for word, category in _CATEGORY_WORDS.items():
        if re.search(rf"\b{word}\b", text):
            return Intent.CATEGORY, category
    return Intent.OTHER, None


MENU_BUTTONS = [Button(id=Intent.UPLOAD.value, title="Upload document")]

CATEGORY_BUTTONS = [
    Button(id=f"category:{DocumentCategory.INVOICE.value}", title="Invoice"),
    Button(id=f"category:{DocumentCategory.RECEIPT.value}", title="Receipt"),
    Button(id=f"category:{DocumentCategory.KYC_IDENTITY.value}", title="KYC document"),
]

CONFIRM_BUTTONS = [
    Button(id=Intent.APPROVE.value, title="Approve"),
    Button(id=Intent.CORRECT.value, title="Needs correction"),
    Button(id=Intent.REJECT.value, title="Reject"),
]

IDENTITY_FAILURE = (
    "Sorry, we could not match this number to an account. "
    "Please contact your accountant."
)
GENERIC_FAILURE = "Sorry, something went wrong while handling your message. Please try again."
CANCELLED = "Okay, cancelled. Send 'menu' whenever you want to start again."
STILL_PROCESSING = "We are still processing your previous document. We'll reply shortly."
SESSION_RESET = "Your previous document took too long and was dropped. Please send it again."
CORRECTION_ROUTED = "Thanks. Your accountant will correct the details and update the record."
REJECTED_BY_CLIENT = "Okay, the document has been discarded."


def menu(greeting: str | None, name: str | None = None) -> str:
    hello = f"Hello {name}!" if name else "Hello!"
    intro = greeting or "Send us your invoices and receipts and we'll record them for you."
    return f"{hello} {intro}\n\nTap 'Upload document' or just send a photo or PDF."


def category_prompt() -> str:
    return "What kind of document are you sending?"


def document_prompt(category: DocumentCategory) -> str:
    return f"Please send a clear photo or PDF of your {category.value.replace('_', ' ')}."


def rate_limited(retry_after: int) -> str:
    minutes = max(1, round(retry_after / 60))
    return f"You have sent too many messages. Please try again in about {minutes} minute(s)."


def money(amount: Decimal | None, currency: str | None) -> str:
    if amount is None:
        return "unknown amount"
    symbol = {"INR": "₹", "USD": "$", "EUR": "€"}.get(currency or "INR", f"{currency} ")
    return f"{symbol}{amount:,.2f}"


def summary(result: StructuredInvoiceResult) -> str:
    lines = [
        f"Vendor: {result.issuer.name or '-'}",
        f"GSTIN: {result.issuer.tax_id or '-'}",
        f"Invoice no: {result.invoice_number or '-'}",
        f"Date: {result.issue_date.isoformat() if result.issue_date else '-'}",
    ]
    for component in result.tax_breakdown:
        lines.append(f"{component.name}: {money(component.amount, result.currency)}")
    lines.append(f"Total: {money(result.grand_total, result.currency)}")
    return "\n".join(lines)


def approved(result: StructuredInvoiceResult) -> str:
    return f"✅ Recorded.\n\n{summary(result)}"


def needs_confirmation(result: StructuredInvoiceResult, verdict: ConfidenceVerdict) -> str:
    text = f"Please check the details we read:\n\n{summary(result)}"
    if verdict.unclear_fields:
        unclear = ", ".join(f.replace("_", " ") for f in verdict.unclear_fields)
        text += f"\n\n⚠️ Please double-check: {unclear}"
    return text


def confirmation_reminder() -> str:
    return "Please approve, correct or reject the document you sent before sending another."


def could_not_read() -> str:
    return "❌ We could not read this document. Please send a clearer photo or PDF."


def review_pending() -> str:
    return "Thanks. Your accountant will review this document and record it."


def review_decision(decision: str, result: StructuredInvoiceResult | None) -> str:
    if decision == "approve" and result is not None:
        return f"✅ Your accountant approved your document.\n\n{summary(result)}"
    if decision == "reject":
        return "❌ Your accountant rejected the document you sent. Please contact them for details."
    return "Your accountant is correcting the document you sent."


def kyc_received(document_type: KycDocumentType, checklist: list[KycChecklistItem]) -> str:
    name = kyc.document_name(document_type)
    return (
        f"📄 Received your {name}. Your accountant will verify it.\n\n"
        f"{kyc.format_checklist(checklist)}"
    )


def kyc_review_decision(
    decision: str, document_type: KycDocumentType, checklist: list[KycChecklistItem]
) -> str:
    name = kyc.document_name(document_type)
    if decision == "approve":
        text = f"✅ Your accountant verified your {name}."
    elif decision == "reject":
        text = f"❌ Your accountant could not accept your {name}. Please send it again."
    else:
        return f"Your accountant is checking your {name}."
    return f"{text}\n\n{kyc.format_checklist(checklist)}"
