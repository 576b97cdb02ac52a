"""Unit tests for intent classification and reply texts."""

from datetime import date
from decimal import Decimal

import pytest

from docintake.channel.models import InboundEvent
from docintake.extraction.schema import (
    DocumentCategory,
    DocumentChannel,
    Party,
    StructuredInvoiceResult,
    TaxComponent,
)
from docintake.intake import messages
from docintake.intake.kyc import KycDocumentType, default_checklist
from docintake.intake.messages import Intent, classify


def _event(**kwargs: object) -> InboundEvent:
    data: dict[str, object] = {
        "channel": DocumentChannel.WHATSAPP,
        "identity": "919876543210",
        "endpoint": "919800000001",
    }
    data.update(kwargs)
    return InboundEvent(**data)  # type: ignore[arg-type]


class TestClassify:
    @pytest.mark.parametrize(
        ("text", "intent"),
        [
            ("Hi", Intent.MENU),
            ("menu please", Intent.MENU),
            ("CANCEL", Intent.CANCEL),
            ("upload", Intent.UPLOAD),
            ("yes", Intent.APPROVE),
            ("ok", Intent.APPROVE),
            ("no", Intent.REJECT),
            ("wrong amount", Intent.CORRECT),
            ("what is my balance", Intent.OTHER),
            ("", Intent.OTHER),
        ],
    )
    def test_keywords(self, text: str, intent: Intent) -> None:
        assert classify(_event(text=text))[0] == intent

    def test_keywords_match_whole_words(self) -> None:
        assert classify(_event(text="notes for you"))[0] == Intent.OTHER

    @pytest.mark.parametrize(
        ("text", "category"),
        [
            ("it's a bill", DocumentCategory.INVOICE),
            ("receipt", DocumentCategory.RECEIPT),
            ("my PAN card", DocumentCategory.KYC_IDENTITY),
            ("GST certificate", DocumentCategory.KYC_REGISTRATION),
        ],
    )
    def test_category_words(self, text: str, category: DocumentCategory) -> None:
        assert classify(_event(text=text)) == (Intent.CATEGORY, category)

    def test_button_reply(self) -> None:
        event = _event(kind="interactive", reply_id="approve", text="Approve")
        assert classify(event) == (Intent.APPROVE, None)

    def test_category_button(self) -> None:
        event = _event(kind="interactive", reply_id="category:receipt")
        assert classify(event) == (Intent.CATEGORY, DocumentCategory.RECEIPT)

    @pytest.mark.parametrize("reply_id", ["category:passport", "something-else"])
    def test_unknown_button(self, reply_id: str) -> None:
        assert classify(_event(kind="interactive", reply_id=reply_id)) == (Intent.OTHER, None)

    def test_media_wins_over_caption(self) -> None:
        event = _event(kind="media", media_id="m1", text="cancel")
        assert classify(event) == (Intent.MEDIA, None)


class TestReplies:
    def test_money(self) -> None:
        assert messages.money(Decimal("1180"), "INR") == "₹1,180.00"
        assert messages.money(Decimal("9.5"), "USD") == "$9.50"
        assert messages.money(Decimal("10"), "GBP") == "GBP 10.00"
        assert messages.money(None, "INR") == "unknown amount"

    def test_summary(self) -> None:
        result = StructuredInvoiceResult(
            document_id="doc-1",
            provider_id="openai",
            issuer=Party(name="ACME Traders", tax_id="27AAPFU0939F1ZV"),
            invoice_number="INV-1",
            issue_date=date(2024, 1, 15),
            tax_breakdown=[TaxComponent(name="IGST", amount=Decimal("180"))],
            grand_total=Decimal("1180"),
        )

        assert messages.summary(result) == (
            "Vendor: ACME Traders\n"
            "GSTIN: 27AAPFU0939F1ZV\n"
            "Invoice no: INV-1\n"
            "Date: 2024-01-15\n"
            "IGST: ₹180.00\n"
            "Total: ₹1,180.00"
        )

    def test_menu_greeting(self) -> None:
        text = messages.menu("Welcome to Sharma & Co.", "Ravi")
        assert text.startswith("Hello Ravi! Welcome to Sharma & Co.")

    def test_rate_limited_minutes(self) -> None:
        assert "about 5 minute(s)" in messages.rate_limited(300)
        assert "about 1 minute(s)" in messages.rate_limited(10)

    def test_document_prompt(self) -> None:
        assert "kyc identity" in messages.document_prompt(DocumentCategory.KYC_IDENTITY)

    def test_kyc_review_decisions(self) -> None:
        checklist = default_checklist("proprietorship")

        approved = messages.kyc_review_decision("approve", KycDocumentType.PAN_CARD, checklist)
        rejected = messages.kyc_review_decision("reject", KycDocumentType.PAN_CARD, checklist)
        checking = messages.kyc_review_decision("correct", KycDocumentType.PAN_CARD, checklist)

        assert approved.startswith("✅ Your accountant verified your PAN Card.\n\n📋")
        assert rejected.startswith("❌ Your accountant could not accept your PAN Card.")
        assert checking == "Your accountant is checking your PAN Card."
