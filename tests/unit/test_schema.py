"""Unit tests for the document and invoice data models."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from docintake.extraction.schema import (
    Document,
    DocumentChannel,
    DocumentStatus,
    InvalidTransition,
    LineItem,
    Party,
    StructuredInvoiceResult,
    TaxComponent,
    TaxScheme,
)


def _result(**overrides: object) -> StructuredInvoiceResult:
    data: dict[str, object] = {
        "document_id": "doc-1",
        "provider_id": "openai",
        "provider_confidence": 0.9,
    }
    data.update(overrides)
    return StructuredInvoiceResult(**data)  # type: ignore[arg-type]


class TestStructuredInvoiceResult:
    def test_empty_result_is_empty(self) -> None:
        assert _result().is_empty() is True

    def test_raw_text_alone_is_not_empty(self) -> None:
        assert _result(raw_text="some text").is_empty() is False

    def test_populated_fields_ignore_default_currency(self) -> None:
        result = _result(invoice_number="INV-1")
        assert result.populated_fields() == ["invoice_number"]

    def test_field_value_unknown_raises(self) -> None:
        with pytest.raises(KeyError):
            _result().field_value("nonexistent")

    def test_totals(self) -> None:
        result = _result(
            line_items=[LineItem(amount=Decimal("600")), LineItem(amount=Decimal("400"))],
            tax_breakdown=[
                TaxComponent(name="CGST", amount=Decimal("90"), scheme=TaxScheme.SAME_JURISDICTION),
                TaxComponent(name="SGST", amount=Decimal("90"), scheme=TaxScheme.SAME_JURISDICTION),
                TaxComponent(name="CESS", amount=Decimal("5")),
            ],
        )
        assert result.line_items_total() == Decimal("1000")
        assert result.tax_total() == Decimal("185")
        assert result.scheme_total(TaxScheme.SAME_JURISDICTION) == Decimal("180")
        assert result.scheme_total(TaxScheme.CROSS_JURISDICTION) == Decimal("0")

    def test_line_items_total_none_without_amounts(self) -> None:
        assert _result(line_items=[LineItem(description="x")]).line_items_total() is None

    def test_confidence_for_missing_field_is_zero(self) -> None:
        result = _result(field_confidence={"invoice_number": 0.99})
        assert result.confidence_for("invoice_number") == 0.0

    def test_confidence_for_falls_back_to_provider(self) -> None:
        result = _result(issuer=Party(name="ACME"))
        assert result.confidence_for("issuer_name") == 0.9

    def test_acceptance_confidence_capped_by_provider(self) -> None:
        result = _result(
            provider_confidence=0.5,
            issuer=Party(name="ACME"),
            invoice_number="INV-1",
            field_confidence={"issuer_name": 1.0, "invoice_number": 1.0},
        )
        # 2 of 6 core fields present at 1.0 -> mean 0.3333, below the cap
        assert result.acceptance_confidence() == pytest.approx(0.3333, abs=1e-4)

        capped = result.model_copy(update={"provider_confidence": 0.2})
        assert capped.acceptance_confidence() == 0.2


class TestDocumentLifecycle:
    def _document(self) -> Document:
        return Document(tenant_id="t1", client_id="c1", channel=DocumentChannel.WHATSAPP)

    def test_initial_status_recorded(self) -> None:
        document = self._document()
        assert document.status == DocumentStatus.RECEIVED
        assert [h.status for h in document.status_history] == [DocumentStatus.RECEIVED]

    def test_happy_path_to_approved(self) -> None:
        document = self._document()
        now = datetime(2024, 1, 15, tzinfo=UTC)
        for status in (
            DocumentStatus.EXTRACTING,
            DocumentStatus.EXTRACTED,
            DocumentStatus.VALIDATED,
            DocumentStatus.NEEDS_REVIEW,
            DocumentStatus.APPROVED,
        ):
            document.transition(status, now)
        assert document.is_terminal is True
        assert len(document.status_history) == 6
        assert document.status_history[-1].at == now

    def test_skipping_states_is_invalid(self) -> None:
        document = self._document()
        with pytest.raises(InvalidTransition):
            document.transition(DocumentStatus.APPROVED)

    def test_terminal_state_cannot_move(self) -> None:
        document = self._document()
        document.transition(DocumentStatus.REJECTED)
        with pytest.raises(InvalidTransition):
            document.transition(DocumentStatus.EXTRACTING)

    def test_any_stage_can_reject(self) -> None:
        document = self._document()
        document.transition(DocumentStatus.EXTRACTING)
        document.transition(DocumentStatus.REJECTED)
        assert document.status == DocumentStatus.REJECTED
