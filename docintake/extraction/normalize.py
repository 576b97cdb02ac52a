"""Map loosely-typed provider payloads into StructuredInvoiceResult.

Providers return whatever shape their engine produces: string amounts with
currency symbols, assorted date formats, flat ``cgst``/``sgst``/``igst`` keys or
a ``taxes`` list, vendor/supplier/seller naming. This module is the single
place where those shapes are coerced into the strict schema.
"""

import logging
from decimal import Decimal
from typing import Any

from docintake.extraction.base import ProviderResponse
from docintake.extraction.schema import (
    LineItem,
    Party,
    StructuredInvoiceResult,
    TaxComponent,
    TaxScheme,
)
from docintake.extraction.text_parser import parse_amount, parse_date, parse_invoice_text

logger = logging.getLogger(__name__)

_SAME_JURISDICTION = {"CGST", "SGST", "UTGST"}
_CROSS_JURISDICTION = {"IGST"}

_ALIASES: dict[str, tuple[str, ...]] = {
    "issuer_name": ("issuer_name", "supplier_name", "vendor_name", "seller_name"),
    "issuer_tax_id": ("issuer_gstin", "issuer_tax_id", "vendor_gstin", "supplier_gstin", "gstin"),
    "recipient_name": ("recipient_name", "customer_name", "buyer_name", "bill_to"),
    "recipient_tax_id": ("recipient_gstin", "recipient_tax_id", "customer_gstin", "buyer_gstin"),
    "invoice_number": ("invoice_number", "invoice_no", "number"),
    "issue_date": ("invoice_date", "issue_date", "date"),
    "due_date": ("due_date",),
    "line_items": ("line_items", "items"),
    "tax_breakdown": ("taxes", "tax_breakdown", "tax_components"),
    "subtotal": ("subtotal", "taxable_value", "sub_total"),
    "round_off": ("round_off", "rounding"),
    "grand_total": ("grand_total", "total_amount", "total"),
    "currency": ("currency",),
}

# Confidence keys reported by providers → logical field names
_CONFIDENCE_KEYS: dict[str, str] = {
    alias: field for field, aliases in _ALIASES.items() for alias in aliases
}


def scheme_for(tax_name: str) -> TaxScheme:
    """Classify a tax component name into its jurisdiction scheme."""
    key = tax_name.strip().upper()
    if key in _SAME_JURISDICTION:
        return TaxScheme.SAME_JURISDICTION
    if key in _CROSS_JURISDICTION:
        return TaxScheme.CROSS_JURISDICTION
    return TaxScheme.OTHER


def _pick(payload: dict[str, Any], field: str) -> Any:
    for alias in _ALIASES[field]:
        value = payload.get(alias)
        if value not in (None, "", []):
            return value
    return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _decimal(value: Any) -> Decimal | None:
    """Coerce an amount; booleans and NaN/Infinity count as missing."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int | float):
        amount = Decimal(str(value))
    else:
        amount = parse_amount(str(value))
    if amount is None or not amount.is_finite():
        return None
    return amount


def _tax_id(value: Any) -> str | None:
    text = _text(value)
    if text is None:
        return None
    return "".join(text.split()).upper()


def _line_items(raw: Any) -> list[LineItem]:
    if not isinstance(raw, list):
        return []
    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        item = LineItem(
            description=_text(entry.get("description") or entry.get("name")),
            quantity=_decimal(entry.get("quantity") or entry.get("qty")),
            unit_rate=_decimal(entry.get("unit_rate") or entry.get("rate") or entry.get("price")),
            amount=_decimal(entry.get("amount") or entry.get("total")),
        )
        if item.amount is None and item.quantity is not None and item.unit_rate is not None:
            item.amount = item.quantity * item.unit_rate
        if item.description or item.amount is not None:
            items.append(item)
    return items


def _tax_components(payload: dict[str, Any]) -> list[TaxComponent]:
    components = []
    raw = _pick(payload, "tax_breakdown")
    if isinstance(raw, list):
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            name = _text(entry.get("name") or entry.get("type")) or "TAX"
            amount = _decimal(entry.get("amount"))
            if amount is None:
                continue
            components.append(
                TaxComponent(
                    name=name.upper(),
                    rate=_decimal(entry.get("rate")),
                    amount=amount,
                    scheme=scheme_for(name),
                )
            )
    elif isinstance(raw, dict):
        for name, amount in raw.items():
            value = _decimal(amount)
            if value is not None:
                components.append(
                    TaxComponent(name=name.upper(), amount=value, scheme=scheme_for(name))
                )

    if not components:
        # flat cgst/sgst/igst keys, as emitted by some LLM prompts
        for name in ("cgst", "sgst", "utgst", "igst", "cess"):
            value = _decimal(payload.get(name) or payload.get(f"{name}_amount"))
            if value is not None and value != 0:
                components.append(
                    TaxComponent(name=name.upper(), amount=value, scheme=scheme_for(name))
                )
    if not components:
        value = _decimal(payload.get("tax_amount"))
        if value is not None:
            components.append(TaxComponent(name="TAX", amount=value, scheme=TaxScheme.OTHER))
    return components


def _field_confidence(payload: dict[str, Any]) -> dict[str, float]:
    raw = payload.get("confidence_scores") or payload.get("field_confidence") or {}
    if not isinstance(raw, dict):
        return {}
    scores: dict[str, float] = {}
    for key, value in raw.items():
        field = _CONFIDENCE_KEYS.get(key, key)
        try:
            score = float(value)
        except (TypeError, ValueError):
            continue
        scores[field] = max(0.0, min(1.0, score))
    return scores


def normalize_response(response: ProviderResponse, document_id: str) -> StructuredInvoiceResult:
    """Coerce a provider response into the strict invoice schema.

    When a provider returns only text, fields are recovered with the pattern
    parser using the provider's confidence as the base score.

    Args:
        response: Provider response
        document_id: Document the result belongs to

    Returns:
        StructuredInvoiceResult (never raises on malformed payload fields)
    """
    payload = response.structured
    if payload is None:
        payload = (
            parse_invoice_text(response.raw_text, response.provider_confidence)
            if response.raw_text.strip()
            else {}
        )

    issue_date = _pick(payload, "issue_date")
    due_date = _pick(payload, "due_date")
    currency = _text(_pick(payload, "currency"))

    result = StructuredInvoiceResult(
        document_id=document_id,
        issuer=Party(
            name=_text(_pick(payload, "issuer_name")),
            tax_id=_tax_id(_pick(payload, "issuer_tax_id")),
        ),
        recipient=Party(
            name=_text(_pick(payload, "recipient_name")),
            tax_id=_tax_id(_pick(payload, "recipient_tax_id")),
        ),
        invoice_number=_text(_pick(payload, "invoice_number")),
        issue_date=parse_date(str(issue_date)) if issue_date else None,
        due_date=parse_date(str(due_date)) if due_date else None,
        line_items=_line_items(_pick(payload, "line_items")),
        subtotal=_decimal(_pick(payload, "subtotal")),
        tax_breakdown=_tax_components(payload),
        round_off=_decimal(payload.get("round_off") or payload.get("rounding")),
        grand_total=_decimal(_pick(payload, "grand_total")),
        currency=currency.upper() if currency else "INR",
        field_confidence=_field_confidence(payload),
        provider_id=response.provider_id,
        provider_confidence=response.provider_confidence,
        raw_text=response.raw_text,
    )
    logger.debug(
        f"Normalized {response.provider_id} response for {document_id}: "
        f"fields={result.populated_fields()}"
    )
    return result
