"""Pattern-based invoice field extraction from OCR text.

Used by the OCR-only providers (cloud vision, tesseract) which return plain
text. Produces the same loose payload shape the LLM providers return, so
everything flows through one normalization step.
"""

import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

logger = logging.getLogger(__name__)

GSTIN_PATTERN = re.compile(r"\b(\d{2}[A-Z]{5}\d{4}[A-Z][1-9A-Z]Z[0-9A-Z])\b")

_AMOUNT = r"(?:rs\.?|inr|₹|\$|€|£)?\s*([\d,]+(?:\.\d{1,2})?)"

_TAX_NAMES = ("CGST", "SGST", "UTGST", "IGST", "CESS", "VAT")

# description  qty  rate  amount
_LINE_ITEM = re.compile(
    r"^\s*(?P<desc>[A-Za-z][^\d\n]{2,60}?)\s+"
    r"(?P<qty>\d+(?:\.\d+)?)\s+"
    r"(?:rs\.?|₹|\$)?\s*(?P<rate>[\d,]+(?:\.\d{1,2})?)\s+"
    r"(?:rs\.?|₹|\$)?\s*(?P<amount>[\d,]+(?:\.\d{1,2})?)\s*$",
    re.IGNORECASE | re.MULTILINE,
)

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%m/%d/%Y",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d-%b-%Y",
)


def parse_amount(text: str | None) -> Decimal | None:
    """Parse '1,180.00' / '₹ 1180' style amounts."""
    if text is None:
        return None
    cleaned = re.sub(r"^\s*(?:rs\.?|inr)", "", str(text), flags=re.IGNORECASE)
    cleaned = re.sub(r"[^\d.\-]", "", cleaned)
    if not cleaned or cleaned in {"-", ".", "-."}:
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def parse_date(text: str | None) -> date | None:
    """Parse a date string in the common invoice formats (day-first preferred)."""
    if not text:
        return None
    candidate = text.strip()[:20]
    for fmt in _DATE_FORMATS:
        for length in (len(candidate), 10, 11, 12):
            try:
                return datetime.strptime(candidate[:length].strip(), fmt).date()
            except ValueError:
                continue
    return None


def _find_amount(text: str, labels: list[str]) -> Decimal | None:
    for label in labels:
        pattern = rf"{label}\s*(?:\([^)]*\))?\s*[:\-]?\s*{_AMOUNT}"
        match = re.search(pattern, text, re.IGNORECASE)
        if match:
            amount = parse_amount(match.group(1))
            if amount is not None:
                return amount
    return None


def _find_date(text: str, labels: list[str]) -> date | None:
    for label in labels:
        match = re.search(rf"{label}\s*[:\-]?\s*([^\n]{{6,20}})", text, re.IGNORECASE)
        if match:
            parsed = parse_date(match.group(1))
            if parsed:
                return parsed
    return None


def _find_invoice_number(text: str) -> str | None:
    patterns = [
        r"(?:invoice|inv|bill)\s*(?:number|no\.?|#)\s*[:\-]?\s*([A-Z0-9][A-Z0-9/\-]{2,})",
        r"(?:invoice|inv)\s*[:#]\s*([A-Z0-9][A-Z0-9/\-]{2,})",
    ]
    for pattern in patterns:
        match = re.search(pattern, text, re.IGNORECASE)
        if match:
            number = match.group(1).strip()
            if number.lower() not in {"date", "from", "to", "total", "tax"}:
                return number
    return None


def _find_entity(text: str, labels: list[str]) -> str | None:
    for label in labels:
        match = re.search(rf"{label}\s*[:\-]?\s*([^\n]{{3,60}}?)\s*(?:\n|$)", text, re.IGNORECASE)
        if match:
            entity = re.sub(r"\s+", " ", match.group(1)).strip().rstrip(",:;")
            if len(entity) >= 3:
                return entity
    return None


def _find_taxes(text: str) -> list[dict[str, Any]]:
    taxes = []
    for name in _TAX_NAMES:
        pattern = (
            rf"\b{name}\b\s*(?:@\s*)?(?:\(?\s*(\d+(?:\.\d+)?)\s*%\s*\)?)?\s*[:\-]?\s*{_AMOUNT}"
        )
        match = re.search(pattern, text, re.IGNORECASE)
        if match:
            amount = parse_amount(match.group(2))
            if amount is None:
                continue
            taxes.append({"name": name, "rate": match.group(1), "amount": str(amount)})
    if not taxes:
        generic = _find_amount(text, ["tax amount", "total tax", "tax", "gst"])
        if generic is not None:
            taxes.append({"name": "TAX", "rate": None, "amount": str(generic)})
    return taxes


def _find_line_items(text: str) -> list[dict[str, Any]]:
    items = []
    for match in _LINE_ITEM.finditer(text):
        desc = match.group("desc").strip()
        if re.search(r"total|tax|gst|amount|balance", desc, re.IGNORECASE):
            continue
        items.append(
            {
                "description": desc,
                "quantity": match.group("qty"),
                "unit_rate": match.group("rate"),
                "amount": match.group("amount"),
            }
        )
    return items


def parse_invoice_text(text: str, base_confidence: float) -> dict[str, Any]:
    """Extract invoice fields from OCR text using regex patterns.

    Each found field gets ``base_confidence`` (the OCR engine's own confidence)
    scaled by how reliable the pattern is; absent fields are simply omitted.

    Args:
        text: OCR text to parse
        base_confidence: Confidence reported by the OCR engine (0-1)

    Returns:
        Loose payload dict understood by ``normalize.normalize_response``
    """
    payload: dict[str, Any] = {}
    confidence: dict[str, float] = {}

    def put(field: str, value: Any, reliability: float) -> None:
        if value is None or value == []:
            return
        payload[field] = value
        confidence[field] = round(base_confidence * reliability, 4)

    gstins = GSTIN_PATTERN.findall(text.upper())
    put("issuer_gstin", gstins[0] if gstins else None, 0.95)
    put("recipient_gstin", gstins[1] if len(gstins) > 1 else None, 0.9)

    put("invoice_number", _find_invoice_number(text), 0.9)
    issue_date = _find_date(text, ["invoice date", "date of issue", "dated", "issued", "date"])
    put("invoice_date", issue_date.isoformat() if issue_date else None, 0.85)
    due_date = _find_date(text, ["due date", "payment due", "due"])
    put("due_date", due_date.isoformat() if due_date else None, 0.8)

    put("issuer_name", _find_entity(text, ["from", "seller", "supplier", "vendor", "sold by"]), 0.7)
    put("recipient_name", _find_entity(text, ["bill to", "billed to", "buyer", "customer"]), 0.7)

    put("line_items", _find_line_items(text), 0.75)
    subtotal = _find_amount(text, ["sub-total", "sub total", "subtotal", "taxable value"])
    if subtotal is not None:
        payload["subtotal"] = str(subtotal)
    put("taxes", _find_taxes(text), 0.85)
    total = _find_amount(
        text, ["grand total", "total amount", "amount due", "balance due", r"\btotal"]
    )
    put("grand_total", str(total) if total is not None else None, 0.9)

    if re.search(r"₹|\bINR\b|\bRs\.?", text, re.IGNORECASE):
        payload["currency"] = "INR"
    elif "$" in text or re.search(r"\bUSD\b", text):
        payload["currency"] = "USD"
    elif "€" in text or re.search(r"\bEUR\b", text):
        payload["currency"] = "EUR"

    payload["confidence_scores"] = confidence
    logger.debug(f"Pattern parser found fields: {sorted(confidence)}")
    return payload
