"""Validation rules applied to a structured invoice result.

Each rule is a plain function ``(result, context, tolerance) -> list[Finding]``;
an empty list means the rule passed. Rules never modify the result.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from docintake.extraction.schema import Finding, Severity, StructuredInvoiceResult, TaxScheme
from docintake.validation.tax_ids import (
    GstinStateClassifier,
    JurisdictionClassifier,
    gstin_problem,
)

logger = logging.getLogger(__name__)


@dataclass
class ValidationContext:
    """Facts the rules need that are not part of the result itself.

    Attributes:
        today: Reference date for date sanity checks
        is_duplicate: Same issuer + invoice number already recorded for the tenant
        classifier: Decides same vs cross jurisdiction for the tax scheme rule
    """

    today: date
    is_duplicate: bool = False
    classifier: JurisdictionClassifier = field(default_factory=GstinStateClassifier)


Rule = Callable[[StructuredInvoiceResult, ValidationContext, Decimal], list[Finding]]


def arithmetic_closes(result: StructuredInvoiceResult, tolerance: Decimal) -> bool | None:
    """Check line items (or subtotal) + taxes + round-off against the grand total.

    Returns:
        True/False when checkable, None when the needed amounts are missing
    """
    base = result.line_items_total()
    if base is None:
        base = result.subtotal
    if base is None or result.grand_total is None:
        return None
    computed = base + result.tax_total() + (result.round_off or Decimal("0"))
    return abs(computed - result.grand_total) <= tolerance


def check_tax_id_format(
    result: StructuredInvoiceResult, context: ValidationContext, tolerance: Decimal
) -> list[Finding]:
    findings = []
    if not result.issuer.tax_id:
        findings.append(
            Finding(
                rule="tax_id_format",
                severity=Severity.WARNING,
                message="Issuer tax ID is missing",
                fields=["issuer_tax_id"],
            )
        )
    for name, tax_id in (
        ("issuer_tax_id", result.issuer.tax_id),
        ("recipient_tax_id", result.recipient.tax_id),
    ):
        if not tax_id:
            continue
        problem = gstin_problem(tax_id)
        if problem:
            findings.append(
                Finding(
                    rule="tax_id_format",
                    severity=Severity.CRITICAL,
                    message=f"Invalid {name.replace('_', ' ')}: {problem}",
                    fields=[name],
                )
            )
    return findings


def check_tax_scheme_exclusivity(
    result: StructuredInvoiceResult, context: ValidationContext, tolerance: Decimal
) -> list[Finding]:
    same = result.scheme_total(TaxScheme.SAME_JURISDICTION)
    cross = result.scheme_total(TaxScheme.CROSS_JURISDICTION)

    if same > 0 and cross > 0:
        return [
            Finding(
                rule="tax_scheme_exclusivity",
                severity=Severity.CRITICAL,
                message="Both same-jurisdiction (CGST/SGST) and cross-jurisdiction (IGST) taxes are charged",
                fields=["tax_breakdown"],
            )
        ]

    findings = []
    same_jurisdiction = context.classifier.is_same_jurisdiction(
        result.issuer.tax_id, result.recipient.tax_id
    )
    if same_jurisdiction is True and cross > 0:
        findings.append(
            Finding(
                rule="tax_scheme_exclusivity",
                severity=Severity.CRITICAL,
                message="Intra-state supply charged with IGST instead of CGST/SGST",
                fields=["tax_breakdown"],
            )
        )
    elif same_jurisdiction is False and same > 0:
        findings.append(
            Finding(
                rule="tax_scheme_exclusivity",
                severity=Severity.CRITICAL,
                message="Inter-state supply charged with CGST/SGST instead of IGST",
                fields=["tax_breakdown"],
            )
        )

    central = sum((c.amount for c in result.tax_breakdown if c.name == "CGST"), Decimal("0"))
    state = sum(
        (c.amount for c in result.tax_breakdown if c.name in ("SGST", "UTGST")), Decimal("0")
    )
    if (central > 0 or state > 0) and abs(central - state) > tolerance:
        findings.append(
            Finding(
                rule="tax_scheme_exclusivity",
                severity=Severity.WARNING,
                message=f"CGST ({central}) and SGST ({state}) should be equal",
                fields=["tax_breakdown"],
            )
        )
    return findings


def check_arithmetic_closure(
    result: StructuredInvoiceResult, context: ValidationContext, tolerance: Decimal
) -> list[Finding]:
    closes = arithmetic_closes(result, tolerance)
    if closes is None:
        return [
            Finding(
                rule="arithmetic_closure",
                severity=Severity.WARNING,
                message="Totals could not be verified (missing line items or grand total)",
                fields=["grand_total"],
            )
        ]
    if closes:
        return []
    base = result.line_items_total()
    if base is None:
        base = result.subtotal
    return [
        Finding(
            rule="arithmetic_closure",
            severity=Severity.CRITICAL,
            message=(
                f"Line items ({base}) + taxes ({result.tax_total()}) "
                f"do not match grand total ({result.grand_total})"
            ),
            fields=["grand_total", "line_items", "tax_breakdown"],
        )
    ]


def check_date_sanity(
    result: StructuredInvoiceResult, context: ValidationContext, tolerance: Decimal
) -> list[Finding]:
    findings = []
    issued = result.issue_date
    if issued is not None:
        if issued > context.today:
            findings.append(
                Finding(
                    rule="date_sanity",
                    severity=Severity.CRITICAL,
                    message=f"Invoice date {issued.isoformat()} is in the future",
                    fields=["issue_date"],
                )
            )
        elif issued < context.today - timedelta(days=365):
            findings.append(
                Finding(
                    rule="date_sanity",
                    severity=Severity.WARNING,
                    message=f"Invoice date {issued.isoformat()} is more than a year old",
                    fields=["issue_date"],
                )
            )
        if result.due_date is not None and result.due_date < issued:
            findings.append(
                Finding(
                    rule="date_sanity",
                    severity=Severity.CRITICAL,
                    message="Due date is before invoice date",
                    fields=["due_date"],
                )
            )
    return findings


def check_line_items(
    result: StructuredInvoiceResult, context: ValidationContext, tolerance: Decimal
) -> list[Finding]:
    findings = []
    for number, item in enumerate(result.line_items, start=1):
        if item.quantity is not None and item.quantity <= 0:
            findings.append(
                Finding(
                    rule="line_items",
                    severity=Severity.CRITICAL,
                    message=f"Line item {number}: quantity must be greater than zero",
                    fields=["line_items"],
                )
            )
        if item.unit_rate is not None and item.unit_rate < 0:
            findings.append(
                Finding(
                    rule="line_items",
                    severity=Severity.CRITICAL,
                    message=f"Line item {number}: rate cannot be negative",
                    fields=["line_items"],
                )
            )
        if item.quantity and item.unit_rate and item.amount is not None:
            computed = item.quantity * item.unit_rate
            if abs(computed - item.amount) > tolerance:
                findings.append(
                    Finding(
                        rule="line_items",
                        severity=Severity.CRITICAL,
                        message=(
                            f"Line item {number}: {item.quantity} x {item.unit_rate} = "
                            f"{computed}, but amount is {item.amount}"
                        ),
                        fields=["line_items"],
                    )
                )
    return findings


def check_duplicate(
    result: StructuredInvoiceResult, context: ValidationContext, tolerance: Decimal
) -> list[Finding]:
    if not context.is_duplicate:
        return []
    return [
        Finding(
            rule="duplicate",
            severity=Severity.CRITICAL,
            message=f"Invoice {result.invoice_number} from this issuer was already submitted",
            fields=["invoice_number"],
        )
    ]


DEFAULT_RULES: tuple[Rule, ...] = (
    check_tax_id_format,
    check_tax_scheme_exclusivity,
    check_arithmetic_closure,
    check_line_items,
    check_date_sanity,
    check_duplicate,
)
