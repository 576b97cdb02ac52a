"""Confidence & validation engine.

Turns one StructuredInvoiceResult into a ConfidenceVerdict: per-field scores
adjusted by rule findings, a weighted overall score and the
auto-approve / needs-review / reject decision. Pure and synchronous.
"""

import logging
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from docintake.extraction.schema import Finding, Severity, StructuredInvoiceResult
from docintake.shared.config import Settings
from docintake.validation.rules import (
    DEFAULT_RULES,
    Rule,
    ValidationContext,
    arithmetic_closes,
)

logger = logging.getLogger(__name__)

OPTIONAL_FIELDS = frozenset({"recipient_tax_id", "due_date"})
TAX_ID_FIELDS = frozenset({"issuer_tax_id", "recipient_tax_id"})

TAX_ID_CRITICAL_CAP = 0.3
CRITICAL_CAP = 0.5
WARNING_CAP = 0.7


class VerdictDecision(str, Enum):
    AUTO_APPROVE = "auto_approve"
    NEEDS_REVIEW = "needs_review"
    REJECT = "reject"


class ReviewPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ConfidenceVerdict(BaseModel):
    """Outcome of evaluating one extraction result.

    Attributes:
        decision: auto_approve, needs_review or reject
        score: Weighted overall confidence (0-1)
        field_scores: Adjusted confidence per scored field
        critical_findings: Failed critical rules (block auto-approval)
        warning_findings: Failed warning rules
        review_reason: Why a human must look at it (None when auto-approved)
        unclear_fields: Fields below the review floor or implicated in a finding
        priority: Review priority (None unless needs_review)
    """

    decision: VerdictDecision
    score: float = Field(ge=0, le=1)
    field_scores: dict[str, float] = Field(default_factory=dict)
    critical_findings: list[Finding] = Field(default_factory=list)
    warning_findings: list[Finding] = Field(default_factory=list)
    review_reason: str | None = None
    unclear_fields: list[str] = Field(default_factory=list)
    priority: ReviewPriority | None = None

    @property
    def auto_approve(self) -> bool:
        return self.decision == VerdictDecision.AUTO_APPROVE

    @property
    def needs_review(self) -> bool:
        return self.decision == VerdictDecision.NEEDS_REVIEW

    @property
    def findings(self) -> list[Finding]:
        return [*self.critical_findings, *self.warning_findings]


class ConfidenceEngine:
    """Score and validate structured extraction results."""

    def __init__(self, settings: Settings, rules: tuple[Rule, ...] = DEFAULT_RULES) -> None:
        """Initialize engine.

        Args:
            settings: Thresholds, field weights and amount tolerance
            rules: Validation rules to apply, in order
        """
        self.settings = settings
        self.rules = rules
        self.tolerance = Decimal(str(settings.amount_tolerance))

    def evaluate(
        self, result: StructuredInvoiceResult, context: ValidationContext
    ) -> ConfidenceVerdict:
        """Evaluate one result.

        Args:
            result: Normalized extraction result
            context: Reference date, duplicate flag and jurisdiction classifier

        Returns:
            ConfidenceVerdict; auto_approve never carries critical findings
        """
        if result.is_empty():
            logger.info(f"Document {result.document_id}: nothing extracted, rejecting")
            return ConfidenceVerdict(
                decision=VerdictDecision.REJECT,
                score=0.0,
                review_reason="Nothing could be read from the document",
            )

        findings: list[Finding] = []
        for rule in self.rules:
            findings.extend(rule(result, context, self.tolerance))
        critical = [f for f in findings if f.severity == Severity.CRITICAL]
        warnings = [f for f in findings if f.severity == Severity.WARNING]

        field_scores = self.field_scores(result, findings)
        score = self.weighted_score(field_scores)

        high_value = result.grand_total is not None and result.grand_total > Decimal(
            str(self.settings.high_value_threshold)
        )

        reasons = []
        if critical:
            reasons.append("; ".join(f.message for f in critical))
        if result.degraded:
            reasons.append("No extraction engine produced a confident result")
        if high_value:
            reasons.append(
                f"Grand total {result.grand_total} exceeds the high-value threshold "
                f"{self.settings.high_value_threshold:g}"
            )
        if score < self.settings.auto_approve_threshold:
            reasons.append(
                f"Confidence {score:.2f} is below the auto-approve threshold "
                f"{self.settings.auto_approve_threshold:.2f}"
            )

        implicated = {name for f in findings for name in f.fields}
        unclear = [
            name
            for name, value in field_scores.items()
            if value < self.settings.field_review_floor or name in implicated
        ]
        unclear.extend(sorted(implicated - set(field_scores)))

        if not reasons:
            decision = VerdictDecision.AUTO_APPROVE
            priority = None
        else:
            decision = VerdictDecision.NEEDS_REVIEW
            if critical:
                priority = ReviewPriority.HIGH
            elif score < self.settings.review_threshold or high_value:
                priority = ReviewPriority.MEDIUM
            else:
                priority = ReviewPriority.LOW

        logger.info(
            f"Document {result.document_id}: decision={decision.value} score={score:.3f} "
            f"critical={len(critical)} warnings={len(warnings)}"
        )
        return ConfidenceVerdict(
            decision=decision,
            score=score,
            field_scores=field_scores,
            critical_findings=critical,
            warning_findings=warnings,
            review_reason="; ".join(reasons) if reasons else None,
            unclear_fields=unclear,
            priority=priority,
        )

    def field_scores(
        self, result: StructuredInvoiceResult, findings: list[Finding]
    ) -> dict[str, float]:
        """Provider confidence per weighted field, adjusted by rule outcomes.

        Missing optional fields are left out; missing required fields score 0.
        """
        verified = arithmetic_closes(result, self.tolerance) is True
        scores: dict[str, float] = {}
        for name in self.settings.field_weights:
            if name in OPTIONAL_FIELDS and not result.has_field(name):
                continue
            value = result.confidence_for(name)
            if verified and name in ("grand_total", "tax_breakdown") and result.has_field(name):
                value = 1.0
            for finding in findings:
                if name not in finding.fields:
                    continue
                if finding.severity == Severity.CRITICAL:
                    cap = TAX_ID_CRITICAL_CAP if name in TAX_ID_FIELDS else CRITICAL_CAP
                else:
                    cap = WARNING_CAP
                value = min(value, cap)
            scores[name] = round(value, 4)
        return scores

    def weighted_score(self, field_scores: dict[str, float]) -> float:
        weights = self.settings.field_weights
        total_weight = sum(weights[name] for name in field_scores)
        if total_weight <= 0:
            return 0.0
        weighted = sum(field_scores[name] * weights[name] for name in field_scores)
        return round(max(0.0, min(1.0, weighted / total_weight)), 4)
