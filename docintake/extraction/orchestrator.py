"""Extraction orchestrator: runs the provider fallback chain.

For each provider in order, call it under its timeout, normalize the answer
and stop as soon as one result is good enough. When no provider reaches the
acceptance floor the best attempt is returned marked degraded. The
orchestrator never retries a provider; transport retries belong to adapters.
"""

import asyncio
import logging
import time

from pydantic import BaseModel, Field

from docintake.api import metrics
from docintake.extraction.base import (
    ProviderRejected,
    ProviderTimeout,
    ProviderUnavailable,
)
from docintake.extraction.factory import ProviderSpec
from docintake.extraction.normalize import normalize_response
from docintake.extraction.schema import DocumentCategory, StructuredInvoiceResult

logger = logging.getLogger(__name__)


class ProviderAttempt(BaseModel):
    """Record of one provider call."""

    provider: str
    outcome: str
    confidence: float | None = None
    error: str | None = None
    duration_seconds: float = 0.0


class ExtractionOutcome(BaseModel):
    """Final result of one orchestrator run.

    Attributes:
        result: Exactly one structured result (possibly empty)
        degraded: True when no provider reached the acceptance floor
        attempts: Per-provider attempt log, in call order
    """

    result: StructuredInvoiceResult
    degraded: bool
    attempts: list[ProviderAttempt] = Field(default_factory=list)


class ExtractionOrchestrator:
    """Run the ordered provider chain for one document."""

    def __init__(self, chain: list[ProviderSpec], acceptance_floor: float) -> None:
        """Initialize orchestrator.

        Args:
            chain: Ordered provider specs (most capable first)
            acceptance_floor: Confidence at which the chain short-circuits
        """
        self.chain = chain
        self.acceptance_floor = acceptance_floor

    async def run(
        self,
        document_bytes: bytes,
        content_type: str,
        category: DocumentCategory | None,
        document_id: str,
    ) -> ExtractionOutcome:
        """Extract a document through the fallback chain.

        Args:
            document_bytes: Raw file content
            content_type: MIME type of the file
            category: Declared document category (hint for providers)
            document_id: Document the result belongs to

        Returns:
            ExtractionOutcome with exactly one result
        """
        best: StructuredInvoiceResult | None = None
        best_score = -1.0
        attempts: list[ProviderAttempt] = []

        for spec in self.chain:
            started = time.monotonic()
            attempt = ProviderAttempt(provider=spec.name, outcome="error")
            try:
                response = await asyncio.wait_for(
                    spec.provider.extract(document_bytes, content_type, category),
                    timeout=spec.timeout,
                )
                result = normalize_response(response, document_id)
            except (TimeoutError, ProviderTimeout) as e:
                attempt.outcome = "timeout"
                attempt.error = str(e) or f"timed out after {spec.timeout}s"
                logger.warning(f"Provider {spec.name} timed out for document {document_id}")
            except ProviderUnavailable as e:
                attempt.outcome = "unavailable"
                attempt.error = str(e)
                logger.warning(f"Provider {spec.name} unavailable for document {document_id}: {e}")
            except ProviderRejected as e:
                attempt.outcome = "rejected"
                attempt.error = str(e)
                logger.info(f"Provider {spec.name} rejected document {document_id}: {e}")
            except Exception as e:
                attempt.error = str(e)
                logger.exception(f"Provider {spec.name} failed for document {document_id}")
            else:
                score = result.acceptance_confidence()
                attempt.confidence = score
                # strict comparison: ties keep the earlier provider
                if score > best_score:
                    best, best_score = result, score
                if score >= self.acceptance_floor:
                    attempt.outcome = "accepted"
                else:
                    attempt.outcome = "below_floor"
                logger.info(
                    f"Provider {spec.name} scored {score:.3f} for document {document_id} "
                    f"(floor {self.acceptance_floor})"
                )
            finally:
                attempt.duration_seconds = round(time.monotonic() - started, 4)
                attempts.append(attempt)
                metrics.extraction_attempts_total.labels(
                    provider=spec.name, outcome=attempt.outcome
                ).inc()
                metrics.extraction_duration_seconds.labels(provider=spec.name).observe(
                    attempt.duration_seconds
                )

            if attempt.outcome == "accepted" and best is not None:
                return ExtractionOutcome(result=best, degraded=False, attempts=attempts)

        if best is None:
            logger.error(f"All extraction providers failed for document {document_id}")
            best = StructuredInvoiceResult(document_id=document_id, provider_id="none")

        best.degraded = True
        return ExtractionOutcome(result=best, degraded=True, attempts=attempts)
