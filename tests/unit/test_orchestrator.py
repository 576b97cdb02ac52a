"""Unit tests for the extraction fallback orchestrator."""

import asyncio

import pytest

from docintake.extraction.base import (
    ExtractionProvider,
    ProviderRejected,
    ProviderResponse,
    ProviderUnavailable,
)
from docintake.extraction.factory import ProviderSpec
from docintake.extraction.orchestrator import ExtractionOrchestrator
from docintake.extraction.schema import DocumentCategory
from docintake.shared.config import Settings

FULL_PAYLOAD = {
    "issuer_name": "ACME Traders",
    "invoice_number": "INV-1",
    "invoice_date": "2024-01-15",
    "line_items": [{"description": "Widget", "amount": 1000}],
    "taxes": [{"name": "IGST", "amount": 180}],
    "grand_total": 1180,
}


class FakeProvider(ExtractionProvider):
    """Provider with scripted behavior."""

    def __init__(
        self,
        name: str,
        confidence: float = 0.9,
        error: Exception | None = None,
        delay: float = 0.0,
        payload: dict | None = None,
    ) -> None:
        super().__init__(Settings())
        self._name = name
        self.confidence = confidence
        self.error = error
        self.delay = delay
        self.payload = payload if payload is not None else FULL_PAYLOAD
        self.calls = 0

    async def extract(
        self,
        document_bytes: bytes,
        content_type: str,
        hint: DocumentCategory | None = None,
    ) -> ProviderResponse:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ProviderResponse(
            structured=dict(self.payload),
            provider_confidence=self.confidence,
            provider_id=self._name,
        )

    def is_available(self) -> bool:
        return True

    @property
    def provider_name(self) -> str:
        return self._name


def _orchestrator(*providers: FakeProvider, floor: float = 0.85, timeout: float = 5.0) -> ExtractionOrchestrator:
    return ExtractionOrchestrator(
        [ProviderSpec(provider=p, timeout=timeout) for p in providers], floor
    )


async def _run(orchestrator: ExtractionOrchestrator):  # type: ignore[no-untyped-def]
    return await orchestrator.run(b"image", "image/png", DocumentCategory.INVOICE, "doc-1")


@pytest.mark.asyncio
async def test_first_accepted_result_short_circuits() -> None:
    first = FakeProvider("openai", confidence=0.9)
    second = FakeProvider("tesseract", confidence=0.99)

    outcome = await _run(_orchestrator(first, second))

    assert outcome.result.provider_id == "openai"
    assert outcome.degraded is False
    assert outcome.result.degraded is False
    assert second.calls == 0
    assert [a.outcome for a in outcome.attempts] == ["accepted"]


@pytest.mark.asyncio
async def test_falls_back_until_floor_reached() -> None:
    first = FakeProvider("openai", error=ProviderUnavailable("openai", "no key"))
    second = FakeProvider("vision", confidence=0.5)
    third = FakeProvider("tesseract", confidence=0.9)

    outcome = await _run(_orchestrator(first, second, third))

    assert outcome.result.provider_id == "tesseract"
    assert outcome.degraded is False
    assert [a.outcome for a in outcome.attempts] == ["unavailable", "below_floor", "accepted"]


@pytest.mark.asyncio
async def test_best_result_returned_degraded_when_none_accepted() -> None:
    first = FakeProvider("openai", confidence=0.6)
    second = FakeProvider("tesseract", confidence=0.7)

    outcome = await _run(_orchestrator(first, second))

    assert outcome.degraded is True
    assert outcome.result.degraded is True
    assert outcome.result.provider_id == "tesseract"
    assert outcome.attempts[1].confidence == pytest.approx(0.7)


@pytest.mark.asyncio
async def test_tie_keeps_earlier_provider() -> None:
    first = FakeProvider("openai", confidence=0.6)
    second = FakeProvider("tesseract", confidence=0.6)

    outcome = await _run(_orchestrator(first, second))

    assert outcome.result.provider_id == "openai"


@pytest.mark.asyncio
async def test_timeout_counts_as_unavailable() -> None:
    slow = FakeProvider("openai", delay=1.0)
    fast = FakeProvider("tesseract", confidence=0.9)
    orchestrator = ExtractionOrchestrator(
        [ProviderSpec(provider=slow, timeout=0.01), ProviderSpec(provider=fast, timeout=5.0)],
        0.85,
    )

    outcome = await _run(orchestrator)

    assert outcome.result.provider_id == "tesseract"
    assert outcome.attempts[0].outcome == "timeout"


@pytest.mark.asyncio
async def test_all_providers_fail_gives_empty_degraded_result() -> None:
    outcome = await _run(
        _orchestrator(
            FakeProvider("openai", error=ProviderRejected("openai", "unsupported")),
            FakeProvider("tesseract", error=RuntimeError("crash")),
        )
    )

    assert outcome.degraded is True
    assert outcome.result.provider_id == "none"
    assert outcome.result.is_empty() is True
    assert [a.outcome for a in outcome.attempts] == ["rejected", "error"]
    assert outcome.attempts[1].error == "crash"


@pytest.mark.asyncio
async def test_provider_is_never_retried() -> None:
    provider = FakeProvider("openai", error=ProviderUnavailable("openai", "down"))

    await _run(_orchestrator(provider))

    assert provider.calls == 1


@pytest.mark.asyncio
async def test_acceptance_uses_core_field_confidence() -> None:
    """High provider confidence alone does not pass the floor when fields are missing."""
    sparse = FakeProvider("openai", confidence=0.99, payload={"invoice_number": "INV-1"})
    full = FakeProvider("tesseract", confidence=0.9)

    outcome = await _run(_orchestrator(sparse, full))

    assert outcome.result.provider_id == "tesseract"
    assert outcome.attempts[0].outcome == "below_floor"
