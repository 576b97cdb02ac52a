"""Unit tests for OllamaExtractionProvider.

Tests the Ollama-based extraction provider with mocked HTTP calls.
"""

import json
from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from tenacity import wait_none

from docintake.extraction.base import (
    ProviderError,
    ProviderRejected,
    ProviderTimeout,
    ProviderUnavailable,
)
from docintake.extraction.ollama_provider import OllamaExtractionProvider
from docintake.shared.config import Settings

_REQUEST = httpx.Request("POST", "http://localhost:11434/api/generate")


@pytest.fixture
def settings() -> Settings:
    """Create test settings with Ollama provider."""
    return Settings(
        ollama_base_url="http://localhost:11434/",
        ollama_model="qwen2.5vl:7b",
    )


@pytest.fixture
def provider(settings: Settings) -> OllamaExtractionProvider:
    """Create Ollama provider instance with a mocked HTTP client."""
    instance = OllamaExtractionProvider(settings)
    instance._client = MagicMock()
    return instance


@pytest.fixture(autouse=True)
def no_retry_wait() -> Generator[None, None, None]:
    with patch.object(OllamaExtractionProvider._call_ollama_with_retry.retry, "wait", wait_none()):
        yield


def _ollama_response(body: str) -> MagicMock:
    response = MagicMock()
    response.raise_for_status = MagicMock()
    response.json.return_value = {"response": body}
    return response


class TestOllamaProviderProperties:
    """Test provider properties and availability."""

    def test_provider_name(self, provider: OllamaExtractionProvider) -> None:
        assert provider.provider_name == "ollama"

    def test_is_available_when_configured(self, provider: OllamaExtractionProvider) -> None:
        assert provider.is_available() is True

    def test_is_not_available_without_model(self) -> None:
        provider = OllamaExtractionProvider(Settings(ollama_model=""))
        assert provider.is_available() is False


class TestOllamaExtraction:
    """Test document extraction."""

    @pytest.mark.asyncio
    async def test_extract_successful_response(self, provider: OllamaExtractionProvider) -> None:
        """Should parse the JSON answer and post the image."""
        body = json.dumps(
            {
                "invoice_number": "12345",
                "supplier_name": "Test Supplier",
                "grand_total": 110.0,
                "raw_text": "INVOICE 12345",
            }
        )
        provider._client.post = AsyncMock(return_value=_ollama_response(body))

        response = await provider.extract(b"image-bytes", "image/jpeg")

        assert response.provider_id == "ollama"
        assert response.raw_text == "INVOICE 12345"
        assert response.structured is not None
        assert response.structured["invoice_number"] == "12345"
        assert response.provider_confidence == 0.8

        call = provider._client.post.call_args
        assert call.args[0] == "http://localhost:11434/api/generate"
        assert call.kwargs["json"]["images"]
        assert call.kwargs["json"]["format"] == "json"

    @pytest.mark.asyncio
    async def test_extract_json_in_markdown_block(self, provider: OllamaExtractionProvider) -> None:
        """Should parse JSON wrapped in markdown code block."""
        body = '```json\n{"invoice_number": "67890", "confidence_score": 0.65}\n```'
        provider._client.post = AsyncMock(return_value=_ollama_response(body))

        response = await provider.extract(b"image-bytes", "image/png")

        assert response.structured is not None
        assert response.structured["invoice_number"] == "67890"
        assert response.provider_confidence == 0.65

    @pytest.mark.asyncio
    async def test_extract_json_with_surrounding_text(
        self, provider: OllamaExtractionProvider
    ) -> None:
        body = 'Here is the data: {"invoice_number": "ABC"} hope it helps'
        provider._client.post = AsyncMock(return_value=_ollama_response(body))

        response = await provider.extract(b"image-bytes", "image/png")

        assert response.structured == {"invoice_number": "ABC"}

    @pytest.mark.asyncio
    async def test_invalid_json_raises_provider_error(
        self, provider: OllamaExtractionProvider
    ) -> None:
        provider._client.post = AsyncMock(return_value=_ollama_response("I cannot read this"))

        with pytest.raises(ProviderError, match="JSON parsing failed"):
            await provider.extract(b"image-bytes", "image/png")

    @pytest.mark.asyncio
    async def test_pdf_rejected(self, provider: OllamaExtractionProvider) -> None:
        with pytest.raises(ProviderRejected):
            await provider.extract(b"%PDF", "application/pdf")

    @pytest.mark.asyncio
    async def test_connection_error_is_unavailable(
        self, provider: OllamaExtractionProvider
    ) -> None:
        provider._client.post = AsyncMock(side_effect=httpx.ConnectError("Connection refused"))

        with pytest.raises(ProviderUnavailable):
            await provider.extract(b"image-bytes", "image/png")
        assert provider._client.post.call_count == 3

    @pytest.mark.asyncio
    async def test_timeout_is_provider_timeout(self, provider: OllamaExtractionProvider) -> None:
        provider._client.post = AsyncMock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(ProviderTimeout):
            await provider.extract(b"image-bytes", "image/png")

    @pytest.mark.asyncio
    async def test_client_error_is_rejected(self, provider: OllamaExtractionProvider) -> None:
        response = MagicMock()
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "model not found", request=_REQUEST, response=httpx.Response(404, request=_REQUEST)
        )
        provider._client.post = AsyncMock(return_value=response)

        with pytest.raises(ProviderRejected):
            await provider.extract(b"image-bytes", "image/png")

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self, provider: OllamaExtractionProvider) -> None:
        response = MagicMock()
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "overloaded", request=_REQUEST, response=httpx.Response(503, request=_REQUEST)
        )
        provider._client.post = AsyncMock(return_value=response)

        with pytest.raises(ProviderUnavailable):
            await provider.extract(b"image-bytes", "image/png")
