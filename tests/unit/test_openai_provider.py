"""Unit tests for OpenAIExtractionProvider.

Tests the OpenAI-based provider with a mocked AsyncOpenAI client.
"""

import json
from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest
from tenacity import wait_none

from docintake.extraction.base import (
    ProviderError,
    ProviderRejected,
    ProviderTimeout,
    ProviderUnavailable,
)
from docintake.extraction.openai_provider import OpenAIExtractionProvider
from docintake.extraction.schema import DocumentCategory
from docintake.shared.config import Settings

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


@pytest.fixture
def provider() -> OpenAIExtractionProvider:
    return OpenAIExtractionProvider(Settings())


@pytest.fixture(autouse=True)
def no_retry_wait() -> Generator[None, None, None]:
    """Retry immediately instead of backing off."""
    with patch.object(OpenAIExtractionProvider._call_openai_with_retry.retry, "wait", wait_none()):
        yield


def _function_call_response(arguments: str) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.function_call = MagicMock()
    response.choices[0].message.function_call.arguments = arguments
    return response


def _client(create: AsyncMock) -> MagicMock:
    client = MagicMock()
    client.api_key = "test-key"
    client.chat.completions.create = create
    return client


class TestOpenAIProviderProperties:
    def test_provider_name(self, provider: OpenAIExtractionProvider) -> None:
        assert provider.provider_name == "openai"

    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    def test_is_available_with_key(self, provider: OpenAIExtractionProvider) -> None:
        assert provider.is_available() is True

    @patch.dict("os.environ", {}, clear=True)
    def test_is_not_available_without_key(self, provider: OpenAIExtractionProvider) -> None:
        assert provider.is_available() is False


class TestOpenAIExtraction:
    @pytest.mark.asyncio
    @patch("docintake.extraction.openai_provider.AsyncOpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    async def test_extract_image(
        self, mock_openai_class: MagicMock, provider: OpenAIExtractionProvider
    ) -> None:
        """Function-call arguments become the structured payload."""
        arguments = json.dumps(
            {
                "invoice_number": "INV-1",
                "grand_total": 1180,
                "raw_text": "INVOICE INV-1",
                "confidence_scores": {"invoice_number": 0.9, "grand_total": 0.7},
            }
        )
        create = AsyncMock(return_value=_function_call_response(arguments))
        mock_openai_class.return_value = _client(create)

        response = await provider.extract(b"\x89PNG", "image/png", DocumentCategory.INVOICE)

        assert response.provider_id == "openai"
        assert response.raw_text == "INVOICE INV-1"
        assert response.structured is not None
        assert response.structured["invoice_number"] == "INV-1"
        assert "raw_text" not in response.structured
        assert response.provider_confidence == pytest.approx(0.8)

        content = create.call_args.kwargs["messages"][1]["content"]
        assert content[1]["type"] == "image_url"
        assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")
        assert create.call_args.kwargs["function_call"] == {"name": "extract_invoice_data"}

    @pytest.mark.asyncio
    @patch("docintake.extraction.openai_provider.AsyncOpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    async def test_extract_pdf_sends_file_part(
        self, mock_openai_class: MagicMock, provider: OpenAIExtractionProvider
    ) -> None:
        create = AsyncMock(return_value=_function_call_response('{"confidence_score": 0.95}'))
        mock_openai_class.return_value = _client(create)

        response = await provider.extract(b"%PDF-1.7", "application/pdf")

        content = create.call_args.kwargs["messages"][1]["content"]
        assert content[1]["type"] == "file"
        assert content[1]["file"]["file_data"].startswith("data:application/pdf;base64,")
        assert response.provider_confidence == 0.95

    @pytest.mark.asyncio
    @patch.dict("os.environ", {}, clear=True)
    async def test_missing_key_is_unavailable(self, provider: OpenAIExtractionProvider) -> None:
        with pytest.raises(ProviderUnavailable):
            await provider.extract(b"data", "image/png")

    @pytest.mark.asyncio
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    async def test_unsupported_type_rejected(self, provider: OpenAIExtractionProvider) -> None:
        with pytest.raises(ProviderRejected):
            await provider.extract(b"data", "text/plain")

    @pytest.mark.asyncio
    @patch("docintake.extraction.openai_provider.AsyncOpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    async def test_retry_on_transient_error(
        self, mock_openai_class: MagicMock, provider: OpenAIExtractionProvider
    ) -> None:
        """Connection errors are retried and a later success is returned."""
        create = AsyncMock(
            side_effect=[
                openai.APIConnectionError(request=_REQUEST),
                _function_call_response('{"invoice_number": "INV-RETRY"}'),
            ]
        )
        mock_openai_class.return_value = _client(create)

        response = await provider.extract(b"data", "image/jpeg")

        assert response.structured == {"invoice_number": "INV-RETRY"}
        assert create.call_count == 2

    @pytest.mark.asyncio
    @patch("docintake.extraction.openai_provider.AsyncOpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    async def test_persistent_transient_error_is_unavailable(
        self, mock_openai_class: MagicMock, provider: OpenAIExtractionProvider
    ) -> None:
        create = AsyncMock(side_effect=openai.APIConnectionError(request=_REQUEST))
        mock_openai_class.return_value = _client(create)

        with pytest.raises(ProviderUnavailable):
            await provider.extract(b"data", "image/jpeg")
        assert create.call_count == 3

    @pytest.mark.asyncio
    @patch("docintake.extraction.openai_provider.AsyncOpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    async def test_timeout_maps_to_provider_timeout(
        self, mock_openai_class: MagicMock, provider: OpenAIExtractionProvider
    ) -> None:
        create = AsyncMock(side_effect=openai.APITimeoutError(request=_REQUEST))
        mock_openai_class.return_value = _client(create)

        with pytest.raises(ProviderTimeout):
            await provider.extract(b"data", "image/jpeg")

    @pytest.mark.asyncio
    @patch("docintake.extraction.openai_provider.AsyncOpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    async def test_bad_request_is_rejected(
        self, mock_openai_class: MagicMock, provider: OpenAIExtractionProvider
    ) -> None:
        error = openai.BadRequestError(
            "unsupported image", response=httpx.Response(400, request=_REQUEST), body=None
        )
        mock_openai_class.return_value = _client(AsyncMock(side_effect=error))

        with pytest.raises(ProviderRejected):
            await provider.extract(b"data", "image/jpeg")

    @pytest.mark.asyncio
    @patch("docintake.extraction.openai_provider.AsyncOpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    async def test_missing_function_call(
        self, mock_openai_class: MagicMock, provider: OpenAIExtractionProvider
    ) -> None:
        response = MagicMock()
        response.choices = [MagicMock()]
        response.choices[0].message.function_call = None
        mock_openai_class.return_value = _client(AsyncMock(return_value=response))

        with pytest.raises(ProviderError, match="No function call"):
            await provider.extract(b"data", "image/jpeg")

    @pytest.mark.asyncio
    @patch("docintake.extraction.openai_provider.AsyncOpenAI")
    @patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
    async def test_invalid_json_arguments(
        self, mock_openai_class: MagicMock, provider: OpenAIExtractionProvider
    ) -> None:
        mock_openai_class.return_value = _client(
            AsyncMock(return_value=_function_call_response("{not json"))
        )

        with pytest.raises(ProviderError, match="Invalid JSON"):
            await provider.extract(b"data", "image/jpeg")


def test_invoice_schema_definition(provider: OpenAIExtractionProvider) -> None:
    schema = provider._get_invoice_schema()

    assert schema["name"] == "extract_invoice_data"
    properties = schema["parameters"]["properties"]
    for field in ("issuer_gstin", "recipient_gstin", "line_items", "taxes", "grand_total"):
        assert field in properties
