"""Cloud Vision OCR provider.

Calls the Google Cloud Vision ``images:annotate`` REST endpoint with
DOCUMENT_TEXT_DETECTION and recovers invoice fields from the returned text
with the pattern parser.

See: https://cloud.google.com/vision/docs/ocr
"""

import base64
import logging
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from docintake.extraction.base import (
    ExtractionProvider,
    ProviderRejected,
    ProviderResponse,
    ProviderTimeout,
    ProviderUnavailable,
)
from docintake.extraction.schema import DocumentCategory
from docintake.extraction.text_parser import parse_invoice_text
from docintake.shared.config import Settings

logger = logging.getLogger(__name__)


class VisionExtractionProvider(ExtractionProvider):
    """Google Cloud Vision OCR provider (images only)."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self._client: httpx.AsyncClient | None = None

    @property
    def provider_name(self) -> str:
        return "vision"

    def is_available(self) -> bool:
        """Check if a Vision API key is configured."""
        return bool(self.settings.vision_api_key)

    async def extract(
        self,
        document_bytes: bytes,
        content_type: str,
        hint: DocumentCategory | None = None,
    ) -> ProviderResponse:
        """Run document text detection and parse invoice fields from the text.

        Raises:
            ProviderUnavailable: No API key, or API unreachable after retries
            ProviderTimeout: API call timed out
            ProviderRejected: Not an image, or the API returned an error for it
        """
        if not self.is_available():
            raise ProviderUnavailable(self.provider_name, "APP_VISION_API_KEY not set")
        if not content_type.startswith("image/"):
            raise ProviderRejected(self.provider_name, f"Unsupported content type: {content_type}")

        if self._client is None:
            self._client = httpx.AsyncClient(timeout=60.0)

        try:
            body = await self._annotate_with_retry(base64.b64encode(document_bytes).decode("ascii"))
        except httpx.TimeoutException as e:
            raise ProviderTimeout(self.provider_name, str(e)) from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code < 500:
                raise ProviderRejected(self.provider_name, str(e)) from e
            raise ProviderUnavailable(self.provider_name, str(e)) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(self.provider_name, str(e)) from e

        annotation = (body.get("responses") or [{}])[0]
        if "error" in annotation:
            message = annotation["error"].get("message", "annotation failed")
            raise ProviderRejected(self.provider_name, message)

        full_text = annotation.get("fullTextAnnotation") or {}
        text = full_text.get("text", "")
        confidence = self._page_confidence(full_text)
        logger.info(f"Vision OCR returned {len(text)} chars (confidence={confidence:.2f})")

        return ProviderResponse(
            raw_text=text,
            structured=parse_invoice_text(text, confidence) if text.strip() else None,
            provider_confidence=confidence,
            provider_id=self.provider_name,
        )

    @retry(
        retry=retry_if_exception_type((httpx.ConnectError, httpx.RemoteProtocolError)),
        wait=wait_exponential_jitter(initial=1, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _annotate_with_retry(self, image_b64: str) -> dict[str, Any]:
        if self._client is None:
            raise RuntimeError("Vision client not initialized")
        response = await self._client.post(
            self.settings.vision_endpoint,
            params={"key": self.settings.vision_api_key},
            json={
                "requests": [
                    {
                        "image": {"content": image_b64},
                        "features": [{"type": "DOCUMENT_TEXT_DETECTION"}],
                        "imageContext": {"languageHints": ["en", "hi"]},
                    }
                ]
            },
        )
        response.raise_for_status()
        result: dict[str, Any] = response.json()
        return result

    @staticmethod
    def _page_confidence(full_text: dict[str, Any]) -> float:
        scores = [
            float(block["confidence"])
            for page in full_text.get("pages", [])
            for block in page.get("blocks", [])
            if "confidence" in block
        ]
        if not scores:
            scores = [float(p["confidence"]) for p in full_text.get("pages", []) if "confidence" in p]
        if not scores:
            return 0.0
        return max(0.0, min(1.0, sum(scores) / len(scores)))
