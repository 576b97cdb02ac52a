"""Ollama-based extraction provider for self-hosted LLM inference.

Sends the document image to a multimodal model on a local Ollama server.
Supports data sovereignty requirements by running entirely on-premises.

Requires Ollama server running (default localhost:11434).
See: https://ollama.ai/
"""

import base64
import json
import logging
import re
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
    ProviderError,
    ProviderRejected,
    ProviderResponse,
    ProviderTimeout,
    ProviderUnavailable,
)
from docintake.extraction.schema import DocumentCategory
from docintake.shared.config import Settings

logger = logging.getLogger(__name__)

# Ollama does not report a confidence; a self-hosted 7B model is trusted less
# than the cloud model but more than raw OCR patterns.
_DEFAULT_CONFIDENCE = 0.8


class OllamaExtractionProvider(ExtractionProvider):
    """Ollama-based extraction provider for self-hosted LLM inference.

    Supports multimodal models like Qwen2.5-VL, LLaVA, Llama 3.2 Vision.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize Ollama extraction provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._model = settings.ollama_model
        self._client: httpx.AsyncClient | None = None

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'ollama'
        """
        return "ollama"

    def is_available(self) -> bool:
        """Check if an Ollama server and model are configured.

        Reachability is only known at call time; a refused connection
        surfaces as ProviderUnavailable.
        """
        return bool(self._base_url and self._model)

    async def extract(
        self,
        document_bytes: bytes,
        content_type: str,
        hint: DocumentCategory | None = None,
    ) -> ProviderResponse:
        """Extract structured invoice data from a document image using Ollama.

        Args:
            document_bytes: Raw image bytes
            content_type: MIME type of the file
            hint: Declared document category

        Returns:
            ProviderResponse with structured payload

        Raises:
            ProviderUnavailable: Server unreachable after retries
            ProviderTimeout: Server did not answer in time
            ProviderRejected: Not an image, or model refused the request
            ProviderError: Model answer contained no parsable JSON
        """
        if not self.is_available():
            raise ProviderUnavailable(self.provider_name, "Ollama base URL or model not configured")
        if not content_type.startswith("image/"):
            raise ProviderRejected(self.provider_name, f"Unsupported content type: {content_type}")

        if self._client is None:
            self._client = httpx.AsyncClient(timeout=120.0)  # LLMs can be slow

        try:
            response_text = await self._call_ollama_with_retry(
                self._build_extraction_prompt(hint),
                base64.b64encode(document_bytes).decode("ascii"),
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeout(self.provider_name, str(e)) from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code < 500:
                raise ProviderRejected(self.provider_name, str(e)) from e
            raise ProviderUnavailable(self.provider_name, str(e)) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(self.provider_name, str(e)) from e

        try:
            payload = self._parse_json_response(response_text)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse JSON from Ollama response: {e}")
            raise ProviderError(self.provider_name, f"JSON parsing failed: {e}") from e

        raw_text = str(payload.pop("raw_text", "") or "")
        overall = payload.get("confidence_score")
        confidence = (
            max(0.0, min(1.0, float(overall)))
            if isinstance(overall, int | float)
            else _DEFAULT_CONFIDENCE
        )
        return ProviderResponse(
            raw_text=raw_text,
            structured=payload,
            provider_confidence=confidence,
            provider_id=self.provider_name,
        )

    @retry(
        retry=retry_if_exception_type((httpx.ConnectError, httpx.RemoteProtocolError)),
        wait=wait_exponential_jitter(initial=1, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _call_ollama_with_retry(self, prompt: str, image_b64: str) -> str:
        """Call Ollama API with retry logic for transient errors.

        Args:
            prompt: Extraction prompt for the LLM
            image_b64: Base64-encoded document image

        Returns:
            Raw response text from Ollama

        Raises:
            httpx.HTTPError: After all retry attempts exhausted
        """
        if self._client is None:
            raise RuntimeError("Ollama client not initialized")

        response = await self._client.post(
            f"{self._base_url}/api/generate",
            json={
                "model": self._model,
                "prompt": prompt,
                "images": [image_b64],
                "stream": False,
                "format": "json",
                "options": {
                    "temperature": 0,
                    "num_predict": 2048,
                },
            },
        )
        response.raise_for_status()
        result: str = response.json().get("response", "")
        return result

    def _parse_json_response(self, response_text: str) -> dict[str, Any]:
        """Extract and parse JSON from LLM response.

        Handles common LLM quirks like markdown code blocks.

        Raises:
            json.JSONDecodeError: If no valid JSON found
        """
        json_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", response_text)
        if json_match:
            result: dict[str, Any] = json.loads(json_match.group(1).strip())
            return result

        json_match = re.search(r"\{[\s\S]*\}", response_text)
        if json_match:
            result = json.loads(json_match.group(0))
            return result

        result = json.loads(response_text.strip())
        return result

    def _build_extraction_prompt(self, hint: DocumentCategory | None) -> str:
        kind = hint.value.replace("_", " ") if hint else "invoice"
        schema = (
            '{"issuer_name": string|null, "issuer_gstin": string|null, '
            '"recipient_name": string|null, "recipient_gstin": string|null, '
            '"invoice_number": string|null, "invoice_date": "YYYY-MM-DD"|null, '
            '"due_date": "YYYY-MM-DD"|null, '
            '"line_items": [{"description": string, "quantity": number, '
            '"unit_rate": number, "amount": number}], '
            '"subtotal": number|null, '
            '"taxes": [{"name": "CGST"|"SGST"|"UTGST"|"IGST"|string, '
            '"rate": number|null, "amount": number}], '
            '"round_off": number|null, "grand_total": number|null, '
            '"currency": string|null, "raw_text": string, '
            '"confidence_score": number, "confidence_scores": {field: number}}'
        )
        return f"""You are an invoice data extraction assistant. \
Read the attached {kind} image and return ONLY valid JSON.

SCHEMA (use null for missing fields):
{schema}

INSTRUCTIONS:
- issuer = seller/supplier, recipient = "Bill To"/buyer
- Copy 15-character GSTINs exactly
- List each tax component separately with its amount
- Dates on Indian invoices are DD/MM/YYYY; output YYYY-MM-DD
- Amounts are plain numbers without symbols or thousands separators
- confidence values are between 0 and 1
- Return ONLY JSON, no explanation

OUTPUT:"""
