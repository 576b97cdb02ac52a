"""OpenAI-based extraction provider for invoice field extraction.

Sends the document image (or PDF) straight to a vision-capable model and uses
function calling to get structured fields plus per-field confidence.

Includes retry logic with exponential backoff for transient API errors.
"""

import base64
import json
import logging
import os
from typing import Any

import openai
from openai import AsyncOpenAI
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

_TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)

_SUPPORTED_TYPES = ("image/", "application/pdf")


class OpenAIExtractionProvider(ExtractionProvider):
    """OpenAI-based extraction provider using GPT-4o-mini.

    Uses OpenAI API with function calling for structured outputs.
    Requires OPENAI_API_KEY environment variable.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize OpenAI extraction provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._client: AsyncOpenAI | None = None

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'openai'
        """
        return "openai"

    def is_available(self) -> bool:
        """Check if OpenAI API key is configured.

        Returns:
            True if OPENAI_API_KEY environment variable is set
        """
        return os.getenv("OPENAI_API_KEY") is not None

    async def extract(
        self,
        document_bytes: bytes,
        content_type: str,
        hint: DocumentCategory | None = None,
    ) -> ProviderResponse:
        """Extract structured invoice data from a document image using OpenAI.

        Args:
            document_bytes: Raw image or PDF bytes
            content_type: MIME type of the file
            hint: Declared document category

        Returns:
            ProviderResponse with structured payload, provider='openai'

        Raises:
            ProviderUnavailable: API key missing or API unreachable after retries
            ProviderTimeout: API call timed out
            ProviderRejected: Unsupported content type or request refused by the API
            ProviderError: Response did not contain the expected function call
        """
        if not self.is_available():
            raise ProviderUnavailable(self.provider_name, "OPENAI_API_KEY environment variable not set")

        if not content_type.startswith(_SUPPORTED_TYPES):
            raise ProviderRejected(self.provider_name, f"Unsupported content type: {content_type}")

        api_key = os.getenv("OPENAI_API_KEY")
        if self._client is None or self._client.api_key != api_key:
            self._client = AsyncOpenAI(api_key=api_key)

        try:
            response = await self._call_openai_with_retry(
                self._build_content(document_bytes, content_type, hint)
            )
        except openai.APITimeoutError as e:
            raise ProviderTimeout(self.provider_name, str(e)) from e
        except _TRANSIENT_ERRORS as e:
            raise ProviderUnavailable(self.provider_name, str(e)) from e
        except openai.BadRequestError as e:
            raise ProviderRejected(self.provider_name, str(e)) from e

        message = response.choices[0].message
        if message.function_call is None:
            raise ProviderError(self.provider_name, "No function call in API response")

        try:
            payload = json.loads(message.function_call.arguments)
        except json.JSONDecodeError as e:
            raise ProviderError(self.provider_name, f"Invalid JSON arguments: {e}") from e

        raw_text = str(payload.pop("raw_text", "") or "")
        return ProviderResponse(
            raw_text=raw_text,
            structured=payload,
            provider_confidence=self._overall_confidence(payload),
            provider_id=self.provider_name,
        )

    @retry(
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        wait=wait_exponential_jitter(initial=1, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _call_openai_with_retry(self, content: list[dict[str, Any]]) -> Any:
        """Call OpenAI API with retry logic for transient errors.

        Retries stay well inside the orchestrator's per-provider timeout.

        Args:
            content: User message content parts (instructions + document)

        Returns:
            OpenAI API response
        """
        if self._client is None:
            raise RuntimeError("OpenAI client not initialized")

        return await self._client.chat.completions.create(  # type: ignore[call-overload]
            model=self.settings.openai_model,
            messages=[
                {
                    "role": "system",
                    "content": "You are an invoice data extraction assistant for Indian GST invoices.",
                },
                {"role": "user", "content": content},
            ],
            functions=[self._get_invoice_schema()],
            function_call={"name": "extract_invoice_data"},
            temperature=0,
        )

    def _build_content(
        self,
        document_bytes: bytes,
        content_type: str,
        hint: DocumentCategory | None,
    ) -> list[dict[str, Any]]:
        encoded = base64.b64encode(document_bytes).decode("ascii")
        data_url = f"data:{content_type};base64,{encoded}"
        if content_type == "application/pdf":
            document_part: dict[str, Any] = {
                "type": "file",
                "file": {"filename": "document.pdf", "file_data": data_url},
            }
        else:
            document_part = {"type": "image_url", "image_url": {"url": data_url}}
        return [
            {"type": "text", "text": self._build_extraction_prompt(hint)},
            document_part,
        ]

    def _build_extraction_prompt(self, hint: DocumentCategory | None) -> str:
        kind = hint.value.replace("_", " ") if hint else "invoice"
        return f"""Extract the fields of this {kind} and call extract_invoice_data.

Instructions:
- issuer is the seller/supplier; recipient is the buyer ("Bill To")
- GSTINs are 15 characters, e.g. 27AAPFU0939F1ZV; copy them exactly
- List every line item with description, quantity, unit_rate and amount
- List every tax component separately (CGST, SGST, UTGST, IGST, cess) with rate and amount
- Amounts are plain numbers without currency symbols or thousands separators
- Dates are YYYY-MM-DD; Indian invoices use DD/MM/YYYY
- Return null for any field not clearly present; never guess
- confidence_scores: your confidence (0-1) for each field you return
- raw_text: the full text you can read on the document"""

    def _overall_confidence(self, payload: dict[str, Any]) -> float:
        overall = payload.get("confidence_score")
        if isinstance(overall, int | float):
            return max(0.0, min(1.0, float(overall)))
        scores = [
            float(v)
            for v in (payload.get("confidence_scores") or {}).values()
            if isinstance(v, int | float)
        ]
        if scores:
            return max(0.0, min(1.0, sum(scores) / len(scores)))
        return 0.9

    def _get_invoice_schema(self) -> dict[str, Any]:
        """Get OpenAI function calling schema for invoice extraction.

        Returns:
            Function definition dict for OpenAI API
        """
        amount = {"type": ["number", "null"]}
        return {
            "name": "extract_invoice_data",
            "description": "Extract structured invoice data from a document image",
            "parameters": {
                "type": "object",
                "properties": {
                    "issuer_name": {"type": ["string", "null"]},
                    "issuer_gstin": {"type": ["string", "null"]},
                    "recipient_name": {"type": ["string", "null"]},
                    "recipient_gstin": {"type": ["string", "null"]},
                    "invoice_number": {"type": ["string", "null"]},
                    "invoice_date": {"type": ["string", "null"], "format": "date"},
                    "due_date": {"type": ["string", "null"], "format": "date"},
                    "line_items": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "description": {"type": ["string", "null"]},
                                "quantity": amount,
                                "unit_rate": amount,
                                "amount": amount,
                            },
                        },
                    },
                    "subtotal": amount,
                    "taxes": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "name": {"type": "string"},
                                "rate": amount,
                                "amount": {"type": "number"},
                            },
                            "required": ["name", "amount"],
                        },
                    },
                    "round_off": amount,
                    "grand_total": amount,
                    "currency": {"type": ["string", "null"]},
                    "raw_text": {"type": ["string", "null"]},
                    "confidence_score": {"type": ["number", "null"], "minimum": 0, "maximum": 1},
                    "confidence_scores": {
                        "type": "object",
                        "additionalProperties": {"type": "number", "minimum": 0, "maximum": 1},
                    },
                },
            },
        }
