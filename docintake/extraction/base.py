"""Abstract base class for extraction providers.

Each provider wraps one external text/structured-extraction engine (cloud LLM,
cloud vision OCR, self-hosted LLM, local OCR) behind the same async capability,
so the orchestrator can run them as an ordered fallback chain.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from docintake.extraction.schema import DocumentCategory
from docintake.shared.config import Settings


class ProviderError(Exception):
    """Base class for typed provider failures."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderUnavailable(ProviderError):
    """External dependency cannot be reached or is not configured."""


class ProviderTimeout(ProviderUnavailable):
    """Provider did not answer within its configured timeout."""


class ProviderRejected(ProviderError):
    """External service explicitly declined the document (e.g. unsupported format)."""


class ProviderResponse(BaseModel):
    """Raw result of one provider call.

    Attributes:
        raw_text: Text recognised in the document (may be empty)
        structured: Loosely-typed structured fields, if the provider returns any
        provider_confidence: Provider's own confidence (0-1); low is not an error
        provider_id: Name of provider that produced the response
    """

    raw_text: str = ""
    structured: dict[str, Any] | None = None
    provider_confidence: float = Field(0.0, ge=0, le=1)
    provider_id: str


class ExtractionProvider(ABC):
    """Abstract base class for document extraction providers.

    Providers must not mutate shared state; apart from a lazily created
    client they are safe to call concurrently.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @abstractmethod
    async def extract(
        self,
        document_bytes: bytes,
        content_type: str,
        hint: DocumentCategory | None = None,
    ) -> ProviderResponse:
        """Extract text and (optionally) structured fields from a document.

        Args:
            document_bytes: Raw file content
            content_type: MIME type of the file
            hint: Declared document category, if known

        Returns:
            ProviderResponse with text, structured payload and confidence

        Raises:
            ProviderUnavailable: Dependency unreachable or not configured
            ProviderRejected: Service declined the document
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is configured.

        Returns:
            True if provider can be used, False otherwise
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier (e.g., 'openai', 'tesseract')
        """
