"""Local OCR provider using Tesseract.

Offline-capable last resort of the fallback chain:
- Configurable Tesseract path via environment variables
- Word confidences from ``image_to_data`` drive the provider confidence
- CPU-bound OCR runs in a worker thread so the event loop is not blocked

Based on pytesseract documentation:
https://github.com/madmaze/pytesseract
"""

import asyncio
import io
import logging
import os
import shutil

import pytesseract
from PIL import Image, UnidentifiedImageError

from docintake.extraction.base import (
    ExtractionProvider,
    ProviderRejected,
    ProviderResponse,
    ProviderUnavailable,
)
from docintake.extraction.schema import DocumentCategory
from docintake.extraction.text_parser import parse_invoice_text
from docintake.shared.config import Settings

logger = logging.getLogger(__name__)


class TesseractExtractionProvider(ExtractionProvider):
    """Tesseract OCR with pattern-based field extraction."""

    def __init__(self, settings: Settings) -> None:
        """Initialize Tesseract provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._configure_tesseract()

    def _configure_tesseract(self) -> None:
        """Configure Tesseract command path from environment.

        Allows overriding default Tesseract path via TESSERACT_CMD environment variable.
        Common paths:
        - Linux: /usr/bin/tesseract
        - macOS: /opt/homebrew/bin/tesseract or /usr/local/bin/tesseract
        """
        tesseract_cmd = os.getenv("TESSERACT_CMD")
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    @property
    def provider_name(self) -> str:
        return "tesseract"

    def is_available(self) -> bool:
        """Check that the tesseract binary can be found."""
        return shutil.which(pytesseract.pytesseract.tesseract_cmd) is not None

    async def extract(
        self,
        document_bytes: bytes,
        content_type: str,
        hint: DocumentCategory | None = None,
    ) -> ProviderResponse:
        """OCR the image in a worker thread and parse invoice fields.

        Raises:
            ProviderUnavailable: Tesseract binary missing
            ProviderRejected: Content is not a readable image
        """
        if not content_type.startswith("image/"):
            raise ProviderRejected(self.provider_name, f"Unsupported content type: {content_type}")
        if not self.is_available():
            raise ProviderUnavailable(self.provider_name, "tesseract binary not found")

        text, confidence = await asyncio.to_thread(self._ocr, document_bytes)
        logger.info(f"Tesseract OCR returned {len(text)} chars (confidence={confidence:.2f})")

        return ProviderResponse(
            raw_text=text,
            structured=parse_invoice_text(text, confidence) if text.strip() else None,
            provider_confidence=confidence,
            provider_id=self.provider_name,
        )

    def _ocr(self, document_bytes: bytes) -> tuple[str, float]:
        try:
            image = Image.open(io.BytesIO(document_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise ProviderRejected(self.provider_name, f"Unreadable image: {e}") from e

        try:
            data = pytesseract.image_to_data(
                image,
                lang=self.settings.tesseract_lang,
                output_type=pytesseract.Output.DICT,
            )
            text = pytesseract.image_to_string(image, lang=self.settings.tesseract_lang)
        except pytesseract.TesseractNotFoundError as e:
            raise ProviderUnavailable(self.provider_name, str(e)) from e
        except pytesseract.TesseractError as e:
            raise ProviderRejected(self.provider_name, str(e)) from e

        # conf is -1 for non-word boxes
        word_conf = [
            float(conf)
            for conf, word in zip(data.get("conf", []), data.get("text", []), strict=False)
            if str(word).strip() and float(conf) >= 0
        ]
        confidence = sum(word_conf) / len(word_conf) / 100 if word_conf else 0.0
        return text, max(0.0, min(1.0, confidence))
