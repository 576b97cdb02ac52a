"""Unit tests for TesseractExtractionProvider.

OCR calls are mocked; no tesseract binary is needed.
"""

import io
from unittest.mock import patch

import pytest
from PIL import Image

from docintake.extraction.base import ProviderRejected, ProviderUnavailable
from docintake.extraction.tesseract_provider import TesseractExtractionProvider
from docintake.shared.config import Settings


@pytest.fixture
def provider() -> TesseractExtractionProvider:
    return TesseractExtractionProvider(Settings())


@pytest.fixture
def sample_image_bytes() -> bytes:
    """Create a simple test image as bytes."""
    img = Image.new("RGB", (200, 100), color="white")
    img_bytes = io.BytesIO()
    img.save(img_bytes, format="PNG")
    return img_bytes.getvalue()


def test_provider_name(provider: TesseractExtractionProvider) -> None:
    assert provider.provider_name == "tesseract"


@patch.dict("os.environ", {"TESSERACT_CMD": "/opt/custom/tesseract"})
def test_custom_tesseract_path() -> None:
    with patch("docintake.extraction.tesseract_provider.pytesseract.pytesseract") as mock_module:
        TesseractExtractionProvider(Settings())
        assert mock_module.tesseract_cmd == "/opt/custom/tesseract"


@patch("docintake.extraction.tesseract_provider.shutil.which", return_value=None)
def test_is_not_available_without_binary(_which: object, provider: TesseractExtractionProvider) -> None:
    assert provider.is_available() is False


@pytest.mark.asyncio
@patch("docintake.extraction.tesseract_provider.shutil.which", return_value="/usr/bin/tesseract")
@patch("docintake.extraction.tesseract_provider.pytesseract.image_to_string")
@patch("docintake.extraction.tesseract_provider.pytesseract.image_to_data")
async def test_extract_uses_word_confidence(
    mock_data: object,
    mock_string: object,
    _which: object,
    provider: TesseractExtractionProvider,
    sample_image_bytes: bytes,
) -> None:
    mock_data.return_value = {  # type: ignore[attr-defined]
        "conf": ["-1", "90", "70", "-1"],
        "text": ["", "Invoice", "No:", " "],
    }
    mock_string.return_value = "Invoice No: T-100\nGrand Total: 250.00"  # type: ignore[attr-defined]

    response = await provider.extract(sample_image_bytes, "image/png")

    assert response.provider_id == "tesseract"
    assert response.provider_confidence == pytest.approx(0.8)
    assert response.structured is not None
    assert response.structured["invoice_number"] == "T-100"


@pytest.mark.asyncio
@patch("docintake.extraction.tesseract_provider.shutil.which", return_value="/usr/bin/tesseract")
async def test_unreadable_image_rejected(
    _which: object, provider: TesseractExtractionProvider
) -> None:
    with pytest.raises(ProviderRejected, match="Unreadable image"):
        await provider.extract(b"not an image", "image/png")


@pytest.mark.asyncio
async def test_pdf_rejected(provider: TesseractExtractionProvider) -> None:
    with pytest.raises(ProviderRejected):
        await provider.extract(b"%PDF", "application/pdf")


@pytest.mark.asyncio
@patch("docintake.extraction.tesseract_provider.shutil.which", return_value=None)
async def test_missing_binary_unavailable(
    _which: object, provider: TesseractExtractionProvider, sample_image_bytes: bytes
) -> None:
    with pytest.raises(ProviderUnavailable):
        await provider.extract(sample_image_bytes, "image/png")
