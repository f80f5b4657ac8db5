import httpx
import pytest

from src.core.config import settings
from src.core.exceptions import ExtractionError
from src.services.text_extraction import (
    DOCX_TYPE,
    PDF_TYPE,
    PNG_TYPE,
    extract_text,
)
from tests.conftest import make_docx


@pytest.mark.asyncio
async def test_unsupported_type_is_rejected():
    with pytest.raises(ExtractionError) as excinfo:
        await extract_text(b"plain text", "text/plain")
    assert "Unsupported file type" in excinfo.value.message


@pytest.mark.asyncio
async def test_docx_paragraphs_are_joined():
    data = make_docx("Photosynthesis happens in leaves.", "Light provides the energy.")

    text = await extract_text(data, DOCX_TYPE)

    assert text.strip() == "Photosynthesis happens in leaves.\nLight provides the energy."


@pytest.mark.asyncio
async def test_corrupt_pdf_becomes_extraction_error():
    with pytest.raises(ExtractionError):
        await extract_text(b"not really a pdf", PDF_TYPE)


@pytest.mark.asyncio
async def test_image_without_ocr_key_fails(monkeypatch):
    monkeypatch.setattr(settings.ingestion, "ocr_api_key", None)

    with pytest.raises(ExtractionError) as excinfo:
        await extract_text(b"\x89PNG", PNG_TYPE)
    assert "OCR API key" in excinfo.value.message


@pytest.mark.asyncio
async def test_image_text_comes_from_ocr_service(monkeypatch):
    monkeypatch.setattr(settings.ingestion, "ocr_api_key", "ocr-key")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = request.content
        return httpx.Response(
            200,
            json={
                "IsErroredOnProcessing": False,
                "ParsedResults": [{"ParsedText": "Page one"}, {"ParsedText": "Page two"}],
            },
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        text = await extract_text(b"\x89PNG", PNG_TYPE, http_client=client)

    assert text == "Page one\nPage two"
    assert seen["url"] == settings.ingestion.ocr_url
    assert b"ocr-key" in seen["body"]


@pytest.mark.asyncio
async def test_ocr_processing_error_is_reported(monkeypatch):
    monkeypatch.setattr(settings.ingestion, "ocr_api_key", "ocr-key")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"IsErroredOnProcessing": True, "ErrorMessage": ["Unable to recognize"]},
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ExtractionError) as excinfo:
            await extract_text(b"\xff\xd8", "image/jpeg", http_client=client)

    assert excinfo.value.message == "OCR extraction failed: Unable to recognize"
