"""Plain-text extraction for the document kinds students can upload."""
from __future__ import annotations

import asyncio
import io
import logging
from typing import Callable, Dict, Optional

import httpx
from docx import Document as DocxDocument
from pypdf import PdfReader

from src.core.config import settings
from src.core.exceptions import ExtractionError

logger = logging.getLogger(__name__)

PDF_TYPE = "application/pdf"
PNG_TYPE = "image/png"
JPEG_TYPE = "image/jpeg"
DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

SUPPORTED_TYPES = frozenset({PDF_TYPE, PNG_TYPE, JPEG_TYPE, DOCX_TYPE})


def _extract_pdf(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n".join(pages)


def _extract_docx(data: bytes) -> str:
    document = DocxDocument(io.BytesIO(data))
    return "\n".join(paragraph.text for paragraph in document.paragraphs)


async def _extract_image(
    data: bytes, file_type: str, client: Optional[httpx.AsyncClient] = None
) -> str:
    """Run OCR through the OCR.space HTTP API."""

    api_key = settings.ingestion.ocr_api_key
    if not api_key:
        raise ExtractionError("OCR API key is not configured")

    extension = "png" if file_type == PNG_TYPE else "jpg"
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=60.0)
    try:
        response = await client.post(
            settings.ingestion.ocr_url,
            data={"apikey": api_key, "language": "eng", "isOverlayRequired": "false"},
            files={"file": (f"upload.{extension}", data, file_type)},
        )
        response.raise_for_status()
        result = response.json()
    finally:
        if owns_client:
            await client.aclose()

    if result.get("IsErroredOnProcessing"):
        errors = result.get("ErrorMessage") or ["OCR processing failed"]
        message = errors[0] if isinstance(errors, list) else str(errors)
        raise ExtractionError(f"OCR extraction failed: {message}")

    parsed = result.get("ParsedResults") or []
    return "\n".join(item.get("ParsedText", "") for item in parsed)


_SYNC_EXTRACTORS: Dict[str, Callable[[bytes], str]] = {
    PDF_TYPE: _extract_pdf,
    DOCX_TYPE: _extract_docx,
}


async def extract_text(
    data: bytes,
    file_type: str,
    http_client: Optional[httpx.AsyncClient] = None,
) -> str:
    """Return the plain text of ``data``; every failure becomes ExtractionError."""

    if file_type not in SUPPORTED_TYPES:
        raise ExtractionError(f"Unsupported file type: {file_type}")

    try:
        if file_type in _SYNC_EXTRACTORS:
            # parsers are CPU bound and synchronous
            text = await asyncio.to_thread(_SYNC_EXTRACTORS[file_type], data)
        else:
            text = await _extract_image(data, file_type, http_client)
    except ExtractionError:
        raise
    except Exception as exc:
        logger.error(f"Text extraction failed for {file_type}: {exc}")
        raise ExtractionError(f"Extraction failed for {file_type}: {exc}") from exc

    logger.info(f"Extracted {len(text)} characters from {file_type}")
    return text
