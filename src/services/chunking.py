"""Split extracted document text into overlapping chunks."""
from __future__ import annotations

from typing import List, Tuple

from src.core.config import settings

SENTENCE_BREAKS = (".", "!", "?", "\n")
# Only snap to a break that falls in the last 30% of the window.
SNAP_FRACTION = 0.7


def chunk_spans(
    text: str,
    tokens_per_chunk: int = 500,
    overlap_tokens: int = 50,
    chars_per_token: int | None = None,
) -> List[Tuple[int, int]]:
    """Return ``(start, end)`` character spans of overlapping windows.

    Each span ends at the last sentence or paragraph break inside the final 30%
    of its window when one exists. The next span starts ``overlap`` characters
    before the previous end, so consecutive spans always touch or overlap.
    """

    if tokens_per_chunk <= 0:
        raise ValueError("tokens_per_chunk must be positive")
    if overlap_tokens < 0 or overlap_tokens >= tokens_per_chunk:
        raise ValueError("overlap_tokens must be >= 0 and smaller than tokens_per_chunk")

    per_token = chars_per_token or settings.ingestion.chars_per_token
    window = tokens_per_chunk * per_token
    overlap = overlap_tokens * per_token
    length = len(text)

    spans: List[Tuple[int, int]] = []
    start = 0
    while start < length:
        end = min(start + window, length)
        if end < length:
            piece = text[start:end]
            boundary = max(piece.rfind(mark) for mark in SENTENCE_BREAKS)
            if boundary > window * SNAP_FRACTION:
                end = start + boundary + 1
        spans.append((start, end))
        if end >= length:
            break
        start = max(end - overlap, start + 1)
    return spans


def chunk_text(
    text: str,
    tokens_per_chunk: int = 500,
    overlap_tokens: int = 50,
    chars_per_token: int | None = None,
) -> List[str]:
    """Return the stripped, non-empty chunk strings for ``text``."""

    chunks = (
        text[start:end].strip()
        for start, end in chunk_spans(text, tokens_per_chunk, overlap_tokens, chars_per_token)
    )
    return [chunk for chunk in chunks if chunk]
