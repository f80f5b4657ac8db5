"""Shared OpenAI SDK clients for embeddings and chat completions."""
from typing import Optional

from openai import AsyncOpenAI

from src.core.config import settings

_embedding_client: Optional[AsyncOpenAI] = None
_chat_client: Optional[AsyncOpenAI] = None


def get_openai_client() -> AsyncOpenAI:
    """Create (or reuse) the client used for the embeddings API."""

    global _embedding_client

    if _embedding_client is None:
        if not settings.OPENAI_API_KEY:
            raise RuntimeError("OPENAI_API_KEY is not configured")
        _embedding_client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY, max_retries=0)
    return _embedding_client


def get_chat_client() -> AsyncOpenAI:
    """Create (or reuse) the client for the OpenAI-compatible chat gateway.

    SDK retries are disabled; the gateway applies its own backoff policy.
    """

    global _chat_client

    if _chat_client is None:
        api_key = settings.provider.api_key or settings.OPENAI_API_KEY
        if not api_key:
            raise RuntimeError("Provider API key is not configured")
        _chat_client = AsyncOpenAI(
            api_key=api_key,
            base_url=settings.provider.base_url,
            max_retries=0,
        )
    return _chat_client
