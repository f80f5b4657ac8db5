"""Chat completion calls to the language-model provider."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI

from src.core.config import settings
from src.core.exceptions import (
    NetworkError,
    UnknownProviderError,
    provider_error_for_status,
)
from src.services.openai_service import get_chat_client

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    content: str
    total_tokens: int
    model: str


class ChatProvider:
    """Sends message lists to an OpenAI-compatible chat completions endpoint."""

    def __init__(self, client: Optional[AsyncOpenAI] = None) -> None:
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = get_chat_client()
        return self._client

    async def complete(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Completion:
        model = model or settings.provider.model
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens or settings.provider.max_tokens,
                temperature=(
                    settings.provider.temperature if temperature is None else temperature
                ),
            )
        except openai.APIStatusError as exc:
            logger.warning(f"Provider returned {exc.status_code}: {exc.message}")
            raise provider_error_for_status(exc.status_code, exc.message) from exc
        except (openai.APIConnectionError, openai.APITimeoutError) as exc:
            logger.warning(f"Provider unreachable: {exc}")
            raise NetworkError(str(exc)) from exc
        except openai.APIError as exc:
            logger.warning(f"Provider call failed: {exc}")
            raise UnknownProviderError(str(exc)) from exc

        choices = response.choices or []
        message = choices[0].message if choices else None
        if message is None:
            logger.warning(f"Provider returned no choices for model {model}")
            raise UnknownProviderError("Provider response contained no choices")

        usage = response.usage
        return Completion(
            content=message.content or "",
            total_tokens=(usage.total_tokens or 0) if usage else 0,
            model=response.model or model,
        )


def get_chat_provider() -> ChatProvider:
    """FastAPI dependency returning the default provider."""

    return ChatProvider()
