"""Embedding generation for document chunks and questions."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from openai import AsyncOpenAI

from src.core.config import settings
from src.core.exceptions import EmbeddingError
from src.services.openai_service import get_openai_client

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Wraps the embeddings API; results are index-aligned with the inputs."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        dimensions: Optional[int] = None,
    ) -> None:
        self._client = client
        self.model = model or settings.embedding.model
        self.dimensions = dimensions or settings.embedding.dimensions

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = get_openai_client()
        return self._client

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed all ``texts`` in a single API call."""

        if not texts:
            return []
        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=list(texts),
                dimensions=self.dimensions,
            )
        except Exception as exc:
            logger.error(f"Embedding generation failed: {exc}")
            raise EmbeddingError(f"Embedding generation failed: {exc}") from exc

        items = sorted(response.data, key=lambda item: item.index)
        if len(items) != len(texts):
            raise EmbeddingError(
                f"Embedding count mismatch: expected {len(texts)}, got {len(items)}"
            )
        return [list(item.embedding) for item in items]

    async def embed_query(self, text: str) -> List[float]:
        vectors = await self.embed([text])
        return vectors[0]


def get_embedding_client() -> EmbeddingClient:
    """FastAPI dependency returning the default embedding client."""

    return EmbeddingClient()
