"""Similarity search over a student's own document chunks."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence
from uuid import UUID

import numpy as np
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.repositories.document_repo import DocumentRepo
from src.services.embeddings import EmbeddingClient

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "--- CONTEXT FROM YOUR DOCUMENTS ---"
CONTEXT_FOOTER = "--- END OF DOCUMENT CONTEXT ---"
NO_CONTEXT = (
    "--- NO RELEVANT DOCUMENTS FOUND ---\n"
    "No information found in uploaded documents. Use your general knowledge to answer."
)


@dataclass
class RetrievedChunk:
    document_id: UUID
    document_name: str
    content: str
    similarity: float
    chunk_index: int

    def to_source(self) -> dict:
        preview = self.content if len(self.content) <= 200 else self.content[:200] + "..."
        return {
            "document_id": str(self.document_id),
            "document_name": self.document_name,
            "similarity": round(self.similarity * 100),
            "chunk_index": self.chunk_index,
            "content": preview,
        }


def _cosine_scores(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    norms[norms == 0] = 1e-9
    return (matrix @ query) / norms


class RetrievalEngine:
    """Embeds questions and ranks the asking user's chunks against them."""

    def __init__(self, session: AsyncSession, embedder: EmbeddingClient) -> None:
        self.repo = DocumentRepo(session)
        self.embedder = embedder

    async def embed_query(self, question: str) -> List[float]:
        return await self.embedder.embed_query(question)

    async def search(
        self, user_id: str, query_embedding: Sequence[float], top_k: Optional[int] = None
    ) -> List[RetrievedChunk]:
        """Return the ``top_k`` chunks owned by ``user_id``, most similar first."""

        top_k = top_k or settings.retrieval.top_k
        rows = await self.repo.searchable_chunks_for_owner(user_id)
        if not rows:
            return []

        query = np.asarray(query_embedding, dtype=np.float32)
        dims = {len(chunk.embedding) for chunk, _ in rows}
        if dims != {query.shape[0]}:
            rows = [row for row in rows if len(row[0].embedding) == query.shape[0]]
            logger.warning(
                f"Skipping chunks with mismatched embedding size for user {user_id}"
            )
            if not rows:
                return []

        matrix = np.asarray([chunk.embedding for chunk, _ in rows], dtype=np.float32)
        scores = _cosine_scores(matrix, query)
        # stable sort keeps document/chunk order among equal scores
        order = np.argsort(-scores, kind="stable")[:top_k]
        results = []
        for idx in order:
            chunk, file_name = rows[int(idx)]
            results.append(
                RetrievedChunk(
                    document_id=chunk.document_id,
                    document_name=file_name,
                    content=chunk.content,
                    similarity=float(max(0.0, min(1.0, scores[idx]))),
                    chunk_index=chunk.chunk_index,
                )
            )
        return results

    async def search_documents(
        self, user_id: str, question: str, top_k: Optional[int] = None
    ) -> List[RetrievedChunk]:
        embedding = await self.embed_query(question)
        return await self.search(user_id, embedding, top_k)


def assemble_context(
    chunks: Sequence[RetrievedChunk], max_chars: Optional[int] = None
) -> str:
    """Label each passage with its source and relevance and join them.

    Passages are added in rank order until ``max_chars`` is used up; the
    passage that crosses the limit is truncated and later ones are dropped.
    """

    if not chunks:
        return NO_CONTEXT

    budget = settings.retrieval.max_context_chars if max_chars is None else max_chars
    parts = [CONTEXT_HEADER]
    used = 0
    for idx, chunk in enumerate(chunks, start=1):
        label = f"[Source {idx}: {chunk.document_name} - {round(chunk.similarity * 100)}% relevant]"
        remaining = budget - used - len(label) - 1
        if remaining <= 0:
            logger.info(f"Context budget reached after {idx - 1} passages")
            break
        content = chunk.content
        if len(content) > remaining:
            content = content[:remaining].rstrip() + " ..."
        parts.append(f"{label}\n{content}")
        used += len(label) + 1 + len(content)
    parts.append(CONTEXT_FOOTER)
    return "\n\n".join(parts)
