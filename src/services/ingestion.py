"""
Document ingestion: storage -> text -> chunks -> embeddings -> rows.

A document moves pending -> processing -> completed | failed. Chunks are
embedded in batches and committed together with the resume cursor
(``Document.embedded_chunks``), so a run that fails half way keeps the work
already done. The next run resumes at the cursor when the extracted text is
unchanged, otherwise it starts over. Retrieval only reads chunks of completed
documents, so partial results are never visible to the tutor.
"""
from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.config import settings
from src.core.exceptions import ExtractionError, IngestionError
from src.db.models.document import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    Document,
)
from src.repositories.document_repo import DocumentRepo
from src.services.chunking import chunk_text
from src.services.document_events import DocumentStatusNotifier, notifier
from src.services.embeddings import EmbeddingClient
from src.services.storage import LocalDocumentStorage
from src.services.text_extraction import extract_text

logger = logging.getLogger(__name__)

PROGRESS_STARTED = 10
PROGRESS_DOWNLOADED = 30
PROGRESS_EXTRACTED = 50
PROGRESS_CHUNKED = 60
PROGRESS_EMBEDDED = 95
PROGRESS_DONE = 100


def content_fingerprint(text: str, tokens_per_chunk: int, overlap_tokens: int) -> str:
    payload = f"{tokens_per_chunk}:{overlap_tokens}:{text}".encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


class DocumentIngestionPipeline:
    """Processes a single document in its own session."""

    def __init__(
        self,
        session: AsyncSession,
        embedder: EmbeddingClient,
        storage: LocalDocumentStorage,
        channel: Optional[DocumentStatusNotifier] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.session = session
        self.repo = DocumentRepo(session)
        self.embedder = embedder
        self.storage = storage
        self.channel = channel or notifier
        self.http_client = http_client

    async def process(self, document_id: UUID) -> Optional[Document]:
        document = await self.repo.get_by_id(document_id)
        if document is None:
            logger.warning(f"Document {document_id} not found, skipping ingestion")
            return None

        logger.info(f"Starting document processing: {document_id}")
        final_status = STATUS_FAILED
        try:
            await self._run(document)
            final_status = STATUS_COMPLETED
        except IngestionError as exc:
            logger.error(f"Document {document_id} failed: {exc.message}")
            await self._mark_failed(document, exc.message)
        except Exception as exc:
            logger.exception(f"Unexpected error while processing document {document_id}")
            await self._mark_failed(document, f"Unexpected error: {exc}")
        finally:
            self.channel.publish(document_id, final_status)
        return document

    async def _advance(self, document: Document, progress: int) -> None:
        document.progress = max(document.progress, progress)
        await self.repo.save(document)
        await self.session.commit()

    async def _run(self, document: Document) -> None:
        document.status = STATUS_PROCESSING
        document.error_message = None
        await self._advance(document, PROGRESS_STARTED)

        data = await self.storage.read(document.storage_path)
        logger.info(f"File downloaded: {document.file_name}, type: {document.file_type}")
        await self._advance(document, PROGRESS_DOWNLOADED)

        text = await extract_text(data, document.file_type, self.http_client)
        if len(text.strip()) < settings.ingestion.min_text_length:
            raise ExtractionError("No text could be extracted from document")
        await self._advance(document, PROGRESS_EXTRACTED)

        tokens = settings.ingestion.tokens_per_chunk
        overlap = settings.ingestion.overlap_tokens
        chunks = chunk_text(text, tokens, overlap)
        total = len(chunks)
        logger.info(f"Created {total} chunks for document {document.id}")

        fingerprint = content_fingerprint(text, tokens, overlap)
        if document.content_hash != fingerprint or document.embedded_chunks > total:
            removed = await self.repo.delete_chunks(document.id)
            if removed:
                logger.info(f"Discarded {removed} stale chunks for document {document.id}")
            document.content_hash = fingerprint
            document.embedded_chunks = 0
        elif document.embedded_chunks:
            logger.info(
                f"Resuming document {document.id} at chunk {document.embedded_chunks}/{total}"
            )
        await self._advance(document, PROGRESS_CHUNKED)

        batch_size = max(1, settings.embedding.batch_size)
        for start in range(document.embedded_chunks, total, batch_size):
            batch = chunks[start : start + batch_size]
            vectors = await self.embedder.embed(batch)
            await self.repo.add_chunks(
                document.id,
                [
                    (
                        start + offset,
                        content,
                        vector,
                        {"total_chunks": total, "chunk_length": len(content)},
                    )
                    for offset, (content, vector) in enumerate(zip(batch, vectors))
                ],
            )
            document.embedded_chunks = start + len(batch)
            span = PROGRESS_EMBEDDED - PROGRESS_CHUNKED
            await self._advance(
                document, PROGRESS_CHUNKED + span * document.embedded_chunks // total
            )

        document.status = STATUS_COMPLETED
        document.chunks_count = total
        document.processing_metadata = {
            "chunks": total,
            "characters": len(text),
            "completed_at": datetime.now(timezone.utc).isoformat(),
        }
        await self._advance(document, PROGRESS_DONE)
        logger.info(f"Document processing completed: {document.id}")

    async def _mark_failed(self, document: Document, message: str) -> None:
        await self.session.rollback()
        await self.session.refresh(document)
        document.status = STATUS_FAILED
        document.error_message = message[:2000]
        await self.repo.save(document)
        await self.repo.increment_retry_count(document)
        await self.session.commit()


async def reset_for_reprocess(
    session: AsyncSession, document: Document, resume: bool = True
) -> Document:
    """Put a document back to pending so the pipeline can run again.

    With ``resume`` the stored chunks and cursor are kept and reused when the
    extracted text has not changed.
    """

    repo = DocumentRepo(session)
    document.status = STATUS_PENDING
    document.progress = 0
    document.error_message = None
    if not resume:
        await repo.delete_chunks(document.id)
        document.embedded_chunks = 0
        document.content_hash = None
        document.chunks_count = 0
    return await repo.save(document)


async def run_ingestion(
    document_id: UUID,
    session_factory: async_sessionmaker[AsyncSession],
    embedder: EmbeddingClient,
    storage: LocalDocumentStorage,
) -> None:
    """Background-task entry point."""

    async with session_factory() as session:
        pipeline = DocumentIngestionPipeline(session, embedder, storage)
        await pipeline.process(document_id)
