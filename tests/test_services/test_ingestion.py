from __future__ import annotations

import pytest
from sqlalchemy import select

from src.core.config import settings
from src.core.exceptions import EmbeddingError
from src.db.models.document import DocumentChunk
from src.repositories.document_repo import DocumentRepo
from src.services import ingestion as ingestion_service
from src.services.chunking import chunk_text
from src.services.document_events import DocumentStatusNotifier
from src.services.ingestion import (
    DocumentIngestionPipeline,
    content_fingerprint,
    reset_for_reprocess,
)
from src.services.text_extraction import DOCX_TYPE
from tests.conftest import FakeEmbedder, make_docx


TEXT = (
    "Photosynthesis lets plants turn light into energy. "
    "Chlorophyll absorbs light in the leaves. "
    "The energy is stored as sugar for later. "
    "Oxygen leaves the plant as a by-product. "
    "Water and carbon dioxide are the raw inputs."
)


class FlakyEmbedder(FakeEmbedder):
    """Fails on the given (1-based) embed call."""

    def __init__(self, fail_on_call: int) -> None:
        super().__init__()
        self.fail_on_call = fail_on_call

    async def embed(self, texts):
        if len(self.calls) + 1 == self.fail_on_call:
            self.calls.append(list(texts))
            raise EmbeddingError("Embedding generation failed: provider timeout")
        return await super().embed(texts)


@pytest.fixture
def small_chunks(monkeypatch):
    monkeypatch.setattr(settings.ingestion, "tokens_per_chunk", 12)
    monkeypatch.setattr(settings.ingestion, "overlap_tokens", 2)
    monkeypatch.setattr(settings.embedding, "batch_size", 2)
    return chunk_text(TEXT, 12, 2)


@pytest.fixture
def plain_text(monkeypatch):
    async def _extract(data, file_type, http_client=None):
        return data.decode("utf-8")

    monkeypatch.setattr(ingestion_service, "extract_text", _extract)


async def _seed(session, storage, data: bytes, file_type: str = DOCX_TYPE):
    document = await DocumentRepo(session).create(
        owner_id="student-1",
        file_name="notes.docx",
        file_type=file_type,
        storage_path="student-1/notes.docx",
        file_size=len(data),
    )
    await session.commit()
    await storage.save(document.storage_path, data)
    return document


async def _chunk_indexes(session, document_id):
    rows = await session.execute(
        select(DocumentChunk.chunk_index)
        .where(DocumentChunk.document_id == document_id)
        .order_by(DocumentChunk.chunk_index)
    )
    return list(rows.scalars().all())


@pytest.mark.asyncio
async def test_docx_document_is_processed_to_completion(session_factory, storage, fake_embedder):
    async with session_factory() as session:
        document = await _seed(session, storage, make_docx(TEXT))
        channel = DocumentStatusNotifier()

        result = await DocumentIngestionPipeline(
            session, fake_embedder, storage, channel=channel
        ).process(document.id)

        assert result.status == "completed"
        assert result.progress == 100
        assert result.error_message is None
        assert result.chunks_count == 1
        assert result.embedded_chunks == 1
        assert result.processing_metadata["chunks"] == 1
        assert await _chunk_indexes(session, document.id) == [0]

        chunk = (await session.execute(select(DocumentChunk))).scalar_one()
        assert chunk.content == TEXT
        assert chunk.summary.endswith("...")
        assert chunk.meta == {"total_chunks": 1, "chunk_length": len(TEXT)}


@pytest.mark.asyncio
async def test_chunks_are_embedded_in_batches(
    session_factory, storage, fake_embedder, small_chunks, plain_text
):
    async with session_factory() as session:
        document = await _seed(session, storage, TEXT.encode("utf-8"))

        result = await DocumentIngestionPipeline(session, fake_embedder, storage).process(
            document.id
        )

        total = len(small_chunks)
        assert total > 4
        assert result.status == "completed"
        assert result.chunks_count == total
        assert [len(batch) for batch in fake_embedder.calls][:-1] == [2] * (len(fake_embedder.calls) - 1)
        assert sum(len(batch) for batch in fake_embedder.calls) == total
        assert await _chunk_indexes(session, document.id) == list(range(total))


@pytest.mark.asyncio
async def test_embedding_failure_marks_document_failed_and_keeps_progress(
    session_factory, storage, small_chunks, plain_text
):
    embedder = FlakyEmbedder(fail_on_call=2)
    async with session_factory() as session:
        document = await _seed(session, storage, TEXT.encode("utf-8"))

        result = await DocumentIngestionPipeline(session, embedder, storage).process(document.id)

        assert result.status == "failed"
        assert "provider timeout" in result.error_message
        assert result.retry_count == 1
        assert result.embedded_chunks == 2
        assert result.content_hash == content_fingerprint(TEXT, 12, 2)
        assert await _chunk_indexes(session, document.id) == [0, 1]


@pytest.mark.asyncio
async def test_reprocess_resumes_at_cursor(session_factory, storage, small_chunks, plain_text):
    async with session_factory() as session:
        document = await _seed(session, storage, TEXT.encode("utf-8"))
        await DocumentIngestionPipeline(session, FlakyEmbedder(2), storage).process(document.id)

        await reset_for_reprocess(session, document)
        await session.commit()
        assert document.status == "pending"
        assert document.progress == 0
        assert document.error_message is None

        embedder = FakeEmbedder()
        result = await DocumentIngestionPipeline(session, embedder, storage).process(document.id)

        total = len(small_chunks)
        assert result.status == "completed"
        assert result.retry_count == 1
        assert embedder.calls[0] == small_chunks[2:4]
        assert sum(len(batch) for batch in embedder.calls) == total - 2
        assert await _chunk_indexes(session, document.id) == list(range(total))


@pytest.mark.asyncio
async def test_changed_text_discards_old_chunks(
    session_factory, storage, small_chunks, plain_text
):
    async with session_factory() as session:
        document = await _seed(session, storage, TEXT.encode("utf-8"))
        await DocumentIngestionPipeline(session, FlakyEmbedder(2), storage).process(document.id)

        new_text = "Algebra solves each equation step by step. " * 2
        await storage.save(document.storage_path, new_text.encode("utf-8"))
        await reset_for_reprocess(session, document)
        await session.commit()

        result = await DocumentIngestionPipeline(session, FakeEmbedder(), storage).process(
            document.id
        )

        assert result.status == "completed"
        assert result.chunks_count == len(chunk_text(new_text, 12, 2))
        chunks = (
            await session.execute(
                select(DocumentChunk)
                .where(DocumentChunk.document_id == document.id)
                .order_by(DocumentChunk.chunk_index)
            )
        ).scalars().all()
        assert [chunk.content for chunk in chunks] == chunk_text(new_text, 12, 2)


@pytest.mark.asyncio
async def test_full_reprocess_drops_chunks(session_factory, storage, fake_embedder, plain_text):
    async with session_factory() as session:
        document = await _seed(session, storage, TEXT.encode("utf-8"))
        await DocumentIngestionPipeline(session, fake_embedder, storage).process(document.id)

        await reset_for_reprocess(session, document, resume=False)
        await session.commit()

        assert document.embedded_chunks == 0
        assert document.content_hash is None
        assert document.chunks_count == 0
        assert await _chunk_indexes(session, document.id) == []


@pytest.mark.asyncio
async def test_unsupported_type_fails_without_chunks(session_factory, storage, fake_embedder):
    async with session_factory() as session:
        document = await _seed(session, storage, b"hello world", file_type="text/plain")

        result = await DocumentIngestionPipeline(session, fake_embedder, storage).process(
            document.id
        )

        assert result.status == "failed"
        assert "Unsupported file type" in result.error_message
        assert fake_embedder.calls == []


@pytest.mark.asyncio
async def test_missing_blob_fails(session_factory, storage, fake_embedder):
    async with session_factory() as session:
        document = await DocumentRepo(session).create(
            owner_id="student-1",
            file_name="gone.pdf",
            file_type="application/pdf",
            storage_path="student-1/gone.pdf",
        )
        await session.commit()

        result = await DocumentIngestionPipeline(session, fake_embedder, storage).process(
            document.id
        )

        assert result.status == "failed"
        assert result.error_message.startswith("Download failed")
        assert result.retry_count == 1


@pytest.mark.asyncio
async def test_too_little_text_fails(session_factory, storage, fake_embedder, plain_text):
    async with session_factory() as session:
        document = await _seed(session, storage, b"  hi  ")

        result = await DocumentIngestionPipeline(session, fake_embedder, storage).process(
            document.id
        )

        assert result.status == "failed"
        assert result.error_message == "No text could be extracted from document"


class RecordingChannel(DocumentStatusNotifier):
    def __init__(self) -> None:
        super().__init__()
        self.published = []

    def publish(self, document_id, status):
        self.published.append((document_id, status))
        super().publish(document_id, status)


@pytest.mark.asyncio
async def test_failure_while_marking_failed_still_publishes(session_factory, storage, fake_embedder):
    async with session_factory() as session:
        document = await DocumentRepo(session).create(
            owner_id="student-1",
            file_name="gone.pdf",
            file_type="application/pdf",
            storage_path="student-1/gone.pdf",
        )
        await session.commit()
        document_id = document.id
        channel = RecordingChannel()
        pipeline = DocumentIngestionPipeline(session, fake_embedder, storage, channel=channel)

        async def _broken_mark_failed(doc, message):
            await session.rollback()
            raise RuntimeError("database went away")

        pipeline._mark_failed = _broken_mark_failed

        with pytest.raises(RuntimeError):
            await pipeline.process(document_id)

        assert channel.published == [(document_id, "failed")]


@pytest.mark.asyncio
async def test_completion_is_published(session_factory, storage, fake_embedder):
    async with session_factory() as session:
        document = await _seed(session, storage, make_docx(TEXT))
        channel = RecordingChannel()

        await DocumentIngestionPipeline(
            session, fake_embedder, storage, channel=channel
        ).process(document.id)

        assert channel.published == [(document.id, "completed")]
