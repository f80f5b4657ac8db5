"""Repository utilities for working with Document and DocumentChunk records."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models.document import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    Document,
    DocumentChunk,
)


class DocumentRepo:
    """Data-access helper for documents and their chunks."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        owner_id: str,
        file_name: str,
        file_type: str,
        storage_path: str,
        file_size: int = 0,
        document_id: Optional[UUID] = None,
    ) -> Document:
        document = Document(
            owner_id=owner_id,
            file_name=file_name,
            file_type=file_type,
            storage_path=storage_path,
            file_size=file_size,
            status=STATUS_PENDING,
            progress=0,
        )
        if document_id is not None:
            document.id = document_id
        self.session.add(document)
        await self.session.flush()
        return document

    async def get_by_id(self, document_id: UUID) -> Optional[Document]:
        result = await self.session.execute(
            select(Document).where(Document.id == document_id)
        )
        return result.scalar_one_or_none()

    async def get_for_owner(self, document_id: UUID, owner_id: str) -> Optional[Document]:
        result = await self.session.execute(
            select(Document).where(
                Document.id == document_id,
                Document.owner_id == owner_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_owner(self, owner_id: str) -> List[Document]:
        result = await self.session.execute(
            select(Document)
            .where(Document.owner_id == owner_id)
            .order_by(Document.created_at.desc())
        )
        return list(result.scalars().all())

    async def stats_for_owner(self, owner_id: str) -> Dict[str, int]:
        def _count(status: str):
            return func.coalesce(func.sum(case((Document.status == status, 1), else_=0)), 0)

        result = await self.session.execute(
            select(
                func.count(Document.id),
                _count(STATUS_PROCESSING),
                _count(STATUS_COMPLETED),
                _count(STATUS_FAILED),
                func.coalesce(func.sum(Document.chunks_count), 0),
            ).where(Document.owner_id == owner_id)
        )
        total, processing, completed, failed, chunks = result.one()
        return {
            "total_documents": int(total or 0),
            "processing": int(processing or 0),
            "completed": int(completed or 0),
            "failed": int(failed or 0),
            "total_chunks": int(chunks or 0),
        }

    async def save(self, document: Document) -> Document:
        self.session.add(document)
        await self.session.flush()
        return document

    async def increment_retry_count(self, document: Document) -> int:
        """Bump ``retry_count`` in SQL and return the stored value."""

        await self.session.execute(
            update(Document)
            .where(Document.id == document.id)
            .values(retry_count=Document.retry_count + 1)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        await self.session.refresh(document, attribute_names=["retry_count"])
        return document.retry_count

    async def add_chunks(
        self,
        document_id: UUID,
        rows: Sequence[Tuple[int, str, List[float], Dict[str, Any]]],
    ) -> None:
        """Persist ``(chunk_index, content, embedding, metadata)`` rows."""

        for chunk_index, content, embedding, metadata in rows:
            self.session.add(
                DocumentChunk(
                    document_id=document_id,
                    chunk_index=chunk_index,
                    content=content,
                    embedding=list(embedding),
                    summary=_summarize(content),
                    meta=metadata,
                )
            )
        await self.session.flush()

    async def delete_chunks(self, document_id: UUID) -> int:
        result = await self.session.execute(
            delete(DocumentChunk)
            .where(DocumentChunk.document_id == document_id)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return int(result.rowcount or 0)

    async def count_chunks(self, document_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(DocumentChunk).where(
                DocumentChunk.document_id == document_id
            )
        )
        return int(result.scalar_one() or 0)

    async def delete(self, document: Document) -> None:
        await self.delete_chunks(document.id)
        await self.session.delete(document)
        await self.session.flush()

    async def searchable_chunks_for_owner(
        self, owner_id: str
    ) -> List[Tuple[DocumentChunk, str]]:
        """Return ``(chunk, file_name)`` for every chunk of the owner's completed documents."""

        result = await self.session.execute(
            select(DocumentChunk, Document.file_name)
            .join(Document, Document.id == DocumentChunk.document_id)
            .where(
                Document.owner_id == owner_id,
                Document.status == STATUS_COMPLETED,
            )
            .order_by(DocumentChunk.document_id, DocumentChunk.chunk_index)
        )
        return [(chunk, file_name) for chunk, file_name in result.all()]


def _summarize(content: str, length: int = 200) -> str:
    if len(content) <= length:
        return content
    return content[:length] + "..."
