"""Endpoints for uploading and processing study documents."""
from __future__ import annotations

import uuid
from typing import List
from uuid import UUID

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    HTTPException,
    Query,
    UploadFile,
    status,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.api.deps import get_db_session
from src.auth.jwt import require_auth
from src.db.models.document import STATUS_PENDING, STATUS_PROCESSING, Document
from src.db.session import get_session_factory
from src.repositories.document_repo import DocumentRepo
from src.schemas.document import (
    DocumentRead,
    DocumentStats,
    ProcessDocumentBody,
    SearchBody,
    SearchResponse,
)
from src.services.document_events import wait_for_terminal_state
from src.services.embeddings import EmbeddingClient, get_embedding_client
from src.services.ingestion import reset_for_reprocess, run_ingestion
from src.services.limits import check_rate_limit
from src.services.retrieval import RetrievalEngine
from src.services.storage import (
    LocalDocumentStorage,
    belongs_to_owner,
    get_document_storage,
)
from src.services.text_extraction import SUPPORTED_TYPES


router = APIRouter(prefix="/documents", tags=["documents"])


async def _get_owned(repo: DocumentRepo, document_id: UUID, user_id: str) -> Document:
    document = await repo.get_for_owner(document_id, user_id)
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return document


def _schedule(
    background_tasks: BackgroundTasks,
    document_id: UUID,
    session_factory: async_sessionmaker[AsyncSession],
    embedder: EmbeddingClient,
    storage: LocalDocumentStorage,
) -> None:
    background_tasks.add_task(run_ingestion, document_id, session_factory, embedder, storage)


@router.post("/upload", response_model=DocumentRead)
async def upload_document(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    embedder: EmbeddingClient = Depends(get_embedding_client),
    storage: LocalDocumentStorage = Depends(get_document_storage),
):
    user_id = auth["user_id"]
    await check_rate_limit(user_id)

    file_type = file.content_type or "application/octet-stream"
    if file_type not in SUPPORTED_TYPES:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Unsupported file type. Upload a PDF, PNG, JPEG or DOCX file.",
        )

    data = await file.read()
    await file.close()
    file_name = file.filename or "upload.bin"
    document_id = uuid.uuid4()
    storage_path = f"{user_id}/{document_id}_{file_name}"
    await storage.save(storage_path, data)

    repo = DocumentRepo(db)
    document = await repo.create(
        owner_id=user_id,
        file_name=file_name,
        file_type=file_type,
        storage_path=storage_path,
        file_size=len(data),
        document_id=document_id,
    )
    # the background job reads the row from its own session
    await db.commit()

    _schedule(background_tasks, document.id, session_factory, embedder, storage)
    return document


@router.post("/process", response_model=DocumentRead)
async def process_document(
    body: ProcessDocumentBody,
    background_tasks: BackgroundTasks,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    embedder: EmbeddingClient = Depends(get_embedding_client),
    storage: LocalDocumentStorage = Depends(get_document_storage),
):
    """Trigger processing for a file that is already in storage."""

    user_id = auth["user_id"]
    await check_rate_limit(user_id)

    if body.file_type not in SUPPORTED_TYPES:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Unsupported file type. Upload a PDF, PNG, JPEG or DOCX file.",
        )
    if not belongs_to_owner(body.storage_path, user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Storage path does not belong to the caller",
        )

    repo = DocumentRepo(db)
    document = await repo.get_by_id(body.document_id)
    if document is None:
        document = await repo.create(
            owner_id=user_id,
            file_name=body.file_name,
            file_type=body.file_type,
            storage_path=body.storage_path,
            document_id=body.document_id,
        )
    elif document.owner_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    elif document.status in (STATUS_PENDING, STATUS_PROCESSING):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Document is already processing",
        )
    else:
        await reset_for_reprocess(db, document)
    await db.commit()

    _schedule(background_tasks, document.id, session_factory, embedder, storage)
    return document


@router.get("", response_model=List[DocumentRead])
async def list_documents(
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
):
    return await DocumentRepo(db).list_for_owner(auth["user_id"])


@router.get("/stats", response_model=DocumentStats)
async def document_stats(
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
):
    return await DocumentRepo(db).stats_for_owner(auth["user_id"])


@router.post("/search", response_model=SearchResponse)
async def search_documents(
    body: SearchBody,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
    embedder: EmbeddingClient = Depends(get_embedding_client),
):
    user_id = auth["user_id"]
    await check_rate_limit(user_id)

    engine = RetrievalEngine(db, embedder)
    chunks = await engine.search_documents(user_id, body.query, body.limit)
    return {
        "results": [
            {
                "document_id": chunk.document_id,
                "document_name": chunk.document_name,
                "content": chunk.content,
                "similarity": chunk.similarity,
                "chunk_index": chunk.chunk_index,
            }
            for chunk in chunks
        ]
    }


@router.get("/{document_id}", response_model=DocumentRead)
async def get_document(
    document_id: UUID,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
):
    return await _get_owned(DocumentRepo(db), document_id, auth["user_id"])


@router.get("/{document_id}/wait", response_model=DocumentRead)
async def wait_for_document(
    document_id: UUID,
    timeout: float | None = Query(None, ge=0),
    auth=Depends(require_auth),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Block until processing finishes or ``timeout`` seconds pass (408)."""

    user_id = auth["user_id"]

    async def _load():
        async with session_factory() as session:
            return await DocumentRepo(session).get_for_owner(document_id, user_id)

    document = await wait_for_terminal_state(document_id, _load, timeout=timeout)
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return document


@router.post("/{document_id}/reprocess", response_model=DocumentRead)
async def reprocess_document(
    document_id: UUID,
    background_tasks: BackgroundTasks,
    resume: bool = True,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    embedder: EmbeddingClient = Depends(get_embedding_client),
    storage: LocalDocumentStorage = Depends(get_document_storage),
):
    user_id = auth["user_id"]
    await check_rate_limit(user_id)

    repo = DocumentRepo(db)
    document = await _get_owned(repo, document_id, user_id)
    if document.status in (STATUS_PENDING, STATUS_PROCESSING):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Document is already processing",
        )

    await reset_for_reprocess(db, document, resume=resume)
    await db.commit()

    _schedule(background_tasks, document.id, session_factory, embedder, storage)
    return document


@router.delete("/{document_id}")
async def delete_document(
    document_id: UUID,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
    storage: LocalDocumentStorage = Depends(get_document_storage),
):
    repo = DocumentRepo(db)
    document = await _get_owned(repo, document_id, auth["user_id"])

    await storage.delete(document.storage_path)
    await repo.delete(document)
    return {"deleted": str(document_id)}
