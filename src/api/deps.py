"""Shared FastAPI dependencies."""
from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.session import get_db
from src.services.embeddings import EmbeddingClient, get_embedding_client
from src.services.gateway import TutorGateway
from src.services.provider import ChatProvider, get_chat_provider


async def get_db_session(
    session: AsyncSession = Depends(get_db),
) -> AsyncGenerator[AsyncSession, None]:
    yield session


def get_tutor_gateway(
    db: AsyncSession = Depends(get_db_session),
    provider: ChatProvider = Depends(get_chat_provider),
    embedder: EmbeddingClient = Depends(get_embedding_client),
) -> TutorGateway:
    return TutorGateway(db, provider, embedder)
