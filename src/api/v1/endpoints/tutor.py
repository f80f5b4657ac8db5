"""Endpoints for asking the AI tutor."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_db_session, get_tutor_gateway
from src.auth.jwt import require_auth
from src.core.config import settings
from src.repositories.message_repo import MessageRepo
from src.schemas.tutor import AskBody, TutorReplyRead
from src.services.gateway import TutorContext, TutorGateway
from src.services.limits import check_rate_limit, ensure_idempotent


router = APIRouter(prefix="/tutor", tags=["tutor"])


@router.post("/ask", response_model=TutorReplyRead)
async def ask(
    body: AskBody,
    auth=Depends(require_auth),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    gateway: TutorGateway = Depends(get_tutor_gateway),
):
    user_id = auth["user_id"]

    await check_rate_limit(user_id)
    await ensure_idempotent(user_id, idempotency_key)

    context = TutorContext(
        tutor_id=body.tutor_id,
        subject=body.subject,
        personality=body.personality,
        use_documents=body.use_documents,
        topic=body.topic,
        difficulty=body.difficulty,
        language=body.language,
    )
    reply = await gateway.call(user_id, body.question, context)
    return reply.to_dict()


@router.get("/history")
async def history(
    tutor_id: str,
    limit: int | None = None,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
):
    user_id = auth["user_id"]
    await check_rate_limit(user_id)

    session_id = TutorGateway.session_key(user_id, tutor_id)
    turns = await MessageRepo(db).recent_for_session(
        user_id, session_id, limit or settings.provider.history_limit
    )
    return {
        "session_id": session_id,
        "messages": [
            {
                "role": turn.role,
                "content": turn.content,
                "tokens_used": turn.tokens_used,
                "created_at": turn.created_at.isoformat() if turn.created_at else None,
            }
            for turn in turns
        ],
    }
