"""Repository helpers for the conversation log."""
from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models.message import ConversationMessage


class MessageRepo:
    """Append-only access to :class:`ConversationMessage` rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(
        self,
        user_id: str,
        session_id: str,
        role: str,
        content: str,
        tokens_used: int = 0,
        model: Optional[str] = None,
    ) -> ConversationMessage:
        message = ConversationMessage(
            user_id=user_id,
            session_id=session_id,
            role=role,
            content=content,
            tokens_used=tokens_used,
            model=model,
        )
        self.session.add(message)
        await self.session.flush()
        return message

    async def recent_for_session(
        self, user_id: str, session_id: str, limit: int
    ) -> List[ConversationMessage]:
        """Return the last ``limit`` turns of a session in chronological order."""

        result = await self.session.execute(
            select(ConversationMessage)
            .where(
                ConversationMessage.user_id == user_id,
                ConversationMessage.session_id == session_id,
            )
            .order_by(ConversationMessage.created_at.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))
