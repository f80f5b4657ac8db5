"""
Tutor gateway: the request pipeline behind every student question.

rate check -> cache lookup -> optional retrieval -> prompt assembly ->
provider call (with backoff) -> usage tracking, cache store, conversation log.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.exceptions import DailyLimitError
from src.repositories.message_repo import MessageRepo
from src.services.embeddings import EmbeddingClient
from src.services.provider import ChatProvider, Completion
from src.services.rate_limiter import RateLimiter
from src.services.response_cache import ResponseCache
from src.services.retrieval import RetrievalEngine, assemble_context
from src.services.retry import retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_PERSONALITY = "You are helpful, encouraging, and patient."

DOCUMENT_INSTRUCTIONS = (
    "IMPORTANT: The student has uploaded documents. Answer using ONLY information "
    "from the provided document context. If the context doesn't contain enough "
    "information to answer the question, clearly state this and suggest what "
    "additional information would be helpful. Always cite which source you're "
    'using (e.g. "According to Source 1...").'
)


@dataclass
class TutorContext:
    tutor_id: str
    subject: str
    personality: Optional[str] = None
    use_documents: bool = False
    topic: Optional[str] = None
    difficulty: Optional[str] = None
    language: Optional[str] = None


@dataclass
class TutorReply:
    response: str
    conversation_id: str
    tokens_used: int
    model: str
    cached: bool = False
    similarity: Optional[float] = None
    sources: List[Dict[str, Any]] = field(default_factory=list)
    used_documents: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_system_prompt(context: TutorContext, with_documents: bool) -> str:
    prompt = (
        f"You are {context.tutor_id}, an AI tutor specializing in {context.subject}.\n"
        f"{context.personality or DEFAULT_PERSONALITY}\n\n"
        "Focus on:\n"
        "- Step-by-step explanations\n"
        "- Exam-oriented practice and worked examples\n"
        "- Encouraging a growth mindset\n\n"
        "Keep responses concise but thorough."
    )
    if with_documents:
        prompt += "\n\n" + DOCUMENT_INSTRUCTIONS
    return prompt


class TutorGateway:
    """Sequences quota, cache, retrieval and the provider for one question."""

    def __init__(
        self,
        session: AsyncSession,
        provider: ChatProvider,
        embedder: EmbeddingClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.session = session
        self.rate_limiter = RateLimiter(session)
        self.cache = ResponseCache(session)
        self.retrieval = RetrievalEngine(session, embedder)
        self.messages = MessageRepo(session)
        self.provider = provider
        self.sleep = sleep

    @staticmethod
    def session_key(user_id: str, tutor_id: str) -> str:
        return f"{user_id}-{tutor_id}"

    async def call(self, user_id: str, question: str, context: TutorContext) -> TutorReply:
        status = await self.rate_limiter.check(user_id)
        if not status.allowed:
            logger.info(f"Daily limit reached for {user_id} ({status.tier})")
            raise DailyLimitError(
                remaining=status.remaining,
                reset_time=status.reset_time.isoformat(),
                tier=status.tier,
            )

        session_id = self.session_key(user_id, context.tutor_id)
        conversation_id = f"{session_id}-{context.subject}"

        # answers grounded in one student's documents are never shared
        if not context.use_documents:
            hit = await self.cache.lookup(question)
            if hit is not None:
                return TutorReply(
                    response=hit.response,
                    conversation_id=conversation_id,
                    tokens_used=0,
                    model=hit.model,
                    cached=True,
                    similarity=hit.similarity,
                )

        document_context = None
        sources: List[Dict[str, Any]] = []
        if context.use_documents:
            document_context, sources = await self._document_context(user_id, question)

        messages = await self._compose_messages(
            user_id, session_id, question, context, document_context, grounded=bool(sources)
        )
        logger.info(
            f"Calling provider for {user_id}: {len(messages)} messages, "
            f"{len(sources)} sources"
        )

        completion: Completion = await retry_with_backoff(
            lambda: self.provider.complete(messages),
            max_retries=settings.provider.max_retries,
            initial_delay=settings.provider.initial_retry_delay,
            sleep=self.sleep,
        )

        await self.rate_limiter.increment(user_id, completion.total_tokens)
        if not context.use_documents:
            await self.cache.store(
                question,
                completion.content,
                {
                    "model": completion.model,
                    "tokens_used": completion.total_tokens,
                    "topic": context.topic or context.subject,
                    "difficulty": context.difficulty,
                    "language": context.language,
                },
            )
        await self.messages.append(user_id, session_id, "user", question)
        await self.messages.append(
            user_id,
            session_id,
            "assistant",
            completion.content,
            tokens_used=completion.total_tokens,
            model=completion.model,
        )

        return TutorReply(
            response=completion.content,
            conversation_id=conversation_id,
            tokens_used=completion.total_tokens,
            model=completion.model,
            sources=sources,
            used_documents=bool(sources),
        )

    async def _document_context(self, user_id: str, question: str):
        """Best-effort retrieval; a failure leaves the question unaugmented."""

        try:
            embedding = await self.retrieval.embed_query(question)
            async with self.session.begin_nested():
                chunks = await self.retrieval.search(user_id, embedding)
        except Exception as exc:
            logger.error(f"Document search failed for {user_id}: {exc}")
            return None, []
        logger.info(f"Found {len(chunks)} relevant chunks for {user_id}")
        return assemble_context(chunks), [chunk.to_source() for chunk in chunks]

    async def _compose_messages(
        self,
        user_id: str,
        session_id: str,
        question: str,
        context: TutorContext,
        document_context: Optional[str],
        grounded: bool = False,
    ) -> List[Dict[str, str]]:
        messages = [
            {
                "role": "system",
                "content": build_system_prompt(context, grounded),
            }
        ]
        history = await self.messages.recent_for_session(
            user_id, session_id, settings.provider.history_limit
        )
        for turn in history:
            role = "user" if turn.role == "user" else "assistant"
            messages.append({"role": role, "content": turn.content})

        content = question
        if document_context:
            content = f"{document_context}\n\nQUESTION: {question}"
        messages.append({"role": "user", "content": content})
        return messages
