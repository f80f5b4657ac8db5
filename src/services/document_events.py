"""Completion notifications for background document processing."""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, DefaultDict, Optional, Set
from uuid import UUID

from src.core.config import settings
from src.core.exceptions import DocumentWaitTimeout
from src.db.models.document import TERMINAL_STATUSES, Document

logger = logging.getLogger(__name__)


class DocumentStatusNotifier:
    """In-process channel that wakes waiters when a document reaches a terminal state."""

    def __init__(self) -> None:
        self._waiters: DefaultDict[UUID, Set[asyncio.Event]] = defaultdict(set)

    def publish(self, document_id: UUID, status: str) -> None:
        events = self._waiters.pop(document_id, set())
        logger.debug(f"Document {document_id} -> {status}, waking {len(events)} waiters")
        for event in events:
            event.set()

    async def wait(self, document_id: UUID, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for a publish; return True if one arrived."""

        event = asyncio.Event()
        self._waiters[document_id].add(event)
        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            waiters = self._waiters.get(document_id)
            if waiters is not None:
                waiters.discard(event)
                if not waiters:
                    self._waiters.pop(document_id, None)


notifier = DocumentStatusNotifier()


async def wait_for_terminal_state(
    document_id: UUID,
    load: Callable[[], Awaitable[Optional[Document]]],
    timeout: Optional[float] = None,
    interval: Optional[float] = None,
    channel: Optional[DocumentStatusNotifier] = None,
) -> Optional[Document]:
    """Return the document once it is completed or failed.

    ``load`` re-reads the document. Between reads the caller waits on the
    notifier for at most ``interval`` seconds, and gives up with
    :class:`DocumentWaitTimeout` after ``timeout`` seconds overall, never
    longer than ``max_wait_seconds``.
    """

    max_wait = settings.ingestion.max_wait_seconds
    timeout = max_wait if timeout is None else min(max(timeout, 0.0), max_wait)
    interval = settings.ingestion.poll_interval_seconds if interval is None else interval
    channel = channel or notifier
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        document = await load()
        if document is None or document.status in TERMINAL_STATUSES:
            return document
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise DocumentWaitTimeout(
                f"Document {document_id} still {document.status} after {timeout:.0f}s",
                extra={
                    "document_id": str(document_id),
                    "status": document.status,
                    "progress": document.progress,
                },
            )
        await channel.wait(document_id, timeout=min(interval, remaining))
