"""Blob storage for uploaded documents."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path, PurePosixPath
from typing import Optional

from src.core.config import settings
from src.core.exceptions import StorageError

logger = logging.getLogger(__name__)


class LocalDocumentStorage:
    """Stores uploads on the local filesystem under a root directory."""

    def __init__(self, root: Optional[str] = None) -> None:
        self.root = Path(root or settings.ingestion.storage_root).resolve()

    def _resolve(self, storage_path: str) -> Path:
        path = (self.root / storage_path).resolve()
        if self.root not in path.parents:
            raise StorageError(f"Invalid storage path: {storage_path}")
        return path

    async def save(self, storage_path: str, data: bytes) -> None:
        path = self._resolve(storage_path)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise StorageError(f"Upload failed: {exc}") from exc

    async def read(self, storage_path: str) -> bytes:
        path = self._resolve(storage_path)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise StorageError(f"Download failed: {exc}") from exc

    async def delete(self, storage_path: str) -> None:
        path = self._resolve(storage_path)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as exc:
            logger.error(f"Failed to delete {storage_path}: {exc}")
            raise StorageError(f"Delete failed: {exc}") from exc


def belongs_to_owner(storage_path: str, owner_id: str) -> bool:
    """True when ``storage_path`` names a file inside the owner's folder."""

    parts = PurePosixPath(storage_path).parts
    if len(parts) < 2 or parts[0] != owner_id:
        return False
    return all(part not in ("", ".", "..") for part in parts)


def get_document_storage() -> LocalDocumentStorage:
    """FastAPI dependency returning the configured storage backend."""

    return LocalDocumentStorage()
