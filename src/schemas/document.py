"""Pydantic schemas for document resources."""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DocumentRead(BaseModel):
    """Schema returned when reading a document."""

    id: UUID
    file_name: str
    file_type: str
    file_size: int
    storage_path: str
    status: str = Field(..., description="pending, processing, completed or failed")
    progress: int
    chunks_count: int
    error_message: Optional[str] = None
    retry_count: int
    processing_metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ProcessDocumentBody(BaseModel):
    """Processing trigger for a document whose file is already in storage."""

    document_id: UUID = Field(..., alias="documentId")
    file_name: str = Field(..., alias="fileName")
    storage_path: str = Field(..., alias="storagePath")
    file_type: str = Field(..., alias="fileType")

    model_config = ConfigDict(populate_by_name=True)


class DocumentStats(BaseModel):
    total_documents: int
    processing: int
    completed: int
    failed: int
    total_chunks: int


class SearchBody(BaseModel):
    query: str = Field(..., min_length=1)
    limit: int = Field(default=5, ge=1, le=50)


class SearchResult(BaseModel):
    document_id: UUID
    document_name: str
    content: str
    similarity: float
    chunk_index: int


class SearchResponse(BaseModel):
    results: List[SearchResult]
