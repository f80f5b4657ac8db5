"""Pydantic schemas for tutor questions and answers."""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class AskBody(BaseModel):
    """Payload for the question endpoint."""

    question: str = Field(..., min_length=1, max_length=8000, description="Student question")
    tutor_id: str = Field(..., min_length=1, description="Tutor persona identifier")
    subject: str = Field(..., min_length=1, description="Subject the tutor teaches")
    personality: Optional[str] = Field(default=None, description="Persona instructions")
    use_documents: bool = Field(default=False, description="Ground the answer in uploaded documents")
    topic: Optional[str] = None
    difficulty: Optional[Literal["easy", "medium", "hard"]] = None
    language: Optional[str] = None


class SourceRead(BaseModel):
    document_id: str
    document_name: str
    similarity: int = Field(..., description="Relevance percentage")
    chunk_index: int
    content: str


class TutorReplyRead(BaseModel):
    response: str
    conversation_id: str
    tokens_used: int
    model: str
    cached: bool = False
    similarity: Optional[float] = None
    sources: List[SourceRead] = Field(default_factory=list)
    used_documents: bool = False
