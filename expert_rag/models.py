# expert_rag/models.py
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class UploadResponse(BaseModel):
    """Response after uploading a document."""
    document_id: str
    expert_id: str
    filename: str
    chunks_created: int
    message: str = "Document uploaded and indexed successfully"


class DocumentInfo(BaseModel):
    """Information about a stored document."""
    document_id: str
    expert_id: str
    filename: str
    chunks_count: int
    upload_timestamp: Optional[datetime] = None


class ListDocumentsResponse(BaseModel):
    """Documents indexed for one expert."""
    expert_id: str
    documents: List[DocumentInfo]
    total_documents: int
    total_chunks: int


class DeleteDocumentResponse(BaseModel):
    """Response after deleting a document."""
    document_id: str
    message: str
    success: bool


class DeleteExpertDocumentsResponse(BaseModel):
    expert_id: str
    documents_deleted: int


class DeleteExpertResponse(BaseModel):
    """Response after deleting an expert together with its documents."""
    expert_id: str
    documents_deleted: int
    success: bool = True


class ContextRequest(BaseModel):
    """Ask for the chunks that would be injected for a query."""
    query: str = Field(..., min_length=1, max_length=4000)
    limit: int = Field(5, ge=1, le=50)

    @field_validator("query")
    @classmethod
    def validate_query(cls, v):
        """Ensure query is not just whitespace."""
        if not v.strip():
            raise ValueError("Query cannot be empty or only whitespace")
        return v.strip()


class ContextChunk(BaseModel):
    content: str
    similarity: float
    chunk_id: int
    document_id: str


class ContextResponse(BaseModel):
    expert_id: str
    results: List[ContextChunk]


class ChatMessageIn(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., max_length=32000)


class ChatRequest(BaseModel):
    """A conversation with one expert; the last user message drives retrieval."""
    expert_id: str = Field(..., min_length=1, max_length=100)
    messages: List[ChatMessageIn] = Field(..., min_length=1)

    @field_validator("expert_id")
    @classmethod
    def validate_expert_id(cls, v):
        """Ensure expert_id is not just whitespace."""
        if not v.strip():
            raise ValueError("Expert ID cannot be empty")
        return v.strip()


class ChatResponse(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str
    context_used: int
    retrieval_degraded: bool = False


class ExpertInfo(BaseModel):
    id: str
    name: str
    description: str
    provider: str
    model: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    total_documents: int
    total_chunks: int
    total_experts: int
    embedding: dict
