"""Request and response models for the HTTP API."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from knowitall.documents.models import DocumentStatus


class ErrorResponse(BaseModel):
    """Error payload returned for 4xx responses."""
    error: str


class DocumentUploadResponse(BaseModel):
    """Returned once a document is stored and ingestion is scheduled."""

    document_id: str
    filename: str
    title: str
    status: DocumentStatus
    uploaded_at: datetime
    file_size_bytes: int
    message: str

    class Config:
        json_schema_extra = {
            "example": {
                "document_id": "123e4567-e89b-12d3-a456-426614174000",
                "filename": "handbook.pdf",
                "title": "Employee handbook",
                "status": "PROCESSING",
                "uploaded_at": "2024-05-01T10:00:00",
                "file_size_bytes": 48213,
                "message": "Document uploaded successfully. Processing in background."
            }
        }


class DocumentStatusResponse(BaseModel):
    document_id: str
    title: str
    filename: str
    status: DocumentStatus
    total_chunks: int
    processed_chunks: int
    progress_percentage: float = Field(ge=0.0, le=100.0)
    error_message: Optional[str] = None
    uploaded_at: datetime
    processed_at: Optional[datetime] = None
    message: str


class DocumentInfo(BaseModel):
    document_id: str
    title: str
    filename: str
    description: Optional[str] = None
    owner: str
    status: DocumentStatus
    total_chunks: int
    file_size_bytes: Optional[int] = None
    uploaded_at: datetime
    processed_at: Optional[datetime] = None


class DocumentDeleteResponse(BaseModel):
    document_id: str
    message: str


class QueryRequest(BaseModel):
    """A question about the uploaded documents."""

    question: Optional[str] = Field(default=None, description="Question to answer (required, non-blank)")
    top_k: Optional[int] = Field(default=None, ge=1, le=50, description="Number of chunks to retrieve")
    confidence_threshold: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Minimum best-match score for a grounded answer"
    )
    document_filter: Optional[str] = Field(default=None, description="Restrict retrieval to one document id")

    class Config:
        json_schema_extra = {
            "example": {
                "question": "How many vacation days do new employees get?",
                "top_k": 5,
                "confidence_threshold": 0.7
            }
        }


class SourceReferenceResponse(BaseModel):
    document_id: Optional[str] = None
    document_title: Optional[str] = None
    chunk_index: Optional[int] = None
    similarity: float
    excerpt: str
    token_count: Optional[int] = None


class QueryResponse(BaseModel):
    answer: Optional[str] = None
    confidence: float
    is_grounded: bool
    sources: List[SourceReferenceResponse] = Field(default_factory=list)
    chunks_retrieved: int
    retrieval_time_ms: float
    generation_time_ms: float
    total_time_ms: float
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    vector_store: bool
