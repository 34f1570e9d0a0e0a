"""SQLAlchemy models for uploaded documents and their chunks."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _new_id() -> str:
    return str(uuid.uuid4())


class DocumentStatus(str, Enum):
    """Document processing status."""
    UPLOADING = "UPLOADING"    # Record created, text not yet handed to ingestion
    PROCESSING = "PROCESSING"  # Chunking / embedding in progress
    READY = "READY"            # At least the required share of chunks is searchable
    FAILED = "FAILED"          # Nothing retrievable, see error_message


class Base(DeclarativeBase):
    pass


class Document(Base):
    """An uploaded document and its processing state."""

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    owner: Mapped[str] = mapped_column(String(255), nullable=False, default="anonymous")
    status: Mapped[DocumentStatus] = mapped_column(
        SAEnum(DocumentStatus, native_enum=False, length=20),
        nullable=False,
        default=DocumentStatus.UPLOADING,
    )
    total_chunks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    file_size_bytes: Mapped[Optional[int]] = mapped_column(Integer)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    chunks: Mapped[List["DocumentChunk"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DocumentChunk.chunk_index",
    )

    __table_args__ = (
        Index("idx_documents_owner", "owner"),
        Index("idx_documents_status", "status"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert document to a JSON-friendly dictionary."""
        return {
            "document_id": self.id,
            "title": self.title,
            "filename": self.filename,
            "description": self.description,
            "owner": self.owner,
            "status": self.status.value,
            "total_chunks": self.total_chunks,
            "file_size_bytes": self.file_size_bytes,
            "error_message": self.error_message,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }


class DocumentChunk(Base):
    """A contiguous slice of a document's text; the unit of embedding and retrieval.

    ``vector_id`` stays ``None`` until the chunk has been embedded and stored
    in the vector index; such chunks are "pending".
    """

    __tablename__ = "document_chunks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    document_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    token_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    vector_id: Mapped[Optional[str]] = mapped_column(String(255))
    embedding_model: Mapped[Optional[str]] = mapped_column(String(255))
    chunk_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON)

    document: Mapped[Document] = relationship(back_populates="chunks")

    __table_args__ = (
        Index("idx_chunks_document_id", "document_id"),
        Index("idx_chunks_vector_id", "vector_id"),
        Index("idx_chunks_document_index", "document_id", "chunk_index", unique=True),
    )

    @property
    def is_pending(self) -> bool:
        return self.vector_id is None
