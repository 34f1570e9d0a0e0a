"""Relational storage for documents and chunks.

Every mutating method opens its own session and commits before returning, so
each status or count update is an independent atomic unit. A crash midway
through ingestion therefore leaves the last committed state visible.
"""

from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from sqlalchemy import create_engine, event, func, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import joinedload, sessionmaker
from sqlalchemy.pool import StaticPool

from knowitall.documents.lifecycle import IngestionEvent, is_terminal, transition
from knowitall.documents.models import Base, Document, DocumentChunk, DocumentStatus
from knowitall.errors import ErrorKind, KnowItAllError
from knowitall.utils.config import get_settings
from knowitall.utils.logger import get_logger

logger = get_logger()


def create_db_engine(database_url: str) -> Engine:
    """
    Create a SQLAlchemy engine.

    SQLite gets cross-thread access (ingestion runs on worker threads) and
    foreign keys switched on so chunk rows cascade with their document.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    database = make_url(database_url).database
    if not database or database == ":memory:":
        kwargs["poolclass"] = StaticPool
    else:
        Path(database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(database_url, **kwargs)

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


class DocumentRepository:
    """Data access for documents and their chunks."""

    def __init__(self, engine: Optional[Engine] = None):
        """
        Initialize repository.

        Args:
            engine: SQLAlchemy engine (default: built from settings.database_url)
        """
        if engine is None:
            engine = create_db_engine(get_settings().database_url)
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    def create_schema(self):
        """Create tables if they do not exist."""
        Base.metadata.create_all(self.engine)

    # ==================== Documents ====================

    def create_document(
        self,
        title: str,
        filename: str,
        owner: str = "anonymous",
        description: Optional[str] = None,
        file_size_bytes: Optional[int] = None,
        document_id: Optional[str] = None
    ) -> Document:
        """Insert a new document in status UPLOADING."""
        document = Document(
            title=title,
            filename=filename,
            owner=owner,
            description=description,
            file_size_bytes=file_size_bytes,
            status=DocumentStatus.UPLOADING,
            total_chunks=0,
            uploaded_at=datetime.now(),
        )
        if document_id:
            document.id = document_id

        with self._session_factory.begin() as session:
            session.add(document)

        logger.info(f"Created document record: {document.id} ({filename})")
        return document

    def get_document(self, document_id: str) -> Optional[Document]:
        with self._session_factory() as session:
            return session.get(Document, document_id)

    def list_documents(self) -> List[Document]:
        with self._session_factory() as session:
            stmt = select(Document).order_by(Document.uploaded_at.desc())
            return list(session.scalars(stmt))

    def delete_document(self, document_id: str) -> bool:
        """Delete a document; its chunks go with it."""
        with self._session_factory.begin() as session:
            document = session.get(Document, document_id)
            if document is None:
                return False
            session.delete(document)

        logger.info(f"Deleted document: {document_id}")
        return True

    def apply_event(
        self,
        document_id: str,
        event: IngestionEvent,
        error_message: Optional[str] = None
    ) -> Optional[DocumentStatus]:
        """
        Apply a lifecycle event to a document and commit.

        Args:
            document_id: Document to update
            event: Lifecycle event
            error_message: Stored when the new status is FAILED

        Returns:
            The new status, or None if the document does not exist

        Raises:
            InvalidTransitionError: if the event is not allowed in the current status
        """
        with self._session_factory.begin() as session:
            document = session.get(Document, document_id)
            if document is None:
                logger.warning(f"Cannot update status of unknown document {document_id}")
                return None

            new_status = transition(document.status, event)
            if new_status == document.status:
                return new_status

            document.status = new_status
            document.error_message = error_message if new_status == DocumentStatus.FAILED else None
            if is_terminal(new_status):
                document.processed_at = datetime.now()

        logger.info(f"Updated document {document_id} status to: {new_status.value}")
        return new_status

    def set_total_chunks(self, document_id: str, total_chunks: int):
        """Record the chunk count produced by the chunker."""
        with self._session_factory.begin() as session:
            document = session.get(Document, document_id)
            if document is None:
                raise KnowItAllError(ErrorKind.NOT_FOUND, "Document not found", document_id)

            if total_chunks < document.total_chunks:
                logger.warning(
                    f"Ignoring attempt to lower total_chunks of {document_id} "
                    f"from {document.total_chunks} to {total_chunks}"
                )
                return
            document.total_chunks = total_chunks

    # ==================== Chunks ====================

    def add_chunks(self, chunks: Iterable[DocumentChunk]):
        """Persist chunks (typically still pending) in one commit."""
        with self._session_factory.begin() as session:
            session.add_all(list(chunks))

    def mark_chunk_embedded(self, chunk_id: str, vector_id: str, embedding_model: str):
        """Attach the vector reference to a chunk."""
        with self._session_factory.begin() as session:
            chunk = session.get(DocumentChunk, chunk_id)
            if chunk is None:
                raise KnowItAllError(ErrorKind.NOT_FOUND, f"Chunk {chunk_id} not found")
            chunk.vector_id = vector_id
            chunk.embedding_model = embedding_model

    def get_chunk(self, chunk_id: str) -> Optional[DocumentChunk]:
        """Fetch a chunk with its parent document loaded."""
        with self._session_factory() as session:
            stmt = (
                select(DocumentChunk)
                .options(joinedload(DocumentChunk.document))
                .where(DocumentChunk.id == chunk_id)
            )
            return session.scalars(stmt).first()

    def list_chunks(self, document_id: str) -> List[DocumentChunk]:
        with self._session_factory() as session:
            stmt = (
                select(DocumentChunk)
                .where(DocumentChunk.document_id == document_id)
                .order_by(DocumentChunk.chunk_index)
            )
            return list(session.scalars(stmt))

    def count_embedded_chunks(self, document_id: str) -> int:
        """Count chunks of a document that carry a vector reference."""
        with self._session_factory() as session:
            stmt = (
                select(func.count())
                .select_from(DocumentChunk)
                .where(DocumentChunk.document_id == document_id)
                .where(DocumentChunk.vector_id.is_not(None))
            )
            return session.scalar(stmt) or 0


# Singleton instance
_repository: Optional[DocumentRepository] = None


def get_repository() -> DocumentRepository:
    """Get or create the global repository instance."""
    global _repository
    if _repository is None:
        _repository = DocumentRepository()
        _repository.create_schema()
    return _repository
