"""Document ingestion pipeline for RAG system."""

import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from knowitall.documents.lifecycle import IngestionEvent
from knowitall.documents.models import DocumentChunk, DocumentStatus
from knowitall.documents.repository import DocumentRepository, get_repository
from knowitall.rag.chunker import DocumentChunker, get_chunker
from knowitall.utils.config import get_settings
from knowitall.utils.logger import get_logger
from knowitall.vectorstore.embeddings import EmbeddingGateway, get_embedding_gateway
from knowitall.vectorstore.qdrant_client import QdrantVectorStore, get_vector_store

logger = get_logger()


@dataclass
class IngestionStats:
    """Outcome of ingesting one document."""
    document_id: str
    status: DocumentStatus
    chunks_created: int
    chunks_embedded: int
    chunks_failed: int
    duration_seconds: float
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == DocumentStatus.READY

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class IngestionProgress:
    """Embedding progress of a document."""
    document_id: str
    total_chunks: int
    processed_chunks: int
    percentage: float


class IngestionPipeline:
    """
    Chunk -> embed -> store pipeline for a single document.

    Chunks are processed one after another. A chunk that fails to embed or
    store is logged and skipped; the document only fails when too few chunks
    made it (see ``min_success_ratio``) or when something outside the
    per-chunk loop breaks. ``ingest`` never raises.
    """

    def __init__(
        self,
        repository: Optional[DocumentRepository] = None,
        chunker: Optional[DocumentChunker] = None,
        embeddings: Optional[EmbeddingGateway] = None,
        vector_store: Optional[QdrantVectorStore] = None,
        min_success_ratio: Optional[float] = None
    ):
        """
        Initialize the ingestion pipeline.

        Args:
            repository: Document/chunk storage (default: global repository)
            chunker: Text chunker (default: global chunker)
            embeddings: Embedding gateway (default: global gateway)
            vector_store: Vector index (default: global store)
            min_success_ratio: Share of chunks that must be stored for READY,
                on top of the at-least-one rule (default from settings)
        """
        self.settings = get_settings()
        self.repository = repository or get_repository()
        self.chunker = chunker or get_chunker()
        self.embeddings = embeddings or get_embedding_gateway()
        self.vector_store = vector_store or get_vector_store()
        self.min_success_ratio = (
            min_success_ratio if min_success_ratio is not None
            else self.settings.ingestion_min_success_ratio
        )

    def ingest(self, document_id: str, text: Optional[str]) -> IngestionStats:
        """
        Run the complete pipeline for one document.

        Args:
            document_id: Document to ingest (must already exist)
            text: Extracted document text

        Returns:
            IngestionStats with the final status
        """
        start_time = time.perf_counter()
        chunks_created = 0
        embedded = 0
        failed = 0

        logger.info("=" * 70)
        logger.info(f"Starting ingestion of document {document_id}")
        logger.info("=" * 70)

        try:
            # Step 1: Mark as processing
            if self.repository.apply_event(document_id, IngestionEvent.STARTED) is None:
                return self._finish(document_id, DocumentStatus.FAILED, start_time, 0, 0, 0, "Document not found")

            # Step 2: Chunk document
            logger.info("Step 1: Chunking document...")
            chunks = self.chunker.chunk(document_id, text)
            chunks_created = len(chunks)

            if not chunks:
                return self._fail(document_id, start_time, 0, 0, 0, "No chunks created from document")

            chunk_lengths = [len(chunk.content) for chunk in chunks]
            logger.info(
                f"Chunk statistics: count={len(chunks)}, "
                f"avg={sum(chunk_lengths) / len(chunk_lengths):.0f}, "
                f"min={min(chunk_lengths)}, max={max(chunk_lengths)} characters"
            )

            # Step 3: Record total and persist chunks as pending
            self.repository.set_total_chunks(document_id, chunks_created)
            self.repository.add_chunks(chunks)

            # Step 4: Embed and store each chunk
            logger.info(f"Step 2: Embedding and storing {chunks_created} chunks...")
            for chunk in chunks:
                if self._process_chunk(document_id, chunk):
                    embedded += 1
                else:
                    failed += 1

            # Step 5: Decide final status
            if embedded == 0:
                return self._fail(
                    document_id, start_time, chunks_created, embedded, failed,
                    f"Failed to process all {chunks_created} chunks"
                )

            success_ratio = embedded / chunks_created
            if success_ratio < self.min_success_ratio:
                return self._fail(
                    document_id, start_time, chunks_created, embedded, failed,
                    f"Only {embedded} of {chunks_created} chunks processed "
                    f"(minimum success ratio {self.min_success_ratio:.0%})"
                )

            self.repository.apply_event(document_id, IngestionEvent.SUCCEEDED)
            if failed:
                logger.warning(f"Document {document_id}: {failed}/{chunks_created} chunks failed")
            return self._finish(document_id, DocumentStatus.READY, start_time, chunks_created, embedded, failed)

        except Exception as e:
            logger.exception(f"Ingestion of document {document_id} failed: {e}")
            return self._fail(
                document_id, start_time, chunks_created, embedded, failed,
                f"Processing failed: {e}"
            )

    def _process_chunk(self, document_id: str, chunk: DocumentChunk) -> bool:
        """Embed, store and mark one chunk. Returns False on any failure."""
        try:
            vector = self.embeddings.embed(chunk.content)
            self.vector_store.upsert(
                vector_id=chunk.id,
                vector=vector,
                metadata={
                    "document_id": document_id,
                    "chunk_index": chunk.chunk_index,
                    "content": chunk.content,
                    "token_count": chunk.token_count,
                }
            )
            self.repository.mark_chunk_embedded(chunk.id, chunk.id, self.embeddings.model_name)
            logger.debug(f"Stored chunk {chunk.chunk_index} of document {document_id}")
            return True
        except Exception as e:
            logger.warning(f"Failed to process chunk {chunk.chunk_index} of document {document_id}: {e}")
            return False

    def _fail(
        self,
        document_id: str,
        start_time: float,
        chunks_created: int,
        embedded: int,
        failed: int,
        error_message: str
    ) -> IngestionStats:
        logger.error(f"Document {document_id} failed: {error_message}")
        try:
            self.repository.apply_event(document_id, IngestionEvent.FAILED, error_message=error_message)
        except Exception as e:
            logger.error(f"Could not mark document {document_id} as failed: {e}")
        return self._finish(
            document_id, DocumentStatus.FAILED, start_time, chunks_created, embedded, failed, error_message
        )

    @staticmethod
    def _finish(
        document_id: str,
        status: DocumentStatus,
        start_time: float,
        chunks_created: int,
        embedded: int,
        failed: int,
        error_message: Optional[str] = None
    ) -> IngestionStats:
        stats = IngestionStats(
            document_id=document_id,
            status=status,
            chunks_created=chunks_created,
            chunks_embedded=embedded,
            chunks_failed=failed,
            duration_seconds=time.perf_counter() - start_time,
            error_message=error_message,
        )

        logger.info("=" * 70)
        logger.info(f"Ingestion of document {document_id} finished: {status.value}")
        logger.info(f"Chunks created: {chunks_created}")
        logger.info(f"Chunks stored: {embedded}")
        logger.info(f"Chunks failed: {failed}")
        logger.info(f"Duration: {stats.duration_seconds:.2f} seconds")
        logger.info("=" * 70)
        return stats

    def progress(self, document_id: str) -> Optional[IngestionProgress]:
        """
        Report embedding progress; safe to call while ingestion is running.

        Returns:
            IngestionProgress, or None if the document does not exist
        """
        document = self.repository.get_document(document_id)
        if document is None:
            return None

        total = max(document.total_chunks or 0, 0)
        processed = min(max(self.repository.count_embedded_chunks(document_id), 0), total)
        percentage = (processed / total * 100.0) if total else 0.0

        return IngestionProgress(
            document_id=document_id,
            total_chunks=total,
            processed_chunks=processed,
            percentage=min(max(percentage, 0.0), 100.0),
        )


class IngestionWorker:
    """Runs ingestion jobs on a thread pool; submit() returns immediately."""

    def __init__(
        self,
        pipeline: Optional[IngestionPipeline] = None,
        max_workers: Optional[int] = None
    ):
        settings = get_settings()
        self.pipeline = pipeline or IngestionPipeline()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.ingestion_workers,
            thread_name_prefix="ingestion"
        )

    def submit(self, document_id: str, text: Optional[str]) -> "Future[IngestionStats]":
        """Schedule ingestion of a document."""
        logger.info(f"Scheduling ingestion of document {document_id}")
        return self._executor.submit(self.pipeline.ingest, document_id, text)

    def shutdown(self, wait: bool = True, cancel: bool = False):
        """
        Stop the worker pool.

        Args:
            wait: Block until running jobs finish
            cancel: Drop queued jobs and interrupt embedding retries in progress;
                always waits for running jobs to stop
        """
        if not cancel:
            self._executor.shutdown(wait=wait)
            return

        embeddings = self.pipeline.embeddings
        embeddings.cancel()
        self._executor.shutdown(wait=True, cancel_futures=True)
        # The gateway is shared with queries
        embeddings.reset()


# Singleton instances
_pipeline: Optional[IngestionPipeline] = None
_worker: Optional[IngestionWorker] = None


def get_ingestion_pipeline() -> IngestionPipeline:
    """Get or create the global ingestion pipeline."""
    global _pipeline
    if _pipeline is None:
        _pipeline = IngestionPipeline()
    return _pipeline


def get_ingestion_worker() -> IngestionWorker:
    """Get or create the global ingestion worker."""
    global _worker
    if _worker is None:
        _worker = IngestionWorker(get_ingestion_pipeline())
    return _worker


def shutdown_ingestion_worker(wait: bool = True):
    """Stop the global worker if one was started."""
    global _worker
    if _worker is not None:
        _worker.shutdown(wait=wait)
        _worker = None
