"""Document upload, status and management endpoints."""

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from knowitall.api.schemas import (
    DocumentDeleteResponse,
    DocumentInfo,
    DocumentStatusResponse,
    DocumentUploadResponse,
    ErrorResponse,
)
from knowitall.documents.extraction import TextExtractor, get_extractor
from knowitall.documents.lifecycle import IngestionEvent, status_message
from knowitall.documents.models import Document, DocumentStatus
from knowitall.documents.repository import DocumentRepository, get_repository
from knowitall.errors import KnowItAllError
from knowitall.rag.ingestion import (
    IngestionPipeline,
    IngestionWorker,
    get_ingestion_pipeline,
    get_ingestion_worker,
)
from knowitall.utils.config import get_settings
from knowitall.utils.logger import get_logger
from knowitall.vectorstore.qdrant_client import QdrantVectorStore, get_vector_store

logger = get_logger()
router = APIRouter(prefix="/documents", tags=["Documents"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


def normalize_content_type(content_type: Optional[str]) -> str:
    return (content_type or "").split(";")[0].strip().lower()


def _to_info(document: Document) -> DocumentInfo:
    return DocumentInfo(**document.to_dict())


def _get_document_or_404(repository: DocumentRepository, document_id: str) -> Document:
    document = repository.get_document(document_id)
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Document not found: {document_id}")
    return document


@router.post(
    "/upload",
    response_model=DocumentUploadResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    summary="Upload a document and schedule it for ingestion.",
)
def upload_document(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    owner: str = Form("anonymous"),
    repository: DocumentRepository = Depends(get_repository),
    extractor: TextExtractor = Depends(get_extractor),
    worker: IngestionWorker = Depends(get_ingestion_worker),
):
    settings = get_settings()
    filename = file.filename or "upload"
    content_type = normalize_content_type(file.content_type)

    logger.info(f"Document upload request received: {filename} ({content_type})")

    max_bytes = settings.upload_max_file_size_bytes
    too_large = HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=f"File size exceeds maximum allowed: {max_bytes // (1024 * 1024)} MB"
    )

    try:
        if file.size is not None and file.size > max_bytes:
            raise too_large
        # One byte past the limit is enough to reject
        data = file.file.read(max_bytes + 1)
    finally:
        file.file.close()

    # Validate before anything is stored
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File is empty")

    if len(data) > max_bytes:
        raise too_large

    if content_type not in settings.upload_allowed_content_types:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"Unsupported file type: {content_type or 'unknown'}. "
                f"Allowed types: {', '.join(settings.upload_allowed_content_types)}"
            )
        )

    document = repository.create_document(
        title=(title or "").strip() or filename,
        filename=filename,
        owner=(owner or "").strip() or "anonymous",
        description=description,
        file_size_bytes=len(data),
    )

    try:
        text = extractor.extract(data, content_type, filename)
    except KnowItAllError as e:
        repository.apply_event(document.id, IngestionEvent.FAILED, error_message=e.message)
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)

    worker.submit(document.id, text)

    return DocumentUploadResponse(
        document_id=document.id,
        filename=document.filename,
        title=document.title,
        status=DocumentStatus.PROCESSING,
        uploaded_at=document.uploaded_at,
        file_size_bytes=len(data),
        message="Document uploaded successfully. Processing in background.",
    )


@router.get(
    "/{document_id}/status",
    response_model=DocumentStatusResponse,
    responses=ERROR_RESPONSES,
)
def get_document_status(
    document_id: str,
    repository: DocumentRepository = Depends(get_repository),
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline),
):
    """Current status and embedding progress of a document."""
    document = _get_document_or_404(repository, document_id)
    progress = pipeline.progress(document_id)

    return DocumentStatusResponse(
        document_id=document.id,
        title=document.title,
        filename=document.filename,
        status=document.status,
        total_chunks=progress.total_chunks if progress else document.total_chunks,
        processed_chunks=progress.processed_chunks if progress else 0,
        progress_percentage=progress.percentage if progress else 0.0,
        error_message=document.error_message,
        uploaded_at=document.uploaded_at,
        processed_at=document.processed_at,
        message=status_message(document.status),
    )


@router.get("", response_model=List[DocumentInfo])
def list_documents(repository: DocumentRepository = Depends(get_repository)):
    return [_to_info(document) for document in repository.list_documents()]


@router.delete(
    "/{document_id}",
    response_model=DocumentDeleteResponse,
    responses=ERROR_RESPONSES,
)
def delete_document(
    document_id: str,
    repository: DocumentRepository = Depends(get_repository),
    vector_store: QdrantVectorStore = Depends(get_vector_store),
):
    """Delete a document, its chunks and (best effort) its vectors."""
    _get_document_or_404(repository, document_id)

    try:
        vector_store.delete_document(document_id)
    except KnowItAllError as e:
        logger.warning(f"Vectors of document {document_id} not deleted: {e}")

    repository.delete_document(document_id)
    return DocumentDeleteResponse(document_id=document_id, message="Document deleted")
