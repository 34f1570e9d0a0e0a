"""Question answering endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from knowitall.api.schemas import ErrorResponse, HealthResponse, QueryRequest, QueryResponse
from knowitall.rag.engine import RAGEngine, get_rag_engine
from knowitall.utils.logger import get_logger
from knowitall.vectorstore.qdrant_client import QdrantVectorStore, get_vector_store

logger = get_logger()
router = APIRouter(prefix="/query", tags=["Query"])


@router.post(
    "",
    response_model=QueryResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Answer a question from the uploaded documents.",
)
def query(
    request: QueryRequest,
    engine: RAGEngine = Depends(get_rag_engine),
):
    if request.question is None or not request.question.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Question must not be empty")

    result = engine.answer(
        request.question,
        top_k=request.top_k,
        confidence_threshold=request.confidence_threshold,
        document_filter=request.document_filter or None,
    )
    return result.to_dict()


@router.get("/health", response_model=HealthResponse)
def query_health(vector_store: QdrantVectorStore = Depends(get_vector_store)):
    healthy = vector_store.is_healthy()
    return HealthResponse(status="healthy" if healthy else "degraded", vector_store=healthy)
