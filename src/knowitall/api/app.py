"""FastAPI application factory."""

import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from knowitall import __version__
from knowitall.api.routes import documents, query
from knowitall.api.schemas import HealthResponse
from knowitall.rag.ingestion import shutdown_ingestion_worker
from knowitall.utils.config import get_settings
from knowitall.utils.logger import get_logger
from knowitall.vectorstore.qdrant_client import QdrantVectorStore, get_vector_store

logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("KnowItAll API startup")
    yield
    logger.info("KnowItAll API shutdown, waiting for ingestion jobs...")
    shutdown_ingestion_worker(wait=True)
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Build the API with document and query routes."""
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=__version__,
        description="Upload documents and ask questions answered from their content.",
        lifespan=lifespan,
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        messages = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "; ".join(messages)})

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms:.1f}ms)"
        )
        return response

    app.include_router(documents.router, prefix=settings.api_prefix)
    app.include_router(query.router, prefix=settings.api_prefix)

    @app.get("/health", response_model=HealthResponse, tags=["Health Check"])
    def health_check(vector_store: QdrantVectorStore = Depends(get_vector_store)):
        healthy = vector_store.is_healthy()
        return HealthResponse(status="healthy" if healthy else "degraded", vector_store=healthy)

    return app
