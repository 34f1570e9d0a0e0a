"""Query-time retrieval and answer generation."""

import time
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from knowitall.documents.repository import DocumentRepository, get_repository
from knowitall.errors import ErrorKind, KnowItAllError
from knowitall.rag.chunker import CHARS_PER_TOKEN
from knowitall.rag.generator import OllamaGenerator, get_generator
from knowitall.rag.prompts import build_user_message, get_system_prompt
from knowitall.utils.config import get_settings
from knowitall.utils.logger import get_logger
from knowitall.vectorstore.embeddings import EmbeddingGateway, get_embedding_gateway
from knowitall.vectorstore.qdrant_client import QdrantVectorStore, VectorMatch, get_vector_store

logger = get_logger()

CHUNK_SEPARATOR = "\n\n"


@dataclass
class SourceReference:
    """A retrieved chunk shown to the user as evidence."""
    document_id: Optional[str]
    chunk_index: Optional[int]
    similarity: float
    excerpt: str
    document_title: Optional[str] = None
    token_count: Optional[int] = None


@dataclass
class QueryResult:
    """Answer plus confidence, sources and timings (milliseconds)."""
    answer: Optional[str]
    confidence: float
    is_grounded: bool
    sources: List[SourceReference] = field(default_factory=list)
    chunks_retrieved: int = 0
    retrieval_time_ms: float = 0.0
    generation_time_ms: float = 0.0
    total_time_ms: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


def format_marker(match: VectorMatch) -> str:
    return f"[Document: {match.document_id} | Chunk {match.chunk_index} | Similarity: {match.score:.2f}]\n"


def truncate_to_chars(text: str, max_chars: int) -> str:
    """
    Cut text to at most max_chars characters.

    Stops after the last period when there is one; otherwise hard-cuts and
    appends "..." (still within max_chars).
    """
    if len(text) <= max_chars:
        return text

    truncated = text[:max_chars]
    last_period = truncated.rfind(".")
    if last_period > 0:
        return truncated[:last_period + 1]

    if max_chars <= 3:
        return truncated
    return text[:max_chars - 3] + "..."


def truncate_excerpt(text: Optional[str], max_length: int) -> str:
    """Shorten text for display, breaking at the last word boundary."""
    if not text or len(text) <= max_length:
        return text or ""

    truncated = text[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > 0:
        return truncated[:last_space] + "..."

    return truncated + "..."


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


class RAGEngine:
    """
    Answers questions from ingested documents.

    Pipeline per query: embed question, search, score confidence, assemble
    context under a token budget, choose a grounded or best-effort prompt,
    generate, attach sources. Failures never propagate; they produce a
    QueryResult with ``error`` set.
    """

    def __init__(
        self,
        embeddings: Optional[EmbeddingGateway] = None,
        vector_store: Optional[QdrantVectorStore] = None,
        generator: Optional[OllamaGenerator] = None,
        repository: Optional[DocumentRepository] = None,
        max_context_tokens: Optional[int] = None
    ):
        self.settings = get_settings()
        self.embeddings = embeddings or get_embedding_gateway()
        self.vector_store = vector_store or get_vector_store()
        self.generator = generator or get_generator()
        self.repository = repository or get_repository()
        self.max_context_tokens = max_context_tokens or self.settings.rag_max_context_tokens
        self.excerpt_chars = self.settings.rag_excerpt_chars

    def answer(
        self,
        question: str,
        top_k: Optional[int] = None,
        confidence_threshold: Optional[float] = None,
        document_filter: Optional[str] = None
    ) -> QueryResult:
        """
        Answer a question from the document corpus.

        Args:
            question: User question
            top_k: Number of chunks to retrieve (default from settings)
            confidence_threshold: Minimum best score for a grounded answer (default from settings)
            document_filter: Optional document id to restrict retrieval to

        Returns:
            QueryResult; on failure ``answer`` is None and ``error`` describes why
        """
        start_time = time.perf_counter()
        if top_k is None:
            top_k = self.settings.rag_top_k_results
        if confidence_threshold is None:
            confidence_threshold = self.settings.rag_confidence_threshold

        logger.info(
            f"Processing query: '{(question or '')[:50]}...' "
            f"(top_k: {top_k}, threshold: {confidence_threshold})"
        )

        try:
            if question is None or not question.strip():
                raise KnowItAllError(ErrorKind.EMPTY_INPUT, "Question must not be empty")
            if top_k < 1:
                raise ValueError(f"top_k must be at least 1, got {top_k}")

            # Stage 1-2: embed and retrieve
            query_vector = self.embeddings.embed(question)
            matches = self.vector_store.search(query_vector, top_k, document_filter)
            retrieval_time_ms = _elapsed_ms(start_time)
            logger.debug(f"Retrieved {len(matches)} chunks in {retrieval_time_ms:.0f}ms")

            # Stage 3: confidence is the best single match
            confidence = max((m.score for m in matches), default=0.0)
            is_grounded = confidence >= confidence_threshold
            logger.debug(f"Confidence score: {confidence:.3f}, grounded: {is_grounded}")

            # Stage 4-6: context, prompt, generation
            context = self.build_context(matches)
            generation_start = time.perf_counter()
            answer = self.generator.complete(
                get_system_prompt(is_grounded),
                build_user_message(question, context)
            )
            generation_time_ms = _elapsed_ms(generation_start)

            # Stage 7-8: sources and result
            sources = self.build_sources(matches)
            total_time_ms = _elapsed_ms(start_time)

            logger.info(
                f"Query processed successfully in {total_time_ms:.0f}ms "
                f"(retrieval: {retrieval_time_ms:.0f}ms, generation: {generation_time_ms:.0f}ms)"
            )

            return QueryResult(
                answer=answer,
                confidence=confidence,
                is_grounded=is_grounded,
                sources=sources,
                chunks_retrieved=len(matches),
                retrieval_time_ms=retrieval_time_ms,
                generation_time_ms=generation_time_ms,
                total_time_ms=total_time_ms,
            )

        except Exception as e:
            logger.error(f"Query processing failed: {e}")
            return QueryResult(
                answer=None,
                confidence=0.0,
                is_grounded=False,
                total_time_ms=_elapsed_ms(start_time),
                error=f"Failed to process query: {e}",
            )

    def build_context(self, matches: List[VectorMatch]) -> str:
        """
        Concatenate matches with source markers, within the token budget.

        Markers count toward the budget. The first chunk that does not fit is
        truncated and assembly stops there.
        """
        if not matches:
            return ""

        budget_chars = int(self.max_context_tokens * CHARS_PER_TOKEN)
        parts = []
        used = 0

        for match in matches:
            marker = format_marker(match)
            remaining = budget_chars - used - len(marker) - len(CHUNK_SEPARATOR)
            if remaining <= 0:
                logger.debug("Context token limit reached")
                break

            text = match.content
            truncated = len(text) > remaining
            if truncated:
                text = truncate_to_chars(text, remaining)

            block = marker + text + CHUNK_SEPARATOR
            parts.append(block)
            used += len(block)

            if truncated:
                logger.debug(f"Truncated chunk {match.chunk_index} of {match.document_id} to fit context")
                break

        return "".join(parts)

    def build_sources(self, matches: List[VectorMatch]) -> List[SourceReference]:
        """One reference per match, enriched from the chunk table when possible."""
        sources = []
        for match in matches:
            reference = SourceReference(
                document_id=match.document_id,
                chunk_index=match.chunk_index,
                similarity=match.raw_score,
                excerpt=truncate_excerpt(match.content, self.excerpt_chars),
                token_count=match.token_count,
            )

            try:
                chunk = self.repository.get_chunk(match.vector_id)
                if chunk is not None:
                    reference.token_count = chunk.token_count
                    if chunk.document is not None:
                        reference.document_title = chunk.document.title
            except Exception as e:
                logger.warning(f"Could not load chunk {match.vector_id} for source metadata: {e}")

            sources.append(reference)
        return sources


# Singleton instance
_engine: Optional[RAGEngine] = None


def get_rag_engine() -> RAGEngine:
    """Get or create the global RAG engine."""
    global _engine
    if _engine is None:
        _engine = RAGEngine()
    return _engine
