"""Document chunking for RAG pipeline."""

import math
import uuid
from typing import List, Optional

from knowitall.documents.models import DocumentChunk
from knowitall.errors import ErrorKind, KnowItAllError
from knowitall.utils.config import get_settings
from knowitall.utils.logger import get_logger

logger = get_logger()

# Fixed English-text approximation; used for sizing only.
CHARS_PER_TOKEN = 4.0

SENTENCE_TERMINATORS = ".?!"

# Chunks at or above this length are not whitespace-trimmed.
TRIM_THRESHOLD_CHARS = 10_000


def estimate_tokens(text: Optional[str]) -> int:
    """Estimate token count as ceil(characters / 4)."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class DocumentChunker:
    """Splits document text into overlapping, sentence-aware chunks."""

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        max_text_chars: Optional[int] = None
    ):
        """
        Initialize document chunker.

        Args:
            chunk_size: Target chunk size in tokens (default from settings)
            chunk_overlap: Overlap between consecutive chunks in tokens (default from settings)
            max_text_chars: Hard ceiling on input length (default from settings)
        """
        self.settings = get_settings()
        self.chunk_size = chunk_size if chunk_size is not None else self.settings.chunk_size_tokens
        self.chunk_overlap = chunk_overlap if chunk_overlap is not None else self.settings.chunk_overlap_tokens
        self.max_text_chars = max_text_chars if max_text_chars is not None else self.settings.chunk_max_text_chars

        # Validate parameters
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.chunk_overlap < 0:
            raise ValueError("chunk_overlap must not be negative")

        self.chunk_size_chars = max(int(self.chunk_size * CHARS_PER_TOKEN), 1)
        self.overlap_chars = int(self.chunk_overlap * CHARS_PER_TOKEN)

        if self.chunk_overlap >= self.chunk_size:
            logger.warning(
                f"chunk_overlap ({self.chunk_overlap}) >= chunk_size ({self.chunk_size}); "
                "the cursor will advance one character per chunk and long texts hit the iteration limit"
            )

        logger.info(
            f"Initialized DocumentChunker with chunk_size={self.chunk_size} tokens, "
            f"overlap={self.chunk_overlap} tokens"
        )

    def chunk(self, document_id: str, text: Optional[str]) -> List[DocumentChunk]:
        """
        Split a document's text into ordered, overlapping chunks.

        Args:
            document_id: Owning document
            text: Full document text

        Returns:
            List of pending DocumentChunk objects with contiguous chunk_index values

        Raises:
            KnowItAllError: EMPTY_INPUT for blank text, SIZE_LIMIT above max_text_chars
        """
        if text is None or not text.strip():
            raise KnowItAllError(ErrorKind.EMPTY_INPUT, "Cannot chunk empty text", document_id)

        if len(text) > self.max_text_chars:
            raise KnowItAllError(
                ErrorKind.SIZE_LIMIT,
                f"Document too large for chunking: {len(text)} chars (max {self.max_text_chars})",
                document_id
            )

        logger.info(f"Chunking document {document_id} - text length: {len(text)} chars")

        chunks: List[DocumentChunk] = []
        for start, end, content in self._split(text):
            chunks.append(DocumentChunk(
                id=str(uuid.uuid4()),
                document_id=document_id,
                content=content,
                chunk_index=len(chunks),
                token_count=estimate_tokens(content),
                chunk_metadata={"start_char": start, "end_char": end},
            ))

        logger.info(f"Created {len(chunks)} chunks for document {document_id}")
        return chunks

    def _split(self, text: str) -> List[tuple[int, int, str]]:
        """
        Compute chunk boundaries.

        Returns:
            List of (start_char, end_char, content) tuples
        """
        size = self.chunk_size_chars
        overlap = self.overlap_chars
        text_length = len(text)

        # At least one character per chunk, even when overlap >= size
        advance = max(size - overlap, 1)
        max_iterations = text_length // size + 10

        pieces = []
        start = 0
        iterations = 0

        while start < text_length and iterations < max_iterations:
            iterations += 1

            end = min(start + size, text_length)
            if end < text_length:
                sentence_break = self._find_sentence_break(text, end, start + size // 2)
                if sentence_break > start:
                    end = sentence_break

            content = text[start:end]
            if len(content) < TRIM_THRESHOLD_CHARS:
                content = content.strip()

            if content:
                pieces.append((start, end, content))

            if end >= text_length:
                break

            start += advance

        if start < text_length and iterations >= max_iterations:
            logger.warning(
                f"Chunk iteration limit ({max_iterations}) reached at offset {start}/{text_length}"
            )

        return pieces

    @staticmethod
    def _find_sentence_break(text: str, target_index: int, min_index: int) -> int:
        """
        Find the nearest sentence terminator at or before target_index.

        Args:
            text: Full text
            target_index: Exclusive candidate end of the chunk
            min_index: Lowest index to inspect

        Returns:
            Position just after the terminator, or -1 if none found
        """
        for i in range(target_index - 1, max(min_index, 0) - 1, -1):
            if text[i] in SENTENCE_TERMINATORS:
                return i + 1
        return -1


# Singleton instance
_chunker: Optional[DocumentChunker] = None


def get_chunker() -> DocumentChunker:
    """Get or create the global chunker instance."""
    global _chunker
    if _chunker is None:
        _chunker = DocumentChunker()
    return _chunker
