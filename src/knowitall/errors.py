"""Error type shared by the ingestion and query pipelines."""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Category of a pipeline failure."""
    EMPTY_INPUT = "empty_input"                    # blank user/document input, never retried
    SIZE_LIMIT = "size_limit"                      # input above a safety ceiling
    EXTRACTION_FAILURE = "extraction_failure"      # binary document could not be read
    EMBEDDING_FAILURE = "embedding_failure"        # provider failed after all retries
    VECTOR_STORE_FAILURE = "vector_store_failure"
    GENERATION_FAILURE = "generation_failure"
    NOT_FOUND = "not_found"


class KnowItAllError(Exception):
    """Tagged pipeline error.

    One exception type with a ``kind`` discriminator replaces a family of
    subclasses; callers branch on ``error.kind``.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        document_id: Optional[str] = None
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.document_id = document_id

    def __str__(self) -> str:
        if self.document_id:
            return f"{self.message} (document {self.document_id})"
        return self.message

    def __repr__(self) -> str:
        return (
            f"KnowItAllError(kind={self.kind.value!r}, message={self.message!r}, "
            f"document_id={self.document_id!r})"
        )
