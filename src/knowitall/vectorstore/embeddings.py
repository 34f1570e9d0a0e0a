"""Embedding generation via Ollama with bounded retry."""

import threading
from typing import Any, List, Optional

import ollama

from knowitall.errors import ErrorKind, KnowItAllError
from knowitall.utils.config import get_settings
from knowitall.utils.logger import get_logger

logger = get_logger()


class EmbeddingGateway:
    """
    Converts text to a fixed-length vector.

    Retries provider errors with exponential backoff
    (``backoff_ms * 2 ** (attempt - 1)``). Backoff waits on an event, so
    ``cancel()`` cuts a pending retry short and the call fails immediately.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        model: Optional[str] = None,
        max_attempts: Optional[int] = None,
        backoff_ms: Optional[int] = None
    ):
        """
        Initialize embedding gateway.

        Args:
            client: Object exposing ``embeddings(model=..., prompt=...)`` (default: ollama.Client)
            model: Embedding model name (default from settings)
            max_attempts: Attempts before giving up (default from settings)
            backoff_ms: Base backoff between attempts in milliseconds (default from settings)
        """
        self.settings = get_settings()
        self.client = client or ollama.Client(host=self.settings.ollama_base_url)
        self.model_name = model or self.settings.ollama_embedding_model
        self.max_attempts = max(max_attempts if max_attempts is not None else self.settings.embedding_max_attempts, 1)
        self.backoff_ms = backoff_ms if backoff_ms is not None else self.settings.embedding_backoff_ms
        self._cancelled = threading.Event()

    def embed(self, text: Optional[str]) -> List[float]:
        """
        Generate an embedding for text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            KnowItAllError: EMPTY_INPUT for blank text, EMBEDDING_FAILURE once
                retries are exhausted or the gateway is cancelled
        """
        if text is None or not text.strip():
            raise KnowItAllError(ErrorKind.EMPTY_INPUT, "Cannot generate embedding for empty text")

        logger.debug(f"Generating embedding for text (length: {len(text)})")

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            if self._cancelled.is_set():
                raise KnowItAllError(ErrorKind.EMBEDDING_FAILURE, "Embedding generation cancelled")

            try:
                embedding = self._request(text)
                logger.debug(f"Successfully generated embedding (size: {len(embedding)})")
                return embedding
            except Exception as e:
                last_error = e

            if attempt < self.max_attempts:
                backoff = self.backoff_ms * (2 ** (attempt - 1))
                logger.warning(
                    f"Embedding generation failed (attempt {attempt}/{self.max_attempts}), "
                    f"retrying in {backoff}ms: {last_error}"
                )
                if self._cancelled.wait(backoff / 1000.0):
                    raise KnowItAllError(
                        ErrorKind.EMBEDDING_FAILURE,
                        "Embedding generation interrupted during backoff"
                    ) from last_error

        logger.error(f"Embedding generation failed after {self.max_attempts} attempts: {last_error}")
        raise KnowItAllError(
            ErrorKind.EMBEDDING_FAILURE,
            f"Failed to generate embedding after {self.max_attempts} attempts: {last_error}"
        ) from last_error

    def _request(self, text: str) -> List[float]:
        response = self.client.embeddings(model=self.model_name, prompt=text)
        embedding = response.get("embedding")
        if not embedding:
            raise ValueError("No embedding returned from Ollama")
        return [float(v) for v in embedding]

    def cancel(self):
        """Abort pending and future retries."""
        self._cancelled.set()

    def reset(self):
        """Allow calls again after ``cancel()``."""
        self._cancelled.clear()


# Singleton instance
_embedding_gateway: Optional[EmbeddingGateway] = None


def get_embedding_gateway() -> EmbeddingGateway:
    """Get or create the global embedding gateway."""
    global _embedding_gateway
    if _embedding_gateway is None:
        _embedding_gateway = EmbeddingGateway()
    return _embedding_gateway
