"""Qdrant vector database client implementation."""

import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from qdrant_client import QdrantClient
from qdrant_client.models import Distance, VectorParams, PointStruct, Filter
from qdrant_client.http import models

from knowitall.errors import ErrorKind, KnowItAllError
from knowitall.utils.config import get_settings
from knowitall.utils.logger import get_logger

logger = get_logger()


@dataclass
class VectorMatch:
    """One similarity search hit, rebuilt from the point payload."""
    vector_id: str
    score: float  # clamped to [0, 1]
    raw_score: float  # as returned by Qdrant
    document_id: Optional[str]
    chunk_index: Optional[int]
    content: str
    token_count: Optional[int] = None


def clamp_score(score: float) -> float:
    return max(0.0, min(1.0, score))


class QdrantVectorStore:
    """
    Qdrant vector store for RAG functionality.

    Chunk metadata (document id, chunk index, content, token count) lives only
    in the point payload; nothing is cached locally.
    """

    def __init__(
        self,
        client: Optional[QdrantClient] = None,
        collection_name: Optional[str] = None,
        vector_size: Optional[int] = None
    ):
        """
        Initialize Qdrant vector store.

        Args:
            client: Pre-built client (default: built from settings on first use)
            collection_name: Collection to use (default from settings)
            vector_size: Vector dimension used when the collection must be created
                and no vector is at hand (default from settings)
        """
        self.settings = get_settings()
        self.client: Optional[QdrantClient] = client
        self.collection_name = collection_name or self.settings.qdrant_collection_name
        self.default_vector_size = vector_size or self.settings.qdrant_vector_size
        self._collection_ready = False
        self._collection_lock = threading.Lock()

    def connect(self) -> bool:
        """
        Connect to Qdrant database.

        Returns:
            bool: True if connection successful, False otherwise
        """
        try:
            self._get_client().get_collections()
            return True
        except Exception as e:
            logger.error(f"Failed to connect to Qdrant: {e}")
            return False

    def _get_client(self) -> QdrantClient:
        if self.client is None:
            if self.settings.qdrant_location:
                logger.info(f"Opening local Qdrant at {self.settings.qdrant_location}")
                self.client = QdrantClient(location=self.settings.qdrant_location)
            else:
                logger.info(f"Connecting to Qdrant at {self.settings.qdrant_host}:{self.settings.qdrant_port}")
                self.client = QdrantClient(
                    host=self.settings.qdrant_host,
                    port=self.settings.qdrant_port,
                    timeout=self.settings.qdrant_timeout_seconds
                )
        return self.client

    def _collection_exists(self) -> bool:
        collections = self._get_client().get_collections()
        return any(col.name == self.collection_name for col in collections.collections)

    def ensure_collection(self, vector_size: Optional[int] = None):
        """
        Create collection if it doesn't exist.

        Args:
            vector_size: Dimension of embedding vectors

        Raises:
            KnowItAllError: VECTOR_STORE_FAILURE if Qdrant is unreachable
        """
        if self._collection_ready:
            return

        with self._collection_lock:
            if self._collection_ready:
                return
            try:
                if not self._collection_exists():
                    size = vector_size or self.default_vector_size
                    logger.info(f"Creating collection '{self.collection_name}' with vector size {size}")
                    self._get_client().create_collection(
                        collection_name=self.collection_name,
                        vectors_config=VectorParams(size=size, distance=Distance.COSINE)
                    )
                self._collection_ready = True
            except Exception as e:
                raise KnowItAllError(
                    ErrorKind.VECTOR_STORE_FAILURE,
                    f"Failed to prepare collection '{self.collection_name}': {e}"
                ) from e

    def upsert(self, vector_id: str, vector: List[float], metadata: Dict[str, Any]):
        """
        Store a vector with its metadata payload.

        Args:
            vector_id: Point id (the chunk id)
            vector: Embedding vector
            metadata: Payload (document_id, chunk_index, content, token_count)

        Raises:
            KnowItAllError: VECTOR_STORE_FAILURE on any store error
        """
        self.ensure_collection(len(vector))
        try:
            self._get_client().upsert(
                collection_name=self.collection_name,
                points=[PointStruct(id=vector_id, vector=vector, payload=dict(metadata))]
            )
        except Exception as e:
            raise KnowItAllError(
                ErrorKind.VECTOR_STORE_FAILURE,
                f"Failed to store embedding for vector {vector_id}: {e}"
            ) from e

    def search(
        self,
        query_vector: List[float],
        top_k: int,
        document_filter: Optional[str] = None
    ) -> List[VectorMatch]:
        """
        Find the chunks most similar to a query vector.

        The document filter is applied to the top_k hits after the search, so a
        restrictive filter can return fewer than top_k matches.

        Args:
            query_vector: Query embedding
            top_k: Number of candidates to fetch
            document_filter: Optional document id to keep

        Returns:
            Matches ordered by score, highest first

        Raises:
            KnowItAllError: VECTOR_STORE_FAILURE on any store error
        """
        try:
            if not self._collection_exists():
                logger.warning(f"Collection '{self.collection_name}' does not exist yet")
                return []

            points = self._get_client().query_points(
                collection_name=self.collection_name,
                query=query_vector,
                limit=top_k,
                with_payload=True
            ).points
        except Exception as e:
            raise KnowItAllError(ErrorKind.VECTOR_STORE_FAILURE, f"Search operation failed: {e}") from e

        matches = [self._to_match(point) for point in points]
        if document_filter:
            matches = [m for m in matches if m.document_id == document_filter]

        matches.sort(key=lambda m: m.score, reverse=True)
        logger.debug(f"Found {len(matches)} matches (top_k={top_k}, filter={document_filter})")
        return matches

    def exists(self, vector_id: str) -> bool:
        try:
            if not self._collection_exists():
                return False
            points = self._get_client().retrieve(
                collection_name=self.collection_name,
                ids=[vector_id],
                with_payload=False,
                with_vectors=False
            )
            return len(points) > 0
        except Exception as e:
            raise KnowItAllError(ErrorKind.VECTOR_STORE_FAILURE, f"Lookup of {vector_id} failed: {e}") from e

    def delete_document(self, document_id: str):
        """Delete every point of a document. Not atomic; visibility may lag."""
        try:
            if not self._collection_exists():
                return
            self._get_client().delete(
                collection_name=self.collection_name,
                points_selector=models.FilterSelector(
                    filter=Filter(
                        must=[
                            models.FieldCondition(
                                key="document_id",
                                match=models.MatchValue(value=document_id)
                            )
                        ]
                    )
                )
            )
            logger.info(f"Deleted vectors of document {document_id}")
        except Exception as e:
            raise KnowItAllError(
                ErrorKind.VECTOR_STORE_FAILURE,
                f"Failed to delete vectors: {e}",
                document_id
            ) from e

    def delete_all(self):
        """Drop the collection. It is recreated on the next upsert."""
        try:
            logger.warning(f"Deleting collection '{self.collection_name}'")
            if self._collection_exists():
                self._get_client().delete_collection(collection_name=self.collection_name)
        except Exception as e:
            raise KnowItAllError(ErrorKind.VECTOR_STORE_FAILURE, f"Failed to delete collection: {e}") from e
        finally:
            self._collection_ready = False

    def is_healthy(self) -> bool:
        return self.connect()

    def get_collection_info(self) -> Optional[Dict[str, Any]]:
        """
        Get information about the collection.

        Returns:
            Dictionary with collection statistics or None if unavailable
        """
        try:
            info = self._get_client().get_collection(collection_name=self.collection_name)
            return {
                "name": self.collection_name,
                "points_count": info.points_count,
                "vector_size": info.config.params.vectors.size,
                "status": str(info.status)
            }
        except Exception as e:
            logger.error(f"Failed to get collection info: {e}")
            return None

    @staticmethod
    def _to_match(point) -> VectorMatch:
        payload = point.payload or {}
        chunk_index = payload.get("chunk_index")
        token_count = payload.get("token_count")
        return VectorMatch(
            vector_id=str(point.id),
            score=clamp_score(point.score),
            raw_score=point.score,
            document_id=payload.get("document_id"),
            chunk_index=int(chunk_index) if chunk_index is not None else None,
            content=payload.get("content", ""),
            token_count=int(token_count) if token_count is not None else None,
        )


# Singleton instance
_vector_store: Optional[QdrantVectorStore] = None


def get_vector_store() -> QdrantVectorStore:
    """Get or create the global vector store instance."""
    global _vector_store
    if _vector_store is None:
        _vector_store = QdrantVectorStore()
    return _vector_store
