"""Tests for the Qdrant vector store against a local in-memory instance."""

import uuid

import pytest

from knowitall.errors import ErrorKind, KnowItAllError
from knowitall.vectorstore.qdrant_client import QdrantVectorStore, clamp_score


def new_id():
    return str(uuid.uuid4())


def payload(document_id, chunk_index, content="chunk text", token_count=3):
    return {
        "document_id": document_id,
        "chunk_index": chunk_index,
        "content": content,
        "token_count": token_count,
    }


class BrokenClient:
    """Client whose every call fails like an unreachable server."""

    def __getattr__(self, name):
        def _fail(*args, **kwargs):
            raise ConnectionError("qdrant unreachable")
        return _fail


class TestClampScore:

    @pytest.mark.parametrize("raw, expected", [
        (-0.3, 0.0),
        (0.0, 0.0),
        (0.42, 0.42),
        (1.0, 1.0),
        (1.7, 1.0),
    ])
    def test_clamp(self, raw, expected):
        assert clamp_score(raw) == expected


class TestQdrantVectorStore:
    """Test cases for QdrantVectorStore."""

    def test_search_missing_collection_returns_nothing(self, vector_store):
        assert vector_store.search([1.0, 0.0, 0.0, 0.0], 5) == []

    def test_upsert_and_search(self, vector_store):
        vector_id = new_id()
        vector_store.upsert(vector_id, [1.0, 0.0, 0.0, 0.0], payload("doc-1", 0, "Vacation policy", 4))

        matches = vector_store.search([1.0, 0.0, 0.0, 0.0], 5)

        assert len(matches) == 1
        match = matches[0]
        assert match.vector_id == vector_id
        assert match.document_id == "doc-1"
        assert match.chunk_index == 0
        assert match.content == "Vacation policy"
        assert match.token_count == 4
        assert match.score == pytest.approx(1.0, abs=1e-4)
        assert 0.0 <= match.score <= 1.0

    def test_results_ordered_by_score(self, vector_store):
        vector_store.upsert(new_id(), [0.0, 1.0, 0.0, 0.0], payload("doc-1", 0, "far"))
        vector_store.upsert(new_id(), [1.0, 0.0, 0.0, 0.0], payload("doc-1", 1, "exact"))
        vector_store.upsert(new_id(), [0.8, 0.6, 0.0, 0.0], payload("doc-1", 2, "close"))

        matches = vector_store.search([1.0, 0.0, 0.0, 0.0], 3)

        assert [m.content for m in matches] == ["exact", "close", "far"]
        scores = [m.score for m in matches]
        assert scores == sorted(scores, reverse=True)

    def test_top_k_limits_results(self, vector_store):
        for i in range(6):
            vector_store.upsert(new_id(), [1.0, float(i), 0.0, 0.0], payload("doc-1", i))

        assert len(vector_store.search([1.0, 0.0, 0.0, 0.0], 4)) == 4

    def test_negative_similarity_is_clamped(self, vector_store):
        vector_store.upsert(new_id(), [-1.0, 0.0, 0.0, 0.0], payload("doc-1", 0))

        match = vector_store.search([1.0, 0.0, 0.0, 0.0], 1)[0]

        assert match.score == 0.0
        assert match.raw_score < 0.0

    def test_document_filter_applies_after_search(self, vector_store):
        """Filtering the top-k can return fewer than k matches."""
        vector_store.upsert(new_id(), [1.0, 0.0, 0.0, 0.0], payload("doc-a", 0))
        vector_store.upsert(new_id(), [0.9, 0.1, 0.0, 0.0], payload("doc-a", 1))
        vector_store.upsert(new_id(), [0.0, 1.0, 0.0, 0.0], payload("doc-b", 0))

        matches = vector_store.search([1.0, 0.0, 0.0, 0.0], 2, document_filter="doc-b")
        assert matches == []

        matches = vector_store.search([1.0, 0.0, 0.0, 0.0], 3, document_filter="doc-b")
        assert [m.document_id for m in matches] == ["doc-b"]

    def test_exists(self, vector_store):
        vector_id = new_id()
        assert not vector_store.exists(vector_id)

        vector_store.upsert(vector_id, [1.0, 0.0, 0.0, 0.0], payload("doc-1", 0))

        assert vector_store.exists(vector_id)
        assert not vector_store.exists(new_id())

    def test_upsert_same_id_overwrites(self, vector_store):
        vector_id = new_id()
        vector_store.upsert(vector_id, [1.0, 0.0, 0.0, 0.0], payload("doc-1", 0, "old"))
        vector_store.upsert(vector_id, [1.0, 0.0, 0.0, 0.0], payload("doc-1", 0, "new"))

        matches = vector_store.search([1.0, 0.0, 0.0, 0.0], 5)

        assert [m.content for m in matches] == ["new"]

    def test_delete_document(self, vector_store):
        keep_id = new_id()
        drop_id = new_id()
        vector_store.upsert(keep_id, [1.0, 0.0, 0.0, 0.0], payload("doc-keep", 0))
        vector_store.upsert(drop_id, [1.0, 0.0, 0.0, 0.0], payload("doc-drop", 0))

        vector_store.delete_document("doc-drop")

        assert vector_store.exists(keep_id)
        assert not vector_store.exists(drop_id)

    def test_delete_all(self, vector_store):
        vector_store.upsert(new_id(), [1.0, 0.0, 0.0, 0.0], payload("doc-1", 0))

        vector_store.delete_all()

        assert vector_store.search([1.0, 0.0, 0.0, 0.0], 5) == []

        vector_store.upsert(new_id(), [1.0, 0.0, 0.0, 0.0], payload("doc-1", 0))
        assert len(vector_store.search([1.0, 0.0, 0.0, 0.0], 5)) == 1

    def test_collection_info(self, vector_store):
        vector_store.upsert(new_id(), [1.0, 0.0, 0.0, 0.0], payload("doc-1", 0))

        info = vector_store.get_collection_info()

        assert info["name"] == "test_chunks"
        assert info["vector_size"] == 4

    def test_is_healthy(self, vector_store):
        assert vector_store.is_healthy()


class TestQdrantVectorStoreFailures:

    def setup_method(self):
        self.store = QdrantVectorStore(client=BrokenClient(), collection_name="broken")

    def test_not_healthy(self):
        assert not self.store.is_healthy()

    def test_upsert_failure(self):
        with pytest.raises(KnowItAllError) as exc_info:
            self.store.upsert(new_id(), [1.0, 0.0], payload("doc-1", 0))
        assert exc_info.value.kind == ErrorKind.VECTOR_STORE_FAILURE

    def test_search_failure(self):
        with pytest.raises(KnowItAllError) as exc_info:
            self.store.search([1.0, 0.0], 5)
        assert exc_info.value.kind == ErrorKind.VECTOR_STORE_FAILURE

    def test_exists_failure(self):
        with pytest.raises(KnowItAllError) as exc_info:
            self.store.exists(new_id())
        assert exc_info.value.kind == ErrorKind.VECTOR_STORE_FAILURE

    def test_delete_document_failure(self):
        with pytest.raises(KnowItAllError) as exc_info:
            self.store.delete_document("doc-1")
        assert exc_info.value.kind == ErrorKind.VECTOR_STORE_FAILURE
        assert exc_info.value.document_id == "doc-1"

    def test_collection_info_unavailable(self):
        assert self.store.get_collection_info() is None
