"""Shared fixtures: in-process stand-ins for Ollama, Qdrant and the database."""

import re
import zlib

import pytest
from qdrant_client import QdrantClient

from knowitall.documents.repository import DocumentRepository, create_db_engine
from knowitall.rag.chunker import DocumentChunker
from knowitall.rag.engine import RAGEngine
from knowitall.rag.generator import OllamaGenerator
from knowitall.rag.ingestion import IngestionPipeline
from knowitall.vectorstore.embeddings import EmbeddingGateway
from knowitall.vectorstore.qdrant_client import QdrantVectorStore

EMBEDDING_DIMENSION = 16


def text_vector(text, dimension=EMBEDDING_DIMENSION):
    """Bag-of-words hashing: texts sharing words get similar vectors."""
    vector = [0.01] * dimension
    for word in re.findall(r"\w+", text.lower()):
        vector[zlib.crc32(word.encode("utf-8")) % dimension] += 1.0
    return vector


class FakeEmbeddingClient:
    """Stands in for ollama.Client.embeddings."""

    def __init__(self, fail_calls=None, fail_always=False):
        self.fail_calls = set(fail_calls or [])
        self.fail_always = fail_always
        self.calls = []

    def embeddings(self, model, prompt):
        self.calls.append(prompt)
        if self.fail_always or len(self.calls) in self.fail_calls:
            raise ConnectionError("embedding service unavailable")
        return {"embedding": text_vector(prompt)}


class FakeChatClient:
    """Stands in for ollama.Client.chat."""

    def __init__(self, reply="Generated answer", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def chat(self, model, messages, options=None):
        self.calls.append({"model": model, "messages": messages, "options": options})
        if self.error is not None:
            raise self.error
        return {"message": {"role": "assistant", "content": self.reply}}

    @property
    def last_system_prompt(self):
        return self.calls[-1]["messages"][0]["content"]

    @property
    def last_user_prompt(self):
        return self.calls[-1]["messages"][1]["content"]


@pytest.fixture
def repository():
    repo = DocumentRepository(create_db_engine("sqlite://"))
    repo.create_schema()
    return repo


@pytest.fixture
def file_repository(tmp_path):
    """Repository on a SQLite file, for tests that touch it from several threads."""
    repo = DocumentRepository(create_db_engine(f"sqlite:///{tmp_path / 'db' / 'test.db'}"))
    repo.create_schema()
    return repo


@pytest.fixture
def qdrant_client():
    client = QdrantClient(location=":memory:")
    yield client
    client.close()


@pytest.fixture
def vector_store(qdrant_client):
    return QdrantVectorStore(client=qdrant_client, collection_name="test_chunks")


@pytest.fixture
def embedding_client():
    return FakeEmbeddingClient()


@pytest.fixture
def embeddings(embedding_client):
    return EmbeddingGateway(client=embedding_client, model="fake-embed", max_attempts=1, backoff_ms=0)


@pytest.fixture
def chat_client():
    return FakeChatClient()


@pytest.fixture
def generator(chat_client):
    return OllamaGenerator(client=chat_client, model="fake-chat", temperature=0.0, max_tokens=64)


@pytest.fixture
def chunker():
    return DocumentChunker(chunk_size=20, chunk_overlap=5)


@pytest.fixture
def make_document(repository):
    def _make(title="Handbook", filename="handbook.txt", **kwargs):
        return repository.create_document(title=title, filename=filename, **kwargs)
    return _make


@pytest.fixture
def pipeline(repository, chunker, embeddings, vector_store):
    return IngestionPipeline(
        repository=repository,
        chunker=chunker,
        embeddings=embeddings,
        vector_store=vector_store,
        min_success_ratio=0.0,
    )


@pytest.fixture
def engine(repository, embeddings, vector_store, generator):
    return RAGEngine(
        embeddings=embeddings,
        vector_store=vector_store,
        generator=generator,
        repository=repository,
    )


@pytest.fixture
def fake_embedding_client_factory():
    return FakeEmbeddingClient


@pytest.fixture
def fake_chat_client_factory():
    return FakeChatClient


@pytest.fixture
def sample_text():
    return (
        "New employees receive twenty vacation days per year. "
        "Vacation requests must be approved by a manager two weeks in advance. "
        "Unused vacation days can be carried over into the first quarter of the next year. "
        "The office is open from eight in the morning until six in the evening. "
        "Remote work is allowed up to three days per week with team agreement. "
        "Expense reports are submitted through the finance portal every month. "
        "Travel must be booked through the approved agency to be reimbursed. "
        "Security badges have to be worn visibly at all times inside the building."
    )
