"""End-to-end tests of the HTTP API with in-process collaborators."""

import io
import time

import docx
import pytest
from fastapi.testclient import TestClient

from knowitall.api.app import create_app
from knowitall.documents.extraction import DOCX_CONTENT_TYPE
from knowitall.documents.repository import get_repository
from knowitall.rag.chunker import DocumentChunker
from knowitall.rag.engine import RAGEngine, get_rag_engine
from knowitall.rag.ingestion import (
    IngestionPipeline,
    IngestionWorker,
    get_ingestion_pipeline,
    get_ingestion_worker,
)
from knowitall.utils.config import get_settings
from knowitall.vectorstore.qdrant_client import get_vector_store


@pytest.fixture
def api(file_repository, vector_store, embeddings, generator):
    """TestClient plus the collaborators wired behind it."""
    pipeline = IngestionPipeline(
        repository=file_repository,
        chunker=DocumentChunker(chunk_size=20, chunk_overlap=5),
        embeddings=embeddings,
        vector_store=vector_store,
    )
    worker = IngestionWorker(pipeline, max_workers=1)
    engine = RAGEngine(
        embeddings=embeddings,
        vector_store=vector_store,
        generator=generator,
        repository=file_repository,
    )

    app = create_app()
    app.dependency_overrides[get_repository] = lambda: file_repository
    app.dependency_overrides[get_vector_store] = lambda: vector_store
    app.dependency_overrides[get_ingestion_pipeline] = lambda: pipeline
    app.dependency_overrides[get_ingestion_worker] = lambda: worker
    app.dependency_overrides[get_rag_engine] = lambda: engine

    with TestClient(app) as client:
        yield client

    worker.shutdown(wait=True)


def upload(client, content, filename="handbook.txt", content_type="text/plain", **form):
    return client.post(
        "/api/documents/upload",
        files={"file": (filename, content, content_type)},
        data=form,
    )


def wait_for_terminal_status(client, document_id, timeout=30.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/api/documents/{document_id}/status").json()
        if body["status"] in ("READY", "FAILED"):
            return body
        time.sleep(0.05)
    raise AssertionError(f"Document {document_id} did not finish processing")


class TestDocumentUpload:

    def test_upload_and_process(self, api, sample_text):
        response = upload(api, sample_text.encode("utf-8"), title="Employee handbook", owner="alice")

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "PROCESSING"
        assert body["title"] == "Employee handbook"
        assert body["filename"] == "handbook.txt"
        assert body["file_size_bytes"] == len(sample_text.encode("utf-8"))
        assert body["message"] == "Document uploaded successfully. Processing in background."

        status = wait_for_terminal_status(api, body["document_id"])
        assert status["status"] == "READY"
        assert status["total_chunks"] > 0
        assert status["processed_chunks"] == status["total_chunks"]
        assert status["progress_percentage"] == 100.0
        assert status["error_message"] is None
        assert status["processed_at"] is not None
        assert status["message"] == "Document is ready for queries"

    def test_title_defaults_to_filename(self, api):
        response = upload(api, b"Some text.", filename="notes.md", content_type="text/markdown")

        assert response.status_code == 201
        assert response.json()["title"] == "notes.md"

    def test_upload_docx(self, api):
        document = docx.Document()
        document.add_paragraph("The cafeteria opens at noon.")
        buffer = io.BytesIO()
        document.save(buffer)

        response = upload(api, buffer.getvalue(), filename="menu.docx", content_type=DOCX_CONTENT_TYPE)

        assert response.status_code == 201
        assert wait_for_terminal_status(api, response.json()["document_id"])["status"] == "READY"

    def test_empty_file(self, api):
        response = upload(api, b"")

        assert response.status_code == 400
        assert response.json() == {"error": "File is empty"}
        assert api.get("/api/documents").json() == []

    def test_file_too_large(self, api, monkeypatch):
        monkeypatch.setattr(get_settings(), "upload_max_file_size_bytes", 10)

        response = upload(api, b"x" * 11)

        assert response.status_code == 400
        assert response.json()["error"].startswith("File size exceeds maximum allowed")

    def test_file_at_size_limit(self, api, monkeypatch):
        monkeypatch.setattr(get_settings(), "upload_max_file_size_bytes", 10)

        response = upload(api, b"x" * 10)

        assert response.status_code == 201
        assert response.json()["file_size_bytes"] == 10

    def test_oversized_file_is_not_stored(self, api, monkeypatch):
        monkeypatch.setattr(get_settings(), "upload_max_file_size_bytes", 1024)

        response = upload(api, b"x" * (1024 * 1024))

        assert response.status_code == 400
        assert api.get("/api/documents").json() == []

    def test_unsupported_type(self, api):
        response = upload(api, b"\x89PNG", filename="logo.png", content_type="image/png")

        assert response.status_code == 400
        assert response.json()["error"].startswith("Unsupported file type: image/png")

    def test_unreadable_document(self, api):
        response = upload(api, b"not a pdf", filename="broken.pdf", content_type="application/pdf")

        assert response.status_code == 422
        assert "error" in response.json()

        documents = api.get("/api/documents").json()
        assert len(documents) == 1
        assert documents[0]["status"] == "FAILED"

    def test_blank_text_document_fails(self, api):
        response = upload(api, b"   \n\n   ")

        status = wait_for_terminal_status(api, response.json()["document_id"])

        assert status["status"] == "FAILED"
        assert status["error_message"]
        assert status["message"] == "Document processing failed"


class TestDocumentManagement:

    def test_status_unknown_document(self, api):
        response = api.get("/api/documents/missing/status")

        assert response.status_code == 404
        assert "error" in response.json()

    def test_list_documents(self, api):
        upload(api, b"First document.", filename="a.txt")
        upload(api, b"Second document.", filename="b.txt")

        filenames = {d["filename"] for d in api.get("/api/documents").json()}

        assert filenames == {"a.txt", "b.txt"}

    def test_delete_document(self, api, vector_store, sample_text):
        document_id = upload(api, sample_text.encode("utf-8")).json()["document_id"]
        wait_for_terminal_status(api, document_id)

        response = api.delete(f"/api/documents/{document_id}")

        assert response.status_code == 200
        assert api.get(f"/api/documents/{document_id}/status").status_code == 404
        assert vector_store.search([0.01] * 16, 50, document_filter=document_id) == []

    def test_delete_unknown_document(self, api):
        assert api.delete("/api/documents/missing").status_code == 404


class TestQuery:

    def test_query(self, api, chat_client, sample_text):
        document_id = upload(api, sample_text.encode("utf-8"), title="Employee handbook").json()["document_id"]
        wait_for_terminal_status(api, document_id)

        response = api.post("/api/query", json={
            "question": "How many vacation days do new employees receive?",
            "top_k": 3,
            "confidence_threshold": 0.1,
        })

        assert response.status_code == 200
        body = response.json()
        assert body["error"] is None
        assert body["answer"] == "Generated answer"
        assert body["is_grounded"] is True
        assert body["chunks_retrieved"] == 3
        assert 0.0 < body["confidence"] <= 1.0
        assert body["sources"][0]["document_id"] == document_id
        assert body["sources"][0]["document_title"] == "Employee handbook"
        assert len(chat_client.calls) == 1

    def test_query_filtered_to_unknown_document(self, api, sample_text):
        document_id = upload(api, sample_text.encode("utf-8")).json()["document_id"]
        wait_for_terminal_status(api, document_id)

        body = api.post("/api/query", json={"question": "Vacation?", "document_filter": "other"}).json()

        assert body["chunks_retrieved"] == 0
        assert body["confidence"] == 0.0
        assert body["is_grounded"] is False

    def test_query_empty_corpus(self, api):
        body = api.post("/api/query", json={"question": "Anything?"}).json()

        assert body["answer"] == "Generated answer"
        assert body["confidence"] == 0.0
        assert body["sources"] == []

    @pytest.mark.parametrize("payload", [{"question": "   "}, {"question": ""}, {}])
    def test_blank_question(self, api, payload):
        response = api.post("/api/query", json=payload)

        assert response.status_code == 400
        assert "error" in response.json()

    def test_invalid_top_k(self, api):
        response = api.post("/api/query", json={"question": "Hi?", "top_k": 0})

        assert response.status_code == 400
        assert "top_k" in response.json()["error"]

    def test_generation_failure_is_reported(self, api, chat_client):
        chat_client.error = ConnectionError("ollama down")

        response = api.post("/api/query", json={"question": "Anything?"})

        assert response.status_code == 200
        body = response.json()
        assert body["answer"] is None
        assert body["error"].startswith("Failed to process query:")


class TestHealth:

    def test_health(self, api):
        assert api.get("/health").json() == {"status": "healthy", "vector_store": True}

    def test_query_health(self, api):
        assert api.get("/api/query/health").json()["vector_store"] is True
