"""
Command line entry point.

Usage:
    knowitall serve [--host HOST] [--port PORT]
    knowitall ingest PATH [--title TITLE] [--owner OWNER]
    knowitall query "your question" [--top-k N] [--threshold T] [--document ID]
"""

import argparse
import mimetypes
import sys
from pathlib import Path
from typing import Optional

from knowitall.utils.config import get_settings
from knowitall.utils.logger import get_logger, setup_logger

logger = get_logger()

EXTENSION_CONTENT_TYPES = {
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".txt": "text/plain",
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


def guess_content_type(path: Path) -> Optional[str]:
    content_type = EXTENSION_CONTENT_TYPES.get(path.suffix.lower())
    if content_type is None:
        content_type, _ = mimetypes.guess_type(path.name)
    return content_type


def cmd_serve(args) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "knowitall.api.app:create_app",
        factory=True,
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
    )
    return 0


def cmd_ingest(args) -> int:
    from knowitall.documents.extraction import get_extractor
    from knowitall.documents.lifecycle import IngestionEvent
    from knowitall.documents.repository import get_repository
    from knowitall.errors import KnowItAllError
    from knowitall.rag.ingestion import get_ingestion_pipeline

    path = Path(args.path)
    if not path.is_file():
        print(f"✗ File not found: {path}")
        return 1

    content_type = args.content_type or guess_content_type(path)
    data = path.read_bytes()
    repository = get_repository()

    document = repository.create_document(
        title=args.title or path.name,
        filename=path.name,
        owner=args.owner,
        file_size_bytes=len(data),
    )

    try:
        text = get_extractor().extract(data, content_type, path.name)
    except KnowItAllError as e:
        repository.apply_event(document.id, IngestionEvent.FAILED, error_message=e.message)
        print(f"✗ Could not read {path.name}: {e.message}")
        return 1

    stats = get_ingestion_pipeline().ingest(document.id, text)

    print("\n" + "=" * 70)
    print("INGESTION SUMMARY")
    print("=" * 70)
    print(f"Document id: {stats.document_id}")
    print(f"Status: {stats.status.value}")
    print(f"Chunks created: {stats.chunks_created}")
    print(f"Chunks stored: {stats.chunks_embedded}")
    print(f"Chunks failed: {stats.chunks_failed}")
    print(f"Duration: {stats.duration_seconds:.2f} seconds")
    if stats.error_message:
        print(f"Error: {stats.error_message}")
    print("=" * 70)

    return 0 if stats.success else 1


def cmd_query(args) -> int:
    from knowitall.rag.engine import get_rag_engine

    result = get_rag_engine().answer(
        args.question,
        top_k=args.top_k,
        confidence_threshold=args.threshold,
        document_filter=args.document,
    )

    if result.error:
        print(f"✗ {result.error}")
        return 1

    print("\n" + "=" * 70)
    print(f"Q: {args.question}")
    print("=" * 70)
    print(result.answer)
    print("-" * 70)
    print(f"Confidence: {result.confidence:.2f} ({'grounded' if result.is_grounded else 'best effort'})")
    print(
        f"Time: {result.total_time_ms:.0f}ms "
        f"(retrieval {result.retrieval_time_ms:.0f}ms, generation {result.generation_time_ms:.0f}ms)"
    )

    if result.sources:
        print("\nSources:")
        for i, source in enumerate(result.sources, 1):
            title = source.document_title or source.document_id
            print(f"  {i}. {title} #{source.chunk_index} (similarity {source.similarity:.2f})")
            print(f"     {source.excerpt}")

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="knowitall",
        description="Question answering over uploaded documents",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", help="Bind address (default from settings)")
    serve.add_argument("--port", type=int, help="Port (default from settings)")
    serve.set_defaults(func=cmd_serve)

    ingest = subparsers.add_parser("ingest", help="Ingest a local file and wait for the result")
    ingest.add_argument("path", help="PDF, DOCX, text or markdown file")
    ingest.add_argument("--title", help="Document title (default: file name)")
    ingest.add_argument("--owner", default="cli", help="Owner recorded on the document")
    ingest.add_argument("--content-type", help="Override the detected content type")
    ingest.set_defaults(func=cmd_ingest)

    query = subparsers.add_parser("query", help="Ask a question")
    query.add_argument("question", help="Question text")
    query.add_argument("--top-k", type=int, help="Chunks to retrieve")
    query.add_argument("--threshold", type=float, help="Confidence threshold for a grounded answer")
    query.add_argument("--document", help="Restrict retrieval to one document id")
    query.set_defaults(func=cmd_query)

    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logger()

    try:
        return args.func(args)
    except KeyboardInterrupt:
        logger.info("Cancelled by user (Ctrl+C)")
        return 130
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        print(f"\n✗ Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
