"""Configuration management using environment variables and pydantic."""

from typing import List, Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Configuration
    api_title: str = "KnowItAll RAG"
    api_prefix: str = "/api"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Ollama Configuration
    ollama_base_url: str = "http://localhost:11434"
    ollama_model_name: str = "llama3.2:3b"
    ollama_embedding_model: str = "mxbai-embed-large"

    # Embedding retry
    embedding_max_attempts: int = 3
    embedding_backoff_ms: int = 1000

    # Vector Database Configuration
    qdrant_host: str = "localhost"
    qdrant_port: int = 6333
    qdrant_location: Optional[str] = None  # e.g. ":memory:" for local mode
    qdrant_collection_name: str = "knowitall_chunks"
    qdrant_vector_size: int = 1024  # mxbai-embed-large
    qdrant_timeout_seconds: int = 10

    # Relational storage
    database_url: str = "sqlite:///./data/knowitall.db"

    # Chunking Configuration
    chunk_size_tokens: int = 512
    chunk_overlap_tokens: int = 50
    chunk_max_text_chars: int = 10_000_000

    # RAG Configuration
    rag_top_k_results: int = 5
    rag_confidence_threshold: float = 0.7
    rag_max_context_tokens: int = 2000
    rag_excerpt_chars: int = 200

    # Response Configuration
    max_response_tokens: int = 1000
    response_temperature: float = 0.7

    # Ingestion Configuration
    ingestion_workers: int = 4
    ingestion_min_success_ratio: float = 0.0  # 0.0 == at least one chunk

    # Upload Configuration
    upload_max_file_size_bytes: int = 10 * 1024 * 1024
    upload_allowed_content_types: List[str] = [
        "application/pdf",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "text/plain",
        "text/markdown",
    ]

    # Logging Configuration
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_to_file: bool = True
    log_file_path: str = "./logs/knowitall.log"
    log_max_size_mb: int = 100
    log_backup_count: int = 5


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
