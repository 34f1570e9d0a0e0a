"""Vector database management for RAG.

This module provides:
- Embedding generation with retry/backoff
- Qdrant storage and similarity search
"""
