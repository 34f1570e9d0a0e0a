"""Retrieval-Augmented Generation (RAG) pipeline.

This module handles:
- Splitting document text into overlapping chunks
- Best-effort ingestion of chunks into the vector store
- Query-time retrieval, context preparation and answer generation
"""
