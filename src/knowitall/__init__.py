"""KnowItAll: question answering over uploaded documents with RAG."""

__version__ = "0.1.0"
