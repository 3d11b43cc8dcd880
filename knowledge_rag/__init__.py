"""Hybrid retrieval, reranking and chunking core for the knowledge platform."""

__version__ = "1.0.0"
