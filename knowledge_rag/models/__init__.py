"""Data models for the knowledge retrieval core."""
from .chunk import TextChunk, ChunkMetadata, ChunkResult, ChunkingOptions
from .search import StageScore, ScoredChunk, SearchScope, RetrievalResult, RerankResult

__all__ = [
    "TextChunk",
    "ChunkMetadata",
    "ChunkResult",
    "ChunkingOptions",
    "StageScore",
    "ScoredChunk",
    "SearchScope",
    "RetrievalResult",
    "RerankResult",
]
