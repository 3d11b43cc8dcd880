"""Chunk data models."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from knowledge_rag.config import CHUNK_SIZE, CHUNK_OVERLAP, CHUNK_SEPARATORS
from knowledge_rag.errors import InputError


@dataclass(frozen=True)
class TextChunk:
    """A bounded substring of a source document."""
    content: str
    start_index: int  # offset into the original text
    end_index: int
    metadata: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ChunkMetadata:
    """Summary of a chunking run."""
    original_length: int
    chunk_count: int


@dataclass(frozen=True)
class ChunkResult:
    """Chunks produced from one document."""
    chunks: List[TextChunk]
    metadata: ChunkMetadata


@dataclass(frozen=True)
class ChunkingOptions:
    """Options shared by every chunking strategy."""
    chunk_size: int = CHUNK_SIZE
    chunk_overlap: int = CHUNK_OVERLAP
    separators: Sequence[str] = field(default=CHUNK_SEPARATORS)
    preserve_whitespace: bool = False

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise InputError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0:
            raise InputError(f"chunk_overlap cannot be negative, got {self.chunk_overlap}")
        if self.chunk_overlap >= self.chunk_size:
            raise InputError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than "
                f"chunk_size ({self.chunk_size})"
            )
        if not self.separators:
            raise InputError("separators cannot be empty")
        # Freeze caller-supplied lists
        object.__setattr__(self, "separators", tuple(self.separators))
