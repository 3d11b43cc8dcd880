"""Similarity and ordering helpers shared by fusion and reranking."""
from typing import Iterable, List, Sequence

import numpy as np

from knowledge_rag.errors import DimensionMismatchError
from knowledge_rag.models.search import ScoredChunk


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity between two embeddings.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatchError(
            f"Embeddings must have the same dimensions, got {len(a)} and {len(b)}"
        )

    vector_a = np.asarray(a, dtype=float)
    vector_b = np.asarray(b, dtype=float)
    norm = np.linalg.norm(vector_a) * np.linalg.norm(vector_b)
    if norm == 0:
        return 0.0
    return float(np.dot(vector_a, vector_b) / norm)


def jaccard_similarity(a: str, b: str) -> float:
    """Case-insensitive word-set Jaccard coefficient."""
    words_a = set(a.lower().split())
    words_b = set(b.lower().split())

    union = words_a | words_b
    if not union:
        return 1.0
    return len(words_a & words_b) / len(union)


def term_coverage(query: str, content: str) -> float:
    """Fraction of whitespace-split query terms found as substrings of content."""
    terms = query.lower().split()
    if not terms:
        return 1.0

    content_lower = content.lower()
    matched = sum(1 for term in terms if term in content_lower)
    return matched / len(terms)


def sort_by_score(chunks: Iterable[ScoredChunk]) -> List[ScoredChunk]:
    """Descending by current score; equal scores keep their incoming order."""
    return sorted(chunks, key=lambda chunk: chunk.current_score(), reverse=True)
