"""Retrieval engine combining semantic and keyword search."""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from knowledge_rag.config import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    KEYWORD_WEIGHT,
    SEMANTIC_WEIGHT,
    RRF_K,
    SEARCH_TIMEOUT_SECONDS,
)
from knowledge_rag.errors import DependencyError, DependencyTimeoutError, ErrorDetail, InputError, RAGError
from knowledge_rag.models.search import RetrievalResult, ScoredChunk, SearchScope
from knowledge_rag.services.embedding_model import EmbeddingModel
from knowledge_rag.services.scoring import sort_by_score

logger = logging.getLogger(__name__)

VectorSearchFn = Callable[[List[float], int, Optional[SearchScope]], Awaitable[List[ScoredChunk]]]
KeywordSearchFn = Callable[[str, int, Optional[SearchScope]], Awaitable[List[ScoredChunk]]]


class RetrievalEngine:
    """Hybrid retrieval over injected vector and keyword search functions."""

    def __init__(
        self,
        embedding_model: EmbeddingModel,
        keyword_weight: float = KEYWORD_WEIGHT,
        semantic_weight: float = SEMANTIC_WEIGHT,
        call_timeout: float = SEARCH_TIMEOUT_SECONDS
    ):
        """
        Initialize the retrieval engine.

        Args:
            embedding_model: Used to embed queries
            keyword_weight: Weight of keyword scores in fusion
            semantic_weight: Weight of semantic scores in fusion
            call_timeout: Timeout in seconds for each search call
        """
        self.embedding_model = embedding_model
        self.keyword_weight = keyword_weight
        self.semantic_weight = semantic_weight
        self.call_timeout = call_timeout
        logger.info(
            f"Initialized RetrievalEngine (semantic_weight={semantic_weight}, "
            f"keyword_weight={keyword_weight})"
        )

    async def hybrid_search(
        self,
        query: str,
        vector_search: VectorSearchFn,
        keyword_search: KeywordSearchFn,
        limit: int = DEFAULT_LIMIT,
        scope: Optional[SearchScope] = None
    ) -> RetrievalResult:
        """
        Search both backends concurrently and fuse the results.

        Steps:
        1. Embed the query once
        2. Run vector and keyword search concurrently, each over-fetching
           2 * limit, and wait for both to settle
        3. Fuse by weighted sum keyed on chunk id
        4. Sort descending by fused score and keep the top `limit`

        Args:
            query: User query
            vector_search: Async vector search function
            keyword_search: Async keyword search function
            limit: Maximum number of results
            scope: Tenant scope forwarded to both searches

        Returns:
            RetrievalResult; results are empty when neither backend matched

        Raises:
            InputError: If limit is out of range
            DependencyError: If the embedding call or either search fails
            DependencyTimeoutError: If a call exceeds its timeout
        """
        _check_limit(limit)
        start_time = time.time()

        if not query or not query.strip():
            logger.warning("Empty query string provided, returning empty results")
            return RetrievalResult(results=[], query=query, took=_elapsed_ms(start_time))

        embedding = (await self.embedding_model.embed(query)).embedding

        outcomes = await asyncio.gather(
            self._call("vector_search", vector_search(embedding, limit * 2, scope)),
            self._call("keyword_search", keyword_search(query, limit * 2, scope)),
            return_exceptions=True
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        semantic_results, keyword_results = outcomes

        combined = self.combine_results(semantic_results, keyword_results)
        results = sort_by_score(combined)[:limit]

        took = _elapsed_ms(start_time)
        logger.info(
            f"Hybrid search: {len(semantic_results)} semantic, {len(keyword_results)} keyword, "
            f"{len(results)} fused results in {took}ms"
        )
        return RetrievalResult(results=results, query=query, took=took)

    async def semantic_search(
        self,
        query: str,
        vector_search: VectorSearchFn,
        limit: int = DEFAULT_LIMIT,
        scope: Optional[SearchScope] = None
    ) -> RetrievalResult:
        """Vector search only; the semantic score becomes the result score."""
        _check_limit(limit)
        start_time = time.time()

        if not query or not query.strip():
            return RetrievalResult(results=[], query=query, took=_elapsed_ms(start_time))

        embedding = (await self.embedding_model.embed(query)).embedding
        raw = await self._call("vector_search", vector_search(embedding, limit, scope))

        results = []
        for chunk in raw[:limit]:
            semantic = chunk.semantic_score or chunk.current_score()
            results.append(chunk.with_score("semantic", semantic, semantic_score=semantic, keyword_score=0.0))

        return RetrievalResult(results=results, query=query, took=_elapsed_ms(start_time))

    async def keyword_only_search(
        self,
        query: str,
        keyword_search: KeywordSearchFn,
        limit: int = DEFAULT_LIMIT,
        scope: Optional[SearchScope] = None
    ) -> RetrievalResult:
        """Keyword search only; no embedding call is made."""
        _check_limit(limit)
        start_time = time.time()

        if not query or not query.strip():
            return RetrievalResult(results=[], query=query, took=_elapsed_ms(start_time))

        raw = await self._call("keyword_search", keyword_search(query, limit, scope))

        results = []
        for chunk in raw[:limit]:
            keyword = chunk.keyword_score or chunk.current_score()
            results.append(chunk.with_score("keyword", keyword, keyword_score=keyword, semantic_score=0.0))

        return RetrievalResult(results=results, query=query, took=_elapsed_ms(start_time))

    def combine_results(
        self,
        semantic_results: Sequence[ScoredChunk],
        keyword_results: Sequence[ScoredChunk]
    ) -> List[ScoredChunk]:
        """
        Weighted-sum fusion keyed by chunk id.

        A chunk found by both searches scores
        semantic * semantic_weight + keyword * keyword_weight. A chunk found by
        only one search scores that signal times its weight alone, so it ranks
        below an equally strong hit confirmed by both.

        Returns chunks in first-seen order (semantic hits, then keyword-only
        hits); callers sort.
        """
        semantic_hits: Dict[str, Tuple[ScoredChunk, float]] = {}
        for result in semantic_results:
            semantic_hits[result.id] = (result, result.semantic_score or result.current_score())

        keyword_hits: Dict[str, Tuple[ScoredChunk, float]] = {}
        for result in keyword_results:
            keyword_hits[result.id] = (result, result.keyword_score or result.current_score())

        ordered_ids = list(semantic_hits) + [chunk_id for chunk_id in keyword_hits if chunk_id not in semantic_hits]

        fused = []
        for chunk_id in ordered_ids:
            semantic_hit, semantic = semantic_hits.get(chunk_id, (None, 0.0))
            keyword_hit, keyword = keyword_hits.get(chunk_id, (None, 0.0))
            base = semantic_hit or keyword_hit

            metadata = dict(base.metadata)
            if semantic_hit is not None and keyword_hit is not None:
                metadata.update(keyword_hit.metadata)

            fused.append(base.with_score(
                "hybrid",
                semantic * self.semantic_weight + keyword * self.keyword_weight,
                semantic_score=semantic,
                keyword_score=keyword,
                metadata=metadata
            ))

        return fused

    @staticmethod
    def reciprocal_rank_fusion(
        result_sets: Sequence[Sequence[ScoredChunk]],
        k: int = RRF_K,
        weights: Optional[Sequence[float]] = None
    ) -> List[ScoredChunk]:
        """
        Fuse ranked lists by rank rather than raw score.

        A chunk at 0-based rank r in a list contributes weight / (k + r + 1);
        contributions are summed across lists sharing the chunk id. Use this
        when the lists come from backends whose scores are not comparable.

        Args:
            result_sets: Ranked lists, best first
            k: RRF constant; larger values flatten rank differences
            weights: Optional per-list weights, same length as result_sets

        Returns:
            Fused chunks sorted by RRF score

        Raises:
            InputError: If weights do not match the number of lists or k < 0
        """
        if k < 0:
            raise InputError(f"k cannot be negative, got {k}")
        if weights is not None and len(weights) != len(result_sets):
            raise InputError("Length of weights must match number of result sets")
        if weights is None:
            weights = [1.0] * len(result_sets)

        chunks: Dict[str, ScoredChunk] = {}
        scores: Dict[str, float] = {}

        for weight, results in zip(weights, result_sets):
            for rank, chunk in enumerate(results):
                contribution = weight / (k + rank + 1)
                if chunk.id in scores:
                    scores[chunk.id] += contribution
                else:
                    chunks[chunk.id] = chunk
                    scores[chunk.id] = contribution

        fused = [chunks[chunk_id].with_score("rrf", score) for chunk_id, score in scores.items()]
        return sort_by_score(fused)

    async def _call(self, operation: str, pending: Awaitable[List[ScoredChunk]]) -> List[ScoredChunk]:
        """Await a search call within the timeout, normalising failures."""
        try:
            return list(await asyncio.wait_for(pending, timeout=self.call_timeout))
        except asyncio.TimeoutError as e:
            logger.error(f"{operation} timed out after {self.call_timeout}s")
            raise DependencyTimeoutError(ErrorDetail(
                code="SEARCH_TIMEOUT",
                message=f"{operation} timed out after {self.call_timeout}s",
                details={"operation": operation}
            )) from e
        except RAGError:
            raise
        except Exception as e:
            logger.error(f"{operation} failed: {e}", exc_info=True)
            raise DependencyError(ErrorDetail(
                code="SEARCH_FAILED",
                message=f"{operation} failed: {str(e)}",
                details={"operation": operation, "error_type": type(e).__name__}
            )) from e


def _check_limit(limit: int) -> None:
    if limit < 1 or limit > MAX_LIMIT:
        raise InputError(f"limit must be between 1 and {MAX_LIMIT}, got {limit}")


def _elapsed_ms(start_time: float) -> int:
    return int((time.time() - start_time) * 1000)
