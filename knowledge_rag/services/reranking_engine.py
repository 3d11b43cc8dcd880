"""Reranking engine for refining fused candidate lists."""
import json
import logging
import re
from typing import List, Optional, Sequence

from knowledge_rag.config import (
    RERANK_TOP_K,
    LLM_RERANK_TOP_K,
    LLM_RERANK_MAX_CANDIDATES,
    RELEVANCE_MIN_SCORE,
    DEDUP_SIMILARITY_THRESHOLD,
    RERANK_MODEL,
)
from knowledge_rag.errors import InputError, ParseError
from knowledge_rag.models.search import RerankResult, ScoredChunk
from knowledge_rag.services.embedding_model import EmbeddingModel
from knowledge_rag.services.llm_client import LLMClient
from knowledge_rag.services.scoring import cosine_similarity, jaccard_similarity, sort_by_score, term_coverage

logger = logging.getLogger(__name__)

PASSAGE_PREVIEW_CHARS = 500
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


class RerankingEngine:
    """
    Independent second-pass transforms over ScoredChunk lists.

    Every method takes its candidates as an argument and returns a fresh
    list, so the operations can be chained in any order (see
    `services.pipeline` for an explicit stage executor). The cheap,
    model-free filters are meant to run before the embedding and LLM reranks.
    """

    def __init__(
        self,
        embedding_model: EmbeddingModel,
        llm_client: Optional[LLMClient] = None,
        llm_model: str = RERANK_MODEL
    ):
        self.embedding_model = embedding_model
        self.llm_client = llm_client
        self.llm_model = llm_model

    async def rerank_by_embedding(
        self,
        query: str,
        results: Sequence[ScoredChunk],
        top_k: int = RERANK_TOP_K
    ) -> RerankResult:
        """
        Re-score the top candidates by query/content cosine similarity.

        The query is embedded once and each candidate is embedded on its own,
        one call after another.

        Args:
            query: User query
            results: Candidates, best first
            top_k: Number of candidates to re-score; the rest are dropped

        Returns:
            RerankResult with the re-sorted candidates and the incoming id order

        Raises:
            DimensionMismatchError: If the query and a candidate embedding differ in length
            DependencyError: If an embedding call fails
        """
        if top_k < 1:
            raise InputError(f"top_k must be at least 1, got {top_k}")

        original_order = [result.id for result in results]
        if not results:
            return RerankResult(results=[], original_order=original_order)

        query_embedding = (await self.embedding_model.embed(query)).embedding

        reranked = []
        for result in list(results)[:top_k]:
            embedding = (await self.embedding_model.embed(result.content)).embedding
            similarity = cosine_similarity(query_embedding, embedding)
            reranked.append(result.with_score("embedding_rerank", similarity))

        return RerankResult(results=sort_by_score(reranked), original_order=original_order)

    async def rerank_by_llm(
        self,
        query: str,
        results: Sequence[ScoredChunk],
        top_k: int = LLM_RERANK_TOP_K
    ) -> RerankResult:
        """
        Ask a chat model to score each candidate from 1 to 10.

        At most min(top_k, 20) candidates are sent in a single prompt. The
        model must answer with a JSON array holding one number per candidate.
        When the call fails or the answer cannot be used, the candidates are
        returned in their incoming order; this method never raises for
        collaborator or parsing problems.

        Args:
            query: User query
            results: Candidates, best first
            top_k: Number of candidates to score

        Returns:
            RerankResult with scores normalised to [0, 1]
        """
        original_order = [result.id for result in results]
        candidates = list(results)[:min(top_k, LLM_RERANK_MAX_CANDIDATES)]

        if not candidates:
            return RerankResult(results=[], original_order=original_order)
        if self.llm_client is None:
            logger.warning("LLM reranking requested without an LLM client, keeping original order")
            return RerankResult(results=candidates, original_order=original_order)

        try:
            response = await self.llm_client.chat_complete(
                messages=[{"role": "user", "content": build_rerank_prompt(query, candidates)}],
                model=self.llm_model,
                temperature=0,
                max_tokens=100
            )
            scores = parse_scores(response.text, len(candidates))
        except Exception as e:
            logger.warning(f"LLM reranking failed, returning original order: {e}", exc_info=True)
            return RerankResult(results=candidates, original_order=original_order)

        reranked = [
            candidate.with_score("llm_rerank", score / 10)
            for candidate, score in zip(candidates, scores)
        ]
        return RerankResult(results=sort_by_score(reranked), original_order=original_order)

    def filter_by_relevance(
        self,
        query: str,
        results: Sequence[ScoredChunk],
        min_score: float = RELEVANCE_MIN_SCORE
    ) -> List[ScoredChunk]:
        """
        Drop candidates with weak lexical coverage of the query.

        A candidate survives when the fraction of query terms it contains is at
        least min_score, or when its current score already is.
        """
        return [
            result for result in results
            if term_coverage(query, result.content) >= min_score
            or result.current_score() >= min_score
        ]

    def deduplicate_results(
        self,
        results: Sequence[ScoredChunk],
        similarity_threshold: float = DEDUP_SIMILARITY_THRESHOLD
    ) -> List[ScoredChunk]:
        """Keep a candidate only if no earlier kept one is more than similarity_threshold alike."""
        unique: List[ScoredChunk] = []

        for result in results:
            is_duplicate = any(
                jaccard_similarity(existing.content, result.content) > similarity_threshold
                for existing in unique
            )
            if not is_duplicate:
                unique.append(result)

        if len(unique) < len(results):
            logger.debug(f"Removed {len(results) - len(unique)} near-duplicate chunks")
        return unique


def build_rerank_prompt(query: str, candidates: Sequence[ScoredChunk]) -> str:
    passages = "\n\n".join(
        f"[{i + 1}] {candidate.content[:PASSAGE_PREVIEW_CHARS]}..."
        for i, candidate in enumerate(candidates)
    )
    return f"""Given the query and a list of text passages, rate each passage's relevance to the query on a scale of 1-10.

Query: "{query}"

Passages:
{passages}

Return only a JSON array of scores in order, like [8, 5, 9, ...]. Each number should be the relevance score for the corresponding passage."""


def parse_scores(text: str, expected: int) -> List[float]:
    """
    Parse the model's score array.

    Raises:
        ParseError: If the text is not a JSON array of `expected` numbers
    """
    cleaned = _CODE_FENCE.sub("", (text or "").strip())
    try:
        scores = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ParseError(f"Rerank scores are not valid JSON: {cleaned[:100]!r}") from e

    if not isinstance(scores, list):
        raise ParseError(f"Rerank scores must be a JSON array, got {type(scores).__name__}")
    if len(scores) != expected:
        raise ParseError(f"Expected {expected} rerank scores, got {len(scores)}")
    if any(isinstance(s, bool) or not isinstance(s, (int, float)) for s in scores):
        raise ParseError("Rerank scores must all be numbers")

    return [min(max(float(s), 0.0), 10.0) for s in scores]
