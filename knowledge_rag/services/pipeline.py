"""Explicit, ordered rerank pipeline."""
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Sequence, Union

from knowledge_rag.config import (
    DEDUP_SIMILARITY_THRESHOLD,
    LLM_RERANK_TOP_K,
    RELEVANCE_MIN_SCORE,
    RERANK_TOP_K,
)
from knowledge_rag.errors import InputError
from knowledge_rag.models.search import ScoredChunk
from knowledge_rag.services.reranking_engine import RerankingEngine

logger = logging.getLogger(__name__)

StageFn = Callable[
    [List[ScoredChunk]],
    Union[List[ScoredChunk], Awaitable[List[ScoredChunk]]]
]


@dataclass(frozen=True)
class PipelineStage:
    """A named transform over a candidate list."""
    name: str
    run: StageFn


@dataclass
class StageTrace:
    name: str
    input_count: int
    output_count: int
    took: int  # milliseconds


@dataclass
class PipelineResult:
    results: List[ScoredChunk]
    trace: List[StageTrace] = field(default_factory=list)


async def run_pipeline(
    candidates: Sequence[ScoredChunk],
    stages: Sequence[PipelineStage]
) -> PipelineResult:
    """
    Run stages in the order given, feeding each the previous stage's output.

    Args:
        candidates: Initial candidates, usually fused retrieval results
        stages: Stages to run; names must be unique

    Returns:
        PipelineResult with the final candidates and one trace entry per stage

    Raises:
        InputError: If two stages share a name
    """
    names = [stage.name for stage in stages]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise InputError(f"Duplicate pipeline stage names: {duplicates}")

    current = list(candidates)
    trace: List[StageTrace] = []

    for stage in stages:
        start_time = time.time()
        output = stage.run(list(current))
        if inspect.isawaitable(output):
            output = await output

        trace.append(StageTrace(
            name=stage.name,
            input_count=len(current),
            output_count=len(output),
            took=int((time.time() - start_time) * 1000)
        ))
        logger.debug(f"Stage {stage.name}: {len(current)} -> {len(output)} candidates")
        current = list(output)

    return PipelineResult(results=current, trace=trace)


def deduplication_stage(
    engine: RerankingEngine,
    similarity_threshold: float = DEDUP_SIMILARITY_THRESHOLD,
    name: str = "dedup"
) -> PipelineStage:
    return PipelineStage(
        name=name,
        run=lambda candidates: engine.deduplicate_results(candidates, similarity_threshold)
    )


def relevance_filter_stage(
    engine: RerankingEngine,
    query: str,
    min_score: float = RELEVANCE_MIN_SCORE,
    name: str = "relevance"
) -> PipelineStage:
    return PipelineStage(
        name=name,
        run=lambda candidates: engine.filter_by_relevance(query, candidates, min_score)
    )


def embedding_rerank_stage(
    engine: RerankingEngine,
    query: str,
    top_k: int = RERANK_TOP_K,
    name: str = "embedding"
) -> PipelineStage:
    """Re-score the first top_k candidates; the rest follow in incoming order."""
    async def run(candidates: List[ScoredChunk]) -> List[ScoredChunk]:
        reranked = (await engine.rerank_by_embedding(query, candidates, top_k)).results
        return reranked + candidates[len(reranked):]

    return PipelineStage(name=name, run=run)


def llm_rerank_stage(
    engine: RerankingEngine,
    query: str,
    top_k: int = LLM_RERANK_TOP_K,
    name: str = "llm"
) -> PipelineStage:
    """Let the chat model reorder the head of the list; the unscored tail is kept."""
    async def run(candidates: List[ScoredChunk]) -> List[ScoredChunk]:
        reranked = (await engine.rerank_by_llm(query, candidates, top_k)).results
        return reranked + candidates[len(reranked):]

    return PipelineStage(name=name, run=run)
