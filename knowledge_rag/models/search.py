"""Search and ranking data models."""
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class StageScore:
    """Score assigned to a chunk by one pipeline stage."""
    stage: str
    value: float


@dataclass(frozen=True)
class ScoredChunk:
    """
    Persisted chunk reference with its relevance history.

    `stage_scores` is append-only: every stage that re-scores a chunk adds an
    entry through `with_score`, so the constituent semantic and keyword scores
    and every intermediate value stay inspectable.
    """
    id: str
    document_id: str
    content: str
    semantic_score: float = 0.0
    keyword_score: float = 0.0
    stage_scores: Tuple[StageScore, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)

    def current_score(self) -> float:
        """Score the next stage should sort by."""
        if not self.stage_scores:
            return 0.0
        return self.stage_scores[-1].value

    @property
    def score(self) -> float:
        return self.current_score()

    def stage_score(self, stage: str) -> Optional[float]:
        """Most recent value recorded by `stage`, or None."""
        for entry in reversed(self.stage_scores):
            if entry.stage == stage:
                return entry.value
        return None

    def with_score(self, stage: str, value: float, **changes: Any) -> "ScoredChunk":
        """Return a copy with `value` appended to the score history."""
        history = self.stage_scores + (StageScore(stage, float(value)),)
        return replace(self, stage_scores=history, **changes)


@dataclass(frozen=True)
class SearchScope:
    """Tenant boundary and optional narrowing filters for a search."""
    organisation_id: str
    source_ids: Tuple[str, ...] = ()
    document_ids: Tuple[str, ...] = ()


@dataclass
class RetrievalResult:
    """Ranked chunks for one query."""
    results: List[ScoredChunk]
    query: str
    took: int  # milliseconds


@dataclass
class RerankResult:
    """Reranked chunks plus the id order they arrived in."""
    results: List[ScoredChunk]
    original_order: List[str]
