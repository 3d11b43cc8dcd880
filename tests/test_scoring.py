"""Unit tests for similarity and ordering helpers."""
import pytest

from knowledge_rag.errors import DimensionMismatchError
from knowledge_rag.models.search import ScoredChunk
from knowledge_rag.services.scoring import cosine_similarity, jaccard_similarity, sort_by_score, term_coverage


class TestCosineSimilarity:

    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0

    def test_dimension_mismatch_raises(self):
        with pytest.raises(DimensionMismatchError, match="same dimensions"):
            cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


class TestJaccardSimilarity:

    def test_case_insensitive(self):
        assert jaccard_similarity("Vector Search", "vector search") == 1.0

    def test_disjoint(self):
        assert jaccard_similarity("alpha beta", "gamma delta") == 0.0

    def test_partial_overlap(self):
        assert jaccard_similarity("a b c", "b c d") == pytest.approx(2 / 4)

    def test_both_empty(self):
        assert jaccard_similarity("", "  ") == 1.0


class TestTermCoverage:

    def test_fraction_of_terms_found(self):
        assert term_coverage("vector keyword rerank", "vector search and keyword matching") == pytest.approx(2 / 3)

    def test_substring_match(self):
        assert term_coverage("embed", "Embeddings are vectors") == 1.0

    def test_empty_query(self):
        assert term_coverage("", "anything") == 1.0


class TestSortByScore:

    def test_descending_and_stable(self):
        a = ScoredChunk(id="a", document_id="d", content="a").with_score("hybrid", 0.5)
        b = ScoredChunk(id="b", document_id="d", content="b").with_score("hybrid", 0.9)
        c = ScoredChunk(id="c", document_id="d", content="c").with_score("hybrid", 0.5)

        assert [chunk.id for chunk in sort_by_score([a, b, c])] == ["b", "a", "c"]


class TestScoredChunk:

    def test_with_score_appends_history_without_mutating(self):
        chunk = ScoredChunk(id="a", document_id="d", content="text")
        semantic = chunk.with_score("semantic", 0.8, semantic_score=0.8)
        reranked = semantic.with_score("llm_rerank", 0.3)

        assert chunk.stage_scores == ()
        assert chunk.current_score() == 0.0
        assert semantic.current_score() == 0.8
        assert reranked.score == 0.3
        assert reranked.stage_score("semantic") == 0.8
        assert reranked.stage_score("missing") is None
        assert [entry.stage for entry in reranked.stage_scores] == ["semantic", "llm_rerank"]
        assert reranked.semantic_score == 0.8
