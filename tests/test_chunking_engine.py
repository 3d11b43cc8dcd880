"""Unit tests for ChunkingEngine."""
import pytest

from knowledge_rag.errors import InputError
from knowledge_rag.models.chunk import ChunkingOptions
from knowledge_rag.services.chunking_engine import ChunkingEngine

SENTENCE = "Hybrid retrieval blends vector and keyword signals. "


def paragraph(repeats: int = 9) -> str:
    return (SENTENCE * repeats).strip()


def markdown_document() -> str:
    return (
        "# Getting Started\n\n"
        + paragraph()
        + "\n\n## Configuration\n\n"
        + paragraph()
        + "\n\n"
        + paragraph()
    )


LOREM = (
    "Retrieval systems index documents as chunks. Each chunk is embedded once.\n\n"
    "Queries are embedded at search time and compared with stored vectors. "
    "Keyword search complements vectors for rare terms.\n"
    "Rerankers refine the fused list before an answer is generated. "
    "Tenant scope is enforced on every query."
)


@pytest.fixture
def engine():
    return ChunkingEngine()


class TestChunkingOptions:
    """Test suite for option validation."""

    def test_defaults(self):
        options = ChunkingOptions()
        assert options.chunk_size == 512
        assert options.chunk_overlap == 50
        assert options.separators == ("\n\n", "\n", ". ", " ", "")
        assert options.preserve_whitespace is False

    def test_overlap_not_smaller_than_size_rejected(self):
        with pytest.raises(InputError, match="chunk_overlap"):
            ChunkingOptions(chunk_size=100, chunk_overlap=100)

    def test_non_positive_size_rejected(self):
        with pytest.raises(InputError, match="chunk_size"):
            ChunkingOptions(chunk_size=0, chunk_overlap=0)

    def test_negative_overlap_rejected(self):
        with pytest.raises(InputError):
            ChunkingOptions(chunk_size=100, chunk_overlap=-1)

    def test_empty_separators_rejected(self):
        with pytest.raises(InputError, match="separators"):
            ChunkingOptions(separators=[])

    def test_input_error_is_value_error(self):
        with pytest.raises(ValueError):
            ChunkingOptions(chunk_size=-5)

    def test_separators_list_is_frozen_to_tuple(self):
        options = ChunkingOptions(separators=["\n", " "])
        assert options.separators == ("\n", " ")


class TestRecursiveChunking:
    """Test suite for the recursive character splitter."""

    def test_empty_and_blank_text_returns_no_chunks(self, engine):
        assert engine.chunk("").chunks == []
        result = engine.chunk("   \n\t ")
        assert result.chunks == []
        assert result.metadata.chunk_count == 0
        assert result.metadata.original_length == 6

    def test_non_string_input_returns_no_chunks(self, engine):
        result = engine.chunk(None)
        assert result.chunks == []
        assert result.metadata.original_length == 0

    def test_short_text_is_single_chunk(self, engine):
        result = engine.chunk("A short note.")
        assert len(result.chunks) == 1
        chunk = result.chunks[0]
        assert chunk.content == "A short note."
        assert (chunk.start_index, chunk.end_index) == (0, 13)
        assert chunk.metadata["chunk_index"] == 0
        assert chunk.metadata["strategy"] == "recursive"

    def test_every_non_whitespace_character_is_covered(self, engine):
        options = ChunkingOptions(chunk_size=60, chunk_overlap=10)
        result = engine.chunk(LOREM, options)

        assert len(result.chunks) > 1
        covered = set()
        for chunk in result.chunks:
            covered.update(range(chunk.start_index, chunk.end_index))

        for index, char in enumerate(LOREM):
            if not char.isspace():
                assert index in covered, f"character {index} ({char!r}) not covered"

    def test_preserved_whitespace_covers_every_character(self, engine):
        options = ChunkingOptions(chunk_size=60, chunk_overlap=10, preserve_whitespace=True)
        result = engine.chunk(LOREM, options)

        covered = set()
        for chunk in result.chunks:
            covered.update(range(chunk.start_index, chunk.end_index))
        assert covered == set(range(len(LOREM)))

    def test_offsets_point_at_content(self, engine):
        options = ChunkingOptions(chunk_size=60, chunk_overlap=10)
        for chunk in engine.chunk(LOREM, options).chunks:
            assert LOREM[chunk.start_index:chunk.end_index] == chunk.content

    def test_chunk_starts_with_tail_of_previous_chunk(self, engine):
        overlap = 10
        options = ChunkingOptions(chunk_size=60, chunk_overlap=overlap, preserve_whitespace=True)
        chunks = engine.chunk(LOREM, options).chunks

        for previous, current in zip(chunks, chunks[1:]):
            own_content = previous.content[previous.metadata["overlap"]:]
            if len(own_content) >= overlap:
                assert current.content[:overlap] == own_content[-overlap:]
                assert current.metadata["overlap"] == overlap

    def test_no_chunk_is_only_overlap(self, engine):
        # The lone "\n" after the first paragraph becomes its own piece
        options = ChunkingOptions(chunk_size=60, chunk_overlap=10)
        chunks = engine.chunk(LOREM, options).chunks

        for previous, current in zip(chunks, chunks[1:]):
            assert current.end_index > previous.end_index

    def test_chunks_stay_within_size_plus_overlap(self, engine):
        options = ChunkingOptions(chunk_size=60, chunk_overlap=10)
        for chunk in engine.chunk(LOREM, options).chunks:
            assert len(chunk.content) <= 70

    def test_oversized_word_without_separator_is_kept_whole(self, engine):
        options = ChunkingOptions(chunk_size=10, chunk_overlap=0, separators=[" "])
        result = engine.chunk("a" * 1000, options)

        assert len(result.chunks) == 1
        assert len(result.chunks[0].content) == 1000

    def test_character_separator_splits_oversized_word(self, engine):
        options = ChunkingOptions(chunk_size=10, chunk_overlap=0)
        result = engine.chunk("a" * 35, options)

        assert [len(chunk.content) for chunk in result.chunks] == [10, 10, 10, 5]

    def test_chunk_count_matches_chunks(self, engine):
        result = engine.chunk(LOREM, ChunkingOptions(chunk_size=60, chunk_overlap=10))
        assert result.metadata.chunk_count == len(result.chunks)
        assert result.metadata.original_length == len(LOREM)

    def test_engine_default_options_are_used(self):
        engine = ChunkingEngine(ChunkingOptions(chunk_size=60, chunk_overlap=0))
        assert all(len(chunk.content) <= 60 for chunk in engine.chunk(LOREM).chunks)


class TestSemanticChunking:
    """Test suite for heading and paragraph aware chunking."""

    def test_markdown_document_end_to_end(self, engine):
        text = markdown_document()
        options = ChunkingOptions(chunk_size=512, chunk_overlap=50)

        result = engine.chunk_semantic(text, options)

        assert 3 <= len(result.chunks) <= 4
        assert result.metadata.chunk_count == len(result.chunks)
        for chunk in result.chunks:
            assert len(chunk.content) <= 562
            assert chunk.metadata["strategy"] == "semantic"
        for previous, current in zip(result.chunks, result.chunks[1:]):
            assert max(0, previous.end_index - current.start_index) <= 50

    def test_first_chunk_keeps_headings_together(self, engine):
        result = engine.chunk_semantic(markdown_document(), ChunkingOptions(chunk_size=512, chunk_overlap=50))

        first = result.chunks[0]
        assert first.content.startswith("# Getting Started")
        assert first.content.endswith("## Configuration")

    def test_small_document_is_single_chunk(self, engine):
        text = "# Title\n\nShort intro.\n\nAnother paragraph."
        result = engine.chunk_semantic(text)

        assert len(result.chunks) == 1
        assert result.chunks[0].content == text

    def test_oversized_section_is_split(self, engine):
        text = paragraph(6)
        options = ChunkingOptions(chunk_size=100, chunk_overlap=10)

        result = engine.chunk_semantic(text, options)

        assert len(result.chunks) > 1
        for chunk in result.chunks:
            assert len(chunk.content) <= 110
            assert text[chunk.start_index:chunk.end_index] == chunk.content

    def test_blank_text_returns_no_chunks(self, engine):
        assert engine.chunk_semantic("\n\n   \n").chunks == []


class TestSentenceChunking:
    """Test suite for sentence grouping."""

    def test_groups_sentences(self, engine):
        result = engine.chunk_by_sentence("One. Two! Three? Four", sentences_per_chunk=2)

        assert [chunk.content for chunk in result.chunks] == ["One. Two!", "Three? Four"]
        assert result.chunks[1].start_index == 10
        assert result.chunks[1].metadata["strategy"] == "sentence"

    def test_text_without_terminal_punctuation(self, engine):
        result = engine.chunk_by_sentence("no punctuation here")
        assert [chunk.content for chunk in result.chunks] == ["no punctuation here"]

    def test_default_three_sentences_per_chunk(self, engine):
        text = " ".join(f"Sentence {i}." for i in range(7))
        result = engine.chunk_by_sentence(text)

        assert len(result.chunks) == 3
        assert result.chunks[0].content == "Sentence 0. Sentence 1. Sentence 2."
        assert result.chunks[2].content == "Sentence 6."

    def test_invalid_sentence_count_rejected(self, engine):
        with pytest.raises(InputError, match="sentences_per_chunk"):
            engine.chunk_by_sentence("One. Two.", sentences_per_chunk=0)

    def test_empty_text(self, engine):
        assert engine.chunk_by_sentence("").chunks == []
