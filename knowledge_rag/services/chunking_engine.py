"""Chunking engine with recursive, semantic and sentence strategies."""
import logging
import re
from typing import Any, List, Optional, Sequence, Tuple

from knowledge_rag.config import SENTENCES_PER_CHUNK
from knowledge_rag.errors import InputError
from knowledge_rag.models.chunk import ChunkMetadata, ChunkResult, ChunkingOptions, TextChunk

logger = logging.getLogger(__name__)

# Markdown heading lines or blank-line paragraph breaks
SEMANTIC_BOUNDARY = re.compile(r"(?=^#{1,6}\s)|(?=\n\n)", re.MULTILINE)
SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]+")

# Fallback chain for a single section that is larger than chunk_size
SECTION_SEPARATORS = (". ", " ", "")

Span = Tuple[int, int]


class ChunkingEngine:
    """Splits raw document text into bounded, overlapping chunks for embedding."""

    def __init__(self, options: Optional[ChunkingOptions] = None):
        """
        Initialize ChunkingEngine.

        Args:
            options: Default options for every strategy (validated on construction)
        """
        self.options = options or ChunkingOptions()

    def chunk(self, text: Any, options: Optional[ChunkingOptions] = None) -> ChunkResult:
        """
        Split text with the recursive character splitter.

        Pieces are produced by trying each separator in turn, packed greedily
        up to chunk_size, and then every chunk after the first is prefixed with
        the last chunk_overlap characters of its predecessor.

        Args:
            text: Text to chunk
            options: Per-call options overriding the engine defaults

        Returns:
            ChunkResult; empty when text is empty, blank or not a string
        """
        opts = options or self.options
        if not _has_content(text):
            return _build_result([], text)

        pieces = self._split_recursively(text, opts.separators, opts.chunk_size)
        chunks = self._emit_chunks(text, _spans_of(pieces, 0), opts, opts.chunk_overlap, "recursive")

        logger.debug(f"Recursive split produced {len(chunks)} chunks from {len(text)} characters")
        return _build_result(chunks, text)

    def chunk_semantic(self, text: Any, options: Optional[ChunkingOptions] = None) -> ChunkResult:
        """
        Split text on headings and paragraph breaks, then pack sections.

        Sections are packed into chunks of at most chunk_size characters; a
        section that alone exceeds chunk_size is split with the sentence, word
        and character separators. Each chunk starts chunk_overlap characters
        before the end of the previous one.

        Args:
            text: Text to chunk
            options: Per-call options overriding the engine defaults

        Returns:
            ChunkResult; empty when text is empty, blank or not a string
        """
        opts = options or self.options
        if not _has_content(text):
            return _build_result([], text)

        regions: List[Span] = []
        region: Optional[Span] = None

        for section_start, section_end in self._semantic_sections(text):
            if region is not None and section_end - region[0] <= opts.chunk_size:
                region = (region[0], section_end)
                continue

            if region is not None:
                regions.append(region)
                region = None

            if section_end - section_start > opts.chunk_size:
                pieces = self._split_recursively(
                    text[section_start:section_end],
                    SECTION_SEPARATORS,
                    opts.chunk_size
                )
                regions.extend(_spans_of(pieces, section_start))
            else:
                region = (section_start, section_end)

        if region is not None:
            regions.append(region)

        chunks = self._emit_chunks(text, regions, opts, opts.chunk_overlap, "semantic")

        logger.debug(f"Semantic split produced {len(chunks)} chunks from {len(text)} characters")
        return _build_result(chunks, text)

    def chunk_by_sentence(
        self,
        text: Any,
        sentences_per_chunk: int = SENTENCES_PER_CHUNK,
        options: Optional[ChunkingOptions] = None
    ) -> ChunkResult:
        """
        Group a fixed number of sentences per chunk, ignoring chunk_size.

        Args:
            text: Text to chunk
            sentences_per_chunk: Sentences in each chunk
            options: Only preserve_whitespace is honoured

        Returns:
            ChunkResult; empty when text is empty, blank or not a string

        Raises:
            InputError: If sentences_per_chunk is smaller than 1
        """
        if sentences_per_chunk < 1:
            raise InputError(f"sentences_per_chunk must be at least 1, got {sentences_per_chunk}")

        opts = options or self.options
        if not _has_content(text):
            return _build_result([], text)

        sentences = [match.span() for match in SENTENCE_PATTERN.finditer(text)]
        tail_start = sentences[-1][1] if sentences else 0
        if text[tail_start:].strip():
            # Trailing text without terminal punctuation is still a sentence
            sentences.append((tail_start, len(text)))

        regions = [
            (sentences[i][0], sentences[min(i + sentences_per_chunk, len(sentences)) - 1][1])
            for i in range(0, len(sentences), sentences_per_chunk)
        ]
        chunks = self._emit_chunks(text, regions, opts, 0, "sentence")

        return _build_result(chunks, text)

    def _split_recursively(self, text: str, separators: Sequence[str], chunk_size: int) -> List[str]:
        """
        Split text into pieces of at most chunk_size characters.

        The returned pieces concatenate back to `text` exactly. A piece is only
        larger than chunk_size when no separator is left to split it with.
        """
        if len(text) <= chunk_size:
            return [text]

        separator = separators[0]
        remaining = separators[1:]

        pieces: List[str] = []
        current = ""

        for split in _split_keeping_separator(text, separator):
            if len(current) + len(split) <= chunk_size:
                current += split
                continue

            if current:
                pieces.append(current)

            if len(split) > chunk_size and remaining:
                pieces.extend(self._split_recursively(split, remaining, chunk_size))
                current = ""
            else:
                current = split

        if current:
            pieces.append(current)

        return pieces

    def _semantic_sections(self, text: str) -> List[Span]:
        """Contiguous spans between heading and paragraph boundaries."""
        boundaries = {0, len(text)}
        boundaries.update(match.start() for match in SEMANTIC_BOUNDARY.finditer(text))
        ordered = sorted(boundaries)
        return list(zip(ordered, ordered[1:]))

    def _emit_chunks(
        self,
        text: str,
        regions: Sequence[Span],
        opts: ChunkingOptions,
        overlap: int,
        strategy: str
    ) -> List[TextChunk]:
        """
        Turn base regions into TextChunks with overlap and resolved offsets.

        Each region after the first is extended backwards by `overlap`
        characters, never past the start of the previous region. Offsets are
        resolved by searching the original text forward from a cursor that
        never moves backwards, so repeated passages map to the right occurrence.
        """
        chunks: List[TextChunk] = []
        previous_start: Optional[int] = None
        cursor = 0

        for start, end in regions:
            # A blank region would otherwise become a chunk made only of overlap
            if not opts.preserve_whitespace and not text[start:end].strip():
                continue

            chunk_start = start
            if previous_start is not None and overlap > 0:
                chunk_start = max(previous_start, start - overlap)

            raw = text[chunk_start:end]
            content = raw if opts.preserve_whitespace else raw.strip()
            if not content.strip():
                continue
            previous_start = start

            position = text.find(content, max(chunk_start, cursor))
            if position == -1:
                position = chunk_start + len(raw) - len(raw.lstrip())
            cursor = position

            chunks.append(TextChunk(
                content=content,
                start_index=position,
                end_index=position + len(content),
                metadata={
                    "chunk_index": len(chunks),
                    "strategy": strategy,
                    "overlap": start - chunk_start,
                }
            ))

        return chunks


def _has_content(text: Any) -> bool:
    return isinstance(text, str) and bool(text.strip())


def _split_keeping_separator(text: str, separator: str) -> List[str]:
    """Split on separator, leaving it attached to the piece it terminates."""
    if separator == "":
        return list(text)

    parts = text.split(separator)
    pieces = [part + separator for part in parts[:-1]]
    if parts[-1]:
        pieces.append(parts[-1])
    return pieces


def _spans_of(pieces: Sequence[str], offset: int) -> List[Span]:
    """Offsets of contiguous pieces starting at `offset`."""
    spans: List[Span] = []
    for piece in pieces:
        spans.append((offset, offset + len(piece)))
        offset += len(piece)
    return spans


def _build_result(chunks: List[TextChunk], text: Any) -> ChunkResult:
    return ChunkResult(
        chunks=chunks,
        metadata=ChunkMetadata(
            original_length=len(text) if isinstance(text, str) else 0,
            chunk_count=len(chunks)
        )
    )
