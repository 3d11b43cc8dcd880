"""Unit tests for the ingestion script."""
import pytest
from unittest.mock import AsyncMock, Mock

from knowledge_rag.errors import InputError
from knowledge_rag.ingest_documents import find_documents, ingest_directory, ingest_document, parse_args
from knowledge_rag.services.chunking_engine import ChunkingEngine

DOCUMENT = "# Setup\n\nInstall the package.\n\n## Usage\n\nRun the server. Then query it. Done."


@pytest.fixture
def vector_store():
    store = Mock()
    store.replace_document_chunks = AsyncMock(
        side_effect=lambda document_id, organisation_id, chunks, source_id=None: len(chunks)
    )
    return store


class TestIngestDocument:
    """Test suite for ingest_document."""

    @pytest.mark.asyncio
    async def test_semantic_strategy_by_default(self, vector_store):
        stored = await ingest_document(ChunkingEngine(), vector_store, "guide.md", "org_1", DOCUMENT)

        assert stored == 1
        document_id, organisation_id, chunks = vector_store.replace_document_chunks.await_args.args
        assert (document_id, organisation_id) == ("guide.md", "org_1")
        assert chunks[0].metadata["strategy"] == "semantic"

    @pytest.mark.asyncio
    async def test_sentence_strategy(self, vector_store):
        stored = await ingest_document(
            ChunkingEngine(), vector_store, "guide.md", "org_1", "One. Two. Three. Four.", strategy="sentence"
        )

        assert stored == 2

    @pytest.mark.asyncio
    async def test_recursive_strategy(self, vector_store):
        await ingest_document(ChunkingEngine(), vector_store, "guide.md", "org_1", DOCUMENT, strategy="recursive")

        chunks = vector_store.replace_document_chunks.await_args.args[2]
        assert chunks[0].metadata["strategy"] == "recursive"

    @pytest.mark.asyncio
    async def test_unknown_strategy(self, vector_store):
        with pytest.raises(InputError, match="Unknown chunking strategy"):
            await ingest_document(ChunkingEngine(), vector_store, "guide.md", "org_1", DOCUMENT, strategy="pages")

        vector_store.replace_document_chunks.assert_not_called()


class TestIngestDirectory:
    """Test suite for directory ingestion."""

    def test_find_documents(self, tmp_path):
        (tmp_path / "a.md").write_text("A", encoding="utf-8")
        (tmp_path / "nested").mkdir()
        (tmp_path / "nested" / "b.txt").write_text("B", encoding="utf-8")
        (tmp_path / "image.png").write_bytes(b"\x89PNG")

        found = find_documents(tmp_path)

        assert [path.relative_to(tmp_path).as_posix() for path in found] == ["a.md", "nested/b.txt"]

    @pytest.mark.asyncio
    async def test_ingest_directory(self, tmp_path, vector_store):
        (tmp_path / "a.md").write_text(DOCUMENT, encoding="utf-8")
        (tmp_path / "nested").mkdir()
        (tmp_path / "nested" / "b.txt").write_text("Plain text note.", encoding="utf-8")

        total = await ingest_directory(ChunkingEngine(), vector_store, tmp_path, "org_1")

        assert total == 2
        document_ids = [call.args[0] for call in vector_store.replace_document_chunks.await_args_list]
        assert document_ids == ["a.md", "nested/b.txt"]

    def test_parse_args(self, tmp_path):
        args = parse_args(["--organisation-id", "org_1", "--docs-dir", str(tmp_path)])

        assert args.organisation_id == "org_1"
        assert args.docs_dir == tmp_path
        assert args.strategy == "semantic"

    def test_parse_args_rejects_unknown_strategy(self, tmp_path):
        with pytest.raises(SystemExit):
            parse_args(["--organisation-id", "org_1", "--docs-dir", str(tmp_path), "--strategy", "pages"])

    def test_parse_args_source_id(self, tmp_path):
        args = parse_args(["--organisation-id", "org_1", "--docs-dir", str(tmp_path), "--source-id", "src_1"])

        assert args.source_id == "src_1"

    @pytest.mark.asyncio
    async def test_source_id_is_forwarded(self, tmp_path, vector_store):
        (tmp_path / "a.md").write_text(DOCUMENT, encoding="utf-8")

        await ingest_directory(ChunkingEngine(), vector_store, tmp_path, "org_1", source_id="src_1")

        assert vector_store.replace_document_chunks.await_args.kwargs["source_id"] == "src_1"
