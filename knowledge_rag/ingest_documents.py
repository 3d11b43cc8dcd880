"""
Document ingestion script for the knowledge retrieval service.

This script:
1. Loads every .md and .txt file under a directory
2. Chunks each document (semantic chunking by default)
3. Embeds the chunks using the HuggingFace API
4. Replaces the document's chunks in Supabase pgvector

Usage:
    python -m knowledge_rag.ingest_documents --organisation-id ORG --docs-dir DIR [--strategy semantic]
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from knowledge_rag.errors import InputError, RAGError
from knowledge_rag.services.chunking_engine import ChunkingEngine
from knowledge_rag.services.embedding_model import EmbeddingModel
from knowledge_rag.services.vector_store import VectorStore

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIXES = (".md", ".txt")
STRATEGIES = ("semantic", "recursive", "sentence")


async def ingest_document(
    chunking_engine: ChunkingEngine,
    vector_store: VectorStore,
    document_id: str,
    organisation_id: str,
    text: str,
    strategy: str = "semantic",
    source_id: Optional[str] = None
) -> int:
    """
    Chunk one document and replace its stored chunks.

    Args:
        chunking_engine: Engine used to split the text
        vector_store: Store receiving the chunks
        document_id: Identifier of the document
        organisation_id: Owning organisation
        text: Full document text
        strategy: "semantic", "recursive" or "sentence"
        source_id: Connector source the document came from, if any

    Returns:
        Number of chunks stored

    Raises:
        InputError: If the strategy is unknown
    """
    if strategy == "semantic":
        result = chunking_engine.chunk_semantic(text)
    elif strategy == "recursive":
        result = chunking_engine.chunk(text)
    elif strategy == "sentence":
        result = chunking_engine.chunk_by_sentence(text)
    else:
        raise InputError(f"Unknown chunking strategy '{strategy}', expected one of {STRATEGIES}")

    logger.info(
        f"Chunked {document_id}: {result.metadata.chunk_count} chunks "
        f"from {result.metadata.original_length} characters ({strategy})"
    )
    return await vector_store.replace_document_chunks(
        document_id, organisation_id, result.chunks, source_id=source_id
    )


def find_documents(docs_dir: Path) -> List[Path]:
    """All ingestible files under docs_dir, sorted by path."""
    return sorted(
        path for path in docs_dir.rglob("*")
        if path.is_file() and path.suffix.lower() in DOCUMENT_SUFFIXES
    )


async def ingest_directory(
    chunking_engine: ChunkingEngine,
    vector_store: VectorStore,
    docs_dir: Path,
    organisation_id: str,
    strategy: str = "semantic",
    source_id: Optional[str] = None
) -> int:
    """Ingest every document under docs_dir; the document id is its path relative to docs_dir."""
    documents = find_documents(docs_dir)
    logger.info(f"Found {len(documents)} documents in {docs_dir}")

    total_chunks = 0
    for path in documents:
        document_id = path.relative_to(docs_dir).as_posix()
        text = path.read_text(encoding="utf-8")
        total_chunks += await ingest_document(
            chunking_engine, vector_store, document_id, organisation_id, text, strategy, source_id
        )

    return total_chunks


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest documents into the knowledge store")
    parser.add_argument("--organisation-id", required=True, help="Organisation owning the documents")
    parser.add_argument("--docs-dir", required=True, type=Path, help="Directory of .md/.txt files")
    parser.add_argument("--strategy", choices=STRATEGIES, default="semantic", help="Chunking strategy")
    parser.add_argument("--source-id", default=None, help="Connector source the documents belong to")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    logger.info("=" * 60)
    logger.info("Starting document ingestion")
    logger.info("=" * 60)

    embedding_model = EmbeddingModel()
    vector_store = VectorStore(embedding_model)
    chunking_engine = ChunkingEngine()
    logger.info("✓ Services initialized")

    total_chunks = await ingest_directory(
        chunking_engine, vector_store, args.docs_dir, args.organisation_id, args.strategy, args.source_id
    )

    stored = await vector_store.count(args.organisation_id)
    logger.info(f"✓ Ingested {total_chunks} chunks; organisation now has {stored} chunks")
    return total_chunks


def main(argv=None):
    """Main ingestion process."""
    args = parse_args(argv)

    if not args.docs_dir.is_dir():
        logger.error(f"Documents directory not found: {args.docs_dir}")
        sys.exit(1)

    try:
        asyncio.run(run(args))
    except RAGError as e:
        logger.error(f"Ingestion failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
