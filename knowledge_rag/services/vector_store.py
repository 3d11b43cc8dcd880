"""Tenant-scoped chunk storage and search using Supabase pgvector."""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence
from supabase import create_client, Client

from knowledge_rag.config import (
    SUPABASE_URL,
    SUPABASE_KEY,
    CHUNKS_TABLE,
    KEYWORD_FALLBACK_SCORE,
    VECTOR_MATCH_THRESHOLD,
    SEARCH_TIMEOUT_SECONDS,
)
from knowledge_rag.errors import DependencyError, DependencyTimeoutError, ErrorDetail, InputError
from knowledge_rag.models.chunk import TextChunk
from knowledge_rag.models.search import ScoredChunk, SearchScope
from knowledge_rag.services.embedding_model import EmbeddingModel

logger = logging.getLogger(__name__)

MATCH_FULL_TEXT = "full_text"
MATCH_SUBSTRING = "substring"


class VectorStore:
    """Store chunk embeddings and serve vector and keyword search per organisation."""

    def __init__(
        self,
        embedding_model: EmbeddingModel,
        supabase_url: Optional[str] = SUPABASE_URL,
        supabase_key: Optional[str] = SUPABASE_KEY,
        table_name: str = CHUNKS_TABLE,
        match_threshold: float = VECTOR_MATCH_THRESHOLD,
        fallback_score: float = KEYWORD_FALLBACK_SCORE,
        timeout: float = SEARCH_TIMEOUT_SECONDS
    ):
        """
        Initialize the vector store with Supabase client.

        The database is expected to expose two RPC functions:
        `match_chunks(query_embedding, match_threshold, match_count,
        p_organisation_id, p_source_ids, p_document_ids)` returning rows with a
        `similarity` column, and `search_chunks(query_text, match_count,
        p_organisation_id, p_source_ids, p_document_ids)` returning rows with a
        `rank` column from `ts_rank` over `plainto_tsquery`.

        Args:
            embedding_model: EmbeddingModel instance for generating embeddings
            supabase_url: Supabase project URL
            supabase_key: Supabase API key
            table_name: Name of the table storing chunks
            match_threshold: Minimum cosine similarity returned by vector search
            fallback_score: Keyword score given to substring-fallback hits
            timeout: Per-call timeout in seconds

        Raises:
            InputError: If Supabase credentials are missing
        """
        if not supabase_url or not supabase_key:
            raise InputError("SUPABASE_URL and SUPABASE_KEY environment variables are required")

        self.embedding_model = embedding_model
        self.table_name = table_name
        self.match_threshold = match_threshold
        self.fallback_score = fallback_score
        self.timeout = timeout

        self.client: Client = create_client(supabase_url, supabase_key)

        logger.info(f"Initialized VectorStore with table: {table_name}")

    async def replace_document_chunks(
        self,
        document_id: str,
        organisation_id: str,
        chunks: Sequence[TextChunk],
        source_id: Optional[str] = None
    ) -> int:
        """
        Replace every stored chunk of a document with freshly embedded chunks.

        Existing chunks are deleted before the new ones are inserted; there is
        no incremental diffing.

        Args:
            document_id: Document the chunks belong to
            organisation_id: Owning organisation
            chunks: Chunks produced by the chunking engine
            source_id: Connector source the document came from, if any

        Returns:
            Number of chunks stored
        """
        await self.delete_document_chunks(document_id, organisation_id)

        if not chunks:
            logger.info(f"Document {document_id} produced no chunks")
            return 0

        batch = await self.embedding_model.embed_batch([chunk.content for chunk in chunks])

        records = []
        for index, (chunk, result) in enumerate(zip(chunks, batch.embeddings)):
            records.append({
                "id": f"{document_id}_{index}",
                "document_id": document_id,
                "organisation_id": organisation_id,
                "source_id": source_id,
                "content": chunk.content,
                "start_index": chunk.start_index,
                "end_index": chunk.end_index,
                "token_count": result.tokens,
                "metadata": chunk.metadata or {},
                "embedding": result.embedding,
            })

        await self._execute(
            "insert_chunks",
            lambda: self.client.table(self.table_name).insert(records).execute()
        )

        logger.info(
            f"Stored {len(records)} chunks for document {document_id} "
            f"({batch.total_tokens} tokens)"
        )
        return len(records)

    async def delete_document_chunks(self, document_id: str, organisation_id: str) -> None:
        """Delete all chunks of a document within an organisation."""
        await self._execute(
            "delete_chunks",
            lambda: (
                self.client.table(self.table_name)
                .delete()
                .eq("document_id", document_id)
                .eq("organisation_id", organisation_id)
                .execute()
            )
        )

    async def vector_search(
        self,
        query_embedding: List[float],
        limit: int,
        scope: Optional[SearchScope] = None
    ) -> List[ScoredChunk]:
        """
        Find the chunks most similar to a query embedding.

        Args:
            query_embedding: Embedding vector for the query
            limit: Number of chunks to retrieve
            scope: Organisation boundary and optional filters (required)

        Returns:
            ScoredChunks sorted by similarity, semantic_score in [0, 1]
        """
        scope = _require_scope(scope)
        if not query_embedding:
            raise InputError("Query embedding cannot be empty")

        response = await self._execute(
            "match_chunks",
            lambda: self.client.rpc(
                "match_chunks",
                {
                    "query_embedding": query_embedding,
                    "match_threshold": self.match_threshold,
                    "match_count": limit,
                    **_scope_params(scope),
                }
            ).execute()
        )

        results = []
        for row in _rows_in_scope(response.data, scope):
            similarity = max(0.0, min(1.0, float(row["similarity"])))
            chunk = _row_to_chunk(row, {})
            results.append(chunk.with_score("semantic", similarity, semantic_score=similarity))

        logger.debug(f"Vector search returned {len(results)} chunks")
        return results

    async def keyword_search(
        self,
        query: str,
        limit: int,
        scope: Optional[SearchScope] = None
    ) -> List[ScoredChunk]:
        """
        Full-text search with a substring fallback.

        When full-text ranking yields nothing, a case-insensitive substring
        match is run instead. Those hits carry the fixed fallback score and
        `metadata["match_type"] == "substring"`.

        Args:
            query: Query text
            limit: Number of chunks to retrieve
            scope: Organisation boundary and optional filters (required)

        Returns:
            ScoredChunks sorted by keyword score
        """
        scope = _require_scope(scope)
        if not query or not query.strip():
            return []

        response = await self._execute(
            "search_chunks",
            lambda: self.client.rpc(
                "search_chunks",
                {
                    "query_text": query,
                    "match_count": limit,
                    **_scope_params(scope),
                }
            ).execute()
        )

        results = []
        for row in _rows_in_scope(response.data, scope):
            rank = float(row["rank"])
            chunk = _row_to_chunk(row, {"match_type": MATCH_FULL_TEXT})
            results.append(chunk.with_score("keyword", rank, keyword_score=rank))

        if results:
            logger.debug(f"Full-text search returned {len(results)} chunks")
            return results

        logger.info("Full-text search found nothing, falling back to substring match")
        rows = await self._execute(
            "substring_chunks",
            lambda: self._substring_query(query, limit, scope).execute()
        )

        fallback = []
        for row in _rows_in_scope(rows.data, scope):
            chunk = _row_to_chunk(row, {"match_type": MATCH_SUBSTRING})
            fallback.append(chunk.with_score("keyword", self.fallback_score, keyword_score=self.fallback_score))
        return fallback

    async def count(self, organisation_id: str) -> int:
        """Number of chunks stored for an organisation."""
        response = await self._execute(
            "count_chunks",
            lambda: (
                self.client.table(self.table_name)
                .select("id", count="exact")
                .eq("organisation_id", organisation_id)
                .execute()
            )
        )
        return response.count if response.count is not None else 0

    def _substring_query(self, query: str, limit: int, scope: SearchScope):
        builder = (
            self.client.table(self.table_name)
            .select("id, document_id, organisation_id, source_id, content, metadata")
            .eq("organisation_id", scope.organisation_id)
            .ilike("content", f"%{query.strip()}%")
        )
        if scope.source_ids:
            builder = builder.in_("source_id", list(scope.source_ids))
        if scope.document_ids:
            builder = builder.in_("document_id", list(scope.document_ids))
        return builder.limit(limit)

    async def _execute(self, operation: str, call: Callable[[], Any]) -> Any:
        """Run a blocking Supabase call off the event loop within the timeout."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(call), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Supabase {operation} timed out after {self.timeout}s")
            raise DependencyTimeoutError(ErrorDetail(
                code="SEARCH_TIMEOUT",
                message=f"{operation} timed out after {self.timeout}s",
                details={"operation": operation}
            )) from e
        except Exception as e:
            logger.error(f"Supabase {operation} failed: {e}", exc_info=True)
            raise DependencyError(ErrorDetail(
                code="STORE_ERROR",
                message=f"{operation} failed: {str(e)}",
                details={"operation": operation}
            )) from e


def _require_scope(scope: Optional[SearchScope]) -> SearchScope:
    if scope is None or not scope.organisation_id:
        raise InputError("Searches must be scoped to an organisation")
    return scope


def _scope_params(scope: SearchScope) -> Dict[str, Any]:
    return {
        "p_organisation_id": scope.organisation_id,
        "p_source_ids": list(scope.source_ids) or None,
        "p_document_ids": list(scope.document_ids) or None,
    }


def _rows_in_scope(rows: Optional[List[Dict[str, Any]]], scope: SearchScope) -> List[Dict[str, Any]]:
    """Drop rows tagged with another organisation or a filtered-out source."""
    kept = []
    for row in rows or []:
        owner = row.get("organisation_id")
        if owner is not None and owner != scope.organisation_id:
            logger.warning(f"Dropping chunk {row.get('id')} outside organisation scope")
            continue
        source = row.get("source_id")
        if scope.source_ids and source is not None and source not in scope.source_ids:
            continue
        kept.append(row)
    return kept


def _row_to_chunk(row: Dict[str, Any], extra_metadata: Dict[str, Any]) -> ScoredChunk:
    metadata = dict(row.get("metadata") or {})
    if row.get("document_title"):
        metadata["document_title"] = row["document_title"]
    metadata.update(extra_metadata)
    return ScoredChunk(
        id=str(row["id"]),
        document_id=str(row["document_id"]),
        content=row["content"],
        metadata=metadata,
    )
