"""Main entry point for the knowledge retrieval API."""
import logging
import time
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from knowledge_rag.config import CORS_ORIGINS, LOG_FORMAT, LOG_LEVEL, MAX_LIMIT, PORT
from knowledge_rag.errors import DependencyError, DependencyTimeoutError, InputError
from knowledge_rag.logger import setup_logging
from knowledge_rag.models.api import (
    ErrorBody,
    QueryRequest,
    QueryResponse,
    SearchHit,
    SearchRequest,
    SearchResponse,
    Source,
    StageReport,
    TokenUsage,
)
from knowledge_rag.models.search import RetrievalResult, SearchScope
from knowledge_rag.services.answer_synthesizer import AnswerSynthesizer
from knowledge_rag.services.embedding_model import EmbeddingModel
from knowledge_rag.services.llm_client import LLMClient
from knowledge_rag.services.pipeline import (
    PipelineStage,
    deduplication_stage,
    embedding_rerank_stage,
    llm_rerank_stage,
    relevance_filter_stage,
    run_pipeline,
)
from knowledge_rag.services.reranking_engine import RerankingEngine
from knowledge_rag.services.retrieval_engine import RetrievalEngine
from knowledge_rag.services.vector_store import VectorStore

if LOG_FORMAT == "json":
    setup_logging(LOG_LEVEL)

logger = logging.getLogger(__name__)

QUERY_CONTEXT_LIMIT = 5

app = FastAPI(
    title="Knowledge RAG",
    description="Hybrid retrieval, reranking and grounded answers over organisation documents",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialized on startup
embedding_model: EmbeddingModel = None
vector_store: VectorStore = None
retrieval_engine: RetrievalEngine = None
reranking_engine: RerankingEngine = None
llm_client: LLMClient = None
answer_synthesizer: AnswerSynthesizer = None


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global embedding_model, vector_store, retrieval_engine
    global reranking_engine, llm_client, answer_synthesizer

    logger.info("Initializing knowledge retrieval services...")

    try:
        embedding_model = EmbeddingModel()
        vector_store = VectorStore(embedding_model)
        retrieval_engine = RetrievalEngine(embedding_model)
        logger.info("Initialized RetrievalEngine")

        llm_client = LLMClient()
        reranking_engine = RerankingEngine(embedding_model, llm_client)
        answer_synthesizer = AnswerSynthesizer(llm_client)
        logger.info("Initialized LLMClient, RerankingEngine and AnswerSynthesizer")

        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Knowledge RAG API"}


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "knowledge-rag",
        "version": "1.0.0"
    }


@app.post("/search", response_model=SearchResponse)
async def search_endpoint(request: SearchRequest):
    """
    Search an organisation's chunks.

    Runs the requested retrieval mode, then the requested rerank stages in
    the order given, then applies offset/limit to the final list.

    Args:
        request: SearchRequest with query, tenant scope, mode and rerank stages

    Returns:
        SearchResponse with ranked hits and a trace of the rerank stages
    """
    start_time = time.time()

    try:
        logger.info(f"Processing {request.mode} search: {request.query[:100]}...")
        scope = _scope(request.organisation_id, request.source_ids, request.document_ids)
        fetch_limit = min(request.limit + request.offset, MAX_LIMIT)

        retrieval = await _retrieve(request.mode, request.query, fetch_limit, scope)

        pipeline = await run_pipeline(
            retrieval.results,
            _rerank_stages(request.rerank, request.query, fetch_limit)
        )

        page = pipeline.results[request.offset:request.offset + request.limit]
        took = int((time.time() - start_time) * 1000)
        logger.info(f"Search returned {len(page)} of {len(pipeline.results)} results in {took}ms")

        return SearchResponse(
            results=[
                SearchHit(
                    id=chunk.id,
                    document_id=chunk.document_id,
                    content=chunk.content,
                    score=chunk.current_score(),
                    semantic_score=chunk.semantic_score,
                    keyword_score=chunk.keyword_score,
                    metadata=chunk.metadata
                )
                for chunk in page
            ],
            total=len(pipeline.results),
            query=request.query,
            took=took,
            stages=[
                StageReport(
                    name=stage.name,
                    input_count=stage.input_count,
                    output_count=stage.output_count,
                    took=stage.took
                )
                for stage in pipeline.trace
            ]
        )
    except Exception as e:
        return _error_response(e)


@app.post("/query", response_model=QueryResponse)
async def query_endpoint(request: QueryRequest):
    """
    Answer a question from the organisation's documents.

    Args:
        request: QueryRequest with question, tenant and conversation history

    Returns:
        QueryResponse with the answer, its sources and token usage
    """
    start_time = time.time()

    try:
        logger.info(f"Processing query: {request.query[:100]}...")
        scope = _scope(request.organisation_id)

        retrieval = await retrieval_engine.hybrid_search(
            request.query,
            vector_store.vector_search,
            vector_store.keyword_search,
            limit=QUERY_CONTEXT_LIMIT,
            scope=scope
        )
        logger.info(f"Retrieved {len(retrieval.results)} chunks")

        answer = await answer_synthesizer.generate(
            request.query,
            retrieval,
            conversation_history=[message.model_dump() for message in request.conversation_history],
            max_tokens=request.max_tokens,
            temperature=request.temperature
        )

        took = int((time.time() - start_time) * 1000)
        logger.info(f"Query processed successfully in {took}ms")

        return QueryResponse(
            answer=answer.answer,
            sources=[Source(**source) for source in answer.sources],
            usage=TokenUsage(**answer.usage),
            took=took
        )
    except Exception as e:
        return _error_response(e)


async def _retrieve(mode: str, query: str, limit: int, scope: SearchScope) -> RetrievalResult:
    if mode == "semantic":
        return await retrieval_engine.semantic_search(query, vector_store.vector_search, limit, scope)
    if mode == "keyword":
        return await retrieval_engine.keyword_only_search(query, vector_store.keyword_search, limit, scope)
    return await retrieval_engine.hybrid_search(
        query, vector_store.vector_search, vector_store.keyword_search, limit, scope
    )


def _rerank_stages(names: List[str], query: str, top_k: int) -> List[PipelineStage]:
    factories = {
        "dedup": lambda: deduplication_stage(reranking_engine),
        "relevance": lambda: relevance_filter_stage(reranking_engine, query),
        "embedding": lambda: embedding_rerank_stage(reranking_engine, query, top_k),
        "llm": lambda: llm_rerank_stage(reranking_engine, query, top_k),
    }
    return [factories[name]() for name in names]


def _scope(
    organisation_id: str,
    source_ids: Optional[List[str]] = None,
    document_ids: Optional[List[str]] = None
) -> SearchScope:
    return SearchScope(
        organisation_id=organisation_id,
        source_ids=tuple(source_ids or ()),
        document_ids=tuple(document_ids or ())
    )


def _error_response(error: Exception) -> JSONResponse:
    """Map a failure to its HTTP status and structured error body."""
    if isinstance(error, InputError):
        logger.warning(f"Rejected request: {error}")
        return _json_error(400, ErrorBody(code="INVALID_INPUT", message=str(error), details={}))

    if isinstance(error, DependencyError):
        status_code = 504 if isinstance(error, DependencyTimeoutError) else 503
        logger.error(f"Dependency error: {error.error.message}")
        return _json_error(status_code, ErrorBody(
            code=error.error.code,
            message=error.error.message,
            details=_serialisable(error.error.details)
        ))

    logger.error(f"Unexpected error processing request: {error}", exc_info=True)
    return _json_error(500, ErrorBody(code="UNKNOWN_ERROR", message=f"Internal server error: {error}", details={}))


def _json_error(status_code: int, body: ErrorBody) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": body.model_dump()})


def _serialisable(details: dict) -> dict:
    return {
        key: value if isinstance(value, (str, int, float, bool, type(None))) else str(value)
        for key, value in details.items()
    }


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting Knowledge RAG API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
