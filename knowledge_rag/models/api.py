"""Request and response models for the HTTP API."""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from knowledge_rag.config import DEFAULT_LIMIT, MAX_LIMIT

SearchMode = Literal["hybrid", "semantic", "keyword"]
RerankStageName = Literal["dedup", "relevance", "embedding", "llm"]


class ConversationMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    organisation_id: str = Field(..., min_length=1)
    mode: SearchMode = "hybrid"
    limit: int = Field(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT)
    offset: int = Field(0, ge=0)
    source_ids: List[str] = Field(default_factory=list)
    document_ids: List[str] = Field(default_factory=list)
    rerank: List[RerankStageName] = Field(default_factory=list)


class SearchHit(BaseModel):
    id: str
    document_id: str
    content: str
    score: float
    semantic_score: float
    keyword_score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StageReport(BaseModel):
    name: str
    input_count: int
    output_count: int
    took: int


class SearchResponse(BaseModel):
    results: List[SearchHit]
    total: int
    query: str
    took: int
    stages: List[StageReport] = Field(default_factory=list)


class QueryRequest(BaseModel):
    query: str = Field(..., min_length=1)
    organisation_id: str = Field(..., min_length=1)
    conversation_history: List[ConversationMessage] = Field(default_factory=list)
    max_tokens: int = Field(1024, ge=1)
    temperature: float = Field(0.7, ge=0.0, le=2.0)


class Source(BaseModel):
    id: str
    document_id: str
    content: str
    score: float


class TokenUsage(BaseModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class QueryResponse(BaseModel):
    answer: str
    sources: List[Source]
    usage: TokenUsage
    took: int


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None
