"""Services for the knowledge retrieval core."""
from .chunking_engine import ChunkingEngine
from .embedding_model import EmbeddingModel, EmbeddingResult, BatchEmbeddingResult
from .vector_store import VectorStore
from .retrieval_engine import RetrievalEngine
from .reranking_engine import RerankingEngine
from .pipeline import PipelineStage, PipelineResult, run_pipeline
from .llm_client import LLMClient, LLMResponse
from .answer_synthesizer import AnswerSynthesizer, Answer

__all__ = ['ChunkingEngine', 'EmbeddingModel', 'EmbeddingResult', 'BatchEmbeddingResult', 'VectorStore', 'RetrievalEngine', 'RerankingEngine', 'PipelineStage', 'PipelineResult', 'run_pipeline', 'LLMClient', 'LLMResponse', 'AnswerSynthesizer', 'Answer']
