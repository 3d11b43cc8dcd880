"""Configuration management for the knowledge retrieval service."""
import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# API Keys
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
HUGGINGFACE_API_KEY = os.getenv("HUGGINGFACE_API_KEY")
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# Alternate provider endpoints (None keeps the SDK defaults)
LLM_BASE_URL = os.getenv("LLM_BASE_URL") or None
EMBEDDING_API_URL = os.getenv("EMBEDDING_API_URL") or None

# Server Configuration
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:3001"
).split(",")

# Model Configuration
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "sentence-transformers/all-mpnet-base-v2")
EMBEDDING_DIMENSIONS = int(os.getenv("EMBEDDING_DIMENSIONS", "768"))
EMBEDDING_BATCH_SIZE = int(os.getenv("EMBEDDING_BATCH_SIZE", "2048"))
TOKEN_ENCODING = "o200k_base"
CHAT_MODEL = os.getenv("CHAT_MODEL", "llama-3.3-70b-versatile")
RERANK_MODEL = os.getenv("RERANK_MODEL", "llama-3.1-8b-instant")

# Chunking Configuration (characters)
CHUNK_SIZE = 512
CHUNK_OVERLAP = 50
CHUNK_SEPARATORS = ("\n\n", "\n", ". ", " ", "")
SENTENCES_PER_CHUNK = 3

# Retrieval Configuration
DEFAULT_LIMIT = 10
MAX_LIMIT = 100
KEYWORD_WEIGHT = float(os.getenv("KEYWORD_WEIGHT", "0.3"))
SEMANTIC_WEIGHT = float(os.getenv("SEMANTIC_WEIGHT", "0.7"))
RRF_K = 60
VECTOR_MATCH_THRESHOLD = float(os.getenv("VECTOR_MATCH_THRESHOLD", "0.5"))
KEYWORD_FALLBACK_SCORE = 0.5
CHUNKS_TABLE = os.getenv("CHUNKS_TABLE", "chunks")

# Reranking Configuration
RERANK_TOP_K = 50
LLM_RERANK_TOP_K = 10
LLM_RERANK_MAX_CANDIDATES = 20
RELEVANCE_MIN_SCORE = 0.3
DEDUP_SIMILARITY_THRESHOLD = 0.9

# Timeouts (seconds)
EMBEDDING_TIMEOUT_SECONDS = float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "30"))
SEARCH_TIMEOUT_SECONDS = float(os.getenv("SEARCH_TIMEOUT_SECONDS", "30"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))

# Logging Configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
