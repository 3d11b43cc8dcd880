"""Embedding model integration with Hugging Face Inference API."""
import asyncio
import time
import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx
import tiktoken

from knowledge_rag.config import (
    HUGGINGFACE_API_KEY,
    EMBEDDING_MODEL,
    EMBEDDING_API_URL,
    EMBEDDING_DIMENSIONS,
    EMBEDDING_BATCH_SIZE,
    EMBEDDING_TIMEOUT_SECONDS,
    TOKEN_ENCODING,
)
from knowledge_rag.errors import DependencyError, DependencyTimeoutError, ErrorDetail, InputError

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingResult:
    """Embedding for a single text."""
    embedding: List[float]
    tokens: int


@dataclass
class BatchEmbeddingResult:
    """Embeddings for a batch of texts, in input order."""
    embeddings: List[EmbeddingResult]
    total_tokens: int


class EmbeddingModel:
    """Async wrapper for the Hugging Face Inference API feature-extraction endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = HUGGINGFACE_API_KEY,
        model_name: str = EMBEDDING_MODEL,
        api_url: Optional[str] = EMBEDDING_API_URL,
        batch_size: int = EMBEDDING_BATCH_SIZE,
        max_retries: int = 5,
        initial_delay: float = 5.0,
        timeout: float = EMBEDDING_TIMEOUT_SECONDS
    ):
        """
        Initialize the embedding model client.

        Args:
            api_key: Hugging Face API key
            model_name: Model identifier (default: sentence-transformers/all-mpnet-base-v2)
            api_url: Alternate endpoint; defaults to the hosted inference URL for model_name
            batch_size: Maximum number of texts sent in one request
            max_retries: Maximum number of retry attempts for 503 and transport errors
            initial_delay: Initial delay in seconds for exponential backoff
            timeout: Request timeout in seconds
        """
        if not api_key:
            raise InputError("HUGGINGFACE_API_KEY environment variable is required")
        if batch_size < 1:
            raise InputError(f"batch_size must be at least 1, got {batch_size}")

        self.api_key = api_key
        self.model_name = model_name
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.timeout = timeout
        self.api_url = api_url or f"https://api-inference.huggingface.co/models/{model_name}"
        self._encoder = None

        logger.info(f"Initialized EmbeddingModel with model: {model_name}")

    @property
    def dimensions(self) -> int:
        return EMBEDDING_DIMENSIONS

    async def embed(self, text: str) -> EmbeddingResult:
        """
        Generate embedding for a single text string.

        Args:
            text: Text to embed

        Returns:
            EmbeddingResult with the vector and its token count

        Raises:
            InputError: If text is empty
            DependencyError: If the API request fails after all retries
            DependencyTimeoutError: If the last attempt timed out
        """
        if not text or not text.strip():
            raise InputError("Text cannot be empty")

        vectors = await self._embed_with_retry([text])
        return EmbeddingResult(embedding=vectors[0], tokens=self.count_tokens(text))

    async def embed_batch(self, texts: List[str]) -> BatchEmbeddingResult:
        """
        Generate embeddings for many texts, paging at the provider batch size.

        Output order matches input order.

        Args:
            texts: List of texts to embed

        Returns:
            BatchEmbeddingResult; empty when texts is empty

        Raises:
            InputError: If any text is empty
            DependencyError: If an API request fails after all retries
        """
        if not texts:
            return BatchEmbeddingResult(embeddings=[], total_tokens=0)

        blank = [i for i, t in enumerate(texts) if not t or not t.strip()]
        if blank:
            raise InputError(f"Texts at positions {blank} are empty")

        results: List[EmbeddingResult] = []
        total_tokens = 0

        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            vectors = await self._embed_with_retry(batch)

            for text, vector in zip(batch, vectors):
                tokens = self.count_tokens(text)
                total_tokens += tokens
                results.append(EmbeddingResult(embedding=vector, tokens=tokens))

            logger.debug(f"Embedded batch of {len(batch)} texts (offset {start})")

        return BatchEmbeddingResult(embeddings=results, total_tokens=total_tokens)

    def count_tokens(self, text: str) -> int:
        """Approximate token count of text."""
        if self._encoder is None:
            self._encoder = tiktoken.get_encoding(TOKEN_ENCODING)
        return len(self._encoder.encode(text))

    async def _embed_with_retry(self, texts: List[str]) -> List[List[float]]:
        """
        Internal method to call the API with exponential backoff retry strategy.

        HF free tier models "sleep" and take 15-20s to load on first query,
        so 503 responses and transport errors are retried.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, one per text

        Raises:
            DependencyError: If the API request fails after all retries
            DependencyTimeoutError: If the final attempt timed out
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        payload = {
            "inputs": texts,
            "options": {
                "wait_for_model": True  # Wait for model to load if sleeping
            }
        }

        delay = self.initial_delay
        last_error = None
        timed_out = False

        for attempt in range(self.max_retries):
            try:
                start_time = time.time()

                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        self.api_url,
                        headers=headers,
                        json=payload
                    )

                elapsed = time.time() - start_time

                # Handle 503 Service Unavailable (model loading)
                if response.status_code == 503:
                    logger.warning(
                        f"Model loading (503) on attempt {attempt + 1}/{self.max_retries}. "
                        f"Retrying in {delay}s..."
                    )
                    last_error = f"Model failed to load after {self.max_retries} attempts"
                    timed_out = False
                    if attempt < self.max_retries - 1:
                        await asyncio.sleep(delay)
                        delay = min(delay * 2, 60.0)  # Exponential backoff, max 60s
                    continue

                # Handle rate limiting
                if response.status_code == 429:
                    logger.error("Rate limit exceeded for embedding API")
                    raise DependencyError(ErrorDetail(
                        code="RATE_LIMIT_ERROR",
                        message="Rate limit exceeded. Please try again later.",
                        details={"model": self.model_name}
                    ))

                # Handle authentication errors
                if response.status_code == 401:
                    logger.error("Authentication failed for embedding API")
                    raise DependencyError(ErrorDetail(
                        code="AUTHENTICATION_ERROR",
                        message="Invalid API key",
                        details={"model": self.model_name}
                    ))

                # Handle other errors
                if response.status_code != 200:
                    error_msg = f"API request failed with status {response.status_code}: {response.text}"
                    logger.error(error_msg)
                    raise DependencyError(ErrorDetail(
                        code="API_ERROR",
                        message=error_msg,
                        details={"model": self.model_name, "status_code": response.status_code}
                    ))

                embeddings = response.json()
                if not isinstance(embeddings, list) or len(embeddings) != len(texts):
                    raise DependencyError(ErrorDetail(
                        code="INVALID_RESPONSE",
                        message="Embedding API returned an unexpected payload",
                        details={"model": self.model_name, "expected": len(texts)}
                    ))

                # Log successful request with timing
                if elapsed > 10.0:
                    logger.info(
                        f"Model loading delay detected: {elapsed:.1f}s for {len(texts)} texts "
                        f"(attempt {attempt + 1})"
                    )
                else:
                    logger.debug(f"Generated embeddings for {len(texts)} texts in {elapsed:.2f}s")

                return embeddings

            except httpx.TimeoutException:
                last_error = f"Request timeout after {self.timeout}s"
                timed_out = True
                logger.error(f"{last_error} on attempt {attempt + 1}/{self.max_retries}")

                if attempt < self.max_retries - 1:
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, 60.0)

            except httpx.RequestError as e:
                last_error = f"Network error: {str(e)}"
                timed_out = False
                logger.error(f"{last_error} on attempt {attempt + 1}/{self.max_retries}")

                if attempt < self.max_retries - 1:
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, 60.0)

        # All retries exhausted
        error_msg = f"Failed to generate embeddings after {self.max_retries} attempts. Last error: {last_error}"
        logger.error(error_msg)
        error = ErrorDetail(
            code="TIMEOUT_ERROR" if timed_out else "EMBEDDING_FAILED",
            message=error_msg,
            details={"model": self.model_name, "attempts": self.max_retries}
        )
        if timed_out:
            raise DependencyTimeoutError(error)
        raise DependencyError(error)
