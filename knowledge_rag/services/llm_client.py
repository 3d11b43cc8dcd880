"""LLM Client for Groq API integration."""
import time
from dataclasses import dataclass
from typing import Dict, List, Optional
from groq import AsyncGroq
from groq import RateLimitError, AuthenticationError, APIError, APITimeoutError
import logging

from knowledge_rag.config import GROQ_API_KEY, LLM_BASE_URL, LLM_TIMEOUT_SECONDS, CHAT_MODEL
from knowledge_rag.errors import DependencyError, DependencyTimeoutError, ErrorDetail, InputError

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Response from a chat completion."""
    text: str
    tokens_input: int
    tokens_output: int
    latency_ms: int
    model_used: str

    @property
    def usage(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.tokens_input,
            "completion_tokens": self.tokens_output,
            "total_tokens": self.tokens_input + self.tokens_output,
        }


class LLMClient:
    """Chat-completion client used for LLM reranking and answer synthesis."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = LLM_BASE_URL,
        timeout: float = LLM_TIMEOUT_SECONDS,
        default_model: str = CHAT_MODEL
    ):
        """
        Initialize LLM client.

        Args:
            api_key: Groq API key (defaults to GROQ_API_KEY from environment)
            base_url: Alternate API endpoint, e.g. a self-hosted gateway
            timeout: Per-request timeout in seconds
            default_model: Model used when chat_complete is called without one
        """
        self.api_key = api_key or GROQ_API_KEY
        if not self.api_key:
            raise InputError("GROQ_API_KEY must be provided or set in environment")

        self.base_url = base_url
        self.default_model = default_model
        self.client = AsyncGroq(api_key=self.api_key, base_url=base_url, timeout=timeout)
        logger.info(f"LLMClient initialized (base_url={base_url or 'default'})")

    async def chat_complete(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 500
    ) -> LLMResponse:
        """
        Run a chat completion.

        Args:
            messages: Chat messages as {"role", "content"} dicts
            model: Model name (defaults to the client's default model)
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate

        Returns:
            LLMResponse with text, token counts, and latency

        Raises:
            DependencyTimeoutError: If the request timed out
            DependencyError: Structured error with code, message, and details
        """
        model = model or self.default_model
        start_time = time.time()

        try:
            logger.debug(f"Generating response with model: {model}")

            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature
            )

            latency_ms = int((time.time() - start_time) * 1000)

            text = response.choices[0].message.content or ""
            tokens_input = response.usage.prompt_tokens
            tokens_output = response.usage.completion_tokens

            logger.info(
                f"Generated response: model={model}, "
                f"input_tokens={tokens_input}, output_tokens={tokens_output}, "
                f"latency={latency_ms}ms"
            )

            return LLMResponse(
                text=text,
                tokens_input=tokens_input,
                tokens_output=tokens_output,
                latency_ms=latency_ms,
                model_used=model
            )

        except RateLimitError as e:
            raise self._failure(
                DependencyError, "RATE_LIMIT_ERROR",
                "Rate limit exceeded. Please try again in a few moments.",
                model, start_time, e, retry_after=60
            )

        except AuthenticationError as e:
            raise self._failure(
                DependencyError, "AUTHENTICATION_ERROR",
                "Authentication failed. Please check your API key.",
                model, start_time, e
            )

        except APITimeoutError as e:
            raise self._failure(
                DependencyTimeoutError, "TIMEOUT_ERROR",
                "Request timed out. Please try again.",
                model, start_time, e
            )

        except APIError as e:
            raise self._failure(
                DependencyError, "API_ERROR",
                f"LLM API error: {str(e)}",
                model, start_time, e
            )

        except Exception as e:
            raise self._failure(
                DependencyError, "UNKNOWN_ERROR",
                f"Unexpected error during generation: {str(e)}",
                model, start_time, e, error_type=type(e).__name__
            )

    def _failure(self, error_class, code, message, model, start_time, cause, **extra_details):
        latency_ms = int((time.time() - start_time) * 1000)
        error = ErrorDetail(
            code=code,
            message=message,
            details={
                "model": model,
                "latency_ms": latency_ms,
                "original_error": str(cause),
                **extra_details
            }
        )
        logger.error(
            f"{code}: model={model}, latency={latency_ms}ms, error={cause}",
            exc_info=cause,
            extra={"error_code": error.code, "error_details": error.details}
        )
        exc = error_class(error)
        exc.__cause__ = cause
        return exc
