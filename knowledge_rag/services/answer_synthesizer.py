"""Answer synthesis over retrieved chunks."""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from knowledge_rag.models.search import RetrievalResult, ScoredChunk
from knowledge_rag.services.llm_client import LLMClient

logger = logging.getLogger(__name__)

NO_CONTEXT_ANSWER = (
    "I couldn't find any relevant information in the knowledge base to answer that question."
)
SOURCE_PREVIEW_CHARS = 200


@dataclass
class Answer:
    """Generated answer with the sources it was grounded on."""
    answer: str
    sources: List[Dict[str, Any]]
    usage: Dict[str, int] = field(
        default_factory=lambda: {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
    )


class AnswerSynthesizer:
    """Builds a grounded prompt from retrieval results and asks the chat model to answer."""

    def __init__(self, llm_client: LLMClient, model: Optional[str] = None):
        self.llm_client = llm_client
        self.model = model

    async def generate(
        self,
        query: str,
        retrieval: RetrievalResult,
        conversation_history: Optional[Sequence[Dict[str, str]]] = None,
        max_tokens: int = 1024,
        temperature: float = 0.7
    ) -> Answer:
        """
        Answer a question from retrieved context.

        Args:
            query: User question
            retrieval: Output of the retrieval engine
            conversation_history: Earlier {"role", "content"} turns, oldest first
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature

        Returns:
            Answer; when nothing was retrieved the model is not called and a
            fixed "no relevant information" answer is returned

        Raises:
            DependencyError: If the chat completion fails
        """
        if not retrieval.results:
            logger.info("No retrieval results, answering without the model")
            return Answer(answer=NO_CONTEXT_ANSWER, sources=[])

        messages = self.build_messages(query, retrieval.results, conversation_history)
        response = await self.llm_client.chat_complete(
            messages=messages,
            model=self.model,
            temperature=temperature,
            max_tokens=max_tokens
        )

        return Answer(
            answer=response.text,
            sources=[_source(chunk) for chunk in retrieval.results],
            usage=response.usage
        )

    @staticmethod
    def build_context(results: Sequence[ScoredChunk]) -> str:
        """Numbered source blocks, [1] first."""
        return "\n\n".join(f"[{i + 1}] {chunk.content}" for i, chunk in enumerate(results))

    @staticmethod
    def build_messages(
        query: str,
        results: Sequence[ScoredChunk],
        conversation_history: Optional[Sequence[Dict[str, str]]] = None
    ) -> List[Dict[str, str]]:
        system_prompt = f"""You are a helpful assistant that answers questions based on the provided context.
Always cite your sources using [1], [2], etc. when referencing information from the context.
If the context doesn't contain relevant information, say so honestly.

Context:
{AnswerSynthesizer.build_context(results)}"""

        messages = [{"role": "system", "content": system_prompt}]
        for message in conversation_history or []:
            if message.get("role") in ("user", "assistant"):
                messages.append({"role": message["role"], "content": message["content"]})
        messages.append({"role": "user", "content": query})
        return messages


def _source(chunk: ScoredChunk) -> Dict[str, Any]:
    content = chunk.content
    if len(content) > SOURCE_PREVIEW_CHARS:
        content = content[:SOURCE_PREVIEW_CHARS] + "..."
    return {
        "id": chunk.id,
        "document_id": chunk.document_id,
        "content": content,
        "score": chunk.current_score(),
    }
