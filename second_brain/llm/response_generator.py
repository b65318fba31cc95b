"""
Answer generation grounded in retrieved evidence.

Builds the chat prompt from the cited evidence block and the recent
conversation history, then asks the local model for an answer.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .base import GenerationConfig, TextGenerator
from ..config import LLMConfig
from ..models import ConversationMessage, RetrievalResponse

logger = logging.getLogger(__name__)


SYSTEM_PROMPT_TEMPLATE = """You are a helpful AI assistant that answers questions based on the user's personal knowledge base.

Use the provided context to answer the question. If the context doesn't contain enough information to answer the question, say so honestly. Cite sources with their bracketed numbers, e.g. [1].
{confidence_note}
Context from knowledge base:
{context}"""

LOW_CONFIDENCE_NOTE = (
    "\nThe retrieved context is only loosely related to the question. "
    "Be cautious, point out uncertainty, and avoid definitive claims.\n"
)


class ResponseGenerator:
    """Generates answers from evidence and conversation history."""

    def __init__(self, generator: TextGenerator, config: Optional[LLMConfig] = None):
        """
        Initialize response generator.

        Args:
            generator: Text generation backend
            config: LLM configuration (answer model, temperature, history window)
        """
        self.generator = generator
        self.config = config or LLMConfig()
        logger.info("ResponseGenerator initialized")

    def build_system_prompt(self, response: RetrievalResponse) -> str:
        return SYSTEM_PROMPT_TEMPLATE.format(
            confidence_note=LOW_CONFIDENCE_NOTE if response.low_confidence else "",
            context=response.context_text(),
        )

    def build_messages(
        self,
        query: str,
        response: RetrievalResponse,
        history: Optional[Sequence[ConversationMessage]] = None
    ) -> List[Dict[str, str]]:
        """
        Assemble chat messages: system prompt, recent history, then the question.

        Only the last ``history_window`` messages of the history are kept.
        """
        messages = [{"role": "system", "content": self.build_system_prompt(response)}]

        recent = list(history or [])[-self.config.history_window:] if self.config.history_window > 0 else []
        for message in recent:
            messages.append({"role": message.role, "content": message.content})

        messages.append({"role": "user", "content": query})
        return messages

    async def answer(
        self,
        query: str,
        response: RetrievalResponse,
        history: Optional[Sequence[ConversationMessage]] = None
    ) -> Tuple[str, Dict[str, Any]]:
        """
        Generate an answer for a question from its retrieval response.

        Args:
            query: User question
            response: Retrieval response holding the evidence
            history: Earlier messages of the conversation, oldest first

        Returns:
            Tuple of (answer text, generation metadata)

        Raises:
            GenerationError: If the model call fails
        """
        start_time = time.time()
        messages = self.build_messages(query, response, history)
        config = GenerationConfig(
            temperature=self.config.answer_temperature,
            max_tokens=self.config.answer_max_tokens,
        )

        logger.info(f"Generating response for query: {query[:100]}...")
        answer = await self.generator.chat(messages, config=config, model=self.config.answer_model)
        answer = (answer or "").strip()

        metadata = {
            'model_used': self.config.answer_model,
            'evidence_count': len(response.evidence),
            'history_messages': len(messages) - 2,
            'low_confidence': response.low_confidence,
            'total_generation_time': time.time() - start_time,
        }
        logger.info(f"Response generated: {len(answer)} chars from {len(response.evidence)} evidence items")
        return answer, metadata
