"""
Question answering over the personal knowledge base with conversational memory.
"""

import logging
from typing import Optional

from .config import SystemConfig
from .llm.ollama_client import OllamaClient
from .llm.response_generator import ResponseGenerator
from .models import AnswerStatus, GroundedAnswer, RetrievalFilters, RetrievalRequest
from .retrieval.pipeline import RetrievalPipeline, create_pipeline
from .storage.base import ConversationStore
from .storage.metadata_store import SQLiteMetadataStore

logger = logging.getLogger(__name__)


NO_RESULTS_MESSAGE = (
    "I couldn't find any relevant information in your knowledge base to answer this question."
)
DOCUMENTS_DELETED_MESSAGE = (
    "The documents you selected are no longer in your knowledge base. "
    "They may have been deleted; please select other documents and ask again."
)


class KnowledgeAssistant:
    """
    Answers questions from retrieved evidence and records the conversation.

    Each question is stored as a user message and each answer as an
    assistant message carrying its source summaries.
    """

    def __init__(
        self,
        pipeline: RetrievalPipeline,
        response_generator: ResponseGenerator,
        conversation_store: ConversationStore
    ):
        self.pipeline = pipeline
        self.response_generator = response_generator
        self.conversation_store = conversation_store

    async def ask(
        self,
        owner_id: str,
        query: str,
        filters: Optional[RetrievalFilters] = None,
        conversation_id: Optional[str] = None
    ) -> GroundedAnswer:
        """
        Answer a question.

        Args:
            owner_id: Owner of the knowledge base
            query: Question text
            filters: Optional retrieval filters
            conversation_id: Conversation to continue; the owner's latest
                conversation (or a new one) when omitted

        Returns:
            GroundedAnswer with the answer text, status and retrieval response

        Raises:
            ValueError: If the question is empty or the conversation is unknown
            PipelineError: If retrieval or generation fails
        """
        if not query or not query.strip():
            raise ValueError("query is required")

        if conversation_id:
            if not await self.conversation_store.conversation_exists(owner_id, conversation_id):
                raise ValueError(f"Conversation not found: {conversation_id}")
        else:
            conversation_id = await self.conversation_store.get_or_create_conversation(owner_id)
            logger.info(f"Using conversation: {conversation_id}")

        history = await self.conversation_store.get_messages(conversation_id)
        logger.info(f"Loaded {len(history)} previous messages")

        response = await self.pipeline.retrieve(
            RetrievalRequest(owner_id=owner_id, query_text=query, filters=filters or RetrievalFilters())
        )

        await self.conversation_store.add_message(conversation_id, "user", query)

        generation_metadata = {}
        if response.documents_deleted and not response.has_results:
            status = AnswerStatus.DOCUMENTS_DELETED
            answer = DOCUMENTS_DELETED_MESSAGE
        elif not response.has_results:
            status = AnswerStatus.NO_RESULTS
            answer = NO_RESULTS_MESSAGE
        else:
            status = AnswerStatus.ANSWERED
            answer, generation_metadata = await self.response_generator.answer(query, response, history)

        await self.conversation_store.add_message(
            conversation_id,
            "assistant",
            answer,
            sources=[source.to_dict() for source in response.sources],
        )

        return GroundedAnswer(
            answer=answer,
            conversation_id=conversation_id,
            status=status,
            response=response,
            generation_metadata=generation_metadata,
        )


def create_assistant(config: SystemConfig) -> KnowledgeAssistant:
    """Build an assistant sharing one Ollama client and one metadata store."""
    generator = OllamaClient(config.llm)
    store = SQLiteMetadataStore(config.storage.metadata_db_path)
    return KnowledgeAssistant(
        pipeline=create_pipeline(config, generator=generator, metadata_store=store),
        response_generator=ResponseGenerator(generator, config.llm),
        conversation_store=store,
    )
