"""
Tests for KnowledgeAssistant: answer statuses and conversation persistence.
"""

import pytest

from second_brain.assistant import DOCUMENTS_DELETED_MESSAGE, NO_RESULTS_MESSAGE, KnowledgeAssistant
from second_brain.config import LLMConfig
from second_brain.errors import GenerationError
from second_brain.llm.response_generator import ResponseGenerator
from second_brain.models import AnswerStatus, RetrievalFilters

from tests.fakes import OTHER_OWNER, OWNER, make_candidate, make_chunk, make_document


class TestKnowledgeAssistant:
    """Test suite for KnowledgeAssistant."""

    @pytest.fixture(autouse=True)
    def knowledge_base(self, metadata_store, vector_index):
        metadata_store.add_document(make_document("doc-a", "Budget 2024"))
        metadata_store.add_chunks([make_chunk("doc-a", 0, "The budget for 2024 is 1.2M.")])
        vector_index.add_hit("What is the budget for next year?", make_candidate("doc-a-emb-0", 0.8, "doc-a"))

    @pytest.fixture
    def assistant(self, pipeline, generator, metadata_store):
        return KnowledgeAssistant(
            pipeline=pipeline,
            response_generator=ResponseGenerator(generator, LLMConfig()),
            conversation_store=metadata_store,
        )

    @pytest.mark.asyncio
    async def test_answered_and_recorded(self, assistant, generator, metadata_store):
        result = await assistant.ask(OWNER, "What is the budget for next year?")

        assert result.status == AnswerStatus.ANSWERED
        assert result.answer == "Generated answer [1]"
        assert result.generation_metadata["evidence_count"] == 1
        generator.chat.assert_awaited_once()

        messages = await metadata_store.get_messages(result.conversation_id)
        assert [(m.role, m.content) for m in messages] == [
            ("user", "What is the budget for next year?"),
            ("assistant", "Generated answer [1]"),
        ]
        assert messages[1].sources[0]["document_id"] == "doc-a"
        assert messages[1].sources[0]["title"] == "Budget 2024"

    @pytest.mark.asyncio
    async def test_history_passed_to_generation(self, assistant, generator):
        first = await assistant.ask(OWNER, "What is the budget for next year?")
        await assistant.ask(OWNER, "What is the budget for next year?", conversation_id=first.conversation_id)

        messages = generator.chat.call_args.args[0]
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]

    @pytest.mark.asyncio
    async def test_reuses_latest_conversation(self, assistant):
        first = await assistant.ask(OWNER, "What is the budget for next year?")
        second = await assistant.ask(OWNER, "What is the budget for next year?")

        assert second.conversation_id == first.conversation_id

    @pytest.mark.asyncio
    async def test_no_results(self, assistant, generator, metadata_store):
        result = await assistant.ask(OWNER, "Who won the chess tournament?")

        assert result.status == AnswerStatus.NO_RESULTS
        assert result.answer == NO_RESULTS_MESSAGE
        generator.chat.assert_not_called()

        messages = await metadata_store.get_messages(result.conversation_id)
        assert messages[-1].content == NO_RESULTS_MESSAGE
        assert messages[-1].sources == []

    @pytest.mark.asyncio
    async def test_selected_documents_deleted(self, assistant, generator):
        result = await assistant.ask(
            OWNER, "What is the budget for next year?", filters=RetrievalFilters(document_id="removed")
        )

        assert result.status == AnswerStatus.DOCUMENTS_DELETED
        assert result.answer == DOCUMENTS_DELETED_MESSAGE
        assert result.response.deleted_document_ids == ["removed"]
        generator.chat.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, assistant):
        with pytest.raises(ValueError, match="Conversation not found"):
            await assistant.ask(OWNER, "What is the budget for next year?", conversation_id="missing")

    @pytest.mark.asyncio
    async def test_empty_question(self, assistant):
        with pytest.raises(ValueError):
            await assistant.ask(OWNER, "  ")

    @pytest.mark.asyncio
    async def test_generation_failure_propagates(self, assistant, generator):
        generator.chat.side_effect = GenerationError("model not loaded")

        with pytest.raises(GenerationError):
            await assistant.ask(OWNER, "What is the budget for next year?")

    @pytest.mark.asyncio
    async def test_other_owners_conversation_rejected(self, assistant, generator, metadata_store):
        foreign = await metadata_store.create_conversation(OTHER_OWNER)
        await metadata_store.add_message(foreign, "user", "my salary is 250k")

        with pytest.raises(ValueError, match="Conversation not found"):
            await assistant.ask(OWNER, "What is the budget for next year?", conversation_id=foreign)

        generator.chat.assert_not_called()
        assert len(await metadata_store.get_messages(foreign)) == 1
