"""
Unit tests for ResponseGenerator.
"""

import pytest

from second_brain.config import LLMConfig
from second_brain.llm.base import GenerationConfig
from second_brain.llm.response_generator import LOW_CONFIDENCE_NOTE, ResponseGenerator
from second_brain.models import ConversationMessage, EvidenceItem, RetrievalResponse


def make_response(low_confidence=False):
    evidence = [
        EvidenceItem(
            embedding_id="doc-1-emb-0",
            document_id="doc-1",
            text="The Q3 budget was approved at 1.2M.",
            title="Budget",
            source_type="pdf",
            created_at=None,
            score=0.8,
            citation="[1] Budget (pdf)",
        ),
        EvidenceItem(
            embedding_id="doc-2-emb-0",
            document_id="doc-2",
            text="Ship on Friday.",
            title="Standup",
            source_type="audio",
            created_at=None,
            score=0.6,
            citation="[2] Standup (audio)",
        ),
    ]
    return RetrievalResponse(query="budget?", evidence=evidence, low_confidence=low_confidence)


def make_history(count):
    return [
        ConversationMessage(
            id=f"m{i}",
            conversation_id="conv-1",
            role="user" if i % 2 == 0 else "assistant",
            content=f"message {i}",
        )
        for i in range(count)
    ]


class TestResponseGenerator:
    """Test suite for ResponseGenerator."""

    @pytest.fixture
    def response_generator(self, generator):
        return ResponseGenerator(generator, LLMConfig(history_window=4))

    def test_system_prompt_contains_cited_context(self, response_generator):
        prompt = response_generator.build_system_prompt(make_response())

        assert "[1] Budget (pdf)\nThe Q3 budget was approved at 1.2M." in prompt
        assert "[2] Standup (audio)\nShip on Friday." in prompt
        assert LOW_CONFIDENCE_NOTE not in prompt

    def test_low_confidence_note(self, response_generator):
        prompt = response_generator.build_system_prompt(make_response(low_confidence=True))

        assert LOW_CONFIDENCE_NOTE in prompt

    def test_history_window(self, response_generator):
        messages = response_generator.build_messages("And the timeline?", make_response(), make_history(7))

        assert messages[0]["role"] == "system"
        assert [m["content"] for m in messages[1:-1]] == ["message 3", "message 4", "message 5", "message 6"]
        assert messages[-1] == {"role": "user", "content": "And the timeline?"}

    def test_history_disabled(self, generator):
        response_generator = ResponseGenerator(generator, LLMConfig(history_window=0))

        messages = response_generator.build_messages("q", make_response(), make_history(3))

        assert [m["role"] for m in messages] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_answer(self, response_generator, generator):
        generator.chat.return_value = "  The budget is 1.2M [1].  "

        answer, metadata = await response_generator.answer("budget?", make_response(), make_history(2))

        assert answer == "The budget is 1.2M [1]."
        assert metadata["model_used"] == "llama3.2"
        assert metadata["evidence_count"] == 2
        assert metadata["history_messages"] == 2
        assert metadata["low_confidence"] is False

        kwargs = generator.chat.call_args.kwargs
        assert kwargs["model"] == "llama3.2"
        assert kwargs["config"] == GenerationConfig(temperature=0.7, max_tokens=500)
