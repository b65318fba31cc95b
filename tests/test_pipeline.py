"""
Tests for the retrieval pipeline end to end, with a fake embedder and
vector index and a real SQLite metadata store.
"""

from unittest.mock import patch

import pytest

from second_brain.errors import EmbeddingError, MetadataStoreError, VectorIndexError
from second_brain.models import RetrievalFilters, RetrievalMode, RetrievalRequest, SourceType

from tests.fakes import OTHER_OWNER, OWNER, condition_values, make_candidate, make_chunk, make_document


EXPANSIONS_RESPONSE = "spending plan\nfinancial plan\ncost forecast"


def rewrite_responses(prompt, config=None, model=None, system=None):
    """Translation calls carry a system instruction; expansion calls do not."""
    if system:
        return "what budget"
    return EXPANSIONS_RESPONSE


def request(query, **filters):
    return RetrievalRequest(owner_id=OWNER, query_text=query, filters=RetrievalFilters(**filters))


class TestRetrievalPipeline:
    """Test suite for RetrievalPipeline."""

    @pytest.fixture(autouse=True)
    def knowledge_base(self, metadata_store):
        metadata_store.add_document(make_document("doc-a", "Budget 2024"))
        metadata_store.add_document(make_document("doc-b", "Offsite"))
        metadata_store.add_document(make_document("doc-c", "Draft", tags=["processing"]))
        metadata_store.add_document(make_document("doc-x", "Foreign", owner_id=OTHER_OWNER))
        metadata_store.add_chunks([
            make_chunk("doc-a", 0, "The budget for 2024 is 1.2M."),
            make_chunk("doc-a", 1, "Hiring plan for engineering."),
            make_chunk("doc-a", 2, "Office rent renewal."),
            make_chunk("doc-b", 0, "Offsite agenda and travel."),
            make_chunk("doc-b", 1, "Team dinner budget was approved."),
            make_chunk("doc-c", 0, "Unreviewed notes."),
        ])
        metadata_store.add_chunks([make_chunk("doc-x", 0, "Someone else's budget.")])

    @pytest.mark.asyncio
    async def test_short_query_adaptive_count_and_expansions(self, pipeline, generator, vector_index):
        generator.generate.side_effect = rewrite_responses
        vector_index.add_hit("budget", make_candidate("doc-a-emb-0", 0.8, "doc-a"))
        vector_index.add_hit("spending plan", make_candidate("doc-a-emb-1", 0.6, "doc-a"))

        response = await pipeline.retrieve(request("budget"))

        assert response.target_count == 10
        assert response.mode == RetrievalMode.STANDARD
        assert response.expansions == ["spending plan", "financial plan", "cost forecast"]
        assert response.translated_query is None
        assert generator.generate.call_count == 1

        top_k = {call["text"]: call["top_k"] for call in vector_index.calls}
        assert top_k == {"budget": 10, "spending plan": 5, "financial plan": 5, "cost forecast": 5}

    @pytest.mark.asyncio
    async def test_dense_and_lexical_fusion(self, pipeline, vector_index):
        vector_index.add_hit("budget", make_candidate("doc-a-emb-0", 0.42, "doc-a"))
        vector_index.add_hit("budget", make_candidate("doc-b-emb-0", 0.35, "doc-b"))

        response = await pipeline.retrieve(request("budget"))

        scores = [(item.embedding_id, round(item.score, 3)) for item in response.evidence]
        assert scores == [
            ("doc-a-emb-0", 0.462),
            ("doc-b-emb-1", 0.4),
            ("doc-b-emb-0", 0.35),
        ]
        assert response.low_confidence
        assert response.evidence[0].citation == "[1] Budget 2024 (pdf, March 5, 2024)"

    @pytest.mark.asyncio
    async def test_evidence_never_exceeds_target(self, pipeline, vector_index):
        for i in range(3):
            vector_index.add_hit("budget", make_candidate(f"doc-a-emb-{i}", 0.9 - i * 0.1, "doc-a"))

        response = await pipeline.retrieve(request("budget", result_count=2))

        assert response.target_count == 2
        assert [item.embedding_id for item in response.evidence] == ["doc-a-emb-0", "doc-a-emb-1"]
        assert not response.low_confidence

    @pytest.mark.asyncio
    async def test_no_duplicate_chunks(self, pipeline, generator, vector_index):
        generator.generate.side_effect = rewrite_responses
        for query in ["budget", "spending plan", "financial plan"]:
            vector_index.add_hit(query, make_candidate("doc-a-emb-0", 0.7, "doc-a"))
            vector_index.add_hit(query, make_candidate("doc-b-emb-1", 0.6, "doc-b"))

        response = await pipeline.retrieve(request("budget"))

        ids = [item.embedding_id for item in response.evidence]
        assert len(ids) == len(set(ids))
        assert response.evidence[0].score == pytest.approx(0.77)

    @pytest.mark.asyncio
    async def test_translated_query_skips_expansion(self, pipeline, generator, vector_index):
        generator.generate.side_effect = rewrite_responses
        vector_index.add_hit("what budget", make_candidate("doc-a-emb-0", 0.75, "doc-a", origin="dense"))

        response = await pipeline.retrieve(request("какой бюджет"))

        assert response.translated_query == "what budget"
        assert response.expansions == []
        assert generator.generate.call_count == 1
        assert {call["text"]: call["top_k"] for call in vector_index.calls} == {
            "какой бюджет": 10,
            "what budget": 10,
        }
        assert [item.embedding_id for item in response.evidence] == ["doc-a-emb-0"]

    @pytest.mark.asyncio
    async def test_broad_query_uses_coverage(self, pipeline, generator, vector_index):
        query = "compare all my documents"
        vector_index.add_hit(query, make_candidate("doc-a-emb-0", 0.9, "doc-a"))
        vector_index.add_hit(query, make_candidate("doc-a-emb-1", 0.85, "doc-a"))
        vector_index.add_hit(query, make_candidate("doc-a-emb-2", 0.8, "doc-a"))
        vector_index.add_hit(query, make_candidate("doc-b-emb-0", 0.3, "doc-b"))
        vector_index.add_hit(query, make_candidate("doc-c-emb-0", 0.95, "doc-c"))

        response = await pipeline.retrieve(request(query))

        assert response.mode == RetrievalMode.COVERAGE
        assert response.target_count == 20
        assert {item.document_id for item in response.evidence} == {"doc-a", "doc-b"}
        assert len(response.evidence) == 4
        generator.generate.assert_not_called()

        searched = sorted(condition_values(call["filter"], "document_id")[0] for call in vector_index.calls)
        assert searched == ["doc-a", "doc-b"]
        assert all(call["top_k"] == 7 for call in vector_index.calls)

    @pytest.mark.asyncio
    async def test_two_selected_documents_seven_each(self, pipeline, vector_index):
        for i in range(3):
            vector_index.add_hit("budget", make_candidate(f"doc-a-emb-{i}", 0.9 - i * 0.01, "doc-a"))
        vector_index.add_hit("budget", make_candidate("doc-b-emb-0", 0.1, "doc-b"))
        vector_index.add_hit("budget", make_candidate("doc-b-emb-1", 0.05, "doc-b"))

        response = await pipeline.retrieve(request("budget", document_ids=["doc-a", "doc-b"], result_count=4))

        assert response.mode == RetrievalMode.COVERAGE
        assert [call["top_k"] for call in vector_index.calls] == [7, 7]
        assert [item.embedding_id for item in response.evidence] == [
            "doc-a-emb-0", "doc-a-emb-1", "doc-b-emb-0", "doc-b-emb-1",
        ]

    @pytest.mark.asyncio
    async def test_partially_deleted_selection(self, pipeline, vector_index):
        vector_index.add_hit("budget", make_candidate("doc-a-emb-0", 0.8, "doc-a"))
        vector_index.add_hit("budget", make_candidate("doc-b-emb-0", 0.9, "doc-b"))

        response = await pipeline.retrieve(request("budget", document_ids=["doc-a", "gone"]))

        assert response.deleted_document_ids == ["gone"]
        assert response.documents_deleted
        assert response.has_results
        assert response.mode == RetrievalMode.STANDARD
        assert {item.document_id for item in response.evidence} == {"doc-a"}

    @pytest.mark.asyncio
    async def test_all_selected_documents_deleted(self, pipeline, vector_index):
        response = await pipeline.retrieve(request("budget", document_id="gone"))

        assert response.deleted_document_ids == ["gone"]
        assert not response.has_results
        assert vector_index.calls == []

    @pytest.mark.asyncio
    async def test_other_owner_document_counts_as_deleted(self, pipeline):
        response = await pipeline.retrieve(request("budget", document_id="doc-x"))

        assert response.deleted_document_ids == ["doc-x"]

    @pytest.mark.asyncio
    async def test_no_results_is_distinct_from_deleted(self, pipeline):
        response = await pipeline.retrieve(request("what happened in the quarterly planning meeting"))

        assert not response.has_results
        assert not response.documents_deleted
        assert response.low_confidence

    @pytest.mark.asyncio
    async def test_owner_isolation(self, pipeline, vector_index):
        vector_index.add_hit("budget", make_candidate("doc-x-emb-0", 0.99, "doc-x"), owner_id=OTHER_OWNER)

        response = await pipeline.retrieve(request("budget"))

        assert "doc-x" not in {item.document_id for item in response.evidence}
        for call in vector_index.calls:
            assert condition_values(call["filter"], "user_id") == [OWNER]

    @pytest.mark.asyncio
    async def test_keyword_hits_respect_request_filters(self, pipeline):
        response = await pipeline.retrieve(request("budget", source_types=[SourceType.AUDIO]))

        assert response.evidence == []

        response = await pipeline.retrieve(request("budget", title="Offsite"))

        assert [(i.embedding_id, i.score) for i in response.evidence] == [("doc-b-emb-1", 0.4)]

    @pytest.mark.asyncio
    async def test_idempotent_ordering(self, pipeline, generator, vector_index):
        generator.generate.side_effect = rewrite_responses
        vector_index.add_hit("budget", make_candidate("doc-a-emb-1", 0.6, "doc-a"))
        vector_index.add_hit("budget", make_candidate("doc-a-emb-2", 0.6, "doc-a"))
        vector_index.add_hit("cost forecast", make_candidate("doc-b-emb-0", 0.6, "doc-b"))

        first = await pipeline.retrieve(request("budget"))
        second = await pipeline.retrieve(request("budget"))

        assert [i.embedding_id for i in first.evidence] == [i.embedding_id for i in second.evidence]
        assert [i.embedding_id for i in first.evidence][:3] == ["doc-a-emb-1", "doc-a-emb-2", "doc-b-emb-0"]

    @pytest.mark.asyncio
    async def test_expansion_embedding_failure_is_degradable(self, pipeline, generator, embedder, vector_index):
        generator.generate.side_effect = rewrite_responses
        embedder.failing.add("financial plan")
        vector_index.add_hit("budget", make_candidate("doc-a-emb-0", 0.8, "doc-a"))

        response = await pipeline.retrieve(request("budget"))

        assert response.has_results
        assert "financial plan" not in {call["text"] for call in vector_index.calls}

    @pytest.mark.asyncio
    async def test_rewrite_failures_are_degradable(self, pipeline, generator, vector_index):
        generator.generate.side_effect = RuntimeError("ollama down")
        vector_index.add_hit("budget", make_candidate("doc-a-emb-0", 0.8, "doc-a"))

        response = await pipeline.retrieve(request("budget"))

        assert response.expansions == []
        assert response.evidence[0].embedding_id == "doc-a-emb-0"

    @pytest.mark.asyncio
    async def test_lexical_failure_is_degradable(self, pipeline, metadata_store, vector_index):
        vector_index.add_hit("budget", make_candidate("doc-a-emb-0", 0.42, "doc-a"))

        with patch.object(metadata_store, "keyword_search", side_effect=MetadataStoreError("locked")):
            response = await pipeline.retrieve(request("budget"))

        assert [(i.embedding_id, i.score) for i in response.evidence] == [("doc-a-emb-0", 0.42)]

    @pytest.mark.asyncio
    async def test_primary_embedding_failure_is_fatal(self, pipeline, embedder):
        embedder.failing.add("budget")

        with pytest.raises(EmbeddingError):
            await pipeline.retrieve(request("budget"))

    @pytest.mark.asyncio
    async def test_vector_index_failure_is_fatal(self, pipeline, vector_index):
        vector_index.fail = True

        with pytest.raises(VectorIndexError):
            await pipeline.retrieve(request("budget"))

    @pytest.mark.asyncio
    async def test_metadata_failure_is_fatal(self, pipeline, metadata_store, vector_index):
        vector_index.add_hit("budget", make_candidate("doc-a-emb-0", 0.8, "doc-a"))

        with patch.object(metadata_store, "get_chunks_by_embedding_ids", side_effect=MetadataStoreError("down")):
            with pytest.raises(MetadataStoreError):
                await pipeline.retrieve(request("budget"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("owner_id,query,result_count", [
        ("", "budget", None),
        (OWNER, "   ", None),
        (OWNER, "budget", 0),
    ])
    async def test_invalid_requests(self, pipeline, owner_id, query, result_count):
        bad_request = RetrievalRequest(
            owner_id=owner_id, query_text=query, filters=RetrievalFilters(result_count=result_count)
        )

        with pytest.raises(ValueError):
            await pipeline.retrieve(bad_request)
