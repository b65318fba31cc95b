"""
Per-document coverage retrieval.

When a question spans several documents (an explicit multi-document
selection, or a broad question over the whole knowledge base), plain
top-K retrieval lets one large or very relevant document crowd out the
rest. Coverage mode issues one search per document and guarantees each
document a minimum number of chunks in the result.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from .dense_retriever import DenseRetriever
from .vectordb.base import Vector
from ..config import RetrievalConfig
from ..models import QueryIntent, RetrievalCandidate, RetrievalFilters
from ..storage.base import MetadataStore

logger = logging.getLogger(__name__)


class CoverageRetriever:
    """Retrieves a guaranteed share of chunks from every target document."""

    def __init__(
        self,
        dense_retriever: DenseRetriever,
        metadata_store: MetadataStore,
        config: Optional[RetrievalConfig] = None
    ):
        self.dense_retriever = dense_retriever
        self.metadata_store = metadata_store
        self.config = config or RetrievalConfig()

    @staticmethod
    def should_activate(intent: QueryIntent, document_ids: Sequence[str]) -> bool:
        """Two or more selected documents, or a broad question with no selection."""
        return len(document_ids) >= 2 or (intent.is_broad and not document_ids)

    def chunks_per_document(self, document_count: int) -> int:
        if document_count <= 0:
            return 0
        return max(self.config.coverage_floor, self.config.coverage_budget // document_count)

    async def resolve_targets(self, owner_id: str, document_ids: Sequence[str]) -> List[str]:
        """
        Determine which documents to cover.

        Explicit selections are used as given (the caller has already checked
        they exist). Without a selection every document of the owner that has
        finished ingestion is a target.
        """
        if document_ids:
            return list(document_ids)

        documents = await self.metadata_store.list_documents(owner_id)
        targets = [doc.id for doc in documents if doc.is_searchable]
        skipped = len(documents) - len(targets)
        if skipped:
            logger.info(f"Coverage retrieval skipping {skipped} documents still ingesting or failed")
        return targets

    async def retrieve(
        self,
        vector: Vector,
        owner_id: str,
        document_ids: Sequence[str],
        target_count: int,
        filters: Optional[RetrievalFilters] = None
    ) -> List[RetrievalCandidate]:
        """
        Run one dense search per document and select a covered result set.

        Args:
            vector: Query embedding
            owner_id: Owner of the documents
            document_ids: Documents to cover
            target_count: Maximum number of results
            filters: Remaining request filters (tags, dates, ...)

        Returns:
            Candidates sorted by score, at most ``target_count`` long
        """
        if not document_ids or target_count <= 0:
            return []

        per_document = self.chunks_per_document(len(document_ids))
        logger.info(
            f"Coverage retrieval across {len(document_ids)} documents, "
            f"{per_document} chunks per document"
        )

        results = await asyncio.gather(*(
            self.dense_retriever.retrieve(
                vector,
                per_document,
                owner_id,
                filters,
                document_ids=[doc_id],
                origin="coverage"
            )
            for doc_id in document_ids
        ))

        return self.select(list(results), target_count)

    def select(
        self,
        per_document_results: Sequence[List[RetrievalCandidate]],
        target_count: int
    ) -> List[RetrievalCandidate]:
        """
        Pick at most ``target_count`` candidates, honouring the per-document floor.

        Each document first contributes up to ``coverage_floor`` of its best
        chunks, documents taken in order of their best score; the remaining
        slots go to the best leftover chunks overall. When ``target_count``
        is smaller than documents times floor, only the best-scoring
        documents get their floor.
        """
        floor = self.config.coverage_floor
        groups = [
            sorted(results, key=lambda c: c.score, reverse=True)
            for results in per_document_results
            if results
        ]
        groups.sort(key=lambda group: group[0].score, reverse=True)

        selected: Dict[str, RetrievalCandidate] = {}

        for group in groups:
            for candidate in group[:floor]:
                if len(selected) >= target_count:
                    break
                selected.setdefault(candidate.embedding_id, candidate)

        leftovers = sorted(
            (candidate for group in groups for candidate in group[floor:]),
            key=lambda c: c.score,
            reverse=True
        )
        for candidate in leftovers:
            if len(selected) >= target_count:
                break
            selected.setdefault(candidate.embedding_id, candidate)

        return sorted(selected.values(), key=lambda c: c.score, reverse=True)
