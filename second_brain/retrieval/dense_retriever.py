"""
Dense similarity retrieval against the vector index.
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from qdrant_client.http import models

from .vectordb.base import Vector, VectorIndex
from ..models import RetrievalCandidate, RetrievalFilters

logger = logging.getLogger(__name__)


def build_vector_filter(
    owner_id: str,
    filters: Optional[RetrievalFilters] = None,
    document_ids: Optional[Sequence[str]] = None
) -> models.Filter:
    """
    Build the payload filter for a dense search.

    The owner condition is always present. ``document_ids`` replaces the
    explicit document selection carried by ``filters`` (used for
    per-document calls and for selections with deleted documents removed).
    Both date bounds go into one range condition so neither is dropped.

    Args:
        owner_id: Owner whose chunks may be returned
        filters: Optional request filters
        document_ids: Optional document restriction overriding ``filters``

    Returns:
        Qdrant filter with all constraints under ``must``
    """
    if not owner_id:
        raise ValueError("owner_id is required for vector search")

    filters = filters or RetrievalFilters()
    must_conditions = [
        models.FieldCondition(key="user_id", match=models.MatchValue(value=owner_id))
    ]

    doc_ids = list(document_ids) if document_ids is not None else filters.target_document_ids()
    if doc_ids:
        must_conditions.append(
            models.FieldCondition(
                key="document_id",
                match=models.MatchValue(value=doc_ids[0])
                if len(doc_ids) == 1
                else models.MatchAny(any=doc_ids)
            )
        )

    if filters.tags:
        must_conditions.append(
            models.FieldCondition(key="tags", match=models.MatchAny(any=list(filters.tags)))
        )

    if filters.source_types:
        must_conditions.append(
            models.FieldCondition(
                key="source_type",
                match=models.MatchAny(any=[st.value for st in filters.source_types])
            )
        )

    if filters.title:
        must_conditions.append(
            models.FieldCondition(key="title", match=models.MatchValue(value=filters.title))
        )

    if filters.date_from or filters.date_to:
        must_conditions.append(
            models.FieldCondition(
                key="created_at",
                range=models.DatetimeRange(gte=filters.date_from, lte=filters.date_to)
            )
        )

    return models.Filter(must=must_conditions)


class DenseRetriever:
    """Runs owner-scoped similarity searches for one or more query vectors."""

    def __init__(self, vector_index: VectorIndex):
        self.vector_index = vector_index

    async def retrieve(
        self,
        vector: Vector,
        top_k: int,
        owner_id: str,
        filters: Optional[RetrievalFilters] = None,
        document_ids: Optional[Sequence[str]] = None,
        origin: str = "dense"
    ) -> List[RetrievalCandidate]:
        query_filter = build_vector_filter(owner_id, filters, document_ids)
        candidates = await self.vector_index.search(vector, top_k, query_filter)
        for candidate in candidates:
            candidate.origin = origin

        logger.debug(f"Dense retrieval ({origin}) returned {len(candidates)} candidates")
        return candidates

    async def retrieve_many(
        self,
        vectors: Sequence[Vector],
        top_k: int,
        owner_id: str,
        filters: Optional[RetrievalFilters] = None,
        document_ids: Optional[Sequence[str]] = None,
        origin: str = "dense"
    ) -> List[List[RetrievalCandidate]]:
        """Search several vectors concurrently; results keep the input order."""
        if not vectors:
            return []
        return list(await asyncio.gather(*(
            self.retrieve(vector, top_k, owner_id, filters, document_ids, origin)
            for vector in vectors
        )))
