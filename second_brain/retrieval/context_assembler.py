"""
Evidence assembly from fused candidates.

Chunk text and document attributes always come from the metadata store;
titles can be renamed after indexing, so the payload carried on a
candidate is ignored. A candidate whose chunk or document can no longer be
found is dropped rather than cited.
"""

import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from ..models import EvidenceItem, RetrievalCandidate, SourceSummary
from ..storage.base import MetadataStore

logger = logging.getLogger(__name__)


def format_human_date(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def format_citation(
    index: int,
    title: str,
    source_type: str,
    created_at: Optional[datetime] = None
) -> str:
    """Format a citation header such as ``[1] Budget 2024 (pdf, March 5, 2024)``."""
    details = [source_type]
    human_date = format_human_date(created_at)
    if human_date:
        details.append(human_date)
    return f"[{index}] {title} ({', '.join(details)})"


class ContextAssembler:
    """Resolves candidates into cited evidence and source summaries."""

    def __init__(self, metadata_store: MetadataStore, excerpt_length: int = 200):
        self.metadata_store = metadata_store
        self.excerpt_length = excerpt_length

    async def assemble(
        self,
        owner_id: str,
        candidates: Sequence[RetrievalCandidate]
    ) -> Tuple[List[EvidenceItem], List[SourceSummary]]:
        """
        Build evidence for ranked candidates.

        Args:
            owner_id: Owner of the knowledge base
            candidates: Fused candidates in final order

        Returns:
            Tuple of (evidence items, source summaries) in candidate order

        Raises:
            MetadataStoreError: If the store lookups fail
        """
        if not candidates:
            return [], []

        chunks = await self.metadata_store.get_chunks_by_embedding_ids(
            [c.embedding_id for c in candidates]
        )
        document_ids = list(dict.fromkeys(chunk.document_id for chunk in chunks.values()))
        documents = await self.metadata_store.get_documents(owner_id, document_ids)

        evidence: List[EvidenceItem] = []
        sources: List[SourceSummary] = []

        for candidate in candidates:
            chunk = chunks.get(candidate.embedding_id)
            if chunk is None:
                logger.warning(f"Chunk {candidate.embedding_id} not found in metadata store, dropping")
                continue

            document = documents.get(chunk.document_id)
            if document is None:
                logger.warning(f"Document {chunk.document_id} not found for chunk {candidate.embedding_id}, dropping")
                continue

            source_type = document.source_type.value
            item = EvidenceItem(
                embedding_id=candidate.embedding_id,
                document_id=document.id,
                text=chunk.text,
                title=document.title,
                source_type=source_type,
                created_at=document.created_at,
                score=candidate.score,
                citation=format_citation(len(evidence) + 1, document.title, source_type, document.created_at),
            )
            evidence.append(item)
            sources.append(
                SourceSummary(
                    document_id=document.id,
                    title=document.title,
                    source_type=source_type,
                    relevance_score=candidate.score,
                    excerpt=item.excerpt(self.excerpt_length),
                    created_at=document.created_at.isoformat() if document.created_at else None,
                )
            )

        logger.info(f"Assembled {len(evidence)} evidence items from {len(candidates)} candidates")
        return evidence, sources
