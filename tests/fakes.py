"""
In-memory collaborators and factories shared by the test suite.
"""

from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import numpy as np
from qdrant_client.http import models

from second_brain.config import EmbeddingConfig
from second_brain.embeddings.base import EmbeddingService
from second_brain.errors import EmbeddingError, VectorIndexError
from second_brain.models import Chunk, Document, RetrievalCandidate, SourceType
from second_brain.retrieval.vectordb.base import VectorIndex


OWNER = "user-1"
OTHER_OWNER = "user-2"


def make_document(
    doc_id: str,
    title: str,
    owner_id: str = OWNER,
    source_type: SourceType = SourceType.PDF,
    created_at: Optional[datetime] = None,
    tags: Optional[List[str]] = None
) -> Document:
    created = created_at or datetime(2024, 3, 5, 10, 30, tzinfo=timezone.utc)
    return Document(
        id=doc_id,
        owner_id=owner_id,
        title=title,
        source_type=source_type,
        source_uri=f"uploads/{doc_id}",
        created_at=created,
        ingested_at=created,
        tags=list(tags) if tags is not None else ["completed"],
    )


def make_chunk(doc_id: str, index: int, text: str) -> Chunk:
    return Chunk(
        id=f"{doc_id}-chunk-{index}",
        document_id=doc_id,
        chunk_index=index,
        text=text,
        embedding_id=f"{doc_id}-emb-{index}",
        metadata={"language": "en", "char_count": len(text)},
    )


def make_candidate(embedding_id: str, score: float, document_id: Optional[str] = None, **kwargs) -> RetrievalCandidate:
    return RetrievalCandidate(embedding_id=embedding_id, score=score, document_id=document_id, **kwargs)


def condition_values(query_filter: models.Filter, key: str) -> Optional[list]:
    """Allowed values of a match condition on ``key``, or None when unconstrained."""
    for condition in query_filter.must or []:
        if getattr(condition, "key", None) != key or condition.match is None:
            continue
        if isinstance(condition.match, models.MatchValue):
            return [condition.match.value]
        if isinstance(condition.match, models.MatchAny):
            return list(condition.match.any)
    return None


class FakeEmbedder(EmbeddingService):
    """Deterministic embedder: each distinct text gets its own vector."""

    def __init__(self):
        super().__init__(EmbeddingConfig(embedding_dimension=2))
        self.texts: List[str] = []
        self.failing = set()
        self.calls: List[str] = []

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if text in self.failing:
            raise EmbeddingError(f"cannot embed: {text}")
        if text not in self.texts:
            self.texts.append(text)
        return np.array([float(self.texts.index(text)), 1.0], dtype=np.float32)

    def text_for(self, vector) -> str:
        return self.texts[int(vector[0])]


class FakeVectorIndex(VectorIndex):
    """Vector index answering from canned hits per query text, honouring owner and document filters."""

    def __init__(self, embedder: FakeEmbedder):
        self.embedder = embedder
        self.hits: Dict[str, List[Tuple[str, RetrievalCandidate]]] = {}
        self.calls: List[Dict] = []
        self.fail = False

    def add_hit(self, query: str, candidate: RetrievalCandidate, owner_id: str = OWNER) -> None:
        self.hits.setdefault(query, []).append((owner_id, candidate))

    async def search(self, vector, top_k, query_filter=None):
        text = self.embedder.text_for(vector)
        self.calls.append({"text": text, "top_k": top_k, "filter": query_filter})
        if self.fail:
            raise VectorIndexError("vector index unavailable")

        owners = condition_values(query_filter, "user_id") or []
        doc_ids = condition_values(query_filter, "document_id")
        results = [
            replace(candidate)
            for owner_id, candidate in self.hits.get(text, [])
            if owner_id in owners and (doc_ids is None or candidate.document_id in doc_ids)
        ]
        results.sort(key=lambda c: c.score, reverse=True)
        return results[:top_k]
