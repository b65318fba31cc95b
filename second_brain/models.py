"""
Core data models for the Second Brain assistant.

This module defines the data structures that flow through the retrieval
pipeline: stored documents and chunks, the per-query request and filters,
transient retrieval candidates, resolved evidence, and the final response
handed to answer generation.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class SourceType(Enum):
    """Enumeration of supported source kinds."""
    AUDIO = "audio"
    PDF = "pdf"
    MARKDOWN = "markdown"


class RetrievalMode(Enum):
    """How candidates were gathered for a query."""
    STANDARD = "standard"
    COVERAGE = "coverage"


class AnswerStatus(Enum):
    """Outcome of a question put to the assistant."""
    ANSWERED = "answered"
    NO_RESULTS = "no_results"
    DOCUMENTS_DELETED = "documents_deleted"


# Ingestion lifecycle markers carried in document tags
PROCESSING_TAG = "processing"
COMPLETED_TAG = "completed"
FAILED_TAG = "failed"


@dataclass
class Document:
    """
    A user-owned source in the knowledge base.

    The ingestion status lives in the tags: a document tagged
    ``processing`` (and neither ``completed`` nor ``failed``) is still
    being extracted and indexed.
    """
    id: str
    owner_id: str
    title: str
    source_type: SourceType
    source_uri: Optional[str] = None
    created_at: Optional[datetime] = None
    ingested_at: Optional[datetime] = None
    tags: List[str] = field(default_factory=list)

    @property
    def is_ingesting(self) -> bool:
        return (
            PROCESSING_TAG in self.tags
            and COMPLETED_TAG not in self.tags
            and FAILED_TAG not in self.tags
        )

    @property
    def is_failed(self) -> bool:
        return FAILED_TAG in self.tags

    @property
    def is_searchable(self) -> bool:
        """Whether the document can take part in per-document coverage."""
        return not self.is_ingesting and not self.is_failed


@dataclass
class Chunk:
    """
    A contiguous span of extracted text belonging to one document.

    ``embedding_id`` is the identifier of the chunk's vector in the
    vector index and is the identity used for deduplication.
    """
    id: str
    document_id: str
    chunk_index: int
    text: str
    embedding_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RetrievalFilters:
    """Optional constraints narrowing a retrieval request."""
    document_id: Optional[str] = None
    document_ids: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    source_types: List[SourceType] = field(default_factory=list)
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    title: Optional[str] = None
    result_count: Optional[int] = None

    def target_document_ids(self) -> List[str]:
        """Explicitly selected document ids, in order and without duplicates."""
        ids = []
        if self.document_id:
            ids.append(self.document_id)
        ids.extend(self.document_ids)

        seen = set()
        unique = []
        for doc_id in ids:
            if doc_id and doc_id not in seen:
                seen.add(doc_id)
                unique.append(doc_id)
        return unique


@dataclass
class RetrievalRequest:
    """A question plus the constraints it should be answered under."""
    owner_id: str
    query_text: str
    filters: RetrievalFilters = field(default_factory=RetrievalFilters)


@dataclass
class RetrievalCandidate:
    """
    A transient retrieval hit produced by any retriever.

    Metadata is whatever the retriever knew at retrieval time and may be
    stale (vector payloads) or missing (lexical-only hits); it is refined
    against the metadata store during context assembly.
    """
    embedding_id: str
    score: float
    document_id: Optional[str] = None
    source_type: Optional[str] = None
    title: Optional[str] = None
    created_at: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    origin: str = "dense"
    lexical_match: bool = False


@dataclass
class EvidenceItem:
    """A candidate resolved against the metadata store, ready for citation."""
    embedding_id: str
    document_id: str
    text: str
    title: str
    source_type: str
    created_at: Optional[datetime]
    score: float
    citation: str

    def excerpt(self, length: int = 200) -> str:
        if len(self.text) <= length:
            return self.text
        return self.text[:length] + "..."

    def to_context_block(self) -> str:
        return f"{self.citation}\n{self.text}"


@dataclass
class SourceSummary:
    """Citation data shown alongside an answer and stored with the message."""
    document_id: str
    title: str
    source_type: str
    relevance_score: float
    excerpt: str
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "title": self.title,
            "source_type": self.source_type,
            "relevance_score": self.relevance_score,
            "excerpt": self.excerpt,
            "created_at": self.created_at,
        }


@dataclass
class QueryIntent:
    """Classification of a raw question."""
    word_count: int
    is_broad: bool
    adaptive_count: int


@dataclass
class RetrievalResponse:
    """
    Ordered evidence for one question.

    ``low_confidence`` tells answer generation to soften its claims;
    ``deleted_document_ids`` lists explicitly selected documents that no
    longer exist, which is distinct from finding nothing at all.
    """
    query: str
    evidence: List[EvidenceItem] = field(default_factory=list)
    sources: List[SourceSummary] = field(default_factory=list)
    low_confidence: bool = False
    deleted_document_ids: List[str] = field(default_factory=list)
    mode: RetrievalMode = RetrievalMode.STANDARD
    target_count: int = 0
    translated_query: Optional[str] = None
    expansions: List[str] = field(default_factory=list)

    @property
    def has_results(self) -> bool:
        return bool(self.evidence)

    @property
    def documents_deleted(self) -> bool:
        return bool(self.deleted_document_ids)

    def context_text(self, separator: str = "\n\n---\n\n") -> str:
        return separator.join(item.to_context_block() for item in self.evidence)


@dataclass
class ConversationMessage:
    """A persisted turn of a conversation."""
    id: str
    conversation_id: str
    role: str  # user, assistant, system
    content: str
    sources: List[Dict[str, Any]] = field(default_factory=list)
    created_at: Optional[datetime] = None


@dataclass
class GroundedAnswer:
    """Answer text together with the evidence it was generated from."""
    answer: str
    conversation_id: str
    status: AnswerStatus
    response: RetrievalResponse
    generation_metadata: Dict[str, Any] = field(default_factory=dict)
