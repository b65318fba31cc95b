"""
Base interfaces for the relational metadata store.

The metadata store is the source of truth for chunk text and document
attributes; the vector index only carries a snapshot taken at ingestion.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from ..models import Chunk, ConversationMessage, Document, RetrievalFilters


class MetadataStore(ABC):
    """Read access to documents and chunks used by the retrieval pipeline."""

    @abstractmethod
    async def get_chunks_by_embedding_ids(self, embedding_ids: Sequence[str]) -> Dict[str, Chunk]:
        """
        Resolve chunks by their vector-index identifiers.

        Args:
            embedding_ids: Vector-index identifiers

        Returns:
            Mapping of embedding id to chunk; unknown ids are absent

        Raises:
            MetadataStoreError: If the lookup fails
        """
        pass

    @abstractmethod
    async def get_documents(self, owner_id: str, document_ids: Sequence[str]) -> Dict[str, Document]:
        """
        Fetch the owner's documents by id.

        Returns:
            Mapping of document id to document; ids that do not exist or
            belong to another owner are absent

        Raises:
            MetadataStoreError: If the lookup fails
        """
        pass

    @abstractmethod
    async def list_documents(self, owner_id: str) -> List[Document]:
        """List every document owned by ``owner_id``, newest first."""
        pass

    @abstractmethod
    async def keyword_search(
        self,
        owner_id: str,
        keywords: Sequence[str],
        document_ids: Optional[Sequence[str]] = None,
        limit: int = 10,
        filters: Optional[RetrievalFilters] = None
    ) -> List[Chunk]:
        """
        Find the owner's chunks whose text contains any keyword.

        Matching is Unicode case-insensitive substring matching. The tag,
        source type, date and title constraints of ``filters`` apply to the
        chunk's document.

        Raises:
            MetadataStoreError: If the search fails
        """
        pass

    async def find_missing_documents(self, owner_id: str, document_ids: Sequence[str]) -> List[str]:
        """Return the ids from ``document_ids`` that no longer exist, in input order."""
        found = await self.get_documents(owner_id, document_ids)
        return [doc_id for doc_id in document_ids if doc_id not in found]


class ConversationStore(ABC):
    """Persistence for conversations and their messages."""

    @abstractmethod
    async def create_conversation(self, owner_id: str, title: str = "New Conversation") -> str:
        pass

    @abstractmethod
    async def get_latest_conversation(self, owner_id: str) -> Optional[str]:
        pass

    @abstractmethod
    async def conversation_exists(self, owner_id: str, conversation_id: str) -> bool:
        """Whether ``conversation_id`` exists and belongs to ``owner_id``."""
        pass

    @abstractmethod
    async def get_messages(self, conversation_id: str) -> List[ConversationMessage]:
        pass

    @abstractmethod
    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        sources: Optional[List[Dict[str, Any]]] = None
    ) -> ConversationMessage:
        pass

    async def get_or_create_conversation(self, owner_id: str) -> str:
        """Return the owner's most recent conversation, creating one if none exists."""
        conversation_id = await self.get_latest_conversation(owner_id)
        if conversation_id is None:
            conversation_id = await self.create_conversation(owner_id)
        return conversation_id
