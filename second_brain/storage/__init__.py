"""
Relational storage for documents, chunks and conversations.

The metadata store is the authority for chunk text and document
attributes when evidence is assembled.
"""

from .base import ConversationStore, MetadataStore
from .metadata_store import SQLiteMetadataStore

__all__ = ['ConversationStore', 'MetadataStore', 'SQLiteMetadataStore']
