"""
Vector index components for chunk embedding storage and similarity search.
"""

from .base import VectorIndex
from .qdrant_vector_store import QdrantVectorStore

__all__ = ['VectorIndex', 'QdrantVectorStore']
