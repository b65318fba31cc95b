"""Query embedding components."""

from .base import EmbeddingService
from .text_embedding_generator import SentenceTransformerEmbeddingGenerator

__all__ = [
    'EmbeddingService',
    'SentenceTransformerEmbeddingGenerator',
]
