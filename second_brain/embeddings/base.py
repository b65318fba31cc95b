"""
Base interface for query embedding generation.

The retrieval pipeline only needs one capability from the embedding
service: turn a piece of query text into a vector in the same space the
indexed chunks were embedded in.
"""

from abc import ABC, abstractmethod

import numpy as np

from ..config import EmbeddingConfig


class EmbeddingService(ABC):
    """
    Abstract base class for embedding services.

    Implementations must be safe to call concurrently from several
    coroutines of the same request.
    """

    def __init__(self, config: EmbeddingConfig):
        self.config = config
        self.embedding_dimension: int = config.embedding_dimension
        self.is_loaded: bool = False

    @abstractmethod
    async def embed(self, text: str) -> np.ndarray:
        """
        Embed a single piece of text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            EmbeddingError: If the embedding cannot be produced
        """
        pass
