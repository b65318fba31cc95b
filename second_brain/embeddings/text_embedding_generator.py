"""
Query embedding generator using the sentence-transformers library.

Loads the same model used at ingestion time and runs encoding in a worker
thread so that concurrent query variants do not block the event loop.
"""

import asyncio
import logging
import threading
from typing import Any, Dict, Optional

import numpy as np

try:
    from sentence_transformers import SentenceTransformer
    import torch
except ImportError as e:
    raise ImportError(
        "sentence-transformers and torch are required for query embedding. "
        "Install with: pip install sentence-transformers torch"
    ) from e

from .base import EmbeddingService
from ..config import EmbeddingConfig
from ..errors import EmbeddingError, ModelLoadError


logger = logging.getLogger(__name__)


class SentenceTransformerEmbeddingGenerator(EmbeddingService):
    """
    Embedding service backed by a local sentence-transformers model.

    Features:
    - Lazy model loading on first use, guarded against concurrent loads
    - Device auto-selection (CUDA, MPS, CPU)
    - Optional L2 normalization so cosine and dot-product scores agree
    """

    def __init__(self, config: EmbeddingConfig):
        super().__init__(config)
        self.model: Optional[SentenceTransformer] = None
        self.device = self._determine_device()
        self._load_lock = threading.Lock()

        self._embedding_stats = {
            'total_embeddings': 0,
            'failed_embeddings': 0,
        }

    def _determine_device(self) -> str:
        """
        Determine the best available device for embedding generation.

        Returns:
            Device string ('cuda', 'mps', or 'cpu')
        """
        if self.config.device != "auto":
            return self.config.device

        if torch.cuda.is_available():
            return "cuda"
        elif hasattr(torch.backends, 'mps') and torch.backends.mps.is_available():
            return "mps"
        else:
            return "cpu"

    def load_model(self) -> None:
        """
        Load the sentence transformer model.

        Raises:
            ModelLoadError: If model loading fails
        """
        with self._load_lock:
            if self.is_loaded:
                return

            try:
                logger.info(f"Loading text embedding model: {self.config.text_model_name}")
                logger.info(f"Using device: {self.device}")

                self.model = SentenceTransformer(
                    self.config.text_model_name,
                    device=self.device
                )
                self.model.max_seq_length = self.config.max_sequence_length

                test_embedding = self.model.encode("test", convert_to_numpy=True)
                actual_dimension = test_embedding.shape[0]

                if actual_dimension != self.config.embedding_dimension:
                    logger.warning(
                        f"Model embedding dimension ({actual_dimension}) differs from "
                        f"configured dimension ({self.config.embedding_dimension}). "
                        f"Updating configuration."
                    )
                    self.embedding_dimension = actual_dimension
                    self.config.embedding_dimension = actual_dimension

                self.model.eval()
                self.is_loaded = True
                logger.info(
                    f"Successfully loaded text embedding model. "
                    f"Dimension: {self.embedding_dimension}, Device: {self.device}"
                )

            except Exception as e:
                error_msg = f"Failed to load text embedding model '{self.config.text_model_name}': {str(e)}"
                logger.error(error_msg)
                raise ModelLoadError(error_msg, cause=e) from e

    def encode_text(self, text: str) -> np.ndarray:
        """
        Encode a single text into an embedding vector.

        Args:
            text: Text content to encode

        Returns:
            Embedding vector (normalized when configured)

        Raises:
            EmbeddingError: If encoding fails or the text is empty
        """
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        if not self.is_loaded:
            self.load_model()

        try:
            embedding = self.model.encode(
                text,
                convert_to_numpy=True,
                normalize_embeddings=self.config.normalize_embeddings,
                show_progress_bar=False,
            )
            self._embedding_stats['total_embeddings'] += 1
            return embedding.astype(np.float32)

        except Exception as e:
            self._embedding_stats['failed_embeddings'] += 1
            error_msg = f"Failed to encode text: {str(e)}"
            logger.error(error_msg)
            raise EmbeddingError(error_msg, cause=e) from e

    async def embed(self, text: str) -> np.ndarray:
        return await asyncio.to_thread(self.encode_text, text)

    def get_embedding_stats(self) -> Dict[str, Any]:
        """Get embedding generation statistics."""
        return {
            **self._embedding_stats,
            'model_name': self.config.text_model_name,
            'device': self.device,
            'embedding_dimension': self.embedding_dimension,
            'is_loaded': self.is_loaded,
        }
