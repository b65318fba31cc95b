"""
Qdrant-based vector index for chunk embeddings.

Every point carries a payload snapshot of its document taken at ingestion
(owner, document id, title, source type, created-at, tags). Searches are
always filtered by owner; the payload is only a hint and is refreshed from
the metadata store before evidence is built.
"""

import logging
from typing import Any, Dict, List, Optional

import numpy as np

try:
    from qdrant_client import AsyncQdrantClient
    from qdrant_client.http import models
except ImportError:
    raise ImportError(
        "Qdrant client not installed. Install with: pip install qdrant-client"
    )

from .base import Vector, VectorIndex
from ...config import EmbeddingConfig, StorageConfig
from ...errors import VectorIndexError
from ...models import RetrievalCandidate


logger = logging.getLogger(__name__)


def _to_list(vector: Vector) -> List[float]:
    if isinstance(vector, np.ndarray):
        return vector.astype(np.float32).tolist()
    return [float(value) for value in vector]


class QdrantVectorStore(VectorIndex):
    """
    Qdrant-based vector index.

    Features:
    - Local on-disk storage or remote server
    - Cosine similarity search
    - Payload filtering (owner, document, tags, source type, title, dates)
    - Collection created on first search when missing
    """

    def __init__(
        self,
        storage_config: StorageConfig,
        embedding_config: EmbeddingConfig,
        client: Optional[AsyncQdrantClient] = None
    ):
        """
        Initialize Qdrant vector store.

        Args:
            storage_config: Storage configuration
            embedding_config: Embedding configuration (vector size)
            client: Optional pre-built async client
        """
        self.storage_config = storage_config
        self.embedding_config = embedding_config
        self.collection_name = storage_config.collection_name
        self._collection_ready = False

        if client is not None:
            self.client = client
            self.location = "injected client"
        elif storage_config.qdrant_url:
            self.client = AsyncQdrantClient(
                url=storage_config.qdrant_url,
                api_key=storage_config.qdrant_api_key
            )
            self.location = storage_config.qdrant_url
        else:
            self.client = AsyncQdrantClient(path=storage_config.qdrant_path)
            self.location = storage_config.qdrant_path

        logger.info(f"QdrantVectorStore initialized with database at: {self.location}")

    async def ensure_collection(self) -> None:
        """Create the collection if it doesn't exist."""
        try:
            if await self.client.collection_exists(self.collection_name):
                logger.info(f"Collection {self.collection_name} already exists")
                self._collection_ready = True
                return

            logger.info(f"Creating collection: {self.collection_name}")
            await self.client.create_collection(
                collection_name=self.collection_name,
                vectors_config=models.VectorParams(
                    size=self.embedding_config.embedding_dimension,
                    distance=models.Distance.COSINE
                )
            )
            self._collection_ready = True
        except Exception as e:
            error_msg = f"Error ensuring collection exists: {e}"
            logger.error(error_msg)
            raise VectorIndexError(error_msg, cause=e) from e

    async def search(
        self,
        vector: Vector,
        top_k: int,
        query_filter: Optional[models.Filter] = None
    ) -> List[RetrievalCandidate]:
        """
        Search for the chunks most similar to a query vector.

        Args:
            vector: Query embedding
            top_k: Number of results to return
            query_filter: Payload filter

        Returns:
            Candidates ordered by similarity

        Raises:
            VectorIndexError: If the search fails
        """
        if not self._collection_ready:
            await self.ensure_collection()

        try:
            response = await self.client.query_points(
                collection_name=self.collection_name,
                query=_to_list(vector),
                query_filter=query_filter,
                limit=top_k,
                with_payload=True
            )
        except Exception as e:
            error_msg = f"Error searching vector store: {e}"
            logger.error(error_msg)
            raise VectorIndexError(error_msg, cause=e) from e

        results = []
        for hit in response.points:
            payload = hit.payload or {}
            created_at = payload.get("created_at")
            results.append(
                RetrievalCandidate(
                    embedding_id=str(hit.id),
                    score=float(hit.score),
                    document_id=payload.get("document_id"),
                    source_type=payload.get("source_type"),
                    title=payload.get("title"),
                    created_at=str(created_at) if created_at else None,
                    tags=list(payload.get("tags") or []),
                )
            )

        logger.debug(f"Search returned {len(results)} results (top_k={top_k})")
        return results

    async def get_collection_info(self) -> Dict[str, Any]:
        """Get information about the vector store collection."""
        try:
            collection_info = await self.client.get_collection(self.collection_name)

            return {
                "collection_name": self.collection_name,
                "points_count": collection_info.points_count,
                "vector_size": collection_info.config.params.vectors.size,
                "distance_metric": str(collection_info.config.params.vectors.distance),
                "status": str(collection_info.status),
                "location": self.location
            }

        except Exception as e:
            logger.error(f"Error getting collection info: {e}")
            return {}

    async def close(self) -> None:
        await self.client.close()
