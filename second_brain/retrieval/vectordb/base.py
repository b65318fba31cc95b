"""
Base interface for vector index backends.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Union

import numpy as np
from qdrant_client.http import models

from ...models import RetrievalCandidate


Vector = Union[np.ndarray, Sequence[float]]


class VectorIndex(ABC):
    """Similarity search over chunk embeddings, scoped by payload filters."""

    @abstractmethod
    async def search(
        self,
        vector: Vector,
        top_k: int,
        query_filter: Optional[models.Filter] = None
    ) -> List[RetrievalCandidate]:
        """
        Return the ``top_k`` most similar chunks matching ``query_filter``.

        Raises:
            VectorIndexError: If the index cannot be queried
        """
        pass
