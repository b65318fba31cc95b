"""
Exception hierarchy for the retrieval pipeline.

Degradable stages (translation, expansion, lexical search) catch their own
failures and continue with less signal. The errors below are the fatal
ones: they propagate to the caller and fail the request, so that a broken
collaborator is never reported as "no relevant information".
"""

from typing import Optional


class PipelineError(Exception):
    """Base exception for failures that abort a retrieval request."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.message = message
        self.cause = cause
        super().__init__(self.message)


class EmbeddingError(PipelineError):
    """Exception raised when a query embedding cannot be produced."""
    pass


class ModelLoadError(EmbeddingError):
    """Exception raised when the embedding model cannot be loaded."""
    pass


class VectorIndexError(PipelineError):
    """Exception raised when the vector index search fails."""
    pass


class MetadataStoreError(PipelineError):
    """Exception raised when the metadata store cannot be read or written."""
    pass


class GenerationError(PipelineError):
    """Exception raised when the language model server call fails."""
    pass
