"""
Retrieval orchestration for the Second Brain assistant.

Provides query classification, dense, per-document and keyword retrieval,
result fusion and evidence assembly, tied together by RetrievalPipeline.
"""

from .context_assembler import ContextAssembler, format_citation
from .coverage_retriever import CoverageRetriever
from .dense_retriever import DenseRetriever, build_vector_filter
from .fusion import FUSION_ORDER, FusionPolicy, ResultFuser
from .lexical_retriever import LexicalRetriever, extract_keywords
from .pipeline import RetrievalPipeline, create_pipeline
from .query_classifier import PatternQueryClassifier, QueryClassifier, resolve_target_count
from .vectordb import QdrantVectorStore, VectorIndex

__all__ = [
    'ContextAssembler',
    'CoverageRetriever',
    'DenseRetriever',
    'FUSION_ORDER',
    'FusionPolicy',
    'LexicalRetriever',
    'PatternQueryClassifier',
    'QdrantVectorStore',
    'QueryClassifier',
    'ResultFuser',
    'RetrievalPipeline',
    'VectorIndex',
    'build_vector_filter',
    'create_pipeline',
    'extract_keywords',
    'format_citation',
    'resolve_target_count',
]
