"""
Retrieval orchestration.

Turns a question into ranked, deduplicated evidence:

    classify -> (translate | expand) -> dense + lexical retrieval
             -> fusion -> context assembly

or, for multi-document and broad questions, per-document coverage in
place of the dense/lexical/fusion steps. Each call is a single pass over
request-local state; collaborators are injected and shared between
requests.
"""

import asyncio
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .context_assembler import ContextAssembler
from .coverage_retriever import CoverageRetriever
from .dense_retriever import DenseRetriever
from .fusion import FusionPolicy, ResultFuser
from .lexical_retriever import LexicalRetriever
from .query_classifier import PatternQueryClassifier, QueryClassifier, resolve_target_count
from .vectordb.base import VectorIndex
from .vectordb.qdrant_vector_store import QdrantVectorStore
from ..config import RetrievalConfig, SystemConfig
from ..embeddings.base import EmbeddingService
from ..embeddings.text_embedding_generator import SentenceTransformerEmbeddingGenerator
from ..errors import EmbeddingError
from ..llm.base import TextGenerator
from ..llm.ollama_client import OllamaClient
from ..llm.query_rewriter import QueryExpander, QueryTranslator
from ..models import (
    QueryIntent,
    RetrievalCandidate,
    RetrievalMode,
    RetrievalRequest,
    RetrievalResponse,
)
from ..storage.base import MetadataStore
from ..storage.metadata_store import SQLiteMetadataStore

logger = logging.getLogger(__name__)


class RetrievalPipeline:
    """
    Question-to-evidence pipeline.

    Fatal failures (primary query embedding, vector index, metadata store)
    propagate as PipelineError subclasses. Translation, expansion, variant
    embeddings and keyword search degrade to less signal.
    """

    def __init__(
        self,
        embedder: EmbeddingService,
        vector_index: VectorIndex,
        metadata_store: MetadataStore,
        translator: Optional[QueryTranslator] = None,
        expander: Optional[QueryExpander] = None,
        classifier: Optional[QueryClassifier] = None,
        fuser: Optional[ResultFuser] = None,
        config: Optional[RetrievalConfig] = None
    ):
        """
        Initialize the pipeline with already-configured collaborators.

        Args:
            embedder: Query embedding service
            vector_index: Vector index to search
            metadata_store: Store for chunk text, documents and keyword search
            translator: Optional query translator (skipped when None)
            expander: Optional query expander (skipped when None)
            classifier: Query classifier (pattern-based by default)
            fuser: Result fuser (policy from ``config`` by default)
            config: Retrieval configuration
        """
        self.config = config or RetrievalConfig()
        self.embedder = embedder
        self.metadata_store = metadata_store
        self.translator = translator
        self.expander = expander
        self.classifier = classifier or PatternQueryClassifier(self.config)
        self.fuser = fuser or ResultFuser(FusionPolicy.from_config(self.config))

        self.dense_retriever = DenseRetriever(vector_index)
        self.coverage_retriever = CoverageRetriever(self.dense_retriever, metadata_store, self.config)
        self.lexical_retriever = LexicalRetriever(metadata_store, self.config)
        self.context_assembler = ContextAssembler(metadata_store, self.config.excerpt_length)

    async def retrieve(self, request: RetrievalRequest) -> RetrievalResponse:
        """
        Retrieve evidence for a request.

        Args:
            request: Owner, question and filters

        Returns:
            RetrievalResponse with ordered evidence, the low-confidence flag
            and any selected documents that no longer exist

        Raises:
            ValueError: If the owner or query is missing
            PipelineError: On a fatal collaborator failure
        """
        query = (request.query_text or "").strip()
        if not request.owner_id:
            raise ValueError("owner_id is required")
        if not query:
            raise ValueError("query_text must not be empty")

        filters = request.filters
        if filters.result_count is not None and filters.result_count <= 0:
            raise ValueError("result_count must be positive")

        intent = self.classifier.classify(query)
        target_count = resolve_target_count(intent, filters)
        logger.info(
            f"Processing query for user {request.owner_id}: '{query[:100]}' "
            f"(words={intent.word_count}, broad={intent.is_broad}, target={target_count})"
        )

        document_ids = filters.target_document_ids()
        deleted: List[str] = []
        if document_ids:
            deleted = await self.metadata_store.find_missing_documents(request.owner_id, document_ids)
            if deleted:
                logger.warning(f"Selected documents no longer exist: {deleted}")
                document_ids = [doc_id for doc_id in document_ids if doc_id not in deleted]
            if not document_ids:
                return RetrievalResponse(
                    query=query,
                    low_confidence=True,
                    deleted_document_ids=deleted,
                    target_count=target_count,
                )

        if CoverageRetriever.should_activate(intent, document_ids):
            response = await self._retrieve_coverage(request, query, document_ids, target_count)
        else:
            response = await self._retrieve_standard(request, query, intent, document_ids, target_count)

        response.deleted_document_ids = deleted
        logger.info(
            f"Retrieved {len(response.evidence)} evidence items "
            f"(mode={response.mode.value}, low_confidence={response.low_confidence})"
        )
        return response

    async def _embed_query(self, text: str) -> np.ndarray:
        try:
            return await self.embedder.embed(text)
        except EmbeddingError:
            raise
        except Exception as e:
            error_msg = f"Query embedding failed: {str(e)}"
            logger.error(error_msg)
            raise EmbeddingError(error_msg, cause=e) from e

    async def _embed_variants(self, texts: Sequence[str]) -> List[Tuple[str, np.ndarray]]:
        """Embed query variants; a variant that fails to embed is skipped."""
        if not texts:
            return []
        results = await asyncio.gather(
            *(self.embedder.embed(text) for text in texts),
            return_exceptions=True
        )
        embedded = []
        for text, result in zip(texts, results):
            if isinstance(result, Exception):
                logger.warning(f"Skipping query variant '{text[:50]}': embedding failed: {result}")
                continue
            embedded.append((text, result))
        return embedded

    async def _translate(self, query: str) -> Tuple[str, bool]:
        if self.translator is None:
            return query, False
        return await self.translator.translate(query)

    async def _expand(self, query: str, word_count: int, translated: bool) -> List[str]:
        if self.expander is None:
            return []
        return await self.expander.expand(query, word_count, translated)

    async def _retrieve_standard(
        self,
        request: RetrievalRequest,
        query: str,
        intent: QueryIntent,
        document_ids: Sequence[str],
        target_count: int
    ) -> RetrievalResponse:
        owner_id = request.owner_id
        filters = request.filters
        doc_filter = list(document_ids) if document_ids else None

        primary_vector, (translated_query, translated) = await asyncio.gather(
            self._embed_query(query),
            self._translate(query),
        )
        expansions = await self._expand(query, intent.word_count, translated)

        variants = list(expansions)
        if translated:
            variants.append(translated_query)
        embedded = dict(await self._embed_variants(variants))

        expansion_vectors = [embedded[text] for text in expansions if text in embedded]
        translated_vector = embedded.get(translated_query) if translated else None
        expansion_top_k = max(1, target_count // 2)

        async def search_translated() -> List[RetrievalCandidate]:
            if translated_vector is None:
                return []
            return await self.dense_retriever.retrieve(
                translated_vector, target_count, owner_id, filters, doc_filter, origin="translated"
            )

        dense, expansion_results, translated_results, lexical = await asyncio.gather(
            self.dense_retriever.retrieve(
                primary_vector, target_count, owner_id, filters, doc_filter, origin="dense"
            ),
            self.dense_retriever.retrieve_many(
                expansion_vectors, expansion_top_k, owner_id, filters, doc_filter, origin="expansion"
            ),
            search_translated(),
            self.lexical_retriever.retrieve(owner_id, query, doc_filter, filters),
        )

        fused = self.fuser.fuse(
            {
                "dense": dense,
                "expansion": [c for results in expansion_results for c in results],
                "translated": translated_results,
                "lexical": lexical,
            },
            target_count,
        )

        evidence, sources = await self.context_assembler.assemble(owner_id, fused)
        return RetrievalResponse(
            query=query,
            evidence=evidence,
            sources=sources,
            low_confidence=self.fuser.is_low_confidence(evidence),
            mode=RetrievalMode.STANDARD,
            target_count=target_count,
            translated_query=translated_query if translated else None,
            expansions=expansions,
        )

    async def _retrieve_coverage(
        self,
        request: RetrievalRequest,
        query: str,
        document_ids: Sequence[str],
        target_count: int
    ) -> RetrievalResponse:
        owner_id = request.owner_id

        primary_vector, targets = await asyncio.gather(
            self._embed_query(query),
            self.coverage_retriever.resolve_targets(owner_id, document_ids),
        )
        if not targets:
            logger.info(f"No searchable documents for user {owner_id}")

        candidates = await self.coverage_retriever.retrieve(
            primary_vector, owner_id, targets, target_count, request.filters
        )

        evidence, sources = await self.context_assembler.assemble(owner_id, candidates)
        return RetrievalResponse(
            query=query,
            evidence=evidence,
            sources=sources,
            low_confidence=self.fuser.is_low_confidence(evidence),
            mode=RetrievalMode.COVERAGE,
            target_count=target_count,
        )


def create_pipeline(
    config: SystemConfig,
    generator: Optional[TextGenerator] = None,
    metadata_store: Optional[MetadataStore] = None
) -> RetrievalPipeline:
    """
    Build a pipeline wired to the local embedding model, Qdrant, SQLite and Ollama.

    Args:
        config: System configuration
        generator: Optional shared text generator (an OllamaClient by default)
        metadata_store: Optional shared metadata store

    Returns:
        Configured RetrievalPipeline
    """
    generator = generator or OllamaClient(config.llm)
    return RetrievalPipeline(
        embedder=SentenceTransformerEmbeddingGenerator(config.embedding),
        vector_index=QdrantVectorStore(config.storage, config.embedding),
        metadata_store=metadata_store or SQLiteMetadataStore(config.storage.metadata_db_path),
        translator=QueryTranslator(generator, config.llm),
        expander=QueryExpander(generator, config.llm, config.retrieval),
        config=config.retrieval,
    )
