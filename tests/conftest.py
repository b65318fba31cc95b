"""
Shared fixtures for the Second Brain test suite.
"""

from unittest.mock import AsyncMock

import pytest

from second_brain.config import LLMConfig, RetrievalConfig
from second_brain.llm.base import TextGenerator
from second_brain.llm.query_rewriter import QueryExpander, QueryTranslator
from second_brain.retrieval.pipeline import RetrievalPipeline
from second_brain.storage.metadata_store import SQLiteMetadataStore

from tests.fakes import FakeEmbedder, FakeVectorIndex


@pytest.fixture
def retrieval_config():
    return RetrievalConfig()


@pytest.fixture
def llm_config():
    return LLMConfig()


@pytest.fixture
def metadata_store(tmp_path):
    """SQLite metadata store on a temporary database file."""
    return SQLiteMetadataStore(str(tmp_path / "metadata.db"))


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def vector_index(embedder):
    return FakeVectorIndex(embedder)


@pytest.fixture
def generator():
    """Text generator double; returns an empty completion unless configured."""
    mock_generator = AsyncMock(spec=TextGenerator)
    mock_generator.generate.return_value = ""
    mock_generator.chat.return_value = "Generated answer [1]"
    return mock_generator


@pytest.fixture
def pipeline(embedder, vector_index, metadata_store, generator, llm_config, retrieval_config):
    return RetrievalPipeline(
        embedder=embedder,
        vector_index=vector_index,
        metadata_store=metadata_store,
        translator=QueryTranslator(generator, llm_config),
        expander=QueryExpander(generator, llm_config, retrieval_config),
        config=retrieval_config,
    )
