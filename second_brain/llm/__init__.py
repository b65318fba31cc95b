"""
Local language model integration.

Provides the Ollama client, query translation and expansion, and grounded
answer generation.
"""

from .base import GenerationConfig, TextGenerator
from .ollama_client import OllamaClient, OllamaModelInfo
from .query_rewriter import QueryExpander, QueryTranslator, is_likely_target_language
from .response_generator import ResponseGenerator

__all__ = [
    'GenerationConfig',
    'OllamaClient',
    'OllamaModelInfo',
    'QueryExpander',
    'QueryTranslator',
    'ResponseGenerator',
    'TextGenerator',
    'is_likely_target_language',
]
