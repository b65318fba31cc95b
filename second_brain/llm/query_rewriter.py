"""
Query rewriting with the local language model.

Two recall strategies live here and are used as alternatives:
cross-language search through a translated query, and paraphrase
expansion of short queries. Both are optional stages; any failure leaves
the original query as the only variant.
"""

import logging
import re
from typing import List, Optional, Tuple

from .base import GenerationConfig, TextGenerator
from ..config import LLMConfig, RetrievalConfig

logger = logging.getLogger(__name__)


# Devanagari, CJK, Arabic, Bengali, Gurmukhi, Cyrillic, Hiragana, Katakana
NON_LATIN_PATTERN = re.compile(
    "[\\u0900-\\u097F\\u4E00-\\u9FFF\\u0600-\\u06FF\\u0980-\\u09FF"
    "\\u0A00-\\u0A7F\\u0400-\\u04FF\\u3040-\\u309F\\u30A0-\\u30FF]"
)
ASCII_LETTER_PATTERN = re.compile(r"[a-zA-Z]")
LANGUAGE_SAMPLE_CHARS = 300
ASCII_RATIO_THRESHOLD = 0.8

LIST_MARKER_PATTERN = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s*")


def is_likely_target_language(text: str) -> bool:
    """
    Cheap check for text that is probably already in the target language.

    Only used to skip the translation call.
    """
    sample = text[:LANGUAGE_SAMPLE_CHARS]

    if NON_LATIN_PATTERN.search(sample):
        return False

    total_letters = sum(1 for ch in sample if ch.isalpha())
    if total_letters == 0:
        return True

    ascii_letters = len(ASCII_LETTER_PATTERN.findall(sample))
    return ascii_letters / total_letters > ASCII_RATIO_THRESHOLD


class QueryTranslator:
    """Produces a target-language variant of a query for cross-language recall."""

    def __init__(self, generator: TextGenerator, llm_config: LLMConfig):
        self.generator = generator
        self.llm_config = llm_config

    async def translate(self, query: str) -> Tuple[str, bool]:
        """
        Translate a query into the target language when needed.

        Args:
            query: Raw query text

        Returns:
            Tuple of (query variant, whether translation occurred)
        """
        if is_likely_target_language(query):
            logger.debug("Query appears to be in the target language, skipping translation")
            return query, False

        config = GenerationConfig(
            temperature=self.llm_config.translation_temperature,
            max_tokens=self.llm_config.translation_max_tokens,
        )
        system = (
            f"Translate the following text to {self.llm_config.target_language}. "
            "Return ONLY the translation, nothing else."
        )

        try:
            translated = await self.generator.generate(
                query,
                config=config,
                model=self.llm_config.rewrite_model,
                system=system,
            )
        except Exception as e:
            logger.warning(f"Query translation failed, using original query: {e}")
            return query, False

        translated = (translated or "").strip().strip('"').strip()
        if not translated or translated.lower() == query.strip().lower():
            return query, False

        logger.info(f"Query translated: '{query}' -> '{translated}'")
        return translated, True


class QueryExpander:
    """Generates short paraphrases of a query to widen semantic recall."""

    def __init__(
        self,
        generator: TextGenerator,
        llm_config: LLMConfig,
        retrieval_config: Optional[RetrievalConfig] = None
    ):
        self.generator = generator
        self.llm_config = llm_config
        self.retrieval_config = retrieval_config or RetrievalConfig()

    def should_expand(self, word_count: int, translated: bool) -> bool:
        return word_count <= self.retrieval_config.expansion_max_words and not translated

    async def expand(self, query: str, word_count: int, translated: bool = False) -> List[str]:
        """
        Generate alternative phrasings of a short query.

        Args:
            query: Original query text
            word_count: Number of words in the query
            translated: Whether a translated variant is already being searched

        Returns:
            Up to ``max_expansions`` paraphrases (possibly empty)
        """
        if not self.should_expand(word_count, translated):
            return []

        max_expansions = self.retrieval_config.max_expansions
        prompt = (
            f"Write {max_expansions} alternative phrasings of the search query below. "
            "Keep each one short and keep the original meaning. "
            "Return one phrasing per line, with no numbering or commentary.\n\n"
            f"Query: {query}"
        )
        config = GenerationConfig(
            temperature=self.llm_config.expansion_temperature,
            max_tokens=self.llm_config.expansion_max_tokens,
        )

        try:
            response = await self.generator.generate(
                prompt,
                config=config,
                model=self.llm_config.rewrite_model,
            )
        except Exception as e:
            logger.warning(f"Query expansion failed, continuing without expansions: {e}")
            return []

        expansions = self.parse_expansions(response or "", query)
        logger.info(f"Generated {len(expansions)} query expansions for: {query[:50]}")
        return expansions

    def parse_expansions(self, response: str, query: str) -> List[str]:
        """Extract clean, unique paraphrases from a model response."""
        seen = {query.strip().lower()}
        expansions = []

        for line in response.splitlines():
            line = LIST_MARKER_PATTERN.sub("", line).strip().strip('"\'').strip()
            if not line or len(line) >= self.retrieval_config.max_expansion_chars:
                continue
            if line.lower().startswith(("here are", "alternative phrasings")):
                continue

            key = line.lower()
            if key in seen:
                continue
            seen.add(key)
            expansions.append(line)

            if len(expansions) >= self.retrieval_config.max_expansions:
                break

        return expansions
