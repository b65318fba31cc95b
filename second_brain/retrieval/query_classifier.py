"""
Query classification for adaptive retrieval breadth.

A classifier decides how many chunks a question should retrieve and
whether it asks about the knowledge base as a whole (a "broad" query),
which switches retrieval to per-document coverage.
"""

import re
from abc import ABC, abstractmethod
from typing import Optional

from ..config import RetrievalConfig
from ..models import QueryIntent, RetrievalFilters


INTENT_WORDS = (
    r"compare|comparison|contrast|summari[sz]e|summary|overview|"
    r"differences?|similarities|common|across|all"
)
DOCUMENT_NOUNS = (
    r"documents?|docs|files?|notes|sources|content|uploads|recordings|pdfs|everything"
)

BROAD_QUERY_PATTERNS = [
    re.compile(rf"\b(?:{INTENT_WORDS})\b.*\b(?:{DOCUMENT_NOUNS})\b", re.IGNORECASE),
    re.compile(rf"\b(?:{DOCUMENT_NOUNS})\b.*\b(?:{INTENT_WORDS})\b", re.IGNORECASE),
    re.compile(
        r"\b(?:all (?:of )?(?:my |the )?(?:documents|docs|files|notes|sources)"
        r"|everything|every (?:document|file)|each (?:document|file)"
        r"|across my (?:documents|files|notes))\b",
        re.IGNORECASE,
    ),
]


def count_words(query: str) -> int:
    return len(query.split())


class QueryClassifier(ABC):
    """Pluggable classifier turning a raw question into a QueryIntent."""

    @abstractmethod
    def classify(self, query: str) -> QueryIntent:
        pass


class PatternQueryClassifier(QueryClassifier):
    """
    Rule-based classifier.

    Short questions are usually keyword lookups that benefit from more
    candidates; long questions are specific. Broad questions pair an
    intent word (compare, summarize, overview...) with a document noun in
    either order, or use an explicit phrase such as "all documents".
    """

    def __init__(self, config: Optional[RetrievalConfig] = None):
        self.config = config or RetrievalConfig()

    def is_broad(self, query: str) -> bool:
        return any(pattern.search(query) for pattern in BROAD_QUERY_PATTERNS)

    def adaptive_count(self, word_count: int) -> int:
        if word_count <= self.config.short_query_words:
            return self.config.short_query_count
        if word_count <= self.config.medium_query_words:
            return self.config.medium_query_count
        return self.config.long_query_count

    def classify(self, query: str) -> QueryIntent:
        word_count = count_words(query)
        broad = self.is_broad(query)
        count = self.config.broad_query_count if broad else self.adaptive_count(word_count)
        return QueryIntent(word_count=word_count, is_broad=broad, adaptive_count=count)


def resolve_target_count(intent: QueryIntent, filters: Optional[RetrievalFilters] = None) -> int:
    """Caller-supplied result count wins over the adaptive value."""
    if filters is not None and filters.result_count:
        return filters.result_count
    return intent.adaptive_count
