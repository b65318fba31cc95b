"""
Keyword retrieval over chunk text in the metadata store.

Catches literal-term matches (names, codes, rare words) that embedding
similarity can miss. Lexical hits carry no similarity score of their own;
the fuser decides how they rank.
"""

import logging
import re
from typing import List, Optional, Sequence

from ..config import RetrievalConfig
from ..models import RetrievalCandidate, RetrievalFilters
from ..storage.base import MetadataStore

logger = logging.getLogger(__name__)


WORD_PATTERN = re.compile(r"[\w']+")

STOP_WORDS = frozenset({
    'about', 'above', 'after', 'again', 'against', 'also', 'any', 'are', 'because',
    'been', 'before', 'being', 'below', 'between', 'both', 'but', 'can', 'could',
    'did', 'does', 'doing', 'down', 'during', 'each', 'few', 'find', 'for', 'from',
    'further', 'give', 'have', 'having', 'here', 'how', 'into', 'its', 'just', 'know',
    'like', 'many', 'more', 'most', 'much', 'must', 'need', 'once', 'only', 'other',
    'ought', 'ours', 'ourselves', 'over', 'please', 'same', 'say', 'said', 'says',
    'shall', 'should', 'show', 'some', 'such', 'tell', 'than', 'that', 'the', 'their',
    'theirs', 'them', 'themselves', 'then', 'there', 'these', 'they', 'this', 'those',
    'through', 'under', 'until', 'very', 'want', 'was', 'were', 'what', 'when',
    'where', 'which', 'while', 'whom', 'whose', 'will', 'with', 'within', 'without',
    'would', 'your', 'yours', 'yourself', 'yourselves', "what's", "i'm", "don't",
    "doesn't", "didn't",
})


def extract_keywords(query: str, min_length: int = 4) -> List[str]:
    """
    Lowercased query words worth matching literally.

    Args:
        query: Raw query text
        min_length: Minimum keyword length in characters

    Returns:
        Unique keywords in query order
    """
    keywords = []
    for word in WORD_PATTERN.findall(query.lower()):
        word = word.strip("'")
        if len(word) < min_length or word in STOP_WORDS or word in keywords:
            continue
        keywords.append(word)
    return keywords


class LexicalRetriever:
    """Case-insensitive substring search for query keywords."""

    def __init__(self, metadata_store: MetadataStore, config: Optional[RetrievalConfig] = None):
        self.metadata_store = metadata_store
        self.config = config or RetrievalConfig()

    async def retrieve(
        self,
        owner_id: str,
        query: str,
        document_ids: Optional[Sequence[str]] = None,
        filters: Optional[RetrievalFilters] = None
    ) -> List[RetrievalCandidate]:
        """
        Find chunks containing any keyword of the query.

        Only chunks of documents matching ``filters`` are returned.

        Failures are logged and yield no results.
        """
        keywords = extract_keywords(query, self.config.lexical_min_word_length)
        if not keywords:
            logger.debug("No keywords extracted, skipping lexical retrieval")
            return []

        try:
            chunks = await self.metadata_store.keyword_search(
                owner_id,
                keywords,
                document_ids=list(document_ids) if document_ids else None,
                limit=self.config.lexical_limit,
                filters=filters,
            )
        except Exception as e:
            logger.warning(f"Keyword search failed, continuing without lexical results: {e}")
            return []

        logger.debug(f"Keyword search for {keywords} returned {len(chunks)} chunks")
        return [
            RetrievalCandidate(
                embedding_id=chunk.embedding_id,
                score=0.0,
                document_id=chunk.document_id,
                origin="lexical",
                lexical_match=True,
            )
            for chunk in chunks[:self.config.lexical_limit]
        ]
