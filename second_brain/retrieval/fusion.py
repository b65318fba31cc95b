"""
Result fusion across retrieval strategies.

Candidate lists are tagged by the strategy that produced them and reduced
into one ranked list in a fixed precedence order:

1. ``dense``: seeds the result set.
2. ``expansion``: new chunks join at their own score, known chunks keep
   the higher of the two scores.
3. ``translated``: same max-take rule against the post-expansion set.
4. ``lexical``: known chunks are boosted, unseen chunks join at a fixed
   placeholder score.

Scores from several variants are never summed or averaged. Identity is the
vector-index chunk id; identical text under different ids stays distinct.
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from ..config import RetrievalConfig
from ..models import RetrievalCandidate

logger = logging.getLogger(__name__)


FUSION_ORDER = ("dense", "expansion", "translated", "lexical")


@dataclass
class FusionPolicy:
    """Tunable fusion constants."""
    keyword_boost: float = 1.1
    lexical_placeholder_score: float = 0.4
    low_confidence_threshold: float = 0.5
    score_cap: float = 1.0

    @classmethod
    def from_config(cls, config: RetrievalConfig) -> "FusionPolicy":
        return cls(
            keyword_boost=config.keyword_boost,
            lexical_placeholder_score=config.lexical_placeholder_score,
            low_confidence_threshold=config.low_confidence_threshold,
        )


Merged = Dict[str, RetrievalCandidate]


class ResultFuser:
    """Reduces tagged candidate lists into a single ranked, deduplicated list."""

    def __init__(self, policy: Optional[FusionPolicy] = None):
        self.policy = policy or FusionPolicy()
        self._reducers: Dict[str, Callable[[Merged, Sequence[RetrievalCandidate]], None]] = {
            "dense": self._merge_max,
            "expansion": self._merge_max,
            "translated": self._merge_max,
            "lexical": self._merge_lexical,
        }

    def fuse(
        self,
        tagged: Mapping[str, Sequence[RetrievalCandidate]],
        target_count: int
    ) -> List[RetrievalCandidate]:
        """
        Merge tagged candidate lists.

        Args:
            tagged: Candidate lists keyed by strategy tag
            target_count: Maximum length of the fused list

        Returns:
            Candidates sorted by score descending (ties keep first-seen
            order), truncated to ``target_count``
        """
        unknown = set(tagged) - set(FUSION_ORDER)
        if unknown:
            raise ValueError(f"Unknown candidate tags: {sorted(unknown)}")

        merged: Merged = {}
        for tag in FUSION_ORDER:
            candidates = tagged.get(tag)
            if candidates:
                self._reducers[tag](merged, candidates)

        ranked = sorted(merged.values(), key=lambda c: c.score, reverse=True)
        fused = ranked[:max(target_count, 0)]

        logger.debug(
            f"Fused {sum(len(v) for v in tagged.values())} candidates into "
            f"{len(merged)} unique, returning {len(fused)}"
        )
        return fused

    @staticmethod
    def _merge_max(merged: Merged, candidates: Sequence[RetrievalCandidate]) -> None:
        for candidate in candidates:
            existing = merged.get(candidate.embedding_id)
            if existing is None:
                merged[candidate.embedding_id] = replace(candidate)
            elif candidate.score > existing.score:
                existing.score = candidate.score

    def _merge_lexical(self, merged: Merged, candidates: Sequence[RetrievalCandidate]) -> None:
        boosted = set()
        for candidate in candidates:
            key = candidate.embedding_id
            existing = merged.get(key)
            if existing is None:
                merged[key] = replace(
                    candidate,
                    score=self.policy.lexical_placeholder_score,
                    origin="lexical",
                    lexical_match=True,
                )
                boosted.add(key)
            elif key not in boosted:
                existing.score = min(self.policy.score_cap, existing.score * self.policy.keyword_boost)
                existing.lexical_match = True
                boosted.add(key)

    def is_low_confidence(self, results: Sequence) -> bool:
        """True when nothing was found or the best score is under the threshold."""
        if not results:
            return True
        return max(result.score for result in results) < self.policy.low_confidence_threshold
