"""
Fuzzy Matching Utility Module
Uses RapidFuzz edit-distance ratios on normalized names.
"""
from typing import Hashable, List, Mapping, Optional, Tuple
from rapidfuzz import process
from rapidfuzz.distance import Levenshtein
import logging

from scoutbase.services.name_normalizer import normalize_name

logger = logging.getLogger(__name__)


class FuzzyMatcher:
    """
    Similarity helpers on a 0.0-1.0 scale.

    The ratio is 1 - levenshtein_distance / max(len(a), len(b)). Pairs whose
    lengths differ by more than half the longer string score 0 outright.
    """

    @staticmethod
    def similarity(target: str, candidate: str, normalize: bool = False) -> float:
        """
        Calculate the edit-distance similarity between two strings.

        Args:
            target: Target string to match
            candidate: Candidate string to compare
            normalize: Whether to normalize both strings first

        Returns:
            Similarity between 0.0 and 1.0
        """
        if normalize:
            target = normalize_name(target)
            candidate = normalize_name(candidate)

        if target == candidate:
            return 1.0
        if not target or not candidate:
            return 0.0

        longest = max(len(target), len(candidate))
        if abs(len(target) - len(candidate)) > longest * 0.5:
            return 0.0

        return Levenshtein.normalized_similarity(target, candidate)

    @staticmethod
    def find_best_matches(
        target: str,
        choices: Mapping[Hashable, str],
        threshold: float = 0.8,
        limit: Optional[int] = None,
    ) -> List[Tuple[Hashable, float]]:
        """
        Find the choices most similar to a normalized target.

        Args:
            target: Normalized target string
            choices: Mapping of key (e.g. player id) to normalized string
            threshold: Minimum similarity, exclusive (0-1 scale)
            limit: Maximum number of results to return (None for all)

        Returns:
            List of (key, similarity) tuples, sorted by similarity (descending)
        """
        if not choices:
            return []

        results = process.extract(
            target,
            choices,
            scorer=_similarity_scorer,
            limit=limit,
        )
        return [(key, score) for _, score, key in results if score > threshold]


def _similarity_scorer(target: str, candidate: str, **kwargs) -> float:
    return FuzzyMatcher.similarity(target, candidate)
