"""
Percentile rating scorer.

Converts feature vectors into 0-100 ratings by mid-rank percentile within
a cohort that shares a position group, weighted per position group.
"""

import math
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np

from scoutbase.metrics import TIER_FACTORS, MetricKey, RatingProfileSpec, Tier

FeatureVector = Mapping[MetricKey, float]
Distributions = Dict[MetricKey, np.ndarray]

NO_DATA_SCORE = 0.5


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def build_distributions(cohort: Iterable[FeatureVector]) -> Distributions:
    """
    Sorted value arrays per feature, from the cohort's non-missing values.

    Args:
        cohort: Feature vectors of one position group

    Returns:
        Mapping of metric key to a sorted numpy array
    """
    collected: Dict[MetricKey, List[float]] = {}
    for features in cohort:
        for key, value in features.items():
            if value is None:
                continue
            value = float(value)
            if math.isnan(value) or math.isinf(value):
                continue
            collected.setdefault(key, []).append(value)
    return {key: np.sort(np.asarray(values, dtype=float)) for key, values in collected.items()}


def percentile_rank(value: float, distribution: np.ndarray) -> float:
    """
    Mid-rank percentile of `value` within a sorted distribution.

    (count strictly below + 0.5 * count equal) / size; an empty
    distribution yields 0.5.
    """
    size = len(distribution)
    if size == 0:
        return NO_DATA_SCORE
    below = int(np.searchsorted(distribution, value, side="left"))
    at_or_below = int(np.searchsorted(distribution, value, side="right"))
    return (below + 0.5 * (at_or_below - below)) / size


def weighted_score(
    features: FeatureVector,
    distributions: Distributions,
    profile: RatingProfileSpec,
) -> float:
    """
    Weight-normalized mean of per-feature percentiles.

    Only features that carry a non-zero weight and are present in the
    vector count. Inverted features use 1 - percentile. With nothing to
    score the result is 0.5.
    """
    total = 0.0
    weight_sum = 0.0
    for key, weight in profile.weights.items():
        if not weight:
            continue
        value = features.get(key)
        if value is None or key not in distributions:
            continue
        pct = percentile_rank(float(value), distributions[key])
        if key in profile.invert:
            pct = 1.0 - pct
        total += weight * pct
        weight_sum += weight

    if weight_sum <= 0:
        return NO_DATA_SCORE
    return total / weight_sum


def score_to_rating(score: float, exponent: float = 0.9) -> int:
    """Map a 0-1 raw score to a 0-100 rating through a power curve."""
    clamped = min(1.0, max(0.0, score))
    rating = 100.0 * (clamped ** exponent)
    return max(0, min(100, round_half_up(rating)))


def tier_factor(tier: Optional[Tier]) -> float:
    return TIER_FACTORS[tier or Tier.BRONZE]


def level_score(rating: int, tier: Optional[Tier]) -> int:
    """Tier-adjusted cross-league level; an untiered competition counts as Bronze."""
    return max(0, min(100, round_half_up(rating * tier_factor(tier))))


def rate_cohort(
    cohort: Mapping[int, FeatureVector],
    profile: RatingProfileSpec,
    exponent: float = 0.9,
) -> Dict[int, int]:
    """
    Rate every member of one position-group cohort.

    Args:
        cohort: Mapping of player id to feature vector
        profile: Rating profile for the cohort's position group
        exponent: Rating curve exponent

    Returns:
        Mapping of player id to 0-100 rating
    """
    distributions = build_distributions(cohort.values())
    return {
        player_id: score_to_rating(weighted_score(features, distributions, profile), exponent)
        for player_id, features in cohort.items()
    }
