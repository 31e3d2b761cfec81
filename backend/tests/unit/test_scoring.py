"""
Unit tests for the percentile rating scorer and rating profiles.
"""

import numpy as np
import pytest
from scoutbase.exceptions import ValidationError
from scoutbase.metrics import (
    DEFAULT_RATING_PROFILES,
    MetricKey,
    PositionGroup,
    RatingProfileSpec,
    Tier,
)
from scoutbase.services.scoring import (
    build_distributions,
    level_score,
    percentile_rank,
    rate_cohort,
    round_half_up,
    score_to_rating,
    weighted_score,
)


class TestPercentileRank:
    def test_single_equal_value_is_midpoint(self):
        assert percentile_rank(5.0, np.array([5.0])) == 0.5

    def test_mid_rank_with_ties(self):
        distribution = np.array([1.0, 2.0, 2.0, 4.0])
        # 1 below, 2 equal -> (1 + 1) / 4
        assert percentile_rank(2.0, distribution) == pytest.approx(0.5)

    def test_edges(self):
        distribution = np.array([1.0, 2.0, 3.0, 4.0])
        assert percentile_rank(0.0, distribution) == 0.0
        assert percentile_rank(5.0, distribution) == 1.0

    def test_monotonic_and_bounded(self):
        distribution = np.sort(np.array([0.1, 0.4, 0.4, 0.9, 1.3, 2.0]))
        ranks = [percentile_rank(v, distribution) for v in np.linspace(-1, 3, 41)]
        assert all(0.0 <= r <= 1.0 for r in ranks)
        assert all(a <= b for a, b in zip(ranks, ranks[1:]))

    def test_empty_distribution(self):
        assert percentile_rank(1.0, np.array([])) == 0.5


class TestBuildDistributions:
    def test_skips_missing_and_non_finite(self):
        cohort = [
            {MetricKey.GOALS_PER90: 0.5},
            {MetricKey.GOALS_PER90: None},
            {MetricKey.GOALS_PER90: float("nan")},
            {MetricKey.GOALS_PER90: float("inf")},
            {MetricKey.GOALS_PER90: 0.1, MetricKey.ASSISTS_PER90: 0.2},
        ]
        distributions = build_distributions(cohort)
        assert distributions[MetricKey.GOALS_PER90].tolist() == [0.1, 0.5]
        assert distributions[MetricKey.ASSISTS_PER90].tolist() == [0.2]


class TestWeightedScore:
    def test_all_zero_weights_yield_midpoint(self):
        profile = RatingProfileSpec(
            PositionGroup.MID, weights={MetricKey.GOALS_PER90: 0.0, MetricKey.ASSISTS_PER90: 0.0}
        )
        cohort = {
            1: {MetricKey.GOALS_PER90: 0.9, MetricKey.ASSISTS_PER90: 0.1},
            2: {MetricKey.GOALS_PER90: 0.1, MetricKey.ASSISTS_PER90: 0.5},
            3: {MetricKey.GOALS_PER90: 0.4},
        }
        distributions = build_distributions(cohort.values())
        for features in cohort.values():
            assert weighted_score(features, distributions, profile) == 0.5

    def test_no_features_yield_midpoint(self):
        profile = DEFAULT_RATING_PROFILES[PositionGroup.ATT]
        assert weighted_score({}, {}, profile) == 0.5

    def test_inverted_metric(self):
        profile = RatingProfileSpec(
            PositionGroup.DEF,
            weights={MetricKey.CARDS_PENALTY_PER90: 1.0},
            invert=frozenset({MetricKey.CARDS_PENALTY_PER90}),
        )
        cohort = {1: {MetricKey.CARDS_PENALTY_PER90: 0.0}, 2: {MetricKey.CARDS_PENALTY_PER90: 1.0}}
        distributions = build_distributions(cohort.values())

        assert weighted_score(cohort[1], distributions, profile) == pytest.approx(0.75)
        assert weighted_score(cohort[2], distributions, profile) == pytest.approx(0.25)

    def test_only_available_features_count(self):
        profile = RatingProfileSpec(
            PositionGroup.ATT, weights={MetricKey.GOALS_PER90: 1.0, MetricKey.ASSISTS_PER90: 1.0}
        )
        cohort = [{MetricKey.GOALS_PER90: 0.2}, {MetricKey.GOALS_PER90: 0.8}]
        distributions = build_distributions(cohort)
        assert weighted_score(cohort[1], distributions, profile) == pytest.approx(0.75)


class TestRatingCurve:
    def test_bounds(self):
        assert score_to_rating(0.0) == 0
        assert score_to_rating(1.0) == 100

    def test_clamped(self):
        assert score_to_rating(1.5) == 100
        assert score_to_rating(-0.2) == 0

    def test_power_curve_lifts_midpoint(self):
        assert score_to_rating(0.5) == 54

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(0.5) == 1
        assert round_half_up(2.49) == 2


class TestLevelScore:
    def test_tier_factors(self):
        assert level_score(100, Tier.PLATINUM) == 100
        assert level_score(100, Tier.SILVER) == 78
        assert level_score(100, Tier.GOLD) == 85

    def test_untiered_counts_as_bronze(self):
        assert level_score(80, None) == 56

    def test_factors_decrease_with_tier(self):
        levels = [level_score(100, tier) for tier in Tier]
        assert levels == sorted(levels, reverse=True)


class TestRateCohort:
    def test_best_player_rated_highest(self):
        profile = DEFAULT_RATING_PROFILES[PositionGroup.ATT]
        cohort = {
            1: {MetricKey.GOALS_PER90: 0.9, MetricKey.XG_PER90: 0.8},
            2: {MetricKey.GOALS_PER90: 0.3, MetricKey.XG_PER90: 0.3},
            3: {MetricKey.GOALS_PER90: 0.1, MetricKey.XG_PER90: 0.1},
        }
        ratings = rate_cohort(cohort, profile)
        assert ratings[1] > ratings[2] > ratings[3]
        assert all(0 <= r <= 100 for r in ratings.values())


class TestRatingProfileSpec:
    def test_storage_round_trip(self):
        spec = DEFAULT_RATING_PROFILES[PositionGroup.GK]
        weights, invert = spec.to_storage()
        restored = RatingProfileSpec.from_storage("GK", weights, invert)
        assert restored == spec

    def test_unknown_metric_rejected(self):
        with pytest.raises(ValidationError):
            RatingProfileSpec.from_storage("MID", {"vibesPer90": 1.0})

    def test_unknown_group_rejected(self):
        with pytest.raises(ValidationError):
            RatingProfileSpec.from_storage("WB", {"goalsPer90": 1.0})
