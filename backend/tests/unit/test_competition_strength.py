"""
Unit tests for competition strength aggregation.
"""

from scoutbase.services.competition_strength import competition_strength


class TestCompetitionStrength:
    def test_mean_of_top_n(self):
        assert competition_strength([90, 80, 70], top_n=2) == 85

    def test_fewer_than_top_n(self):
        assert competition_strength([90, 70], top_n=25) == 80

    def test_empty(self):
        assert competition_strength([], top_n=25) == 0

    def test_insensitive_to_players_beyond_top_n(self):
        cohort = [90, 80, 70]
        before = competition_strength(cohort, top_n=3)
        after = competition_strength(cohort + [5], top_n=3)
        assert before == after == 80

    def test_rounds_half_up(self):
        assert competition_strength([1, 2], top_n=2) == 2

    def test_order_does_not_matter(self):
        assert competition_strength([10, 95, 60, 88], top_n=2) == competition_strength([95, 88, 60, 10], top_n=2)
