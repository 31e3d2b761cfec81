"""
Integration tests for rating recomputation.
"""

from datetime import date

import pytest
from scoutbase.exceptions import NotFoundError, ValidationError
from scoutbase.metrics import DEFAULT_RATING_PROFILES, MetricKey, PositionGroup, RatingProfileSpec
from scoutbase.models import CompetitionRating, PlayerRating, RollingStats
from scoutbase.services.competition_strength import competition_strength
from scoutbase.services.rating_service import RatingService

pytestmark = pytest.mark.integration

SEASON_END = date(2024, 5, 19)


@pytest.fixture
def league(make_competition, make_player, make_appearances):
    """Three rated strikers, one short on minutes and one without a position."""
    competition = make_competition(tier="Gold")
    strikers = {}
    for name, goals in (("Striker High", 2), ("Striker Mid", 1), ("Striker Low", 0)):
        player = make_player(name, position_group="ATT")
        make_appearances(player.id, competition.id, 10, SEASON_END, goals=goals, shots=3)
        strikers[name] = player

    bench = make_player("Bench Striker", position_group="ATT")
    make_appearances(bench.id, competition.id, 2, SEASON_END, goals=5)

    unknown = make_player("No Position")
    make_appearances(unknown.id, competition.id, 10, SEASON_END)

    return competition, strikers, bench, unknown


class TestRecompute:
    def test_rates_eligible_players(self, repository, league, db_session):
        competition, strikers, bench, _ = league

        summary = RatingService(repository).recompute(competition_id=competition.id, to_date=SEASON_END)

        result = summary.competitions[0]
        assert result.players_with_appearances == 5
        assert result.players_rated == 3
        assert result.players_without_position == 1
        assert summary.rolling_stats_written == 5
        assert summary.ratings_written == 3

        ratings = {r.player_id: r for r in db_session.query(PlayerRating).all()}
        assert bench.id not in ratings
        high = ratings[strikers["Striker High"].id]
        mid = ratings[strikers["Striker Mid"].id]
        low = ratings[strikers["Striker Low"].id]
        assert high.rating_365 > mid.rating_365 > low.rating_365
        assert all(0 <= r.rating_365 <= 100 and 0 <= r.rating_last5 <= 100 for r in ratings.values())
        assert high.level_score <= high.rating_365
        assert high.tier == "Gold"

    def test_competition_strength_uses_level_scores(self, repository, league, db_session):
        competition, _, _, _ = league

        summary = RatingService(repository, top_n=2).recompute(
            competition_id=competition.id, to_date=SEASON_END
        )

        levels = [r.level_score for r in db_session.query(PlayerRating).all()]
        record = db_session.query(CompetitionRating).filter_by(competition_id=competition.id).one()
        assert record.strength_score == competition_strength(levels, 2)
        assert record.strength_score == summary.competitions[0].strength_score
        assert record.rated_players == 3

    def test_rolling_window_excludes_old_matches(self, repository, league, db_session):
        competition, strikers, _, _ = league
        player = strikers["Striker Low"]
        repository.upsert_appearance(player.id, "old-1", competition.id, date(2022, 1, 1), 90, {"goals": 4})

        RatingService(repository).recompute(competition_id=competition.id, to_date=SEASON_END)

        row = db_session.query(RollingStats).filter_by(player_id=player.id).one()
        assert row.minutes == 900
        assert row.totals["goals"] == 0
        assert row.last5["minutes"] == 450

    def test_dry_run_writes_nothing(self, repository, league, db_session):
        competition, _, _, _ = league

        summary = RatingService(repository).recompute(
            competition_id=competition.id, to_date=SEASON_END, dry_run=True
        )

        assert summary.dry_run is True
        assert summary.competitions[0].players_rated == 3
        assert summary.ratings_written == 0
        assert db_session.query(PlayerRating).count() == 0
        assert db_session.query(RollingStats).count() == 0

    def test_recompute_is_repeatable(self, repository, league, db_session):
        competition, _, _, _ = league
        service = RatingService(repository)

        service.recompute(competition_id=competition.id, to_date=SEASON_END)
        first = {r.player_id: r.rating_365 for r in db_session.query(PlayerRating).all()}
        service.recompute(competition_id=competition.id, to_date=SEASON_END)
        second = {r.player_id: r.rating_365 for r in db_session.query(PlayerRating).all()}

        assert first == second

    def test_small_batches(self, repository, league, db_session):
        competition, _, _, _ = league

        summary = RatingService(repository, batch_size=2).recompute(
            competition_id=competition.id, to_date=SEASON_END
        )

        assert summary.rolling_stats_written == 5
        assert db_session.query(RollingStats).count() == 5

    def test_all_active_competitions(self, repository, league, make_competition):
        make_competition(name="Dormant League", is_active=False)
        empty = make_competition(name="Empty League", tier=None)

        summary = RatingService(repository).recompute(to_date=SEASON_END)

        ids = [c.competition_id for c in summary.competitions]
        assert ids == [league[0].id, empty.id]
        assert summary.competitions[1].players_rated == 0

    def test_invalid_window(self, repository):
        with pytest.raises(ValidationError):
            RatingService(repository).recompute(from_date=date(2024, 6, 1), to_date=date(2024, 5, 1))

    def test_unknown_competition(self, repository):
        with pytest.raises(NotFoundError):
            RatingService(repository).recompute(competition_id=404)

    def test_summary_serializes_dates(self, repository):
        summary = RatingService(repository).recompute(to_date=SEASON_END)
        data = summary.to_dict()
        assert data["to_date"] == "2024-05-19"
        assert data["from_date"] == "2023-05-20"


class TestRatingProfiles:
    def test_seed_defaults_once(self, repository):
        service = RatingService(repository)

        assert service.seed_rating_profiles() == len(DEFAULT_RATING_PROFILES)
        assert service.seed_rating_profiles() == 0
        assert service.seed_rating_profiles(force=True) == len(DEFAULT_RATING_PROFILES)

    def test_stored_profile_overrides_default(self, repository):
        custom = RatingProfileSpec(PositionGroup.ATT, weights={MetricKey.SHOTS_PER90: 1.0})
        repository.upsert_rating_profile(custom)

        profiles = RatingService(repository).load_profiles()

        assert profiles[PositionGroup.ATT] == custom
        assert profiles[PositionGroup.GK] == DEFAULT_RATING_PROFILES[PositionGroup.GK]
