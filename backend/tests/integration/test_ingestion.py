"""
Integration tests for identity resolution, ingestion and manual review.
"""

from datetime import date

import pytest
from scoutbase.exceptions import AmbiguousIdentity, NotFoundError, ValidationError
from scoutbase.models import ExternalIdentity, Player
from scoutbase.services.entity_resolution import (
    ExternalPlayerRecord,
    IdentityResolver,
    ResolutionStatus,
)
from scoutbase.services.ingestion_service import IngestionService
from scoutbase.services.review_service import ReviewService

pytestmark = pytest.mark.integration


def _record(source_player_id="9001", name="Bukayo Saka", source="sofascore", **hints):
    return ExternalPlayerRecord(source=source, source_player_id=source_player_id, name=name, **hints)


class TestIdentityResolver:
    def test_known_identity_short_circuits(self, repository, make_player):
        player = make_player("Bukayo Saka")
        repository.upsert_identity(player.id, "sofascore", "9001", 0.95)

        result = IdentityResolver(repository).resolve(_record(name="Somebody Else"))

        assert result.status == ResolutionStatus.EXISTING
        assert result.player_id == player.id
        assert result.confidence == 1.0

    def test_exact_name_and_birth_date_is_accepted(self, repository, make_player):
        player = make_player("Bukayo Saka", birth_date="2001-09-05")

        result = IdentityResolver(repository).resolve(_record(birth_date="2001-09-05"))

        assert result.status == ResolutionStatus.ACCEPTED
        assert result.player_id == player.id
        assert result.confidence == pytest.approx(0.95)

    def test_name_alone_needs_review(self, repository, make_player):
        player = make_player("Bukayo Saka")

        result = IdentityResolver(repository).resolve(_record())

        assert result.status == ResolutionStatus.LOW_CONFIDENCE
        assert result.candidate_player_ids == [player.id]

    def test_birth_date_mismatch_is_not_accepted(self, repository, make_player):
        make_player("Bukayo Saka", birth_date="1990-01-01")

        result = IdentityResolver(repository).resolve(_record(birth_date="2001-09-05"))

        assert not result.is_match
        assert result.player_id is None

    def test_namesakes_are_ambiguous(self, repository, make_player):
        first = make_player("John Smith", birth_date="1995-05-05")
        second = make_player("John Smith", birth_date="1995-05-05")

        result = IdentityResolver(repository).resolve(_record(name="John Smith", birth_date="1995-05-05"))

        assert result.status == ResolutionStatus.AMBIGUOUS
        assert sorted(result.candidate_player_ids) == [first.id, second.id]

    def test_team_scope_finds_spelling_variants(self, repository, make_player, make_team):
        team = make_team("Arsenal FC")
        player = make_player("Gabriel Martinelli", team_id=team.id, birth_date="2001-06-18")

        result = IdentityResolver(repository).resolve(
            _record(name="Gabriel Martineli", birth_date="2001-06-18"), team_id=team.id
        )

        assert result.candidate_player_ids == [player.id]

    def test_resolution_does_not_write(self, repository, make_player, db_session):
        make_player("Bukayo Saka", birth_date="2001-09-05")
        IdentityResolver(repository).resolve(_record(birth_date="2001-09-05"))

        assert db_session.query(ExternalIdentity).count() == 0


class TestIngestPlayer:
    def test_new_player_is_created_and_linked(self, repository, make_competition, make_team, db_session):
        competition = make_competition()
        team = make_team("Arsenal FC", competition.id)
        record = _record(
            source="api_football", source_player_id="1460", team_name="Arsenal",
            birth_date="2001-09-05", position="Attacker",
        )

        result = IngestionService(repository).ingest_player(
            record, normalized_profile={"nationality": "England"}, competition_id=competition.id
        )

        assert result.created
        player = db_session.get(Player, result.player_id)
        assert player.team_id == team.id
        assert player.competition_id == competition.id
        assert player.position_group == "ATT"
        assert player.nationality == "England"
        assert repository.get_identity("api_football", "1460").player_id == player.id
        assert repository.get_provider_profile(player.id, "api_football") is not None

    def test_ingestion_is_idempotent(self, repository, db_session):
        service = IngestionService(repository)
        record = _record(source="api_football", source_player_id="1460")

        first = service.ingest_player(record)
        second = service.ingest_player(record)

        assert second.status == ResolutionStatus.EXISTING
        assert second.player_id == first.player_id
        assert db_session.query(Player).count() == 1
        assert db_session.query(ExternalIdentity).count() == 1

    def test_reingesting_known_identity_keeps_confidence(self, repository, make_player):
        player = make_player("Bukayo Saka")
        repository.upsert_identity(player.id, "sofascore", "9001", 0.95)

        result = IngestionService(repository).ingest_player(_record(), normalized_profile={"height_cm": 178})

        assert result.status == ResolutionStatus.EXISTING
        assert result.player_id == player.id
        assert repository.get_identity("sofascore", "9001").confidence == pytest.approx(0.95)
        assert result.merge.updated_fields == ["height_cm"]

    def test_accepted_match_links_and_merges(self, repository, make_player):
        player = make_player("Bukayo Saka", birth_date="2001-09-05", position="Right Winger")

        result = IngestionService(repository).ingest_player(
            _record(birth_date="2001-09-05"),
            normalized_profile={"height_cm": 178, "position": "RW"},
            raw_payload={"id": 9001},
        )

        assert result.status == ResolutionStatus.ACCEPTED
        assert result.merge.updated_fields == ["height_cm"]
        assert [c.field for c in result.merge.conflicts] == ["position"]
        identity = repository.get_identity("sofascore", "9001")
        assert identity.player_id == player.id
        assert identity.confidence == pytest.approx(0.95)

    def test_uncertain_match_is_queued(self, repository, make_player, db_session):
        player = make_player("Bukayo Saka")

        result = IngestionService(repository).ingest_player(_record(), normalized_profile={"height_cm": 178})

        assert result.status == ResolutionStatus.LOW_CONFIDENCE
        assert result.player_id is None
        item = repository.get_review_item(result.review_item_id)
        assert item.candidate_player_ids == [player.id]
        assert item.payload["profile"] == {"height_cm": 178}
        assert db_session.query(Player).count() == 1
        assert repository.get_identity("sofascore", "9001") is None


class TestIngestAppearances:
    def test_stores_appearances(self, repository, make_player, make_competition):
        competition = make_competition()
        player = make_player("Bukayo Saka")

        stored = IngestionService(repository).ingest_appearances(player.id, [
            {"match_id": "1", "competition_id": competition.id, "match_date": "2024-03-02T15:00:00Z",
             "minutes": 90, "stats": {"goals": 1}},
            {"match_id": "2", "competition_id": competition.id, "match_date": date(2024, 3, 9), "minutes": 0},
        ])

        assert [a.match_date for a in stored] == [date(2024, 3, 2), date(2024, 3, 9)]
        assert stored[1].stats == {}

    def test_only_known_stats_are_kept(self, repository, make_player, make_competition):
        competition = make_competition()
        player = make_player("Bukayo Saka")

        stored = IngestionService(repository).ingest_appearances(player.id, [
            {"match_id": "1", "competition_id": competition.id, "match_date": "2024-03-02", "minutes": 90,
             "stats": {"goals": 1, "assists": None, "rating": "7.4", "cleanSheet": True}},
        ])

        assert stored[0].stats == {"goals": 1, "cleanSheet": True}

    def test_unknown_player(self, repository):
        with pytest.raises(NotFoundError):
            IngestionService(repository).ingest_appearances(404, [])

    def test_missing_fields_rejected(self, repository, make_player):
        player = make_player("Bukayo Saka")
        with pytest.raises(ValidationError):
            IngestionService(repository).ingest_appearances(player.id, [{"match_id": "1", "minutes": 90}])

    def test_negative_minutes_rejected(self, repository, make_player, make_competition):
        competition = make_competition()
        player = make_player("Bukayo Saka")
        with pytest.raises(ValidationError):
            IngestionService(repository).ingest_appearances(player.id, [
                {"match_id": "1", "competition_id": competition.id, "match_date": "2024-03-02", "minutes": -5},
            ])


class TestReviewService:
    def _queue(self, repository, make_player):
        player = make_player("Bukayo Saka")
        result = IngestionService(repository).ingest_player(_record(), normalized_profile={"height_cm": 178})
        return player, result.review_item_id

    def test_resolve_links_and_merges(self, repository, make_player, db_session):
        player, item_id = self._queue(repository, make_player)

        item = ReviewService(repository).resolve(item_id, player.id, note="same player")

        assert item.status == "resolved"
        assert item.resolved_player_id == player.id
        assert repository.get_identity("sofascore", "9001").confidence == 1.0
        db_session.refresh(player)
        assert player.height_cm == 178
        assert ReviewService(repository).list_pending() == []

    def test_resolve_defaults_to_only_candidate(self, repository, make_player):
        player, item_id = self._queue(repository, make_player)

        item = ReviewService(repository).resolve(item_id)

        assert item.resolved_player_id == player.id
        assert repository.get_identity("sofascore", "9001").player_id == player.id

    def test_resolve_without_player_needs_single_candidate(self, repository, make_player):
        first = make_player("John Smith", birth_date="1995-05-05")
        second = make_player("John Smith", birth_date="1995-05-05")
        result = IngestionService(repository).ingest_player(
            _record(name="John Smith", birth_date="1995-05-05")
        )

        with pytest.raises(AmbiguousIdentity) as exc_info:
            ReviewService(repository).resolve(result.review_item_id)

        assert sorted(exc_info.value.candidate_ids) == [first.id, second.id]
        assert exc_info.value.status_code == 409
        assert repository.get_review_item(result.review_item_id).status == "pending"

        item = ReviewService(repository).resolve(result.review_item_id, second.id)
        assert item.resolved_player_id == second.id

    def test_resolve_twice_fails(self, repository, make_player):
        player, item_id = self._queue(repository, make_player)
        service = ReviewService(repository)
        service.resolve(item_id, player.id)

        with pytest.raises(ValidationError):
            service.resolve(item_id, player.id)

    def test_resolve_unknown_player(self, repository, make_player):
        _, item_id = self._queue(repository, make_player)
        with pytest.raises(NotFoundError):
            ReviewService(repository).resolve(item_id, 404)

    def test_reject(self, repository, make_player):
        _, item_id = self._queue(repository, make_player)

        item = ReviewService(repository).reject(item_id, note="different player")

        assert item.status == "rejected"
        assert repository.get_identity("sofascore", "9001") is None

    def test_placeholder_item_needs_source_id(self, repository, make_player):
        player = make_player("Bukayo Saka")
        item = repository.enqueue_review_item(
            "fotmob", f"player:{player.id}", {"player_id": player.id}, [player.id], "no_search_results"
        )
        service = ReviewService(repository)

        with pytest.raises(ValidationError):
            service.resolve(item.id, player.id)

        service.resolve(item.id, player.id, source_player_id="934235")
        assert repository.get_identity("fotmob", "934235").player_id == player.id
