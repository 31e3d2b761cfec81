"""
Integration tests for the enrichment orchestrator.

Tests verify that:
1. A run never makes more external calls than its budget allows
2. Unmatched and ambiguous players land in the review queue
3. The cursor lets consecutive runs pick up where the last one stopped
4. Per-player failures are skipped while persistence failures fail the run
"""

from typing import Dict, List, Optional

import pytest
from scoutbase.exceptions import DatabaseError, ExternalAPIError, RateLimitError
from scoutbase.models import ProviderAggregate
from scoutbase.services.enrichment import (
    EnrichmentOrchestrator,
    enrich_all_sources,
    enrich_source,
    score_search_hits,
)
from scoutbase.services.providers.base import (
    ProviderProfileResult,
    SearchHit,
    SeasonStats,
    StatsProvider,
)
from scoutbase.services.providers.client import RequestBudget
from scoutbase.services.repository import SQLAlchemyRepository

pytestmark = pytest.mark.integration


class FakeProvider(StatsProvider):
    """In-memory source; every call spends one unit of the shared budget."""

    name = "fotmob"

    def __init__(
        self,
        budget: RequestBudget,
        hits: Optional[Dict[str, List[SearchHit]]] = None,
        profiles: Optional[Dict[str, dict]] = None,
        failing_searches: Optional[set] = None,
        failing_stats: bool = False,
    ):
        self.budget = budget
        self.hits = hits or {}
        self.profiles = profiles or {}
        self.failing_searches = failing_searches or set()
        self.failing_stats = failing_stats
        self.calls: List[tuple] = []
        self.closed = False

    async def search_players(self, query: str) -> List[SearchHit]:
        self.budget.spend()
        self.calls.append(("search", query))
        if query in self.failing_searches:
            raise ExternalAPIError(self.name, "search unavailable")
        return list(self.hits.get(query, []))

    async def get_profile(self, source_player_id: str) -> ProviderProfileResult:
        self.budget.spend()
        self.calls.append(("profile", source_player_id))
        normalized = self.profiles.get(source_player_id, {})
        return ProviderProfileResult(source_player_id, raw={"id": source_player_id}, normalized=normalized)

    async def get_season_stats(self, source_player_id: str) -> List[SeasonStats]:
        self.budget.spend()
        self.calls.append(("stats", source_player_id))
        if self.failing_stats:
            raise ExternalAPIError(self.name, "stats unavailable")
        return [SeasonStats(season="2023/2024", appearances=10, minutes=900, goals=5, assists=2)]

    async def close(self) -> None:
        self.closed = True


def _hit(source_player_id: str, name: str, position: Optional[str] = None) -> SearchHit:
    return SearchHit(source_player_id=source_player_id, name=name, position=position)


def _orchestrator(repository, provider, budget):
    return EnrichmentOrchestrator(repository, provider, budget)


class TestScoreSearchHits:
    def test_exact_and_fuzzy_hits(self, make_player):
        player = make_player("Mohamed Salah", position_group="ATT")
        hits = [
            _hit("1", "Mohamed Salah", position="Forward"),
            _hit("2", "Mohamed Salahh"),
            _hit("3", "Mo Elneny"),
        ]

        candidates = score_search_hits(player, hits)

        assert [c.player_id for c in candidates] == [0, 1]
        assert candidates[0].score == 1.0
        assert "position_match" in candidates[0].reasons
        assert candidates[1].score < 1.0


class TestEnrichmentRun:
    @pytest.mark.asyncio
    async def test_matched_player_is_enriched(self, repository, make_player, db_session):
        player = make_player("Mohamed Salah", position_group="ATT")
        budget = RequestBudget(10, source="fotmob")
        provider = FakeProvider(
            budget,
            hits={"Mohamed Salah": [_hit("292462", "Mohamed Salah", position="Forward")]},
            profiles={"292462": {"height_cm": 175, "preferred_foot": "left"}},
        )

        run = await _orchestrator(repository, provider, budget).run(batch_size=10)

        assert run.status == "completed"
        assert run.requests_used == 3
        assert run.summary["external_ids_mapped"] == 1
        assert run.summary["profiles_merged"] == 1
        assert run.summary["stats_stored"] == 1
        assert repository.get_identity("fotmob", "292462").player_id == player.id
        db_session.refresh(player)
        assert player.height_cm == 175
        aggregate = db_session.query(ProviderAggregate).filter_by(player_id=player.id).one()
        assert aggregate.stats_window == "career"
        assert aggregate.stats["goalsPer90"] == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_budget_caps_external_calls(self, repository, make_player):
        names = ["Player A", "Player B", "Player C", "Player D"]
        for name in names:
            make_player(name)
        budget = RequestBudget(5, source="fotmob")
        provider = FakeProvider(
            budget,
            hits={name: [_hit(str(i), name)] for i, name in enumerate(names)},
        )

        run = await _orchestrator(repository, provider, budget).run(batch_size=10)

        assert len(provider.calls) <= 5
        assert run.requests_used == len(provider.calls)
        assert run.budget_exhausted is True
        assert run.status == "completed"
        assert run.summary["players_processed"] == 2

    @pytest.mark.asyncio
    async def test_stats_owed_after_budget_stop_are_fetched_next_run(self, repository, make_player, db_session):
        first = make_player("Player A")
        second = make_player("Player B")
        hits = {"Player A": [_hit("0", "Player A")], "Player B": [_hit("1", "Player B")]}

        budget = RequestBudget(5, source="fotmob")
        provider = FakeProvider(budget, hits=hits)
        run = await _orchestrator(repository, provider, budget).run(batch_size=10)

        assert run.budget_exhausted is True
        assert ("stats", "1") not in provider.calls
        assert run.summary["external_ids_mapped"] == 2
        assert run.summary["players_processed"] == 2
        assert repository.get_enrichment_state("fotmob").last_processed_player_id == second.id

        budget = RequestBudget(50, source="fotmob")
        provider = FakeProvider(budget, hits=hits)
        run = await _orchestrator(repository, provider, budget).run(batch_size=10)

        assert provider.calls == [("stats", "1")]
        assert run.summary["stats_stored"] == 1
        stored = {a.player_id for a in db_session.query(ProviderAggregate).filter_by(source="fotmob")}
        assert stored == {first.id, second.id}

    @pytest.mark.asyncio
    async def test_empty_stats_are_not_refetched(self, repository, make_player, db_session):
        player = make_player("Player A")
        repository.upsert_identity(player.id, "fotmob", "7", 1.0)

        class NoSeasonsProvider(FakeProvider):
            async def get_season_stats(self, source_player_id):
                self.budget.spend()
                self.calls.append(("stats", source_player_id))
                return []

        budget = RequestBudget(10, source="fotmob")
        provider = NoSeasonsProvider(budget)
        await _orchestrator(repository, provider, budget).run(batch_size=10)
        assert provider.calls == [("stats", "7")]
        assert db_session.query(ProviderAggregate).one().stats == {"seasons": 0}

        budget = RequestBudget(10, source="fotmob")
        provider = NoSeasonsProvider(budget)
        await _orchestrator(repository, provider, budget).run(batch_size=10)
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_source_rate_limit_stops_run(self, repository, make_player):
        make_player("Player A")
        make_player("Player B")

        class QuotaSpentProvider(FakeProvider):
            async def search_players(self, query):
                self.budget.spend()
                self.calls.append(("search", query))
                raise RateLimitError("daily quota reached")

        budget = RequestBudget(10, source="fotmob")
        provider = QuotaSpentProvider(budget)
        run = await _orchestrator(repository, provider, budget).run(batch_size=10)

        assert run.status == "completed"
        assert run.budget_exhausted is False
        assert provider.calls == [("search", "Player A")]
        assert run.summary["errors"] == 0
        assert repository.get_enrichment_state("fotmob") is None

    @pytest.mark.asyncio
    async def test_zero_budget_makes_no_calls(self, repository, make_player):
        make_player("Player A")
        budget = RequestBudget(0, source="fotmob")
        provider = FakeProvider(budget)

        run = await _orchestrator(repository, provider, budget).run(batch_size=10)

        assert provider.calls == []
        assert run.budget_exhausted is True

    @pytest.mark.asyncio
    async def test_no_results_queued_under_placeholder(self, repository, make_player):
        player = make_player("Unknown Youngster")
        budget = RequestBudget(10, source="fotmob")

        run = await _orchestrator(repository, FakeProvider(budget), budget).run(batch_size=10)

        items = repository.list_review_items()
        assert run.summary["added_to_review_queue"] == 1
        assert [(i.source_player_id, i.reason) for i in items] == [(f"player:{player.id}", "no_search_results")]
        assert items[0].candidate_player_ids == [player.id]

    @pytest.mark.asyncio
    async def test_ambiguous_hits_are_queued(self, repository, make_player):
        player = make_player("John Smith")
        budget = RequestBudget(10, source="fotmob")
        provider = FakeProvider(
            budget, hits={"John Smith": [_hit("11", "John Smith"), _hit("12", "John Smith")]}
        )

        await _orchestrator(repository, provider, budget).run(batch_size=10)

        items = repository.list_review_items()
        assert len(items) == 1
        assert items[0].source_player_id == "11"
        assert items[0].reason.startswith("ambiguous")
        assert [h["source_player_id"] for h in items[0].payload["hits"]] == ["11", "12"]
        assert repository.get_identity("fotmob", "11") is None
        assert ("profile", "11") not in provider.calls
        assert player.id in items[0].candidate_player_ids

    @pytest.mark.asyncio
    async def test_claimed_hits_are_ignored(self, repository, make_player):
        owner = make_player("Ben White")
        other = make_player("Ben White")
        repository.upsert_identity(owner.id, "fotmob", "555", 1.0)
        budget = RequestBudget(10, source="fotmob")
        provider = FakeProvider(budget, hits={"Ben White": [_hit("555", "Ben White")]})

        await _orchestrator(repository, provider, budget).run(batch_size=10)

        items = repository.list_review_items()
        assert [i.source_player_id for i in items] == [f"player:{other.id}"]
        assert repository.get_identity("fotmob", "555").player_id == owner.id

    @pytest.mark.asyncio
    async def test_cursor_resumes_and_wraps(self, repository, make_player):
        players = [make_player(name) for name in ("Player A", "Player B", "Player C")]

        budget = RequestBudget(2, source="fotmob")
        provider = FakeProvider(budget)
        await _orchestrator(repository, provider, budget).run(batch_size=10)
        assert [q for _, q in provider.calls] == ["Player A", "Player B"]
        state = repository.get_enrichment_state("fotmob")
        assert state.last_processed_player_id == players[1].id

        budget = RequestBudget(10, source="fotmob")
        provider = FakeProvider(budget)
        await _orchestrator(repository, provider, budget).run(batch_size=10)
        assert [q for _, q in provider.calls] == ["Player C"]
        state = repository.get_enrichment_state("fotmob")
        assert state.last_processed_player_id == players[2].id
        assert state.total_processed == 3

        budget = RequestBudget(1, source="fotmob")
        provider = FakeProvider(budget)
        await _orchestrator(repository, provider, budget).run(batch_size=10)
        assert [q for _, q in provider.calls] == ["Player A"]

    @pytest.mark.asyncio
    async def test_player_errors_do_not_stop_the_run(self, repository, make_player):
        make_player("Player A")
        make_player("Player B")
        budget = RequestBudget(10, source="fotmob")
        provider = FakeProvider(
            budget,
            hits={"Player B": [_hit("2", "Player B")]},
            failing_searches={"Player A"},
        )

        run = await _orchestrator(repository, provider, budget).run(batch_size=10)

        assert run.status == "completed"
        assert run.summary["errors"] == 1
        assert run.summary["external_ids_mapped"] == 1
        assert run.summary["players_processed"] == 2

    @pytest.mark.asyncio
    async def test_stats_failure_keeps_identity(self, repository, make_player):
        player = make_player("Player A")
        budget = RequestBudget(10, source="fotmob")
        provider = FakeProvider(budget, hits={"Player A": [_hit("1", "Player A")]}, failing_stats=True)

        run = await _orchestrator(repository, provider, budget).run(batch_size=10)

        assert run.summary["errors"] == 0
        assert run.summary["stats_stored"] == 0
        assert repository.get_identity("fotmob", "1").player_id == player.id

    @pytest.mark.asyncio
    async def test_database_error_fails_the_run(self, db_session, make_player):
        class BrokenRepository(SQLAlchemyRepository):
            def upsert_identity(self, *args, **kwargs):
                raise DatabaseError("disk full")

        repository = BrokenRepository(db_session)
        make_player("Player A")
        make_player("Player B")
        budget = RequestBudget(10, source="fotmob")
        provider = FakeProvider(
            budget, hits={"Player A": [_hit("1", "Player A")], "Player B": [_hit("2", "Player B")]}
        )

        run = await _orchestrator(repository, provider, budget).run(batch_size=10)

        assert run.status == "failed"
        assert "disk full" in run.error_message
        assert ("search", "Player B") not in provider.calls


class TestEnrichSource:
    @pytest.mark.asyncio
    async def test_unknown_source(self, repository):
        with pytest.raises(ValueError):
            await enrich_source(repository, "nowhere", builders={})

    @pytest.mark.asyncio
    async def test_runs_registered_sources_and_closes_providers(self, repository, make_player):
        make_player("Player A")
        built = []

        def builder(budget, rate_limiter):
            provider = FakeProvider(budget)
            built.append(provider)
            return provider

        runs = await enrich_all_sources(
            repository, sources=["fotmob"], max_requests=3, batch_size=5, builders={"fotmob": builder}
        )

        assert [r.source for r in runs] == ["fotmob"]
        assert runs[0].max_requests == 3
        assert built[0].closed is True
