"""
League Ingestion
Pulls competitions, teams, squads and finished-fixture appearances from
the primary source within a fixed request budget.

Squad ingestion is resumable per competition: the next players page and
whether teams are done are stored after every page. Each player goes
through IngestionService, so a squad entry may be linked, created or
queued for review. Per-item failures are counted and skipped; budget
exhaustion or the source's own rate limit stops the run; persistence
failures fail it.
"""
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from typing import Awaitable, Callable, Dict, List, Optional
import logging

from scoutbase.core.config import settings
from scoutbase.exceptions import (
    BudgetExhaustedError,
    DatabaseError,
    FatalOrchestrationError,
    RateLimitError,
)
from scoutbase.models import Competition, IngestionRun
from scoutbase.services.enrichment import build_api_football_provider
from scoutbase.services.entity_resolution import ExternalPlayerRecord
from scoutbase.services.ingestion_service import IngestionResult, IngestionService
from scoutbase.services.providers.api_football import (
    ApiFootballProvider,
    Fixture,
    FixtureAppearance,
    LeaguePlayer,
)
from scoutbase.services.providers.client import RateLimiter, RequestBudget
from scoutbase.services.repository import ScoutingRepository

logger = logging.getLogger(__name__)

_STOP_SIGNALS = (BudgetExhaustedError, RateLimitError, DatabaseError)


@dataclass
class IngestionSummary:
    provider: str
    competitions_processed: int = 0
    teams_processed: int = 0
    players_processed: int = 0
    players_created: int = 0
    added_to_review_queue: int = 0
    fixtures_processed: int = 0
    appearances_processed: int = 0
    errors: int = 0
    requests_used: int = 0
    budget_exhausted: bool = False
    rate_limited: bool = False

    def to_dict(self) -> Dict:
        return asdict(self)


class LeagueIngestionService:
    """
    One ingestion run against the primary source.

    Not re-entrant: create one instance per run. The budget is shared with
    the provider's HTTP client.
    """

    def __init__(
        self,
        repository: ScoutingRepository,
        provider: ApiFootballProvider,
        budget: RequestBudget,
        ingestion: Optional[IngestionService] = None,
    ) -> None:
        self.repository = repository
        self.provider = provider
        self.source = provider.name
        self.budget = budget
        self.ingestion = ingestion or IngestionService(repository)
        self.summary = IngestionSummary(provider=self.source)

    def _ensure_budget(self) -> None:
        if not self.budget.can_spend():
            raise BudgetExhaustedError(self.source, self.budget.used, self.budget.max_requests)

    async def ingest_countries(self, countries: List[str]) -> IngestionRun:
        """
        Refresh competitions for each country, then teams and squads of
        every active competition there.

        Returns:
            The persisted IngestionRun (completed or failed)

        Raises:
            FatalOrchestrationError: If the run record itself cannot be written
        """
        return await self._run("countries", lambda: self._ingest_countries(countries))

    async def ingest_recent_fixtures(
        self, date_from: str, date_to: str, countries: Optional[List[str]] = None
    ) -> IngestionRun:
        """
        Store appearances from finished fixtures of active competitions.

        Args:
            date_from: First match date, YYYY-MM-DD
            date_to: Last match date, YYYY-MM-DD
            countries: Restrict to competitions of these countries

        Returns:
            The persisted IngestionRun (completed or failed)
        """
        return await self._run(
            "fixtures", lambda: self._ingest_fixtures(date_from, date_to, countries)
        )

    async def _run(self, kind: str, work: Callable[[], Awaitable[None]]) -> IngestionRun:
        try:
            run = self.repository.create_ingestion_run(self.source, kind, self.budget.max_requests)
        except DatabaseError as e:
            raise FatalOrchestrationError(f"Cannot start {self.source} {kind} ingestion: {e.message}")

        logger.info(f"[{self.source}] Starting {kind} ingestion run {run.id} with budget {self.budget.max_requests}")
        status, error_message = "completed", None
        try:
            await work()
        except BudgetExhaustedError:
            self.summary.budget_exhausted = True
            logger.info(f"[{self.source}] Budget exhausted after {self.budget.used} requests")
        except RateLimitError as e:
            self.summary.rate_limited = True
            logger.warning(f"[{self.source}] Stopped by source rate limit: {e.message}")
        except Exception as e:
            status, error_message = "failed", str(e)
            logger.error(f"[{self.source}] Ingestion run {run.id} failed: {str(e)}", exc_info=True)

        self.summary.requests_used = self.budget.used
        try:
            run = self.repository.finish_ingestion_run(
                run.id,
                status=status,
                summary=self.summary.to_dict(),
                requests_used=self.budget.used,
                budget_exhausted=self.summary.budget_exhausted,
                error_message=error_message,
            )
        except DatabaseError as e:
            raise FatalOrchestrationError(
                f"Cannot record {self.source} ingestion run {run.id}: {e.message}",
                details={"summary": self.summary.to_dict()},
            )

        logger.info(f"[{self.source}] Ingestion run {run.id} {status}: {self.summary.to_dict()}")
        return run

    # ------------------------------------------------------------------
    # Competitions, teams and squads
    # ------------------------------------------------------------------

    async def _ingest_countries(self, countries: List[str]) -> None:
        for country in countries:
            await self._ingest_country(country)

        wanted = set(countries)
        competitions = [
            c for c in self.repository.list_competitions(active_only=True)
            if c.provider_league_id and c.country in wanted
        ]
        logger.info(f"[{self.source}] {len(competitions)} active competitions to ingest")
        for competition in competitions:
            await self._ingest_competition(competition)

    async def _ingest_country(self, country: str) -> None:
        try:
            self._ensure_budget()
            leagues = await self.provider.fetch_leagues(country)
        except _STOP_SIGNALS:
            raise
        except Exception as e:
            self.summary.errors += 1
            logger.error(f"[{self.source}] Error fetching leagues for {country}: {str(e)}")
            return

        for league in leagues:
            self.repository.upsert_competition(**league)
            self.summary.competitions_processed += 1
        logger.info(f"[{self.source}] {country}: {len(leagues)} competitions")

    async def _ingest_competition(self, competition: Competition) -> None:
        season = competition.season or self.provider.season
        state = self.repository.get_ingestion_state(self.source, competition.id)
        if state is None or state.season != season:
            state = self.repository.save_ingestion_state(
                self.source,
                competition.id,
                season=season,
                teams_complete=False,
                players_next_page=1,
                players_complete=False,
            )

        try:
            if not state.teams_complete:
                self._ensure_budget()
                teams = await self.provider.fetch_teams(competition.provider_league_id, season)
                for team in teams:
                    self.repository.upsert_team(team["provider_team_id"], team["name"], competition.id)
                    self.summary.teams_processed += 1
                state = self.repository.save_ingestion_state(self.source, competition.id, teams_complete=True)

            page = state.players_next_page or 1
            while not state.players_complete:
                self._ensure_budget()
                players, total_pages = await self.provider.fetch_players(
                    competition.provider_league_id, season, page
                )
                for player in players:
                    self._ingest_league_player(player, competition)
                page += 1
                state = self.repository.save_ingestion_state(
                    self.source,
                    competition.id,
                    players_next_page=page,
                    players_complete=page > total_pages,
                )
        except _STOP_SIGNALS:
            raise
        except Exception as e:
            self.summary.errors += 1
            logger.error(f"[{self.source}] Error ingesting {competition.name}: {str(e)}")

    def _ingest_league_player(self, player: LeaguePlayer, competition: Competition) -> None:
        team = self.repository.get_team_by_provider_id(player.provider_team_id) if player.provider_team_id else None
        if team is None:
            logger.warning(f"[{self.source}] Team {player.provider_team_id} unknown for {player.name}")

        record = ExternalPlayerRecord(
            source=self.source,
            source_player_id=player.source_player_id,
            name=player.name,
            team_name=team.name if team else None,
            birth_date=player.profile.get("birth_date"),
            nationality=player.profile.get("nationality"),
            position=player.profile.get("position"),
        )
        try:
            result = self.ingestion.ingest_player(
                record,
                normalized_profile=player.profile,
                competition_id=competition.id,
                team_id=team.id if team else None,
            )
        except DatabaseError:
            raise
        except Exception as e:
            self.summary.errors += 1
            logger.error(f"[{self.source}] Error ingesting player {player.source_player_id} ({player.name}): {str(e)}")
            return
        self._count_player(result)

    def _count_player(self, result: IngestionResult) -> None:
        self.summary.players_processed += 1
        if result.created:
            self.summary.players_created += 1
        if result.review_item_id is not None:
            self.summary.added_to_review_queue += 1

    # ------------------------------------------------------------------
    # Fixtures
    # ------------------------------------------------------------------

    async def _ingest_fixtures(self, date_from: str, date_to: str, countries: Optional[List[str]]) -> None:
        competitions = [
            c for c in self.repository.list_competitions(active_only=True)
            if c.provider_league_id and (not countries or c.country in countries)
        ]
        logger.info(f"[{self.source}] Fixtures {date_from}..{date_to} for {len(competitions)} competitions")

        for competition in competitions:
            season = competition.season or self.provider.season
            try:
                self._ensure_budget()
                fixtures = await self.provider.fetch_fixtures(
                    competition.provider_league_id, season, date_from, date_to
                )
            except _STOP_SIGNALS:
                raise
            except Exception as e:
                self.summary.errors += 1
                logger.error(f"[{self.source}] Error fetching fixtures for {competition.name}: {str(e)}")
                continue

            finished = [f for f in fixtures if f.is_finished]
            logger.info(f"[{self.source}] {competition.name}: {len(finished)}/{len(fixtures)} fixtures finished")
            for fixture in finished:
                await self._ingest_fixture(fixture, competition)
            self.repository.save_ingestion_state(self.source, competition.id, fixtures_last_date=date_to)

    async def _ingest_fixture(self, fixture: Fixture, competition: Competition) -> None:
        try:
            self._ensure_budget()
            appearances = await self.provider.fetch_fixture_players(fixture)
            for appearance in appearances:
                try:
                    self._store_appearance(appearance, fixture, competition)
                except _STOP_SIGNALS:
                    raise
                except Exception as e:
                    self.summary.errors += 1
                    logger.error(
                        f"[{self.source}] Error storing fixture {fixture.fixture_id} "
                        f"for player {appearance.source_player_id}: {str(e)}"
                    )
            self.summary.fixtures_processed += 1
        except _STOP_SIGNALS:
            raise
        except Exception as e:
            self.summary.errors += 1
            logger.error(f"[{self.source}] Error ingesting fixture {fixture.fixture_id}: {str(e)}")

    def _store_appearance(self, appearance: FixtureAppearance, fixture: Fixture, competition: Competition) -> None:
        team = (
            self.repository.get_team_by_provider_id(appearance.provider_team_id)
            if appearance.provider_team_id else None
        )
        identity = self.repository.get_identity(self.source, appearance.source_player_id)
        if identity is not None:
            player_id = identity.player_id
        elif appearance.player_name:
            profile = {"position": appearance.position, "photo_url": appearance.photo_url}
            result = self.ingestion.ingest_player(
                ExternalPlayerRecord(
                    source=self.source,
                    source_player_id=appearance.source_player_id,
                    name=appearance.player_name,
                    team_name=team.name if team else None,
                    position=appearance.position,
                ),
                normalized_profile={k: v for k, v in profile.items() if v is not None},
                competition_id=competition.id,
                team_id=team.id if team else None,
            )
            self._count_player(result)
            if result.player_id is None:
                return
            player_id = result.player_id
        else:
            logger.warning(f"[{self.source}] No name for unknown player {appearance.source_player_id}")
            return

        self.ingestion.ingest_appearances(player_id, [{
            "match_id": fixture.fixture_id,
            "competition_id": competition.id,
            "match_date": fixture.match_date,
            "minutes": appearance.minutes,
            "stats": appearance.stats,
            "team_id": team.id if team else None,
            "source": self.source,
        }])
        self.summary.appearances_processed += 1


# ============================================================================
# Provider construction and entry points
# ============================================================================

ApiFootballBuilder = Callable[[RequestBudget, RateLimiter], ApiFootballProvider]


async def ingest_countries(
    repository: ScoutingRepository,
    countries: Optional[List[str]] = None,
    max_requests: Optional[int] = None,
    builder: Optional[ApiFootballBuilder] = None,
) -> IngestionRun:
    """Run squad ingestion for the given (or configured) countries."""
    budget = RequestBudget(
        max_requests if max_requests is not None else settings.INGESTION_DEFAULT_BUDGET,
        source="api_football",
    )
    provider = (builder or build_api_football_provider)(
        budget, RateLimiter(max_jitter=settings.HTTP_MAX_JITTER_SECONDS)
    )
    try:
        service = LeagueIngestionService(repository, provider, budget)
        return await service.ingest_countries(countries or settings.ingestion_countries)
    finally:
        await provider.close()


async def ingest_recent_fixtures(
    repository: ScoutingRepository,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    countries: Optional[List[str]] = None,
    max_requests: Optional[int] = None,
    builder: Optional[ApiFootballBuilder] = None,
) -> IngestionRun:
    """Run fixture ingestion; the window defaults to the last INGESTION_FIXTURES_DAYS_BACK days."""
    today = date.today()
    date_to = date_to or today.isoformat()
    date_from = date_from or (today - timedelta(days=settings.INGESTION_FIXTURES_DAYS_BACK)).isoformat()

    budget = RequestBudget(
        max_requests if max_requests is not None else settings.INGESTION_FIXTURES_BUDGET,
        source="api_football",
    )
    provider = (builder or build_api_football_provider)(
        budget, RateLimiter(max_jitter=settings.HTTP_MAX_JITTER_SECONDS)
    )
    try:
        service = LeagueIngestionService(repository, provider, budget)
        return await service.ingest_recent_fixtures(date_from, date_to, countries)
    finally:
        await provider.close()
