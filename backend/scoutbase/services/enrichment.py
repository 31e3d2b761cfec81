"""
Enrichment Orchestrator
Drives search -> candidate resolution -> profile fetch -> merge -> stats
fetch against one external source, within a fixed request budget.

Players are processed strictly one at a time. The budget is checked
before every external call; exhaustion stops the run and is recorded in
its summary. Per-player failures are counted and skipped; persistence
failures fail the run. Linked players whose stats were never stored are
fetched first, before any new player is searched.
"""
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Optional
import logging

from scoutbase.core.config import settings
from scoutbase.exceptions import (
    BudgetExhaustedError,
    DatabaseError,
    FatalOrchestrationError,
    RateLimitError,
)
from scoutbase.models import EnrichmentRun, Player
from scoutbase.services.entity_resolution import MatchCandidate, ResolverConfig, decide
from scoutbase.services.field_merger import FieldMerger
from scoutbase.services.fuzzy_matching import FuzzyMatcher
from scoutbase.services.name_normalizer import normalize_name
from scoutbase.services.position_mapping import map_position_to_group
from scoutbase.services.providers.api_football import ApiFootballProvider, api_football_headers
from scoutbase.services.providers.base import SearchHit, StatsProvider, derive_career_stats
from scoutbase.services.providers.client import (
    ProviderHTTPClient,
    RateLimiter,
    RequestBudget,
)
from scoutbase.services.providers.fotmob import FOTMOB_BASE_URL, FotMobProvider
from scoutbase.services.repository import ScoutingRepository

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentSummary:
    source: str
    players_processed: int = 0
    profiles_fetched: int = 0
    profiles_merged: int = 0
    external_ids_mapped: int = 0
    added_to_review_queue: int = 0
    stats_stored: int = 0
    errors: int = 0
    requests_used: int = 0
    budget_exhausted: bool = False

    def to_dict(self) -> Dict:
        return asdict(self)


def score_search_hits(
    player: Player,
    hits: List[SearchHit],
    fuzzy_cutoff: float = 0.8,
    position_bonus: float = 0.1,
) -> List[MatchCandidate]:
    """
    Score provider search hits against a canonical player.

    Candidate player_id holds the hit's index in `hits`. An exact
    normalized name scores 1.0, otherwise the name similarity when above
    the cutoff; a matching position group adds a bonus. Capped at 1.0.
    """
    target = player.name_normalized or normalize_name(player.name)
    candidates = []
    for index, hit in enumerate(hits):
        name = normalize_name(hit.name)
        if name == target:
            score, reasons = 1.0, ["exact_name_match"]
        else:
            similarity = FuzzyMatcher.similarity(target, name)
            if similarity <= fuzzy_cutoff:
                continue
            score, reasons = similarity, [f"name_similarity_{round(similarity * 100)}%"]

        if player.position_group and hit.position:
            group = map_position_to_group(hit.position)
            if group is not None and group.value == player.position_group:
                score += position_bonus
                reasons.append("position_match")

        candidates.append(MatchCandidate(player_id=index, score=min(score, 1.0), reasons=reasons))
    return candidates


class EnrichmentOrchestrator:
    """
    One enrichment run against one source.

    Not re-entrant: create one instance per run. The budget object is
    shared with the provider's HTTP client so every call is counted once.
    """

    def __init__(
        self,
        repository: ScoutingRepository,
        provider: StatsProvider,
        budget: RequestBudget,
        merger: Optional[FieldMerger] = None,
        resolver_config: Optional[ResolverConfig] = None,
        search_fuzzy_cutoff: Optional[float] = None,
        position_bonus: Optional[float] = None,
    ) -> None:
        self.repository = repository
        self.provider = provider
        self.source = provider.name
        self.budget = budget
        self.merger = merger or FieldMerger(repository)
        self.resolver_config = resolver_config or ResolverConfig.from_settings(settings)
        self.search_fuzzy_cutoff = (
            search_fuzzy_cutoff if search_fuzzy_cutoff is not None else settings.SEARCH_FUZZY_CUTOFF
        )
        self.position_bonus = position_bonus if position_bonus is not None else settings.SEARCH_POSITION_BONUS
        self.summary = EnrichmentSummary(source=self.source)
        self._linked = False

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def _ensure_budget(self) -> None:
        if not self.budget.can_spend():
            raise BudgetExhaustedError(self.source, self.budget.used, self.budget.max_requests)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self, batch_size: int) -> EnrichmentRun:
        """
        Fetch stats still owed to linked players, then process one batch of
        players lacking an identity for this source.

        Args:
            batch_size: Maximum players to select

        Returns:
            The persisted EnrichmentRun (completed or failed)

        Raises:
            FatalOrchestrationError: If the run record itself cannot be written
        """
        try:
            run = self.repository.create_enrichment_run(self.source, self.budget.max_requests, batch_size)
        except DatabaseError as e:
            raise FatalOrchestrationError(f"Cannot start {self.source} enrichment run: {e.message}")

        logger.info(f"[{self.source}] Starting enrichment run {run.id} with budget {self.budget.max_requests}")
        status, error_message = "completed", None
        try:
            await self._process_batch(batch_size)
        except Exception as e:
            status, error_message = "failed", str(e)
            logger.error(f"[{self.source}] Enrichment run {run.id} failed: {str(e)}", exc_info=True)

        self.summary.requests_used = self.budget.used
        try:
            run = self.repository.finish_enrichment_run(
                run.id,
                status=status,
                summary=self.summary.to_dict(),
                requests_used=self.budget.used,
                budget_exhausted=self.summary.budget_exhausted,
                error_message=error_message,
            )
        except DatabaseError as e:
            raise FatalOrchestrationError(
                f"Cannot record {self.source} enrichment run {run.id}: {e.message}",
                details={"summary": self.summary.to_dict()},
            )

        logger.info(f"[{self.source}] Enrichment run {run.id} {status}: {self.summary.to_dict()}")
        return run

    async def _process_batch(self, batch_size: int) -> None:
        state = self.repository.get_enrichment_state(self.source)
        cursor = state.last_processed_player_id if state else None
        total = state.total_processed if state else 0

        last_done: Optional[int] = cursor
        try:
            await self._fetch_missing_stats(batch_size)

            players = self.repository.list_players_missing_identity(self.source, cursor, batch_size)
            if not players and cursor is not None:
                logger.info(f"[{self.source}] Cursor exhausted, restarting from the first player")
                players = self.repository.list_players_missing_identity(self.source, None, batch_size)
            logger.info(f"[{self.source}] Found {len(players)} players to enrich")

            for player in players:
                self._linked = False
                try:
                    await self._process_player(player)
                except (BudgetExhaustedError, RateLimitError):
                    # A linked player is done; its stats are fetched by the next run
                    if self._linked:
                        self.summary.players_processed += 1
                        last_done = player.id
                    raise
                self.summary.players_processed += 1
                last_done = player.id
        except BudgetExhaustedError:
            self.summary.budget_exhausted = True
            logger.info(f"[{self.source}] Budget exhausted after {self.budget.used} requests")
        except RateLimitError as e:
            logger.warning(f"[{self.source}] Stopped by source rate limit: {e.message}")
        finally:
            if self.summary.players_processed:
                self.repository.save_enrichment_state(
                    self.source, last_done, total + self.summary.players_processed
                )

    async def _process_player(self, player: Player) -> None:
        try:
            self._ensure_budget()
            hits = await self.provider.search_players(player.name)
            hits = [h for h in hits if self._is_unclaimed(h, player)]

            if not hits:
                self.repository.enqueue_review_item(
                    self.source,
                    f"player:{player.id}",
                    payload={"player_id": player.id, "name": player.name, "hits": []},
                    candidate_player_ids=[player.id],
                    reason="no_search_results",
                )
                self.summary.added_to_review_queue += 1
                logger.info(f"[{self.source}] No search results for {player.name}")
                return

            candidates = score_search_hits(player, hits, self.search_fuzzy_cutoff, self.position_bonus)
            decision = decide(candidates, self.resolver_config)
            if not decision.is_match:
                top = hits[decision.candidate_player_ids[0]] if decision.candidate_player_ids else hits[0]
                self.repository.enqueue_review_item(
                    self.source,
                    top.source_player_id,
                    payload={
                        "player_id": player.id,
                        "name": player.name,
                        "hits": [asdict(h) for h in hits],
                    },
                    candidate_player_ids=[player.id],
                    reason=decision.reason or "no_confident_match_in_search",
                )
                self.summary.added_to_review_queue += 1
                return

            hit = hits[decision.player_id]
            self._ensure_budget()
            profile = await self.provider.get_profile(hit.source_player_id)
            self.summary.profiles_fetched += 1

            self.repository.upsert_identity(player.id, self.source, hit.source_player_id, decision.confidence)
            self._linked = True
            self.summary.external_ids_mapped += 1
            self.merger.merge_profile(
                player.id, self.source, hit.source_player_id, profile.normalized, raw_profile=profile.raw
            )
            self.summary.profiles_merged += 1
            self.repository.dequeue_review_item(self.source, hit.source_player_id)

            await self._store_stats(player.id, hit.source_player_id)
            logger.info(f"[{self.source}] Enriched player {player.id}: {player.name}")
        except (BudgetExhaustedError, RateLimitError, DatabaseError):
            raise
        except Exception as e:
            self.summary.errors += 1
            logger.error(f"[{self.source}] Error processing player {player.id} ({player.name}): {str(e)}")

    async def _fetch_missing_stats(self, limit: int) -> None:
        """Fetch stats for players linked earlier whose stats were never stored."""
        identities = self.repository.list_identities_missing_aggregate(self.source, "career", limit)
        if identities:
            logger.info(f"[{self.source}] {len(identities)} linked players still need stats")
        for identity in identities:
            await self._store_stats(identity.player_id, identity.source_player_id)

    async def _store_stats(self, player_id: int, source_player_id: str) -> None:
        self._ensure_budget()
        try:
            seasons = await self.provider.get_season_stats(source_player_id)
        except (BudgetExhaustedError, RateLimitError, DatabaseError):
            raise
        except Exception as e:
            logger.warning(f"[{self.source}] Failed to fetch stats for player {player_id}: {str(e)}")
            return

        # No seasons still stores a row so the player is not fetched again
        career = derive_career_stats(seasons) or {"seasons": 0}
        self.repository.upsert_provider_aggregate(player_id, self.source, "career", career)
        self.summary.stats_stored += 1

    def _is_unclaimed(self, hit: SearchHit, player: Player) -> bool:
        identity = self.repository.get_identity(self.source, hit.source_player_id)
        return identity is None or identity.player_id == player.id


# ============================================================================
# Provider construction and multi-source runs
# ============================================================================

ProviderBuilder = Callable[[RequestBudget, RateLimiter], StatsProvider]


def build_fotmob_provider(budget: RequestBudget, rate_limiter: RateLimiter) -> StatsProvider:
    client = ProviderHTTPClient("fotmob", FOTMOB_BASE_URL, budget, rate_limiter)
    return FotMobProvider(client)


def build_api_football_provider(budget: RequestBudget, rate_limiter: RateLimiter) -> ApiFootballProvider:
    client = ProviderHTTPClient(
        "api_football",
        settings.API_FOOTBALL_BASE_URL,
        budget,
        rate_limiter,
        headers=api_football_headers(settings.API_FOOTBALL_KEY, settings.API_FOOTBALL_BASE_URL),
    )
    return ApiFootballProvider(client, season=settings.API_FOOTBALL_SEASON)


PROVIDER_BUILDERS: Dict[str, ProviderBuilder] = {
    "fotmob": build_fotmob_provider,
    "api_football": build_api_football_provider,
}


async def enrich_source(
    repository: ScoutingRepository,
    source: str,
    max_requests: Optional[int] = None,
    batch_size: Optional[int] = None,
    rate_limiter: Optional[RateLimiter] = None,
    builders: Optional[Dict[str, ProviderBuilder]] = None,
) -> EnrichmentRun:
    """
    Run one enrichment batch for a configured source.

    Raises:
        ValueError: If no provider is registered for `source`
    """
    builders = builders or PROVIDER_BUILDERS
    if source not in builders:
        raise ValueError(f"No provider registered for source '{source}'")

    budget = RequestBudget(
        max_requests if max_requests is not None else settings.ENRICHMENT_DEFAULT_BUDGET,
        source=source,
    )
    provider = builders[source](budget, rate_limiter or RateLimiter(max_jitter=settings.HTTP_MAX_JITTER_SECONDS))
    try:
        orchestrator = EnrichmentOrchestrator(repository, provider, budget)
        return await orchestrator.run(batch_size or settings.ENRICHMENT_DEFAULT_BATCH_SIZE)
    finally:
        await provider.close()


async def enrich_all_sources(
    repository: ScoutingRepository,
    sources: Optional[List[str]] = None,
    max_requests: Optional[int] = None,
    batch_size: Optional[int] = None,
    builders: Optional[Dict[str, ProviderBuilder]] = None,
) -> List[EnrichmentRun]:
    """Run each source in turn, each with its own budget and a shared pacing context."""
    rate_limiter = RateLimiter(max_jitter=settings.HTTP_MAX_JITTER_SECONDS)
    runs = []
    for source in sources or settings.enrichment_sources:
        runs.append(
            await enrich_source(
                repository,
                source,
                max_requests=max_requests,
                batch_size=batch_size,
                rate_limiter=rate_limiter,
                builders=builders,
            )
        )
    return runs
