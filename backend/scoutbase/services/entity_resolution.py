"""
Entity Resolution Service
Maps an externally-sourced player record to a canonical player, a
confidence score, or a "needs review" verdict.

Resolution is read-only: persisting the decision (identity link, new
player, review item) is the caller's job.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence
import logging

from scoutbase.core.config import Settings, settings as default_settings
from scoutbase.services.fuzzy_matching import FuzzyMatcher
from scoutbase.services.name_normalizer import normalize_name
from scoutbase.services.repository import ScoutingRepository

logger = logging.getLogger(__name__)


@dataclass
class ExternalPlayerRecord:
    """A player as described by one external source."""
    source: str
    source_player_id: str
    name: str
    team_name: Optional[str] = None
    competition_name: Optional[str] = None
    birth_date: Optional[str] = None
    nationality: Optional[str] = None
    position: Optional[str] = None


@dataclass
class MatchCandidate:
    player_id: int
    score: float
    reasons: List[str] = field(default_factory=list)


class ResolutionStatus(str, Enum):
    EXISTING = "existing"
    ACCEPTED = "accepted"
    AMBIGUOUS = "ambiguous"
    LOW_CONFIDENCE = "low_confidence"
    NEW = "new"


@dataclass
class ResolveResult:
    status: ResolutionStatus
    player_id: Optional[int]
    confidence: float
    is_new: bool
    reason: str
    candidate_player_ids: List[int] = field(default_factory=list)

    @property
    def needs_review(self) -> bool:
        return self.status in (ResolutionStatus.AMBIGUOUS, ResolutionStatus.LOW_CONFIDENCE)

    @property
    def is_match(self) -> bool:
        return self.status in (ResolutionStatus.EXISTING, ResolutionStatus.ACCEPTED)


@dataclass(frozen=True)
class ResolverConfig:
    """Thresholds and score weights used by the resolver."""
    confidence_threshold: float = 0.92
    ambiguity_margin: float = 0.1
    min_candidate_score: float = 0.5
    team_fuzzy_cutoff: float = 0.8
    competition_fuzzy_cutoff: float = 0.85
    name_fuzzy_cutoff: float = 0.85
    exact_name_score: float = 0.8
    fuzzy_name_weight: float = 0.8
    birth_date_bonus: float = 0.15
    birth_date_penalty: float = 0.3
    nationality_bonus: float = 0.05

    @classmethod
    def from_settings(cls, config: Settings) -> "ResolverConfig":
        return cls(
            confidence_threshold=config.RESOLVER_CONFIDENCE_THRESHOLD,
            ambiguity_margin=config.RESOLVER_AMBIGUITY_MARGIN,
            min_candidate_score=config.RESOLVER_MIN_CANDIDATE_SCORE,
            team_fuzzy_cutoff=config.RESOLVER_TEAM_FUZZY_CUTOFF,
            competition_fuzzy_cutoff=config.RESOLVER_COMPETITION_FUZZY_CUTOFF,
            name_fuzzy_cutoff=config.RESOLVER_NAME_FUZZY_CUTOFF,
            exact_name_score=config.RESOLVER_EXACT_NAME_SCORE,
            fuzzy_name_weight=config.RESOLVER_FUZZY_NAME_WEIGHT,
            birth_date_bonus=config.RESOLVER_BIRTH_DATE_BONUS,
            birth_date_penalty=config.RESOLVER_BIRTH_DATE_PENALTY,
            nationality_bonus=config.RESOLVER_NATIONALITY_BONUS,
        )


# Float slack when comparing score gaps against the ambiguity margin
_EPSILON = 1e-9


def score_candidate(player, record: ExternalPlayerRecord, config: ResolverConfig) -> MatchCandidate:
    """
    Score how likely a canonical player is the athlete behind `record`.

    An exact normalized-name match scores exact_name_score; otherwise a
    name similarity above name_fuzzy_cutoff scores similarity * weight.
    A matching birth date adds a bonus and a differing one subtracts a
    penalty (floored at 0). A matching nationality (either string
    containing the other) adds a small bonus. Capped at 1.0.

    Args:
        player: Canonical player (anything with name_normalized,
            birth_date and nationality attributes)
        record: External record being resolved
        config: Resolver thresholds

    Returns:
        MatchCandidate (score 0.0 when names do not match at all)
    """
    reasons: List[str] = []
    target = normalize_name(record.name)
    known = player.name_normalized or normalize_name(getattr(player, "name", ""))

    if known == target:
        score = config.exact_name_score
        reasons.append("exact_name_match")
    else:
        similarity = FuzzyMatcher.similarity(known, target)
        if similarity <= config.name_fuzzy_cutoff:
            return MatchCandidate(player_id=player.id, score=0.0)
        score = similarity * config.fuzzy_name_weight
        reasons.append(f"name_similarity_{round(similarity * 100)}%")

    if player.birth_date and record.birth_date:
        if str(player.birth_date)[:10] == str(record.birth_date)[:10]:
            score += config.birth_date_bonus
            reasons.append("birth_date_match")
        else:
            score = max(0.0, score - config.birth_date_penalty)
            reasons.append("birth_date_mismatch")

    if player.nationality and record.nationality:
        ours = player.nationality.strip().lower()
        theirs = record.nationality.strip().lower()
        if ours == theirs or ours in theirs or theirs in ours:
            score += config.nationality_bonus
            reasons.append("nationality_match")

    return MatchCandidate(player_id=player.id, score=min(score, 1.0), reasons=reasons)


def decide(candidates: Sequence[MatchCandidate], config: ResolverConfig) -> ResolveResult:
    """
    Apply the acceptance policy to scored candidates.

    One candidate is accepted at or above the confidence threshold. With
    several, the best is accepted only if it clears the threshold and
    leads the runner-up by strictly more than the ambiguity margin.
    Everything else goes to review with every candidate id attached; no
    candidates at all means a new entity.
    """
    ranked = sorted(candidates, key=lambda c: c.score, reverse=True)
    candidate_ids = [c.player_id for c in ranked]

    if not ranked:
        return ResolveResult(
            status=ResolutionStatus.NEW,
            player_id=None,
            confidence=0.0,
            is_new=True,
            reason="no_candidates_found",
        )

    best = ranked[0]
    if len(ranked) == 1:
        if best.score >= config.confidence_threshold:
            return ResolveResult(
                status=ResolutionStatus.ACCEPTED,
                player_id=best.player_id,
                confidence=best.score,
                is_new=False,
                reason="single_match: " + ", ".join(best.reasons),
                candidate_player_ids=candidate_ids,
            )
        return ResolveResult(
            status=ResolutionStatus.LOW_CONFIDENCE,
            player_id=None,
            confidence=best.score,
            is_new=False,
            reason=f"low_confidence: best score {best.score:.2f}",
            candidate_player_ids=candidate_ids,
        )

    runner_up = ranked[1]
    lead = best.score - runner_up.score
    if best.score >= config.confidence_threshold and lead - config.ambiguity_margin > _EPSILON:
        return ResolveResult(
            status=ResolutionStatus.ACCEPTED,
            player_id=best.player_id,
            confidence=best.score,
            is_new=False,
            reason=f"clear_winner: lead {lead:.2f}, " + ", ".join(best.reasons),
            candidate_player_ids=candidate_ids,
        )

    status = (
        ResolutionStatus.AMBIGUOUS
        if best.score >= config.confidence_threshold
        else ResolutionStatus.LOW_CONFIDENCE
    )
    return ResolveResult(
        status=status,
        player_id=None,
        confidence=best.score,
        is_new=False,
        reason=f"{status.value}: {len(ranked)} candidates, lead {lead:.2f}",
        candidate_player_ids=candidate_ids,
    )


MatcherStrategy = Callable[
    [ExternalPlayerRecord, str, Optional[int], Optional[int]], Optional[List[MatchCandidate]]
]


def first_non_empty(
    strategies: Iterable[MatcherStrategy],
    record: ExternalPlayerRecord,
    normalized: str,
    team_id: Optional[int],
    competition_id: Optional[int],
) -> List[MatchCandidate]:
    """Run strategies in order and return the first non-empty result."""
    for strategy in strategies:
        found = strategy(record, normalized, team_id, competition_id)
        if found:
            return found
    return []


class IdentityResolver:
    """
    Resolve external records against the canonical player store.

    Candidate search runs an ordered list of matcher strategies (exact
    normalized name, then team-scoped fuzzy, then competition-scoped
    fuzzy); a broader strategy only runs when the narrower ones found
    nothing.
    """

    def __init__(self, repository: ScoutingRepository, config: Optional[ResolverConfig] = None):
        self.repository = repository
        self.config = config or ResolverConfig.from_settings(default_settings)
        self.strategies: List[MatcherStrategy] = [
            self._match_exact_name,
            self._match_team_scope,
            self._match_competition_scope,
        ]

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _score_all(self, players, record: ExternalPlayerRecord) -> List[MatchCandidate]:
        scored = [score_candidate(p, record, self.config) for p in players]
        return [c for c in scored if c.score >= self.config.min_candidate_score]

    def _match_exact_name(self, record, normalized, team_id, competition_id):
        if not normalized:
            return None
        players = self.repository.find_players_by_normalized_name(normalized)
        return self._score_all(players, record) or None

    def _fuzzy_scope(self, players, record, normalized, cutoff):
        by_id = {p.id: p for p in players}
        choices = {p.id: p.name_normalized for p in players if p.name_normalized}
        close = FuzzyMatcher.find_best_matches(normalized, choices, threshold=cutoff)
        return self._score_all([by_id[player_id] for player_id, _ in close], record) or None

    def _match_team_scope(self, record, normalized, team_id, competition_id):
        if team_id is None:
            return None
        players = self.repository.list_players_by_team(team_id)
        return self._fuzzy_scope(players, record, normalized, self.config.team_fuzzy_cutoff)

    def _match_competition_scope(self, record, normalized, team_id, competition_id):
        if competition_id is None:
            return None
        players = self.repository.list_players_by_competition(competition_id)
        return self._fuzzy_scope(players, record, normalized, self.config.competition_fuzzy_cutoff)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def find_candidates(
        self,
        record: ExternalPlayerRecord,
        team_id: Optional[int] = None,
        competition_id: Optional[int] = None,
    ) -> List[MatchCandidate]:
        """Candidates from the first strategy that finds any, best first."""
        normalized = normalize_name(record.name)
        found = first_non_empty(self.strategies, record, normalized, team_id, competition_id)
        return sorted(found, key=lambda c: c.score, reverse=True)

    def resolve(
        self,
        record: ExternalPlayerRecord,
        team_id: Optional[int] = None,
        competition_id: Optional[int] = None,
    ) -> ResolveResult:
        """
        Resolve an external record to a canonical player.

        Args:
            record: External record (source, source id, name, hints)
            team_id: Optional team scope for fuzzy search
            competition_id: Optional competition scope for fuzzy search

        Returns:
            ResolveResult; an already-mapped (source, source id) pair returns
            its player with confidence 1.0
        """
        identity = self.repository.get_identity(record.source, record.source_player_id)
        if identity is not None:
            return ResolveResult(
                status=ResolutionStatus.EXISTING,
                player_id=identity.player_id,
                confidence=1.0,
                is_new=False,
                reason="existing_external_id",
            )

        candidates = self.find_candidates(record, team_id=team_id, competition_id=competition_id)
        result = decide(candidates, self.config)

        if result.needs_review:
            logger.warning(
                f"{record.source}:{record.source_player_id} ({record.name}) needs review: {result.reason}"
            )
        else:
            logger.debug(f"{record.source}:{record.source_player_id} resolved: {result.reason}")
        return result
