"""
Rating Service
Recomputes rolling statistics, player ratings and competition strength
from stored appearances.

Every pass is a full recomputation. Writes are split into fixed-size
chunks and applied sequentially.
"""
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional
import logging

import pandas as pd

from scoutbase.core.config import settings
from scoutbase.exceptions import NotFoundError, ValidationError
from scoutbase.metrics import DEFAULT_RATING_PROFILES, PositionGroup, RatingProfileSpec, parse_tier
from scoutbase.models import Competition, Player
from scoutbase.services.competition_strength import competition_strength
from scoutbase.services.position_mapping import map_position_to_group
from scoutbase.services.repository import ScoutingRepository
from scoutbase.services.scoring import level_score, rate_cohort
from scoutbase.services.stats_aggregator import compute_last_n_stats, compute_rolling_stats

logger = logging.getLogger(__name__)


@dataclass
class CompetitionSummary:
    competition_id: int
    tier: Optional[str]
    players_with_appearances: int = 0
    players_rated: int = 0
    players_without_position: int = 0
    strength_score: int = 0


@dataclass
class RecomputeSummary:
    from_date: date
    to_date: date
    dry_run: bool
    rolling_stats_written: int = 0
    ratings_written: int = 0
    competitions: List[CompetitionSummary] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["from_date"] = self.from_date.isoformat()
        data["to_date"] = self.to_date.isoformat()
        return data


def _chunks(rows: List[Dict[str, Any]], size: int):
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


def _position_group(player: Player) -> Optional[PositionGroup]:
    if player.position_group:
        try:
            return PositionGroup(player.position_group)
        except ValueError:
            pass
    return map_position_to_group(player.position)


class RatingService:
    """Full recomputation of rolling stats and ratings."""

    def __init__(
        self,
        repository: ScoutingRepository,
        min_minutes: Optional[int] = None,
        window_days: Optional[int] = None,
        form_matches: Optional[int] = None,
        top_n: Optional[int] = None,
        exponent: Optional[float] = None,
        batch_size: Optional[int] = None,
    ):
        self.repository = repository
        self.min_minutes = min_minutes if min_minutes is not None else settings.RATING_MIN_MINUTES
        self.window_days = window_days or settings.ROLLING_WINDOW_DAYS
        self.form_matches = form_matches or settings.FORM_WINDOW_MATCHES
        self.top_n = top_n or settings.COMPETITION_STRENGTH_TOP_N
        self.exponent = exponent or settings.RATING_CURVE_EXPONENT
        self.batch_size = batch_size or settings.PERSISTENCE_BATCH_SIZE

    # ------------------------------------------------------------------
    # Rating profiles
    # ------------------------------------------------------------------

    def load_profiles(self) -> Dict[PositionGroup, RatingProfileSpec]:
        """Stored profiles, with built-in defaults for groups that have none."""
        profiles = dict(DEFAULT_RATING_PROFILES)
        profiles.update(self.repository.get_rating_profiles())
        return profiles

    def seed_rating_profiles(self, force: bool = False) -> int:
        """
        Write the default rating profiles.

        Args:
            force: Overwrite profiles that are already stored

        Returns:
            Number of profiles written
        """
        existing = self.repository.get_rating_profiles()
        written = 0
        for group, spec in DEFAULT_RATING_PROFILES.items():
            if group in existing and not force:
                continue
            self.repository.upsert_rating_profile(spec)
            written += 1
        logger.info(f"Seeded {written} rating profiles")
        return written

    # ------------------------------------------------------------------
    # Recomputation
    # ------------------------------------------------------------------

    def recompute(
        self,
        competition_id: Optional[int] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        dry_run: bool = False,
    ) -> RecomputeSummary:
        """
        Recompute rolling stats, player ratings and competition ratings.

        Args:
            competition_id: Only this competition (default: all active)
            from_date: Window start (default: to_date minus the window length)
            to_date: Window end (default: today)
            dry_run: Compute without writing

        Returns:
            RecomputeSummary with per-competition counts

        Raises:
            NotFoundError: If competition_id does not exist
            ValidationError: If from_date is after to_date
        """
        to_date = to_date or date.today()
        from_date = from_date or to_date - timedelta(days=self.window_days)
        if from_date > to_date:
            raise ValidationError(
                "from_date must not be after to_date",
                details={"from_date": from_date.isoformat(), "to_date": to_date.isoformat()},
            )

        if competition_id is not None:
            competition = self.repository.get_competition(competition_id)
            if competition is None:
                raise NotFoundError("Competition", str(competition_id))
            competitions = [competition]
        else:
            competitions = self.repository.list_competitions(active_only=True)

        profiles = self.load_profiles()
        summary = RecomputeSummary(from_date=from_date, to_date=to_date, dry_run=dry_run)
        logger.info(
            f"Recomputing ratings for {len(competitions)} competitions "
            f"({from_date} to {to_date}{', dry run' if dry_run else ''})"
        )

        for competition in competitions:
            summary.competitions.append(
                self._recompute_competition(competition, profiles, from_date, to_date, dry_run, summary)
            )

        logger.info(
            f"Recompute finished: {summary.rolling_stats_written} rolling rows, "
            f"{summary.ratings_written} ratings written"
        )
        return summary

    def _recompute_competition(
        self,
        competition: Competition,
        profiles: Dict[PositionGroup, RatingProfileSpec],
        from_date: date,
        to_date: date,
        dry_run: bool,
        summary: RecomputeSummary,
    ) -> CompetitionSummary:
        result = CompetitionSummary(competition_id=competition.id, tier=competition.tier)
        appearances = self.repository.list_appearances(competition_id=competition.id)
        if not appearances:
            logger.info(f"Competition {competition.id}: no appearances")
            return result

        frame = pd.DataFrame({
            "player_id": [a.player_id for a in appearances],
            "row": range(len(appearances)),
        })

        rolling_rows: List[Dict[str, Any]] = []
        cohorts: Dict[PositionGroup, Dict[int, Any]] = {}
        form_cohorts: Dict[PositionGroup, Dict[int, Any]] = {}

        for player_id, group in frame.groupby("player_id"):
            player_id = int(player_id)
            player_apps = [appearances[i] for i in group["row"]]
            window = compute_rolling_stats(player_apps, from_date, to_date)
            form = compute_last_n_stats(
                [a for a in player_apps if a.match_date <= to_date], self.form_matches
            )
            rolling_rows.append({
                "player_id": player_id,
                "competition_id": competition.id,
                "from_date": from_date,
                "to_date": to_date,
                "minutes": window.minutes,
                "totals": window.totals,
                "per90": window.per90,
                "rates": window.rates,
                "last5": form.to_dict(),
            })

            if window.minutes < self.min_minutes:
                continue
            player = self.repository.get_player(player_id)
            position_group = _position_group(player) if player else None
            if position_group is None:
                result.players_without_position += 1
                continue
            cohorts.setdefault(position_group, {})[player_id] = window.features
            form_cohorts.setdefault(position_group, {})[player_id] = form.features

        result.players_with_appearances = len(rolling_rows)

        tier = parse_tier(competition.tier)
        rating_rows: List[Dict[str, Any]] = []
        for position_group, cohort in cohorts.items():
            profile = profiles[position_group]
            ratings = rate_cohort(cohort, profile, self.exponent)
            form_ratings = rate_cohort(form_cohorts[position_group], profile, self.exponent)
            for player_id, rating in ratings.items():
                rating_rows.append({
                    "player_id": player_id,
                    "competition_id": competition.id,
                    "position_group": position_group.value,
                    "rating_365": rating,
                    "rating_last5": form_ratings[player_id],
                    "level_score": level_score(rating, tier),
                    "tier": competition.tier,
                })
            logger.debug(f"Competition {competition.id}: rated {len(ratings)} {position_group.value} players")

        result.players_rated = len(rating_rows)
        result.strength_score = competition_strength(
            [row["level_score"] for row in rating_rows], self.top_n
        )

        if dry_run:
            logger.info(
                f"Competition {competition.id} (dry run): {result.players_rated} rated, "
                f"strength {result.strength_score}"
            )
            return result

        for chunk in _chunks(rolling_rows, self.batch_size):
            summary.rolling_stats_written += self.repository.upsert_rolling_stats_batch(chunk)
        for chunk in _chunks(rating_rows, self.batch_size):
            summary.ratings_written += self.repository.upsert_player_ratings_batch(chunk)
        self.repository.upsert_competition_rating(
            competition.id, competition.tier, result.strength_score, result.players_rated
        )
        logger.info(
            f"Competition {competition.id}: {result.players_rated} rated, strength {result.strength_score}"
        )
        return result
