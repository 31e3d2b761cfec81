"""
Metric vocabulary shared by the stats aggregator and the rating scorer.

Rating profiles are data: a profile maps MetricKey members to weights and
lists the metrics where a lower value is better. Profiles stored in the
database are parsed back into this closed set of keys.
"""

from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from dataclasses import dataclass, field

from scoutbase.exceptions import ValidationError


class PositionGroup(str, Enum):
    GK = "GK"
    DEF = "DEF"
    MID = "MID"
    ATT = "ATT"


class Tier(str, Enum):
    PLATINUM = "Platinum"
    DIAMOND = "Diamond"
    ELITE = "Elite"
    GOLD = "Gold"
    SILVER = "Silver"
    BRONZE = "Bronze"


TIER_FACTORS: Dict[Tier, float] = {
    Tier.PLATINUM: 1.0,
    Tier.DIAMOND: 0.92,
    Tier.ELITE: 0.88,
    Tier.GOLD: 0.85,
    Tier.SILVER: 0.78,
    Tier.BRONZE: 0.7,
}


class MetricKey(str, Enum):
    """Feature keys a rating profile can weight."""

    GOALS_PER90 = "goalsPer90"
    ASSISTS_PER90 = "assistsPer90"
    SHOTS_PER90 = "shotsPer90"
    SHOTS_ON_TARGET_PER90 = "shotsOnTargetPer90"
    PASSES_PER90 = "passesPer90"
    KEY_PASSES_PER90 = "keyPassesPer90"
    TACKLES_PER90 = "tacklesPer90"
    INTERCEPTIONS_PER90 = "interceptionsPer90"
    TACKLES_INTERCEPTIONS_PER90 = "tacklesInterceptionsPer90"
    CLEARANCES_PER90 = "clearancesPer90"
    BLOCKS_PER90 = "blocksPer90"
    DUELS_WON_PER90 = "duelsWonPer90"
    AERIAL_DUELS_WON_PER90 = "aerialDuelsWonPer90"
    DRIBBLES_PER90 = "dribblesPer90"
    DRIBBLES_SUCCESSFUL_PER90 = "dribblesSuccessfulPer90"
    FOULS_COMMITTED_PER90 = "foulsCommittedPer90"
    YELLOW_CARDS_PER90 = "yellowCardsPer90"
    RED_CARDS_PER90 = "redCardsPer90"
    CARDS_PENALTY_PER90 = "cardsPenaltyPer90"
    SAVES_PER90 = "savesPer90"
    GOALS_CONCEDED_PER90 = "goalsConcededPer90"
    XG_PER90 = "xGPer90"
    XA_PER90 = "xAPer90"
    GOAL_CONTRIBUTIONS_PER90 = "goalContributionsPer90"
    PASS_COMPLETION_RATE = "passCompletionRate"
    DUEL_WIN_RATE = "duelWinRate"
    AERIAL_WIN_RATE = "aerialWinRate"
    DRIBBLE_SUCCESS_RATE = "dribbleSuccessRate"
    SHOT_ACCURACY = "shotAccuracy"
    CLEAN_SHEET_RATE = "cleanSheetRate"
    SAVE_RATE = "saveRate"


# Summable per-appearance counters. cleanSheet is a flag counted separately,
# passAccuracy is a percentage averaged into passCompletionRate.
COUNTING_STATS: Tuple[str, ...] = (
    "goals", "assists", "shots", "shotsOnTarget", "passes", "keyPasses",
    "tackles", "interceptions", "clearances", "blocks", "duelsWon",
    "duelsTotal", "aerialDuelsWon", "aerialDuelsTotal", "dribbles",
    "dribblesSuccessful", "foulsCommitted", "foulsDrawn", "yellowCards",
    "redCards", "saves", "goalsConceded", "penaltiesSaved",
    "penaltiesMissed",
)
EXPECTED_STATS: Tuple[str, ...] = ("xG", "xA")
APPEARANCE_STATS: Tuple[str, ...] = COUNTING_STATS + EXPECTED_STATS + ("passAccuracy", "cleanSheet")

# Totals scaled to per-90 figures
PER90_STATS: Tuple[str, ...] = (
    "goals", "assists", "shots", "shotsOnTarget", "passes", "keyPasses",
    "tackles", "interceptions", "clearances", "blocks", "duelsWon",
    "aerialDuelsWon", "dribbles", "dribblesSuccessful", "foulsCommitted",
    "foulsDrawn", "saves", "goalsConceded", "xG", "xA",
)


@dataclass
class RatingProfileSpec:
    """Weights and inverted metrics for one position group."""
    position_group: PositionGroup
    weights: Dict[MetricKey, float]
    invert: frozenset = field(default_factory=frozenset)

    def to_storage(self) -> Tuple[Dict[str, float], List[str]]:
        weights = {key.value: float(w) for key, w in self.weights.items()}
        invert = sorted(key.value for key in self.invert)
        return weights, invert

    @classmethod
    def from_storage(
        cls,
        position_group: str,
        weights: Mapping[str, float],
        invert_metrics: Optional[Iterable[str]] = None,
    ) -> "RatingProfileSpec":
        """
        Build a profile from its stored JSON form.

        Raises:
            ValidationError: If the group or any metric key is unknown
        """
        try:
            group = PositionGroup(position_group)
            parsed = {MetricKey(k): float(v) for k, v in (weights or {}).items()}
            invert = frozenset(MetricKey(k) for k in (invert_metrics or []))
        except ValueError as e:
            raise ValidationError(
                f"Invalid rating profile for {position_group}: {e}",
                details={"position_group": position_group},
            )
        return cls(position_group=group, weights=parsed, invert=invert)


DEFAULT_RATING_PROFILES: Dict[PositionGroup, RatingProfileSpec] = {
    PositionGroup.GK: RatingProfileSpec(
        PositionGroup.GK,
        weights={
            MetricKey.SAVES_PER90: 0.25,
            MetricKey.GOALS_CONCEDED_PER90: 0.25,
            MetricKey.CLEAN_SHEET_RATE: 0.2,
            MetricKey.SAVE_RATE: 0.15,
            MetricKey.PASS_COMPLETION_RATE: 0.1,
            MetricKey.CLEARANCES_PER90: 0.05,
        },
        invert=frozenset({MetricKey.GOALS_CONCEDED_PER90}),
    ),
    PositionGroup.DEF: RatingProfileSpec(
        PositionGroup.DEF,
        weights={
            MetricKey.TACKLES_INTERCEPTIONS_PER90: 0.2,
            MetricKey.AERIAL_WIN_RATE: 0.15,
            MetricKey.DUEL_WIN_RATE: 0.15,
            MetricKey.CLEARANCES_PER90: 0.1,
            MetricKey.BLOCKS_PER90: 0.08,
            MetricKey.KEY_PASSES_PER90: 0.08,
            MetricKey.DRIBBLES_SUCCESSFUL_PER90: 0.07,
            MetricKey.GOAL_CONTRIBUTIONS_PER90: 0.07,
            MetricKey.CARDS_PENALTY_PER90: 0.1,
        },
        invert=frozenset({MetricKey.CARDS_PENALTY_PER90}),
    ),
    PositionGroup.MID: RatingProfileSpec(
        PositionGroup.MID,
        weights={
            MetricKey.KEY_PASSES_PER90: 0.18,
            MetricKey.ASSISTS_PER90: 0.12,
            MetricKey.PASS_COMPLETION_RATE: 0.12,
            MetricKey.TACKLES_INTERCEPTIONS_PER90: 0.12,
            MetricKey.DUEL_WIN_RATE: 0.1,
            MetricKey.DRIBBLES_SUCCESSFUL_PER90: 0.1,
            MetricKey.GOALS_PER90: 0.08,
            MetricKey.XA_PER90: 0.08,
            MetricKey.CARDS_PENALTY_PER90: 0.1,
        },
        invert=frozenset({MetricKey.CARDS_PENALTY_PER90}),
    ),
    PositionGroup.ATT: RatingProfileSpec(
        PositionGroup.ATT,
        weights={
            MetricKey.GOALS_PER90: 0.2,
            MetricKey.XG_PER90: 0.15,
            MetricKey.ASSISTS_PER90: 0.1,
            MetricKey.XA_PER90: 0.1,
            MetricKey.SHOTS_ON_TARGET_PER90: 0.12,
            MetricKey.KEY_PASSES_PER90: 0.1,
            MetricKey.DRIBBLE_SUCCESS_RATE: 0.08,
            MetricKey.SHOT_ACCURACY: 0.08,
            MetricKey.CARDS_PENALTY_PER90: 0.07,
        },
        invert=frozenset({MetricKey.CARDS_PENALTY_PER90}),
    ),
}


def parse_tier(value: Optional[str]) -> Optional[Tier]:
    """Parse a stored tier label; None or unknown labels yield None."""
    if not value:
        return None
    try:
        return Tier(value)
    except ValueError:
        return None
