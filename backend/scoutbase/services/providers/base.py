"""
Provider Interface
Abstract interface every enrichment source implements.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass
class SearchHit:
    source_player_id: str
    name: str
    team_id: Optional[str] = None
    team_name: Optional[str] = None
    position: Optional[str] = None


@dataclass
class ProviderProfileResult:
    """
    Raw payload plus the normalized subset.

    `normalized` uses canonical player field names: name, birth_date,
    nationality, height_cm, weight_kg, preferred_foot, photo_url,
    position, position_group.
    """
    source_player_id: str
    raw: Dict[str, Any]
    normalized: Dict[str, Any]


@dataclass
class SeasonStats:
    season: Optional[str] = None
    league_id: Optional[str] = None
    appearances: Optional[int] = None
    minutes: Optional[int] = None
    goals: Optional[int] = None
    assists: Optional[int] = None
    xg: Optional[float] = None
    xa: Optional[float] = None
    npxg: Optional[float] = None
    rating: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class StatsProvider(ABC):
    """
    Abstract interface for an external statistics source.

    Every method is one external call and spends one unit of the run's
    request budget.
    """

    name: str = ""

    @abstractmethod
    async def search_players(self, query: str) -> List[SearchHit]:
        """
        Search the source by player name.

        Args:
            query: Player name

        Returns:
            Matching players (possibly empty)
        """
        pass

    @abstractmethod
    async def get_profile(self, source_player_id: str) -> ProviderProfileResult:
        pass

    @abstractmethod
    async def get_season_stats(self, source_player_id: str) -> List[SeasonStats]:
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None


def derive_career_stats(seasons: List[SeasonStats]) -> Optional[Dict[str, float]]:
    """
    Sum season totals into a career aggregate.

    Per-90 figures are added only when the summed minutes are positive.

    Returns:
        Career totals, or None when there are no seasons
    """
    if not seasons:
        return None

    def total(attr: str) -> float:
        return sum((getattr(s, attr) or 0) for s in seasons)

    career: Dict[str, float] = {
        "seasons": len(seasons),
        "appearances": int(total("appearances")),
        "minutes": int(total("minutes")),
        "goals": int(total("goals")),
        "assists": int(total("assists")),
        "xG": float(total("xg")),
        "xA": float(total("xa")),
        "npxG": float(total("npxg")),
    }

    if career["minutes"] > 0:
        factor = 90.0 / career["minutes"]
        career["goalsPer90"] = career["goals"] * factor
        career["assistsPer90"] = career["assists"] * factor
        career["xGPer90"] = career["xG"] * factor
        career["xAPer90"] = career["xA"] * factor

    return career
