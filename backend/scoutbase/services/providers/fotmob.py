"""
FotMob Provider
Search, profile and season statistics from FotMob's public JSON endpoints.
"""
import re
from typing import Any, Dict, List, Optional
import logging

from scoutbase.services.position_mapping import map_position_to_group
from scoutbase.services.providers.base import (
    ProviderProfileResult,
    SearchHit,
    SeasonStats,
    StatsProvider,
)
from scoutbase.services.providers.client import ProviderHTTPClient

logger = logging.getLogger(__name__)

FOTMOB_BASE_URL = "https://www.fotmob.com/api"

_HEIGHT = re.compile(r"(\d+)\s*cm", re.IGNORECASE)
_WEIGHT = re.compile(r"(\d+)\s*kg", re.IGNORECASE)


def parse_height(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    match = _HEIGHT.search(str(value))
    return int(match.group(1)) if match else None


def parse_weight(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    match = _WEIGHT.search(str(value))
    return int(match.group(1)) if match else None


def normalize_preferred_foot(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    lower = value.strip().lower()
    if lower in ("left", "right"):
        return lower
    if lower in ("both", "either"):
        return "both"
    return None


def normalize_profile(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Extract canonical player fields from a playerData payload.

    Fields the payload does not carry are left out.
    """
    birth = (payload.get("birthDate") or {}).get("utcTime")
    position = ((payload.get("positionDescription") or {}).get("primaryPosition") or {}).get("label")
    group = map_position_to_group(position)

    normalized = {
        "name": payload.get("name"),
        "birth_date": birth.split("T")[0] if birth else None,
        "nationality": (payload.get("nationality") or {}).get("country"),
        "height_cm": parse_height(payload.get("height")),
        "weight_kg": parse_weight(payload.get("weight")),
        "preferred_foot": normalize_preferred_foot(payload.get("preferredFoot")),
        "position": position,
        "position_group": group.value if group else None,
    }
    return {key: value for key, value in normalized.items() if value is not None}


def normalize_season_stats(payload: Dict[str, Any]) -> List[SeasonStats]:
    seasons: List[SeasonStats] = []
    for season in payload.get("statSeasons") or []:
        stats = season.get("stats")
        if not stats:
            continue
        league_id = season.get("leagueId")
        seasons.append(
            SeasonStats(
                season=season.get("seasonName"),
                league_id=str(league_id) if league_id is not None else None,
                appearances=stats.get("appearances"),
                minutes=stats.get("minutes"),
                goals=stats.get("goals"),
                assists=stats.get("assists"),
                xg=stats.get("expectedGoals"),
                xa=stats.get("expectedAssists"),
                npxg=stats.get("expectedGoalsNonPenalty"),
                rating=stats.get("rating"),
            )
        )
    return seasons


class FotMobProvider(StatsProvider):
    """FotMob adapter over a budgeted, rate-limited HTTP client."""

    name = "fotmob"

    def __init__(self, client: ProviderHTTPClient) -> None:
        self.client = client

    async def search_players(self, query: str) -> List[SearchHit]:
        data = await self.client.get_json("searchapi/", params={"term": query})
        squad = data.get("squad") if isinstance(data, dict) else None
        if not isinstance(squad, list):
            return []

        hits = []
        for entry in squad:
            if entry.get("id") is None or not entry.get("name"):
                continue
            team_id = entry.get("teamId")
            hits.append(
                SearchHit(
                    source_player_id=str(entry["id"]),
                    name=entry["name"],
                    team_id=str(team_id) if team_id is not None else None,
                    team_name=entry.get("teamName"),
                    position=entry.get("position"),
                )
            )
        return hits

    async def get_profile(self, source_player_id: str) -> ProviderProfileResult:
        data = await self.client.get_json("playerData", params={"id": source_player_id})
        return ProviderProfileResult(
            source_player_id=str(source_player_id),
            raw=data,
            normalized=normalize_profile(data),
        )

    async def get_season_stats(self, source_player_id: str) -> List[SeasonStats]:
        data = await self.client.get_json("playerData", params={"id": source_player_id})
        return normalize_season_stats(data)

    async def close(self) -> None:
        await self.client.close()
