"""
API-Football Provider
Primary source: competitions, teams, paginated squads, fixtures and
per-fixture player statistics from API-Football (API-Sports or RapidAPI).

Every endpoint wraps its payload in an envelope with an `errors` field;
a non-empty value is a failure even when the HTTP status is 200.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple
import logging

import httpx

from scoutbase.exceptions import ExternalAPIError, RateLimitError
from scoutbase.services.position_mapping import map_position_to_group
from scoutbase.services.providers.base import (
    ProviderProfileResult,
    SearchHit,
    SeasonStats,
    StatsProvider,
)
from scoutbase.services.providers.client import ProviderHTTPClient
from scoutbase.services.providers.fotmob import parse_height, parse_weight

logger = logging.getLogger(__name__)

SOURCE = "api_football"
API_FOOTBALL_BASE_URL = "https://v3.football.api-sports.io"
FINISHED_STATUSES = ("FT", "AET", "PEN")
CLEAN_SHEET_MIN_MINUTES = 60

_RATE_LIMIT_ERROR_KEYS = ("requests", "rateLimit")

# (stat key, payload group, payload field)
_FIXTURE_STAT_FIELDS: Tuple[Tuple[str, str, str], ...] = (
    ("goals", "goals", "total"),
    ("assists", "goals", "assists"),
    ("saves", "goals", "saves"),
    ("goalsConceded", "goals", "conceded"),
    ("yellowCards", "cards", "yellow"),
    ("redCards", "cards", "red"),
    ("shots", "shots", "total"),
    ("shotsOnTarget", "shots", "on"),
    ("passes", "passes", "total"),
    ("keyPasses", "passes", "key"),
    ("tackles", "tackles", "total"),
    ("interceptions", "tackles", "interceptions"),
    ("blocks", "tackles", "blocks"),
    ("duelsWon", "duels", "won"),
    ("duelsTotal", "duels", "total"),
    ("dribbles", "dribbles", "attempts"),
    ("dribblesSuccessful", "dribbles", "success"),
    ("foulsCommitted", "fouls", "committed"),
    ("foulsDrawn", "fouls", "drawn"),
    ("penaltiesSaved", "penalty", "saved"),
    ("penaltiesMissed", "penalty", "missed"),
)


def current_football_season(today: Optional[date] = None) -> str:
    """Seasons are named by their starting year and start in July."""
    today = today or date.today()
    return str(today.year if today.month >= 7 else today.year - 1)


def api_football_headers(api_key: str, base_url: str = API_FOOTBALL_BASE_URL) -> Dict[str, str]:
    """
    Authentication headers for the configured host.

    Raises:
        ExternalAPIError: If no API key is configured
    """
    if not api_key:
        raise ExternalAPIError(SOURCE, "API_FOOTBALL_KEY is not set")
    host = httpx.URL(base_url).host
    if "rapidapi" in host:
        return {"x-rapidapi-host": host, "x-rapidapi-key": api_key}
    return {"x-apisports-key": api_key}


def check_api_errors(data: Any) -> Dict[str, Any]:
    """
    Validate an API-Football envelope.

    Returns:
        The envelope itself

    Raises:
        RateLimitError: If the daily quota or per-minute limit was hit
        ExternalAPIError: For any other reported error
    """
    if not isinstance(data, dict):
        raise ExternalAPIError(SOURCE, "Unexpected response body")

    errors = data.get("errors")
    if not errors:
        return data

    if isinstance(errors, dict):
        messages = {str(key): str(value) for key, value in errors.items()}
    else:
        messages = {str(index): str(value) for index, value in enumerate(errors)}

    text = "; ".join(messages.values())
    if any(key in messages for key in _RATE_LIMIT_ERROR_KEYS):
        raise RateLimitError(f"API-Football limit reached: {text}")
    raise ExternalAPIError(SOURCE, text, details={"errors": messages})


def _as_id(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _first(items: Any) -> Dict[str, Any]:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def normalize_league(item: Dict[str, Any], today: Optional[date] = None) -> Optional[Dict[str, Any]]:
    """
    Map a /leagues entry to competition fields.

    The season is the one flagged current, else the latest listed. Leagues
    start active, cups inactive.
    """
    league = item.get("league") or {}
    if league.get("id") is None or not league.get("name"):
        return None

    seasons = item.get("seasons") or []
    chosen = next((s for s in seasons if s.get("current")), None) or (seasons[-1] if seasons else None)
    season = str(chosen["year"]) if chosen and chosen.get("year") else current_football_season(today)

    return {
        "provider_league_id": str(league["id"]),
        "name": league["name"],
        "country": (item.get("country") or {}).get("name"),
        "season": season,
        "competition_type": league.get("type"),
        "is_active": league.get("type") == "League",
    }


def normalize_team(item: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    team = item.get("team") or {}
    if team.get("id") is None or not team.get("name"):
        return None
    return {"provider_team_id": str(team["id"]), "name": team["name"]}


@dataclass
class LeaguePlayer:
    """One squad entry from /players, with canonical profile fields."""
    source_player_id: str
    name: str
    provider_team_id: Optional[str] = None
    profile: Dict[str, Any] = field(default_factory=dict)


def normalize_player(item: Dict[str, Any]) -> Optional[LeaguePlayer]:
    """Position and team come from the first statistics block; profile entries carry their own position."""
    player = item.get("player") or {}
    if player.get("id") is None or not player.get("name"):
        return None

    stats = _first(item.get("statistics"))
    position = (stats.get("games") or {}).get("position") or player.get("position")
    group = map_position_to_group(position)

    profile = {
        "name": player["name"],
        "birth_date": (player.get("birth") or {}).get("date"),
        "nationality": player.get("nationality"),
        "height_cm": parse_height(player.get("height")),
        "weight_kg": parse_weight(player.get("weight")),
        "photo_url": player.get("photo"),
        "position": position,
        "position_group": group.value if group else None,
    }
    return LeaguePlayer(
        source_player_id=str(player["id"]),
        name=player["name"],
        provider_team_id=_as_id((stats.get("team") or {}).get("id")),
        profile={key: value for key, value in profile.items() if value is not None},
    )


@dataclass
class Fixture:
    fixture_id: str
    league_id: Optional[str]
    match_date: str
    status: Optional[str]
    home_team_id: Optional[str] = None
    away_team_id: Optional[str] = None
    home_goals: Optional[int] = None
    away_goals: Optional[int] = None

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_STATUSES

    def goals_against(self, team_id: Optional[str]) -> Optional[int]:
        if team_id is not None and team_id == self.home_team_id:
            return self.away_goals
        if team_id is not None and team_id == self.away_team_id:
            return self.home_goals
        return None


def normalize_fixture(item: Dict[str, Any]) -> Optional[Fixture]:
    fixture = item.get("fixture") or {}
    if fixture.get("id") is None or not fixture.get("date"):
        return None
    teams = item.get("teams") or {}
    goals = item.get("goals") or {}
    return Fixture(
        fixture_id=str(fixture["id"]),
        league_id=_as_id((item.get("league") or {}).get("id")),
        match_date=str(fixture["date"])[:10],
        status=(fixture.get("status") or {}).get("short"),
        home_team_id=_as_id((teams.get("home") or {}).get("id")),
        away_team_id=_as_id((teams.get("away") or {}).get("id")),
        home_goals=goals.get("home"),
        away_goals=goals.get("away"),
    )


@dataclass
class FixtureAppearance:
    """One player's line from /fixtures/players; minutes are always positive."""
    source_player_id: str
    player_name: Optional[str]
    provider_team_id: Optional[str]
    minutes: int
    position: Optional[str] = None
    photo_url: Optional[str] = None
    stats: Dict[str, Any] = field(default_factory=dict)


def _parse_accuracy(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(str(value).rstrip("%"))
    except ValueError:
        return None


def normalize_fixture_players(response: List[Dict[str, Any]], fixture: Fixture) -> List[FixtureAppearance]:
    """
    Flatten the per-team player blocks of one fixture.

    Players without minutes are skipped. cleanSheet is set for players of
    a team that conceded nothing once they played CLEAN_SHEET_MIN_MINUTES.
    """
    appearances = []
    for block in response or []:
        team_id = _as_id((block.get("team") or {}).get("id"))
        conceded = fixture.goals_against(team_id)

        for entry in block.get("players") or []:
            player = entry.get("player") or {}
            line = _first(entry.get("statistics"))
            games = line.get("games") or {}
            minutes = games.get("minutes")
            if player.get("id") is None or not minutes:
                continue

            stats: Dict[str, Any] = {}
            for key, group, name in _FIXTURE_STAT_FIELDS:
                value = (line.get(group) or {}).get(name)
                if value is not None:
                    stats[key] = value
            accuracy = _parse_accuracy((line.get("passes") or {}).get("accuracy"))
            if accuracy is not None:
                stats["passAccuracy"] = accuracy
            if conceded == 0 and minutes >= CLEAN_SHEET_MIN_MINUTES:
                stats["cleanSheet"] = True

            appearances.append(
                FixtureAppearance(
                    source_player_id=str(player["id"]),
                    player_name=player.get("name"),
                    provider_team_id=team_id,
                    minutes=int(minutes),
                    position=games.get("position"),
                    photo_url=player.get("photo"),
                    stats=stats,
                )
            )
    return appearances


def normalize_season_stats(response: List[Dict[str, Any]]) -> List[SeasonStats]:
    seasons: List[SeasonStats] = []
    for item in response or []:
        for block in item.get("statistics") or []:
            games = block.get("games") or {}
            goals = block.get("goals") or {}
            league = block.get("league") or {}
            rating = games.get("rating")
            seasons.append(
                SeasonStats(
                    season=_as_id(league.get("season")),
                    league_id=_as_id(league.get("id")),
                    appearances=games.get("appearences"),
                    minutes=games.get("minutes"),
                    goals=goals.get("total"),
                    assists=goals.get("assists"),
                    rating=float(rating) if rating else None,
                )
            )
    return seasons


class ApiFootballProvider(StatsProvider):
    """
    API-Football adapter over a budgeted, rate-limited HTTP client.

    Besides the enrichment interface it exposes the league-level fetches
    used by primary ingestion. Every method is one request.
    """

    name = SOURCE

    def __init__(self, client: ProviderHTTPClient, season: Optional[str] = None) -> None:
        self.client = client
        self.season = season or current_football_season()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        data = check_api_errors(await self.client.get_json(path, params=params))
        logger.debug(f"api_football /{path}: {data.get('results', 0)} results")
        return data

    async def _response(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        data = await self._get(path, params)
        response = data.get("response")
        return response if isinstance(response, list) else []

    # Enrichment interface

    async def search_players(self, query: str) -> List[SearchHit]:
        hits = []
        for item in await self._response("players/profiles", {"search": query}):
            player = item.get("player") or {}
            if player.get("id") is None or not player.get("name"):
                continue
            hits.append(
                SearchHit(
                    source_player_id=str(player["id"]),
                    name=player["name"],
                    position=player.get("position"),
                )
            )
        return hits

    async def get_profile(self, source_player_id: str) -> ProviderProfileResult:
        response = await self._response("players/profiles", {"player": source_player_id})
        item = response[0] if response else {}
        player = normalize_player(item)
        return ProviderProfileResult(
            source_player_id=str(source_player_id),
            raw=item,
            normalized=player.profile if player else {},
        )

    async def get_season_stats(self, source_player_id: str) -> List[SeasonStats]:
        response = await self._response("players", {"id": source_player_id, "season": self.season})
        return normalize_season_stats(response)

    # League-level fetches

    async def fetch_leagues(self, country: str) -> List[Dict[str, Any]]:
        leagues = [normalize_league(item) for item in await self._response("leagues", {"country": country})]
        return [league for league in leagues if league]

    async def fetch_teams(self, league_id: str, season: str) -> List[Dict[str, Any]]:
        response = await self._response("teams", {"league": league_id, "season": season})
        return [team for team in (normalize_team(item) for item in response) if team]

    async def fetch_players(self, league_id: str, season: str, page: int = 1) -> Tuple[List[LeaguePlayer], int]:
        """
        One page of a league's players.

        Returns:
            (players, total_pages)
        """
        data = await self._get("players", {"league": league_id, "season": season, "page": page})
        response = data.get("response") if isinstance(data.get("response"), list) else []
        players = [p for p in (normalize_player(item) for item in response) if p]
        total_pages = int((data.get("paging") or {}).get("total") or page)
        return players, total_pages

    async def fetch_fixtures(self, league_id: str, season: str, date_from: str, date_to: str) -> List[Fixture]:
        response = await self._response(
            "fixtures", {"league": league_id, "season": season, "from": date_from, "to": date_to}
        )
        return [f for f in (normalize_fixture(item) for item in response) if f]

    async def fetch_fixture_players(self, fixture: Fixture) -> List[FixtureAppearance]:
        response = await self._response("fixtures/players", {"fixture": fixture.fixture_id})
        return normalize_fixture_players(response, fixture)

    async def close(self) -> None:
        await self.client.close()
