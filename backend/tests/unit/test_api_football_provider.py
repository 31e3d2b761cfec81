"""
Unit tests for API-Football envelope checks, payload normalization and
the API-Football adapter.
"""

from datetime import date

import httpx
import pytest
from scoutbase.exceptions import ExternalAPIError, RateLimitError
from scoutbase.services.providers.api_football import (
    ApiFootballProvider,
    Fixture,
    api_football_headers,
    check_api_errors,
    current_football_season,
    normalize_fixture,
    normalize_fixture_players,
    normalize_league,
    normalize_player,
)
from scoutbase.services.providers.client import ProviderHTTPClient, RateLimiter, RequestBudget

PLAYER_ITEM = {
    "player": {
        "id": 1460,
        "name": "B. Saka",
        "birth": {"date": "2001-09-05", "place": "London", "country": "England"},
        "nationality": "England",
        "height": "178 cm",
        "weight": "72 kg",
        "photo": "https://media.example/1460.png",
    },
    "statistics": [
        {"team": {"id": 42, "name": "Arsenal"}, "games": {"position": "Attacker", "minutes": 2500}},
    ],
}

FIXTURE_ITEM = {
    "fixture": {"id": 1035037, "date": "2024-03-09T15:00:00+00:00", "status": {"short": "FT"}},
    "league": {"id": 39, "season": 2023},
    "teams": {"home": {"id": 42, "name": "Arsenal"}, "away": {"id": 35, "name": "Brentford"}},
    "goals": {"home": 2, "away": 0},
}


def _line(minutes, **groups):
    line = {"games": {"minutes": minutes, "position": "D"}}
    line.update(groups)
    return [line]


class TestEnvelope:
    def test_empty_errors_pass(self):
        data = {"errors": [], "response": []}
        assert check_api_errors(data) is data

    def test_daily_quota_is_rate_limit(self):
        with pytest.raises(RateLimitError) as exc_info:
            check_api_errors({"errors": {"requests": "You have reached the request limit for the day"}})
        assert exc_info.value.status_code == 429
        assert exc_info.value.error_code == "RATE_LIMIT_ERROR"

    def test_other_errors(self):
        with pytest.raises(ExternalAPIError) as exc_info:
            check_api_errors({"errors": {"token": "Error/Missing application key."}})
        assert exc_info.value.details["errors"] == {"token": "Error/Missing application key."}

    def test_list_errors(self):
        with pytest.raises(ExternalAPIError):
            check_api_errors({"errors": ["bad parameter"]})

    def test_non_object_body(self):
        with pytest.raises(ExternalAPIError):
            check_api_errors([1, 2])


class TestHeaders:
    def test_api_sports(self):
        assert api_football_headers("k", "https://v3.football.api-sports.io") == {"x-apisports-key": "k"}

    def test_rapidapi(self):
        headers = api_football_headers("k", "https://api-football-v1.p.rapidapi.com/v3")
        assert headers == {"x-rapidapi-host": "api-football-v1.p.rapidapi.com", "x-rapidapi-key": "k"}

    def test_missing_key(self):
        with pytest.raises(ExternalAPIError):
            api_football_headers("")


class TestNormalizers:
    def test_season_starts_in_july(self):
        assert current_football_season(date(2024, 6, 30)) == "2023"
        assert current_football_season(date(2024, 7, 1)) == "2024"

    def test_league_uses_current_season(self):
        league = normalize_league({
            "league": {"id": 39, "name": "Premier League", "type": "League"},
            "country": {"name": "England"},
            "seasons": [{"year": 2022, "current": False}, {"year": 2023, "current": True}, {"year": 2024}],
        })
        assert league == {
            "provider_league_id": "39",
            "name": "Premier League",
            "country": "England",
            "season": "2023",
            "competition_type": "League",
            "is_active": True,
        }

    def test_cups_start_inactive(self):
        cup = normalize_league({
            "league": {"id": 45, "name": "FA Cup", "type": "Cup"},
            "country": {"name": "England"},
            "seasons": [{"year": 2023}],
        })
        assert cup["is_active"] is False
        assert cup["season"] == "2023"

    def test_player(self):
        player = normalize_player(PLAYER_ITEM)

        assert player.source_player_id == "1460"
        assert player.provider_team_id == "42"
        assert player.profile["birth_date"] == "2001-09-05"
        assert player.profile["height_cm"] == 178
        assert player.profile["position_group"] == "ATT"
        assert "preferred_foot" not in player.profile

    def test_player_without_id(self):
        assert normalize_player({"player": {"name": "Nobody"}}) is None

    def test_fixture(self):
        fixture = normalize_fixture(FIXTURE_ITEM)

        assert fixture.fixture_id == "1035037"
        assert fixture.match_date == "2024-03-09"
        assert fixture.is_finished
        assert fixture.goals_against("42") == 0
        assert fixture.goals_against("35") == 2
        assert fixture.goals_against("99") is None

    def test_fixture_players(self):
        fixture = normalize_fixture(FIXTURE_ITEM)
        response = [
            {"team": {"id": 42}, "players": [
                {"player": {"id": 1, "name": "W. Saliba"}, "statistics": _line(
                    90,
                    goals={"total": None, "assists": 1, "conceded": 0, "saves": None},
                    passes={"total": 71, "key": 1, "accuracy": "93"},
                    tackles={"total": 3, "blocks": None, "interceptions": 2},
                    duels={"total": 8, "won": 6},
                )},
                {"player": {"id": 2, "name": "Sub"}, "statistics": _line(20)},
                {"player": {"id": 3, "name": "Unused"}, "statistics": _line(None)},
            ]},
            {"team": {"id": 35}, "players": [
                {"player": {"id": 4, "name": "E. Pinnock"}, "statistics": _line(90, cards={"yellow": 1, "red": 0})},
            ]},
        ]

        appearances = normalize_fixture_players(response, fixture)

        assert [a.source_player_id for a in appearances] == ["1", "2", "4"]
        assert appearances[0].stats == {
            "assists": 1, "goalsConceded": 0, "passes": 71, "keyPasses": 1, "tackles": 3,
            "interceptions": 2, "duelsWon": 6, "duelsTotal": 8, "passAccuracy": 93.0, "cleanSheet": True,
        }
        assert "cleanSheet" not in appearances[1].stats
        assert appearances[2].stats == {"yellowCards": 1, "redCards": 0}
        assert appearances[2].provider_team_id == "35"


class TestApiFootballProvider:
    def _provider(self, handler, budget):
        client = ProviderHTTPClient(
            "api_football",
            "https://example.test",
            budget,
            RateLimiter(limits={}),
            headers={"x-apisports-key": "k"},
            transport=httpx.MockTransport(handler),
            rng=lambda: 0.0,
        )
        return ApiFootballProvider(client, season="2023")

    @pytest.mark.asyncio
    async def test_players_page_reports_total_pages(self):
        def handler(request):
            assert request.url.path == "/players"
            assert request.url.params["league"] == "39"
            assert request.url.params["page"] == "2"
            assert request.headers["x-apisports-key"] == "k"
            return httpx.Response(200, json={
                "errors": [], "paging": {"current": 2, "total": 3}, "response": [PLAYER_ITEM],
            })

        budget = RequestBudget(5)
        provider = self._provider(handler, budget)
        players, total_pages = await provider.fetch_players("39", "2023", page=2)

        assert [p.name for p in players] == ["B. Saka"]
        assert total_pages == 3
        assert budget.used == 1
        await provider.close()

    @pytest.mark.asyncio
    async def test_rate_limit_body_raises(self):
        provider = self._provider(
            lambda request: httpx.Response(200, json={"errors": {"rateLimit": "Too many requests"}, "response": []}),
            RequestBudget(5),
        )
        with pytest.raises(RateLimitError):
            await provider.fetch_leagues("England")
        await provider.close()

    @pytest.mark.asyncio
    async def test_fixture_players_use_fixture_scoreline(self):
        fixture = Fixture("1035037", "39", "2024-03-09", "FT", "42", "35", 2, 0)

        def handler(request):
            assert request.url.params["fixture"] == "1035037"
            return httpx.Response(200, json={"errors": [], "response": [
                {"team": {"id": 35}, "players": [
                    {"player": {"id": 9, "name": "M. Flekken"}, "statistics": _line(90, goals={"saves": 4})},
                ]},
            ]})

        provider = self._provider(handler, RequestBudget(5))
        appearances = await provider.fetch_fixture_players(fixture)

        assert appearances[0].stats == {"saves": 4}
        await provider.close()

    @pytest.mark.asyncio
    async def test_season_stats(self):
        def handler(request):
            assert request.url.params["id"] == "1460"
            assert request.url.params["season"] == "2023"
            return httpx.Response(200, json={"errors": [], "response": [{
                "player": {"id": 1460, "name": "B. Saka"},
                "statistics": [{
                    "league": {"id": 39, "season": 2023},
                    "games": {"appearences": 35, "minutes": 2890, "rating": "7.41"},
                    "goals": {"total": 16, "assists": 9},
                }],
            }]})

        provider = self._provider(handler, RequestBudget(5))
        seasons = await provider.get_season_stats("1460")

        assert len(seasons) == 1
        assert seasons[0].appearances == 35
        assert seasons[0].rating == pytest.approx(7.41)
        await provider.close()
