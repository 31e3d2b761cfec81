"""
Provider Module
Transport and adapters for external statistics sources.
"""

from .base import ProviderProfileResult, SearchHit, SeasonStats, StatsProvider, derive_career_stats
from .client import ProviderHTTPClient, RateLimiter, RequestBudget
from .fotmob import FOTMOB_BASE_URL, FotMobProvider
from .api_football import API_FOOTBALL_BASE_URL, ApiFootballProvider, api_football_headers

__all__ = [
    "ProviderProfileResult",
    "SearchHit",
    "SeasonStats",
    "StatsProvider",
    "derive_career_stats",
    "ProviderHTTPClient",
    "RateLimiter",
    "RequestBudget",
    "FOTMOB_BASE_URL",
    "FotMobProvider",
    "API_FOOTBALL_BASE_URL",
    "ApiFootballProvider",
    "api_football_headers",
]
