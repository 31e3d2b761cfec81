"""
Pure aggregation functions for appearance statistics.
These functions have no side effects and no database dependencies.

Appearances are any objects exposing match_date, minutes and a stats
mapping (ORM Appearance rows or AppearanceRecord values).
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from scoutbase.metrics import COUNTING_STATS, EXPECTED_STATS, PER90_STATS, MetricKey


@dataclass
class AppearanceRecord:
    match_id: str
    match_date: date
    minutes: int
    stats: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StatsWindow:
    """Aggregate of one window of appearances."""
    minutes: int
    from_date: Optional[date]
    to_date: Optional[date]
    totals: Dict[str, float]
    per90: Dict[str, float]
    rates: Dict[str, float]
    features: Dict[MetricKey, float]

    @property
    def appearances(self) -> int:
        return int(self.totals.get("appearances", 0))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minutes": self.minutes,
            "fromDate": self.from_date.isoformat() if self.from_date else None,
            "toDate": self.to_date.isoformat() if self.to_date else None,
            "totals": dict(self.totals),
            "per90": dict(self.per90),
            "rates": dict(self.rates),
            "features": {key.value: value for key, value in self.features.items()},
        }


def _as_date(value) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _number(value) -> float:
    value = float(value)
    return int(value) if value.is_integer() else value


# ============================================================================
# Totals
# ============================================================================

def aggregate_appearances(appearances: Sequence) -> Dict[str, float]:
    """
    Sum the fixed statistic set across appearances.

    Missing counters count as 0. cleanSheets counts appearances flagged
    with a clean sheet. xG/xA totals are present only when at least one
    appearance reports them.

    Args:
        appearances: Appearances to sum

    Returns:
        Totals keyed by stat name, plus "appearances" and "cleanSheets"
    """
    columns = list(COUNTING_STATS) + list(EXPECTED_STATS) + ["cleanSheet"]
    frame = pd.DataFrame([dict(a.stats or {}) for a in appearances], columns=columns)

    totals: Dict[str, float] = {"appearances": len(appearances)}
    for stat in COUNTING_STATS:
        totals[stat] = _number(pd.to_numeric(frame[stat], errors="coerce").sum())
    for stat in EXPECTED_STATS:
        values = pd.to_numeric(frame[stat], errors="coerce")
        if values.notna().any():
            totals[stat] = float(values.sum())
    totals["cleanSheets"] = int(frame["cleanSheet"].eq(True).sum())
    return totals


# ============================================================================
# Per-90 and rates
# ============================================================================

def compute_per90(totals: Dict[str, float], minutes: float) -> Dict[str, float]:
    """
    Scale totals to per-90-minute figures.

    Returns:
        Per-90 figures; empty when minutes is 0
    """
    if not minutes or minutes <= 0:
        return {}
    factor = 90.0 / minutes
    return {stat: totals[stat] * factor for stat in PER90_STATS if stat in totals}


def compute_rates(totals: Dict[str, float], appearances: Sequence) -> Dict[str, float]:
    """
    Ratio features, each omitted when its denominator is zero.

    passCompletionRate is the mean reported passAccuracy (a percentage)
    scaled to 0-1.
    """
    rates: Dict[str, float] = {}

    accuracies = [
        float(a.stats["passAccuracy"])
        for a in appearances
        if (a.stats or {}).get("passAccuracy") is not None
    ]
    if accuracies:
        rates["passCompletionRate"] = float(np.mean(accuracies)) / 100.0

    def ratio(key: str, numerator: str, denominator: str) -> None:
        total = totals.get(denominator) or 0
        if total > 0:
            rates[key] = (totals.get(numerator) or 0) / total

    ratio("duelWinRate", "duelsWon", "duelsTotal")
    ratio("aerialWinRate", "aerialDuelsWon", "aerialDuelsTotal")
    ratio("dribbleSuccessRate", "dribblesSuccessful", "dribbles")
    ratio("shotAccuracy", "shotsOnTarget", "shots")

    if totals.get("appearances", 0) > 0:
        rates["cleanSheetRate"] = totals.get("cleanSheets", 0) / totals["appearances"]

    shots_faced = (totals.get("saves") or 0) + (totals.get("goalsConceded") or 0)
    if shots_faced > 0:
        rates["saveRate"] = (totals.get("saves") or 0) / shots_faced

    return rates


_PER90_FEATURES = {
    MetricKey.GOALS_PER90: "goals",
    MetricKey.ASSISTS_PER90: "assists",
    MetricKey.SHOTS_PER90: "shots",
    MetricKey.SHOTS_ON_TARGET_PER90: "shotsOnTarget",
    MetricKey.PASSES_PER90: "passes",
    MetricKey.KEY_PASSES_PER90: "keyPasses",
    MetricKey.TACKLES_PER90: "tackles",
    MetricKey.INTERCEPTIONS_PER90: "interceptions",
    MetricKey.CLEARANCES_PER90: "clearances",
    MetricKey.BLOCKS_PER90: "blocks",
    MetricKey.DUELS_WON_PER90: "duelsWon",
    MetricKey.AERIAL_DUELS_WON_PER90: "aerialDuelsWon",
    MetricKey.DRIBBLES_PER90: "dribbles",
    MetricKey.DRIBBLES_SUCCESSFUL_PER90: "dribblesSuccessful",
    MetricKey.FOULS_COMMITTED_PER90: "foulsCommitted",
    MetricKey.SAVES_PER90: "saves",
    MetricKey.GOALS_CONCEDED_PER90: "goalsConceded",
    MetricKey.XG_PER90: "xG",
    MetricKey.XA_PER90: "xA",
}

_RATE_FEATURES = {
    MetricKey.PASS_COMPLETION_RATE: "passCompletionRate",
    MetricKey.DUEL_WIN_RATE: "duelWinRate",
    MetricKey.AERIAL_WIN_RATE: "aerialWinRate",
    MetricKey.DRIBBLE_SUCCESS_RATE: "dribbleSuccessRate",
    MetricKey.SHOT_ACCURACY: "shotAccuracy",
    MetricKey.CLEAN_SHEET_RATE: "cleanSheetRate",
    MetricKey.SAVE_RATE: "saveRate",
}


def compute_features(
    totals: Dict[str, float],
    per90: Dict[str, float],
    rates: Dict[str, float],
    minutes: float,
) -> Dict[MetricKey, float]:
    """
    Build the rating feature vector.

    Features whose inputs are missing are left out rather than set to 0,
    so the scorer treats them as unavailable.
    """
    features: Dict[MetricKey, float] = {}

    for key, stat in _PER90_FEATURES.items():
        if stat in per90:
            features[key] = per90[stat]

    if per90:
        factor = 90.0 / minutes
        yellow = totals.get("yellowCards") or 0
        red = totals.get("redCards") or 0
        features[MetricKey.TACKLES_INTERCEPTIONS_PER90] = (
            per90.get("tackles", 0.0) + per90.get("interceptions", 0.0)
        )
        features[MetricKey.GOAL_CONTRIBUTIONS_PER90] = (
            per90.get("goals", 0.0) + per90.get("assists", 0.0)
        )
        features[MetricKey.YELLOW_CARDS_PER90] = yellow * factor
        features[MetricKey.RED_CARDS_PER90] = red * factor
        features[MetricKey.CARDS_PENALTY_PER90] = (yellow + 3 * red) * factor

    for key, rate in _RATE_FEATURES.items():
        if rate in rates:
            features[key] = rates[rate]

    return features


# ============================================================================
# Windows
# ============================================================================

def _build_window(selected: List, from_date: Optional[date], to_date: Optional[date]) -> StatsWindow:
    minutes = int(sum(a.minutes for a in selected))
    totals = aggregate_appearances(selected)
    per90 = compute_per90(totals, minutes)
    rates = compute_rates(totals, selected)
    features = compute_features(totals, per90, rates, minutes)
    return StatsWindow(
        minutes=minutes,
        from_date=from_date,
        to_date=to_date,
        totals=totals,
        per90=per90,
        rates=rates,
        features=features,
    )


def compute_rolling_stats(appearances: Sequence, from_date: date, to_date: date) -> StatsWindow:
    """
    Aggregate appearances played between two dates (inclusive).

    Appearances with zero minutes are ignored.
    """
    from_date, to_date = _as_date(from_date), _as_date(to_date)
    selected = sorted(
        (
            a for a in appearances
            if a.minutes and a.minutes > 0 and from_date <= _as_date(a.match_date) <= to_date
        ),
        key=lambda a: _as_date(a.match_date),
    )
    return _build_window(selected, from_date, to_date)


def compute_last_n_stats(appearances: Sequence, n: int) -> StatsWindow:
    """
    Aggregate the most recent `n` appearances with minutes played.

    The window's dates are the oldest and newest selected match dates.
    """
    played = sorted(
        (a for a in appearances if a.minutes and a.minutes > 0),
        key=lambda a: _as_date(a.match_date),
        reverse=True,
    )
    selected = played[:n]
    if not selected:
        return _build_window([], None, None)
    return _build_window(selected, _as_date(selected[-1].match_date), _as_date(selected[0].match_date))
