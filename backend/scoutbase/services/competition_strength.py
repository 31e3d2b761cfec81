"""
Competition strength: average of the best level scores in a competition.
"""
from typing import Iterable

import numpy as np

from scoutbase.services.scoring import round_half_up

DEFAULT_TOP_N = 25


def competition_strength(level_scores: Iterable[float], top_n: int = DEFAULT_TOP_N) -> int:
    """
    Mean of the top `top_n` level scores, rounded.

    Fewer than `top_n` players averages what exists; no players yields 0.
    """
    ranked = sorted((float(s) for s in level_scores), reverse=True)[:max(top_n, 0)]
    if not ranked:
        return 0
    return round_half_up(float(np.mean(ranked)))
