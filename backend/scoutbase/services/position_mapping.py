"""
Position group mapping.

Maps raw position labels from any source (English, Spanish, French and
German labels plus common abbreviations) to GK/DEF/MID/ATT.
"""
import re
from typing import Dict, Optional

from scoutbase.metrics import PositionGroup

_SEPARATORS = re.compile(r"[-_/]+")
_WHITESPACE = re.compile(r"\s+")

_ALIASES = {
    PositionGroup.GK: [
        "goalkeeper", "gk", "g", "keeper", "portero", "gardien", "torwart",
    ],
    PositionGroup.DEF: [
        "defender", "centre-back", "center-back", "cb", "centreback", "centerback",
        "left-back", "right-back", "lb", "rb", "leftback", "rightback", "fullback",
        "full-back", "wing-back", "wingback", "lwb", "rwb", "left wing-back",
        "right wing-back", "sweeper", "libero", "defensor", "défenseur", "verteidiger",
        "d",
    ],
    PositionGroup.MID: [
        "midfielder", "midfield", "mf", "central midfield", "central midfielder", "cm",
        "defensive midfield", "defensive midfielder", "dm", "dmf", "cdm",
        "holding midfielder", "attacking midfield", "attacking midfielder", "am", "amf",
        "cam", "left midfield", "right midfield", "lm", "rm", "left winger",
        "right winger", "lw", "rw", "winger", "wing", "mediocampista", "milieu",
        "mittelfeldspieler", "m",
    ],
    PositionGroup.ATT: [
        "attacker", "attack", "forward", "striker", "st", "fw", "cf", "centre-forward",
        "center-forward", "centreforward", "centerforward", "second striker", "ss",
        "false 9", "false9", "left forward", "right forward", "lf", "rf", "delantero",
        "attaquant", "stürmer", "angreifer", "f",
    ],
}


def _clean(label: str) -> str:
    value = _SEPARATORS.sub(" ", label.strip().lower())
    return _WHITESPACE.sub(" ", value)


POSITION_MAP: Dict[str, PositionGroup] = {
    _clean(alias): group for group, aliases in _ALIASES.items() for alias in aliases
}

# Longest aliases first so "left wing back" hits "wing back" before "wing".
# One- and two-letter codes only count as direct matches.
_PARTIAL_KEYS = sorted((k for k in POSITION_MAP if len(k) > 2), key=len, reverse=True)


def map_position_to_group(position: Optional[str]) -> Optional[PositionGroup]:
    """
    Map a raw position label to a position group.

    Tries a direct alias match, then the longest alias contained in the
    label, then keyword fallbacks.

    Returns:
        PositionGroup, or None when the label cannot be mapped
    """
    if not position:
        return None

    label = _clean(position)
    if label in POSITION_MAP:
        return POSITION_MAP[label]

    for key in _PARTIAL_KEYS:
        if re.search(rf"\b{re.escape(key)}\b", label):
            return POSITION_MAP[key]

    if "goal" in label or "keeper" in label:
        return PositionGroup.GK
    if "defend" in label or "back" in label:
        return PositionGroup.DEF
    if "mid" in label or "wing" in label:
        return PositionGroup.MID
    if "forward" in label or "attack" in label or "strik" in label:
        return PositionGroup.ATT
    return None


def map_position_to_group_with_default(
    position: Optional[str], default: PositionGroup = PositionGroup.MID
) -> PositionGroup:
    return map_position_to_group(position) or default


def is_valid_position_group(value: Optional[str]) -> bool:
    return value in {g.value for g in PositionGroup}
