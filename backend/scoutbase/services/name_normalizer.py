"""
Name normalization for identity matching.

Canonical and external names go through the same function so that
equality on the normalized form is meaningful.
"""
import re
import unicodedata
from typing import Optional

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")

# Club affixes ignored when comparing team names
_TEAM_AFFIXES = re.compile(
    r"\b(fc|cf|sc|ac|afc|ssc|bv|sv|vfb|vfl|fsv|tsv|fk|sk|rcd|cd|ud|rc|as|ss|us)\b"
)
_LEADING_ORDINAL = re.compile(r"(^|\s)1\.\s*")


def _strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_name(name: Optional[str]) -> str:
    """
    Normalize a person's name for comparison.

    Lowercases, strips diacritics (NFD decomposition), removes punctuation
    and collapses whitespace. Idempotent: normalize_name(normalize_name(x))
    equals normalize_name(x).

    Args:
        name: Free-text name

    Returns:
        Normalized name ("" for empty input)
    """
    if not name:
        return ""
    value = _strip_diacritics(name.casefold())
    value = _NON_WORD.sub("", value)
    return _WHITESPACE.sub(" ", value).strip()


def normalize_team_name(name: Optional[str]) -> str:
    """Normalize a club name, dropping common affixes such as FC or AFC."""
    if not name:
        return ""
    value = _strip_diacritics(name.casefold())
    value = _LEADING_ORDINAL.sub(" ", value)
    value = _TEAM_AFFIXES.sub("", value)
    value = _NON_WORD.sub("", value)
    return _WHITESPACE.sub(" ", value).strip()
