"""
Provenance-aware field merge.

Decides, field by field, whether a source's normalized profile overwrites
the canonical player, records every disagreement as a FieldConflict and
replaces the (player, source) profile snapshot.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
import logging

from scoutbase.exceptions import NotFoundError, ValidationError
from scoutbase.services.repository import ScoutingRepository

logger = logging.getLogger(__name__)

PRIMARY_SOURCE = "api_football"
MANUAL_SOURCE = "manual"
DEFAULT_PRECEDENCE = 50
MANUAL_PRECEDENCE = 1000

# Higher wins. Identity fields trust the primary source, physical
# attributes trust the statistics sites.
FIELD_PRECEDENCE: Dict[str, Dict[str, int]] = {
    "birth_date": {
        "api_football": 100, "wikidata": 90, "sofascore": 80,
        "fotmob": 80, "thesportsdb": 70, "footballdata": 60,
    },
    "nationality": {
        "api_football": 100, "wikidata": 90, "sofascore": 80,
        "fotmob": 80, "thesportsdb": 70, "footballdata": 60,
    },
    "height_cm": {
        "sofascore": 100, "fotmob": 90, "api_football": 80,
        "thesportsdb": 70, "wikidata": 60, "footballdata": 50,
    },
    "weight_kg": {
        "sofascore": 100, "fotmob": 90, "api_football": 80,
        "thesportsdb": 70, "wikidata": 60, "footballdata": 50,
    },
    "preferred_foot": {
        "sofascore": 100, "fotmob": 90, "api_football": 80,
        "thesportsdb": 70, "wikidata": 60, "footballdata": 50,
    },
    "photo_url": {
        "api_football": 100, "sofascore": 90, "fotmob": 80,
        "thesportsdb": 70, "wikidata": 60, "footballdata": 50,
    },
    "position": {
        "api_football": 100, "fotmob": 80, "sofascore": 80,
        "thesportsdb": 60, "wikidata": 40, "footballdata": 50,
    },
    "position_group": {
        "api_football": 100, "fotmob": 80, "sofascore": 80,
        "thesportsdb": 60, "wikidata": 40, "footballdata": 50,
    },
}

MERGEABLE_FIELDS = (
    "birth_date",
    "nationality",
    "height_cm",
    "weight_kg",
    "preferred_foot",
    "photo_url",
    "position",
    "position_group",
)


def get_precedence(field_name: str, source: Optional[str]) -> int:
    """Precedence of `source` for `field_name`; unknown provenance ranks 0."""
    if not source:
        return 0
    if source == MANUAL_SOURCE:
        return MANUAL_PRECEDENCE
    return FIELD_PRECEDENCE.get(field_name, {}).get(source, DEFAULT_PRECEDENCE)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and value.strip() == ""


def values_equal(a: Any, b: Any) -> bool:
    """Loose equality: trimmed case-insensitive strings, numbers within 0.001."""
    if a is None and b is None:
        return True
    if a is None or b is None:
        return False
    if isinstance(a, str) and isinstance(b, str):
        return a.strip().lower() == b.strip().lower()
    if isinstance(a, (int, float)) and isinstance(b, (int, float)) \
            and not isinstance(a, bool) and not isinstance(b, bool):
        return abs(a - b) < 0.001
    return a == b


def should_override(
    field_name: str,
    canonical_value: Any,
    new_value: Any,
    new_source: str,
    current_source: Optional[str],
) -> bool:
    if is_empty(new_value):
        return False
    if is_empty(canonical_value):
        return True
    if values_equal(canonical_value, new_value):
        return False
    return get_precedence(field_name, new_source) > get_precedence(field_name, current_source)


@dataclass
class MergeConflict:
    field: str
    canonical_value: Any
    source_value: Any
    source: str
    applied: bool


@dataclass
class MergeResult:
    player_id: int
    updated_fields: List[str] = field(default_factory=list)
    conflicts: List[MergeConflict] = field(default_factory=list)
    profile_stored: bool = False


class FieldMerger:
    """Merge normalized source profiles into canonical players."""

    def __init__(self, repository: ScoutingRepository):
        self.repository = repository

    def plan_merge(self, player, source: str, profile: Mapping[str, Any]) -> MergeResult:
        """
        Work out updates and conflicts without writing anything.

        Returns:
            MergeResult whose updated_fields/conflicts describe the merge
        """
        provenance = player.field_sources or {}
        result = MergeResult(player_id=player.id)

        for field_name in MERGEABLE_FIELDS:
            new_value = profile.get(field_name)
            if is_empty(new_value):
                continue

            canonical_value = getattr(player, field_name)
            override = should_override(
                field_name, canonical_value, new_value, source, provenance.get(field_name)
            )
            if override:
                result.updated_fields.append(field_name)

            if not is_empty(canonical_value) and not values_equal(canonical_value, new_value):
                result.conflicts.append(
                    MergeConflict(
                        field=field_name,
                        canonical_value=canonical_value,
                        source_value=new_value,
                        source=source,
                        applied=override,
                    )
                )
        return result

    def merge_profile(
        self,
        player_id: int,
        source: str,
        source_player_id: str,
        profile: Mapping[str, Any],
        raw_profile: Optional[Dict[str, Any]] = None,
    ) -> MergeResult:
        """
        Merge one source's normalized profile into a canonical player.

        Args:
            player_id: Canonical player id
            source: Source the profile came from
            source_player_id: Source-native player id
            profile: Normalized field set (model field names)
            raw_profile: Raw payload kept in the snapshot

        Returns:
            MergeResult with updated fields and logged conflicts

        Raises:
            NotFoundError: If the player does not exist
        """
        player = self.repository.get_player(player_id)
        if player is None:
            raise NotFoundError("Player", str(player_id))

        result = self.plan_merge(player, source, profile)

        if result.updated_fields:
            updates = {name: profile[name] for name in result.updated_fields}
            self.repository.update_player_fields(player_id, updates, source=source)
            logger.info(f"Player {player_id}: {source} updated {', '.join(result.updated_fields)}")

        for conflict in result.conflicts:
            self.repository.upsert_field_conflict(
                player_id,
                conflict.field,
                source,
                canonical_value=conflict.canonical_value,
                source_value=conflict.source_value,
            )

        self.repository.upsert_provider_profile(
            player_id, source, source_player_id, raw=raw_profile, normalized=dict(profile)
        )
        result.profile_stored = True
        return result

    def get_unresolved_conflicts(self, player_id: int):
        return self.repository.list_field_conflicts(player_id, unresolved_only=True)

    def resolve_conflict(self, conflict_id: int, accepted_value: Any):
        """
        Settle a conflict by writing the accepted value to the player.

        The value's provenance becomes the conflict's source when it equals
        that source's value, otherwise it is marked as manual, which outranks
        every source.
        """
        conflict = self.repository.get_field_conflict(conflict_id)
        if conflict is None:
            raise NotFoundError("FieldConflict", str(conflict_id))
        if conflict.field not in MERGEABLE_FIELDS:
            raise ValidationError(f"Field {conflict.field} cannot be resolved through merge")

        provenance = conflict.source if values_equal(accepted_value, conflict.source_value) else MANUAL_SOURCE
        self.repository.update_player_fields(
            conflict.player_id, {conflict.field: accepted_value}, source=provenance
        )
        resolved = self.repository.mark_conflict_resolved(conflict_id, accepted_value)
        logger.info(f"Conflict {conflict_id} on {conflict.field} resolved for player {conflict.player_id}")
        return resolved
