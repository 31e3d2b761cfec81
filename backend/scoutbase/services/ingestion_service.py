"""
Ingestion Service
Resolves records from the primary source and links, creates or queues
them; stores match appearances.
"""
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional
import logging

from scoutbase.exceptions import NotFoundError, ValidationError
from scoutbase.metrics import APPEARANCE_STATS
from scoutbase.models import Appearance
from scoutbase.services.entity_resolution import (
    ExternalPlayerRecord,
    IdentityResolver,
    ResolutionStatus,
)
from scoutbase.services.field_merger import MERGEABLE_FIELDS, FieldMerger, MergeResult
from scoutbase.services.position_mapping import map_position_to_group
from scoutbase.services.repository import ScoutingRepository

logger = logging.getLogger(__name__)


def filter_appearance_stats(stats: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Keep the fixed per-appearance statistic set, without None values."""
    if not stats:
        return {}
    kept = {key: value for key, value in stats.items() if key in APPEARANCE_STATS and value is not None}
    dropped = sorted(set(stats) - set(APPEARANCE_STATS))
    if dropped:
        logger.debug(f"Ignoring unknown appearance stats: {', '.join(dropped)}")
    return kept


@dataclass
class IngestionResult:
    status: ResolutionStatus
    player_id: Optional[int]
    confidence: float
    created: bool = False
    review_item_id: Optional[int] = None
    candidate_player_ids: List[int] = field(default_factory=list)
    merge: Optional[MergeResult] = None


class IngestionService:
    """Resolve-and-link entry point for externally sourced players."""

    def __init__(
        self,
        repository: ScoutingRepository,
        resolver: Optional[IdentityResolver] = None,
        merger: Optional[FieldMerger] = None,
    ):
        self.repository = repository
        self.resolver = resolver or IdentityResolver(repository)
        self.merger = merger or FieldMerger(repository)

    def ingest_player(
        self,
        record: ExternalPlayerRecord,
        normalized_profile: Optional[Mapping[str, Any]] = None,
        raw_payload: Optional[Dict[str, Any]] = None,
        competition_id: Optional[int] = None,
        team_id: Optional[int] = None,
    ) -> IngestionResult:
        """
        Resolve one external player and persist the outcome.

        An accepted or already-known match is linked and merged; no
        candidates creates a new canonical player; anything else is queued
        for review.

        Args:
            record: External record being ingested
            normalized_profile: Canonical-named field set from the source
            raw_payload: Raw source payload kept in the profile snapshot
            competition_id: Competition scope for candidate search
            team_id: Team scope; looked up from record.team_name if omitted

        Returns:
            IngestionResult describing what was written
        """
        profile = dict(normalized_profile or {})
        if team_id is None and record.team_name:
            team = self.repository.find_team_by_name(record.team_name, competition_id)
            team_id = team.id if team else None

        result = self.resolver.resolve(record, team_id=team_id, competition_id=competition_id)

        if result.is_match:
            # A known identity keeps the confidence it was linked with
            if result.status == ResolutionStatus.ACCEPTED:
                self.repository.upsert_identity(
                    result.player_id, record.source, record.source_player_id, result.confidence
                )
            merge = self.merger.merge_profile(
                result.player_id, record.source, record.source_player_id, profile, raw_profile=raw_payload
            )
            self.repository.dequeue_review_item(record.source, record.source_player_id)
            return IngestionResult(
                status=result.status,
                player_id=result.player_id,
                confidence=result.confidence,
                candidate_player_ids=result.candidate_player_ids,
                merge=merge,
            )

        if result.status == ResolutionStatus.NEW:
            player_id = self._create_player(record, profile, raw_payload, competition_id, team_id)
            return IngestionResult(
                status=result.status, player_id=player_id, confidence=1.0, created=True
            )

        item = self.repository.enqueue_review_item(
            record.source,
            record.source_player_id,
            payload={
                "record": asdict(record),
                "profile": profile,
                "raw": raw_payload,
                "team_id": team_id,
                "competition_id": competition_id,
            },
            candidate_player_ids=result.candidate_player_ids,
            reason=result.reason,
        )
        return IngestionResult(
            status=result.status,
            player_id=None,
            confidence=result.confidence,
            review_item_id=item.id,
            candidate_player_ids=result.candidate_player_ids,
        )

    def _create_player(
        self,
        record: ExternalPlayerRecord,
        profile: Dict[str, Any],
        raw_payload: Optional[Dict[str, Any]],
        competition_id: Optional[int],
        team_id: Optional[int],
    ) -> int:
        fields = {name: profile.get(name) for name in MERGEABLE_FIELDS if profile.get(name) is not None}
        fields["name"] = profile.get("name") or record.name
        fields.setdefault("birth_date", record.birth_date)
        fields.setdefault("nationality", record.nationality)
        fields.setdefault("position", record.position)
        if not fields.get("position_group"):
            group = map_position_to_group(fields.get("position"))
            fields["position_group"] = group.value if group else None
        fields["team_id"] = team_id
        fields["competition_id"] = competition_id

        player = self.repository.create_player(fields, source=record.source)
        self.repository.upsert_identity(player.id, record.source, record.source_player_id, 1.0)
        self.repository.upsert_provider_profile(
            player.id, record.source, record.source_player_id, raw=raw_payload, normalized=profile
        )
        self.repository.dequeue_review_item(record.source, record.source_player_id)
        logger.info(f"New player {player.id} from {record.source}:{record.source_player_id}")
        return player.id

    def ingest_appearances(
        self, player_id: int, appearances: Iterable[Mapping[str, Any]]
    ) -> List[Appearance]:
        """
        Upsert match appearances for a player, keyed by match id.

        Each mapping needs match_id, competition_id, match_date and minutes;
        stats, team_id, source and is_final are optional. Stat keys outside
        APPEARANCE_STATS and empty values are dropped. Appearances already
        stored as final are left untouched.

        Raises:
            NotFoundError: If the player does not exist
            ValidationError: If an appearance is missing required values
        """
        if self.repository.get_player(player_id) is None:
            raise NotFoundError("Player", str(player_id))

        stored = []
        for entry in appearances:
            missing = [k for k in ("match_id", "competition_id", "match_date") if entry.get(k) is None]
            if missing:
                raise ValidationError(
                    f"Appearance is missing {', '.join(missing)}", details={"player_id": player_id}
                )
            minutes = int(entry.get("minutes") or 0)
            if minutes < 0:
                raise ValidationError(
                    "Minutes cannot be negative",
                    details={"player_id": player_id, "match_id": entry["match_id"]},
                )

            match_date = entry["match_date"]
            if not isinstance(match_date, date):
                match_date = date.fromisoformat(str(match_date)[:10])

            stored.append(
                self.repository.upsert_appearance(
                    player_id,
                    entry["match_id"],
                    entry["competition_id"],
                    match_date,
                    minutes,
                    filter_appearance_stats(entry.get("stats")),
                    team_id=entry.get("team_id"),
                    source=entry.get("source"),
                    is_final=entry.get("is_final", True),
                )
            )
        logger.info(f"Stored {len(stored)} appearances for player {player_id}")
        return stored
