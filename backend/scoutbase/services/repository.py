"""
Scouting Repository Pattern
Persistence interface consumed by the resolver, merger, orchestrator and
rating service, plus its SQLAlchemy implementation.

Upserts are select-then-update-or-insert and last-writer-wins; the
repository does no locking of its own.
"""
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import logging

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scoutbase.exceptions import DatabaseError, NotFoundError, ValidationError
from scoutbase.metrics import PositionGroup, RatingProfileSpec
from scoutbase.models import (
    Appearance,
    Competition,
    CompetitionRating,
    EnrichmentRun,
    EnrichmentState,
    ExternalIdentity,
    FieldConflict,
    IngestionRun,
    IngestionState,
    Player,
    PlayerRating,
    ProviderAggregate,
    ProviderProfile,
    RatingProfile,
    ReviewItem,
    RollingStats,
    Team,
)
from scoutbase.services.name_normalizer import normalize_name, normalize_team_name

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScoutingRepository(ABC):
    """
    Abstract read/write interface over the scouting store.

    All pipeline components depend on this interface rather than on a
    concrete database session.
    """

    # ------------------------------------------------------------------
    # Canonical players
    # ------------------------------------------------------------------

    @abstractmethod
    def get_player(self, player_id: int) -> Optional[Player]:
        pass

    @abstractmethod
    def create_player(self, fields: Dict[str, Any], source: Optional[str] = None) -> Player:
        """Insert a canonical player; name_normalized is derived from name."""
        pass

    @abstractmethod
    def update_player_fields(
        self, player_id: int, updates: Dict[str, Any], source: Optional[str] = None
    ) -> Player:
        """Apply field updates and record `source` as their provenance."""
        pass

    @abstractmethod
    def find_players_by_normalized_name(self, name_normalized: str) -> List[Player]:
        pass

    @abstractmethod
    def list_players_by_team(self, team_id: int) -> List[Player]:
        pass

    @abstractmethod
    def list_players_by_competition(self, competition_id: int) -> List[Player]:
        pass

    @abstractmethod
    def list_players_missing_identity(
        self, source: str, after_player_id: Optional[int], limit: int
    ) -> List[Player]:
        """Players with no identity for `source`, ordered by id, after the cursor."""
        pass

    # ------------------------------------------------------------------
    # External identities
    # ------------------------------------------------------------------

    @abstractmethod
    def get_identity(self, source: str, source_player_id: str) -> Optional[ExternalIdentity]:
        pass

    @abstractmethod
    def upsert_identity(
        self, player_id: int, source: str, source_player_id: str, confidence: float
    ) -> ExternalIdentity:
        pass

    @abstractmethod
    def list_identities_missing_aggregate(
        self, source: str, stats_window: str, limit: int
    ) -> List[ExternalIdentity]:
        """Identities for `source` whose player has no `stats_window` aggregate from it yet."""
        pass

    # ------------------------------------------------------------------
    # Provider snapshots
    # ------------------------------------------------------------------

    @abstractmethod
    def get_provider_profile(self, player_id: int, source: str) -> Optional[ProviderProfile]:
        pass

    @abstractmethod
    def upsert_provider_profile(
        self,
        player_id: int,
        source: str,
        source_player_id: str,
        raw: Optional[Dict[str, Any]],
        normalized: Dict[str, Any],
    ) -> ProviderProfile:
        pass

    @abstractmethod
    def upsert_provider_aggregate(
        self, player_id: int, source: str, stats_window: str, stats: Dict[str, Any]
    ) -> ProviderAggregate:
        pass

    # ------------------------------------------------------------------
    # Field conflicts
    # ------------------------------------------------------------------

    @abstractmethod
    def upsert_field_conflict(
        self, player_id: int, field: str, source: str, canonical_value: Any, source_value: Any
    ) -> FieldConflict:
        pass

    @abstractmethod
    def get_field_conflict(self, conflict_id: int) -> Optional[FieldConflict]:
        pass

    @abstractmethod
    def list_field_conflicts(self, player_id: int, unresolved_only: bool = True) -> List[FieldConflict]:
        pass

    @abstractmethod
    def mark_conflict_resolved(self, conflict_id: int, resolved_value: Any) -> FieldConflict:
        pass

    # ------------------------------------------------------------------
    # Appearances and derived stats
    # ------------------------------------------------------------------

    @abstractmethod
    def upsert_appearance(
        self,
        player_id: int,
        match_id: str,
        competition_id: int,
        match_date: date,
        minutes: int,
        stats: Dict[str, Any],
        team_id: Optional[int] = None,
        source: Optional[str] = None,
        is_final: bool = True,
    ) -> Appearance:
        pass

    @abstractmethod
    def list_appearances(
        self, competition_id: Optional[int] = None, player_id: Optional[int] = None
    ) -> List[Appearance]:
        pass

    @abstractmethod
    def upsert_rolling_stats_batch(self, rows: List[Dict[str, Any]]) -> int:
        pass

    @abstractmethod
    def upsert_player_ratings_batch(self, rows: List[Dict[str, Any]]) -> int:
        pass

    @abstractmethod
    def upsert_competition_rating(
        self, competition_id: int, tier: Optional[str], strength_score: int, rated_players: int
    ) -> CompetitionRating:
        pass

    @abstractmethod
    def get_competition(self, competition_id: int) -> Optional[Competition]:
        pass

    @abstractmethod
    def list_competitions(self, active_only: bool = True) -> List[Competition]:
        pass

    @abstractmethod
    def find_team_by_name(self, name: str, competition_id: Optional[int] = None) -> Optional[Team]:
        pass

    # ------------------------------------------------------------------
    # Rating profiles
    # ------------------------------------------------------------------

    @abstractmethod
    def get_rating_profiles(self) -> Dict[PositionGroup, RatingProfileSpec]:
        pass

    @abstractmethod
    def upsert_rating_profile(self, profile: RatingProfileSpec) -> RatingProfile:
        pass

    # ------------------------------------------------------------------
    # Review queue
    # ------------------------------------------------------------------

    @abstractmethod
    def enqueue_review_item(
        self,
        source: str,
        source_player_id: str,
        payload: Dict[str, Any],
        candidate_player_ids: Iterable[int],
        reason: str,
    ) -> ReviewItem:
        pass

    @abstractmethod
    def dequeue_review_item(self, source: str, source_player_id: str) -> bool:
        """Drop a pending item once its record has been placed; True if one was removed."""
        pass

    @abstractmethod
    def get_review_item(self, item_id: int) -> Optional[ReviewItem]:
        pass

    @abstractmethod
    def list_review_items(self, status: str = "pending", limit: int = 100) -> List[ReviewItem]:
        pass

    @abstractmethod
    def set_review_status(
        self,
        item_id: int,
        status: str,
        resolved_player_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> ReviewItem:
        pass

    # ------------------------------------------------------------------
    # Enrichment bookkeeping
    # ------------------------------------------------------------------

    @abstractmethod
    def get_enrichment_state(self, source: str) -> Optional[EnrichmentState]:
        pass

    @abstractmethod
    def save_enrichment_state(
        self, source: str, last_processed_player_id: Optional[int], total_processed: int
    ) -> EnrichmentState:
        pass

    @abstractmethod
    def create_enrichment_run(self, source: str, max_requests: int, batch_size: int) -> EnrichmentRun:
        pass

    @abstractmethod
    def finish_enrichment_run(
        self,
        run_id: int,
        status: str,
        summary: Dict[str, Any],
        requests_used: int,
        budget_exhausted: bool,
        error_message: Optional[str] = None,
    ) -> EnrichmentRun:
        pass

    # ------------------------------------------------------------------
    # Primary-source ingestion
    # ------------------------------------------------------------------

    @abstractmethod
    def upsert_competition(
        self,
        provider_league_id: str,
        name: str,
        country: Optional[str],
        season: Optional[str],
        competition_type: Optional[str] = None,
        is_active: bool = True,
    ) -> Competition:
        """Create or refresh a competition; an existing row keeps its is_active flag."""
        pass

    @abstractmethod
    def upsert_team(self, provider_team_id: str, name: str, competition_id: Optional[int]) -> Team:
        pass

    @abstractmethod
    def get_team_by_provider_id(self, provider_team_id: str) -> Optional[Team]:
        pass

    @abstractmethod
    def get_ingestion_state(self, provider: str, competition_id: int) -> Optional[IngestionState]:
        pass

    @abstractmethod
    def save_ingestion_state(self, provider: str, competition_id: int, **fields: Any) -> IngestionState:
        pass

    @abstractmethod
    def create_ingestion_run(self, provider: str, kind: str, max_requests: int) -> IngestionRun:
        pass

    @abstractmethod
    def finish_ingestion_run(
        self,
        run_id: int,
        status: str,
        summary: Dict[str, Any],
        requests_used: int,
        budget_exhausted: bool,
        error_message: Optional[str] = None,
    ) -> IngestionRun:
        pass


class SQLAlchemyRepository(ScoutingRepository):
    """
    ScoutingRepository backed by a synchronous SQLAlchemy session.

    Every SQLAlchemyError is rolled back and re-raised as DatabaseError so
    callers can tell persistence failures apart from per-item errors.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _commit(self, action: str, *instances) -> None:
        try:
            self.db.commit()
            for instance in instances:
                self.db.refresh(instance)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error while {action}: {str(e)}")
            raise DatabaseError(f"Failed {action}", details={"error": str(e)})

    def _query(self, action: str, fn):
        try:
            return fn()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error while {action}: {str(e)}")
            raise DatabaseError(f"Failed {action}", details={"error": str(e)})

    # ------------------------------------------------------------------
    # Canonical players
    # ------------------------------------------------------------------

    def get_player(self, player_id: int) -> Optional[Player]:
        return self._query("loading player", lambda: self.db.get(Player, player_id))

    def create_player(self, fields: Dict[str, Any], source: Optional[str] = None) -> Player:
        name = fields.get("name")
        if not name or not str(name).strip():
            raise ValidationError("Player name is required", details={"fields": list(fields)})

        values = {k: v for k, v in fields.items() if k != "name_normalized"}
        provenance = {k: source for k, v in values.items() if source and v is not None}
        player = Player(
            **values,
            name_normalized=normalize_name(name),
            field_sources=provenance,
        )
        self.db.add(player)
        self._commit("creating player", player)
        logger.info(f"Created player {player.id}: {player.name}")
        return player

    def update_player_fields(
        self, player_id: int, updates: Dict[str, Any], source: Optional[str] = None
    ) -> Player:
        player = self.get_player(player_id)
        if player is None:
            raise NotFoundError("Player", str(player_id))

        provenance = dict(player.field_sources or {})
        for field, value in updates.items():
            setattr(player, field, value)
            if source:
                provenance[field] = source
            if field == "name":
                player.name_normalized = normalize_name(value)
        player.field_sources = provenance

        self._commit(f"updating player {player_id}", player)
        return player

    def find_players_by_normalized_name(self, name_normalized: str) -> List[Player]:
        return self._query(
            "searching players by name",
            lambda: self.db.query(Player).filter(Player.name_normalized == name_normalized).all(),
        )

    def list_players_by_team(self, team_id: int) -> List[Player]:
        return self._query(
            "listing team players",
            lambda: self.db.query(Player).filter(Player.team_id == team_id).all(),
        )

    def list_players_by_competition(self, competition_id: int) -> List[Player]:
        return self._query(
            "listing competition players",
            lambda: self.db.query(Player).filter(Player.competition_id == competition_id).all(),
        )

    def list_players_missing_identity(
        self, source: str, after_player_id: Optional[int], limit: int
    ) -> List[Player]:
        def run():
            mapped = select(ExternalIdentity.player_id).where(ExternalIdentity.source == source)
            query = self.db.query(Player).filter(~Player.id.in_(mapped))
            if after_player_id is not None:
                query = query.filter(Player.id > after_player_id)
            return query.order_by(Player.id).limit(limit).all()

        return self._query(f"selecting players without {source} identity", run)

    # ------------------------------------------------------------------
    # External identities
    # ------------------------------------------------------------------

    def get_identity(self, source: str, source_player_id: str) -> Optional[ExternalIdentity]:
        return self._query(
            "loading external identity",
            lambda: self.db.query(ExternalIdentity)
            .filter(
                ExternalIdentity.source == source,
                ExternalIdentity.source_player_id == str(source_player_id),
            )
            .first(),
        )

    def upsert_identity(
        self, player_id: int, source: str, source_player_id: str, confidence: float
    ) -> ExternalIdentity:
        source_player_id = str(source_player_id)
        confidence = max(0.0, min(1.0, float(confidence)))

        existing = self.get_identity(source, source_player_id)
        if existing and existing.player_id != player_id:
            raise ValidationError(
                f"{source}:{source_player_id} is already linked to player {existing.player_id}",
                details={"source": source, "player_id": existing.player_id},
            )

        if existing is None:
            existing = self._query(
                "loading player identity",
                lambda: self.db.query(ExternalIdentity)
                .filter(ExternalIdentity.player_id == player_id, ExternalIdentity.source == source)
                .first(),
            )
            if existing is not None:
                logger.warning(
                    f"Player {player_id} {source} id changed "
                    f"{existing.source_player_id} -> {source_player_id}"
                )
                existing.source_player_id = source_player_id

        if existing:
            existing.confidence = confidence
            existing.updated_at = _utcnow()
            identity = existing
        else:
            identity = ExternalIdentity(
                player_id=player_id,
                source=source,
                source_player_id=source_player_id,
                confidence=confidence,
            )
            self.db.add(identity)

        self._commit(f"upserting identity {source}:{source_player_id}", identity)
        return identity

    def list_identities_missing_aggregate(
        self, source: str, stats_window: str, limit: int
    ) -> List[ExternalIdentity]:
        def run():
            stored = select(ProviderAggregate.player_id).where(
                ProviderAggregate.source == source,
                ProviderAggregate.stats_window == stats_window,
            )
            return (
                self.db.query(ExternalIdentity)
                .filter(ExternalIdentity.source == source, ~ExternalIdentity.player_id.in_(stored))
                .order_by(ExternalIdentity.player_id)
                .limit(limit)
                .all()
            )

        return self._query(f"selecting {source} identities without {stats_window} stats", run)

    # ------------------------------------------------------------------
    # Provider snapshots
    # ------------------------------------------------------------------

    def get_provider_profile(self, player_id: int, source: str) -> Optional[ProviderProfile]:
        return self._query(
            "loading provider profile",
            lambda: self.db.query(ProviderProfile)
            .filter(ProviderProfile.player_id == player_id, ProviderProfile.source == source)
            .first(),
        )

    def upsert_provider_profile(
        self,
        player_id: int,
        source: str,
        source_player_id: str,
        raw: Optional[Dict[str, Any]],
        normalized: Dict[str, Any],
    ) -> ProviderProfile:
        profile = self.get_provider_profile(player_id, source)
        if profile is None:
            profile = ProviderProfile(player_id=player_id, source=source)
            self.db.add(profile)

        # Snapshot replaced wholesale
        profile.source_player_id = str(source_player_id)
        profile.raw = raw
        profile.normalized = dict(normalized)
        profile.fetched_at = _utcnow()

        self._commit(f"storing {source} profile for player {player_id}", profile)
        return profile

    def upsert_provider_aggregate(
        self, player_id: int, source: str, stats_window: str, stats: Dict[str, Any]
    ) -> ProviderAggregate:
        aggregate = self._query(
            "loading provider aggregate",
            lambda: self.db.query(ProviderAggregate)
            .filter(
                ProviderAggregate.player_id == player_id,
                ProviderAggregate.source == source,
                ProviderAggregate.stats_window == stats_window,
            )
            .first(),
        )
        if aggregate is None:
            aggregate = ProviderAggregate(player_id=player_id, source=source, stats_window=stats_window)
            self.db.add(aggregate)
        aggregate.stats = dict(stats)
        aggregate.fetched_at = _utcnow()

        self._commit(f"storing {source} {stats_window} stats for player {player_id}", aggregate)
        return aggregate

    # ------------------------------------------------------------------
    # Field conflicts
    # ------------------------------------------------------------------

    def upsert_field_conflict(
        self, player_id: int, field: str, source: str, canonical_value: Any, source_value: Any
    ) -> FieldConflict:
        conflict = self._query(
            "loading field conflict",
            lambda: self.db.query(FieldConflict)
            .filter(
                FieldConflict.player_id == player_id,
                FieldConflict.field == field,
                FieldConflict.source == source,
            )
            .first(),
        )

        if conflict is None:
            conflict = FieldConflict(
                player_id=player_id,
                field=field,
                source=source,
                canonical_value=canonical_value,
                source_value=source_value,
                resolved=False,
            )
            self.db.add(conflict)
        else:
            # A resolved conflict reopens only when the source reports something new
            if conflict.resolved and conflict.source_value != source_value:
                conflict.resolved = False
                conflict.resolved_value = None
                conflict.resolved_at = None
            conflict.canonical_value = canonical_value
            conflict.source_value = source_value
            conflict.updated_at = _utcnow()

        self._commit(f"recording conflict on {field} for player {player_id}", conflict)
        return conflict

    def get_field_conflict(self, conflict_id: int) -> Optional[FieldConflict]:
        return self._query("loading field conflict", lambda: self.db.get(FieldConflict, conflict_id))

    def list_field_conflicts(self, player_id: int, unresolved_only: bool = True) -> List[FieldConflict]:
        def run():
            query = self.db.query(FieldConflict).filter(FieldConflict.player_id == player_id)
            if unresolved_only:
                query = query.filter(FieldConflict.resolved.is_(False))
            return query.order_by(FieldConflict.id).all()

        return self._query("listing field conflicts", run)

    def mark_conflict_resolved(self, conflict_id: int, resolved_value: Any) -> FieldConflict:
        conflict = self.get_field_conflict(conflict_id)
        if conflict is None:
            raise NotFoundError("FieldConflict", str(conflict_id))
        conflict.resolved = True
        conflict.resolved_value = resolved_value
        conflict.resolved_at = _utcnow()
        self._commit(f"resolving conflict {conflict_id}", conflict)
        return conflict

    # ------------------------------------------------------------------
    # Appearances and derived stats
    # ------------------------------------------------------------------

    def upsert_appearance(
        self,
        player_id: int,
        match_id: str,
        competition_id: int,
        match_date: date,
        minutes: int,
        stats: Dict[str, Any],
        team_id: Optional[int] = None,
        source: Optional[str] = None,
        is_final: bool = True,
    ) -> Appearance:
        match_id = str(match_id)
        appearance = self._query(
            "loading appearance",
            lambda: self.db.query(Appearance)
            .filter(Appearance.player_id == player_id, Appearance.match_id == match_id)
            .first(),
        )

        if appearance is not None and appearance.is_final:
            logger.debug(f"Appearance {player_id}/{match_id} is final, keeping stored values")
            return appearance

        if appearance is None:
            appearance = Appearance(player_id=player_id, match_id=match_id)
            self.db.add(appearance)

        appearance.competition_id = competition_id
        appearance.team_id = team_id
        appearance.match_date = match_date
        appearance.minutes = int(minutes or 0)
        appearance.stats = dict(stats or {})
        appearance.source = source
        appearance.is_final = is_final

        self._commit(f"upserting appearance {player_id}/{match_id}", appearance)
        return appearance

    def list_appearances(
        self, competition_id: Optional[int] = None, player_id: Optional[int] = None
    ) -> List[Appearance]:
        def run():
            query = self.db.query(Appearance)
            if competition_id is not None:
                query = query.filter(Appearance.competition_id == competition_id)
            if player_id is not None:
                query = query.filter(Appearance.player_id == player_id)
            return query.order_by(Appearance.player_id, Appearance.match_date).all()

        return self._query("listing appearances", run)

    def upsert_rolling_stats_batch(self, rows: List[Dict[str, Any]]) -> int:
        for row in rows:
            record = self._query(
                "loading rolling stats",
                lambda: self.db.query(RollingStats)
                .filter(
                    RollingStats.player_id == row["player_id"],
                    RollingStats.competition_id == row["competition_id"],
                )
                .first(),
            )
            if record is None:
                record = RollingStats(player_id=row["player_id"], competition_id=row["competition_id"])
                self.db.add(record)
            record.from_date = row.get("from_date")
            record.to_date = row.get("to_date")
            record.minutes = row.get("minutes", 0)
            record.totals = row.get("totals", {})
            record.per90 = row.get("per90", {})
            record.rates = row.get("rates", {})
            record.last5 = row.get("last5", {})
            record.updated_at = _utcnow()

        self._commit(f"writing {len(rows)} rolling stats rows")
        return len(rows)

    def upsert_player_ratings_batch(self, rows: List[Dict[str, Any]]) -> int:
        for row in rows:
            record = self._query(
                "loading player rating",
                lambda: self.db.query(PlayerRating)
                .filter(
                    PlayerRating.player_id == row["player_id"],
                    PlayerRating.competition_id == row["competition_id"],
                )
                .first(),
            )
            if record is None:
                record = PlayerRating(player_id=row["player_id"], competition_id=row["competition_id"])
                self.db.add(record)
            record.position_group = row["position_group"]
            record.rating_365 = row["rating_365"]
            record.rating_last5 = row["rating_last5"]
            record.level_score = row["level_score"]
            record.tier = row.get("tier")
            record.updated_at = _utcnow()

        self._commit(f"writing {len(rows)} player ratings")
        return len(rows)

    def upsert_competition_rating(
        self, competition_id: int, tier: Optional[str], strength_score: int, rated_players: int
    ) -> CompetitionRating:
        record = self._query(
            "loading competition rating",
            lambda: self.db.query(CompetitionRating)
            .filter(CompetitionRating.competition_id == competition_id)
            .first(),
        )
        if record is None:
            record = CompetitionRating(competition_id=competition_id)
            self.db.add(record)
        record.tier = tier
        record.strength_score = strength_score
        record.rated_players = rated_players
        record.updated_at = _utcnow()

        self._commit(f"writing competition rating {competition_id}", record)
        return record

    def get_competition(self, competition_id: int) -> Optional[Competition]:
        return self._query("loading competition", lambda: self.db.get(Competition, competition_id))

    def list_competitions(self, active_only: bool = True) -> List[Competition]:
        def run():
            query = self.db.query(Competition)
            if active_only:
                query = query.filter(Competition.is_active.is_(True))
            return query.order_by(Competition.id).all()

        return self._query("listing competitions", run)

    def find_team_by_name(self, name: str, competition_id: Optional[int] = None) -> Optional[Team]:
        """Look up a team by its normalized club name."""
        normalized = normalize_team_name(name)

        def run():
            query = self.db.query(Team).filter(Team.name_normalized == normalized)
            if competition_id is not None:
                query = query.filter(or_(Team.competition_id == competition_id, Team.competition_id.is_(None)))
            return query.first()

        return self._query("loading team", run)

    # ------------------------------------------------------------------
    # Rating profiles
    # ------------------------------------------------------------------

    def get_rating_profiles(self) -> Dict[PositionGroup, RatingProfileSpec]:
        rows = self._query("loading rating profiles", lambda: self.db.query(RatingProfile).all())
        return {
            spec.position_group: spec
            for spec in (
                RatingProfileSpec.from_storage(row.position_group, row.weights, row.invert_metrics)
                for row in rows
            )
        }

    def upsert_rating_profile(self, profile: RatingProfileSpec) -> RatingProfile:
        weights, invert = profile.to_storage()
        record = self._query(
            "loading rating profile",
            lambda: self.db.query(RatingProfile)
            .filter(RatingProfile.position_group == profile.position_group.value)
            .first(),
        )
        if record is None:
            record = RatingProfile(position_group=profile.position_group.value)
            self.db.add(record)
        record.weights = weights
        record.invert_metrics = invert
        record.updated_at = _utcnow()

        self._commit(f"writing rating profile {profile.position_group.value}", record)
        return record

    # ------------------------------------------------------------------
    # Review queue
    # ------------------------------------------------------------------

    def _find_review_item(self, source: str, source_player_id: str) -> Optional[ReviewItem]:
        return self._query(
            "loading review item",
            lambda: self.db.query(ReviewItem)
            .filter(ReviewItem.source == source, ReviewItem.source_player_id == str(source_player_id))
            .first(),
        )

    def enqueue_review_item(
        self,
        source: str,
        source_player_id: str,
        payload: Dict[str, Any],
        candidate_player_ids: Iterable[int],
        reason: str,
    ) -> ReviewItem:
        item = self._find_review_item(source, source_player_id)
        if item is not None and item.status != "pending":
            logger.info(f"Review item {source}:{source_player_id} already {item.status}, not requeued")
            return item

        if item is None:
            item = ReviewItem(source=source, source_player_id=str(source_player_id), status="pending")
            self.db.add(item)
        item.payload = payload
        item.candidate_player_ids = list(candidate_player_ids)
        item.reason = reason
        item.updated_at = _utcnow()

        self._commit(f"queueing review item {source}:{source_player_id}", item)
        return item

    def dequeue_review_item(self, source: str, source_player_id: str) -> bool:
        item = self._find_review_item(source, source_player_id)
        if item is None or item.status != "pending":
            return False
        self.db.delete(item)
        self._commit(f"removing review item {source}:{source_player_id}")
        return True

    def get_review_item(self, item_id: int) -> Optional[ReviewItem]:
        return self._query("loading review item", lambda: self.db.get(ReviewItem, item_id))

    def list_review_items(self, status: str = "pending", limit: int = 100) -> List[ReviewItem]:
        return self._query(
            "listing review items",
            lambda: self.db.query(ReviewItem)
            .filter(ReviewItem.status == status)
            .order_by(ReviewItem.id)
            .limit(limit)
            .all(),
        )

    def set_review_status(
        self,
        item_id: int,
        status: str,
        resolved_player_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> ReviewItem:
        item = self.get_review_item(item_id)
        if item is None:
            raise NotFoundError("ReviewItem", str(item_id))
        item.status = status
        item.resolved_player_id = resolved_player_id
        if note is not None:
            item.note = note
        item.updated_at = _utcnow()
        self._commit(f"updating review item {item_id}", item)
        return item

    # ------------------------------------------------------------------
    # Enrichment bookkeeping
    # ------------------------------------------------------------------

    def get_enrichment_state(self, source: str) -> Optional[EnrichmentState]:
        return self._query(
            "loading enrichment state",
            lambda: self.db.query(EnrichmentState).filter(EnrichmentState.source == source).first(),
        )

    def save_enrichment_state(
        self, source: str, last_processed_player_id: Optional[int], total_processed: int
    ) -> EnrichmentState:
        state = self.get_enrichment_state(source)
        if state is None:
            state = EnrichmentState(source=source)
            self.db.add(state)
        state.last_processed_player_id = last_processed_player_id
        state.total_processed = total_processed
        state.updated_at = _utcnow()
        self._commit(f"saving {source} enrichment state", state)
        return state

    def create_enrichment_run(self, source: str, max_requests: int, batch_size: int) -> EnrichmentRun:
        run = EnrichmentRun(
            source=source,
            status="running",
            max_requests=max_requests,
            batch_size=batch_size,
            started_at=_utcnow(),
        )
        self.db.add(run)
        self._commit(f"creating {source} enrichment run", run)
        return run

    def finish_enrichment_run(
        self,
        run_id: int,
        status: str,
        summary: Dict[str, Any],
        requests_used: int,
        budget_exhausted: bool,
        error_message: Optional[str] = None,
    ) -> EnrichmentRun:
        run = self._query("loading enrichment run", lambda: self.db.get(EnrichmentRun, run_id))
        if run is None:
            raise NotFoundError("EnrichmentRun", str(run_id))
        run.status = status
        run.summary = dict(summary)
        run.requests_used = requests_used
        run.budget_exhausted = budget_exhausted
        run.error_message = error_message
        run.finished_at = _utcnow()
        self._commit(f"finishing enrichment run {run_id}", run)
        return run

    # ------------------------------------------------------------------
    # Primary-source ingestion
    # ------------------------------------------------------------------

    def upsert_competition(
        self,
        provider_league_id: str,
        name: str,
        country: Optional[str],
        season: Optional[str],
        competition_type: Optional[str] = None,
        is_active: bool = True,
    ) -> Competition:
        provider_league_id = str(provider_league_id)
        competition = self._query(
            "loading competition",
            lambda: self.db.query(Competition)
            .filter(Competition.provider_league_id == provider_league_id)
            .first(),
        )
        if competition is None:
            competition = Competition(
                provider_league_id=provider_league_id, country=country, is_active=is_active
            )
            self.db.add(competition)
        competition.name = name
        competition.season = season
        competition.competition_type = competition_type
        self._commit(f"upserting competition {provider_league_id}", competition)
        return competition

    def upsert_team(self, provider_team_id: str, name: str, competition_id: Optional[int]) -> Team:
        team = self.get_team_by_provider_id(provider_team_id)
        if team is None:
            team = Team(provider_team_id=str(provider_team_id))
            self.db.add(team)
        team.name = name
        team.name_normalized = normalize_team_name(name)
        team.competition_id = competition_id
        self._commit(f"upserting team {provider_team_id}", team)
        return team

    def get_team_by_provider_id(self, provider_team_id: str) -> Optional[Team]:
        return self._query(
            "loading team",
            lambda: self.db.query(Team).filter(Team.provider_team_id == str(provider_team_id)).first(),
        )

    def get_ingestion_state(self, provider: str, competition_id: int) -> Optional[IngestionState]:
        return self._query(
            "loading ingestion state",
            lambda: self.db.query(IngestionState)
            .filter(IngestionState.provider == provider, IngestionState.competition_id == competition_id)
            .first(),
        )

    def save_ingestion_state(self, provider: str, competition_id: int, **fields: Any) -> IngestionState:
        state = self.get_ingestion_state(provider, competition_id)
        if state is None:
            state = IngestionState(
                provider=provider,
                competition_id=competition_id,
                teams_complete=False,
                players_next_page=1,
                players_complete=False,
            )
            self.db.add(state)
        for name, value in fields.items():
            setattr(state, name, value)
        state.updated_at = _utcnow()
        self._commit(f"saving {provider} ingestion state for competition {competition_id}", state)
        return state

    def create_ingestion_run(self, provider: str, kind: str, max_requests: int) -> IngestionRun:
        run = IngestionRun(
            provider=provider,
            kind=kind,
            status="running",
            max_requests=max_requests,
            started_at=_utcnow(),
        )
        self.db.add(run)
        self._commit(f"creating {provider} ingestion run", run)
        return run

    def finish_ingestion_run(
        self,
        run_id: int,
        status: str,
        summary: Dict[str, Any],
        requests_used: int,
        budget_exhausted: bool,
        error_message: Optional[str] = None,
    ) -> IngestionRun:
        run = self._query("loading ingestion run", lambda: self.db.get(IngestionRun, run_id))
        if run is None:
            raise NotFoundError("IngestionRun", str(run_id))
        run.status = status
        run.summary = dict(summary)
        run.requests_used = requests_used
        run.budget_exhausted = budget_exhausted
        run.error_message = error_message
        run.finished_at = _utcnow()
        self._commit(f"finishing ingestion run {run_id}", run)
        return run
