from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime, Boolean, ForeignKey,
    UniqueConstraint, CheckConstraint, JSON, Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from scoutbase.database import Base

POSITION_GROUPS = ("GK", "DEF", "MID", "ATT")
TIERS = ("Platinum", "Diamond", "Elite", "Gold", "Silver", "Bronze")

# ============================================================================
# REFERENCE TABLES
# ============================================================================

class Competition(Base):
    """A league or cup; the tier drives the cross-league level score."""
    __tablename__ = "competitions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    country = Column(String(100))
    season = Column(String(20))
    provider_league_id = Column(String(50), nullable=True, unique=True)
    competition_type = Column(String(20))
    tier = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    teams = relationship("Team", back_populates="competition")

    __table_args__ = (
        CheckConstraint(
            "tier IS NULL OR tier IN ('Platinum', 'Diamond', 'Elite', 'Gold', 'Silver', 'Bronze')",
            name="check_competition_tier",
        ),
    )


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    name_normalized = Column(String(255), index=True)
    provider_team_id = Column(String(50), nullable=True, unique=True)
    competition_id = Column(Integer, ForeignKey("competitions.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    competition = relationship("Competition", back_populates="teams")
    players = relationship("Player", back_populates="team")


# ============================================================================
# CANONICAL IDENTITY
# ============================================================================

class Player(Base):
    """
    Canonical player record reconciled across all sources.

    name_normalized is written together with name on every insert and
    rename. field_sources maps each merged field to the source that
    supplied its current value.
    """
    __tablename__ = "players"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    name_normalized = Column(String(255), nullable=False, index=True)
    birth_date = Column(String(10))  # ISO YYYY-MM-DD
    nationality = Column(String(100))
    height_cm = Column(Float)
    weight_kg = Column(Float)
    preferred_foot = Column(String(10))
    photo_url = Column(String(500))
    position = Column(String(50))
    position_group = Column(String(3))
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=True, index=True)
    competition_id = Column(Integer, ForeignKey("competitions.id"), nullable=True, index=True)
    field_sources = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    team = relationship("Team", back_populates="players")
    external_identities = relationship("ExternalIdentity", back_populates="player")

    __table_args__ = (
        CheckConstraint(
            "position_group IS NULL OR position_group IN ('GK', 'DEF', 'MID', 'ATT')",
            name="check_player_position_group",
        ),
    )


class ExternalIdentity(Base):
    """
    Maps a (source, source-native id) pair to exactly one canonical player.
    A player holds at most one identity per source.
    """
    __tablename__ = "external_identities"

    id = Column(Integer, primary_key=True, index=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False, index=True)
    source = Column(String(50), nullable=False)
    source_player_id = Column(String(100), nullable=False)
    confidence = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    player = relationship("Player", back_populates="external_identities")

    __table_args__ = (
        UniqueConstraint("source", "source_player_id", name="uq_identity_source_id"),
        UniqueConstraint("player_id", "source", name="uq_identity_player_source"),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="check_identity_confidence"),
    )


class ProviderProfile(Base):
    """Latest raw and normalized snapshot from one source for one player."""
    __tablename__ = "provider_profiles"

    id = Column(Integer, primary_key=True, index=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False, index=True)
    source = Column(String(50), nullable=False)
    source_player_id = Column(String(100), nullable=False)
    raw = Column(JSON)
    normalized = Column(JSON)
    fetched_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("player_id", "source", name="uq_profile_player_source"),
    )


class ProviderAggregate(Base):
    """Season/career totals reported by a source, with derived per-90 figures."""
    __tablename__ = "provider_aggregates"

    id = Column(Integer, primary_key=True, index=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False, index=True)
    source = Column(String(50), nullable=False)
    stats_window = Column(String(30), nullable=False)
    stats = Column(JSON, nullable=False)
    fetched_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("player_id", "source", "stats_window", name="uq_aggregate_player_source_window"),
    )


class FieldConflict(Base):
    """
    A source value that disagrees with the canonical value of a field.
    Only explicit resolution sets resolved=True.
    """
    __tablename__ = "field_conflicts"

    id = Column(Integer, primary_key=True, index=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False, index=True)
    field = Column(String(50), nullable=False)
    source = Column(String(50), nullable=False)
    canonical_value = Column(JSON)
    source_value = Column(JSON)
    resolved = Column(Boolean, default=False, nullable=False)
    resolved_value = Column(JSON)
    resolved_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("player_id", "field", "source", name="uq_conflict_player_field_source"),
    )


class ReviewItem(Base):
    """External record the resolver could not confidently place."""
    __tablename__ = "review_queue"

    id = Column(Integer, primary_key=True, index=True)
    source = Column(String(50), nullable=False)
    source_player_id = Column(String(100), nullable=False)
    payload = Column(JSON)
    candidate_player_ids = Column(JSON, nullable=False, default=list)
    reason = Column(String(255))
    status = Column(String(20), nullable=False, default="pending")
    resolved_player_id = Column(Integer, ForeignKey("players.id"), nullable=True)
    note = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("source", "source_player_id", name="uq_review_source_id"),
        CheckConstraint("status IN ('pending', 'resolved', 'rejected')", name="check_review_status"),
    )


# ============================================================================
# MATCH DATA AND DERIVED STATS
# ============================================================================

class Appearance(Base):
    """One player's minutes and fixed statistic set for one match."""
    __tablename__ = "appearances"

    id = Column(Integer, primary_key=True, index=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False, index=True)
    match_id = Column(String(100), nullable=False)
    competition_id = Column(Integer, ForeignKey("competitions.id"), nullable=False, index=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=True)
    match_date = Column(Date, nullable=False, index=True)
    minutes = Column(Integer, nullable=False, default=0)
    stats = Column(JSON, nullable=False, default=dict)
    source = Column(String(50))
    is_final = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("player_id", "match_id", name="uq_appearance_player_match"),
        CheckConstraint("minutes >= 0", name="check_appearance_minutes"),
    )


class RollingStats(Base):
    """Recomputed-wholesale aggregate over the rolling and form windows."""
    __tablename__ = "rolling_stats"

    id = Column(Integer, primary_key=True, index=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False, index=True)
    competition_id = Column(Integer, ForeignKey("competitions.id"), nullable=False, index=True)
    from_date = Column(Date)
    to_date = Column(Date)
    minutes = Column(Integer, nullable=False, default=0)
    totals = Column(JSON, nullable=False)
    per90 = Column(JSON, nullable=False)
    rates = Column(JSON, nullable=False)
    last5 = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("player_id", "competition_id", name="uq_rolling_player_competition"),
    )


class RatingProfile(Base):
    """Per position group metric weights and lower-is-better metrics."""
    __tablename__ = "rating_profiles"

    id = Column(Integer, primary_key=True, index=True)
    position_group = Column(String(3), nullable=False, unique=True)
    weights = Column(JSON, nullable=False)
    invert_metrics = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PlayerRating(Base):
    __tablename__ = "player_ratings"

    id = Column(Integer, primary_key=True, index=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False, index=True)
    competition_id = Column(Integer, ForeignKey("competitions.id"), nullable=False, index=True)
    position_group = Column(String(3), nullable=False)
    rating_365 = Column(Integer, nullable=False)
    rating_last5 = Column(Integer, nullable=False)
    level_score = Column(Integer, nullable=False)
    tier = Column(String(20))
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("player_id", "competition_id", name="uq_rating_player_competition"),
        CheckConstraint("rating_365 >= 0 AND rating_365 <= 100", name="check_rating_range"),
    )


class CompetitionRating(Base):
    __tablename__ = "competition_ratings"

    id = Column(Integer, primary_key=True, index=True)
    competition_id = Column(Integer, ForeignKey("competitions.id"), nullable=False, unique=True)
    tier = Column(String(20))
    strength_score = Column(Integer, nullable=False)
    rated_players = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ============================================================================
# ENRICHMENT AND INGESTION BOOKKEEPING
# ============================================================================

class EnrichmentState(Base):
    """Resumable cursor for one source's enrichment loop."""
    __tablename__ = "enrichment_state"

    id = Column(Integer, primary_key=True, index=True)
    source = Column(String(50), nullable=False, unique=True)
    last_processed_player_id = Column(Integer, nullable=True)
    total_processed = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class EnrichmentRun(Base):
    """Operator-visible record of one orchestration run."""
    __tablename__ = "enrichment_runs"

    id = Column(Integer, primary_key=True, index=True)
    source = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="running")
    max_requests = Column(Integer, nullable=False)
    batch_size = Column(Integer, nullable=False)
    requests_used = Column(Integer, nullable=False, default=0)
    budget_exhausted = Column(Boolean, nullable=False, default=False)
    summary = Column(JSON)
    error_message = Column(Text)
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    finished_at = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint("status IN ('running', 'completed', 'failed')", name="check_run_status"),
    )


class IngestionState(Base):
    """Resume point for primary-source ingestion of one competition."""
    __tablename__ = "ingestion_state"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(50), nullable=False)
    competition_id = Column(Integer, ForeignKey("competitions.id"), nullable=False)
    season = Column(String(20))
    teams_complete = Column(Boolean, nullable=False, default=False)
    players_next_page = Column(Integer, nullable=False, default=1)
    players_complete = Column(Boolean, nullable=False, default=False)
    fixtures_last_date = Column(String(10))  # ISO YYYY-MM-DD
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("provider", "competition_id", name="uq_ingestion_state_provider_competition"),
    )


class IngestionRun(Base):
    """Operator-visible record of one primary-source ingestion run."""
    __tablename__ = "ingestion_runs"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(50), nullable=False, index=True)
    kind = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="running")
    max_requests = Column(Integer, nullable=False)
    requests_used = Column(Integer, nullable=False, default=0)
    budget_exhausted = Column(Boolean, nullable=False, default=False)
    summary = Column(JSON)
    error_message = Column(Text)
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    finished_at = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint("status IN ('running', 'completed', 'failed')", name="check_ingestion_run_status"),
        CheckConstraint("kind IN ('countries', 'fixtures')", name="check_ingestion_run_kind"),
    )
