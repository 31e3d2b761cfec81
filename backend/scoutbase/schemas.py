from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import date, datetime


# Enrichment Schemas
class EnrichmentRunRequest(BaseModel):
    max_requests: Optional[int] = Field(None, ge=0)
    batch_size: Optional[int] = Field(None, ge=1)


class EnrichmentRunResponse(BaseModel):
    id: int
    source: str
    status: str
    max_requests: int
    batch_size: int
    requests_used: int
    budget_exhausted: bool
    summary: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Ingestion Schemas
class CountryIngestionRequest(BaseModel):
    countries: Optional[List[str]] = None
    max_requests: Optional[int] = Field(None, ge=0)


class FixtureIngestionRequest(BaseModel):
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    countries: Optional[List[str]] = None
    max_requests: Optional[int] = Field(None, ge=0)


class IngestionRunResponse(BaseModel):
    id: int
    provider: str
    kind: str
    status: str
    max_requests: int
    requests_used: int
    budget_exhausted: bool
    summary: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Rating Schemas
class RecomputeRequest(BaseModel):
    competition_id: Optional[int] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None
    dry_run: bool = False


class CompetitionRecomputeSummary(BaseModel):
    competition_id: int
    tier: Optional[str] = None
    players_with_appearances: int
    players_rated: int
    players_without_position: int
    strength_score: int


class RecomputeResponse(BaseModel):
    from_date: date
    to_date: date
    dry_run: bool
    rolling_stats_written: int
    ratings_written: int
    competitions: List[CompetitionRecomputeSummary]


# Review Queue Schemas
class ReviewItemResponse(BaseModel):
    id: int
    source: str
    source_player_id: str
    reason: Optional[str] = None
    status: str
    candidate_player_ids: List[int] = []
    payload: Optional[Dict[str, Any]] = None
    resolved_player_id: Optional[int] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReviewResolveRequest(BaseModel):
    """Link a queued record to a canonical player; omit player_id to take the only candidate"""

    player_id: Optional[int] = None
    source_player_id: Optional[str] = None
    note: Optional[str] = None


class ReviewRejectRequest(BaseModel):
    note: Optional[str] = None


# Field Conflict Schemas
class FieldConflictResponse(BaseModel):
    id: int
    player_id: int
    field: str
    source: str
    canonical_value: Any = None
    source_value: Any = None
    resolved: bool
    resolved_value: Any = None
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ConflictResolveRequest(BaseModel):
    value: Any
