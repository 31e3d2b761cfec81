from contextlib import asynccontextmanager
from typing import List
import logging

import uvicorn
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scoutbase import __version__
from scoutbase.core.config import settings
from scoutbase.database import get_db, init_db
from scoutbase.exceptions import (
    AppException,
    NotFoundError,
    handle_app_exception,
    handle_generic_exception,
    handle_http_exception,
)
from scoutbase.schemas import (
    ConflictResolveRequest,
    CountryIngestionRequest,
    EnrichmentRunRequest,
    EnrichmentRunResponse,
    FieldConflictResponse,
    FixtureIngestionRequest,
    IngestionRunResponse,
    RecomputeRequest,
    RecomputeResponse,
    ReviewItemResponse,
    ReviewRejectRequest,
    ReviewResolveRequest,
)
from scoutbase.services.enrichment import PROVIDER_BUILDERS, enrich_source
from scoutbase.services.field_merger import FieldMerger
from scoutbase.services.league_ingestion import ingest_countries, ingest_recent_fixtures
from scoutbase.services.rating_service import RatingService
from scoutbase.services.repository import SQLAlchemyRepository
from scoutbase.services.review_service import ReviewService

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting Scoutbase API ({settings.MODE})")
    init_db()
    yield
    logger.info("Scoutbase API shutting down")


app = FastAPI(
    title="Scoutbase API",
    description="Identity resolution, provenance merge and percentile ratings for football players",
    version=__version__,
    lifespan=lifespan,
)

# =============================================================================
# CENTRALIZED ERROR HANDLING
# =============================================================================

@app.exception_handler(AppException)
async def app_exception_handler(request, exc: AppException):
    """Handle application-specific exceptions."""
    return handle_app_exception(exc)


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """Handle FastAPI HTTPExceptions with standardized format."""
    return handle_http_exception(exc)


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc: Exception):
    """Handle all other exceptions and convert to standardized format."""
    return handle_generic_exception(exc)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_repository(db: Session = Depends(get_db)) -> SQLAlchemyRepository:
    return SQLAlchemyRepository(db)


@app.get("/")
async def root():
    return {
        "message": "Scoutbase API",
        "version": __version__,
        "status": "operational",
    }


@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        database = "connected"
    except SQLAlchemyError as e:
        logger.error(f"Health check database error: {str(e)}")
        database = "unavailable"

    return {
        "status": "healthy" if database == "connected" else "degraded",
        "database": database,
        "mode": settings.MODE,
        "enrichment_sources": settings.enrichment_sources,
    }


# =============================================================================
# ENRICHMENT
# =============================================================================

@app.post("/api/enrichment/{source}/run", response_model=EnrichmentRunResponse)
async def run_enrichment(
    source: str,
    request: EnrichmentRunRequest,
    repository: SQLAlchemyRepository = Depends(get_repository),
):
    """
    Run one enrichment batch for a source.

    Always answers with the run record; a failed run carries its error
    message and the partial counts.
    """
    if source not in PROVIDER_BUILDERS:
        raise NotFoundError("Enrichment source", source)

    run = await enrich_source(
        repository,
        source,
        max_requests=request.max_requests,
        batch_size=request.batch_size,
    )
    return EnrichmentRunResponse.model_validate(run)


# =============================================================================
# PRIMARY INGESTION
# =============================================================================

@app.post("/api/ingestion/countries", response_model=IngestionRunResponse)
async def run_country_ingestion(
    request: CountryIngestionRequest,
    repository: SQLAlchemyRepository = Depends(get_repository),
):
    """Refresh competitions, teams and squads from API-Football."""
    run = await ingest_countries(
        repository, countries=request.countries, max_requests=request.max_requests
    )
    return IngestionRunResponse.model_validate(run)


@app.post("/api/ingestion/fixtures", response_model=IngestionRunResponse)
async def run_fixture_ingestion(
    request: FixtureIngestionRequest,
    repository: SQLAlchemyRepository = Depends(get_repository),
):
    """Store appearances from recently finished fixtures."""
    run = await ingest_recent_fixtures(
        repository,
        date_from=request.date_from.isoformat() if request.date_from else None,
        date_to=request.date_to.isoformat() if request.date_to else None,
        countries=request.countries,
        max_requests=request.max_requests,
    )
    return IngestionRunResponse.model_validate(run)


# =============================================================================
# RATINGS
# =============================================================================

@app.post("/api/ratings/recompute", response_model=RecomputeResponse)
async def recompute_ratings(
    request: RecomputeRequest,
    repository: SQLAlchemyRepository = Depends(get_repository),
):
    summary = RatingService(repository).recompute(
        competition_id=request.competition_id,
        from_date=request.from_date,
        to_date=request.to_date,
        dry_run=request.dry_run,
    )
    return RecomputeResponse(**summary.to_dict())


# =============================================================================
# REVIEW QUEUE
# =============================================================================

@app.get("/api/review-queue", response_model=List[ReviewItemResponse])
async def list_review_queue(
    status: str = "pending",
    limit: int = 100,
    repository: SQLAlchemyRepository = Depends(get_repository),
):
    """Queued records awaiting (or past) manual adjudication."""
    if status == "pending":
        items = ReviewService(repository).list_pending(limit=limit)
    else:
        items = repository.list_review_items(status=status, limit=limit)
    return [ReviewItemResponse.model_validate(item) for item in items]


@app.post("/api/review-queue/{item_id}/resolve", response_model=ReviewItemResponse)
async def resolve_review_item(
    item_id: int,
    request: ReviewResolveRequest,
    repository: SQLAlchemyRepository = Depends(get_repository),
):
    item = ReviewService(repository).resolve(
        item_id,
        request.player_id,
        source_player_id=request.source_player_id,
        note=request.note,
    )
    return ReviewItemResponse.model_validate(item)


@app.post("/api/review-queue/{item_id}/reject", response_model=ReviewItemResponse)
async def reject_review_item(
    item_id: int,
    request: ReviewRejectRequest,
    repository: SQLAlchemyRepository = Depends(get_repository),
):
    item = ReviewService(repository).reject(item_id, note=request.note)
    return ReviewItemResponse.model_validate(item)


# =============================================================================
# FIELD CONFLICTS
# =============================================================================

@app.get("/api/players/{player_id}/conflicts", response_model=List[FieldConflictResponse])
async def get_player_conflicts(
    player_id: int,
    include_resolved: bool = False,
    repository: SQLAlchemyRepository = Depends(get_repository),
):
    if repository.get_player(player_id) is None:
        raise NotFoundError("Player", str(player_id))
    conflicts = repository.list_field_conflicts(player_id, unresolved_only=not include_resolved)
    return [FieldConflictResponse.model_validate(c) for c in conflicts]


@app.post("/api/conflicts/{conflict_id}/resolve", response_model=FieldConflictResponse)
async def resolve_conflict(
    conflict_id: int,
    request: ConflictResolveRequest,
    repository: SQLAlchemyRepository = Depends(get_repository),
):
    """Write the accepted value to the player and retire the conflict."""
    conflict = FieldMerger(repository).resolve_conflict(conflict_id, request.value)
    return FieldConflictResponse.model_validate(conflict)


def run() -> None:
    """Serve the API with uvicorn on API_HOST:API_PORT."""
    uvicorn.run(
        "scoutbase.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
