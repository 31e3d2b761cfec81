"""
Pytest configuration and fixtures for Scoutbase.

This module provides:
- Function-scoped in-memory SQLite engine and session (fresh tables per test)
- Repository and entity factory fixtures
- Async client fixture for FastAPI endpoint testing
"""

import os

# Set test mode before importing scoutbase modules
os.environ["MODE"] = "TEST"
os.environ.setdefault("TEST_DATABASE_URL", "sqlite://")

from datetime import date
from typing import AsyncGenerator, Generator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session, sessionmaker

import scoutbase.models  # noqa: F401
from scoutbase.core.config import settings
from scoutbase.database import Base, build_engine
from scoutbase.models import Competition, Team
from scoutbase.services.name_normalizer import normalize_team_name
from scoutbase.services.repository import SQLAlchemyRepository


# ============================================================================
# Database Setup/Teardown
# ============================================================================


@pytest.fixture
def db_engine():
    """
    In-memory SQLite engine with all tables created.

    Yields:
        SQLAlchemy engine, disposed after the test.
    """
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Generator[Session, None, None]:
    session = sessionmaker(bind=db_engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def repository(db_session: Session) -> SQLAlchemyRepository:
    return SQLAlchemyRepository(db_session)


# ============================================================================
# Factories
# ============================================================================


@pytest.fixture
def make_competition(db_session: Session):
    def factory(name: str = "Premier League", tier: str = "Platinum", is_active: bool = True) -> Competition:
        competition = Competition(name=name, country="England", season="2024", tier=tier, is_active=is_active)
        db_session.add(competition)
        db_session.commit()
        db_session.refresh(competition)
        return competition

    return factory


@pytest.fixture
def make_team(db_session: Session):
    def factory(name: str, competition_id=None) -> Team:
        team = Team(name=name, name_normalized=normalize_team_name(name), competition_id=competition_id)
        db_session.add(team)
        db_session.commit()
        db_session.refresh(team)
        return team

    return factory


@pytest.fixture
def make_player(repository: SQLAlchemyRepository):
    def factory(name: str, source: str = "api_football", **fields):
        return repository.create_player({"name": name, **fields}, source=source)

    return factory


@pytest.fixture
def make_appearances(repository: SQLAlchemyRepository):
    """Store `count` weekly appearances for a player, newest on `end`."""

    def factory(player_id: int, competition_id: int, count: int, end: date, minutes: int = 90, **stats):
        stored = []
        for index in range(count):
            match_date = date.fromordinal(end.toordinal() - 7 * index)
            stored.append(
                repository.upsert_appearance(
                    player_id,
                    f"m{competition_id}-{player_id}-{index}",
                    competition_id,
                    match_date,
                    minutes,
                    dict(stats),
                )
            )
        return stored

    return factory


# ============================================================================
# FastAPI Test Client
# ============================================================================


@pytest.fixture
async def async_client(db_session: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide an async HTTP client for testing FastAPI endpoints.

    The app's get_db dependency is overridden with the test session.

    Yields:
        httpx.AsyncClient configured for the FastAPI app.
    """
    from scoutbase.main import app
    from scoutbase.database import get_db

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def test_settings():
    return settings
