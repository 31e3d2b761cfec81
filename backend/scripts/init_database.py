"""
Database Initialization Script
Creates the Scoutbase tables and seeds the default rating profiles.

Usage:
    python backend/scripts/init_database.py [--force-profiles]
"""
import sys
import os
import argparse
import logging
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from scoutbase.database import DATABASE_URL, SessionLocal, engine, init_db  # noqa: E402
from scoutbase.exceptions import DatabaseError  # noqa: E402
from scoutbase.services.rating_service import RatingService  # noqa: E402
from scoutbase.services.repository import SQLAlchemyRepository  # noqa: E402

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def create_tables() -> bool:
    try:
        logger.info("Connecting to database...")
        logger.info(
            f"Database URL: {DATABASE_URL.split('@')[1] if '@' in DATABASE_URL else 'hidden'}"
        )
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        init_db()
        logger.info("✓ Tables created")
        return True
    except OperationalError as e:
        logger.error(f"✗ Database connection error: {e}")
        logger.error("Make sure the database is running and accessible")
        return False
    except SQLAlchemyError as e:
        logger.error(f"✗ SQL error: {e}")
        return False


def seed_profiles(force: bool) -> bool:
    db = SessionLocal()
    try:
        written = RatingService(SQLAlchemyRepository(db)).seed_rating_profiles(force=force)
        logger.info(f"✓ Rating profiles seeded ({written} written)")
        return True
    except DatabaseError as e:
        logger.error(f"✗ Failed to seed rating profiles: {e.message}")
        return False
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Initialize the Scoutbase database")
    parser.add_argument(
        "--force-profiles",
        action="store_true",
        help="Overwrite rating profiles that already exist",
    )
    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("Database Initialization Script")
    logger.info("=" * 60)

    if not create_tables() or not seed_profiles(args.force_profiles):
        logger.error("=" * 60)
        logger.error("✗ Database initialization failed")
        logger.error("=" * 60)
        return 1

    logger.info("=" * 60)
    logger.info("✓ Database initialization completed successfully!")
    logger.info("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
