"""
Rating Recompute Script
Rebuilds rolling stats, player ratings and competition strength.

Usage:
    python backend/scripts/recompute_ratings.py
    python backend/scripts/recompute_ratings.py --competition 39 --to-date 2025-05-31 --dry-run
"""
import sys
import os
import argparse
import logging
from datetime import date

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from scoutbase.database import SessionLocal  # noqa: E402
from scoutbase.exceptions import AppException  # noqa: E402
from scoutbase.services.rating_service import RatingService  # noqa: E402
from scoutbase.services.repository import SQLAlchemyRepository  # noqa: E402

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Recompute Scoutbase ratings")
    parser.add_argument("--competition", type=int, default=None, help="Competition id (default: all active)")
    parser.add_argument("--from-date", type=date.fromisoformat, default=None, help="Window start (YYYY-MM-DD)")
    parser.add_argument("--to-date", type=date.fromisoformat, default=None, help="Window end (YYYY-MM-DD)")
    parser.add_argument("--dry-run", action="store_true", help="Compute without writing")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        summary = RatingService(SQLAlchemyRepository(db)).recompute(
            competition_id=args.competition,
            from_date=args.from_date,
            to_date=args.to_date,
            dry_run=args.dry_run,
        )
    except AppException as e:
        logger.error(f"Recompute failed: {e.message}")
        return 1
    finally:
        db.close()

    for competition in summary.competitions:
        logger.info(
            f"Competition {competition.competition_id} ({competition.tier or 'untiered'}): "
            f"{competition.players_rated}/{competition.players_with_appearances} rated, "
            f"strength {competition.strength_score}"
        )
    logger.info(
        f"Done: {summary.rolling_stats_written} rolling rows, {summary.ratings_written} ratings"
        f"{' (dry run)' if summary.dry_run else ''}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
