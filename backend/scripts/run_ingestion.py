"""
Ingestion Runner
Pulls competitions, teams and squads (countries) or recent finished
fixtures (fixtures) from API-Football. Meant to be invoked by an
external scheduler, countries first, then fixtures.

Usage:
    python backend/scripts/run_ingestion.py countries --country England --max-requests 50
    python backend/scripts/run_ingestion.py fixtures --from 2024-03-01 --to 2024-03-03
"""
import sys
import os
import asyncio
import argparse
import logging

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from scoutbase.core.config import settings  # noqa: E402
from scoutbase.database import SessionLocal  # noqa: E402
from scoutbase.exceptions import AppException  # noqa: E402
from scoutbase.services.league_ingestion import ingest_countries, ingest_recent_fixtures  # noqa: E402
from scoutbase.services.repository import SQLAlchemyRepository  # noqa: E402

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def run(args) -> int:
    db = SessionLocal()
    try:
        repository = SQLAlchemyRepository(db)
        if args.kind == "countries":
            run_record = await ingest_countries(
                repository, countries=args.country, max_requests=args.max_requests
            )
        else:
            run_record = await ingest_recent_fixtures(
                repository,
                date_from=args.date_from,
                date_to=args.date_to,
                countries=args.country,
                max_requests=args.max_requests,
            )
    except AppException as e:
        logger.error(f"✗ Ingestion aborted: {e.message}")
        return 1
    finally:
        db.close()

    summary = run_record.summary or {}
    logger.info("=" * 60)
    logger.info(f"{run_record.kind} ingestion {run_record.status}")
    logger.info("=" * 60)
    logger.info(
        f"{summary.get('competitions_processed', 0)} competitions, "
        f"{summary.get('teams_processed', 0)} teams, "
        f"{summary.get('players_processed', 0)} players "
        f"({summary.get('players_created', 0)} new, {summary.get('added_to_review_queue', 0)} queued), "
        f"{summary.get('appearances_processed', 0)} appearances, "
        f"{summary.get('errors', 0)} errors, "
        f"{run_record.requests_used}/{run_record.max_requests} requests"
        f"{' (budget exhausted)' if run_record.budget_exhausted else ''}"
    )
    if run_record.status == "failed":
        logger.error(f"✗ {run_record.error_message}")
        return 1
    return 0


def main():
    parser = argparse.ArgumentParser(description="Run Scoutbase primary ingestion")
    parser.add_argument("kind", choices=["countries", "fixtures"], help="What to ingest")
    parser.add_argument(
        "--country",
        action="append",
        help="Country to ingest (repeatable; default: INGESTION_COUNTRIES)",
    )
    parser.add_argument("--max-requests", type=int, default=None, help="Request budget for the run")
    parser.add_argument("--from", dest="date_from", help="First match date, YYYY-MM-DD (fixtures)")
    parser.add_argument("--to", dest="date_to", help="Last match date, YYYY-MM-DD (fixtures)")
    args = parser.parse_args()

    if args.kind == "countries" and not (args.country or settings.ingestion_countries):
        parser.error("no countries given and INGESTION_COUNTRIES is empty")

    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
