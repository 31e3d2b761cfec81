"""
Enrichment Runner
Runs one budgeted enrichment batch per source. Meant to be invoked by an
external scheduler (cron, systemd timer).

Usage:
    python backend/scripts/run_enrichment.py --source fotmob --max-requests 100 --batch-size 20
    python backend/scripts/run_enrichment.py            # every configured source
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
from scoutbase.exceptions import FatalOrchestrationError  # noqa: E402
from scoutbase.services.enrichment import PROVIDER_BUILDERS, enrich_all_sources  # noqa: E402
from scoutbase.services.repository import SQLAlchemyRepository  # noqa: E402

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def run(sources, max_requests, batch_size) -> int:
    db = SessionLocal()
    try:
        runs = await enrich_all_sources(
            SQLAlchemyRepository(db),
            sources=sources,
            max_requests=max_requests,
            batch_size=batch_size,
        )
    except FatalOrchestrationError as e:
        logger.error(f"Enrichment aborted: {e.message}")
        return 1
    finally:
        db.close()

    failed = 0
    for run_record in runs:
        summary = run_record.summary or {}
        logger.info(
            f"[{run_record.source}] {run_record.status}: "
            f"{summary.get('players_processed', 0)} processed, "
            f"{summary.get('profiles_merged', 0)} merged, "
            f"{summary.get('added_to_review_queue', 0)} queued for review, "
            f"{summary.get('errors', 0)} errors, "
            f"{run_record.requests_used}/{run_record.max_requests} requests"
            f"{' (budget exhausted)' if run_record.budget_exhausted else ''}"
        )
        if run_record.status == "failed":
            logger.error(f"[{run_record.source}] {run_record.error_message}")
            failed += 1
    return 1 if failed else 0


def main():
    parser = argparse.ArgumentParser(description="Run Scoutbase enrichment")
    parser.add_argument(
        "--source",
        action="append",
        choices=sorted(PROVIDER_BUILDERS),
        help="Source to enrich from (repeatable; default: ENRICHMENT_SOURCES)",
    )
    parser.add_argument(
        "--max-requests",
        type=int,
        default=settings.ENRICHMENT_DEFAULT_BUDGET,
        help="Request budget per source",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.ENRICHMENT_DEFAULT_BATCH_SIZE,
        help="Players selected per run",
    )
    args = parser.parse_args()

    return asyncio.run(run(args.source, args.max_requests, args.batch_size))


if __name__ == "__main__":
    sys.exit(main())
