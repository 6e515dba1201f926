"""
Workflow: Scheduled Booking Pull
================================
Pulls bookings for every hotel whose sync state is enabled and bootstrapped.
Runs once and exits; cron (or any external scheduler) decides the cadence.

USAGE:
    uv run python -m workflows.channel_scheduler

    # Keep a gzip copy of the run log
    uv run python -m workflows.channel_scheduler --log-dir logs/
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import asyncio
import argparse

from loguru import logger

from db.client import init_db, close_db
from services.channel.errors import ChannelSyncError
from services.channel.logging import capture_sync_logs
from services.channel.service import Service


async def run(log_dir: str = None) -> int:
    """Returns the number of hotels whose pull failed."""
    await init_db()
    try:
        with capture_sync_logs("scheduled_pull", local_backup_dir=log_dir):
            outcomes = await Service().run_scheduled_pulls()

            pulled = {h: r for h, r in outcomes.items() if r is not None and not isinstance(r, ChannelSyncError)}
            failed = {h: r for h, r in outcomes.items() if isinstance(r, ChannelSyncError)}
            skipped = [h for h, r in outcomes.items() if r is None]

            logger.info("=" * 50)
            logger.info("SCHEDULED PULL SUMMARY")
            logger.info("=" * 50)
            logger.info(f"Hotels: {len(outcomes)} enabled, {len(pulled)} pulled, {len(skipped)} skipped, {len(failed)} failed")
            for hotel_id, result in pulled.items():
                logger.info(
                    f"  {hotel_id}: {result.total_imported}/{result.total_found} imported, "
                    f"{len(result.errors)} error(s), credits left {result.credits_remaining}"
                )
            for hotel_id, error in failed.items():
                logger.error(f"  {hotel_id}: {error.code} {error.message}")
            return len(failed)
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(description="Pull bookings for every enabled hotel")
    parser.add_argument("--log-dir", default=None, help="Save a gzip copy of this run's log here")
    args = parser.parse_args()

    logger.remove()
    logger.add(sys.stderr, level="INFO", format="<level>{level: <8}</level> | {message}")

    failed = asyncio.run(run(log_dir=args.log_dir))
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
