"""Standalone reservation sweeper for StockKeeper.

Runs the expiry sweep outside the API process, e.g. when the API is scaled
out with ``STOCKKEEPER_SWEEPER_ENABLED=false`` on every worker.

Usage:
    python src/server.py                 # Sweep every sweep_interval_seconds
    python src/server.py --interval 15   # Sweep every 15 seconds
    python src/server.py --once          # Run a single sweep and exit
"""

import argparse
import asyncio

import structlog

from inventory.stock.expiry import expire_stale_reservations
from inventory.stock.sweeper import ReservationSweeper
from shared.database import setup_db
from shared.logging import configure_logging

logger = structlog.get_logger(__name__)


async def run(interval_seconds: float | None) -> None:
    sweeper = ReservationSweeper(interval_seconds=interval_seconds)
    try:
        await sweeper.run()
    finally:
        await sweeper.stop()


def main():
    parser = argparse.ArgumentParser(description="StockKeeper reservation sweeper")
    parser.add_argument(
        "--interval",
        type=float,
        help="Seconds between sweeps (default: sweep_interval_seconds setting)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep and exit",
    )
    args = parser.parse_args()

    configure_logging()
    setup_db()

    if args.once:
        expired = expire_stale_reservations()
        logger.info("Single sweep complete", expired=expired)
        return

    try:
        asyncio.run(run(args.interval))
    except KeyboardInterrupt:
        logger.info("Sweeper interrupted")


if __name__ == "__main__":
    main()
