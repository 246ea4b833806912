"""Run each sync job once, e.g. from a cron or right after a deploy."""

import asyncio
import logging

from rentals_api.core.logging import setup_logging
from rentals_api.services.rentals import RentalsComponent

setup_logging()
logger = logging.getLogger(__name__)


async def main():
    rentals = RentalsComponent()
    try:
        results = {
            "metadata": await rentals.sync_metadata(),
            "rentals": await rentals.sync_rentals(),
            "indexes": await rentals.cancel_stale_rentals(),
        }
    finally:
        await rentals.close()

    for job, ok in results.items():
        logger.info("%-10s %s", job, "ok" if ok else "FAILED (see log above)")
    return all(results.values())


if __name__ == "__main__":
    raise SystemExit(0 if asyncio.run(main()) else 1)
