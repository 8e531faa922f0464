"""
Background worker for the travel-mode auto-confirm sweep.

Usage:
    python -m coordination.worker

Polls every AUTO_CONFIRM_INTERVAL_SECONDS and confirms travel-mode
decisions whose deadline has passed. Run it as a separate process, or
call POST /internal/scheduled/auto-confirm from cron instead.
"""

import asyncio
import logging

from coordination.core.config import settings
from coordination.core.structured_logging import build_log_context
from coordination.db.session import SessionLocal
from coordination.services import auto_confirm_service

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def run_once() -> int:
    with SessionLocal() as db:
        return auto_confirm_service.run_sweep(db)


async def worker_loop() -> None:
    """Main worker loop - runs the sweep on a fixed cadence."""
    logger.info(
        f"Worker starting (poll interval: {settings.AUTO_CONFIRM_INTERVAL_SECONDS}s)"
    )

    while True:
        try:
            confirmed = run_once()
            if confirmed:
                logger.info(f"Auto-confirmed travel mode for {confirmed} rooms")
        except Exception as e:
            logger.error(f"Error in worker loop: {e}")

        await asyncio.sleep(settings.AUTO_CONFIRM_INTERVAL_SECONDS)


def main() -> None:
    """Entry point for the worker."""
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception(
            "Worker crashed",
            extra=build_log_context(route="worker", method="background"),
        )
        raise


if __name__ == "__main__":
    main()
