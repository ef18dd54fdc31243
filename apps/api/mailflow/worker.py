"""
Background worker for the automation queue.

Usage:
    python -m mailflow.worker

Runs one queue pass every WORKER_POLL_INTERVAL_SECONDS. Stateless: several
copies may run at once (items are claimed with a compare-and-swap update).
Use this or the /internal/scheduled cron endpoint, not necessarily both.
"""

import asyncio
import logging

from mailflow.core.config import settings
from mailflow.core.error_tracking import init_error_tracking, report_exception
from mailflow.core.security import Principal
from mailflow.db.session import SessionLocal
from mailflow.services.automation_service import build_automation_service

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = settings.WORKER_POLL_INTERVAL_SECONDS
BATCH_SIZE = settings.QUEUE_BATCH_SIZE


async def run_once(limit: int = BATCH_SIZE) -> dict | None:
    """One queue pass in a fresh session. Returns counts, or None on failure."""
    with SessionLocal() as db:
        service = build_automation_service(db)
        result = await service.process_queue(Principal.system(), limit=limit)
    if not result.ok:
        logger.error("Queue pass failed: %s", result.error.message)
        return None
    return result.data.model_dump(exclude_none=True)


async def worker_loop() -> None:
    logger.info(
        "Automation worker started (interval=%ss, batch=%s)",
        POLL_INTERVAL_SECONDS,
        BATCH_SIZE,
    )
    if not settings.EMAIL_DELIVERY_URL:
        logger.warning("EMAIL_DELIVERY_URL not set - emails will be logged, not sent [DRY RUN]")

    while True:
        try:
            counts = await run_once()
        except Exception as exc:
            # Keep polling; the next pass starts with a fresh session
            logger.exception("Queue pass crashed")
            report_exception(exc, {"operation": "worker_pass"})
            counts = None
        if counts and (counts["processed"] or counts["failed"]):
            logger.info("Processed %(processed)s, failed %(failed)s", counts)
        await asyncio.sleep(POLL_INTERVAL_SECONDS)


def main() -> None:
    init_error_tracking("worker")
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Automation worker stopped")


if __name__ == "__main__":
    main()
