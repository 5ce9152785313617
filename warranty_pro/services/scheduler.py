import asyncio
import logging
import os

from ..db import SessionLocal
from .audit import log_action
from .expiry import run_expiry_check

logger = logging.getLogger(__name__)

CRON_SECRET = os.getenv("CRON_SECRET", "dev-secret")


def run_daily_check() -> int:
    with SessionLocal() as db:
        return run_expiry_check(db)


async def expiry_check_loop(interval_minutes: int = 1440):
    while True:
        try:
            # the check does blocking DB and HTTP work
            await asyncio.to_thread(run_daily_check)
        except Exception as exc:
            logger.exception("scheduled expiry check failed", exc_info=exc)
            log_action("scheduler_error", str(exc))
        await asyncio.sleep(interval_minutes * 60)


def start_scheduler(interval_minutes: int) -> None:
    loop = asyncio.get_event_loop()
    loop.create_task(expiry_check_loop(interval_minutes))
    logger.info("expiry check loop started every %s minutes", interval_minutes)
