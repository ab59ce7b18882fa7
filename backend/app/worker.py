"""Scheduler process: ``python -m backend.app.worker``."""

from __future__ import annotations

import asyncio
import logging

from backend.app.core.logging import setup_logging
from backend.app.db.session import init_db
from backend.app.services.scheduler import JobDispatcher

logger = logging.getLogger(__name__)


async def main() -> None:
    setup_logging()
    init_db()
    dispatcher = JobDispatcher()
    scheduler = dispatcher.build_scheduler()
    scheduler.start()
    logger.info("worker started")
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        await dispatcher.aclose()
        logger.info("worker stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
