"""APScheduler setup for the recurring poll cycle."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

if TYPE_CHECKING:
    from radar.agent.cycle import PollCycle

logger = logging.getLogger(__name__)

POLL_JOB_ID = "poll-cycle"


def create_poll_scheduler(cycle: PollCycle, interval_seconds: int) -> AsyncIOScheduler:
    """Return an AsyncIOScheduler that runs ``cycle.run`` every ``interval_seconds``.

    ``max_instances=1`` keeps cycles from overlapping: a tick that fires while a
    cycle is still running is skipped, and ``coalesce`` folds missed ticks into
    one. The first cycle starts immediately.

    The caller is responsible for calling scheduler.start() and scheduler.shutdown().
    """
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        cycle.run,
        "interval",
        seconds=interval_seconds,
        id=POLL_JOB_ID,
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(),
    )
    logger.info("Poll cycle scheduled every %ds", interval_seconds)
    return scheduler
