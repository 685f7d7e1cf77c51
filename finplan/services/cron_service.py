"""
APScheduler-based CronService for the daily recurring-transaction jobs.

Runs a materialization pass for the current UTC month once at startup and
then daily at CRON_HOUR:CRON_MINUTE (UTC). A due-date scan of upcoming
expenses runs daily at DUE_SCAN_HOUR:DUE_SCAN_MINUTE (UTC) and logs its
alerts. Jobs run on the application's event loop and go through the
engine's single-flight guard, so they never overlap a pass triggered by a
read request.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..core import config
from ..recurrence import RecurrenceEngine
from . import due_service

logger = logging.getLogger(__name__)


class CronService:
    """Background scheduler for recurring jobs."""

    def __init__(self, engine: RecurrenceEngine) -> None:
        self._engine = engine
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._daily_job_id = "materialize_daily"
        self._startup_job_id = "materialize_startup"
        self._due_scan_job_id = "due_scan_daily"

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        if self._scheduler is not None:
            logger.info("CronService already started; ignoring duplicate start.")
            return

        scheduler = AsyncIOScheduler(timezone=timezone.utc)

        # Immediate run on startup
        scheduler.add_job(
            self.run_materialize,
            id=self._startup_job_id,
            next_run_time=datetime.now(timezone.utc),
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=3600,
        )

        daily_trigger = CronTrigger(hour=config.CRON_HOUR, minute=config.CRON_MINUTE, timezone=timezone.utc)
        scheduler.add_job(
            self.run_materialize,
            id=self._daily_job_id,
            trigger=daily_trigger,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=3600,
        )

        due_trigger = CronTrigger(hour=config.DUE_SCAN_HOUR, minute=config.DUE_SCAN_MINUTE, timezone=timezone.utc)
        scheduler.add_job(
            self.run_due_scan,
            id=self._due_scan_job_id,
            trigger=due_trigger,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=3600,
        )

        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "CronService started: startup and daily (%02d:%02d UTC) materialization, due-date scan at %02d:%02d UTC.",
            config.CRON_HOUR,
            config.CRON_MINUTE,
            config.DUE_SCAN_HOUR,
            config.DUE_SCAN_MINUTE,
        )

    def stop(self) -> None:
        if self._scheduler is None:
            return
        try:
            self._scheduler.shutdown(wait=False)
            logger.info("CronService stopped.")
        finally:
            self._scheduler = None

    async def run_materialize(self) -> int:
        now = datetime.now(timezone.utc)
        inserted = await self._engine.materialize(now.year, now.month)
        logger.info("materialize executed for %02d/%d: inserted=%s", now.month, now.year, inserted)
        return inserted

    async def run_due_scan(self) -> int:
        alerts = await due_service.scan_due_soon(self._engine.collection, self._engine)
        for alert in alerts:
            logger.info("Due-date alert: %s", alert["message"])
        return len(alerts)
