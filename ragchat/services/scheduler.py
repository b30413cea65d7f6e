from __future__ import annotations

import logging
import os
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from zoneinfo import ZoneInfo

from ragchat.services.lifecycle import LifecycleManager

log = logging.getLogger(__name__)

JOB_ID = "session-cleanup"


def cleanup_interval_minutes() -> float:
    try:
        return float(os.getenv("CLEANUP_INTERVAL_MINUTES", "30"))
    except ValueError:
        return 30.0


class CleanupScheduler:
    """Periodic trigger for idle-session reclamation.

    Arming is idempotent: the job id is fixed and re-arming replaces the
    existing job instead of adding a second one.
    """

    def __init__(self, lifecycle: LifecycleManager, scheduler: Optional[AsyncIOScheduler] = None):
        self.lifecycle = lifecycle
        self.scheduler = scheduler or AsyncIOScheduler(timezone=ZoneInfo("UTC"))
        self.interval_minutes: Optional[float] = None

    async def _run(self) -> None:
        log.info("scheduler: running periodic cleanup")
        try:
            report = await self.lifecycle.reclaim_idle_sessions()
            log.info("scheduler: periodic cleanup completed: %s", report.model_dump())
        except Exception as e:
            log.exception("scheduler: error during periodic cleanup: %s", e)

    def arm(self, interval_minutes: Optional[float] = None) -> Dict:
        minutes = interval_minutes or cleanup_interval_minutes()
        if not self.scheduler.running:
            self.scheduler.start()
        self.scheduler.add_job(
            self._run,
            "interval",
            minutes=minutes,
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.interval_minutes = minutes
        log.info("scheduler: periodic cleanup armed (every %s minutes)", minutes)
        return self.status()

    def status(self) -> Dict:
        job = self.scheduler.get_job(JOB_ID) if self.scheduler.running else None
        next_run = getattr(job, "next_run_time", None) if job else None
        return {
            "active": job is not None,
            "intervalMinutes": self.interval_minutes if job else None,
            "nextRunAt": next_run.isoformat() if next_run else None,
        }

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.interval_minutes = None
