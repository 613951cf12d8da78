"""
Periodic follow-up sweep
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from crm_core.core.config import settings

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "followup_sweep"


class FollowUpScheduler:
    """Runs FollowUpService.run_scheduled_sweep on a cron schedule"""

    def __init__(self, followup, cron: str = None):
        self.followup = followup
        self.cron = cron or settings.FOLLOWUP_SWEEP_CRON
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self._started = False

    def start(self):
        if self._started:
            return

        self.scheduler.add_job(
            self.followup.run_scheduled_sweep,
            CronTrigger.from_crontab(self.cron, timezone="UTC"),
            id=SWEEP_JOB_ID,
            name="Send pending follow-ups",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self._started = True
        logger.info(f"Follow-up scheduler started ({self.cron})")

    def shutdown(self):
        if self._started:
            self.scheduler.shutdown(wait=False)
            self._started = False
            logger.info("Follow-up scheduler stopped")

    @property
    def running(self) -> bool:
        return self._started
