import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from services import refresh_all_budgets


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# (job id, trigger, source label, misfire grace seconds)
REFRESH_JOBS = (
    # Period windows roll over at local midnight.
    ("budget_refresh_daily", CronTrigger(hour=0, minute=5), "daily_00:05", 3600),
    ("budget_refresh_hourly", IntervalTrigger(hours=1), "hourly_safety_net", 300),
)


class SchedulerManager:
    """Keeps every budget's cached current-period figures fresh."""

    def __init__(self) -> None:
        settings = get_settings()
        self.enabled = settings.scheduler_enabled
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def refresh_budgets(self, source: str = "manual") -> int:
        try:
            with session_scope() as session:
                count = refresh_all_budgets(session)
        except Exception:
            logger.exception(f"budget_refresh_failed: source={source}")
            return 0
        logger.info(f"budget_refresh_run: source={source} budgets_refreshed={count}")
        return count

    def start(self) -> None:
        if not self.enabled:
            logger.info("Scheduler disabled by configuration")
            return

        self.refresh_budgets("startup")
        for job_id, trigger, source, grace in REFRESH_JOBS:
            self.scheduler.add_job(
                self.refresh_budgets,
                trigger,
                args=[source],
                id=job_id,
                replace_existing=True,
                misfire_grace_time=grace,
            )
        self.scheduler.start()
        logger.info(f"Scheduler started: jobs={[job[0] for job in REFRESH_JOBS]}")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
