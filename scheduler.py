import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from services import NotificationService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"reminder_run: source={source}")
        try:
            with session_scope() as session:
                count = NotificationService(session).generate_reminders()
        except Exception:
            logger.exception(f"reminder_run_failed: source={source}")
            return
        logger.info(f"reminder_run: source={source} reminders_created={count}")

    def start(self) -> None:
        self._run_job("startup")

        self.scheduler.add_job(
            self._run_job,
            CronTrigger(hour=7, minute=0),
            args=["daily_07:00"],
            id="reminders_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.add_job(
            self._run_job,
            IntervalTrigger(hours=6),
            args=["interval_safety_net"],
            id="reminders_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 07:00 and 6-hourly safety net")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
