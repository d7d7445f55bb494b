import logging
from contextlib import AbstractContextManager
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from recurrence import RecurringEngine, local_today

logger = logging.getLogger(__name__)

ScopeFactory = Callable[[], AbstractContextManager[Session]]


class SchedulerManager:
    """Posts due recurring transactions in the background.

    A nightly run at 03:15 local time does the real work; the hourly run only
    catches occurrences missed while the process was down.
    """

    def __init__(self, scope: Optional[ScopeFactory] = None) -> None:
        settings = get_settings()
        self.scope = scope or session_scope
        self.catch_up_on_start = settings.recurring_catch_up
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def run_now(self, source: str = "manual") -> int:
        today = local_today()
        with self.scope() as session:
            posted = RecurringEngine(session).post_due_transactions(today=today)
        logger.info(f"scheduler_run: source={source} today={today} posted={posted}")
        return posted

    def _job(self, source: str) -> None:
        try:
            self.run_now(source)
        except Exception:
            logger.exception(f"scheduler_run_failed: source={source}")

    def start(self) -> None:
        if self.catch_up_on_start:
            self._job("startup")

        jobs = (
            ("recurring_nightly", CronTrigger(hour=3, minute=15), 3600),
            ("recurring_hourly", IntervalTrigger(hours=1), 300),
        )
        for job_id, trigger, grace in jobs:
            self.scheduler.add_job(
                self._job,
                trigger,
                args=[job_id],
                id=job_id,
                replace_existing=True,
                coalesce=True,
                misfire_grace_time=grace,
            )

        self.scheduler.start()
        logger.info(f"scheduler_started: jobs={','.join(job_id for job_id, _, _ in jobs)}")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("scheduler_stopped")
