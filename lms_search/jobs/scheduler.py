"""
Periodic job scheduling
Hourly full syncs, the nightly analytics rollup and nightly index optimization
"""

import logging
from typing import Any, Callable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from ..search.backend import SearchBackend
from ..search.config import SearchConfig
from ..services.maintenance import MaintenanceService
from .queue import JobQueue

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """Enqueues maintenance jobs on cron cadences; the workers do the actual work"""

    def __init__(self, session_factory: Callable[[], Session], backend: SearchBackend, queue: JobQueue,
                 scheduler: Optional[BackgroundScheduler] = None):
        self.session_factory = session_factory
        self.backend = backend
        self.queue = queue
        self.scheduler = scheduler or BackgroundScheduler(timezone=SearchConfig.SCHEDULE_TIMEZONE)

    def _run(self, task: Callable[[MaintenanceService], Any]) -> Any:
        db = self.session_factory()
        try:
            return task(MaintenanceService(db, self.backend, self.queue))
        finally:
            db.close()

    def sync_indices(self) -> List[str]:
        return self._run(lambda maintenance: maintenance.schedule_index_syncs())

    def roll_up_analytics(self) -> List[str]:
        return self._run(lambda maintenance: maintenance.schedule_daily_analytics())

    def optimize_indices(self) -> List[str]:
        return self._run(lambda maintenance: maintenance.schedule_index_optimization())

    def register(self) -> BackgroundScheduler:
        """Add the three maintenance cadences to the scheduler"""
        self.scheduler.add_job(
            self.sync_indices,
            CronTrigger(minute=SearchConfig.FULL_SYNC_MINUTE),
            id="full-sync",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.roll_up_analytics,
            CronTrigger(hour=SearchConfig.DAILY_ANALYTICS_HOUR, minute=0),
            id="daily-analytics",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.optimize_indices,
            CronTrigger(hour=SearchConfig.INDEX_OPTIMIZATION_HOUR, minute=0),
            id="optimize-indices",
            replace_existing=True,
        )
        return self.scheduler

    def start(self) -> None:
        self.register()
        self.scheduler.start()
        logger.info(f"Maintenance scheduler started with {len(self.scheduler.get_jobs())} jobs")

    def shutdown(self) -> None:
        self.scheduler.shutdown(wait=False)
        logger.info("Maintenance scheduler stopped")
