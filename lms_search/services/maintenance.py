"""
Maintenance Service
Enqueues periodic syncs, analytics rollups and index optimization, and optimizes physical indices
"""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..jobs.queue import FULL_SYNC, GENERATE_DAILY_ANALYTICS, OPTIMIZE_INDICES, JobQueue
from ..search.backend import BackendError, SearchBackend
from ..search.registry import IndexRegistry

logger = logging.getLogger(__name__)


class MaintenanceService:
    """Periodic upkeep of indices and analytics"""

    def __init__(self, db_session: Session, backend: SearchBackend, queue: JobQueue):
        self.db = db_session
        self.backend = backend
        self.queue = queue
        self.registry = IndexRegistry(db_session, backend)

    def schedule_index_syncs(self) -> List[str]:
        """Enqueue a full sync for every active index that is not kept in sync in realtime"""
        job_ids = []
        for search_index in self.registry.list_indices(active_only=True):
            if search_index.is_realtime_sync:
                continue
            job_ids.append(self.queue.enqueue(FULL_SYNC, {"index_id": search_index.id}))
        logger.info(f"Scheduled {len(job_ids)} full syncs")
        return job_ids

    def schedule_daily_analytics(self, day: Optional[date] = None) -> List[str]:
        """Enqueue the rollup of a day (yesterday by default) for each organization"""
        day = day or (datetime.utcnow().date() - timedelta(days=1))
        job_ids = [
            self.queue.enqueue(GENERATE_DAILY_ANALYTICS, {"organization_id": organization_id, "date": day.isoformat()})
            for organization_id in self.registry.get_organization_ids()
        ]
        logger.info(f"Scheduled daily analytics for {day} across {len(job_ids)} organizations")
        return job_ids

    def schedule_index_optimization(self) -> List[str]:
        """Enqueue an optimize-indices job for each organization"""
        job_ids = [
            self.queue.enqueue(OPTIMIZE_INDICES, {"organization_id": organization_id})
            for organization_id in self.registry.get_organization_ids()
        ]
        logger.info(f"Scheduled index optimization across {len(job_ids)} organizations")
        return job_ids

    def optimize_indices(self, organization_id: Optional[str] = None) -> Dict[str, bool]:
        """
        Force merge and clear caches on active indices

        A failure on one index is logged and does not stop the others.

        Returns:
            Alias name mapped to whether its optimization succeeded
        """
        results = {}
        for search_index in self.registry.list_indices(organization_id, active_only=True):
            alias = search_index.alias_name
            try:
                self.backend.forcemerge(alias)
                self.backend.clear_cache(alias)
                results[alias] = True
            except BackendError as e:
                logger.error(f"Failed to optimize {alias}: {e}")
                results[alias] = False
        logger.info(f"Optimized {sum(results.values())}/{len(results)} indices")
        return results
