"""
Analytics job handlers
Query and click processing, daily rollups, profile learning and suggestion upkeep
"""

import logging
from contextlib import contextmanager
from datetime import date
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..cache.manager import CacheManager
from ..database.models import SearchQueryLog
from ..models.analytics import Timeframe
from ..models.personalization import LearningActivity
from ..models.search import ClickEvent
from ..services.analytics import AnalyticsAggregator
from ..services.personalization import PersonalizationService
from ..services.search_analytics_tracker import SearchAnalyticsTracker
from ..services.suggestions import SuggestionService
from .queue import (
    GENERATE_DAILY_ANALYTICS, GENERATE_SEARCH_INSIGHTS, OPTIMIZE_SUGGESTIONS, PROCESS_RESULT_CLICK,
    PROCESS_SEARCH_QUERY, UPDATE_PERSONALIZATION, Job, JobHandler, JobQueue
)

logger = logging.getLogger(__name__)


class AnalyticsJobHandler:
    """Runs analytics jobs, each in its own database session"""

    def __init__(self, session_factory: Callable[[], Session], cache_manager: CacheManager, queue: JobQueue):
        self.session_factory = session_factory
        self.cache = cache_manager
        self.queue = queue

    def handlers(self) -> Dict[str, JobHandler]:
        return {
            PROCESS_SEARCH_QUERY: self.process_search_query,
            PROCESS_RESULT_CLICK: self.process_result_click,
            GENERATE_DAILY_ANALYTICS: self.generate_daily_analytics,
            UPDATE_PERSONALIZATION: self.update_personalization,
            GENERATE_SEARCH_INSIGHTS: self.generate_search_insights,
            OPTIMIZE_SUGGESTIONS: self.optimize_suggestions,
        }

    @contextmanager
    def _session(self):
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def process_search_query(self, job: Job) -> Optional[str]:
        """Classify the query and learn from it"""
        query_id = job.payload["query_id"]
        with self._session() as db:
            query_log = db.query(SearchQueryLog).filter(SearchQueryLog.id == query_id).first()
            if query_log is None:
                logger.warning(f"Search query {query_id} not found, skipping")
                return None

            intent = AnalyticsAggregator(db, self.cache).classify_and_store_intent(query_log)
            self.queue.report_progress(job.id, 40)
            PersonalizationService(db, self.cache).update_from_query(query_log)
            self.queue.report_progress(job.id, 80)
            return intent

    def process_result_click(self, job: Job) -> Optional[str]:
        event = ClickEvent(**job.payload)
        with self._session() as db:
            click = SearchAnalyticsTracker(db, self.cache).record_click(event)
            if click is None:
                return None

            user_id = click.search_query.user_id
            if user_id:
                PersonalizationService(db, self.cache).update_from_click(user_id, click)
            return click.id

    def generate_daily_analytics(self, job: Job) -> Dict[str, Any]:
        payload = job.payload
        day = date.fromisoformat(payload["date"])
        with self._session() as db:
            analytics = AnalyticsAggregator(db, self.cache).generate_daily_analytics(payload["organization_id"], day)
            return {
                "id": analytics.id,
                "date": day.isoformat(),
                "total_queries": analytics.total_queries,
            }

    def update_personalization(self, job: Job) -> float:
        activity = LearningActivity(**job.payload)
        with self._session() as db:
            profile = PersonalizationService(db, self.cache).update_from_activity(activity)
            return profile.profile_completeness

    def generate_search_insights(self, job: Job) -> Dict[str, Any]:
        payload = job.payload
        with self._session() as db:
            insights = AnalyticsAggregator(db, self.cache).generate_insights(
                payload["organization_id"], Timeframe(payload.get("timeframe", Timeframe.MONTH.value)),
            )
            return insights.model_dump(mode="json")

    def optimize_suggestions(self, job: Job) -> int:
        with self._session() as db:
            return SuggestionService(db, self.cache).optimize(job.payload["organization_id"])
