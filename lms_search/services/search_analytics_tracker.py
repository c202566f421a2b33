"""
Search Analytics Tracker
Writes query logs and result clicks, and keeps realtime counters current
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..cache.manager import CacheManager
from ..database.models import SearchQueryLog, SearchResultClick
from ..models.search import ClickEvent, SearchRequest, SearchResponse

logger = logging.getLogger(__name__)


def click_relevance_score(position: int, total_results: int) -> float:
    """Higher for clicks near the top of large result sets"""
    position_score = max(0.0, 1 - (position - 1) / 10)
    coverage_bonus = min(0.2, total_results / 100)
    return round(position_score + coverage_bonus, 3)


class SearchAnalyticsTracker:
    """Tracks search queries and result clicks"""

    def __init__(self, db_session: Session, cache_manager: Optional[CacheManager] = None):
        self.db = db_session
        self.cache = cache_manager

    def log_search_query(self, request: SearchRequest, response: SearchResponse,
                         search_index_id: Optional[str] = None, had_error: bool = False) -> Optional[str]:
        """
        Write one query log row for an executed search

        Args:
            request: The search as requested
            response: What was returned (empty on a degraded search)
            search_index_id: Index the search ran against when there was only one
            had_error: Whether the backend failed

        Returns:
            ID of the query log, or None if it could not be written
        """
        max_score = max((item.score for item in response.results), default=0.0)
        try:
            query_log = SearchQueryLog(
                user_id=request.user_id,
                organization_id=request.organization_id,
                search_index_id=search_index_id,
                query_text=request.query,
                normalized_query=request.query.lower().strip(),
                filters=request.filters,
                facets={name: True for name in request.facets},
                sorting=[sort.model_dump() for sort in request.sorting],
                results_count=response.total,
                has_results=response.total > 0,
                execution_time_ms=response.took,
                had_error=had_error,
                result_metrics={
                    "total_hits": response.total,
                    "max_score": max_score,
                    "took_ms": response.took,
                },
                executed_at=datetime.utcnow(),
            )
            self.db.add(query_log)
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database error logging search query: {e}")
            self.db.rollback()
            return None

        self._update_realtime_counters(request, response, had_error)
        logger.debug(f"Logged search query {query_log.id}: '{request.query}', {response.total} results")
        return query_log.id

    def record_click(self, event: ClickEvent) -> Optional[SearchResultClick]:
        """
        Record a result click against its query log

        Clicks on unknown query logs are ignored. The log's click count is
        incremented in the same transaction.
        """
        query_log = self.db.query(SearchQueryLog).filter(SearchQueryLog.id == event.search_query_id).first()
        if query_log is None:
            logger.warning(f"Ignoring click for unknown search query {event.search_query_id}")
            return None

        try:
            click = SearchResultClick(
                search_query_id=query_log.id,
                result_id=event.result_id,
                result_type=event.result_type,
                result_title=event.result_title,
                position=event.position,
                relevance_score=click_relevance_score(event.position, event.total_results),
                time_spent_seconds=event.time_spent_seconds,
                converted=event.converted,
                clicked_at=event.clicked_at or datetime.utcnow(),
            )
            self.db.add(click)
            query_log.click_through_count = (query_log.click_through_count or 0) + 1
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database error recording click on {event.result_id}: {e}")
            self.db.rollback()
            raise

        if self.cache:
            self.cache.increment_counter(f"clicks:{query_log.organization_id}")
        return click

    def get_popular_queries(self, organization_id: str, limit: int = 10) -> List[str]:
        if not self.cache:
            return []
        return self.cache.get_popular_searches(organization_id, limit)

    def _update_realtime_counters(self, request: SearchRequest, response: SearchResponse, had_error: bool) -> None:
        if not self.cache:
            return
        organization_id = request.organization_id
        self.cache.increment_counter(f"searches:{organization_id}")
        if response.total == 0:
            self.cache.increment_counter(f"zero_results:{organization_id}")
        if had_error:
            self.cache.increment_counter(f"errors:{organization_id}")
        if request.query:
            self.cache.add_popular_search(organization_id, request.query.lower().strip())
