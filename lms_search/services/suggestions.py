"""
Suggestion service
Maintains stored query/topic suggestions used for autocomplete and trending lists
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from ..cache.manager import CacheManager
from ..database.models import SearchSuggestion
from ..models.search import SuggestionType

logger = logging.getLogger(__name__)

TOPIC_STOP_WORDS = {'the', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for'}


class SuggestionService:
    """Service for recording, ranking and pruning search suggestions"""

    def __init__(self, db_session: Session, cache_manager: Optional[CacheManager] = None):
        self.db = db_session
        self.cache = cache_manager

    def _find(self, organization_id: str, text: str, suggestion_type: SuggestionType) -> Optional[SearchSuggestion]:
        return self.db.query(SearchSuggestion).filter(
            SearchSuggestion.organization_id == organization_id,
            SearchSuggestion.suggestion_type == suggestion_type.value,
            SearchSuggestion.text == text,
        ).first()

    def record_query(self, organization_id: str, query: str, has_results: bool) -> Optional[SearchSuggestion]:
        """
        Count a query towards its suggestion and derive topic suggestions

        Args:
            organization_id: Organization the query ran in
            query: Raw query text
            has_results: Whether the query returned anything

        Returns:
            The query suggestion, or None for an empty query
        """
        text = (query or "").lower().strip()
        if not text:
            return None

        suggestion = self._find(organization_id, text, SuggestionType.QUERY)
        if suggestion is None:
            suggestion = SearchSuggestion(
                organization_id=organization_id,
                suggestion_type=SuggestionType.QUERY.value,
                text=text,
                display_text=query.strip(),
                popularity=0,
                click_through_rate=0.0,
                is_active=True,
                suggestion_metadata={},
            )
            self.db.add(suggestion)
        self._count_query(suggestion, has_results)

        self.derive_topics(organization_id, query)
        self.db.commit()

        if self.cache:
            self.cache.invalidate_suggestions(organization_id)
        return suggestion

    def derive_topics(self, organization_id: str, query: str) -> List[SearchSuggestion]:
        """Add a topic suggestion for each new keyword of the query (not committed)"""
        created = []
        seen = set()
        for keyword in query.lower().split():
            if len(keyword) <= 2 or keyword in TOPIC_STOP_WORDS or keyword in seen:
                continue
            seen.add(keyword)
            if self._find(organization_id, keyword, SuggestionType.TOPIC) is not None:
                continue

            topic = SearchSuggestion(
                organization_id=organization_id,
                suggestion_type=SuggestionType.TOPIC.value,
                text=keyword,
                display_text=keyword.capitalize(),
                popularity=1,
                click_through_rate=0.0,
                is_active=True,
                suggestion_metadata={"derived_from": query, "context": "auto-generated"},
            )
            self.db.add(topic)
            created.append(topic)
        return created

    @staticmethod
    def _count_query(suggestion: SearchSuggestion, has_results: bool) -> None:
        """Count one more query; CTR is the share of counted queries that returned results"""
        previous = suggestion.popularity or 0
        successful = round((suggestion.click_through_rate or 0.0) * previous)
        if has_results:
            successful += 1
        suggestion.popularity = previous + 1
        suggestion.click_through_rate = min(1.0, successful / suggestion.popularity)

    def matching(self, organization_id: str, text: str, limit: int = 10) -> List[SearchSuggestion]:
        """Active suggestions containing the text, promoted and popular first"""
        query = self.db.query(SearchSuggestion).filter(
            SearchSuggestion.organization_id == organization_id,
            SearchSuggestion.is_active.is_(True),
        )
        if text:
            query = query.filter(SearchSuggestion.text.contains(text.lower().strip()))
        return query.order_by(
            SearchSuggestion.is_promoted.desc(),
            SearchSuggestion.popularity.desc(),
        ).limit(limit * 2).all()

    def trending(self, organization_id: str, limit: int = 10) -> List[SearchSuggestion]:
        return self.db.query(SearchSuggestion).filter(
            SearchSuggestion.organization_id == organization_id,
            SearchSuggestion.is_active.is_(True),
            SearchSuggestion.suggestion_type == SuggestionType.QUERY.value,
        ).order_by(
            SearchSuggestion.is_promoted.desc(),
            SearchSuggestion.display_order.asc(),
            SearchSuggestion.popularity.desc(),
        ).limit(limit).all()

    def optimize(self, organization_id: str) -> int:
        """
        Prune and promote suggestions by performance

        Rarely used, rarely successful suggestions are deactivated; very popular,
        very successful ones are promoted; anything above 0.5 CTR is tagged high
        performance. Returns the number of suggestions changed.
        """
        suggestions = self.db.query(SearchSuggestion).filter(
            SearchSuggestion.organization_id == organization_id
        ).all()

        optimized = 0
        for suggestion in suggestions:
            popularity = suggestion.popularity or 0
            ctr = suggestion.click_through_rate or 0.0
            updated = False

            if popularity < 3 and ctr < 0.1 and suggestion.is_active:
                suggestion.is_active = False
                updated = True

            if popularity > 50 and ctr > 0.7:
                suggestion.is_promoted = True
                suggestion.display_order = 1
                updated = True

            if ctr > 0.5:
                metadata = dict(suggestion.suggestion_metadata or {})
                metadata.update({"performance": "high", "last_optimized": datetime.utcnow().isoformat()})
                suggestion.suggestion_metadata = metadata
                updated = True

            if updated:
                optimized += 1

        self.db.commit()
        if self.cache:
            self.cache.invalidate_suggestions(organization_id)

        logger.info(f"Optimized {optimized} suggestions for {organization_id}")
        return optimized
