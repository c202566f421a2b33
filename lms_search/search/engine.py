"""
Search Engine
Read path: resolves indices, builds and personalizes the query, executes it and
formats results, then logs the query and hands follow-up work to the job queue
"""

import logging
from typing import Any, Dict, List, Optional

import redis
from sqlalchemy.orm import Session

from ..cache.manager import CacheManager
from ..database.models import SearchIndex
from ..jobs.queue import PROCESS_RESULT_CLICK, PROCESS_SEARCH_QUERY, UPDATE_SUGGESTIONS, JobQueue
from ..models.search import (
    AutocompleteSuggestion, ClickEvent, PersonalizationInfo, ResultType,
    SearchIndexType, SearchRequest, SearchResponse, SearchResultItem
)
from ..services.personalization import PersonalizationService
from ..services.search_analytics_tracker import SearchAnalyticsTracker
from ..services.suggestions import SuggestionService
from .backend import BackendError, BackendHit, SearchBackend
from .config import SearchConfig
from .personalization import PersonalizationEngine
from .query_builder import QueryBuilder
from .registry import IndexNotFoundError, IndexRegistry

logger = logging.getLogger(__name__)

RESULT_TYPES = {
    SearchIndexType.COURSES.value: ResultType.COURSE,
    SearchIndexType.CONTENT.value: ResultType.LESSON,
    SearchIndexType.USERS.value: ResultType.USER,
    SearchIndexType.ASSESSMENTS.value: ResultType.ASSESSMENT,
    SearchIndexType.FORUMS.value: ResultType.FORUM_POST,
    SearchIndexType.VIDEOS.value: ResultType.VIDEO,
    SearchIndexType.DOCUMENTS.value: ResultType.DOCUMENT,
}

METADATA_EXCLUDED = {"id", "title", "description", "content", "suggest"}


def result_url(result_type: str, source: Dict[str, Any], doc_id: str) -> str:
    """Frontend path for a search result"""
    if result_type == ResultType.COURSE.value:
        return f"/courses/{doc_id}"
    if result_type == ResultType.LESSON.value and source.get("course_id"):
        return f"/courses/{source['course_id']}/lessons/{doc_id}"
    if result_type == ResultType.VIDEO.value:
        return f"/videos/{doc_id}"
    if result_type == ResultType.DOCUMENT.value:
        return f"/documents/{doc_id}"
    if result_type == ResultType.USER.value:
        return f"/users/{doc_id}"
    return f"/search/result/{doc_id}"


class SearchEngine:
    """
    Executes searches against the active indices of an organization

    A backend outage degrades to an empty response instead of an error. Query
    logging and job enqueueing never fail a search that already has results.
    """

    def __init__(self, db_session: Session, backend: SearchBackend, cache_manager: CacheManager,
                 queue: Optional[JobQueue] = None,
                 personalization_service: Optional[PersonalizationService] = None):
        self.db = db_session
        self.backend = backend
        self.cache = cache_manager
        self.queue = queue
        self.registry = IndexRegistry(db_session, backend)
        self.query_builder = QueryBuilder()
        self.personalization = PersonalizationEngine(
            personalization_service or PersonalizationService(db_session, cache_manager)
        )
        self.tracker = SearchAnalyticsTracker(db_session, cache_manager)
        self.suggestions = SuggestionService(db_session, cache_manager)

    def search(self, request: SearchRequest) -> SearchResponse:
        """
        Run a search request

        Raises:
            IndexNotFoundError: the organization has no active index of the requested types
        """
        index_types = [index_type.value for index_type in request.indices] if request.indices else None
        indices = self.registry.get_active_indices(request.organization_id, index_types)
        if not indices:
            raise IndexNotFoundError(f"No active search indices for organization {request.organization_id}")

        body = self.query_builder.build(request)

        personalization_info = None
        if request.personalized and request.user_id:
            outcome = self.personalization.personalize(body["query"], request.user_id)
            body["query"] = outcome.query
            personalization_info = PersonalizationInfo(
                applied=outcome.applied,
                boosts_applied=outcome.boosts_applied,
                hidden_excluded=outcome.hidden_excluded,
                error=outcome.error,
            )

        pagination = request.pagination
        had_error = False
        try:
            result = self.backend.search([index.alias_name for index in indices], body)
        except BackendError as e:
            logger.error(f"Search backend failed for '{request.query}' in {request.organization_id}: {e}")
            had_error = True
            response = SearchResponse(
                query=request.query,
                pagination=self.query_builder.page_info(pagination.from_, pagination.size, 0),
                personalization=personalization_info,
            )
        else:
            type_by_index = self._index_types(indices)
            response = SearchResponse(
                query=request.query,
                total=result.total,
                took=result.took,
                results=[self._format_hit(hit, type_by_index) for hit in result.hits],
                pagination=self.query_builder.page_info(pagination.from_, pagination.size, result.total),
                personalization=personalization_info,
            )
            if request.facets:
                response.aggregations = result.aggregations or {}
                response.filters = self.query_builder.format_facets(result.aggregations)

        if request.suggestions and request.query:
            response.suggestions = [
                suggestion.text for suggestion in self.autocomplete(request.query, request.organization_id)
            ]

        search_index_id = indices[0].id if len(indices) == 1 else None
        response.query_id = self.tracker.log_search_query(request, response, search_index_id, had_error)
        self._enqueue_follow_ups(request, response)

        logger.info(
            f"Search '{request.query}' in {request.organization_id}: "
            f"{response.total} results in {response.took}ms"
        )
        return response

    def autocomplete(self, query: str, organization_id: str,
                     limit: int = SearchConfig.AUTOCOMPLETE_LIMIT) -> List[AutocompleteSuggestion]:
        """Stored suggestions merged with backend completions, deduplicated by text"""
        prefix = (query or "").strip()
        if not prefix:
            return []

        cached = self.cache.get_cached_suggestions(organization_id, prefix) if self.cache else None
        if cached is not None:
            return [AutocompleteSuggestion(**item) for item in cached][:limit]

        merged: List[AutocompleteSuggestion] = []
        seen = set()

        def add(suggestion: AutocompleteSuggestion) -> None:
            key = suggestion.text.lower().strip()
            if key and key not in seen:
                seen.add(key)
                merged.append(suggestion)

        for stored in self.suggestions.matching(organization_id, prefix, limit):
            add(AutocompleteSuggestion(
                text=stored.display_text or stored.text,
                type=stored.suggestion_type,
                source="stored",
                popularity=stored.popularity or 0,
            ))

        for text in self._completions(prefix, organization_id):
            add(AutocompleteSuggestion(text=text, source="completion"))

        merged = merged[:limit]
        if self.cache:
            self.cache.cache_suggestions(organization_id, prefix, [item.model_dump() for item in merged])
        return merged

    def track_click(self, event: ClickEvent) -> Optional[str]:
        """Hand a result click to the analytics jobs"""
        if self.queue is None:
            self.tracker.record_click(event)
            return None
        return self.queue.enqueue(PROCESS_RESULT_CLICK, event.model_dump(mode="json"))

    def _completions(self, prefix: str, organization_id: str) -> List[str]:
        indices = self.registry.get_active_indices(organization_id)
        if not indices:
            return []
        try:
            result = self.backend.search(
                [index.alias_name for index in indices],
                self.query_builder.build_completion(prefix),
            )
        except BackendError as e:
            logger.warning(f"Completion suggestions unavailable for {organization_id}: {e}")
            return []

        texts = []
        for entry in (result.suggest or {}).get("text_suggest", []):
            texts.extend(option.get("text") for option in entry.get("options", []) if option.get("text"))
        return texts

    @staticmethod
    def _index_types(indices: List[SearchIndex]) -> Dict[str, str]:
        type_by_index = {}
        for index in indices:
            type_by_index[index.index_name] = index.index_type
            type_by_index[index.alias_name] = index.index_type
        return type_by_index

    def _format_hit(self, hit: BackendHit, type_by_index: Dict[str, str]) -> SearchResultItem:
        index_type = type_by_index.get(hit.index)
        if index_type is None and len(set(type_by_index.values())) == 1:
            # Hit from a physical index created after the registry was read
            index_type = next(iter(type_by_index.values()))
        result_type = RESULT_TYPES.get(index_type, ResultType.DOCUMENT).value

        source = hit.source or {}
        return SearchResultItem(
            id=hit.id,
            type=result_type,
            title=source.get("title") or "",
            description=source.get("description"),
            url=result_url(result_type, source, hit.id),
            score=hit.score,
            highlights=hit.highlight or {},
            metadata={key: value for key, value in source.items() if key not in METADATA_EXCLUDED},
            index=index_type,
        )

    def _enqueue_follow_ups(self, request: SearchRequest, response: SearchResponse) -> None:
        if self.queue is None or response.query_id is None:
            return
        try:
            self.queue.enqueue(PROCESS_SEARCH_QUERY, {"query_id": response.query_id})
            if request.suggestions and request.query:
                self.queue.enqueue(UPDATE_SUGGESTIONS, {
                    "organization_id": request.organization_id,
                    "query": request.query,
                    "has_results": response.total > 0,
                })
        except redis.RedisError as e:
            logger.error(f"Could not enqueue follow-up jobs for query {response.query_id}: {e}")
