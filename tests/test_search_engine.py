"""
Tests for the search read path
"""
from unittest.mock import Mock

import pytest

from lms_search.cache.manager import CacheManager
from lms_search.database.models import SearchQueryLog, SearchSuggestion
from lms_search.jobs.queue import PROCESS_RESULT_CLICK, PROCESS_SEARCH_QUERY, UPDATE_SUGGESTIONS, JobQueue
from lms_search.models.indexing import CreateIndexRequest
from lms_search.models.search import ClickEvent, SearchRequest
from lms_search.search.backend import BackendHit, BackendSearchResult, BackendUnavailable
from lms_search.search.engine import SearchEngine, result_url
from lms_search.search.registry import IndexNotFoundError, IndexRegistry
from lms_search.services.personalization import PersonalizationService


class TestResultUrl:
    """Test result links"""

    def test_urls(self):
        assert result_url("course", {}, "c1") == "/courses/c1"
        assert result_url("lesson", {"course_id": "c1"}, "l1") == "/courses/c1/lessons/l1"
        assert result_url("lesson", {}, "l1") == "/search/result/l1"
        assert result_url("video", {}, "v1") == "/videos/v1"
        assert result_url("user", {}, "u1") == "/users/u1"
        assert result_url("forum_post", {}, "f1") == "/search/result/f1"


class TestSearchEngine:
    """Test search execution, degradation and follow-up jobs"""

    @pytest.fixture
    def courses_index(self, db_session, backend):
        return IndexRegistry(db_session, backend).create_index(
            CreateIndexRequest(organization_id="org-1", index_type="courses")
        )

    @pytest.fixture
    def queue(self):
        queue = Mock(spec=JobQueue)
        queue.enqueue.return_value = "job-1"
        return queue

    @pytest.fixture
    def cache(self):
        cache = Mock(spec=CacheManager)
        cache.get_cached_suggestions.return_value = None
        cache.get_cached_profile.return_value = None
        return cache

    def make_hits(self, index_name, scores):
        return [
            BackendHit(
                id=f"course-{i}",
                index=index_name,
                score=score,
                source={"id": f"course-{i}", "title": f"JavaScript {i}", "category": "programming"},
            )
            for i, score in enumerate(scores)
        ]

    def test_javascript_search(self, db_session, backend, cache, queue, courses_index):
        backend.search_result = BackendSearchResult(
            hits=self.make_hits(courses_index.index_name, [2.5, 1.8, 1.2]), total=3, took=7,
        )
        engine = SearchEngine(db_session, backend, cache, queue)
        request = SearchRequest(
            query="javascript", organization_id="org-1",
            filters={"category": ["programming"]}, pagination={"from": 0, "size": 20},
        )

        response = engine.search(request)

        assert response.total == 3
        assert [result.score for result in response.results] == [2.5, 1.8, 1.2]
        assert response.pagination.pages == 1
        assert response.results[0].type == "course"
        assert response.results[0].url == "/courses/course-0"
        assert response.results[0].metadata == {"category": "programming"}

        call = backend.search_calls[0]
        assert call["indices"] == ["org-1-courses"]
        assert {"terms": {"category": ["programming"]}} in call["body"]["query"]["bool"]["filter"]

        log = db_session.query(SearchQueryLog).one()
        assert response.query_id == log.id
        assert log.results_count == 3
        assert not log.had_error
        queue.enqueue.assert_called_once_with(PROCESS_SEARCH_QUERY, {"query_id": log.id})

    def test_backend_outage_degrades_to_empty_response(self, db_session, backend, cache, queue, courses_index):
        backend.search_error = BackendUnavailable("connection timed out")
        engine = SearchEngine(db_session, backend, cache, queue)

        response = engine.search(SearchRequest(query="javascript", organization_id="org-1"))

        assert response.total == 0
        assert response.took == 0
        assert response.results == []
        log = db_session.query(SearchQueryLog).one()
        assert log.had_error

    def test_no_active_indices(self, db_session, backend, cache, queue):
        engine = SearchEngine(db_session, backend, cache, queue)
        with pytest.raises(IndexNotFoundError):
            engine.search(SearchRequest(query="javascript", organization_id="org-1"))

    def test_facets_become_filters(self, db_session, backend, cache, queue, courses_index):
        backend.search_result = BackendSearchResult(
            hits=[], total=0,
            aggregations={"category": {"buckets": [{"key": "programming", "doc_count": 3}]}},
        )
        engine = SearchEngine(db_session, backend, cache, queue)

        response = engine.search(SearchRequest(query="js", organization_id="org-1", facets=["category"]))

        assert response.filters[0].name == "category"
        assert response.filters[0].values[0].count == 3
        assert "category" in response.aggregations

    def test_personalized_search(self, db_session, backend, cache, queue, courses_index):
        profiles = PersonalizationService(db_session, cache)
        profile = profiles.get_or_create_profile("user-1", "org-1")
        profile.preferences = {**profile.preferences, "preferred_categories": ["design"]}
        db_session.commit()
        engine = SearchEngine(db_session, backend, cache, queue, personalization_service=profiles)

        response = engine.search(SearchRequest(
            query="layout", organization_id="org-1", user_id="user-1", personalized=True,
        ))

        assert response.personalization.applied
        should = backend.search_calls[0]["body"]["query"]["bool"]["should"]
        assert {"terms": {"category": ["design"], "boost": 2}} in should

    def test_personalization_failure_does_not_fail_search(self, db_session, backend, cache, queue, courses_index):
        profiles = Mock(spec=PersonalizationService)
        profiles.get_boost_profile.side_effect = RuntimeError("profile store down")
        engine = SearchEngine(db_session, backend, cache, queue, personalization_service=profiles)

        response = engine.search(SearchRequest(
            query="layout", organization_id="org-1", user_id="user-1", personalized=True,
        ))

        assert not response.personalization.applied
        assert "profile store down" in response.personalization.error

    def test_suggestions_requested(self, db_session, backend, cache, queue, courses_index):
        db_session.add(SearchSuggestion(organization_id="org-1", suggestion_type="query",
                                        text="javascript basics", popularity=4))
        db_session.commit()
        engine = SearchEngine(db_session, backend, cache, queue)

        response = engine.search(SearchRequest(query="javascript", organization_id="org-1", suggestions=True))

        assert response.suggestions == ["javascript basics"]
        job_types = [call.args[0] for call in queue.enqueue.call_args_list]
        assert job_types == [PROCESS_SEARCH_QUERY, UPDATE_SUGGESTIONS]

    def test_autocomplete_merges_and_deduplicates(self, db_session, backend, cache, queue, courses_index):
        db_session.add(SearchSuggestion(organization_id="org-1", suggestion_type="query",
                                        text="react hooks", display_text="React Hooks", popularity=4))
        db_session.commit()
        backend.search_result = BackendSearchResult(hits=[], total=0, suggest={
            "text_suggest": [{"options": [{"text": "react hooks"}, {"text": "React Router"}]}],
        })
        engine = SearchEngine(db_session, backend, cache, queue)

        suggestions = engine.autocomplete("react", "org-1")

        assert [(s.text, s.source) for s in suggestions] == [
            ("React Hooks", "stored"), ("React Router", "completion"),
        ]
        cache.cache_suggestions.assert_called_once()

    def test_autocomplete_from_cache(self, db_session, backend, cache, queue):
        cache.get_cached_suggestions.return_value = [{"text": "react", "type": "query", "source": "stored"}]
        engine = SearchEngine(db_session, backend, cache, queue)

        assert [s.text for s in engine.autocomplete("re", "org-1")] == ["react"]
        assert backend.search_calls == []

    def test_autocomplete_survives_backend_outage(self, db_session, backend, cache, queue, courses_index):
        backend.search_error = BackendUnavailable("down")
        engine = SearchEngine(db_session, backend, cache, queue)
        assert engine.autocomplete("react", "org-1") == []

    def test_track_click_enqueues(self, db_session, backend, cache, queue):
        engine = SearchEngine(db_session, backend, cache, queue)
        event = ClickEvent(search_query_id="q1", result_id="course-1", result_type="course", position=2)

        assert engine.track_click(event) == "job-1"
        job_type, payload = queue.enqueue.call_args.args
        assert job_type == PROCESS_RESULT_CLICK
        assert payload["result_id"] == "course-1"
