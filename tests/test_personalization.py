"""
Tests for query personalization and personalization profiles
"""
from unittest.mock import Mock

from lms_search.cache.manager import CacheManager
from lms_search.database.models import SearchQueryLog, SearchResultClick
from lms_search.models.personalization import LearningActivity, PersonalizationSettingsUpdate
from lms_search.search.personalization import PersonalizationEngine
from lms_search.search.query_builder import QueryBuilder
from lms_search.services.personalization import (
    PersonalizationService, calculate_profile_completeness
)


class TestPersonalizationEngine:
    """Test boosts applied to a built query"""

    def setup_method(self):
        self.engine = PersonalizationEngine()
        self.query = QueryBuilder().build_query("design")

    def test_category_boost(self):
        profile = {"preferences": {"preferred_categories": ["design"]}}
        outcome = self.engine.apply_boosts(self.query, profile)

        assert outcome.applied
        assert outcome.boosts_applied == 1
        assert {"terms": {"category": ["design"], "boost": 2}} in outcome.query["bool"]["should"]

    def test_base_query_is_untouched(self):
        profile = {
            "preferences": {"preferred_categories": ["design"]},
            "boosting_rules": [{"field": "instructor", "values": ["Ada"], "boost_factor": 1.5}],
            "hidden_results": [{"result_id": "course-9"}],
        }
        outcome = self.engine.apply_boosts(self.query, profile)

        assert outcome.query["bool"]["must"] == self.query["bool"]["must"]
        assert len(self.query["bool"]["should"]) == 2
        assert outcome.query["bool"]["must_not"] == [{"terms": {"id": ["course-9"]}}]
        assert outcome.boosts_applied == 2
        assert outcome.hidden_excluded == 1

    def test_empty_profile_applies_nothing(self):
        outcome = self.engine.apply_boosts(self.query, {})
        assert not outcome.applied
        assert outcome.query == self.query

    def test_profile_failure_fails_open(self):
        profiles = Mock()
        profiles.get_boost_profile.side_effect = RuntimeError("database down")
        engine = PersonalizationEngine(profiles)

        outcome = engine.personalize(self.query, "user-1")

        assert outcome.query == self.query
        assert not outcome.applied
        assert "database down" in outcome.error

    def test_missing_profile(self):
        profiles = Mock()
        profiles.get_boost_profile.return_value = None
        outcome = PersonalizationEngine(profiles).personalize(self.query, "user-1")
        assert outcome.query == self.query
        assert outcome.error is None


class TestProfileCompleteness:
    """Test profile completeness scoring"""

    def test_base_score(self):
        assert calculate_profile_completeness({}) == 10.0

    def test_full_profile_is_capped(self):
        preferences = {
            "preferred_categories": ["a"],
            "preferred_difficulty_levels": ["b"],
            "learning_goals": ["c"],
            "interests": ["d"],
            "preferred_instructors": ["e"],
            "preferred_content_types": ["f"],
        }
        assert calculate_profile_completeness(preferences) == 100.0


class TestPersonalizationService:
    """Test profile lifecycle against a database"""

    def setup_method(self):
        self.cache = Mock(spec=CacheManager)

    def test_profile_created_lazily(self, db_session):
        service = PersonalizationService(db_session, self.cache)
        assert service.get_profile("user-1") is None

        profile = service.get_or_create_profile("user-1", "org-1")

        assert profile.preferences["preferred_languages"] == ["english"]
        assert profile.profile_completeness == 10.0
        assert service.get_or_create_profile("user-1", "org-1").id == profile.id

    def test_update_settings(self, db_session):
        service = PersonalizationService(db_session, self.cache)
        update = PersonalizationSettingsUpdate(
            preferred_categories=["design"],
            boosting_rules=[{"field": "instructor", "values": ["Ada"], "boost_factor": 2}],
        )

        profile = service.update_settings("user-1", "org-1", update)

        assert profile.preferences["preferred_categories"] == ["design"]
        assert profile.boosting_rules[0]["field"] == "instructor"
        assert profile.profile_completeness == 30.0
        self.cache.invalidate_profile.assert_called_with("user-1")

    def test_hide_and_unhide_result(self, db_session):
        service = PersonalizationService(db_session, self.cache)
        service.hide_result("user-1", "org-1", "course-9", reason="not relevant")
        service.hide_result("user-1", "org-1", "course-9")

        assert len(service.get_profile("user-1").hidden_results) == 1
        assert service.unhide_result("user-1", "course-9")
        assert service.get_profile("user-1").hidden_results == []
        assert not service.unhide_result("user-1", "course-9")

    def test_boost_profile_read_through_cache(self, db_session):
        service = PersonalizationService(db_session, self.cache)
        self.cache.get_cached_profile.return_value = None
        assert service.get_boost_profile("user-1") is None

        service.get_or_create_profile("user-1", "org-1")
        data = service.get_boost_profile("user-1")

        assert data["hidden_results"] == []
        self.cache.cache_profile.assert_called_once_with("user-1", data)

        self.cache.get_cached_profile.return_value = {"preferences": {"preferred_categories": ["design"]}}
        assert service.get_boost_profile("user-1")["preferences"]["preferred_categories"] == ["design"]

    def test_reset_profile(self, db_session):
        service = PersonalizationService(db_session, self.cache)
        service.get_or_create_profile("user-1", "org-1")

        assert service.reset_profile("user-1")
        assert service.get_profile("user-1") is None
        assert not service.reset_profile("user-1")

    def test_update_from_query_keeps_last_twenty_patterns(self, db_session):
        service = PersonalizationService(db_session, self.cache)
        for i in range(25):
            log = SearchQueryLog(
                user_id="user-1", organization_id="org-1",
                query_text=f"Query {i}", normalized_query=f"query {i}",
                filters={"category": ["design"]},
            )
            service.update_from_query(log)

        behavior = service.get_profile("user-1").search_behavior
        assert len(behavior["common_query_patterns"]) == 20
        assert behavior["common_query_patterns"][-1] == "query 24"
        assert behavior["frequently_used_filters"]["category"] == 25
        assert behavior["search_frequency"]["total_queries"] == 25

    def test_anonymous_query_is_ignored(self, db_session):
        log = SearchQueryLog(organization_id="org-1", query_text="x", normalized_query="x")
        assert PersonalizationService(db_session, self.cache).update_from_query(log) is None

    def test_update_from_click_running_averages(self, db_session):
        service = PersonalizationService(db_session, self.cache)
        service.get_or_create_profile("user-1", "org-1")

        service.update_from_click("user-1", SearchResultClick(
            result_id="a", result_type="course", position=1, time_spent_seconds=30, converted=True,
        ))
        service.update_from_click("user-1", SearchResultClick(
            result_id="b", result_type="lesson", position=3, time_spent_seconds=90, converted=False,
        ))

        clicks = service.get_profile("user-1").search_behavior["click_behavior"]
        assert clicks["avg_position_clicked"] == 2
        assert clicks["time_spent_on_results"] == 60
        assert clicks["conversion_rate"] == 0.5
        assert clicks["total_clicks"] == 2

    def test_click_without_profile_is_ignored(self, db_session):
        click = SearchResultClick(result_id="a", result_type="course", position=1)
        assert PersonalizationService(db_session, self.cache).update_from_click("nobody", click) is None

    def test_update_from_activity_bounds_lists(self, db_session):
        service = PersonalizationService(db_session, self.cache)
        for i in range(12):
            service.update_from_activity(LearningActivity(
                user_id="user-1", organization_id="org-1",
                activity_type="course_enrollment", category=f"category-{i}", instructor=f"instructor-{i}",
            ))
        service.update_from_activity(LearningActivity(
            user_id="user-1", organization_id="org-1", activity_type="content_view", difficulty="advanced",
        ))

        preferences = service.get_profile("user-1").preferences
        assert len(preferences["preferred_categories"]) == 10
        assert preferences["preferred_categories"][-1] == "category-11"
        assert len(preferences["preferred_instructors"]) == 5
        assert preferences["preferred_difficulty_levels"] == ["advanced"]
