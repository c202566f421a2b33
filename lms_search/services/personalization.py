"""
Personalization profile service
Creates profiles lazily and keeps them current from searches, clicks and learning activity
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from ..cache.manager import CacheManager
from ..database.models import SearchPersonalization, SearchQueryLog, SearchResultClick
from ..models.personalization import (
    HiddenResult, LearningActivity, PersonalizationPreferences, PersonalizationSettingsUpdate
)

logger = logging.getLogger(__name__)

QUERY_PATTERN_LIMIT = 20
PREFERENCE_LIMITS = {
    "preferred_categories": 10,
    "preferred_instructors": 5,
    "preferred_difficulty_levels": 3,
}

COMPLETENESS_WEIGHTS = {
    "preferred_categories": 20,
    "preferred_difficulty_levels": 15,
    "learning_goals": 20,
    "interests": 15,
    "preferred_instructors": 10,
    "preferred_content_types": 10,
}
BASE_COMPLETENESS = 10


def default_preferences() -> Dict[str, Any]:
    preferences = PersonalizationPreferences().model_dump()
    preferences["preferred_languages"] = ["english"]
    return preferences


def default_search_behavior() -> Dict[str, Any]:
    return {
        "frequently_used_filters": {},
        "common_query_patterns": [],
        "preferred_result_types": {},
        "click_behavior": {
            "avg_position_clicked": 0,
            "time_spent_on_results": 0,
            "conversion_rate": 0,
            "total_clicks": 0,
        },
        "search_frequency": {
            "queries_per_week": 0,
            "total_queries": 0,
            "last_search_at": None,
        },
    }


def calculate_profile_completeness(preferences: Dict[str, Any]) -> float:
    """Base 10, plus a fixed amount for each populated preference list, capped at 100"""
    completeness = BASE_COMPLETENESS
    for key, weight in COMPLETENESS_WEIGHTS.items():
        if preferences.get(key):
            completeness += weight
    return float(min(completeness, 100))


class PersonalizationService:
    """Service for managing search personalization profiles"""

    def __init__(self, db_session: Session, cache_manager: Optional[CacheManager] = None):
        self.db = db_session
        self.cache = cache_manager

    def get_profile(self, user_id: str) -> Optional[SearchPersonalization]:
        return self.db.query(SearchPersonalization).filter(
            SearchPersonalization.user_id == user_id
        ).first()

    def get_boost_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Boost-relevant profile fields, read through the cache"""
        if self.cache:
            cached = self.cache.get_cached_profile(user_id)
            if cached is not None:
                return cached

        profile = self.get_profile(user_id)
        if profile is None:
            return None

        data = {
            "preferences": profile.preferences or {},
            "boosting_rules": profile.boosting_rules or [],
            "hidden_results": profile.hidden_results or [],
        }
        if self.cache:
            self.cache.cache_profile(user_id, data)
        return data

    def get_or_create_profile(self, user_id: str, organization_id: str) -> SearchPersonalization:
        """Fetch the user's profile, creating a default one on first qualifying activity"""
        profile = self.get_profile(user_id)
        if profile is not None:
            return profile

        profile = SearchPersonalization(
            user_id=user_id,
            organization_id=organization_id,
            preferences=default_preferences(),
            search_behavior=default_search_behavior(),
            boosting_rules=[],
            hidden_results=[],
            profile_completeness=float(BASE_COMPLETENESS),
            last_updated=datetime.utcnow(),
        )
        try:
            self.db.add(profile)
            self.db.commit()
            self.db.refresh(profile)
        except IntegrityError:
            # Created concurrently by another worker
            self.db.rollback()
            profile = self.get_profile(user_id)
            if profile is None:
                raise
        logger.info(f"Created personalization profile for user {user_id}")
        return profile

    def update_settings(self, user_id: str, organization_id: str,
                        update: PersonalizationSettingsUpdate) -> SearchPersonalization:
        profile = self.get_or_create_profile(user_id, organization_id)
        update_data = update.model_dump(exclude_unset=True)

        rules = update_data.pop("boosting_rules", None)
        if rules is not None:
            profile.boosting_rules = rules

        preferences = dict(profile.preferences or default_preferences())
        for field, value in update_data.items():
            if value is not None:
                preferences[field] = value
        profile.preferences = preferences
        flag_modified(profile, "preferences")

        self._touch(profile)
        return profile

    def hide_result(self, user_id: str, organization_id: str, result_id: str,
                    reason: Optional[str] = None) -> SearchPersonalization:
        profile = self.get_or_create_profile(user_id, organization_id)
        hidden = list(profile.hidden_results or [])
        if not any(item.get("result_id") == result_id for item in hidden):
            hidden.append(HiddenResult(result_id=result_id, reason=reason).model_dump(mode="json"))
        profile.hidden_results = hidden
        flag_modified(profile, "hidden_results")
        self._touch(profile)
        return profile

    def unhide_result(self, user_id: str, result_id: str) -> bool:
        profile = self.get_profile(user_id)
        if profile is None:
            return False
        hidden = [item for item in (profile.hidden_results or []) if item.get("result_id") != result_id]
        if len(hidden) == len(profile.hidden_results or []):
            return False
        profile.hidden_results = hidden
        self._touch(profile)
        return True

    def reset_profile(self, user_id: str) -> bool:
        """Delete a user's profile; it is recreated on their next activity"""
        profile = self.get_profile(user_id)
        if profile is None:
            return False
        self.db.delete(profile)
        self.db.commit()
        if self.cache:
            self.cache.invalidate_profile(user_id)
        return True

    def update_from_query(self, query_log: SearchQueryLog) -> Optional[SearchPersonalization]:
        """Record filter usage, the query pattern and search frequency"""
        if not query_log.user_id:
            return None

        profile = self.get_or_create_profile(query_log.user_id, query_log.organization_id)
        behavior = profile.search_behavior or default_search_behavior()

        filter_usage = behavior.setdefault("frequently_used_filters", {})
        for name in (query_log.filters or {}):
            filter_usage[name] = filter_usage.get(name, 0) + 1

        patterns: List[str] = behavior.setdefault("common_query_patterns", [])
        normalized = query_log.normalized_query or query_log.query_text.lower().strip()
        if normalized and normalized not in patterns:
            patterns.append(normalized)
            behavior["common_query_patterns"] = patterns[-QUERY_PATTERN_LIMIT:]

        frequency = behavior.setdefault("search_frequency", {})
        frequency["total_queries"] = frequency.get("total_queries", 0) + 1
        frequency["queries_per_week"] = round(frequency.get("queries_per_week", 0) + 1 / 7, 4)
        executed_at = query_log.executed_at or datetime.utcnow()
        frequency["last_search_at"] = executed_at.isoformat()

        profile.search_behavior = behavior
        flag_modified(profile, "search_behavior")
        self._touch(profile)
        return profile

    def update_from_click(self, user_id: str, click: SearchResultClick) -> Optional[SearchPersonalization]:
        """Fold a click into running averages of position and time spent"""
        profile = self.get_profile(user_id)
        if profile is None:
            return None

        behavior = profile.search_behavior or default_search_behavior()
        click_behavior = behavior.setdefault("click_behavior", {})
        total_clicks = click_behavior.get("total_clicks", 0)

        current_avg = click_behavior.get("avg_position_clicked", 0)
        click_behavior["avg_position_clicked"] = (current_avg * total_clicks + click.position) / (total_clicks + 1)

        if click.time_spent_seconds:
            current_time = click_behavior.get("time_spent_on_results", 0)
            click_behavior["time_spent_on_results"] = (
                (current_time * total_clicks + click.time_spent_seconds) / (total_clicks + 1)
            )

        conversions = click_behavior.get("conversions", 0) + (1 if click.converted else 0)
        click_behavior["conversions"] = conversions
        click_behavior["total_clicks"] = total_clicks + 1
        click_behavior["conversion_rate"] = conversions / (total_clicks + 1)

        result_types = behavior.setdefault("preferred_result_types", {})
        result_types[click.result_type] = result_types.get(click.result_type, 0) + 1

        profile.search_behavior = behavior
        flag_modified(profile, "search_behavior")
        self._touch(profile)
        return profile

    def update_from_activity(self, activity: LearningActivity) -> SearchPersonalization:
        """
        Learn preferences from learning activity

        Course enrollments add the course category, content views add the difficulty,
        and any activity naming an instructor adds the instructor. Lists keep only
        their most recent entries.
        """
        profile = self.get_or_create_profile(activity.user_id, activity.organization_id)
        preferences = profile.preferences or default_preferences()

        def remember(key: str, value: Optional[str]) -> None:
            if not value:
                return
            values = preferences.setdefault(key, [])
            if value not in values:
                values.append(value)

        if activity.activity_type == "course_enrollment":
            remember("preferred_categories", activity.category)
        if activity.activity_type == "content_view":
            remember("preferred_difficulty_levels", activity.difficulty)
            remember("preferred_content_types", activity.content_type)
        remember("preferred_instructors", activity.instructor)

        for key, limit in PREFERENCE_LIMITS.items():
            preferences[key] = list(preferences.get(key, []))[-limit:]

        profile.preferences = preferences
        flag_modified(profile, "preferences")
        self._touch(profile)
        return profile

    def _touch(self, profile: SearchPersonalization) -> None:
        profile.profile_completeness = calculate_profile_completeness(profile.preferences or {})
        profile.last_updated = datetime.utcnow()
        self.db.commit()
        if self.cache:
            self.cache.invalidate_profile(profile.user_id)
