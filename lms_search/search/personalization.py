"""
Personalization Engine
Biases a built query with a user's preferences, boosting rules and hidden results
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

CATEGORY_BOOST = 2


@dataclass
class PersonalizationOutcome:
    """Result of personalizing a query; failures are carried here instead of raised"""
    query: Dict[str, Any]
    applied: bool = False
    boosts_applied: int = 0
    hidden_excluded: int = 0
    error: Optional[str] = None


def _profile_value(profile: Any, name: str, default: Any) -> Any:
    if isinstance(profile, dict):
        value = profile.get(name)
    else:
        value = getattr(profile, name, None)
    return default if value is None else value


class PersonalizationEngine:
    """Applies profile boosts to a bool query without touching its base clauses"""

    def __init__(self, profile_service=None):
        self.profiles = profile_service

    def apply_boosts(self, query: Dict[str, Any], profile: Any) -> PersonalizationOutcome:
        """
        Add should-boosts and hidden-result exclusions to a bool query

        Args:
            query: Query clause as produced by QueryBuilder.build_query
            profile: SearchPersonalization row or equivalent dict

        Returns:
            PersonalizationOutcome with a personalized copy of the query
        """
        personalized = copy.deepcopy(query)
        bool_query = personalized.setdefault("bool", {})
        should = bool_query.setdefault("should", [])
        must_not = bool_query.setdefault("must_not", [])
        boosts = 0

        preferences = _profile_value(profile, "preferences", {})
        categories = preferences.get("preferred_categories") or []
        if categories:
            should.append({"terms": {"category": list(categories), "boost": CATEGORY_BOOST}})
            boosts += 1

        for rule in _profile_value(profile, "boosting_rules", []):
            field = rule.get("field")
            values = rule.get("values") or []
            if not field or not values:
                continue
            should.append({"terms": {field: list(values), "boost": float(rule.get("boost_factor", 1.0))}})
            boosts += 1

        hidden_ids = [
            str(item.get("result_id"))
            for item in _profile_value(profile, "hidden_results", [])
            if item.get("result_id")
        ]
        if hidden_ids:
            must_not.append({"terms": {"id": hidden_ids}})

        return PersonalizationOutcome(
            query=personalized,
            applied=bool(boosts or hidden_ids),
            boosts_applied=boosts,
            hidden_excluded=len(hidden_ids),
        )

    def personalize(self, query: Dict[str, Any], user_id: str) -> PersonalizationOutcome:
        """Load the user's profile and apply it; any failure leaves the query unboosted"""
        try:
            profile = self.profiles.get_boost_profile(user_id) if self.profiles else None
            if profile is None:
                return PersonalizationOutcome(query=query)
            return self.apply_boosts(query, profile)
        except Exception as e:
            logger.error(f"Personalization failed for user {user_id}, searching unboosted: {e}")
            return PersonalizationOutcome(query=query, error=str(e))
