"""
Database module for LMS search
Metadata tables for indices, query logs, suggestions and personalization
"""

from .models import (
    Base,
    SearchIndex,
    SearchQueryLog,
    SearchResultClick,
    SearchSuggestion,
    SearchPersonalization,
    SearchAnalytics,
)

__all__ = [
    "Base", "SearchIndex", "SearchQueryLog", "SearchResultClick",
    "SearchSuggestion", "SearchPersonalization", "SearchAnalytics"
]
