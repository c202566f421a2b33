"""
Pydantic models for search requests, indexing, personalization and analytics
"""

from .search import (
    SearchIndexType, SuggestionType, ResultType, FilterType,
    Pagination, SortField, HighlightOptions, SearchRequest, SearchResponse,
    SearchResultItem, SearchFilterData, FilterValue, PaginationInfo, PersonalizationInfo,
    AutocompleteSuggestion, ClickEvent,
)
from .indexing import IndexOperation, IndexingRequest, IndexingResult, IndexingError, SyncStats, CreateIndexRequest
from .analytics import SearchIntent, Timeframe

__all__ = [
    "SearchIndexType", "SuggestionType", "ResultType", "FilterType",
    "Pagination", "SortField", "HighlightOptions", "SearchRequest", "SearchResponse",
    "SearchResultItem", "SearchFilterData", "FilterValue", "PaginationInfo", "PersonalizationInfo",
    "AutocompleteSuggestion", "ClickEvent",
    "IndexOperation", "IndexingRequest", "IndexingResult", "IndexingError", "SyncStats", "CreateIndexRequest",
    "SearchIntent", "Timeframe",
]
