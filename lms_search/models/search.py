"""
Search request/response models and shared enumerations
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..search.config import SearchConfig


class SearchIndexType(str, Enum):
    COURSES = "courses"
    CONTENT = "content"
    USERS = "users"
    ASSESSMENTS = "assessments"
    FORUMS = "forums"
    VIDEOS = "videos"
    DOCUMENTS = "documents"


class SuggestionType(str, Enum):
    QUERY = "query"
    CATEGORY = "category"
    INSTRUCTOR = "instructor"
    TOPIC = "topic"
    SKILL = "skill"
    FILTER = "filter"


class ResultType(str, Enum):
    COURSE = "course"
    LESSON = "lesson"
    VIDEO = "video"
    DOCUMENT = "document"
    ASSESSMENT = "assessment"
    USER = "user"
    FORUM_POST = "forum_post"


class FilterType(str, Enum):
    CATEGORY = "category"
    DIFFICULTY = "difficulty"
    DURATION = "duration"
    INSTRUCTOR = "instructor"
    RATING = "rating"
    PRICE = "price"
    LANGUAGE = "language"
    DATE_RANGE = "date_range"
    CONTENT_TYPE = "content_type"
    COMPLETION_STATUS = "completion_status"


_SCALAR_TYPES = (str, int, float, bool)


class Pagination(BaseModel):
    """Offset pagination; pages larger than the maximum are rejected"""
    model_config = {"populate_by_name": True}

    from_: int = Field(0, alias="from", ge=0)
    size: int = Field(SearchConfig.DEFAULT_PAGE_SIZE, ge=1, le=SearchConfig.MAX_PAGE_SIZE)

    @classmethod
    def for_page(cls, page: int, size: int) -> "Pagination":
        if page < 1:
            raise ValueError("page must be >= 1")
        return cls(from_=(page - 1) * size, size=size)


class SortField(BaseModel):
    field: str
    order: str = "desc"

    @field_validator('order')
    @classmethod
    def validate_order(cls, v):
        v = (v or "").lower()
        if v not in ("asc", "desc"):
            raise ValueError("sort order must be 'asc' or 'desc'")
        return v

    @field_validator('field')
    @classmethod
    def validate_field(cls, v):
        if not v or not v.strip():
            raise ValueError("sort field must not be empty")
        return v.strip()


class HighlightOptions(BaseModel):
    fields: List[str] = Field(default_factory=lambda: list(SearchConfig.HIGHLIGHT_FIELDS))
    pre_tag: str = SearchConfig.HIGHLIGHT_PRE_TAG
    post_tag: str = SearchConfig.HIGHLIGHT_POST_TAG
    fragment_size: int = Field(SearchConfig.HIGHLIGHT_FRAGMENT_SIZE, ge=1)
    number_of_fragments: int = Field(SearchConfig.HIGHLIGHT_FRAGMENTS, ge=0)


class SearchRequest(BaseModel):
    """Inbound search request"""
    query: str = ""
    organization_id: str
    user_id: Optional[str] = None
    indices: Optional[List[SearchIndexType]] = None
    filters: Dict[str, Any] = {}
    facets: List[str] = []
    sorting: List[SortField] = []
    pagination: Pagination = Field(default_factory=Pagination)
    highlighting: Optional[HighlightOptions] = None
    suggestions: bool = False
    personalized: bool = False

    @field_validator('query')
    @classmethod
    def strip_query(cls, v):
        return (v or "").strip()

    @field_validator('filters')
    @classmethod
    def validate_filters(cls, v):
        if v is None:
            return {}

        for name, value in v.items():
            if isinstance(value, list):
                if not value:
                    raise ValueError(f"Filter '{name}' must not be an empty list")
                if not all(isinstance(item, _SCALAR_TYPES) for item in value):
                    raise ValueError(f"Filter '{name}' list values must be scalars")
            elif isinstance(value, dict):
                keys = set(value.keys())
                if not keys or not keys.issubset({"min", "max"}):
                    raise ValueError(f"Range filter '{name}' accepts only 'min' and 'max'")
                bounds = [value.get("min"), value.get("max")]
                if all(bound is None for bound in bounds):
                    raise ValueError(f"Range filter '{name}' needs at least one bound")
                if not all(bound is None or isinstance(bound, _SCALAR_TYPES) for bound in bounds):
                    raise ValueError(f"Range filter '{name}' bounds must be scalars")
                low, high = bounds
                if isinstance(low, (int, float)) and isinstance(high, (int, float)) and low > high:
                    raise ValueError(f"Range filter '{name}' has min greater than max")
            elif not isinstance(value, _SCALAR_TYPES):
                raise ValueError(f"Filter '{name}' has an unsupported value")

        return v

    @field_validator('facets')
    @classmethod
    def validate_facets(cls, v):
        return [facet.strip() for facet in (v or []) if facet and facet.strip()]


class SearchResultItem(BaseModel):
    id: str
    type: str
    title: str = ""
    description: Optional[str] = None
    url: str
    score: float = 0.0
    highlights: Dict[str, List[str]] = {}
    metadata: Dict[str, Any] = {}
    index: Optional[str] = None


class FilterValue(BaseModel):
    value: Any
    label: str
    count: int


class SearchFilterData(BaseModel):
    """UI-ready facet descriptor"""
    type: str
    name: str
    display_name: str
    values: List[FilterValue] = []


class PaginationInfo(BaseModel):
    current: int
    size: int
    total: int
    pages: int


class PersonalizationInfo(BaseModel):
    applied: bool = False
    boosts_applied: int = 0
    hidden_excluded: int = 0
    error: Optional[str] = None


class SearchResponse(BaseModel):
    query: str
    total: int = 0
    took: int = 0
    results: List[SearchResultItem] = []
    aggregations: Optional[Dict[str, Any]] = None
    suggestions: Optional[List[str]] = None
    filters: Optional[List[SearchFilterData]] = None
    pagination: PaginationInfo
    personalization: Optional[PersonalizationInfo] = None
    query_id: Optional[str] = None


class AutocompleteSuggestion(BaseModel):
    text: str
    type: str = SuggestionType.QUERY.value
    source: str = "stored"
    popularity: int = 0


class ClickEvent(BaseModel):
    """Result click reported by a reader"""
    search_query_id: str
    result_id: str
    result_type: str
    result_title: Optional[str] = None
    position: int = Field(ge=1)
    total_results: int = Field(0, ge=0)
    time_spent_seconds: Optional[int] = Field(None, ge=0)
    converted: bool = False
    clicked_at: Optional[datetime] = None
