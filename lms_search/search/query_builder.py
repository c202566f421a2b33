"""
Query Builder
Turns a SearchRequest into an Elasticsearch search body
"""

import math
from typing import Any, Dict, List, Optional

from ..models.search import (
    FilterType, FilterValue, HighlightOptions, PaginationInfo, SearchFilterData, SearchRequest, SortField
)
from .config import SearchConfig


class QueryBuilder:
    """Builds the canonical bool query with weighted text matching, filters, facets and highlighting"""

    TEXT_FIELDS = ["title^3", "description^2", "content", "tags^2", "instructor^2"]
    PHRASE_FIELDS = ["title^5", "description^3"]
    PHRASE_BOOST = 2
    TITLE_BOOST = 3
    MINIMUM_SHOULD_MATCH = "75%"

    # Text fields are aggregated on their keyword sub-field
    FACET_FIELDS = {
        "instructor": "instructor.keyword",
        "course_title": "course_title.keyword",
        "full_name": "full_name.keyword",
        "title": "title.keyword",
    }

    FILTER_TYPES = {
        "category": FilterType.CATEGORY,
        "difficulty": FilterType.DIFFICULTY,
        "instructor": FilterType.INSTRUCTOR,
        "rating": FilterType.RATING,
        "price": FilterType.PRICE,
        "language": FilterType.LANGUAGE,
        "content_type": FilterType.CONTENT_TYPE,
        "duration": FilterType.DURATION,
        "created_at": FilterType.DATE_RANGE,
    }

    def build(self, request: SearchRequest) -> Dict[str, Any]:
        """
        Build the full search body for a request

        Args:
            request: Validated search request

        Returns:
            Search body with query, sort, pagination and optional aggs/highlight
        """
        body: Dict[str, Any] = {
            "query": self.build_query(request.query, request.filters),
            "sort": self.build_sort(request.sorting),
            "from": request.pagination.from_,
            "size": request.pagination.size,
            "track_total_hits": True,
        }

        aggregations = self.build_aggregations(request.facets)
        if aggregations:
            body["aggs"] = aggregations

        if request.highlighting is not None:
            body["highlight"] = self.build_highlight(request.highlighting)

        return body

    def build_query(self, text: str, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        bool_query: Dict[str, Any] = {"must": [], "should": [], "filter": [], "must_not": []}

        if text:
            bool_query["must"].append({
                "multi_match": {
                    "query": text,
                    "fields": list(self.TEXT_FIELDS),
                    "type": "best_fields",
                    "fuzziness": "AUTO",
                    "operator": "and",
                    "minimum_should_match": self.MINIMUM_SHOULD_MATCH,
                }
            })
            bool_query["should"].extend([
                {
                    "multi_match": {
                        "query": text,
                        "fields": list(self.PHRASE_FIELDS),
                        "type": "phrase",
                        "boost": self.PHRASE_BOOST,
                    }
                },
                {"match": {"title": {"query": text, "boost": self.TITLE_BOOST}}},
            ])
        else:
            bool_query["must"].append({"match_all": {}})

        bool_query["filter"].extend(self.build_filters(filters or {}))
        return {"bool": bool_query}

    def build_filters(self, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """List values become terms, {min, max} ranges, anything else a term"""
        clauses = []
        for field, value in filters.items():
            if isinstance(value, list):
                clauses.append({"terms": {field: value}})
            elif isinstance(value, dict):
                bounds = {}
                if value.get("min") is not None:
                    bounds["gte"] = value["min"]
                if value.get("max") is not None:
                    bounds["lte"] = value["max"]
                clauses.append({"range": {field: bounds}})
            else:
                clauses.append({"term": {field: value}})
        return clauses

    def build_sort(self, sorting: Optional[List[SortField]] = None) -> List[Dict[str, Any]]:
        if not sorting:
            return [
                {"_score": {"order": "desc"}},
                {"weight": {"order": "desc", "unmapped_type": "float"}},
                {"created_at": {"order": "desc", "unmapped_type": "date"}},
            ]

        sort = []
        for item in sorting:
            field = "_score" if item.field in ("relevance", "_score") else item.field
            sort.append({field: {"order": item.order}})
        return sort

    def build_aggregations(self, facets: Optional[List[str]]) -> Dict[str, Any]:
        return {
            facet: {"terms": {"field": self.FACET_FIELDS.get(facet, facet), "size": SearchConfig.FACET_BUCKET_SIZE}}
            for facet in (facets or [])
        }

    def build_highlight(self, options: HighlightOptions) -> Dict[str, Any]:
        return {
            "fields": {
                field: {
                    "fragment_size": options.fragment_size,
                    "number_of_fragments": options.number_of_fragments,
                }
                for field in options.fields
            },
            "pre_tags": [options.pre_tag],
            "post_tags": [options.post_tag],
        }

    def build_completion(self, prefix: str, size: int = SearchConfig.COMPLETION_SIZE) -> Dict[str, Any]:
        """Completion-suggester body for autocomplete"""
        return {
            "size": 0,
            "suggest": {
                "text_suggest": {
                    "prefix": prefix,
                    "completion": {"field": "suggest", "size": size, "skip_duplicates": True},
                }
            },
        }

    def format_facets(self, aggregations: Optional[Dict[str, Any]]) -> List[SearchFilterData]:
        """Convert terms aggregations into UI filter descriptors"""
        filters = []
        for name, aggregation in (aggregations or {}).items():
            buckets = aggregation.get("buckets") if isinstance(aggregation, dict) else None
            if buckets is None:
                continue
            filters.append(SearchFilterData(
                type=self.FILTER_TYPES.get(name, FilterType.CATEGORY).value,
                name=name,
                display_name=self.humanize(name),
                values=[
                    FilterValue(
                        value=bucket.get("key"),
                        label=str(bucket.get("key_as_string", bucket.get("key"))),
                        count=int(bucket.get("doc_count", 0)),
                    )
                    for bucket in buckets
                ],
            ))
        return filters

    @staticmethod
    def humanize(name: str) -> str:
        return " ".join(word.capitalize() for word in name.replace("_", " ").split())

    @staticmethod
    def page_info(from_: int, size: int, total: int) -> PaginationInfo:
        return PaginationInfo(
            current=from_ // size + 1,
            size=size,
            total=total,
            pages=math.ceil(total / size) if total else 0,
        )
