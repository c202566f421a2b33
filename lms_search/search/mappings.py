"""
Default index mappings and settings per index type
"""
import copy
from typing import Any, Dict

from ..models.search import SearchIndexType

BASE_PROPERTIES: Dict[str, Any] = {
    "id": {"type": "keyword"},
    "organization_id": {"type": "keyword"},
    "title": {
        "type": "text",
        "analyzer": "standard",
        "fields": {
            "keyword": {"type": "keyword"},
            "suggest": {"type": "completion"},
        },
    },
    "description": {"type": "text", "analyzer": "standard"},
    "content": {"type": "text", "analyzer": "standard"},
    "tags": {"type": "keyword"},
    "weight": {"type": "float"},
    "created_at": {"type": "date"},
    "updated_at": {"type": "date"},
    "suggest": {
        "type": "completion",
        "analyzer": "simple",
        "preserve_separators": True,
        "preserve_position_increments": True,
        "max_input_length": 50,
    },
}

TYPE_PROPERTIES: Dict[SearchIndexType, Dict[str, Any]] = {
    SearchIndexType.COURSES: {
        "instructor": {"type": "text", "fields": {"keyword": {"type": "keyword"}}},
        "instructor_id": {"type": "keyword"},
        "category": {"type": "keyword"},
        "difficulty": {"type": "keyword"},
        "rating": {"type": "float"},
        "price": {"type": "float"},
        "duration": {"type": "integer"},
        "language": {"type": "keyword"},
        "enrollment_count": {"type": "integer"},
        "completion_rate": {"type": "float"},
        "is_published": {"type": "boolean"},
    },
    SearchIndexType.CONTENT: {
        "course_id": {"type": "keyword"},
        "course_title": {"type": "text", "fields": {"keyword": {"type": "keyword"}}},
        "content_type": {"type": "keyword"},
        "duration": {"type": "integer"},
        "difficulty": {"type": "keyword"},
        "order": {"type": "integer"},
        "is_published": {"type": "boolean"},
    },
    SearchIndexType.USERS: {
        "email": {"type": "keyword"},
        "first_name": {"type": "text"},
        "last_name": {"type": "text"},
        "full_name": {"type": "text", "fields": {"keyword": {"type": "keyword"}}},
        "role": {"type": "keyword"},
        "skills": {"type": "keyword"},
        "location": {"type": "keyword"},
        "bio": {"type": "text"},
    },
}

DEFAULT_SETTINGS: Dict[str, Any] = {
    "number_of_shards": 1,
    "number_of_replicas": 1,
    "analysis": {
        "analyzer": {
            "custom_text_analyzer": {
                "type": "custom",
                "tokenizer": "standard",
                "filter": ["lowercase", "stop", "snowball"],
            },
            "autocomplete_analyzer": {
                "type": "custom",
                "tokenizer": "keyword",
                "filter": ["lowercase"],
            },
        },
    },
}


def get_default_mapping(index_type: SearchIndexType) -> Dict[str, Any]:
    properties = copy.deepcopy(BASE_PROPERTIES)
    properties.update(copy.deepcopy(TYPE_PROPERTIES.get(SearchIndexType(index_type), {})))
    return {"properties": properties}


def get_default_settings() -> Dict[str, Any]:
    return copy.deepcopy(DEFAULT_SETTINGS)
