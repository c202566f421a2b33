"""
Document Transformer
Maps LMS entities (courses, content items, users) to search documents
"""

import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..models.search import SearchIndexType
from .config import SearchConfig


def _field(entity: Any, *names: str) -> Any:
    """First non-empty value among the given keys or attributes"""
    for name in names:
        if isinstance(entity, Mapping):
            value = entity.get(name)
        else:
            value = getattr(entity, name, None)
        if value is not None and value != "":
            return value
    return None


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _isoformat(value: Any) -> Optional[str]:
    parsed = _to_datetime(value)
    return parsed.isoformat() if parsed else None


def _number(value: Any) -> float:
    try:
        return max(0.0, float(value or 0))
    except (TypeError, ValueError):
        return 0.0


def _age_days(value: Any, now: datetime) -> Optional[int]:
    created = _to_datetime(value)
    if created is None:
        return None
    return (now - created).days


def _person_name(person: Any) -> Optional[str]:
    if person is None:
        return None
    if isinstance(person, str):
        return person
    name = _field(person, "name", "full_name")
    if name:
        return name
    full = f"{_field(person, 'first_name') or ''} {_field(person, 'last_name') or ''}".strip()
    return full or None


def calculate_document_weight(entity: Any, now: datetime) -> float:
    """
    Ranking weight for courses and content

    Published items get +2, views and enrollments add on a log scale, rating adds
    half its value and recent items get +3/+2/+1 under 7/30/90 days. Capped at 15.
    """
    weight = 1.0

    if _field(entity, "is_published"):
        weight += 2
    weight += math.log10(_number(_field(entity, "view_count")) + 1) * 0.5
    weight += math.log10(_number(_field(entity, "enrollment_count")) + 1) * 1.0
    weight += _number(_field(entity, "average_rating", "rating")) * 0.5

    age = _age_days(_field(entity, "created_at"), now)
    if age is not None:
        if age < 7:
            weight += 3
        elif age < 30:
            weight += 2
        elif age < 90:
            weight += 1

    return min(weight, SearchConfig.MAX_DOCUMENT_WEIGHT)


def calculate_user_weight(user: Any, now: datetime) -> float:
    weight = 1.0

    login_age = _age_days(_field(user, "last_login_at"), now)
    if login_age is not None:
        if login_age < 7:
            weight += 2
        elif login_age < 30:
            weight += 1

    profile = _field(user, "profile") or {}
    if _field(profile, "bio"):
        weight += 1
    if _field(profile, "skills"):
        weight += 1
    if _field(profile, "location"):
        weight += 0.5

    role = _field(user, "role")
    if role == "instructor":
        weight += 2
    elif role == "admin":
        weight += 1

    return min(weight, SearchConfig.MAX_USER_WEIGHT)


def _suggest(inputs: List[Any], weight: float) -> Dict[str, Any]:
    # Completion fields only accept integer weights
    return {
        "input": [str(value) for value in inputs if value],
        "weight": int(weight),
    }


def _base_document(entity: Any) -> Dict[str, Any]:
    profile = _field(entity, "profile") or {}
    full_name = f"{_field(entity, 'first_name') or ''} {_field(entity, 'last_name') or ''}".strip()
    tags = _field(entity, "tags", "skills") or _field(profile, "skills") or []
    return {
        "id": str(_field(entity, "id")),
        "title": _field(entity, "title", "name") or full_name,
        "description": _field(entity, "description", "bio") or _field(profile, "bio"),
        "content": _field(entity, "content", "body") or _field(profile, "summary"),
        "tags": list(tags),
        "created_at": _isoformat(_field(entity, "created_at")),
        "updated_at": _isoformat(_field(entity, "updated_at")),
        "organization_id": _field(entity, "organization_id"),
    }


def transform_generic(entity: Any, now: datetime) -> Dict[str, Any]:
    document = _base_document(entity)
    weight = calculate_document_weight(entity, now)
    document["weight"] = round(weight, 3)
    document["suggest"] = _suggest([document["title"], *document["tags"]], weight)
    return document


def transform_course(entity: Any, now: datetime) -> Dict[str, Any]:
    document = _base_document(entity)
    instructor = _field(entity, "instructor")
    instructor_name = _person_name(instructor) or _field(entity, "instructor_name")
    weight = calculate_document_weight(entity, now)

    document.update({
        "instructor": instructor_name,
        "instructor_id": _field(entity, "instructor_id") or (_field(instructor, "id") if instructor else None),
        "category": _field(entity, "category"),
        "difficulty": _field(entity, "difficulty"),
        "rating": _number(_field(entity, "average_rating", "rating")),
        "price": _number(_field(entity, "price")),
        "duration": int(_number(_field(entity, "estimated_duration", "duration"))),
        "language": _field(entity, "language") or "english",
        "enrollment_count": int(_number(_field(entity, "enrollment_count"))),
        "completion_rate": _number(_field(entity, "completion_rate")),
        "is_published": bool(_field(entity, "is_published")),
        "weight": round(weight, 3),
    })
    document["suggest"] = _suggest(
        [document["title"], document["category"], *document["tags"], instructor_name],
        weight,
    )
    return document


def transform_content(entity: Any, now: datetime) -> Dict[str, Any]:
    document = _base_document(entity)
    course = _field(entity, "course") or {}
    course_title = _field(course, "title") or _field(entity, "course_title")
    weight = calculate_document_weight(entity, now)

    document.update({
        "course_id": _field(entity, "course_id") or _field(course, "id"),
        "course_title": course_title,
        "content_type": _field(entity, "content_type"),
        "duration": int(_number(_field(entity, "estimated_duration", "duration"))),
        "difficulty": _field(entity, "difficulty"),
        "order": int(_number(_field(entity, "order"))),
        "is_published": bool(_field(entity, "is_published")),
        "weight": round(weight, 3),
    })
    document["suggest"] = _suggest(
        [document["title"], course_title, document["content_type"], *document["tags"]],
        weight,
    )
    return document


def transform_user(entity: Any, now: datetime) -> Dict[str, Any]:
    document = _base_document(entity)
    profile = _field(entity, "profile") or {}
    first_name = _field(entity, "first_name")
    last_name = _field(entity, "last_name")
    full_name = f"{first_name or ''} {last_name or ''}".strip()
    skills = list(_field(profile, "skills") or _field(entity, "skills") or [])
    weight = calculate_user_weight(entity, now)

    document.update({
        "email": _field(entity, "email"),
        "first_name": first_name,
        "last_name": last_name,
        "full_name": full_name,
        "role": _field(entity, "role"),
        "skills": skills,
        "location": _field(profile, "location") or _field(entity, "location"),
        "bio": _field(profile, "bio") or _field(entity, "bio"),
        "weight": round(weight, 3),
    })
    document["suggest"] = _suggest([full_name, document["email"], *skills], weight)
    return document


TRANSFORMERS: Dict[SearchIndexType, Callable[[Any, datetime], Dict[str, Any]]] = {
    SearchIndexType.COURSES: transform_course,
    SearchIndexType.CONTENT: transform_content,
    SearchIndexType.USERS: transform_user,
    SearchIndexType.ASSESSMENTS: transform_generic,
    SearchIndexType.FORUMS: transform_generic,
    SearchIndexType.VIDEOS: transform_generic,
    SearchIndexType.DOCUMENTS: transform_generic,
}


class DocumentTransformer:
    """Stateless mapper from entities to backend documents"""

    def transform(self, entity: Any, index_type: SearchIndexType, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Transform an entity into a search document

        Args:
            entity: Mapping or object with snake_case fields
            index_type: Index the document is written to
            now: Reference time for recency bonuses (defaults to current UTC time)

        Returns:
            Document body ready for the backend
        """
        transform = TRANSFORMERS[SearchIndexType(index_type)]
        return transform(entity, now or datetime.utcnow())

    def transform_many(self, entities: List[Any], index_type: SearchIndexType,
                       now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or datetime.utcnow()
        return [self.transform(entity, index_type, now) for entity in entities]
