"""
Tests for the document transformer and ranking weights
"""
from datetime import datetime, timedelta

from lms_search.models.search import SearchIndexType
from lms_search.search.transformer import (
    DocumentTransformer, calculate_document_weight, calculate_user_weight
)

NOW = datetime(2024, 6, 1, 12, 0, 0)


class TestDocumentWeight:
    """Test course and content weighting"""

    def test_minimal_entity(self):
        """An unpublished entity with no signals has the base weight"""
        assert calculate_document_weight({}, NOW) == 1.0

    def test_published_bonus(self):
        assert calculate_document_weight({"is_published": True}, NOW) == 3.0

    def test_recency_bonus(self):
        """Items under 7, 30 and 90 days old get +3, +2, +1"""
        assert calculate_document_weight({"created_at": NOW - timedelta(days=2)}, NOW) == 4.0
        assert calculate_document_weight({"created_at": NOW - timedelta(days=20)}, NOW) == 3.0
        assert calculate_document_weight({"created_at": NOW - timedelta(days=60)}, NOW) == 2.0
        assert calculate_document_weight({"created_at": NOW - timedelta(days=400)}, NOW) == 1.0

    def test_monotonic_in_engagement(self):
        """More views, enrollments or rating never lower the weight"""
        base = {"is_published": True, "view_count": 10, "enrollment_count": 5, "average_rating": 3.0}
        weight = calculate_document_weight(base, NOW)

        for field, value in [("view_count", 1000), ("enrollment_count", 500), ("average_rating", 4.5)]:
            bigger = dict(base, **{field: value})
            assert calculate_document_weight(bigger, NOW) >= weight

    def test_capped_at_fifteen(self):
        entity = {
            "is_published": True,
            "view_count": 10 ** 9,
            "enrollment_count": 10 ** 9,
            "average_rating": 5.0,
            "created_at": NOW,
        }
        assert calculate_document_weight(entity, NOW) == 15

    def test_invalid_numbers_are_ignored(self):
        assert calculate_document_weight({"view_count": "lots", "average_rating": None}, NOW) == 1.0


class TestUserWeight:
    """Test user weighting"""

    def test_instructor_with_complete_profile(self):
        user = {
            "role": "instructor",
            "last_login_at": NOW - timedelta(days=1),
            "profile": {"bio": "Teacher", "skills": ["python"], "location": "Lisbon"},
        }
        assert calculate_user_weight(user, NOW) == 7.5

    def test_capped_at_ten(self):
        assert calculate_user_weight({"role": "admin"}, NOW) <= 10


class TestDocumentTransformer:
    """Test entity to document mapping"""

    def setup_method(self):
        self.transformer = DocumentTransformer()

    def test_course_document(self):
        course = {
            "id": 42,
            "title": "JavaScript Basics",
            "description": "Learn JS",
            "category": "programming",
            "instructor": {"first_name": "Ada", "last_name": "Lovelace"},
            "is_published": True,
            "tags": ["js"],
            "created_at": "2024-05-30T10:00:00Z",
        }
        document = self.transformer.transform(course, SearchIndexType.COURSES, now=NOW)

        assert document["id"] == "42"
        assert document["instructor"] == "Ada Lovelace"
        assert document["language"] == "english"
        assert document["created_at"] == "2024-05-30T10:00:00"
        assert document["weight"] == 6.0
        assert document["suggest"]["input"] == ["JavaScript Basics", "programming", "js", "Ada Lovelace"]
        assert isinstance(document["suggest"]["weight"], int)

    def test_content_document_keeps_course_reference(self):
        content = {"id": "c1", "title": "Closures", "course": {"id": "42", "title": "JavaScript Basics"}}
        document = self.transformer.transform(content, SearchIndexType.CONTENT, now=NOW)

        assert document["course_id"] == "42"
        assert document["course_title"] == "JavaScript Basics"

    def test_user_document(self):
        user = {"id": "u1", "first_name": "Grace", "last_name": "Hopper", "email": "grace@example.com"}
        document = self.transformer.transform(user, SearchIndexType.USERS, now=NOW)

        assert document["full_name"] == "Grace Hopper"
        assert document["title"] == "Grace Hopper"
        assert "grace@example.com" in document["suggest"]["input"]

    def test_transform_many_uses_one_reference_time(self):
        documents = self.transformer.transform_many([{"id": 1}, {"id": 2}], SearchIndexType.DOCUMENTS, now=NOW)
        assert [document["id"] for document in documents] == ["1", "2"]
