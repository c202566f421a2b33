"""
Domain entity sources
Read access to the LMS tables that feed each index type
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

from ..models.search import SearchIndexType


class DocumentSource(ABC):
    """Paginated access to the entities behind an index type"""

    @abstractmethod
    def count(self, organization_id: str, index_type: SearchIndexType) -> int:
        pass

    @abstractmethod
    def fetch_batch(self, organization_id: str, index_type: SearchIndexType,
                    offset: int, limit: int) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def fetch_by_ids(self, organization_id: str, index_type: SearchIndexType,
                     ids: List[str]) -> List[Dict[str, Any]]:
        pass


class TableDocumentSource(DocumentSource):
    """
    Reads entities straight from the LMS database tables

    Each index type maps to one table carrying an organization_id column; rows are
    returned as plain dicts in stable id order so offsets page deterministically.
    """

    DEFAULT_TABLES = {
        SearchIndexType.COURSES: "courses",
        SearchIndexType.CONTENT: "contents",
        SearchIndexType.USERS: "users",
        SearchIndexType.ASSESSMENTS: "assessments",
        SearchIndexType.FORUMS: "forum_posts",
        SearchIndexType.VIDEOS: "videos",
        SearchIndexType.DOCUMENTS: "documents",
    }

    def __init__(self, db_session: Session, tables: Optional[Dict[SearchIndexType, str]] = None):
        self.db = db_session
        self.tables = dict(self.DEFAULT_TABLES)
        if tables:
            self.tables.update({SearchIndexType(k): v for k, v in tables.items()})

    def _table(self, index_type: SearchIndexType) -> str:
        table = self.tables.get(SearchIndexType(index_type))
        if not table or not table.replace("_", "").isalnum():
            raise ValueError(f"No source table configured for {index_type}")
        return table

    def count(self, organization_id: str, index_type: SearchIndexType) -> int:
        statement = text(f"SELECT COUNT(*) FROM {self._table(index_type)} WHERE organization_id = :org")
        return int(self.db.execute(statement, {"org": organization_id}).scalar() or 0)

    def fetch_batch(self, organization_id: str, index_type: SearchIndexType,
                    offset: int, limit: int) -> List[Dict[str, Any]]:
        statement = text(
            f"SELECT * FROM {self._table(index_type)} WHERE organization_id = :org "
            f"ORDER BY id LIMIT :limit OFFSET :offset"
        )
        rows = self.db.execute(statement, {"org": organization_id, "limit": limit, "offset": offset})
        return [dict(row._mapping) for row in rows]

    def fetch_by_ids(self, organization_id: str, index_type: SearchIndexType,
                     ids: List[str]) -> List[Dict[str, Any]]:
        if not ids:
            return []
        statement = text(
            f"SELECT * FROM {self._table(index_type)} WHERE organization_id = :org AND id IN :ids"
        ).bindparams(bindparam("ids", expanding=True))
        rows = self.db.execute(statement, {"org": organization_id, "ids": list(ids)})
        return [dict(row._mapping) for row in rows]
