"""
Index Registry
CRUD over search index metadata and the one-active-index-per-type invariant
"""

import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..database.models import SearchIndex
from ..models.indexing import CreateIndexRequest
from ..models.search import SearchIndexType
from .backend import SearchBackend
from .config import SearchConfig
from .mappings import get_default_mapping, get_default_settings

logger = logging.getLogger(__name__)


class IndexNotFoundError(LookupError):
    pass


class IndexAlreadyExistsError(ValueError):
    pass


class IndexRegistry:
    """Owns SearchIndex rows and their physical counterparts in the backend"""

    def __init__(self, db_session: Session, backend: SearchBackend):
        self.db = db_session
        self.backend = backend

    @staticmethod
    def _new_physical_name(organization_id: str, index_type: str) -> str:
        suffix = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"
        return SearchConfig.physical_index_name(organization_id, index_type, suffix)

    def create_index(self, request: CreateIndexRequest) -> SearchIndex:
        """
        Create the active index for an organization and type, with its alias

        Raises:
            IndexAlreadyExistsError: an active index already exists for the pair
        """
        index_type = SearchIndexType(request.index_type).value
        existing = self.get_active_index(request.organization_id, index_type)
        if existing is not None:
            raise IndexAlreadyExistsError(
                f"Active {index_type} index already exists for organization {request.organization_id}"
            )

        index_name = self._new_physical_name(request.organization_id, index_type)
        alias_name = SearchConfig.alias_name(request.organization_id, index_type)
        mapping = request.mapping or get_default_mapping(index_type)
        settings = request.settings or get_default_settings()

        self.backend.create_index(index_name, mapping, settings)
        try:
            self.backend.put_alias(index_name, alias_name)

            configuration: Dict[str, Any] = {"settings": settings, "is_realtime_sync": request.is_realtime_sync}
            if request.batch_size:
                configuration["batch_size"] = request.batch_size

            search_index = SearchIndex(
                organization_id=request.organization_id,
                index_type=index_type,
                index_name=index_name,
                alias_name=alias_name,
                mapping=mapping,
                configuration=configuration,
                is_active=True,
                is_realtime_sync=request.is_realtime_sync,
                document_count=0,
                sync_stats={},
            )
            self.db.add(search_index)
            self.db.commit()
            self.db.refresh(search_index)
        except Exception:
            self.db.rollback()
            self.backend.delete_index(index_name)
            raise

        logger.info(f"Created search index {index_name} (alias {alias_name}) for organization {request.organization_id}")
        return search_index

    def provision_index(self, source: SearchIndex, mapping: Optional[Dict[str, Any]] = None,
                        settings: Optional[Dict[str, Any]] = None) -> SearchIndex:
        """Create an inactive, unaliased sibling of an index, used as a reindex target"""
        index_name = self._new_physical_name(source.organization_id, source.index_type)
        configuration = dict(source.configuration or {})
        mapping = mapping or source.mapping or get_default_mapping(source.index_type)
        settings = settings or configuration.get("settings") or get_default_settings()
        configuration["settings"] = settings

        self.backend.create_index(index_name, mapping, settings)
        try:
            target = SearchIndex(
                organization_id=source.organization_id,
                index_type=source.index_type,
                index_name=index_name,
                alias_name=source.alias_name,
                mapping=mapping,
                configuration=configuration,
                is_active=False,
                is_realtime_sync=source.is_realtime_sync,
                document_count=0,
                sync_stats={},
            )
            self.db.add(target)
            self.db.commit()
            self.db.refresh(target)
        except Exception:
            self.db.rollback()
            self.backend.delete_index(index_name)
            raise

        logger.info(f"Provisioned index {index_name} for alias {source.alias_name}")
        return target

    def discard_index(self, search_index: SearchIndex) -> None:
        """Drop an inactive index row and its physical index"""
        if search_index.is_active:
            raise ValueError(f"Refusing to discard active index {search_index.index_name}")
        self.backend.delete_index(search_index.index_name)
        self.db.delete(search_index)
        self.db.commit()
        logger.info(f"Discarded index {search_index.index_name}")

    def get_index(self, index_id: str) -> Optional[SearchIndex]:
        return self.db.query(SearchIndex).filter(SearchIndex.id == index_id).first()

    def require_index(self, index_id: str) -> SearchIndex:
        search_index = self.get_index(index_id)
        if search_index is None:
            raise IndexNotFoundError(f"Search index {index_id} not found")
        return search_index

    def get_active_index(self, organization_id: str, index_type: str) -> Optional[SearchIndex]:
        return self.db.query(SearchIndex).filter(
            SearchIndex.organization_id == organization_id,
            SearchIndex.index_type == SearchIndexType(index_type).value,
            SearchIndex.is_active.is_(True),
        ).first()

    def require_active_index(self, organization_id: str, index_type: str) -> SearchIndex:
        search_index = self.get_active_index(organization_id, index_type)
        if search_index is None:
            raise IndexNotFoundError(
                f"No active {SearchIndexType(index_type).value} index for organization {organization_id}"
            )
        return search_index

    def get_active_indices(self, organization_id: str, index_types: Optional[List[str]] = None) -> List[SearchIndex]:
        query = self.db.query(SearchIndex).filter(
            SearchIndex.organization_id == organization_id,
            SearchIndex.is_active.is_(True),
        )
        if index_types:
            query = query.filter(SearchIndex.index_type.in_([SearchIndexType(t).value for t in index_types]))
        return query.order_by(SearchIndex.index_type).all()

    def list_indices(self, organization_id: Optional[str] = None, active_only: bool = True) -> List[SearchIndex]:
        query = self.db.query(SearchIndex)
        if organization_id:
            query = query.filter(SearchIndex.organization_id == organization_id)
        if active_only:
            query = query.filter(SearchIndex.is_active.is_(True))
        return query.order_by(SearchIndex.created_at).all()

    def get_organization_ids(self) -> List[str]:
        """Organizations that own at least one active index"""
        rows = self.db.query(SearchIndex.organization_id).filter(
            SearchIndex.is_active.is_(True)
        ).distinct().all()
        return [row[0] for row in rows]
