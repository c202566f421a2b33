"""
Shared fixtures: an in-memory SQLite database, an in-memory search backend and a Redis-less cache
"""
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lms_search.cache.manager import CacheManager
from lms_search.database.models import Base
from lms_search.search.backend import (
    BackendSearchResult, BulkItemError, BulkResult, ResourceNotFound, SearchBackend, TaskStatus
)


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


class FakeBackend(SearchBackend):
    """In-memory search backend with aliases, per-item bulk rejections and scripted reindex tasks"""

    def __init__(self):
        self.indices: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.aliases: Dict[str, List[str]] = {}
        self.search_result: Optional[BackendSearchResult] = None
        self.search_error: Optional[Exception] = None
        self.task_statuses: List[Any] = []
        self.alias_updates: List[Dict[str, Dict[str, str]]] = []
        self.optimized: List[str] = []
        self.search_calls: List[Dict[str, Any]] = []
        self.rejected_ids: Dict[str, str] = {}

    def _resolve(self, name: str) -> List[str]:
        if name in self.aliases:
            return list(self.aliases[name])
        if name in self.indices:
            return [name]
        raise ResourceNotFound(f"no such index [{name}]")

    def _write_target(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self.indices[self._resolve(name)[0]]

    def create_index(self, name, mapping, settings):
        self.indices[name] = {}

    def put_alias(self, index, alias):
        self.aliases.setdefault(alias, []).append(index)

    def get_alias_targets(self, alias):
        return list(self.aliases.get(alias, []))

    def bulk(self, index, operations):
        result = BulkResult()
        documents = self._write_target(index)
        for operation in operations:
            if operation["id"] in self.rejected_ids:
                result.failed += 1
                reason = self.rejected_ids[operation["id"]]
                result.errors.append(BulkItemError(document_id=operation["id"], error=reason))
                continue
            if operation["op"] == "delete":
                documents.pop(operation["id"], None)
            else:
                documents[operation["id"]] = operation["document"]
            result.successful += 1
        return result

    def index_doc(self, index, doc_id, body):
        self._write_target(index)[doc_id] = body

    def update_doc(self, index, doc_id, body):
        documents = self._write_target(index)
        documents[doc_id] = {**documents.get(doc_id, {}), **body}

    def delete_doc(self, index, doc_id):
        return self._write_target(index).pop(doc_id, None) is not None

    def count(self, alias):
        return sum(len(self.indices[name]) for name in self._resolve(alias))

    def search(self, indices, body):
        self.search_calls.append({"indices": indices, "body": body})
        if self.search_error is not None:
            raise self.search_error
        return self.search_result or BackendSearchResult(hits=[], total=0)

    def forcemerge(self, alias, max_num_segments=1):
        self.optimized.append(alias)

    def clear_cache(self, alias):
        pass

    def start_reindex(self, source, destination):
        self.indices[destination] = dict(self.indices[source])
        return "task-1"

    def get_task_status(self, task_id):
        status = self.task_statuses.pop(0) if self.task_statuses else TaskStatus(completed=True)
        if isinstance(status, Exception):
            raise status
        return status

    def update_aliases(self, remove, add):
        self.alias_updates.append({"remove": remove, "add": add})
        targets = self.aliases.setdefault(add["alias"], [])
        if remove["index"] in targets:
            targets.remove(remove["index"])
        targets.append(add["index"])

    def delete_index(self, name):
        existed = self.indices.pop(name, None) is not None
        for targets in self.aliases.values():
            if name in targets:
                targets.remove(name)
        return existed


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def cache_manager():
    """Cache manager without Redis: no caching, process-local locks"""
    return CacheManager(None)
