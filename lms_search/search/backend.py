"""
Search backend client

Provides the abstract backend the indexing, reindex and query paths talk to,
and its Elasticsearch implementation.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from elasticsearch import Elasticsearch, ApiError, NotFoundError, TransportError

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """The search backend rejected a request"""


class BackendUnavailable(BackendError):
    """The search backend could not be reached or is overloaded"""


class ResourceNotFound(BackendError):
    """Index, alias, document or task does not exist"""


class TaskNotFound(ResourceNotFound):
    pass


@dataclass
class BackendHit:
    id: str
    index: str
    score: float
    source: Dict[str, Any]
    highlight: Optional[Dict[str, List[str]]] = None


@dataclass
class BackendSearchResult:
    hits: List[BackendHit]
    total: int
    took: int = 0
    aggregations: Optional[Dict[str, Any]] = None
    suggest: Optional[Dict[str, Any]] = None


@dataclass
class BulkItemError:
    document_id: Optional[str]
    error: str


@dataclass
class BulkResult:
    successful: int = 0
    failed: int = 0
    errors: List[BulkItemError] = field(default_factory=list)


@dataclass
class TaskStatus:
    completed: bool
    total: int = 0
    created: int = 0
    updated: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def progress(self) -> float:
        """Fraction of source documents copied so far"""
        if self.total:
            return min(1.0, (self.created + self.updated) / self.total)
        return 1.0 if self.completed else 0.0


class SearchBackend(ABC):
    """Operations the system needs from a full-text search engine"""

    @abstractmethod
    def create_index(self, name: str, mapping: Dict[str, Any], settings: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def put_alias(self, index: str, alias: str) -> None:
        pass

    @abstractmethod
    def get_alias_targets(self, alias: str) -> List[str]:
        """Physical indices the alias currently resolves to"""

    @abstractmethod
    def bulk(self, index: str, operations: List[Dict[str, Any]]) -> BulkResult:
        """
        Submit a batch of writes in one call

        Args:
            index: Target index or alias
            operations: Items of the form {"op": "index"|"update"|"delete", "id": ..., "document": {...}}

        Returns:
            BulkResult with per-item failures; partial failure does not raise
        """

    @abstractmethod
    def index_doc(self, index: str, doc_id: str, body: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def update_doc(self, index: str, doc_id: str, body: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def delete_doc(self, index: str, doc_id: str) -> bool:
        """Delete a document, returning False when it did not exist"""

    @abstractmethod
    def count(self, alias: str) -> int:
        pass

    @abstractmethod
    def search(self, indices: List[str], body: Dict[str, Any]) -> BackendSearchResult:
        pass

    @abstractmethod
    def forcemerge(self, alias: str, max_num_segments: int = 1) -> None:
        pass

    @abstractmethod
    def clear_cache(self, alias: str) -> None:
        pass

    @abstractmethod
    def start_reindex(self, source: str, destination: str) -> str:
        """Start an asynchronous copy and return the backend task id"""

    @abstractmethod
    def get_task_status(self, task_id: str) -> TaskStatus:
        """Raises TaskNotFound once the backend has forgotten the task"""

    @abstractmethod
    def update_aliases(self, remove: Dict[str, str], add: Dict[str, str]) -> None:
        """Atomically move an alias: both actions are applied in a single request"""

    @abstractmethod
    def delete_index(self, name: str) -> bool:
        pass


def _body(response: Any) -> Dict[str, Any]:
    return getattr(response, "body", response)


class ElasticsearchBackend(SearchBackend):
    """SearchBackend on top of the official Elasticsearch client"""

    def __init__(self, client: Elasticsearch):
        self.client = client

    @contextmanager
    def _call(self, operation: str):
        """Translate client exceptions into backend errors"""
        try:
            yield
        except NotFoundError as e:
            raise ResourceNotFound(f"{operation}: {e}") from e
        except ApiError as e:
            status = getattr(e.meta, "status", None)
            if status in (429, 502, 503, 504):
                raise BackendUnavailable(f"{operation}: {e}") from e
            raise BackendError(f"{operation}: {e}") from e
        except TransportError as e:
            raise BackendUnavailable(f"{operation}: {e}") from e

    def create_index(self, name: str, mapping: Dict[str, Any], settings: Dict[str, Any]) -> None:
        with self._call(f"create index {name}"):
            self.client.indices.create(index=name, mappings=mapping, settings=settings)
        logger.info(f"Created index {name}")

    def put_alias(self, index: str, alias: str) -> None:
        with self._call(f"put alias {alias}"):
            self.client.indices.put_alias(index=index, name=alias)

    def get_alias_targets(self, alias: str) -> List[str]:
        try:
            with self._call(f"get alias {alias}"):
                response = self.client.indices.get_alias(name=alias)
        except ResourceNotFound:
            return []
        return sorted(_body(response).keys())

    def bulk(self, index: str, operations: List[Dict[str, Any]]) -> BulkResult:
        if not operations:
            return BulkResult()

        actions: List[Dict[str, Any]] = []
        for item in operations:
            op = item["op"]
            actions.append({op: {"_index": index, "_id": str(item["id"])}})
            if op == "index":
                actions.append(item["document"])
            elif op == "update":
                actions.append({"doc": item["document"], "doc_as_upsert": True})

        with self._call(f"bulk {index}"):
            response = _body(self.client.bulk(operations=actions))

        result = BulkResult()
        for entry in response.get("items", []):
            op, info = next(iter(entry.items()))
            status = info.get("status", 500)
            if status < 300 or (op == "delete" and status == 404):
                result.successful += 1
                continue
            error = info.get("error") or {}
            reason = error.get("reason") or error.get("type") or f"status {status}"
            result.failed += 1
            result.errors.append(BulkItemError(document_id=info.get("_id"), error=reason))

        if result.failed:
            logger.warning(f"Bulk write to {index}: {result.failed} of {len(operations)} items failed")
        return result

    def index_doc(self, index: str, doc_id: str, body: Dict[str, Any]) -> None:
        with self._call(f"index {index}/{doc_id}"):
            self.client.index(index=index, id=doc_id, document=body)

    def update_doc(self, index: str, doc_id: str, body: Dict[str, Any]) -> None:
        with self._call(f"update {index}/{doc_id}"):
            self.client.update(index=index, id=doc_id, doc=body, doc_as_upsert=True)

    def delete_doc(self, index: str, doc_id: str) -> bool:
        try:
            with self._call(f"delete {index}/{doc_id}"):
                self.client.delete(index=index, id=doc_id)
        except ResourceNotFound:
            return False
        return True

    def count(self, alias: str) -> int:
        with self._call(f"count {alias}"):
            response = _body(self.client.count(index=alias))
        return int(response.get("count", 0))

    def search(self, indices: List[str], body: Dict[str, Any]) -> BackendSearchResult:
        params = dict(body)
        if "from" in params:
            params["from_"] = params.pop("from")

        with self._call(f"search {','.join(indices)}"):
            response = _body(self.client.search(index=",".join(indices), **params))

        hits_section = response.get("hits", {})
        total = hits_section.get("total", 0)
        if isinstance(total, dict):
            total = total.get("value", 0)

        hits = [
            BackendHit(
                id=str(hit.get("_id")),
                index=hit.get("_index", ""),
                score=float(hit.get("_score") or 0.0),
                source=hit.get("_source", {}),
                highlight=hit.get("highlight"),
            )
            for hit in hits_section.get("hits", [])
        ]
        return BackendSearchResult(
            hits=hits,
            total=int(total),
            took=int(response.get("took", 0)),
            aggregations=response.get("aggregations"),
            suggest=response.get("suggest"),
        )

    def forcemerge(self, alias: str, max_num_segments: int = 1) -> None:
        with self._call(f"forcemerge {alias}"):
            self.client.indices.forcemerge(index=alias, max_num_segments=max_num_segments)

    def clear_cache(self, alias: str) -> None:
        with self._call(f"clear cache {alias}"):
            self.client.indices.clear_cache(index=alias)

    def start_reindex(self, source: str, destination: str) -> str:
        with self._call(f"reindex {source} -> {destination}"):
            response = _body(self.client.reindex(
                source={"index": source},
                dest={"index": destination},
                wait_for_completion=False,
            ))
        task_id = response.get("task")
        if not task_id:
            raise BackendError(f"Reindex {source} -> {destination} returned no task id")
        return task_id

    def get_task_status(self, task_id: str) -> TaskStatus:
        try:
            with self._call(f"task {task_id}"):
                response = _body(self.client.tasks.get(task_id=task_id))
        except ResourceNotFound as e:
            raise TaskNotFound(str(e)) from e

        status = response.get("task", {}).get("status", {})
        task_response = response.get("response") or {}
        error = response.get("error")
        return TaskStatus(
            completed=bool(response.get("completed")),
            total=int(status.get("total", 0)),
            created=int(status.get("created", 0)),
            updated=int(status.get("updated", 0)),
            failures=list(task_response.get("failures", [])),
            error=(error.get("reason") or error.get("type")) if error else None,
        )

    def update_aliases(self, remove: Dict[str, str], add: Dict[str, str]) -> None:
        with self._call(f"swap alias {add.get('alias')}"):
            self.client.indices.update_aliases(actions=[{"remove": remove}, {"add": add}])
        logger.info(f"Alias {add.get('alias')} moved from {remove.get('index')} to {add.get('index')}")

    def delete_index(self, name: str) -> bool:
        try:
            with self._call(f"delete index {name}"):
                self.client.indices.delete(index=name)
        except ResourceNotFound:
            return False
        logger.info(f"Deleted index {name}")
        return True
