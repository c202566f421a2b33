"""
Indexing job handlers
Full and incremental syncs, suggestion updates, index optimization and reindexing
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..cache.manager import CacheManager
from ..models.indexing import IndexOperation
from ..search.backend import SearchBackend
from ..search.indexer import IndexingPipeline
from ..search.reindex import ReindexOrchestrator
from ..search.sources import TableDocumentSource
from ..services.maintenance import MaintenanceService
from ..services.suggestions import SuggestionService
from .queue import (
    FULL_SYNC, INCREMENTAL_SYNC, OPTIMIZE_INDICES, REINDEX, UPDATE_SUGGESTIONS, Job, JobHandler, JobQueue
)

logger = logging.getLogger(__name__)


class IndexingJobHandler:
    """Runs indexing jobs, each in its own database session"""

    def __init__(self, session_factory: Callable[[], Session], backend: SearchBackend,
                 cache_manager: CacheManager, queue: JobQueue,
                 cancel_event: Optional[threading.Event] = None):
        self.session_factory = session_factory
        self.backend = backend
        self.cache = cache_manager
        self.queue = queue
        self.cancel_event = cancel_event or threading.Event()

    def handlers(self) -> Dict[str, JobHandler]:
        return {
            FULL_SYNC: self.full_sync,
            INCREMENTAL_SYNC: self.incremental_sync,
            UPDATE_SUGGESTIONS: self.update_suggestions,
            OPTIMIZE_INDICES: self.optimize_indices,
            REINDEX: self.reindex,
        }

    @contextmanager
    def _session(self):
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def _progress(self, job: Job) -> Callable[[int], None]:
        return lambda percent: self.queue.report_progress(job.id, percent)

    def _pipeline(self, db: Session) -> IndexingPipeline:
        return IndexingPipeline(db, self.backend, self.cache, source=TableDocumentSource(db))

    def full_sync(self, job: Job) -> Dict[str, Any]:
        with self._session() as db:
            stats = self._pipeline(db).full_sync(job.payload["index_id"], progress=self._progress(job))
            return stats.model_dump(mode="json")

    def incremental_sync(self, job: Job) -> Dict[str, Any]:
        payload = job.payload
        with self._session() as db:
            result = self._pipeline(db).incremental_sync(
                payload["organization_id"],
                payload["index_type"],
                [str(doc_id) for doc_id in payload.get("document_ids", [])],
                IndexOperation(payload.get("operation", IndexOperation.INDEX.value)),
            )
            return result.model_dump(mode="json")

    def update_suggestions(self, job: Job) -> Optional[str]:
        payload = job.payload
        with self._session() as db:
            suggestion = SuggestionService(db, self.cache).record_query(
                payload["organization_id"], payload.get("query", ""), bool(payload.get("has_results")),
            )
            return suggestion.id if suggestion else None

    def optimize_indices(self, job: Job) -> Dict[str, bool]:
        with self._session() as db:
            return MaintenanceService(db, self.backend, self.queue).optimize_indices(
                job.payload.get("organization_id")
            )

    def reindex(self, job: Job) -> Dict[str, Any]:
        payload = job.payload
        with self._session() as db:
            orchestrator = ReindexOrchestrator(db, self.backend, self.cache, cancel_event=self.cancel_event)
            outcome = orchestrator.reindex(
                payload["index_id"],
                mapping=payload.get("mapping"),
                settings=payload.get("settings"),
                target_index_id=payload.get("target_index_id"),
                progress=self._progress(job),
            )
            logger.info(f"Reindex job {job.id} moved {outcome.alias} to {outcome.target_index}")
            return {
                "source_index": outcome.source_index,
                "target_index": outcome.target_index,
                "alias": outcome.alias,
                "task_id": outcome.task_id,
                "state": outcome.state.value,
                "document_count": outcome.document_count,
                "duration_ms": outcome.duration_ms,
            }
