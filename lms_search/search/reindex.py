"""
Reindex Orchestrator
Copies an index into a new physical index and swaps the alias without downtime
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..cache.manager import CacheManager
from ..database.models import SearchIndex
from .backend import BackendError, SearchBackend, TaskNotFound
from .config import SearchConfig
from .indexer import index_lock_name
from .registry import IndexRegistry

logger = logging.getLogger(__name__)


class ReindexState(str, Enum):
    CREATED = "created"
    COPYING = "copying"
    MONITORING = "monitoring"
    SWAPPING = "swapping"
    CLEANUP = "cleanup"
    COMPLETED = "completed"
    COPY_FAILED = "copy_failed"
    TIMEOUT = "timeout"


class ReindexError(Exception):
    """Reindex aborted; the original index is still behind the alias"""

    def __init__(self, message: str, state: ReindexState):
        super().__init__(message)
        self.state = state


class ReindexFailed(ReindexError):
    pass


class ReindexTimeout(ReindexError):
    pass


@dataclass
class ReindexOutcome:
    source_index: str
    target_index: str
    alias: str
    task_id: Optional[str]
    state: ReindexState
    document_count: int = 0
    duration_ms: int = 0


class ReindexOrchestrator:
    """
    Drives created -> copying -> monitoring -> swapping -> cleanup -> completed

    The alias is only touched by a single update_aliases call, so readers see
    either the old or the new index. Anything that fails before that call leaves
    the alias and the registry as they were.
    """

    def __init__(self, db_session: Session, backend: SearchBackend, cache_manager: CacheManager,
                 poll_interval: Optional[float] = None, max_wait: Optional[float] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.db = db_session
        self.backend = backend
        self.cache = cache_manager
        self.registry = IndexRegistry(db_session, backend)
        self.poll_interval = SearchConfig.REINDEX_POLL_INTERVAL if poll_interval is None else poll_interval
        self.max_wait = SearchConfig.REINDEX_MAX_WAIT if max_wait is None else max_wait
        self.cancel_event = cancel_event or threading.Event()
        self.state = ReindexState.CREATED

    def reindex(self, index_id: str, mapping: Optional[Dict[str, Any]] = None,
                settings: Optional[Dict[str, Any]] = None, target_index_id: Optional[str] = None,
                progress: Optional[Callable[[int], None]] = None) -> ReindexOutcome:
        """
        Reindex the active index into a fresh physical index and move the alias

        Args:
            index_id: Active index to copy from
            mapping: Target mapping, defaults to the source mapping
            settings: Target settings, defaults to the source settings
            target_index_id: Existing inactive index to copy into instead of provisioning one
            progress: Called with monotonic percent progress

        Raises:
            ReindexFailed: copy failed, was cancelled, or the swap was rejected
            ReindexTimeout: copy did not finish within the ceiling
        """
        started = time.time()
        reported = [0]

        def report(percent: int) -> None:
            if progress and percent > reported[0]:
                reported[0] = percent
                progress(percent)

        source = self.registry.require_index(index_id)
        if not source.is_active:
            raise ReindexFailed(f"Index {source.index_name} is not active", ReindexState.CREATED)

        with self.cache.lock(index_lock_name(source.organization_id, source.index_type)):
            alias = source.alias_name
            provisioned = target_index_id is None
            target = self._prepare_target(source, mapping, settings, target_index_id)
            self._transition(ReindexState.CREATED, source, target)
            report(5)

            try:
                self._transition(ReindexState.COPYING, source, target)
                task_id = self.backend.start_reindex(source.index_name, target.index_name)
                report(10)

                self._transition(ReindexState.MONITORING, source, target)
                self._monitor(task_id, lambda fraction: report(10 + int(fraction * 80)))

                self._transition(ReindexState.SWAPPING, source, target)
                self.backend.update_aliases(
                    remove={"index": source.index_name, "alias": alias},
                    add={"index": target.index_name, "alias": alias},
                )
                report(95)
            except ReindexError as e:
                self.state = e.state
                self._abandon(target, provisioned)
                raise
            except Exception as e:
                failed_state = self.state
                self.state = ReindexState.COPY_FAILED
                self._abandon(target, provisioned)
                raise ReindexFailed(f"Reindex failed while {failed_state.value}: {e}", ReindexState.COPY_FAILED) from e

            self._transition(ReindexState.CLEANUP, source, target)
            document_count = self._activate(source, target)
            self._delete_old_index(source.index_name)

            self._transition(ReindexState.COMPLETED, source, target)
            report(100)

        duration_ms = int((time.time() - started) * 1000)
        logger.info(f"Reindex of {alias} completed in {duration_ms}ms, {document_count} documents")
        return ReindexOutcome(
            source_index=source.index_name,
            target_index=target.index_name,
            alias=alias,
            task_id=task_id,
            state=ReindexState.COMPLETED,
            document_count=document_count,
            duration_ms=duration_ms,
        )

    def _transition(self, state: ReindexState, source: SearchIndex, target: SearchIndex) -> None:
        self.state = state
        logger.info(f"Reindex {source.index_name} -> {target.index_name}: {state.value}")

    def _prepare_target(self, source: SearchIndex, mapping, settings, target_index_id) -> SearchIndex:
        if target_index_id is None:
            try:
                return self.registry.provision_index(source, mapping, settings)
            except Exception as e:
                self.state = ReindexState.COPY_FAILED
                raise ReindexFailed(f"Could not provision target index: {e}", ReindexState.COPY_FAILED) from e

        target = self.registry.require_index(target_index_id)
        if target.is_active or target.organization_id != source.organization_id \
                or target.index_type != source.index_type:
            raise ReindexFailed(
                f"Index {target.index_name} cannot be a reindex target for {source.index_name}",
                ReindexState.CREATED,
            )
        return target

    def _monitor(self, task_id: str, progress: Callable[[float], None]) -> None:
        """Poll the copy task until it finishes, fails, times out or is cancelled"""
        deadline = time.monotonic() + self.max_wait

        while True:
            if self.cancel_event.is_set():
                raise ReindexFailed(f"Reindex task {task_id} cancelled", ReindexState.COPY_FAILED)

            try:
                status = self.backend.get_task_status(task_id)
            except TaskNotFound:
                logger.info(f"Reindex task {task_id} no longer tracked by backend, treating as completed")
                return
            except Exception as e:
                raise ReindexFailed(f"Could not read status of task {task_id}: {e}", ReindexState.COPY_FAILED) from e

            if status.failures or status.error:
                detail = status.error or f"{len(status.failures)} document failures"
                raise ReindexFailed(f"Reindex task {task_id} failed: {detail}", ReindexState.COPY_FAILED)

            progress(status.progress)
            if status.completed:
                return

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ReindexTimeout(
                    f"Reindex task {task_id} did not finish within {self.max_wait}s", ReindexState.TIMEOUT
                )
            if self.cancel_event.wait(min(self.poll_interval, remaining)):
                raise ReindexFailed(f"Reindex task {task_id} cancelled", ReindexState.COPY_FAILED)

    def _abandon(self, target: SearchIndex, provisioned: bool) -> None:
        """Remove a target index this run created; the alias was never moved"""
        self.db.rollback()
        if not provisioned:
            return
        try:
            self.registry.discard_index(target)
        except Exception as e:
            logger.error(f"Could not remove abandoned reindex target {target.index_name}: {e}")

    def _activate(self, source: SearchIndex, target: SearchIndex) -> int:
        """Flip registry rows after the alias has moved"""
        document_count = None
        try:
            document_count = self.backend.count(target.alias_name)
        except BackendError as e:
            logger.error(f"Could not count {target.alias_name} after swap, keeping the stored count until the next full sync: {e}")

        try:
            source.is_active = False
            self.db.flush()
            target.is_active = True
            if document_count is not None:
                target.document_count = document_count
            target.last_synced_at = datetime.utcnow()
            target.sync_stats = dict(source.sync_stats or {})
            self.db.commit()
        except SQLAlchemyError as e:
            # Alias already points at the target; the old index is kept
            self.db.rollback()
            logger.error(f"Registry update failed after swapping to {target.index_name}: {e}")
            raise
        return target.document_count or 0

    def _delete_old_index(self, index_name: str) -> None:
        try:
            self.backend.delete_index(index_name)
        except BackendError as e:
            logger.error(f"Old index {index_name} could not be deleted after reindex: {e}")
