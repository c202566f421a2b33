"""
Tests for zero-downtime reindexing
"""
import threading

import pytest

from lms_search.models.indexing import CreateIndexRequest, IndexingRequest
from lms_search.search.backend import BackendError, TaskNotFound, TaskStatus
from lms_search.search.indexer import IndexingPipeline
from lms_search.search.registry import IndexRegistry
from lms_search.search.reindex import (
    ReindexFailed, ReindexOrchestrator, ReindexState, ReindexTimeout
)


class TestReindexOrchestrator:
    """Test the copy, swap and cleanup sequence"""

    @pytest.fixture
    def source_index(self, db_session, backend, cache_manager):
        search_index = IndexRegistry(db_session, backend).create_index(
            CreateIndexRequest(organization_id="org-1", index_type="courses")
        )
        IndexingPipeline(db_session, backend, cache_manager).index_documents(IndexingRequest(
            organization_id="org-1", index_type="courses",
            documents=[{"id": f"course-{i}", "title": f"Course {i}"} for i in range(4)],
        ))
        return search_index

    def make_orchestrator(self, db_session, backend, cache_manager, **kwargs):
        kwargs.setdefault("poll_interval", 0)
        return ReindexOrchestrator(db_session, backend, cache_manager, **kwargs)

    def test_successful_reindex_moves_alias(self, db_session, backend, cache_manager, source_index):
        old_name = source_index.index_name
        backend.task_statuses = [
            TaskStatus(completed=False, total=4, created=2),
            TaskStatus(completed=True, total=4, created=4),
        ]
        progress = []
        orchestrator = self.make_orchestrator(db_session, backend, cache_manager)

        outcome = orchestrator.reindex(source_index.id, progress=progress.append)

        assert outcome.state == ReindexState.COMPLETED
        assert outcome.document_count == 4
        assert backend.get_alias_targets("org-1-courses") == [outcome.target_index]
        assert old_name not in backend.indices
        assert len(backend.alias_updates) == 1
        assert progress == sorted(progress)
        assert progress[-1] == 100

        registry = IndexRegistry(db_session, backend)
        active = registry.require_active_index("org-1", "courses")
        assert active.index_name == outcome.target_index
        assert active.document_count == 4
        db_session.refresh(source_index)
        assert not source_index.is_active

    def test_failed_copy_keeps_alias_on_original(self, db_session, backend, cache_manager, source_index):
        old_name = source_index.index_name
        backend.task_statuses = [TaskStatus(completed=True, total=4, created=3, failures=[{"id": "course-3"}])]
        orchestrator = self.make_orchestrator(db_session, backend, cache_manager)

        with pytest.raises(ReindexFailed) as exc_info:
            orchestrator.reindex(source_index.id)

        assert exc_info.value.state == ReindexState.COPY_FAILED
        assert backend.get_alias_targets("org-1-courses") == [old_name]
        assert backend.alias_updates == []
        assert list(backend.indices) == [old_name]

        registry = IndexRegistry(db_session, backend)
        assert registry.require_active_index("org-1", "courses").id == source_index.id
        assert len(registry.list_indices("org-1", active_only=False)) == 1

    def test_task_not_found_counts_as_completed(self, db_session, backend, cache_manager, source_index):
        backend.task_statuses = [TaskNotFound("task-1 missing")]
        orchestrator = self.make_orchestrator(db_session, backend, cache_manager)

        outcome = orchestrator.reindex(source_index.id)

        assert outcome.state == ReindexState.COMPLETED

    def test_status_error_fails_reindex(self, db_session, backend, cache_manager, source_index):
        backend.task_statuses = [BackendError("tasks api down")]
        orchestrator = self.make_orchestrator(db_session, backend, cache_manager)

        with pytest.raises(ReindexFailed):
            orchestrator.reindex(source_index.id)
        assert backend.get_alias_targets("org-1-courses") == [source_index.index_name]

    def test_timeout(self, db_session, backend, cache_manager, source_index):
        backend.task_statuses = [TaskStatus(completed=False, total=4)] * 5
        orchestrator = self.make_orchestrator(db_session, backend, cache_manager, max_wait=0)

        with pytest.raises(ReindexTimeout) as exc_info:
            orchestrator.reindex(source_index.id)

        assert exc_info.value.state == ReindexState.TIMEOUT
        assert backend.get_alias_targets("org-1-courses") == [source_index.index_name]

    def test_cancellation(self, db_session, backend, cache_manager, source_index):
        cancel_event = threading.Event()
        cancel_event.set()
        orchestrator = self.make_orchestrator(db_session, backend, cache_manager, cancel_event=cancel_event)

        with pytest.raises(ReindexFailed):
            orchestrator.reindex(source_index.id)
        assert backend.alias_updates == []

    def test_rejected_swap_keeps_original(self, db_session, backend, cache_manager, source_index):
        def reject(remove, add):
            raise BackendError("alias update rejected")

        backend.update_aliases = reject
        orchestrator = self.make_orchestrator(db_session, backend, cache_manager)

        with pytest.raises(ReindexFailed):
            orchestrator.reindex(source_index.id)

        registry = IndexRegistry(db_session, backend)
        assert registry.require_active_index("org-1", "courses").id == source_index.id
        assert list(backend.indices) == [source_index.index_name]

    def test_count_failure_after_swap_keeps_target_count(self, db_session, backend, cache_manager, source_index):
        def unavailable(alias):
            raise BackendError("count timed out")

        backend.count = unavailable
        orchestrator = self.make_orchestrator(db_session, backend, cache_manager)

        outcome = orchestrator.reindex(source_index.id)

        assert outcome.state == ReindexState.COMPLETED
        assert backend.get_alias_targets("org-1-courses") == [outcome.target_index]
        active = IndexRegistry(db_session, backend).require_active_index("org-1", "courses")
        assert active.index_name == outcome.target_index
        assert active.document_count == 0
        assert outcome.document_count == 0

    def test_inactive_source_is_rejected(self, db_session, backend, cache_manager, source_index):
        source_index.is_active = False
        db_session.commit()

        with pytest.raises(ReindexFailed):
            self.make_orchestrator(db_session, backend, cache_manager).reindex(source_index.id)
