"""
Tests for the index registry and the indexing pipeline
"""
from unittest.mock import Mock

import pytest

from lms_search.models.indexing import CreateIndexRequest, IndexingRequest, IndexOperation
from lms_search.search.backend import BackendError, BackendUnavailable
from lms_search.search.indexer import IndexingPipeline
from lms_search.search.registry import IndexAlreadyExistsError, IndexNotFoundError, IndexRegistry
from lms_search.search.sources import DocumentSource


def make_courses(count, start=0):
    return [
        {"id": f"course-{i}", "title": f"Course {i}", "category": "programming", "is_published": True}
        for i in range(start, start + count)
    ]


class TestIndexRegistry:
    """Test index creation and lookup"""

    def test_create_index(self, db_session, backend):
        registry = IndexRegistry(db_session, backend)
        search_index = registry.create_index(CreateIndexRequest(organization_id="org-1", index_type="courses"))

        assert search_index.is_active
        assert search_index.alias_name == "org-1-courses"
        assert search_index.index_name.startswith("org-1-courses-")
        assert backend.get_alias_targets("org-1-courses") == [search_index.index_name]
        assert registry.require_active_index("org-1", "courses").id == search_index.id

    def test_second_active_index_is_rejected(self, db_session, backend):
        registry = IndexRegistry(db_session, backend)
        registry.create_index(CreateIndexRequest(organization_id="org-1", index_type="courses"))

        with pytest.raises(IndexAlreadyExistsError):
            registry.create_index(CreateIndexRequest(organization_id="org-1", index_type="courses"))

    def test_backend_index_removed_when_alias_fails(self, db_session, backend):
        backend.put_alias = Mock(side_effect=BackendError("alias rejected"))
        registry = IndexRegistry(db_session, backend)

        with pytest.raises(BackendError):
            registry.create_index(CreateIndexRequest(organization_id="org-1", index_type="courses"))

        assert backend.indices == {}
        assert registry.list_indices("org-1") == []

    def test_missing_index(self, db_session, backend):
        registry = IndexRegistry(db_session, backend)
        with pytest.raises(IndexNotFoundError):
            registry.require_active_index("org-1", "users")
        with pytest.raises(IndexNotFoundError):
            registry.require_index("missing")

    def test_active_indices_and_organizations(self, db_session, backend):
        registry = IndexRegistry(db_session, backend)
        registry.create_index(CreateIndexRequest(organization_id="org-1", index_type="courses"))
        registry.create_index(CreateIndexRequest(organization_id="org-1", index_type="content"))
        registry.create_index(CreateIndexRequest(organization_id="org-2", index_type="users"))

        assert [i.index_type for i in registry.get_active_indices("org-1")] == ["content", "courses"]
        assert [i.index_type for i in registry.get_active_indices("org-1", ["courses"])] == ["courses"]
        assert sorted(registry.get_organization_ids()) == ["org-1", "org-2"]


class TestIndexingPipeline:
    """Test document writes and document count bookkeeping"""

    @pytest.fixture
    def search_index(self, db_session, backend):
        return IndexRegistry(db_session, backend).create_index(
            CreateIndexRequest(organization_id="org-1", index_type="courses", batch_size=2)
        )

    def test_bulk_index_resyncs_document_count(self, db_session, backend, cache_manager, search_index):
        pipeline = IndexingPipeline(db_session, backend, cache_manager)
        result = pipeline.index_documents(IndexingRequest(
            organization_id="org-1", index_type="courses", documents=make_courses(5),
        ))

        assert result.successful == 5
        assert result.failed == 0
        assert result.document_count == backend.count("org-1-courses") == 5
        db_session.refresh(search_index)
        assert search_index.document_count == 5

    def test_bulk_index_is_idempotent(self, db_session, backend, cache_manager, search_index):
        pipeline = IndexingPipeline(db_session, backend, cache_manager)
        request = IndexingRequest(organization_id="org-1", index_type="courses", documents=make_courses(3))

        pipeline.index_documents(request)
        result = pipeline.index_documents(request)

        assert result.document_count == 3

    def test_bulk_index_is_chunked_by_batch_size(self, db_session, backend, cache_manager, search_index):
        backend.bulk = Mock(wraps=backend.bulk)
        pipeline = IndexingPipeline(db_session, backend, cache_manager)
        pipeline.index_documents(IndexingRequest(
            organization_id="org-1", index_type="courses", documents=make_courses(5),
        ))
        assert backend.bulk.call_count == 3

    def test_partial_bulk_failure_keeps_writing_later_chunks(self, db_session, backend, cache_manager,
                                                              search_index):
        backend.rejected_ids["course-1"] = "mapper_parsing_exception"
        pipeline = IndexingPipeline(db_session, backend, cache_manager)

        result = pipeline.index_documents(IndexingRequest(
            organization_id="org-1", index_type="courses", documents=make_courses(5),
        ))

        assert result.successful == 4
        assert result.failed == 1
        assert [(e.document_id, e.error) for e in result.errors] == [("course-1", "mapper_parsing_exception")]
        assert "course-4" in backend.indices[search_index.index_name]
        assert result.document_count == backend.count("org-1-courses") == 4
        db_session.refresh(search_index)
        assert search_index.document_count == 4

    def test_delete_of_missing_document_succeeds(self, db_session, backend, cache_manager, search_index):
        pipeline = IndexingPipeline(db_session, backend, cache_manager)
        pipeline.index_documents(IndexingRequest(
            organization_id="org-1", index_type="courses", documents=make_courses(2),
        ))

        result = pipeline.index_documents(IndexingRequest(
            organization_id="org-1", index_type="courses",
            document_ids=["course-0", "never-indexed"], operation=IndexOperation.DELETE,
        ))

        assert result.successful == 2
        assert result.document_count == 1

    def test_single_write_errors_are_itemized(self, db_session, backend, cache_manager, search_index):
        backend.index_doc = Mock(side_effect=[None, BackendError("mapping conflict")])
        backend.count = Mock(return_value=1)
        pipeline = IndexingPipeline(db_session, backend, cache_manager)

        result = pipeline.index_documents(IndexingRequest(
            organization_id="org-1", index_type="courses",
            documents=make_courses(2), operation=IndexOperation.INDEX,
        ))

        assert result.successful == 1
        assert result.failed == 1
        assert result.errors[0].document_id == "course-1"

    def test_backend_unavailable_propagates(self, db_session, backend, cache_manager, search_index):
        backend.index_doc = Mock(side_effect=BackendUnavailable("connection refused"))
        pipeline = IndexingPipeline(db_session, backend, cache_manager)

        with pytest.raises(BackendUnavailable):
            pipeline.index_documents(IndexingRequest(
                organization_id="org-1", index_type="courses",
                documents=make_courses(1), operation=IndexOperation.INDEX,
            ))

    def test_no_active_index(self, db_session, backend, cache_manager):
        pipeline = IndexingPipeline(db_session, backend, cache_manager)
        with pytest.raises(IndexNotFoundError):
            pipeline.index_documents(IndexingRequest(
                organization_id="org-1", index_type="users", documents=make_courses(1),
            ))

    def test_incremental_sync_removes_vanished_entities(self, db_session, backend, cache_manager, search_index):
        source = Mock(spec=DocumentSource)
        source.fetch_by_ids.return_value = make_courses(1)
        pipeline = IndexingPipeline(db_session, backend, cache_manager, source=source)
        pipeline.index_documents(IndexingRequest(
            organization_id="org-1", index_type="courses", documents=make_courses(2),
        ))

        result = pipeline.incremental_sync("org-1", "courses", ["course-0", "course-1"])

        assert result.successful == 2
        assert set(backend.indices[search_index.index_name]) == {"course-0"}
        assert result.document_count == 1


class TestFullSync:
    """Test full resync from the document source"""

    @pytest.fixture
    def search_index(self, db_session, backend):
        return IndexRegistry(db_session, backend).create_index(
            CreateIndexRequest(organization_id="org-1", index_type="courses", batch_size=2)
        )

    def make_source(self, entities):
        source = Mock(spec=DocumentSource)
        source.count.return_value = len(entities)
        source.fetch_batch.side_effect = lambda org, index_type, offset, limit: entities[offset:offset + limit]
        return source

    def test_full_sync_records_stats(self, db_session, backend, cache_manager, search_index):
        progress = []
        pipeline = IndexingPipeline(db_session, backend, cache_manager, source=self.make_source(make_courses(5)))

        stats = pipeline.full_sync(search_index.id, progress=progress.append)

        assert stats.successful_syncs == 1
        assert stats.total_documents == 5
        assert stats.last_error is None
        assert progress == sorted(progress)
        assert progress[-1] == 100
        db_session.refresh(search_index)
        assert search_index.document_count == 5
        assert search_index.sync_stats["successful_syncs"] == 1

    def test_failed_sync_preserves_stats(self, db_session, backend, cache_manager, search_index):
        pipeline = IndexingPipeline(db_session, backend, cache_manager, source=self.make_source(make_courses(3)))
        pipeline.full_sync(search_index.id)

        backend.bulk = Mock(side_effect=BackendUnavailable("cluster red"))
        with pytest.raises(BackendUnavailable):
            pipeline.full_sync(search_index.id)

        db_session.refresh(search_index)
        assert search_index.sync_stats["successful_syncs"] == 1
        assert search_index.sync_stats["failed_syncs"] == 1
        assert "cluster red" in search_index.sync_stats["last_error"]
        assert search_index.document_count == 3
