"""
Indexing Pipeline
Batched bulk and per-document writes to the search backend, plus full resyncs
"""

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..cache.manager import CacheManager
from ..database.models import SearchIndex
from ..models.indexing import IndexOperation, IndexingError, IndexingRequest, IndexingResult, SyncStats
from ..models.search import SearchIndexType
from .backend import BackendError, BackendUnavailable, SearchBackend
from .config import SearchConfig
from .registry import IndexRegistry
from .sources import DocumentSource
from .transformer import DocumentTransformer

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


def index_lock_name(organization_id: str, index_type: str) -> str:
    return f"index:{organization_id}:{index_type}"


class IndexingPipeline:
    """
    Writes documents for one organization's index of a type

    Work on the same (organization, index type) is serialized through the cache
    manager's lock. The stored document count is always re-read from the backend
    after a write.
    """

    def __init__(self, db_session: Session, backend: SearchBackend, cache_manager: CacheManager,
                 source: Optional[DocumentSource] = None, transformer: Optional[DocumentTransformer] = None):
        self.db = db_session
        self.backend = backend
        self.cache = cache_manager
        self.source = source
        self.transformer = transformer or DocumentTransformer()
        self.registry = IndexRegistry(db_session, backend)

    @staticmethod
    def batch_size_for(search_index: SearchIndex) -> int:
        configured = (search_index.configuration or {}).get("batch_size")
        try:
            size = int(configured) if configured else SearchConfig.INDEXING_BATCH_SIZE
        except (TypeError, ValueError):
            size = SearchConfig.INDEXING_BATCH_SIZE
        return max(1, size)

    def index_documents(self, request: IndexingRequest) -> IndexingResult:
        """
        Apply an indexing request to the active index

        Args:
            request: Operation plus documents or document ids

        Returns:
            IndexingResult with success/failure counts and per-document errors

        Raises:
            IndexNotFoundError: no active index for the organization and type
            BackendUnavailable: the backend could not be reached; the job should be retried
        """
        search_index = self.registry.require_active_index(request.organization_id, request.index_type)
        start_time = time.time()

        with self.cache.lock(index_lock_name(search_index.organization_id, search_index.index_type)):
            if request.operation == IndexOperation.DELETE:
                ids = request.document_ids or [str(doc["id"]) for doc in request.documents or []]
                result = self._delete_documents(search_index, ids)
            else:
                entities = request.documents
                if entities is None:
                    entities = self._load_entities(search_index, request.document_ids or [])

                if request.operation == IndexOperation.BULK:
                    result = self._bulk_index(search_index, entities)
                else:
                    result = self._write_single(search_index, entities, request.operation)

            result.document_count = self._resync_document_count(search_index)

        result.took_ms = int((time.time() - start_time) * 1000)
        if result.failed:
            logger.warning(
                f"{request.operation.value} on {search_index.alias_name}: "
                f"{result.successful} succeeded, {result.failed} failed"
            )
        else:
            logger.info(f"{request.operation.value} on {search_index.alias_name}: {result.successful} documents")
        return result

    def incremental_sync(self, organization_id: str, index_type: str, document_ids: List[str],
                         operation: IndexOperation = IndexOperation.INDEX) -> IndexingResult:
        """
        Reindex or remove specific entities after a change in the source store

        Ids no longer present in the source are removed from the index.
        """
        if operation == IndexOperation.DELETE:
            return self.index_documents(IndexingRequest(
                index_type=index_type, organization_id=organization_id,
                document_ids=document_ids, operation=IndexOperation.DELETE,
            ))

        if self.source is None:
            raise RuntimeError("Incremental sync needs a document source")

        entities = self.source.fetch_by_ids(organization_id, SearchIndexType(index_type), document_ids)
        found = {str(entity["id"]) for entity in entities}
        missing = [doc_id for doc_id in document_ids if str(doc_id) not in found]

        result = IndexingResult(operation=IndexOperation.BULK)
        if entities:
            result = self.index_documents(IndexingRequest(
                index_type=index_type, organization_id=organization_id,
                documents=entities, operation=IndexOperation.BULK,
            ))
        if missing:
            removed = self.index_documents(IndexingRequest(
                index_type=index_type, organization_id=organization_id,
                document_ids=missing, operation=IndexOperation.DELETE,
            ))
            result.total += removed.total
            result.successful += removed.successful
            result.failed += removed.failed
            result.errors.extend(removed.errors)
            result.document_count = removed.document_count
        return result

    def full_sync(self, index_id: str, progress: Optional[ProgressCallback] = None) -> SyncStats:
        """
        Rebuild an index's documents from the source store

        Pages through the source in batches, writes each batch in one bulk call and
        reports monotonic percent progress. On success the sync stats record the
        duration and throughput; on failure failed_syncs and last_error are updated,
        the rest of the stats are preserved, and the error is re-raised.
        """
        if self.source is None:
            raise RuntimeError("Full sync needs a document source")

        search_index = self.registry.require_index(index_id)
        index_type = SearchIndexType(search_index.index_type)
        organization_id = search_index.organization_id
        batch_size = self.batch_size_for(search_index)

        with self.cache.lock(index_lock_name(organization_id, index_type.value)):
            stats = SyncStats(**(search_index.sync_stats or {}))
            start_time = time.time()
            last_reported = 0

            try:
                total = self.source.count(organization_id, index_type)
                processed = 0
                failed_documents = 0
                offset = 0
                now = datetime.utcnow()

                while True:
                    batch = self.source.fetch_batch(organization_id, index_type, offset, batch_size)
                    if not batch:
                        break

                    operations, errors = self._transform_batch(batch, index_type, now)
                    bulk_result = self.backend.bulk(search_index.alias_name, operations)
                    failed_documents += len(errors) + bulk_result.failed
                    processed += len(batch)
                    offset += len(batch)

                    if progress and total:
                        percent = min(99, int(processed * 100 / total))
                        if percent > last_reported:
                            last_reported = percent
                            progress(percent)

                    if len(batch) < batch_size:
                        break

                document_count = self.backend.count(search_index.alias_name)
                duration_ms = int((time.time() - start_time) * 1000)

                stats.successful_syncs += 1
                stats.total_documents = processed
                stats.failed_documents = failed_documents
                stats.sync_duration_ms = duration_ms
                stats.throughput_docs_per_sec = round(processed / (duration_ms / 1000), 2) if duration_ms else float(processed)
                stats.last_error = None

                search_index.sync_stats = stats.model_dump(mode="json")
                search_index.document_count = document_count
                search_index.last_synced_at = datetime.utcnow()
                self.db.commit()

                if progress:
                    progress(100)

                logger.info(
                    f"Full sync of {search_index.alias_name}: {processed} documents in {duration_ms}ms "
                    f"({failed_documents} failed), backend count {document_count}"
                )
                return stats

            except Exception as e:
                self.db.rollback()
                stats.failed_syncs += 1
                stats.last_error = str(e)
                stats.last_error_at = datetime.utcnow()
                search_index.sync_stats = stats.model_dump(mode="json")
                self.db.commit()
                logger.error(f"Full sync of {search_index.alias_name} failed: {e}")
                raise

    def _load_entities(self, search_index: SearchIndex, document_ids: List[str]) -> List[Dict[str, Any]]:
        if not document_ids:
            return []
        if self.source is None:
            raise RuntimeError("Indexing by id needs a document source")
        return self.source.fetch_by_ids(
            search_index.organization_id, SearchIndexType(search_index.index_type), document_ids
        )

    def _transform_batch(self, entities: List[Any], index_type: SearchIndexType, now: datetime):
        operations = []
        errors: List[IndexingError] = []
        for entity in entities:
            try:
                document = self.transformer.transform(entity, index_type, now)
                operations.append({"op": "index", "id": document["id"], "document": document})
            except Exception as e:
                entity_id = entity.get("id") if isinstance(entity, dict) else getattr(entity, "id", None)
                logger.error(f"Failed to transform document {entity_id}: {e}")
                errors.append(IndexingError(document_id=str(entity_id) if entity_id else None, error=str(e)))
        return operations, errors

    def _bulk_index(self, search_index: SearchIndex, entities: List[Any]) -> IndexingResult:
        result = IndexingResult(operation=IndexOperation.BULK, total=len(entities))
        index_type = SearchIndexType(search_index.index_type)
        batch_size = self.batch_size_for(search_index)
        now = datetime.utcnow()

        for start in range(0, len(entities), batch_size):
            chunk = entities[start:start + batch_size]
            operations, errors = self._transform_batch(chunk, index_type, now)
            result.failed += len(errors)
            result.errors.extend(errors)

            bulk_result = self.backend.bulk(search_index.alias_name, operations)
            result.successful += bulk_result.successful
            result.failed += bulk_result.failed
            result.errors.extend(
                IndexingError(document_id=item.document_id, error=item.error) for item in bulk_result.errors
            )

        return result

    def _write_single(self, search_index: SearchIndex, entities: List[Any],
                      operation: IndexOperation) -> IndexingResult:
        result = IndexingResult(operation=operation, total=len(entities))
        index_type = SearchIndexType(search_index.index_type)
        now = datetime.utcnow()

        for entity in entities:
            operations, errors = self._transform_batch([entity], index_type, now)
            if errors:
                result.failed += 1
                result.errors.extend(errors)
                continue

            document = operations[0]["document"]
            try:
                if operation == IndexOperation.UPDATE:
                    self.backend.update_doc(search_index.alias_name, document["id"], document)
                else:
                    self.backend.index_doc(search_index.alias_name, document["id"], document)
                result.successful += 1
            except BackendUnavailable:
                raise
            except BackendError as e:
                logger.error(f"Failed to {operation.value} document {document['id']}: {e}")
                result.failed += 1
                result.errors.append(IndexingError(document_id=document["id"], error=str(e)))

        return result

    def _delete_documents(self, search_index: SearchIndex, document_ids: List[str]) -> IndexingResult:
        result = IndexingResult(operation=IndexOperation.DELETE, total=len(document_ids))

        for doc_id in document_ids:
            try:
                # A document that is already gone counts as deleted
                self.backend.delete_doc(search_index.alias_name, str(doc_id))
                result.successful += 1
            except BackendUnavailable:
                raise
            except BackendError as e:
                logger.error(f"Failed to delete document {doc_id}: {e}")
                result.failed += 1
                result.errors.append(IndexingError(document_id=str(doc_id), error=str(e)))

        return result

    def _resync_document_count(self, search_index: SearchIndex) -> int:
        count = self.backend.count(search_index.alias_name)
        search_index.document_count = count
        search_index.last_synced_at = datetime.utcnow()
        self.db.commit()
        return count
