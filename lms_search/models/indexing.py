"""
Indexing request/result models
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from .search import SearchIndexType


class IndexOperation(str, Enum):
    INDEX = "index"
    UPDATE = "update"
    DELETE = "delete"
    BULK = "bulk"


class IndexingRequest(BaseModel):
    """Write request against one organization's index of a given type"""
    index_type: SearchIndexType
    organization_id: str
    documents: Optional[List[Dict[str, Any]]] = None
    document_ids: Optional[List[str]] = None
    operation: IndexOperation = IndexOperation.BULK

    @model_validator(mode='after')
    def check_payload(self):
        if self.documents is None and self.document_ids is None:
            raise ValueError("Either documents or document_ids is required")
        if self.documents:
            missing = [i for i, doc in enumerate(self.documents) if doc.get("id") is None]
            if missing:
                raise ValueError(f"Documents at positions {missing} have no id")
        return self


class IndexingError(BaseModel):
    document_id: Optional[str] = None
    error: str


class IndexingResult(BaseModel):
    """Outcome of an indexing operation; partial failure is reported, never raised"""
    operation: IndexOperation
    total: int = 0
    successful: int = 0
    failed: int = 0
    errors: List[IndexingError] = []
    document_count: int = 0
    took_ms: int = 0


class SyncStats(BaseModel):
    total_documents: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    failed_documents: int = 0
    sync_duration_ms: int = 0
    throughput_docs_per_sec: float = 0.0


class CreateIndexRequest(BaseModel):
    organization_id: str
    index_type: SearchIndexType
    mapping: Optional[Dict[str, Any]] = None
    settings: Optional[Dict[str, Any]] = None
    is_realtime_sync: bool = False
    batch_size: Optional[int] = Field(None, ge=1, le=5000)
