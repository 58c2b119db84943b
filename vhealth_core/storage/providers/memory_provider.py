from __future__ import annotations
import dataclasses, threading
from typing import Dict, List, Optional

from vhealth_core.errors import IndexWriteConflict, StorageError
from vhealth_core.storage.models import (
    AuditLogEntry, DocumentMetadata, IndexSnapshot, RecordStatus, SignatureRecord,
)
from vhealth_core.storage.provider import StorageProvider
from vhealth_core.utils import now_ts


class InMemoryStorage(StorageProvider):
    def __init__(self):
        self.records: Dict[str, SignatureRecord] = {}
        self.metadata: Dict[str, DocumentMetadata] = {}
        self.index: List[str] = []          # internal ids, append order
        self.total_count = 0
        self.last_updated: Optional[str] = None
        self.audit: List[AuditLogEntry] = []
        self.contents: Dict[str, bytes] = {}
        self._lock = threading.RLock()

    # signature records + master index
    def store_signature(self, record, metadata, content, audit) -> IndexSnapshot:
        with self._lock:
            if record.internal_id in self.records:
                raise StorageError(f"Duplicate internal id: {record.internal_id}")
            expected = self.total_count + 1
            if len(self.index) != self.total_count:
                raise IndexWriteConflict(
                    f"Index count {self.total_count} does not match {len(self.index)} records"
                )

            self.contents[record.document_id] = bytes(content)
            self.records[record.internal_id] = record
            self.metadata[record.internal_id] = metadata
            self.index.append(record.internal_id)
            self.total_count = expected
            self.last_updated = record.stored_at
            self.audit.append(audit)
            return IndexSnapshot(self.total_count, self.last_updated)

    def get_record(self, internal_id: str) -> Optional[SignatureRecord]:
        return self.records.get(internal_id)

    def get_metadata(self, internal_id: str) -> Optional[DocumentMetadata]:
        return self.metadata.get(internal_id)

    def find_by_document(self, document_id: str) -> List[SignatureRecord]:
        with self._lock:
            return [self.records[i] for i in self.index if self.records[i].document_id == document_id]

    def list_records(self) -> List[SignatureRecord]:
        with self._lock:
            return [self.records[i] for i in self.index]

    def update_status(self, internal_id: str, status: RecordStatus, audit: AuditLogEntry) -> SignatureRecord:
        with self._lock:
            rec = self.records.get(internal_id)
            if rec is None:
                raise StorageError(f"Unknown record: {internal_id}")
            rec = dataclasses.replace(rec, status=status)
            self.records[internal_id] = rec
            self.last_updated = now_ts()
            self.audit.append(audit)
            return rec

    def index_snapshot(self) -> IndexSnapshot:
        with self._lock:
            return IndexSnapshot(self.total_count, self.last_updated)

    # audit
    def append_audit(self, entry: AuditLogEntry) -> None:
        with self._lock:
            self.audit.append(entry)

    def list_audit(self, limit: Optional[int] = None) -> List[AuditLogEntry]:
        with self._lock:
            entries = list(self.audit)
        return entries[-limit:] if limit else entries

    # document content
    def save_content(self, document_id: str, content: bytes) -> None:
        with self._lock:
            self.contents[document_id] = bytes(content)

    def load_content(self, document_id: str) -> Optional[bytes]:
        return self.contents.get(document_id)

    def delete_content(self, document_id: str) -> bool:
        with self._lock:
            return self.contents.pop(document_id, None) is not None
