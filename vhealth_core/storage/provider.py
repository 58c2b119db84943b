# vhealth_core/storage/provider.py
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import List, Optional

from vhealth_core.storage.models import (
    AuditLogEntry, DocumentMetadata, IndexSnapshot, RecordStatus, SignatureRecord,
)


class StorageProvider(ABC):
    """
    Persistence contract for the signature archive.

    Providers own the master index, the per-location signature and metadata
    records, the append-only audit log, and the document content slot used
    for re-verification. ``store_signature`` must be all-or-nothing.
    """

    # signature records + master index
    @abstractmethod
    def store_signature(
        self,
        record: SignatureRecord,
        metadata: DocumentMetadata,
        content: bytes,
        audit: AuditLogEntry,
    ) -> IndexSnapshot:
        """
        Persist content, record and metadata, append the record to the index,
        then append ``audit``. All or nothing.

        Raises:
            IndexWriteConflict: if the index count did not advance by exactly one
        """

    @abstractmethod
    def get_record(self, internal_id: str) -> Optional[SignatureRecord]: ...

    @abstractmethod
    def get_metadata(self, internal_id: str) -> Optional[DocumentMetadata]: ...

    @abstractmethod
    def find_by_document(self, document_id: str) -> List[SignatureRecord]:
        """All records for ``document_id`` in index order."""

    @abstractmethod
    def list_records(self) -> List[SignatureRecord]:
        """Every record in index (append) order."""

    @abstractmethod
    def update_status(self, internal_id: str, status: RecordStatus, audit: AuditLogEntry) -> SignatureRecord: ...

    @abstractmethod
    def index_snapshot(self) -> IndexSnapshot: ...

    # audit
    @abstractmethod
    def append_audit(self, entry: AuditLogEntry) -> None: ...

    @abstractmethod
    def list_audit(self, limit: Optional[int] = None) -> List[AuditLogEntry]:
        """Entries in append order; ``limit`` keeps the newest ``limit``."""

    # document content
    @abstractmethod
    def save_content(self, document_id: str, content: bytes) -> None: ...

    @abstractmethod
    def load_content(self, document_id: str) -> Optional[bytes]: ...

    @abstractmethod
    def delete_content(self, document_id: str) -> bool: ...

    def close(self) -> None:
        return
