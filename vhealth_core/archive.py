"""
vhealth_core.archive
--------------------
Durable, indexed archive of signed documents.

Each stored signature lives at a hierarchical location
``<YYYY-MM-DD>/<normalized type>/<internal id>`` next to a metadata summary;
the master index lists every record in append order and the audit log
records every store, verification and status change.

Index mutation is serialized by a single writer lock. Records are never
removed; only their status moves forward (active -> archived -> revoked).
"""

from __future__ import annotations
import json, os, re, threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from .constants import DEFAULT_AUTHORITY, DIGEST_PREFIX_LEN, SIGNED_DESCRIPTION_VERSION
from .errors import InvalidStatusTransition, StorageError
from .logger import get_logger
from .signing import DigitalSigner
from .storage import (
    AuditAction, AuditLogEntry, DocumentMetadata, RecordStatus, SignatureRecord, StorageProvider,
)
from .utils import canonical_json, iso_ts, new_id, sha256, utcnow

log = get_logger("VH.Archive")

# allowed forward moves; re-applying the current status is a no-op
_TRANSITIONS = {
    RecordStatus.ACTIVE: {RecordStatus.ARCHIVED, RecordStatus.REVOKED},
    RecordStatus.ARCHIVED: {RecordStatus.REVOKED},
    RecordStatus.REVOKED: set(),
}


class ArchiveReason(str, Enum):
    VERIFIED = "verified"
    NOT_FOUND = "not_found"
    SOURCE_MISSING = "source_missing"
    TAMPERED_AFTER_SIGNING = "tampered_after_signing"
    INTEGRITY_MISMATCH = "integrity_mismatch"
    INVALID_SIGNATURE = "invalid_signature"


@dataclass(frozen=True)
class ArchiveDocument:
    id: str
    title: str
    type: str
    content: bytes


@dataclass(frozen=True)
class ArchiveVerdict:
    valid: bool
    reason: ArchiveReason
    record: Optional[SignatureRecord] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "reason": self.reason.value,
            "record": self.record.summary() if self.record else None,
        }


def _as_date(value: Union[date, datetime, str, None]) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


@dataclass(frozen=True)
class SearchCriteria:
    """All supplied fields must match; ``None`` means no constraint."""
    document_type: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    status: Optional[RecordStatus] = None

    def __post_init__(self):
        object.__setattr__(self, "date_from", _as_date(self.date_from))
        object.__setattr__(self, "date_to", _as_date(self.date_to))
        if self.status is not None:
            object.__setattr__(self, "status", RecordStatus(self.status))

    def matches(self, rec: SignatureRecord) -> bool:
        if self.document_type and self.document_type.lower() not in rec.document_type.lower():
            return False
        signed = rec.signed_date
        if self.date_from and signed < self.date_from:
            return False
        if self.date_to and signed > self.date_to:
            return False
        if self.status and rec.status != self.status:
            return False
        return True


@dataclass(frozen=True)
class SearchResult:
    records: List[SignatureRecord]
    total: int


@dataclass(frozen=True)
class ArchiveStats:
    total_signatures: int
    last_signature: Optional[SignatureRecord]
    by_type: Dict[str, int] = field(default_factory=dict)
    by_date: Dict[str, int] = field(default_factory=dict)
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalFirmas": self.total_signatures,
            "ultimaFirma": self.last_signature.summary() if self.last_signature else None,
            "porTipo": dict(self.by_type),
            "porFecha": dict(self.by_date),
            "actualizadoEn": self.updated_at,
        }


def normalize_type(doc_type: str) -> str:
    norm = re.sub(r"[^a-z0-9_-]+", "_", doc_type.strip().lower()).strip("_")
    return norm or "untyped"


class SignatureArchive:
    def __init__(
        self,
        signer: DigitalSigner,
        storage: StorageProvider,
        authority: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.signer = signer
        self.storage = storage
        self.authority = authority or os.getenv("VHEALTH_AUTHORITY", DEFAULT_AUTHORITY)
        self._clock = clock
        self._write_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------
    def sign_and_store(self, document: ArchiveDocument) -> SignatureRecord:
        if not isinstance(document.content, (bytes, bytearray)):
            raise TypeError(f"document content must be bytes, got {type(document.content).__name__}")

        content_digest = sha256(bytes(document.content))
        signed_at = iso_ts(self._clock())
        description = {
            "document_id": document.id,
            "title": document.title,
            "type": document.type,
            "content_digest": content_digest,
            "authority": self.authority,
            "version": SIGNED_DESCRIPTION_VERSION,
            "signed_at": signed_at,
        }
        signed = self.signer.sign(canonical_json(description))

        internal_id = new_id()
        location = f"{signed_at[:10]}/{normalize_type(document.type)}/{internal_id}"

        with self._write_lock:
            stored_at = iso_ts(self._clock())
            record = SignatureRecord(
                internal_id=internal_id,
                document_id=document.id,
                document_title=document.title,
                document_type=document.type,
                signed_at=signed_at,
                stored_at=stored_at,
                location=location,
                digest_prefix=content_digest[:DIGEST_PREFIX_LEN] + "...",
                content_digest=content_digest,
                signed=signed,
            )
            metadata = DocumentMetadata(
                internal_id=internal_id,
                document_id=document.id,
                title=document.title,
                type=document.type,
                signed_at=signed_at,
                location=location,
                content_digest=content_digest,
                algorithm=signed.algorithm,
                authority=self.authority,
            )
            audit = AuditLogEntry(
                action=AuditAction.SIGNATURE_STORED.value,
                details={
                    "internalId": internal_id,
                    "documentId": document.id,
                    "documentType": document.type,
                    "location": location,
                    "hash": record.digest_prefix,
                },
                timestamp=stored_at,
            )
            try:
                snapshot = self.storage.store_signature(record, metadata, bytes(document.content), audit)
            except StorageError:
                log.error(f"[ARCHIVE] store failed for document={document.id}; nothing written")
                raise

        log.info(
            f"[ARCHIVE] stored document={document.id} at {location} "
            f"hash={record.digest_prefix} total={snapshot.total_count}"
        )
        return record

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------
    def verify(self, document_id: str) -> ArchiveVerdict:
        """
        Re-check the latest signature stored for ``document_id``.

        Raises:
            StorageError: the archive could not be read
        """
        verdict = self._verify(document_id)
        entry = AuditLogEntry(
            action=AuditAction.SIGNATURE_VERIFIED.value,
            details={
                "documentId": document_id,
                "internalId": verdict.record.internal_id if verdict.record else None,
                "valid": verdict.valid,
                "reason": verdict.reason.value,
            },
        )
        try:
            with self._write_lock:
                self.storage.append_audit(entry)
        except StorageError as e:
            # verdict stands even when its audit line is lost
            log.error(f"[ARCHIVE] audit append failed for verify document={document_id}: {e}")

        level = log.info if verdict.valid else log.warning
        level(f"[ARCHIVE] verify document={document_id} valid={verdict.valid} reason={verdict.reason.value}")
        return verdict

    def _verify(self, document_id: str) -> ArchiveVerdict:
        records = self.storage.find_by_document(document_id)
        if not records:
            return ArchiveVerdict(False, ArchiveReason.NOT_FOUND)
        record = records[-1]

        content = self.storage.load_content(document_id)
        if content is None:
            return ArchiveVerdict(False, ArchiveReason.SOURCE_MISSING, record)

        if sha256(content) != record.content_digest:
            return ArchiveVerdict(False, ArchiveReason.TAMPERED_AFTER_SIGNING, record)

        result = self.signer.verify(record.signed)
        if not result.valid:
            return ArchiveVerdict(False, ArchiveReason(result.reason.value), record)

        # the signed description must agree with the stored record
        try:
            signed_digest = json.loads(record.signed.payload.decode("utf-8")).get("content_digest")
        except ValueError:
            signed_digest = None
        if signed_digest != record.content_digest:
            return ArchiveVerdict(False, ArchiveReason.TAMPERED_AFTER_SIGNING, record)

        return ArchiveVerdict(True, ArchiveReason.VERIFIED, record)

    # ------------------------------------------------------------------
    # Lookup, search, stats
    # ------------------------------------------------------------------
    def get(self, internal_id: str) -> Optional[SignatureRecord]:
        return self.storage.get_record(internal_id)

    def search(self, criteria: Optional[SearchCriteria] = None) -> SearchResult:
        criteria = criteria or SearchCriteria()
        found = [r for r in self.storage.list_records() if criteria.matches(r)]
        return SearchResult(records=found, total=len(found))

    def recent(self, limit: int = 10) -> List[SignatureRecord]:
        records = sorted(self.storage.list_records(), key=lambda r: r.signed_at, reverse=True)
        return records[:limit]

    def stats(self) -> ArchiveStats:
        # one view under the writer lock: totals and breakdowns agree
        with self._write_lock:
            records = self.storage.list_records()
            snapshot = self.storage.index_snapshot()
        by_type = Counter(r.document_type for r in records)
        by_date = Counter(r.signed_at[:10] for r in records)
        last = max(records, key=lambda r: r.signed_at) if records else None
        return ArchiveStats(
            total_signatures=len(records),
            last_signature=last,
            by_type=dict(by_type),
            by_date=dict(by_date),
            updated_at=snapshot.last_updated,
        )

    def audit_log(self, limit: Optional[int] = None) -> List[AuditLogEntry]:
        return self.storage.list_audit(limit)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    def set_status(self, internal_id: str, status: RecordStatus, reason: str = "") -> SignatureRecord:
        """
        Move a record forward: active -> archived, active -> revoked,
        archived -> revoked. Re-applying the current status returns the record
        unchanged and writes nothing.

        Raises:
            KeyError: unknown ``internal_id``
            InvalidStatusTransition: any backwards or sideways move
        """
        status = RecordStatus(status)
        with self._write_lock:
            record = self.storage.get_record(internal_id)
            if record is None:
                raise KeyError(internal_id)
            if record.status == status:
                return record
            if status not in _TRANSITIONS[record.status]:
                raise InvalidStatusTransition(
                    f"Cannot move record {internal_id} from {record.status.value} to {status.value}"
                )
            audit = AuditLogEntry(
                action=AuditAction.STATUS_CHANGED.value,
                details={
                    "internalId": internal_id,
                    "from": record.status.value,
                    "to": status.value,
                    "reason": reason,
                },
            )
            updated = self.storage.update_status(internal_id, status, audit)

        log.info(f"[ARCHIVE] record {internal_id} {record.status.value} -> {status.value}")
        return updated
