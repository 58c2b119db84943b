from __future__ import annotations
from contextlib import contextmanager
from typing import Optional, List
import json, sqlite3, os, threading

from vhealth_core.errors import IndexWriteConflict, StorageError
from vhealth_core.signing import SignedPackage
from vhealth_core.storage.models import (
    AuditLogEntry, DocumentMetadata, IndexSnapshot, RecordStatus, SignatureRecord,
)
from vhealth_core.storage.provider import StorageProvider
from vhealth_core.utils import now_ts

_RECORD_COLS = (
    "internal_id, document_id, document_title, document_type, signed_at, stored_at, "
    "location, digest_prefix, content_digest, signed_json, status"
)


class SQLiteStorage(StorageProvider):
    def __init__(self, path="db/vhealth_archive.db", timeout: float = 5.0):
        # If no directory, default to current working directory
        dir_path = os.path.dirname(str(path)) or "."
        os.makedirs(dir_path, exist_ok=True)
        self.path = str(path)
        self.db = sqlite3.connect(self.path, timeout=timeout, check_same_thread=False)
        self._lock = threading.RLock()

        self._init()

    def _init(self) -> None:
        c = self.db.cursor()

        c.execute("""CREATE TABLE IF NOT EXISTS signature_records(
            seq INTEGER NOT NULL UNIQUE,
            internal_id TEXT PRIMARY KEY,
            document_id TEXT NOT NULL,
            document_title TEXT NOT NULL,
            document_type TEXT NOT NULL,
            signed_at TEXT NOT NULL,
            stored_at TEXT NOT NULL,
            location TEXT NOT NULL UNIQUE,
            digest_prefix TEXT NOT NULL,
            content_digest TEXT NOT NULL,
            signed_json TEXT NOT NULL,
            status TEXT NOT NULL
        )""")
        c.execute("CREATE INDEX IF NOT EXISTS idx_records_document ON signature_records(document_id)")
        c.execute("""CREATE TABLE IF NOT EXISTS document_metadata(
            internal_id TEXT PRIMARY KEY,
            location TEXT NOT NULL,
            payload TEXT NOT NULL
        )""")
        c.execute("""CREATE TABLE IF NOT EXISTS master_index(
            id INTEGER PRIMARY KEY CHECK (id = 1),
            total_count INTEGER NOT NULL,
            last_updated TEXT
        )""")
        c.execute("INSERT OR IGNORE INTO master_index(id, total_count, last_updated) VALUES (1, 0, NULL)")
        c.execute("""CREATE TABLE IF NOT EXISTS audit_log(
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            ts TEXT NOT NULL,
            action TEXT NOT NULL,
            details TEXT
        )""")
        c.execute("""CREATE TABLE IF NOT EXISTS document_content(
            document_id TEXT PRIMARY KEY,
            content BLOB NOT NULL,
            updated_at TEXT NOT NULL
        )""")

        self.db.commit()

    @staticmethod
    def _row_to_record(row) -> SignatureRecord:
        (internal_id, document_id, title, doc_type, signed_at, stored_at,
         location, digest_prefix, content_digest, signed_json, status) = row
        return SignatureRecord(
            internal_id=internal_id,
            document_id=document_id,
            document_title=title,
            document_type=doc_type,
            signed_at=signed_at,
            stored_at=stored_at,
            location=location,
            digest_prefix=digest_prefix,
            content_digest=content_digest,
            signed=SignedPackage.from_dict(json.loads(signed_json)),
            status=RecordStatus(status),
        )

    def _insert_audit(self, entry: AuditLogEntry) -> None:
        self.db.execute(
            "INSERT INTO audit_log(ts, action, details) VALUES (?, ?, ?)",
            (entry.timestamp, entry.action, json.dumps(entry.details, separators=(",", ":"), sort_keys=True)),
        )

    # --- signature records + master index ---

    def store_signature(self, record, metadata, content, audit) -> IndexSnapshot:
        with self._lock:
            try:
                self.db.execute("BEGIN IMMEDIATE")
                (count,) = self.db.execute("SELECT total_count FROM master_index WHERE id = 1").fetchone()

                self.db.execute(
                    "INSERT INTO document_content(document_id, content, updated_at) VALUES (?, ?, ?) "
                    "ON CONFLICT(document_id) DO UPDATE SET content=excluded.content, updated_at=excluded.updated_at",
                    (record.document_id, sqlite3.Binary(content), record.stored_at),
                )
                self.db.execute(
                    f"INSERT INTO signature_records(seq, {_RECORD_COLS}) VALUES (?,?,?,?,?,?,?,?,?,?,?,?)",
                    (
                        count + 1, record.internal_id, record.document_id, record.document_title,
                        record.document_type, record.signed_at, record.stored_at, record.location,
                        record.digest_prefix, record.content_digest,
                        json.dumps(record.signed.to_dict(), sort_keys=True), record.status.value,
                    ),
                )
                self.db.execute(
                    "INSERT INTO document_metadata(internal_id, location, payload) VALUES (?, ?, ?)",
                    (record.internal_id, record.location, json.dumps(metadata.to_dict(), sort_keys=True)),
                )
                cur = self.db.execute(
                    "UPDATE master_index SET total_count = ?, last_updated = ? WHERE id = 1 AND total_count = ?",
                    (count + 1, record.stored_at, count),
                )
                (rows,) = self.db.execute("SELECT COUNT(*) FROM signature_records").fetchone()
                if cur.rowcount != 1 or rows != count + 1:
                    raise IndexWriteConflict(
                        f"Index count moved from {count} but {rows} records are stored"
                    )
                self._insert_audit(audit)
                self.db.commit()
            except IndexWriteConflict:
                self.db.rollback()
                raise
            except sqlite3.Error as e:
                self.db.rollback()
                raise StorageError(f"Failed to store signature {record.internal_id}: {e}") from e
            return IndexSnapshot(count + 1, record.stored_at)

    @contextmanager
    def _guard(self, what: str, write: bool = False):
        """Hold the connection lock; commit writes; surface driver errors as StorageError."""
        with self._lock:
            try:
                yield
                if write:
                    self.db.commit()
            except sqlite3.Error as e:
                if write:
                    self.db.rollback()
                raise StorageError(f"Failed to {what}: {e}") from e

    def get_record(self, internal_id: str) -> Optional[SignatureRecord]:
        with self._guard(f"read record {internal_id}"):
            row = self.db.execute(
                f"SELECT {_RECORD_COLS} FROM signature_records WHERE internal_id = ?", (internal_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def get_metadata(self, internal_id: str) -> Optional[DocumentMetadata]:
        with self._guard(f"read metadata {internal_id}"):
            row = self.db.execute(
                "SELECT payload FROM document_metadata WHERE internal_id = ?", (internal_id,)
            ).fetchone()
        return DocumentMetadata(**json.loads(row[0])) if row else None

    def find_by_document(self, document_id: str) -> List[SignatureRecord]:
        with self._guard(f"find records for {document_id}"):
            rows = self.db.execute(
                f"SELECT {_RECORD_COLS} FROM signature_records WHERE document_id = ? ORDER BY seq",
                (document_id,),
            ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def list_records(self) -> List[SignatureRecord]:
        with self._guard("list records"):
            rows = self.db.execute(f"SELECT {_RECORD_COLS} FROM signature_records ORDER BY seq").fetchall()
        return [self._row_to_record(r) for r in rows]

    def update_status(self, internal_id: str, status: RecordStatus, audit: AuditLogEntry) -> SignatureRecord:
        with self._lock:
            try:
                cur = self.db.execute(
                    "UPDATE signature_records SET status = ? WHERE internal_id = ?", (status.value, internal_id)
                )
                if cur.rowcount != 1:
                    raise StorageError(f"Unknown record: {internal_id}")
                self.db.execute("UPDATE master_index SET last_updated = ? WHERE id = 1", (now_ts(),))
                self._insert_audit(audit)
                self.db.commit()
            except StorageError:
                self.db.rollback()
                raise
            except sqlite3.Error as e:
                self.db.rollback()
                raise StorageError(f"Failed to update status of {internal_id}: {e}") from e
            return self.get_record(internal_id)

    def index_snapshot(self) -> IndexSnapshot:
        with self._guard("read master index"):
            total, last = self.db.execute(
                "SELECT total_count, last_updated FROM master_index WHERE id = 1"
            ).fetchone()
        return IndexSnapshot(total, last)

    # --- audit ---

    def append_audit(self, entry: AuditLogEntry) -> None:
        with self._guard(f"append audit entry {entry.action}", write=True):
            self._insert_audit(entry)

    def list_audit(self, limit: Optional[int] = None) -> List[AuditLogEntry]:
        with self._guard("read audit log"):
            if limit:
                rows = self.db.execute(
                    "SELECT ts, action, details FROM (SELECT * FROM audit_log ORDER BY seq DESC LIMIT ?) ORDER BY seq",
                    (limit,),
                ).fetchall()
            else:
                rows = self.db.execute("SELECT ts, action, details FROM audit_log ORDER BY seq").fetchall()
        return [AuditLogEntry(action=a, details=json.loads(d) if d else {}, timestamp=ts) for ts, a, d in rows]

    # --- document content ---

    def save_content(self, document_id: str, content: bytes) -> None:
        with self._guard(f"save content of {document_id}", write=True):
            self.db.execute(
                "INSERT INTO document_content(document_id, content, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(document_id) DO UPDATE SET content=excluded.content, updated_at=excluded.updated_at",
                (document_id, sqlite3.Binary(content), now_ts()),
            )

    def load_content(self, document_id: str) -> Optional[bytes]:
        with self._guard(f"load content of {document_id}"):
            row = self.db.execute(
                "SELECT content FROM document_content WHERE document_id = ?", (document_id,)
            ).fetchone()
        return bytes(row[0]) if row else None

    def delete_content(self, document_id: str) -> bool:
        with self._guard(f"delete content of {document_id}", write=True):
            cur = self.db.execute("DELETE FROM document_content WHERE document_id = ?", (document_id,))
        return cur.rowcount > 0

    def close(self):
        with self._guard("close database"):
            self.db.close()
