import sqlite3

import pytest

from vhealth_core.errors import IndexWriteConflict, StorageError
from vhealth_core.signing import DigitalSigner
from vhealth_core.storage import (
    AuditLogEntry, DocumentMetadata, InMemoryStorage, RecordStatus, SQLiteStorage,
    SignatureRecord, load_storage_provider,
)
from vhealth_core.utils import new_id, now_ts, sha256


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    s = InMemoryStorage() if request.param == "memory" else SQLiteStorage(str(tmp_path / "archive.db"))
    yield s
    s.close()


def _record(signer, document_id="guia-1", doc_type="tos", content=b"content"):
    iid = new_id()
    digest = sha256(content)
    ts = now_ts()
    rec = SignatureRecord(
        internal_id=iid,
        document_id=document_id,
        document_title="Guia",
        document_type=doc_type,
        signed_at=ts,
        stored_at=ts,
        location=f"{ts[:10]}/{doc_type}/{iid}",
        digest_prefix=digest[:32] + "...",
        content_digest=digest,
        signed=signer.sign(digest.encode("ascii")),
    )
    meta = DocumentMetadata(
        internal_id=iid, document_id=document_id, title="Guia", type=doc_type, signed_at=ts,
        location=rec.location, content_digest=digest, algorithm="RSA-PSS-SHA256", authority="test",
    )
    audit = AuditLogEntry(action="SIGNATURE_STORED", details={"internalId": iid})
    return rec, meta, content, audit


def test_store_and_read_back(storage, keypair):
    signer = DigitalSigner(keypair)
    rec, meta, content, audit = _record(signer)
    snap = storage.store_signature(rec, meta, content, audit)
    assert snap.total_count == 1
    assert snap.last_updated == rec.stored_at

    got = storage.get_record(rec.internal_id)
    assert got == rec
    assert signer.verify(got.signed).valid
    assert storage.get_metadata(rec.internal_id) == meta
    assert storage.load_content("guia-1") == b"content"
    assert [a.action for a in storage.list_audit()] == ["SIGNATURE_STORED"]


def test_index_order_and_find(storage, keypair):
    signer = DigitalSigner(keypair)
    stored = []
    for doc in ("a", "b", "a"):
        rec, meta, content, audit = _record(signer, document_id=doc)
        storage.store_signature(rec, meta, content, audit)
        stored.append(rec.internal_id)

    assert [r.internal_id for r in storage.list_records()] == stored
    assert [r.internal_id for r in storage.find_by_document("a")] == [stored[0], stored[2]]
    assert storage.find_by_document("zzz") == []
    assert storage.index_snapshot().total_count == 3


def test_duplicate_id_rejected(storage, keypair):
    rec, meta, content, audit = _record(DigitalSigner(keypair))
    storage.store_signature(rec, meta, content, audit)
    with pytest.raises(StorageError):
        storage.store_signature(rec, meta, content, audit)
    assert storage.index_snapshot().total_count == 1
    assert len(storage.list_records()) == 1


def test_update_status(storage, keypair):
    rec, meta, content, audit = _record(DigitalSigner(keypair))
    storage.store_signature(rec, meta, content, audit)
    updated = storage.update_status(
        rec.internal_id, RecordStatus.REVOKED, AuditLogEntry(action="STATUS_CHANGED")
    )
    assert updated.status is RecordStatus.REVOKED
    assert updated.content_digest == rec.content_digest
    assert storage.get_record(rec.internal_id).status is RecordStatus.REVOKED
    with pytest.raises(StorageError):
        storage.update_status("missing", RecordStatus.REVOKED, AuditLogEntry(action="STATUS_CHANGED"))


def test_audit_limit_keeps_newest(storage):
    for i in range(5):
        storage.append_audit(AuditLogEntry(action="SIGNATURE_VERIFIED", details={"n": i}))
    assert [e.details["n"] for e in storage.list_audit(limit=2)] == [3, 4]
    assert len(storage.list_audit()) == 5


def test_content_crud(storage):
    assert storage.load_content("doc") is None
    storage.save_content("doc", b"v1")
    storage.save_content("doc", b"v2")
    assert storage.load_content("doc") == b"v2"
    assert storage.delete_content("doc")
    assert not storage.delete_content("doc")


def test_memory_index_conflict(keypair):
    s = InMemoryStorage()
    s.total_count = 7
    rec, meta, content, audit = _record(DigitalSigner(keypair))
    with pytest.raises(IndexWriteConflict):
        s.store_signature(rec, meta, content, audit)
    assert s.records == {}


def test_sqlite_index_conflict_rolls_back(tmp_path, keypair):
    s = SQLiteStorage(str(tmp_path / "archive.db"))
    s.db.execute("UPDATE master_index SET total_count = 5 WHERE id = 1")
    s.db.commit()
    rec, meta, content, audit = _record(DigitalSigner(keypair))
    with pytest.raises(IndexWriteConflict):
        s.store_signature(rec, meta, content, audit)
    assert s.get_record(rec.internal_id) is None
    assert s.load_content(rec.document_id) is None
    assert s.list_audit() == []
    s.close()


def test_sqlite_survives_reopen(tmp_path, keypair):
    path = str(tmp_path / "nested" / "archive.db")
    s = SQLiteStorage(path)
    rec, meta, content, audit = _record(DigitalSigner(keypair))
    s.store_signature(rec, meta, content, audit)
    s.close()

    s2 = SQLiteStorage(path)
    assert s2.get_record(rec.internal_id) == rec
    assert s2.index_snapshot().total_count == 1
    s2.close()


def test_provider_factory(tmp_path, monkeypatch):
    monkeypatch.delenv("VHEALTH_STORAGE_PROVIDER", raising=False)
    monkeypatch.setenv("VHEALTH_DB_PATH", str(tmp_path / "env.db"))
    s = load_storage_provider()
    assert isinstance(s, SQLiteStorage)
    assert s.path == str(tmp_path / "env.db")
    s.close()

    assert isinstance(load_storage_provider({"provider": "memory"}), InMemoryStorage)

    monkeypatch.setenv("VHEALTH_STORAGE_PROVIDER", "memory")
    assert isinstance(load_storage_provider(), InMemoryStorage)

    with pytest.raises(ValueError):
        load_storage_provider({"provider": "redis"})


def test_sqlite_driver_errors_are_storage_errors(tmp_path, keypair):
    path = str(tmp_path / "archive.db")
    s = SQLiteStorage(path, timeout=0.05)
    rec, meta, content, audit = _record(DigitalSigner(keypair))
    s.store_signature(rec, meta, content, audit)

    other = sqlite3.connect(path, isolation_level=None)
    other.execute("BEGIN EXCLUSIVE")
    calls = [
        lambda: s.get_record(rec.internal_id),
        lambda: s.get_metadata(rec.internal_id),
        lambda: s.find_by_document(rec.document_id),
        s.list_records,
        s.index_snapshot,
        lambda: s.append_audit(AuditLogEntry(action="SIGNATURE_VERIFIED")),
        s.list_audit,
        lambda: s.save_content("doc", b"x"),
        lambda: s.load_content(rec.document_id),
        lambda: s.delete_content(rec.document_id),
        lambda: s.update_status(rec.internal_id, RecordStatus.ARCHIVED, AuditLogEntry(action="STATUS_CHANGED")),
    ]
    try:
        for call in calls:
            with pytest.raises(StorageError):
                call()
    finally:
        other.execute("ROLLBACK")
        other.close()

    # nothing half-written, connection still usable
    assert s.get_record(rec.internal_id).status is RecordStatus.ACTIVE
    assert [a.action for a in s.list_audit()] == ["SIGNATURE_STORED"]
    assert s.load_content(rec.document_id) == content
    s.close()
