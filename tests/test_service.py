import pytest

from vhealth_core.archive import ArchiveDocument, ArchiveReason, SearchCriteria
from vhealth_core.errors import DecryptionError, KeyMaterialMissing
from vhealth_core.payloads import GeneralPayload, MedicalRecord, PayloadCategory
from vhealth_core.service import ProtectionService
from vhealth_core.storage import InMemoryStorage, SQLiteStorage


@pytest.fixture
def service(keypair):
    svc = ProtectionService(keypair, InMemoryStorage(), sweep_interval_seconds=60)
    yield svc
    svc.stop()


def test_encrypt_decrypt_general(service):
    pkg = service.encrypt({"theme": "dark"})
    assert service.decrypt(pkg) == GeneralPayload({"theme": "dark"})
    assert service.decrypt(service.encrypt(b"raw")) == GeneralPayload(b"raw")


@pytest.mark.parametrize("data", [b"raw", "42", "true", "null", b'{"a": 1}', {"a": 1}, None])
def test_general_payload_survives_service(service, data):
    back = service.decrypt(service.encrypt(GeneralPayload(data)))
    assert back == GeneralPayload(data)
    assert type(back.data) is type(data)

    eid = service.cache_store(GeneralPayload(data))
    assert service.cache_fetch_payload(eid) == GeneralPayload(data)


def test_encrypt_decrypt_medical(service):
    rec = MedicalRecord(plants=["valeriana"], symptoms=["insomnio"], duration=90)
    pkg = service.encrypt(rec)
    assert service.decrypt(pkg, PayloadCategory.MEDICAL) == rec


def test_decrypt_wrong_category(service):
    pkg = service.encrypt("just text")
    with pytest.raises(DecryptionError):
        service.decrypt(pkg, PayloadCategory.MEDICAL)
    with pytest.raises(DecryptionError):
        service.decrypt(service.encrypt(MedicalRecord()), PayloadCategory.GENERAL)


def test_decrypt_unknown_category(service):
    pkg = service.encrypt("text")
    with pytest.raises(ValueError) as exc:
        service.decrypt(pkg, "prescription")
    assert "prescription" in str(exc.value)


def test_sign_verify(service):
    pkg = service.sign(b"content")
    assert service.verify(pkg).valid


def test_public_key(service, keypair):
    info = service.public_key()
    assert info["publicKey"] == keypair.public_key_pem()
    assert info["algorithm"] == "RSA-2048"
    assert info["fingerprint"] == keypair.fingerprint()


def test_cache_store_fetch(service):
    eid = service.cache_store(MedicalRecord(symptoms=["tos"]))
    assert eid.startswith("medical_")
    assert service.cache_fetch_payload(eid) == MedicalRecord(symptoms=["tos"])
    assert service.cache_fetch(eid) is not None
    assert service.cache_fetch("general_missing") is None
    assert service.cache_fetch_payload("general_missing") is None


def test_archive_operations(service):
    doc = ArchiveDocument(id="guia-1", title="Guia para la tos", type="tos", content=b"pdf bytes")
    rec = service.archive_sign(doc)
    assert service.archive_verify("guia-1").reason is ArchiveReason.VERIFIED
    assert service.archive_search(SearchCriteria(document_type="tos")).records == [rec]
    assert service.archive_stats().total_signatures == 1


def test_start_stop(service):
    service.start()
    assert service.sweeper.running
    service.stop()
    assert not service.sweeper.running


def test_from_env(keys_dir, tmp_path, monkeypatch):
    monkeypatch.setenv("VHEALTH_KEYS_DIR", str(keys_dir))
    monkeypatch.setenv("VHEALTH_STORAGE_PROVIDER", "sqlite")
    monkeypatch.setenv("VHEALTH_DB_PATH", str(tmp_path / "svc.db"))
    monkeypatch.setenv("VHEALTH_AUTHORITY", "Env Authority")

    svc = ProtectionService.from_env({"cache_ttl_seconds": 5})
    try:
        assert isinstance(svc.archive.storage, SQLiteStorage)
        assert svc.cache.ttl_seconds == 5
        assert svc.archive.authority == "Env Authority"
    finally:
        svc.stop()


def test_from_env_without_keys(tmp_path):
    with pytest.raises(KeyMaterialMissing):
        ProtectionService.from_env({"keys_dir": str(tmp_path / "empty"), "provider": "memory"})
