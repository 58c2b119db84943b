"""
vhealth_core.service
--------------------
Operation surface consumed by the web application's request handlers.

``ProtectionService`` owns one instance of each component, built from an
explicit key pair and storage provider (or from the environment via
``from_env``). Nothing here is a module-level singleton.
"""

from __future__ import annotations
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .archive import (
    ArchiveDocument, ArchiveStats, ArchiveVerdict, SearchCriteria, SearchResult, SignatureArchive,
)
from .cache import CacheSweeper, EphemeralSecureCache
from .crypto import EncryptedPackage, HybridCipher
from .errors import DecryptionError
from .keys import KeyManager, KeyPair
from .logger import get_logger
from .payloads import GeneralPayload, MedicalRecord, Payload, PayloadCategory, decode_payload, encode_payload
from .signing import DigitalSigner, SignedPackage, Verdict
from .storage import SignatureRecord, StorageProvider, load_storage_provider
from .utils import utcnow

log = get_logger("VH.Service")


def _as_payload(data: Any) -> Payload:
    # bare bytes, text or JSON structures are general payloads
    if isinstance(data, (GeneralPayload, MedicalRecord)):
        return data
    return GeneralPayload(data)


class ProtectionService:
    def __init__(
        self,
        keys: KeyPair,
        storage: StorageProvider,
        cache_ttl_seconds: Optional[float] = None,
        sweep_interval_seconds: Optional[float] = None,
        authority: Optional[str] = None,
        cache_clock: Callable[[], float] = time.time,
        archive_clock: Callable[[], datetime] = utcnow,
    ):
        self.keys = keys
        self.cipher = HybridCipher(keys)
        self.signer = DigitalSigner(keys)
        self.cache = EphemeralSecureCache(self.cipher, ttl_seconds=cache_ttl_seconds, clock=cache_clock)
        self.sweeper = CacheSweeper(self.cache, interval=sweep_interval_seconds)
        self.archive = SignatureArchive(self.signer, storage, authority=authority, clock=archive_clock)

    @classmethod
    def from_env(cls, config: Optional[Dict[str, Any]] = None) -> "ProtectionService":
        """
        Build the service from configuration.

        Raises:
            KeyMaterialMissing: no usable key pair; the process must not serve requests
        """
        config = config or {}
        keys = KeyManager(config.get("keys_dir")).load()
        storage = load_storage_provider(config)
        return cls(
            keys,
            storage,
            cache_ttl_seconds=config.get("cache_ttl_seconds"),
            sweep_interval_seconds=config.get("sweep_interval_seconds"),
            authority=config.get("authority"),
        )

    # lifecycle
    def start(self) -> None:
        self.sweeper.start()

    def stop(self) -> None:
        self.sweeper.stop()
        self.archive.storage.close()

    # --- transient protection ---

    def encrypt(self, payload: Any) -> EncryptedPackage:
        category, raw = encode_payload(_as_payload(payload))
        pkg = self.cipher.encrypt(raw)
        log.info(f"[SERVICE] encrypted {category.value} payload ({pkg.algorithm})")
        return pkg

    def decrypt(self, pkg: EncryptedPackage, category: PayloadCategory = PayloadCategory.GENERAL) -> Payload:
        category = PayloadCategory(category)
        raw = self.cipher.decrypt(pkg)
        try:
            return decode_payload(category, raw)
        except (ValueError, TypeError) as e:
            raise DecryptionError(f"Decrypted data is not a {category.value} payload") from e

    def sign(self, payload: bytes) -> SignedPackage:
        return self.signer.sign(payload)

    def verify(self, pkg: SignedPackage) -> Verdict:
        return self.signer.verify(pkg)

    def public_key(self) -> Dict[str, Any]:
        return {
            "publicKey": self.keys.public_key_pem(),
            "algorithm": f"RSA-{self.keys.key_size}",
            "fingerprint": self.keys.fingerprint(),
            "usage": ["encryption", "signature-verification"],
        }

    # --- ephemeral cache ---

    def cache_store(self, payload: Any) -> str:
        category, raw = encode_payload(_as_payload(payload))
        return self.cache.put(raw, category)

    def cache_fetch(self, entry_id: str) -> Optional[bytes]:
        """Encoded payload bytes; ``cache_fetch_payload`` rebuilds the variant."""
        return self.cache.get(entry_id)

    def cache_fetch_payload(self, entry_id: str) -> Optional[Payload]:
        category = self.cache.category_of(entry_id)
        raw = self.cache.get(entry_id)
        if raw is None or category is None:
            return None
        return decode_payload(category, raw)

    # --- archive ---

    def archive_sign(self, document: ArchiveDocument) -> SignatureRecord:
        return self.archive.sign_and_store(document)

    def archive_verify(self, document_id: str) -> ArchiveVerdict:
        return self.archive.verify(document_id)

    def archive_search(self, criteria: Optional[SearchCriteria] = None) -> SearchResult:
        return self.archive.search(criteria)

    def archive_stats(self) -> ArchiveStats:
        return self.archive.stats()
