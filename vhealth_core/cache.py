"""
vhealth_core.cache
------------------
Ephemeral store of encrypted blobs for in-flight sensitive data (session and
consultation snapshots) that must never reach durable storage.

- Write-once, read-many, age-evicted (not LRU)
- Entries older than the retention window read as absent
- ``CacheSweeper`` drops expired entries on a fixed interval; it is started
  and stopped explicitly by whoever owns the process lifecycle
"""

from __future__ import annotations
import os, threading, time
from collections import Counter, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional

from .constants import CACHE_OPERATION_LOG_LIMIT, CACHE_SWEEP_INTERVAL_SECONDS, CACHE_TTL_SECONDS
from .crypto import EncryptedPackage, HybridCipher
from .errors import DecryptionError
from .logger import get_logger
from .payloads import PayloadCategory
from .utils import new_token

log = get_logger("VH.Cache")


@dataclass(frozen=True)
class CacheEntry:
    package: EncryptedPackage
    stored_at: float
    category: PayloadCategory


@dataclass(frozen=True)
class CacheOperation:
    action: str                 # STORED | FETCHED | EXPIRED | SWEPT
    entry_id: str
    category: str
    at: float

    def to_dict(self) -> dict:
        return {"action": self.action, "id": self.entry_id, "category": self.category, "at": self.at}


class EphemeralSecureCache:
    """
    Thread-safe for concurrent access.

    ``clock`` returns seconds (``time.time`` by default); tests pass a fake.
    """

    def __init__(
        self,
        cipher: HybridCipher,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.cipher = cipher
        self.ttl_seconds = float(ttl_seconds if ttl_seconds is not None
                                 else os.getenv("VHEALTH_CACHE_TTL_SECONDS", CACHE_TTL_SECONDS))
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._ops: Deque[CacheOperation] = deque(maxlen=CACHE_OPERATION_LOG_LIMIT)
        self._op_count = 0
        self._lock = threading.RLock()

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at > self.ttl_seconds

    def _record(self, action: str, entry_id: str, category: PayloadCategory, now: float) -> None:
        """Append to the operation log (caller must hold lock)."""
        self._ops.append(CacheOperation(action, entry_id, category.value, now))
        self._op_count += 1

    def put(self, payload: bytes, category: PayloadCategory = PayloadCategory.GENERAL) -> str:
        category = PayloadCategory(category)
        package = self.cipher.encrypt(payload)
        entry_id = f"{category.value}_{new_token()}"

        with self._lock:
            now = self._clock()
            self._entries[entry_id] = CacheEntry(package=package, stored_at=now, category=category)
            self._record("STORED", entry_id, category, now)

        log.info(f"[CACHE] stored {entry_id} ({category.value})")
        return entry_id

    def get(self, entry_id: str) -> Optional[bytes]:
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None:
                return None
            now = self._clock()
            if self._is_expired(entry, now):
                del self._entries[entry_id]
                self._record("EXPIRED", entry_id, entry.category, now)
                log.info(f"[CACHE] {entry_id} expired on read")
                return None

        try:
            payload = self.cipher.decrypt(entry.package)
        except DecryptionError:
            log.error(f"[CACHE] {entry_id} could not be decrypted")
            raise

        with self._lock:
            self._record("FETCHED", entry_id, entry.category, self._clock())
        return payload

    def category_of(self, entry_id: str) -> Optional[PayloadCategory]:
        with self._lock:
            entry = self._entries.get(entry_id)
            return entry.category if entry else None

    def sweep(self) -> int:
        """Remove every entry older than the retention window."""
        with self._lock:
            now = self._clock()
            expired = [eid for eid, e in self._entries.items() if self._is_expired(e, now)]
            for entry_id in expired:
                entry = self._entries.pop(entry_id)
                self._record("SWEPT", entry_id, entry.category, now)

        if expired:
            log.info(f"[CACHE] swept {len(expired)} expired entries")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict:
        with self._lock:
            by_category = Counter(e.category.value for e in self._entries.values())
            last = self._ops[-1].to_dict() if self._ops else None
            return {
                "total_entries": len(self._entries),
                "total_operations": self._op_count,
                "by_category": dict(by_category),
                "algorithm": self.cipher.algorithm,
                "last_operation": last,
            }

    def operations(self, limit: int = 10) -> List[dict]:
        """Most recent operations first. Metadata only, never payloads."""
        with self._lock:
            recent = list(self._ops)[-limit:] if limit > 0 else []
        return [op.to_dict() for op in reversed(recent)]


class CacheSweeper:
    """Background thread that calls ``cache.sweep()`` every ``interval`` seconds."""

    def __init__(self, cache: EphemeralSecureCache, interval: Optional[float] = None):
        self.cache = cache
        self.interval = float(interval if interval is not None
                              else os.getenv("VHEALTH_CACHE_SWEEP_SECONDS", CACHE_SWEEP_INTERVAL_SECONDS))
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="vhealth-cache-sweeper", daemon=True)
        self._thread.start()
        log.info(f"[CACHE] sweeper started (interval={self.interval}s)")

    def stop(self, timeout: float = 5) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        log.info("[CACHE] sweeper stopped")

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.cache.sweep()
            except Exception:
                log.exception("[CACHE] sweep failed")
