import time

import pytest

from vhealth_core.cache import CacheSweeper, EphemeralSecureCache
from vhealth_core.crypto import HybridCipher
from vhealth_core.payloads import PayloadCategory


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(keypair, clock):
    return EphemeralSecureCache(HybridCipher(keypair), ttl_seconds=3600, clock=clock)


def test_put_get(cache):
    eid = cache.put(b"session snapshot")
    assert eid.startswith("general_")
    assert cache.get(eid) == b"session snapshot"
    assert cache.get(eid) == b"session snapshot"


def test_ids_carry_category_and_are_unique(cache):
    ids = {cache.put(b"x", PayloadCategory.MEDICAL) for _ in range(20)}
    assert len(ids) == 20
    assert all(i.startswith("medical_") for i in ids)
    assert cache.category_of(next(iter(ids))) is PayloadCategory.MEDICAL


def test_unknown_id(cache):
    assert cache.get("general_nope") is None
    assert cache.category_of("general_nope") is None


def test_entries_are_encrypted_at_rest(cache):
    eid = cache.put(b"plain secret")
    entry = cache._entries[eid]
    assert b"plain secret" not in entry.package.cipher_text


def test_expired_entry_reads_absent(cache, clock):
    eid = cache.put(b"short lived")
    clock.advance(3600)
    assert cache.get(eid) == b"short lived"     # exactly at the boundary is still fresh
    clock.advance(1)
    assert cache.get(eid) is None
    assert len(cache) == 0
    assert cache.operations(1)[0]["action"] == "EXPIRED"


def test_sweep_removes_only_expired(cache, clock):
    old = cache.put(b"old")
    clock.advance(1800)
    fresh = cache.put(b"fresh")
    clock.advance(1801)
    assert cache.sweep() == 1
    assert cache.get(old) is None
    assert cache.get(fresh) == b"fresh"
    assert cache.sweep() == 0


def test_stats_and_operations(cache):
    cache.put(b"a")
    m = cache.put(b"{}", PayloadCategory.MEDICAL)
    cache.get(m)

    stats = cache.stats()
    assert stats["total_entries"] == 2
    assert stats["total_operations"] == 3
    assert stats["by_category"] == {"general": 1, "medical": 1}
    assert stats["algorithm"] == "RSA-2048-OAEP+AES-256-GCM"
    assert stats["last_operation"]["action"] == "FETCHED"

    ops = cache.operations(limit=2)
    assert [o["action"] for o in ops] == ["FETCHED", "STORED"]
    assert all("payload" not in o for o in ops)


def test_ttl_from_env(keypair, monkeypatch):
    monkeypatch.setenv("VHEALTH_CACHE_TTL_SECONDS", "60")
    assert EphemeralSecureCache(HybridCipher(keypair)).ttl_seconds == 60.0


def test_sweeper_runs_in_background(keypair, clock):
    cache = EphemeralSecureCache(HybridCipher(keypair), ttl_seconds=10, clock=clock)
    cache.put(b"will expire")
    clock.advance(11)

    sweeper = CacheSweeper(cache, interval=0.05)
    sweeper.start()
    try:
        assert sweeper.running
        deadline = time.time() + 5
        while len(cache) and time.time() < deadline:
            time.sleep(0.02)
        assert len(cache) == 0
    finally:
        sweeper.stop()
    assert not sweeper.running


def test_sweeper_start_is_idempotent(cache):
    sweeper = CacheSweeper(cache, interval=60)
    sweeper.start()
    thread = sweeper._thread
    sweeper.start()
    assert sweeper._thread is thread
    sweeper.stop()
    assert not sweeper.running
