"""Tests for the TTL key-value stores (memory and database backends)."""
import threading

import pytest

from wboard_connector.database import SessionLocal
from wboard_connector.models import Transient
from wboard_connector.rate_limit import RateLimiter
from wboard_connector.transients import DatabaseTransientStore, MemoryTransientStore


@pytest.fixture(params=["memory", "database"])
def store(request, clock):
    if request.param == "memory":
        return MemoryTransientStore(clock=clock)
    return DatabaseTransientStore(SessionLocal, clock=clock)


def test_set_get_delete(store):
    store.set("k", "v", 10)
    assert store.get("k") == "v"
    store.delete("k")
    assert store.get("k") is None


def test_get_unknown_key_returns_none(store):
    assert store.get("missing") is None


def test_entry_invisible_after_ttl(store, clock):
    store.set("k", "v", 10)
    clock.advance(9)
    assert store.get("k") == "v"
    clock.advance(1)
    assert store.get("k") is None


def test_set_overwrites_value_and_ttl(store, clock):
    store.set("k", "old", 5)
    clock.advance(4)
    store.set("k", "new", 5)
    clock.advance(4)
    assert store.get("k") == "new"


def test_incr_creates_then_counts(store, clock):
    assert store.incr("c", 60) == (1, clock.now + 60)
    assert store.incr("c", 60)[0] == 2
    assert store.incr("c", 60)[0] == 3


def test_incr_window_is_fixed(store, clock):
    """Increments never push the expiry back; the counter resets when the window ends."""
    _, expires_at = store.incr("c", 60)
    clock.advance(59)
    count, later_expiry = store.incr("c", 60)
    assert count == 2
    assert later_expiry == expires_at
    clock.advance(1)
    count, new_expiry = store.incr("c", 60)
    assert count == 1
    assert new_expiry == clock.now + 60


def test_pop_is_single_use(store):
    store.set("t", "42", 30)
    assert store.pop("t") == "42"
    assert store.pop("t") is None
    assert store.get("t") is None


def test_pop_expired_returns_none(store, clock):
    store.set("t", "42", 30)
    clock.advance(30)
    assert store.pop("t") is None


def test_purge_expired_counts_removed(store, clock):
    store.set("a", "1", 5)
    store.set("b", "1", 50)
    store.incr("c", 5)
    clock.advance(10)
    assert store.purge_expired() == 2
    assert store.get("b") == "1"


@pytest.fixture(params=["memory", "database"])
def sweeping_store(request, clock):
    if request.param == "memory":
        return MemoryTransientStore(clock=clock, sweep_every=10)
    return DatabaseTransientStore(SessionLocal, clock=clock, sweep_every=10)


def _stored_entries(store):
    if isinstance(store, MemoryTransientStore):
        return len(store._entries)
    db = SessionLocal()
    try:
        return db.query(Transient).count()
    finally:
        db.close()


def test_abandoned_rate_windows_are_swept(sweeping_store, clock):
    """Windows of clients that never come back are removed without a manual purge."""
    limiter = RateLimiter(sweeping_store, 30, 60, clock=clock)
    for i in range(300):
        limiter.check_and_increment(f"198.51.{i // 256}.{i % 256}")
    assert _stored_entries(sweeping_store) == 300
    clock.advance(3600)
    for i in range(10):
        limiter.check_and_increment(f"203.0.113.{i}")
    assert _stored_entries(sweeping_store) == 10


def test_sweep_after_set_keeps_live_entries(sweeping_store, clock):
    for i in range(9):
        sweeping_store.set(f"wboard_autologin_{i}", "42", 30)
    clock.advance(30)
    sweeping_store.set("wboard_autologin_live", "42", 30)
    assert _stored_entries(sweeping_store) == 1
    assert sweeping_store.get("wboard_autologin_live") == "42"


def test_sweep_disabled_with_zero(clock):
    store = MemoryTransientStore(clock=clock, sweep_every=0)
    for i in range(50):
        store.set(str(i), "v", 1)
    clock.advance(5)
    store.set("x", "v", 1)
    assert len(store._entries) == 51


def test_memory_concurrent_pops_single_winner():
    """Many threads racing to redeem one entry: exactly one gets the value."""
    store = MemoryTransientStore()
    for round_ in range(20):
        key = f"token-{round_}"
        store.set(key, "42", 30)
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(store.pop(key))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count("42") == 1
        assert results.count(None) == 7


def test_memory_concurrent_increments_not_lost():
    store = MemoryTransientStore()
    barrier = threading.Barrier(10)

    def worker():
        barrier.wait()
        for _ in range(50):
            store.incr("c", 60)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert store.incr("c", 60)[0] == 501


def test_database_pop_refuses_when_row_changed(clock):
    """Compare-and-delete: a row replaced between read and delete is not handed out."""
    store = DatabaseTransientStore(SessionLocal, clock=clock)
    store.set("t", "42", 30)
    real_factory = store._session_factory
    replaced = {"done": False}

    class ReplacingSession:
        def __init__(self):
            self._inner = real_factory()

        def execute(self, statement, *args, **kwargs):
            if statement.is_delete and not replaced["done"]:
                replaced["done"] = True
                other = DatabaseTransientStore(SessionLocal, clock=clock)
                other.set("t", "43", 30)
            return self._inner.execute(statement, *args, **kwargs)

        def __getattr__(self, name):
            return getattr(self._inner, name)

    store._session_factory = ReplacingSession
    assert store.pop("t") is None
    store._session_factory = real_factory
    assert store.get("t") == "43"
