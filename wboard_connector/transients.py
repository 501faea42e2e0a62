"""
Key-value entries with a time-to-live (rate windows, autologin tokens, last-request marker).

Two backends share one interface:
- MemoryTransientStore: dict guarded by a lock; single process only.
- DatabaseTransientStore: `transients` table; shared by every worker using the same DB.

incr() and pop() are atomic: concurrent increments never lose a count, and of two
concurrent pops of the same key at most one gets the value.

Expired entries are invisible to reads and are swept from storage every
TRANSIENT_SWEEP_EVERY writes, so keys that are never touched again do not pile up.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from sqlalchemy import Integer, cast, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wboard_connector.config import TRANSIENT_SWEEP_EVERY
from wboard_connector.models import Transient

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class TransientStore(Protocol):
    def set(self, key: str, value: str, ttl: float) -> None: ...

    def get(self, key: str) -> str | None: ...

    def delete(self, key: str) -> None: ...

    def incr(self, key: str, ttl: float) -> tuple[int, float]: ...

    def pop(self, key: str) -> str | None: ...

    def purge_expired(self) -> int: ...


@dataclass
class _Entry:
    value: str
    expires_at: float


class _SweepSchedule:
    """Counts writes; every `every`-th write is followed by a sweep of expired entries."""

    def __init__(self, every: int):
        self.every = every
        self._writes = 0
        self._lock = threading.Lock()

    def due(self) -> bool:
        if self.every <= 0:
            return False
        with self._lock:
            self._writes += 1
            return self._writes % self.every == 0


class MemoryTransientStore:
    def __init__(self, clock: Clock = time.time, sweep_every: int = TRANSIENT_SWEEP_EVERY):
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._sweep = _SweepSchedule(sweep_every)

    def _live(self, key: str, now: float) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= now:
            del self._entries[key]
            return None
        return entry

    def set(self, key: str, value: str, ttl: float) -> None:
        with self._lock:
            self._entries[key] = _Entry(value=str(value), expires_at=self._clock() + ttl)
        if self._sweep.due():
            self.purge_expired()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key, self._clock())
            return entry.value if entry else None

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def incr(self, key: str, ttl: float) -> tuple[int, float]:
        """Increment the counter at key; a new counter expires ttl seconds after creation."""
        result = self._incr(key, ttl)
        if self._sweep.due():
            self.purge_expired()
        return result

    def _incr(self, key: str, ttl: float) -> tuple[int, float]:
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                entry = _Entry(value="1", expires_at=now + ttl)
                self._entries[key] = entry
                return 1, entry.expires_at
            count = int(entry.value) + 1
            entry.value = str(count)
            return count, entry.expires_at

    def pop(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key, self._clock())
            if entry is None:
                return None
            del self._entries[key]
            return entry.value

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for k in expired:
                del self._entries[k]
            return len(expired)


class DatabaseTransientStore:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock = time.time,
        sweep_every: int = TRANSIENT_SWEEP_EVERY,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self._sweep = _SweepSchedule(sweep_every)

    def set(self, key: str, value: str, ttl: float) -> None:
        db = self._session_factory()
        try:
            db.merge(Transient(key=key, value=str(value), expires_at=self._clock() + ttl))
            db.commit()
        finally:
            db.close()
        if self._sweep.due():
            self.purge_expired()

    def get(self, key: str) -> str | None:
        db = self._session_factory()
        try:
            row = db.get(Transient, key)
            if row is None or row.expires_at <= self._clock():
                return None
            return row.value
        finally:
            db.close()

    def delete(self, key: str) -> None:
        db = self._session_factory()
        try:
            db.execute(delete(Transient).where(Transient.key == key))
            db.commit()
        finally:
            db.close()

    def incr(self, key: str, ttl: float) -> tuple[int, float]:
        result = self._incr(key, ttl)
        if self._sweep.due():
            self.purge_expired()
        return result

    def _incr(self, key: str, ttl: float) -> tuple[int, float]:
        """
        Increment in the database. The UPDATE runs first so the row is locked for the rest of
        the transaction; when no live row exists, a fresh one is inserted (retrying the UPDATE
        if another writer inserted it first).
        """
        db = self._session_factory()
        try:
            while True:
                now = self._clock()
                result = db.execute(
                    update(Transient)
                    .where(Transient.key == key, Transient.expires_at > now)
                    .values(value=cast(Transient.value, Integer) + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    value, expires_at = db.execute(
                        select(Transient.value, Transient.expires_at).where(Transient.key == key)
                    ).one()
                    db.commit()
                    return int(value), expires_at
                db.execute(
                    delete(Transient)
                    .where(Transient.key == key, Transient.expires_at <= now)
                    .execution_options(synchronize_session=False)
                )
                expires_at = now + ttl
                db.add(Transient(key=key, value="1", expires_at=expires_at))
                try:
                    db.commit()
                    return 1, expires_at
                except IntegrityError:
                    db.rollback()
                    logger.debug("Concurrent insert for transient %s; retrying increment", key)
        finally:
            db.close()

    def pop(self, key: str) -> str | None:
        """Compare-and-delete: only the caller whose DELETE removed the row gets the value."""
        db = self._session_factory()
        try:
            row = db.execute(
                select(Transient.value, Transient.expires_at).where(Transient.key == key)
            ).first()
            if row is None or row.expires_at <= self._clock():
                return None
            result = db.execute(
                delete(Transient)
                .where(
                    Transient.key == key,
                    Transient.value == row.value,
                    Transient.expires_at == row.expires_at,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount != 1:
                return None
            return row.value
        finally:
            db.close()

    def purge_expired(self) -> int:
        db = self._session_factory()
        try:
            result = db.execute(
                delete(Transient)
                .where(Transient.expires_at <= self._clock())
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount
        finally:
            db.close()


_store: TransientStore | None = None


def get_transient_store() -> TransientStore:
    """Process-wide store for the configured backend."""
    global _store
    if _store is None:
        from wboard_connector.config import TRANSIENT_BACKEND

        if TRANSIENT_BACKEND == "memory":
            _store = MemoryTransientStore()
        else:
            from wboard_connector.database import SessionLocal

            _store = DatabaseTransientStore(SessionLocal)
        logger.info("Using %s transient store", type(_store).__name__)
    return _store
