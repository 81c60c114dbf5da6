# Overview: Service-layer operations for concurrency; locking, retries and single-writer sections.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Hashable

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


DB_RETRYABLE = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    retry_on: tuple[type[BaseException], ...] = DB_RETRYABLE,
):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts) by default. Callers pass retry_on to
    extend the set, e.g. with AllocationConflict for read-allocate-write
    sequences. The session is rolled back before every retry so the next
    attempt re-reads committed state.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


class KeyedLock:
    """
    One mutex per key, created on first use.

    Serializes work on the same key inside this process while work on
    different keys runs in parallel. Cross-process safety comes from the
    database unique constraints, not from this lock.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.RLock] = {}

    def _lock_for(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable):
        lock = self._lock_for(key)
        with lock:
            yield


_allocation_locks = KeyedLock()


@contextmanager
def allocation_lock(seller_id: int, prefix: str):
    """Single-writer section for number allocation per (seller, prefix)."""
    with _allocation_locks.hold((seller_id, prefix)):
        yield
