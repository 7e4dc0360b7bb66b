import logging
import threading
from contextlib import contextmanager
from typing import Dict

from sqlalchemy import text
from sqlalchemy.orm import Session

from .errors import StoreFailure
from .settings import LOCK_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class ResourceLockRegistry:
    """
    Process-wide registry of per-hall locks.

    Submissions, approvals and rejections hold the lock of the hall they
    touch for the whole check-then-write sequence, so two handlers can never
    interleave a conflict check and an insert on the same hall. Across
    processes ``lock_in_database`` gives the same ordering.
    """

    def __init__(self, timeout_seconds: float = LOCK_TIMEOUT_SECONDS):
        self.timeout_seconds = timeout_seconds
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, resource_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(resource_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[resource_id] = lock
            return lock

    @contextmanager
    def hold(self, resource_id: str):
        """
        Hold the lock for ``resource_id``.

        Raises
        ------
        StoreFailure
            If the lock cannot be acquired within the configured timeout.
        """
        lock = self._lock_for(resource_id)
        if not lock.acquire(timeout=self.timeout_seconds):
            logger.error("Timed out waiting for lock on hall %s", resource_id)
            raise StoreFailure(f"Timed out waiting for hall {resource_id}")
        try:
            yield
        finally:
            lock.release()


resource_locks = ResourceLockRegistry()


def lock_in_database(db: Session, resource_id: str) -> None:
    """
    Take a transaction-scoped lock on ``resource_id`` in the database.

    On PostgreSQL this is an advisory lock keyed on the hall name, so
    several service processes serialize their check-then-write on the same
    hall. It is released when the surrounding transaction commits or rolls
    back. SQLite already serializes writers and needs nothing here.

    Must be called inside ``atomic(db)``; a lock wait longer than the
    configured timeout fails the transaction with StoreFailure.
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    timeout_ms = int(LOCK_TIMEOUT_SECONDS * 1000)
    db.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
    db.execute(
        text("SELECT pg_advisory_xact_lock(hashtext(:resource_id))"),
        {"resource_id": resource_id},
    )
