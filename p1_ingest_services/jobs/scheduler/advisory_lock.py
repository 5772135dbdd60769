"""PostgreSQL session-level advisory lock guarding the ingestion cycle.

Lock and unlock must run on the SAME server session, so a lease keeps its
pooled connection checked out until released.

Example::

    lock = PostgresAdvisoryLock(engine, key=42)
    lease = lock.try_acquire()
    if lease is not None:
        try:
            run_cycle()
        finally:
            lease.release()
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from p1_ingest_services.ingest.errors import LockCheckError

logger = logging.getLogger(__name__)


class LockLease:
    """A held advisory lock. ``release`` is safe to call more than once."""

    def __init__(self, conn: Connection, key: int):
        self._conn = conn
        self._key = key
        self._released = False

    @property
    def key(self) -> int:
        return self._key

    def release(self) -> bool:
        """Unlock and return the connection to the pool.

        Returns:
            True if the server confirmed the unlock. On failure the connection
            is invalidated: closing the session makes the server drop the lock.
        """
        if self._released:
            return True
        self._released = True

        try:
            unlocked = bool(
                self._conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": self._key}).scalar()
            )
            self._conn.commit()
        except SQLAlchemyError as e:
            logger.error("LOCK_RELEASE_FAILED key=%s err=%s", self._key, e)
            self._conn.invalidate()
            self._conn.close()
            return False

        self._conn.close()
        if not unlocked:
            logger.warning("LOCK_RELEASE_FAILED key=%s err=lock was not held by this session", self._key)
        return unlocked

    def __enter__(self) -> "LockLease":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class PostgresAdvisoryLock:
    """Non-blocking try-lock on a fixed integer key."""

    def __init__(self, engine: Engine, key: int = 42):
        self._engine = engine
        self._key = key

    @property
    def key(self) -> int:
        return self._key

    def try_acquire(self) -> Optional[LockLease]:
        """Try to take the lock without waiting.

        Returns:
            A LockLease when acquired, None when another session holds it

        Raises:
            LockCheckError: the store could not be asked (connection or query failure)
        """
        conn: Optional[Connection] = None
        try:
            conn = self._engine.connect()
            acquired = bool(
                conn.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": self._key}).scalar()
            )
            # Session-level lock: it outlives this transaction.
            conn.commit()
        except SQLAlchemyError as e:
            if conn is not None:
                conn.close()
            raise LockCheckError(f"advisory lock check: {e}") from e

        if not acquired:
            conn.close()
            return None
        return LockLease(conn, self._key)
