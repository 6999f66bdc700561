"""
core/database.py -- Process-lifetime handle to the durable store.

One Database is constructed at startup (api/main.py lifespan, or main.py for
CLI commands) and passed to everything that needs the store. There is no
module-level connection cache.

Single initialization:
  The SQLAlchemy Engine is created lazily on first use. A lock guards the
  creation so concurrent early requests all wait for the same attempt and
  receive the same Engine instead of each building a pool of their own.

Transactions:
  transaction() wraps engine.begin(): the block commits on normal exit and
  rolls back if anything raises. One request's session resolution, rotation
  writes and business mutation all run on the yielded Connection, so they
  commit or vanish together.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger("gradebook.store")

# Seconds a SQLite writer waits for a competing transaction before failing.
_SQLITE_BUSY_TIMEOUT = 30


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


class Database:
    """Lazily connected, explicitly owned handle to the session/user store.

    Usage:
        db = Database("sqlite:///gradebook.db")
        with db.transaction() as conn:
            ...
        db.close()
    """

    def __init__(self, url: str) -> None:
        if not url:
            raise ValueError("Database URL must not be empty.")
        self.url = url
        self._engine: Engine | None = None
        self._lock = threading.Lock()

    @property
    def engine(self) -> Engine:
        """Return the Engine, creating it on first access (exactly once)."""
        engine = self._engine
        if engine is not None:
            return engine
        with self._lock:
            if self._engine is None:
                self._engine = self._create_engine()
            return self._engine

    def _create_engine(self) -> Engine:
        connect_args: dict = {}
        is_sqlite = self.url.startswith("sqlite")
        if is_sqlite:
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = _SQLITE_BUSY_TIMEOUT
        engine = create_engine(self.url, connect_args=connect_args)
        if is_sqlite:
            event.listen(engine, "connect", _set_wal_mode)
        logger.info("Store engine created (dialect=%s)", engine.dialect.name)
        return engine

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a Connection inside one atomic transaction."""
        with self.engine.begin() as conn:
            yield conn

    def close(self) -> None:
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None
