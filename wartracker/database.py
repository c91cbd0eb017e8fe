"""
Serialized storage access.

SQLite permits one writer at a time and reports contention as opaque
"database is locked" errors. StorageEngine caps the engine to a single pooled
connection and layers an in-process reader/writer lock on top, so contention
turns into bounded waits with explicit deadlines:

- execute():     one mutating statement, exclusive lock, own transaction
- query():       one read, shared lock
- transaction(): exclusive lock held across a multi-statement unit;
                 rolled back on any exception, committed otherwise

Every call takes a timeout (default DEFAULT_TIMEOUT_S). The deadline bounds
lock acquisition, pool checkout, SQLite busy waits and statement execution;
the lock is always released on the way out.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Mapping, Optional, Union

from sqlalchemy import event, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Connection, Engine, Row
from sqlalchemy.pool import QueuePool
from sqlalchemy.sql import Executable
from sqlmodel import SQLModel, create_engine

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 3.0

# How many SQLite VM instructions run between deadline checks
_PROGRESS_STEPS = 1000

Statement = Union[str, Executable]


class StorageError(Exception):
    """Underlying engine failure (I/O, constraint violation, broken connection)."""


class StorageTimeout(StorageError, TimeoutError):
    """A deadline elapsed waiting for the storage lock or the engine."""


# ---------------------------------------------------------------------
# In-process reader/writer lock
# ---------------------------------------------------------------------


class ReadWriteLock:
    """
    Writer-preferring reader/writer lock with acquisition timeouts.

    Readers share the lock; a writer excludes everyone. Once a writer is
    waiting, new readers queue behind it so a steady stream of reads cannot
    starve lease renewals.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            ok = self._cond.wait_for(lambda: not self._writer and not self._writers_waiting, timeout)
            if not ok:
                return False
            self._readers += 1
            return True

    def release_read(self) -> None:
        with self._cond:
            if self._readers <= 0:
                raise RuntimeError("release_read() called without a held read lock")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            self._writers_waiting += 1
            ok = False
            try:
                ok = self._cond.wait_for(lambda: not self._writer and self._readers == 0, timeout)
                if ok:
                    self._writer = True
                return ok
            finally:
                self._writers_waiting -= 1
                if not ok:
                    # Readers parked behind this writer may proceed now
                    self._cond.notify_all()

    def release_write(self) -> None:
        with self._cond:
            if not self._writer:
                raise RuntimeError("release_write() called without a held write lock")
            self._writer = False
            self._cond.notify_all()

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def write_locked(self) -> bool:
        return self._writer


# ---------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _ensure_sqlite_dir(database_url: str) -> None:
    """
    Ensure the parent folder exists for SQLite file-based DB URLs like:
      sqlite:///./data/guild_data.db
      sqlite:////absolute/path/to/guild_data.db
    """
    if not database_url.startswith("sqlite:///"):
        return

    path = database_url.replace("sqlite:///", "", 1)
    if not path or path == ":memory:":
        return
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)


def _sqlite_transaction_control(engine: Engine) -> None:
    """
    Take transaction control away from the pysqlite driver so BEGIN is emitted
    by us, with the mode requested through the "sqlite_begin" execution option.

    Writers use BEGIN IMMEDIATE: the file-level write lock is taken up front,
    so two processes cannot both read the lease and then race to write it.
    """

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):  # noqa: ANN001
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        # Best-effort WAL for robustness and online backups
        try:
            cursor.execute("PRAGMA journal_mode=WAL;")
        except Exception:
            logger.warning("could not enable WAL journal mode", exc_info=True)
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin(conn: Connection) -> None:
        mode = conn.get_execution_options().get("sqlite_begin", "DEFERRED")
        conn.exec_driver_sql(f"BEGIN {mode}")


def _is_busy(exc: sa_exc.DBAPIError) -> bool:
    msg = str(exc.orig or exc).lower()
    return "interrupted" in msg or "database is locked" in msg or "database is busy" in msg


def _as_statement(statement: Statement) -> Executable:
    if isinstance(statement, str):
        return text(statement)
    return statement


# ---------------------------------------------------------------------
# Storage engine
# ---------------------------------------------------------------------


class StorageEngine:
    """
    Owns the single physical connection to the datastore.

    Pass one instance explicitly to everything that needs storage; tests build
    independent instances against independent temp files.
    """

    def __init__(
        self,
        database_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be > 0")

        self.database_url = database_url
        self.timeout = float(timeout)
        self._clock = clock
        self._lock = ReadWriteLock()
        self._sqlite = _is_sqlite(database_url)

        if self._sqlite:
            _ensure_sqlite_dir(database_url)

        connect_args: dict = {}
        if self._sqlite:
            # The single connection is handed between worker threads; our lock serializes it.
            connect_args = {"check_same_thread": False, "timeout": self.timeout}

        self._engine: Engine = create_engine(
            database_url,
            echo=False,
            connect_args=connect_args,
            poolclass=QueuePool,
            pool_size=1,
            max_overflow=0,
            pool_timeout=self.timeout,
        )

        if self._sqlite:
            _sqlite_transaction_control(self._engine)

    @classmethod
    def from_settings(cls, settings: Any) -> "StorageEngine":
        return cls(settings.resolved_database_url, timeout=settings.storage_timeout_s)

    @property
    def lock(self) -> ReadWriteLock:
        return self._lock

    # -------------------------
    # Public operations
    # -------------------------

    def execute(
        self,
        statement: Statement,
        parameters: Optional[Mapping[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> int:
        """Run one mutating statement atomically. Returns rows affected."""
        with self.transaction(timeout=timeout) as conn:
            result = conn.execute(_as_statement(statement), dict(parameters or {}))
            return int(result.rowcount or 0)

    def query(
        self,
        statement: Statement,
        parameters: Optional[Mapping[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> List[Row]:
        """Run one read under the shared lock and return all rows."""
        with self._connection(exclusive=False, timeout=timeout) as conn:
            with conn.begin():
                return list(conn.execute(_as_statement(statement), dict(parameters or {})))

    @contextmanager
    def transaction(self, *, timeout: Optional[float] = None) -> Iterator[Connection]:
        """
        Exclusive multi-statement unit.

        Usage:
            with storage.transaction() as conn:
                conn.execute(...)
                conn.execute(...)
        """
        with self._connection(exclusive=True, timeout=timeout) as conn:
            with conn.begin():
                yield conn

    def init_schema(self, *, timeout: Optional[float] = None) -> None:
        """
        Register models, then create missing tables.
        Non-destructive: create_all will not drop or alter existing tables.
        """
        register_models()
        with self.transaction(timeout=timeout) as conn:
            SQLModel.metadata.create_all(conn)

    def migrate(self, *, timeout: Optional[float] = None) -> List[str]:
        """
        Add columns missing from databases created by older releases.
        Returns the names of the columns that were added.
        """
        added: List[str] = []
        with self.transaction(timeout=timeout) as conn:
            existing = _table_columns(conn, "members")
            for col, ddl in _MEMBER_COLUMN_MIGRATIONS:
                if col in existing:
                    continue
                conn.exec_driver_sql(f"ALTER TABLE members ADD COLUMN {col} {ddl}")
                added.append(col)
        if added:
            logger.info("members table migrated; added columns: %s", ", ".join(added))
        return added

    def close(self) -> None:
        self._engine.dispose()

    # -------------------------
    # Internals
    # -------------------------

    def _remaining(self, deadline: float) -> float:
        return max(0.0, deadline - self._clock())

    @contextmanager
    def _connection(self, *, exclusive: bool, timeout: Optional[float]) -> Iterator[Connection]:
        budget = self.timeout if timeout is None else float(timeout)
        deadline = self._clock() + budget
        mode = "write" if exclusive else "read"

        acquired = (
            self._lock.acquire_write(budget) if exclusive else self._lock.acquire_read(budget)
        )
        if not acquired:
            raise StorageTimeout(f"timed out after {budget:.1f}s waiting for the storage {mode} lock")

        try:
            try:
                conn = self._engine.connect()
            except sa_exc.TimeoutError as exc:
                raise StorageTimeout(f"timed out after {budget:.1f}s waiting for a database connection") from exc
            except sa_exc.SQLAlchemyError as exc:
                raise StorageError(f"could not open database connection: {exc}") from exc

            with conn:
                conn.execution_options(sqlite_begin="IMMEDIATE" if exclusive else "DEFERRED")
                raw = conn.connection.driver_connection if self._sqlite else None
                if raw is not None:
                    self._arm_deadline(raw, deadline)
                try:
                    yield conn
                except sa_exc.DBAPIError as exc:
                    if _is_busy(exc) or self._clock() >= deadline:
                        raise StorageTimeout(f"storage {mode} exceeded its {budget:.1f}s deadline: {exc.orig or exc}") from exc
                    raise StorageError(str(exc.orig or exc)) from exc
                except sa_exc.SQLAlchemyError as exc:
                    raise StorageError(str(exc)) from exc
                finally:
                    if raw is not None:
                        raw.set_progress_handler(None, 0)
        finally:
            if exclusive:
                self._lock.release_write()
            else:
                self._lock.release_read()

    def _arm_deadline(self, raw: Any, deadline: float) -> None:
        clock = self._clock
        busy_ms = max(1, int(self._remaining(deadline) * 1000))
        raw.execute(f"PRAGMA busy_timeout = {busy_ms};")
        # Non-zero return aborts the running statement with "interrupted"
        raw.set_progress_handler(lambda: 1 if clock() >= deadline else 0, _PROGRESS_STEPS)


# ---------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------

_MEMBER_COLUMN_MIGRATIONS = (
    ("guild_role_id", "TEXT DEFAULT ''"),
)


def _table_columns(conn: Connection, table: str) -> List[str]:
    rows = conn.exec_driver_sql(f"PRAGMA table_info({table});").all()
    # PRAGMA table_info returns: cid, name, type, notnull, dflt_value, pk
    return [str(r[1]) for r in rows]


def register_models() -> None:
    """
    Central place to import ALL models so SQLModel registers them.
    Keep this list current as you add tables.
    """
    from .models.leader_lease import LeaderLease  # noqa: F401
    from .models.member import Member  # noqa: F401


__all__ = [
    "DEFAULT_TIMEOUT_S",
    "ReadWriteLock",
    "StorageEngine",
    "StorageError",
    "StorageTimeout",
    "register_models",
]
