"""Shared helpers for working with the catalog database."""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, TypeVar

from flask import g, has_app_context
from sqlalchemy import Table, create_engine, event
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNIQUE_MESSAGE_MARKERS = (
    "unique constraint failed",
    "duplicate entry",
    "duplicate key value",
    "violates unique constraint",
)


class DatabaseEngine:
    """Wrapper exposing context-managed SQLAlchemy connections."""

    def __init__(self, engine: Engine):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        """Return the underlying SQLAlchemy :class:`~sqlalchemy.engine.Engine`."""

        return self._engine

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    @contextmanager
    def sa_connection(self) -> Iterator[Connection]:
        """Yield a SQLAlchemy :class:`~sqlalchemy.engine.Connection`."""

        with self._engine.connect() as conn:
            yield conn

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        """Yield a connection inside a transaction committed on success."""

        with self._engine.begin() as conn:
            yield conn

    def dispose(self) -> None:
        """Dispose the underlying engine's connection pool."""

        self._engine.dispose()


class DatabaseHandle:
    """Per-request proxy around a shared :class:`DatabaseEngine`."""

    def __init__(self, engine: DatabaseEngine):
        self._engine_wrapper = engine

    @property
    def engine(self) -> Engine:
        return self._engine_wrapper.engine

    @property
    def database(self) -> DatabaseEngine:
        return self._engine_wrapper

    def dispose(self) -> None:
        self._engine_wrapper.dispose()

    @contextmanager
    def sa_connection(self) -> Iterator[Connection]:
        with self._engine_wrapper.sa_connection() as conn:
            yield conn

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        with self._engine_wrapper.begin() as conn:
            yield conn


_fallback_connection: DatabaseHandle | DatabaseEngine | None = None
_fallback_handle_cache: DatabaseHandle | None = None


def set_fallback_connection(conn: DatabaseHandle | DatabaseEngine | None) -> None:
    """Configure the engine returned when no Flask app context is active."""

    global _fallback_connection
    global _fallback_handle_cache

    _fallback_connection = conn
    if isinstance(conn, DatabaseHandle):
        _fallback_handle_cache = conn
    else:
        _fallback_handle_cache = None


def _configure_sqlite_connection(conn: Any, *, busy_timeout: float | None = None) -> Any:
    """Apply timeout tuning to SQLite connections."""

    if not isinstance(conn, sqlite3.Connection):
        return conn

    busy_timeout_ms = None
    if busy_timeout is not None:
        busy_timeout_ms = int(max(busy_timeout, 0) * 1000) or None

    pragmas: tuple[tuple[str, str | int | None, bool], ...] = (
        ("busy_timeout", busy_timeout_ms, False),
        ("journal_mode", "WAL", True),
        ("foreign_keys", "ON", False),
    )

    for name, value, fetch_result in pragmas:
        if value is None:
            continue
        try:
            cursor = conn.execute(f"PRAGMA {name}={value}")
            if fetch_result:
                cursor.fetchone()
        except sqlite3.OperationalError:  # pragma: no cover - best effort only
            logger.debug("Unable to apply SQLite pragma %s", name)

    return conn


def _configure_mariadb_connection(conn: Any, *, lock_timeout: float | None = None) -> Any:
    """Apply session-level lock timeouts for MariaDB connections."""

    if lock_timeout is None:
        return conn

    timeout_value = max(int(lock_timeout), 1)
    cursor = conn.cursor()
    try:
        for variable in ("innodb_lock_wait_timeout", "lock_wait_timeout"):
            try:
                cursor.execute(f"SET SESSION {variable} = %s", (timeout_value,))
            except Exception as exc:  # pragma: no cover - unavailable variable
                logger.debug("Unable to set %s: %s", variable, exc)
    finally:
        cursor.close()

    return conn


def _resolve_sqlite_path_from_dsn(dsn: str) -> str:
    """Extract a filesystem path from a ``sqlite:///`` DSN string."""

    parsed = urlparse(dsn)
    if parsed.scheme != "sqlite":
        raise ValueError(f"Unsupported DSN scheme for SQLite resolver: {parsed.scheme}")

    path = unquote(parsed.path or "")
    if parsed.netloc and parsed.netloc not in {"", "localhost"}:
        path = f"//{parsed.netloc}{path}"

    if not path:
        raise ValueError("SQLite DSN must include a filesystem path")

    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = candidate.resolve()
    return os.fspath(candidate)


def build_engine_from_dsn(
    dsn: str,
    *,
    timeout: float | None = None,
    pool_size: int = 5,
    pool_recycle: int = 1_800,
    pool_pre_ping: bool = True,
) -> DatabaseEngine:
    """Return a :class:`DatabaseEngine` configured from ``dsn``."""

    parsed = urlparse(dsn)
    connect_args: dict[str, object] = {}
    effective_timeout = timeout if timeout is not None else 5.0

    if parsed.scheme == "sqlite":
        sqlite_path = _resolve_sqlite_path_from_dsn(dsn)
        normalized_dsn = f"sqlite:///{sqlite_path}"
        connect_args["check_same_thread"] = False
    else:
        normalized_dsn = dsn

    dialect_name = parsed.scheme.split("+", 1)[0]

    engine = create_engine(
        normalized_dsn,
        pool_size=pool_size,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
        connect_args=connect_args,
    )

    if parsed.scheme == "sqlite":

        @event.listens_for(engine, "connect")
        def _on_sqlite_connect(dbapi_conn, connection_record):
            _configure_sqlite_connection(dbapi_conn, busy_timeout=effective_timeout)

    elif dialect_name in {"mysql", "mariadb"}:

        @event.listens_for(engine, "connect")
        def _on_mariadb_connect(dbapi_conn, connection_record):
            _configure_mariadb_connection(dbapi_conn, lock_timeout=effective_timeout)

    return DatabaseEngine(engine)


def get_db(
    connection_factory: Callable[[], DatabaseHandle | DatabaseEngine] | None = None,
    *,
    context_key: str = 'db',
) -> DatabaseHandle:
    """Return the active :class:`DatabaseHandle`, creating one if necessary."""

    def _coerce_handle(value: DatabaseHandle | DatabaseEngine) -> DatabaseHandle:
        if isinstance(value, DatabaseHandle):
            return value
        if isinstance(value, DatabaseEngine):
            return DatabaseHandle(value)
        raise TypeError('connection_factory must return DatabaseHandle or DatabaseEngine')

    def _fallback_handle() -> DatabaseHandle:
        global _fallback_handle_cache

        if _fallback_connection is None:
            raise RuntimeError('Database connection is not configured')
        if _fallback_handle_cache is None:
            _fallback_handle_cache = _coerce_handle(_fallback_connection)
        return _fallback_handle_cache

    if has_app_context():
        if not hasattr(g, context_key):
            if connection_factory is not None:
                setattr(g, context_key, _coerce_handle(connection_factory()))
            else:
                setattr(g, context_key, _fallback_handle())
        return getattr(g, context_key)

    if _fallback_connection is None:
        if connection_factory is None:
            raise RuntimeError('Database connection is not configured')
        set_fallback_connection(connection_factory())
    return _fallback_handle()


def is_unique_violation(exc: BaseException) -> bool:
    """Return ``True`` when ``exc`` reports a unique constraint violation.

    SQLite, PostgreSQL and MySQL/MariaDB drivers all surface duplicates as
    :class:`~sqlalchemy.exc.IntegrityError`, but so do foreign key and
    not-null failures, which must keep propagating.
    """

    if not isinstance(exc, IntegrityError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate == "23505":
        return True
    errno = getattr(orig, "errno", None)
    if errno is None:
        args = getattr(orig, "args", ())
        if args and isinstance(args[0], int):
            errno = args[0]
    if errno == 1062:
        return True
    message = str(orig).lower()
    return any(marker in message for marker in _UNIQUE_MESSAGE_MARKERS)


def unique_violation_mentions(exc: BaseException, *names: str) -> bool:
    """Return ``True`` when the violated key mentions any of ``names``.

    Index and constraint names embed their column names, so the driver
    message is enough to tell which unique key lost the race.
    """

    if not is_unique_violation(exc):
        return False
    orig = getattr(exc, "orig", exc)
    message = str(orig).lower()
    return any(name.lower() in message for name in names)


def upsert_with_race_recovery(
    insert: Callable[[], T],
    reread: Callable[[IntegrityError], T | None],
    *,
    label: str = "row",
) -> T:
    """Run ``insert`` and converge on the existing row when a racer won.

    A unique violation is treated as a signal that a concurrent writer
    created the same logical entity: ``reread`` is called with the error
    and its result returned. Any other error, or a reread that finds
    nothing, propagates.
    """

    try:
        return insert()
    except IntegrityError as exc:
        if not is_unique_violation(exc):
            raise
        logger.debug("Insert race lost for %s; re-reading existing row", label)
        recovered = reread(exc)
        if recovered is None:
            raise
        return recovered


def insert_ignore(conn: Connection, table: Table, values: Mapping[str, Any]) -> bool:
    """Insert ``values`` unless a unique key already holds them.

    Returns ``True`` when a row was written.
    """

    dialect = conn.dialect.name
    if dialect == "sqlite":
        stmt = sqlite_insert(table).values(**values).on_conflict_do_nothing()
    elif dialect == "postgresql":
        stmt = postgresql_insert(table).values(**values).on_conflict_do_nothing()
    elif dialect in {"mysql", "mariadb"}:
        stmt = table.insert().values(**values).prefix_with("IGNORE")
    else:  # pragma: no cover - other dialects fall back to a savepoint
        with conn.begin_nested() as savepoint:
            try:
                conn.execute(table.insert().values(**values))
            except IntegrityError as exc:
                if not is_unique_violation(exc):
                    raise
                savepoint.rollback()
                return False
        return True
    result = conn.execute(stmt)
    return bool(result.rowcount)


__all__ = [
    "DatabaseEngine",
    "DatabaseHandle",
    "build_engine_from_dsn",
    "get_db",
    "insert_ignore",
    "is_unique_violation",
    "set_fallback_connection",
    "unique_violation_mentions",
    "upsert_with_race_recovery",
]
