"""Shared SQLite/Postgres runtime helpers for warehouse and ledger stores."""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import date, datetime, timezone
from decimal import Decimal
import json
from pathlib import Path
import re
import sqlite3
import threading
import time
from typing import Any, Iterable, Mapping

import psycopg


BACKEND_SQLITE = "sqlite"
BACKEND_POSTGRES = "postgres"

_PLACEHOLDER_PATTERN = re.compile(r"\{p(\d+)\}")
_THREAD_LOCAL = threading.local()


def is_postgres_dsn(value: str | None) -> bool:
    if not value:
        return False
    return value.startswith("postgres://") or value.startswith("postgresql://")


def backend_for(locator: str) -> str:
    return BACKEND_POSTGRES if is_postgres_dsn(locator) else BACKEND_SQLITE


def sqlite_path(locator: str) -> str:
    text = str(locator or "").strip()
    if text.startswith("sqlite:///"):
        return text[len("sqlite:///") :]
    if text.startswith("sqlite://"):
        return text[len("sqlite://") :]
    return text


def connect(locator: str) -> Any:
    """Open a dedicated connection; the caller owns commit/rollback/close."""
    if backend_for(locator) == BACKEND_POSTGRES:
        return psycopg.connect(locator)
    path = Path(sqlite_path(locator))
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=30)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def render_sql(sql: str, backend: str) -> str:
    if backend == BACKEND_SQLITE:
        return _PLACEHOLDER_PATTERN.sub("?", sql)
    if backend == BACKEND_POSTGRES:
        return _PLACEHOLDER_PATTERN.sub("%s", sql)
    raise ValueError(f"unsupported backend: {backend}")


def ordered_params(sql: str, params: tuple[Any, ...]) -> tuple[Any, ...]:
    if not params:
        return tuple()
    ordered: list[Any] = []
    for token in _PLACEHOLDER_PATTERN.findall(sql):
        idx = int(token) - 1
        if idx < 0 or idx >= len(params):
            raise ValueError(f"placeholder index out of range: p{token}")
        ordered.append(db_value(params[idx]))
    return tuple(ordered)


def execute(conn: Any, backend: str, sql: str, params: tuple[Any, ...] = ()) -> int:
    cur = conn.execute(render_sql(sql, backend), ordered_params(sql, params))
    return int(getattr(cur, "rowcount", 0) or 0)


def query_one(conn: Any, backend: str, sql: str, params: tuple[Any, ...] = ()) -> Any:
    cur = conn.execute(render_sql(sql, backend), ordered_params(sql, params))
    return cur.fetchone()


def query_all(conn: Any, backend: str, sql: str, params: tuple[Any, ...] = ()) -> list[Any]:
    cur = conn.execute(render_sql(sql, backend), ordered_params(sql, params))
    return list(cur.fetchall())


def execute_script(conn: Any, backend: str, sql: str) -> None:
    if backend == BACKEND_SQLITE:
        conn.executescript(sql)
        return
    statements = [item.strip() for item in sql.split(";") if item.strip()]
    for statement in statements:
        conn.execute(statement)


def db_value(value: Any) -> Any:
    """Coerce Python values into the text forms both backends store."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.replace(microsecond=0, tzinfo=None).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


def as_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=True, separators=(",", ":"), default=_json_default)


def utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _json_default(value: Any) -> Any:
    if isinstance(value, (Decimal, date, datetime)):
        return db_value(value)
    raise TypeError(f"not JSON serializable: {type(value).__name__}")


class _ReusedPostgresContext(AbstractContextManager[psycopg.Connection[Any]]):
    def __init__(self, *, dsn: str, connect_kwargs: Mapping[str, Any]) -> None:
        self._dsn = str(dsn or "").strip()
        self._connect_kwargs = dict(connect_kwargs)
        self._key = canonical_json({"dsn": self._dsn, "kwargs": self._connect_kwargs})
        self._connection: psycopg.Connection[Any] | None = None

    def __enter__(self) -> psycopg.Connection[Any]:
        self._connection = _acquire_connection(self._key, self._dsn, self._connect_kwargs)
        return self._connection

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> bool:
        connection = self._connection
        self._connection = None
        if connection is None:
            return False
        if exc_type is not None:
            try:
                connection.rollback()
            except psycopg.Error:
                _drop_connection(self._key)
            return False
        try:
            connection.commit()
        except psycopg.Error:
            _drop_connection(self._key)
            raise
        if connection.closed or connection.broken:
            _drop_connection(self._key)
        return False


class _SqliteCommitContext(AbstractContextManager[sqlite3.Connection]):
    def __init__(self, path: str) -> None:
        self._path = path
        self._connection: sqlite3.Connection | None = None

    def __enter__(self) -> sqlite3.Connection:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._connection = sqlite3.connect(self._path, timeout=30)
        return self._connection

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> bool:
        connection = self._connection
        self._connection = None
        if connection is None:
            return False
        try:
            if exc_type is None:
                connection.commit()
            else:
                connection.rollback()
        finally:
            connection.close()
        return False


def autocommit_connection(locator: str) -> AbstractContextManager[Any]:
    """Connection scope that commits on exit, independent of any other open transaction."""
    if backend_for(locator) == BACKEND_POSTGRES:
        return _ReusedPostgresContext(dsn=locator, connect_kwargs={"application_name": "telco_billing_ledger"})
    return _SqliteCommitContext(sqlite_path(locator))


def _thread_connections() -> dict[str, psycopg.Connection[Any]]:
    value = getattr(_THREAD_LOCAL, "connections", None)
    if isinstance(value, dict):
        return value
    connections: dict[str, psycopg.Connection[Any]] = {}
    _THREAD_LOCAL.connections = connections
    return connections


def _acquire_connection(key: str, dsn: str, connect_kwargs: Mapping[str, Any]) -> psycopg.Connection[Any]:
    connections = _thread_connections()
    cached = connections.get(key)
    if cached is not None and not (cached.closed or cached.broken):
        return cached
    if cached is not None:
        _drop_connection(key)

    retries = 3
    backoff_seconds = 0.05
    last_error: Exception | None = None
    for attempt in range(retries):
        try:
            connection = psycopg.connect(dsn, **dict(connect_kwargs))
            connections[key] = connection
            return connection
        except psycopg.OperationalError as exc:
            last_error = exc
            if attempt >= (retries - 1):
                break
            time.sleep(backoff_seconds * (2**attempt))
    if last_error is not None:
        raise last_error
    raise psycopg.OperationalError("postgres connection attempt failed")


def _drop_connection(key: str) -> None:
    connection = _thread_connections().pop(key, None)
    if connection is None:
        return
    try:
        connection.close()
    except psycopg.Error:
        pass


def rows_as_dicts(columns: Iterable[str], rows: Iterable[Any]) -> list[dict[str, Any]]:
    names = tuple(columns)
    return [dict(zip(names, row)) for row in rows]
