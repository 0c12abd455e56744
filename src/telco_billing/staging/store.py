"""Staging area writes, reads and cleanup."""

from __future__ import annotations

from typing import Any, Iterable

from ..db import execute, query_all, query_one, rows_as_dicts
from .contracts import (
    ENTITY_ORDER,
    EXTRACT_COLUMNS,
    STAGING_TABLES,
    StagedRecord,
    require_entity,
)


def staging_columns(entity: str) -> tuple[str, ...]:
    return EXTRACT_COLUMNS[require_entity(entity)] + ("load_timestamp",)


def insert_staged(conn: Any, backend: str, entity: str, records: Iterable[StagedRecord], *, load_timestamp: str) -> int:
    columns = staging_columns(entity)
    placeholders = ", ".join(f"{{p{idx}}}" for idx in range(1, len(columns) + 1))
    sql = f"INSERT INTO {STAGING_TABLES[entity]} ({', '.join(columns)}) VALUES ({placeholders})"
    written = 0
    for record in records:
        row = record.as_row()
        row["load_timestamp"] = load_timestamp
        execute(conn, backend, sql, tuple(row.get(name) for name in columns))
        written += 1
    return written


def fetch_staged(conn: Any, backend: str, entity: str) -> list[dict[str, Any]]:
    columns = staging_columns(entity)
    rows = query_all(
        conn,
        backend,
        f"SELECT {', '.join(columns)} FROM {STAGING_TABLES[require_entity(entity)]} ORDER BY load_timestamp",
    )
    return rows_as_dicts(columns, rows)


def count_staged(conn: Any, backend: str, entity: str) -> int:
    row = query_one(conn, backend, f"SELECT COUNT(1) FROM {STAGING_TABLES[require_entity(entity)]}")
    return int((row[0] if row is not None else 0) or 0)


def known_subscriber_msisdns(conn: Any, backend: str) -> frozenset[str]:
    """Subscribers a dependent row may reference: staged now or already in production."""
    rows = query_all(
        conn,
        backend,
        """
        SELECT msisdn FROM staging_subscriber
        UNION
        SELECT msisdn FROM subscriber
        """,
    )
    return frozenset(str(row[0]) for row in rows if row[0] is not None)


def clear_staging(conn: Any, backend: str, entities: Iterable[str] = ENTITY_ORDER) -> dict[str, int]:
    cleared: dict[str, int] = {}
    for entity in (require_entity(item) for item in entities):
        cleared[entity] = execute(conn, backend, f"DELETE FROM {STAGING_TABLES[entity]}")
    return cleared
