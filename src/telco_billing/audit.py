"""Explicit change-history emission at the point of mutation."""

from __future__ import annotations

from typing import Any, Mapping

from .db import canonical_json, execute, query_all, rows_as_dicts, utc_now


CHANGE_INSERT = "INSERT"
CHANGE_UPDATE = "UPDATE"


def record_change(
    conn: Any,
    backend: str,
    *,
    entity: str,
    entity_key: str,
    change_type: str,
    snapshot: Mapping[str, Any],
    changed_by: str,
) -> None:
    """Write the after-image inside the caller's transaction."""
    if change_type not in {CHANGE_INSERT, CHANGE_UPDATE}:
        raise ValueError(f"unsupported change_type: {change_type}")
    execute(
        conn,
        backend,
        """
        INSERT INTO change_history (entity, entity_key, change_type, snapshot_json, changed_at_utc, changed_by)
        VALUES ({p1}, {p2}, {p3}, {p4}, {p5}, {p6})
        """,
        (str(entity), str(entity_key), change_type, canonical_json(dict(snapshot)), utc_now(), str(changed_by)),
    )


def change_history(conn: Any, backend: str, *, entity: str, entity_key: str | None = None) -> list[dict[str, Any]]:
    sql = "SELECT entity_key, change_type, snapshot_json, changed_at_utc, changed_by FROM change_history WHERE entity = {p1}"
    params: tuple[Any, ...] = (str(entity),)
    if entity_key is not None:
        sql += " AND entity_key = {p2}"
        params = (str(entity), str(entity_key))
    rows = query_all(conn, backend, sql + " ORDER BY changed_at_utc", params)
    return rows_as_dicts(("entity_key", "change_type", "snapshot_json", "changed_at_utc", "changed_by"), rows)
