"""Import ledger + error log with a commit boundary of its own."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any

from ..db import (
    autocommit_connection,
    backend_for,
    db_value,
    execute,
    query_all,
    utc_now,
)
from ..schema import ensure_ledger_schema


logger = logging.getLogger("telco_billing.ledger.store")

_MESSAGE_LIMIT = 4000


@dataclass(frozen=True)
class ImportSummaryRecord:
    source_name: str
    import_time: str
    record_count: int
    error_count: int
    status: str
    error_message: str | None


@dataclass(frozen=True)
class ErrorLogRecord:
    process: str
    affected_table: str | None
    error_time: str
    error_message: str
    raw_record: str | None
    source_file: str | None


class ImportLedger:
    """Durable run summaries and row/run failures.

    Each write opens its own connection scope and commits before returning, so
    an entry survives even when the caller's warehouse transaction is rolled
    back afterwards.
    """

    def __init__(self, locator: str) -> None:
        self.locator = str(locator or "").strip()
        if not self.locator:
            raise ValueError("ledger locator is required")
        self.backend = backend_for(self.locator)
        with autocommit_connection(self.locator) as conn:
            ensure_ledger_schema(conn, self.backend)

    def record_summary(
        self,
        source_name: str,
        run_time: datetime | str | None,
        record_count: int,
        error_count: int = 0,
        status: str = "SUCCESS",
        message: str | None = None,
    ) -> ImportSummaryRecord:
        record = ImportSummaryRecord(
            source_name=str(source_name),
            import_time=str(db_value(run_time) if run_time is not None else utc_now()),
            record_count=int(record_count),
            error_count=int(error_count),
            status=str(status),
            error_message=_clip(message),
        )
        with autocommit_connection(self.locator) as conn:
            execute(
                conn,
                self.backend,
                """
                INSERT INTO import_log (source_name, import_time, record_count, error_count, status, error_message)
                VALUES ({p1}, {p2}, {p3}, {p4}, {p5}, {p6})
                """,
                (
                    record.source_name,
                    record.import_time,
                    record.record_count,
                    record.error_count,
                    record.status,
                    record.error_message,
                ),
            )
        logger.info(
            "Import summary source=%s status=%s records=%s errors=%s",
            record.source_name,
            record.status,
            record.record_count,
            record.error_count,
        )
        return record

    def record_error(
        self,
        process: str,
        affected_table: str | None,
        timestamp: datetime | str | None = None,
        message: str = "",
        raw_record: str | None = None,
        source_file: str | None = None,
    ) -> ErrorLogRecord:
        record = ErrorLogRecord(
            process=str(process),
            affected_table=affected_table,
            error_time=str(db_value(timestamp) if timestamp is not None else utc_now()),
            error_message=_clip(message) or "UNKNOWN_ERROR",
            raw_record=_clip(raw_record),
            source_file=source_file,
        )
        with autocommit_connection(self.locator) as conn:
            execute(
                conn,
                self.backend,
                """
                INSERT INTO log_errors (process, affected_table, error_time, error_message, raw_record, source_file)
                VALUES ({p1}, {p2}, {p3}, {p4}, {p5}, {p6})
                """,
                (
                    record.process,
                    record.affected_table,
                    record.error_time,
                    record.error_message,
                    record.raw_record,
                    record.source_file,
                ),
            )
        return record

    def summaries(self, *, source_name: str | None = None) -> list[ImportSummaryRecord]:
        sql = """
            SELECT source_name, import_time, record_count, error_count, status, error_message
            FROM import_log
        """
        params: tuple[Any, ...] = ()
        if source_name is not None:
            sql += " WHERE source_name = {p1}"
            params = (str(source_name),)
        with autocommit_connection(self.locator) as conn:
            rows = query_all(conn, self.backend, sql + " ORDER BY import_time", params)
        return [
            ImportSummaryRecord(
                source_name=str(row[0]),
                import_time=str(row[1]),
                record_count=int(row[2] or 0),
                error_count=int(row[3] or 0),
                status=str(row[4]),
                error_message=row[5],
            )
            for row in rows
        ]

    def errors(self, *, process: str | None = None) -> list[ErrorLogRecord]:
        sql = """
            SELECT process, affected_table, error_time, error_message, raw_record, source_file
            FROM log_errors
        """
        params: tuple[Any, ...] = ()
        if process is not None:
            sql += " WHERE process = {p1}"
            params = (str(process),)
        with autocommit_connection(self.locator) as conn:
            rows = query_all(conn, self.backend, sql + " ORDER BY error_time", params)
        return [
            ErrorLogRecord(
                process=str(row[0]),
                affected_table=row[1],
                error_time=str(row[2]),
                error_message=str(row[3]),
                raw_record=row[4],
                source_file=row[5],
            )
            for row in rows
        ]


def _clip(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text[:_MESSAGE_LIMIT]
