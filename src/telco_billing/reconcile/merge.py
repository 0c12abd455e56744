"""Staging -> production merge with per-entity natural-key rules."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any, Mapping

from ..audit import CHANGE_INSERT, CHANGE_UPDATE, record_change
from ..db import as_decimal, backend_for, connect, execute, query_one, utc_now
from ..errors import reason_code
from ..ids import cdr_id
from ..ledger import ImportLedger
from ..schema import ensure_warehouse_schema
from ..staging.contracts import (
    ENTITY_CDRS,
    ENTITY_ORDER,
    ENTITY_SUBSCRIBER_PLANS,
    ENTITY_SUBSCRIBERS,
    ENTITY_TARIFF_PLANS,
    PRODUCTION_TABLES,
    STATUS_FAILURE,
    STATUS_PARTIAL_SUCCESS,
    STATUS_SUCCESS,
    require_entity,
)
from ..staging.store import clear_staging, fetch_staged

if TYPE_CHECKING:
    from ..config import TelcoBillingProfile


logger = logging.getLogger("telco_billing.reconcile.merge")

PROCESS_MERGE = "reconciler.merge"
PROCESS_RECONCILE_ALL = "reconciler.reconcile_all"
RUN_SUMMARY_SOURCE = "reconcile_all"


@dataclass(frozen=True)
class _DimensionRule:
    """Match on ``keys``; overwrite ``mutable`` columns when they differ."""

    table: str
    keys: tuple[str, ...]
    mutable: tuple[str, ...]
    stamps_actor: bool


_DIMENSION_RULES: dict[str, _DimensionRule] = {
    ENTITY_SUBSCRIBERS: _DimensionRule(
        table=PRODUCTION_TABLES[ENTITY_SUBSCRIBERS],
        keys=("msisdn",),
        mutable=(
            "first_name",
            "last_name",
            "date_of_birth",
            "email_address",
            "registration_date",
            "status",
        ),
        stamps_actor=True,
    ),
    ENTITY_TARIFF_PLANS: _DimensionRule(
        table=PRODUCTION_TABLES[ENTITY_TARIFF_PLANS],
        keys=("plan_id",),
        mutable=(
            "plan_name",
            "description",
            "monthly_fee",
            "call_rate_per_minute",
            "sms_rate_per_message",
            "data_rate_per_mb",
            "data_limit_mb",
            "voice_limit_minutes",
            "sms_limit",
            "valid_from",
            "valid_to",
        ),
        stamps_actor=True,
    ),
    # Start date and plan binding are part of the key; only the end date moves.
    ENTITY_SUBSCRIBER_PLANS: _DimensionRule(
        table=PRODUCTION_TABLES[ENTITY_SUBSCRIBER_PLANS],
        keys=("subscriber_msisdn", "plan_id", "plan_start_date"),
        mutable=("plan_end_date",),
        stamps_actor=False,
    ),
}

_CDR_COLUMNS: tuple[str, ...] = (
    "cdr_id",
    "subscriber_msisdn",
    "call_type",
    "call_start_time",
    "call_end_time",
    "call_duration_sec",
    "destination_number",
    "call_cost",
    "call_direction",
    "source_file_name",
    "created_at_utc",
)


@dataclass(frozen=True)
class MergeResult:
    entity: str
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    error: str | None = None

    @property
    def status(self) -> str:
        return STATUS_FAILURE if self.error else STATUS_SUCCESS

    @property
    def records(self) -> int:
        return self.inserted + self.updated

    def as_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "inserted": self.inserted,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "status": self.status,
            "error": self.error,
        }


@dataclass(frozen=True)
class ReconcileRunResult:
    results: tuple[MergeResult, ...] = field(default_factory=tuple)
    staging_cleared: bool = False

    @property
    def records(self) -> int:
        return sum(item.records for item in self.results)

    @property
    def errors(self) -> int:
        return sum(1 for item in self.results if item.error)

    @property
    def status(self) -> str:
        if self.errors == 0:
            return STATUS_SUCCESS
        if self.errors >= len(self.results):
            return STATUS_FAILURE
        return STATUS_PARTIAL_SUCCESS

    def result_for(self, entity: str) -> MergeResult | None:
        for item in self.results:
            if item.entity == entity:
                return item
        return None

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "records": self.records,
            "errors": self.errors,
            "staging_cleared": self.staging_cleared,
            "entities": [item.as_dict() for item in self.results],
        }


class Reconciler:
    """Merges staged rows into production, one transaction per entity."""

    def __init__(self, *, warehouse_dsn: str, ledger: ImportLedger, changed_by: str = "telco_billing") -> None:
        self.warehouse_dsn = str(warehouse_dsn)
        self.backend = backend_for(self.warehouse_dsn)
        self.ledger = ledger
        self.changed_by = str(changed_by)
        conn = connect(self.warehouse_dsn)
        try:
            ensure_warehouse_schema(conn, self.backend)
            conn.commit()
        finally:
            conn.close()

    @classmethod
    def from_profile(cls, profile: "TelcoBillingProfile", *, ledger: ImportLedger | None = None) -> "Reconciler":
        return cls(
            warehouse_dsn=profile.warehouse_dsn,
            ledger=ledger or ImportLedger(profile.ledger_dsn),
            changed_by=profile.policy.changed_by,
        )

    def reconcile_entity(self, entity: str) -> MergeResult:
        """Merge one entity; staging is kept for the full-run cleanup."""
        entity = require_entity(entity)
        started_at = utc_now()
        conn = connect(self.warehouse_dsn)
        try:
            result = self._merge_entity(conn, entity)
        finally:
            conn.close()
        self.ledger.record_summary(
            f"reconcile_{entity}",
            started_at,
            result.records,
            1 if result.error else 0,
            result.status,
            result.error,
        )
        return result

    def reconcile_all(self) -> ReconcileRunResult:
        started_at = utc_now()
        completed: list[MergeResult] = []
        conn = connect(self.warehouse_dsn)
        try:
            for entity in ENTITY_ORDER:
                completed.append(self._merge_entity(conn, entity))
            cleared = False
            if all(item.error is None for item in completed):
                removed = clear_staging(conn, self.backend)
                conn.commit()
                cleared = True
                logger.info("Staging cleared after clean reconcile: %s", removed)
            else:
                logger.warning("Staging retained; failed entities: %s", [item.entity for item in completed if item.error])
        except Exception as exc:
            conn.rollback()
            logger.exception("Reconcile run failed after %s entities", len(completed))
            self.ledger.record_error(PROCESS_RECONCILE_ALL, None, message=f"{reason_code(exc)}: {exc}")
            partial = ReconcileRunResult(results=tuple(completed))
            self.ledger.record_summary(
                RUN_SUMMARY_SOURCE,
                started_at,
                partial.records,
                partial.errors + 1,
                STATUS_FAILURE,
                str(exc),
            )
            raise
        finally:
            conn.close()

        run = ReconcileRunResult(results=tuple(completed), staging_cleared=cleared)
        self.ledger.record_summary(RUN_SUMMARY_SOURCE, started_at, run.records, run.errors, run.status)
        return run

    def _merge_entity(self, conn: Any, entity: str) -> MergeResult:
        production_table = PRODUCTION_TABLES[entity]
        try:
            rows = fetch_staged(conn, self.backend, entity)
            if entity == ENTITY_CDRS:
                result = self._merge_cdrs(conn, rows)
            else:
                result = self._merge_dimension(conn, entity, _DIMENSION_RULES[entity], rows)
            conn.commit()
        except Exception as exc:
            conn.rollback()
            message = f"{type(exc).__name__}: {exc}"
            logger.error("Merge failed entity=%s table=%s: %s", entity, production_table, message)
            self.ledger.record_error(PROCESS_MERGE, production_table, message=message)
            return MergeResult(entity=entity, error=message)
        logger.info(
            "Merged %s inserted=%s updated=%s unchanged=%s",
            entity,
            result.inserted,
            result.updated,
            result.unchanged,
        )
        return result

    def _merge_dimension(
        self,
        conn: Any,
        entity: str,
        rule: _DimensionRule,
        rows: list[dict[str, Any]],
    ) -> MergeResult:
        inserted = updated = unchanged = 0
        key_clause = " AND ".join(f"{name} = {{p{idx}}}" for idx, name in enumerate(rule.keys, start=1))
        select_sql = f"SELECT {', '.join(rule.mutable)} FROM {rule.table} WHERE {key_clause}"
        for row in rows:
            key_values = tuple(row[name] for name in rule.keys)
            incoming = {name: row.get(name) for name in rule.mutable}
            existing = query_one(conn, self.backend, select_sql, key_values)
            now = utc_now()
            if existing is None:
                self._insert_dimension(conn, rule, row, now)
                change_type = CHANGE_INSERT
                inserted += 1
            elif _differs(dict(zip(rule.mutable, existing)), incoming):
                self._update_dimension(conn, rule, key_values, incoming, now)
                change_type = CHANGE_UPDATE
                updated += 1
            else:
                unchanged += 1
                continue
            snapshot = {name: row.get(name) for name in rule.keys + rule.mutable}
            record_change(
                conn,
                self.backend,
                entity=rule.table,
                entity_key="|".join(str(value) for value in key_values),
                change_type=change_type,
                snapshot=snapshot,
                changed_by=self.changed_by,
            )
        return MergeResult(entity=entity, inserted=inserted, updated=updated, unchanged=unchanged)

    def _insert_dimension(self, conn: Any, rule: _DimensionRule, row: Mapping[str, Any], now: str) -> None:
        columns = list(rule.keys + rule.mutable) + ["created_at_utc"]
        values: list[Any] = [row.get(name) for name in rule.keys + rule.mutable] + [now]
        if rule.stamps_actor:
            columns.append("created_by")
            values.append(self.changed_by)
        placeholders = ", ".join(f"{{p{idx}}}" for idx in range(1, len(columns) + 1))
        execute(
            conn,
            self.backend,
            f"INSERT INTO {rule.table} ({', '.join(columns)}) VALUES ({placeholders})",
            tuple(values),
        )

    def _update_dimension(
        self,
        conn: Any,
        rule: _DimensionRule,
        key_values: tuple[Any, ...],
        incoming: Mapping[str, Any],
        now: str,
    ) -> None:
        assignments = list(rule.mutable) + ["updated_at_utc"]
        values: list[Any] = [incoming[name] for name in rule.mutable] + [now]
        if rule.stamps_actor:
            assignments.append("updated_by")
            values.append(self.changed_by)
        set_clause = ", ".join(f"{name} = {{p{idx}}}" for idx, name in enumerate(assignments, start=1))
        offset = len(assignments)
        key_clause = " AND ".join(
            f"{name} = {{p{offset + idx}}}" for idx, name in enumerate(rule.keys, start=1)
        )
        execute(
            conn,
            self.backend,
            f"UPDATE {rule.table} SET {set_clause} WHERE {key_clause}",
            tuple(values) + key_values,
        )

    def _merge_cdrs(self, conn: Any, rows: list[dict[str, Any]]) -> MergeResult:
        inserted = unchanged = 0
        table = PRODUCTION_TABLES[ENTITY_CDRS]
        placeholders = ", ".join(f"{{p{idx}}}" for idx in range(1, len(_CDR_COLUMNS) + 1))
        insert_sql = f"INSERT INTO {table} ({', '.join(_CDR_COLUMNS)}) VALUES ({placeholders})"
        for row in rows:
            identity = cdr_id(
                subscriber_msisdn=row["subscriber_msisdn"],
                call_type=row["call_type"],
                call_start_time=row["call_start_time"],
                call_end_time=row["call_end_time"],
            )
            if query_one(conn, self.backend, f"SELECT 1 FROM {table} WHERE cdr_id = {{p1}}", (identity,)) is not None:
                unchanged += 1
                continue
            record = {
                "cdr_id": identity,
                "subscriber_msisdn": row["subscriber_msisdn"],
                "call_type": row["call_type"],
                "call_start_time": row["call_start_time"],
                "call_end_time": row["call_end_time"],
                "call_duration_sec": as_decimal(row["call_duration_sec"]),
                "destination_number": row.get("destination_number"),
                "call_cost": row.get("call_cost"),
                "call_direction": row["call_direction"],
                "source_file_name": row.get("source_file_name"),
                "created_at_utc": utc_now(),
            }
            execute(conn, self.backend, insert_sql, tuple(record[name] for name in _CDR_COLUMNS))
            record_change(
                conn,
                self.backend,
                entity=table,
                entity_key=identity,
                change_type=CHANGE_INSERT,
                snapshot=record,
                changed_by=self.changed_by,
            )
            inserted += 1
        return MergeResult(entity=ENTITY_CDRS, inserted=inserted, unchanged=unchanged)


def _differs(current: Mapping[str, Any], incoming: Mapping[str, Any]) -> bool:
    return any(_comparable(current.get(name)) != _comparable(value) for name, value in incoming.items())


def _comparable(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text != "" else None
