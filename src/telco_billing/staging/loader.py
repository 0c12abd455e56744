"""Staging loader: extract -> validate -> staging area, with per-row error isolation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping

from ..archive import Archiver, DirectoryArchiver, NullArchiver
from ..db import backend_for, canonical_json, connect, utc_now
from ..errors import ExtractSourceError, reason_code
from ..ledger import ImportLedger
from ..schema import ensure_warehouse_schema
from .contracts import (
    ENTITY_CDRS,
    ENTITY_ORDER,
    ENTITY_SUBSCRIBER_PLANS,
    STAGING_TABLES,
    STATUS_COMPLETED_WITH_ERRORS,
    STATUS_FAILURE,
    STATUS_SUCCESS,
    require_entity,
)
from .extract import CsvExtractSource, extract_file_name
from .store import clear_staging as clear_staging_tables
from .store import insert_staged, known_subscriber_msisdns
from .validation import validate_batch

if TYPE_CHECKING:
    from ..config import TelcoBillingProfile


logger = logging.getLogger("telco_billing.staging.loader")

PROCESS_LOAD_ENTITY = "staging_loader.load_entity"
PROCESS_LOAD_ALL = "staging_loader.load_all"
RUN_SUMMARY_SOURCE = "load_all"

# Entities whose rows must reference a staged or known subscriber.
_GATED_ENTITIES = frozenset({ENTITY_SUBSCRIBER_PLANS, ENTITY_CDRS})


@dataclass(frozen=True)
class LoadResult:
    entity: str
    source_file: str
    accepted: int
    rejected: int
    unmatched: int = 0
    duplicates: int = 0
    unmatched_reported: bool = False

    @property
    def errors(self) -> int:
        return self.rejected + (self.unmatched if self.unmatched_reported else 0)

    @property
    def status(self) -> str:
        return STATUS_SUCCESS if self.errors == 0 else STATUS_COMPLETED_WITH_ERRORS

    def as_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "source_file": self.source_file,
            "accepted": self.accepted,
            "rejected": self.rejected,
            "unmatched": self.unmatched,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "status": self.status,
        }


@dataclass(frozen=True)
class LoadRunResult:
    results: tuple[LoadResult, ...] = field(default_factory=tuple)

    @property
    def records(self) -> int:
        return sum(item.accepted for item in self.results)

    @property
    def errors(self) -> int:
        return sum(item.errors for item in self.results)

    @property
    def status(self) -> str:
        return STATUS_SUCCESS if self.errors == 0 else STATUS_COMPLETED_WITH_ERRORS

    def result_for(self, entity: str) -> LoadResult | None:
        for item in self.results:
            if item.entity == entity:
                return item
        return None

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "records": self.records,
            "errors": self.errors,
            "entities": [item.as_dict() for item in self.results],
        }


class StagingLoader:
    """Drives each extract through validation into the staging tables."""

    def __init__(
        self,
        *,
        warehouse_dsn: str,
        ledger: ImportLedger,
        extract_root: Path,
        extract_names: Mapping[str, str],
        batch_size: int = 10000,
        archiver: Archiver | None = None,
        report_referential_gaps: bool = False,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.warehouse_dsn = str(warehouse_dsn)
        self.backend = backend_for(self.warehouse_dsn)
        self.ledger = ledger
        self.extract_root = Path(extract_root)
        self.extract_names = dict(extract_names)
        self.batch_size = int(batch_size)
        self.archiver: Archiver = archiver or NullArchiver()
        self.report_referential_gaps = bool(report_referential_gaps)
        conn = connect(self.warehouse_dsn)
        try:
            ensure_warehouse_schema(conn, self.backend)
            conn.commit()
        finally:
            conn.close()

    @classmethod
    def from_profile(
        cls,
        profile: "TelcoBillingProfile",
        *,
        ledger: ImportLedger | None = None,
        archiver: Archiver | None = None,
    ) -> "StagingLoader":
        if archiver is None and profile.archive_root is not None:
            archiver = DirectoryArchiver(profile.extract_root, profile.archive_root)
        return cls(
            warehouse_dsn=profile.warehouse_dsn,
            ledger=ledger or ImportLedger(profile.ledger_dsn),
            extract_root=profile.extract_root,
            extract_names=profile.extract_names,
            batch_size=profile.policy.batch_size,
            archiver=archiver,
            report_referential_gaps=profile.policy.report_referential_gaps,
        )

    def load_entity(self, entity: str, *, run_date: date | None = None) -> LoadResult:
        entity = require_entity(entity)
        run_date = run_date or date.today()
        conn = connect(self.warehouse_dsn)
        try:
            return self._load_entity(conn, entity, run_date=run_date)
        except Exception as exc:
            conn.rollback()
            logger.exception("Staging load failed entity=%s", entity)
            self.ledger.record_error(
                PROCESS_LOAD_ENTITY,
                STAGING_TABLES[entity],
                message=f"{reason_code(exc)}: {exc}",
            )
            self.ledger.record_summary(
                self._file_name(entity, run_date),
                utc_now(),
                0,
                1,
                STATUS_FAILURE,
                str(exc),
            )
            raise
        finally:
            conn.close()

    def load_all(self, *, run_date: date | None = None, clear_staging: bool = False) -> LoadRunResult:
        """Load subscribers, tariff plans, assignments then CDRs; any raised error is fatal for the run."""
        run_date = run_date or date.today()
        started_at = utc_now()
        completed: list[LoadResult] = []
        conn = connect(self.warehouse_dsn)
        try:
            if clear_staging:
                cleared = clear_staging_tables(conn, self.backend)
                conn.commit()
                logger.info("Cleared staging tables before load: %s", cleared)
            for entity in ENTITY_ORDER:
                completed.append(self._load_entity(conn, entity, run_date=run_date))
        except Exception as exc:
            conn.rollback()
            partial = LoadRunResult(results=tuple(completed))
            logger.exception("Staging load_all failed after %s entities", len(completed))
            self.ledger.record_error(PROCESS_LOAD_ALL, None, message=f"{reason_code(exc)}: {exc}")
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

        run = LoadRunResult(results=tuple(completed))
        self.ledger.record_summary(RUN_SUMMARY_SOURCE, started_at, run.records, run.errors, run.status)
        return run

    def _load_entity(self, conn: Any, entity: str, *, run_date: date) -> LoadResult:
        source = CsvExtractSource.for_run(
            entity,
            extract_root=self.extract_root,
            template=self.extract_names[entity],
            run_date=run_date,
        )
        started_at = utc_now()
        known = known_subscriber_msisdns(conn, self.backend) if entity in _GATED_ENTITIES else None
        plan = source.plan(known_msisdns=known)
        table = STAGING_TABLES[entity]

        accepted = 0
        rejected = 0
        for rows in plan.batches(self.batch_size):
            outcome = validate_batch(entity, rows)
            accepted += insert_staged(conn, self.backend, entity, outcome.accepted, load_timestamp=started_at)
            conn.commit()
            for rejection in outcome.rejected:
                rejected += 1
                logger.info("Rejected %s row from %s: %s", entity, source.file_name, rejection.reason)
                self.ledger.record_error(
                    PROCESS_LOAD_ENTITY,
                    table,
                    message=rejection.reason,
                    raw_record=canonical_json(rejection.raw),
                    source_file=source.file_name,
                )

        if plan.unmatched_rows:
            logger.warning(
                "Excluded %s %s rows referencing unknown subscribers from %s",
                plan.unmatched_rows,
                entity,
                source.file_name,
            )
            if self.report_referential_gaps:
                for row in plan.unmatched():
                    self.ledger.record_error(
                        PROCESS_LOAD_ENTITY,
                        table,
                        message=f"Unknown subscriber: {row.get('subscriber_msisdn')}",
                        raw_record=canonical_json(row),
                        source_file=source.file_name,
                    )

        result = LoadResult(
            entity=entity,
            source_file=source.file_name,
            accepted=accepted,
            rejected=rejected,
            unmatched=plan.unmatched_rows,
            duplicates=plan.duplicate_rows,
            unmatched_reported=self.report_referential_gaps,
        )
        self.ledger.record_summary(source.file_name, started_at, result.accepted, result.errors, result.status)
        if result.errors == 0:
            self.archiver.archive(source.file_name)
        logger.info(
            "Loaded %s from %s accepted=%s rejected=%s unmatched=%s",
            entity,
            source.file_name,
            result.accepted,
            result.rejected,
            result.unmatched,
        )
        return result

    def _file_name(self, entity: str, run_date: date) -> str:
        try:
            return extract_file_name(self.extract_names[entity], run_date=run_date)
        except ExtractSourceError:
            return entity
