"""Extract source: date-stamped CSV files scanned lazily and read in bounded batches."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
import logging
from pathlib import Path
from typing import Any, Iterator

import polars as pl

from ..errors import ExtractSourceError
from .contracts import ENTITY_SUBSCRIBERS, EXTRACT_COLUMNS, MSISDN_COLUMNS, require_entity


logger = logging.getLogger("telco_billing.staging.extract")


def extract_file_name(template: str, *, run_date: date) -> str:
    """Resolve a naming template such as ``cdr_data_{run_date:%Y%m%d}.csv``."""
    try:
        return str(template).format(run_date=run_date)
    except (KeyError, IndexError, ValueError) as exc:
        raise ExtractSourceError(f"bad extract name template {template!r}: {exc}") from exc


@dataclass(frozen=True)
class ExtractPlan:
    """A scanned extract: candidate rows to validate plus what the read filtered out."""

    entity: str
    file_name: str
    candidates: pl.LazyFrame
    gated: pl.LazyFrame | None
    total_rows: int
    candidate_rows: int
    duplicate_rows: int
    unmatched_rows: int

    def batches(self, batch_size: int) -> Iterator[list[dict[str, Any]]]:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        for offset in range(0, self.candidate_rows, batch_size):
            frame = self.candidates.slice(offset, batch_size).collect()
            if frame.height == 0:
                return
            yield frame.to_dicts()

    def unmatched(self) -> list[dict[str, Any]]:
        if self.gated is None or self.unmatched_rows == 0:
            return []
        return self.gated.collect().to_dicts()


class CsvExtractSource:
    """Tabular extract for one entity type, one file per run."""

    def __init__(self, entity: str, path: Path) -> None:
        self.entity = require_entity(entity)
        self.path = Path(path)

    @classmethod
    def for_run(cls, entity: str, *, extract_root: Path, template: str, run_date: date) -> "CsvExtractSource":
        return cls(entity, Path(extract_root) / extract_file_name(template, run_date=run_date))

    @property
    def file_name(self) -> str:
        return self.path.name

    def plan(self, *, known_msisdns: frozenset[str] | None = None) -> ExtractPlan:
        """Scan the file, dedupe subscribers (first seen wins) and apply the subscriber gate.

        ``known_msisdns`` gates assignment/CDR rows: rows whose subscriber is
        not in the set are left out of the candidates (they are not validated).
        """
        frame = self._scan()
        total_rows = _count(frame)

        duplicate_rows = 0
        if self.entity == ENTITY_SUBSCRIBERS:
            # Rows without an msisdn are not deduplicated; each is validated and rejected.
            keyed = pl.col("msisdn").fill_null("") != ""
            indexed = frame.with_row_index("_row")
            first_seen = indexed.filter(keyed).unique(subset=["msisdn"], keep="first", maintain_order=True)
            frame = pl.concat([first_seen, indexed.filter(~keyed)]).sort("_row").drop("_row")
            duplicate_rows = total_rows - _count(frame)
            if duplicate_rows:
                logger.info("Extract %s: dropped %s duplicate subscriber rows", self.file_name, duplicate_rows)

        gated: pl.LazyFrame | None = None
        unmatched_rows = 0
        if known_msisdns is not None and self.entity in MSISDN_COLUMNS and self.entity != ENTITY_SUBSCRIBERS:
            column = pl.col(MSISDN_COLUMNS[self.entity])
            known = pl.Series("known_msisdns", sorted(known_msisdns), dtype=pl.String)
            gated = frame.filter(column.is_not_null() & ~column.is_in(known))
            frame = frame.filter(column.is_null() | column.is_in(known))
            unmatched_rows = _count(gated)

        return ExtractPlan(
            entity=self.entity,
            file_name=self.file_name,
            candidates=frame,
            gated=gated,
            total_rows=total_rows,
            candidate_rows=_count(frame),
            duplicate_rows=duplicate_rows,
            unmatched_rows=unmatched_rows,
        )

    def _scan(self) -> pl.LazyFrame:
        if not self.path.exists():
            raise ExtractSourceError(f"extract file not found: {self.path}")
        frame = pl.scan_csv(self.path, infer_schema_length=0)
        present = set(frame.collect_schema().names())
        expected = EXTRACT_COLUMNS[self.entity]
        missing = [name for name in expected if name not in present and name != "source_file_name"]
        if missing:
            raise ExtractSourceError(f"{self.file_name} missing columns: {', '.join(missing)}")
        if "source_file_name" not in present:
            frame = frame.with_columns(pl.lit(None, dtype=pl.String).alias("source_file_name"))
        msisdn_column = MSISDN_COLUMNS.get(self.entity)
        adjustments = [pl.col("source_file_name").fill_null(pl.lit(self.file_name))]
        if msisdn_column is not None:
            adjustments.append(pl.col(msisdn_column).str.strip_chars())
        return frame.with_columns(adjustments).select(list(expected))


def _count(frame: pl.LazyFrame) -> int:
    return int(frame.select(pl.len()).collect().item())
