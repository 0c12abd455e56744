from __future__ import annotations

import csv
from datetime import date
from pathlib import Path

import pytest

from telco_billing.errors import ExtractSourceError
from telco_billing.staging.contracts import EXTRACT_COLUMNS
from telco_billing.staging.extract import CsvExtractSource, extract_file_name


def _write_csv(path: Path, columns, rows) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(columns))
        writer.writeheader()
        for row in rows:
            writer.writerow({name: row.get(name, "") for name in columns})
    return path


def _subscriber_columns():
    return [name for name in EXTRACT_COLUMNS["subscribers"] if name != "source_file_name"]


def test_extract_file_name_resolves_run_date_template() -> None:
    name = extract_file_name("cdr_data_{run_date:%Y%m%d}.csv", run_date=date(2025, 3, 1))
    assert name == "cdr_data_20250301.csv"
    with pytest.raises(ExtractSourceError):
        extract_file_name("cdr_data_{when}.csv", run_date=date(2025, 3, 1))


def test_subscriber_extract_keeps_first_seen_row_per_msisdn(tmp_path) -> None:
    path = _write_csv(
        tmp_path / "subscriber_data_20250301.csv",
        _subscriber_columns(),
        [
            {"msisdn": "+27820000001", "first_name": "First", "status": "ACTIVE"},
            {"msisdn": "+27820000002", "first_name": "Other", "status": "ACTIVE"},
            {"msisdn": "+27820000001", "first_name": "Second", "status": "SUSPENDED"},
        ],
    )
    plan = CsvExtractSource("subscribers", path).plan()

    assert plan.total_rows == 3
    assert plan.candidate_rows == 2
    assert plan.duplicate_rows == 1
    rows = [row for batch in plan.batches(100) for row in batch]
    assert [(row["msisdn"], row["first_name"]) for row in rows] == [
        ("+27820000001", "First"),
        ("+27820000002", "Other"),
    ]
    assert all(row["source_file_name"] == "subscriber_data_20250301.csv" for row in rows)


def test_extract_reads_in_bounded_batches(tmp_path) -> None:
    path = _write_csv(
        tmp_path / "subscribers.csv",
        _subscriber_columns(),
        [{"msisdn": f"+2782000000{idx}", "status": "ACTIVE"} for idx in range(5)],
    )
    plan = CsvExtractSource("subscribers", path).plan()
    sizes = [len(batch) for batch in plan.batches(2)]
    assert sizes == [2, 2, 1]
    with pytest.raises(ValueError):
        list(plan.batches(0))


def test_dependent_extract_gates_unknown_subscribers(tmp_path) -> None:
    columns = [name for name in EXTRACT_COLUMNS["subscriber_plans"] if name != "source_file_name"]
    path = _write_csv(
        tmp_path / "subscriber_plan_data_20250301.csv",
        columns,
        [
            {"subscriber_msisdn": "+27820000001", "plan_id": "P1", "plan_start_date": "2025-01-01"},
            {"subscriber_msisdn": "+27829999999", "plan_id": "P1", "plan_start_date": "2025-01-01"},
            {"subscriber_msisdn": " +27820000001 ", "plan_id": "P2", "plan_start_date": "2025-02-01"},
        ],
    )
    plan = CsvExtractSource("subscriber_plans", path).plan(known_msisdns=frozenset({"+27820000001"}))

    assert plan.total_rows == 3
    assert plan.candidate_rows == 2
    assert plan.unmatched_rows == 1
    assert [row["subscriber_msisdn"] for row in plan.unmatched()] == ["+27829999999"]
    candidates = [row for batch in plan.batches(10) for row in batch]
    assert [row["plan_id"] for row in candidates] == ["P1", "P2"]


def test_missing_extract_file_is_a_source_error(tmp_path) -> None:
    source = CsvExtractSource("cdrs", tmp_path / "cdr_data_20250301.csv")
    with pytest.raises(ExtractSourceError) as excinfo:
        source.plan()
    assert excinfo.value.code == "EXTRACT_SOURCE_INVALID"


def test_extract_missing_columns_is_a_source_error(tmp_path) -> None:
    path = _write_csv(tmp_path / "plans.csv", ["plan_id", "plan_name"], [{"plan_id": "P1", "plan_name": "x"}])
    with pytest.raises(ExtractSourceError) as excinfo:
        CsvExtractSource("tariff_plans", path).plan()
    assert "monthly_fee" in str(excinfo.value)
