from __future__ import annotations

import csv
import json
from pathlib import Path

import pytest
import yaml

from telco_billing.cli import main, parse_args
from telco_billing.db import connect, query_one
from telco_billing.staging.contracts import EXTRACT_COLUMNS


def _write_extract(path: Path, entity: str, rows) -> None:
    columns = [name for name in EXTRACT_COLUMNS[entity] if name != "source_file_name"]
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=columns)
        writer.writeheader()
        for row in rows:
            writer.writerow({name: row.get(name, "") for name in columns})


def _profile(tmp_path: Path) -> Path:
    extract = tmp_path / "extract"
    _write_extract(
        extract / "subscriber_data_20250301.csv",
        "subscribers",
        [{"msisdn": "+27820000001", "first_name": "Ayanda", "status": "ACTIVE"}],
    )
    _write_extract(
        extract / "tariff_plan_data_20250301.csv",
        "tariff_plans",
        [{"plan_id": "PLAN_BASIC", "monthly_fee": "99.00", "call_rate_per_minute": "1.00", "data_rate_per_mb": "0.10"}],
    )
    _write_extract(
        extract / "subscriber_plan_data_20250301.csv",
        "subscriber_plans",
        [{"subscriber_msisdn": "+27820000001", "plan_id": "PLAN_BASIC", "plan_start_date": "2025-01-01"}],
    )
    _write_extract(
        extract / "cdr_data_20250301.csv",
        "cdrs",
        [
            {
                "subscriber_msisdn": "+27820000001",
                "call_type": "VOICE",
                "call_start_time": "2025-02-10 08:00:00",
                "call_end_time": "2025-02-10 08:02:05",
                "call_duration_sec": "125",
                "call_direction": "OUTBOUND",
            },
            {
                "subscriber_msisdn": "+27820000001",
                "call_type": "DATA",
                "call_start_time": "2025-02-11 08:00:00",
                "call_end_time": "2025-02-11 09:00:00",
                "call_duration_sec": "16",
                "call_direction": "OUTBOUND",
            },
        ],
    )
    path = tmp_path / "profile.yaml"
    payload = {
        "profile_id": "cli_test",
        "wiring": {
            "warehouse_dsn": str(tmp_path / "warehouse.sqlite"),
            "ledger_dsn": str(tmp_path / "ledger.sqlite"),
            "extract_root": str(extract),
            "archive_root": str(tmp_path / "archive"),
        },
        "policy": {"batch_size": 2},
    }
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    return path


def _run(capsys, *argv: str) -> dict:
    main(list(argv))
    lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
    return json.loads(lines[-1])


def test_cli_drives_load_reconcile_bill_and_pay(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.chdir(tmp_path)
    profile = str(_profile(tmp_path))

    loaded = _run(capsys, "load-all", "--profile", profile, "--run-date", "2025-03-01")
    assert loaded["status"] == "SUCCESS"
    assert loaded["records"] == 5
    assert (tmp_path / "archive" / "cdr_data_20250301.csv").exists()

    merged = _run(capsys, "reconcile-all", "--profile", profile)
    assert merged["status"] == "SUCCESS"
    assert merged["staging_cleared"] is True

    billed = _run(capsys, "bill", "--profile", profile, "--billing-date", "2025-02-15")
    assert billed["invoices"] == 1
    # 3 voice minutes at 1.00 plus 16 units of data at 0.10
    assert billed["total_billed"] == "4.60"

    conn = connect(str(tmp_path / "warehouse.sqlite"))
    try:
        invoice_id = query_one(conn, "sqlite", "SELECT invoice_id FROM invoice")[0]
    finally:
        conn.close()

    paid = _run(
        capsys,
        "pay",
        "--profile",
        profile,
        "--invoice-id",
        invoice_id,
        "--amount",
        "4.60",
        "--method",
        "Credit Card",
        "--payment-date",
        "2025-03-05",
    )
    assert paid["invoice_status"] == "PAID"
    assert paid["amount_due"] == "0.00"

    with pytest.raises(SystemExit) as excinfo:
        main(["pay", "--profile", profile, "--invoice-id", invoice_id, "--amount", "1.00", "--method", "EFT"])
    assert excinfo.value.code == 2
    rejected = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert rejected["reason_code"] == "INVOICE_ALREADY_PAID"


def test_cli_rejects_unknown_entities() -> None:
    with pytest.raises(SystemExit):
        parse_args(["load", "--entity", "invoices"])
    args = parse_args(["reconcile", "--entity", "cdrs"])
    assert args.command == "reconcile"
    assert args.profile == "config/telco_billing/local.yaml"
