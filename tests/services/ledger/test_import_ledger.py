from __future__ import annotations

from datetime import datetime

from telco_billing.db import connect
from telco_billing.ledger import ImportLedger
from telco_billing.notifications import NullNotifier, OutboxNotifier, notify_best_effort


def test_summary_and_error_records_round_trip(tmp_path) -> None:
    ledger = ImportLedger(str(tmp_path / "ledger.sqlite"))

    summary = ledger.record_summary("cdr_data_20250301.csv", datetime(2025, 3, 1, 2, 0, 0), 10, 2, "COMPLETED_WITH_ERRORS")
    ledger.record_error(
        "staging_loader.load_entity",
        "staging_cdr",
        message="Invalid call type: MMS",
        raw_record='{"call_type":"MMS"}',
        source_file="cdr_data_20250301.csv",
    )

    assert summary.import_time == "2025-03-01T02:00:00"
    assert ledger.summaries() == [summary]
    errors = ledger.errors(process="staging_loader.load_entity")
    assert len(errors) == 1
    assert errors[0].affected_table == "staging_cdr"
    assert errors[0].source_file == "cdr_data_20250301.csv"
    assert ledger.errors(process="other") == []


def test_error_survives_a_rolled_back_caller_transaction(tmp_path) -> None:
    warehouse = connect(str(tmp_path / "warehouse.sqlite"))
    ledger = ImportLedger(str(tmp_path / "ledger.sqlite"))
    try:
        warehouse.execute("CREATE TABLE work (id INTEGER)")
        warehouse.commit()
        warehouse.execute("INSERT INTO work (id) VALUES (1)")
        ledger.record_error("reconciler.merge", "work", message="constraint violated")
        warehouse.rollback()
        assert warehouse.execute("SELECT COUNT(1) FROM work").fetchone()[0] == 0
    finally:
        warehouse.close()

    assert [item.error_message for item in ledger.errors()] == ["constraint violated"]


def test_long_messages_are_clipped_and_blank_messages_defaulted(tmp_path) -> None:
    ledger = ImportLedger(str(tmp_path / "ledger.sqlite"))

    long_record = ledger.record_error("p", None, message="x" * 5000)
    blank_record = ledger.record_error("p", None, message="")

    assert len(long_record.error_message) == 4000
    assert blank_record.error_message == "UNKNOWN_ERROR"


class _Exploding:
    def notify(self, subscriber: str, category: str, channel: str, message: str) -> None:
        raise ConnectionError("gateway timeout")


def test_notify_best_effort_records_failures_instead_of_raising(tmp_path) -> None:
    ledger_dsn = str(tmp_path / "ledger.sqlite")
    ledger = ImportLedger(ledger_dsn)

    sent = notify_best_effort(
        OutboxNotifier(ledger_dsn),
        ledger,
        subscriber="+27820000001",
        category="BILLING",
        channel="SMS",
        message="Your bill is ready: R3.00",
    )
    failed = notify_best_effort(
        _Exploding(),
        ledger,
        subscriber="+27820000001",
        category="BILLING",
        channel="SMS",
        message="Your bill is ready: R3.00",
    )
    skipped = notify_best_effort(
        NullNotifier(),
        ledger,
        subscriber="+27820000001",
        category="PAYMENT",
        channel="SMS",
        message="noop",
    )

    assert (sent, failed, skipped) == (True, False, True)
    conn = connect(ledger_dsn)
    try:
        outbox = conn.execute("SELECT notification_type, status, channel FROM notification").fetchall()
    finally:
        conn.close()
    assert outbox == [("BILLING", "SENT", "SMS")]
    errors = ledger.errors(process="notifications.notify")
    assert len(errors) == 1
    assert errors[0].raw_record == "Subscriber: +27820000001"
