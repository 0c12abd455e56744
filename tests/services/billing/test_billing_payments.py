from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from telco_billing.billing import PaymentProcessor
from telco_billing.db import connect, execute, query_all, query_one, utc_now
from telco_billing.errors import InvalidPaymentError, InvoiceAlreadyPaidError, InvoiceNotFoundError
from telco_billing.ledger import ImportLedger
from telco_billing.notifications import OutboxNotifier
from telco_billing.schema import ensure_warehouse_schema


INVOICE_ID = "inv_test_0001"
MSISDN = "+27820000001"


def _seed_invoice(dsn: str, *, amount: str = "4.60", status: str = "UNPAID") -> None:
    conn = connect(dsn)
    try:
        ensure_warehouse_schema(conn, "sqlite")
        execute(
            conn,
            "sqlite",
            "INSERT INTO subscriber (msisdn, status, created_at_utc, created_by) VALUES ({p1}, {p2}, {p3}, {p4})",
            (MSISDN, "ACTIVE", utc_now(), "seed"),
        )
        execute(
            conn,
            "sqlite",
            """
            INSERT INTO invoice (invoice_id, subscriber_msisdn, billing_period_start, billing_period_end,
                                 total_amount_due, generated_date, due_date, status)
            VALUES ({p1}, {p2}, {p3}, {p4}, {p5}, {p6}, {p7}, {p8})
            """,
            (INVOICE_ID, MSISDN, "2025-02-01", "2025-02-28", amount, utc_now(), "2025-03-14", status),
        )
        conn.commit()
    finally:
        conn.close()


def _processor(tmp_path: Path) -> tuple[PaymentProcessor, ImportLedger, str]:
    dsn = str(tmp_path / "warehouse.sqlite")
    ledger_dsn = str(tmp_path / "ledger.sqlite")
    ledger = ImportLedger(ledger_dsn)
    processor = PaymentProcessor(warehouse_dsn=dsn, ledger=ledger, notifier=OutboxNotifier(ledger_dsn))
    return processor, ledger, dsn


def _invoice_state(dsn: str):
    conn = connect(dsn)
    try:
        return query_one(conn, "sqlite", "SELECT total_amount_due, status FROM invoice WHERE invoice_id = {p1}", (INVOICE_ID,))
    finally:
        conn.close()


def _payment_count(dsn: str) -> int:
    conn = connect(dsn)
    try:
        return int(query_one(conn, "sqlite", "SELECT COUNT(1) FROM payment")[0])
    finally:
        conn.close()


def test_full_payment_marks_invoice_paid(tmp_path) -> None:
    processor, _, dsn = _processor(tmp_path)
    _seed_invoice(dsn)

    result = processor.record_payment(INVOICE_ID, date(2025, 3, 5), Decimal("4.60"), "Credit Card")

    assert result.invoice_status == "PAID"
    assert result.amount_due == Decimal("0.00")
    assert result.previous_amount_due == Decimal("4.60")
    assert _invoice_state(dsn) == ("0.00", "PAID")
    assert result.payment.reference_code.startswith("PAY-")
    assert len(result.payment.reference_code) == 16
    assert _payment_count(dsn) == 1


def test_partial_payments_accumulate_against_the_remaining_balance(tmp_path) -> None:
    processor, _, dsn = _processor(tmp_path)
    _seed_invoice(dsn)

    first = processor.record_payment(INVOICE_ID, date(2025, 3, 5), "2.00", "EFT")
    assert (first.invoice_status, first.amount_due) == ("PARTIALLY_PAID", Decimal("2.60"))
    assert _invoice_state(dsn) == ("2.60", "PARTIALLY_PAID")

    second = processor.record_payment(INVOICE_ID, date(2025, 3, 9), "2.60", "EFT")
    assert (second.invoice_status, second.amount_due) == ("PAID", Decimal("0.00"))
    assert _payment_count(dsn) == 2
    assert first.payment.payment_id != second.payment.payment_id


def test_paid_invoice_rejects_payment_and_nothing_changes(tmp_path) -> None:
    processor, ledger, dsn = _processor(tmp_path)
    _seed_invoice(dsn, amount="0.00", status="PAID")

    with pytest.raises(InvoiceAlreadyPaidError) as excinfo:
        processor.record_payment(INVOICE_ID, date(2025, 3, 5), "1.00", "EFT")

    assert excinfo.value.code == "INVOICE_ALREADY_PAID"
    assert _invoice_state(dsn) == ("0.00", "PAID")
    assert _payment_count(dsn) == 0
    errors = ledger.errors(process="payments.record_payment")
    assert len(errors) == 1
    assert "INVOICE_ALREADY_PAID" in errors[0].error_message


def test_unknown_invoice_is_rejected(tmp_path) -> None:
    processor, ledger, dsn = _processor(tmp_path)

    with pytest.raises(InvoiceNotFoundError):
        processor.record_payment("inv_missing", date(2025, 3, 5), "1.00", "EFT")

    assert _payment_count(dsn) == 0
    assert len(ledger.errors()) == 1


@pytest.mark.parametrize("amount", ["0", "-1.00", "0.004", "abc", None])
def test_non_positive_or_malformed_amount_is_rejected(tmp_path, amount) -> None:
    processor, _, dsn = _processor(tmp_path)
    _seed_invoice(dsn)

    with pytest.raises(InvalidPaymentError):
        processor.record_payment(INVOICE_ID, date(2025, 3, 5), amount, "EFT")

    assert _invoice_state(dsn) == ("4.60", "UNPAID")
    assert _payment_count(dsn) == 0


def test_overpayment_leaves_a_credit_balance(tmp_path) -> None:
    processor, _, dsn = _processor(tmp_path)
    _seed_invoice(dsn)

    result = processor.record_payment(INVOICE_ID, date(2025, 3, 5), "5.00", "Cash")

    assert result.invoice_status == "PAID"
    assert result.amount_due == Decimal("-0.40")


def test_payment_is_audited_and_confirmed(tmp_path) -> None:
    processor, _, dsn = _processor(tmp_path)
    _seed_invoice(dsn)

    result = processor.record_payment(INVOICE_ID, date(2025, 3, 5), "2.00", "EFT")

    conn = connect(dsn)
    try:
        history = query_all(conn, "sqlite", "SELECT entity, entity_key, change_type FROM change_history ORDER BY entity")
    finally:
        conn.close()
    assert history == [("invoice", INVOICE_ID, "UPDATE"), ("payment", result.payment.payment_id, "INSERT")]

    conn = connect(str(tmp_path / "ledger.sqlite"))
    try:
        notices = query_all(conn, "sqlite", "SELECT subscriber_msisdn, notification_type, message FROM notification")
    finally:
        conn.close()
    assert len(notices) == 1
    assert notices[0][:2] == (MSISDN, "PAYMENT")
    assert "Remaining balance: R2.60" in notices[0][2]
