"""Payment application against open invoices."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
import logging
from typing import TYPE_CHECKING, Any

from ..audit import CHANGE_INSERT, CHANGE_UPDATE, record_change
from ..db import as_decimal, backend_for, connect, execute, query_one, utc_now
from ..errors import (
    InvalidPaymentError,
    InvoiceAlreadyPaidError,
    InvoiceNotFoundError,
    PaymentError,
    reason_code,
)
from ..ids import payment_id as make_payment_id
from ..ids import payment_reference
from ..ledger import ImportLedger
from ..notifications import CATEGORY_PAYMENT, Notifier, NullNotifier, OutboxNotifier, notify_best_effort
from ..schema import ensure_warehouse_schema
from .contracts import INVOICE_PAID, INVOICE_PARTIALLY_PAID, Payment, round2

if TYPE_CHECKING:
    from ..config import TelcoBillingProfile


logger = logging.getLogger("telco_billing.billing.payments")

PROCESS_RECORD_PAYMENT = "payments.record_payment"


@dataclass(frozen=True)
class PaymentResult:
    payment: Payment
    subscriber_msisdn: str
    previous_amount_due: Decimal
    amount_due: Decimal
    invoice_status: str

    def as_dict(self) -> dict[str, Any]:
        return {
            **self.payment.as_dict(),
            "subscriber_msisdn": self.subscriber_msisdn,
            "previous_amount_due": str(self.previous_amount_due),
            "amount_due": str(self.amount_due),
            "invoice_status": self.invoice_status,
        }


class PaymentProcessor:
    def __init__(
        self,
        *,
        warehouse_dsn: str,
        ledger: ImportLedger,
        notifier: Notifier | None = None,
        channel: str = "SMS",
        changed_by: str = "telco_billing",
    ) -> None:
        self.warehouse_dsn = str(warehouse_dsn)
        self.backend = backend_for(self.warehouse_dsn)
        self.ledger = ledger
        self.notifier: Notifier = notifier or NullNotifier()
        self.channel = str(channel)
        self.changed_by = str(changed_by)
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
        notifier: Notifier | None = None,
    ) -> "PaymentProcessor":
        return cls(
            warehouse_dsn=profile.warehouse_dsn,
            ledger=ledger or ImportLedger(profile.ledger_dsn),
            notifier=notifier or OutboxNotifier(profile.ledger_dsn),
            channel=profile.policy.notification_channel,
            changed_by=profile.policy.changed_by,
        )

    def record_payment(self, invoice_id: str, payment_date: date, amount: Any, method: str) -> PaymentResult:
        """Apply ``amount`` to the invoice's current balance.

        The status is judged against the remaining balance, not the original
        total, so repeated partial payments converge on PAID. A rejected
        payment is logged and re-raised with nothing written.
        """
        conn = connect(self.warehouse_dsn)
        try:
            result = self._apply(conn, str(invoice_id), payment_date, amount, str(method))
            conn.commit()
        except PaymentError as exc:
            conn.rollback()
            logger.warning("Payment rejected invoice=%s code=%s: %s", invoice_id, exc.code, exc)
            self.ledger.record_error(
                PROCESS_RECORD_PAYMENT,
                "payment",
                message=str(exc),
                raw_record=f"Invoice: {invoice_id}; amount: {amount}",
            )
            raise
        except Exception as exc:
            conn.rollback()
            logger.exception("Payment failed invoice=%s", invoice_id)
            self.ledger.record_error(
                PROCESS_RECORD_PAYMENT,
                "payment",
                message=f"{reason_code(exc)}: {exc}",
                raw_record=f"Invoice: {invoice_id}; amount: {amount}",
            )
            raise
        finally:
            conn.close()

        notify_best_effort(
            self.notifier,
            self.ledger,
            subscriber=result.subscriber_msisdn,
            category=CATEGORY_PAYMENT,
            channel=self.channel,
            message=(
                f"Payment of R{result.payment.payment_amount} received for invoice {result.payment.invoice_id}. "
                f"Remaining balance: R{result.amount_due}"
            ),
        )
        return result

    def _apply(self, conn: Any, invoice_id: str, payment_date: date, amount: Any, method: str) -> PaymentResult:
        value = _payment_amount(amount)
        row = query_one(
            conn,
            self.backend,
            "SELECT subscriber_msisdn, total_amount_due, status FROM invoice WHERE invoice_id = {p1}",
            (invoice_id,),
        )
        if row is None:
            raise InvoiceNotFoundError(invoice_id)
        subscriber_msisdn = str(row[0])
        current_due = as_decimal(row[1]) or Decimal("0.00")
        if str(row[2]) == INVOICE_PAID:
            raise InvoiceAlreadyPaidError(invoice_id)

        recorded_at = utc_now()
        identity = make_payment_id(
            invoice_id=invoice_id,
            payment_date=payment_date,
            amount=value,
            recorded_at_utc=recorded_at,
        )
        payment = Payment(
            payment_id=identity,
            invoice_id=invoice_id,
            payment_date=payment_date,
            payment_amount=value,
            payment_method=method,
            reference_code=payment_reference(identity),
        )
        payment_row = payment.as_dict()
        execute(
            conn,
            self.backend,
            """
            INSERT INTO payment (payment_id, invoice_id, payment_date, payment_amount, payment_method, reference_code)
            VALUES ({p1}, {p2}, {p3}, {p4}, {p5}, {p6})
            """,
            (
                payment.payment_id,
                payment.invoice_id,
                payment.payment_date,
                payment.payment_amount,
                payment.payment_method,
                payment.reference_code,
            ),
        )
        record_change(
            conn,
            self.backend,
            entity="payment",
            entity_key=payment.payment_id,
            change_type=CHANGE_INSERT,
            snapshot=payment_row,
            changed_by=self.changed_by,
        )

        new_due = round2(current_due - value)
        new_status = INVOICE_PAID if value >= current_due else INVOICE_PARTIALLY_PAID
        execute(
            conn,
            self.backend,
            "UPDATE invoice SET total_amount_due = {p1}, status = {p2} WHERE invoice_id = {p3}",
            (new_due, new_status, invoice_id),
        )
        record_change(
            conn,
            self.backend,
            entity="invoice",
            entity_key=invoice_id,
            change_type=CHANGE_UPDATE,
            snapshot={"invoice_id": invoice_id, "total_amount_due": new_due, "status": new_status},
            changed_by=self.changed_by,
        )
        logger.info(
            "Payment %s invoice=%s amount=%s due %s -> %s status=%s",
            payment.reference_code,
            invoice_id,
            value,
            current_due,
            new_due,
            new_status,
        )
        return PaymentResult(
            payment=payment,
            subscriber_msisdn=subscriber_msisdn,
            previous_amount_due=current_due,
            amount_due=new_due,
            invoice_status=new_status,
        )


def _payment_amount(amount: Any) -> Decimal:
    try:
        value = as_decimal(amount)
    except (InvalidOperation, ValueError) as exc:
        raise InvalidPaymentError(f"not a number: {amount!r}") from exc
    if value is None or not value.is_finite():
        raise InvalidPaymentError(f"amount must be positive: {amount!r}")
    # Sub-cent amounts round to zero.
    value = round2(value)
    if value <= 0:
        raise InvalidPaymentError(f"amount must be positive: {amount!r}")
    return value
