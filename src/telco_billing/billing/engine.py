"""Usage-based charge computation and the monthly billing driver."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
import logging
from typing import TYPE_CHECKING, Any

from ..audit import CHANGE_INSERT, record_change
from ..config import BillingPolicy
from ..db import as_decimal, backend_for, connect, execute, query_all, query_one, utc_now
from ..errors import BillingLookupError, PlanNotFoundError, SubscriberNotFoundError, reason_code
from ..ids import invoice_id as make_invoice_id
from ..ledger import ImportLedger
from ..notifications import CATEGORY_BILLING, Notifier, NullNotifier, OutboxNotifier, notify_best_effort
from ..schema import ensure_warehouse_schema
from ..staging.contracts import STATUS_COMPLETED_WITH_ERRORS, STATUS_FAILURE, STATUS_SUCCESS
from .contracts import (
    INVOICE_COLUMNS,
    INVOICE_UNPAID,
    Invoice,
    RatedPlan,
    UsageTotals,
    billing_period,
    usage_charge,
)

if TYPE_CHECKING:
    from ..config import TelcoBillingProfile


logger = logging.getLogger("telco_billing.billing.engine")

PROCESS_CALCULATE_CHARGES = "billing.calculate_charges"
PROCESS_MONTHLY_BILLS = "billing.generate_monthly_bills"
RUN_SUMMARY_SOURCE = "generate_monthly_bills"


@dataclass(frozen=True)
class BillingFailure:
    subscriber_msisdn: str
    reason_code: str
    message: str


@dataclass(frozen=True)
class BillingRunResult:
    period_start: date
    period_end: date
    invoices: tuple[Invoice, ...] = field(default_factory=tuple)
    skipped: tuple[str, ...] = field(default_factory=tuple)
    failures: tuple[BillingFailure, ...] = field(default_factory=tuple)

    @property
    def status(self) -> str:
        return STATUS_SUCCESS if not self.failures else STATUS_COMPLETED_WITH_ERRORS

    @property
    def total_billed(self) -> Decimal:
        return sum((item.total_amount_due for item in self.invoices), Decimal("0.00"))

    def as_dict(self) -> dict[str, Any]:
        return {
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "status": self.status,
            "invoices": len(self.invoices),
            "skipped": len(self.skipped),
            "failures": [
                {"subscriber_msisdn": item.subscriber_msisdn, "reason_code": item.reason_code}
                for item in self.failures
            ],
            "total_billed": str(self.total_billed),
        }


class BillingEngine:
    def __init__(
        self,
        *,
        warehouse_dsn: str,
        ledger: ImportLedger,
        notifier: Notifier | None = None,
        policy: BillingPolicy | None = None,
    ) -> None:
        self.warehouse_dsn = str(warehouse_dsn)
        self.backend = backend_for(self.warehouse_dsn)
        self.ledger = ledger
        self.notifier: Notifier = notifier or NullNotifier()
        self.policy = policy or BillingPolicy()
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
    ) -> "BillingEngine":
        return cls(
            warehouse_dsn=profile.warehouse_dsn,
            ledger=ledger or ImportLedger(profile.ledger_dsn),
            notifier=notifier or OutboxNotifier(profile.ledger_dsn),
            policy=profile.policy,
        )

    def calculate_charges(self, msisdn: str, period_start: date, period_end: date) -> Invoice:
        """Issue one UNPAID invoice for the subscriber's usage in the period.

        Raises ``SubscriberNotFoundError`` / ``PlanNotFoundError`` (recorded to
        the error log first); no invoice is written in that case.
        """
        conn = connect(self.warehouse_dsn)
        try:
            invoice = self._issue_invoice(conn, msisdn, period_start, period_end)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        self._notify_invoice(invoice)
        return invoice

    def invoice_for_period(self, msisdn: str, period_start: date, period_end: date) -> Invoice | None:
        conn = connect(self.warehouse_dsn)
        try:
            return self._find_invoice(conn, msisdn, period_start, period_end)
        finally:
            conn.close()

    def generate_monthly_bills(self, billing_date: date) -> BillingRunResult:
        """Bill every ACTIVE subscriber for the calendar month of ``billing_date``.

        Work is committed every ``billing_checkpoint_every`` subscribers plus once
        at the end. A lookup failure aborts the run (rolling back to the last
        checkpoint) unless ``isolate_billing_failures`` is set, in which case
        it is recorded and the next subscriber is billed.
        """
        period_start, period_end = billing_period(billing_date)
        started_at = utc_now()
        checkpoint_every = self.policy.billing_checkpoint_every
        committed: list[Invoice] = []
        pending: list[Invoice] = []
        skipped: list[str] = []
        failures: list[BillingFailure] = []
        conn = connect(self.warehouse_dsn)
        try:
            for processed, msisdn in enumerate(self._active_subscribers(conn), start=1):
                if self.policy.skip_already_billed and self._find_invoice(conn, msisdn, period_start, period_end):
                    skipped.append(msisdn)
                else:
                    try:
                        pending.append(self._issue_invoice(conn, msisdn, period_start, period_end))
                    except BillingLookupError as exc:
                        if not self.policy.isolate_billing_failures:
                            raise
                        failures.append(BillingFailure(msisdn, reason_code(exc), str(exc)))
                if processed % checkpoint_every == 0:
                    conn.commit()
                    committed.extend(self._flush(pending))
                    logger.info("Billing checkpoint period=%s invoices=%s", period_start, len(committed))
            conn.commit()
            committed.extend(self._flush(pending))
        except Exception as exc:
            conn.rollback()
            logger.exception(
                "Monthly billing aborted period=%s committed=%s rolled_back=%s",
                period_start,
                len(committed),
                len(pending),
            )
            if not isinstance(exc, BillingLookupError):
                self.ledger.record_error(PROCESS_MONTHLY_BILLS, "invoice", message=f"{reason_code(exc)}: {exc}")
            self.ledger.record_summary(
                RUN_SUMMARY_SOURCE,
                started_at,
                len(committed),
                len(failures) + 1,
                STATUS_FAILURE,
                str(exc),
            )
            raise
        finally:
            conn.close()

        result = BillingRunResult(
            period_start=period_start,
            period_end=period_end,
            invoices=tuple(committed),
            skipped=tuple(skipped),
            failures=tuple(failures),
        )
        if skipped:
            logger.info("Skipped %s subscribers already billed for %s", len(skipped), period_start)
        self.ledger.record_summary(RUN_SUMMARY_SOURCE, started_at, len(committed), len(failures), result.status)
        return result

    def _issue_invoice(self, conn: Any, msisdn: str, period_start: date, period_end: date) -> Invoice:
        try:
            if query_one(conn, self.backend, "SELECT 1 FROM subscriber WHERE msisdn = {p1}", (msisdn,)) is None:
                raise SubscriberNotFoundError(msisdn)
            plan = self._resolve_plan(conn, msisdn, period_end)
            if plan is None:
                raise PlanNotFoundError(f"{msisdn} as of {period_end.isoformat()}")
        except BillingLookupError as exc:
            logger.error("Billing lookup failed subscriber=%s: %s", msisdn, exc)
            self.ledger.record_error(
                PROCESS_CALCULATE_CHARGES,
                "invoice",
                message=str(exc),
                raw_record=f"Subscriber: {msisdn}",
            )
            raise

        usage = self._aggregate_usage(conn, msisdn, period_start, period_end)
        generated_at = utc_now()
        invoice = Invoice(
            invoice_id=make_invoice_id(
                subscriber_msisdn=msisdn,
                period_start=period_start,
                period_end=period_end,
                generated_at_utc=generated_at,
            ),
            subscriber_msisdn=msisdn,
            billing_period_start=period_start,
            billing_period_end=period_end,
            total_amount_due=usage_charge(usage, plan),
            generated_date=generated_at,
            due_date=period_end + timedelta(days=self.policy.invoice_due_days),
            status=INVOICE_UNPAID,
        )
        row = invoice.as_dict()
        placeholders = ", ".join(f"{{p{idx}}}" for idx in range(1, len(INVOICE_COLUMNS) + 1))
        execute(
            conn,
            self.backend,
            f"INSERT INTO invoice ({', '.join(INVOICE_COLUMNS)}) VALUES ({placeholders})",
            tuple(row[name] for name in INVOICE_COLUMNS),
        )
        record_change(
            conn,
            self.backend,
            entity="invoice",
            entity_key=invoice.invoice_id,
            change_type=CHANGE_INSERT,
            snapshot=row,
            changed_by=self.policy.changed_by,
        )
        logger.info(
            "Invoice %s subscriber=%s plan=%s voice_min=%s data=%s sms=%s amount=%s",
            invoice.invoice_id,
            msisdn,
            plan.plan_id,
            usage.voice_minutes,
            usage.data_usage,
            usage.sms_count,
            invoice.total_amount_due,
        )
        return invoice

    def _resolve_plan(self, conn: Any, msisdn: str, as_of: date) -> RatedPlan | None:
        """Most recently started assignment; ties go to the one ending soonest."""
        row = query_one(
            conn,
            self.backend,
            """
            SELECT sp.plan_id, sp.plan_start_date, sp.plan_end_date,
                   tp.call_rate_per_minute, tp.sms_rate_per_message, tp.data_rate_per_mb
            FROM subscriber_plan sp
            JOIN tariff_plan tp ON tp.plan_id = sp.plan_id
            WHERE sp.subscriber_msisdn = {p1} AND sp.plan_start_date <= {p2}
            ORDER BY sp.plan_start_date DESC,
                     CASE WHEN sp.plan_end_date IS NULL THEN 1 ELSE 0 END,
                     sp.plan_end_date ASC
            LIMIT 1
            """,
            (msisdn, as_of),
        )
        return RatedPlan.from_row(row) if row is not None else None

    def _aggregate_usage(self, conn: Any, msisdn: str, period_start: date, period_end: date) -> UsageTotals:
        rows = query_all(
            conn,
            self.backend,
            """
            SELECT call_type, call_duration_sec
            FROM call_detail_record
            WHERE subscriber_msisdn = {p1}
              AND call_start_time >= {p2}
              AND call_start_time <= {p3}
            """,
            (msisdn, f"{period_start.isoformat()}T00:00:00", f"{period_end.isoformat()}T23:59:59"),
        )
        voice = Decimal(0)
        data = Decimal(0)
        sms = 0
        for call_type, duration in rows:
            kind = str(call_type).upper()
            if kind == "VOICE":
                voice += as_decimal(duration) or Decimal(0)
            elif kind == "DATA":
                data += as_decimal(duration) or Decimal(0)
            elif kind == "SMS":
                sms += 1
        return UsageTotals(voice_seconds=voice, data_usage=data, sms_count=sms)

    def _active_subscribers(self, conn: Any) -> list[str]:
        rows = query_all(conn, self.backend, "SELECT msisdn FROM subscriber WHERE status = {p1} ORDER BY msisdn", ("ACTIVE",))
        return [str(row[0]) for row in rows]

    def _find_invoice(self, conn: Any, msisdn: str, period_start: date, period_end: date) -> Invoice | None:
        row = query_one(
            conn,
            self.backend,
            f"""
            SELECT {', '.join(INVOICE_COLUMNS)}
            FROM invoice
            WHERE subscriber_msisdn = {{p1}} AND billing_period_start = {{p2}} AND billing_period_end = {{p3}}
            ORDER BY generated_date DESC
            LIMIT 1
            """,
            (msisdn, period_start, period_end),
        )
        return Invoice.from_row(row) if row is not None else None

    def _flush(self, pending: list[Invoice]) -> list[Invoice]:
        flushed = list(pending)
        pending.clear()
        for invoice in flushed:
            self._notify_invoice(invoice)
        return flushed

    def _notify_invoice(self, invoice: Invoice) -> None:
        notify_best_effort(
            self.notifier,
            self.ledger,
            subscriber=invoice.subscriber_msisdn,
            category=CATEGORY_BILLING,
            channel=self.policy.notification_channel,
            message=(
                f"Your bill for {invoice.billing_period_start.isoformat()} to "
                f"{invoice.billing_period_end.isoformat()} is ready: R{invoice.total_amount_due}"
            ),
        )
