"""Invoice/payment records and the charge arithmetic they share."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Any, Sequence

from ..db import as_decimal


INVOICE_UNPAID = "UNPAID"
INVOICE_PARTIALLY_PAID = "PARTIALLY_PAID"
INVOICE_PAID = "PAID"
INVOICE_STATUSES: frozenset[str] = frozenset({INVOICE_UNPAID, INVOICE_PARTIALLY_PAID, INVOICE_PAID})

CENT = Decimal("0.01")
SECONDS_PER_MINUTE = Decimal(60)


def round2(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def billing_period(billing_date: date) -> tuple[date, date]:
    """Calendar month containing ``billing_date`` as (first day, last day)."""
    last_day = calendar.monthrange(billing_date.year, billing_date.month)[1]
    return billing_date.replace(day=1), billing_date.replace(day=last_day)


@dataclass(frozen=True)
class UsageTotals:
    voice_seconds: Decimal = Decimal(0)
    data_usage: Decimal = Decimal(0)
    sms_count: int = 0

    @property
    def voice_minutes(self) -> Decimal:
        """Voice is billed in whole minutes, any started minute counts."""
        return (self.voice_seconds / SECONDS_PER_MINUTE).to_integral_value(rounding=ROUND_CEILING)


@dataclass(frozen=True)
class RatedPlan:
    plan_id: str
    plan_start_date: str
    plan_end_date: str | None
    call_rate_per_minute: Decimal
    sms_rate_per_message: Decimal
    data_rate_per_mb: Decimal

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> "RatedPlan":
        return cls(
            plan_id=str(row[0]),
            plan_start_date=str(row[1]),
            plan_end_date=str(row[2]) if row[2] is not None else None,
            call_rate_per_minute=as_decimal(row[3]) or Decimal(0),
            sms_rate_per_message=as_decimal(row[4]) or Decimal(0),
            data_rate_per_mb=as_decimal(row[5]) or Decimal(0),
        )


def usage_charge(usage: UsageTotals, plan: RatedPlan) -> Decimal:
    amount = (
        usage.voice_minutes * plan.call_rate_per_minute
        + usage.data_usage * plan.data_rate_per_mb
        + Decimal(usage.sms_count) * plan.sms_rate_per_message
    )
    return round2(amount)


@dataclass(frozen=True)
class Invoice:
    invoice_id: str
    subscriber_msisdn: str
    billing_period_start: date
    billing_period_end: date
    total_amount_due: Decimal
    generated_date: str
    due_date: date
    status: str

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> "Invoice":
        return cls(
            invoice_id=str(row[0]),
            subscriber_msisdn=str(row[1]),
            billing_period_start=date.fromisoformat(str(row[2])),
            billing_period_end=date.fromisoformat(str(row[3])),
            total_amount_due=as_decimal(row[4]) or Decimal(0),
            generated_date=str(row[5]),
            due_date=date.fromisoformat(str(row[6])),
            status=str(row[7]),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "invoice_id": self.invoice_id,
            "subscriber_msisdn": self.subscriber_msisdn,
            "billing_period_start": self.billing_period_start.isoformat(),
            "billing_period_end": self.billing_period_end.isoformat(),
            "total_amount_due": str(self.total_amount_due),
            "generated_date": self.generated_date,
            "due_date": self.due_date.isoformat(),
            "status": self.status,
        }


INVOICE_COLUMNS: tuple[str, ...] = (
    "invoice_id",
    "subscriber_msisdn",
    "billing_period_start",
    "billing_period_end",
    "total_amount_due",
    "generated_date",
    "due_date",
    "status",
)


@dataclass(frozen=True)
class Payment:
    payment_id: str
    invoice_id: str
    payment_date: date
    payment_amount: Decimal
    payment_method: str
    reference_code: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "invoice_id": self.invoice_id,
            "payment_date": self.payment_date.isoformat(),
            "payment_amount": str(self.payment_amount),
            "payment_method": self.payment_method,
            "reference_code": self.reference_code,
        }
