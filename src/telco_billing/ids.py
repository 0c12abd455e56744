"""Deterministic identifiers for CDRs, invoices and payments."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
import hashlib
from typing import Any, Mapping

from .db import canonical_json


CDR_ID_RECIPE_V1 = "telco.cdr_id.v1"
INVOICE_ID_RECIPE_V1 = "telco.invoice_id.v1"
PAYMENT_ID_RECIPE_V1 = "telco.payment_id.v1"


def cdr_id(
    *,
    subscriber_msisdn: str,
    call_type: str,
    call_start_time: datetime | str,
    call_end_time: datetime | str,
) -> str:
    """CDR identity is (subscriber, call type, start time, end time)."""
    payload = {
        "subscriber_msisdn": str(subscriber_msisdn),
        "call_type": str(call_type).upper(),
        "call_start_time": _stamp(call_start_time),
        "call_end_time": _stamp(call_end_time),
    }
    return "cdr_" + _hash_with_recipe(CDR_ID_RECIPE_V1, payload)[:32]


def invoice_id(
    *,
    subscriber_msisdn: str,
    period_start: date,
    period_end: date,
    generated_at_utc: str,
) -> str:
    payload = {
        "subscriber_msisdn": str(subscriber_msisdn),
        "period_start": period_start.isoformat(),
        "period_end": period_end.isoformat(),
        "generated_at_utc": str(generated_at_utc),
    }
    return "inv_" + _hash_with_recipe(INVOICE_ID_RECIPE_V1, payload)[:24]


def payment_id(*, invoice_id: str, payment_date: date, amount: Decimal, recorded_at_utc: str) -> str:
    payload = {
        "invoice_id": str(invoice_id),
        "payment_date": payment_date.isoformat(),
        "amount": str(amount),
        "recorded_at_utc": str(recorded_at_utc),
    }
    return "pay_" + _hash_with_recipe(PAYMENT_ID_RECIPE_V1, payload)[:24]


def payment_reference(payment_id: str) -> str:
    return "PAY-" + payment_id.removeprefix("pay_")[:12].upper()


def _stamp(value: datetime | str) -> str:
    if isinstance(value, datetime):
        return value.replace(microsecond=0, tzinfo=None).isoformat()
    return str(value).replace(" ", "T")


def _hash_with_recipe(recipe: str, payload: Mapping[str, Any]) -> str:
    body = canonical_json({"recipe": recipe, "payload": dict(payload)})
    return hashlib.sha256(body.encode("utf-8")).hexdigest()
