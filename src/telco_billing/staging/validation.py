"""Per-entity business-rule validation of raw extract rows.

Every validator is a pure classification: a raw row (column -> text) goes in,
either ``Accepted`` with a typed record or ``Rejected`` with a reason comes
out. Nothing here raises on bad input; unparsable values are rejections.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
import re
from typing import Any, Callable, Iterable, Mapping

from .contracts import (
    CALL_DIRECTIONS,
    CALL_TYPES,
    ENTITY_CDRS,
    ENTITY_SUBSCRIBER_PLANS,
    ENTITY_SUBSCRIBERS,
    ENTITY_TARIFF_PLANS,
    SUBSCRIBER_STATUSES,
    CallDetailRecord,
    StagedRecord,
    SubscriberPlanRecord,
    SubscriberRecord,
    TariffPlanRecord,
    require_entity,
)


MSISDN_RE = re.compile(r"^\+27[0-9]{9}$")
EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")

_DATE_FORMAT = "%Y-%m-%d"
_TIMESTAMP_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S")


@dataclass(frozen=True)
class Accepted:
    record: StagedRecord


@dataclass(frozen=True)
class Rejected:
    reason: str
    raw: dict[str, Any]


ValidationResult = Accepted | Rejected


@dataclass(frozen=True)
class BatchOutcome:
    accepted: tuple[StagedRecord, ...] = field(default_factory=tuple)
    rejected: tuple[Rejected, ...] = field(default_factory=tuple)


class _Invalid(ValueError):
    pass


def is_valid_msisdn(value: Any) -> bool:
    """South African MSISDN: +27 followed by exactly nine digits."""
    if not isinstance(value, str):
        return False
    return MSISDN_RE.fullmatch(value) is not None


def validate_subscriber(raw: Mapping[str, Any]) -> ValidationResult:
    return _classify(raw, _subscriber)


def validate_tariff_plan(raw: Mapping[str, Any]) -> ValidationResult:
    return _classify(raw, _tariff_plan)


def validate_assignment(raw: Mapping[str, Any]) -> ValidationResult:
    return _classify(raw, _assignment)


def validate_cdr(raw: Mapping[str, Any]) -> ValidationResult:
    return _classify(raw, _cdr)


VALIDATORS: dict[str, Callable[[Mapping[str, Any]], ValidationResult]] = {
    ENTITY_SUBSCRIBERS: validate_subscriber,
    ENTITY_TARIFF_PLANS: validate_tariff_plan,
    ENTITY_SUBSCRIBER_PLANS: validate_assignment,
    ENTITY_CDRS: validate_cdr,
}


def validate_batch(entity: str, rows: Iterable[Mapping[str, Any]]) -> BatchOutcome:
    """Fold a batch into (accepted, rejected) without stopping on bad rows."""
    validator = VALIDATORS[require_entity(entity)]
    accepted: list[StagedRecord] = []
    rejected: list[Rejected] = []
    for row in rows:
        result = validator(row)
        if isinstance(result, Accepted):
            accepted.append(result.record)
        else:
            rejected.append(result)
    return BatchOutcome(accepted=tuple(accepted), rejected=tuple(rejected))


def _classify(raw: Mapping[str, Any], build: Callable[[Mapping[str, Any]], StagedRecord]) -> ValidationResult:
    snapshot = {str(key): value for key, value in dict(raw or {}).items()}
    try:
        return Accepted(record=build(snapshot))
    except _Invalid as exc:
        return Rejected(reason=str(exc), raw=snapshot)


def _subscriber(raw: Mapping[str, Any]) -> SubscriberRecord:
    msisdn = _text(raw.get("msisdn"))
    if not is_valid_msisdn(msisdn):
        raise _Invalid(f"Invalid MSISDN format: {msisdn}")
    status = (_text(raw.get("status")) or "").upper()
    if status not in SUBSCRIBER_STATUSES:
        raise _Invalid(f"Invalid subscriber status: {status or None}; expected one of {sorted(SUBSCRIBER_STATUSES)}")
    email = _text(raw.get("email_address"))
    if email is not None and EMAIL_RE.fullmatch(email) is None:
        raise _Invalid(f"Invalid email address: {email}")
    return SubscriberRecord(
        msisdn=str(msisdn),
        first_name=_text(raw.get("first_name")),
        last_name=_text(raw.get("last_name")),
        date_of_birth=_date(raw.get("date_of_birth"), "date_of_birth"),
        email_address=email,
        registration_date=_date(raw.get("registration_date"), "registration_date"),
        status=status,
        source_file_name=_text(raw.get("source_file_name")),
    )


def _tariff_plan(raw: Mapping[str, Any]) -> TariffPlanRecord:
    plan_id = _text(raw.get("plan_id"))
    if plan_id is None:
        raise _Invalid("Plan ID is required")
    monthly_fee = _decimal(raw.get("monthly_fee"), "monthly_fee")
    if monthly_fee is None or monthly_fee <= 0:
        raise _Invalid(f"Monthly fee must be a positive amount for plan {plan_id}")
    rates = {
        name: _decimal(raw.get(name), name)
        for name in ("call_rate_per_minute", "sms_rate_per_message", "data_rate_per_mb")
    }
    for name, value in rates.items():
        if value is not None and value < 0:
            raise _Invalid(f"{name} must not be negative for plan {plan_id}")
    valid_from = _date(raw.get("valid_from"), "valid_from")
    valid_to = _date(raw.get("valid_to"), "valid_to")
    if valid_from is not None and valid_to is not None and valid_from > valid_to:
        raise _Invalid(f"valid_from {valid_from} is after valid_to {valid_to} for plan {plan_id}")
    return TariffPlanRecord(
        plan_id=plan_id,
        plan_name=_text(raw.get("plan_name")),
        description=_text(raw.get("description")),
        monthly_fee=monthly_fee,
        call_rate_per_minute=rates["call_rate_per_minute"],
        sms_rate_per_message=rates["sms_rate_per_message"],
        data_rate_per_mb=rates["data_rate_per_mb"],
        data_limit_mb=_decimal(raw.get("data_limit_mb"), "data_limit_mb"),
        voice_limit_minutes=_decimal(raw.get("voice_limit_minutes"), "voice_limit_minutes"),
        sms_limit=_decimal(raw.get("sms_limit"), "sms_limit"),
        valid_from=valid_from,
        valid_to=valid_to,
        source_file_name=_text(raw.get("source_file_name")),
    )


def _assignment(raw: Mapping[str, Any]) -> SubscriberPlanRecord:
    msisdn = _text(raw.get("subscriber_msisdn"))
    if not is_valid_msisdn(msisdn):
        raise _Invalid(f"Invalid MSISDN format: {msisdn}")
    plan_id = _text(raw.get("plan_id"))
    if plan_id is None:
        raise _Invalid("Plan ID is required")
    start = _date(raw.get("plan_start_date"), "plan_start_date")
    if start is None:
        raise _Invalid("Plan start date is required")
    end = _date(raw.get("plan_end_date"), "plan_end_date")
    if end is not None and end <= start:
        raise _Invalid(f"Plan end date {end} must be after start date {start}")
    return SubscriberPlanRecord(
        subscriber_msisdn=str(msisdn),
        plan_id=plan_id,
        plan_start_date=start,
        plan_end_date=end,
        source_file_name=_text(raw.get("source_file_name")),
    )


def _cdr(raw: Mapping[str, Any]) -> CallDetailRecord:
    msisdn = _text(raw.get("subscriber_msisdn"))
    if not is_valid_msisdn(msisdn):
        raise _Invalid(f"Invalid MSISDN format: {msisdn}")
    start = _timestamp(raw.get("call_start_time"), "call_start_time")
    if start is None:
        raise _Invalid("Call start time is required")
    call_type = (_text(raw.get("call_type")) or "").upper()
    if call_type not in CALL_TYPES:
        raise _Invalid(f"Invalid call type: {call_type or None}; expected one of {sorted(CALL_TYPES)}")
    duration = _decimal(raw.get("call_duration_sec"), "call_duration_sec")
    if duration is None or duration < 0:
        raise _Invalid(f"Call duration must be non-negative, got {duration}")
    direction = (_text(raw.get("call_direction")) or "").upper()
    if direction not in CALL_DIRECTIONS:
        raise _Invalid(f"Invalid call direction: {direction or None}; expected one of {sorted(CALL_DIRECTIONS)}")
    end = _timestamp(raw.get("call_end_time"), "call_end_time")
    if end is None or end <= start:
        raise _Invalid(f"Call end time {end} must be after start time {start}")
    return CallDetailRecord(
        subscriber_msisdn=str(msisdn),
        call_type=call_type,
        call_start_time=start,
        call_end_time=end,
        call_duration_sec=duration,
        destination_number=_text(raw.get("destination_number")),
        call_cost=_decimal(raw.get("call_cost"), "call_cost"),
        call_direction=direction,
        source_file_name=_text(raw.get("source_file_name")),
    )


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _date(value: Any, name: str) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = _text(value)
    if text is None:
        return None
    try:
        return datetime.strptime(text, _DATE_FORMAT).date()
    except ValueError:
        raise _Invalid(f"{name} is not a YYYY-MM-DD date: {text}") from None


def _timestamp(value: Any, name: str) -> datetime | None:
    if isinstance(value, datetime):
        return value.replace(microsecond=0, tzinfo=None)
    text = _text(value)
    if text is None:
        return None
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise _Invalid(f"{name} is not a YYYY-MM-DD HH:MM:SS timestamp: {text}")


def _decimal(value: Any, name: str) -> Decimal | None:
    text = _text(value)
    if text is None:
        return None
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        raise _Invalid(f"{name} is not numeric: {text}") from None
    if not parsed.is_finite():
        raise _Invalid(f"{name} is not numeric: {text}")
    return parsed
