"""Staging record contracts for the four extracted entity types."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any


ENTITY_SUBSCRIBERS = "subscribers"
ENTITY_TARIFF_PLANS = "tariff_plans"
ENTITY_SUBSCRIBER_PLANS = "subscriber_plans"
ENTITY_CDRS = "cdrs"

# Referential dependency order for loading and merging.
ENTITY_ORDER: tuple[str, ...] = (
    ENTITY_SUBSCRIBERS,
    ENTITY_TARIFF_PLANS,
    ENTITY_SUBSCRIBER_PLANS,
    ENTITY_CDRS,
)

STAGING_TABLES: dict[str, str] = {
    ENTITY_SUBSCRIBERS: "staging_subscriber",
    ENTITY_TARIFF_PLANS: "staging_tariff_plan",
    ENTITY_SUBSCRIBER_PLANS: "staging_subscriber_plan",
    ENTITY_CDRS: "staging_cdr",
}

PRODUCTION_TABLES: dict[str, str] = {
    ENTITY_SUBSCRIBERS: "subscriber",
    ENTITY_TARIFF_PLANS: "tariff_plan",
    ENTITY_SUBSCRIBER_PLANS: "subscriber_plan",
    ENTITY_CDRS: "call_detail_record",
}

EXTRACT_COLUMNS: dict[str, tuple[str, ...]] = {
    ENTITY_SUBSCRIBERS: (
        "msisdn",
        "first_name",
        "last_name",
        "date_of_birth",
        "email_address",
        "registration_date",
        "status",
        "source_file_name",
    ),
    ENTITY_TARIFF_PLANS: (
        "plan_id",
        "plan_name",
        "description",
        "monthly_fee",
        "call_rate_per_minute",
        "sms_rate_per_message",
        "data_rate_per_mb",
        "data_limit_mb",
        "voice_limit_minutes",
        "sms_limit",
        "valid_from",
        "valid_to",
        "source_file_name",
    ),
    ENTITY_SUBSCRIBER_PLANS: (
        "subscriber_msisdn",
        "plan_id",
        "plan_start_date",
        "plan_end_date",
        "source_file_name",
    ),
    ENTITY_CDRS: (
        "subscriber_msisdn",
        "call_type",
        "call_start_time",
        "call_end_time",
        "call_duration_sec",
        "destination_number",
        "call_cost",
        "call_direction",
        "source_file_name",
    ),
}

# Column carrying the subscriber identifier, per entity.
MSISDN_COLUMNS: dict[str, str] = {
    ENTITY_SUBSCRIBERS: "msisdn",
    ENTITY_SUBSCRIBER_PLANS: "subscriber_msisdn",
    ENTITY_CDRS: "subscriber_msisdn",
}

SUBSCRIBER_STATUSES: frozenset[str] = frozenset({"ACTIVE", "SUSPENDED", "INACTIVE"})
CALL_TYPES: frozenset[str] = frozenset({"VOICE", "SMS", "DATA"})
CALL_DIRECTIONS: frozenset[str] = frozenset({"INBOUND", "OUTBOUND"})

STATUS_SUCCESS = "SUCCESS"
STATUS_COMPLETED_WITH_ERRORS = "COMPLETED_WITH_ERRORS"
STATUS_FAILURE = "FAILURE"
STATUS_PARTIAL_SUCCESS = "PARTIAL_SUCCESS"


class _StagedRecord:
    def as_row(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]


@dataclass(frozen=True)
class SubscriberRecord(_StagedRecord):
    msisdn: str
    first_name: str | None
    last_name: str | None
    date_of_birth: date | None
    email_address: str | None
    registration_date: date | None
    status: str
    source_file_name: str | None


@dataclass(frozen=True)
class TariffPlanRecord(_StagedRecord):
    plan_id: str
    plan_name: str | None
    description: str | None
    monthly_fee: Decimal
    call_rate_per_minute: Decimal | None
    sms_rate_per_message: Decimal | None
    data_rate_per_mb: Decimal | None
    data_limit_mb: Decimal | None
    voice_limit_minutes: Decimal | None
    sms_limit: Decimal | None
    valid_from: date | None
    valid_to: date | None
    source_file_name: str | None


@dataclass(frozen=True)
class SubscriberPlanRecord(_StagedRecord):
    subscriber_msisdn: str
    plan_id: str
    plan_start_date: date
    plan_end_date: date | None
    source_file_name: str | None


@dataclass(frozen=True)
class CallDetailRecord(_StagedRecord):
    subscriber_msisdn: str
    call_type: str
    call_start_time: datetime
    call_end_time: datetime
    call_duration_sec: Decimal
    destination_number: str | None
    call_cost: Decimal | None
    call_direction: str
    source_file_name: str | None


StagedRecord = SubscriberRecord | TariffPlanRecord | SubscriberPlanRecord | CallDetailRecord


def require_entity(entity: str) -> str:
    value = str(entity or "").strip().lower()
    if value not in ENTITY_ORDER:
        raise ValueError(f"unknown entity: {entity!r}; expected one of {list(ENTITY_ORDER)}")
    return value
