from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from telco_billing.staging.contracts import CallDetailRecord, SubscriberRecord
from telco_billing.staging.validation import (
    Accepted,
    Rejected,
    is_valid_msisdn,
    validate_assignment,
    validate_batch,
    validate_cdr,
    validate_subscriber,
    validate_tariff_plan,
)


def _subscriber(**overrides):
    row = {
        "msisdn": "+27821234567",
        "first_name": "Thandi",
        "last_name": "Mokoena",
        "date_of_birth": "1990-04-12",
        "email_address": "thandi@example.co.za",
        "registration_date": "2024-11-01",
        "status": "ACTIVE",
        "source_file_name": "subscriber_data_20250301.csv",
    }
    row.update(overrides)
    return row


def _plan(**overrides):
    row = {
        "plan_id": "PLAN_BASIC",
        "plan_name": "Basic",
        "description": "Pay as you go",
        "monthly_fee": "99.00",
        "call_rate_per_minute": "1.00",
        "sms_rate_per_message": "0.50",
        "data_rate_per_mb": "0.10",
        "data_limit_mb": "",
        "voice_limit_minutes": "",
        "sms_limit": "",
        "valid_from": "2025-01-01",
        "valid_to": "",
        "source_file_name": "tariff_plan_data_20250301.csv",
    }
    row.update(overrides)
    return row


def _assignment(**overrides):
    row = {
        "subscriber_msisdn": "+27821234567",
        "plan_id": "PLAN_BASIC",
        "plan_start_date": "2025-01-01",
        "plan_end_date": "",
        "source_file_name": "subscriber_plan_data_20250301.csv",
    }
    row.update(overrides)
    return row


def _cdr(**overrides):
    row = {
        "subscriber_msisdn": "+27821234567",
        "call_type": "VOICE",
        "call_start_time": "2025-02-10 08:00:00",
        "call_end_time": "2025-02-10 08:02:05",
        "call_duration_sec": "125",
        "destination_number": "+27831112222",
        "call_cost": "",
        "call_direction": "OUTBOUND",
        "source_file_name": "cdr_data_20250301.csv",
    }
    row.update(overrides)
    return row


@pytest.mark.parametrize("value", ["+27821234567", "+27000000000", "+27999999999"])
def test_msisdn_accepts_plus27_and_nine_digits(value) -> None:
    assert is_valid_msisdn(value)


@pytest.mark.parametrize(
    "value",
    [
        "27821234567",
        "+2782123456",
        "+278212345678",
        "+28821234567",
        "+27 82123456",
        "+2782123456a",
        "+27821234567\n",
        "+27٨٢١٢٣٤٥٦٧",
        "",
        None,
        27821234567,
    ],
)
def test_msisdn_rejects_everything_else(value) -> None:
    assert not is_valid_msisdn(value)


def test_valid_subscriber_is_accepted_with_typed_fields() -> None:
    result = validate_subscriber(_subscriber(status="active"))
    assert isinstance(result, Accepted)
    record = result.record
    assert isinstance(record, SubscriberRecord)
    assert record.status == "ACTIVE"
    assert record.date_of_birth == date(1990, 4, 12)
    assert record.registration_date == date(2024, 11, 1)


def test_subscriber_rules_reject_bad_rows_without_raising() -> None:
    bad_msisdn = validate_subscriber(_subscriber(msisdn="0821234567"))
    assert isinstance(bad_msisdn, Rejected)
    assert "Invalid MSISDN format" in bad_msisdn.reason
    assert bad_msisdn.raw["msisdn"] == "0821234567"

    bad_status = validate_subscriber(_subscriber(status="DELETED"))
    assert isinstance(bad_status, Rejected)
    assert "status" in bad_status.reason

    bad_email = validate_subscriber(_subscriber(email_address="not-an-email"))
    assert isinstance(bad_email, Rejected)
    assert "email" in bad_email.reason

    bad_date = validate_subscriber(_subscriber(date_of_birth="12/04/1990"))
    assert isinstance(bad_date, Rejected)
    assert "date_of_birth" in bad_date.reason


def test_subscriber_without_email_is_accepted() -> None:
    result = validate_subscriber(_subscriber(email_address=""))
    assert isinstance(result, Accepted)
    assert result.record.email_address is None


def test_tariff_plan_rules() -> None:
    accepted = validate_tariff_plan(_plan())
    assert isinstance(accepted, Accepted)
    assert accepted.record.monthly_fee == Decimal("99.00")
    assert accepted.record.valid_to is None

    assert isinstance(validate_tariff_plan(_plan(plan_id="")), Rejected)
    assert isinstance(validate_tariff_plan(_plan(monthly_fee="")), Rejected)
    assert isinstance(validate_tariff_plan(_plan(monthly_fee="0")), Rejected)
    assert isinstance(validate_tariff_plan(_plan(monthly_fee="-5")), Rejected)
    assert isinstance(validate_tariff_plan(_plan(monthly_fee="abc")), Rejected)
    assert isinstance(validate_tariff_plan(_plan(call_rate_per_minute="-0.01")), Rejected)
    reversed_window = validate_tariff_plan(_plan(valid_from="2025-06-01", valid_to="2025-01-01"))
    assert isinstance(reversed_window, Rejected)
    assert "valid_from" in reversed_window.reason
    assert isinstance(validate_tariff_plan(_plan(valid_from="2025-01-01", valid_to="2025-01-01")), Accepted)


def test_assignment_rules() -> None:
    assert isinstance(validate_assignment(_assignment()), Accepted)
    assert isinstance(validate_assignment(_assignment(plan_end_date="2025-03-31")), Accepted)
    assert isinstance(validate_assignment(_assignment(subscriber_msisdn="+27123")), Rejected)
    assert isinstance(validate_assignment(_assignment(plan_id=" ")), Rejected)
    assert isinstance(validate_assignment(_assignment(plan_start_date="")), Rejected)
    same_day = validate_assignment(_assignment(plan_end_date="2025-01-01"))
    assert isinstance(same_day, Rejected)
    assert "after start date" in same_day.reason


def test_cdr_rules() -> None:
    accepted = validate_cdr(_cdr())
    assert isinstance(accepted, Accepted)
    record = accepted.record
    assert isinstance(record, CallDetailRecord)
    assert record.call_start_time == datetime(2025, 2, 10, 8, 0, 0)
    assert record.call_duration_sec == Decimal("125")
    assert record.call_cost is None

    assert isinstance(validate_cdr(_cdr(call_start_time="2025-02-10T08:00:00")), Accepted)
    assert isinstance(validate_cdr(_cdr(subscriber_msisdn="")), Rejected)
    assert isinstance(validate_cdr(_cdr(call_start_time="")), Rejected)
    assert isinstance(validate_cdr(_cdr(call_type="MMS")), Rejected)
    assert isinstance(validate_cdr(_cdr(call_duration_sec="-1")), Rejected)
    assert isinstance(validate_cdr(_cdr(call_direction="SIDEWAYS")), Rejected)
    assert isinstance(validate_cdr(_cdr(call_end_time="2025-02-10 08:00:00")), Rejected)
    assert isinstance(validate_cdr(_cdr(call_end_time="")), Rejected)
    unparsable = validate_cdr(_cdr(call_end_time="yesterday"))
    assert isinstance(unparsable, Rejected)
    assert "call_end_time" in unparsable.reason


def test_zero_duration_sms_is_accepted() -> None:
    result = validate_cdr(_cdr(call_type="sms", call_duration_sec="0", call_end_time="2025-02-10 08:00:01"))
    assert isinstance(result, Accepted)
    assert result.record.call_type == "SMS"


def test_validate_batch_folds_without_stopping() -> None:
    rows = [
        _subscriber(msisdn="+27820000001"),
        _subscriber(msisdn="bad"),
        _subscriber(msisdn="+27820000002", status="SUSPENDED"),
        _subscriber(msisdn="+27820000003", email_address="@@"),
    ]
    outcome = validate_batch("subscribers", rows)
    assert [record.msisdn for record in outcome.accepted] == ["+27820000001", "+27820000002"]
    assert [item.raw["msisdn"] for item in outcome.rejected] == ["bad", "+27820000003"]


def test_validate_batch_rejects_unknown_entity() -> None:
    with pytest.raises(ValueError):
        validate_batch("invoices", [])
