"""Warehouse (staging + production) and ledger table definitions."""

from __future__ import annotations

from typing import Any

from .db import execute_script


WAREHOUSE_DDL = """
CREATE TABLE IF NOT EXISTS staging_subscriber (
    msisdn TEXT NOT NULL,
    first_name TEXT,
    last_name TEXT,
    date_of_birth TEXT,
    email_address TEXT,
    registration_date TEXT,
    status TEXT NOT NULL,
    source_file_name TEXT,
    load_timestamp TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS staging_tariff_plan (
    plan_id TEXT NOT NULL,
    plan_name TEXT,
    description TEXT,
    monthly_fee TEXT NOT NULL,
    call_rate_per_minute TEXT,
    sms_rate_per_message TEXT,
    data_rate_per_mb TEXT,
    data_limit_mb TEXT,
    voice_limit_minutes TEXT,
    sms_limit TEXT,
    valid_from TEXT,
    valid_to TEXT,
    source_file_name TEXT,
    load_timestamp TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS staging_subscriber_plan (
    subscriber_msisdn TEXT NOT NULL,
    plan_id TEXT NOT NULL,
    plan_start_date TEXT NOT NULL,
    plan_end_date TEXT,
    source_file_name TEXT,
    load_timestamp TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS staging_cdr (
    subscriber_msisdn TEXT NOT NULL,
    call_type TEXT NOT NULL,
    call_start_time TEXT NOT NULL,
    call_end_time TEXT NOT NULL,
    call_duration_sec NUMERIC NOT NULL,
    destination_number TEXT,
    call_cost TEXT,
    call_direction TEXT NOT NULL,
    source_file_name TEXT,
    load_timestamp TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS subscriber (
    msisdn TEXT PRIMARY KEY,
    first_name TEXT,
    last_name TEXT,
    date_of_birth TEXT,
    email_address TEXT,
    registration_date TEXT,
    status TEXT NOT NULL,
    created_at_utc TEXT NOT NULL,
    created_by TEXT NOT NULL,
    updated_at_utc TEXT,
    updated_by TEXT
);
CREATE INDEX IF NOT EXISTS ix_subscriber_status ON subscriber (status, msisdn);
CREATE TABLE IF NOT EXISTS tariff_plan (
    plan_id TEXT PRIMARY KEY,
    plan_name TEXT,
    description TEXT,
    monthly_fee TEXT NOT NULL,
    call_rate_per_minute TEXT,
    sms_rate_per_message TEXT,
    data_rate_per_mb TEXT,
    data_limit_mb TEXT,
    voice_limit_minutes TEXT,
    sms_limit TEXT,
    valid_from TEXT,
    valid_to TEXT,
    created_at_utc TEXT NOT NULL,
    created_by TEXT NOT NULL,
    updated_at_utc TEXT,
    updated_by TEXT
);
CREATE TABLE IF NOT EXISTS subscriber_plan (
    subscriber_msisdn TEXT NOT NULL REFERENCES subscriber (msisdn),
    plan_id TEXT NOT NULL REFERENCES tariff_plan (plan_id),
    plan_start_date TEXT NOT NULL,
    plan_end_date TEXT,
    created_at_utc TEXT NOT NULL,
    updated_at_utc TEXT,
    PRIMARY KEY (subscriber_msisdn, plan_id, plan_start_date),
    CHECK (plan_end_date IS NULL OR plan_end_date >= plan_start_date)
);
CREATE TABLE IF NOT EXISTS call_detail_record (
    cdr_id TEXT PRIMARY KEY,
    subscriber_msisdn TEXT NOT NULL REFERENCES subscriber (msisdn),
    call_type TEXT NOT NULL,
    call_start_time TEXT NOT NULL,
    call_end_time TEXT NOT NULL,
    call_duration_sec NUMERIC NOT NULL,
    destination_number TEXT,
    call_cost TEXT,
    call_direction TEXT NOT NULL,
    source_file_name TEXT,
    created_at_utc TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_cdr_subscriber_start ON call_detail_record (subscriber_msisdn, call_start_time);
CREATE TABLE IF NOT EXISTS invoice (
    invoice_id TEXT PRIMARY KEY,
    subscriber_msisdn TEXT NOT NULL REFERENCES subscriber (msisdn),
    billing_period_start TEXT NOT NULL,
    billing_period_end TEXT NOT NULL,
    total_amount_due TEXT NOT NULL,
    generated_date TEXT NOT NULL,
    due_date TEXT NOT NULL,
    status TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_invoice_subscriber_period
    ON invoice (subscriber_msisdn, billing_period_start, billing_period_end);
CREATE TABLE IF NOT EXISTS payment (
    payment_id TEXT PRIMARY KEY,
    invoice_id TEXT NOT NULL REFERENCES invoice (invoice_id),
    payment_date TEXT NOT NULL,
    payment_amount TEXT NOT NULL,
    payment_method TEXT,
    reference_code TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS change_history (
    entity TEXT NOT NULL,
    entity_key TEXT NOT NULL,
    change_type TEXT NOT NULL,
    snapshot_json TEXT NOT NULL,
    changed_at_utc TEXT NOT NULL,
    changed_by TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_change_history_entity ON change_history (entity, entity_key, changed_at_utc);
"""

LEDGER_DDL = """
CREATE TABLE IF NOT EXISTS import_log (
    source_name TEXT NOT NULL,
    import_time TEXT NOT NULL,
    record_count INTEGER NOT NULL,
    error_count INTEGER NOT NULL,
    status TEXT NOT NULL,
    error_message TEXT
);
CREATE TABLE IF NOT EXISTS log_errors (
    process TEXT NOT NULL,
    affected_table TEXT,
    error_time TEXT NOT NULL,
    error_message TEXT NOT NULL,
    raw_record TEXT,
    source_file TEXT
);
CREATE INDEX IF NOT EXISTS ix_log_errors_process ON log_errors (process, error_time);
CREATE TABLE IF NOT EXISTS notification (
    subscriber_msisdn TEXT NOT NULL,
    notification_type TEXT NOT NULL,
    sent_date TEXT NOT NULL,
    status TEXT NOT NULL,
    channel TEXT NOT NULL,
    message TEXT NOT NULL
);
"""


def ensure_warehouse_schema(conn: Any, backend: str) -> None:
    execute_script(conn, backend, WAREHOUSE_DDL)


def ensure_ledger_schema(conn: Any, backend: str) -> None:
    execute_script(conn, backend, LEDGER_DDL)
