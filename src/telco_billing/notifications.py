"""Subscriber notification collaborator (fire-and-forget)."""

from __future__ import annotations

import logging
from typing import Protocol

from .db import autocommit_connection, backend_for, execute, utc_now
from .ledger import ImportLedger
from .schema import ensure_ledger_schema


logger = logging.getLogger("telco_billing.notifications")

CATEGORY_BILLING = "BILLING"
CATEGORY_PAYMENT = "PAYMENT"

NOTIFICATION_SENT = "SENT"


class Notifier(Protocol):
    def notify(self, subscriber: str, category: str, channel: str, message: str) -> None: ...


class OutboxNotifier:
    """Records notifications in the ledger outbox for an external sender to deliver."""

    def __init__(self, locator: str) -> None:
        self.locator = str(locator)
        self.backend = backend_for(self.locator)
        with autocommit_connection(self.locator) as conn:
            ensure_ledger_schema(conn, self.backend)

    def notify(self, subscriber: str, category: str, channel: str, message: str) -> None:
        with autocommit_connection(self.locator) as conn:
            execute(
                conn,
                self.backend,
                """
                INSERT INTO notification (subscriber_msisdn, notification_type, sent_date, status, channel, message)
                VALUES ({p1}, {p2}, {p3}, {p4}, {p5}, {p6})
                """,
                (str(subscriber), str(category), utc_now(), NOTIFICATION_SENT, str(channel), str(message)),
            )


class NullNotifier:
    def notify(self, subscriber: str, category: str, channel: str, message: str) -> None:
        return None


def notify_best_effort(
    notifier: Notifier,
    ledger: ImportLedger,
    *,
    subscriber: str,
    category: str,
    channel: str,
    message: str,
) -> bool:
    """Deliver through the notifier; a failure is logged and recorded, never raised."""
    try:
        notifier.notify(subscriber, category, channel, message)
        return True
    except Exception as exc:
        logger.warning("Notification failed subscriber=%s category=%s: %s", subscriber, category, exc)
        ledger.record_error(
            "notifications.notify",
            "notification",
            message=f"{type(exc).__name__}: {exc}",
            raw_record=f"Subscriber: {subscriber}",
        )
        return False
