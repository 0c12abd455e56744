"""Invoice issuance and payment application."""

from .contracts import (
    INVOICE_PAID,
    INVOICE_PARTIALLY_PAID,
    INVOICE_STATUSES,
    INVOICE_UNPAID,
    Invoice,
    Payment,
    RatedPlan,
    UsageTotals,
    billing_period,
    round2,
    usage_charge,
)
from .engine import BillingEngine, BillingFailure, BillingRunResult
from .payments import PaymentProcessor, PaymentResult

__all__ = [
    "INVOICE_PAID",
    "INVOICE_PARTIALLY_PAID",
    "INVOICE_STATUSES",
    "INVOICE_UNPAID",
    "BillingEngine",
    "BillingFailure",
    "BillingRunResult",
    "Invoice",
    "Payment",
    "PaymentProcessor",
    "PaymentResult",
    "RatedPlan",
    "UsageTotals",
    "billing_period",
    "round2",
    "usage_charge",
]
