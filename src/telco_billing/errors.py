"""Error taxonomy shared by the loader, reconciler and billing engine."""

from __future__ import annotations


class TelcoBillingError(RuntimeError):
    """Stable error surfaced to operators as a reason code."""

    code = "INTERNAL_ERROR"

    def __init__(self, detail: str | None = None, *, code: str | None = None) -> None:
        if code:
            self.code = code
        self.detail = detail
        message = f"{self.code}:{detail}" if detail else self.code
        super().__init__(message)


class ExtractSourceError(TelcoBillingError):
    code = "EXTRACT_SOURCE_INVALID"


class BillingLookupError(TelcoBillingError):
    """Subscriber or plan could not be resolved for a billing period."""

    code = "BILLING_LOOKUP_FAILED"


class SubscriberNotFoundError(BillingLookupError):
    code = "SUBSCRIBER_NOT_FOUND"


class PlanNotFoundError(BillingLookupError):
    code = "PLAN_NOT_FOUND"


class PaymentError(TelcoBillingError):
    code = "PAYMENT_REJECTED"


class InvoiceNotFoundError(PaymentError):
    code = "INVOICE_NOT_FOUND"


class InvoiceAlreadyPaidError(PaymentError):
    code = "INVOICE_ALREADY_PAID"


class InvalidPaymentError(PaymentError):
    code = "PAYMENT_AMOUNT_INVALID"


def reason_code(exc: BaseException) -> str:
    if isinstance(exc, TelcoBillingError):
        return exc.code
    text = str(exc or "").strip()
    if text.isupper():
        return text
    if ":" in text:
        head = text.split(":", 1)[0].strip()
        if head.isupper():
            return head
    return "INTERNAL_ERROR"
