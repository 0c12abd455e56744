"""Import ledger and error reporter."""

from .store import ErrorLogRecord, ImportLedger, ImportSummaryRecord

__all__ = [
    "ErrorLogRecord",
    "ImportLedger",
    "ImportSummaryRecord",
]
