"""Staging pipeline: extract read, row validation and staging-area load."""

from .contracts import (
    ENTITY_CDRS,
    ENTITY_ORDER,
    ENTITY_SUBSCRIBER_PLANS,
    ENTITY_SUBSCRIBERS,
    ENTITY_TARIFF_PLANS,
    STATUS_COMPLETED_WITH_ERRORS,
    STATUS_FAILURE,
    STATUS_PARTIAL_SUCCESS,
    STATUS_SUCCESS,
    CallDetailRecord,
    SubscriberPlanRecord,
    SubscriberRecord,
    TariffPlanRecord,
)
from .extract import CsvExtractSource, ExtractPlan, extract_file_name
from .loader import LoadResult, LoadRunResult, StagingLoader
from .validation import (
    Accepted,
    BatchOutcome,
    Rejected,
    is_valid_msisdn,
    validate_assignment,
    validate_batch,
    validate_cdr,
    validate_subscriber,
    validate_tariff_plan,
)

__all__ = [
    "ENTITY_CDRS",
    "ENTITY_ORDER",
    "ENTITY_SUBSCRIBER_PLANS",
    "ENTITY_SUBSCRIBERS",
    "ENTITY_TARIFF_PLANS",
    "STATUS_COMPLETED_WITH_ERRORS",
    "STATUS_FAILURE",
    "STATUS_PARTIAL_SUCCESS",
    "STATUS_SUCCESS",
    "Accepted",
    "BatchOutcome",
    "CallDetailRecord",
    "CsvExtractSource",
    "ExtractPlan",
    "LoadResult",
    "LoadRunResult",
    "Rejected",
    "StagingLoader",
    "SubscriberPlanRecord",
    "SubscriberRecord",
    "TariffPlanRecord",
    "extract_file_name",
    "is_valid_msisdn",
    "validate_assignment",
    "validate_batch",
    "validate_cdr",
    "validate_subscriber",
    "validate_tariff_plan",
]
