"""Observability utilities shared by the ward census services."""

from .logger import (
    configure_logging,
    generate_request_id,
    get_logger,
    get_request_id,
    redact_patient_fields,
    request_context,
)
from .middleware import CorrelationIdMiddleware, RequestTimingMiddleware

__all__ = [
    "CorrelationIdMiddleware",
    "RequestTimingMiddleware",
    "configure_logging",
    "generate_request_id",
    "get_logger",
    "get_request_id",
    "redact_patient_fields",
    "request_context",
]
