"""Observability helpers: structlog configuration and correlation binding."""

from aca_runtime.observability.logging import (
    configure_logging,
    correlation_scope,
    redact_event_dict,
)

__all__ = [
    "configure_logging",
    "correlation_scope",
    "redact_event_dict",
]
