"""Structured logging setup for the runtime: structlog processors with secret redaction."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import IO, Any, Final

import structlog

from aca_runtime.security.redaction import REDACTED_VALUE, is_sensitive_key, redact_text

_CORRELATION_KEYS: Final[tuple[str, ...]] = (
    "request_id",
    "session_dir",
    "plan_step",
    "provider",
)


def configure_logging(
    *,
    level: int | str = "INFO",
    json_output: bool = True,
    stream: IO[str] | None = None,
) -> None:
    """Configure structlog for the process.

    Never called implicitly; importing ``aca_runtime`` leaves logging untouched.
    """

    numeric_level = _parse_log_level(level)
    renderer: Any = (
        structlog.processors.JSONRenderer(sort_keys=True)
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_event_dict,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=False,
    )


def redact_event_dict(
    _logger: object, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking sensitive keys and secret-like text values."""

    for key in list(event_dict):
        value = event_dict[key]
        if is_sensitive_key(key) and value is not None:
            event_dict[key] = REDACTED_VALUE
        elif isinstance(value, str):
            event_dict[key] = redact_text(value)
    return event_dict


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Temporarily bind correlation fields for log records emitted in scope."""

    bound = {}
    for key, value in fields.items():
        if key not in _CORRELATION_KEYS:
            raise ValueError(f"unsupported correlation key: {key!r}")
        if value is not None:
            bound[key] = value
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    normalized = value.strip().upper()
    resolved = logging.getLevelName(normalized)
    if not isinstance(resolved, int):
        raise ValueError(f"unknown log level: {value!r}")
    return resolved


__all__ = [
    "configure_logging",
    "correlation_scope",
    "redact_event_dict",
]
