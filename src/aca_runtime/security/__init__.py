"""Security helpers: secret redaction for audit files, errors, and logs."""

from aca_runtime.security.redaction import (
    REDACTED_VALUE,
    is_sensitive_key,
    redact_structure,
    redact_text,
)

__all__ = [
    "REDACTED_VALUE",
    "is_sensitive_key",
    "redact_structure",
    "redact_text",
]
