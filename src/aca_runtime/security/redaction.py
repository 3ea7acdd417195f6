"""
aca-runtime — secret redaction

File: src/aca_runtime/security/redaction.py
Last updated: 2026-10-18

Purpose
- Mask secrets before they reach audit files, error details, or log records.

What should be included in this file
- Text rules for API-key shaped tokens, bearer headers, and secret assignments.
- Key-based redaction for nested config mappings.

Non-functional requirements
- Deterministic and idempotent: redacting twice yields the same text.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Final

REDACTED_VALUE: Final[str] = "***REDACTED***"

SENSITIVE_KEYS: Final[frozenset[str]] = frozenset(
    {
        "access_token",
        "anthropic_api_key",
        "api_key",
        "apikey",
        "auth_token",
        "authorization",
        "client_secret",
        "openai_api_key",
        "password",
        "secret",
        "token",
    }
)

_SENSITIVE_KEY_SUFFIXES: Final[tuple[str, ...]] = ("_api_key", "_token", "_secret", "_password")


@dataclass(frozen=True, slots=True)
class _TextRule:
    name: str
    pattern: re.Pattern[str]
    sensitive_group: int | None = None


_TEXT_RULES: Final[tuple[_TextRule, ...]] = (
    _TextRule(
        name="authorization_bearer",
        pattern=re.compile(r"(?i)(\bbearer\s+)([A-Za-z0-9\-._~+/=]{8,})"),
        sensitive_group=2,
    ),
    _TextRule(
        name="explicit_secret_assignment",
        pattern=re.compile(
            r"(?i)(\b(?:[A-Z0-9_]*api[_-]?key|password|secret|access[_-]?token|auth[_-]?token)"
            r"\b\s*[:=]\s*[\"']?)"
            r"([A-Za-z0-9._~+/=-]{6,})"
        ),
        sensitive_group=2,
    ),
    _TextRule(name="anthropic_api_key", pattern=re.compile(r"\bsk-ant-[A-Za-z0-9_-]{20,255}")),
    _TextRule(name="openai_api_key", pattern=re.compile(r"\bsk-[A-Za-z0-9_-]{20,255}")),
)


def redact_text(text: str) -> str:
    """Replace secret-like substrings in ``text`` with ``REDACTED_VALUE``."""

    if not isinstance(text, str):
        raise TypeError(f"text must be a string, got {type(text).__name__}")
    redacted = text
    for rule in _TEXT_RULES:
        redacted = _apply_rule(redacted, rule)
    return redacted


def is_sensitive_key(key: str) -> bool:
    normalized = key.strip().lower().replace("-", "_")
    if normalized in SENSITIVE_KEYS:
        return True
    return normalized.endswith(_SENSITIVE_KEY_SUFFIXES)


def redact_structure(value: object) -> object:
    """Return a deep copy of ``value`` with sensitive keys and secret-like text masked."""

    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key, item in value.items():
            name = str(key)
            if is_sensitive_key(name) and item is not None:
                out[name] = REDACTED_VALUE
            else:
                out[name] = redact_structure(item)
        return out
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [redact_structure(item) for item in value]
    return value


def _apply_rule(text: str, rule: _TextRule) -> str:
    if rule.sensitive_group is None:
        return rule.pattern.sub(REDACTED_VALUE, text)

    group = rule.sensitive_group

    def _replace(match: re.Match[str]) -> str:
        if match.group(group) == REDACTED_VALUE:
            return match.group(0)
        start, end = match.span(group)
        offset = match.start(0)
        whole = match.group(0)
        return whole[: start - offset] + REDACTED_VALUE + whole[end - offset :]

    return rule.pattern.sub(_replace, text)


__all__ = [
    "REDACTED_VALUE",
    "SENSITIVE_KEYS",
    "is_sensitive_key",
    "redact_structure",
    "redact_text",
]
