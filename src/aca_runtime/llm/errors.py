"""
aca-runtime — LLM error taxonomy

File: src/aca_runtime/llm/errors.py
Last updated: 2026-10-18

Purpose
- Closed set of typed errors every provider surfaces instead of crashing.

What should be included in this file
- ``LLMError`` base with machine-readable ``code``/``provider``/``retryable`` fields.
- One subclass per taxonomy member, each rendering one human-readable line.

Functional requirements
- ``str(error)`` is a single line suitable for the user-facing report.
- Details are redacted before they are stored on the exception.
"""

from __future__ import annotations

from datetime import datetime
from typing import Final

from aca_runtime.security.redaction import redact_text

_MAX_DETAIL_CHARS: Final[int] = 2000


def _normalize_detail(detail: str) -> str:
    collapsed = " ".join(redact_text(str(detail)).split())
    if len(collapsed) > _MAX_DETAIL_CHARS:
        return collapsed[: _MAX_DETAIL_CHARS - 3] + "..."
    return collapsed


class LLMError(RuntimeError):
    """Base normalized provider error with deterministic machine-readable fields."""

    code: str = "llm_error"
    summary: str = "LLM error"
    retryable: bool = False

    def __init__(self, detail: str, *, provider: str = "provider") -> None:
        self.provider = provider
        self.detail = _normalize_detail(detail)
        super().__init__(self._render())

    def _render(self) -> str:
        if not self.detail:
            return self.summary
        return f"{self.summary}: {self.detail}"

    def to_dict(self) -> dict[str, object]:
        return {
            "provider": self.provider,
            "code": self.code,
            "retryable": self.retryable,
            "detail": self.detail,
        }


class RateLimitError(LLMError):
    """Admission was refused; ``reset_time`` is the earliest wall-clock retry point."""

    code = "rate_limit"
    summary = "Rate limit exceeded"
    retryable = True

    def __init__(
        self,
        detail: str,
        *,
        provider: str = "provider",
        reset_time: datetime | None = None,
    ) -> None:
        self.reset_time = reset_time
        super().__init__(detail, provider=provider)

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["reset_time"] = self.reset_time.isoformat() if self.reset_time else None
        return payload


class AuthenticationError(LLMError):
    code = "authentication"
    summary = "Authentication failed"


class InvalidRequestError(LLMError):
    code = "invalid_request"
    summary = "Invalid request"


class ModelUnavailableError(LLMError):
    code = "model_unavailable"
    summary = "Model not available"


class ProviderUnavailableError(LLMError):
    code = "provider_unavailable"
    summary = "Provider unavailable"


class ContextTooLargeError(LLMError):
    """Rendered prompt exceeds the provider's context window."""

    code = "context_too_large"
    summary = "Context too large"

    def __init__(self, *, current: int, maximum: int, provider: str = "provider") -> None:
        self.current = current
        self.maximum = maximum
        super().__init__(f"{current} > {maximum}", provider=provider)

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["current"] = self.current
        payload["max"] = self.maximum
        return payload


class NetworkError(LLMError):
    code = "network"
    summary = "Network error"
    retryable = True


class ProviderSpecificError(LLMError):
    """Fallback for non-zero exits with no recognizable signature; carries stderr."""

    code = "provider_specific"
    summary = "Provider-specific error"


__all__ = [
    "AuthenticationError",
    "ContextTooLargeError",
    "InvalidRequestError",
    "LLMError",
    "ModelUnavailableError",
    "NetworkError",
    "ProviderSpecificError",
    "ProviderUnavailableError",
    "RateLimitError",
]
