"""
aca-runtime — LLM request/response data model

File: src/aca_runtime/llm/types.py
Last updated: 2026-10-18

Purpose
- Normalized request, response, usage, capability, and status records shared by
  every provider variant.

What should be included in this file
- ``LLMRequest`` with a fresh 128-bit id per request.
- ``LLMResponse`` / ``TokenUsage`` with ``total == input + output`` enforced.
- ``ProviderConfig`` / ``RateLimitConfig`` construction records.
- ``Permit``, ``RateLimitStatus``, ``ProviderCapabilities``, ``ProviderStatus``.
- ``ToolUse``: one tool invocation reported by an agent CLI, for audit capture.

Non-functional requirements
- Records are immutable and validate on construction.
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from aca_runtime.constants import (
    DEFAULT_BURST_ALLOWANCE,
    DEFAULT_MAX_REQUESTS_PER_MINUTE,
    DEFAULT_MAX_TOKENS_PER_MINUTE,
)


def _validate_non_negative_int(value: int, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{field_name} must be an integer")
    if value < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return value


def _validate_optional_str(value: str | None, field_name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{field_name} cannot be empty")
    return normalized


def _string_mapping(value: Mapping[str, str], field_name: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for key, item in value.items():
        if not isinstance(key, str) or not isinstance(item, str):
            raise TypeError(f"{field_name} must map strings to strings")
        out[key] = item
    return out


class ProviderType(StrEnum):
    """Provider variants a ``ProviderConfig`` may name."""

    CLAUDE = "claude"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    LOCAL = "local"
    CUSTOM = "custom"


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """Per-provider admission caps. A cap of ``0`` disables that bucket."""

    max_requests_per_minute: int = DEFAULT_MAX_REQUESTS_PER_MINUTE
    max_tokens_per_minute: int = DEFAULT_MAX_TOKENS_PER_MINUTE
    burst_allowance: int = DEFAULT_BURST_ALLOWANCE

    def __post_init__(self) -> None:
        _validate_non_negative_int(self.max_requests_per_minute, "max_requests_per_minute")
        _validate_non_negative_int(self.max_tokens_per_minute, "max_tokens_per_minute")
        _validate_non_negative_int(self.burst_allowance, "burst_allowance")

    @property
    def token_capacity(self) -> int:
        return self.max_tokens_per_minute + self.burst_allowance

    def to_dict(self) -> dict[str, int]:
        return {
            "max_requests_per_minute": self.max_requests_per_minute,
            "max_tokens_per_minute": self.max_tokens_per_minute,
            "burst_allowance": self.burst_allowance,
        }


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Construction parameters for one provider instance."""

    provider_type: ProviderType
    api_key: str | None = None
    base_url: str | None = None
    model: str | None = None
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    additional_config: Mapping[str, Any] = field(default_factory=dict)
    custom_name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "provider_type", ProviderType(self.provider_type))
        object.__setattr__(self, "api_key", _validate_optional_str(self.api_key, "api_key"))
        object.__setattr__(self, "base_url", _validate_optional_str(self.base_url, "base_url"))
        object.__setattr__(self, "model", _validate_optional_str(self.model, "model"))
        object.__setattr__(
            self, "custom_name", _validate_optional_str(self.custom_name, "custom_name")
        )
        if self.provider_type is ProviderType.CUSTOM and self.custom_name is None:
            raise ValueError("custom providers require custom_name")
        if self.provider_type is not ProviderType.CUSTOM and self.custom_name is not None:
            raise ValueError("custom_name is only valid for custom providers")
        if not isinstance(self.rate_limits, RateLimitConfig):
            raise TypeError("rate_limits must be a RateLimitConfig")
        object.__setattr__(self, "additional_config", dict(self.additional_config))

    @classmethod
    def parse_provider_type(cls, raw: str) -> tuple[ProviderType, str | None]:
        """Parse ``claude``/``openai``/... or ``custom:<name>`` into (type, custom_name)."""

        normalized = raw.strip()
        if normalized.lower().startswith("custom:"):
            name = normalized.split(":", 1)[1].strip()
            if not name:
                raise ValueError("custom provider type requires a name: custom:<name>")
            return ProviderType.CUSTOM, name
        try:
            return ProviderType(normalized.lower()), None
        except ValueError as exc:
            allowed = ", ".join(
                item.value for item in ProviderType if item is not ProviderType.CUSTOM
            )
            raise ValueError(
                f"unsupported provider_type {raw!r}; expected one of: {allowed}, custom:<name>"
            ) from exc

    def config_str(self, key: str, default: str | None = None) -> str | None:
        value = self.additional_config.get(key, default)
        if value is None:
            return None
        if not isinstance(value, str):
            raise TypeError(f"additional_config.{key} must be a string")
        return value

    def config_bool(self, key: str, default: bool) -> bool:
        value = self.additional_config.get(key, default)
        if not isinstance(value, bool):
            raise TypeError(f"additional_config.{key} must be a boolean")
        return value

    def config_float(self, key: str, default: float) -> float:
        value = self.additional_config.get(key, default)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"additional_config.{key} must be a number")
        return float(value)

    def config_str_list(self, key: str) -> tuple[str, ...]:
        value = self.additional_config.get(key, ())
        if isinstance(value, str) or not isinstance(value, (list, tuple)):
            raise TypeError(f"additional_config.{key} must be a list of strings")
        if not all(isinstance(item, str) for item in value):
            raise TypeError(f"additional_config.{key} must be a list of strings")
        return tuple(value)


@dataclass(frozen=True, slots=True)
class LLMRequest:
    """The unit of work submitted to a provider."""

    prompt: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    context: Mapping[str, str] = field(default_factory=dict)
    max_tokens: int | None = None
    temperature: float | None = None
    model_preference: str | None = None
    system_message: str | None = None
    estimated_tokens: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.prompt, str):
            raise TypeError("prompt must be a string")
        if not isinstance(self.id, uuid.UUID):
            raise TypeError("id must be a uuid.UUID")
        object.__setattr__(self, "context", _string_mapping(self.context, "context"))
        if self.max_tokens is not None:
            _validate_non_negative_int(self.max_tokens, "max_tokens")
            if self.max_tokens == 0:
                raise ValueError("max_tokens must be > 0")
        if self.temperature is not None:
            temperature = float(self.temperature)
            if math.isnan(temperature) or not 0.0 <= temperature <= 2.0:
                raise ValueError("temperature must be within [0, 2]")
            object.__setattr__(self, "temperature", temperature)
        object.__setattr__(
            self,
            "model_preference",
            _validate_optional_str(self.model_preference, "model_preference"),
        )
        if self.system_message is not None and not isinstance(self.system_message, str):
            raise TypeError("system_message must be a string")
        if self.estimated_tokens is not None:
            _validate_non_negative_int(self.estimated_tokens, "estimated_tokens")


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token accounting for one response; ``total_tokens`` is always input + output."""

    input_tokens: int
    output_tokens: int
    total_tokens: int
    estimated_cost: float = 0.0

    def __post_init__(self) -> None:
        _validate_non_negative_int(self.input_tokens, "input_tokens")
        _validate_non_negative_int(self.output_tokens, "output_tokens")
        _validate_non_negative_int(self.total_tokens, "total_tokens")
        if self.total_tokens != self.input_tokens + self.output_tokens:
            raise ValueError("total_tokens must equal input_tokens + output_tokens")
        if self.estimated_cost < 0 or math.isnan(self.estimated_cost):
            raise ValueError("estimated_cost must be >= 0")

    @classmethod
    def from_counts(
        cls, input_tokens: int, output_tokens: int, *, estimated_cost: float = 0.0
    ) -> TokenUsage:
        return cls(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            estimated_cost=estimated_cost,
        )

    def to_dict(self) -> dict[str, int | float]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "estimated_cost": self.estimated_cost,
        }


@dataclass(frozen=True, slots=True)
class LLMResponse:
    """The result of a successful request."""

    request_id: uuid.UUID
    content: str
    model_used: str
    token_usage: TokenUsage
    execution_time: float
    provider_metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.content, str) or not self.content.strip():
            raise ValueError("content must be a non-empty string")
        if self.execution_time < 0:
            raise ValueError("execution_time must be >= 0")
        object.__setattr__(self, "provider_metadata", dict(self.provider_metadata))


@dataclass(frozen=True, slots=True)
class Permit:
    """Admission receipt from the rate limiter. Never returned to the pool."""

    tokens_consumed: int
    request_consumed: bool = True


@dataclass(frozen=True, slots=True)
class RateLimitStatus:
    """Remaining admission capacity; ``None`` marks a disabled (unlimited) bucket."""

    requests_remaining: int | None
    tokens_remaining: int | None
    next_reset_time: datetime | None

    def to_dict(self) -> dict[str, object]:
        return {
            "requests_remaining": self.requests_remaining,
            "tokens_remaining": self.tokens_remaining,
            "next_reset_time": (
                self.next_reset_time.isoformat() if self.next_reset_time is not None else None
            ),
        }


@dataclass(frozen=True, slots=True)
class ProviderCapabilities:
    supports_streaming: bool
    supports_function_calling: bool
    supports_vision: bool
    max_context_tokens: int
    available_models: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ProviderStatus:
    """Observability snapshot of one provider instance."""

    is_healthy: bool
    last_check: datetime | None
    error_count: int
    average_response_time: float | None
    rate_limit_status: RateLimitStatus

    def to_dict(self) -> dict[str, object]:
        return {
            "is_healthy": self.is_healthy,
            "last_check": self.last_check.isoformat() if self.last_check is not None else None,
            "error_count": self.error_count,
            "average_response_time": self.average_response_time,
            "rate_limit_status": self.rate_limit_status.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class ToolUse:
    """One tool invocation (file edit, shell command, ...) reported in agent output."""

    tool_name: str
    input: Mapping[str, Any] = field(default_factory=dict)
    output: Any = None
    timestamp: datetime | None = None

    def __post_init__(self) -> None:
        name = _validate_optional_str(self.tool_name, "tool_name")
        if name is None:
            raise ValueError("tool_name cannot be empty")
        object.__setattr__(self, "tool_name", name)
        object.__setattr__(self, "input", dict(self.input))

    def to_dict(self) -> dict[str, object]:
        return {
            "tool_name": self.tool_name,
            "input": dict(self.input),
            "output": self.output,
            "timestamp": self.timestamp.isoformat() if self.timestamp is not None else None,
        }


__all__ = [
    "LLMRequest",
    "LLMResponse",
    "Permit",
    "ProviderCapabilities",
    "ProviderConfig",
    "ProviderStatus",
    "ProviderType",
    "RateLimitConfig",
    "RateLimitStatus",
    "TokenUsage",
    "ToolUse",
]
