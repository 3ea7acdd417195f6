"""Stable constants shared across the runtime."""

from __future__ import annotations

from typing import Final

# Rate limiting.
RATE_WINDOW_SECONDS: Final[float] = 60.0
DEFAULT_MAX_REQUESTS_PER_MINUTE: Final[int] = 60
DEFAULT_MAX_TOKENS_PER_MINUTE: Final[int] = 10_000
DEFAULT_BURST_ALLOWANCE: Final[int] = 10

# Provider runtime.
DEFAULT_PROVIDER_TIMEOUT_SECONDS: Final[float] = 1800.0
HEALTH_CHECK_TIMEOUT_SECONDS: Final[float] = 10.0
RESPONSE_TIME_WINDOW: Final[int] = 32
CHARS_PER_TOKEN: Final[int] = 4

# Audit file suffixes under a session directory.
AUDIT_COMMAND_SUFFIX: Final[str] = ".cmd"
AUDIT_STDOUT_SUFFIX: Final[str] = ".stdout"
AUDIT_STDERR_SUFFIX: Final[str] = ".stderr"
AUDIT_LOG_SUFFIX: Final[str] = ".log"
AUDIT_TOOLS_SUFFIX: Final[str] = ".tools.json"
DEFAULT_AUDIT_PREVIEW_CHARS: Final[int] = 500

# Synthetic exit statuses reported by execution backends.
EXIT_STATUS_TIMEOUT: Final[int] = 124
EXIT_STATUS_NOT_FOUND: Final[int] = 127
EXIT_STATUS_SIGNAL_BASE: Final[int] = 128

# Container execution.
CONTAINER_WORKSPACE: Final[str] = "/workspace"
DEFAULT_CONTAINER_IMAGE: Final[str] = "alpine:latest"
DEFAULT_CONTAINER_RUNTIME: Final[str] = "docker"
DEFAULT_RESOURCE_PERCENTAGE: Final[float] = 0.5
CPU_PERIOD_MICROSECONDS: Final[int] = 100_000

__all__ = [
    "AUDIT_COMMAND_SUFFIX",
    "AUDIT_LOG_SUFFIX",
    "AUDIT_STDERR_SUFFIX",
    "AUDIT_STDOUT_SUFFIX",
    "AUDIT_TOOLS_SUFFIX",
    "CHARS_PER_TOKEN",
    "CONTAINER_WORKSPACE",
    "CPU_PERIOD_MICROSECONDS",
    "DEFAULT_AUDIT_PREVIEW_CHARS",
    "DEFAULT_BURST_ALLOWANCE",
    "DEFAULT_CONTAINER_IMAGE",
    "DEFAULT_CONTAINER_RUNTIME",
    "DEFAULT_MAX_REQUESTS_PER_MINUTE",
    "DEFAULT_MAX_TOKENS_PER_MINUTE",
    "DEFAULT_PROVIDER_TIMEOUT_SECONDS",
    "DEFAULT_RESOURCE_PERCENTAGE",
    "EXIT_STATUS_NOT_FOUND",
    "EXIT_STATUS_SIGNAL_BASE",
    "EXIT_STATUS_TIMEOUT",
    "HEALTH_CHECK_TIMEOUT_SECONDS",
    "RATE_WINDOW_SECONDS",
    "RESPONSE_TIME_WINDOW",
]
