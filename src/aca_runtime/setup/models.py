"""
aca-runtime — setup plan data model

File: src/aca_runtime/setup/models.py
Last updated: 2026-10-18

Purpose
- Typed records for the ordered setup plan: commands, error handlers, output
  conditions, per-command outcomes, and the plan result.

What should be included in this file
- ``SetupCommand`` and the three ``ErrorHandler`` variants (skip, retry, backup).
- ``OutputCondition`` variants with a pure ``matches`` predicate.
- ``CommandOutcome``/``SetupPlanResult`` and the plan/outcome state enums.

Functional requirements
- ``RetryHandler.max_attempts >= 1`` and ``RetryHandler.delay >= 0``.
- Conditions match on lossily decoded UTF-8 text; ``AnyOf`` short-circuits in order.
"""

from __future__ import annotations

import abc
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TypeAlias

from aca_runtime.setup.errors import RequiredStepAbortedError, SetupError


def _validate_name(value: str, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must be a non-empty string")
    return value.strip()


def _string_tuple(values: Sequence[str], field_name: str) -> tuple[str, ...]:
    if isinstance(values, str):
        raise TypeError(f"{field_name} must be a sequence of strings, not a string")
    items = tuple(values)
    for item in items:
        if not isinstance(item, str):
            raise TypeError(f"{field_name} entries must be strings")
    return items


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


# -- output conditions ----------------------------------------------------------------


class OutputCondition(abc.ABC):
    """Predicate over a failed command's captured streams and exit status."""

    @abc.abstractmethod
    def matches(self, stdout: bytes, stderr: bytes, exit_status: int) -> bool:
        """Return whether the condition holds for the captured result."""


@dataclass(frozen=True, slots=True)
class StderrContains(OutputCondition):
    needle: str

    def matches(self, stdout: bytes, stderr: bytes, exit_status: int) -> bool:
        return self.needle in _decode(stderr)


@dataclass(frozen=True, slots=True)
class StdoutContains(OutputCondition):
    needle: str

    def matches(self, stdout: bytes, stderr: bytes, exit_status: int) -> bool:
        return self.needle in _decode(stdout)


@dataclass(frozen=True, slots=True)
class ExitCodeEquals(OutputCondition):
    code: int

    def matches(self, stdout: bytes, stderr: bytes, exit_status: int) -> bool:
        return exit_status == self.code


@dataclass(frozen=True, slots=True)
class ExitCodeInRange(OutputCondition):
    """Inclusive ``minimum <= exit_status <= maximum``."""

    minimum: int
    maximum: int

    def __post_init__(self) -> None:
        if self.minimum > self.maximum:
            raise ValueError("ExitCodeInRange minimum must be <= maximum")

    def matches(self, stdout: bytes, stderr: bytes, exit_status: int) -> bool:
        return self.minimum <= exit_status <= self.maximum


@dataclass(frozen=True, slots=True)
class AnyOf(OutputCondition):
    conditions: tuple[OutputCondition, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "conditions", tuple(self.conditions))

    def matches(self, stdout: bytes, stderr: bytes, exit_status: int) -> bool:
        return any(item.matches(stdout, stderr, exit_status) for item in self.conditions)


@dataclass(frozen=True, slots=True)
class AllOf(OutputCondition):
    conditions: tuple[OutputCondition, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "conditions", tuple(self.conditions))

    def matches(self, stdout: bytes, stderr: bytes, exit_status: int) -> bool:
        return all(item.matches(stdout, stderr, exit_status) for item in self.conditions)


@dataclass(frozen=True, slots=True)
class Not(OutputCondition):
    condition: OutputCondition

    def matches(self, stdout: bytes, stderr: bytes, exit_status: int) -> bool:
        return not self.condition.matches(stdout, stderr, exit_status)


# -- error handlers ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SkipHandler:
    """On failure, log and continue with the next command."""

    name: str = "skip"

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _validate_name(self.name, "name"))


@dataclass(frozen=True, slots=True)
class RetryHandler:
    """Re-run up to ``max_attempts`` additional times, sleeping ``delay`` seconds between."""

    name: str = "retry"
    max_attempts: int = 1
    delay: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _validate_name(self.name, "name"))
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int):
            raise TypeError("max_attempts must be an integer")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if isinstance(self.delay, bool) or not isinstance(self.delay, (int, float)):
            raise TypeError("delay must be a number of seconds")
        if not math.isfinite(self.delay) or self.delay < 0:
            raise ValueError("delay must be a finite number >= 0")
        object.__setattr__(self, "delay", float(self.delay))


@dataclass(frozen=True, slots=True)
class BackupHandler:
    """Run ``program args`` instead when ``condition`` matches the first failure."""

    condition: OutputCondition
    program: str
    args: tuple[str, ...] = ()
    name: str = "backup"

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _validate_name(self.name, "name"))
        object.__setattr__(self, "program", _validate_name(self.program, "program"))
        object.__setattr__(self, "args", _string_tuple(self.args, "args"))
        if not isinstance(self.condition, OutputCondition):
            raise TypeError("condition must be an OutputCondition")


ErrorHandler: TypeAlias = SkipHandler | RetryHandler | BackupHandler


# -- plan --------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SetupCommand:
    """One entry of the setup plan."""

    name: str
    program: str
    args: tuple[str, ...] = ()
    working_dir: Path | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: float | None = None
    required: bool = True
    error_handler: ErrorHandler | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _validate_name(self.name, "name"))
        object.__setattr__(self, "program", _validate_name(self.program, "program"))
        object.__setattr__(self, "args", _string_tuple(self.args, "args"))
        if self.working_dir is not None:
            object.__setattr__(self, "working_dir", Path(self.working_dir))
        env: dict[str, str] = {}
        for key, value in self.env.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise TypeError("env must map strings to strings")
            env[key] = value
        object.__setattr__(self, "env", env)
        if self.timeout is not None:
            if isinstance(self.timeout, bool) or not isinstance(self.timeout, (int, float)):
                raise TypeError("timeout must be a number of seconds")
            if not math.isfinite(self.timeout) or self.timeout < 0:
                raise ValueError("timeout must be a finite number >= 0")
            # 0 means unbounded.
            object.__setattr__(self, "timeout", float(self.timeout) or None)
        if not isinstance(self.required, bool):
            raise TypeError("required must be a boolean")
        if self.error_handler is not None and not isinstance(
            self.error_handler, (SkipHandler, RetryHandler, BackupHandler)
        ):
            raise TypeError("error_handler must be a SkipHandler, RetryHandler, or BackupHandler")


class FinalState(StrEnum):
    SUCCEEDED = "succeeded"
    SKIPPED_AFTER_FAILURE = "skipped_after_failure"
    RECOVERED_BY_BACKUP = "recovered_by_backup"
    FAILED_REQUIRED = "failed_required"
    FAILED_OPTIONAL = "failed_optional"


class PlanState(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(frozen=True, slots=True)
class CommandOutcome:
    """Record of one executed step; ``error`` is set for every non-success state."""

    name: str
    attempt_count: int
    exit_status: int
    stdout: bytes
    stderr: bytes
    duration: float
    handler_invoked: bool
    final_state: FinalState
    error: SetupError | None = None

    @property
    def succeeded(self) -> bool:
        return self.final_state in (FinalState.SUCCEEDED, FinalState.RECOVERED_BY_BACKUP)

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "attempt_count": self.attempt_count,
            "exit_status": self.exit_status,
            "duration": self.duration,
            "handler_invoked": self.handler_invoked,
            "final_state": self.final_state.value,
            "error": str(self.error) if self.error is not None else None,
        }


@dataclass(frozen=True, slots=True)
class SetupPlanResult:
    state: PlanState
    outcomes: tuple[CommandOutcome, ...]
    backend_invocations: int
    aborted_step: str | None = None
    cancelled: bool = False

    def outcome(self, name: str) -> CommandOutcome:
        for item in self.outcomes:
            if item.name == name:
                return item
        raise KeyError(name)

    @property
    def attempted_commands(self) -> int:
        return len(self.outcomes)

    def raise_for_status(self) -> None:
        """Raise ``RequiredStepAbortedError`` when the plan was aborted."""

        if self.state is PlanState.ABORTED:
            raise RequiredStepAbortedError(self.aborted_step or "<unknown>")

    def to_dict(self) -> dict[str, object]:
        return {
            "state": self.state.value,
            "aborted_step": self.aborted_step,
            "cancelled": self.cancelled,
            "backend_invocations": self.backend_invocations,
            "outcomes": [item.to_dict() for item in self.outcomes],
        }


__all__ = [
    "AllOf",
    "AnyOf",
    "BackupHandler",
    "CommandOutcome",
    "ErrorHandler",
    "ExitCodeEquals",
    "ExitCodeInRange",
    "FinalState",
    "Not",
    "OutputCondition",
    "PlanState",
    "RetryHandler",
    "SetupCommand",
    "SetupPlanResult",
    "SkipHandler",
    "StderrContains",
    "StdoutContains",
]
