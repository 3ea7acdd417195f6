"""
aca-runtime — strict runtime config schema

File: src/aca_runtime/config/schema.py
Last updated: 2026-10-18

Purpose
- Validate a raw config mapping (parsed TOML or YAML) and build the typed
  ``RuntimeConfig``: the LLM provider record, the ordered setup plan, and the
  execution mode.

What should be included in this file
- Strict validation: unknown keys are rejected with their dotted path.
- All issues are collected before raising, in deterministic order.
- Redacted, JSON-safe dumps of the effective config.

Functional requirements
- Output conditions nest (``any``/``all``/``not``) and each table names exactly
  one condition kind.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final

from aca_runtime.constants import (
    DEFAULT_BURST_ALLOWANCE,
    DEFAULT_MAX_REQUESTS_PER_MINUTE,
    DEFAULT_MAX_TOKENS_PER_MINUTE,
)
from aca_runtime.executor.config import ContainerExecutionConfig, ExecutionConfig, ExecutionMode
from aca_runtime.llm.types import ProviderConfig, RateLimitConfig
from aca_runtime.security.redaction import redact_structure
from aca_runtime.setup.models import (
    AllOf,
    AnyOf,
    BackupHandler,
    ErrorHandler,
    ExitCodeEquals,
    ExitCodeInRange,
    Not,
    OutputCondition,
    RetryHandler,
    SetupCommand,
    SkipHandler,
    StderrContains,
    StdoutContains,
)

HANDLER_STRATEGIES: Final[tuple[str, ...]] = ("backup", "retry", "skip")
CONDITION_KINDS: Final[tuple[str, ...]] = (
    "all",
    "any",
    "exit_code_equals",
    "exit_code_in_range",
    "not",
    "stderr_contains",
    "stdout_contains",
)


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


@dataclass(frozen=True, slots=True)
class RuntimeConfig:
    """Typed effective configuration."""

    llm: ProviderConfig
    setup: tuple[SetupCommand, ...] = ()
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    source_path: Path | None = None


def validate_config(payload: Mapping[str, object] | object) -> RuntimeConfig:
    """Validate ``payload`` and return the typed config, or raise ``ConfigValidationError``."""

    issues = _IssueCollector()
    root = _as_object(payload, "<root>", issues)
    if root is None:
        raise ConfigValidationError(issues.items())

    _reject_unknown_keys(root, {"llm", "setup", "execution"}, "", issues)
    _require_keys(root, {"llm"}, "", issues)

    llm: ProviderConfig | None = None
    if "llm" in root:
        section = _as_object(root["llm"], "llm", issues)
        if section is not None:
            llm = _validate_llm(section, "llm", issues)

    setup: tuple[SetupCommand, ...] = ()
    if "setup" in root:
        section = _as_object(root["setup"], "setup", issues)
        if section is not None:
            setup = _validate_setup(section, "setup", issues)

    execution = ExecutionConfig()
    if "execution" in root:
        section = _as_object(root["execution"], "execution", issues)
        if section is not None:
            execution = _validate_execution(section, "execution", issues) or execution

    if issues.has_issues or llm is None:
        raise ConfigValidationError(issues.items())
    return RuntimeConfig(llm=llm, setup=setup, execution=execution)


def dump_redacted(config: RuntimeConfig) -> dict[str, Any]:
    """Return a deterministic, JSON-safe, redacted representation for logs."""

    llm = config.llm
    provider_type = (
        f"custom:{llm.custom_name}" if llm.custom_name is not None else llm.provider_type.value
    )
    payload: dict[str, Any] = {
        "llm": {
            "provider_type": provider_type,
            "api_key": llm.api_key,
            "base_url": llm.base_url,
            "model": llm.model,
            "rate_limits": llm.rate_limits.to_dict(),
            "additional_config": dict(llm.additional_config),
        },
        "setup": {"commands": [_dump_command(command) for command in config.setup]},
        "execution": {
            "mode": config.execution.mode.value,
            "container": {
                "image": config.execution.container.image,
                "resource_percentage": config.execution.container.resource_percentage,
                "memory_limit_bytes": config.execution.container.memory_limit_bytes,
                "cpu_quota": config.execution.container.cpu_quota,
                "runtime": config.execution.container.runtime,
                "container_name": config.execution.container.container_name,
                "keep_container": config.execution.container.keep_container,
            },
        },
    }
    if config.source_path is not None:
        payload["source_path"] = config.source_path.as_posix()
    redacted = redact_structure(payload)
    return redacted if isinstance(redacted, dict) else {}


# -- llm -------------------------------------------------------------------------------


def _validate_llm(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> ProviderConfig | None:
    allowed = {"provider_type", "api_key", "base_url", "model", "rate_limits", "additional_config"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, {"provider_type"}, path, issues)

    provider_type = None
    custom_name = None
    if "provider_type" in payload:
        raw_type = _as_str(payload["provider_type"], _join(path, "provider_type"), issues)
        if raw_type is not None:
            try:
                provider_type, custom_name = ProviderConfig.parse_provider_type(raw_type)
            except ValueError as exc:
                issues.add(_join(path, "provider_type"), str(exc))

    optional: dict[str, str | None] = {}
    for key in ("api_key", "base_url", "model"):
        optional[key] = (
            _as_str(payload[key], _join(path, key), issues) if key in payload else None
        )

    rate_limits = RateLimitConfig()
    if "rate_limits" in payload:
        section = _as_object(payload["rate_limits"], _join(path, "rate_limits"), issues)
        if section is not None:
            rate_limits = _validate_rate_limits(section, _join(path, "rate_limits"), issues)

    additional: dict[str, object] = {}
    if "additional_config" in payload:
        section = _as_object(
            payload["additional_config"], _join(path, "additional_config"), issues
        )
        if section is not None:
            additional = section

    if provider_type is None:
        return None
    try:
        return ProviderConfig(
            provider_type=provider_type,
            api_key=optional["api_key"],
            base_url=optional["base_url"],
            model=optional["model"],
            rate_limits=rate_limits,
            additional_config=additional,
            custom_name=custom_name,
        )
    except (TypeError, ValueError) as exc:
        issues.add(path, str(exc))
        return None


def _validate_rate_limits(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> RateLimitConfig:
    defaults = {
        "max_requests_per_minute": DEFAULT_MAX_REQUESTS_PER_MINUTE,
        "max_tokens_per_minute": DEFAULT_MAX_TOKENS_PER_MINUTE,
        "burst_allowance": DEFAULT_BURST_ALLOWANCE,
    }
    _reject_unknown_keys(payload, set(defaults), path, issues)
    values = dict(defaults)
    for key in sorted(defaults):
        if key not in payload:
            continue
        parsed = _as_int(payload[key], _join(path, key), issues, minimum=0)
        if parsed is not None:
            values[key] = parsed
    return RateLimitConfig(**values)


# -- setup -----------------------------------------------------------------------------


def _validate_setup(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> tuple[SetupCommand, ...]:
    _reject_unknown_keys(payload, {"commands"}, path, issues)
    raw = payload.get("commands")
    if raw is None:
        return ()
    commands_path = _join(path, "commands")
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence):
        issues.add(commands_path, f"expected array, got {type(raw).__name__}")
        return ()

    commands: list[SetupCommand] = []
    seen: set[str] = set()
    for index, item in enumerate(raw):
        item_path = f"{commands_path}[{index}]"
        section = _as_object(item, item_path, issues)
        if section is None:
            continue
        command = _validate_command(section, item_path, issues)
        if command is None:
            continue
        if command.name in seen:
            issues.add(_join(item_path, "name"), f"duplicate command name {command.name!r}")
            continue
        seen.add(command.name)
        commands.append(command)
    return tuple(commands)


def _validate_command(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> SetupCommand | None:
    allowed = {
        "name",
        "program",
        "args",
        "working_dir",
        "env",
        "timeout_seconds",
        "required",
        "error_handler",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, {"name", "program"}, path, issues)

    name = _as_str(payload["name"], _join(path, "name"), issues) if "name" in payload else None
    program = (
        _as_str(payload["program"], _join(path, "program"), issues)
        if "program" in payload
        else None
    )
    args = _as_str_list(payload.get("args", []), _join(path, "args"), issues)
    working_dir = (
        _as_path_text(payload["working_dir"], _join(path, "working_dir"), issues)
        if "working_dir" in payload
        else None
    )
    env = _as_str_mapping(payload.get("env", {}), _join(path, "env"), issues)
    timeout = (
        _as_float(payload["timeout_seconds"], _join(path, "timeout_seconds"), issues, minimum=0.0)
        if "timeout_seconds" in payload
        else None
    )
    required = (
        _as_bool(payload["required"], _join(path, "required"), issues)
        if "required" in payload
        else True
    )
    handler: ErrorHandler | None = None
    if "error_handler" in payload:
        handler_path = _join(path, "error_handler")
        section = _as_object(payload["error_handler"], handler_path, issues)
        if section is not None:
            handler = _validate_handler(section, handler_path, issues)
            if handler is None:
                return None

    if name is None or program is None or args is None or env is None or required is None:
        return None
    try:
        return SetupCommand(
            name=name,
            program=program,
            args=tuple(args),
            working_dir=Path(working_dir) if working_dir is not None else None,
            env=env,
            timeout=timeout,
            required=required,
            error_handler=handler,
        )
    except (TypeError, ValueError) as exc:
        issues.add(path, str(exc))
        return None


def _validate_handler(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> ErrorHandler | None:
    strategy = None
    if "strategy" in payload:
        strategy = _as_enum(
            payload["strategy"],
            _join(path, "strategy"),
            issues,
            allowed_values=HANDLER_STRATEGIES,
        )
    else:
        issues.add(_join(path, "strategy"), "missing required field")
    if strategy is None:
        return None

    name = (
        _as_str(payload["name"], _join(path, "name"), issues) if "name" in payload else strategy
    )
    if name is None:
        return None

    if strategy == "skip":
        _reject_unknown_keys(payload, {"strategy", "name"}, path, issues)
        return SkipHandler(name=name)

    if strategy == "retry":
        _reject_unknown_keys(
            payload, {"strategy", "name", "max_attempts", "delay_seconds"}, path, issues
        )
        max_attempts = (
            _as_int(payload["max_attempts"], _join(path, "max_attempts"), issues, minimum=1)
            if "max_attempts" in payload
            else 1
        )
        delay = (
            _as_float(payload["delay_seconds"], _join(path, "delay_seconds"), issues, minimum=0.0)
            if "delay_seconds" in payload
            else 0.0
        )
        if max_attempts is None or delay is None:
            return None
        return RetryHandler(name=name, max_attempts=max_attempts, delay=delay)

    _reject_unknown_keys(
        payload, {"strategy", "name", "condition", "program", "args"}, path, issues
    )
    _require_keys(payload, {"condition", "program"}, path, issues)
    program = (
        _as_str(payload["program"], _join(path, "program"), issues)
        if "program" in payload
        else None
    )
    args = _as_str_list(payload.get("args", []), _join(path, "args"), issues)
    condition = (
        _validate_condition(payload["condition"], _join(path, "condition"), issues)
        if "condition" in payload
        else None
    )
    if program is None or args is None or condition is None:
        return None
    return BackupHandler(name=name, condition=condition, program=program, args=tuple(args))


def _validate_condition(
    value: object, path: str, issues: _IssueCollector
) -> OutputCondition | None:
    payload = _as_object(value, path, issues)
    if payload is None:
        return None
    _reject_unknown_keys(payload, set(CONDITION_KINDS), path, issues)
    kinds = sorted(key for key in payload if key in CONDITION_KINDS)
    if len(kinds) != 1:
        expected = ", ".join(CONDITION_KINDS)
        issues.add(path, f"condition must name exactly one of: {expected}")
        return None

    kind = kinds[0]
    item_path = _join(path, kind)
    raw = payload[kind]
    if kind == "stderr_contains":
        needle = _as_str(raw, item_path, issues)
        return StderrContains(needle) if needle is not None else None
    if kind == "stdout_contains":
        needle = _as_str(raw, item_path, issues)
        return StdoutContains(needle) if needle is not None else None
    if kind == "exit_code_equals":
        code = _as_int(raw, item_path, issues)
        return ExitCodeEquals(code) if code is not None else None
    if kind == "exit_code_in_range":
        bounds = _as_int_pair(raw, item_path, issues)
        if bounds is None:
            return None
        if bounds[0] > bounds[1]:
            issues.add(item_path, "minimum must be <= maximum")
            return None
        return ExitCodeInRange(bounds[0], bounds[1])
    if kind == "not":
        inner = _validate_condition(raw, item_path, issues)
        return Not(inner) if inner is not None else None

    if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence) or not raw:
        issues.add(item_path, "expected a non-empty array of conditions")
        return None
    children = [
        _validate_condition(child, f"{item_path}[{index}]", issues)
        for index, child in enumerate(raw)
    ]
    if any(child is None for child in children):
        return None
    conditions = tuple(child for child in children if child is not None)
    return AnyOf(conditions) if kind == "any" else AllOf(conditions)


# -- execution -------------------------------------------------------------------------


def _validate_execution(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> ExecutionConfig | None:
    _reject_unknown_keys(payload, {"mode", "container"}, path, issues)
    mode = ExecutionMode.HOST
    if "mode" in payload:
        parsed = _as_enum(
            payload["mode"],
            _join(path, "mode"),
            issues,
            allowed_values=tuple(item.value for item in ExecutionMode),
        )
        if parsed is None:
            return None
        mode = ExecutionMode(parsed)

    container = ContainerExecutionConfig()
    if "container" in payload:
        container_path = _join(path, "container")
        section = _as_object(payload["container"], container_path, issues)
        if section is None:
            return None
        parsed_container = _validate_container(section, container_path, issues)
        if parsed_container is None:
            return None
        container = parsed_container
    return ExecutionConfig(mode=mode, container=container)


def _validate_container(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> ContainerExecutionConfig | None:
    allowed = {
        "image",
        "resource_percentage",
        "memory_limit_bytes",
        "cpu_quota",
        "runtime",
        "container_name",
        "keep_container",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    before = len(issues.items())
    values: dict[str, Any] = {}
    if "image" in payload:
        values["image"] = _as_str(payload["image"], _join(path, "image"), issues)
    if "runtime" in payload:
        values["runtime"] = _as_str(payload["runtime"], _join(path, "runtime"), issues)
    if "container_name" in payload:
        values["container_name"] = _as_str(
            payload["container_name"], _join(path, "container_name"), issues
        )
    if "resource_percentage" in payload:
        percentage = _as_float(
            payload["resource_percentage"],
            _join(path, "resource_percentage"),
            issues,
            minimum=0.0,
        )
        if percentage is not None and percentage > 1.0:
            issues.add(_join(path, "resource_percentage"), "must be <= 1.0")
        values["resource_percentage"] = percentage
    for key in ("memory_limit_bytes", "cpu_quota"):
        if key in payload:
            values[key] = _as_int(payload[key], _join(path, key), issues, minimum=1)
    if "keep_container" in payload:
        values["keep_container"] = _as_bool(
            payload["keep_container"], _join(path, "keep_container"), issues
        )
    if len(issues.items()) != before:
        return None
    try:
        return ContainerExecutionConfig(**values)
    except (TypeError, ValueError) as exc:
        issues.add(path, str(exc))
        return None


def _dump_command(command: SetupCommand) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": command.name,
        "program": command.program,
        "args": list(command.args),
        "working_dir": command.working_dir.as_posix() if command.working_dir else None,
        "env": dict(command.env),
        "timeout_seconds": command.timeout,
        "required": command.required,
    }
    handler = command.error_handler
    if isinstance(handler, SkipHandler):
        payload["error_handler"] = {"strategy": "skip", "name": handler.name}
    elif isinstance(handler, RetryHandler):
        payload["error_handler"] = {
            "strategy": "retry",
            "name": handler.name,
            "max_attempts": handler.max_attempts,
            "delay_seconds": handler.delay,
        }
    elif isinstance(handler, BackupHandler):
        payload["error_handler"] = {
            "strategy": "backup",
            "name": handler.name,
            "program": handler.program,
            "args": list(handler.args),
            "condition": _dump_condition(handler.condition),
        }
    return payload


def _dump_condition(condition: OutputCondition) -> dict[str, Any]:
    if isinstance(condition, StderrContains):
        return {"stderr_contains": condition.needle}
    if isinstance(condition, StdoutContains):
        return {"stdout_contains": condition.needle}
    if isinstance(condition, ExitCodeEquals):
        return {"exit_code_equals": condition.code}
    if isinstance(condition, ExitCodeInRange):
        return {"exit_code_in_range": [condition.minimum, condition.maximum]}
    if isinstance(condition, Not):
        return {"not": _dump_condition(condition.condition)}
    if isinstance(condition, AnyOf):
        return {"any": [_dump_condition(item) for item in condition.conditions]}
    if isinstance(condition, AllOf):
        return {"all": [_dump_condition(item) for item in condition.conditions]}
    return {"custom": type(condition).__name__}


# -- primitives ------------------------------------------------------------------------


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        issues.add(path, f"expected array of strings, got {type(value).__name__}")
        return None
    out: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str):
            issues.add(f"{path}[{index}]", f"expected string, got {type(item).__name__}")
            return None
        out.append(item)
    return out


def _as_str_mapping(value: object, path: str, issues: _IssueCollector) -> dict[str, str] | None:
    payload = _as_object(value, path, issues)
    if payload is None:
        return None
    out: dict[str, str] = {}
    for key in sorted(payload):
        item = payload[key]
        if not isinstance(item, str):
            issues.add(_join(path, key), f"expected string, got {type(item).__name__}")
            return None
        out[key] = item
    return out


def _as_int_pair(value: object, path: str, issues: _IssueCollector) -> tuple[int, int] | None:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence) or len(value) != 2:
        issues.add(path, "expected [min, max]")
        return None
    first = _as_int(value[0], f"{path}[0]", issues)
    second = _as_int(value[1], f"{path}[1]", issues)
    if first is None or second is None:
        return None
    return first, second


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


__all__ = [
    "CONDITION_KINDS",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "HANDLER_STRATEGIES",
    "RuntimeConfig",
    "dump_redacted",
    "validate_config",
]
