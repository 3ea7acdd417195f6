"""
aca-runtime — runtime config loader

File: src/aca_runtime/config/loader.py
Last updated: 2026-10-18

Purpose
- Load the effective runtime config from a TOML or YAML file plus ``ACA_``
  environment overrides.

What should be included in this file
- Precedence logic: env (ACA_) > file > defaults.
- TOML loading via ``tomllib``; YAML loading via ``yaml.safe_load``.
- Path normalization relative to the config file location.
- Redacted deterministic dump of the effective config.

Functional requirements
- Reject unknown keys and malformed values via schema validation.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any, Final

import yaml

from aca_runtime.config.schema import RuntimeConfig, dump_redacted, validate_config

DEFAULT_CONFIG_FILE: Final[str] = "aca.toml"
ENV_PREFIX: Final[str] = "ACA_"

YAML_SUFFIXES: Final[frozenset[str]] = frozenset({".yaml", ".yml"})

# Environment variable -> dotted path inside the ``llm`` section.
ENV_BINDINGS: Final[dict[str, tuple[str, ...]]] = {
    f"{ENV_PREFIX}LLM_PROVIDER_TYPE": ("llm", "provider_type"),
    f"{ENV_PREFIX}LLM_API_KEY": ("llm", "api_key"),
    f"{ENV_PREFIX}LLM_BASE_URL": ("llm", "base_url"),
    f"{ENV_PREFIX}LLM_MODEL": ("llm", "model"),
}


class ConfigLoadError(ValueError):
    """Raised when config cannot be read or parsed."""


def load_config(
    config_path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> RuntimeConfig:
    """Load effective config with deterministic precedence: env > file > defaults."""

    resolved_path = _resolve_config_path(config_path)
    explicit_path = config_path is not None
    env_map = dict(os.environ if environ is None else environ)

    payload = load_config_payload(resolved_path, required=explicit_path)
    payload = apply_env_overrides(payload, env_map)
    payload = normalize_paths(payload, base_dir=resolved_path.parent)

    config = validate_config(payload)
    return replace(config, source_path=resolved_path if resolved_path.exists() else None)


def load_config_payload(path: Path, *, required: bool = True) -> dict[str, Any]:
    """Parse ``path`` as YAML (``.yaml``/``.yml``) or TOML (anything else)."""

    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    if path.suffix.lower() in YAML_SUFFIXES:
        return _load_yaml_file(path)
    return _load_toml_file(path)


def apply_env_overrides(
    payload: Mapping[str, object], environ: Mapping[str, str]
) -> dict[str, Any]:
    """Overlay ``ACA_LLM_*`` values onto ``payload``; empty values are ignored."""

    merged = _deep_copy(payload)
    for env_name in sorted(ENV_BINDINGS):
        raw = environ.get(env_name)
        if raw is None or not raw.strip():
            continue
        path = ENV_BINDINGS[env_name]
        section = merged.get(path[0])
        if section is None:
            section = {}
            merged[path[0]] = section
        if not isinstance(section, dict):
            raise ConfigLoadError(f"{env_name} -> {path[0]} must be a table in the config file")
        section[path[1]] = raw.strip()
    return merged


def normalize_paths(payload: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve relative ``setup.commands[*].working_dir`` values against ``base_dir``."""

    materialized = _deep_copy(payload)
    setup = materialized.get("setup")
    if not isinstance(setup, dict):
        return materialized
    commands = setup.get("commands")
    if not isinstance(commands, list):
        return materialized
    for command in commands:
        if not isinstance(command, dict):
            continue
        value = command.get("working_dir")
        if isinstance(value, str) and value.strip():
            command["working_dir"] = _normalize_one_path(value.strip(), base_dir)
    return materialized


def effective_config(config: RuntimeConfig) -> dict[str, Any]:
    """Return a redacted effective config representation suitable for logging."""

    return dump_redacted(config)


def dump_effective_config(config: RuntimeConfig) -> str:
    """Return deterministic JSON dump of redacted effective config."""

    return json.dumps(
        effective_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _resolve_config_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _load_toml_file(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            parsed = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc
    return parsed


def _load_yaml_file(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            parsed = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigLoadError(f"invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc

    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ConfigLoadError(f"config root must be an object: {path}")
    return parsed


def _normalize_one_path(raw: str, base_dir: Path) -> str:
    expanded = os.path.expandvars(raw)
    candidate = Path(expanded).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    normalized = Path(os.path.normpath(str(candidate)))
    return normalized.as_posix()


def _deep_copy(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, item in value.items():
        out[key] = _copy_item(item)
    return out


def _copy_item(item: object) -> object:
    if isinstance(item, Mapping):
        return _deep_copy(item)
    if isinstance(item, list):
        return [_copy_item(child) for child in item]
    return item


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_BINDINGS",
    "ENV_PREFIX",
    "apply_env_overrides",
    "dump_effective_config",
    "effective_config",
    "load_config",
    "load_config_payload",
    "normalize_paths",
]
