"""
aca-runtime — configuration package

File: src/aca_runtime/config/__init__.py
Last updated: 2026-10-18

Purpose
- Public entry points for loading and validating the runtime config.
"""

from aca_runtime.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    effective_config,
    load_config,
)
from aca_runtime.config.schema import (
    ConfigValidationError,
    ConfigValidationIssue,
    RuntimeConfig,
    dump_redacted,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "RuntimeConfig",
    "dump_effective_config",
    "dump_redacted",
    "effective_config",
    "load_config",
    "validate_config",
]
