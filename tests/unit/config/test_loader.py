"""Unit tests for config file loading, env overrides and redacted dumps."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from aca_runtime.config.loader import (
    ConfigLoadError,
    apply_env_overrides,
    dump_effective_config,
    load_config,
    load_config_payload,
)
from aca_runtime.config.schema import ConfigValidationError
from aca_runtime.llm.types import ProviderType

TOML_CONFIG = """
[llm]
provider_type = "claude"
model = "sonnet"

[llm.rate_limits]
max_requests_per_minute = 10

[[setup.commands]]
name = "deps"
program = "pip"
args = ["install", "-e", "."]
working_dir = "services/api"

[[setup.commands]]
name = "lint"
program = "ruff"
required = false
error_handler = { strategy = "skip" }
"""

YAML_CONFIG = """
llm:
  provider_type: openai
  api_key: sk-yaml-secret-value-0000000000
setup:
  commands:
    - name: node
      program: npm
      args: [ci]
      error_handler:
        strategy: backup
        program: yarn
        args: [install]
        condition:
          stderr_contains: "not found"
execution:
  mode: container
  container:
    image: node:20
"""


def _write(tmp_path: Path, name: str, content: str) -> Path:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return path


def test_toml_config_with_relative_working_dir(tmp_path: Path) -> None:
    path = _write(tmp_path, "aca.toml", TOML_CONFIG)

    config = load_config(path, environ={})

    assert config.source_path == path.resolve()
    assert config.llm.model == "sonnet"
    assert config.llm.rate_limits.max_requests_per_minute == 10
    deps, lint = config.setup
    assert deps.working_dir == Path(tmp_path.resolve().as_posix()) / "services" / "api"
    assert lint.required is False


def test_yaml_config(tmp_path: Path) -> None:
    path = _write(tmp_path, "aca.yaml", YAML_CONFIG)

    config = load_config(path, environ={})

    assert config.llm.provider_type is ProviderType.OPENAI
    assert config.setup[0].error_handler is not None
    assert config.execution.container.image == "node:20"


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    path = _write(tmp_path, "aca.toml", TOML_CONFIG)

    config = load_config(
        path,
        environ={
            "ACA_LLM_PROVIDER_TYPE": "openai",
            "ACA_LLM_MODEL": " o3-mini ",
            "ACA_LLM_BASE_URL": "   ",
        },
    )

    assert config.llm.provider_type is ProviderType.OPENAI
    assert config.llm.model == "o3-mini"
    assert config.llm.base_url is None


def test_env_alone_can_supply_llm_section(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    config = load_config(environ={"ACA_LLM_PROVIDER_TYPE": "claude"})

    assert config.llm.provider_type is ProviderType.CLAUDE
    assert config.source_path is None


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})


@pytest.mark.parametrize(
    ("name", "content", "message"),
    [
        ("bad.toml", "[llm\nprovider_type = ", "invalid TOML"),
        ("bad.yaml", "llm: [unclosed", "invalid YAML"),
        ("list.yml", "- a\n- b\n", "config root must be an object"),
    ],
)
def test_malformed_files(tmp_path: Path, name: str, content: str, message: str) -> None:
    with pytest.raises(ConfigLoadError, match=message):
        load_config_payload(_write(tmp_path, name, content))


def test_empty_yaml_is_an_empty_payload(tmp_path: Path) -> None:
    assert load_config_payload(_write(tmp_path, "empty.yaml", "")) == {}


def test_validation_errors_surface(tmp_path: Path) -> None:
    path = _write(tmp_path, "aca.toml", '[llm]\nprovider_type = "claude"\nretries = 3\n')
    with pytest.raises(ConfigValidationError, match="llm.retries: unknown field"):
        load_config(path, environ={})


def test_env_override_requires_table(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="must be a table"):
        apply_env_overrides({"llm": "claude"}, {"ACA_LLM_MODEL": "x"})


def test_apply_env_overrides_does_not_mutate_input() -> None:
    payload = {"llm": {"provider_type": "claude"}}
    merged = apply_env_overrides(payload, {"ACA_LLM_API_KEY": "k"})
    assert merged["llm"]["api_key"] == "k"
    assert "api_key" not in payload["llm"]


def test_dump_effective_config_is_redacted_and_deterministic(tmp_path: Path) -> None:
    path = _write(tmp_path, "aca.yaml", YAML_CONFIG)
    config = load_config(path, environ={})

    first = dump_effective_config(config)
    second = dump_effective_config(load_config(path, environ={}))

    assert first == second
    assert "sk-yaml-secret" not in first
    parsed = json.loads(first)
    assert parsed["llm"]["api_key"] == "***REDACTED***"
    assert parsed["source_path"] == path.resolve().as_posix()
