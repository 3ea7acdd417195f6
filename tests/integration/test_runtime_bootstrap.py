"""End-to-end: load a config file, build the provider and backend, run setup, then prompt."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from aca_runtime.config.loader import load_config
from aca_runtime.executor.backend import HostBackend
from aca_runtime.executor.factory import create_backend
from aca_runtime.llm.audit import audit_paths
from aca_runtime.llm.factory import ProviderRegistry
from aca_runtime.llm.types import LLMRequest
from aca_runtime.setup.errors import RequiredStepAbortedError
from aca_runtime.setup.executor import SetupExecutor
from aca_runtime.setup.models import FinalState, PlanState
from conftest import ScriptFactory

pytestmark = pytest.mark.integration

CLAUDE_RESULT = json.dumps(
    {
        "type": "result",
        "subtype": "success",
        "is_error": False,
        "result": "Implemented the feature.",
        "usage": {"input_tokens": 30, "output_tokens": 12},
        "total_cost_usd": 0.002,
    }
)


@pytest.fixture(autouse=True)
def _no_mode_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CLAUDE_MODE", raising=False)


def _write_config(tmp_path: Path, cli: Path, commands: str) -> Path:
    path = tmp_path / "aca.toml"
    path.write_text(
        f"""
[llm]
provider_type = "claude"

[llm.rate_limits]
max_requests_per_minute = 2
max_tokens_per_minute = 50000

[llm.additional_config]
cli_path = "{cli}"

{commands}
""",
        encoding="utf-8",
    )
    return path


async def test_setup_plan_then_request(
    tmp_path: Path, workspace: Path, write_script: ScriptFactory
) -> None:
    cli = write_script(
        "claude",
        f"""
        if [ "$1" = "--version" ]; then echo "2.0.0"; exit 0; fi
        cat > /dev/null
        cat <<'CANNED'
{CLAUDE_RESULT}
CANNED
        """,
    )
    (workspace / "app").mkdir()
    config = load_config(
        _write_config(
            tmp_path,
            cli,
            """
[[setup.commands]]
name = "marker"
program = "sh"
args = ["-c", "echo ready > marker.txt"]
working_dir = "workspace/app"

[[setup.commands]]
name = "optional-tool"
program = "aca-missing-tool"
required = false

[setup.commands.error_handler]
strategy = "backup"
program = "echo"
args = ["fallback"]
condition = { stderr_contains = "command not found" }
""",
        ),
        environ={},
    )

    backend = create_backend(config.execution, workspace)
    assert isinstance(backend, HostBackend)
    result = await SetupExecutor(backend).run(config.setup)
    result.raise_for_status()

    assert result.state is PlanState.COMPLETED
    assert (workspace / "app" / "marker.txt").read_text(encoding="utf-8") == "ready\n"
    assert result.outcome("optional-tool").final_state is FinalState.RECOVERED_BY_BACKUP
    assert result.backend_invocations == 3

    registry = ProviderRegistry()
    registry.register("primary")
    provider = await registry.shared("primary", config.llm, workspace)
    request = LLMRequest(prompt="Implement the feature", estimated_tokens=100)
    session_dir = tmp_path / "session"

    response = await provider.execute_request(request, session_dir)

    assert response.request_id == request.id
    assert response.content == "Implemented the feature."
    assert response.token_usage.total_tokens == 42
    command_path, stdout_path, _ = audit_paths(session_dir, request.id)
    assert command_path.read_text(encoding="utf-8").startswith(str(cli))
    assert "Implemented the feature." in stdout_path.read_text(encoding="utf-8")
    (log_path,) = session_dir.glob(f"claude-*-{request.id}.log")
    assert "Total tokens: 42" in log_path.read_text(encoding="utf-8")
    assert provider.get_status().rate_limit_status.requests_remaining == 1

    await registry.shutdown()


async def test_required_failure_blocks_startup(
    tmp_path: Path, workspace: Path, write_script: ScriptFactory
) -> None:
    cli = write_script("claude", 'echo "2.0.0"\n')
    config = load_config(
        _write_config(
            tmp_path,
            cli,
            """
[[setup.commands]]
name = "x"
program = "false"

[[setup.commands]]
name = "y"
program = "sh"
args = ["-c", "touch should-not-exist"]
""",
        ),
        environ={},
    )

    result = await SetupExecutor(create_backend(config.execution, workspace)).run(config.setup)

    assert result.state is PlanState.ABORTED
    assert result.attempted_commands == 1
    assert not (workspace / "should-not-exist").exists()
    with pytest.raises(RequiredStepAbortedError):
        result.raise_for_status()
