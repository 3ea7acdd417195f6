"""Unit tests for the OpenAI Codex CLI provider (JSONL event parsing, argv, env)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from aca_runtime.llm.errors import (
    InvalidRequestError,
    ModelUnavailableError,
    ProviderSpecificError,
    RateLimitError,
)
from aca_runtime.llm.openai_provider import OpenAIProvider
from aca_runtime.llm.types import LLMRequest, ProviderConfig, ProviderType
from conftest import ScriptFactory


def _jsonl(*events: object) -> str:
    return "\n".join(event if isinstance(event, str) else json.dumps(event) for event in events)


SUCCESS_STREAM = _jsonl(
    {"type": "thread.started", "thread_id": "thread-7"},
    "Reading files...",
    {"type": "item.completed", "item": {"type": "reasoning", "text": "thinking"}},
    {"type": "item.completed", "item": {"type": "agent_message", "text": "first draft"}},
    {"type": "item.completed", "item": {"type": "agent_message", "text": "final answer"}},
    {
        "type": "turn.completed",
        "usage": {"input_tokens": 40, "cached_input_tokens": 12, "output_tokens": 9},
    },
)


def _codex_cli(write_script: ScriptFactory, stdout: str) -> Path:
    return write_script(
        "codex",
        f"""
        dir="$(dirname "$0")"
        if [ "$1" = "--version" ]; then echo "codex-cli 0.40.0"; exit 0; fi
        printf '%s\\n' "$@" > "$dir/argv.txt"
        cat > "$dir/stdin.txt"
        env > "$dir/env.txt"
        cat <<'CANNED'
{stdout}
CANNED
        """,
    )


def _provider(
    cli: Path,
    workspace: Path,
    *,
    additional: dict[str, Any] | None = None,
    **fields: Any,
) -> OpenAIProvider:
    config = ProviderConfig(
        provider_type=ProviderType.OPENAI,
        additional_config={"cli_path": str(cli), **(additional or {})},
        **fields,
    )
    return OpenAIProvider(config, workspace)


async def test_last_agent_message_wins_and_usage_is_reported(
    write_script: ScriptFactory, workspace: Path
) -> None:
    provider = _provider(_codex_cli(write_script, SUCCESS_STREAM), workspace)
    request = LLMRequest(prompt="Fix the failing test")

    response = await provider.execute_request(request)

    assert response.request_id == request.id
    assert response.content == "final answer"
    assert response.model_used == "o4-mini"
    assert response.token_usage.input_tokens == 40
    assert response.token_usage.output_tokens == 9
    assert response.token_usage.total_tokens == 49
    assert response.provider_metadata["thread_id"] == "thread-7"
    assert response.provider_metadata["cached_input_tokens"] == 12


async def test_argv_and_environment(write_script: ScriptFactory, workspace: Path) -> None:
    cli = _codex_cli(write_script, SUCCESS_STREAM)
    provider = _provider(
        cli,
        workspace,
        api_key="sk-" + "c" * 40,
        base_url="https://proxy.invalid/v1",
        model="gpt-4.1",
        additional={"profile": "ci", "extra_args": ["--sandbox", "workspace-write"]},
    )

    await provider.execute_request(LLMRequest(prompt="hello codex"))

    argv = (cli.parent / "argv.txt").read_text(encoding="utf-8").splitlines()
    assert argv == [
        "exec",
        "--json",
        "--model",
        "gpt-4.1",
        "--skip-git-repo-check",
        "--profile",
        "ci",
        "--cd",
        str(workspace.resolve()),
        "--sandbox",
        "workspace-write",
        "-",
    ]
    assert "hello codex" in (cli.parent / "stdin.txt").read_text(encoding="utf-8")
    env_lines = (cli.parent / "env.txt").read_text(encoding="utf-8").splitlines()
    assert "OPENAI_API_KEY=sk-" + "c" * 40 in env_lines
    assert "OPENAI_BASE_URL=https://proxy.invalid/v1" in env_lines


async def test_allow_outside_git_can_be_disabled(
    write_script: ScriptFactory, workspace: Path
) -> None:
    cli = _codex_cli(write_script, SUCCESS_STREAM)
    provider = _provider(cli, workspace, additional={"allow_outside_git": False})

    await provider.execute_request(LLMRequest(prompt="hi"))

    argv = (cli.parent / "argv.txt").read_text(encoding="utf-8").splitlines()
    assert "--skip-git-repo-check" not in argv


def test_bad_additional_config_type_is_invalid(
    write_script: ScriptFactory, workspace: Path
) -> None:
    cli = _codex_cli(write_script, SUCCESS_STREAM)
    with pytest.raises(InvalidRequestError):
        _provider(cli, workspace, additional={"extra_args": "--oops"})


class TestParseOutput:
    @pytest.fixture
    def provider(self, write_script: ScriptFactory, workspace: Path) -> OpenAIProvider:
        return _provider(_codex_cli(write_script, ""), workspace)

    def test_failed_turn_message_is_classified(self, provider: OpenAIProvider) -> None:
        stream = _jsonl(
            {"type": "thread.started", "thread_id": "t"},
            {"type": "turn.failed", "error": {"message": "model_not_found: gpt-9"}},
        )
        with pytest.raises(ModelUnavailableError, match="gpt-9"):
            provider.parse_output(stream)

    def test_error_event_is_classified(self, provider: OpenAIProvider) -> None:
        stream = _jsonl({"type": "error", "message": "429 Too Many Requests"})
        with pytest.raises(RateLimitError):
            provider.parse_output(stream)

    def test_no_agent_message_is_provider_specific(self, provider: OpenAIProvider) -> None:
        with pytest.raises(ProviderSpecificError, match="did not return an agent message"):
            provider.parse_output("just some logs\nand more logs")

    def test_run_completed_reason_is_recorded(self, provider: OpenAIProvider) -> None:
        stream = _jsonl(
            {"type": "item.completed", "item": {"type": "agent_message", "text": "ok"}},
            {"type": "run.completed", "reason": "stop"},
        )
        parsed = provider.parse_output(stream)

        assert parsed.content == "ok"
        assert parsed.metadata["finish_reason"] == "stop"
        assert parsed.input_tokens is None

    def test_agent_message_wins_over_later_error(self, provider: OpenAIProvider) -> None:
        stream = _jsonl(
            {"type": "item.completed", "item": {"type": "agent_message", "text": "done"}},
            {"type": "error", "message": "stream closed"},
        )
        assert provider.parse_output(stream).content == "done"

    def test_tool_items_become_tool_uses(self, provider: OpenAIProvider) -> None:
        stream = _jsonl(
            {
                "type": "item.completed",
                "item": {
                    "id": "item_1",
                    "type": "command_execution",
                    "command": "pytest -q",
                    "aggregated_output": "3 passed",
                    "exit_code": 0,
                    "status": "completed",
                },
            },
            {
                "type": "item.completed",
                "item": {
                    "id": "item_2",
                    "type": "file_change",
                    "changes": [{"path": "src/app.py", "kind": "update"}],
                    "status": "completed",
                },
            },
            {
                "type": "item.completed",
                "item": {
                    "id": "item_3",
                    "type": "mcp_tool_call",
                    "server": "docs",
                    "tool": "search",
                    "arguments": {"q": "asyncio"},
                },
            },
            {"type": "item.completed", "item": {"type": "agent_message", "text": "done"}},
        )

        tool_uses = provider.parse_output(stream).tool_uses

        assert [tool.tool_name for tool in tool_uses] == [
            "command_execution",
            "file_change",
            "mcp:docs/search",
        ]
        assert tool_uses[0].input == {"command": "pytest -q"}
        assert tool_uses[0].output == {
            "status": "completed",
            "exit_code": 0,
            "aggregated_output": "3 passed",
        }
        assert tool_uses[1].input == {"changes": [{"path": "src/app.py", "kind": "update"}]}
        assert tool_uses[2].output is None


class TestFailureMessageFromStdout:
    @pytest.fixture
    def provider(self, write_script: ScriptFactory, workspace: Path) -> OpenAIProvider:
        return _provider(_codex_cli(write_script, ""), workspace)

    def test_only_error_events_are_classified(self, provider: OpenAIProvider) -> None:
        stream = _jsonl(
            {"type": "thread.started", "thread_id": "thread-429"},
            {"type": "turn.completed", "usage": {"input_tokens": 401, "output_tokens": 429}},
        )

        error = provider.classify_failure(1, stream, "")

        assert type(error) is ProviderSpecificError

    def test_failed_turn_in_stdout_is_classified(self, provider: OpenAIProvider) -> None:
        stream = _jsonl(
            {"type": "turn.failed", "error": {"message": "stream error: HTTP 429"}},
        )

        assert isinstance(provider.classify_failure(1, stream, ""), RateLimitError)


async def test_session_dir_receives_codex_tool_capture(
    write_script: ScriptFactory, workspace: Path
) -> None:
    stream = _jsonl(
        {
            "type": "item.completed",
            "item": {"id": "i1", "type": "command_execution", "command": "ls", "exit_code": 0},
        },
        {"type": "item.completed", "item": {"type": "agent_message", "text": "listed"}},
    )
    provider = _provider(_codex_cli(write_script, stream), workspace)
    request = LLMRequest(prompt="list files")
    session_dir = workspace.parent / "codex-session"

    response = await provider.execute_request(request, session_dir=session_dir)

    (tools_path,) = session_dir.glob(f"codex-*-{request.id}.tools.json")
    assert response.provider_metadata["audit_tools"] == str(tools_path)
    tools = json.loads(tools_path.read_text(encoding="utf-8"))
    assert tools[0]["tool_name"] == "command_execution"
    assert tools[0]["output"] == {"exit_code": 0}
