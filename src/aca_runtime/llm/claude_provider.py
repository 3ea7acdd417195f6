"""Claude Code CLI provider.

Runs ``claude --print`` non-interactively with the rendered prompt piped to stdin.
``additional_config.output_format`` selects ``json`` (default, one result object)
or ``stream-json`` (one event per line, which also reports each tool use).

Security
- In ``cli`` mode the CLI manages its own login; no key is exported.
- In ``api`` mode the configured key is exported as ``ANTHROPIC_API_KEY`` to the
  child only. It is never logged; audit command lines are redacted.
"""

from __future__ import annotations

import json
import os
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final

from aca_runtime.llm.base import BaseProvider, ParsedOutput
from aca_runtime.llm.errors import AuthenticationError, InvalidRequestError, ProviderSpecificError
from aca_runtime.llm.types import ToolUse

if TYPE_CHECKING:
    from pathlib import Path

    from aca_runtime.llm.prompt import PromptRenderer
    from aca_runtime.llm.rate_limiter import RateLimiter
    from aca_runtime.llm.types import ProviderConfig

CLAUDE_MODE_ENV: Final[str] = "CLAUDE_MODE"
CLAUDE_OUTPUT_FORMATS: Final[tuple[str, ...]] = ("json", "stream-json")

CLAUDE_ALLOWED_TOOLS: Final[tuple[str, ...]] = (
    "Read",
    "Write",
    "Edit",
    "Bash",
    "Glob",
    "Grep",
    "MultiEdit",
    "Task",
    "TodoWrite",
    "SlashCommand",
)

# Model ids accepted in config -> value for the CLI --model flag.
CLAUDE_MODEL_ALIASES: Final[dict[str, str]] = {
    "claude-sonnet": "sonnet",
    "claude-haiku": "haiku",
    "claude-opus": "opus",
}


class ClaudeMode(StrEnum):
    CLI = "cli"
    API = "api"


class ClaudeProvider(BaseProvider):
    """Provider backed by the Claude Code CLI."""

    name = "claude"
    default_cli = "claude"
    default_model = "claude-sonnet"
    models = ("claude-sonnet", "claude-haiku", "claude-opus")
    max_context_tokens = 200_000
    supports_streaming = False
    supports_function_calling = True
    supports_vision = True
    input_price_per_token = 3.0 / 1_000_000
    output_price_per_token = 15.0 / 1_000_000

    def __init__(
        self,
        config: ProviderConfig,
        workspace_root: Path | str,
        *,
        rate_limiter: RateLimiter | None = None,
        renderer: PromptRenderer | None = None,
        logger: Any | None = None,
    ) -> None:
        self._mode = _resolve_mode(config)
        if self._mode is ClaudeMode.API and config.api_key is None:
            raise AuthenticationError(
                "API mode requires an api_key in the provider configuration",
                provider=self.name,
            )
        super().__init__(
            config,
            workspace_root,
            rate_limiter=rate_limiter,
            renderer=renderer,
            logger=logger,
        )
        try:
            self._extra_args = config.config_str_list("extra_args")
            self._output_format = config.config_str("output_format", "json") or "json"
        except TypeError as exc:
            raise InvalidRequestError(str(exc), provider=self.name) from exc
        if self._output_format not in CLAUDE_OUTPUT_FORMATS:
            raise InvalidRequestError(
                f"unsupported claude output_format {self._output_format!r}; "
                f"expected one of: {', '.join(CLAUDE_OUTPUT_FORMATS)}",
                provider=self.name,
            )

    @property
    def mode(self) -> ClaudeMode:
        return self._mode

    def build_argv(self, model: str) -> list[str]:
        # stream-json output requires --verbose in print mode.
        verbose = ["--verbose"] if self._output_format == "stream-json" else []
        return [
            self.cli_path,
            "--print",
            "--output-format",
            self._output_format,
            *verbose,
            "--allowedTools",
            ",".join(CLAUDE_ALLOWED_TOOLS),
            "--permission-mode",
            "acceptEdits",
            "--model",
            CLAUDE_MODEL_ALIASES.get(model, model),
            "--add-dir",
            str(self.workspace_root),
            *self._extra_args,
        ]

    def environment_overrides(self) -> dict[str, str]:
        overrides: dict[str, str] = {}
        if self._mode is ClaudeMode.API and self.config.api_key is not None:
            overrides["ANTHROPIC_API_KEY"] = self.config.api_key
        if self.config.base_url is not None:
            overrides["ANTHROPIC_BASE_URL"] = self.config.base_url
        return overrides

    def error_message_from_stdout(self, stdout: str) -> str | None:
        payload = _find_result_event(stdout)
        if payload is None or payload.get("is_error") is not True:
            return None
        message = payload.get("result")
        return message if isinstance(message, str) else json.dumps(payload)

    def parse_output(self, stdout: str) -> ParsedOutput:
        tool_uses = _collect_tool_uses(stdout)
        payload = _find_result_event(stdout)
        if payload is None:
            return ParsedOutput(
                content=_parse_claude_json_fallback(stdout), tool_uses=tool_uses
            )

        if payload.get("is_error") is True:
            message = payload.get("result")
            raise self.classify_failure(
                1, "", message if isinstance(message, str) else json.dumps(payload)
            )

        content = _result_text(payload)
        if content is None:
            raise ProviderSpecificError(
                "claude result event carried no text", provider=self.name
            )

        usage = payload.get("usage")
        input_tokens: int | None = None
        output_tokens: int | None = None
        metadata: dict[str, Any] = {}
        if isinstance(usage, dict):
            base_input = _int_or_none(usage.get("input_tokens"))
            if base_input is not None:
                input_tokens = (
                    base_input
                    + (_int_or_none(usage.get("cache_creation_input_tokens")) or 0)
                    + (_int_or_none(usage.get("cache_read_input_tokens")) or 0)
                )
            output_tokens = _int_or_none(usage.get("output_tokens"))
            if input_tokens is not None and output_tokens is None:
                output_tokens = 0
            if output_tokens is not None and input_tokens is None:
                input_tokens = 0

        cost = payload.get("total_cost_usd", payload.get("cost_usd"))
        for key in ("session_id", "num_turns", "duration_ms", "subtype"):
            if key in payload:
                metadata[key] = payload[key]

        return ParsedOutput(
            content=content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=float(cost) if isinstance(cost, (int, float)) and cost >= 0 else None,
            metadata=metadata,
            tool_uses=tool_uses,
        )


def _resolve_mode(config: ProviderConfig) -> ClaudeMode:
    raw = config.additional_config.get("mode") or os.environ.get(CLAUDE_MODE_ENV) or "cli"
    try:
        return ClaudeMode(str(raw).strip().lower())
    except ValueError as exc:
        raise InvalidRequestError(
            f"unsupported claude mode {raw!r}; expected 'cli' or 'api'", provider="claude"
        ) from exc


def _find_result_event(stdout: str) -> dict[str, Any] | None:
    """Return the final ``result`` event from ``json`` or ``stream-json`` output."""

    stripped = stdout.strip()
    if not stripped:
        return None
    try:
        data = json.loads(stripped)
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("type", "result") == "result":
        return data

    for line in reversed(stripped.splitlines()):
        line = line.strip()
        if not line:
            continue
        try:
            event = json.loads(line)
        except ValueError:
            continue
        if isinstance(event, dict) and event.get("type") == "result":
            return event
    return None

def _collect_tool_uses(stdout: str) -> tuple[ToolUse, ...]:
    """Pair ``tool_use`` blocks from assistant events with their ``tool_result`` blocks."""

    pending: list[dict[str, Any]] = []
    by_id: dict[str, dict[str, Any]] = {}
    for line in stdout.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            event = json.loads(line)
        except ValueError:
            continue
        if not isinstance(event, dict) or event.get("type") not in ("assistant", "user"):
            continue
        message = event.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, list):
            continue
        for block in content:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "tool_use" and isinstance(block.get("name"), str):
                entry: dict[str, Any] = {
                    "tool_name": block["name"],
                    "input": block.get("input") if isinstance(block.get("input"), dict) else {},
                }
                pending.append(entry)
                if isinstance(block.get("id"), str):
                    by_id[block["id"]] = entry
            elif block.get("type") == "tool_result":
                matched = by_id.get(str(block.get("tool_use_id")))
                if matched is not None:
                    matched["output"] = block.get("content")
    return tuple(ToolUse(**entry) for entry in pending if entry["tool_name"].strip())



def _result_text(payload: dict[str, Any]) -> str | None:
    for key in ("result", "content", "text", "response"):
        value = payload.get(key)
        if isinstance(value, str):
            return value
        if isinstance(value, list):
            texts = [
                block["text"]
                for block in value
                if isinstance(block, dict)
                and block.get("type") == "text"
                and isinstance(block.get("text"), str)
            ]
            if texts:
                return "\n".join(texts)
    return None


def _parse_claude_json_fallback(stdout: str) -> str:
    """Plain-text fallback when no JSON result event is present."""

    stripped = stdout.strip()
    try:
        data = json.loads(stripped)
    except ValueError:
        return stripped
    if isinstance(data, dict):
        text = _result_text(data)
        if text is not None:
            return text
    return stripped


def _int_or_none(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


__all__ = [
    "CLAUDE_ALLOWED_TOOLS",
    "CLAUDE_MODEL_ALIASES",
    "CLAUDE_MODE_ENV",
    "ClaudeMode",
    "ClaudeProvider",
]
