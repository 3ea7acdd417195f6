"""OpenAI Codex CLI provider.

Runs ``codex exec --json`` with the rendered prompt on stdin (``-``) and parses
the JSONL event stream it prints. Completed command, file-change, and MCP tool
items are reported as tool uses.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Final

from aca_runtime.llm.base import BaseProvider, ParsedOutput
from aca_runtime.llm.errors import InvalidRequestError, ProviderSpecificError
from aca_runtime.llm.types import ToolUse

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from pathlib import Path

    from aca_runtime.llm.prompt import PromptRenderer
    from aca_runtime.llm.rate_limiter import RateLimiter
    from aca_runtime.llm.types import LLMRequest, ProviderConfig

_TOOL_ITEM_TYPES: Final[frozenset[str]] = frozenset(
    {"command_execution", "file_change", "mcp_tool_call", "web_search"}
)
_TOOL_OUTPUT_KEYS: Final[tuple[str, ...]] = ("status", "exit_code", "aggregated_output", "result")


class OpenAIProvider(BaseProvider):
    """Provider backed by the OpenAI Codex CLI."""

    name = "codex"
    default_cli = "codex"
    default_model = "o4-mini"
    models = ("o4-mini", "o3-mini", "gpt-4.1")
    max_context_tokens = 128_000
    supports_streaming = False
    supports_function_calling = True
    supports_vision = False
    input_price_per_token = 1.1 / 1_000_000
    output_price_per_token = 4.4 / 1_000_000

    def __init__(
        self,
        config: ProviderConfig,
        workspace_root: Path | str,
        *,
        rate_limiter: RateLimiter | None = None,
        renderer: PromptRenderer | None = None,
        logger: Any | None = None,
    ) -> None:
        super().__init__(
            config,
            workspace_root,
            rate_limiter=rate_limiter,
            renderer=renderer,
            logger=logger,
        )
        try:
            self._profile = config.config_str("profile")
            self._allow_outside_git = config.config_bool("allow_outside_git", True)
            self._extra_args = config.config_str_list("extra_args")
            self._configured_default = config.config_str("default_model")
        except TypeError as exc:
            raise InvalidRequestError(str(exc), provider=self.name) from exc

    def select_model(self, request: LLMRequest) -> str:
        return (
            request.model_preference
            or self.config.model
            or self._configured_default
            or self.default_model
        )

    def build_argv(self, model: str) -> list[str]:
        argv = [self.cli_path, "exec", "--json", "--model", model]
        if self._allow_outside_git:
            argv.append("--skip-git-repo-check")
        if self._profile:
            argv.extend(["--profile", self._profile])
        argv.extend(["--cd", str(self.workspace_root)])
        argv.extend(self._extra_args)
        argv.append("-")
        return argv

    def environment_overrides(self) -> dict[str, str]:
        overrides: dict[str, str] = {}
        if self.config.api_key is not None:
            overrides["OPENAI_API_KEY"] = self.config.api_key
        if self.config.base_url is not None:
            overrides["OPENAI_BASE_URL"] = self.config.base_url
        return overrides

    def error_message_from_stdout(self, stdout: str) -> str | None:
        return _failure_reason(_iter_events(stdout))

    def parse_output(self, stdout: str) -> ParsedOutput:
        last_agent_message: str | None = None
        input_tokens: int | None = None
        output_tokens: int | None = None
        metadata: dict[str, Any] = {}
        tool_uses: list[ToolUse] = []
        events = list(_iter_events(stdout))

        for event in events:
            event_type = event.get("type")
            if event_type == "item.completed":
                item = event.get("item")
                if not isinstance(item, dict):
                    continue
                if item.get("type") == "agent_message" and isinstance(item.get("text"), str):
                    last_agent_message = item["text"]
                elif item.get("type") in _TOOL_ITEM_TYPES:
                    tool_uses.append(_tool_use_from_item(item))
            elif event_type == "turn.completed":
                usage = event.get("usage")
                if isinstance(usage, dict):
                    input_tokens = _count(usage.get("input_tokens"))
                    output_tokens = _count(usage.get("output_tokens"))
                    metadata["cached_input_tokens"] = _count(usage.get("cached_input_tokens"))
            elif event_type == "thread.started" and isinstance(event.get("thread_id"), str):
                metadata["thread_id"] = event["thread_id"]
            elif event_type == "run.completed":
                reason = event.get("reason")
                metadata["finish_reason"] = reason if isinstance(reason, str) else "completed"
            elif event_type in ("turn.failed", "run.failed"):
                metadata["finish_reason"] = "failed"

        if last_agent_message is not None:
            return ParsedOutput(
                content=last_agent_message,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                metadata=metadata,
                tool_uses=tuple(tool_uses),
            )
        failure_reason = _failure_reason(events)
        if failure_reason is not None:
            raise self.classify_failure(1, "", failure_reason)
        raise ProviderSpecificError(
            "codex CLI did not return an agent message", provider=self.name
        )


def _iter_events(stdout: str) -> Iterator[dict[str, Any]]:
    for raw_line in stdout.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        try:
            event = json.loads(line)
        except ValueError:
            # Codex interleaves plain progress lines with JSON events.
            continue
        if isinstance(event, dict):
            yield event


def _failure_reason(events: Iterable[dict[str, Any]]) -> str | None:
    """Message of the last ``error`` or ``turn.failed``/``run.failed`` event."""

    reason: str | None = None
    for event in events:
        event_type = event.get("type")
        if event_type == "error" and isinstance(event.get("message"), str):
            reason = event["message"]
        elif event_type in ("turn.failed", "run.failed"):
            error = event.get("error")
            if isinstance(error, dict) and isinstance(error.get("message"), str):
                reason = error["message"]
    return reason


def _tool_use_from_item(item: dict[str, Any]) -> ToolUse:
    payload = {
        key: value
        for key, value in item.items()
        if key not in ("id", "type") and key not in _TOOL_OUTPUT_KEYS
    }
    output = {key: item[key] for key in _TOOL_OUTPUT_KEYS if key in item}
    name = item["type"]
    if name == "mcp_tool_call" and isinstance(item.get("tool"), str):
        name = f"mcp:{item.get('server', '')}/{item['tool']}"
    return ToolUse(tool_name=name, input=payload, output=output or None)


def _count(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return 0
    return value


__all__ = ["OpenAIProvider"]
