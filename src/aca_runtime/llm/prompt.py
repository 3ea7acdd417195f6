"""
aca-runtime — provider stdin prompt rendering

File: src/aca_runtime/llm/prompt.py
Last updated: 2026-10-18

Purpose
- Render an ``LLMRequest`` (system message, context mapping, prompt) into the text
  piped to an agent CLI's stdin.

Functional requirements
- Deterministic for the same inputs: context entries are emitted in key order.
- Oversized context values are truncated, and the truncation is logged.
- Missing template variables are errors (``StrictUndefined``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import structlog
from jinja2 import Environment, StrictUndefined

if TYPE_CHECKING:
    from aca_runtime.llm.types import LLMRequest

DEFAULT_MAX_CONTEXT_CHARS: Final[int] = 2048

DEFAULT_PROMPT_TEMPLATE: Final[str] = """\
{%- if system_message -%}
System instructions:
{{ system_message }}

{% endif -%}
{%- if context -%}
Context:
{% for key, value in context %}• {{ key }}: {{ value }}
{% endfor %}
{% endif -%}
{{ prompt }}
"""


@dataclass(frozen=True, slots=True)
class RenderedPrompt:
    text: str
    truncated_keys: tuple[str, ...]


class PromptRenderer:
    """Render requests through a strict jinja2 template."""

    def __init__(
        self,
        *,
        template: str = DEFAULT_PROMPT_TEMPLATE,
        max_context_chars: int = DEFAULT_MAX_CONTEXT_CHARS,
        logger: Any | None = None,
    ) -> None:
        if max_context_chars <= 0:
            raise ValueError("max_context_chars must be > 0")
        self._environment = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=False,
            lstrip_blocks=False,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )
        self._template = self._environment.from_string(template)
        self._max_context_chars = max_context_chars
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def render(self, request: LLMRequest) -> RenderedPrompt:
        context: list[tuple[str, str]] = []
        truncated: list[str] = []
        for key in sorted(request.context):
            value = request.context[key]
            if len(value) > self._max_context_chars:
                truncated.append(key)
                self._logger.warning(
                    "prompt_context_truncated",
                    request_id=str(request.id),
                    key=key,
                    original_chars=len(value),
                    max_chars=self._max_context_chars,
                )
                value = value[: self._max_context_chars] + "…"
            context.append((key, value))

        system_message = request.system_message.strip() if request.system_message else ""
        text = self._template.render(
            system_message=system_message,
            context=context,
            prompt=request.prompt,
        )
        return RenderedPrompt(text=text, truncated_keys=tuple(truncated))


__all__ = [
    "DEFAULT_MAX_CONTEXT_CHARS",
    "DEFAULT_PROMPT_TEMPLATE",
    "PromptRenderer",
    "RenderedPrompt",
]
