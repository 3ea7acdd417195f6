"""
aca-runtime — per-request provider audit trail

File: src/aca_runtime/llm/audit.py
Last updated: 2026-10-18

Purpose
- Record every agent CLI invocation under a session directory so a run can be
  correlated and replayed afterwards.

What should be included in this file
- Stream files named from the request id: ``<id>.cmd`` (one shell-escaped,
  redacted command line), ``<id>.stdout`` and ``<id>.stderr`` (verbatim).
- An interaction log ``<provider>-<timestamp>-<id>.log``: header, command,
  stream size previews, completion usage/cost/timing, and errors.
- Tool-use capture ``<provider>-<timestamp>-<id>.tools.json`` when enabled.

Functional requirements
- All files exist before the child is spawned.
- Stream sinks are flushed and closed as soon as the child exits or is killed;
  the interaction log stays open until ``close()``.
- Command lines, previews, and captured tool inputs are redacted.
"""

from __future__ import annotations

import json
import shlex
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, TextIO

from aca_runtime.constants import (
    AUDIT_COMMAND_SUFFIX,
    AUDIT_LOG_SUFFIX,
    AUDIT_STDERR_SUFFIX,
    AUDIT_STDOUT_SUFFIX,
    AUDIT_TOOLS_SUFFIX,
    DEFAULT_AUDIT_PREVIEW_CHARS,
)
from aca_runtime.llm.errors import ProviderSpecificError
from aca_runtime.security.redaction import redact_structure, redact_text

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable, Sequence
    from types import TracebackType

    from aca_runtime.llm.types import TokenUsage, ToolUse

_RULE = "=" * 80


@dataclass(frozen=True, slots=True)
class AuditSettings:
    track_tool_uses: bool = True
    max_preview_chars: int = DEFAULT_AUDIT_PREVIEW_CHARS

    def __post_init__(self) -> None:
        if isinstance(self.max_preview_chars, bool) or not isinstance(
            self.max_preview_chars, int
        ):
            raise TypeError("max_preview_chars must be an integer")
        if self.max_preview_chars < 0:
            raise ValueError("max_preview_chars must be >= 0")


def audit_paths(session_dir: Path | str, request_id: uuid.UUID) -> tuple[Path, Path, Path]:
    base = Path(session_dir)
    stem = str(request_id)
    return (
        base / f"{stem}{AUDIT_COMMAND_SUFFIX}",
        base / f"{stem}{AUDIT_STDOUT_SUFFIX}",
        base / f"{stem}{AUDIT_STDERR_SUFFIX}",
    )


def interaction_stem(provider: str, started_at: datetime, request_id: uuid.UUID) -> str:
    """``<provider>-<YYYYmmddTHHMMSS.mmm>-<id>``, the base name of the log and tools files."""

    stamp = started_at.strftime("%Y%m%dT%H%M%S") + f".{started_at.microsecond // 1000:03d}"
    return f"{provider}-{stamp}-{request_id}"


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _log_time(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S") + f".{moment.microsecond // 1000:03d}"


class AuditTrail:
    """Open audit sinks for one request. Use as a context manager."""

    def __init__(
        self,
        session_dir: Path | str,
        request_id: uuid.UUID,
        argv: Sequence[str],
        *,
        provider: str = "provider",
        model: str = "",
        settings: AuditSettings | None = None,
        wall_clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        directory = Path(session_dir)
        directory.mkdir(parents=True, exist_ok=True)
        self.request_id = request_id
        self.provider = provider
        self.settings = settings or AuditSettings()
        self._wall_clock = wall_clock
        self.started_at = wall_clock()

        self.command_path, self.stdout_path, self.stderr_path = audit_paths(directory, request_id)
        stem = interaction_stem(provider, self.started_at, request_id)
        self.log_path = directory / f"{stem}{AUDIT_LOG_SUFFIX}"
        self.tools_path = directory / f"{stem}{AUDIT_TOOLS_SUFFIX}"

        command_line = " ".join(redact_text(shlex.join(argv)).splitlines())
        self.command_path.write_text(command_line + "\n", encoding="utf-8")
        with ExitStack() as stack:
            self._log: TextIO = stack.enter_context(
                self.log_path.open("w", encoding="utf-8")
            )
            self._stdout: BinaryIO = stack.enter_context(self.stdout_path.open("wb"))
            self._stderr: BinaryIO = stack.enter_context(self.stderr_path.open("wb"))
            self._log.write(
                f"{provider.upper()} Provider Interaction Log\n"
                f"Provider: {provider}\n"
                f"Request ID: {request_id}\n"
                f"Model: {model}\n"
                f"Started: {_log_time(self.started_at)} UTC\n"
                f"{_RULE}\n"
            )
            self._log.flush()
            stack.pop_all()
        self.log_event(f"Executing command: {command_line}")

    @property
    def stdout(self) -> BinaryIO:
        return self._stdout

    @property
    def stderr(self) -> BinaryIO:
        return self._stderr

    def log_event(self, message: str) -> None:
        if self._log.closed:
            return
        try:
            self._log.write(f"[{_log_time(self._wall_clock())}] {message}\n")
            self._log.flush()
        except OSError as exc:
            raise ProviderSpecificError(
                f"cannot write audit log {self.log_path}: {exc}", provider=self.provider
            ) from exc

    def log_streams(self, stdout: bytes, stderr: bytes) -> None:
        """Append size and a redacted preview of each non-empty child stream."""

        for label, data in (("STDOUT", stdout), ("STDERR", stderr)):
            if data:
                self.log_event(f"{label} ({len(data)}B): {self._preview(data)}")

    def record_tool_uses(self, tool_uses: Sequence[ToolUse]) -> Path | None:
        """Write ``tools.json``; returns its path, or ``None`` when nothing was written."""

        if not self.settings.track_tool_uses or not tool_uses:
            return None
        captured_at = self._wall_clock().isoformat()
        entries = []
        for tool_use in tool_uses:
            entry = tool_use.to_dict()
            if entry["timestamp"] is None:
                entry["timestamp"] = captured_at
            entries.append(entry)
        try:
            self.tools_path.write_text(
                json.dumps(redact_structure(entries), indent=2, ensure_ascii=False, default=str)
                + "\n",
                encoding="utf-8",
            )
        except OSError as exc:
            raise ProviderSpecificError(
                f"cannot write tool capture {self.tools_path}: {exc}", provider=self.provider
            ) from exc
        self.log_event(f"Captured {len(entries)} tool uses")
        return self.tools_path

    def log_completion(self, usage: TokenUsage, execution_time: float) -> None:
        self.log_event(
            "Task completed successfully\n"
            f"Input tokens: {usage.input_tokens}\n"
            f"Output tokens: {usage.output_tokens}\n"
            f"Total tokens: {usage.total_tokens}\n"
            f"Estimated cost: ${usage.estimated_cost:.6f}\n"
            f"Execution time: {execution_time:.2f}s\n"
            f"{_RULE}\n"
            f"Request processing completed for ID: {self.request_id}"
        )

    def log_error(self, error: BaseException | str) -> None:
        self.log_event(f"ERROR: {redact_text(str(error))}")

    def close_streams(self) -> None:
        for handle in (self._stdout, self._stderr):
            if not handle.closed:
                handle.flush()
                handle.close()

    def close(self) -> None:
        self.close_streams()
        if not self._log.closed:
            self._log.flush()
            self._log.close()

    def _preview(self, data: bytes) -> str:
        text = redact_text(data.decode("utf-8", errors="replace"))
        limit = self.settings.max_preview_chars
        if len(text) <= limit:
            return text.replace("\n", " ")
        return text[:limit].replace("\n", " ") + "... (see full output in file)"

    def __enter__(self) -> AuditTrail:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


__all__ = ["AuditSettings", "AuditTrail", "audit_paths", "interaction_stem"]
