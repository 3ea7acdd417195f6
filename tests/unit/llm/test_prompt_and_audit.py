"""Unit tests for stdin prompt rendering and per-request audit files."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from pathlib import Path

import pytest
from jinja2 import UndefinedError

from aca_runtime.llm.audit import AuditSettings, AuditTrail, audit_paths, interaction_stem
from aca_runtime.llm.prompt import PromptRenderer
from aca_runtime.llm.types import LLMRequest, TokenUsage, ToolUse


class TestPromptRenderer:
    def test_prompt_only(self) -> None:
        rendered = PromptRenderer().render(LLMRequest(prompt="Do the thing"))

        assert rendered.text == "Do the thing\n"
        assert rendered.truncated_keys == ()

    def test_context_is_sorted_and_deterministic(self) -> None:
        renderer = PromptRenderer()
        first = renderer.render(
            LLMRequest(prompt="p", system_message="sys", context={"b": "2", "a": "1"})
        )
        second = renderer.render(
            LLMRequest(prompt="p", system_message="sys", context={"a": "1", "b": "2"})
        )

        assert first.text == second.text
        assert first.text == "System instructions:\nsys\n\nContext:\n• a: 1\n• b: 2\n\np\n"

    def test_long_context_values_are_truncated(self) -> None:
        renderer = PromptRenderer(max_context_chars=5)
        rendered = renderer.render(LLMRequest(prompt="p", context={"big": "abcdefghij"}))

        assert "• big: abcde…" in rendered.text
        assert rendered.truncated_keys == ("big",)

    def test_custom_template_with_missing_variable_fails(self) -> None:
        renderer = PromptRenderer(template="{{ nope }}")
        with pytest.raises(UndefinedError):
            renderer.render(LLMRequest(prompt="p"))

    def test_non_positive_limit_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_context_chars"):
            PromptRenderer(max_context_chars=0)


class TestAuditTrail:
    def test_files_created_before_any_output(self, tmp_path: Path) -> None:
        request_id = uuid.uuid4()
        session_dir = tmp_path / "nested" / "session"

        with AuditTrail(session_dir, request_id, ["claude", "--print", "a b"]) as trail:
            command_path, stdout_path, stderr_path = audit_paths(session_dir, request_id)
            assert command_path.read_text(encoding="utf-8") == "claude --print 'a b'\n"
            assert stdout_path.exists()
            assert stderr_path.exists()
            trail.stdout.write(b"out")

        assert stdout_path.read_bytes() == b"out"
        assert trail.stdout.closed
        trail.close()

    def test_command_line_is_redacted_and_single_line(self, tmp_path: Path) -> None:
        request_id = uuid.uuid4()
        secret = "sk-" + "z" * 32
        AuditTrail(tmp_path, request_id, ["codex", f"--api-key={secret}", "line\nbreak"]).close()

        command_path, _, _ = audit_paths(tmp_path, request_id)
        text = command_path.read_text(encoding="utf-8")
        assert secret not in text
        assert "***REDACTED***" in text
        assert text.count("\n") == 1

    def test_paths_use_request_id(self, tmp_path: Path) -> None:
        request_id = uuid.UUID("12345678-1234-5678-1234-567812345678")
        names = [path.name for path in audit_paths(tmp_path, request_id)]
        assert names == [
            "12345678-1234-5678-1234-567812345678.cmd",
            "12345678-1234-5678-1234-567812345678.stdout",
            "12345678-1234-5678-1234-567812345678.stderr",
        ]


FIXED_START = datetime(2026, 10, 18, 12, 0, 0, 123456, tzinfo=UTC)
REQUEST_ID = uuid.UUID("12345678-1234-5678-1234-567812345678")


def _trail(tmp_path: Path, **settings: object) -> AuditTrail:
    return AuditTrail(
        tmp_path,
        REQUEST_ID,
        ["claude", "--print"],
        provider="claude",
        model="claude-sonnet",
        settings=AuditSettings(**settings),  # type: ignore[arg-type]
        wall_clock=lambda: FIXED_START,
    )


class TestInteractionLog:
    def test_stem_is_provider_timestamp_and_id(self) -> None:
        assert interaction_stem("codex", FIXED_START, REQUEST_ID) == (
            "codex-20261018T120000.123-12345678-1234-5678-1234-567812345678"
        )

    def test_header_and_command_written_on_open(self, tmp_path: Path) -> None:
        trail = _trail(tmp_path)
        trail.close()

        assert trail.log_path.name == f"claude-20261018T120000.123-{REQUEST_ID}.log"
        lines = trail.log_path.read_text(encoding="utf-8").splitlines()
        assert lines[:5] == [
            "CLAUDE Provider Interaction Log",
            "Provider: claude",
            f"Request ID: {REQUEST_ID}",
            "Model: claude-sonnet",
            "Started: 2026-10-18 12:00:00.123 UTC",
        ]
        assert lines[5] == "=" * 80
        assert lines[6] == "[2026-10-18 12:00:00.123] Executing command: claude --print"

    def test_stream_previews_are_truncated_and_skip_empty(self, tmp_path: Path) -> None:
        with _trail(tmp_path, max_preview_chars=5) as trail:
            trail.log_streams(b"hello\nworld", b"")
            trail.log_streams(b"", b"oops\n")

        text = trail.log_path.read_text(encoding="utf-8")
        assert "STDOUT (11B): hello... (see full output in file)" in text
        assert "STDERR (5B): oops " in text
        assert "STDERR (0B)" not in text
        assert "STDOUT (0B)" not in text

    def test_completion_and_error_events(self, tmp_path: Path) -> None:
        secret = "sk-" + "q" * 32
        with _trail(tmp_path) as trail:
            trail.log_completion(TokenUsage.from_counts(100, 50, estimated_cost=0.002), 1.5)
            trail.log_error(f"upstream rejected key {secret}")

        text = trail.log_path.read_text(encoding="utf-8")
        assert "Task completed successfully\nInput tokens: 100\nOutput tokens: 50\n" in text
        assert "Total tokens: 150\nEstimated cost: $0.002000\nExecution time: 1.50s\n" in text
        assert f"Request processing completed for ID: {REQUEST_ID}" in text
        assert "ERROR: upstream rejected key ***REDACTED***" in text
        assert secret not in text

    def test_events_after_close_are_ignored(self, tmp_path: Path) -> None:
        trail = _trail(tmp_path)
        trail.close()
        before = trail.log_path.read_text(encoding="utf-8")

        trail.log_event("late")

        assert trail.log_path.read_text(encoding="utf-8") == before

    def test_negative_preview_length_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_preview_chars"):
            AuditSettings(max_preview_chars=-1)


class TestToolCapture:
    def test_tool_uses_written_with_capture_time_and_redaction(self, tmp_path: Path) -> None:
        secret = "sk-" + "w" * 32
        tool_uses = [
            ToolUse(tool_name="Write", input={"file_path": "hello.py"}, output="ok"),
            ToolUse(tool_name="Bash", input={"command": f"export OPENAI_API_KEY={secret}"}),
        ]
        with _trail(tmp_path) as trail:
            written = trail.record_tool_uses(tool_uses)

        assert written == trail.tools_path
        assert written.name == f"claude-20261018T120000.123-{REQUEST_ID}.tools.json"
        payload = json.loads(written.read_text(encoding="utf-8"))
        assert [entry["tool_name"] for entry in payload] == ["Write", "Bash"]
        assert payload[0]["output"] == "ok"
        assert payload[0]["timestamp"] == FIXED_START.isoformat()
        assert secret not in written.read_text(encoding="utf-8")
        assert "Captured 2 tool uses" in trail.log_path.read_text(encoding="utf-8")

    def test_disabled_or_empty_capture_writes_nothing(self, tmp_path: Path) -> None:
        with _trail(tmp_path, track_tool_uses=False) as trail:
            assert trail.record_tool_uses([ToolUse(tool_name="Edit")]) is None
        assert not trail.tools_path.exists()

        with _trail(tmp_path / "other") as trail:
            assert trail.record_tool_uses([]) is None
        assert not trail.tools_path.exists()
