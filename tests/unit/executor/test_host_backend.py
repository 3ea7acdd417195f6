"""Unit tests for host command execution and the child-process primitive."""

from __future__ import annotations

import signal
from pathlib import Path

import pytest

from aca_runtime.executor.backend import (
    BackendTimeoutError,
    BackendType,
    HostBackend,
    KilledBySignalError,
    SpawnFailedError,
)
from aca_runtime.executor.config import ContainerExecutionConfig, ExecutionConfig, ExecutionMode
from aca_runtime.executor.container import ContainerBackend
from aca_runtime.executor.factory import create_backend
from aca_runtime.executor.process import run_process


@pytest.fixture
def backend(workspace: Path) -> HostBackend:
    return HostBackend(workspace)


class TestHostBackend:
    async def test_captures_streams_and_status(self, backend: HostBackend) -> None:
        result = await backend.run("sh", ["-c", "echo out; echo err >&2; exit 3"])

        assert result.exit_status == 3
        assert result.stdout == b"out\n"
        assert result.stderr == b"err\n"
        assert result.succeeded is False
        assert result.duration >= 0
        assert result.duration_ms == pytest.approx(result.duration * 1000.0)

    async def test_env_overlays_parent_environment(
        self, backend: HostBackend, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("ACA_INHERITED", "from-parent")

        result = await backend.run(
            "sh", ["-c", 'echo "$ACA_INHERITED $ACA_OVERLAY"'], env={"ACA_OVERLAY": "child"}
        )

        assert result.stdout_text == "from-parent child\n"

    async def test_relative_working_dir_resolves_under_workspace(
        self, backend: HostBackend, workspace: Path
    ) -> None:
        (workspace / "pkg").mkdir()

        result = await backend.run("pwd", working_dir="pkg")

        assert Path(result.stdout_text.strip()).resolve() == (workspace / "pkg").resolve()

    async def test_missing_working_dir_is_spawn_failure(self, backend: HostBackend) -> None:
        with pytest.raises(SpawnFailedError, match="working directory not found"):
            await backend.run("true", working_dir="missing")

    async def test_missing_program_reports_command_not_found(self, backend: HostBackend) -> None:
        with pytest.raises(SpawnFailedError) as excinfo:
            await backend.run("definitely-not-a-real-aca-command")

        error = excinfo.value
        assert error.exit_status == 127
        assert error.stderr == b"definitely-not-a-real-aca-command: command not found"
        assert error.to_result().stderr_text.endswith("command not found")

    async def test_timeout_keeps_partial_output(self, backend: HostBackend) -> None:
        with pytest.raises(BackendTimeoutError) as excinfo:
            await backend.run("sh", ["-c", "echo partial; sleep 10"], timeout=0.3)

        error = excinfo.value
        assert error.exit_status == 124
        assert error.timed_out is True
        assert error.stdout == b"partial\n"
        assert error.to_result().succeeded is False

    async def test_signal_death_maps_to_128_plus_signal(self, backend: HostBackend) -> None:
        with pytest.raises(KilledBySignalError) as excinfo:
            await backend.run("sh", ["-c", "kill -TERM $$"])

        assert excinfo.value.signal_number == signal.SIGTERM
        assert excinfo.value.exit_status == 128 + signal.SIGTERM

    async def test_health_check(self, backend: HostBackend) -> None:
        assert await backend.health_check() is True
        await backend.shutdown()
        await backend.shutdown()

    def test_rejects_missing_workspace(self, tmp_path: Path) -> None:
        with pytest.raises(NotADirectoryError):
            HostBackend(tmp_path / "nope")


class TestRunProcess:
    async def test_stdin_and_sinks(self, tmp_path: Path) -> None:
        sink_path = tmp_path / "stdout.bin"
        with sink_path.open("wb") as sink:
            result = await run_process(["cat"], stdin_data=b"piped", stdout_sink=sink)

        assert result.stdout == b"piped"
        assert sink_path.read_bytes() == b"piped"
        assert result.returncode == 0

    async def test_stdin_is_closed_when_not_given(self) -> None:
        result = await run_process(["cat"], timeout=5)
        assert result.stdout == b""
        assert result.timed_out is False

    async def test_empty_argv_rejected(self) -> None:
        with pytest.raises(ValueError, match="argv"):
            await run_process([])

    async def test_timeout_returns_without_waiting_for_background_children(self) -> None:
        result = await run_process(["sh", "-c", "sleep 30 & wait"], timeout=0.5)

        assert result.timed_out is True
        assert result.duration < 10


def test_backend_factory_selects_variant(workspace: Path) -> None:
    host = create_backend(ExecutionConfig(), workspace)
    container = create_backend(
        ExecutionConfig(mode=ExecutionMode.CONTAINER, container=ContainerExecutionConfig()),
        workspace,
    )

    assert isinstance(host, HostBackend)
    assert host.backend_type is BackendType.HOST
    assert isinstance(container, ContainerBackend)
    assert container.backend_type is BackendType.CONTAINER
