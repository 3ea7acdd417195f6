"""
aca-runtime — execution backend contract and host backend

File: src/aca_runtime/executor/backend.py
Last updated: 2026-10-18

Purpose
- "Run one command" abstraction consumed by the setup executor. The executor is
  oblivious to whether commands run on the host or inside a container.

What should be included in this file
- ``CommandResult`` and the ``BackendError`` hierarchy (spawn failure, timeout,
  killed by signal), each carrying partial output and a synthetic exit status.
- ``ExecutionBackend`` abstract base and the ``HostBackend`` variant.

Functional requirements
- Host children inherit the parent environment with the command env overlaid.
- A timeout kills the child's process group.
"""

from __future__ import annotations

import abc
import os
import shutil
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from aca_runtime.constants import (
    EXIT_STATUS_NOT_FOUND,
    EXIT_STATUS_SIGNAL_BASE,
    EXIT_STATUS_TIMEOUT,
)
from aca_runtime.executor.process import ProcessResult, run_process

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


class BackendType(StrEnum):
    HOST = "host"
    CONTAINER = "container"


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized outcome of one command run through a backend."""

    exit_status: int
    stdout: bytes
    stderr: bytes
    duration: float
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.exit_status == 0

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")

    @property
    def duration_ms(self) -> float:
        return self.duration * 1000.0


class BackendError(RuntimeError):
    """Base error for backend failures; carries partial output and a synthetic exit."""

    def __init__(
        self,
        message: str,
        *,
        program: str,
        exit_status: int,
        stdout: bytes = b"",
        stderr: bytes = b"",
        duration: float = 0.0,
        timed_out: bool = False,
    ) -> None:
        self.program = program
        self.exit_status = exit_status
        self.stdout = stdout
        self.stderr = stderr
        self.duration = duration
        self.timed_out = timed_out
        super().__init__(message)

    def to_result(self) -> CommandResult:
        return CommandResult(
            exit_status=self.exit_status,
            stdout=self.stdout,
            stderr=self.stderr,
            duration=self.duration,
            timed_out=self.timed_out,
        )


class SpawnFailedError(BackendError):
    """The program could not be started (missing binary, bad working dir, EACCES)."""

    def __init__(self, program: str, reason: str, *, duration: float = 0.0) -> None:
        message = f"{program}: {reason}"
        super().__init__(
            message,
            program=program,
            exit_status=EXIT_STATUS_NOT_FOUND,
            stderr=message.encode("utf-8"),
            duration=duration,
        )


class BackendTimeoutError(BackendError):
    def __init__(
        self,
        program: str,
        timeout: float,
        *,
        stdout: bytes = b"",
        stderr: bytes = b"",
        duration: float = 0.0,
    ) -> None:
        self.timeout = timeout
        super().__init__(
            f"{program}: timed out after {timeout:g}s",
            program=program,
            exit_status=EXIT_STATUS_TIMEOUT,
            stdout=stdout,
            stderr=stderr,
            duration=duration,
            timed_out=True,
        )


class KilledBySignalError(BackendError):
    def __init__(
        self,
        program: str,
        signal_number: int,
        *,
        stdout: bytes = b"",
        stderr: bytes = b"",
        duration: float = 0.0,
    ) -> None:
        self.signal_number = signal_number
        super().__init__(
            f"{program}: killed by signal {signal_number}",
            program=program,
            exit_status=EXIT_STATUS_SIGNAL_BASE + signal_number,
            stdout=stdout,
            stderr=stderr,
            duration=duration,
        )


class ExecutionBackend(abc.ABC):
    """Run one command and report its exit status and captured streams."""

    backend_type: BackendType

    @abc.abstractmethod
    async def run(
        self,
        program: str,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        working_dir: Path | str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run ``program`` with ``args``; ``timeout`` of ``None``/0 means no bound.

        Raises ``SpawnFailedError``, ``BackendTimeoutError``, or ``KilledBySignalError``.
        """

    @abc.abstractmethod
    async def health_check(self) -> bool:
        """Return whether the backend can currently run commands."""

    async def shutdown(self) -> None:
        """Release backend resources. Idempotent."""
        return None


class HostBackend(ExecutionBackend):
    """Spawn commands as host child processes in their own process group."""

    backend_type = BackendType.HOST

    def __init__(self, workspace_root: Path | str, *, logger: Any | None = None) -> None:
        root = Path(workspace_root).expanduser().resolve()
        if not root.is_dir():
            raise NotADirectoryError(f"{root!s} is not a directory")
        self._workspace_root = root
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def workspace_root(self) -> Path:
        return self._workspace_root

    async def run(
        self,
        program: str,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        working_dir: Path | str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        cwd = self._resolve_cwd(working_dir)
        if not cwd.is_dir():
            raise SpawnFailedError(program, f"working directory not found: {cwd}")

        argv = [program, *args]
        self._logger.debug(
            "host_command_started", program=program, args=list(args), cwd=str(cwd)
        )
        try:
            result = await run_process(
                argv,
                cwd=cwd,
                env=self._build_environment(env),
                timeout=timeout,
            )
        except FileNotFoundError as exc:
            raise SpawnFailedError(program, "command not found") from exc
        except PermissionError as exc:
            raise SpawnFailedError(program, "permission denied") from exc
        except OSError as exc:
            raise SpawnFailedError(program, exc.strerror or str(exc)) from exc

        return command_result_from_process(program, result, timeout)

    async def health_check(self) -> bool:
        return self._workspace_root.is_dir() and shutil.which("sh") is not None

    def _resolve_cwd(self, working_dir: Path | str | None) -> Path:
        if working_dir is None:
            return self._workspace_root
        path = Path(working_dir).expanduser()
        if not path.is_absolute():
            path = self._workspace_root / path
        return path

    def _build_environment(self, env: Mapping[str, str] | None) -> dict[str, str]:
        merged = dict(os.environ)
        if env is not None:
            merged.update(env)
        return merged


def command_result_from_process(
    program: str, result: ProcessResult, timeout: float | None
) -> CommandResult:
    """Convert a raw process outcome into a ``CommandResult`` or the matching error."""

    if result.timed_out:
        raise BackendTimeoutError(
            program,
            timeout or 0.0,
            stdout=result.stdout,
            stderr=result.stderr,
            duration=result.duration,
        )
    signal_number = result.signal_number
    if signal_number is not None:
        raise KilledBySignalError(
            program,
            signal_number,
            stdout=result.stdout,
            stderr=result.stderr,
            duration=result.duration,
        )
    return CommandResult(
        exit_status=result.returncode if result.returncode is not None else -1,
        stdout=result.stdout,
        stderr=result.stderr,
        duration=result.duration,
    )


__all__ = [
    "BackendError",
    "BackendTimeoutError",
    "BackendType",
    "CommandResult",
    "ExecutionBackend",
    "HostBackend",
    "KilledBySignalError",
    "SpawnFailedError",
    "command_result_from_process",
]
