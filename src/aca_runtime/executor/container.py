"""
aca-runtime — container execution backend

File: src/aca_runtime/executor/container.py
Last updated: 2026-10-18

Purpose
- Run setup commands inside a long-lived container through a Docker-compatible
  CLI (``docker`` or ``podman``).

What should be included in this file
- Lazy create-or-reuse of one container per backend, with the workspace
  bind-mounted at ``/workspace`` and CPU/memory limits derived from host resources.
- ``<runtime> exec`` dispatch with per-command env and working directory.

Functional requirements
- Concurrent first calls share a single creation; a failed creation, whatever
  the cause, is retried by the next call.
- ``shutdown()`` removes a container this backend created. Idempotent.
"""

from __future__ import annotations

import asyncio
import shutil
import uuid
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any, Final

import psutil
import structlog

from aca_runtime.constants import CONTAINER_WORKSPACE, HEALTH_CHECK_TIMEOUT_SECONDS
from aca_runtime.executor.backend import (
    BackendType,
    CommandResult,
    ExecutionBackend,
    SpawnFailedError,
    command_result_from_process,
)
from aca_runtime.executor.process import run_process
from aca_runtime.executor.resources import (
    HostResources,
    allocate_resources,
    detect_host_resources,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from aca_runtime.executor.config import ContainerExecutionConfig

_CONTAINER_START_TIMEOUT_SECONDS: Final[float] = 300.0
_CONTAINER_LABEL: Final[str] = "aca-runtime=1"


class ContainerBackend(ExecutionBackend):
    """Exec commands inside a container created (or reused) on first use."""

    backend_type = BackendType.CONTAINER

    def __init__(
        self,
        workspace_root: Path | str,
        config: ContainerExecutionConfig,
        *,
        host_resources: HostResources | None = None,
        runtime_path: str | None = None,
        logger: Any | None = None,
    ) -> None:
        root = Path(workspace_root).expanduser().resolve()
        if not root.is_dir():
            raise NotADirectoryError(f"{root!s} is not a directory")
        self._workspace_root = root
        self._config = config
        self._host_resources = host_resources
        self._runtime = runtime_path or shutil.which(config.runtime) or config.runtime
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        self._container_name: str | None = None
        self._owns_container = False
        self._creating: asyncio.Future[str] | None = None
        self._closed = False

    @property
    def container_name(self) -> str | None:
        return self._container_name

    async def run(
        self,
        program: str,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        working_dir: Path | str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        container = await self._ensure_container()
        argv = [self._runtime, "exec", "-i", "-w", self._container_cwd(working_dir)]
        for key in sorted(env or {}):
            argv.extend(["-e", f"{key}={(env or {})[key]}"])
        argv.extend([container, program, *args])

        self._logger.debug(
            "container_command_started",
            container=container,
            program=program,
            args=list(args),
        )
        try:
            result = await run_process(argv, timeout=timeout)
        except OSError as exc:
            raise SpawnFailedError(self._runtime, exc.strerror or str(exc)) from exc
        return command_result_from_process(program, result, timeout)

    async def health_check(self) -> bool:
        try:
            result = await run_process(
                [self._runtime, "version"], timeout=HEALTH_CHECK_TIMEOUT_SECONDS
            )
        except OSError:
            return False
        return not result.timed_out and result.returncode == 0

    async def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        name = self._container_name
        if name is None or not self._owns_container or self._config.keep_container:
            return
        try:
            result = await run_process(
                [self._runtime, "rm", "-f", name], timeout=HEALTH_CHECK_TIMEOUT_SECONDS
            )
        except OSError as exc:
            self._logger.warning("container_remove_failed", container=name, error=str(exc))
            return
        if result.returncode != 0:
            self._logger.warning(
                "container_remove_failed",
                container=name,
                error=result.stderr.decode("utf-8", errors="replace").strip(),
            )
        else:
            self._logger.info("container_removed", container=name)

    async def _ensure_container(self) -> str:
        if self._container_name is not None:
            return self._container_name
        if self._closed:
            raise SpawnFailedError(self._runtime, "container backend is shut down")
        if self._creating is None:
            self._creating = asyncio.ensure_future(self._create_container())
        creating = self._creating
        try:
            # Shielded so one cancelled caller does not abort the shared creation.
            name = await asyncio.shield(creating)
        except Exception:
            if self._creating is creating:
                self._creating = None
            raise
        self._container_name = name
        return name

    async def _create_container(self) -> str:
        name = self._config.container_name
        if name is not None and await self._reuse_existing(name):
            return name

        name = name or f"aca-{uuid.uuid4().hex[:12]}"
        try:
            host = self._host_resources or detect_host_resources()
        except (psutil.Error, OSError) as exc:
            raise SpawnFailedError(
                self._runtime, f"cannot detect host resources: {exc}"
            ) from exc
        allocation = allocate_resources(
            host,
            self._config.resource_percentage,
            memory_limit_bytes=self._config.memory_limit_bytes,
            cpu_quota=self._config.cpu_quota,
        )
        argv = [
            self._runtime,
            "run",
            "-d",
            "--name",
            name,
            "--label",
            _CONTAINER_LABEL,
            *allocation.to_cli_args(),
            "--mount",
            f"type=bind,source={self._workspace_root},target={CONTAINER_WORKSPACE}",
            "-w",
            CONTAINER_WORKSPACE,
            self._config.image,
            "sh",
            "-c",
            "sleep infinity",
        ]
        self._logger.info(
            "container_starting",
            container=name,
            image=self._config.image,
            memory_bytes=allocation.memory_bytes,
            cpu_quota=allocation.cpu_quota,
        )
        try:
            result = await run_process(argv, timeout=_CONTAINER_START_TIMEOUT_SECONDS)
        except OSError as exc:
            raise SpawnFailedError(self._runtime, exc.strerror or str(exc)) from exc
        if result.timed_out or result.returncode != 0:
            detail = result.stderr.decode("utf-8", errors="replace").strip() or "no output"
            raise SpawnFailedError(
                self._runtime,
                f"failed to start container from {self._config.image}: {detail}",
            )
        self._owns_container = True
        return name

    async def _reuse_existing(self, name: str) -> bool:
        try:
            inspect = await run_process(
                [self._runtime, "container", "inspect", "-f", "{{.State.Running}}", name],
                timeout=HEALTH_CHECK_TIMEOUT_SECONDS,
            )
        except OSError as exc:
            raise SpawnFailedError(self._runtime, exc.strerror or str(exc)) from exc
        if inspect.returncode != 0:
            return False
        if inspect.stdout.decode("utf-8", errors="replace").strip() != "true":
            try:
                started = await run_process(
                    [self._runtime, "start", name], timeout=_CONTAINER_START_TIMEOUT_SECONDS
                )
            except OSError as exc:
                raise SpawnFailedError(self._runtime, exc.strerror or str(exc)) from exc
            if started.returncode != 0:
                detail = started.stderr.decode("utf-8", errors="replace").strip()
                raise SpawnFailedError(
                    self._runtime, f"failed to start existing container {name}: {detail}"
                )
        self._logger.info("container_reused", container=name)
        return True

    def _container_cwd(self, working_dir: Path | str | None) -> str:
        workspace = PurePosixPath(CONTAINER_WORKSPACE)
        if working_dir is None:
            return str(workspace)
        path = Path(working_dir)
        if not path.is_absolute():
            return str(workspace / PurePosixPath(path.as_posix()))
        try:
            relative = path.resolve().relative_to(self._workspace_root)
        except ValueError:
            return path.as_posix()
        return str(workspace / PurePosixPath(relative.as_posix()))


__all__ = ["ContainerBackend"]
