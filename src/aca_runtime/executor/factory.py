"""Execution backend selection; the only place that names concrete backends."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from aca_runtime.executor.backend import ExecutionBackend, HostBackend
from aca_runtime.executor.config import ExecutionConfig, ExecutionMode
from aca_runtime.executor.container import ContainerBackend

if TYPE_CHECKING:
    from pathlib import Path

    from aca_runtime.executor.resources import HostResources


def create_backend(
    execution: ExecutionConfig,
    workspace_root: Path | str,
    *,
    host_resources: HostResources | None = None,
    logger: Any | None = None,
) -> ExecutionBackend:
    if execution.mode is ExecutionMode.HOST:
        return HostBackend(workspace_root, logger=logger)
    if execution.mode is ExecutionMode.CONTAINER:
        return ContainerBackend(
            workspace_root,
            execution.container,
            host_resources=host_resources,
            logger=logger,
        )
    raise ValueError(f"unsupported execution mode: {execution.mode!r}")


__all__ = ["create_backend"]
