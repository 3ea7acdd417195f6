"""Execution backends: run one command on the host or inside a container."""

from aca_runtime.executor.backend import (
    BackendError,
    BackendTimeoutError,
    BackendType,
    CommandResult,
    ExecutionBackend,
    HostBackend,
    KilledBySignalError,
    SpawnFailedError,
)
from aca_runtime.executor.config import ContainerExecutionConfig, ExecutionConfig, ExecutionMode
from aca_runtime.executor.container import ContainerBackend
from aca_runtime.executor.factory import create_backend

__all__ = [
    "BackendError",
    "BackendTimeoutError",
    "BackendType",
    "CommandResult",
    "ContainerBackend",
    "ContainerExecutionConfig",
    "ExecutionBackend",
    "ExecutionConfig",
    "ExecutionMode",
    "HostBackend",
    "KilledBySignalError",
    "SpawnFailedError",
    "create_backend",
]
