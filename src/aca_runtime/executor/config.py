"""Execution mode selection and container execution settings."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Final

from aca_runtime.constants import (
    DEFAULT_CONTAINER_IMAGE,
    DEFAULT_CONTAINER_RUNTIME,
    DEFAULT_RESOURCE_PERCENTAGE,
)

_CONTAINER_NAME_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]{0,127}$")


class ExecutionMode(StrEnum):
    HOST = "host"
    CONTAINER = "container"


@dataclass(frozen=True, slots=True)
class ContainerExecutionConfig:
    """Settings for the long-lived container that setup commands exec into."""

    image: str = DEFAULT_CONTAINER_IMAGE
    resource_percentage: float = DEFAULT_RESOURCE_PERCENTAGE
    memory_limit_bytes: int | None = None
    cpu_quota: int | None = None
    runtime: str = DEFAULT_CONTAINER_RUNTIME
    container_name: str | None = None
    keep_container: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.image, str) or not self.image.strip():
            raise ValueError("image cannot be empty")
        percentage = float(self.resource_percentage)
        if math.isnan(percentage) or not 0.0 <= percentage <= 1.0:
            raise ValueError("resource_percentage must be within [0, 1]")
        object.__setattr__(self, "resource_percentage", percentage)
        if self.memory_limit_bytes is not None and self.memory_limit_bytes <= 0:
            raise ValueError("memory_limit_bytes must be > 0")
        if self.cpu_quota is not None and self.cpu_quota <= 0:
            raise ValueError("cpu_quota must be > 0")
        if not isinstance(self.runtime, str) or not self.runtime.strip():
            raise ValueError("runtime cannot be empty")
        if self.container_name is not None and not _CONTAINER_NAME_PATTERN.match(
            self.container_name
        ):
            raise ValueError(f"invalid container_name: {self.container_name!r}")


@dataclass(frozen=True, slots=True)
class ExecutionConfig:
    mode: ExecutionMode = ExecutionMode.HOST
    container: ContainerExecutionConfig = field(default_factory=ContainerExecutionConfig)

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", ExecutionMode(self.mode))


__all__ = [
    "ContainerExecutionConfig",
    "ExecutionConfig",
    "ExecutionMode",
]
