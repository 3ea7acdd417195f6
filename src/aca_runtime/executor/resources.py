"""Host resource detection and container limit derivation (``psutil``-backed)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

import psutil

from aca_runtime.constants import CPU_PERIOD_MICROSECONDS

# Docker rejects memory limits below 6 MiB and CPU quotas below 1ms.
_MIN_CONTAINER_MEMORY_BYTES: Final[int] = 6 * 1024 * 1024
_MIN_CPU_QUOTA: Final[int] = 1_000


@dataclass(frozen=True, slots=True)
class HostResources:
    total_memory_bytes: int
    cpu_cores: int

    def __post_init__(self) -> None:
        if self.total_memory_bytes < 0:
            raise ValueError("total_memory_bytes must be >= 0")
        if self.cpu_cores <= 0:
            raise ValueError("cpu_cores must be > 0")


@dataclass(frozen=True, slots=True)
class ResourceAllocation:
    """Container limits; ``None`` leaves the corresponding limit unset."""

    memory_bytes: int | None
    cpu_quota: int | None
    cpu_period: int = CPU_PERIOD_MICROSECONDS

    def to_cli_args(self) -> list[str]:
        args: list[str] = []
        if self.memory_bytes is not None:
            args.extend(["--memory", str(self.memory_bytes)])
        if self.cpu_quota is not None:
            args.extend(
                ["--cpu-period", str(self.cpu_period), "--cpu-quota", str(self.cpu_quota)]
            )
        return args


def detect_host_resources() -> HostResources:
    memory = psutil.virtual_memory()
    cores = psutil.cpu_count(logical=True) or 1
    return HostResources(total_memory_bytes=int(memory.total), cpu_cores=int(cores))


def allocate_resources(
    host: HostResources,
    resource_percentage: float,
    *,
    memory_limit_bytes: int | None = None,
    cpu_quota: int | None = None,
) -> ResourceAllocation:
    """Apply ``resource_percentage`` to host CPU and memory; explicit overrides win.

    The percentage is clamped to ``[0, 1]``. A derived value of zero leaves the
    limit unset rather than asking the runtime for an empty allotment.
    """

    fraction = min(1.0, max(0.0, float(resource_percentage)))

    if memory_limit_bytes is not None:
        memory: int | None = memory_limit_bytes
    else:
        derived_memory = int(host.total_memory_bytes * fraction)
        memory = max(derived_memory, _MIN_CONTAINER_MEMORY_BYTES) if derived_memory > 0 else None

    if cpu_quota is not None:
        quota: int | None = cpu_quota
    else:
        derived_quota = int(host.cpu_cores * fraction * CPU_PERIOD_MICROSECONDS)
        quota = max(derived_quota, _MIN_CPU_QUOTA) if derived_quota > 0 else None

    return ResourceAllocation(memory_bytes=memory, cpu_quota=quota)


__all__ = [
    "HostResources",
    "ResourceAllocation",
    "allocate_resources",
    "detect_host_resources",
]
