"""Setup plans: ordered commands with skip, retry and backup error handlers."""

from aca_runtime.setup.errors import (
    BackupFailedError,
    CommandFailedError,
    CommandTimeoutError,
    RequiredStepAbortedError,
    SetupBackendError,
    SetupError,
)
from aca_runtime.setup.executor import SetupExecutor
from aca_runtime.setup.models import (
    AllOf,
    AnyOf,
    BackupHandler,
    CommandOutcome,
    ErrorHandler,
    ExitCodeEquals,
    ExitCodeInRange,
    FinalState,
    Not,
    OutputCondition,
    PlanState,
    RetryHandler,
    SetupCommand,
    SetupPlanResult,
    SkipHandler,
    StderrContains,
    StdoutContains,
)

__all__ = [
    "AllOf",
    "AnyOf",
    "BackupFailedError",
    "BackupHandler",
    "CommandFailedError",
    "CommandOutcome",
    "CommandTimeoutError",
    "ErrorHandler",
    "ExitCodeEquals",
    "ExitCodeInRange",
    "FinalState",
    "Not",
    "OutputCondition",
    "PlanState",
    "RequiredStepAbortedError",
    "RetryHandler",
    "SetupBackendError",
    "SetupCommand",
    "SetupError",
    "SetupExecutor",
    "SetupPlanResult",
    "SkipHandler",
    "StderrContains",
    "StdoutContains",
]
