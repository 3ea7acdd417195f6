"""
aca-runtime — setup error taxonomy

File: src/aca_runtime/setup/errors.py
Last updated: 2026-10-18

Purpose
- Typed failures for setup plan execution.

What should be included in this file
- ``SetupError`` base with a stable snake_case ``code`` and ``to_dict()``.
- Command failure, timeout, backup failure, and backend failure variants.
- ``RequiredStepAbortedError``, the only error that escapes a plan run.

Functional requirements
- ``code`` values share the snake_case convention of the LLM error taxonomy.
"""

from __future__ import annotations


class SetupError(RuntimeError):
    """Base class for setup failures; ``code`` is a stable machine identifier."""

    code = "setup_error"

    def __init__(self, message: str, *, name: str) -> None:
        self.name = name
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        return {"code": self.code, "name": self.name, "message": str(self)}


class CommandFailedError(SetupError):
    code = "command_failed"

    def __init__(self, name: str, exit_status: int) -> None:
        self.exit_status = exit_status
        super().__init__(f"setup command '{name}' failed with exit status {exit_status}", name=name)

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["exit_status"] = self.exit_status
        return payload


class CommandTimeoutError(SetupError):
    code = "command_timeout"

    def __init__(self, name: str) -> None:
        super().__init__(f"setup command '{name}' timed out", name=name)


class RequiredStepAbortedError(SetupError):
    code = "required_step_aborted"

    def __init__(self, name: str) -> None:
        super().__init__(f"required setup step '{name}' failed; plan aborted", name=name)


class BackupFailedError(SetupError):
    code = "backup_failed"

    def __init__(self, name: str) -> None:
        super().__init__(f"backup command for setup step '{name}' failed", name=name)


class SetupBackendError(SetupError):
    """The backend could not run the command at all (spawn failure, signal)."""

    code = "backend_error"

    def __init__(self, name: str, detail: str) -> None:
        self.detail = detail
        super().__init__(f"setup command '{name}' could not run: {detail}", name=name)


__all__ = [
    "BackupFailedError",
    "CommandFailedError",
    "CommandTimeoutError",
    "RequiredStepAbortedError",
    "SetupBackendError",
    "SetupError",
]
