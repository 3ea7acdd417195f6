"""
aca-runtime — setup plan executor

File: src/aca_runtime/setup/executor.py
Last updated: 2026-10-18

Purpose
- Run an ordered list of ``SetupCommand`` against an ``ExecutionBackend``,
  honoring per-command timeouts, the required/optional policy, and the skip,
  retry and backup error handlers.

What should be included in this file
- ``SetupExecutor.run``: a straight sequence over commands with a small state
  machine per command. The plan goes ``running -> completed | aborted``.

Functional requirements
- A required command that ends ``failed_required`` aborts the plan; no later
  command is attempted.
- Retry runs ``1 + max_attempts`` times in total with a fixed delay in between.
- A backup runs only when its condition matches the first failure.
- Backend errors (spawn failure, timeout, signal) are failures, not crashes.
- A fired cancellation token kills the running child and aborts the plan.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from aca_runtime.executor.backend import BackendError, CommandResult, ExecutionBackend
from aca_runtime.observability.logging import correlation_scope
from aca_runtime.setup.errors import (
    BackupFailedError,
    CommandFailedError,
    CommandTimeoutError,
    SetupBackendError,
    SetupError,
)
from aca_runtime.setup.models import (
    BackupHandler,
    CommandOutcome,
    FinalState,
    PlanState,
    RetryHandler,
    SetupCommand,
    SetupPlanResult,
    SkipHandler,
)
from aca_runtime.utils.concurrency import CancellationToken, TokenCancelledError, run_cancellable

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class _Attempt:
    result: CommandResult
    error: BackendError | None


class SetupExecutor:
    """Execute setup plans through one backend, one plan at a time."""

    def __init__(
        self,
        backend: ExecutionBackend,
        *,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        logger: Any | None = None,
    ) -> None:
        self._backend = backend
        self._sleep = sleep
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._invocations = 0

    @property
    def backend(self) -> ExecutionBackend:
        return self._backend

    async def run(
        self,
        commands: Sequence[SetupCommand],
        *,
        cancel_token: CancellationToken | None = None,
    ) -> SetupPlanResult:
        """Run ``commands`` in order and return the plan result.

        The plan result is returned for aborted plans too; call
        ``raise_for_status()`` to turn an abort into ``RequiredStepAbortedError``.
        """

        plan = tuple(commands)
        _reject_duplicate_names(plan)
        self._invocations = 0
        outcomes: list[CommandOutcome] = []
        self._logger.info("setup_plan_started", commands=len(plan))

        for command in plan:
            try:
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                with correlation_scope(plan_step=command.name):
                    outcome = await self._run_command(command, cancel_token)
            except TokenCancelledError:
                self._logger.warning("setup_plan_cancelled", step=command.name)
                return self._finish(outcomes, PlanState.ABORTED, command.name, cancelled=True)

            outcomes.append(outcome)
            if outcome.final_state is FinalState.FAILED_REQUIRED:
                self._logger.error(
                    "setup_plan_aborted",
                    step=command.name,
                    error=str(outcome.error) if outcome.error is not None else None,
                )
                return self._finish(outcomes, PlanState.ABORTED, command.name)

        return self._finish(outcomes, PlanState.COMPLETED, None)

    def _finish(
        self,
        outcomes: list[CommandOutcome],
        state: PlanState,
        aborted_step: str | None,
        *,
        cancelled: bool = False,
    ) -> SetupPlanResult:
        result = SetupPlanResult(
            state=state,
            outcomes=tuple(outcomes),
            backend_invocations=self._invocations,
            aborted_step=aborted_step,
            cancelled=cancelled,
        )
        if state is PlanState.COMPLETED:
            self._logger.info(
                "setup_plan_completed",
                commands=len(outcomes),
                backend_invocations=self._invocations,
            )
        return result

    async def _run_command(
        self, command: SetupCommand, cancel_token: CancellationToken | None
    ) -> CommandOutcome:
        started = self._clock()
        handler = command.error_handler
        attempt_count = 0

        while True:
            attempt_count += 1
            self._logger.debug("setup_command_started", attempt=attempt_count)
            attempt = await self._invoke(
                command.program, command.args, command, cancel_token
            )
            result = attempt.result
            if result.succeeded:
                self._logger.info("setup_command_succeeded", attempt=attempt_count)
                return self._outcome(
                    command, attempt_count, result, started, False, FinalState.SUCCEEDED, None
                )

            failure = _failure_error(command.name, attempt)
            self._logger.warning(
                "setup_command_failed",
                attempt=attempt_count,
                exit_status=result.exit_status,
                timed_out=result.timed_out,
                stderr=_tail(result.stderr_text),
            )

            if handler is None:
                return self._failed(command, attempt_count, result, started, False, failure)

            if isinstance(handler, SkipHandler):
                self._logger.info("setup_command_skipped", handler=handler.name)
                return self._outcome(
                    command,
                    attempt_count,
                    result,
                    started,
                    True,
                    FinalState.SKIPPED_AFTER_FAILURE,
                    failure,
                )

            if isinstance(handler, RetryHandler):
                if attempt_count <= handler.max_attempts:
                    self._logger.info(
                        "setup_command_retrying",
                        handler=handler.name,
                        attempt=attempt_count,
                        max_attempts=handler.max_attempts,
                        delay=handler.delay,
                    )
                    await run_cancellable(self._sleep(handler.delay), cancel_token)
                    continue
                return self._failed(command, attempt_count, result, started, True, failure)

            if isinstance(handler, BackupHandler):
                return await self._run_backup(
                    command, handler, attempt_count, result, started, failure, cancel_token
                )

            raise TypeError(f"unsupported error handler: {handler!r}")

    async def _run_backup(
        self,
        command: SetupCommand,
        handler: BackupHandler,
        attempt_count: int,
        result: CommandResult,
        started: float,
        failure: SetupError,
        cancel_token: CancellationToken | None,
    ) -> CommandOutcome:
        if not handler.condition.matches(result.stdout, result.stderr, result.exit_status):
            self._logger.info("setup_backup_condition_not_matched", handler=handler.name)
            return self._failed(command, attempt_count, result, started, False, failure)

        self._logger.info("setup_backup_started", handler=handler.name, program=handler.program)
        backup = await self._invoke(handler.program, handler.args, command, cancel_token)
        if backup.result.succeeded:
            self._logger.info("setup_backup_succeeded", handler=handler.name)
            return self._outcome(
                command,
                attempt_count,
                backup.result,
                started,
                True,
                FinalState.RECOVERED_BY_BACKUP,
                None,
            )

        self._logger.warning(
            "setup_backup_failed",
            handler=handler.name,
            exit_status=backup.result.exit_status,
            stderr=_tail(backup.result.stderr_text),
        )
        return self._failed(
            command,
            attempt_count,
            backup.result,
            started,
            True,
            BackupFailedError(command.name),
        )

    async def _invoke(
        self,
        program: str,
        args: Sequence[str],
        command: SetupCommand,
        cancel_token: CancellationToken | None,
    ) -> _Attempt:
        self._invocations += 1
        try:
            result = await run_cancellable(
                self._backend.run(
                    program,
                    args,
                    command.env,
                    command.working_dir,
                    command.timeout,
                ),
                cancel_token,
            )
        except BackendError as exc:
            return _Attempt(result=exc.to_result(), error=exc)
        return _Attempt(result=result, error=None)

    def _failed(
        self,
        command: SetupCommand,
        attempt_count: int,
        result: CommandResult,
        started: float,
        handler_invoked: bool,
        error: SetupError,
    ) -> CommandOutcome:
        state = FinalState.FAILED_REQUIRED if command.required else FinalState.FAILED_OPTIONAL
        return self._outcome(
            command, attempt_count, result, started, handler_invoked, state, error
        )

    def _outcome(
        self,
        command: SetupCommand,
        attempt_count: int,
        result: CommandResult,
        started: float,
        handler_invoked: bool,
        final_state: FinalState,
        error: SetupError | None,
    ) -> CommandOutcome:
        return CommandOutcome(
            name=command.name,
            attempt_count=attempt_count,
            exit_status=result.exit_status,
            stdout=result.stdout,
            stderr=result.stderr,
            duration=max(0.0, self._clock() - started),
            handler_invoked=handler_invoked,
            final_state=final_state,
            error=error,
        )


def _failure_error(name: str, attempt: _Attempt) -> SetupError:
    if attempt.result.timed_out:
        return CommandTimeoutError(name)
    if attempt.error is not None:
        return SetupBackendError(name, str(attempt.error))
    return CommandFailedError(name, attempt.result.exit_status)


def _reject_duplicate_names(plan: Sequence[SetupCommand]) -> None:
    seen: set[str] = set()
    for command in plan:
        if command.name in seen:
            raise ValueError(f"duplicate setup command name: {command.name!r}")
        seen.add(command.name)


def _tail(text: str, limit: int = 500) -> str:
    stripped = text.strip()
    return stripped if len(stripped) <= limit else "…" + stripped[-limit:]


__all__ = ["SetupExecutor", "SleepFn"]
