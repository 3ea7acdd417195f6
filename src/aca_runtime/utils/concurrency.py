"""Async concurrency primitives used by the setup executor and providers."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")


class TokenCancelledError(asyncio.CancelledError):
    """Raised when a :class:`CancellationToken` fires while work is in flight.

    Distinguishable from a plain task cancellation so callers can record the
    cooperative stop and still let external cancellation propagate untouched.
    """


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TokenCancelledError("operation cancelled")


async def run_cancellable(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """Await ``awaitable``; cancel it and raise ``TokenCancelledError`` if ``token`` fires.

    The inner task is cancelled and awaited before the error is raised, so any
    cleanup it performs on ``CancelledError`` (killing a child process) has
    finished by the time the caller sees the error.
    """

    if token is None:
        return await awaitable
    if token.is_cancelled:
        _close_unscheduled_coroutine(awaitable)
        raise TokenCancelledError("operation cancelled")

    task: asyncio.Task[T] = asyncio.ensure_future(awaitable)
    cancel_wait_task = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {task, cancel_wait_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
        if task in done:
            return task.result()

        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        raise TokenCancelledError("operation cancelled")
    except asyncio.CancelledError:
        if not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        raise
    finally:
        cancel_wait_task.cancel()
        with suppress(asyncio.CancelledError):
            await cancel_wait_task


def _close_unscheduled_coroutine(awaitable: Awaitable[object]) -> None:
    # Close raw coroutine objects that were never scheduled so CPython does not
    # emit "coroutine was never awaited" at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "CancellationToken",
    "TokenCancelledError",
    "run_cancellable",
]
