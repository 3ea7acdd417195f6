"""Async child-process primitive shared by execution backends and providers.

Every child runs in its own session so a timeout or cancellation can kill the
whole process group. stdout and stderr are drained concurrently and optionally
teed into binary sinks (audit files) as chunks arrive.
"""

from __future__ import annotations

import asyncio
import os
import signal
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import TYPE_CHECKING, BinaryIO, Final

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

_READ_CHUNK_BYTES: Final[int] = 64 * 1024


@dataclass(frozen=True, slots=True)
class ProcessResult:
    """Raw outcome of one child process."""

    returncode: int | None
    stdout: bytes
    stderr: bytes
    duration: float
    timed_out: bool

    @property
    def signal_number(self) -> int | None:
        if self.returncode is not None and self.returncode < 0:
            return -self.returncode
        return None


async def run_process(
    argv: Sequence[str],
    *,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    stdin_data: bytes | None = None,
    timeout: float | None = None,
    stdout_sink: BinaryIO | None = None,
    stderr_sink: BinaryIO | None = None,
) -> ProcessResult:
    """Spawn ``argv`` and wait for it, bounded by ``timeout`` seconds (``None``/0: unbounded).

    Raises ``OSError`` when the child cannot be spawned. On timeout the process
    group is killed and the partial output is returned with ``timed_out=True``.
    On cancellation the process group is killed before ``CancelledError``
    propagates.
    """

    if not argv:
        raise ValueError("argv must not be empty")

    started = time.perf_counter()
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.PIPE if stdin_data is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd) if cwd is not None else None,
        env=dict(env) if env is not None else None,
        start_new_session=True,
    )

    stdout_chunks: list[bytes] = []
    stderr_chunks: list[bytes] = []

    async def _feed_stdin() -> None:
        if stdin_data is None or proc.stdin is None:
            return
        # The child may exit without reading its input.
        with suppress(BrokenPipeError, ConnectionResetError):
            proc.stdin.write(stdin_data)
            await proc.stdin.drain()
        proc.stdin.close()

    async def _drain(
        stream: asyncio.StreamReader | None,
        chunks: list[bytes],
        sink: BinaryIO | None,
    ) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(_READ_CHUNK_BYTES)
            if not chunk:
                break
            chunks.append(chunk)
            if sink is not None:
                sink.write(chunk)

    async def _communicate() -> int:
        await asyncio.gather(
            _feed_stdin(),
            _drain(proc.stdout, stdout_chunks, stdout_sink),
            _drain(proc.stderr, stderr_chunks, stderr_sink),
        )
        return await proc.wait()

    timed_out = False
    try:
        if timeout:
            returncode: int | None = await asyncio.wait_for(_communicate(), timeout=timeout)
        else:
            returncode = await _communicate()
    except TimeoutError:
        timed_out = True
        await kill_process_group(proc)
        returncode = proc.returncode
    except asyncio.CancelledError:
        await kill_process_group(proc)
        raise
    finally:
        for sink in (stdout_sink, stderr_sink):
            if sink is not None and not sink.closed:
                sink.flush()

    return ProcessResult(
        returncode=returncode,
        stdout=b"".join(stdout_chunks),
        stderr=b"".join(stderr_chunks),
        duration=time.perf_counter() - started,
        timed_out=timed_out,
    )


async def kill_process_group(proc: asyncio.subprocess.Process) -> None:
    """SIGKILL the child's process group and reap the child."""

    if proc.returncode is None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            with suppress(ProcessLookupError):
                proc.kill()
    await asyncio.shield(proc.wait())


__all__ = [
    "ProcessResult",
    "kill_process_group",
    "run_process",
]
