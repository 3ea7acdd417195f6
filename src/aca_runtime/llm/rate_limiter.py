"""
aca-runtime — dual token-bucket rate limiter

File: src/aca_runtime/llm/rate_limiter.py
Last updated: 2026-10-18

Purpose
- Admit or refuse LLM requests so neither the per-minute request cap nor the
  per-minute token cap is exceeded.

What should be included in this file
- Two continuously refilling buckets (requests, tokens). ``burst_allowance`` raises
  the token bucket ceiling, not its refill rate.
- A trailing 60-second admission ledger so any 60 s window admits at most
  ``max_requests_per_minute`` requests and ``max_tokens + burst`` tokens.
- Gating semantics: a caller either gets a ``Permit`` or a typed error. Waiting is
  bounded by the caller-side ``max_wait`` deadline.

Functional requirements
- Requests that can never fit fail immediately with ``InvalidRequestError``.
- Refusals carry ``reset_time``: the wall-clock time of the earliest admission.

Non-functional requirements
- The internal lock is held only for the non-suspending bucket update.
- Time sources and sleep are injectable for deterministic tests.
"""

from __future__ import annotations

import asyncio
import math
import threading
import time
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Final, TypeAlias

import structlog

from aca_runtime.constants import RATE_WINDOW_SECONDS
from aca_runtime.llm.errors import InvalidRequestError, RateLimitError
from aca_runtime.llm.types import Permit, RateLimitConfig, RateLimitStatus

if TYPE_CHECKING:
    from aca_runtime.llm.types import LLMRequest

SleepFn: TypeAlias = Callable[[float], Awaitable[None]]
ClockFn: TypeAlias = Callable[[], float]
WallClockFn: TypeAlias = Callable[[], datetime]

# Float slack for refill arithmetic; a bucket within this of the needed level admits.
_EPSILON: Final[float] = 1e-9


def _utc_now() -> datetime:
    return datetime.now(UTC)


class RateLimiter:
    """Process-local admission control shared by concurrent requests to one provider."""

    def __init__(
        self,
        config: RateLimitConfig,
        *,
        provider: str = "provider",
        default_max_wait: float = 0.0,
        clock: ClockFn = time.monotonic,
        wall_clock: WallClockFn = _utc_now,
        sleep: SleepFn = asyncio.sleep,
        logger: Any | None = None,
    ) -> None:
        if default_max_wait < 0:
            raise ValueError("default_max_wait must be >= 0")
        self._config = config
        self._provider = provider
        self._default_max_wait = float(default_max_wait)
        self._clock = clock
        self._wall_clock = wall_clock
        self._sleep = sleep
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        self._lock = threading.Lock()
        self._request_level = float(config.max_requests_per_minute)
        self._token_level = float(config.token_capacity)
        self._last_refill = clock()
        self._ledger: deque[tuple[float, int]] = deque()
        self._ledger_tokens = 0

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    async def acquire_permit(
        self, request: LLMRequest, *, max_wait: float | None = None
    ) -> Permit:
        """Return a permit for ``request`` or raise ``RateLimitError``/``InvalidRequestError``.

        ``max_wait`` is the caller-side deadline in seconds; when the computed wait
        exceeds what is left of it the call fails immediately instead of sleeping.
        """

        tokens = request.estimated_tokens or 0
        capacity = self._config.token_capacity
        if self._config.max_tokens_per_minute > 0 and tokens > capacity:
            raise InvalidRequestError(
                f"estimated_tokens {tokens} exceeds the per-minute capacity {capacity}",
                provider=self._provider,
            )

        budget = self._default_max_wait if max_wait is None else float(max_wait)
        if budget < 0:
            raise ValueError("max_wait must be >= 0")
        deadline = self._clock() + budget

        while True:
            with self._lock:
                now = self._clock()
                wait = self._try_admit(tokens, now)
            if wait <= 0:
                self._logger.debug(
                    "rate_limit_permit_granted",
                    provider=self._provider,
                    request_id=str(request.id),
                    tokens=tokens,
                )
                return Permit(tokens_consumed=tokens, request_consumed=True)

            if now + wait > deadline + _EPSILON:
                reset_time = self._wall_clock() + timedelta(seconds=wait)
                self._logger.info(
                    "rate_limit_rejected",
                    provider=self._provider,
                    request_id=str(request.id),
                    tokens=tokens,
                    wait_seconds=round(wait, 3),
                )
                raise RateLimitError(
                    f"retry after {wait:.1f}s",
                    provider=self._provider,
                    reset_time=reset_time,
                )

            self._logger.debug(
                "rate_limit_waiting",
                provider=self._provider,
                request_id=str(request.id),
                wait_seconds=round(wait, 3),
            )
            await self._sleep(wait)

    def status(self) -> RateLimitStatus:
        with self._lock:
            now = self._clock()
            self._refill(now)
            self._prune(now)
            requests_remaining = self._requests_remaining()
            tokens_remaining = self._tokens_remaining()
            until_full = self._seconds_until_full()

        return RateLimitStatus(
            requests_remaining=requests_remaining,
            tokens_remaining=tokens_remaining,
            next_reset_time=(
                self._wall_clock() + timedelta(seconds=until_full) if until_full > 0 else None
            ),
        )

    def _try_admit(self, tokens: int, now: float) -> float:
        """Admit and return ``0.0``, or return the seconds until admission is possible."""

        self._refill(now)
        self._prune(now)
        wait = max(self._request_wait(now), self._token_wait(tokens, now))
        if wait > _EPSILON:
            return wait

        if self._config.max_requests_per_minute > 0:
            self._request_level = max(0.0, self._request_level - 1.0)
        if self._config.max_tokens_per_minute > 0:
            self._token_level = max(0.0, self._token_level - tokens)
        self._ledger.append((now, tokens))
        self._ledger_tokens += tokens
        return 0.0

    def _request_wait(self, now: float) -> float:
        cap = self._config.max_requests_per_minute
        if cap == 0:
            return 0.0
        bucket_wait = 0.0
        if self._request_level < 1.0 - _EPSILON:
            bucket_wait = (1.0 - self._request_level) * RATE_WINDOW_SECONDS / cap
        window_wait = 0.0
        if len(self._ledger) >= cap:
            # The (len - cap)th oldest admission must leave the window first.
            stamp, _ = self._ledger[len(self._ledger) - cap]
            window_wait = stamp + RATE_WINDOW_SECONDS - now
        return max(bucket_wait, window_wait)

    def _token_wait(self, tokens: int, now: float) -> float:
        rate = self._config.max_tokens_per_minute
        if rate == 0 or tokens == 0:
            return 0.0
        bucket_wait = 0.0
        if self._token_level < tokens - _EPSILON:
            bucket_wait = (tokens - self._token_level) * RATE_WINDOW_SECONDS / rate
        window_wait = 0.0
        excess = self._ledger_tokens + tokens - self._config.token_capacity
        if excess > 0:
            for stamp, spent in self._ledger:
                excess -= spent
                if excess <= 0:
                    window_wait = stamp + RATE_WINDOW_SECONDS - now
                    break
        return max(bucket_wait, window_wait)

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill
        if elapsed <= 0:
            return
        self._last_refill = now
        request_cap = self._config.max_requests_per_minute
        if request_cap > 0:
            self._request_level = min(
                float(request_cap),
                self._request_level + elapsed * request_cap / RATE_WINDOW_SECONDS,
            )
        token_rate = self._config.max_tokens_per_minute
        if token_rate > 0:
            self._token_level = min(
                float(self._config.token_capacity),
                self._token_level + elapsed * token_rate / RATE_WINDOW_SECONDS,
            )

    def _prune(self, now: float) -> None:
        horizon = now - RATE_WINDOW_SECONDS
        while self._ledger and self._ledger[0][0] <= horizon:
            _, spent = self._ledger.popleft()
            self._ledger_tokens -= spent

    def _requests_remaining(self) -> int | None:
        cap = self._config.max_requests_per_minute
        if cap == 0:
            return None
        by_window = cap - len(self._ledger)
        return max(0, min(math.floor(self._request_level + _EPSILON), by_window))

    def _tokens_remaining(self) -> int | None:
        if self._config.max_tokens_per_minute == 0:
            return None
        by_window = self._config.token_capacity - self._ledger_tokens
        return max(0, min(math.floor(self._token_level + _EPSILON), by_window))

    def _seconds_until_full(self) -> float:
        waits = [0.0]
        request_cap = self._config.max_requests_per_minute
        if request_cap > 0:
            waits.append(
                (request_cap - self._request_level) * RATE_WINDOW_SECONDS / request_cap
            )
        token_rate = self._config.max_tokens_per_minute
        if token_rate > 0:
            waits.append(
                (self._config.token_capacity - self._token_level)
                * RATE_WINDOW_SECONDS
                / token_rate
            )
        return max(waits)


__all__ = [
    "ClockFn",
    "RateLimiter",
    "SleepFn",
    "WallClockFn",
]
