"""Unit tests for the dual token-bucket rate limiter."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from aca_runtime.constants import RATE_WINDOW_SECONDS
from aca_runtime.llm.errors import InvalidRequestError, RateLimitError
from aca_runtime.llm.rate_limiter import RateLimiter
from aca_runtime.llm.types import LLMRequest, RateLimitConfig
from conftest import FakeClock

FIXED_NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=UTC)


def _request(tokens: int) -> LLMRequest:
    return LLMRequest(prompt="p", estimated_tokens=tokens)


def _limiter(
    clock: FakeClock,
    *,
    requests: int,
    tokens: int,
    burst: int = 0,
    default_max_wait: float = 0.0,
) -> RateLimiter:
    return RateLimiter(
        RateLimitConfig(
            max_requests_per_minute=requests,
            max_tokens_per_minute=tokens,
            burst_allowance=burst,
        ),
        provider="test",
        default_max_wait=default_max_wait,
        clock=clock,
        wall_clock=lambda: FIXED_NOW,
        sleep=clock.sleep,
    )


class TestAdmission:
    async def test_second_request_is_refused_with_reset_time_within_window(
        self, fake_clock: FakeClock
    ) -> None:
        limiter = _limiter(fake_clock, requests=1, tokens=200)

        permit = await limiter.acquire_permit(_request(100))
        assert permit.tokens_consumed == 100
        assert permit.request_consumed is True

        with pytest.raises(RateLimitError) as excinfo:
            await limiter.acquire_permit(_request(100))

        reset_time = excinfo.value.reset_time
        assert reset_time is not None
        assert FIXED_NOW < reset_time <= FIXED_NOW + timedelta(seconds=RATE_WINDOW_SECONDS)
        assert str(excinfo.value).startswith("Rate limit exceeded")

    async def test_request_admitted_again_after_window_elapses(
        self, fake_clock: FakeClock
    ) -> None:
        limiter = _limiter(fake_clock, requests=1, tokens=200)
        await limiter.acquire_permit(_request(100))

        fake_clock.advance(RATE_WINDOW_SECONDS)

        permit = await limiter.acquire_permit(_request(100))
        assert permit.tokens_consumed == 100

    async def test_oversized_request_fails_immediately(self, fake_clock: FakeClock) -> None:
        limiter = _limiter(fake_clock, requests=10, tokens=100, burst=20)

        with pytest.raises(InvalidRequestError, match="exceeds the per-minute capacity 120"):
            await limiter.acquire_permit(_request(121))

        assert fake_clock.sleeps == []

    async def test_burst_allowance_raises_token_ceiling(self, fake_clock: FakeClock) -> None:
        limiter = _limiter(fake_clock, requests=10, tokens=100, burst=50)

        await limiter.acquire_permit(_request(150))
        with pytest.raises(RateLimitError):
            await limiter.acquire_permit(_request(1))

    async def test_zero_caps_disable_buckets(self, fake_clock: FakeClock) -> None:
        limiter = _limiter(fake_clock, requests=0, tokens=0)

        for _ in range(500):
            await limiter.acquire_permit(_request(1_000_000))

        status = limiter.status()
        assert status.requests_remaining is None
        assert status.tokens_remaining is None
        assert status.next_reset_time is None

    async def test_waits_within_max_wait_then_admits(self, fake_clock: FakeClock) -> None:
        limiter = _limiter(fake_clock, requests=60, tokens=0)
        for _ in range(60):
            await limiter.acquire_permit(_request(0))
        fake_clock.advance(58.0)

        permit = await limiter.acquire_permit(_request(0), max_wait=5.0)

        assert permit.request_consumed is True
        assert fake_clock.sleeps
        assert sum(fake_clock.sleeps) <= 5.0 + 1e-6

    async def test_default_max_wait_is_used_when_not_given(self, fake_clock: FakeClock) -> None:
        limiter = _limiter(fake_clock, requests=60, tokens=0, default_max_wait=2.0)
        for _ in range(60):
            await limiter.acquire_permit(_request(0))
        fake_clock.advance(59.0)

        await limiter.acquire_permit(_request(0))
        assert fake_clock.sleeps

    async def test_negative_max_wait_rejected(self, fake_clock: FakeClock) -> None:
        limiter = _limiter(fake_clock, requests=1, tokens=0)
        with pytest.raises(ValueError, match="max_wait"):
            await limiter.acquire_permit(_request(0), max_wait=-1.0)


class TestStatus:
    async def test_status_reports_remaining_and_reset(self, fake_clock: FakeClock) -> None:
        limiter = _limiter(fake_clock, requests=3, tokens=300)

        fresh = limiter.status()
        assert fresh.requests_remaining == 3
        assert fresh.tokens_remaining == 300
        assert fresh.next_reset_time is None

        await limiter.acquire_permit(_request(100))

        used = limiter.status()
        assert used.requests_remaining == 2
        assert used.tokens_remaining == 200
        assert used.next_reset_time is not None
        assert used.next_reset_time > FIXED_NOW

    async def test_concurrent_callers_do_not_overshoot(self, fake_clock: FakeClock) -> None:
        limiter = _limiter(fake_clock, requests=5, tokens=0)

        results = await asyncio.gather(
            *(limiter.acquire_permit(_request(0)) for _ in range(10)),
            return_exceptions=True,
        )

        admitted = [item for item in results if not isinstance(item, BaseException)]
        refused = [item for item in results if isinstance(item, RateLimitError)]
        assert len(admitted) == 5
        assert len(refused) == 5


_steps = st.lists(
    st.tuples(
        # Quarter-second gaps keep clock arithmetic exact.
        st.integers(min_value=0, max_value=120).map(lambda quarters: quarters / 4),
        st.integers(min_value=0, max_value=150),
    ),
    min_size=1,
    max_size=60,
)


@settings(max_examples=75, derandomize=True, deadline=None)
@given(
    requests=st.integers(min_value=1, max_value=6),
    tokens=st.integers(min_value=1, max_value=400),
    burst=st.integers(min_value=0, max_value=100),
    steps=_steps,
)
def test_no_sixty_second_window_exceeds_caps(
    requests: int,
    tokens: int,
    burst: int,
    steps: list[tuple[float, int]],
) -> None:
    clock = FakeClock()
    limiter = _limiter(clock, requests=requests, tokens=tokens, burst=burst)
    admitted: list[tuple[float, int]] = []

    async def _drive() -> None:
        for gap, estimate in steps:
            clock.advance(gap)
            try:
                await limiter.acquire_permit(_request(estimate))
            except (RateLimitError, InvalidRequestError):
                continue
            admitted.append((clock.now, estimate))

    asyncio.run(_drive())

    for end, _ in admitted:
        window = [item for item in admitted if end - RATE_WINDOW_SECONDS < item[0] <= end]
        assert len(window) <= requests
        assert sum(spent for _, spent in window) <= tokens + burst
