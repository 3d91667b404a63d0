"""Cooldown circuit breaker behavior."""

from __future__ import annotations

import threading

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from castor.errors import QuotaError
from castor.ratelimit import MIN_COOLDOWN_S, RateLimiter
from tests.helpers import FakeClock

pytestmark = pytest.mark.unit


def test_fresh_limiter_is_open(limiter: RateLimiter) -> None:
    assert limiter.is_rate_limited() is False
    assert limiter.remaining_cooldown_s() == 0.0
    limiter.check()


def test_arm_uses_minimum_window(limiter: RateLimiter, clock: FakeClock) -> None:
    end = limiter.arm_cooldown()
    assert end == clock.now + MIN_COOLDOWN_S
    assert limiter.is_rate_limited() is True
    assert limiter.remaining_cooldown_s() == MIN_COOLDOWN_S


def test_short_retry_after_is_raised_to_minimum(limiter: RateLimiter) -> None:
    limiter.arm_cooldown(5.0)
    assert limiter.remaining_cooldown_s() == MIN_COOLDOWN_S


def test_long_retry_after_is_honored(limiter: RateLimiter) -> None:
    limiter.arm_cooldown(90.0)
    assert limiter.remaining_cooldown_s() == 90.0


def test_cooldown_expires_with_clock(limiter: RateLimiter, clock: FakeClock) -> None:
    limiter.arm_cooldown()
    clock.advance(MIN_COOLDOWN_S - 0.5)
    assert limiter.is_rate_limited() is True
    clock.advance(0.5)
    assert limiter.is_rate_limited() is False
    assert limiter.remaining_cooldown_s() == 0.0


def test_shorter_rearm_never_shortens_active_cooldown(limiter: RateLimiter) -> None:
    limiter.arm_cooldown(120.0)
    limiter.arm_cooldown(30.0)
    assert limiter.remaining_cooldown_s() == 120.0


def test_check_raises_quota_error_with_remaining(
    limiter: RateLimiter, clock: FakeClock
) -> None:
    limiter.arm_cooldown(60.0)
    clock.advance(18.0)

    with pytest.raises(QuotaError) as exc_info:
        limiter.check()

    err = exc_info.value
    assert err.retry_after_s == 42.0
    assert "try again in 42s" in str(err)
    assert err.phase == "cooldown"


def test_reset_closes_window(limiter: RateLimiter) -> None:
    limiter.arm_cooldown()
    limiter.reset()
    assert limiter.is_rate_limited() is False


def test_concurrent_arms_keep_the_latest_end() -> None:
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    windows = [30.0, 45.0, 300.0, 60.0, 31.0] * 20

    threads = [threading.Thread(target=limiter.arm_cooldown, args=(w,)) for w in windows]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert limiter.active_until == clock.now + 300.0


@given(st.lists(st.one_of(st.none(), st.floats(min_value=0, max_value=3600)), min_size=1))
@settings(max_examples=50, deadline=None, derandomize=True)
def test_active_until_is_monotonic(retry_afters: list[float | None]) -> None:
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    previous = limiter.active_until
    for value in retry_afters:
        end = limiter.arm_cooldown(value)
        assert end >= previous
        assert end >= clock.now + MIN_COOLDOWN_S
        previous = end
        clock.advance(1.0)
