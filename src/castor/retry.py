"""Model x attempt retry controller with classified failover.

Design goals:
- Explicit state (policy + model/attempt counters)
- Decisions read ``APIError.kind``; no substring matching here
- Time and randomness are injectable so every branch is testable
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
from typing import TYPE_CHECKING, TypeVar

from castor.classify import extract_retry_after_s, wrap_transport_error
from castor.errors import APIError, ErrorKind, InternalError, NetworkError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from castor.ratelimit import RateLimiter

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Per-model attempt budget, backoff shape, and per-attempt timeouts."""

    #: Attempts per model: the initial call plus retries.
    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    #: Upper bound of the uniform jitter added to every backoff.
    jitter_s: float = 1.0
    request_timeout_s: float = 45.0
    #: Timeout for requests that carry uploaded or referenced media.
    media_request_timeout_s: float = 120.0
    #: Upper bound on the candidate chain length.
    max_models: int = 4
    #: Called with (attempt index, error) before each backoff sleep.
    on_retry: Callable[[int, BaseException], None] | None = None
    #: Called with (model, attempt index, error) after every failed attempt,
    #: whichever way the failure is handled.
    on_attempt_failed: Callable[[str, int, APIError], None] | None = None

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_attempts < 1:
            raise ValueError("RetryPolicy.max_attempts must be >= 1")
        if self.base_delay_s < 0:
            raise ValueError("RetryPolicy.base_delay_s must be >= 0")
        if self.max_delay_s < 0:
            raise ValueError("RetryPolicy.max_delay_s must be >= 0")
        if self.jitter_s < 0:
            raise ValueError("RetryPolicy.jitter_s must be >= 0")
        if self.request_timeout_s <= 0 or self.media_request_timeout_s <= 0:
            raise ValueError("RetryPolicy timeouts must be > 0")
        if self.max_models < 1:
            raise ValueError("RetryPolicy.max_models must be >= 1")


def compute_backoff_delay(
    attempt: int,
    *,
    base_delay_s: float = 1.0,
    max_delay_s: float = 30.0,
    jitter_s: float = 1.0,
    rand: Callable[[], float] = random.random,
) -> float:
    """Exponential backoff with additive jitter, capped at *max_delay_s*.

    ``attempt`` is zero-based: the sleep after the first failure uses 0.
    """
    exponential = base_delay_s * (2 ** max(0, attempt))
    return min(exponential + rand() * jitter_s, max_delay_s)


async def run_candidate_chain(
    call: Callable[[str], Awaitable[T]],
    chain: Sequence[str],
    *,
    policy: RetryPolicy,
    rate_limiter: RateLimiter,
    timeout_s: float,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    rand: Callable[[], float] = random.random,
) -> tuple[T, str, int]:
    """Drive *call* across the chain until one model answers.

    Returns ``(result, model, total_attempts)``. Quota and access errors
    move to the next model at once; transient errors back off and retry the
    same model; anything else aborts the whole operation.
    """
    if not chain:
        raise InternalError("Candidate chain is empty")

    last_exc: APIError | None = None
    total_attempts = 0
    last_index = len(chain) - 1

    for model_index, model in enumerate(chain):
        for attempt in range(policy.max_attempts):
            rate_limiter.check()
            total_attempts += 1
            logger.debug(
                "Trying %s (attempt %d/%d)", model, attempt + 1, policy.max_attempts
            )
            try:
                async with asyncio.timeout(timeout_s):
                    result = await call(model)
                return result, model, total_attempts
            except asyncio.CancelledError:
                raise
            except TimeoutError as exc:
                err: APIError = NetworkError(
                    f"Request to {model} timed out after {timeout_s:g}s",
                    model=model,
                    phase="generate",
                )
                err.__cause__ = exc
            except Exception as exc:
                err = wrap_transport_error(exc, phase="generate", model=model)
                if err is not exc:
                    err.__cause__ = exc

            last_exc = err
            kind = err.kind
            if policy.on_attempt_failed is not None:
                policy.on_attempt_failed(model, attempt, err)

            if kind.triggers_failover:
                logger.warning(
                    "%s failed with %s error; switching model", model, kind.value
                )
                if model_index == last_index and kind is ErrorKind.QUOTA:
                    rate_limiter.arm_cooldown(extract_retry_after_s(err))
                break

            if kind.is_transient:
                if attempt + 1 < policy.max_attempts:
                    delay = compute_backoff_delay(
                        attempt,
                        base_delay_s=policy.base_delay_s,
                        max_delay_s=policy.max_delay_s,
                        jitter_s=policy.jitter_s,
                        rand=rand,
                    )
                    if policy.on_retry is not None:
                        policy.on_retry(attempt, err)
                    logger.info(
                        "%s error on %s; retrying in %.2fs", kind.value, model, delay
                    )
                    await sleep(delay)
                    continue
                logger.warning("Exhausted retries for %s; moving to next model", model)
                break

            raise err

    logger.error("All candidate models exhausted: %s", ", ".join(chain))
    if last_exc is None:  # pragma: no cover
        raise InternalError("Candidate chain exhausted without an exception")
    raise last_exc
