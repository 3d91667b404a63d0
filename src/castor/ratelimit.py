"""Process-wide rate-limit cooldown (fail-fast circuit breaker).

Not a sliding-window limiter: once the upstream signals exhaustion on the
last candidate model, every call fails fast until the window passes.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
import threading
import time

from castor.errors import QuotaError

logger = logging.getLogger(__name__)

MIN_COOLDOWN_S = 30.0


@dataclass
class RateLimiter:
    """Cooldown gate shared by every orchestrated call.

    ``active_until`` is epoch seconds. Writes merge with ``max`` so a later,
    shorter cooldown never cuts an active one short.
    """

    clock: Callable[[], float] = time.time
    min_cooldown_s: float = MIN_COOLDOWN_S
    active_until: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def is_rate_limited(self) -> bool:
        """Return True while the cooldown window is open."""
        return self.clock() < self.active_until

    def remaining_cooldown_s(self) -> float:
        """Seconds left in the current cooldown, never negative."""
        return max(0.0, self.active_until - self.clock())

    def arm_cooldown(self, retry_after_s: float | None = None) -> float:
        """Open (or extend) the cooldown window; return its effective end."""
        window = max(self.min_cooldown_s, retry_after_s or self.min_cooldown_s)
        with self._lock:
            candidate = self.clock() + window
            if candidate > self.active_until:
                self.active_until = candidate
            end = self.active_until
        logger.warning("Rate limited; cooling down for %ds", round(window))
        return end

    def reset(self) -> None:
        """Close the cooldown window immediately."""
        with self._lock:
            self.active_until = 0.0

    def check(self) -> None:
        """Raise QuotaError when the cooldown is active."""
        if not self.is_rate_limited():
            return
        remaining = self.remaining_cooldown_s()
        logger.info(
            "Blocked by rate limit cooldown (%ds remaining)", round(remaining)
        )
        raise QuotaError(
            f"Rate limited; try again in {round(remaining)}s",
            hint="The upstream quota is exhausted; calls fail fast until the cooldown ends.",
            retry_after_s=remaining,
            phase="cooldown",
        )


#: Shared by the module-level ``castor.generate`` helpers.
default_rate_limiter = RateLimiter()
