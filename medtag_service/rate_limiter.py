"""
Rate Limiting Module for the MedTag service

Per-user, per-endpoint fixed-window counters for the AI endpoints.

Each user gets a window that opens on their first request and lasts
window_seconds. Requests beyond max_requests inside that window are denied.
Because windows are fixed, a burst straddling a window boundary can admit
up to twice the nominal limit within a short span. That is accepted.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Tuple, Optional
import logging

from .errors import RateLimitError
from .structured_logging import mask_user_id

logger = logging.getLogger(__name__)


@dataclass
class RateLimitState:
    count: int
    reset_time: float


class RateLimiter:
    """
    Fixed-window request counter keyed by user id.
    The read-check-increment sequence runs under a lock.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize rate limiter.

        Args:
            max_requests: Maximum requests allowed per window
            window_seconds: Window length in seconds
            clock: Time source, injectable for tests
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self.states: dict[str, RateLimitState] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def is_allowed(self, identifier: str) -> Tuple[bool, int, int]:
        """
        Check and record a request for the given identifier.

        Args:
            identifier: User id

        Returns:
            Tuple of (is_allowed, requests_remaining, retry_after_seconds)
            retry_after_seconds is 0 if allowed, otherwise seconds until the window resets
        """
        with self._lock:
            now = self.clock()
            self._maybe_sweep(now)

            state = self.states.get(identifier)
            if state is None or now > state.reset_time:
                self.states[identifier] = RateLimitState(
                    count=1, reset_time=now + self.window_seconds
                )
                return True, self.max_requests - 1, 0

            if state.count >= self.max_requests:
                retry_after = int(state.reset_time - now) + 1
                return False, 0, retry_after

            state.count += 1
            return True, self.max_requests - state.count, 0

    def allow(self, identifier: str) -> bool:
        """Record a request and report whether it may proceed."""
        allowed, _, _ = self.is_allowed(identifier)
        return allowed

    def reset(self, identifier: str):
        """Reset rate limit for identifier."""
        with self._lock:
            self.states.pop(identifier, None)

    def _maybe_sweep(self, now: float):
        # Caller holds the lock. Runs at most once per window.
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        cutoff = now - self.window_seconds
        expired = [key for key, state in self.states.items() if state.reset_time < cutoff]
        for key in expired:
            del self.states[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired rate limit entries")


class RateLimitConfig:
    """Configuration for endpoint-specific rate limits."""

    def __init__(self, max_requests: int = 10, window_seconds: int = 60):
        self.max_requests = max_requests
        self.window_seconds = window_seconds


# Both AI endpoints share the same per-user budget by default
ENDPOINT_LIMITS = {
    "ai-diagnosis": RateLimitConfig(max_requests=10, window_seconds=60),
    "chatbot": RateLimitConfig(max_requests=10, window_seconds=60),
}


class RateLimitManager:
    """Manages rate limiters for all endpoints."""

    def __init__(
        self,
        limits: Optional[dict] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limits = limits if limits is not None else ENDPOINT_LIMITS
        self.clock = clock
        self.limiters: dict[str, RateLimiter] = {}
        self._lock = threading.Lock()

    def get_limiter(self, endpoint: str) -> RateLimiter:
        """Get or create rate limiter for an endpoint."""
        with self._lock:
            if endpoint not in self.limiters:
                config = self.limits.get(endpoint, RateLimitConfig())
                self.limiters[endpoint] = RateLimiter(
                    max_requests=config.max_requests,
                    window_seconds=config.window_seconds,
                    clock=self.clock,
                )
            return self.limiters[endpoint]

    def check_rate_limit(self, endpoint: str, user_id: str) -> dict:
        """
        Check if the user is within the rate limit for endpoint.

        Args:
            endpoint: Endpoint identifier (e.g., "ai-diagnosis")
            user_id: Authenticated user id

        Returns:
            Dictionary of rate limit headers to include in the response

        Raises:
            RateLimitError: 429 if the limit is exceeded
        """
        limiter = self.get_limiter(endpoint)
        allowed, remaining, retry_after = limiter.is_allowed(user_id)

        headers = {
            "X-RateLimit-Limit": str(limiter.max_requests),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Window": str(limiter.window_seconds),
        }

        if not allowed:
            headers["Retry-After"] = str(retry_after)
            logger.warning(
                f"Rate limit exceeded for {endpoint} by user {mask_user_id(user_id)}. "
                f"Limit: {limiter.max_requests}/{limiter.window_seconds}s. "
                f"Retry after: {retry_after}s"
            )
            raise RateLimitError(headers=headers)

        return headers


def limits_from_settings(max_requests: int, window_seconds: int) -> dict:
    """Build the endpoint limit table from configured values."""
    return {
        endpoint: RateLimitConfig(max_requests=max_requests, window_seconds=window_seconds)
        for endpoint in ENDPOINT_LIMITS
    }
