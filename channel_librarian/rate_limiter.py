"""Process-wide throttling for outbound Slack and model API calls."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from .error_handler import RateLimitExceeded

logger = logging.getLogger(__name__)

SLACK_API = "slack"
LLM_API = "llm"

DEFAULT_LIMITS = {
    SLACK_API: {"max_requests_per_minute": 100, "min_delay_seconds": 0.1, "window_seconds": 60.0},
    LLM_API: {"max_requests_per_minute": 50, "min_delay_seconds": 1.0, "window_seconds": 60.0},
}


@dataclass
class RateLimitPolicy:
    max_requests_per_window: int = 50
    min_delay_seconds: float = 1.0
    window_seconds: float = 60.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RateLimitPolicy":
        return cls(
            max_requests_per_window=int(data.get("max_requests_per_minute", 50)),
            min_delay_seconds=float(data.get("min_delay_seconds", 1.0)),
            window_seconds=float(data.get("window_seconds", 60.0)),
        )


@dataclass
class RateLimiterState:
    requests_in_window: int = 0
    window_started_at: float | None = None
    last_request_at: float | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class RateLimiter:
    """
    Fixed-window call budget plus a minimum spacing between calls, tracked
    independently per API class.

    The window resets when an ``acquire`` sees that it has elapsed. Hitting the
    ceiling fails fast with ``RateLimitExceeded`` instead of waiting.
    """

    def __init__(
        self,
        policies: dict[str, RateLimitPolicy] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.policies: dict[str, RateLimitPolicy] = {
            name: RateLimitPolicy.from_dict(limits) for name, limits in DEFAULT_LIMITS.items()
        }
        self.policies.update(policies or {})
        self.clock = clock
        self.sleep = sleep
        self._states: dict[str, RateLimiterState] = {}
        self._states_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: dict[str, Any], **kwargs: Any) -> "RateLimiter":
        limits = config.get("rate_limits", {})
        policies = {name: RateLimitPolicy.from_dict(values) for name, values in limits.items()}
        return cls(policies=policies, **kwargs)

    def _state_for(self, api_class: str) -> RateLimiterState:
        with self._states_lock:
            state = self._states.get(api_class)
            if state is None:
                state = RateLimiterState()
                self._states[api_class] = state
            return state

    def _policy_for(self, api_class: str) -> RateLimitPolicy:
        policy = self.policies.get(api_class)
        if policy is None:
            policy = RateLimitPolicy()
            self.policies[api_class] = policy
        return policy

    def acquire(self, api_class: str) -> None:
        policy = self._policy_for(api_class)
        state = self._state_for(api_class)

        with state.lock:
            now = self.clock()
            if state.window_started_at is None or now - state.window_started_at >= policy.window_seconds:
                state.window_started_at = now
                state.requests_in_window = 0

            if state.requests_in_window >= policy.max_requests_per_window:
                retry_after = max(0.0, policy.window_seconds - (now - state.window_started_at))
                logger.warning(
                    "Rate limit ceiling reached for %s (%d calls in window)",
                    api_class,
                    state.requests_in_window,
                )
                raise RateLimitExceeded(
                    "Rate limit exceeded. Please try again in a minute.",
                    api_name=api_class,
                    retry_after=retry_after,
                    details={"requests_in_window": state.requests_in_window},
                )

            if state.last_request_at is not None:
                wait_for = state.last_request_at + policy.min_delay_seconds - now
                if wait_for > 0:
                    self.sleep(wait_for)
                    now = self.clock()

            state.requests_in_window += 1
            state.last_request_at = now

    def snapshot(self, api_class: str) -> dict[str, Any]:
        state = self._state_for(api_class)
        with state.lock:
            return {
                "requests_in_window": state.requests_in_window,
                "window_started_at": state.window_started_at,
                "last_request_at": state.last_request_at,
            }

    def reset(self) -> None:
        with self._states_lock:
            self._states.clear()


_default_limiter: RateLimiter | None = None
_default_lock = threading.Lock()


def get_rate_limiter(config: dict[str, Any] | None = None) -> RateLimiter:
    """Return the process-lifetime limiter, creating it from config on first use."""
    global _default_limiter
    with _default_lock:
        if _default_limiter is None:
            _default_limiter = RateLimiter.from_config(config or {})
        return _default_limiter
