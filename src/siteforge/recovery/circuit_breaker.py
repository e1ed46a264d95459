"""
Per-dependency circuit breakers for SiteForge.

State machine::

    CLOSED    --[failure_threshold consecutive failures]--> OPEN
    OPEN      --[reset_timeout elapsed since last failure]--> HALF_OPEN
    HALF_OPEN --[trial succeeds]--> CLOSED
    HALF_OPEN --[trial fails]-----> OPEN
"""
from __future__ import annotations

import asyncio
import math
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

import structlog

from siteforge.observability import gauge, increment

logger = structlog.get_logger(__name__)

T = TypeVar("T")

CIRCUIT_OPEN_CODE = "CIRCUIT_OPEN"


class CircuitBreakerState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing recovery


_STATE_GAUGE_VALUES = {
    CircuitBreakerState.CLOSED: 0,
    CircuitBreakerState.HALF_OPEN: 1,
    CircuitBreakerState.OPEN: 2,
}


class CircuitOpenError(Exception):
    """Raised instead of calling a dependency whose circuit is open."""

    code = CIRCUIT_OPEN_CODE

    def __init__(self, name: str, remaining: float) -> None:
        self.circuit_breaker = name
        self.remaining = max(0.0, remaining)
        super().__init__(
            f"Circuit breaker OPEN for {name} - service unavailable. "
            f"Resets in {math.ceil(self.remaining)}s"
        )


class CircuitBreaker:
    """
    Stops calling a failing dependency for a cooldown window.

    State checks and transitions happen under an ``asyncio.Lock``; the lock
    is released while the wrapped operation runs so concurrent jobs never
    queue behind a slow call. In HALF_OPEN only one trial call is admitted
    at a time.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._rejection_count = 0
        self._last_failure_time: Optional[float] = None
        self._trial_in_flight = False

        self._lock = asyncio.Lock()
        gauge("circuit_state", _STATE_GAUGE_VALUES[self._state], labels={"dependency": self.name})

    @classmethod
    def from_config(cls, name: str, config: Any, **kwargs: Any) -> "CircuitBreaker":
        return cls(name, failure_threshold=config.failure_threshold, reset_timeout=config.reset_timeout, **kwargs)

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` through the breaker or raise :class:`CircuitOpenError`."""
        await self._before_call()

        try:
            result = await operation()
        except Exception:
            await self.record_failure()
            raise
        except BaseException:
            # Cancelled trial: free the slot without judging the dependency.
            async with self._lock:
                self._trial_in_flight = False
            raise

        await self.record_success()
        return result

    async def _before_call(self) -> None:
        async with self._lock:
            if self._state is CircuitBreakerState.CLOSED:
                return

            if self._state is CircuitBreakerState.OPEN:
                remaining = self._remaining_cooldown()
                if remaining > 0:
                    self._reject(remaining)
                logger.info("Circuit half-opening, testing service", name=self.name)
                self._transition(CircuitBreakerState.HALF_OPEN)

            if self._trial_in_flight:
                self._reject(0.0)
            self._trial_in_flight = True

    def _reject(self, remaining: float) -> None:
        self._rejection_count += 1
        increment("circuit_rejections", labels={"dependency": self.name})
        raise CircuitOpenError(self.name, remaining)

    async def record_success(self) -> None:
        """Record a successful execution."""
        async with self._lock:
            self._trial_in_flight = False
            self._success_count += 1

            if self._state is CircuitBreakerState.OPEN:
                # Admitted before the circuit opened; too late to count.
                return
            if self._state is CircuitBreakerState.HALF_OPEN:
                logger.info(
                    "Circuit closing - service recovered",
                    name=self.name,
                    previous_failures=self._failure_count,
                )
                self._transition(CircuitBreakerState.CLOSED)
            self._failure_count = 0

    async def record_failure(self) -> None:
        """Record a failed execution."""
        async with self._lock:
            self._trial_in_flight = False
            self._failure_count += 1
            self._last_failure_time = self._clock()

            if self._state is CircuitBreakerState.HALF_OPEN:
                logger.warning("Circuit re-opening - test request failed", name=self.name)
                self._transition(CircuitBreakerState.OPEN)
            elif self._state is CircuitBreakerState.CLOSED and self._failure_count >= self.failure_threshold:
                logger.warning(
                    "Circuit opening - failure threshold reached",
                    name=self.name,
                    failures=self._failure_count,
                    threshold=self.failure_threshold,
                    reset_timeout=self.reset_timeout,
                )
                self._transition(CircuitBreakerState.OPEN)

    def get_state(self) -> Dict[str, Any]:
        """Snapshot of the breaker for health reporting."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "rejection_count": self._rejection_count,
            "last_failure_time": self._last_failure_time,
            "failure_threshold": self.failure_threshold,
            "reset_timeout": self.reset_timeout,
            "time_until_retry": self._remaining_cooldown() if self._state is CircuitBreakerState.OPEN else 0.0,
        }

    async def reset(self) -> None:
        """Manually reset the circuit breaker."""
        async with self._lock:
            self._transition(CircuitBreakerState.CLOSED)
            self._failure_count = 0
            self._last_failure_time = None
            self._trial_in_flight = False
            logger.info("Circuit manually reset", name=self.name)

    def _remaining_cooldown(self) -> float:
        if self._last_failure_time is None:
            return 0.0
        elapsed = self._clock() - self._last_failure_time
        return max(0.0, self.reset_timeout - elapsed)

    def _transition(self, state: CircuitBreakerState) -> None:
        self._state = state
        gauge("circuit_state", _STATE_GAUGE_VALUES[state], labels={"dependency": self.name})


class CircuitBreakerRegistry:
    """Holds one breaker per named dependency."""

    def __init__(
        self,
        breakers: Optional[Mapping[str, CircuitBreaker]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._breakers: Dict[str, CircuitBreaker] = dict(breakers or {})
        self._clock = clock

    @classmethod
    def from_config(cls, configs: Mapping[str, Any], clock: Callable[[], float] = time.time) -> "CircuitBreakerRegistry":
        return cls(
            {name: CircuitBreaker.from_config(name, cfg, clock=clock) for name, cfg in configs.items()},
            clock=clock,
        )

    def register(self, breaker: CircuitBreaker) -> CircuitBreaker:
        self._breakers[breaker.name] = breaker
        return breaker

    def get(self, name: str) -> CircuitBreaker:
        """Get or create a breaker with default thresholds."""
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(name, clock=self._clock)
        return self._breakers[name]

    def __contains__(self, name: object) -> bool:
        return name in self._breakers

    def get_all_states(self) -> Dict[str, Dict[str, Any]]:
        return {name: breaker.get_state() for name, breaker in self._breakers.items()}

    async def reset_all(self) -> None:
        for breaker in self._breakers.values():
            await breaker.reset()
