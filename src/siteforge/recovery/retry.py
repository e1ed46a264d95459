"""
Bounded retries with exponential backoff and jitter for external calls.

Built on tenacity's ``AsyncRetrying`` so that stop, wait and retry
decisions stay declarative while the policy keeps its own error
classification and retry-after handling.
"""

from __future__ import annotations

import asyncio
import errno
import random
import re
import socket
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

import aiohttp
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from siteforge.observability import increment

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# Symbolic codes raised by HTTP clients and SDKs that mirror POSIX names.
RETRYABLE_ERROR_CODES = frozenset(
    {"ECONNRESET", "ETIMEDOUT", "ENOTFOUND", "ECONNREFUSED", "EPIPE", "EAI_AGAIN", "EHOSTUNREACH"}
)

RETRYABLE_ERRNOS = frozenset(
    {errno.ECONNRESET, errno.ETIMEDOUT, errno.ECONNREFUSED, errno.EPIPE, errno.EHOSTUNREACH}
)

TIMEOUT_PATTERN = re.compile(r"timed?\s*out", re.IGNORECASE)

OVERLOADED_ERROR_TYPE = "overloaded_error"
OVERLOADED_STATUS = 529

OnRetry = Callable[[BaseException, int, float], Any]
ShouldRetry = Callable[[BaseException], bool]


def _status_of(error: BaseException) -> Optional[int]:
    for candidate in (
        getattr(error, "status", None),
        getattr(error, "status_code", None),
        getattr(getattr(error, "response", None), "status_code", None),
        getattr(getattr(error, "response", None), "status", None),
    ):
        if isinstance(candidate, int):
            return candidate
    return None


def _is_overloaded(error: BaseException) -> bool:
    if getattr(error, "type", None) == OVERLOADED_ERROR_TYPE:
        return True
    for attr in ("error", "body"):
        payload = getattr(error, attr, None)
        if isinstance(payload, Mapping):
            nested = payload.get("error")
            if payload.get("type") == OVERLOADED_ERROR_TYPE:
                return True
            if isinstance(nested, Mapping) and nested.get("type") == OVERLOADED_ERROR_TYPE:
                return True
    return _status_of(error) == OVERLOADED_STATUS


def is_retryable_error(error: BaseException) -> bool:
    """Classify an error as transient (worth retrying) or fatal."""
    status = _status_of(error)
    if status is not None and status in RETRYABLE_STATUS_CODES:
        return True

    if isinstance(error, (TimeoutError, ConnectionError, socket.gaierror, aiohttp.ClientConnectionError)):
        return True

    if isinstance(error, OSError) and error.errno in RETRYABLE_ERRNOS:
        return True

    code = getattr(error, "code", None)
    if isinstance(code, str) and code in RETRYABLE_ERROR_CODES:
        return True

    if TIMEOUT_PATTERN.search(str(error)):
        return True

    return _is_overloaded(error)


def _header(headers: Any, name: str) -> Optional[str]:
    if headers is None:
        return None
    getter = getattr(headers, "get", None)
    if getter is None:
        return None
    value = getter(name)
    if value is None:
        value = getter(name.title())
    return value


def retry_after_seconds(error: BaseException) -> Optional[float]:
    """Return the dependency's retry-after hint in seconds, if it sent one."""
    hint = getattr(error, "retry_after", None)
    if hint is None:
        hint = _header(getattr(error, "headers", None), "retry-after")
    if hint is None:
        hint = _header(getattr(getattr(error, "response", None), "headers", None), "retry-after")
    if hint is None:
        return None
    try:
        seconds = float(hint)
    except (TypeError, ValueError):
        # HTTP-date form is not supported
        return None
    return seconds if seconds >= 0 else None


class RetryPolicy:
    """
    Wraps one fallible async call with bounded retries.

    The delay slept after failed attempt ``k`` is
    ``min(base_delay * multiplier ** (k - 1) + jitter, max_delay)``, raised
    to the dependency's retry-after hint when one is present.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        multiplier: float = 2.0,
        max_jitter: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.max_jitter = max_jitter
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: Any, **kwargs: Any) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            multiplier=config.multiplier,
            max_jitter=config.max_jitter,
            **kwargs,
        )

    def compute_delay(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """Delay in seconds to sleep after failed attempt number ``attempt``."""
        exponential = self.base_delay * self.multiplier ** max(attempt - 1, 0)
        jitter = random.uniform(0, self.max_jitter) if self.max_jitter > 0 else 0.0
        delay = min(exponential + jitter, self.max_delay)

        hint = retry_after_seconds(error) if error is not None else None
        if hint is not None:
            delay = max(hint, delay)
        return delay

    def _wait(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        return self.compute_delay(retry_state.attempt_number, error)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        context: str = "unknown",
        on_retry: Optional[OnRetry] = None,
        should_retry: Optional[ShouldRetry] = None,
    ) -> T:
        """
        Run ``operation`` until it succeeds, fails with a non-retryable error
        or runs out of attempts. The last error is re-raised unchanged.

        ``should_retry`` replaces the default classification entirely.
        ``on_retry(error, attempt, delay)`` runs before each backoff sleep.
        """
        predicate = should_retry or is_retryable_error
        attempts = 0

        def _before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                "Retrying after failure",
                context=context,
                attempt=retry_state.attempt_number,
                max_attempts=self.max_attempts,
                delay=round(delay, 3),
                error=str(error),
                code=getattr(error, "code", None) or _status_of(error) if error else None,
            )
            increment("retry_attempts", labels={"context": context})
            if on_retry is not None and error is not None:
                try:
                    on_retry(error, retry_state.attempt_number, delay)
                except Exception as hook_error:
                    logger.warning("Retry hook failed", context=context, error=str(hook_error))

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(lambda e: isinstance(e, Exception) and predicate(e)),
            before_sleep=_before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        async def _attempt() -> T:
            nonlocal attempts
            attempts += 1
            return await operation()

        try:
            return await retrying(_attempt)
        except Exception as e:
            logger.warning(
                "All retry attempts exhausted",
                context=context,
                attempts=attempts,
                retryable=predicate(e),
                error=str(e),
            )
            raise
