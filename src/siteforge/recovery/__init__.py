"""Retry and circuit-breaking primitives for calls to external services."""

from .circuit_breaker import (
    CIRCUIT_OPEN_CODE,
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitBreakerState,
    CircuitOpenError,
)
from .retry import RetryPolicy, is_retryable_error, retry_after_seconds

__all__ = [
    "CIRCUIT_OPEN_CODE",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitBreakerState",
    "CircuitOpenError",
    "RetryPolicy",
    "is_retryable_error",
    "retry_after_seconds",
]
