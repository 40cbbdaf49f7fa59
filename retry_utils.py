"""Retry helpers for completion-service calls.

Provides:
- classify_completion_error: Map transport exceptions onto the error taxonomy
- exponential_backoff_delay: Calculate delay with jitter
- CircuitBreaker: Opens after consecutive failures, auto-recovers
"""

import concurrent.futures
import logging
import os
import random
import threading
import time
from typing import Callable, Optional

from litellm.exceptions import (
    APIConnectionError,
    InternalServerError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

from errors import (
    AI_QUOTA_EXCEEDED,
    AI_TIMEOUT,
    NETWORK_ERROR,
    UNKNOWN_ERROR,
    NutritionApiError,
)

logger = logging.getLogger(__name__)

# Configuration (can be overridden via environment variables)
DEFAULT_BASE_DELAY_SECONDS = float(os.getenv("COMPLETION_RETRY_BASE_DELAY", "0.5"))
DEFAULT_MAX_DELAY_SECONDS = float(os.getenv("COMPLETION_RETRY_MAX_DELAY", "30.0"))
DEFAULT_EXPONENTIAL_BASE = 2.0
DEFAULT_JITTER_FACTOR = 0.1
DEFAULT_FAILURE_THRESHOLD = int(os.getenv("COMPLETION_CIRCUIT_FAILURE_THRESHOLD", "5"))
DEFAULT_RECOVERY_TIMEOUT = float(os.getenv("COMPLETION_CIRCUIT_RECOVERY_TIMEOUT", "60.0"))

QUOTA_STATUS_CODES = {402, 429}
NETWORK_STATUS_CODES = {500, 502, 503, 504}
TIMEOUT_KEYWORDS = ("timeout", "timed out", "deadline exceeded")
QUOTA_KEYWORDS = ("rate limit", "quota", "insufficient_quota", "too many requests")
NETWORK_KEYWORDS = ("connection", "network", "unreachable", "502", "503", "504")


class CircuitBreakerOpen(Exception):
    """Raised when circuit breaker is open and requests are blocked."""

    pass


class CircuitBreaker:
    """Simple thread-safe circuit breaker.

    Opens after `failure_threshold` consecutive failures.
    Half-opens after `recovery_timeout` seconds.
    Closes after first success in half-open state.

    States:
    - closed: Normal operation, requests go through
    - open: Requests blocked, waiting for recovery timeout
    - half-open: Testing if service recovered, one request allowed
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        recovery_timeout: float = DEFAULT_RECOVERY_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            name: Identifier for logging
            failure_threshold: Open after this many consecutive failures
            recovery_timeout: Seconds before trying again after opening
            clock: Time source (injectable for tests)
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half-open
        self._clock = clock
        self._lock = threading.Lock()

    def record_failure(self) -> None:
        """Record a failure and potentially open the circuit."""
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()

            if self.failure_count >= self.failure_threshold and self.state != "open":
                self.state = "open"
                logger.warning(
                    "⚡ Circuit breaker '%s' OPENED after %d failures",
                    self.name,
                    self.failure_count,
                )

    def record_success(self) -> None:
        """Record a success and close the circuit if half-open."""
        with self._lock:
            if self.state == "half-open":
                logger.info("⚡ Circuit breaker '%s' CLOSED after success", self.name)
            self.failure_count = 0
            self.state = "closed"

    def can_execute(self) -> bool:
        """Check if requests can proceed.

        Returns:
            True if requests are allowed, False if blocked
        """
        with self._lock:
            if self.state == "closed":
                return True

            if self.state == "open":
                elapsed = self._clock() - (self.last_failure_time or 0)
                if elapsed >= self.recovery_timeout:
                    self.state = "half-open"
                    logger.info("⚡ Circuit breaker '%s' HALF-OPEN, testing...", self.name)
                    return True
                return False

            # half-open: allow requests through until one resolves the state
            return True

    def reset(self) -> None:
        """Manually reset the circuit breaker to closed state."""
        with self._lock:
            self.failure_count = 0
            self.state = "closed"
            self.last_failure_time = None


def exponential_backoff_delay(
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
    exponential_base: float = DEFAULT_EXPONENTIAL_BASE,
    jitter_factor: float = DEFAULT_JITTER_FACTOR,
) -> float:
    """Calculate delay with exponential backoff and jitter.

    Formula: min(base_delay * (exponential_base ** attempt), max_delay) + jitter

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Initial delay in seconds (0 disables waiting)
        max_delay: Maximum delay cap in seconds
        exponential_base: Base for exponential growth (default 2)
        jitter_factor: Random jitter as fraction of delay (default 0.1)

    Returns:
        Delay in seconds to wait before next attempt
    """
    if base_delay <= 0:
        return 0.0
    delay = min(base_delay * (exponential_base**attempt), max_delay)
    jitter = delay * jitter_factor * random.uniform(-1, 1)
    return max(0.0, delay + jitter)


def classify_completion_error(exc: BaseException) -> NutritionApiError:
    """Translate a completion-service failure into a typed NutritionApiError.

    Typed litellm exceptions are checked first, then HTTP status codes, then
    message keywords. Unrecognized failures become UNKNOWN_ERROR (not retryable).

    Args:
        exc: The exception raised by the completion call

    Returns:
        NutritionApiError carrying the code and retryable flag
    """
    if isinstance(exc, NutritionApiError):
        return exc

    message = str(exc) or exc.__class__.__name__
    details = {"exception_type": exc.__class__.__name__}

    # Timeout subclasses APIConnectionError, so it has to be checked first
    if isinstance(exc, (Timeout, concurrent.futures.TimeoutError, TimeoutError)):
        return NutritionApiError(AI_TIMEOUT, f"Completion service timed out: {message}", details=details)
    if isinstance(exc, RateLimitError):
        return NutritionApiError(AI_QUOTA_EXCEEDED, f"Completion quota exceeded: {message}", details=details)
    if isinstance(exc, (APIConnectionError, ServiceUnavailableError, InternalServerError, CircuitBreakerOpen)):
        return NutritionApiError(NETWORK_ERROR, f"Completion service unreachable: {message}", details=details)

    status = getattr(exc, "status_code", None) or getattr(exc, "http_status", None)
    if status in QUOTA_STATUS_CODES:
        return NutritionApiError(AI_QUOTA_EXCEEDED, f"Completion quota exceeded: {message}", details=details)
    if status in NETWORK_STATUS_CODES:
        return NutritionApiError(NETWORK_ERROR, f"Completion service error: {message}", details=details)

    lowered = message.lower()
    if any(kw in lowered for kw in TIMEOUT_KEYWORDS):
        return NutritionApiError(AI_TIMEOUT, f"Completion service timed out: {message}", details=details)
    if any(kw in lowered for kw in QUOTA_KEYWORDS):
        return NutritionApiError(AI_QUOTA_EXCEEDED, f"Completion quota exceeded: {message}", details=details)
    if any(kw in lowered for kw in NETWORK_KEYWORDS):
        return NutritionApiError(NETWORK_ERROR, f"Completion service unreachable: {message}", details=details)

    return NutritionApiError(UNKNOWN_ERROR, f"Completion service failed: {message}", details=details)
