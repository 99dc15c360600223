"""
Retry helpers with exponential backoff, jitter, and circuit breaker.

Shared by the n8n, Gmail and Microsoft Graph adapters.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from floworx.config import HTTP_RETRY_BASE_DELAY, HTTP_RETRY_MAX_ATTEMPTS, HTTP_RETRY_MAX_DELAY
from floworx.observability.telemetry import counter, log_event

T = TypeVar("T")


class AdapterError(RuntimeError):
    """Failure talking to an external API. status_code is None for transport errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CircuitOpenError(AdapterError):
    """Raised without calling the remote API while the circuit is open."""

    def __init__(self, message: str):
        super().__init__(message, status_code=None)


def is_transient_failure(exc: BaseException) -> bool:
    """Transport errors, 429 and 5xx. A client error means the remote side is up."""
    if isinstance(exc, AdapterError):
        status = exc.status_code
        return status is None or status == 429 or 500 <= status < 600
    return True


@dataclass
class RetryPolicy:
    stage: str
    max_attempts: int = HTTP_RETRY_MAX_ATTEMPTS
    base_delay: float = HTTP_RETRY_BASE_DELAY
    max_delay: float = HTTP_RETRY_MAX_DELAY
    jitter: float = 0.1
    sleep_fn: Callable[[float], None] | None = time.sleep

    def execute(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Run func, retrying transport errors, 429 and 5xx responses.

        Side Effects:
            - Sleeps between attempts via sleep_fn
            - Emits retry telemetry
        """
        attempt = 0
        last_error: Exception | None = None

        while attempt < self.max_attempts:
            attempt += 1
            try:
                return func(*args, **kwargs)
            except AdapterError as exc:
                if not self.should_retry(exc):
                    log_event(
                        "stage_error",
                        stage=self.stage,
                        error=str(exc),
                        status=exc.status_code,
                        attempt=attempt,
                    )
                    raise
                last_error = exc

            if attempt >= self.max_attempts:
                break

            self._backoff(attempt, last_error)

        assert last_error is not None
        log_event("retry_exhausted", stage=self.stage, attempts=attempt)
        raise last_error

    def should_retry(self, exc: AdapterError) -> bool:
        if isinstance(exc, CircuitOpenError):
            return False
        return is_transient_failure(exc)

    def delay_for(self, attempt: int) -> float:
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return delay + random.uniform(0, self.jitter)

    def _backoff(self, attempt: int, error: Exception | None) -> None:
        counter("retry_count")
        delay = self.delay_for(attempt)
        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            delay = min(max(delay, float(retry_after)), self.max_delay)
        log_event("retry_scheduled", stage=self.stage, attempt=attempt, delay=round(delay, 3))
        if self.sleep_fn is not None:
            self.sleep_fn(delay)


@dataclass
class CircuitBreaker:
    stage: str
    fail_max: int = 5
    reset_timeout: float = 60.0
    _failures: int = field(default=0, init=False)
    _state: str = field(default="closed", init=False)
    _opened_at: float = field(default=0.0, init=False)

    @property
    def state(self) -> str:
        return self._state

    def allow_request(self) -> bool:
        if self._state == "open":
            if time.time() - self._opened_at >= self.reset_timeout:
                self._state = "half_open"
                self._failures = 0
                return True
            counter("circuit_open_rate")
            log_event("circuit.open", stage=self.stage)
            return False
        return True

    def record_success(self) -> None:
        self._failures = 0
        self._state = "closed"

    def record_failure(self) -> None:
        """
        Side Effects:
            - Opens the circuit once fail_max consecutive failures are seen
        """
        self._failures += 1
        if self._state == "half_open" or self._failures >= self.fail_max:
            self._state = "open"
            self._opened_at = time.time()
            counter("circuit_open_rate")
            log_event("circuit.opened", stage=self.stage, failures=self._failures)

    def call(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Run func under the breaker.

        Only transient failures (transport, 429, 5xx) count toward opening
        the circuit; a client error is an answer from a healthy service.

        Raises:
            CircuitOpenError: If the circuit is open
        """
        if not self.allow_request():
            raise CircuitOpenError(f"{self.stage} circuit open")
        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            if is_transient_failure(exc):
                self.record_failure()
            else:
                self.record_success()
            raise
        self.record_success()
        return result
