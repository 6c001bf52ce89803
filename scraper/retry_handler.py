"""Retry, fallback and circuit-breaker helpers for network calls."""
import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

import requests

from errors import (
    Err,
    ErrorSeverity,
    ErrorType,
    FallbackExhaustedError,
    Ok,
    Result,
    ScrapingError,
    from_request_exception,
    parse_retry_after,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

RETRYABLE_STATUS = (408, 429)


class RetryHandler:
    """Runs callables with exponential backoff and jitter."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_multiplier: float = 2.0,
        jitter_max: float = 1.0
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier
        self.jitter_max = jitter_max
        self.reset_stats()

    def execute_with_retry(self, fn: Callable[[], T], operation: str = 'operation') -> T:
        """
        Call ``fn`` until it succeeds or a terminal error occurs.

        Args:
            fn: Zero-argument callable
            operation: Name used in log messages

        Returns:
            Whatever ``fn`` returns

        Raises:
            The last error raised by ``fn``
        """
        for attempt in range(self.max_retries + 1):
            self.stats['total_attempts'] += 1
            try:
                result = fn()
            except Exception as e:
                self._record_error(e)

                if not self.is_retryable(e):
                    logger.warning(f"{operation} failed with a non-retryable error: {e}")
                    raise

                if attempt == self.max_retries:
                    self.stats['failed_retries'] += 1
                    logger.error(f"{operation} failed after {self.max_retries + 1} attempts: {e}")
                    raise

                delay = self.calculate_delay(attempt, e)
                self.stats['retries'] += 1
                self.stats['total_delay'] += delay
                logger.warning(
                    f"{operation} attempt {attempt + 1}/{self.max_retries + 1} failed: {e}. "
                    f"Retrying in {delay:.2f} seconds..."
                )
                time.sleep(delay)
                continue

            if attempt > 0:
                self.stats['successful_retries'] += 1
                logger.info(f"{operation} succeeded on attempt {attempt + 1}")
            return result

    @staticmethod
    def is_retryable(error: Exception) -> bool:
        if isinstance(error, ScrapingError):
            return error.is_recoverable()
        if isinstance(error, (requests.Timeout, requests.ConnectionError)):
            return True
        if isinstance(error, requests.HTTPError) and error.response is not None:
            status = error.response.status_code
            return status >= 500 or status in RETRYABLE_STATUS
        return False

    def calculate_delay(self, attempt: int, error: Optional[Exception] = None) -> float:
        """Backoff delay in seconds for the given zero-based attempt."""
        delay = min(self.base_delay * self.backoff_multiplier ** attempt, self.max_delay)
        delay += random.uniform(0, self.jitter_max)

        if self._is_rate_limited(error):
            retry_after = self._retry_after(error)
            if retry_after is not None:
                delay = max(delay, retry_after)
            else:
                delay *= 2

        return round(delay, 3)

    @staticmethod
    def _is_rate_limited(error: Optional[Exception]) -> bool:
        if isinstance(error, ScrapingError):
            return error.type == ErrorType.RATE_LIMITED
        if isinstance(error, requests.HTTPError) and error.response is not None:
            return error.response.status_code == 429
        return False

    @staticmethod
    def _retry_after(error: Exception) -> Optional[float]:
        if isinstance(error, ScrapingError):
            return error.retry_after
        return parse_retry_after(error.response.headers.get('Retry-After'))

    def execute_with_fallback(self, functions: Sequence[Callable[[], T]], operation: str = 'operation') -> T:
        """
        Try each alternative in order, each with full retry semantics.

        Raises:
            FallbackExhaustedError: every alternative failed
        """
        errors: List[Dict[str, Any]] = []

        for index, fn in enumerate(functions):
            name = getattr(fn, '__name__', f'function_{index}')
            try:
                result = self.execute_with_retry(fn, f"{operation} [{name}]")
            except Exception as e:
                errors.append({'function': name, 'error': e})
                logger.warning(f"Fallback {name} failed for {operation}: {e}")
                continue

            if index > 0:
                logger.info(f"{operation} succeeded using fallback {name}")
            return result

        logger.error(f"All {len(functions)} alternatives failed for {operation}")
        raise FallbackExhaustedError(f"All fallback options failed for {operation}", errors)

    def execute_with_graceful_degradation(self, fn: Callable[[], T], operation: str = 'operation') -> Result:
        """Run with retry and return Ok(value) or Err(error) instead of raising."""
        try:
            return Ok(self.execute_with_retry(fn, operation))
        except ScrapingError as e:
            logger.warning(f"{operation} degraded: {e}")
            return Err(e)
        except requests.RequestException as e:
            logger.warning(f"{operation} degraded: {e}")
            return Err(from_request_exception(e))
        except Exception as e:
            logger.warning(f"{operation} degraded: {e}")
            return Err(ScrapingError(str(e), ErrorType.UNKNOWN_ERROR, ErrorSeverity.MEDIUM))

    def create_circuit_breaker(
        self,
        fn: Callable[..., T],
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        monitoring_period: float = 300.0,
        clock: Callable[[], float] = time.monotonic
    ) -> 'CircuitBreaker':
        return CircuitBreaker(fn, failure_threshold, reset_timeout, monitoring_period, clock)

    def _record_error(self, error: Exception) -> None:
        if isinstance(error, ScrapingError):
            key = error.type.value
        else:
            key = type(error).__name__
        distribution = self.stats['error_distribution']
        distribution[key] = distribution.get(key, 0) + 1

    def get_stats(self) -> Dict[str, Any]:
        attempts = self.stats['total_attempts']
        success_rate = round((attempts - self.stats['failed_retries']) / attempts * 100) if attempts else 0
        return {**self.stats, 'success_rate': success_rate}

    def reset_stats(self) -> None:
        self.stats = {
            'total_attempts': 0,
            'retries': 0,
            'successful_retries': 0,
            'failed_retries': 0,
            'total_delay': 0.0,
            'error_distribution': {}
        }


class CircuitBreaker:
    """
    Wraps a callable and stops calling it after repeated failures.

    CLOSED -> OPEN after ``failure_threshold`` failures inside the
    monitoring window. OPEN rejects calls until ``reset_timeout`` has
    passed, then lets one call through in HALF_OPEN.
    """

    CLOSED = 'CLOSED'
    OPEN = 'OPEN'
    HALF_OPEN = 'HALF_OPEN'

    def __init__(
        self,
        fn: Callable[..., T],
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        monitoring_period: float = 300.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.fn = fn
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.monitoring_period = monitoring_period
        self._clock = clock
        self.state = self.CLOSED
        self.failures = 0
        self.last_failure_time: Optional[float] = None

    def __call__(self, *args, **kwargs):
        now = self._clock()

        if (
            self.state == self.CLOSED
            and self.last_failure_time is not None
            and now - self.last_failure_time > self.monitoring_period
        ):
            self.failures = 0

        if self.state == self.OPEN:
            if now - self.last_failure_time < self.reset_timeout:
                raise ScrapingError(
                    'Circuit breaker is open',
                    ErrorType.NETWORK_ERROR,
                    ErrorSeverity.MEDIUM,
                    {'state': self.state, 'failures': self.failures}
                )
            self.state = self.HALF_OPEN
            logger.info('Circuit breaker half-open, allowing a trial call')

        try:
            result = self.fn(*args, **kwargs)
        except Exception:
            self.failures += 1
            self.last_failure_time = now
            if self.state == self.HALF_OPEN or self.failures >= self.failure_threshold:
                self.state = self.OPEN
                logger.warning(f"Circuit breaker opened after {self.failures} failures")
            raise

        if self.state == self.HALF_OPEN:
            logger.info('Circuit breaker closed after a successful trial call')
            self.state = self.CLOSED
            self.failures = 0
        return result
