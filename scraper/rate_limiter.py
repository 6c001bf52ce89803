"""Per-source request throttling with adaptive backoff."""
import logging
import time
from typing import Any, Dict, Optional

from errors import ErrorSeverity, ErrorType, ScrapingError, from_http_status

logger = logging.getLogger(__name__)

FAST_RESPONSE_SECONDS = 1.0
DECAY_FACTOR = 0.9


class RateLimiter:
    """
    Keeps consecutive requests at least ``current_delay`` seconds apart.

    The spacing is measured from the end of the previous request, which
    callers signal through ``adjust_delay`` once a response arrives.
    """

    def __init__(self, base_delay: float = 1.0, max_delay: float = 30.0, max_retries: int = 5):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_retries = max_retries
        self.current_delay = base_delay
        self.retry_count = 0
        self._last_request: Optional[float] = None
        self.stats = {
            'total_requests': 0,
            'rate_limit_hits': 0,
            'total_wait_time': 0.0,
            'average_delay': 0.0
        }

    def wait(self) -> float:
        """
        Block until the next request is allowed.

        Returns:
            Seconds slept
        """
        waited = 0.0
        if self._last_request is not None:
            elapsed = time.monotonic() - self._last_request
            waited = max(0.0, self.current_delay - elapsed)

        if waited > 0:
            logger.debug(f"Waiting {waited:.2f}s before next request")
            time.sleep(waited)
            self.stats['total_wait_time'] += waited

        self._last_request = time.monotonic()
        self.stats['total_requests'] += 1
        self.stats['average_delay'] = round(
            self.stats['total_wait_time'] / self.stats['total_requests'], 3
        )
        return waited

    def handle_error(self, status_code: int, retry_after: Optional[float] = None) -> None:
        """
        Back off after an error response.

        Raises:
            ScrapingError: rate_limited once max_retries is exceeded, or the
                status-derived error for statuses that are not throttling
        """
        if status_code != 429 and status_code < 500:
            raise from_http_status(status_code)

        self.retry_count += 1
        if status_code == 429:
            self.stats['rate_limit_hits'] += 1

        if self.retry_count > self.max_retries:
            logger.error(f"Giving up after {self.max_retries} throttled attempts (HTTP {status_code})")
            raise ScrapingError(
                f"Maximum retries ({self.max_retries}) exceeded after HTTP {status_code}",
                ErrorType.RATE_LIMITED,
                ErrorSeverity.HIGH,
                {'status_code': status_code, 'retries': self.retry_count}
            )

        if retry_after is not None:
            self.current_delay = float(retry_after)
        else:
            self.current_delay = min(
                self.base_delay * 2 ** (self.retry_count - 1), self.max_delay
            )

        logger.warning(
            f"HTTP {status_code}: next request delayed {self.current_delay:.2f}s "
            f"(attempt {self.retry_count})"
        )

    def adjust_delay(self, response_time: float, status_code: int) -> None:
        """Tune the delay from the last response and mark the request finished."""
        self._last_request = time.monotonic()

        if status_code == 200 and response_time < FAST_RESPONSE_SECONDS:
            self.current_delay = max(self.base_delay, self.current_delay * DECAY_FACTOR)
        elif status_code == 429:
            self.current_delay = min(self.max_delay, self.current_delay * 2)

    def record_success(self) -> None:
        """Clear the retry count after a successful response."""
        self.retry_count = 0

    def should_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def reset(self) -> None:
        self.current_delay = self.base_delay
        self.retry_count = 0

    def get_stats(self) -> Dict[str, Any]:
        total = self.stats['total_requests']
        hits = self.stats['rate_limit_hits']
        efficiency = 100 if hits == 0 or total == 0 else max(0, round((1 - hits / total) * 100))
        return {
            **self.stats,
            'current_delay': self.current_delay,
            'retry_count': self.retry_count,
            'efficiency': efficiency
        }
