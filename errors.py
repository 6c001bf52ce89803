"""Error taxonomy shared by the scraping, processing and storage layers."""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar, Union

import requests

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ErrorType(str, Enum):
    """Kinds of failure a pipeline run can hit."""
    NETWORK_ERROR = 'network_error'
    TIMEOUT_ERROR = 'timeout_error'
    RATE_LIMITED = 'rate_limited'
    PARSING_ERROR = 'parsing_error'
    VALIDATION_ERROR = 'validation_error'
    SITE_STRUCTURE_CHANGED = 'site_structure_changed'
    DATABASE_ERROR = 'database_error'
    CONFIGURATION_ERROR = 'configuration_error'
    UNKNOWN_ERROR = 'unknown_error'


class ErrorSeverity(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


RECOVERABLE_TYPES = frozenset({
    ErrorType.NETWORK_ERROR,
    ErrorType.TIMEOUT_ERROR,
    ErrorType.RATE_LIMITED,
})

# These abort the run no matter what severity the caller asked for
ALWAYS_CRITICAL_TYPES = frozenset({
    ErrorType.DATABASE_ERROR,
    ErrorType.CONFIGURATION_ERROR,
})

RECOMMENDATIONS = {
    ErrorType.RATE_LIMITED: 'Wait before retrying and consider raising the source rate limit.',
    ErrorType.NETWORK_ERROR: 'Check network connectivity and retry in a few minutes.',
    ErrorType.TIMEOUT_ERROR: 'The operation took too long; consider raising the timeout.',
    ErrorType.PARSING_ERROR: 'The page layout may have changed; review the CSS selectors.',
    ErrorType.VALIDATION_ERROR: 'Scraped data did not meet the quality criteria.',
    ErrorType.SITE_STRUCTURE_CHANGED: 'The site was modified; update selectors and URLs.',
    ErrorType.DATABASE_ERROR: 'Critical storage problem; check table access and credentials.',
    ErrorType.CONFIGURATION_ERROR: 'Invalid configuration; check the environment variables.',
    ErrorType.UNKNOWN_ERROR: 'Uncategorized error; inspect the logs for details.',
}


class ScrapingError(Exception):
    """
    Tagged pipeline error.

    The type is decided by the layer that produced the failure (HTTP,
    parsing, storage) and is never re-inferred from the message text.
    """

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.UNKNOWN_ERROR,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.type = ErrorType(error_type)
        if self.type in ALWAYS_CRITICAL_TYPES:
            severity = ErrorSeverity.CRITICAL
        self.severity = ErrorSeverity(severity)
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def is_recoverable(self) -> bool:
        return self.type in RECOVERABLE_TYPES

    def is_critical(self) -> bool:
        return self.severity == ErrorSeverity.CRITICAL

    @property
    def retry_after(self) -> Optional[float]:
        """Seconds requested by the server before the next attempt, if any."""
        return self.details.get('retry_after')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': type(self).__name__,
            'message': self.message,
            'type': self.type.value,
            'severity': self.severity.value,
            'details': {k: str(v) for k, v in self.details.items()},
            'timestamp': self.timestamp
        }


class FallbackExhaustedError(ScrapingError):
    """Raised when every alternative of a fallback chain failed."""

    def __init__(self, message: str, errors: list):
        super().__init__(
            message,
            ErrorType.UNKNOWN_ERROR,
            ErrorSeverity.HIGH,
            {'errors': errors}
        )
        self.errors = errors


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except (TypeError, ValueError):
        return None


def from_http_status(
    status_code: int,
    url: str = '',
    retry_after: Optional[float] = None
) -> ScrapingError:
    """
    Build the error for a non-successful HTTP response.

    Args:
        status_code: Response status code
        url: Requested URL
        retry_after: Parsed Retry-After value in seconds

    Returns:
        ScrapingError tagged by status class
    """
    details = {'status_code': status_code, 'url': url}

    if status_code == 429:
        details['retry_after'] = retry_after
        return ScrapingError(
            f"Rate limited by {url}", ErrorType.RATE_LIMITED, ErrorSeverity.LOW, details
        )
    if status_code == 408:
        return ScrapingError(
            f"Request timeout from {url}", ErrorType.TIMEOUT_ERROR, ErrorSeverity.MEDIUM, details
        )
    if status_code >= 500:
        return ScrapingError(
            f"Server error {status_code} from {url}",
            ErrorType.NETWORK_ERROR,
            ErrorSeverity.HIGH,
            details
        )
    if status_code in (404, 410):
        return ScrapingError(
            f"Page not found at {url}",
            ErrorType.SITE_STRUCTURE_CHANGED,
            ErrorSeverity.MEDIUM,
            details
        )
    return ScrapingError(
        f"Unhandled HTTP status {status_code} from {url}",
        ErrorType.UNKNOWN_ERROR,
        ErrorSeverity.MEDIUM,
        details
    )


def from_request_exception(exc: requests.RequestException, url: str = '') -> ScrapingError:
    """Convert a requests transport failure into a tagged error."""
    details = {'url': url, 'original_error': type(exc).__name__}

    if isinstance(exc, requests.Timeout):
        return ScrapingError(
            f"Timeout fetching {url}: {exc}", ErrorType.TIMEOUT_ERROR, ErrorSeverity.MEDIUM, details
        )
    if isinstance(exc, requests.ConnectionError):
        return ScrapingError(
            f"Connection failed for {url}: {exc}", ErrorType.NETWORK_ERROR, ErrorSeverity.HIGH, details
        )
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return from_http_status(
            exc.response.status_code,
            url,
            parse_retry_after(exc.response.headers.get('Retry-After'))
        )
    return ScrapingError(
        f"Request failed for {url}: {exc}", ErrorType.NETWORK_ERROR, ErrorSeverity.MEDIUM, details
    )


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap_or(self, default: T) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: ScrapingError

    @property
    def ok(self) -> bool:
        return False

    def unwrap_or(self, default: T) -> T:
        return default


Result = Union[Ok[T], Err]


@dataclass
class ErrorResponse:
    """Outcome of ErrorHandler.handle."""
    error: ScrapingError
    should_retry: bool
    is_critical: bool
    recommendation: str


class ErrorHandler:
    """Logs tagged errors by severity and keeps per-instance counters."""

    def __init__(self, context: str = 'scraping'):
        self.context = context
        self.reset_stats()

    def handle(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> ErrorResponse:
        """
        Record and log an error.

        Args:
            error: The raised exception
            context: Extra fields for the log record

        Returns:
            ErrorResponse describing how the caller should react
        """
        if isinstance(error, ScrapingError):
            scraping_error = error
        elif isinstance(error, requests.RequestException):
            scraping_error = from_request_exception(error)
        else:
            scraping_error = ScrapingError(
                str(error) or type(error).__name__,
                ErrorType.UNKNOWN_ERROR,
                ErrorSeverity.MEDIUM,
                {'original_error': type(error).__name__}
            )

        self._update_stats(scraping_error)
        self._log_error(scraping_error, context or {})

        return ErrorResponse(
            error=scraping_error,
            should_retry=scraping_error.is_recoverable(),
            is_critical=scraping_error.is_critical(),
            recommendation=self.get_recommendation(scraping_error)
        )

    @staticmethod
    def get_recommendation(error: ScrapingError) -> str:
        return RECOMMENDATIONS.get(error.type, RECOMMENDATIONS[ErrorType.UNKNOWN_ERROR])

    def _update_stats(self, error: ScrapingError) -> None:
        self.stats['total'] += 1
        by_type = self.stats['by_type']
        by_type[error.type.value] = by_type.get(error.type.value, 0) + 1
        by_severity = self.stats['by_severity']
        by_severity[error.severity.value] = by_severity.get(error.severity.value, 0) + 1
        if error.is_recoverable():
            self.stats['recoverable'] += 1
        if error.is_critical():
            self.stats['critical'] += 1

    def _log_error(self, error: ScrapingError, context: Dict[str, Any]) -> None:
        extra = {
            'error_type': error.type.value,
            'severity': error.severity.value,
            'handler_context': self.context,
            **context
        }
        if error.severity in (ErrorSeverity.CRITICAL, ErrorSeverity.HIGH):
            logger.error(f"[{error.severity.value}] {error.message}", extra=extra)
        elif error.severity == ErrorSeverity.MEDIUM:
            logger.warning(f"[{error.severity.value}] {error.message}", extra=extra)
        else:
            logger.info(f"[{error.severity.value}] {error.message}", extra=extra)

    def get_stats(self) -> Dict[str, Any]:
        total = self.stats['total']
        return {
            **self.stats,
            'critical_rate': round(self.stats['critical'] / total * 100) if total else 0,
            'recoverability_rate': round(self.stats['recoverable'] / total * 100) if total else 0
        }

    def reset_stats(self) -> None:
        self.stats = {
            'total': 0,
            'by_type': {},
            'by_severity': {},
            'recoverable': 0,
            'critical': 0
        }
