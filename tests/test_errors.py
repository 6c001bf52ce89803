"""Unit tests for the error taxonomy and ErrorHandler."""
import pytest
import requests

from errors import (
    Err,
    ErrorHandler,
    ErrorSeverity,
    ErrorType,
    Ok,
    ScrapingError,
    from_http_status,
    from_request_exception,
    parse_retry_after,
)


class TestScrapingError:
    """Test cases for ScrapingError."""

    def test_defaults(self):
        """Test an untyped error is unknown with medium severity."""
        error = ScrapingError('boom')

        assert error.type == ErrorType.UNKNOWN_ERROR
        assert error.severity == ErrorSeverity.MEDIUM
        assert error.details == {}
        assert str(error) == 'boom'

    @pytest.mark.parametrize('error_type', [ErrorType.DATABASE_ERROR, ErrorType.CONFIGURATION_ERROR])
    def test_always_critical_types(self, error_type):
        """Test database and configuration errors are forced to critical."""
        error = ScrapingError('bad', error_type, ErrorSeverity.LOW)

        assert error.severity == ErrorSeverity.CRITICAL
        assert error.is_critical()

    def test_recoverable_types(self):
        """Test only network, timeout and rate limit errors are recoverable."""
        assert ScrapingError('x', ErrorType.NETWORK_ERROR).is_recoverable()
        assert ScrapingError('x', ErrorType.TIMEOUT_ERROR).is_recoverable()
        assert ScrapingError('x', ErrorType.RATE_LIMITED).is_recoverable()
        assert not ScrapingError('x', ErrorType.PARSING_ERROR).is_recoverable()
        assert not ScrapingError('x', ErrorType.DATABASE_ERROR).is_recoverable()

    def test_to_dict(self):
        """Test serialization stringifies details."""
        error = ScrapingError('slow', ErrorType.TIMEOUT_ERROR, details={'status_code': 408})
        data = error.to_dict()

        assert data['type'] == 'timeout_error'
        assert data['severity'] == 'medium'
        assert data['details'] == {'status_code': '408'}
        assert data['name'] == 'ScrapingError'


class TestHttpErrors:
    """Test cases for HTTP error conversion."""

    def test_rate_limited(self):
        """Test 429 becomes rate_limited carrying Retry-After."""
        error = from_http_status(429, 'https://example.com', retry_after=12.0)

        assert error.type == ErrorType.RATE_LIMITED
        assert error.severity == ErrorSeverity.LOW
        assert error.retry_after == 12.0

    @pytest.mark.parametrize('status,expected', [
        (408, ErrorType.TIMEOUT_ERROR),
        (500, ErrorType.NETWORK_ERROR),
        (503, ErrorType.NETWORK_ERROR),
        (404, ErrorType.SITE_STRUCTURE_CHANGED),
        (410, ErrorType.SITE_STRUCTURE_CHANGED),
        (403, ErrorType.UNKNOWN_ERROR),
    ])
    def test_status_classes(self, status, expected):
        """Test each status class maps to its error type."""
        assert from_http_status(status).type == expected

    def test_timeout_exception(self):
        """Test requests timeouts become timeout errors."""
        error = from_request_exception(requests.Timeout('read timed out'), 'https://example.com')

        assert error.type == ErrorType.TIMEOUT_ERROR
        assert error.details['original_error'] == 'Timeout'

    def test_connection_exception(self):
        """Test connection failures become high severity network errors."""
        error = from_request_exception(requests.ConnectionError('refused'))

        assert error.type == ErrorType.NETWORK_ERROR
        assert error.severity == ErrorSeverity.HIGH

    @pytest.mark.parametrize('value,expected', [
        ('30', 30.0),
        ('0', 0.0),
        ('-5', 0.0),
        ('Wed, 21 Oct 2015 07:28:00 GMT', None),
        (None, None),
    ])
    def test_parse_retry_after(self, value, expected):
        """Test Retry-After parsing in seconds."""
        assert parse_retry_after(value) == expected


class TestResult:
    """Test cases for Ok and Err."""

    def test_ok(self):
        """Test Ok unwraps to its value."""
        result = Ok(5)

        assert result.ok
        assert result.unwrap_or(0) == 5

    def test_err(self):
        """Test Err unwraps to the default."""
        result = Err(ScrapingError('failed'))

        assert not result.ok
        assert result.unwrap_or(0) == 0


class TestErrorHandler:
    """Test cases for ErrorHandler."""

    def test_handle_scraping_error(self, caplog):
        """Test a high severity error is logged at ERROR and counted."""
        handler = ErrorHandler('test')
        error = ScrapingError('server down', ErrorType.NETWORK_ERROR, ErrorSeverity.HIGH)

        response = handler.handle(error, {'source': 'sympla'})

        assert response.error is error
        assert response.should_retry is True
        assert response.is_critical is False
        assert 'network' in response.recommendation.lower()
        assert any(record.levelname == 'ERROR' for record in caplog.records)

    def test_handle_plain_exception(self):
        """Test foreign exceptions are wrapped as unknown errors."""
        handler = ErrorHandler()

        response = handler.handle(ValueError('bad value'))

        assert response.error.type == ErrorType.UNKNOWN_ERROR
        assert response.error.details['original_error'] == 'ValueError'
        assert response.should_retry is False

    def test_handle_request_exception(self):
        """Test requests exceptions are converted at the HTTP layer."""
        handler = ErrorHandler()

        response = handler.handle(requests.Timeout('slow'))

        assert response.error.type == ErrorType.TIMEOUT_ERROR

    def test_stats(self):
        """Test counters and derived rates."""
        handler = ErrorHandler()
        handler.handle(ScrapingError('a', ErrorType.NETWORK_ERROR))
        handler.handle(ScrapingError('b', ErrorType.DATABASE_ERROR))
        handler.handle(ScrapingError('c', ErrorType.PARSING_ERROR))
        handler.handle(ScrapingError('d', ErrorType.NETWORK_ERROR))

        stats = handler.get_stats()

        assert stats['total'] == 4
        assert stats['by_type'] == {'network_error': 2, 'database_error': 1, 'parsing_error': 1}
        assert stats['by_severity']['critical'] == 1
        assert stats['critical_rate'] == 25
        assert stats['recoverability_rate'] == 50

        handler.reset_stats()
        assert handler.get_stats()['total'] == 0
