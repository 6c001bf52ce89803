"""AWS Lambda handler for the event scraping pipeline."""
import json
import logging
import time
from typing import Dict, Any

import config
from errors import ErrorType, ScrapingError
from monitoring.structure_monitor import StructureMonitor
from pipeline import build_context, run_pipeline
from reports.error_report_generator import ErrorReportGenerator
from reports.report_generator import ReportGenerator
from storage.database_handler import DatabaseHandler
from storage.operation_logger import OperationLogger

# Attributes every LogRecord carries; anything else came from extra=
RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}

ACTIONS = ('scrape', 'monitor', 'report', 'error_report', 'cleanup')


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any extra= fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in RESERVED_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': json.dumps(body, default=str)}


def build_database(settings: config.Settings) -> DatabaseHandler:
    return DatabaseHandler(
        events_table=settings.events_table,
        logs_table=settings.logs_table,
        region_name=settings.aws_region,
        batch_size=settings.batch_size
    )


def handle_scrape(event: Dict[str, Any], settings: config.Settings) -> Dict[str, Any]:
    context = build_context(settings, db=build_database(settings))
    summary = run_pipeline(context, event.get('sources'), event.get('search_terms'))
    return response(200, {
        'message': 'Scraping completed',
        'statistics': summary.to_dict(),
        'processor': context.processor.get_stats(),
        'database': context.db.get_stats()
    })


def handle_monitor(event: Dict[str, Any], settings: config.Settings) -> Dict[str, Any]:
    monitor = StructureMonitor(settings, operation_logger=OperationLogger(build_database(settings)))
    checks = monitor.check_all_structures()
    return response(200, {
        'message': 'Structure check completed',
        'checks': checks,
        'health': monitor.get_health_report()
    })


def handle_report(event: Dict[str, Any], settings: config.Settings) -> Dict[str, Any]:
    generator = ReportGenerator(build_database(settings), settings.reports_dir)
    result = generator.generate_complete_report(event.get('period', 'all_time'))
    return response(200, {
        'message': 'Report generated',
        'files': result['files'],
        'summary': result['data']['summary']
    })


def handle_error_report(event: Dict[str, Any], settings: config.Settings) -> Dict[str, Any]:
    generator = ErrorReportGenerator(build_database(settings), settings.reports_dir)
    result = generator.generate_error_report(event.get('period', 'last_7_days'))
    return response(200, {
        'message': 'Error report generated',
        'files': result['files'],
        'summary': result['data']['summary'],
        'recommendations': result['data']['recommendations']
    })


def handle_cleanup(event: Dict[str, Any], settings: config.Settings) -> Dict[str, Any]:
    try:
        days_old = int(event.get('days_old', 365))
    except (TypeError, ValueError):
        days_old = 0
    if days_old < 1:
        logging.getLogger(__name__).warning(f"Invalid days_old for cleanup: {event.get('days_old')!r}")
        return response(400, {
            'message': 'days_old must be a positive whole number of days',
            'days_old': event.get('days_old')
        })

    deleted = build_database(settings).cleanup_old_events(days_old)
    return response(200, {'message': 'Cleanup completed', 'deleted': deleted, 'days_old': days_old})


HANDLERS = {
    'scrape': handle_scrape,
    'monitor': handle_monitor,
    'report': handle_report,
    'error_report': handle_error_report,
    'cleanup': handle_cleanup,
}


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for the scraping pipeline.

    Args:
        event: EventBridge event payload; 'action' selects scrape (default),
            monitor, report, error_report or cleanup
        context: Lambda context object

    Returns:
        Response dict with statusCode and a JSON body
    """
    event = event or {}
    settings = config.load_settings()

    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    action = event.get('action', 'scrape')
    start_time = time.time()
    logger.info(
        f"Lambda execution started",
        extra={'action': action, 'events_table': settings.events_table}
    )

    handler = HANDLERS.get(action)
    if handler is None:
        logger.warning(f"Unknown action: {action}")
        return response(400, {
            'message': f"Unknown action '{action}'",
            'available_actions': list(ACTIONS)
        })

    try:
        config.validate_settings(settings)
        result = handler(event, settings)

    except ScrapingError as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {e.message}",
            extra={
                'action': action,
                'error_type': e.type.value,
                'severity': e.severity.value,
                'duration_seconds': round(duration, 2)
            },
            exc_info=True
        )
        return response(500, {
            'message': f"{action} failed",
            'error': e.message,
            'error_type': e.type.value,
            'duration_seconds': round(duration, 2)
        })

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'action': action,
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            },
            exc_info=True
        )
        return response(500, {
            'message': f"{action} failed",
            'error': str(e),
            'error_type': ErrorType.UNKNOWN_ERROR.value,
            'duration_seconds': round(duration, 2)
        })

    logger.info(
        f"Lambda execution completed",
        extra={'action': action, 'duration_seconds': round(time.time() - start_time, 2)}
    )
    return result
