"""Error analysis over the run log table."""
import html
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from errors import RECOMMENDATIONS, ErrorType, ScrapingError
from reports.report_generator import percentage, save_report
from storage.database_handler import DatabaseHandler

logger = logging.getLogger(__name__)

PERIOD_HOURS = {
    'last_24_hours': 24,
    'last_7_days': 7 * 24,
    'last_30_days': 30 * 24,
}
SLOWEST_OPERATIONS_LIMIT = 5
# structure checks are reported by the monitor action
SCRAPING_OPERATION = 'scraping'


def error_types(log: Dict[str, Any]) -> List[str]:
    """Error type names recorded on one run log row."""
    details = log.get('error_details') or {}
    types = [details['type']] if details.get('type') else []
    types.extend(error['type'] for error in details.get('errors', []) if error.get('type'))
    if not types and (log.get('status') == 'failed' or log.get('errors_count')):
        types.append(ErrorType.UNKNOWN_ERROR.value)
    return types


def recommendation_for(type_name: str) -> str:
    try:
        error_type = ErrorType(type_name)
    except ValueError:
        error_type = ErrorType.UNKNOWN_ERROR
    return RECOMMENDATIONS[error_type]


class ErrorReportGenerator:
    """Summarizes failed runs and recorded errors from scraping_logs."""

    def __init__(self, db: DatabaseHandler, reports_dir: str = '/tmp/reports'):
        self.db = db
        self.reports_dir = reports_dir
        self.stats = {'error_reports_generated': 0, 'total_errors_analyzed': 0}

    def generate_error_report(self, period: str = 'last_7_days') -> Dict[str, Any]:
        """
        Collect error data for a period and write it as JSON and HTML.

        Args:
            period: One of last_24_hours, last_7_days, last_30_days

        Returns:
            Dict with the report data and the written file paths by format
        """
        logger.info(f"Generating error report for period {period}")
        data = self.collect_error_data(period)

        files = {
            'json': save_report(self.reports_dir, self.render_json(data), 'json', 'error-report'),
            'html': save_report(self.reports_dir, self.render_html(data), 'html', 'error-report'),
        }

        self.stats['error_reports_generated'] += 1
        self.stats['total_errors_analyzed'] = data['summary']['total_errors']
        return {'success': True, 'data': data, 'files': files}

    def collect_error_data(self, period: str = 'last_7_days', now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Build the error report sections from the run logs of a period.

        Raises:
            ScrapingError: configuration_error for an unknown period
        """
        if period not in PERIOD_HOURS:
            raise ScrapingError(
                f"Unknown error report period '{period}'. Available: {', '.join(PERIOD_HOURS)}",
                ErrorType.CONFIGURATION_ERROR,
                details={'period': period}
            )

        now = now or datetime.now(timezone.utc)
        operations = [
            op for op in self.db.get_operations(now - timedelta(hours=PERIOD_HOURS[period]))
            if op.get('operation_type', SCRAPING_OPERATION) == SCRAPING_OPERATION
        ]
        errored = [op for op in operations if op.get('status') == 'failed' or op.get('errors_count')]
        by_type = self.get_errors_by_type(errored)

        return {
            'metadata': {
                'generated_at': datetime.now(timezone.utc).isoformat(),
                'period': period
            },
            'summary': self.generate_summary(operations, errored, by_type),
            'errors_by_type': by_type,
            'errors_by_source': self.get_errors_by_source(operations),
            'performance': self.calculate_performance(operations),
            'recommendations': [
                {'type': type_name, 'count': info['count'], 'recommendation': info['recommendation']}
                for type_name, info in sorted(by_type.items(), key=lambda item: item[1]['count'], reverse=True)
            ]
        }

    @staticmethod
    def generate_summary(
        operations: List[Dict[str, Any]],
        errored: List[Dict[str, Any]],
        by_type: Dict[str, Dict[str, Any]]
    ) -> Dict[str, Any]:
        failed = sum(1 for op in operations if op.get('status') == 'failed')
        total_errors = sum(op.get('errors_count') or 0 for op in operations)

        source_errors: Dict[str, int] = {}
        for op in errored:
            source = op.get('source') or 'unknown'
            source_errors[source] = source_errors.get(source, 0) + (op.get('errors_count') or 1)

        return {
            'total_operations': len(operations),
            'operations_with_errors': len(errored),
            'failed_operations': failed,
            'failure_rate': percentage(failed, len(operations)),
            'total_errors': total_errors,
            'events_found': sum(op.get('events_found') or 0 for op in operations),
            'events_inserted': sum(op.get('events_inserted') or 0 for op in operations),
            'most_common_error_type': max(by_type, key=lambda name: by_type[name]['count']) if by_type else None,
            'worst_performing_source': max(source_errors, key=source_errors.get) if source_errors else None
        }

    @staticmethod
    def get_errors_by_type(errored: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        by_type: Dict[str, Dict[str, Any]] = {}
        for op in errored:
            details = op.get('error_details') or {}
            for type_name in error_types(op):
                entry = by_type.setdefault(type_name, {
                    'count': 0,
                    'recommendation': recommendation_for(type_name),
                    'operations': []
                })
                entry['count'] += 1
                entry['operations'].append({
                    'id': op.get('id'),
                    'source': op.get('source'),
                    'started_at': op.get('started_at'),
                    'message': details.get('message', 'unspecified error')
                })
        return by_type

    @staticmethod
    def get_errors_by_source(operations: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for op in operations:
            grouped.setdefault(op.get('source') or 'unknown', []).append(op)

        by_source = {}
        for source, source_ops in grouped.items():
            failed = sum(1 for op in source_ops if op.get('status') == 'failed')
            common: Dict[str, int] = {}
            for op in source_ops:
                for type_name in error_types(op):
                    common[type_name] = common.get(type_name, 0) + 1
            by_source[source] = {
                'total_operations': len(source_ops),
                'failed_operations': failed,
                'total_errors': sum(op.get('errors_count') or 0 for op in source_ops),
                'error_rate': percentage(failed, len(source_ops)),
                'average_duration_ms': round(
                    sum(op.get('duration_ms') or 0 for op in source_ops) / len(source_ops)
                ),
                'common_errors': common
            }
        return by_source

    @staticmethod
    def calculate_performance(operations: List[Dict[str, Any]]) -> Dict[str, Any]:
        durations = [op['duration_ms'] for op in operations if op.get('duration_ms')]
        completed = sum(1 for op in operations if op.get('status') == 'completed')
        timeouts = sum(1 for op in operations if ErrorType.TIMEOUT_ERROR.value in error_types(op))
        found = sum(op.get('events_found') or 0 for op in operations)

        slowest = sorted(
            (op for op in operations if op.get('duration_ms')),
            key=lambda op: op['duration_ms'],
            reverse=True
        )[:SLOWEST_OPERATIONS_LIMIT]

        return {
            'average_duration_ms': round(sum(durations) / len(durations)) if durations else 0,
            'max_duration_ms': max(durations) if durations else 0,
            'success_rate': percentage(completed, len(operations)),
            'timeout_rate': percentage(timeouts, len(operations)),
            'rejection_rate': percentage(sum(op.get('events_rejected') or 0 for op in operations), found),
            'duplicate_rate': percentage(sum(op.get('events_duplicated') or 0 for op in operations), found),
            'slowest_operations': [
                {
                    'source': op.get('source'),
                    'duration_ms': op['duration_ms'],
                    'started_at': op.get('started_at'),
                    'errors_count': op.get('errors_count') or 0
                }
                for op in slowest
            ]
        }

    @staticmethod
    def render_json(data: Dict[str, Any]) -> str:
        return json.dumps(data, indent=2, ensure_ascii=False, default=str)

    @staticmethod
    def render_html(data: Dict[str, Any]) -> str:
        esc = html.escape
        summary = data['summary']
        performance = data['performance']

        type_rows = ''.join(
            f"<tr><td>{esc(type_name)}</td><td>{info['count']}</td><td>{esc(info['recommendation'])}</td></tr>"
            for type_name, info in data['errors_by_type'].items()
        )
        source_rows = ''.join(
            f"<tr><td>{esc(source)}</td><td>{info['total_operations']}</td><td>{info['failed_operations']}</td>"
            f"<td>{info['error_rate']}%</td><td>{info['average_duration_ms']}</td></tr>"
            for source, info in data['errors_by_source'].items()
        )

        return f"""<!DOCTYPE html>
<html lang="pt-BR">
<head>
<meta charset="UTF-8">
<title>Error report - {esc(data['metadata']['generated_at'])}</title>
<style>
body {{ font-family: Arial, sans-serif; margin: 20px; }}
table {{ border-collapse: collapse; }}
th, td {{ padding: 6px 12px; border-bottom: 1px solid #ddd; text-align: left; }}
</style>
</head>
<body>
<h1>Error report</h1>
<p>Generated at {esc(data['metadata']['generated_at'])}, period {esc(data['metadata']['period'])}</p>
<h2>Summary</h2>
<ul>
<li>Operations: {summary['total_operations']}</li>
<li>Failed operations: {summary['failed_operations']} ({summary['failure_rate']}%)</li>
<li>Errors: {summary['total_errors']}</li>
<li>Events found: {summary['events_found']}, inserted: {summary['events_inserted']}</li>
</ul>
<h2>Errors by type</h2>
<table><tr><th>Type</th><th>Count</th><th>Recommendation</th></tr>{type_rows}</table>
<h2>Errors by source</h2>
<table><tr><th>Source</th><th>Operations</th><th>Failed</th><th>Error rate</th><th>Average duration (ms)</th></tr>{source_rows}</table>
<h2>Performance</h2>
<p>Average duration {performance['average_duration_ms']} ms, max {performance['max_duration_ms']} ms,
success rate {performance['success_rate']}%</p>
</body>
</html>
"""

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats)
