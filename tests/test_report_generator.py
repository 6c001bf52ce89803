"""Unit tests for the event and error report generators."""
import json
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from errors import ErrorType, ScrapingError
from processor.data_processor import DataProcessor
from reports.error_report_generator import ErrorReportGenerator, error_types, recommendation_for
from reports.report_generator import ReportGenerator
from storage.database_handler import DatabaseHandler

NOW = datetime.now().replace(microsecond=0)


def stamp(value):
    return value.isoformat(timespec='seconds')


@pytest.fixture
def rows():
    """Stored event rows covering regions, prices and quality levels."""
    return [
        {
            'title': 'Show de Rock Nacional', 'date': stamp(NOW + timedelta(days=10)), 'source': 'sympla',
            'category': 'shows', 'category_confidence': 0.8, 'is_regional': True,
            'price_is_free': False, 'price_min': 50.0, 'image_url': 'https://img.example.com/a.jpg',
            'description': 'Grande show', 'organizer_name': 'Produtora', 'quality_score': 0.9,
            'popularity_score': 0.9, 'location_city': 'Ji-Paraná', 'location_venue': 'Teatro Municipal',
            'scraped_at': '2026-10-18T10:00:00', 'url': 'https://www.sympla.com.br/evento/1'
        },
        {
            'title': 'Feira Livre de Domingo', 'date': stamp(NOW - timedelta(days=5)), 'source': 'eventbrite',
            'category': 'outros', 'category_confidence': 0.1, 'is_regional': False,
            'price_is_free': True, 'price_min': 0.0, 'quality_score': 0.6, 'popularity_score': 0.7,
            'location_city': 'São Paulo', 'location_venue': 'Praça da Sé',
            'scraped_at': '2026-10-19T08:00:00'
        },
        {
            'title': 'Mini', 'source': 'sympla', 'category': 'shows', 'category_confidence': 0.5,
            'is_regional': True, 'quality_score': 0.2, 'popularity_score': 0,
            'scraped_at': '2026-10-17T09:00:00'
        },
    ]


@pytest.fixture
def report_data(rows):
    db = Mock(spec=DatabaseHandler)
    db.get_events.return_value = rows
    return ReportGenerator(db).collect_report_data('all_time', now=NOW)


class TestDateFilters:
    """Test cases for report periods."""

    def test_past_period(self):
        """Test last_N_days filters from N days ago."""
        filters = ReportGenerator.build_date_filters('last_7_days', NOW)

        assert filters == {'date_from': stamp(NOW - timedelta(days=7))}

    def test_future_period(self):
        """Test next_N_days filters between now and N days ahead."""
        filters = ReportGenerator.build_date_filters('next_30_days', NOW)

        assert filters == {'date_from': stamp(NOW), 'date_to': stamp(NOW + timedelta(days=30))}

    def test_all_time(self):
        """Test all_time has no filters."""
        assert ReportGenerator.build_date_filters('all_time', NOW) == {}

    def test_unknown_period(self):
        """Test an unknown period raises a configuration error."""
        with pytest.raises(ScrapingError) as exc_info:
            ReportGenerator.build_date_filters('last_century', NOW)

        assert exc_info.value.type == ErrorType.CONFIGURATION_ERROR

    def test_filters_passed_to_query(self, rows):
        """Test the period filters reach the events query."""
        db = Mock(spec=DatabaseHandler)
        db.get_events.return_value = rows

        data = ReportGenerator(db).collect_report_data('last_30_days', now=NOW)

        db.get_events.assert_called_once_with({'date_from': stamp(NOW - timedelta(days=30))})
        assert data['metadata']['period'] == 'last_30_days'

    def test_unknown_format(self):
        """Test unsupported output formats are rejected."""
        with pytest.raises(ScrapingError):
            ReportGenerator(Mock(spec=DatabaseHandler), formats=('json', 'pdf'))


class TestSections:
    """Test cases for the report sections."""

    def test_summary(self, report_data):
        """Test totals and percentages."""
        summary = report_data['summary']

        assert summary['total_events'] == 3
        assert summary['regional_events'] == 2
        assert summary['national_events'] == 1
        assert summary['free_events'] == 1
        assert summary['paid_events'] == 1
        assert summary['events_with_images'] == 1
        assert summary['average_quality_score'] == 0.57
        assert summary['regional_percentage'] == 67
        assert summary['date_range']['latest'] == stamp(NOW + timedelta(days=10))

    def test_by_source(self, report_data):
        """Test per-source counts and quality."""
        sympla = report_data['events_by_source']['sympla']

        assert sympla['count'] == 2
        assert sympla['quality_average'] == 0.55
        assert sympla['regional_percentage'] == 100
        assert sympla['categories'] == {'shows': 2}
        assert report_data['events_by_source']['eventbrite']['count'] == 1

    def test_by_category(self, report_data):
        """Test per-category counts including upcoming events."""
        shows = report_data['events_by_category']['shows']

        assert shows['count'] == 2
        assert shows['upcoming_count'] == 1
        assert shows['sources'] == {'sympla': 2}
        assert report_data['events_by_category']['outros']['upcoming_count'] == 0

    def test_by_region_and_date(self, report_data):
        """Test regional split and monthly counts."""
        regional = report_data['events_by_region']['regional']

        assert regional['count'] == 2
        assert regional['cities'] == {'Ji-Paraná': 1, 'unknown': 1}
        assert report_data['events_by_region']['national']['cities'] == {'São Paulo': 1}
        assert sum(report_data['events_by_date']['by_month'].values()) == 2

    def test_quality_metrics(self, report_data):
        """Test the distribution, completeness and issues."""
        quality = report_data['quality_metrics']

        assert quality['quality_distribution'] == {'high': 1, 'medium': 1, 'low': 1}
        assert quality['completeness']['with_images'] == {'count': 1, 'percentage': 33}
        assert quality['completeness']['with_locations']['count'] == 2
        assert quality['data_quality_issues'] == {
            'missing_dates': 1, 'invalid_dates': 0, 'short_titles': 1, 'missing_locations': 1
        }

    def test_event_lists(self, report_data):
        """Test top, recent and upcoming event lists."""
        assert [e['title'] for e in report_data['top_events']] == ['Show de Rock Nacional', 'Feira Livre de Domingo']
        assert [e['title'] for e in report_data['recent_events']] == [
            'Feira Livre de Domingo', 'Show de Rock Nacional', 'Mini'
        ]
        upcoming = report_data['upcoming_events']
        assert [e['title'] for e in upcoming] == ['Show de Rock Nacional']
        assert upcoming[0]['days_until'] == 10


class TestRendering:
    """Test cases for JSON, CSV and HTML output."""

    def test_json_omits_rows(self, report_data):
        """Test raw rows are left out of the JSON report."""
        rendered = json.loads(ReportGenerator.render_json(report_data))

        assert 'events' not in rendered
        assert rendered['summary']['total_events'] == 3

    def test_csv(self, report_data):
        """Test one CSV line per event plus the header."""
        lines = ReportGenerator.render_csv(report_data).strip().splitlines()

        assert lines[0].startswith('title,date,location_city')
        assert len(lines) == 4

    def test_html_is_escaped(self, rows):
        """Test titles are HTML-escaped."""
        rows[0]['title'] = '<b>Rock & Blues</b>'
        db = Mock(spec=DatabaseHandler)
        db.get_events.return_value = rows

        rendered = ReportGenerator.render_html(ReportGenerator(db).collect_report_data(now=NOW))

        assert '&lt;b&gt;Rock &amp; Blues&lt;/b&gt;' in rendered
        assert '<b>Rock' not in rendered


class TestGenerateCompleteReport:
    """Test cases for writing report files."""

    def test_writes_every_format(self, db, settings, raw_event, tmp_path):
        """Test a report over stored events is written in each format."""
        db.insert(DataProcessor(settings).process(raw_event).event)
        generator = ReportGenerator(db, reports_dir=str(tmp_path))

        result = generator.generate_complete_report('all_time')

        assert result['success'] is True
        assert set(result['files']) == {'json', 'html', 'csv'}
        for path in result['files'].values():
            assert os.path.exists(path)
            assert os.path.basename(path).startswith('events-report-')
        with open(result['files']['json'], encoding='utf-8') as f:
            assert json.load(f)['summary']['total_events'] == 1
        assert generator.get_stats()['reports_generated'] == 1


@pytest.fixture
def operations():
    """Run log rows with a failed run, a run with errors and a clean run."""
    return [
        {
            'id': 'op-1', 'source': 'sympla', 'status': 'failed', 'errors_count': 1,
            'error_details': {'message': 'timeout', 'type': 'timeout_error'},
            'events_found': 0, 'duration_ms': 5000, 'started_at': '2026-10-18T10:00:00+00:00'
        },
        {
            'id': 'op-2', 'source': 'sympla', 'status': 'completed', 'errors_count': 2,
            'error_details': {'errors': [
                {'type': 'parsing_error', 'message': 'bad card'},
                {'type': 'parsing_error', 'message': 'bad card'},
            ]},
            'events_found': 10, 'events_inserted': 6, 'events_duplicated': 2, 'events_rejected': 2,
            'duration_ms': 1000, 'started_at': '2026-10-18T11:00:00+00:00'
        },
        {
            'id': 'op-3', 'source': 'eventbrite', 'status': 'completed', 'errors_count': 0,
            'events_found': 10, 'events_inserted': 10, 'duration_ms': 3000,
            'started_at': '2026-10-18T12:00:00+00:00'
        },
    ]


@pytest.fixture
def error_db(operations):
    db = Mock(spec=DatabaseHandler)
    db.get_operations.return_value = operations
    return db


class TestErrorReportGenerator:
    """Test cases for ErrorReportGenerator."""

    def test_error_types(self):
        """Test error types come from the failure and recorded errors."""
        assert error_types({'status': 'failed', 'error_details': {'type': 'network_error'}}) == ['network_error']
        assert error_types({'status': 'failed'}) == ['unknown_error']
        assert error_types({'status': 'completed'}) == []
        assert recommendation_for('no_such_type') == recommendation_for('unknown_error')

    def test_period_window(self, error_db):
        """Test logs are read from the start of the period."""
        now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

        ErrorReportGenerator(error_db).collect_error_data('last_7_days', now=now)

        error_db.get_operations.assert_called_once_with(now - timedelta(days=7))

    def test_unknown_period(self, error_db):
        """Test an unknown period raises a configuration error."""
        with pytest.raises(ScrapingError) as exc_info:
            ErrorReportGenerator(error_db).collect_error_data('last_year')

        assert exc_info.value.type == ErrorType.CONFIGURATION_ERROR

    def test_structure_checks_are_excluded(self, error_db, operations):
        """Test structure check rows do not count as scraping runs."""
        error_db.get_operations.return_value = operations + [{
            'id': 'op-4', 'source': 'eventbrite', 'operation_type': 'structure_check', 'status': 'failed',
            'errors_count': 0, 'error_details': {'type': 'network_error'}, 'duration_ms': 200,
            'started_at': '2026-10-18T13:00:00+00:00'
        }]

        summary = ErrorReportGenerator(error_db).collect_error_data('last_7_days')['summary']

        assert summary['total_operations'] == 3
        assert summary['failed_operations'] == 1

    def test_summary_and_types(self, error_db):
        """Test the summary and per-type counts."""
        data = ErrorReportGenerator(error_db).collect_error_data('last_7_days')
        summary = data['summary']

        assert summary['total_operations'] == 3
        assert summary['operations_with_errors'] == 2
        assert summary['failed_operations'] == 1
        assert summary['failure_rate'] == 33
        assert summary['total_errors'] == 3
        assert summary['events_found'] == 20
        assert summary['most_common_error_type'] == 'parsing_error'
        assert summary['worst_performing_source'] == 'sympla'

        assert data['errors_by_type']['parsing_error']['count'] == 2
        assert data['errors_by_type']['timeout_error']['operations'][0]['message'] == 'timeout'
        assert [r['type'] for r in data['recommendations']] == ['parsing_error', 'timeout_error']

    def test_by_source_and_performance(self, error_db):
        """Test per-source error rates and run performance."""
        data = ErrorReportGenerator(error_db).collect_error_data('last_7_days')
        sympla = data['errors_by_source']['sympla']
        performance = data['performance']

        assert sympla['total_operations'] == 2
        assert sympla['error_rate'] == 50
        assert sympla['average_duration_ms'] == 3000
        assert sympla['common_errors'] == {'timeout_error': 1, 'parsing_error': 2}
        assert data['errors_by_source']['eventbrite']['error_rate'] == 0

        assert performance['average_duration_ms'] == 3000
        assert performance['max_duration_ms'] == 5000
        assert performance['success_rate'] == 67
        assert performance['timeout_rate'] == 33
        assert performance['rejection_rate'] == 10
        assert performance['duplicate_rate'] == 10
        assert performance['slowest_operations'][0]['duration_ms'] == 5000

    def test_generate_error_report(self, error_db, tmp_path):
        """Test the error report is written as JSON and HTML."""
        generator = ErrorReportGenerator(error_db, reports_dir=str(tmp_path))

        result = generator.generate_error_report()

        assert set(result['files']) == {'json', 'html'}
        with open(result['files']['json'], encoding='utf-8') as f:
            assert json.load(f)['summary']['total_errors'] == 3
        assert generator.get_stats() == {'error_reports_generated': 1, 'total_errors_analyzed': 3}
