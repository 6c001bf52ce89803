"""Unit tests for StructureMonitor."""
import pytest
import responses

from errors import ErrorType, ScrapingError
from monitoring.structure_monitor import ALTERNATIVE_SELECTORS, StructureMonitor
from storage.operation_logger import OperationLogger

SYMPLA_TEST_URL = 'https://www.sympla.com.br/eventos'
EVENTBRITE_TEST_URL = 'https://www.eventbrite.com.br/d/brazil/events/'

HEALTHY_PAGE = """
<html><head><title>Eventos em Ji-Paraná</title></head><body>
  <nav>menu</nav>
  <div class="sympla-card">
    <a href="/evento/1"><div class="sympla-card__title">Festival de Jazz</div></a>
    <div class="sympla-card__date">20/11/2026</div>
    <div class="sympla-card__location">Parque das Águas</div>
    <div class="sympla-card__image"><img src="https://images.sympla.com.br/a.png"></div>
    <div class="sympla-card__price">Gratuito</div>
    <div class="sympla-card__description">Noite de jazz ao ar livre</div>
    <div class="event-organizer">Prefeitura</div>
  </div>
  <footer>rodapé</footer>
</body></html>
"""

BROKEN_PAGE = '<html><body><nav>menu</nav><p>Em manutenção</p><footer>rodapé</footer></body></html>'


@pytest.fixture
def monitor(settings):
    return StructureMonitor(settings)


class TestCheckScraperStructure:
    """Test cases for a single structure check."""

    @responses.activate
    def test_healthy_page(self, monitor):
        """Test every selector and structure check passing gives full health."""
        responses.add(responses.GET, SYMPLA_TEST_URL, body=HEALTHY_PAGE)

        result = monitor.check_scraper_structure('sympla')

        assert result['success'] is True
        assert result['overall_health'] == 100
        assert result['selectors']['event_card']['working_selector'] == '.sympla-card'
        assert result['selectors']['title']['element_count'] == 1
        assert result['structure'] == {
            'has_title': True, 'has_events': True, 'has_navigation': True, 'has_footer': True
        }
        assert 'structural_changes' not in result
        assert monitor.state['sympla']['consecutive_failures'] == 0

    @responses.activate
    def test_broken_page(self, monitor):
        """Test missing selectors lower health and report structural changes."""
        responses.add(responses.GET, SYMPLA_TEST_URL, body=BROKEN_PAGE)

        result = monitor.check_scraper_structure('sympla')

        # no selector matches; navigation and footer are half the structure checks
        assert result['overall_health'] == 15
        changes = {change['selector']: change for change in result['structural_changes']}
        assert set(changes) == set(result['selectors'])
        assert changes['event_card']['suggestion'] == ALTERNATIVE_SELECTORS['sympla']['event_card']
        assert monitor.state['sympla']['consecutive_failures'] == 1
        assert monitor.get_stats()['structural_changes_detected'] == 1

    @responses.activate
    def test_fetch_failure(self, monitor):
        """Test an HTTP error is a failed check with zero health."""
        responses.add(responses.GET, SYMPLA_TEST_URL, status=404)

        result = monitor.check_scraper_structure('sympla')

        assert result['success'] is False
        assert result['overall_health'] == 0
        assert result['error_type'] == 'site_structure_changed'

    def test_unknown_scraper(self, monitor):
        """Test an unconfigured scraper raises a configuration error."""
        with pytest.raises(ScrapingError) as exc_info:
            monitor.check_scraper_structure('facebook')

        assert exc_info.value.type == ErrorType.CONFIGURATION_ERROR

    def test_calculate_overall_health(self):
        """Test the 70/30 weighting of selectors and structure."""
        selectors = {'a': {'health': 100}, 'b': {'health': 0}}
        structure = {'has_title': True, 'has_events': True, 'has_navigation': False, 'has_footer': False}

        assert StructureMonitor.calculate_overall_health(selectors, structure) == 50


class TestAlerts:
    """Test cases for consecutive failures and alerts."""

    @responses.activate
    def test_alert_after_threshold(self, monitor):
        """Test an alert is raised on the third consecutive failure."""
        responses.add(responses.GET, SYMPLA_TEST_URL, status=500)

        for _ in range(2):
            monitor.check_scraper_structure('sympla')
        assert monitor.alerts == []

        monitor.check_scraper_structure('sympla')

        assert len(monitor.alerts) == 1
        assert monitor.alerts[0]['severity'] == 'high'
        assert monitor.alerts[0]['scraper'] == 'sympla'

    @responses.activate
    def test_alert_becomes_critical(self, monitor):
        """Test five consecutive failures produce a critical alert."""
        responses.add(responses.GET, SYMPLA_TEST_URL, status=500)

        for _ in range(5):
            monitor.check_scraper_structure('sympla')

        assert [alert['severity'] for alert in monitor.alerts] == ['high', 'high', 'critical']

    @responses.activate
    def test_success_resets_failures(self, monitor):
        """Test a healthy check resets the failure counter."""
        responses.add(responses.GET, SYMPLA_TEST_URL, status=500)
        responses.add(responses.GET, SYMPLA_TEST_URL, body=HEALTHY_PAGE)

        monitor.check_scraper_structure('sympla')
        monitor.check_scraper_structure('sympla')

        assert monitor.state['sympla']['consecutive_failures'] == 0


class TestHealthReport:
    """Test cases for check_all_structures and get_health_report."""

    @responses.activate
    def test_health_report(self, monitor):
        """Test per-scraper status and the overall average."""
        responses.add(responses.GET, SYMPLA_TEST_URL, body=HEALTHY_PAGE)
        responses.add(responses.GET, EVENTBRITE_TEST_URL, status=503)

        results = monitor.check_all_structures()
        report = monitor.get_health_report()

        assert set(results) == {'eventbrite', 'sympla'}
        assert report['scrapers']['sympla']['status'] == 'healthy'
        assert report['scrapers']['eventbrite']['status'] == 'critical'
        assert report['overall_health'] == 50
        assert report['alerts'] == []
        assert report['stats']['total_checks'] == 2

    def test_empty_report(self, monitor):
        """Test the report before any check."""
        report = monitor.get_health_report()

        assert report['overall_health'] == 0
        assert report['scrapers'] == {}


class TestPersistedState:
    """Test cases for failure counts kept in the run log."""

    @responses.activate
    def test_failures_restored_by_new_monitor(self, settings, db):
        """Test a fresh monitor continues the failure count of earlier ones."""
        responses.add(responses.GET, SYMPLA_TEST_URL, status=503)

        for _ in range(2):
            StructureMonitor(settings, operation_logger=OperationLogger(db)).check_scraper_structure('sympla')
        monitor = StructureMonitor(settings, operation_logger=OperationLogger(db))
        monitor.check_scraper_structure('sympla')

        assert monitor.state['sympla']['consecutive_failures'] == 3
        assert len(monitor.alerts) == 1
        rows = db.get_operations()
        assert [row['operation_type'] for row in rows] == ['structure_check'] * 3
        assert rows[0]['error_details']['type'] == 'network_error'
        assert rows[0]['filters_used'] == {'url': SYMPLA_TEST_URL}

    @responses.activate
    def test_passing_check_ends_the_streak(self, settings, db):
        """Test only failures after the last passing check are counted."""
        responses.add(responses.GET, SYMPLA_TEST_URL, status=503)
        responses.add(responses.GET, SYMPLA_TEST_URL, body=HEALTHY_PAGE)
        responses.add(responses.GET, SYMPLA_TEST_URL, body=BROKEN_PAGE)

        for _ in range(3):
            StructureMonitor(settings, operation_logger=OperationLogger(db)).check_scraper_structure('sympla')

        statuses = [row['status'] for row in db.get_operations()]
        assert statuses == ['failed', 'completed', 'failed']
        assert db.get_operations()[-1]['error_details']['type'] == 'site_structure_changed'
        assert StructureMonitor(settings, operation_logger=OperationLogger(db)).restore_state('sympla') == 1

    def test_without_operation_logger(self, monitor):
        """Test state starts empty when no run log is configured."""
        assert monitor.restore_state('sympla') == 0
