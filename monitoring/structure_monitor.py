"""Health checks for the page structure of scraped sites."""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import requests
from bs4 import BeautifulSoup

import config
from errors import ErrorHandler, ErrorType, ScrapingError, from_http_status, from_request_exception
from scraper.base_scraper import split_selector
from storage.operation_logger import OperationLogger

logger = logging.getLogger(__name__)

SELECTOR_WEIGHT = 0.7
STRUCTURE_WEIGHT = 0.3
FAILING_HEALTH = 50
DEGRADED_HEALTH = 70
HEALTHY_STATUS = 80
CRITICAL_ALERT_FAILURES = 5
STRUCTURE_CHECK = 'structure_check'
STATE_HISTORY_DAYS = 7

NAVIGATION_SELECTOR = 'nav, .navigation, .navbar, header'
FOOTER_SELECTOR = 'footer, .footer'

ALTERNATIVE_SELECTORS = {
    'eventbrite': {
        'event_card': ['.event-card-wrapper', '.event-listing-item', '[class*="event"]'],
        'title': ['h1', 'h2', 'h3', '[class*="title"]', '[class*="name"]'],
        'date': ['[class*="date"]', '[class*="time"]', 'time'],
        'location': ['[class*="location"]', '[class*="venue"]', '[class*="address"]'],
        'image': ['img[src*="eventbrite"]', '.event-image img', 'img[alt*="event"]'],
    },
    'sympla': {
        'event_card': ['.event-wrapper', '.event-container', '[class*="event"]'],
        'title': ['h1', 'h2', 'h3', '[class*="title"]', '[class*="name"]'],
        'date': ['[class*="date"]', '[class*="time"]', 'time'],
        'location': ['[class*="location"]', '[class*="venue"]', '[class*="address"]'],
        'image': ['img[src*="sympla"]', '.event-image img', 'img[alt*="event"]'],
    },
}


class StructureMonitor:
    """
    Fetches each site's test page and scores how many configured
    selectors still match.

    Overall health is 70% selector average plus 30% page-structure
    ratio. A scraper fails a check on error or health below 50; after
    ``failure_threshold`` consecutive failures an alert is raised.

    With an ``operation_logger`` every check is written to the run log as
    a ``structure_check`` operation, and a scraper's failure count is
    rebuilt from those rows the first time it is checked, so the count
    carries over between invocations.
    """

    def __init__(
        self,
        settings: config.Settings,
        session: Optional[requests.Session] = None,
        failure_threshold: int = 3,
        operation_logger: Optional[OperationLogger] = None
    ):
        self.settings = settings
        self.session = session or requests.Session()
        self.session.headers.update({'User-Agent': config.USER_AGENT, **config.DEFAULT_HEADERS})
        self.failure_threshold = failure_threshold
        self.operation_logger = operation_logger
        self.error_handler = ErrorHandler('structure-monitor')
        self.state: Dict[str, Dict[str, Any]] = {}
        self.alerts: List[Dict[str, Any]] = []
        self.reset_stats()

    def check_all_structures(self) -> Dict[str, Dict[str, Any]]:
        """Check every configured scraper."""
        logger.info('Checking page structure of all scrapers')
        return {name: self.check_scraper_structure(name) for name in self.settings.sources}

    def check_scraper_structure(self, name: str) -> Dict[str, Any]:
        """
        Check one scraper's test page.

        Args:
            name: Scraper name

        Returns:
            Check result with selector results, structure checks and health

        Raises:
            ScrapingError: configuration_error for an unknown scraper
        """
        source = self.settings.sources.get(name)
        if source is None:
            raise ScrapingError(
                f"No configuration for scraper '{name}'",
                ErrorType.CONFIGURATION_ERROR,
                details={'scraper': name}
            )

        if name not in self.state:
            self.restore_state(name)

        self.stats['total_checks'] += 1
        operation_id = self._start_check(name, source.test_url)
        timestamp = datetime.now(timezone.utc).isoformat()

        try:
            html = self._fetch(source.test_url)
        except ScrapingError as e:
            self.error_handler.handle(e, {'scraper': name})
            result = {
                'success': False,
                'scraper': name,
                'timestamp': timestamp,
                'url': source.test_url,
                'error': e.message,
                'error_type': e.type.value,
                'overall_health': 0
            }
            self._update_state(name, result)
            self._finish_check(operation_id, result, e)
            self._process_result(name, result)
            return result

        soup = BeautifulSoup(html, 'html.parser')
        selectors = self.check_selectors(soup, source.selectors)
        structure = self.check_page_structure(soup, source)

        result = {
            'success': True,
            'scraper': name,
            'timestamp': timestamp,
            'url': source.test_url,
            'selectors': selectors,
            'structure': structure,
            'overall_health': self.calculate_overall_health(selectors, structure)
        }
        logger.info(f"Structure check for {name}: {result['overall_health']}% health")

        self._update_state(name, result)
        self._finish_check(operation_id, result)
        self._process_result(name, result)
        return result

    def _fetch(self, url: str) -> str:
        try:
            response = self.session.get(url, timeout=self.settings.timeout_seconds)
        except requests.RequestException as e:
            raise from_request_exception(e, url) from e
        if not response.ok:
            raise from_http_status(response.status_code, url)
        return response.text

    @staticmethod
    def check_selectors(soup: BeautifulSoup, selectors: Dict[str, str]) -> Dict[str, Dict[str, Any]]:
        """Try each selector's comma-separated alternatives in order."""
        results = {}
        for selector_name, selector in selectors.items():
            alternatives = split_selector(selector)
            found = None
            count = 0
            for alternative in alternatives:
                matches = soup.select(alternative)
                if matches:
                    found = alternative
                    count = len(matches)
                    break
            results[selector_name] = {
                'found': found is not None,
                'element_count': count,
                'working_selector': found,
                'all_selectors': alternatives,
                'health': 100 if found else 0
            }
        return results

    @staticmethod
    def check_page_structure(soup: BeautifulSoup, source: config.SourceConfig) -> Dict[str, bool]:
        title = soup.title.get_text(strip=True) if soup.title else ''
        card_selector = source.selectors.get('event_card')
        return {
            'has_title': bool(title),
            'has_events': bool(card_selector) and bool(soup.select(card_selector)),
            'has_navigation': bool(soup.select(NAVIGATION_SELECTOR)),
            'has_footer': bool(soup.select(FOOTER_SELECTOR)),
        }

    @staticmethod
    def calculate_overall_health(selectors: Dict[str, Dict[str, Any]], structure: Dict[str, bool]) -> int:
        selector_health = [result['health'] for result in selectors.values()]
        selector_average = sum(selector_health) / len(selector_health) if selector_health else 0
        structure_ratio = sum(1 for passed in structure.values() if passed) / len(structure) * 100 if structure else 0
        return round(selector_average * SELECTOR_WEIGHT + structure_ratio * STRUCTURE_WEIGHT)

    def restore_state(self, name: str) -> int:
        """
        Rebuild a scraper's consecutive failure count from the run log.

        Returns:
            Failed structure checks since the last passing one
        """
        state = self.state.setdefault(name, {'consecutive_failures': 0})
        if self.operation_logger is None:
            return state['consecutive_failures']

        since = datetime.now(timezone.utc) - timedelta(days=STATE_HISTORY_DAYS)
        rows = [
            row for row in self.operation_logger.db.get_operations(since)
            if row.get('operation_type') == STRUCTURE_CHECK and row.get('source') == name
        ]
        rows.sort(key=lambda row: (row.get('started_at') or '', row.get('completed_at') or ''))

        failures = 0
        for row in reversed(rows):
            if row.get('status') != 'failed':
                break
            failures += 1

        state['consecutive_failures'] = failures
        logger.debug(f"Restored {failures} consecutive structure check failures for {name}")
        return failures

    def _start_check(self, name: str, url: str) -> Optional[str]:
        if self.operation_logger is None:
            return None
        return self.operation_logger.start_operation(name, STRUCTURE_CHECK, {'url': url}).id

    def _finish_check(
        self,
        operation_id: Optional[str],
        result: Dict[str, Any],
        error: Optional[ScrapingError] = None
    ) -> None:
        if operation_id is None:
            return
        if error is None and result['overall_health'] < FAILING_HEALTH:
            error = ScrapingError(
                f"Structure health {result['overall_health']}% is below {FAILING_HEALTH}%",
                ErrorType.SITE_STRUCTURE_CHANGED,
                details={'scraper': result['scraper'], 'health': result['overall_health']}
            )
        if error is None:
            self.operation_logger.complete_operation(operation_id)
        else:
            self.operation_logger.fail_operation(operation_id, error)

    def _update_state(self, name: str, result: Dict[str, Any]) -> None:
        state = self.state.setdefault(name, {'consecutive_failures': 0})
        state['last_check'] = result['timestamp']
        state['health'] = result['overall_health']
        if not result['success'] or result['overall_health'] < FAILING_HEALTH:
            state['consecutive_failures'] += 1
        else:
            state['consecutive_failures'] = 0

    def _process_result(self, name: str, result: Dict[str, Any]) -> None:
        failures = self.state[name]['consecutive_failures']
        if failures >= self.failure_threshold:
            self.generate_alert(name, result, failures)
        if result['success'] and result['overall_health'] < DEGRADED_HEALTH:
            result['structural_changes'] = self.detect_structural_changes(name, result)

    def generate_alert(self, name: str, result: Dict[str, Any], failures: int) -> Dict[str, Any]:
        alert = {
            'id': f"alert_{name}_{uuid.uuid4().hex[:8]}",
            'type': 'structural_change',
            'scraper': name,
            'severity': 'critical' if failures >= CRITICAL_ALERT_FAILURES else 'high',
            'message': f"{failures} consecutive failed structure checks for {name}",
            'health': result.get('overall_health', 0),
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'resolved': False
        }
        self.alerts.append(alert)
        self.stats['alerts_generated'] += 1
        logger.error(f"ALERT: {alert['message']}", extra={'scraper': name, 'alert_severity': alert['severity']})
        return alert

    def detect_structural_changes(self, name: str, result: Dict[str, Any]) -> List[Dict[str, Any]]:
        changes = []
        for selector_name, selector_result in result.get('selectors', {}).items():
            if not selector_result['found']:
                changes.append({
                    'type': 'selector_not_found',
                    'selector': selector_name,
                    'attempted': selector_result['all_selectors'],
                    'suggestion': self.suggest_alternative_selectors(name, selector_name)
                })

        if changes:
            self.stats['structural_changes_detected'] += 1
            logger.warning(
                f"Structural changes detected on {name}: "
                f"{', '.join(change['selector'] for change in changes)}"
            )
        return changes

    @staticmethod
    def suggest_alternative_selectors(name: str, selector_name: str) -> List[str]:
        return list(ALTERNATIVE_SELECTORS.get(name, {}).get(selector_name, []))

    def get_health_report(self) -> Dict[str, Any]:
        scrapers = {}
        for name, state in self.state.items():
            health = state.get('health', 0)
            if health >= HEALTHY_STATUS:
                status = 'healthy'
            elif health >= FAILING_HEALTH:
                status = 'warning'
            else:
                status = 'critical'
            scrapers[name] = {
                'health': health,
                'consecutive_failures': state['consecutive_failures'],
                'last_check': state.get('last_check'),
                'status': status
            }

        health_values = [s['health'] for s in scrapers.values()]
        return {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'overall_health': round(sum(health_values) / len(health_values)) if health_values else 0,
            'scrapers': scrapers,
            'alerts': [alert for alert in self.alerts if not alert['resolved']],
            'stats': dict(self.stats)
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            'state': {name: dict(state) for name, state in self.state.items()},
            'failure_threshold': self.failure_threshold
        }

    def reset_stats(self) -> None:
        self.stats = {
            'total_checks': 0,
            'structural_changes_detected': 0,
            'alerts_generated': 0
        }
        self.alerts = []
