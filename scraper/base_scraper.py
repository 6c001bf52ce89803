"""Shared HTTP fetching and HTML card parsing for site scrapers."""
import logging
import time
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode, urljoin

import requests
from bs4 import BeautifulSoup

import config
from errors import (
    ErrorHandler,
    ErrorSeverity,
    ErrorType,
    ScrapingError,
    from_http_status,
    from_request_exception,
    parse_retry_after,
)
from processor.models import RawEvent
from scraper.rate_limiter import RateLimiter
from scraper.retry_handler import RetryHandler

logger = logging.getLogger(__name__)


def split_selector(selector: str) -> List[str]:
    return [part.strip() for part in selector.split(',') if part.strip()]


def select_first(node, selector: str):
    """Return the first element matched by any comma-separated alternative, in order."""
    for alternative in split_selector(selector):
        found = node.select_one(alternative)
        if found is not None:
            return found
    return None


def select_all(node, selector: str) -> list:
    """Return every element matched by the first alternative that matches anything."""
    for alternative in split_selector(selector):
        found = node.select(alternative)
        if found:
            return found
    return []


class BaseScraper:
    """
    Base class for site scrapers.

    Subclasses implement ``extract_event_data`` to turn one listing card
    into a RawEvent; everything about fetching, throttling and retrying
    lives here.
    """

    name = 'base'

    def __init__(
        self,
        source_config: config.SourceConfig,
        settings: Optional[config.Settings] = None,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[RateLimiter] = None,
        retry_handler: Optional[RetryHandler] = None,
        max_events: int = 50
    ):
        """
        Initialize the scraper.

        Args:
            source_config: Site URLs, selectors and rate limit
            settings: Runtime settings (timeouts, retries, regional cities)
            session: HTTP session to reuse
            rate_limiter: Limiter for this site
            retry_handler: Retry policy for page fetches
            max_events: Maximum events kept per search term
        """
        self.source_config = source_config
        self.settings = settings or config.Settings()
        self.timeout = self.settings.timeout_seconds
        self.max_events = max_events

        self.session = session or requests.Session()
        self.session.headers.update({'User-Agent': config.USER_AGENT, **config.DEFAULT_HEADERS})

        self.rate_limiter = rate_limiter or RateLimiter(
            base_delay=source_config.rate_limit,
            max_delay=30.0,
            max_retries=self.settings.max_retries
        )
        self.retry_handler = retry_handler or RetryHandler(max_retries=self.settings.max_retries)
        self.error_handler = ErrorHandler(f"scraper:{self.name}")
        self.reset_stats()

    def build_search_url(self, search_term: str) -> str:
        return f"{self.source_config.search_url}?{urlencode({'q': search_term})}"

    def extract_event_data(self, card, search_term: Optional[str] = None) -> Optional[RawEvent]:
        raise NotImplementedError(f"{type(self).__name__} must implement extract_event_data")

    def fetch_page(self, url: str, params: Optional[Dict[str, Any]] = None) -> str:
        """
        Fetch one page, honouring the rate limiter.

        Args:
            url: Page URL
            params: Query parameters

        Returns:
            Response body

        Raises:
            ScrapingError: typed from the transport failure or status code
        """
        self.rate_limiter.wait()
        started = time.monotonic()

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            self.rate_limiter.adjust_delay(time.monotonic() - started, 0)
            raise from_request_exception(e, url) from e

        self.stats['requests'] += 1
        status = response.status_code
        self.rate_limiter.adjust_delay(time.monotonic() - started, status)

        if status == 429 or status >= 500:
            retry_after = parse_retry_after(response.headers.get('Retry-After'))
            self.rate_limiter.handle_error(status, retry_after)
            raise from_http_status(status, url, retry_after)

        if not response.ok:
            raise from_http_status(status, url)

        self.rate_limiter.record_success()
        logger.debug(f"Fetched {url} ({len(response.text)} bytes)")
        return response.text

    def scrape_events(self, search_terms: Optional[Iterable[str]] = None) -> List[RawEvent]:
        """
        Scrape listings for each search term.

        Args:
            search_terms: Terms to search; defaults to the source's configured terms

        Returns:
            RawEvents from every term that could be fetched

        Raises:
            ScrapingError: every search term failed
        """
        terms = list(search_terms or self.source_config.search_terms)
        self.stats['started_at'] = time.time()
        self.rate_limiter.reset()

        events: List[RawEvent] = []
        seen = set()
        last_error: Optional[ScrapingError] = None
        failed_terms = 0

        for term in terms:
            url = self.build_search_url(term)
            logger.info(f"Searching {self.name} for '{term}'")
            try:
                html = self.retry_handler.execute_with_retry(
                    lambda: self.fetch_page(url), f"{self.name} search '{term}'"
                )
            except ScrapingError as e:
                failed_terms += 1
                last_error = e
                self.stats['errors'] += 1
                self.error_handler.handle(e, {'scraper': self.name, 'search_term': term})
                continue

            for event in self.parse_events(html, term):
                key = event.url or (event.title, event.date)
                if key in seen:
                    continue
                seen.add(key)
                events.append(event)

        self.stats['finished_at'] = time.time()

        if terms and failed_terms == len(terms) and last_error is not None:
            raise last_error

        logger.info(f"Scraped {len(events)} events from {self.name}")
        return events

    def parse_events(self, html: str, search_term: Optional[str] = None) -> List[RawEvent]:
        """Parse listing cards out of a search results page."""
        soup = BeautifulSoup(html, 'html.parser')
        cards = select_all(soup, self.source_config.selectors['event_card'])

        if not cards:
            logger.warning(f"No event cards found on {self.name} page for '{search_term}'")

        events = []
        for card in cards:
            if len(events) >= self.max_events:
                logger.info(f"Reached limit of {self.max_events} events for '{search_term}'")
                break
            self.stats['cards'] += 1
            try:
                event = self.extract_event_data(card, search_term)
            except Exception as e:
                self.stats['malformed_cards'] += 1
                logger.warning(f"Failed to parse {self.name} event card: {e}")
                continue
            if event is None:
                self.stats['malformed_cards'] += 1
                continue
            events.append(event)

        return events

    # ------------------------------------------------------------------
    # Extraction helpers
    # ------------------------------------------------------------------

    def text(self, card, field: str) -> Optional[str]:
        element = select_first(card, self.source_config.selectors.get(field, ''))
        if element is None:
            return None
        value = element.get_text(' ', strip=True)
        return value or None

    def attribute(self, card, field: str, *names: str) -> Optional[str]:
        element = select_first(card, self.source_config.selectors.get(field, ''))
        if element is None:
            return None
        for name in names:
            value = element.get(name)
            if value:
                return value.strip()
        return None

    def absolute_url(self, href: Optional[str]) -> Optional[str]:
        if not href:
            return None
        return urljoin(self.source_config.base_url + '/', href)

    def is_regional_term(self, search_term: Optional[str]) -> bool:
        if not search_term:
            return False
        term = search_term.lower()
        return any(city.lower() == term for city in self.settings.regional_cities)

    def require_title(self, title: Optional[str]) -> str:
        if not title:
            raise ScrapingError(
                f"{self.name} card has no title",
                ErrorType.PARSING_ERROR,
                ErrorSeverity.LOW,
                {'scraper': self.name}
            )
        return title

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            'rate_limiter': self.rate_limiter.get_stats(),
            'retry_handler': self.retry_handler.get_stats(),
            'errors_by_type': self.error_handler.get_stats()['by_type']
        }

    def reset_stats(self) -> None:
        self.stats = {
            'requests': 0,
            'cards': 0,
            'malformed_cards': 0,
            'errors': 0,
            'started_at': None,
            'finished_at': None
        }

    def close(self) -> None:
        self.session.close()
