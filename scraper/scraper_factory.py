"""Registry that builds configured site scrapers by name."""
import logging
from typing import Dict, List, Optional, Type

import requests

import config
from errors import ErrorType, ScrapingError
from scraper.base_scraper import BaseScraper
from scraper.eventbrite import EventbriteScraper
from scraper.sympla import SymplaScraper

logger = logging.getLogger(__name__)

SCRAPER_CLASSES: Dict[str, Type[BaseScraper]] = {
    'eventbrite': EventbriteScraper,
    'sympla': SymplaScraper,
}


class ScraperFactory:
    """Creates scrapers for the sources enabled in the settings."""

    def __init__(self, settings: config.Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session
        self._instances: Dict[str, BaseScraper] = {}

    def create_scraper(self, name: str) -> BaseScraper:
        """
        Build a scraper for an enabled source.

        Raises:
            ScrapingError: configuration_error for unknown or disabled sources
        """
        key = name.lower()
        scraper_class = SCRAPER_CLASSES.get(key)
        source_config = self.settings.sources.get(key)

        if scraper_class is None or source_config is None:
            raise ScrapingError(
                f"Unsupported scraper '{name}'. Available: {', '.join(self.get_available_scrapers())}",
                ErrorType.CONFIGURATION_ERROR,
                details={'scraper': name}
            )

        if not source_config.enabled:
            raise ScrapingError(
                f"Scraper '{name}' is disabled",
                ErrorType.CONFIGURATION_ERROR,
                details={'scraper': name}
            )

        scraper = scraper_class(source_config, settings=self.settings, session=self.session)
        logger.info(f"Created {source_config.name} scraper")
        return scraper

    def get_scraper(self, name: str) -> BaseScraper:
        """Return a cached scraper instance, creating it on first use."""
        key = name.lower()
        if key not in self._instances:
            self._instances[key] = self.create_scraper(key)
        return self._instances[key]

    def get_available_scrapers(self) -> List[str]:
        return [name for name in SCRAPER_CLASSES if name in self.settings.sources]

    def get_enabled_scrapers(self) -> List[str]:
        return [name for name in self.get_available_scrapers() if self.settings.sources[name].enabled]

    def close(self) -> None:
        for scraper in self._instances.values():
            scraper.close()
        self._instances.clear()
