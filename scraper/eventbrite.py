"""Scraper for Eventbrite Brasil search listings."""
import logging
from typing import Optional

import config
from processor.models import RawEvent
from scraper.base_scraper import BaseScraper, select_first

logger = logging.getLogger(__name__)


class EventbriteScraper(BaseScraper):
    """Scraper for www.eventbrite.com.br search pages."""

    name = 'eventbrite'

    def __init__(self, source_config: Optional[config.SourceConfig] = None, **kwargs):
        if source_config is None:
            source_config = config.build_sources({})['eventbrite']
        super().__init__(source_config, **kwargs)

    def extract_event_data(self, card, search_term: Optional[str] = None) -> Optional[RawEvent]:
        """
        Extract one event from a search result card.

        Args:
            card: BeautifulSoup element for the card
            search_term: Term that produced the page

        Returns:
            RawEvent, or None when the card has no usable title
        """
        title = self.text(card, 'title')
        if not title or len(title) < 3:
            logger.debug('Skipping Eventbrite card without a title')
            return None

        # Cards usually carry a machine-readable <time datetime="...">
        time_element = select_first(card, 'time[datetime]')
        date = time_element.get('datetime') if time_element is not None else self.text(card, 'date')

        image_url = self.attribute(card, 'image', 'src', 'data-src')
        link = self.attribute(card, 'link', 'href')

        return RawEvent(
            title=title,
            description=self.text(card, 'description'),
            date=date,
            location=self.text(card, 'location'),
            image={'url': image_url, 'alt': title} if image_url else None,
            price=self.text(card, 'price'),
            organizer=self.text(card, 'organizer'),
            url=self.absolute_url(link),
            source=self.name,
            search_term=search_term,
            is_regional=self.is_regional_term(search_term)
        )
