"""Scraper for Sympla event listings."""
import logging
import re
from typing import Any, Dict, Optional, Union

import config
from processor.models import RawEvent
from scraper.base_scraper import BaseScraper

logger = logging.getLogger(__name__)

# Sympla appends noise like "19 horas" or "19hs" to card dates
DATE_NOISE = re.compile(r'\s+(horas?|hs)\b', re.IGNORECASE)


class SymplaScraper(BaseScraper):
    """Scraper for www.sympla.com.br search pages."""

    name = 'sympla'

    def __init__(self, source_config: Optional[config.SourceConfig] = None, **kwargs):
        if source_config is None:
            source_config = config.build_sources({})['sympla']
        super().__init__(source_config, **kwargs)

    def extract_event_data(self, card, search_term: Optional[str] = None) -> Optional[RawEvent]:
        title = self.text(card, 'title')
        if not title or len(title) < 3:
            logger.debug('Skipping Sympla card without a title')
            return None

        date_text = self.text(card, 'date')
        if date_text:
            date_text = DATE_NOISE.sub('h', date_text)

        image_url = self.attribute(card, 'image', 'src', 'data-src')
        link = self.attribute(card, 'link', 'href')
        if link is None and card.name == 'a':
            link = card.get('href')

        return RawEvent(
            title=title,
            description=self.text(card, 'description'),
            date=date_text,
            location=self.parse_location(self.text(card, 'location')),
            image={'url': image_url, 'alt': title} if image_url else None,
            price=self.text(card, 'price'),
            organizer=self.text(card, 'organizer'),
            url=self.absolute_url(link),
            source=self.name,
            search_term=search_term,
            is_regional=self.is_regional_term(search_term)
        )

    @staticmethod
    def parse_location(text: Optional[str]) -> Union[str, Dict[str, Any], None]:
        """Split 'Venue - Address' location lines into venue and address."""
        if not text:
            return None
        if ' - ' not in text:
            return text
        venue = text.partition(' - ')[0]
        return {'venue': venue.strip() or None, 'address': text.strip()}
