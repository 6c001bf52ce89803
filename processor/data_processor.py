"""Processor for normalizing, validating and scoring scraped event data."""
import hashlib
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

import config
from processor.category_classifier import CategoryClassifier
from processor.date_parser import DateParser
from processor.models import (
    BatchProcessingResult,
    Image,
    Location,
    NormalizedEvent,
    Organizer,
    Price,
    ProcessedEvent,
    ProcessingResult,
    RawEvent,
    RejectedEvent,
)

logger = logging.getLogger(__name__)

TITLE_DISALLOWED = re.compile(r'[^\w\s\-\(\)\[\]]')
PRICE_AMOUNT = re.compile(r'R\$\s*(\d+(?:[.,]\d{1,2})?)')
FREE_MARKERS = ('grátis', 'gratis', 'gratuito', 'free')
STATE_CODE_PATTERN = re.compile(r'\b(' + '|'.join(config.STATE_CODES) + r')\b')


def parse_amount(value: Any) -> Optional[float]:
    """Read a price amount from a number or a 'R$ 50,00' style string."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) if value >= 0 else None
    if isinstance(value, str):
        match = PRICE_AMOUNT.search(value)
        text = match.group(1) if match else value.strip()
        try:
            amount = float(text.replace(',', '.'))
        except ValueError:
            return None
        return amount if amount >= 0 else None
    return None


class DataProcessor:
    """
    Turns RawEvents into ProcessedEvents.

    Each record goes through normalize, validate, classify, score and a
    final validation. Rejections are reported as reason codes on the
    ProcessingResult; nothing here raises for bad input.
    """

    def __init__(
        self,
        settings: Optional[config.Settings] = None,
        date_parser: Optional[DateParser] = None,
        classifier: Optional[CategoryClassifier] = None
    ):
        self.settings = settings or config.Settings(sources=config.build_sources({}))
        self.rules = self.settings.validation
        self.date_parser = date_parser or DateParser()
        self.classifier = classifier or CategoryClassifier()
        self.reset_stats()

    def process(self, raw: RawEvent, source: Optional[str] = None) -> ProcessingResult:
        """
        Process a single raw event.

        Args:
            raw: Event as extracted by a scraper
            source: Source name; defaults to raw.source

        Returns:
            ProcessingResult with the accepted event or rejection reasons
        """
        source = source or raw.source
        self.stats['processed'] += 1
        self._count('source_distribution', source)

        try:
            normalized = self.normalize(raw, source)

            reasons = self.validate(normalized, raw)
            if reasons:
                return self._reject(raw, source, reasons)

            event = self.enhance(normalized)

            classification = self.classifier.classify(event.title, event.description)
            event.category = classification.category
            event.category_confidence = classification.confidence
            event.tags = list(classification.tags)
            self._count('category_distribution', event.category)

            reasons = self.validate_processed(event)
            if reasons:
                return self._reject(raw, source, reasons)

        except Exception as e:
            logger.error(f"Failed to process event '{raw.title}': {e}", exc_info=True)
            result = self._reject(raw, source, ['processing_error'])
            result.detail = str(e)
            return result

        self.stats['successful'] += 1
        return ProcessingResult(success=True, source=source, event=event)

    def process_batch(self, raw_events: Iterable[RawEvent], source: Optional[str] = None) -> BatchProcessingResult:
        """
        Process a list of raw events.

        Args:
            raw_events: Events from one scraper run
            source: Source name applied to every record

        Returns:
            BatchProcessingResult splitting accepted and rejected records
        """
        raw_events = list(raw_events)
        results = BatchProcessingResult()

        for raw in raw_events:
            result = self.process(raw, source)
            if result.success:
                results.successful.append(result.event)
            else:
                results.rejected.append(RejectedEvent(raw=raw, reasons=result.errors))
                if result.detail:
                    results.errors.append(f"{raw.title}: {result.detail}")

        logger.info(
            f"Processed {len(raw_events)} events from {source or 'mixed sources'}: "
            f"{len(results.successful)} accepted, {len(results.rejected)} rejected"
        )
        return results

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def normalize(self, raw: RawEvent, source: str) -> NormalizedEvent:
        """Clean every field of a raw event into well-typed values."""
        title = self.clean_title(raw.title)
        return NormalizedEvent(
            title=title[:self.rules.title_max_length],
            source=source,
            scraped_at=datetime.now(timezone.utc).isoformat(),
            description=self._normalize_description(raw.description),
            date=self._normalize_date(raw.date),
            location=self._normalize_location(raw.location),
            image=self._normalize_image(raw.image),
            price=self._normalize_price(raw.price),
            organizer=self._normalize_organizer(raw.organizer),
            url=self._normalize_url(raw.url),
            is_regional=bool(raw.is_regional),
            search_term=raw.search_term
        )

    @staticmethod
    def clean_title(title: Optional[str]) -> str:
        if not title:
            return ''
        title = TITLE_DISALLOWED.sub('', title)
        return re.sub(r'\s+', ' ', title).strip()

    def _normalize_description(self, description: Optional[str]) -> Optional[str]:
        if not description or not description.strip():
            return None
        return re.sub(r'\s+', ' ', description.strip())[:self.rules.description_max_length]

    def _normalize_date(self, value: Any) -> Optional[str]:
        if not value:
            return None
        parsed = self.date_parser.parse_date_time(value) if isinstance(value, str) else value
        if isinstance(parsed, datetime) and parsed.tzinfo is not None:
            # stored dates are naive local time
            parsed = parsed.astimezone().replace(tzinfo=None)
        return self.date_parser.format_to_standard(parsed)

    def _normalize_location(self, value: Any) -> Optional[Location]:
        if not value:
            return None

        if isinstance(value, str):
            text = value.strip()
            return Location(
                venue=text,
                address=text,
                city=self.extract_city(text),
                state=self.extract_state(text)
            )

        if isinstance(value, dict):
            venue = self._clean_text(value.get('venue'))
            address = self._clean_text(value.get('address')) or venue
            return Location(
                venue=venue,
                address=address,
                city=self._clean_text(value.get('city')) or self.extract_city(address or ''),
                state=self._clean_text(value.get('state')) or self.extract_state(address or ''),
                coordinates=self._normalize_coordinates(value.get('coordinates'))
            )

        return None

    @staticmethod
    def _clean_text(value: Any) -> Optional[str]:
        if not isinstance(value, str) or not value.strip():
            return None
        return re.sub(r'\s+', ' ', value.strip())

    @staticmethod
    def _normalize_coordinates(value: Any) -> Optional[Dict[str, float]]:
        if not isinstance(value, dict):
            return None
        try:
            lat, lng = float(value['lat']), float(value['lng'])
        except (KeyError, TypeError, ValueError):
            return None
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            return None
        return {'lat': lat, 'lng': lng}

    @staticmethod
    def _to_int(value: Any) -> Optional[int]:
        if isinstance(value, bool):
            return None
        try:
            number = int(value)
        except (TypeError, ValueError):
            return None
        return number if number > 0 else None

    def _normalize_image(self, value: Any) -> Optional[Image]:
        if isinstance(value, str):
            url = self.to_https(value)
            return Image(url=url) if url else None

        if isinstance(value, dict):
            url = self.to_https(value.get('url'))
            if not url:
                return None
            return Image(
                url=url,
                alt=self._clean_text(value.get('alt')),
                width=self._to_int(value.get('width')),
                height=self._to_int(value.get('height'))
            )

        return None

    @staticmethod
    def to_https(url: Optional[str]) -> Optional[str]:
        if not isinstance(url, str) or not url.strip():
            return None
        url = url.strip()
        if url.startswith('//'):
            return 'https:' + url
        if url.startswith('http://'):
            return 'https://' + url[len('http://'):]
        return url

    @staticmethod
    def _normalize_price(value: Any) -> Optional[Price]:
        if not value:
            return None

        if isinstance(value, str):
            lowered = value.lower()
            if any(marker in lowered for marker in FREE_MARKERS):
                return Price(min=0.0, max=0.0, is_free=True, display='Gratuito')

            amounts = [float(m.replace(',', '.')) for m in PRICE_AMOUNT.findall(value)]
            if amounts:
                return Price(min=min(amounts), max=max(amounts), display=value.strip())
            return None

        if isinstance(value, dict):
            minimum = parse_amount(value.get('min'))
            maximum = parse_amount(value.get('max'))
            if minimum is None and maximum is None:
                if not value.get('is_free'):
                    return None
                minimum = 0.0
            minimum = minimum if minimum is not None else maximum
            currency = value.get('currency')
            display = value.get('display')
            return Price(
                min=minimum,
                max=max(minimum, maximum) if maximum is not None else minimum,
                currency=currency.strip().upper() if isinstance(currency, str) and currency.strip() else 'BRL',
                is_free=value.get('is_free') is True,
                display=display.strip() if isinstance(display, str) and display.strip() else None
            )

        return None

    @staticmethod
    def _normalize_organizer(value: Any) -> Optional[Organizer]:
        if isinstance(value, dict):
            value = value.get('name')
        if not value or not isinstance(value, str) or not value.strip():
            return None
        return Organizer(name=value.strip())

    @staticmethod
    def _normalize_url(url: Optional[str]) -> Optional[str]:
        if not isinstance(url, str) or not url.strip():
            return None
        parsed = urlparse(url.strip())
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            logger.debug(f"Discarding invalid URL: {url}")
            return None
        return parsed.geturl()

    @staticmethod
    def extract_city(text: str) -> Optional[str]:
        lowered = text.lower()
        for city in config.KNOWN_CITIES:
            if city.lower() in lowered:
                return city
        return None

    @staticmethod
    def extract_state(text: str) -> Optional[str]:
        lowered = text.lower()
        for name, code in config.STATE_NAMES.items():
            if name in lowered:
                return code
        match = STATE_CODE_PATTERN.search(text)
        return match.group(1) if match else None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, event: NormalizedEvent, raw: RawEvent) -> List[str]:
        """Return the reasons a normalized event is rejected (empty if valid)."""
        reasons = []

        for field_name in self.rules.required_fields:
            if getattr(event, field_name, None):
                continue
            if field_name == 'date' and raw.date:
                reasons.append('invalid_date')
            else:
                reasons.append(f'missing_{field_name}')

        title_length = len(self.clean_title(raw.title))
        if event.title:
            if title_length < self.rules.title_min_length:
                reasons.append('title_too_short')
            if title_length > self.rules.title_max_length:
                reasons.append('title_too_long')

        if event.date:
            reasons.extend(self._validate_date(event.date))
        elif raw.date and 'date' not in self.rules.required_fields:
            reasons.append('invalid_date')

        if event.location and not event.location.venue and not event.location.address:
            reasons.append('invalid_location')

        source_config = self.settings.sources.get(event.source)
        if source_config:
            filters = source_config.quality_filters
            if filters.require_image and not (event.image and event.image.url):
                reasons.append('missing_image')
            if filters.require_description and not event.description:
                reasons.append('missing_description')
            lowered_title = event.title.lower()
            if any(keyword in lowered_title for keyword in filters.exclude_keywords):
                reasons.append('excluded_keyword')

        return reasons

    def _validate_date(self, iso_date: str) -> List[str]:
        event_date = self._parse_iso(iso_date)
        if not self.date_parser.is_valid_date(event_date):
            return ['invalid_date']

        now = datetime.now()
        if self.rules.future_events_only and not self.date_parser.is_future_event(event_date, now):
            return ['past_event']

        days_ahead = self.date_parser.days_difference(now, event_date)
        if event_date > now and days_ahead is not None and days_ahead > self.rules.max_days_in_future:
            return ['event_too_far_future']

        return []

    @staticmethod
    def _parse_iso(iso_date: Optional[str]) -> Optional[datetime]:
        if not iso_date:
            return None
        try:
            return datetime.fromisoformat(iso_date)
        except ValueError:
            return None

    def validate_processed(self, event: ProcessedEvent) -> List[str]:
        reasons = []
        if event.quality_score < config.MIN_QUALITY_SCORE:
            reasons.append('low_quality_score')
        if event.category == config.DEFAULT_CATEGORY and event.category_confidence < config.FALLBACK_CONFIDENCE:
            reasons.append('uncategorizable')
        return reasons

    # ------------------------------------------------------------------
    # Enhancement
    # ------------------------------------------------------------------

    def enhance(self, event: NormalizedEvent) -> ProcessedEvent:
        """Add regional flag, popularity, hash and quality score."""
        processed = ProcessedEvent(**vars(event))

        if processed.location and processed.location.city and self.is_regional_city(processed.location.city):
            processed.is_regional = True

        processed.popularity = self.calculate_popularity(processed)
        processed.hash = self.generate_event_hash(processed)
        processed.quality_score = self.calculate_quality_score(processed)
        return processed

    def is_regional_city(self, city: str) -> bool:
        lowered = city.lower()
        return any(regional.lower() in lowered for regional in self.settings.regional_cities)

    @staticmethod
    def calculate_popularity(event: NormalizedEvent) -> float:
        score = config.POPULARITY_BASE
        score += config.POPULARITY_SOURCE_BONUS.get(event.source, 0.0)
        if event.image and event.image.url:
            score += config.POPULARITY_IMAGE_BONUS
        if event.description:
            score += config.POPULARITY_DESCRIPTION_BONUS
        if event.is_regional:
            score += config.POPULARITY_REGIONAL_BONUS
        return round(min(score, 1.0), 2)

    @staticmethod
    def generate_event_hash(event: NormalizedEvent) -> str:
        """
        Generate the dedup key for an event.

        Args:
            event: Normalized event

        Returns:
            SHA256 hex digest of title, date and venue
        """
        venue = event.location.venue if event.location and event.location.venue else ''
        composite = f"{event.title}|{event.date or ''}|{venue}"
        return hashlib.sha256(composite.encode('utf-8')).hexdigest()

    def calculate_quality_score(self, event: NormalizedEvent) -> float:
        weights = config.QUALITY_WEIGHTS
        score = 0.0

        if event.title and len(event.title) >= self.rules.title_min_length:
            score += weights['title']
        if self.date_parser.is_valid_date(self._parse_iso(event.date)):
            score += weights['date']
        if event.location and event.location.venue:
            score += weights['venue']
        if event.image and event.image.url:
            score += weights['image']
        if event.description and len(event.description) > config.MIN_DESCRIPTION_LENGTH:
            score += weights['description']
        if event.url:
            score += weights['url']

        return round(score, 2)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def _reject(self, raw: RawEvent, source: str, reasons: List[str]) -> ProcessingResult:
        self.stats['rejected'] += 1
        for reason in reasons:
            self._count('rejection_reasons', reason)
        logger.debug(f"Rejected '{raw.title}' from {source}: {', '.join(reasons)}")
        return ProcessingResult(success=False, source=source, errors=list(reasons))

    def _count(self, key: str, value: str) -> None:
        bucket = self.stats[key]
        bucket[value] = bucket.get(value, 0) + 1

    def get_stats(self) -> Dict[str, Any]:
        processed = self.stats['processed']
        return {
            **self.stats,
            'success_rate': round(self.stats['successful'] / processed * 100) if processed else 0,
            'date_parser': self.date_parser.get_stats(),
            'classifier': self.classifier.get_stats()
        }

    def reset_stats(self) -> None:
        self.stats = {
            'processed': 0,
            'successful': 0,
            'rejected': 0,
            'rejection_reasons': {},
            'source_distribution': {},
            'category_distribution': {}
        }
