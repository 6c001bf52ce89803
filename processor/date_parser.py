"""Parser for the date formats found on Brazilian ticketing sites."""
import logging
import math
import re
import unicodedata
from datetime import date, datetime, time
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from dateutil import parser as dateutil_parser
from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)

MONTHS = {
    'janeiro': 1, 'fevereiro': 2, 'marco': 3, 'abril': 4,
    'maio': 5, 'junho': 6, 'julho': 7, 'agosto': 8,
    'setembro': 9, 'outubro': 10, 'novembro': 11, 'dezembro': 12,
    'jan': 1, 'fev': 2, 'mar': 3, 'abr': 4, 'mai': 5, 'jun': 6,
    'jul': 7, 'ago': 8, 'set': 9, 'out': 10, 'nov': 11, 'dez': 12,
    'january': 1, 'february': 2, 'march': 3, 'april': 4, 'may': 5, 'june': 6,
    'july': 7, 'august': 8, 'september': 9, 'october': 10, 'november': 11,
    'december': 12, 'feb': 2, 'apr': 4, 'aug': 8, 'sep': 9, 'oct': 10, 'dec': 12,
}

WEEKDAY_PREFIX = re.compile(
    r'^(domingo|segunda|terca|quarta|quinta|sexta|sabado|'
    r'dom|seg|ter|qua|qui|sex|sab|'
    r'sunday|monday|tuesday|wednesday|thursday|friday|saturday|'
    r'sun|mon|tue|wed|thu|fri|sat)(-feira)?\b\.?,?\s*'
)

TIME_PATTERNS = (
    re.compile(r'(\d{1,2}):(\d{2}):(\d{2})'),
    re.compile(r'(\d{1,2}):(\d{2})'),
    re.compile(r'(\d{1,2})h(\d{2})?'),
)


def strip_accents(text: str) -> str:
    return ''.join(
        c for c in unicodedata.normalize('NFKD', text) if not unicodedata.combining(c)
    )


def _month_number(name: str) -> Optional[int]:
    return MONTHS.get(strip_accents(name.lower()).rstrip('.'))


def _two_digit_year(year: int) -> int:
    if year < 100:
        return year + (2000 if year < 50 else 1900)
    return year


def _build(year: int, month: Optional[int], day: int, *hms: Optional[str]) -> Optional[datetime]:
    if month is None:
        return None
    hour, minute, second = (int(v) if v else 0 for v in (list(hms) + [None] * 3)[:3])
    try:
        return datetime(year, month, day, hour, minute, second)
    except ValueError:
        return None


def _parse_dd_mm_yyyy(m: re.Match) -> Optional[datetime]:
    return _build(_two_digit_year(int(m.group(3))), int(m.group(2)), int(m.group(1)))


def _parse_day_month_name_year(m: re.Match) -> Optional[datetime]:
    return _build(int(m.group(3)), _month_number(m.group(2)), int(m.group(1)))


def _parse_month_name_day_year(m: re.Match) -> Optional[datetime]:
    return _build(int(m.group(3)), _month_number(m.group(1)), int(m.group(2)))


def _parse_iso(m: re.Match) -> Optional[datetime]:
    return _build(
        int(m.group(1)), int(m.group(2)), int(m.group(3)),
        m.group(4), m.group(5), m.group(6)
    )


DATE_PATTERNS: List[Tuple[str, re.Pattern, Callable[[re.Match], Optional[datetime]]]] = [
    ('dd/mm/yyyy', re.compile(r'(\d{1,2})/(\d{1,2})/(\d{4}|\d{2})\b'), _parse_dd_mm_yyyy),
    ('dd de mmmm de yyyy', re.compile(r'(\d{1,2})\s+de\s+([a-z]+)\.?\s+de\s+(\d{4})'),
     _parse_day_month_name_year),
    ('dd de mmm de yyyy', re.compile(r'(\d{1,2})\s+de\s+([a-z]{3})\.?\s+de\s+(\d{4})'),
     _parse_day_month_name_year),
    ('dd mmm yyyy', re.compile(r'(\d{1,2})\s+([a-z]{3})\.?\s+(\d{4})'), _parse_day_month_name_year),
    ('mmmm dd, yyyy', re.compile(r'([a-z]+)\s+(\d{1,2}),\s+(\d{4})'), _parse_month_name_day_year),
    ('iso', re.compile(r'(\d{4})-(\d{1,2})-(\d{1,2})(?:[t ](\d{1,2}):(\d{2})(?::(\d{2}))?)?'),
     _parse_iso),
]


class DateParser:
    """
    Converts Brazilian, English and ISO date strings into naive datetimes.

    Parsed dates are only accepted when their calendar day falls between
    one year ago and two years ahead, both ends inclusive.
    """

    def __init__(self, today: Optional[Callable[[], date]] = None):
        self._today = today or date.today
        self.reset_stats()

    def parse_date(self, text: Union[str, datetime, None]) -> Optional[datetime]:
        """
        Parse a date string.

        Args:
            text: Date text, e.g. '15/03/2025' or 'sáb, 15 de março de 2025 às 19h'

        Returns:
            datetime, or None if unparseable or outside the accepted window
        """
        if isinstance(text, datetime):
            return text if self.is_valid_date(text) else None

        if not text or not isinstance(text, str):
            self.stats['failed'] += 1
            return None

        self.stats['total_parsed'] += 1
        found = self._match_date(self._clean(text))

        if found is None:
            self.stats['failed'] += 1
            logger.debug(f"Could not parse date: '{text}'")
            return None

        parsed, _, fmt = found
        self.stats['successful'] += 1
        distribution = self.stats['format_distribution']
        distribution[fmt] = distribution.get(fmt, 0) + 1
        return parsed

    def parse_time(self, text: Optional[str]) -> Optional[time]:
        """Parse 'HH:mm:ss', 'HH:mm', 'HHh' or 'HHhMM'."""
        if not text:
            return None

        cleaned = text.strip().lower()
        for pattern in TIME_PATTERNS:
            match = pattern.search(cleaned)
            if not match:
                continue
            values = [int(v) if v else 0 for v in match.groups()] + [0, 0]
            hour, minute, second = values[:3]
            if 0 <= hour <= 23 and 0 <= minute <= 59 and 0 <= second <= 59:
                return time(hour, minute, second)
            return None

        return None

    def parse_date_time(self, text: Optional[str]) -> Optional[datetime]:
        """Parse a date and, when present after it, a time of day."""
        if not text:
            return None

        self.stats['total_parsed'] += 1
        found = self._match_date(self._clean(text))
        if found is None:
            self.stats['failed'] += 1
            return None

        parsed, remainder, fmt = found
        self.stats['successful'] += 1
        distribution = self.stats['format_distribution']
        distribution[fmt] = distribution.get(fmt, 0) + 1

        parsed_time = self.parse_time(remainder)
        if parsed_time is not None:
            parsed = parsed.replace(
                hour=parsed_time.hour, minute=parsed_time.minute, second=parsed_time.second
            )
        return parsed

    @staticmethod
    def _clean(text: str) -> str:
        cleaned = strip_accents(text.strip().lower())
        cleaned = WEEKDAY_PREFIX.sub('', cleaned)
        cleaned = re.sub(r'\s+as?\s+(?=\d)', ' ', cleaned)
        return re.sub(r'\s+', ' ', cleaned).strip()

    def _match_date(self, cleaned: str) -> Optional[Tuple[datetime, str, str]]:
        """Return (datetime, text after the date, format name) for the first pattern that fits."""
        for name, pattern, build in DATE_PATTERNS:
            match = pattern.search(cleaned)
            if not match:
                continue
            parsed = build(match)
            if parsed is not None and self.is_valid_date(parsed):
                return parsed, cleaned[match.end():], name

        try:
            parsed = dateutil_parser.parse(cleaned, dayfirst=True)
        except (ValueError, OverflowError):
            return None

        parsed = parsed.replace(tzinfo=None)
        if not self.is_valid_date(parsed):
            return None
        return parsed, '', 'fallback'

    def is_valid_date(self, value: Any) -> bool:
        """True for a datetime whose calendar day lies inside the accepted window."""
        if not isinstance(value, datetime):
            return False
        today = self._today()
        lower = today - relativedelta(years=1)
        upper = today + relativedelta(years=2)
        return lower <= value.date() <= upper

    def is_future_event(self, value: Optional[datetime], now: Optional[datetime] = None) -> bool:
        if not self.is_valid_date(value):
            return False
        return value > (now or datetime.now())

    def format_to_standard(self, value: Optional[datetime]) -> Optional[str]:
        if not self.is_valid_date(value):
            return None
        return value.isoformat(timespec='seconds')

    def format_to_brazilian(self, value: Optional[datetime], include_time: bool = False) -> Optional[str]:
        if not self.is_valid_date(value):
            return None
        formatted = value.strftime('%d/%m/%Y')
        if include_time:
            formatted += value.strftime(' às %H:%M')
        return formatted

    def days_difference(self, first: datetime, second: datetime) -> Optional[int]:
        if not self.is_valid_date(first) or not self.is_valid_date(second):
            return None
        return math.ceil(abs((second - first).total_seconds()) / 86400)

    def get_stats(self) -> Dict[str, Any]:
        total = self.stats['total_parsed']
        success_rate = round(self.stats['successful'] / total * 100) if total else 0
        return {**self.stats, 'success_rate': success_rate}

    def reset_stats(self) -> None:
        self.stats = {
            'total_parsed': 0,
            'successful': 0,
            'failed': 0,
            'format_distribution': {}
        }
