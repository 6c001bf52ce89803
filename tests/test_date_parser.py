"""Unit tests for DateParser."""
from datetime import date, datetime, time

import pytest

from processor.date_parser import DateParser

TODAY = date(2026, 10, 19)


@pytest.fixture
def parser():
    """DateParser pinned to a fixed day."""
    return DateParser(today=lambda: TODAY)


class TestParseDate:
    """Test cases for parse_date."""

    @pytest.mark.parametrize('text,expected', [
        ('15/03/2027', datetime(2027, 3, 15)),
        ('5/1/27', datetime(2027, 1, 5)),
        ('15 de março de 2027', datetime(2027, 3, 15)),
        ('15 de marco de 2027', datetime(2027, 3, 15)),
        ('15 de mar. de 2027', datetime(2027, 3, 15)),
        ('15 mar 2027', datetime(2027, 3, 15)),
        ('March 15, 2027', datetime(2027, 3, 15)),
        ('2027-03-15', datetime(2027, 3, 15)),
        ('2027-03-15T19:30:00', datetime(2027, 3, 15, 19, 30)),
        ('Sáb, 15 de março de 2027', datetime(2027, 3, 15)),
        ('sexta-feira, 20/11/2026', datetime(2026, 11, 20)),
    ])
    def test_supported_formats(self, parser, text, expected):
        """Test every supported date layout."""
        assert parser.parse_date(text) == expected

    @pytest.mark.parametrize('text', ['', None, 'em breve', '31/02/2027', 'data a definir'])
    def test_unparseable(self, parser, text):
        """Test unparseable text returns None."""
        assert parser.parse_date(text) is None

    def test_window_lower_edge(self, parser):
        """Test exactly one year ago is accepted and one day earlier is not."""
        assert parser.parse_date('19/10/2025') == datetime(2025, 10, 19)
        assert parser.parse_date('18/10/2025') is None

    def test_window_upper_edge(self, parser):
        """Test exactly two years ahead is accepted and one day later is not."""
        assert parser.parse_date('19/10/2028') == datetime(2028, 10, 19)
        assert parser.parse_date('20/10/2028') is None

    def test_datetime_input(self, parser):
        """Test datetimes pass through when inside the window."""
        value = datetime(2027, 1, 1, 10, 0)

        assert parser.parse_date(value) == value
        assert parser.parse_date(datetime(2030, 1, 1)) is None

    @pytest.mark.parametrize('text', [
        '20/11/2026',
        '2027-03-15',
        '15 de março de 2027',
        'March 15, 2027',
    ])
    def test_round_trip(self, parser, text):
        """Test formatting then re-parsing yields the same instant."""
        parsed = parser.parse_date(text)

        assert parser.parse_date(parser.format_to_standard(parsed)) == parsed


class TestParseTime:
    """Test cases for parse_time and parse_date_time."""

    @pytest.mark.parametrize('text,expected', [
        ('19:30', time(19, 30)),
        ('19:30:15', time(19, 30, 15)),
        ('19h', time(19, 0)),
        ('19h30', time(19, 30)),
        ('25:00', None),
        ('', None),
    ])
    def test_parse_time(self, parser, text, expected):
        """Test time of day layouts."""
        assert parser.parse_time(text) == expected

    def test_parse_date_time(self, parser):
        """Test the time after the date is applied."""
        assert parser.parse_date_time('sáb, 21 de novembro de 2026 às 19h') == datetime(2026, 11, 21, 19, 0)
        assert parser.parse_date_time('20/11/2026 20:00') == datetime(2026, 11, 20, 20, 0)
        assert parser.parse_date_time('20/11/2026') == datetime(2026, 11, 20)

    def test_round_trip_with_time(self, parser):
        """Test a date with time survives formatting."""
        parsed = parser.parse_date_time('20/11/2026 19:30')
        formatted = parser.format_to_standard(parsed)

        assert formatted == '2026-11-20T19:30:00'
        assert parser.parse_date(formatted) == parsed


class TestHelpers:
    """Test cases for formatting and comparison helpers."""

    def test_format_to_brazilian(self, parser):
        """Test DD/MM/YYYY rendering with optional time."""
        value = datetime(2026, 11, 20, 19, 30)

        assert parser.format_to_brazilian(value) == '20/11/2026'
        assert parser.format_to_brazilian(value, include_time=True) == '20/11/2026 às 19:30'
        assert parser.format_to_brazilian(None) is None

    def test_is_future_event(self, parser):
        """Test future detection relative to a reference instant."""
        now = datetime(2026, 10, 19, 12, 0)

        assert parser.is_future_event(datetime(2026, 10, 20), now)
        assert not parser.is_future_event(datetime(2026, 10, 18), now)
        assert not parser.is_future_event(None, now)

    def test_days_difference_rounds_up(self, parser):
        """Test partial days count as a whole day."""
        assert parser.days_difference(datetime(2026, 10, 19), datetime(2026, 10, 21, 1)) == 3
        assert parser.days_difference(datetime(2026, 10, 19), datetime(2030, 1, 1)) is None

    def test_stats(self, parser):
        """Test success rate and format distribution."""
        parser.parse_date('20/11/2026')
        parser.parse_date('2026-11-20')
        parser.parse_date('sem data')

        stats = parser.get_stats()

        assert stats['total_parsed'] == 3
        assert stats['successful'] == 2
        assert stats['success_rate'] == 67
        assert stats['format_distribution'] == {'dd/mm/yyyy': 1, 'iso': 1}
