"""Summary reports over the stored events, rendered as JSON, HTML and CSV."""
import csv
import html
import io
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from errors import ErrorType, ScrapingError
from processor.date_parser import DateParser
from storage.database_handler import DatabaseHandler

logger = logging.getLogger(__name__)

PERIODS = ('all_time', 'last_7_days', 'last_30_days', 'last_90_days', 'next_30_days', 'next_90_days')
FORMATS = ('json', 'html', 'csv')

HIGH_QUALITY = 0.8
MEDIUM_QUALITY = 0.5
SHORT_TITLE_LENGTH = 10
TOP_EVENTS_LIMIT = 10
RECENT_EVENTS_LIMIT = 10
UPCOMING_EVENTS_LIMIT = 20

CSV_COLUMNS = (
    'title', 'date', 'location_city', 'location_state', 'category', 'source',
    'is_regional', 'price_is_free', 'quality_score', 'popularity_score', 'url'
)


def percentage(part: int, total: int) -> int:
    return round(part / total * 100) if total else 0


def average(values: Sequence[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0


def save_report(reports_dir: str, content: str, fmt: str, prefix: str) -> str:
    """Write a rendered report to reports_dir and return its path."""
    os.makedirs(reports_dir, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')
    path = os.path.join(reports_dir, f"{prefix}-{timestamp}.{fmt}")
    with open(path, 'w', encoding='utf-8', newline='') as f:
        f.write(content)
    logger.info(f"Saved {fmt} report to {path}")
    return path


def count_by(rows: Iterable[Dict[str, Any]], key: str, default: str) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for row in rows:
        value = row.get(key) or default
        counts[value] = counts.get(value, 0) + 1
    return counts


class ReportGenerator:
    """
    Builds event reports from the events table.

    Reports are read-only: rows are fetched once per report through
    DatabaseHandler.get_events and every section is computed in memory.
    """

    def __init__(
        self,
        db: DatabaseHandler,
        reports_dir: str = '/tmp/reports',
        formats: Sequence[str] = FORMATS,
        date_parser: Optional[DateParser] = None
    ):
        unknown = [fmt for fmt in formats if fmt not in FORMATS]
        if unknown:
            raise ScrapingError(
                f"Unsupported report formats: {', '.join(unknown)}",
                ErrorType.CONFIGURATION_ERROR,
                details={'formats': list(formats)}
            )
        self.db = db
        self.reports_dir = reports_dir
        self.formats = tuple(formats)
        self.date_parser = date_parser or DateParser()
        self.stats = {'reports_generated': 0, 'last_report_at': None, 'total_events_analyzed': 0}

    def generate_complete_report(self, period: str = 'all_time') -> Dict[str, Any]:
        """
        Collect report data for a period and write it in every configured format.

        Args:
            period: One of PERIODS

        Returns:
            Dict with the report data and the written file paths by format
        """
        logger.info(f"Generating events report for period {period}")
        data = self.collect_report_data(period)

        renderers = {'json': self.render_json, 'html': self.render_html, 'csv': self.render_csv}
        files = {}
        for fmt in self.formats:
            files[fmt] = self.save_report(renderers[fmt](data), fmt, 'events-report')

        self.stats['reports_generated'] += 1
        self.stats['last_report_at'] = data['metadata']['generated_at']
        self.stats['total_events_analyzed'] = data['summary']['total_events']
        logger.info(f"Events report written in {len(files)} formats")

        return {'success': True, 'data': data, 'files': files}

    def collect_report_data(self, period: str = 'all_time', now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Build every report section for a period.

        Raises:
            ScrapingError: configuration_error for an unknown period
        """
        now = now or datetime.now()
        filters = self.build_date_filters(period, now)
        rows = self.db.get_events(filters)

        return {
            'metadata': {
                'generated_at': datetime.now(timezone.utc).isoformat(),
                'period': period,
                'filters': filters
            },
            'summary': self.generate_summary(rows),
            'events_by_source': self.get_events_by_source(rows),
            'events_by_category': self.get_events_by_category(rows, now),
            'events_by_region': self.get_events_by_region(rows),
            'events_by_date': self.get_events_by_date(rows),
            'quality_metrics': self.get_quality_metrics(rows),
            'top_events': self.get_top_events(rows),
            'recent_events': self.get_recent_events(rows),
            'upcoming_events': self.get_upcoming_events(rows, now),
            # rows are kept for the CSV export and dropped before JSON rendering
            'events': rows
        }

    @staticmethod
    def build_date_filters(period: str, now: datetime) -> Dict[str, str]:
        if period not in PERIODS:
            raise ScrapingError(
                f"Unknown report period '{period}'. Available: {', '.join(PERIODS)}",
                ErrorType.CONFIGURATION_ERROR,
                details={'period': period}
            )

        def stamp(value: datetime) -> str:
            return value.isoformat(timespec='seconds')

        if period.startswith('last_'):
            days = int(period.split('_')[1])
            return {'date_from': stamp(now - timedelta(days=days))}
        if period.startswith('next_'):
            days = int(period.split('_')[1])
            return {'date_from': stamp(now), 'date_to': stamp(now + timedelta(days=days))}
        return {}

    @staticmethod
    def generate_summary(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
        total = len(rows)
        regional = sum(1 for row in rows if row.get('is_regional'))
        free = sum(1 for row in rows if row.get('price_is_free'))
        paid = sum(1 for row in rows if not row.get('price_is_free') and (row.get('price_min') or 0) > 0)
        with_images = sum(1 for row in rows if row.get('image_url'))
        dates = [row['date'] for row in rows if row.get('date')]

        return {
            'total_events': total,
            'regional_events': regional,
            'national_events': total - regional,
            'free_events': free,
            'paid_events': paid,
            'events_with_images': with_images,
            'average_quality_score': average([row.get('quality_score') or 0 for row in rows]),
            'date_range': {
                'earliest': min(dates) if dates else None,
                'latest': max(dates) if dates else None
            },
            'regional_percentage': percentage(regional, total),
            'free_events_percentage': percentage(free, total),
            'events_with_images_percentage': percentage(with_images, total)
        }

    @staticmethod
    def get_events_by_source(rows: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for row in rows:
            grouped.setdefault(row.get('source') or 'unknown', []).append(row)

        by_source = {}
        for source, source_rows in grouped.items():
            regional = sum(1 for row in source_rows if row.get('is_regional'))
            by_source[source] = {
                'count': len(source_rows),
                'quality_average': average([row.get('quality_score') or 0 for row in source_rows]),
                'regional_count': regional,
                'regional_percentage': percentage(regional, len(source_rows)),
                'categories': count_by(source_rows, 'category', 'outros')
            }
        return by_source

    def get_events_by_category(self, rows: List[Dict[str, Any]], now: datetime) -> Dict[str, Dict[str, Any]]:
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for row in rows:
            grouped.setdefault(row.get('category') or 'outros', []).append(row)

        by_category = {}
        for category, category_rows in grouped.items():
            count = len(category_rows)
            regional = sum(1 for row in category_rows if row.get('is_regional'))
            free = sum(1 for row in category_rows if row.get('price_is_free'))
            upcoming = sum(
                1 for row in category_rows
                if self.date_parser.is_future_event(self.date_parser.parse_date(row.get('date')), now)
            )
            by_category[category] = {
                'count': count,
                'regional_count': regional,
                'free_count': free,
                'upcoming_count': upcoming,
                'average_confidence': average([row.get('category_confidence') or 0 for row in category_rows]),
                'sources': count_by(category_rows, 'source', 'unknown'),
                'regional_percentage': percentage(regional, count),
                'free_percentage': percentage(free, count)
            }
        return by_category

    @staticmethod
    def get_events_by_region(rows: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        by_region = {}
        for region, is_regional in (('regional', True), ('national', False)):
            region_rows = [row for row in rows if bool(row.get('is_regional')) is is_regional]
            by_region[region] = {
                'count': len(region_rows),
                'cities': count_by(region_rows, 'location_city', 'unknown'),
                'categories': count_by(region_rows, 'category', 'outros'),
                'sources': count_by(region_rows, 'source', 'unknown')
            }
        return by_region

    @staticmethod
    def get_events_by_date(rows: List[Dict[str, Any]]) -> Dict[str, Dict[str, int]]:
        # stored dates are ISO strings, so the first 7 characters are YYYY-MM
        by_month: Dict[str, int] = {}
        for row in rows:
            if row.get('date'):
                month = row['date'][:7]
                by_month[month] = by_month.get(month, 0) + 1
        return {'by_month': dict(sorted(by_month.items()))}

    def get_quality_metrics(self, rows: List[Dict[str, Any]]) -> Dict[str, Any]:
        distribution = {'high': 0, 'medium': 0, 'low': 0}
        completeness = {
            'with_images': 0,
            'with_descriptions': 0,
            'with_prices': 0,
            'with_locations': 0,
            'with_organizers': 0
        }
        issues = {'missing_dates': 0, 'invalid_dates': 0, 'short_titles': 0, 'missing_locations': 0}

        for row in rows:
            quality = row.get('quality_score') or 0
            if quality > HIGH_QUALITY:
                distribution['high'] += 1
            elif quality >= MEDIUM_QUALITY:
                distribution['medium'] += 1
            else:
                distribution['low'] += 1

            has_location = bool(row.get('location_venue') or row.get('location_address'))
            completeness['with_images'] += bool(row.get('image_url'))
            completeness['with_descriptions'] += bool(row.get('description'))
            completeness['with_prices'] += row.get('price_min') is not None or bool(row.get('price_is_free'))
            completeness['with_locations'] += has_location
            completeness['with_organizers'] += bool(row.get('organizer_name'))

            if not row.get('date'):
                issues['missing_dates'] += 1
            elif self.date_parser.parse_date(row['date']) is None:
                issues['invalid_dates'] += 1
            if len(row.get('title') or '') < SHORT_TITLE_LENGTH:
                issues['short_titles'] += 1
            if not has_location:
                issues['missing_locations'] += 1

        total = len(rows)
        return {
            'average_quality_score': average([row.get('quality_score') or 0 for row in rows]),
            'quality_distribution': distribution,
            'completeness': {
                key: {'count': count, 'percentage': percentage(count, total)}
                for key, count in completeness.items()
            },
            'data_quality_issues': issues
        }

    @staticmethod
    def get_top_events(rows: List[Dict[str, Any]], limit: int = TOP_EVENTS_LIMIT) -> List[Dict[str, Any]]:
        ranked = sorted(
            (row for row in rows if (row.get('popularity_score') or 0) > 0),
            key=lambda row: row['popularity_score'],
            reverse=True
        )
        return [
            {
                'title': row.get('title'),
                'date': row.get('date'),
                'location': row.get('location_city'),
                'category': row.get('category'),
                'source': row.get('source'),
                'popularity_score': row.get('popularity_score'),
                'quality_score': row.get('quality_score'),
                'is_regional': bool(row.get('is_regional')),
                'is_free': bool(row.get('price_is_free')),
                'url': row.get('url')
            }
            for row in ranked[:limit]
        ]

    @staticmethod
    def get_recent_events(rows: List[Dict[str, Any]], limit: int = RECENT_EVENTS_LIMIT) -> List[Dict[str, Any]]:
        recent = sorted(rows, key=lambda row: row.get('scraped_at') or '', reverse=True)
        return [
            {
                'title': row.get('title'),
                'date': row.get('date'),
                'location': row.get('location_city'),
                'category': row.get('category'),
                'source': row.get('source'),
                'scraped_at': row.get('scraped_at'),
                'quality_score': row.get('quality_score')
            }
            for row in recent[:limit]
        ]

    def get_upcoming_events(
        self,
        rows: List[Dict[str, Any]],
        now: datetime,
        limit: int = UPCOMING_EVENTS_LIMIT
    ) -> List[Dict[str, Any]]:
        upcoming = []
        for row in rows:
            parsed = self.date_parser.parse_date(row.get('date'))
            if parsed is not None and parsed > now:
                upcoming.append((parsed, row))
        upcoming.sort(key=lambda item: item[0])

        return [
            {
                'title': row.get('title'),
                'date': row.get('date'),
                'location': row.get('location_city'),
                'category': row.get('category'),
                'source': row.get('source'),
                'is_regional': bool(row.get('is_regional')),
                'is_free': bool(row.get('price_is_free')),
                'days_until': self.date_parser.days_difference(now, parsed)
            }
            for parsed, row in upcoming[:limit]
        ]

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    @staticmethod
    def render_json(data: Dict[str, Any]) -> str:
        sections = {key: value for key, value in data.items() if key != 'events'}
        return json.dumps(sections, indent=2, ensure_ascii=False, default=str)

    @staticmethod
    def render_csv(data: Dict[str, Any]) -> str:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, extrasaction='ignore')
        writer.writeheader()
        for row in data.get('events', []):
            writer.writerow({column: row.get(column, '') for column in CSV_COLUMNS})
        return buffer.getvalue()

    @staticmethod
    def render_html(data: Dict[str, Any]) -> str:
        summary = data['summary']
        esc = html.escape

        cards = ''.join(
            f'<div class="stat"><h3>{esc(str(value))}</h3><p>{esc(label)}</p></div>'
            for label, value in (
                ('Total events', summary['total_events']),
                ('Regional events', summary['regional_events']),
                ('National events', summary['national_events']),
                ('Free events', summary['free_events']),
                ('Average quality', summary['average_quality_score']),
                ('With images', f"{summary['events_with_images_percentage']}%"),
            )
        )

        source_rows = ''.join(
            f"<tr><td>{esc(source)}</td><td>{info['count']}</td><td>{info['quality_average']}</td>"
            f"<td>{info['regional_percentage']}%</td></tr>"
            for source, info in data['events_by_source'].items()
        )
        category_rows = ''.join(
            f"<tr><td>{esc(category)}</td><td>{info['count']}</td><td>{info['upcoming_count']}</td>"
            f"<td>{info['average_confidence']}</td></tr>"
            for category, info in sorted(
                data['events_by_category'].items(), key=lambda item: item[1]['count'], reverse=True
            )
        )
        distribution = data['quality_metrics']['quality_distribution']
        upcoming = ''.join(
            f"<li><strong>{esc(event['title'] or '')}</strong> {esc(event['date'] or '')} "
            f"{esc(event['location'] or '')} ({esc(event['category'] or '')})</li>"
            for event in data['upcoming_events']
        )

        return f"""<!DOCTYPE html>
<html lang="pt-BR">
<head>
<meta charset="UTF-8">
<title>Events report - {esc(data['metadata']['generated_at'])}</title>
<style>
body {{ font-family: Arial, sans-serif; margin: 20px; }}
.stats {{ display: flex; gap: 20px; }}
.stat {{ background: #f8f9fa; padding: 10px 20px; border-left: 4px solid #007bff; }}
table {{ border-collapse: collapse; }}
th, td {{ padding: 6px 12px; border-bottom: 1px solid #ddd; text-align: left; }}
</style>
</head>
<body>
<h1>Events report</h1>
<p>Generated at {esc(data['metadata']['generated_at'])}, period {esc(data['metadata']['period'])}</p>
<h2>Summary</h2>
<div class="stats">{cards}</div>
<h2>By source</h2>
<table><tr><th>Source</th><th>Events</th><th>Average quality</th><th>Regional</th></tr>{source_rows}</table>
<h2>By category</h2>
<table><tr><th>Category</th><th>Events</th><th>Upcoming</th><th>Average confidence</th></tr>{category_rows}</table>
<h2>Quality</h2>
<p>High: {distribution['high']}, medium: {distribution['medium']}, low: {distribution['low']}</p>
<h2>Upcoming events</h2>
<ul>{upcoming}</ul>
</body>
</html>
"""

    def save_report(self, content: str, fmt: str, prefix: str) -> str:
        return save_report(self.reports_dir, content, fmt, prefix)

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats)
