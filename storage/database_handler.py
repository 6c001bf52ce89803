"""DynamoDB persistence for processed events and scraping run logs."""
import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from errors import ErrorSeverity, ErrorType, ScrapingError
from processor.models import (
    BatchInsertResult,
    InsertError,
    InsertResult,
    OperationRecord,
    ProcessedEvent,
)

logger = logging.getLogger(__name__)


def to_dynamo(value: Any) -> Any:
    """Convert a Python value into something DynamoDB accepts (floats as Decimal, no None)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value if v is not None]
    return value


def from_dynamo(value: Any) -> Any:
    """Convert DynamoDB Decimals back to int or float."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    if isinstance(value, set):
        return {from_dynamo(v) for v in value}
    return value


class DatabaseHandler:
    """Stores events in the events table and run logs in the logs table."""

    BATCH_PAUSE_SECONDS = 0.1

    def __init__(
        self,
        events_table: str = 'events',
        logs_table: str = 'scraping_logs',
        region_name: Optional[str] = None,
        batch_size: int = 50,
        dynamodb=None
    ):
        """
        Initialize DynamoDB table references.

        Args:
            events_table: Name of the events table (key: hash)
            logs_table: Name of the run log table (key: id)
            region_name: AWS region
            batch_size: Events per insert chunk
            dynamodb: Existing boto3 DynamoDB resource
        """
        self.events_table_name = events_table
        self.logs_table_name = logs_table
        self.batch_size = batch_size
        self.dynamodb = dynamodb or boto3.resource('dynamodb', region_name=region_name)
        self.events = self.dynamodb.Table(events_table)
        self.logs = self.dynamodb.Table(logs_table)
        self.connected = False
        self.reset_stats()
        logger.info(f"Initialized DatabaseHandler for tables: {events_table}, {logs_table}")

    def connect(self) -> None:
        """
        Verify both tables are reachable.

        Raises:
            ScrapingError: database_error (critical) when a table cannot be described
        """
        for table in (self.events, self.logs):
            try:
                table.load()
            except (ClientError, BotoCoreError) as e:
                self.connected = False
                raise self._database_error(f"Cannot access table {table.name}", e)

        self.connected = True
        logger.info('Connected to DynamoDB tables')

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def insert(self, event: ProcessedEvent) -> InsertResult:
        """
        Insert one event unless it is a duplicate.

        Args:
            event: Processed event with its hash set

        Returns:
            InsertResult with reason 'inserted' or 'duplicate'

        Raises:
            ScrapingError: database_error when DynamoDB rejects the request
        """
        self.stats['total_inserts'] += 1

        existing_id = self.find_duplicate(event)
        if existing_id is not None:
            self.stats['duplicates_found'] += 1
            logger.debug(f"Duplicate event skipped: '{event.title}'")
            return InsertResult(success=False, reason='duplicate', event_id=existing_id)

        item = self.prepare_item(event)
        try:
            self.events.put_item(Item=item, ConditionExpression=Attr('hash').not_exists())
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException':
                self.stats['duplicates_found'] += 1
                return InsertResult(success=False, reason='duplicate')
            self.stats['errors'] += 1
            raise self._database_error(f"Failed to insert event '{event.title}'", e)

        self.stats['successful_inserts'] += 1
        logger.debug(f"Inserted event '{event.title}' (id {item['id']})")
        return InsertResult(success=True, reason='inserted', event_id=item['id'])

    def insert_batch(self, events: List[ProcessedEvent]) -> BatchInsertResult:
        """
        Insert events sequentially in chunks of batch_size.

        Per-record failures are collected in the result instead of aborting.
        """
        results = BatchInsertResult()
        if not events:
            return results

        logger.info(f"Inserting {len(events)} events into {self.events_table_name}")

        for start in range(0, len(events), self.batch_size):
            if start > 0:
                time.sleep(self.BATCH_PAUSE_SECONDS)

            for event in events[start:start + self.batch_size]:
                try:
                    result = self.insert(event)
                except Exception as e:
                    logger.error(f"Error inserting event '{event.title}': {e}")
                    results.errors.append(InsertError(event=event, error=str(e)))
                    continue

                if result.success:
                    results.inserted.append(event)
                else:
                    results.duplicates.append(event)

        logger.info(
            f"Batch insert complete: {len(results.inserted)} inserted, "
            f"{len(results.duplicates)} duplicates, {len(results.errors)} errors"
        )
        return results

    def find_duplicate(self, event: ProcessedEvent) -> Optional[str]:
        """Return the id of an existing item with the same hash, or same title and date."""
        try:
            response = self.events.get_item(Key={'hash': event.hash})
            item = response.get('Item')
            if item:
                return item.get('id', event.hash)

            if not event.date:
                return None

            condition = Attr('title').eq(event.title) & Attr('date').eq(event.date)
            for item in self._scan(self.events, FilterExpression=condition):
                return item.get('id', item.get('hash'))
        except ClientError as e:
            self.stats['errors'] += 1
            raise self._database_error('Failed to check for duplicate events', e)

        return None

    @staticmethod
    def prepare_item(event: ProcessedEvent) -> Dict[str, Any]:
        """Flatten a processed event into a DynamoDB item."""
        now = datetime.now(timezone.utc).isoformat()
        location = event.location
        image = event.image
        price = event.price
        organizer = event.organizer

        item = {
            'id': str(uuid.uuid4()),
            'hash': event.hash,
            'title': event.title,
            'description': event.description,
            'date': event.date,
            'location_venue': location.venue if location else None,
            'location_address': location.address if location else None,
            'location_city': location.city if location else None,
            'location_state': location.state if location else None,
            'location_coordinates': location.coordinates if location else None,
            'image_url': image.url if image else None,
            'image_alt': image.alt if image else None,
            'price_min': price.min if price else None,
            'price_max': price.max if price else None,
            'price_currency': price.currency if price else None,
            'price_is_free': price.is_free if price else False,
            'price_display': price.display if price else None,
            'organizer_name': organizer.name if organizer else None,
            'organizer_verified': organizer.verified if organizer else False,
            'url': event.url,
            'source': event.source,
            'category': event.category,
            'category_confidence': event.category_confidence,
            'tags': list(event.tags),
            'is_regional': event.is_regional,
            'search_term': event.search_term,
            'popularity_score': event.popularity,
            'quality_score': event.quality_score,
            'scraped_at': event.scraped_at,
            'created_at': now,
            'updated_at': now
        }
        return to_dynamo(item)

    def get_events(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Fetch events matching the given filters, sorted by date.

        Args:
            filters: Any of source, category, is_regional, date_from, date_to, city, limit

        Returns:
            List of event rows
        """
        filters = filters or {}
        conditions = []

        if filters.get('source'):
            conditions.append(Attr('source').eq(filters['source']))
        if filters.get('category'):
            conditions.append(Attr('category').eq(filters['category']))
        if filters.get('is_regional') is not None:
            conditions.append(Attr('is_regional').eq(bool(filters['is_regional'])))
        if filters.get('date_from'):
            conditions.append(Attr('date').gte(filters['date_from']))
        if filters.get('date_to'):
            conditions.append(Attr('date').lte(filters['date_to']))
        if filters.get('city'):
            conditions.append(Attr('location_city').eq(filters['city']))

        kwargs = {}
        if conditions:
            expression = conditions[0]
            for condition in conditions[1:]:
                expression = expression & condition
            kwargs['FilterExpression'] = expression

        try:
            rows = [from_dynamo(item) for item in self._scan(self.events, **kwargs)]
        except ClientError as e:
            raise self._database_error('Failed to fetch events', e)

        rows.sort(key=lambda row: row.get('date') or '')
        limit = filters.get('limit')
        return rows[:limit] if limit else rows

    def get_event_stats(self) -> Dict[str, Any]:
        """Count stored events by source, category and regional flag."""
        rows = self.get_events()
        by_source: Dict[str, int] = {}
        by_category: Dict[str, int] = {}
        regional = 0

        for row in rows:
            source = row.get('source', 'unknown')
            category = row.get('category', 'outros')
            by_source[source] = by_source.get(source, 0) + 1
            by_category[category] = by_category.get(category, 0) + 1
            if row.get('is_regional'):
                regional += 1

        return {
            'total_events': len(rows),
            'regional_events': regional,
            'national_events': len(rows) - regional,
            'by_source': by_source,
            'by_category': by_category,
            'last_updated': datetime.now(timezone.utc).isoformat()
        }

    def cleanup_old_events(self, days_old: int = 365) -> int:
        """
        Delete events dated more than days_old days ago.

        Returns:
            Count of deleted events
        """
        cutoff = (datetime.now() - timedelta(days=days_old)).isoformat(timespec='seconds')
        logger.info(f"Deleting events dated before {cutoff}")

        try:
            old_hashes = [
                item['hash'] for item in self._scan(self.events, FilterExpression=Attr('date').lt(cutoff))
            ]
            with self.events.batch_writer() as writer:
                for event_hash in old_hashes:
                    writer.delete_item(Key={'hash': event_hash})
        except ClientError as e:
            raise self._database_error('Failed to clean up old events', e)

        logger.info(f"Cleanup complete: {len(old_hashes)} old events removed")
        return len(old_hashes)

    # ------------------------------------------------------------------
    # Run logs
    # ------------------------------------------------------------------

    def log_operation(self, record: OperationRecord) -> str:
        """
        Persist a finished operation to the log table.

        Raises:
            ScrapingError: database_error (critical) when the write fails
        """
        item = to_dynamo({
            'id': record.id,
            'operation_type': record.type,
            'source': record.source,
            'status': record.status,
            'events_found': record.events_found,
            'events_inserted': record.events_inserted,
            'events_duplicated': record.events_duplicated,
            'events_rejected': record.events_rejected,
            'errors_count': record.errors_count,
            'rejection_reasons': record.rejection_reasons,
            'duration_ms': record.duration_ms,
            'filters_used': record.filters,
            'error_details': record.error_details,
            'started_at': record.started_at,
            'completed_at': record.completed_at,
            'created_at': datetime.now(timezone.utc).isoformat()
        })

        try:
            self.logs.put_item(Item=item)
        except ClientError as e:
            raise self._database_error(f"Failed to log operation {record.id}", e)

        self.stats['operations_logged'] += 1
        logger.debug(f"Logged operation {record.id} ({record.status})")
        return record.id

    def get_operations(self, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Fetch run logs started at or after ``since``, oldest first."""
        kwargs = {}
        if since is not None:
            if since.tzinfo is None:
                since = since.replace(tzinfo=timezone.utc)
            kwargs['FilterExpression'] = Attr('started_at').gte(since.isoformat())

        try:
            rows = [from_dynamo(item) for item in self._scan(self.logs, **kwargs)]
        except ClientError as e:
            raise self._database_error('Failed to fetch operation logs', e)

        rows.sort(key=lambda row: row.get('started_at') or '')
        return rows

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _scan(table, **kwargs) -> Iterator[Dict[str, Any]]:
        """Scan a table following LastEvaluatedKey pagination."""
        response = table.scan(**kwargs)
        yield from response.get('Items', [])

        while 'LastEvaluatedKey' in response:
            response = table.scan(ExclusiveStartKey=response['LastEvaluatedKey'], **kwargs)
            yield from response.get('Items', [])

    @staticmethod
    def _database_error(message: str, error: Exception) -> ScrapingError:
        logger.error(f"{message}: {error}")
        code = None
        if isinstance(error, ClientError):
            code = error.response.get('Error', {}).get('Code')
        return ScrapingError(
            f"{message}: {error}",
            ErrorType.DATABASE_ERROR,
            ErrorSeverity.CRITICAL,
            {'original_error': type(error).__name__, 'code': code}
        )

    def get_stats(self) -> Dict[str, Any]:
        total = self.stats['total_inserts']
        return {
            **self.stats,
            'success_rate': round(self.stats['successful_inserts'] / total * 100) if total else 0,
            'duplicate_rate': round(self.stats['duplicates_found'] / total * 100) if total else 0,
            'is_connected': self.connected
        }

    def reset_stats(self) -> None:
        self.stats = {
            'total_inserts': 0,
            'successful_inserts': 0,
            'duplicates_found': 0,
            'errors': 0,
            'operations_logged': 0
        }
