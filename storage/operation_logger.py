"""Lifecycle tracking for scraping runs, persisted to the run log table."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, TypeVar

from errors import ScrapingError
from processor.models import Operation, OperationRecord
from storage.database_handler import DatabaseHandler

logger = logging.getLogger(__name__)

T = TypeVar('T')


class OperationLogger:
    """
    Tracks in-flight operations and writes each one to the log table
    once it completes or fails.
    """

    def __init__(self, db: DatabaseHandler):
        self.db = db
        self.active: Dict[str, Operation] = {}

    def start_operation(
        self,
        source: str,
        operation_type: str = 'scraping',
        filters: Optional[Dict[str, Any]] = None
    ) -> Operation:
        operation = Operation(source=source, type=operation_type, filters=dict(filters or {}))
        self.active[operation.id] = operation
        logger.info(f"Started {operation_type} operation {operation.id} for {source}")
        return operation

    def get_operation(self, operation_id: str) -> Optional[Operation]:
        return self.active.get(operation_id)

    def get_active_operations(self) -> List[Operation]:
        return list(self.active.values())

    def record_events_found(self, operation_id: str, count: int) -> None:
        operation = self.active.get(operation_id)
        if operation:
            operation.events_found += count

    def record_event_inserted(self, operation_id: str, count: int = 1) -> None:
        operation = self.active.get(operation_id)
        if operation:
            operation.events_inserted += count

    def record_event_duplicated(self, operation_id: str, count: int = 1) -> None:
        operation = self.active.get(operation_id)
        if operation:
            operation.events_duplicated += count

    def record_event_rejected(self, operation_id: str, reason: str) -> None:
        operation = self.active.get(operation_id)
        if operation:
            operation.events_rejected += 1
            operation.rejection_reasons[reason] = operation.rejection_reasons.get(reason, 0) + 1

    def record_error(self, operation_id: str, error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
        operation = self.active.get(operation_id)
        if operation:
            operation.errors_count += 1
            operation.errors.append(self._describe(error, context))
        logger.warning(f"Error in operation {operation_id}: {error}")

    def complete_operation(self, operation_id: str) -> Optional[OperationRecord]:
        """
        Finalize an operation as completed and persist it.

        Returns:
            The OperationRecord, or None for an unknown id

        Raises:
            ScrapingError: database_error when the log row cannot be written
        """
        operation = self.active.pop(operation_id, None)
        if operation is None:
            logger.warning(f"Operation not found to complete: {operation_id}")
            return None

        record = operation.finalize('completed')
        self.db.log_operation(record)
        logger.info(
            f"Operation {operation_id} completed in {record.duration_ms}ms: "
            f"{record.events_found} found, {record.events_inserted} inserted, "
            f"{record.events_duplicated} duplicated, {record.events_rejected} rejected"
        )
        return record

    def fail_operation(self, operation_id: str, error: Exception) -> Optional[OperationRecord]:
        """
        Finalize an operation as failed and persist it.

        Raises:
            ScrapingError: database_error when the log row cannot be written
        """
        operation = self.active.pop(operation_id, None)
        if operation is None:
            logger.warning(f"Operation not found to fail: {operation_id}")
            return None

        error_details = self._describe(error)
        if operation.errors:
            error_details['errors'] = list(operation.errors)

        record = operation.finalize('failed', error_details=error_details)
        self.db.log_operation(record)
        logger.error(f"Operation {operation_id} failed after {record.duration_ms}ms: {error}")
        return record

    def execute_with_logging(
        self,
        source: str,
        operation_type: str,
        filters: Optional[Dict[str, Any]],
        fn: Callable[[Operation], T]
    ) -> T:
        """
        Run ``fn`` inside a tracked operation.

        The operation is completed when ``fn`` returns and failed (then the
        error re-raised) when it raises.
        """
        operation = self.start_operation(source, operation_type, filters)
        try:
            result = fn(operation)
        except Exception as e:
            self.fail_operation(operation.id, e)
            raise

        self.complete_operation(operation.id)
        return result

    def get_recent_operations_stats(self, hours: int = 24) -> Dict[str, Any]:
        """Aggregate run logs from the last ``hours`` hours."""
        since = datetime.now(timezone.utc) - timedelta(hours=hours)
        operations = self.db.get_operations(since)

        stats = {
            'total_operations': len(operations),
            'successful': sum(1 for op in operations if op.get('status') == 'completed'),
            'failed': sum(1 for op in operations if op.get('status') == 'failed'),
            'total_events_found': sum(op.get('events_found', 0) for op in operations),
            'total_events_inserted': sum(op.get('events_inserted', 0) for op in operations),
            'total_events_duplicated': sum(op.get('events_duplicated', 0) for op in operations),
            'total_events_rejected': sum(op.get('events_rejected', 0) for op in operations),
            'average_duration_ms': round(
                sum(op.get('duration_ms', 0) for op in operations) / len(operations)
            ) if operations else 0,
            'by_source': {},
            'by_status': {}
        }

        for op in operations:
            source = op.get('source', 'unknown')
            status = op.get('status', 'unknown')
            stats['by_source'][source] = stats['by_source'].get(source, 0) + 1
            stats['by_status'][status] = stats['by_status'].get(status, 0) + 1

        return stats

    def cleanup_orphaned_operations(self, max_age_minutes: int = 60) -> int:
        """Drop in-memory operations older than ``max_age_minutes``."""
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=max_age_minutes)
        orphaned = [op_id for op_id, op in self.active.items() if op.started_at < cutoff]

        for op_id in orphaned:
            logger.warning(f"Dropping orphaned operation {op_id}")
            del self.active[op_id]

        if orphaned:
            logger.info(f"Removed {len(orphaned)} orphaned operations")
        return len(orphaned)

    @staticmethod
    def _describe(error: Exception, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        description = {
            'message': str(error),
            'type': error.type.value if isinstance(error, ScrapingError) else type(error).__name__,
            'timestamp': datetime.now(timezone.utc).isoformat()
        }
        if context:
            description['context'] = {k: str(v) for k, v in context.items()}
        return description
