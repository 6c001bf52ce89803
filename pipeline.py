"""Scrape → process → store run over the enabled sources."""
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import requests

import config
from errors import ErrorHandler, ErrorSeverity, ErrorType, ScrapingError
from processor.data_processor import DataProcessor
from scraper.scraper_factory import ScraperFactory
from storage.database_handler import DatabaseHandler
from storage.operation_logger import OperationLogger

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """Every collaborator a pipeline run needs, built once per invocation."""
    settings: config.Settings
    db: DatabaseHandler
    operation_logger: OperationLogger
    processor: DataProcessor
    factory: ScraperFactory
    error_handler: ErrorHandler


@dataclass
class SourceRun:
    """Outcome of one source within a run."""
    source: str
    operation_id: str
    status: str
    events_found: int = 0
    events_accepted: int = 0
    events_inserted: int = 0
    events_duplicated: int = 0
    events_rejected: int = 0
    errors: List[str] = field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None


@dataclass
class RunSummary:
    """Totals over every source of a run."""
    runs: List[SourceRun] = field(default_factory=list)
    duration_seconds: float = 0.0

    def total(self, attribute: str) -> int:
        return sum(getattr(run, attribute) for run in self.runs)

    @property
    def failed_sources(self) -> List[str]:
        return [run.source for run in self.runs if run.status == 'failed']

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sources': [asdict(run) for run in self.runs],
            'events_found': self.total('events_found'),
            'events_accepted': self.total('events_accepted'),
            'events_inserted': self.total('events_inserted'),
            'events_duplicated': self.total('events_duplicated'),
            'events_rejected': self.total('events_rejected'),
            'failed_sources': self.failed_sources,
            'duration_seconds': round(self.duration_seconds, 2)
        }


def build_context(
    settings: config.Settings,
    db: Optional[DatabaseHandler] = None,
    session: Optional[requests.Session] = None
) -> RunContext:
    """
    Wire the run's collaborators from settings.

    Args:
        settings: Loaded settings
        db: Existing DatabaseHandler; one is created from settings when omitted
        session: HTTP session shared by every scraper

    Returns:
        RunContext
    """
    db = db or DatabaseHandler(
        events_table=settings.events_table,
        logs_table=settings.logs_table,
        region_name=settings.aws_region,
        batch_size=settings.batch_size
    )
    return RunContext(
        settings=settings,
        db=db,
        operation_logger=OperationLogger(db),
        processor=DataProcessor(settings),
        factory=ScraperFactory(settings, session=session),
        error_handler=ErrorHandler('pipeline')
    )


def run_source(
    context: RunContext,
    source: str,
    search_terms: Optional[Iterable[str]] = None
) -> SourceRun:
    """
    Scrape, process and store the events of one source.

    A non-critical failure fails the source's operation and is returned
    in the SourceRun. A critical failure fails the operation and is
    re-raised.

    Raises:
        ScrapingError: critical failure (database or configuration error,
            or a batch in which every insert failed)
    """
    terms = list(search_terms) if search_terms else None
    operation_logger = context.operation_logger
    operation = operation_logger.start_operation(
        source, 'scraping', {'search_terms': terms} if terms else None
    )
    op_id = operation.id
    accepted = 0
    batch_errors: List[str] = []

    try:
        scraper = context.factory.get_scraper(source)
        raw_events = scraper.scrape_events(terms)
        operation_logger.record_events_found(op_id, len(raw_events))

        batch = context.processor.process_batch(raw_events, source)
        accepted = len(batch.successful)
        for rejected in batch.rejected:
            operation_logger.record_event_rejected(op_id, rejected.reasons[0] if rejected.reasons else 'unknown')
        for detail in batch.errors:
            batch_errors.append(detail)
            operation_logger.record_error(op_id, ScrapingError(detail, ErrorType.UNKNOWN_ERROR, ErrorSeverity.LOW))

        inserts = context.db.insert_batch(batch.successful)
        operation_logger.record_event_inserted(op_id, len(inserts.inserted))
        operation_logger.record_event_duplicated(op_id, len(inserts.duplicates))
        for insert_error in inserts.errors:
            batch_errors.append(f"{insert_error.event.title}: {insert_error.error}")
            operation_logger.record_error(
                op_id,
                ScrapingError(insert_error.error, ErrorType.DATABASE_ERROR),
                {'hash': insert_error.event.hash}
            )

        if inserts.errors and not inserts.inserted and not inserts.duplicates:
            raise ScrapingError(
                f"All {len(inserts.errors)} inserts for {source} failed",
                ErrorType.DATABASE_ERROR,
                details={'source': source, 'errors': len(inserts.errors)}
            )

    except ScrapingError as e:
        context.error_handler.handle(e, {'source': source, 'operation_id': op_id})
        record = operation_logger.fail_operation(op_id, e)
        if e.is_critical():
            raise
        return _source_run(record, accepted, batch_errors, e)

    except Exception as e:
        context.error_handler.handle(e, {'source': source, 'operation_id': op_id})
        operation_logger.fail_operation(op_id, e)
        raise

    record = operation_logger.complete_operation(op_id)
    return _source_run(record, accepted, batch_errors)


def _source_run(record, accepted: int, errors: List[str], error: Optional[ScrapingError] = None) -> SourceRun:
    return SourceRun(
        source=record.source,
        operation_id=record.id,
        status=record.status,
        events_found=record.events_found,
        events_accepted=accepted,
        events_inserted=record.events_inserted,
        events_duplicated=record.events_duplicated,
        events_rejected=record.events_rejected,
        errors=errors,
        error=error.message if error else None,
        error_type=error.type.value if error else None
    )


def run_pipeline(
    context: RunContext,
    sources: Optional[Iterable[str]] = None,
    search_terms: Optional[Iterable[str]] = None
) -> RunSummary:
    """
    Run every requested source in sequence.

    Args:
        context: RunContext from build_context
        sources: Source names; defaults to every enabled source
        search_terms: Overrides each source's configured search terms

    Returns:
        RunSummary of every source

    Raises:
        ScrapingError: a critical failure aborted the run
    """
    start_time = time.monotonic()
    names = list(sources) if sources else context.factory.get_enabled_scrapers()
    logger.info(f"Starting pipeline run for sources: {', '.join(names) or 'none'}")

    context.db.connect()
    summary = RunSummary()
    try:
        for name in names:
            summary.runs.append(run_source(context, name, search_terms))
    finally:
        context.factory.close()
        summary.duration_seconds = time.monotonic() - start_time

    logger.info(
        f"Pipeline run finished: {summary.total('events_inserted')} inserted, "
        f"{summary.total('events_duplicated')} duplicated, {summary.total('events_rejected')} rejected",
        extra={'failed_sources': summary.failed_sources, 'duration_seconds': round(summary.duration_seconds, 2)}
    )
    return summary
