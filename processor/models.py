"""Data models for event scraping and processing."""
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union


@dataclass
class RawEvent:
    """Untrusted event record as extracted by a scraper."""
    title: Optional[str] = None
    description: Optional[str] = None
    date: Union[str, datetime, None] = None
    location: Union[str, Dict[str, Any], None] = None
    image: Union[str, Dict[str, Any], None] = None
    price: Union[str, Dict[str, Any], None] = None
    organizer: Union[str, Dict[str, Any], None] = None
    url: Optional[str] = None
    source: str = 'unknown'
    search_term: Optional[str] = None
    is_regional: bool = False


@dataclass
class Location:
    venue: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    coordinates: Optional[Dict[str, float]] = None


@dataclass
class Image:
    url: str
    alt: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


@dataclass
class Price:
    min: Optional[float] = None
    max: Optional[float] = None
    currency: str = 'BRL'
    is_free: bool = False
    display: Optional[str] = None


@dataclass
class Organizer:
    name: str
    verified: bool = False


@dataclass
class NormalizedEvent:
    """Event with every field cleaned and well-typed (or None)."""
    title: str
    source: str
    scraped_at: str
    description: Optional[str] = None
    date: Optional[str] = None
    location: Optional[Location] = None
    image: Optional[Image] = None
    price: Optional[Price] = None
    organizer: Optional[Organizer] = None
    url: Optional[str] = None
    is_regional: bool = False
    search_term: Optional[str] = None


@dataclass
class ProcessedEvent(NormalizedEvent):
    """Normalized event enriched with classification and scores."""
    category: str = 'outros'
    category_confidence: float = 0.0
    tags: List[str] = field(default_factory=list)
    popularity: float = 0.0
    quality_score: float = 0.0
    hash: str = ''


@dataclass(frozen=True)
class MatchedKeyword:
    keyword: str
    matches: float
    score: float


@dataclass(frozen=True)
class AlternativeCategory:
    category: str
    confidence: float


@dataclass(frozen=True)
class Classification:
    """Result of classifying a piece of text."""
    category: str
    confidence: float
    tags: Tuple[str, ...] = ()
    matched_keywords: Tuple[MatchedKeyword, ...] = ()
    alternative_categories: Tuple[AlternativeCategory, ...] = ()


@dataclass
class ProcessingResult:
    """Outcome of running one raw record through the processor."""
    success: bool
    source: str
    event: Optional[ProcessedEvent] = None
    errors: List[str] = field(default_factory=list)
    detail: Optional[str] = None


@dataclass
class RejectedEvent:
    raw: RawEvent
    reasons: List[str]


@dataclass
class BatchProcessingResult:
    successful: List[ProcessedEvent] = field(default_factory=list)
    rejected: List[RejectedEvent] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class InsertResult:
    success: bool
    reason: str
    event_id: Optional[str] = None


@dataclass
class InsertError:
    event: ProcessedEvent
    error: str


@dataclass
class BatchInsertResult:
    """Result of a batch insert."""
    inserted: List[ProcessedEvent] = field(default_factory=list)
    duplicates: List[ProcessedEvent] = field(default_factory=list)
    errors: List[InsertError] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OperationRecord:
    """A finished scraping run, as persisted to the log table."""
    id: str
    type: str
    source: str
    status: str
    filters: Dict[str, Any]
    events_found: int
    events_inserted: int
    events_duplicated: int
    events_rejected: int
    errors_count: int
    rejection_reasons: Dict[str, int]
    started_at: str
    completed_at: str
    duration_ms: int
    error_details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Operation:
    """A scraping run in progress."""
    source: str
    type: str = 'scraping'
    filters: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: str = 'running'
    events_found: int = 0
    events_inserted: int = 0
    events_duplicated: int = 0
    events_rejected: int = 0
    errors_count: int = 0
    rejection_reasons: Dict[str, int] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)

    def finalize(
        self,
        status: str,
        error_details: Optional[Dict[str, Any]] = None,
        completed_at: Optional[datetime] = None
    ) -> OperationRecord:
        """Freeze the running operation into an OperationRecord."""
        completed_at = completed_at or _utcnow()
        duration_ms = int((completed_at - self.started_at).total_seconds() * 1000)

        if error_details is None and self.errors:
            error_details = {'errors': list(self.errors)}

        return OperationRecord(
            id=self.id,
            type=self.type,
            source=self.source,
            status=status,
            filters=dict(self.filters),
            events_found=self.events_found,
            events_inserted=self.events_inserted,
            events_duplicated=self.events_duplicated,
            events_rejected=self.events_rejected,
            errors_count=self.errors_count,
            rejection_reasons=dict(self.rejection_reasons),
            started_at=self.started_at.isoformat(),
            completed_at=completed_at.isoformat(),
            duration_ms=max(duration_ms, 0),
            error_details=error_details
        )
