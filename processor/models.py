"""Data models for schedule ingestion."""
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


INSTANT_FORMAT = '%Y-%m-%dT%H:%M:%SZ'


def format_instant(value: datetime) -> str:
    """Render an aware datetime as a UTC ISO 8601 string with a Z suffix."""
    return value.astimezone(timezone.utc).strftime(INSTANT_FORMAT)


def parse_instant(value: str) -> datetime:
    """Parse an ISO 8601 instant (Z or numeric offset) into an aware UTC datetime."""
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        raise ValueError(f"Instant has no UTC offset: {value!r}")
    return parsed.astimezone(timezone.utc)


class Category(str, Enum):
    """Closed set of event categories."""
    PUBLIC_SKATE = 'Public Skate'
    STICK_AND_PUCK = 'Stick & Puck'
    HOCKEY_LEAGUE = 'Hockey League'
    LEARN_TO_SKATE = 'Learn to Skate'
    FIGURE_SKATING = 'Figure Skating'
    HOCKEY_PRACTICE = 'Hockey Practice'
    DROP_IN_HOCKEY = 'Drop-In Hockey'
    SPECIAL_EVENT = 'Special Event'
    OTHER = 'Other'


class FacilityStatus(str, Enum):
    SUCCESS = 'success'
    ERROR = 'error'


@dataclass(frozen=True)
class WallClock:
    """Civil date and time with no zone attached."""
    year: int
    month: int
    day: int
    hour: int = 0
    minute: int = 0

    @classmethod
    def from_datetime(cls, value: datetime) -> 'WallClock':
        return cls(value.year, value.month, value.day, value.hour, value.minute)

    @classmethod
    def from_date(cls, value: date, hour: int = 0, minute: int = 0) -> 'WallClock':
        return cls(value.year, value.month, value.day, hour, minute)

    def to_naive(self) -> datetime:
        return datetime(self.year, self.month, self.day, self.hour, self.minute)

    @property
    def date(self) -> date:
        return date(self.year, self.month, self.day)


@dataclass
class RawEvent:
    """Event as extracted by a source adapter, before normalization."""
    title: str
    start_local: WallClock
    end_local: WallClock
    source_facility_id: str
    source_id: Optional[str] = None
    rink_id: Optional[str] = None
    description: Optional[str] = None
    source_url: Optional[str] = None
    category_hint: Optional[str] = None
    timezone: Optional[str] = None


@dataclass
class NormalizedEvent:
    """Event with absolute UTC instants and a closed-set category."""
    id: str
    facility_id: str
    rink_id: str
    title: str
    start_instant: datetime
    end_instant: datetime
    category: Category
    description: Optional[str] = None
    source_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        item = {
            'id': self.id,
            'facilityId': self.facility_id,
            'rinkId': self.rink_id,
            'title': self.title,
            'startInstant': format_instant(self.start_instant),
            'endInstant': format_instant(self.end_instant),
            'category': self.category.value,
        }
        if self.description:
            item['description'] = self.description
        if self.source_url:
            item['sourceUrl'] = self.source_url
        return item

    @classmethod
    def from_dict(cls, item: Dict[str, Any]) -> 'NormalizedEvent':
        return cls(
            id=item['id'],
            facility_id=item['facilityId'],
            rink_id=item['rinkId'],
            title=item['title'],
            start_instant=parse_instant(item['startInstant']),
            end_instant=parse_instant(item['endInstant']),
            category=Category(item['category']),
            description=item.get('description'),
            source_url=item.get('sourceUrl')
        )


@dataclass
class Rink:
    rink_id: str
    rink_name: str


@dataclass
class FacilityMetadata:
    """Status record written on every scrape attempt of a facility."""
    facility_id: str
    display_name: str
    source_url: str
    last_attempt: datetime
    status: FacilityStatus
    event_count: int
    facility_name: str = ''
    rinks: List[Rink] = field(default_factory=list)
    error_message: Optional[str] = None
    last_successful_scrape: Optional[datetime] = None

    @classmethod
    def no_data(cls, facility_id: str, now: datetime) -> 'FacilityMetadata':
        """Placeholder returned for facilities with nothing stored yet."""
        return cls(
            facility_id=facility_id,
            display_name=facility_id,
            source_url='',
            last_attempt=now,
            status=FacilityStatus.ERROR,
            event_count=0,
            facility_name=facility_id,
            rinks=[Rink(rink_id=facility_id, rink_name='Main Rink')],
            error_message='No data available'
        )

    def to_dict(self) -> Dict[str, Any]:
        item = {
            'facilityId': self.facility_id,
            'facilityName': self.facility_name or self.display_name,
            'displayName': self.display_name,
            'sourceUrl': self.source_url,
            'lastAttempt': format_instant(self.last_attempt),
            'status': self.status.value,
            'eventCount': self.event_count,
            'rinks': [
                {'rinkId': rink.rink_id, 'rinkName': rink.rink_name}
                for rink in self.rinks
            ],
        }
        if self.error_message:
            item['errorMessage'] = self.error_message
        if self.last_successful_scrape:
            item['lastSuccessfulScrape'] = format_instant(self.last_successful_scrape)
        return item

    @classmethod
    def from_dict(cls, item: Dict[str, Any]) -> 'FacilityMetadata':
        last_success = item.get('lastSuccessfulScrape')
        return cls(
            facility_id=item['facilityId'],
            display_name=item.get('displayName', item['facilityId']),
            source_url=item.get('sourceUrl', ''),
            last_attempt=parse_instant(item['lastAttempt']),
            status=FacilityStatus(item['status']),
            event_count=int(item.get('eventCount', 0)),
            facility_name=item.get('facilityName', ''),
            rinks=[
                Rink(rink_id=rink['rinkId'], rink_name=rink['rinkName'])
                for rink in item.get('rinks', [])
            ],
            error_message=item.get('errorMessage'),
            last_successful_scrape=parse_instant(last_success) if last_success else None
        )


@dataclass
class ScrapeResult:
    """Outcome of one adapter invocation."""
    events: List[RawEvent] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, message: str) -> 'ScrapeResult':
        return cls(events=[], error=message)


@dataclass
class FacilityResult:
    """Outcome of one facility task within a scheduler run."""
    facility_id: str
    success: bool
    event_count: Optional[int] = None
    http_status: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        item: Dict[str, Any] = {'facilityId': self.facility_id, 'success': self.success}
        if self.event_count is not None:
            item['eventCount'] = self.event_count
        if self.http_status is not None:
            item['httpStatus'] = self.http_status
        if self.error:
            item['error'] = self.error
        return item

    @classmethod
    def from_dict(cls, item: Dict[str, Any]) -> 'FacilityResult':
        return cls(
            facility_id=item['facilityId'],
            success=bool(item['success']),
            event_count=item.get('eventCount'),
            http_status=item.get('httpStatus'),
            error=item.get('error')
        )


@dataclass
class SchedulerRun:
    """Summary of one orchestration cycle."""
    timestamp: datetime
    results: List[FacilityResult]
    next_scheduled: datetime
    splay_seconds: float = 0.0

    @property
    def successful(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.successful

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': format_instant(self.timestamp),
            'totalFacilities': len(self.results),
            'successful': self.successful,
            'failed': self.failed,
            'splaySeconds': round(self.splay_seconds, 2),
            'results': [result.to_dict() for result in self.results],
            'nextScheduled': format_instant(self.next_scheduled),
        }

    @classmethod
    def from_dict(cls, item: Dict[str, Any]) -> 'SchedulerRun':
        return cls(
            timestamp=parse_instant(item['timestamp']),
            results=[FacilityResult.from_dict(result) for result in item.get('results', [])],
            next_scheduled=parse_instant(item['nextScheduled']),
            splay_seconds=float(item.get('splaySeconds', 0.0))
        )
