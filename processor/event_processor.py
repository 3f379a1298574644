"""Event processor turning raw adapter output into normalized events."""
import hashlib
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from processor.categorizer import categorize_with_hint
from processor.deduplicator import dedupe, event_id
from processor.exceptions import ParseError
from processor.models import NormalizedEvent, RawEvent, format_instant
from processor.time_normalizer import DEFAULT_TIMEZONE, to_utc, utc_now

logger = logging.getLogger(__name__)


class EventProcessor:
    """Validates, converts and categorizes raw events for one facility."""

    MAX_TITLE_LENGTH = 200
    MAX_DESCRIPTION_LENGTH = 2000

    def __init__(
        self,
        reference_timezone: str = DEFAULT_TIMEZONE,
        window_days: int = 30,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize the processor.

        Args:
            reference_timezone: Zone applied to wall clocks without an explicit zone
            window_days: Events starting further ahead than this are dropped
            clock: Returns the current UTC instant
        """
        self.reference_timezone = reference_timezone
        self.window_days = window_days
        self.clock = clock

    def process_events(
        self,
        raw_events: List[RawEvent],
        facility_id: str,
        default_rink_id: Optional[str] = None
    ) -> List[NormalizedEvent]:
        """
        Normalize raw events and remove duplicates.

        Args:
            raw_events: Events produced by a source adapter
            facility_id: Facility the events belong to
            default_rink_id: Rink for events that do not name one

        Returns:
            Normalized events sorted by start instant, unique by id
        """
        now = self.clock()
        horizon = now + timedelta(days=self.window_days)
        processed_events = []
        skipped_window = 0

        for raw in raw_events:
            try:
                event = self._process_single_event(raw, facility_id, default_rink_id)
            except (ParseError, ValueError) as e:
                logger.warning(f"Failed to process event '{raw.title}': {e}")
                continue

            if event is None:
                continue
            if event.end_instant <= now or event.start_instant > horizon:
                skipped_window += 1
                continue
            processed_events.append(event)

        processed_events.sort(key=lambda event: event.start_instant)
        unique_events = dedupe(dedupe(processed_events), key=event_id)

        logger.info(
            f"Processed {len(unique_events)} valid events out of "
            f"{len(raw_events)} total events for {facility_id}",
            extra={
                'facility_id': facility_id,
                'outside_window': skipped_window,
                'duplicates': len(processed_events) - len(unique_events)
            }
        )
        return unique_events

    def _process_single_event(
        self,
        raw: RawEvent,
        facility_id: str,
        default_rink_id: Optional[str]
    ) -> Optional[NormalizedEvent]:
        title = ' '.join((raw.title or '').split())[:self.MAX_TITLE_LENGTH]
        if not title:
            logger.warning(f"Event from {facility_id} missing required field: title")
            return None

        zone = raw.timezone or self.reference_timezone
        start = to_utc(raw.start_local, zone)
        end = to_utc(raw.end_local, zone)

        if start >= end:
            logger.warning(
                f"Skipping event '{title}': start {format_instant(start)} "
                f"is not before end {format_instant(end)}"
            )
            return None

        description = raw.description.strip() if raw.description else None
        if description:
            description = description[:self.MAX_DESCRIPTION_LENGTH]

        return NormalizedEvent(
            id=self.generate_event_id(facility_id, raw.source_id or title, start),
            facility_id=facility_id,
            rink_id=raw.rink_id or default_rink_id or facility_id,
            title=title,
            start_instant=start,
            end_instant=end,
            category=categorize_with_hint(raw.category_hint, title),
            description=description or None,
            source_url=raw.source_url
        )

    @staticmethod
    def generate_event_id(facility_id: str, source_id: str, start: datetime) -> str:
        """
        Generate a stable identifier for an event.

        Args:
            facility_id: Owning facility
            source_id: Source-provided identifier, or the title when there is none
            start: UTC start instant

        Returns:
            "<facility_id>-<16 hex chars of SHA256>"
        """
        composite = f"{facility_id}|{source_id}|{format_instant(start)}"
        digest = hashlib.sha256(composite.encode('utf-8')).hexdigest()
        return f"{facility_id}-{digest[:16]}"
