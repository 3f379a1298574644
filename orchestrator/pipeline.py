"""Per-facility scrape task: adapter, processing and persistence."""
import logging
import time
from datetime import datetime
from typing import Callable, Optional

from botocore.exceptions import ClientError

from orchestrator.config import FacilityConfig
from processor.event_processor import EventProcessor
from processor.exceptions import FacilityTimeout
from processor.models import FacilityMetadata, FacilityResult, FacilityStatus, Rink, format_instant
from processor.time_normalizer import DEFAULT_TIMEZONE, utc_now
from scraper.base import SourceAdapter
from scraper.gateway import FetchGateway
from scraper.registry import build_adapter
from storage.dynamodb_manager import DynamoDBManager

logger = logging.getLogger(__name__)

AdapterFactory = Callable[..., SourceAdapter]


class FacilityPipeline:
    """Scrapes one facility and replaces its stored events and status."""

    def __init__(
        self,
        store: DynamoDBManager,
        gateway: FetchGateway,
        processor: Optional[EventProcessor] = None,
        adapter_factory: AdapterFactory = build_adapter,
        reference_timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic
    ):
        self.store = store
        self.gateway = gateway
        self.processor = processor or EventProcessor(reference_timezone=reference_timezone, clock=clock)
        self.adapter_factory = adapter_factory
        self.reference_timezone = reference_timezone
        self.clock = clock
        self.monotonic = monotonic

    def run(self, facility: FacilityConfig, timeout_seconds: Optional[float] = None) -> FacilityResult:
        """
        Scrape, normalize and store one facility.

        Args:
            facility: Facility to scrape
            timeout_seconds: Bound on the whole task; a result arriving later
                is discarded and recorded as a timeout

        Returns:
            FacilityResult describing the outcome
        """
        facility_id = facility.facility_id
        attempted_at = self.clock()
        started = self.monotonic()

        adapter = self.adapter_factory(
            facility,
            self.gateway,
            reference_timezone=self.reference_timezone,
            clock=self.clock
        )
        scrape = adapter.scrape()

        if timeout_seconds is not None and self.monotonic() - started > timeout_seconds:
            return self._record_failure(
                facility, str(FacilityTimeout(facility_id, timeout_seconds)), attempted_at
            )

        if not scrape.ok:
            return self._record_failure(facility, scrape.error, attempted_at)

        events = self.processor.process_events(
            scrape.events,
            facility_id,
            default_rink_id=facility.primary_rink_id
        )
        metadata = self._metadata(facility, attempted_at, FacilityStatus.SUCCESS, len(events))
        metadata.last_successful_scrape = attempted_at

        try:
            if self._superseded(facility_id, attempted_at):
                return FacilityResult(
                    facility_id=facility_id, success=False, error='Superseded by a newer attempt'
                )
            self.store.put_events(facility_id, events)
            self.store.put_metadata(facility_id, metadata)
        except ClientError as e:
            logger.error(
                f"Failed to store results for {facility_id}: {e}",
                exc_info=True,
                extra={'facility_id': facility_id}
            )
            return self._record_failure(facility, f"Storage write failed: {e}", attempted_at)

        logger.info(
            f"Facility {facility_id} succeeded with {len(events)} events",
            extra={'facility_id': facility_id, 'event_count': len(events)}
        )
        return FacilityResult(facility_id=facility_id, success=True, event_count=len(events))

    def _metadata(
        self,
        facility: FacilityConfig,
        attempted_at: datetime,
        status: FacilityStatus,
        event_count: int,
        error_message: Optional[str] = None
    ) -> FacilityMetadata:
        return FacilityMetadata(
            facility_id=facility.facility_id,
            display_name=facility.display_name,
            source_url=facility.source_url,
            last_attempt=attempted_at,
            status=status,
            event_count=event_count,
            facility_name=facility.facility_name,
            rinks=[Rink(rink_id=rink.rink_id, rink_name=rink.rink_name) for rink in facility.rinks],
            error_message=error_message
        )

    def _superseded(self, facility_id: str, attempted_at: datetime) -> bool:
        """True when stored metadata already reflects a later attempt than this one."""
        previous = self.store.find_metadata(facility_id)
        if previous is not None and previous.last_attempt > attempted_at:
            logger.warning(
                f"Discarding stale result for {facility_id} from {format_instant(attempted_at)}",
                extra={'facility_id': facility_id}
            )
            return True
        return False

    def _record_failure(
        self,
        facility: FacilityConfig,
        message: str,
        attempted_at: datetime
    ) -> FacilityResult:
        """Write error metadata, leaving the previously stored events in place."""
        facility_id = facility.facility_id
        logger.error(f"Facility {facility_id} failed: {message}", extra={'facility_id': facility_id})

        metadata = self._metadata(facility, attempted_at, FacilityStatus.ERROR, 0, error_message=message)
        try:
            previous = self.store.find_metadata(facility_id)
            if previous is not None and previous.last_attempt > attempted_at:
                logger.warning(
                    f"Discarding stale failure for {facility_id} from {format_instant(attempted_at)}",
                    extra={'facility_id': facility_id}
                )
            else:
                if previous is not None:
                    metadata.last_successful_scrape = previous.last_successful_scrape
                self.store.put_metadata(facility_id, metadata)
        except ClientError as e:
            logger.error(f"Failed to store error metadata for {facility_id}: {e}")

        return FacilityResult(facility_id=facility_id, success=False, error=message)
