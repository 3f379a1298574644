"""Common interface for schedule source adapters."""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, List, Optional

from orchestrator.config import FacilityConfig
from processor.models import RawEvent, ScrapeResult, WallClock
from processor.time_normalizer import DEFAULT_TIMEZONE, local_today, utc_now
from scraper.gateway import FetchGateway
from scraper.patterns import clean_title

logger = logging.getLogger(__name__)


class SourceAdapter(ABC):
    """
    Base class for adapters that turn one source format into raw events.

    Subclasses implement ``_collect``; ``scrape`` never raises and reports a
    total failure through the returned ScrapeResult instead.
    """

    kind = 'base'

    def __init__(
        self,
        facility: FacilityConfig,
        gateway: FetchGateway,
        reference_timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] = utc_now
    ):
        self.facility = facility
        self.gateway = gateway
        self.reference_timezone = reference_timezone
        self.clock = clock

    def scrape(self) -> ScrapeResult:
        """
        Fetch and parse the facility's schedule.

        Returns:
            ScrapeResult with raw events, or an empty result carrying the error
        """
        facility_id = self.facility.facility_id
        logger.info(f"Scraping {facility_id} with {self.kind} adapter")

        try:
            events = self._collect()
        except Exception as e:
            logger.error(
                f"Scrape failed for {facility_id}: {e}",
                exc_info=True,
                extra={'facility_id': facility_id, 'adapter': self.kind}
            )
            return ScrapeResult.failure(str(e))

        logger.info(
            f"Extracted {len(events)} raw events for {facility_id}",
            extra={'facility_id': facility_id, 'adapter': self.kind}
        )
        return ScrapeResult(events=events)

    @abstractmethod
    def _collect(self) -> List[RawEvent]:
        """Fetch the source and return raw events; raise on total failure."""

    def option(self, name: str, default: Any = None) -> Any:
        return self.facility.option(name, default)

    def today(self):
        return local_today(self.reference_timezone, self.clock())

    def fetch_text(self, url: Optional[str] = None) -> str:
        return self.gateway.fetch(url or self.facility.source_url).content

    def make_event(
        self,
        title: str,
        start: WallClock,
        end: WallClock,
        **fields: Any
    ) -> RawEvent:
        """Build a RawEvent attributed to this facility with a cleaned title."""
        fields.setdefault('source_url', self.facility.source_url)
        fields.setdefault('rink_id', self.facility.primary_rink_id)
        return RawEvent(
            title=clean_title(title),
            start_local=start,
            end_local=end,
            source_facility_id=self.facility.facility_id,
            **fields
        )
