"""Lookup of adapter classes by the kind named in facility configuration."""
from datetime import datetime
from typing import Callable, Dict, Type

from orchestrator.config import FacilityConfig
from processor.time_normalizer import DEFAULT_TIMEZONE, utc_now
from scraper.base import SourceAdapter
from scraper.embedded_json import EmbeddedJsonAdapter
from scraper.form_api import FormApiAdapter
from scraper.gateway import FetchGateway
from scraper.html_table import HtmlTableAdapter
from scraper.ical_feed import ICalFeedAdapter
from scraper.session_api import SessionApiAdapter

ADAPTERS: Dict[str, Type[SourceAdapter]] = {
    adapter.kind: adapter
    for adapter in (
        HtmlTableAdapter, EmbeddedJsonAdapter, ICalFeedAdapter, FormApiAdapter, SessionApiAdapter
    )
}


def build_adapter(
    facility: FacilityConfig,
    gateway: FetchGateway,
    reference_timezone: str = DEFAULT_TIMEZONE,
    clock: Callable[[], datetime] = utc_now
) -> SourceAdapter:
    """
    Instantiate the adapter configured for a facility.

    Raises:
        ValueError: If the facility names an unknown adapter kind
    """
    try:
        adapter_class = ADAPTERS[facility.adapter]
    except KeyError:
        raise ValueError(
            f"Unknown adapter '{facility.adapter}' for facility {facility.facility_id}"
        )
    return adapter_class(facility, gateway, reference_timezone=reference_timezone, clock=clock)
