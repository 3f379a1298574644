"""Ways of running one facility task: in-process or over HTTP."""
import logging
import re
from typing import Callable, Mapping, Optional

import requests

from orchestrator.config import FACILITY_CATALOG, FacilityConfig, get_facility
from orchestrator.pipeline import FacilityPipeline
from processor.exceptions import UnknownFacility
from processor.models import FacilityResult

logger = logging.getLogger(__name__)

Dispatch = Callable[[str], FacilityResult]

PLACEHOLDER = re.compile(r'\$\{([\w-]+)\}')


def build_scraper_url(template: str, variables: Mapping[str, str]) -> str:
    """
    Substitute ``${name}`` placeholders in a URL template.

    Unknown placeholders are left in place and logged.

    Example:
        build_scraper_url('https://${facility-id}.example.com/scrape', {'facility-id': 'big-bear'})
        -> 'https://big-bear.example.com/scrape'
    """
    def replace(match):
        name = match.group(1)
        if name in variables:
            return variables[name]
        logger.warning(f"No value for placeholder '{name}' in scraper URL template")
        return match.group(0)

    return PLACEHOLDER.sub(replace, template)


class LocalDispatcher:
    """Runs the facility pipeline in the current process."""

    def __init__(
        self,
        pipeline: FacilityPipeline,
        catalog: Mapping[str, FacilityConfig] = FACILITY_CATALOG,
        timeout_seconds: Optional[float] = None
    ):
        self.pipeline = pipeline
        self.catalog = catalog
        self.timeout_seconds = timeout_seconds

    def __call__(self, facility_id: str) -> FacilityResult:
        try:
            facility = get_facility(facility_id, self.catalog)
        except UnknownFacility as e:
            logger.error(str(e))
            return FacilityResult(facility_id=facility_id, success=False, error=str(e))
        return self.pipeline.run(facility, timeout_seconds=self.timeout_seconds)


class HttpDispatcher:
    """Triggers a remote scrape endpoint resolved from a URL template."""

    def __init__(
        self,
        template: str,
        session: Optional[requests.Session] = None,
        timeout_seconds: float = 300
    ):
        self.template = template
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds

    def endpoint_for(self, facility_id: str) -> str:
        return build_scraper_url(
            self.template,
            {'facility-id': facility_id, 'rink-name': facility_id}
        )

    def __call__(self, facility_id: str) -> FacilityResult:
        url = self.endpoint_for(facility_id)
        logger.info(f"Triggering scrape for {facility_id} at {url}")

        try:
            response = self.session.post(url, timeout=self.timeout_seconds)
        except requests.RequestException as e:
            logger.error(f"Scrape request for {facility_id} failed: {e}")
            return FacilityResult(facility_id=facility_id, success=False, error=str(e))

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        success = 200 <= response.status_code < 300
        error = None
        if not success:
            error = body.get('error') or f"HTTP {response.status_code}"

        return FacilityResult(
            facility_id=facility_id,
            success=success,
            event_count=body.get('eventCount'),
            http_status=response.status_code,
            error=error
        )
