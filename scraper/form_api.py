"""Adapter for booking systems answering a form POST with a JSON array."""
import logging
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional

from processor.exceptions import InvalidTimeFormat, ParseError
from processor.models import RawEvent, WallClock
from processor.time_normalizer import parse_local_datetime, utc_offset
from scraper.base import SourceAdapter

logger = logging.getLogger(__name__)

EXPLICIT_OFFSET = re.compile(r'[+-]\d{2}:?\d{2}$')


class FormApiAdapter(SourceAdapter):
    """
    Posts a fixed filter form and reads the sessions from the JSON response.

    The booking system reports facility-local times as if they were UTC, so
    each value is shifted by the reference zone's offset for its date.
    """

    kind = 'form_api'

    def build_form(self) -> Dict[str, str]:
        """Fixed form fields plus the date range around today."""
        today = self.today()
        date_format = self.option('date_format', '%m/%d/%Y')
        form = dict(self.option('form', {}))
        form['StartDate'] = (today - timedelta(days=int(self.option('days_before', 3)))).strftime(date_format)
        form['EndDate'] = (today + timedelta(days=int(self.option('days_after', 32)))).strftime(date_format)
        return form

    def _collect(self) -> List[RawEvent]:
        endpoint = self.option('endpoint', self.facility.source_url)
        result = self.gateway.fetch(
            endpoint,
            method='POST',
            data=self.build_form(),
            headers={'X-Requested-With': 'XMLHttpRequest'},
            expect_json=True
        )

        payload = result.json()
        if not isinstance(payload, list):
            raise ParseError(
                f"Expected a JSON array from {endpoint}, got {type(payload).__name__}"
            )

        events = []
        for item in payload:
            if not isinstance(item, dict):
                continue
            try:
                event = self._parse_item(item)
            except (InvalidTimeFormat, ValueError, TypeError) as e:
                logger.warning(f"Failed to parse session {item.get('id', '')}: {e}")
                continue
            if event:
                events.append(event)

        return events

    def _parse_item(self, item: Dict[str, Any]) -> Optional[RawEvent]:
        title = item.get('title')
        if not title or not item.get('start') or not item.get('end'):
            return None

        resource = item.get('resourceName') or ''
        details = item.get('description') or ''
        description = ' - '.join(part for part in (resource, details) if part) or None

        rink_map = self.option('rink_map') or {}
        fields = {
            'source_id': str(item['id']) if item.get('id') is not None else None,
            'description': description,
            'timezone': 'UTC',
        }
        if resource in rink_map:
            fields['rink_id'] = rink_map[resource]

        return self.make_event(
            str(title),
            self._to_utc_wall(str(item['start'])),
            self._to_utc_wall(str(item['end'])),
            **fields
        )

    def _to_utc_wall(self, value: str) -> WallClock:
        """Shift a source timestamp into a UTC wall clock."""
        wall, zone = parse_local_datetime(value)
        if zone is not None and EXPLICIT_OFFSET.search(value.strip()):
            return wall

        offset = utc_offset(wall, self.reference_timezone)
        return WallClock.from_datetime(wall.to_naive() - offset)
