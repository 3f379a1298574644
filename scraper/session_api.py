"""Adapter for calendar APIs that hand out a CSRF token with the calendar page."""
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from processor.exceptions import FetchError, InvalidTimeFormat, ParseError
from processor.models import RawEvent
from processor.time_normalizer import parse_local_datetime
from scraper.base import SourceAdapter

logger = logging.getLogger(__name__)

CSRF_TOKEN_PATTERN = re.compile(r'window\.__csrfToken\s*=\s*"([^"]+)"')


def find_csrf_token(html: str) -> Optional[str]:
    match = CSRF_TOKEN_PATTERN.search(html or '')
    return match.group(1) if match else None


class SessionApiAdapter(SourceAdapter):
    """
    Opens a session on the calendar page, then POSTs one JSON query per calendar.

    The page sets the session cookies, which stay on the gateway's
    requests.Session, and embeds the CSRF token echoed back on every query.
    Times come back as facility-local "YYYY-MM-DD HH:MM:SS" strings.

    Options:
        calendar_page: Page that opens the session (defaults to source_url)
        api_url: Multi-center events endpoint
        origin: Value of the Origin header
        center_ids: Centers included in every query
        calendars: Sequence of (calendar id, calendar name) pairs
        rink_keywords: Facility-name keyword to rink id, first match wins
    """

    kind = 'session_api'

    def open_session(self) -> Optional[str]:
        """Load the calendar page and return its CSRF token, if any."""
        page = self.option('calendar_page', self.facility.source_url)
        token = find_csrf_token(self.fetch_text(page))
        if not token:
            logger.warning(f"No CSRF token found on {page}")
        return token

    def build_query(self, calendar_id: int) -> Dict[str, Any]:
        return {
            'calendar_id': calendar_id,
            'center_ids': list(self.option('center_ids', ())),
            'display_all': 0,
            'search_start_time': '',
            'search_end_time': '',
            'facility_ids': [],
            'activity_category_ids': [],
            'activity_sub_category_ids': [],
            'activity_ids': [],
            'activity_min_age': None,
            'activity_max_age': None,
            'event_type_ids': [],
        }

    def _collect(self) -> List[RawEvent]:
        calendars: Tuple[Tuple[int, str], ...] = tuple(self.option('calendars', ()))
        if not calendars:
            raise ParseError(f"No calendars configured for {self.facility.facility_id}")

        token = self.open_session()
        failures = []
        events = []

        for calendar_id, calendar_name in calendars:
            try:
                payload = self._query(calendar_id, token)
            except (FetchError, ParseError) as e:
                logger.warning(f"Skipping calendar {calendar_name} ({calendar_id}): {e}")
                failures.append(str(e))
                continue
            events.extend(self._parse_calendar(payload, calendar_name))

        if len(failures) == len(calendars):
            raise FetchError(f"All {len(calendars)} calendars failed: {'; '.join(failures)}")

        return events

    def _query(self, calendar_id: int, token: Optional[str]) -> Dict[str, Any]:
        page = self.option('calendar_page', self.facility.source_url)
        headers = {
            'Content-Type': 'application/json;charset=utf-8',
            'Accept': 'application/json, text/plain, */*',
            'X-Requested-With': 'XMLHttpRequest',
            'Referer': f"{page}?defaultCalendarId={calendar_id}",
        }
        if self.option('origin'):
            headers['Origin'] = self.option('origin')
        if token:
            headers['X-CSRF-Token'] = token

        result = self.gateway.fetch(
            self.option('api_url'),
            method='POST',
            json_body=self.build_query(calendar_id),
            headers=headers,
            expect_json=True
        )
        payload = result.json()
        if not isinstance(payload, dict):
            raise ParseError(f"Expected a JSON object for calendar {calendar_id}")
        return payload

    def _parse_calendar(self, payload: Dict[str, Any], calendar_name: str) -> List[RawEvent]:
        body = payload.get('body') or {}
        events = []
        for center in body.get('center_events') or ():
            for item in center.get('events') or ():
                if not isinstance(item, dict):
                    continue
                try:
                    event = self._parse_item(item, calendar_name)
                except (InvalidTimeFormat, ValueError, TypeError) as e:
                    logger.warning(f"Failed to parse event {item.get('event_item_id', '')}: {e}")
                    continue
                if event:
                    events.append(event)
        return events

    def _parse_item(self, item: Dict[str, Any], calendar_name: str) -> Optional[RawEvent]:
        title = item.get('title')
        if not title or not item.get('start_time') or not item.get('end_time'):
            return None

        start, zone = parse_local_datetime(str(item['start_time']))
        end, _ = parse_local_datetime(str(item['end_time']))
        rink_id = self._rink_for(item.get('facilities') or ())
        rink_name = self.facility.rink_name(rink_id)

        return self.make_event(
            str(title),
            start,
            end,
            rink_id=rink_id,
            source_id=str(item['event_item_id']) if item.get('event_item_id') is not None else None,
            description=item.get('description') or f"{calendar_name} at {rink_name}",
            category_hint=f"{title} {calendar_name}",
            timezone=zone
        )

    def _rink_for(self, facilities: Iterable[Dict[str, Any]]) -> str:
        names = [str(facility.get('facility_name') or '') for facility in facilities if isinstance(facility, dict)]
        if names:
            for keyword, rink_id in (self.option('rink_keywords') or {}).items():
                if keyword.lower() in names[0].lower():
                    return rink_id
        return self.facility.primary_rink_id
