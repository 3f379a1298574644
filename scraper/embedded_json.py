"""Adapter for schedules embedded as JSON literals in inline scripts."""
import json
import logging
import re
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup

from processor.exceptions import InvalidTimeFormat, ParseError
from processor.models import RawEvent, WallClock
from processor.time_normalizer import parse_clock, parse_local_datetime
from scraper.html_table import DEFAULT_SELECTOR, HtmlTableAdapter
from scraper.patterns import (
    find_date, find_time_range, has_ice_keyword, is_boilerplate, pick_title,
)

logger = logging.getLogger(__name__)

DEFAULT_ARRAY_KEYS = ('_onlineScheduleList', 'events', 'schedule', 'sessions')

TITLE_KEYS = ('AccountName', 'title', 'name', 'EventName', 'summary', 'EventTypeName')
START_KEYS = ('EventStartTime', 'start', 'startTime', 'start_time', 'TimeIn', 'StartDate')
END_KEYS = ('EventEndTime', 'end', 'endTime', 'end_time', 'TimeOut', 'EndDate')
ID_KEYS = ('EventId', 'id', 'eventId', 'uid')
DESCRIPTION_KEYS = ('Description', 'description', 'details')
TYPE_KEYS = ('EventTypeName', 'type', 'category')

FALLBACK_LIMIT = 50
DEFAULT_DURATION = timedelta(minutes=90)

UNQUOTED_KEY = re.compile(r'([{,]\s*)([A-Za-z_$][\w$]*)\s*:')
TRAILING_COMMA = re.compile(r',\s*([}\]])')


def find_literal(text: str, key: str) -> Optional[str]:
    """
    Return the balanced [...] or {...} literal assigned to ``key`` in script text.

    Matches both ``key = [...]`` and ``key: {...}`` forms; string contents are
    skipped while counting brackets.
    """
    match = re.search(rf'(?<![\w$]){re.escape(key)}["\']?\s*[=:]\s*(?=[\[{{])', text)
    if not match:
        return None

    start = match.end()
    depth = 0
    quote = None
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if quote:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char in ('"', "'"):
            quote = char
        elif char in '[{':
            depth += 1
        elif char in ']}':
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def load_literal(literal: str) -> Any:
    """Parse a JavaScript literal that is JSON or close to it."""
    try:
        return json.loads(literal)
    except ValueError:
        pass

    relaxed = UNQUOTED_KEY.sub(r'\1"\2":', literal)
    relaxed = TRAILING_COMMA.sub(r'\1', relaxed)
    try:
        return json.loads(relaxed)
    except ValueError as e:
        raise ParseError(f"Embedded literal is not valid JSON: {e}")


def _first(item: Dict[str, Any], keys: Sequence[str]) -> Optional[Any]:
    for key in keys:
        value = item.get(key)
        if value not in (None, ''):
            return value
    return None


class EmbeddedJsonAdapter(HtmlTableAdapter):
    """
    Reads schedule arrays that pages embed in inline <script> blocks.

    When no literal is found the adapter falls back to DOM extraction and then
    to free-text time ranges, each tier running only if the previous one
    produced nothing.
    """

    kind = 'embedded_json'

    def _collect(self) -> List[RawEvent]:
        soup = BeautifulSoup(self.fetch_text(), 'html.parser')

        found_literal, events = self.parse_scripts(soup)
        if found_literal:
            return events

        logger.info(f"No embedded schedule for {self.facility.facility_id}, trying DOM extraction")
        events = self.parse_elements(soup, self.option('selector', DEFAULT_SELECTOR))[:FALLBACK_LIMIT]
        if events:
            return events

        logger.info(f"No DOM events for {self.facility.facility_id}, trying free-text extraction")
        return self.parse_free_text(soup)[:FALLBACK_LIMIT]

    def parse_scripts(self, soup: BeautifulSoup) -> Tuple[bool, List[RawEvent]]:
        """
        Extract events from inline script literals.

        Returns:
            Tuple of (whether any literal was found, events parsed from it)
        """
        keys = self.option('array_keys', DEFAULT_ARRAY_KEYS)
        found = False
        events = []

        for script in soup.find_all('script'):
            text = script.string or script.get_text()
            if not text:
                continue
            for key in keys:
                literal = find_literal(text, key)
                if literal is None:
                    continue
                try:
                    payload = load_literal(literal)
                except ParseError as e:
                    logger.warning(f"Skipping '{key}' literal: {e}")
                    continue
                found = True
                events.extend(self._parse_payload(payload))

        return found, events

    def _parse_payload(self, payload: Any) -> List[RawEvent]:
        if isinstance(payload, list):
            return self._parse_items(payload, day=None)

        if isinstance(payload, dict):
            events = []
            for key, items in payload.items():
                day = find_date(str(key))
                if day is None or not isinstance(items, list):
                    logger.debug(f"Ignoring non-date key {key!r} in embedded schedule")
                    continue
                events.extend(self._parse_items(items, day=day))
            return events

        logger.warning(f"Embedded schedule has unexpected type {type(payload).__name__}")
        return []

    def _parse_items(self, items: Iterable[Any], day: Optional[date]) -> List[RawEvent]:
        rink_map = self.option('rink_map')
        events = []

        for item in items:
            if not isinstance(item, dict):
                continue

            rink_id = None
            if rink_map:
                rink_id = rink_map.get(str(item.get('FacilityId')))
                if rink_id is None:
                    logger.debug(f"Skipping item for unmapped facility {item.get('FacilityId')}")
                    continue

            try:
                event = self._parse_item(item, day, rink_id)
            except (InvalidTimeFormat, ValueError, TypeError) as e:
                logger.warning(f"Failed to parse embedded item {item.get('EventId', '')}: {e}")
                continue
            if event:
                events.append(event)

        return events

    def _parse_item(
        self,
        item: Dict[str, Any],
        day: Optional[date],
        rink_id: Optional[str]
    ) -> Optional[RawEvent]:
        title = _first(item, TITLE_KEYS)
        start_value = _first(item, START_KEYS)
        if not title or not start_value:
            return None

        title = str(title).strip()
        if item.get('Closed') is True and 'closed' not in title.lower():
            title = f"Closed: {title}"

        start = self._wall_clock_from(start_value, day)
        end_value = _first(item, END_KEYS)
        if end_value:
            end = self._wall_clock_from(end_value, day)
        else:
            end = WallClock.from_datetime(start.to_naive() + DEFAULT_DURATION)

        source_id = _first(item, ID_KEYS)
        fields = {
            'source_id': str(source_id) if source_id is not None else None,
            'description': _first(item, DESCRIPTION_KEYS),
            'category_hint': _first(item, TYPE_KEYS),
        }
        if rink_id:
            fields['rink_id'] = rink_id
        return self.make_event(title, start, end, **fields)

    def _wall_clock_from(self, value: Any, day: Optional[date]) -> WallClock:
        text = str(value).strip()
        if day is not None:
            hour, minute = parse_clock(
                text,
                ambiguous_meridiem=bool(self.option('ambiguous_meridiem', False))
            )
            return WallClock.from_date(day, hour, minute)
        # Finnly renders facility-local times; any offset suffix is not trusted
        wall, _ = parse_local_datetime(re.sub(r'(Z|[+-]\d{2}:?\d{2})$', '', text))
        return wall

    def parse_free_text(self, soup: BeautifulSoup) -> List[RawEvent]:
        """Last-resort scan of page text for time ranges near ice keywords."""
        for tag in soup(['script', 'style', 'noscript']):
            tag.decompose()

        lines = [line.strip() for line in soup.get_text('\n').split('\n') if line.strip()]
        default_year = self.today().year
        current_day = None
        events = []

        for index, line in enumerate(lines):
            if is_boilerplate(line):
                continue

            found_day = find_date(line, default_year)
            if found_day:
                current_day = found_day

            time_range = find_time_range(line)
            if not time_range or current_day is None:
                continue

            context = [line] + lines[max(0, index - 2):index] + lines[index + 1:index + 3]
            if not any(has_ice_keyword(text) for text in context):
                continue

            title = pick_title(context)
            if not title:
                continue

            try:
                events.append(self.make_event(
                    title,
                    self._wall_clock(current_day, time_range[0]),
                    self._wall_clock(current_day, time_range[1])
                ))
            except InvalidTimeFormat as e:
                logger.warning(f"Skipping free-text match {line[:60]!r}: {e}")
                continue

            if len(events) >= FALLBACK_LIMIT:
                break

        return events
