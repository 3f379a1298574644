"""Adapter for public iCalendar (RFC 5545) feeds."""
import logging
import re
from datetime import timedelta
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

from bs4 import BeautifulSoup

from processor.exceptions import FetchError, InvalidTimeFormat, ParseError
from processor.models import RawEvent, WallClock
from processor.time_normalizer import get_zone, to_utc
from scraper.base import SourceAdapter

logger = logging.getLogger(__name__)

GOOGLE_ICAL_URL = 'https://calendar.google.com/calendar/ical/{calendar_id}/public/basic.ics'

DENYLIST = ('basketball', 'meeting', 'graduation', 'commencement')
ICE_TERMS = ('ice', 'hockey', 'skate')

ICS_DATETIME = re.compile(r'^(\d{4})(\d{2})(\d{2})(?:T(\d{2})(\d{2})(\d{2})?(Z)?)?$')
ICS_ESCAPE = re.compile(r'\\([\\;,nN])')

Property = Tuple[Dict[str, str], str]


def unfold(text: str) -> List[str]:
    """Join RFC 5545 continuation lines (leading space or tab) onto their parent."""
    unfolded: List[str] = []
    for line in text.replace('\r\n', '\n').replace('\r', '\n').split('\n'):
        if line.startswith((' ', '\t')) and unfolded:
            unfolded[-1] += line[1:]
        else:
            unfolded.append(line)
    return [line for line in unfolded if line.strip()]


def ics_unescape(value: str) -> str:
    return ICS_ESCAPE.sub(lambda match: '\n' if match.group(1) in 'nN' else match.group(1), value)


def parse_property(line: str) -> Tuple[str, Dict[str, str], str]:
    """
    Split a content line into (NAME, params, value).

    Example: 'DTSTART;TZID=America/Denver:20250601T110000'
        -> ('DTSTART', {'TZID': 'America/Denver'}, '20250601T110000')
    """
    head, _, value = line.partition(':')
    name, *raw_params = head.split(';')
    params = {}
    for raw in raw_params:
        key, _, param_value = raw.partition('=')
        params[key.upper()] = param_value.strip('"')
    return name.upper(), params, value


def parse_vevents(text: str) -> List[Dict[str, Property]]:
    """
    Extract VEVENT property maps from calendar text, skipping VTIMEZONE blocks.

    Raises:
        ParseError: If the text is not a VCALENDAR
    """
    if 'BEGIN:VCALENDAR' not in text:
        raise ParseError('Feed is not an iCalendar document')

    events = []
    current: Optional[Dict[str, Property]] = None
    in_timezone = False

    for line in unfold(text):
        name, params, value = parse_property(line)
        if name == 'BEGIN' and value.upper() == 'VTIMEZONE':
            in_timezone = True
        elif name == 'END' and value.upper() == 'VTIMEZONE':
            in_timezone = False
        elif in_timezone:
            continue
        elif name == 'BEGIN' and value.upper() == 'VEVENT':
            current = {}
        elif name == 'END' and value.upper() == 'VEVENT':
            if current is not None:
                events.append(current)
            current = None
        elif current is not None and name not in current:
            current[name] = (params, value)

    return events


def parse_ics_datetime(params: Dict[str, str], value: str) -> Tuple[WallClock, Optional[str], bool]:
    """
    Parse a DTSTART/DTEND value.

    Returns:
        Tuple of (wall clock, explicit zone or None, all-day flag)

    Raises:
        InvalidTimeFormat: If the value is not a DATE or DATE-TIME
    """
    match = ICS_DATETIME.match(value.strip())
    if not match:
        raise InvalidTimeFormat(value)

    year, month, day, hour, minute, _, utc_marker = match.groups()
    all_day = hour is None or params.get('VALUE', '').upper() == 'DATE'
    wall = WallClock(int(year), int(month), int(day), int(hour or 0), int(minute or 0))

    if utc_marker:
        return wall, 'UTC', all_day
    return wall, params.get('TZID') or None, all_day


def is_denied(title: str) -> bool:
    lowered = title.lower()
    if any(term in lowered for term in DENYLIST):
        return True
    return 'conference' in lowered and not any(term in lowered for term in ICE_TERMS)


def html_to_text(value: str) -> str:
    if '<' not in value:
        return value.strip()
    return BeautifulSoup(value, 'html.parser').get_text(' ', strip=True)


class ICalFeedAdapter(SourceAdapter):
    """Reads one or more iCal feeds and keeps upcoming ice events."""

    kind = 'ical'

    def feed_urls(self) -> List[str]:
        feeds = list(self.option('feeds', ()))
        for calendar_id in self.option('calendar_ids', ()):
            feeds.append(GOOGLE_ICAL_URL.format(calendar_id=quote(calendar_id, safe='')))
        return feeds or [self.facility.source_url]

    def _collect(self) -> List[RawEvent]:
        feeds = self.feed_urls()
        failures = []
        events = []

        for url in feeds:
            try:
                text = self.fetch_text(url)
                vevents = parse_vevents(text)
            except (FetchError, ParseError) as e:
                logger.warning(f"Skipping iCal feed {url}: {e}")
                failures.append(str(e))
                continue
            events.extend(self._parse_vevents(vevents))

        if len(failures) == len(feeds):
            raise FetchError(f"All {len(feeds)} iCal feeds failed: {'; '.join(failures)}")

        return events

    def _parse_vevents(self, vevents: List[Dict[str, Property]]) -> List[RawEvent]:
        now = self.clock()
        horizon = now + timedelta(days=int(self.option('window_days', 30)))
        events = []

        for vevent in vevents:
            try:
                event = self._parse_vevent(vevent)
                if event is None:
                    continue
                start = to_utc(event.start_local, event.timezone or self.reference_timezone)
            except (ParseError, ValueError) as e:
                logger.warning(f"Skipping malformed VEVENT: {e}")
                continue

            if start < now or start > horizon:
                continue
            events.append(event)

        return events

    def _parse_vevent(self, vevent: Dict[str, Property]) -> Optional[RawEvent]:
        if 'SUMMARY' not in vevent or 'DTSTART' not in vevent:
            return None

        title = ics_unescape(vevent['SUMMARY'][1]).strip()
        if not title or is_denied(title):
            logger.debug(f"Ignoring non-ice calendar entry {title!r}")
            return None

        start, zone, all_day = parse_ics_datetime(*vevent['DTSTART'])
        if 'DTEND' in vevent:
            end, end_zone, _ = parse_ics_datetime(*vevent['DTEND'])
            if end_zone != zone:
                # Bring DTEND into DTSTART's zone
                end_instant = to_utc(end, end_zone or self.reference_timezone)
                start_zone = zone or self.reference_timezone
                end = WallClock.from_datetime(end_instant.astimezone(get_zone(start_zone)))
        elif all_day:
            end = WallClock.from_date(start.date + timedelta(days=1))
        else:
            end = WallClock.from_datetime(start.to_naive() + timedelta(hours=1))

        description = None
        if 'DESCRIPTION' in vevent:
            description = html_to_text(ics_unescape(vevent['DESCRIPTION'][1])) or None

        uid = vevent.get('UID')
        return self.make_event(
            title,
            start,
            end,
            source_id=uid[1] if uid else None,
            description=description,
            timezone=zone
        )
