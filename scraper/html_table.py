"""Adapter for schedules rendered as HTML tables or calendar grids."""
import logging
from datetime import date
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup, Tag

from processor.exceptions import InvalidTimeFormat
from processor.models import RawEvent, WallClock
from processor.time_normalizer import parse_clock
from scraper.base import SourceAdapter
from scraper.patterns import find_date, find_time_range, pick_title

logger = logging.getLogger(__name__)

DEFAULT_SELECTOR = (
    '.calendar-event, .event, .session, .schedule-item, .fc-event, '
    '[data-event], [data-time], [data-date], tr[data-date], tr, li'
)

DATE_HEADING_TAGS = ('h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'th', 'td', 'caption', 'dt')


class HtmlTableAdapter(SourceAdapter):
    """Extracts time ranges from DOM elements matched by a CSS selector."""

    kind = 'html_table'

    def _collect(self) -> List[RawEvent]:
        soup = BeautifulSoup(self.fetch_text(), 'html.parser')
        return self.parse_elements(soup, self.option('selector', DEFAULT_SELECTOR))

    def parse_elements(self, soup: BeautifulSoup, selector: str) -> List[RawEvent]:
        """
        Parse every innermost element matching selector.

        Args:
            soup: Parsed page
            selector: CSS selector for candidate containers

        Returns:
            List of RawEvent objects
        """
        candidates = soup.select(selector)
        candidate_ids = {id(element) for element in candidates}
        innermost = [
            element for element in candidates
            if not any(id(child) in candidate_ids for child in element.find_all(True))
        ]

        events = []
        for element in innermost:
            try:
                events.extend(self._parse_element(element))
            except (InvalidTimeFormat, ValueError) as e:
                logger.warning(f"Failed to parse schedule element: {e}")
                continue

        return events

    def _parse_element(self, element: Tag) -> List[RawEvent]:
        lines = [line for line in element.get_text('\n', strip=True).split('\n') if line]
        sessions = split_sessions(lines)
        if not sessions:
            return []

        day = self._find_date(element)
        if day is None:
            logger.warning(f"No date found for schedule element: {' '.join(lines)[:80]!r}")
            return []

        events = []
        for (start_text, end_text), context in sessions:
            title = pick_title(context)
            if not title:
                logger.debug(f"No title near {start_text}-{end_text} on {day}")
                continue
            try:
                start = self._wall_clock(day, start_text)
                end = self._wall_clock(day, end_text)
            except InvalidTimeFormat as e:
                logger.warning(f"Skipping session '{title}' on {day}: {e}")
                continue
            events.append(self.make_event(title, start, end))
        return events

    def _wall_clock(self, day: date, clock_text: str) -> WallClock:
        hour, minute = parse_clock(
            clock_text,
            ambiguous_meridiem=bool(self.option('ambiguous_meridiem', False))
        )
        return WallClock.from_date(day, hour, minute)

    def _find_date(self, element: Tag) -> Optional[date]:
        default_year = self.today().year

        for node in [element] + list(element.parents):
            value = node.get('data-date') if isinstance(node, Tag) else None
            if value:
                found = find_date(value, default_year)
                if found:
                    return found

        found = find_date(element.get_text(' ', strip=True), default_year)
        if found:
            return found

        heading = element.find_previous(
            lambda tag: tag.name in DATE_HEADING_TAGS
            and find_date(tag.get_text(' ', strip=True), default_year) is not None
        )
        if heading is not None:
            return find_date(heading.get_text(' ', strip=True), default_year)
        return None


def split_sessions(lines: List[str]) -> List[Tuple[Tuple[str, str], List[str]]]:
    """
    Group text lines around each time range they contain.

    Each session's context is its own line plus the lines up to the next time
    range; the first session also sees the lines before it.

    Returns:
        List of ((start, end), context lines)
    """
    positions = [
        (index, time_range) for index, line in enumerate(lines)
        for time_range in [find_time_range(line)] if time_range
    ]
    sessions = []
    for order, (index, time_range) in enumerate(positions):
        stop = positions[order + 1][0] if order + 1 < len(positions) else len(lines)
        context = [lines[index]] + lines[index + 1:stop]
        if order == 0:
            context += lines[:index]
        sessions.append((time_range, context))
    return sessions
