"""Conversion of local wall-clock times into absolute UTC instants.

Every conversion takes the civil timezone explicitly. Nothing here reads the
host process timezone, so results are identical on a laptop and in Lambda.
"""
import re
from datetime import date, datetime, timedelta, timezone, tzinfo
from functools import lru_cache
from typing import Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from processor.exceptions import InvalidTimeFormat, UnknownTimeZone
from processor.models import WallClock

DEFAULT_TIMEZONE = 'America/Denver'

# Hours below this are afternoon sessions on sources that omit the meridiem
AMBIGUOUS_PM_CUTOFF = 7

CLOCK_PATTERN = re.compile(
    r'^\s*(?P<hour>\d{1,2})'
    r'(?::(?P<minute>\d{2}))?'
    r'(?::(?P<second>\d{2}))?'
    r'\s*(?:(?P<meridiem>[ap])\.?\s*m\.?)?\s*$',
    re.IGNORECASE
)

LOCAL_DATETIME_PATTERN = re.compile(
    r'^\s*(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})'
    r'(?:[T ](?P<hour>\d{2}):(?P<minute>\d{2})(?::(?P<second>\d{2})(?:\.\d+)?)?)?'
    r'\s*(?P<zone>Z|[+-]\d{2}:?\d{2})?\s*$',
    re.IGNORECASE
)

DateLike = Union[date, WallClock]


# Outlook and Exchange feeds name zones the Windows way
WINDOWS_ZONES = {
    'mountain standard time': 'America/Denver',
    'us mountain standard time': 'America/Phoenix',
    'central standard time': 'America/Chicago',
    'eastern standard time': 'America/New_York',
    'pacific standard time': 'America/Los_Angeles',
    'alaskan standard time': 'America/Anchorage',
    'hawaiian standard time': 'Pacific/Honolulu',
}


@lru_cache(maxsize=None)
def get_zone(name: str) -> tzinfo:
    """
    Resolve a zone name to a tzinfo.

    'UTC' and 'Z' map to the fixed UTC zone; Windows names such as
    "Mountain Standard Time" map to their IANA equivalent.

    Raises:
        UnknownTimeZone: If the name resolves to no zone
    """
    key = name.strip()
    if key.upper() in ('UTC', 'Z', 'ETC/UTC'):
        return timezone.utc
    key = WINDOWS_ZONES.get(key.lower(), key)
    try:
        return ZoneInfo(key)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        raise UnknownTimeZone(name)


def _as_zone(zone: Union[str, tzinfo]) -> tzinfo:
    return get_zone(zone) if isinstance(zone, str) else zone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_clock(text: str, ambiguous_meridiem: bool = False) -> Tuple[int, int]:
    """
    Parse a clock string into (hour, minute) on a 24-hour scale.

    Accepts 12-hour forms with an optional meridiem ("6:00 AM", "6:00pm",
    "6 pm", "6:00 P.M.") and 24-hour forms ("18:00", "18:00:00").

    Args:
        text: Clock string as it appears in the source
        ambiguous_meridiem: Treat a marker-less hour below 7 as PM

    Returns:
        Tuple of (hour, minute)

    Raises:
        InvalidTimeFormat: If the string is not a recognizable time
    """
    if text is None:
        raise InvalidTimeFormat('')

    match = CLOCK_PATTERN.match(text)
    if not match:
        raise InvalidTimeFormat(text)

    hour = int(match.group('hour'))
    minute = int(match.group('minute') or 0)
    meridiem = match.group('meridiem')

    if minute > 59:
        raise InvalidTimeFormat(text)

    if meridiem:
        if not 1 <= hour <= 12:
            raise InvalidTimeFormat(text)
        if meridiem.lower() == 'p' and hour != 12:
            hour += 12
        elif meridiem.lower() == 'a' and hour == 12:
            hour = 0
        return hour, minute

    # Without a marker a bare "6" is too ambiguous to accept
    if match.group('minute') is None or hour > 23:
        raise InvalidTimeFormat(text)

    if ambiguous_meridiem and 1 <= hour < AMBIGUOUS_PM_CUTOFF:
        hour += 12

    return hour, minute


def to_utc(wall: WallClock, zone: Union[str, tzinfo]) -> datetime:
    """
    Attach a civil zone to a wall-clock time and convert it to UTC.

    Nonexistent local times (spring-forward gap) take the offset in force
    before the transition; repeated times (fall-back) take the first
    occurrence.

    Args:
        wall: Local wall-clock time
        zone: IANA zone name or tzinfo

    Returns:
        Timezone-aware datetime in UTC
    """
    local = wall.to_naive().replace(tzinfo=_as_zone(zone), fold=0)
    return local.astimezone(timezone.utc)


def utc_offset(when: DateLike, zone: Union[str, tzinfo]) -> timedelta:
    """Offset from UTC in force in ``zone`` at a local wall-clock time (or local noon of a date)."""
    if isinstance(when, WallClock):
        naive = when.to_naive()
    else:
        naive = datetime(when.year, when.month, when.day, 12, 0)
    return naive.replace(tzinfo=_as_zone(zone), fold=0).utcoffset()


def normalize(
    local_date: DateLike,
    local_time: str,
    reference_timezone: str = DEFAULT_TIMEZONE,
    ambiguous_meridiem: bool = False
) -> datetime:
    """
    Convert a local date and clock string into a UTC instant.

    Args:
        local_date: Civil date (date or WallClock; only the date part is used)
        local_time: Clock string such as "6:00 AM"
        reference_timezone: IANA zone the source publishes times in
        ambiguous_meridiem: Apply the bare-hour PM convention

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        InvalidTimeFormat: If local_time cannot be parsed
    """
    hour, minute = parse_clock(local_time, ambiguous_meridiem=ambiguous_meridiem)
    wall = WallClock(local_date.year, local_date.month, local_date.day, hour, minute)
    return to_utc(wall, reference_timezone)


def parse_local_datetime(text: str) -> Tuple[WallClock, Optional[str]]:
    """
    Parse an ISO-like local timestamp.

    When the string carries "Z" or a numeric offset, the wall clock is
    returned in UTC and the explicit zone is reported as 'UTC'.

    Args:
        text: e.g. "2025-07-15T05:30:00", "2025-07-15 05:30", "2025-06-01T17:00:00Z"

    Returns:
        Tuple of (WallClock, explicit zone name or None)

    Raises:
        InvalidTimeFormat: If the string is not an ISO-like timestamp
    """
    match = LOCAL_DATETIME_PATTERN.match(text or '')
    if not match:
        raise InvalidTimeFormat(text or '')

    try:
        naive = datetime(
            int(match.group('year')),
            int(match.group('month')),
            int(match.group('day')),
            int(match.group('hour') or 0),
            int(match.group('minute') or 0)
        )
    except ValueError:
        raise InvalidTimeFormat(text)

    zone_text = match.group('zone')
    if not zone_text:
        return WallClock.from_datetime(naive), None

    if zone_text.upper() == 'Z':
        offset = timedelta(0)
    else:
        sign = -1 if zone_text[0] == '-' else 1
        digits = zone_text[1:].replace(':', '')
        offset = sign * timedelta(hours=int(digits[:2]), minutes=int(digits[2:]))

    in_utc = naive - offset
    return WallClock.from_datetime(in_utc), 'UTC'


def local_today(zone: Union[str, tzinfo], now: Optional[datetime] = None) -> date:
    """Civil date in ``zone`` at ``now`` (defaults to the current instant)."""
    now = now or utc_now()
    return now.astimezone(_as_zone(zone)).date()
