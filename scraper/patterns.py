"""Text helpers shared by the HTML-based adapters."""
import re
from datetime import date
from typing import Iterable, List, Optional, Tuple

MERIDIEM = r'[ap]\.?\s*m\.?'

TIME_RANGE = re.compile(
    rf'(?P<start>\d{{1,2}}:\d{{2}}\s*(?:{MERIDIEM})?)'
    r'\s*[-–—]\s*'
    rf'(?P<end>\d{{1,2}}:\d{{2}}(?:\s*{MERIDIEM})?)',
    re.IGNORECASE
)

MERIDIEM_SUFFIX = re.compile(rf'({MERIDIEM})\s*$', re.IGNORECASE)

ISO_DATE = re.compile(r'\b(\d{4})-(\d{2})-(\d{2})\b')
US_DATE = re.compile(r'\b(\d{1,2})/(\d{1,2})/(\d{4})\b')
MONTH_DATE = re.compile(
    r'\b(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+'
    r'(\d{1,2})(?:st|nd|rd|th)?\b(?:,?\s*(\d{4}))?',
    re.IGNORECASE
)
MONTHS = ['jan', 'feb', 'mar', 'apr', 'may', 'jun', 'jul', 'aug', 'sep', 'oct', 'nov', 'dec']

BOILERPLATE_KEYWORDS = (
    'copyright', '©', 'privacy', 'policy', 'login', 'log in', 'sign in',
    'register', 'contact', 'phone', 'email', 'cookie', 'skip to', 'menu',
)

ICE_KEYWORDS = (
    'skate', 'skating', 'hockey', 'puck', 'ice', 'freestyle', 'figure',
    'lesson', 'league', 'broomball', 'session', 'drop', 'closed', 'open',
)

MIN_TITLE_LENGTH = 3
MAX_TITLE_LENGTH = 100


def find_time_range(text: str) -> Optional[Tuple[str, str]]:
    """
    Find the first "H:MM[am] - H:MM[pm]" range in text.

    A start without a meridiem takes the end's meridiem when it has one.

    Returns:
        Tuple of (start, end) clock strings, or None
    """
    match = TIME_RANGE.search(text or '')
    if not match:
        return None
    start = match.group('start').strip()
    end = match.group('end').strip()
    end_meridiem = MERIDIEM_SUFFIX.search(end)
    if end_meridiem and not MERIDIEM_SUFFIX.search(start):
        start = f"{start} {end_meridiem.group(1)}"
    return start, end


def strip_time_range(text: str) -> str:
    return ' '.join(TIME_RANGE.sub(' ', text or '').split())


def find_date(text: str, default_year: Optional[int] = None) -> Optional[date]:
    """
    Find a calendar date in free text.

    Recognizes "2025-06-01", "6/1/2025" and "June 1, 2025" ("June 1" when a
    default year is given).
    """
    text = text or ''

    for pattern, order in ((ISO_DATE, 'ymd'), (US_DATE, 'mdy')):
        for match in pattern.finditer(text):
            parts = dict(zip(order, (int(group) for group in match.groups())))
            try:
                return date(parts['y'], parts['m'], parts['d'])
            except ValueError:
                continue

    for match in MONTH_DATE.finditer(text):
        year = int(match.group(3)) if match.group(3) else default_year
        if year is None:
            continue
        month = MONTHS.index(match.group(1).lower()[:3]) + 1
        try:
            return date(year, month, int(match.group(2)))
        except ValueError:
            continue

    return None


def clean_title(title: str) -> str:
    """Strip calendar noise such as day-number prefixes and registration links."""
    title = ' '.join((title or '').split())
    title = re.sub(r'^\d{1,2}([A-Za-z])', r'\1', title)
    title = re.sub(r'^-\s*', '', title)
    title = re.sub(r'\b(?:register(?:\s+(?:now|here))?|click\s+here)\b', '', title, flags=re.IGNORECASE)
    title = re.sub(r'^\W+', '', title)
    return ' '.join(title.split())


def is_boilerplate(line: str) -> bool:
    lowered = line.lower()
    return any(keyword in lowered for keyword in BOILERPLATE_KEYWORDS)


def has_ice_keyword(line: str) -> bool:
    lowered = line.lower()
    return any(keyword in lowered for keyword in ICE_KEYWORDS)


def title_candidates(lines: Iterable[str]) -> List[str]:
    candidates = []
    for line in lines:
        text = clean_title(strip_time_range(line))
        if not MIN_TITLE_LENGTH <= len(text) <= MAX_TITLE_LENGTH:
            continue
        if is_boilerplate(text):
            continue
        # Short lines carrying a date are day headers, not titles
        if len(text) <= 30 and find_date(text, default_year=2000):
            continue
        if not re.search(r'[A-Za-z]', text):
            continue
        candidates.append(text)
    return candidates


def pick_title(lines: Iterable[str]) -> Optional[str]:
    """
    Choose the most plausible event title among nearby text lines.

    Lines mentioning rink activities win over other text; navigation and
    boilerplate lines are never chosen.
    """
    candidates = title_candidates(lines)
    for candidate in candidates:
        if has_ice_keyword(candidate):
            return candidate
    return candidates[0] if candidates else None
