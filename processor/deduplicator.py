"""Removal of duplicate events within one facility's event set."""
import logging
from typing import Callable, Hashable, Iterable, List, Optional

from processor.models import NormalizedEvent

logger = logging.getLogger(__name__)

KeyFunc = Callable[[NormalizedEvent], Hashable]


def title_and_start(event: NormalizedEvent) -> Hashable:
    return (event.title, event.start_instant)


def event_id(event: NormalizedEvent) -> Hashable:
    return event.id


def dedupe(
    events: Iterable[NormalizedEvent],
    key: Optional[KeyFunc] = None
) -> List[NormalizedEvent]:
    """
    Drop events whose key was already seen, keeping the first occurrence.

    The result preserves input order, and running it twice yields the same list.

    Args:
        events: Events in source order
        key: Identity function; defaults to (title, start instant), case-sensitive

    Returns:
        List of unique events
    """
    key = key or title_and_start
    seen = set()
    unique = []

    for event in events:
        identity = key(event)
        if identity in seen:
            logger.debug(f"Dropping duplicate event '{event.title}' ({event.id})")
            continue
        seen.add(identity)
        unique.append(event)

    return unique
