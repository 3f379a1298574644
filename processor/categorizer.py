"""Keyword-based event categorization."""
import re
from typing import Callable, List, Optional, Tuple

from processor.models import Category

Predicate = Callable[[str], bool]


def _any_of(*keywords: str) -> Predicate:
    return lambda text: any(keyword in text for keyword in keywords)


def _all_of(*keywords: str) -> Predicate:
    return lambda text: all(keyword in text for keyword in keywords)


def _word(pattern: str) -> Predicate:
    compiled = re.compile(rf'\b{pattern}\b')
    return lambda text: bool(compiled.search(text))


def _either(*predicates: Predicate) -> Predicate:
    return lambda text: any(predicate(text) for predicate in predicates)


# First match wins. Closures come before activities so "Closed - Public Skate"
# is not advertised as a session.
RULES: List[Tuple[Predicate, Category]] = [
    (_any_of('closed', 'holiday', 'memorial'), Category.SPECIAL_EVENT),
    (_any_of('public skate', 'open skate'), Category.PUBLIC_SKATE),
    (_either(_all_of('stick', 'puck'), _any_of('take a shot')), Category.STICK_AND_PUCK),
    (_any_of('drop', 'pickup'), Category.DROP_IN_HOCKEY),
    (_either(_any_of('learn', 'lesson'), _word('lts')), Category.LEARN_TO_SKATE),
    (_any_of('freestyle', 'figure'), Category.FIGURE_SKATING),
    (_any_of('practice', 'training'), Category.HOCKEY_PRACTICE),
    (_any_of('league', 'game'), Category.HOCKEY_LEAGUE),
    (_any_of('broomball', 'party'), Category.SPECIAL_EVENT),
]


def categorize(title: Optional[str]) -> Category:
    """
    Map an event title to a category.

    Args:
        title: Event title (any case; None is treated as empty)

    Returns:
        The category of the first matching rule, or Category.OTHER
    """
    text = (title or '').lower()
    for matches, category in RULES:
        if matches(text):
            return category
    return Category.OTHER


def categorize_with_hint(hint: Optional[str], title: Optional[str]) -> Category:
    """Categorize a source-provided type label, falling back to the title."""
    if hint:
        category = categorize(hint)
        if category is not Category.OTHER:
            return category
    return categorize(title)
