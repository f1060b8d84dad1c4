"""
Description filters for candidate pools.
"""

from typing import Iterable, List, Optional, Sequence, TypeVar

from rapidfuzz import fuzz

T = TypeVar("T")


def normalize(text: str) -> str:
    return " ".join((text or "").lower().split())


def matches_search(
    description: str,
    term: Optional[str],
    threshold: float = 80.0,
) -> bool:
    """
    Case-insensitive substring match, falling back to a fuzzy partial match
    so a typo in the search term ("aluguell") still finds "PIX ALUGUEL SALAO".
    """
    if not term:
        return True
    haystack = normalize(description)
    needle = normalize(term)
    if needle in haystack:
        return True
    return fuzz.partial_ratio(needle, haystack) >= threshold


def has_marker(description: str, markers: Iterable[str]) -> bool:
    upper = (description or "").upper()
    return any(marker.upper() in upper for marker in markers)


def filter_by_description(
    items: Sequence[T],
    term: Optional[str] = None,
    excluded_markers: Iterable[str] = (),
    threshold: float = 80.0,
) -> List[T]:
    """Keep items whose description matches the term and carries no excluded marker."""
    markers = list(excluded_markers)
    return [
        item for item in items
        if not has_marker(item.description, markers)
        and matches_search(item.description, term, threshold)
    ]
