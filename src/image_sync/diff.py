"""Tag set difference between source and destination."""
from __future__ import annotations

from typing import Iterable, List

__all__ = ["missing_tags"]


def missing_tags(source: Iterable[str], destination: Iterable[str]) -> List[str]:
    """
    Return tags present in source but absent from destination.

    Source order is preserved and duplicates keep their first occurrence.
    Pure and total: never raises, never performs I/O.

    Examples:
        >>> missing_tags(["v3", "v2", "v1"], ["v2"])
        ['v3', 'v1']
        >>> missing_tags(["v1", "v1"], [])
        ['v1']
    """
    seen = set(destination)
    result: List[str] = []
    for tag in source:
        if tag in seen:
            continue
        seen.add(tag)
        result.append(tag)
    return result
