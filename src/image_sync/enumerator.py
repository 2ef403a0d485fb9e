"""
Bounded tag enumeration.

Turns a lazy, possibly multi-page tag stream into a capped, policy-filtered
tag list. Every registry client feeds its pages through here so both sides of
a sync apply exactly the same exclusion and cap rules.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .errors import SyncCancelled
from .models import LATEST_TAG

__all__ = ["TagPolicy", "enumerate_tags"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TagPolicy:
    """
    Exclusion and cap rules applied to every tag listing.

    The effective limit is max_tags - 1. A listing stops once that many
    non-excluded tags have been collected, so max_tags=10 yields at most 9
    """
    max_tags: int = 10
    skip_latest: bool = True
    sentinel: str = LATEST_TAG

    @property
    def limit(self) -> int:
        return self.max_tags - 1

    def excludes(self, tag: str) -> bool:
        return self.skip_latest and tag == self.sentinel


def enumerate_tags(pages: Iterable[List[str]], policy: TagPolicy,
                   cancel: Optional[threading.Event] = None) -> List[str]:
    """
    Collect tags from pages until the policy limit is reached.

    Pages are pulled one at a time, so a page is only requested from the
    registry when the tags gathered so far are not enough. Pages are never
    re-fetched; a failing page fetch propagates its error unchanged.

    Args:
        pages: Lazy iterable of tag pages in provider order
        policy: Exclusion and cap rules
        cancel: Optional event; checked before each page is requested

    Returns:
        At most policy.limit tags, sentinel excluded when skip_latest is set

    Raises:
        SyncCancelled: If cancel is set before the next page is requested
    """
    limit = policy.limit
    result: List[str] = []
    if limit <= 0:
        return result

    page_iter = iter(pages)
    page_count = 0
    while True:
        if cancel is not None and cancel.is_set():
            raise SyncCancelled("Tag enumeration cancelled")

        page = next(page_iter, None)
        if page is None:
            break
        page_count += 1

        for tag in page:
            if policy.excludes(tag):
                continue
            result.append(tag)
            if len(result) == limit:
                logger.debug(f"Tag limit {limit} reached after {page_count} page(s)")
                return result

    logger.debug(f"Enumerated {len(result)} tag(s) from {page_count} page(s)")
    return result
