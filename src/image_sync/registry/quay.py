"""
Quay registry client.

Lists tags through Quay's tag API, which pages by page number and reports
whether more pages follow via has_additional. Tags come back most recently
modified first.
"""
from __future__ import annotations

import logging
from typing import Iterator, List, Optional

import httpx

from ..errors import ProtocolError
from .base import drain_pages
from .http import RegistrySession

__all__ = ["QuayRegistry", "QUAY_PAGE_SIZE"]

logger = logging.getLogger(__name__)

# Largest page Quay's tag API serves
QUAY_PAGE_SIZE = 100


class QuayRegistry:
    """Read access to a Quay registry via /api/v1."""

    def __init__(self, base_url: str, bearer_token: Optional[str] = None, *,
                 timeout_s: float = 10.0, retries: int = 0, page_size: int = QUAY_PAGE_SIZE,
                 transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize Quay client.

        Args:
            base_url: Quay URL, e.g. https://quay.io
            bearer_token: OAuth application token for private repositories
            timeout_s: Per-request timeout
            retries: Retries for existence checks (tag pages are never retried)
            page_size: Tags requested per page
            transport: Custom httpx transport for tests
        """
        self._session = RegistrySession(
            base_url, bearer_token=bearer_token, timeout_s=timeout_s,
            retries=retries, transport=transport,
        )
        self.page_size = page_size
        logger.debug(f"Quay client for {self._session.base_url}, page size {page_size}")

    @property
    def host(self) -> str:
        return self._session.host

    def iter_tag_pages(self, repo: str) -> Iterator[List[str]]:
        page = 1
        while True:
            what = f"tag page {page} of {self.host}/{repo}"
            payload, _ = self._session.get_json(
                f"/api/v1/repository/{repo}/tag/", what=what,
                params={"page": page, "limit": self.page_size, "onlyActiveTags": "true"},
            )
            tags = _tag_names(payload, what)
            logger.debug(f"Fetched {len(tags)} tag(s) from {what}")
            yield tags

            if not payload.get("has_additional"):
                return
            page += 1

    def list_tags(self, repo: str) -> List[str]:
        return drain_pages(self.iter_tag_pages(repo))

    def repository_exists(self, repo: str) -> bool:
        response = self._session.request(
            "GET", f"/api/v1/repository/{repo}",
            what=f"repository {self.host}/{repo}", retryable=True, allow_status=(404,),
        )
        return response.status_code != 404

    def close(self) -> None:
        self._session.close()


def _tag_names(payload, what: str) -> List[str]:
    """Extract tag names from a Quay tag page."""
    if not isinstance(payload, dict) or not isinstance(payload.get("tags"), list):
        raise ProtocolError(f"Unexpected response shape for {what}: missing 'tags' list")
    names = []
    for entry in payload["tags"]:
        name = entry.get("name") if isinstance(entry, dict) else None
        if not isinstance(name, str):
            raise ProtocolError(f"Tag entry without a name in {what}")
        names.append(name)
    return names
