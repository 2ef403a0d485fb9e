"""
Azure Container Registry client.

Lists tags through the ACR data-plane API (/acr/v1), a cursor pager: each
response carries a Link header pointing at the next page, which the client
follows until the header disappears or the consumer stops asking. Access
tokens come from the registry's Bearer challenge, answered with the
refresh token obtained by the credential exchange.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterator, List, Optional

import httpx

from ..errors import ProtocolError
from .base import drain_pages
from .http import RegistrySession

if TYPE_CHECKING:
    from ..credentials import AuthContext

__all__ = ["AcrRegistry", "ACR_PAGE_SIZE"]

logger = logging.getLogger(__name__)

ACR_PAGE_SIZE = 100


class AcrRegistry:
    """Read access to an Azure Container Registry."""

    def __init__(self, base_url: str, auth: Optional["AuthContext"] = None, *,
                 timeout_s: float = 10.0, retries: int = 0, page_size: int = ACR_PAGE_SIZE,
                 transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize ACR client.

        Args:
            base_url: Login server URL, e.g. https://myregistry.azurecr.io
            auth: Refresh-token credentials answering Bearer challenges
            timeout_s: Per-request timeout
            retries: Retries for existence checks (tag pages are never retried)
            page_size: Tags requested per page
            transport: Custom httpx transport for tests
        """
        self._session = RegistrySession(
            base_url, auth=auth, timeout_s=timeout_s, retries=retries, transport=transport,
        )
        self.page_size = page_size
        logger.debug(f"ACR client for {self._session.base_url}, page size {page_size}")

    @property
    def host(self) -> str:
        return self._session.host

    def iter_tag_pages(self, repo: str) -> Iterator[List[str]]:
        scope = _metadata_scope(repo)
        next_url: Optional[str] = f"/acr/v1/{repo}/_tags"
        params: Optional[dict] = {"n": self.page_size, "orderby": "timedesc"}
        page = 1

        while next_url:
            what = f"tag page {page} of {self.host}/{repo}"
            payload, response = self._session.get_json(next_url, what=what, params=params, scope=scope)
            tags = _tag_names(payload, what)
            logger.debug(f"Fetched {len(tags)} tag(s) from {what}")
            yield tags

            # The next link already carries its query string
            next_url = response.links.get("next", {}).get("url")
            params = None
            page += 1

    def list_tags(self, repo: str) -> List[str]:
        return drain_pages(self.iter_tag_pages(repo))

    def repository_exists(self, repo: str) -> bool:
        response = self._session.request(
            "GET", f"/acr/v1/{repo}", what=f"repository {self.host}/{repo}",
            retryable=True, allow_status=(404,), scope=_metadata_scope(repo),
        )
        return response.status_code != 404

    def close(self) -> None:
        self._session.close()


def _metadata_scope(repo: str) -> str:
    return f"repository:{repo}:metadata_read"


def _tag_names(payload, what: str) -> List[str]:
    """Extract tag names from an ACR tag page."""
    if not isinstance(payload, dict):
        raise ProtocolError(f"Unexpected response shape for {what}: not a JSON object")
    # An empty repository omits the tags field entirely
    entries = payload.get("tags", [])
    if not isinstance(entries, list):
        raise ProtocolError(f"Unexpected response shape for {what}: 'tags' is not a list")
    names = []
    for entry in entries:
        name = entry.get("name") if isinstance(entry, dict) else None
        if not isinstance(name, str):
            raise ProtocolError(f"Tag entry without a name in {what}")
        names.append(name)
    return names
