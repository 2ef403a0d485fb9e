"""
Registry client protocol.

Defines the read-only capability set every registry provider implements.
Providers differ only in how they page through tags and how they report a
missing repository; capping and exclusion are applied uniformly by
image_sync.enumerator, so callers never need provider-specific logic.
"""
from __future__ import annotations

from typing import Iterator, List, Protocol, runtime_checkable


@runtime_checkable
class RegistryClient(Protocol):
    """
    Repo-scoped read access to a registry's tags.

    All operations take a repository path (e.g. "openshift/release") and
    resolve it against the registry the client was constructed for.
    """

    host: str

    def iter_tag_pages(self, repo: str) -> Iterator[List[str]]:
        """
        Lazily yield tag pages in provider order (most recent first when
        the provider supports ordering).

        Each page is fetched only when the iterator is advanced, so a
        consumer that stops early never triggers further requests.

        Raises:
            AuthError: If credentials are invalid or expired
            NotFoundError: If the repository does not exist
            TransientError: Network failure, timeout, 429 or 5xx
            ProtocolError: Malformed response
        """
        ...

    def list_tags(self, repo: str) -> List[str]:
        """
        List every tag in the repository, following all pages.

        Raises:
            Same as iter_tag_pages
        """
        ...

    def repository_exists(self, repo: str) -> bool:
        """
        Check whether the repository exists.

        Returns:
            True if it exists, False if the registry reports it absent

        Raises:
            AuthError: If credentials are invalid or expired
            TransientError: Network failure, timeout, 429 or 5xx
        """
        ...


def drain_pages(pages: Iterator[List[str]]) -> List[str]:
    """Flatten every page into one list (uncapped listing)."""
    tags: List[str] = []
    for page in pages:
        tags.extend(page)
    return tags


__all__ = ["RegistryClient", "drain_pages"]
