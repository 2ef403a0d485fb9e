"""
In-memory registry and transfer fakes for orchestrator and CLI tests.

FakeRegistry serves tags in fixed-size pages and records every page fetch
and existence check so tests can assert on laziness and call order.
"""
from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Tuple

from image_sync.credentials import AuthContext


class FakeRegistry:
    """
    Registry client backed by a dict of repository -> tags (newest first).

    Errors can be injected per repository for the existence check, for
    enumeration (raised when the given page index is fetched), or both.
    """

    def __init__(self, repos: Optional[Dict[str, List[str]]] = None, host: str = "fake.registry.io",
                 page_size: int = 2):
        self.repos: Dict[str, List[str]] = {k: list(v) for k, v in (repos or {}).items()}
        self.host = host
        self.page_size = page_size
        self.exists_errors: Dict[str, Exception] = {}
        self.page_errors: Dict[str, Tuple[int, Exception]] = {}
        self.page_fetches: List[Tuple[str, int]] = []
        self.exists_calls: List[str] = []

    def fail_exists(self, repo: str, error: Exception) -> None:
        self.exists_errors[repo] = error

    def fail_page(self, repo: str, page_index: int, error: Exception) -> None:
        self.page_errors[repo] = (page_index, error)

    def iter_tag_pages(self, repo: str) -> Iterator[List[str]]:
        tags = self.repos.get(repo, [])
        index = 0
        while True:
            self.page_fetches.append((repo, index))
            if repo in self.page_errors and self.page_errors[repo][0] == index:
                raise self.page_errors[repo][1]
            page = tags[index * self.page_size:(index + 1) * self.page_size]
            yield page
            index += 1
            if index * self.page_size >= len(tags):
                return

    def list_tags(self, repo: str) -> List[str]:
        return [t for page in self.iter_tag_pages(repo) for t in page]

    def repository_exists(self, repo: str) -> bool:
        self.exists_calls.append(repo)
        if repo in self.exists_errors:
            raise self.exists_errors[repo]
        return repo in self.repos

    def pages_fetched(self, repo: str) -> int:
        return sum(1 for r, _ in self.page_fetches if r == repo)


class FakeTransfer:
    """Records copies in call order; can fail on a given destination ref."""

    def __init__(self):
        self.calls: List[Tuple[str, str]] = []
        self.auth: List[Tuple[Optional[AuthContext], Optional[AuthContext]]] = []
        self.errors: Dict[str, Exception] = {}

    def fail_on(self, destination_ref: str, error: Exception) -> None:
        self.errors[destination_ref] = error

    def copy(self, destination_ref: str, source_ref: str,
             destination_auth: Optional[AuthContext] = None,
             source_auth: Optional[AuthContext] = None) -> None:
        if destination_ref in self.errors:
            raise self.errors[destination_ref]
        self.calls.append((source_ref, destination_ref))
        self.auth.append((destination_auth, source_auth))

    @property
    def copied(self) -> List[str]:
        return [dst for _, dst in self.calls]


class RecordingObserver:
    """Collects every SyncEvent."""

    def __init__(self):
        self.events = []

    def on_event(self, event) -> None:
        self.events.append(event)

    def states(self, image: str) -> List[str]:
        return [e.state.value for e in self.events if e.image == image]


class StaticIdentity:
    """IdentityTokenSource returning a fixed token."""

    def __init__(self, token: str = "aad-token"):
        self.token = token
        self.calls = 0

    def get_token(self) -> str:
        self.calls += 1
        return self.token


class StaticExchange:
    """TokenExchange returning a fixed refresh token."""

    def __init__(self, refresh_token: str = "refresh-token"):
        self.refresh_token = refresh_token
        self.exchanged = []

    def exchange_token(self, identity_token: str) -> str:
        self.exchanged.append(identity_token)
        return self.refresh_token
