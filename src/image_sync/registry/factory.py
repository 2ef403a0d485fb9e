"""
Registry factory with provider switching.

Builds the registry client for one side of the mirror from the configured
provider name, so call sites never depend on a concrete client class.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import httpx

from ..models import RegistryKind
from ..settings import Settings
from .acr import AcrRegistry
from .base import RegistryClient
from .quay import QuayRegistry

if TYPE_CHECKING:
    from ..credentials import AuthContext


def make_registry(settings: Settings, kind: RegistryKind, *,
                  auth: Optional["AuthContext"] = None, bearer_token: Optional[str] = None,
                  transport: Optional[httpx.BaseTransport] = None) -> RegistryClient:
    """
    Create the registry client for one side of the mirror.

    Args:
        settings: Run configuration
        kind: RegistryKind.SOURCE or RegistryKind.DESTINATION
        auth: Credentials for challenge-based registries (ACR)
        bearer_token: Static API token (Quay)
        transport: Custom httpx transport for tests

    Examples:
        >>> source = make_registry(settings, RegistryKind.SOURCE, bearer_token=token)
        >>> destination = make_registry(settings, RegistryKind.DESTINATION, auth=acr_auth)

    Raises:
        ValueError: If the side has no URL or names an unknown provider
    """
    if kind is RegistryKind.SOURCE:
        provider, url = settings.source_provider, settings.source_url
    else:
        provider, url = settings.destination_provider, settings.destination_url

    if not url:
        raise ValueError(f"{kind.value}_url is required")

    common = dict(timeout_s=settings.request_timeout_s, retries=settings.http_retry, transport=transport)
    if provider == "quay":
        return QuayRegistry(url, bearer_token=bearer_token, **common)
    elif provider == "acr":
        return AcrRegistry(url, auth=auth, **common)
    else:
        raise ValueError(
            f"Unknown {kind.value}_provider: {provider}. "
            f"Supported values: quay, acr"
        )


__all__ = ["make_registry"]
