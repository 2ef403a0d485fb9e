"""
Registry credentials.

Produces the AuthContext each registry client and the image transfer use:
- Source: bearer token and docker config.json style pull secret read from
  the secret store (files mounted into the job)
- Destination: Azure AD access token for a service principal exchanged for
  an ACR refresh token at the registry's /oauth2/exchange endpoint

Tokens are secrets: they are never logged and AuthContext hides them from repr.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

import httpx

from .errors import AuthError, ProtocolError, TransientError
from .registry.http import RegistrySession, host_of, parse_json

__all__ = [
    "AuthContext",
    "read_secret",
    "PullSecret",
    "IdentityTokenSource",
    "ServicePrincipalIdentity",
    "TokenExchange",
    "AcrTokenExchange",
    "CredentialProvider",
    "ACR_REFRESH_TOKEN_USER",
]

logger = logging.getLogger(__name__)

# Username ACR expects alongside an exchanged refresh token
ACR_REFRESH_TOKEN_USER = "00000000-0000-0000-0000-000000000000"

# Scope of the Azure AD token presented to the exchange endpoint
AZURE_MANAGEMENT_SCOPE = "https://management.azure.com/.default"


@dataclass(frozen=True)
class AuthContext:
    """Credential bundle for one registry. Never shared across registries."""
    registry: str
    username: str
    password: str = field(repr=False)
    expires_at: Optional[float] = None


def read_secret(path: str | Path) -> str:
    """
    Read a secret from a file, stripping surrounding whitespace.

    Raises:
        AuthError: If the file is missing, unreadable or empty
    """
    secret_path = Path(path)
    try:
        value = secret_path.read_text().strip()
    except OSError as e:
        raise AuthError(f"Cannot read secret file {secret_path}: {e.strerror}") from e
    if not value:
        raise AuthError(f"Secret file {secret_path} is empty")
    return value


class PullSecret:
    """Registry credentials from a docker config.json style document."""

    def __init__(self, document: dict):
        self._auths = document.get("auths", {}) if isinstance(document, dict) else {}

    @classmethod
    def from_file(cls, path: str | Path) -> "PullSecret":
        raw = read_secret(path)
        try:
            return cls(json.loads(raw))
        except json.JSONDecodeError as e:
            raise AuthError(f"Pull secret {path} is not valid JSON: {e}") from e

    def auth_for(self, registry: str) -> AuthContext:
        """
        Get credentials for a registry host.

        Raises:
            AuthError: If the secret has no usable entry for the registry
        """
        host = host_of(registry)
        # Try exact host, then URL forms
        for key in (host, f"https://{host}", f"http://{host}"):
            entry = self._auths.get(key)
            if entry is None:
                continue

            if "auth" in entry:
                try:
                    decoded = base64.b64decode(entry["auth"]).decode()
                except (binascii.Error, UnicodeDecodeError) as e:
                    raise AuthError(f"Pull secret entry for {host} has an invalid auth field") from e
                if ":" in decoded:
                    username, password = decoded.split(":", 1)
                    return AuthContext(registry=host, username=username, password=password)

            if "username" in entry and "password" in entry:
                return AuthContext(registry=host, username=entry["username"], password=entry["password"])

        raise AuthError(f"Pull secret has no credentials for {host}")


@runtime_checkable
class IdentityTokenSource(Protocol):
    """Platform identity able to mint an access token."""

    def get_token(self) -> str:
        ...


class ServicePrincipalIdentity:
    """Azure AD service principal identity backed by azure-identity."""

    def __init__(self, tenant_id: str, client_id: str, client_secret: Optional[str] = None,
                 scope: str = AZURE_MANAGEMENT_SCOPE, client_secret_file: Optional[str] = None):
        """
        Initialize the identity.

        Args:
            tenant_id: Azure AD tenant
            client_id: Service principal application id
            client_secret: Secret value, or None to read client_secret_file
            scope: Scope of the requested access token
            client_secret_file: Secret file, read on the first get_token call
        """
        if client_secret is None and client_secret_file is None:
            raise ValueError("ServicePrincipalIdentity needs client_secret or client_secret_file")
        self.tenant_id = tenant_id
        self.client_id = client_id
        self._client_secret = client_secret
        self.client_secret_file = client_secret_file
        self.scope = scope

    def get_token(self) -> str:
        """
        Get an Azure AD access token for the service principal.

        Raises:
            AuthError: If the secret file is unreadable or Azure AD rejects the
                service principal
            TransientError: If Azure AD cannot be reached
        """
        if self._client_secret is None:
            self._client_secret = read_secret(self.client_secret_file)

        from azure.core.exceptions import (
            AzureError,
            ClientAuthenticationError,
            ServiceRequestError,
            ServiceResponseError,
        )
        from azure.identity import ClientSecretCredential

        credential = ClientSecretCredential(self.tenant_id, self.client_id, self._client_secret)
        try:
            return credential.get_token(self.scope).token
        except ClientAuthenticationError as e:
            raise AuthError(f"Azure AD authentication failed for client {self.client_id}: {e.message}") from e
        except (ServiceRequestError, ServiceResponseError) as e:
            raise TransientError(f"Azure AD token request failed for client {self.client_id}: {e.message}") from e
        except AzureError as e:
            raise AuthError(f"Azure AD token request failed for client {self.client_id}: {e.message}") from e
        finally:
            credential.close()


@runtime_checkable
class TokenExchange(Protocol):
    """Exchange a platform identity token for a registry-scoped token."""

    def exchange_token(self, identity_token: str) -> str:
        ...


class AcrTokenExchange:
    """ACR /oauth2/exchange: Azure AD access token in, ACR refresh token out."""

    def __init__(self, registry_url: str, tenant_id: str, timeout_s: float = 10.0,
                 retries: int = 0, transport: Optional[httpx.BaseTransport] = None):
        self._session = RegistrySession(registry_url, timeout_s=timeout_s, retries=retries, transport=transport)
        self.service = self._session.host
        self.tenant_id = tenant_id

    def exchange_token(self, identity_token: str) -> str:
        """
        Exchange the access token.

        Raises:
            AuthError: On any non-success response
            TransientError: On network failure
            ProtocolError: If the response carries no refresh_token
        """
        what = f"token exchange with {self.service}"

        # Every error status is an auth failure here; only network errors retry
        response = self._session.request(
            "POST", "/oauth2/exchange", what=what, retryable=True,
            allow_status=range(400, 600),
            data={
                "grant_type": "access_token",
                "service": self.service,
                "tenant": self.tenant_id,
                "access_token": identity_token,
            },
        )
        if response.status_code >= 400:
            raise AuthError(f"Token exchange with {self.service} failed (HTTP {response.status_code})")

        payload = parse_json(response, what)
        refresh_token = payload.get("refresh_token") if isinstance(payload, dict) else None
        if not refresh_token:
            raise ProtocolError(f"Token exchange with {self.service} returned no refresh_token")
        logger.debug(f"Exchanged identity token for {self.service} refresh token")
        return refresh_token

    def close(self) -> None:
        self._session.close()


class CredentialProvider:
    """
    Builds and caches the AuthContexts for one sync run.

    The destination context is obtained once and reused for every image;
    nothing is written to disk or logs.
    """

    def __init__(self, destination_registry: str, identity: Optional[IdentityTokenSource] = None,
                 exchange: Optional[TokenExchange] = None,
                 source_pull_secret: Optional[PullSecret] = None, source_registry: Optional[str] = None):
        self.destination_registry = host_of(destination_registry)
        self._identity = identity
        self._exchange = exchange
        self._source_pull_secret = source_pull_secret
        self._source_registry = source_registry
        self._destination_auth: Optional[AuthContext] = None
        self._lock = threading.Lock()

    def destination_auth(self) -> AuthContext:
        """
        Exchange the platform identity for destination credentials (cached).

        Raises:
            AuthError: If no identity is configured or the exchange fails
        """
        with self._lock:
            if self._destination_auth is None:
                if self._identity is None or self._exchange is None:
                    raise AuthError(f"No identity configured for {self.destination_registry}")
                refresh_token = self._exchange.exchange_token(self._identity.get_token())
                self._destination_auth = AuthContext(
                    registry=self.destination_registry,
                    username=ACR_REFRESH_TOKEN_USER,
                    password=refresh_token,
                )
                logger.info(f"Obtained credentials for {self.destination_registry}")
            return self._destination_auth

    def source_auth(self) -> Optional[AuthContext]:
        """Source credentials from the pull secret, or None for anonymous pulls."""
        if self._source_pull_secret is None or self._source_registry is None:
            return None
        return self._source_pull_secret.auth_for(self._source_registry)
