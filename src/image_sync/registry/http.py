"""
Registry HTTP session.

Shared httpx plumbing for every registry client and the image transfer:
status and transport error mapping into the image_sync error taxonomy,
Docker Registry v2 Bearer challenge flow with a per-scope token cache, and
opt-in retry of transient failures.
"""
from __future__ import annotations

import json
import logging
import re
import threading
import time
from typing import TYPE_CHECKING, Any, Callable, Collection, Dict, Optional, Tuple, TypeVar

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import AuthError, NotFoundError, ProtocolError, TransientError

if TYPE_CHECKING:
    from ..credentials import AuthContext

__all__ = ["RegistrySession", "normalize_base_url", "host_of", "raise_for_status", "parse_json", "USER_AGENT"]

logger = logging.getLogger(__name__)

USER_AGENT = "image-sync/0.1.0"

# Backoff between retries of TransientError
RETRY_WAIT = wait_exponential(multiplier=1, min=1, max=10)

T = TypeVar("T")


def normalize_base_url(url: str, insecure: bool = False) -> str:
    """Ensure a scheme is present and strip any trailing slash."""
    if not url.startswith("http"):
        url = f"{'http' if insecure else 'https'}://{url}"
    return url.rstrip("/")


def host_of(url: str) -> str:
    """Registry hostname (with port) as used in image references."""
    if "://" in url:
        url = url.split("://", 1)[1]
    return url.split("/", 1)[0]


def raise_for_status(response: httpx.Response, what: str) -> None:
    """
    Map an HTTP error status into the error taxonomy.

    Raises:
        AuthError: 401/403
        NotFoundError: 404
        TransientError: 408, 429 and 5xx
        ProtocolError: Any other non-success status
    """
    status = response.status_code
    if status < 400:
        return
    if status in (401, 403):
        raise AuthError(f"Authentication failed for {what} (HTTP {status})")
    if status == 404:
        raise NotFoundError(f"Not found: {what}")
    if status in (408, 429) or status >= 500:
        raise TransientError(f"Registry error {status} for {what}")
    raise ProtocolError(f"Unexpected HTTP {status} for {what}")


def parse_json(response: httpx.Response, what: str) -> Any:
    """Decode a JSON body, raising ProtocolError on malformed content."""
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Invalid JSON in response for {what}: {e}") from e


class RegistrySession:
    """
    HTTP session against one registry.

    Two auth modes, both optional:
    - bearer_token: static token sent on every request (Quay API tokens)
    - auth: username/password used to answer Bearer challenges from the
      registry's token endpoint (Docker Registry v2 / ACR flow)
    """

    def __init__(self, base_url: str, *, auth: Optional["AuthContext"] = None,
                 bearer_token: Optional[str] = None, timeout_s: float = 10.0,
                 retries: int = 0, transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize registry session.

        Args:
            base_url: Registry base URL (scheme added if missing)
            auth: Credentials for the Bearer challenge flow
            bearer_token: Static API token
            timeout_s: Per-request timeout; exceeding it raises TransientError
            retries: Retries for requests marked retryable (0 = none)
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = normalize_base_url(base_url)
        self.auth = auth
        self.retries = retries
        self._bearer_token = bearer_token

        self.client = httpx.Client(
            timeout=httpx.Timeout(timeout_s),
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        )

        # Token cache: {service:scope: (token, expiry_timestamp)}
        self._token_cache: Dict[str, Tuple[str, float]] = {}
        self._token_lock = threading.Lock()
        # Last token obtained per scope so follow-up requests skip the challenge
        self._scope_tokens: Dict[str, str] = {}

    @property
    def host(self) -> str:
        return host_of(self.base_url)

    def url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(self, method: str, path: str, *, what: str, retryable: bool = False,
                allow_status: Collection[int] = (), scope: Optional[str] = None,
                stream: bool = False, **kwargs) -> httpx.Response:
        """
        Send a request and map failures.

        Args:
            method: HTTP method
            path: Path relative to base_url, or an absolute URL
            what: Human description used in error messages
            retryable: Retry TransientError up to self.retries times
            allow_status: Error statuses returned to the caller instead of raised
            scope: Token scope hint used to reuse a cached challenge token
            stream: Return before reading the body; caller must close the response

        Returns:
            httpx.Response with a success status or one listed in allow_status
        """
        def _do() -> httpx.Response:
            response = self._send(method, path, what=what, scope=scope, stream=stream, **kwargs)
            if response.status_code not in allow_status:
                if response.is_error:
                    response.close()
                raise_for_status(response, what)
            return response

        if retryable:
            return self.call_with_retry(_do)
        return _do()

    def get_json(self, path: str, *, what: str, retryable: bool = False, **kwargs) -> Tuple[Any, httpx.Response]:
        """GET and decode JSON, returning (payload, response)."""
        response = self.request("GET", path, what=what, retryable=retryable, **kwargs)
        return parse_json(response, what), response

    def call_with_retry(self, fn: Callable[[], T]) -> T:
        """Run fn, retrying TransientError when retries are enabled."""
        if self.retries <= 0:
            return fn()
        retrying = Retrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=RETRY_WAIT,
            retry=retry_if_exception_type(TransientError),
            reraise=True,
        )
        return retrying(fn)

    def _send(self, method: str, path: str, *, what: str, scope: Optional[str] = None,
              stream: bool = False, **kwargs) -> httpx.Response:
        """
        Send with transparent Bearer challenge handling.

        Handles 401 responses by:
        1. Parsing WWW-Authenticate header for Bearer realm/service/scope
        2. Exchanging self.auth credentials for a token at the realm
        3. Retrying the original request once with the Authorization header
        """
        url = self.url(path)
        headers = dict(kwargs.pop("headers", None) or {})

        token = self._bearer_token or (self._scope_tokens.get(scope) if scope else None)
        if token:
            headers["Authorization"] = f"Bearer {token}"

        response = self._transport_call(method, url, what, headers=headers, stream=stream, **kwargs)

        if response.status_code == 401 and self.auth is not None and not self._bearer_token:
            challenge = response.headers.get("WWW-Authenticate", "")
            response.close()
            # File bodies were consumed by the first attempt
            content = kwargs.get("content")
            if hasattr(content, "seek"):
                content.seek(0)
            if challenge.startswith("Bearer "):
                token = self._handle_bearer_auth(challenge, what)
                if scope:
                    with self._token_lock:
                        self._scope_tokens[scope] = token
                headers["Authorization"] = f"Bearer {token}"
                response = self._transport_call(method, url, what, headers=headers, stream=stream, **kwargs)
            elif challenge.startswith("Basic "):
                response = self._transport_call(
                    method, url, what, headers=headers, stream=stream,
                    auth=(self.auth.username, self.auth.password), **kwargs
                )

        return response

    def _transport_call(self, method: str, url: str, what: str, *, stream: bool = False,
                        auth: Optional[Tuple[str, str]] = None, **kwargs) -> httpx.Response:
        try:
            request = self.client.build_request(method, url, **kwargs)
            return self.client.send(request, auth=auth, stream=stream)
        except httpx.TimeoutException as e:
            raise TransientError(f"Timeout during {what}: {e}") from e
        except httpx.RequestError as e:
            raise TransientError(f"Network error during {what}: {e}") from e

    def _handle_bearer_auth(self, www_authenticate: str, what: str) -> str:
        """
        Obtain a token for a Bearer challenge.

        Format: Bearer realm="...",service="...",scope="..."

        Raises:
            AuthError: If the token endpoint rejects the credentials
            ProtocolError: If the challenge or token response is malformed
        """
        bearer_params = {}
        for match in re.finditer(r'(\w+)="([^"]*)"', www_authenticate):
            bearer_params[match.group(1)] = match.group(2)

        realm = bearer_params.get("realm")
        service = bearer_params.get("service")
        scope = bearer_params.get("scope")

        if not realm or not service:
            raise ProtocolError(f"Malformed Bearer challenge for {what}: {www_authenticate}")

        cache_key = f"{service}:{scope or ''}"
        with self._token_lock:
            cached = self._token_cache.get(cache_key)
            if cached and time.time() < cached[1] - 30:  # 30s buffer before expiry
                return cached[0]

        params = {"service": service, "scope": scope} if scope else {"service": service}
        auth_response = self._transport_call(
            "GET", realm, f"token request for {what}",
            auth=(self.auth.username, self.auth.password), params=params,
        )
        raise_for_status(auth_response, f"token request for {service}")

        token_data = parse_json(auth_response, f"token request for {service}")
        if not isinstance(token_data, dict):
            raise ProtocolError(f"Token response from {realm} is not a JSON object")
        token = token_data.get("token") or token_data.get("access_token")
        if not token:
            raise ProtocolError(f"Token response from {realm} carried no token")

        expires_in = token_data.get("expires_in", 300)
        with self._token_lock:
            self._token_cache[cache_key] = (token, time.time() + expires_in)
        logger.debug(f"Obtained registry token for {cache_key}")
        return token

    def close(self) -> None:
        """Close HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
