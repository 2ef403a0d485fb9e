"""
Settings and configuration for image-sync.

Centralizes configuration values and provides validation with fail-fast behavior.
Values come from an optional YAML file, then IMAGE_SYNC_* environment variables
(environment wins), and are finally overridden by CLI flags.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

__all__ = ["Settings", "create_settings_from_env", "load_config_file", "PROVIDERS"]

# Registry providers understood by registry.factory.make_registry
PROVIDERS = ("quay", "acr")

_URL_PATTERN = r"^(?:https?://)?[a-zA-Z0-9.-]+(?::[0-9]+)?(?:/.*)?$"
_REPO_PATTERN = r"^[a-z0-9][a-z0-9._-]*(?:/[a-z0-9][a-z0-9._-]*)*$"


@dataclass(frozen=True)
class Settings:
    """
    Configuration settings for a sync run.

    Sync policy:
        images: Repository paths to mirror, in order
        max_tags: Tag cap per repository (enumeration stops at max_tags - 1)
        skip_latest: Filter the "latest" tag from both sides
        isolate_failures: Continue with remaining images after a failure
        workers: Images synced concurrently (1 = strictly sequential)

    Source registry:
        source_provider: "quay" or "acr"
        source_url: Registry base URL (API and image host)
        source_token_file: File holding the API bearer token
        source_pull_secret_file: Docker config.json style pull secret used for copies

    Destination registry:
        destination_provider: "acr" or "quay"
        destination_url: Registry base URL, e.g. https://myregistry.azurecr.io
        azure_tenant_id / azure_client_id / azure_client_secret_file:
            Service principal used for the ACR token exchange

    HTTP:
        request_timeout_s: Per-request timeout in seconds
        http_retry: Retries for transient failures outside enumeration (0=no retry)
    """
    images: Tuple[str, ...] = ()
    max_tags: int = 10
    skip_latest: bool = True
    isolate_failures: bool = False
    workers: int = 1

    source_provider: str = "quay"
    source_url: str = "https://quay.io"
    source_token_file: Optional[str] = None
    source_pull_secret_file: Optional[str] = None

    destination_provider: str = "acr"
    destination_url: Optional[str] = None
    azure_tenant_id: Optional[str] = None
    azure_client_id: Optional[str] = None
    azure_client_secret_file: Optional[str] = None

    request_timeout_s: float = 10.0
    http_retry: int = 0

    def __post_init__(self):
        """Validate settings on construction."""
        # Accept any sequence for images but store a tuple
        if isinstance(self.images, str):
            raise ValueError(f"images must be a list of repository paths, got the string {self.images!r}")
        object.__setattr__(self, "images", tuple(self.images))

        for image in self.images:
            if not re.match(_REPO_PATTERN, image):
                raise ValueError(f"Invalid image repository path: {image}. Must follow OCI naming conventions.")

        if self.max_tags < 1:
            raise ValueError(f"max_tags must be at least 1, got {self.max_tags}")

        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")

        for side, provider in (("source", self.source_provider), ("destination", self.destination_provider)):
            if provider not in PROVIDERS:
                raise ValueError(f"Unknown {side}_provider: {provider}. Supported values: {', '.join(PROVIDERS)}")

        if not self.source_url or not re.match(_URL_PATTERN, self.source_url):
            raise ValueError(f"Invalid source_url format: {self.source_url}")

        if self.destination_url is not None and not re.match(_URL_PATTERN, self.destination_url):
            raise ValueError(f"Invalid destination_url format: {self.destination_url}")

        if self.request_timeout_s <= 0:
            raise ValueError(f"request_timeout_s must be positive, got {self.request_timeout_s}")

        if self.http_retry < 0:
            raise ValueError(f"http_retry must be non-negative, got {self.http_retry}")

        # Service principal must be complete if partially configured
        sp_fields = {
            "azure_tenant_id": self.azure_tenant_id,
            "azure_client_id": self.azure_client_id,
            "azure_client_secret_file": self.azure_client_secret_file,
        }
        configured = [k for k, v in sp_fields.items() if v]
        if configured and len(configured) != len(sp_fields):
            missing = sorted(set(sp_fields) - set(configured))
            raise ValueError(f"Incomplete service principal configuration, missing: {', '.join(missing)}")

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy with non-None overrides applied (used for CLI flags)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


def load_config_file(path: str | os.PathLike) -> Dict[str, Any]:
    """
    Load a YAML configuration file.

    Keys use the Settings field names. Unknown keys are rejected so typos
    surface immediately.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the document is not a mapping, has unknown keys or
            holds a value of the wrong type
    """
    import yaml

    config_path = Path(path)
    with open(config_path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping, got {type(data).__name__}")

    known = set(Settings.__dataclass_fields__)
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in config file {config_path}: {', '.join(unknown)}")

    for key, value in data.items():
        _check_config_value(config_path, key, value)

    return data


# Settings fields grouped by the YAML type they accept; other fields take strings
_BOOL_FIELDS = {"skip_latest", "isolate_failures"}
_INT_FIELDS = {"max_tags", "workers", "http_retry"}
_FLOAT_FIELDS = {"request_timeout_s"}


def _check_config_value(config_path: Path, key: str, value: Any) -> None:
    """Reject YAML values whose type does not match the Settings field."""
    if key == "images":
        ok = isinstance(value, list) and all(isinstance(item, str) for item in value)
        expected = "a list of strings"
    elif key in _BOOL_FIELDS:
        ok = isinstance(value, bool)
        expected = "true or false"
    elif key in _INT_FIELDS:
        ok = isinstance(value, int) and not isinstance(value, bool)
        expected = "an integer"
    elif key in _FLOAT_FIELDS:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        expected = "a number"
    else:
        ok = value is None or isinstance(value, str)
        expected = "a string"

    if not ok:
        raise ValueError(f"Config file {config_path}: {key} must be {expected}, got {value!r}")


def create_settings_from_env(config_path: Optional[str] = None) -> Settings:
    """
    Load settings from an optional YAML file and environment variables.

    Environment Variables:
        - IMAGE_SYNC_CONFIG (optional path to YAML config, if config_path not given)
        - IMAGE_SYNC_IMAGES (comma separated repository paths)
        - IMAGE_SYNC_MAX_TAGS (default: 10)
        - IMAGE_SYNC_SKIP_LATEST (default: true)
        - IMAGE_SYNC_ISOLATE_FAILURES (default: false)
        - IMAGE_SYNC_WORKERS (default: 1)
        - IMAGE_SYNC_SOURCE_PROVIDER (default: quay)
        - IMAGE_SYNC_SOURCE_URL (default: https://quay.io)
        - IMAGE_SYNC_SOURCE_TOKEN_FILE (optional)
        - IMAGE_SYNC_SOURCE_PULL_SECRET_FILE (optional)
        - IMAGE_SYNC_DESTINATION_PROVIDER (default: acr)
        - IMAGE_SYNC_DESTINATION_URL (optional)
        - AZURE_TENANT_ID / AZURE_CLIENT_ID (optional)
        - IMAGE_SYNC_AZURE_CLIENT_SECRET_FILE (optional)
        - IMAGE_SYNC_REQUEST_TIMEOUT (default: 10)
        - IMAGE_SYNC_HTTP_RETRY (default: 0)

    Returns:
        Settings object with validated configuration

    Raises:
        ValueError: If configuration is invalid

    Note:
        Creates a fresh Settings instance every time (no caching).
    """
    values: Dict[str, Any] = {}

    config_path = config_path or os.getenv("IMAGE_SYNC_CONFIG")
    if config_path:
        values.update(load_config_file(config_path))

    values.update(_env_values())
    return Settings(**values)


def _env_values() -> Dict[str, Any]:
    """Collect settings present in the environment."""
    def str_to_bool(value: str) -> bool:
        return value.lower() in ('true', '1', 'yes', 'on')

    def split_list(value: str) -> Tuple[str, ...]:
        return tuple(item.strip() for item in value.split(",") if item.strip())

    # env var -> (field name, converter)
    mapping = {
        "IMAGE_SYNC_IMAGES": ("images", split_list),
        "IMAGE_SYNC_MAX_TAGS": ("max_tags", int),
        "IMAGE_SYNC_SKIP_LATEST": ("skip_latest", str_to_bool),
        "IMAGE_SYNC_ISOLATE_FAILURES": ("isolate_failures", str_to_bool),
        "IMAGE_SYNC_WORKERS": ("workers", int),
        "IMAGE_SYNC_SOURCE_PROVIDER": ("source_provider", str.lower),
        "IMAGE_SYNC_SOURCE_URL": ("source_url", str),
        "IMAGE_SYNC_SOURCE_TOKEN_FILE": ("source_token_file", str),
        "IMAGE_SYNC_SOURCE_PULL_SECRET_FILE": ("source_pull_secret_file", str),
        "IMAGE_SYNC_DESTINATION_PROVIDER": ("destination_provider", str.lower),
        "IMAGE_SYNC_DESTINATION_URL": ("destination_url", str),
        "AZURE_TENANT_ID": ("azure_tenant_id", str),
        "AZURE_CLIENT_ID": ("azure_client_id", str),
        "IMAGE_SYNC_AZURE_CLIENT_SECRET_FILE": ("azure_client_secret_file", str),
        "IMAGE_SYNC_REQUEST_TIMEOUT": ("request_timeout_s", float),
        "IMAGE_SYNC_HTTP_RETRY": ("http_retry", int),
    }

    values: Dict[str, Any] = {}
    for env_name, (field_name, convert) in mapping.items():
        raw = os.getenv(env_name)
        if raw:
            values[field_name] = convert(raw)
    return values
