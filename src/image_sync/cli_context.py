"""
CLI Context for managing application dependencies.

Builds the registry clients, credentials and transfer for a CLI command from
Settings, once per command, so commands stay thin and tests can inject fakes.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .credentials import (
    AcrTokenExchange,
    AuthContext,
    CredentialProvider,
    PullSecret,
    ServicePrincipalIdentity,
    read_secret,
)
from .models import RegistryKind
from .registry.base import RegistryClient
from .registry.factory import make_registry
from .settings import Settings, create_settings_from_env
from .transfer import DryRunTransfer, ImageTransfer, RegistryImageTransfer


@dataclass
class CLIContext:
    """
    Shared context for CLI commands.

    Everything is created lazily on first access and reused for the rest of
    the command, so a command that only lists source tags never performs the
    destination token exchange.
    """
    settings: Settings
    _source: Optional[RegistryClient] = None
    _destination: Optional[RegistryClient] = None
    _credentials: Optional[CredentialProvider] = None
    _transfer: Optional[ImageTransfer] = None

    @classmethod
    def from_env(cls, config_path: Optional[str] = None) -> CLIContext:
        """Create CLI context from config file and environment variables."""
        return cls(settings=create_settings_from_env(config_path))

    @property
    def credentials(self) -> CredentialProvider:
        if self._credentials is None:
            s = self.settings
            identity = exchange = None
            if s.azure_client_id and s.destination_url:
                # The secret file is read on the first exchange, never for source access
                identity = ServicePrincipalIdentity(
                    s.azure_tenant_id, s.azure_client_id, client_secret_file=s.azure_client_secret_file
                )
                exchange = AcrTokenExchange(
                    s.destination_url, s.azure_tenant_id,
                    timeout_s=s.request_timeout_s, retries=s.http_retry,
                )
            pull_secret = PullSecret.from_file(s.source_pull_secret_file) if s.source_pull_secret_file else None
            self._credentials = CredentialProvider(
                s.destination_url or "",
                identity=identity,
                exchange=exchange,
                source_pull_secret=pull_secret,
                source_registry=s.source_url,
            )
        return self._credentials

    @property
    def source_auth(self) -> Optional[AuthContext]:
        return self.credentials.source_auth()

    @property
    def destination_auth(self) -> Optional[AuthContext]:
        if self.settings.destination_provider != "acr":
            return None
        return self.credentials.destination_auth()

    @property
    def source(self) -> RegistryClient:
        if self._source is None:
            s = self.settings
            token = read_secret(s.source_token_file) if s.source_token_file else None
            self._source = make_registry(s, RegistryKind.SOURCE, auth=self.source_auth, bearer_token=token)
        return self._source

    @property
    def destination(self) -> RegistryClient:
        if self._destination is None:
            self._destination = make_registry(
                self.settings, RegistryKind.DESTINATION, auth=self.destination_auth
            )
        return self._destination

    def transfer(self, dry_run: bool = False) -> ImageTransfer:
        if self._transfer is not None:
            return self._transfer
        if dry_run:
            return DryRunTransfer()
        return RegistryImageTransfer(timeout_s=self.settings.request_timeout_s, retries=self.settings.http_retry)
