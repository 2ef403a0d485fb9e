"""
Operations Facade - Application service layer.

Provides a clean interface between the CLI and the sync engine, centralizing
command orchestration and policy decisions while keeping CLI commands thin
and testable.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..cli_context import CLIContext
from ..enumerator import TagPolicy, enumerate_tags
from ..models import RegistryKind, SyncReport
from ..orchestrator import LoggingObserver, SyncObserver, SyncOrchestrator


@dataclass(frozen=True)
class OpsConfig:
    """
    Configuration for Operations facade.

    Per-invocation policy that is not part of Settings.
    """
    dry_run: bool = False         # Log copies instead of performing them
    verbose: bool = False         # Show detailed output


class Operations:
    """
    Application service facade for CLI operations.

    One method per CLI verb. Exceptions bubble up unchanged for central
    mapping to exit codes in operations.mappers.
    """

    def __init__(self, config: OpsConfig, context: CLIContext,
                 observers: Optional[Sequence[SyncObserver]] = None,
                 cancel: Optional[threading.Event] = None):
        """
        Initialize Operations facade.

        Args:
            config: Invocation settings
            context: Settings plus lazily built clients and credentials
            observers: Event sinks for the orchestrator (defaults to logging)
            cancel: Event that aborts a run between steps when set
        """
        self.cfg = config
        self.context = context
        self.observers = list(observers) if observers is not None else [LoggingObserver()]
        self.cancel = cancel

    @property
    def policy(self) -> TagPolicy:
        s = self.context.settings
        return TagPolicy(max_tags=s.max_tags, skip_latest=s.skip_latest)

    def sync(self, images: Optional[Sequence[str]] = None) -> SyncReport:
        """
        Mirror missing tags for every image.

        Args:
            images: Repository paths (defaults to the configured images)
        """
        return self._orchestrator(plan_only=False).run(self._images(images), cancel=self.cancel)

    def plan(self, images: Optional[Sequence[str]] = None) -> SyncReport:
        """Compute sync plans without copying anything."""
        return self._orchestrator(plan_only=True).run(self._images(images), cancel=self.cancel)

    def tags(self, image: str, side: RegistryKind = RegistryKind.SOURCE, capped: bool = True) -> List[str]:
        """
        List tags for an image on one side.

        Args:
            image: Repository path
            side: Which registry to query
            capped: Apply the sync policy (cap and latest exclusion)
        """
        client = self.context.source if side is RegistryKind.SOURCE else self.context.destination
        if not capped:
            return client.list_tags(image)
        return enumerate_tags(client.iter_tag_pages(image), self.policy, self.cancel)

    def _orchestrator(self, plan_only: bool) -> SyncOrchestrator:
        ctx = self.context
        s = ctx.settings
        # Transfer credentials are only needed when something is copied
        needs_auth = not plan_only and not self.cfg.dry_run
        return SyncOrchestrator(
            ctx.source,
            ctx.destination,
            ctx.transfer(dry_run=self.cfg.dry_run),
            self.policy,
            source_auth=ctx.source_auth if needs_auth else None,
            destination_auth=ctx.destination_auth if needs_auth else None,
            observers=self.observers,
            isolate_failures=s.isolate_failures,
            workers=s.workers,
            plan_only=plan_only,
        )

    def _images(self, images: Optional[Sequence[str]]) -> List[str]:
        selected = list(images) if images else list(self.context.settings.images)
        if not selected:
            raise ValueError("No images configured: pass --image or set images in the config")
        return selected
