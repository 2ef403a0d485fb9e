"""
Data models for a sync run.

These Pydantic models describe where an image lives, what a run decided to do
for it, and what happened. They are created fresh for every run and never
persisted.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "RegistryKind",
    "RegistryReference",
    "SyncState",
    "SyncPlan",
    "SyncEvent",
    "SyncFailure",
    "SyncReport",
    "LATEST_TAG",
]

# Reserved floating tag filtered by the exclusion policy
LATEST_TAG = "latest"


class RegistryKind(str, Enum):
    """Which side of the mirror a reference points at."""
    SOURCE = "source"
    DESTINATION = "destination"


class RegistryReference(BaseModel):
    """Logical image location, constructed once per sync target."""
    model_config = ConfigDict(frozen=True)

    provider: RegistryKind = Field(..., description="Side of the mirror")
    repository: str = Field(..., min_length=1, description="Repository path, e.g. openshift/release")

    def qualified(self, host: str, tag: str) -> str:
        """Render a fully-qualified image reference: host/repository:tag."""
        return f"{host}/{self.repository}:{tag}"


class SyncState(str, Enum):
    """Per-repository state machine."""
    START = "start"
    SOURCE_ENUMERATED = "source_enumerated"
    DESTINATION_CHECKED = "destination_checked"
    DIFFED = "diffed"
    COPYING = "copying"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SyncState.DONE, SyncState.FAILED)


class SyncPlan(BaseModel):
    """
    Computed state for one repository in one run.

    missing_tags is always source_tags minus destination_tags in source
    order. When the destination repository does not exist destination_tags
    is empty and nothing is listed on the destination.
    """
    repository: RegistryReference
    source_tags: List[str] = Field(default_factory=list)
    destination_exists: bool = False
    destination_tags: List[str] = Field(default_factory=list)
    missing_tags: List[str] = Field(default_factory=list)

    state: SyncState = SyncState.START
    copied_tags: List[str] = Field(default_factory=list, description="Tags transferred so far")
    error: Optional[str] = Field(default=None, description="Error message when state is FAILED")
    failed_state: Optional[SyncState] = Field(default=None, description="Last state reached before failing")

    @property
    def image(self) -> str:
        return self.repository.repository


class SyncEvent(BaseModel):
    """Observability event emitted on every state transition."""
    image: str
    state: SyncState
    detail: Dict[str, Any] = Field(default_factory=dict)


class SyncFailure(BaseModel):
    """A repository that failed while failures were isolated."""
    image: str
    state: SyncState = Field(..., description="Last state reached before failing")
    error_type: str
    message: str


class SyncReport(BaseModel):
    """Outcome of a run across all configured repositories."""
    plans: List[SyncPlan] = Field(default_factory=list)
    failures: List[SyncFailure] = Field(default_factory=list)

    @property
    def copied_count(self) -> int:
        return sum(len(p.copied_tags) for p in self.plans)

    @property
    def ok(self) -> bool:
        return not self.failures
