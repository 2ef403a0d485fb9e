"""
Sync orchestrator.

Drives one sync run across the configured images. For every image:

    START -> SOURCE_ENUMERATED -> DESTINATION_CHECKED -> DIFFED -> COPYING -> DONE

with FAILED reachable from any non-terminal state. Each transition emits a
SyncEvent to every registered observer.

By default the first error aborts the whole run and propagates unchanged
(fail-fast, no rollback of tags already copied). isolate_failures=True keeps
going with the remaining images and raises SyncRunError at the end.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable, List, Optional, Protocol, Sequence, runtime_checkable

from .credentials import AuthContext
from .diff import missing_tags
from .enumerator import TagPolicy, enumerate_tags
from .errors import SyncCancelled, SyncError, SyncRunError, TransferError
from .models import (
    RegistryKind,
    RegistryReference,
    SyncEvent,
    SyncFailure,
    SyncPlan,
    SyncReport,
    SyncState,
)
from .registry.base import RegistryClient
from .transfer import ImageTransfer

__all__ = ["SyncObserver", "LoggingObserver", "SyncOrchestrator"]

logger = logging.getLogger(__name__)


@runtime_checkable
class SyncObserver(Protocol):
    """Receives an event for every state transition."""

    def on_event(self, event: SyncEvent) -> None:
        ...


class LoggingObserver:
    """Writes sync events to the log."""

    def on_event(self, event: SyncEvent) -> None:
        detail = event.detail
        if event.state is SyncState.SOURCE_ENUMERATED:
            logger.info(f"{event.image}: source tags {detail.get('tags')}")
        elif event.state is SyncState.DESTINATION_CHECKED:
            if detail.get("exists"):
                logger.info(f"{event.image}: destination tags {detail.get('tags')}")
            else:
                logger.info(f"{event.image}: destination repository does not exist")
        elif event.state is SyncState.DIFFED:
            logger.info(f"{event.image}: missing tags {detail.get('missing')}")
        elif event.state is SyncState.COPYING:
            logger.info(f"{event.image}: copying {detail.get('source')} -> {detail.get('destination')}")
        elif event.state is SyncState.DONE:
            logger.info(f"{event.image}: done, {detail.get('copied', 0)} tag(s) copied")
        elif event.state is SyncState.FAILED:
            logger.error(f"{event.image}: failed after {detail.get('after')}: {detail.get('error')}")
        else:
            logger.debug(f"{event.image}: {event.state.value}")


class SyncOrchestrator:
    """
    Composes registry clients, enumeration, diff and transfer.

    Registry clients and auth contexts are read-only after construction and
    shared across images; every image gets its own SyncPlan.
    """

    def __init__(self, source: RegistryClient, destination: RegistryClient, transfer: ImageTransfer,
                 policy: Optional[TagPolicy] = None, *,
                 source_auth: Optional[AuthContext] = None,
                 destination_auth: Optional[AuthContext] = None,
                 observers: Optional[Sequence[SyncObserver]] = None,
                 isolate_failures: bool = False,
                 workers: int = 1,
                 plan_only: bool = False):
        """
        Initialize orchestrator.

        Args:
            source: Registry client for the source side
            destination: Registry client for the destination side
            transfer: Copies one tag once the plan says it is missing
            policy: Tag cap and exclusion rules (defaults: 10, skip latest)
            source_auth: Credentials handed to the transfer for pulling
            destination_auth: Credentials handed to the transfer for pushing
            observers: Event sinks (defaults to LoggingObserver)
            isolate_failures: Continue past a failing image and aggregate failures
            workers: Images processed concurrently
            plan_only: Compute plans but never call the transfer
        """
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        self.source = source
        self.destination = destination
        self.transfer = transfer
        self.policy = policy or TagPolicy()
        self.source_auth = source_auth
        self.destination_auth = destination_auth
        self.observers: List[SyncObserver] = list(observers) if observers is not None else [LoggingObserver()]
        self.isolate_failures = isolate_failures
        self.workers = workers
        self.plan_only = plan_only
        self._report_lock = threading.Lock()

    def run(self, images: Iterable[str], cancel: Optional[threading.Event] = None) -> SyncReport:
        """
        Sync every image.

        With workers > 1 images run on a bounded thread pool; on the first
        failure (fail-fast mode) cancel is set so images still pending stop
        before their next step.

        Returns:
            SyncReport with one plan per image, in input order

        Raises:
            SyncError or any transfer error: First failure, fail-fast mode
            SyncRunError: One or more images failed, isolate_failures mode
            SyncCancelled: cancel was set
        """
        cancel = cancel if cancel is not None else threading.Event()
        report = SyncReport(plans=[_new_plan(image) for image in images])
        logger.info(f"Syncing {len(report.plans)} image(s), max tags {self.policy.max_tags}, "
                    f"skip latest {self.policy.skip_latest}")

        if self.workers == 1 or len(report.plans) <= 1:
            for plan in report.plans:
                self._run_one(plan, report, cancel)
        else:
            errors: List[BaseException] = []
            with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="image-sync") as pool:
                futures = [pool.submit(self._run_one, plan, report, cancel) for plan in report.plans]
                for future in as_completed(futures):
                    error = future.exception()
                    if error is not None:
                        errors.append(error)
                        cancel.set()
            if errors:
                # Report the root failure rather than the cancellations it caused
                raise next((e for e in errors if not isinstance(e, SyncCancelled)), errors[0])

        if report.failures:
            raise SyncRunError(report)
        logger.info(f"Sync complete: {report.copied_count} tag(s) copied")
        return report

    def sync_image(self, image: str, cancel: Optional[threading.Event] = None) -> SyncPlan:
        """
        Run the state machine for one image.

        Raises:
            The underlying error, unchanged; the plan is left in FAILED
        """
        plan = _new_plan(image)
        self._execute(plan, cancel)
        return plan

    def _run_one(self, plan: SyncPlan, report: SyncReport, cancel: threading.Event) -> None:
        try:
            self._execute(plan, cancel)
        except SyncCancelled:
            raise
        except Exception as e:
            if not self.isolate_failures:
                raise
            with self._report_lock:
                report.failures.append(SyncFailure(
                    image=plan.image,
                    state=plan.failed_state or SyncState.START,
                    error_type=type(e).__name__,
                    message=str(e),
                ))

    def _execute(self, plan: SyncPlan, cancel: Optional[threading.Event]) -> None:
        image = plan.image
        try:
            _check_cancel(cancel, image)
            plan.source_tags = enumerate_tags(self.source.iter_tag_pages(image), self.policy, cancel)
            self._advance(plan, SyncState.SOURCE_ENUMERATED, tags=list(plan.source_tags))

            _check_cancel(cancel, image)
            plan.destination_exists = self.destination.repository_exists(image)
            if plan.destination_exists:
                _check_cancel(cancel, image)
                plan.destination_tags = enumerate_tags(
                    self.destination.iter_tag_pages(image), self.policy, cancel
                )
            self._advance(plan, SyncState.DESTINATION_CHECKED,
                          exists=plan.destination_exists, tags=list(plan.destination_tags))

            plan.missing_tags = missing_tags(plan.source_tags, plan.destination_tags)
            self._advance(plan, SyncState.DIFFED, missing=list(plan.missing_tags))

            if not self.plan_only:
                destination_ref = RegistryReference(provider=RegistryKind.DESTINATION, repository=image)
                for tag in plan.missing_tags:
                    _check_cancel(cancel, image)
                    source = plan.repository.qualified(self.source.host, tag)
                    destination = destination_ref.qualified(self.destination.host, tag)
                    self._advance(plan, SyncState.COPYING, tag=tag, source=source, destination=destination)
                    self._copy(destination, source)
                    plan.copied_tags.append(tag)

            self._advance(plan, SyncState.DONE, copied=len(plan.copied_tags))
        except Exception as e:
            plan.failed_state = plan.state
            plan.error = str(e)
            self._advance(plan, SyncState.FAILED, after=plan.failed_state.value,
                          error=str(e), error_type=type(e).__name__)
            raise

    def _copy(self, destination: str, source: str) -> None:
        try:
            self.transfer.copy(destination, source, self.destination_auth, self.source_auth)
        except SyncError:
            raise
        except Exception as e:
            raise TransferError(f"Copy {source} -> {destination} failed: {e}",
                                source=source, destination=destination) from e

    def _advance(self, plan: SyncPlan, state: SyncState, **detail) -> None:
        plan.state = state
        event = SyncEvent(image=plan.image, state=state, detail=detail)
        for observer in self.observers:
            try:
                observer.on_event(event)
            except Exception:
                # Observer failures never change the run outcome
                logger.warning(f"Observer {type(observer).__name__} failed on {state.value}", exc_info=True)


def _new_plan(image: str) -> SyncPlan:
    return SyncPlan(repository=RegistryReference(provider=RegistryKind.SOURCE, repository=image))


def _check_cancel(cancel: Optional[threading.Event], image: str) -> None:
    if cancel is not None and cancel.is_set():
        raise SyncCancelled(f"Sync of {image} cancelled")
