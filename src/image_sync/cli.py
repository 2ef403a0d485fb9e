"""
image-sync CLI

Implements 3 CLI verbs with Operations facade integration:
- sync: Mirror missing tags from the source registry to the destination
- plan: Show what sync would copy without copying anything
- tags: List tags for one repository on either side
"""
from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from .cli_context import CLIContext
from .models import RegistryKind
from .operations import Operations, OpsConfig, run_and_exit
from .operations.printers import print_report, print_report_json, print_tags
from .settings import create_settings_from_env

app = typer.Typer(name="image-sync", help="Mirror container image tags between registries")

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose, show_path=verbose)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _make_context(config_path: Optional[str], **overrides) -> CLIContext:
    """
    Build the CLI context from config file, environment and flag overrides.

    Args:
        config_path: YAML config file (falls back to IMAGE_SYNC_CONFIG)
        **overrides: Settings fields set by CLI flags; None means not given
    """
    settings = create_settings_from_env(config_path).with_overrides(**overrides)
    return CLIContext(settings=settings)


@contextmanager
def _cancel_on_interrupt() -> Iterator[threading.Event]:
    """Turn SIGINT into a cancel request honored between sync steps."""
    cancel = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    def _handler(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        logger.warning("Interrupt received, stopping after the current step (again to abort)")
        cancel.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def _images_override(images: Optional[List[str]]) -> Optional[tuple]:
    return tuple(images) if images else None


@app.command()
def sync(
    image: Optional[List[str]] = typer.Option(None, "--image", "-i", help="Repository to mirror (repeatable, overrides config)"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="YAML config file"),
    max_tags: Optional[int] = typer.Option(None, "--max-tags", min=1, help="Tag cap per repository"),
    skip_latest: Optional[bool] = typer.Option(None, "--skip-latest/--include-latest", help="Filter the latest tag"),
    isolate_failures: Optional[bool] = typer.Option(
        None, "--isolate-failures/--fail-fast", help="Keep going after a repository fails"
    ),
    workers: Optional[int] = typer.Option(None, "--workers", min=1, help="Repositories synced concurrently"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Log copies instead of performing them"),
    json_output: bool = typer.Option(False, "--json", help="Print the report as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show detailed output"),
) -> None:
    """Mirror missing tags from the source registry to the destination."""
    _configure_logging(verbose)

    def _sync() -> None:
        context = _make_context(
            config,
            images=_images_override(image),
            max_tags=max_tags,
            skip_latest=skip_latest,
            isolate_failures=isolate_failures,
            workers=workers,
        )
        with _cancel_on_interrupt() as cancel:
            ops = Operations(OpsConfig(dry_run=dry_run, verbose=verbose), context, cancel=cancel)
            report = ops.sync()
        if json_output:
            print_report_json(report)
        else:
            print_report(report, verbose=verbose)

    run_and_exit(_sync)


@app.command()
def plan(
    image: Optional[List[str]] = typer.Option(None, "--image", "-i", help="Repository to inspect (repeatable)"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="YAML config file"),
    max_tags: Optional[int] = typer.Option(None, "--max-tags", min=1, help="Tag cap per repository"),
    skip_latest: Optional[bool] = typer.Option(None, "--skip-latest/--include-latest", help="Filter the latest tag"),
    json_output: bool = typer.Option(False, "--json", help="Print the plans as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show detailed output"),
) -> None:
    """Show which tags sync would copy, without copying."""
    _configure_logging(verbose)

    def _plan() -> None:
        context = _make_context(
            config,
            images=_images_override(image),
            max_tags=max_tags,
            skip_latest=skip_latest,
        )
        with _cancel_on_interrupt() as cancel:
            ops = Operations(OpsConfig(verbose=verbose), context, cancel=cancel)
            report = ops.plan()
        if json_output:
            print_report_json(report)
        else:
            print_report(report, verbose=verbose, plan_only=True)

    run_and_exit(_plan)


@app.command()
def tags(
    image: str = typer.Argument(..., help="Repository path, e.g. openshift/release"),
    destination: bool = typer.Option(False, "--destination", help="Query the destination registry"),
    all_tags: bool = typer.Option(False, "--all", help="List every tag, ignoring the cap and latest filter"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="YAML config file"),
    max_tags: Optional[int] = typer.Option(None, "--max-tags", min=1, help="Tag cap per repository"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show detailed output"),
) -> None:
    """List tags for a repository as sync would enumerate them."""
    _configure_logging(verbose)

    def _tags() -> None:
        context = _make_context(config, max_tags=max_tags)
        ops = Operations(OpsConfig(verbose=verbose), context)
        side = RegistryKind.DESTINATION if destination else RegistryKind.SOURCE
        print_tags(image, ops.tags(image, side=side, capped=not all_tags))

    run_and_exit(_tags)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
