"""
Error mapping and CLI utilities.

Provides centralized exception-to-exit-code mapping and a CLI command wrapper
so every Typer command handles errors the same way. The sync engine never
exits the process; this module is the only place that decides exit codes.
"""
from __future__ import annotations

import logging
from typing import Callable, TypeVar

import typer

from ..errors import SyncRunError
from .printers import print_report

T = TypeVar('T')

logger = logging.getLogger(__name__)

EXIT_CODES = {
    "NotFoundError": 1,
    "ValueError": 2,
    "FileNotFoundError": 2,
    "AuthError": 4,
    "TransientError": 5,
    "ProtocolError": 6,
    "TransferError": 7,
    "SyncRunError": 8,
    "SyncCancelled": 130,
}


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to exit code.

    Returns:
    - 0: Success
    - 1: Repository not found (NotFoundError)
    - 2: Configuration error (ValueError, FileNotFoundError)
    - 3: Unknown error (fallback)
    - 4: Authentication failure (AuthError)
    - 5: Network/timeout/5xx (TransientError)
    - 6: Malformed registry response (ProtocolError)
    - 7: Image copy failure (TransferError)
    - 8: Some images failed with failures isolated (SyncRunError)
    - 130: Cancelled (SyncCancelled)
    """
    return EXIT_CODES.get(type(exc).__name__, 3)


def run_and_exit(func: Callable[[], T]) -> T:
    """
    Unified error wrapper for CLI commands.

    Runs func and converts any exception into typer.Exit with the mapped
    exit code, printing the error verbatim.

    Raises:
        typer.Exit: With appropriate exit code if func raises
    """
    try:
        return func()
    except typer.Exit:
        raise
    except Exception as e:
        if isinstance(e, SyncRunError):
            print_report(e.report)
        logger.debug("Command failed", exc_info=True)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=exit_code_for(e)) from e
