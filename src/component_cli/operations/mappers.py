"""
Error mapping and CLI utilities.

Provides centralized exception-to-exit-code mapping and the CLI command
wrapper that keeps error handling consistent across all Typer commands.
"""
from __future__ import annotations

import logging
from typing import Callable, TypeVar

import typer

T = TypeVar('T')

logger = logging.getLogger(__name__)

# Looked up along the exception's MRO, so subclasses inherit their parent's code
EXIT_CODES = {
    "NotFoundError": 1,
    "ValidationError": 2,
    "ValueError": 2,
    "RegistryError": 3,
    "AuthError": 4,
    "CacheCorruptionError": 5,
    "ManifestBuildError": 6,
    "OperationCancelled": 130,
}


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to standardized exit code.

    Returns:
    - 1: Local file, directory or cache entry not found (NotFoundError)
    - 2: Invalid input (ValidationError, InvalidDescriptor, StructuralError, ValueError)
    - 3: Registry failure (RegistryError, RegistryNotFound) or unknown error
    - 4: Missing or rejected credentials (AuthError, CredentialLookupError)
    - 5: Corrupt cache entry (CacheCorruptionError)
    - 6: Manifest could not be built (ManifestBuildError, BlobReadError, SerializationError)
    - 130: Cancelled (OperationCancelled)
    """
    for cls in type(exc).__mro__:
        code = EXIT_CODES.get(cls.__name__)
        if code is not None:
            return code
    return 3


def run_and_exit(func: Callable[[], T]) -> T:
    """
    Unified error wrapper for CLI commands.

    Executes the given function and maps any exception to its exit code via
    typer.Exit after printing a one-line summary.

    Raises:
        typer.Exit: With appropriate exit code if function raises exception
    """
    try:
        return func()
    except (typer.Exit, typer.Abort, typer.BadParameter):
        raise
    except Exception as e:
        from .printers import print_error
        print_error(e)
        logger.debug("Command failed", exc_info=True)
        raise typer.Exit(code=exit_code_for(e)) from e


__all__ = ["EXIT_CODES", "exit_code_for", "run_and_exit"]
