"""
Test error mapping and CLI exit code functionality.

Validates that exceptions are correctly mapped to exit codes and that
the run_and_exit wrapper handles errors appropriately for CLI commands.
"""
from __future__ import annotations

import pytest
import typer

from component_cli.errors import (
    AuthError,
    BlobReadError,
    CacheCorruptionError,
    ComponentCliError,
    CredentialLookupError,
    InvalidDescriptor,
    ManifestBuildError,
    NotFoundError,
    OperationCancelled,
    RegistryError,
    RegistryNotFound,
    SerializationError,
    StructuralError,
    ValidationError,
)
from component_cli.operations.mappers import EXIT_CODES, exit_code_for, run_and_exit


class TestExitCodeMapping:
    """Test exception to exit code mapping."""

    @pytest.mark.parametrize("exc, code", [
        (NotFoundError("x"), 1),
        (ValidationError("x"), 2),
        (InvalidDescriptor("x"), 2),
        (StructuralError("x"), 2),
        (RegistryError("x"), 3),
        (RegistryNotFound("x"), 3),
        (AuthError("x"), 4),
        (CredentialLookupError("x"), 4),
        (CacheCorruptionError("x"), 5),
        (ManifestBuildError("x"), 6),
        (BlobReadError("x"), 6),
        (SerializationError("x"), 6),
        (OperationCancelled("x"), 130),
    ])
    def test_error_classes(self, exc, code):
        assert exit_code_for(exc) == code

    def test_subclass_inherits_parent_code(self):
        class CustomNotFound(NotFoundError):
            pass

        assert exit_code_for(CustomNotFound("x")) == 1

    def test_standard_exceptions(self):
        assert exit_code_for(ValueError("test")) == 2
        assert exit_code_for(RuntimeError("test")) == 3
        assert exit_code_for(FileNotFoundError("test")) == 3
        assert exit_code_for(ComponentCliError("test")) == 3

    def test_exit_codes_are_distinct_per_category(self):
        categories = {k: v for k, v in EXIT_CODES.items() if k != "ValueError"}
        assert len(set(categories.values())) == len(categories)


class TestRunAndExit:
    """Test the run_and_exit wrapper function."""

    def test_success_returns_value(self):
        assert run_and_exit(lambda: "result") == "result"

    def test_mapped_error_becomes_exit(self, capsys):
        error = AuthError("no credentials for registry.example.io", operation="push-blob")

        def fail():
            raise error

        with pytest.raises(typer.Exit) as exc_info:
            run_and_exit(fail)

        assert exc_info.value.exit_code == 4
        assert exc_info.value.__cause__ is error
        assert "AuthError" in capsys.readouterr().err

    def test_bracketed_identity_kept_in_summary(self, capsys):
        def fail():
            raise StructuralError("blob of 'cli:1.0[os=linux]' missing")

        with pytest.raises(typer.Exit):
            run_and_exit(fail)

        assert "cli:1.0[os=linux]" in capsys.readouterr().err

    def test_unknown_error_uses_fallback(self):
        def fail():
            raise RuntimeError("boom")

        with pytest.raises(typer.Exit) as exc_info:
            run_and_exit(fail)
        assert exc_info.value.exit_code == 3

    @pytest.mark.parametrize("exc", [typer.Exit(code=7), typer.Abort(), typer.BadParameter("bad")])
    def test_typer_exceptions_pass_through(self, exc):
        def fail():
            raise exc

        with pytest.raises(type(exc)) as exc_info:
            run_and_exit(fail)
        assert exc_info.value is exc
