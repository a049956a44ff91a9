"""
Human-readable output formatting.

Centralizes all CLI output so commands stay thin. Results go to stdout,
error summaries to stderr.
"""
from __future__ import annotations

from typing import List, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..archive import ComponentArchive
from ..ctf import BundleEntry, ReplicationResult
from ..pipeline import PushResult

_console = Console()
_err_console = Console(stderr=True)


def print_error(exc: BaseException) -> None:
    """Print a single-line error summary to stderr."""
    _err_console.print(f"[bold red]Error:[/] {type(exc).__name__}: {escape(str(exc))}", highlight=False)


def print_archive_summary(archive: ComponentArchive) -> None:
    """
    Print the identity and entries of a component archive.

    Args:
        archive: Archive to display
    """
    descriptor = archive.descriptor
    _console.print(f"[bold]Component:[/] {archive.identity}")
    _console.print(f"[bold]Path:[/] {archive.path}")
    context = descriptor.effective_repository_context
    if context is not None:
        _console.print(f"[bold]Repository:[/] {context.base_url}")

    entries = list(descriptor.iter_entries())
    if not entries:
        _console.print("[dim]No resources defined[/]")
        return

    table = Table(title="Entries")
    table.add_column("Kind", style="cyan")
    table.add_column("Identity")
    table.add_column("Type", style="yellow")
    table.add_column("Relation")
    table.add_column("Access", style="dim")
    for kind, entry in entries:
        table.add_row(kind, escape(entry.identity_str), entry.type, entry.relation.value, entry.access.type)
    _console.print(table)


def print_export_summary(src_dir: str, out_path: str, fmt: str) -> None:
    """Print export operation summary."""
    _console.print(f"Exported {src_dir} to {out_path} ({fmt})")


def print_push_result(result: PushResult, component: str) -> None:
    """
    Print push outcome.

    Args:
        result: Result returned by PushPipeline.push
        component: Component identity
    """
    _console.print(f"[bold]Pushed:[/] {component}")
    _console.print(f"[bold]Reference:[/] {result.reference}")
    _console.print(f"[bold]Manifest:[/] [dim]{result.manifest_digest}[/]")
    _console.print(
        f"[bold]Blobs:[/] {len(result.uploaded_blobs)} uploaded, {len(result.skipped_blobs)} already present"
    )
    if not result.manifest_uploaded:
        _console.print("[dim]Manifest unchanged in registry[/]")


def print_bundle_entries(path: str, entries: Sequence[BundleEntry], state: str) -> None:
    """Print the index of a transport bundle."""
    table = Table(title=f"{path} ({state})")
    table.add_column("Component", style="cyan")
    table.add_column("Digest", style="dim")
    for entry in entries:
        table.add_row(entry.identity, entry.digest)
    _console.print(table)


def print_replication_results(results: List[ReplicationResult]) -> None:
    """
    Print per-component replication outcome.

    Failed entries show the error class and message instead of a reference.
    """
    table = Table(title="Replication")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Detail")
    for result in results:
        if result.ok:
            table.add_row(f"{result.name}:{result.version}", "[green]ok[/]", result.reference or "")
        else:
            table.add_row(
                f"{result.name}:{result.version}", "[red]failed[/]",
                f"{type(result.error).__name__}: {escape(str(result.error))}"
            )
    _console.print(table)

    failed = sum(1 for r in results if not r.ok)
    if failed:
        _console.print(f"[red]{failed} of {len(results)} component(s) failed[/]")
    else:
        _console.print(f"[green]{len(results)} component(s) replicated[/]")
