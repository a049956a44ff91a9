"""
component-cli

Command groups:
- archive: create a component archive, add resources, export it
- push: publish a component archive to an OCI registry
- fetch: download a published component version into an archive
- ctf: aggregate archives into a transport bundle and replicate it
"""
from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import List, Optional

import typer

from .archive import ComponentArchive
from .cli_context import CLIContext
from .ctf import BundleState, TransportBundle, replicate
from .export import FORMATS
from .models import LocalFilesystemBlobAccess, OCIRegistryAccess, Relation, Resource, WebAccess
from .operations import run_and_exit
from .operations.printers import (
    print_archive_summary,
    print_bundle_entries,
    print_export_summary,
    print_push_result,
    print_replication_results,
)

app = typer.Typer(name="component-cli", help="Component archive and OCI transport CLI")
archive_app = typer.Typer(help="Create and modify component archives")
ctf_app = typer.Typer(help="Aggregate component archives into transport bundles")
app.add_typer(archive_app, name="archive")
app.add_typer(ctf_app, name="ctf")


@app.callback()
def _main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def _context(registry_config: Optional[List[str]] = None, cc_config: Optional[str] = None,
             allow_plain_http: bool = False, max_workers: Optional[int] = None) -> CLIContext:
    """CLI context from env, with command-line flags taking precedence."""
    context = CLIContext.from_env()
    overrides = {}
    if registry_config:
        overrides["registry_config_paths"] = tuple(registry_config)
    if cc_config:
        overrides["cc_config_path"] = cc_config
    if allow_plain_http:
        overrides["allow_plain_http"] = True
    if max_workers is not None:
        overrides["max_workers"] = max_workers
    if overrides:
        context = CLIContext(settings=dataclasses.replace(context.settings, **overrides))
    return context


def _parse_extra_identity(values: Optional[List[str]]) -> dict:
    extra = {}
    for value in values or []:
        if "=" not in value:
            raise typer.BadParameter(f"extra identity '{value}' must have the form key=value")
        key, val = value.split("=", 1)
        extra[key] = val
    return extra


@archive_app.command("create")
def archive_create(
    path: str = typer.Argument(..., help="Archive directory to create"),
    name: str = typer.Option(..., "--name", help="Component name"),
    version: str = typer.Option(..., "--version", help="Component version"),
    provider: str = typer.Option("internal", "--provider", help="Component provider"),
) -> None:
    """Initialize an empty component archive."""

    def _create() -> None:
        archive = ComponentArchive.create(path, name, version, provider)
        print_archive_summary(archive)

    run_and_exit(_create)


@archive_app.command("add-resource")
def archive_add_resource(
    path: str = typer.Argument(..., help="Component archive directory"),
    name: str = typer.Option(..., "--name", help="Resource name"),
    type_: str = typer.Option(..., "--type", help="Resource type (executable, ociImage, ...)"),
    version: Optional[str] = typer.Option(None, "--version", help="Resource version"),
    relation: Relation = typer.Option(Relation.LOCAL, "--relation", help="local or external"),
    file: Optional[str] = typer.Option(None, "--file", help="File with the resource bytes (local resources)"),
    media_type: Optional[str] = typer.Option(None, "--media-type", help="Layer media type override"),
    image_reference: Optional[str] = typer.Option(None, "--image-reference", help="OCI reference (external)"),
    url: Optional[str] = typer.Option(None, "--url", help="Download URL (external)"),
    extra_identity: Optional[List[str]] = typer.Option(None, "--extra-identity", help="key=value, repeatable"),
    kind: str = typer.Option("resource", "--kind", help="resource, source or componentReference"),
) -> None:
    """Add or replace a resource in a component archive."""

    def _add() -> None:
        archive = ComponentArchive.from_path(path)
        if relation == Relation.LOCAL:
            if not file:
                raise typer.BadParameter("--file is required for local resources")
            access = LocalFilesystemBlobAccess(filename=Path(file).name, media_type=media_type)
        elif image_reference:
            access = OCIRegistryAccess(image_reference=image_reference)
        elif url:
            access = WebAccess(url=url)
        else:
            raise typer.BadParameter("external resources need --image-reference or --url")

        resource = Resource(
            name=name,
            version=version,
            type=type_,
            relation=relation,
            access=access,
            extra_identity=_parse_extra_identity(extra_identity),
        )
        archive.add_resource(resource, file, kind=kind)
        print_archive_summary(archive)

    run_and_exit(_add)


@archive_app.command("export")
def archive_export(
    path: str = typer.Argument(..., help="Component archive directory"),
    out_path: str = typer.Argument(..., help="Output archive path"),
    fmt: str = typer.Option("tar", "--format", help=f"One of: {', '.join(FORMATS)}"),
) -> None:
    """Export a component archive to a deterministic tar file."""

    def _export() -> None:
        if fmt not in FORMATS:
            raise typer.BadParameter(f"Invalid format '{fmt}'. Use one of: {', '.join(FORMATS)}")
        archive = ComponentArchive.from_path(path)
        archive.write_export(out_path, fmt)
        print_export_summary(path, out_path, fmt)

    run_and_exit(_export)


@app.command()
def push(
    args: List[str] = typer.Argument(..., help="[BASE_URL NAME VERSION] PATH"),
    registry_config: Optional[List[str]] = typer.Option(
        None, "--registry-config", help="Docker-style credential file, repeatable"),
    cc_config: Optional[str] = typer.Option(None, "--cc-config", help="Fallback secret config file"),
    allow_plain_http: bool = typer.Option(False, "--allow-plain-http", help="Use HTTP for registries without scheme"),
) -> None:
    """
    Push a component archive to an OCI registry.

    With one argument the descriptor's repository context is used. With
    four, BASE_URL becomes the new repository context and NAME/VERSION must
    match the descriptor.
    """
    if len(args) not in (1, 4):
        raise typer.BadParameter("expected PATH or BASE_URL NAME VERSION PATH")

    def _push() -> None:
        if len(args) == 4:
            base_url, name, version, path = args
        else:
            base_url, name, version, path = None, None, None, args[0]

        context = _context(registry_config, cc_config, allow_plain_http)
        archive = ComponentArchive.from_path(path)
        result = context.pipeline.push(
            archive,
            repository_override=base_url,
            expected_name=name,
            expected_version=version,
        )
        print_push_result(result, archive.identity)

    run_and_exit(_push)


@app.command()
def fetch(
    reference: str = typer.Argument(..., help="Component reference (<base>/component-descriptors/<name>:<version>)"),
    dest: str = typer.Argument(..., help="Destination archive directory"),
    registry_config: Optional[List[str]] = typer.Option(
        None, "--registry-config", help="Docker-style credential file, repeatable"),
    cc_config: Optional[str] = typer.Option(None, "--cc-config", help="Fallback secret config file"),
    allow_plain_http: bool = typer.Option(False, "--allow-plain-http", help="Use HTTP for registries without scheme"),
) -> None:
    """Download a published component version into an archive directory."""

    def _fetch() -> None:
        context = _context(registry_config, cc_config, allow_plain_http)
        archive = context.pipeline.fetch(reference, dest)
        print_archive_summary(archive)

    run_and_exit(_fetch)


@ctf_app.command("add")
def ctf_add(
    ctf_path: str = typer.Argument(..., help="Transport bundle file (created if missing)"),
    archives: List[str] = typer.Argument(..., help="Component archive directories"),
    seal: bool = typer.Option(False, "--seal", help="Seal the bundle after adding"),
) -> None:
    """Add component archives to a transport bundle."""

    def _add() -> None:
        bundle = TransportBundle.open(ctf_path)
        for path in archives:
            bundle.add_archive(ComponentArchive.from_path(path))
        if seal:
            bundle.seal()
        print_bundle_entries(ctf_path, bundle.entries, bundle.state.value)

    run_and_exit(_add)


@ctf_app.command("push")
def ctf_push(
    ctf_path: str = typer.Argument(..., help="Transport bundle file"),
    base_url: str = typer.Argument(..., help="Target repository base URL"),
    registry_config: Optional[List[str]] = typer.Option(
        None, "--registry-config", help="Docker-style credential file, repeatable"),
    cc_config: Optional[str] = typer.Option(None, "--cc-config", help="Fallback secret config file"),
    allow_plain_http: bool = typer.Option(False, "--allow-plain-http", help="Use HTTP for registries without scheme"),
    max_workers: Optional[int] = typer.Option(None, "--max-workers", min=1, help="Concurrent component pushes"),
) -> None:
    """Replicate every component of a transport bundle into a registry."""

    def _push() -> List:
        context = _context(registry_config, cc_config, allow_plain_http, max_workers)
        bundle = TransportBundle.open(ctf_path, create=False)
        if bundle.state == BundleState.EMPTY:
            typer.echo(f"{ctf_path} contains no components")
            return []
        results = replicate(bundle, base_url, context.pipeline, max_workers=context.settings.max_workers)
        print_replication_results(results)
        return results

    results = run_and_exit(_push)
    if any(not r.ok for r in results):
        raise typer.Exit(code=3)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
