"""
Registry reference construction helpers.

Centralizes the convention that maps a component's effective repository
context, name and version to the OCI reference it is published under:

    <base_url>/component-descriptors/<name>:<version>
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .errors import ValidationError

COMPONENT_DESCRIPTOR_NAMESPACE = "component-descriptors"

_NAME_RE = re.compile(r"^[a-z0-9]+(?:[._-][a-z0-9]+)*(?:/[a-z0-9]+(?:[._-][a-z0-9]+)*)*$")
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")


@dataclass(frozen=True)
class ParsedReference:
    """Components of an OCI reference."""
    scheme: Optional[str]
    host: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def ref(self) -> str:
        """Tag or digest, whichever addresses the manifest."""
        return self.digest or self.tag or "latest"

    def __str__(self) -> str:
        prefix = f"{self.scheme}://" if self.scheme else ""
        suffix = f"@{self.digest}" if self.digest else f":{self.ref}"
        return f"{prefix}{self.host}/{self.repository}{suffix}"


def strip_scheme(url: str) -> str:
    """Remove a leading http:// or https:// from a URL."""
    return re.sub(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", "", url)


def build_reference(base_url: str, name: str, version: str) -> str:
    """
    Build the OCI reference of a component version.

    Args:
        base_url: Effective repository context base URL
        name: Component name (e.g. "github.com/org/component")
        version: Component version, used as tag

    Returns:
        Reference: "<base_url>/component-descriptors/<name>:<version>"

    Examples:
        >>> build_reference("https://example-registry.io/components", "example/foo", "1.0.0")
        'https://example-registry.io/components/component-descriptors/example/foo:1.0.0'

    Raises:
        ValidationError: If any part is empty or not a valid OCI path/tag
    """
    if not base_url or not base_url.strip():
        raise ValidationError("repository base url cannot be empty")
    if not name:
        raise ValidationError("component name cannot be empty")
    if not version:
        raise ValidationError("component version cannot be empty")

    if not _NAME_RE.match(name):
        raise ValidationError(
            f"invalid component name '{name}': must be lowercase alphanumerics separated by '/', '.', '_' or '-'"
        )
    if not _TAG_RE.match(version):
        raise ValidationError(f"invalid component version '{version}': not a valid OCI tag")

    base = base_url.strip().rstrip("/")
    return f"{base}/{COMPONENT_DESCRIPTOR_NAMESPACE}/{name}:{version}"


def parse_reference(reference: str) -> ParsedReference:
    """
    Parse an OCI reference into scheme, host, repository and tag/digest.

    Examples:
        >>> parse_reference("https://example-registry.io/components/component-descriptors/example/foo:1.0.0")
        ParsedReference(scheme='https', host='example-registry.io', repository='components/component-descriptors/example/foo', tag='1.0.0', digest=None)

        >>> parse_reference("localhost:5000/repo@sha256:abc")
        ParsedReference(scheme=None, host='localhost:5000', repository='repo', tag=None, digest='sha256:abc')

    Raises:
        ValidationError: If the reference has no repository path
    """
    if not reference:
        raise ValidationError("reference cannot be empty")

    scheme = None
    rest = reference
    if "://" in reference:
        scheme, rest = reference.split("://", 1)

    if "/" not in rest:
        raise ValidationError(f"invalid reference format: {reference}. Expected <host>/<repository>[:tag]")

    host, path = rest.split("/", 1)
    if not host or not path:
        raise ValidationError(f"invalid reference format: {reference}")

    tag = None
    digest = None
    if "@" in path:
        path, digest = path.split("@", 1)
    else:
        last = path.rsplit("/", 1)[-1]
        if ":" in last:
            path, tag = path.rsplit(":", 1)

    return ParsedReference(scheme=scheme, host=host, repository=path, tag=tag, digest=digest)


__all__ = [
    "COMPONENT_DESCRIPTOR_NAMESPACE",
    "ParsedReference",
    "strip_scheme",
    "build_reference",
    "parse_reference",
]
