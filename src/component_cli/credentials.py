"""
Registry credential resolution.

Builds a per-registry keyring from explicit docker-style config files and an
optional fallback source (e.g. a secret-server config). Explicit entries own
every host they cover; the fallback is only asked about the remaining hosts
and only entries with sufficient privilege are accepted. Hosts left
uncovered resolve to anonymous access.
"""
from __future__ import annotations

import base64
import binascii
import dataclasses
import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union, runtime_checkable

import yaml

from .errors import CredentialLookupError
from .reference import strip_scheme

__all__ = [
    "Privilege",
    "CredentialSourceKind",
    "KeyringEntry",
    "Keyring",
    "FallbackCredentialSource",
    "ConfigFileSecretSource",
    "parse_docker_config",
    "default_docker_config_path",
    "resolve_keyring",
    "normalize_prefix",
    "host_of",
]

logger = logging.getLogger(__name__)

# Legacy docker hub keys map onto the registry host
_DOCKER_HUB_ALIASES = {
    "index.docker.io/v1": "index.docker.io",
    "registry-1.docker.io": "index.docker.io",
    "docker.io": "index.docker.io",
}


class Privilege(str, Enum):
    """Access level a credential grants."""
    READ_ONLY = "readonly"
    READ_WRITE = "readwrite"

    def satisfies(self, required: Privilege) -> bool:
        return _PRIVILEGE_RANK[self] >= _PRIVILEGE_RANK[required]


_PRIVILEGE_RANK = {Privilege.READ_ONLY: 0, Privilege.READ_WRITE: 1}


class CredentialSourceKind(str, Enum):
    """Where a keyring entry came from; explicit beats fallback on ties."""
    EXPLICIT = "explicit"
    FALLBACK = "fallback"


_SOURCE_PRECEDENCE = {CredentialSourceKind.FALLBACK: 0, CredentialSourceKind.EXPLICIT: 1}


def normalize_prefix(value: str) -> str:
    """Strip scheme and trailing slashes from a host or reference prefix."""
    prefix = strip_scheme(value.strip()).rstrip("/").lower()
    return _DOCKER_HUB_ALIASES.get(prefix, prefix)


def host_of(reference: str) -> str:
    """Registry host (with port) of a reference or prefix."""
    return normalize_prefix(reference).split("/", 1)[0]


@dataclass(frozen=True)
class KeyringEntry:
    """
    Credential for every reference starting with prefix.

    Invariants:
    - prefix: normalized (no scheme, no trailing slash, lowercase)
    - identity_token: set instead of username/password for token based auth
    """
    prefix: str
    username: str = ""
    password: str = ""
    privilege: Privilege = Privilege.READ_WRITE
    source: CredentialSourceKind = CredentialSourceKind.EXPLICIT
    identity_token: Optional[str] = None

    @property
    def host(self) -> str:
        return self.prefix.split("/", 1)[0]

    def __repr__(self) -> str:
        return (f"KeyringEntry(prefix={self.prefix!r}, username={self.username!r}, "
                f"privilege={self.privilege.value}, source={self.source.value})")


def _matches(prefix: str, target: str) -> bool:
    # host:port compares exactly; tag and digest separators only bound a path
    prefix_host, _, prefix_path = prefix.partition("/")
    target_host, _, target_path = target.partition("/")
    if prefix_host != target_host:
        return False
    if not prefix_path or target_path == prefix_path:
        return True
    return target_path.startswith(prefix_path) and target_path[len(prefix_path)] in "/:@"


class Keyring:
    """
    Read-only set of credentials, looked up by reference.

    The longest matching prefix wins; on equal length an explicit entry
    beats a fallback one.
    """

    def __init__(self, entries: Iterable[KeyringEntry] = ()):
        self._entries: Tuple[KeyringEntry, ...] = tuple(entries)

    @property
    def entries(self) -> Tuple[KeyringEntry, ...]:
        return self._entries

    def hosts(self) -> set:
        return {entry.host for entry in self._entries}

    def get(self, reference: str) -> Optional[KeyringEntry]:
        """
        Find the credential for a reference.

        Returns:
            Best matching entry, or None for anonymous access
        """
        target = normalize_prefix(reference)
        best: Optional[KeyringEntry] = None
        best_key = (-1, -1)
        for entry in self._entries:
            if not _matches(entry.prefix, target):
                continue
            key = (len(entry.prefix), _SOURCE_PRECEDENCE[entry.source])
            if key > best_key:
                best, best_key = entry, key
        return best

    def __repr__(self) -> str:
        return f"Keyring({list(self._entries)!r})"


@runtime_checkable
class FallbackCredentialSource(Protocol):
    """Credential source queried for hosts explicit configs do not cover."""

    def credentials_for(self, host: str, min_privilege: Privilege) -> List[KeyringEntry]:
        """
        Return credentials for host that grant at least min_privilege.

        Raises:
            CredentialLookupError: If the source cannot be queried
        """
        ...


def default_docker_config_path() -> Optional[Path]:
    """$DOCKER_CONFIG/config.json or ~/.docker/config.json if it exists."""
    docker_config_dir = os.getenv("DOCKER_CONFIG", str(Path.home() / ".docker"))
    config_path = Path(docker_config_dir) / "config.json"
    return config_path if config_path.is_file() else None


def _decode_auth(value: str, path: Union[str, Path], key: str) -> Tuple[str, str]:
    try:
        decoded = base64.b64decode(value).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise CredentialLookupError(f"invalid auth value for '{key}' in {path}") from e
    if ":" not in decoded:
        raise CredentialLookupError(f"invalid auth value for '{key}' in {path}: expected user:password")
    username, password = decoded.split(":", 1)
    return username, password


def parse_docker_config(path: Union[str, Path]) -> List[KeyringEntry]:
    """
    Parse a docker-style credential file into explicit keyring entries.

    Format: ``{"auths": {"<host[/path]>": {"auth": base64(user:pass)} | {"username", "password"} | {"identitytoken"}}}``

    Raises:
        CredentialLookupError: If the file is missing or malformed
    """
    try:
        with open(path, "r") as f:
            config = json.load(f)
    except FileNotFoundError as e:
        raise CredentialLookupError(f"registry config {path} does not exist") from e
    except (OSError, json.JSONDecodeError) as e:
        raise CredentialLookupError(f"unable to read registry config {path}: {e}") from e

    if not isinstance(config, dict):
        raise CredentialLookupError(f"registry config {path} must contain a JSON object")

    auths = config.get("auths") or {}
    if not isinstance(auths, dict):
        raise CredentialLookupError(f"'auths' in registry config {path} must be an object")

    entries = []
    for key, auth_entry in auths.items():
        if not isinstance(auth_entry, dict):
            raise CredentialLookupError(f"auth entry '{key}' in {path} must be an object")

        username = auth_entry.get("username", "")
        password = auth_entry.get("password", "")
        if auth_entry.get("auth"):
            username, password = _decode_auth(auth_entry["auth"], path, key)
        identity_token = auth_entry.get("identitytoken")

        if not (username or password or identity_token):
            logger.debug(f"Skipping '{key}' in {path}: no inline credentials")
            continue

        entries.append(KeyringEntry(
            prefix=normalize_prefix(key),
            username=username,
            password=password,
            identity_token=identity_token,
            privilege=Privilege.READ_WRITE,
            source=CredentialSourceKind.EXPLICIT,
        ))

    logger.debug(f"Loaded {len(entries)} credential(s) from {path}")
    return entries


class ConfigFileSecretSource:
    """
    Fallback source backed by a secret-server style config file.

    Format (YAML or JSON)::

        container_registry:
          my-registry-rw:
            host: eu.gcr.io
            image_reference_prefixes: [eu.gcr.io/project]
            username: _json_key
            password: "..."
            privileges: readwrite
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._entries: Optional[List[KeyringEntry]] = None

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> ConfigFileSecretSource:
        return cls(path)

    def _load(self) -> List[KeyringEntry]:
        if self._entries is not None:
            return self._entries

        try:
            data = yaml.safe_load(self.path.read_text())
        except FileNotFoundError as e:
            raise CredentialLookupError(f"secret config {self.path} does not exist") from e
        except (OSError, yaml.YAMLError) as e:
            raise CredentialLookupError(f"unable to read secret config {self.path}: {e}") from e

        registries: Dict[str, Any] = (data or {}).get("container_registry") or {}
        if not isinstance(registries, dict):
            raise CredentialLookupError(f"'container_registry' in {self.path} must be a mapping")

        entries = []
        for name, cfg in registries.items():
            if not isinstance(cfg, dict):
                raise CredentialLookupError(f"registry '{name}' in {self.path} must be a mapping")
            try:
                privilege = Privilege(cfg.get("privileges", Privilege.READ_ONLY.value))
            except ValueError as e:
                raise CredentialLookupError(
                    f"registry '{name}' in {self.path} has unknown privileges '{cfg.get('privileges')}'"
                ) from e

            prefixes = cfg.get("image_reference_prefixes") or [cfg.get("host")]
            for prefix in prefixes:
                if not prefix:
                    continue
                entries.append(KeyringEntry(
                    prefix=normalize_prefix(prefix),
                    username=cfg.get("username", ""),
                    password=cfg.get("password", ""),
                    privilege=privilege,
                    source=CredentialSourceKind.FALLBACK,
                ))

        self._entries = entries
        return entries

    def credentials_for(self, host: str, min_privilege: Privilege) -> List[KeyringEntry]:
        host = host_of(host)
        return [
            entry for entry in self._load()
            if entry.host == host and entry.privilege.satisfies(min_privilege)
        ]


def resolve_keyring(explicit_config_paths: Sequence[Union[str, Path]] = (),
                    fallback: Optional[FallbackCredentialSource] = None,
                    required_privilege: Privilege = Privilege.READ_WRITE,
                    hosts: Optional[Iterable[str]] = None) -> Keyring:
    """
    Assemble the keyring for a run.

    Precedence per host:
    1. Explicit config files; an earlier file wins over a later one for the
       same prefix. Hosts they cover are never queried elsewhere.
    2. The fallback source, for each host in ``hosts`` not covered above.
       Entries below ``required_privilege`` are discarded.
    3. Anything else is anonymous.

    Args:
        explicit_config_paths: Docker-style credential files
        fallback: Fallback credential source
        required_privilege: Minimum privilege the operation needs
        hosts: Registry hosts the operation will talk to

    Raises:
        CredentialLookupError: If any source cannot be read
    """
    explicit: List[KeyringEntry] = []
    seen_prefixes = set()
    for path in explicit_config_paths:
        for entry in parse_docker_config(path):
            if entry.prefix in seen_prefixes:
                logger.debug(f"Ignoring duplicate credential for {entry.prefix} from {path}")
                continue
            seen_prefixes.add(entry.prefix)
            explicit.append(entry)

    covered = {entry.host for entry in explicit}
    from_fallback: List[KeyringEntry] = []
    if fallback is not None and hosts is not None:
        for host in sorted({host_of(h) for h in hosts}):
            if host in covered:
                logger.debug(f"Host {host} covered by explicit registry config")
                continue
            try:
                found = fallback.credentials_for(host, required_privilege)
            except CredentialLookupError:
                raise
            except Exception as e:
                raise CredentialLookupError(f"fallback credential lookup for {host} failed: {e}") from e

            for entry in found:
                if entry.host != host:
                    continue
                if not entry.privilege.satisfies(required_privilege):
                    logger.debug(f"Discarding {entry.privilege.value} credential for {entry.prefix}: "
                                 f"{required_privilege.value} required")
                    continue
                from_fallback.append(dataclasses.replace(entry, source=CredentialSourceKind.FALLBACK))

            if not any(e.host == host for e in from_fallback):
                logger.debug(f"No credentials for {host}, proceeding anonymous")

    return Keyring(explicit + from_fallback)
