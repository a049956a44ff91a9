"""
Registry HTTP client for the OCI Distribution API.

Implements the OciRegistry protocol over httpx with the Docker Registry v2
auth flow: requests go out anonymously (or with a cached authorization) and
a 401 challenge is answered with Basic credentials or a Bearer token
exchanged with the keyring entry that covers the repository.
"""
from __future__ import annotations

import base64
import hashlib
import logging
import re
import time
from typing import BinaryIO, Dict, Optional, Tuple, Union
from urllib.parse import urljoin

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..credentials import Keyring, KeyringEntry
from ..errors import AuthError, RegistryError, RegistryNotFound
from ..media_types import ACCEPTED_MANIFEST_TYPES

__all__ = ["RegistryHTTP", "USER_AGENT"]

logger = logging.getLogger(__name__)

USER_AGENT = "component-cli/0.1.0"

# Docker convention for identity tokens passed as basic credentials
_IDENTITY_TOKEN_USER = "<token>"


def _parse_challenge(www_authenticate: str) -> Tuple[str, Dict[str, str]]:
    """Split a WWW-Authenticate header into scheme and parameters."""
    scheme, _, rest = www_authenticate.partition(" ")
    params = {m.group(1): m.group(2) for m in re.finditer(r'(\w+)="([^"]*)"', rest)}
    return scheme.lower(), params


class RegistryHTTP:
    """
    HTTP client for one registry host.

    Credentials are looked up per repository in the keyring, so different
    repositories on the same host may use different entries. Authorization
    headers obtained from a challenge are reused for later requests to the
    same repository; bearer tokens are cached until shortly before expiry.
    """

    def __init__(self, registry: str, *, keyring: Optional[Keyring] = None,
                 insecure: bool = False, timeout_s: float = 30.0, retries: int = 0,
                 transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize registry HTTP client.

        Args:
            registry: Registry host with optional scheme (e.g., "localhost:5000", "https://ghcr.io")
            keyring: Credentials; None means anonymous access
            insecure: Use plain HTTP when registry carries no scheme
            timeout_s: Per-request timeout in seconds
            retries: Extra attempts for timed-out requests
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        if registry.startswith("http://") or registry.startswith("https://"):
            self.base_url = registry.rstrip("/")
            self.registry = registry.split("://", 1)[1].rstrip("/")
        else:
            self.registry = registry.rstrip("/")
            self.base_url = f"{'http' if insecure else 'https'}://{self.registry}"
        self.keyring = keyring or Keyring()
        self.retries = retries

        client_kwargs = {}
        if transport is not None:
            client_kwargs["transport"] = transport
        self.client = httpx.Client(
            timeout=httpx.Timeout(timeout_s),
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            **client_kwargs,
        )

        # repo -> Authorization header value
        self._authorization: Dict[str, str] = {}
        # service/scope -> (token, expiry_timestamp)
        self._token_cache: Dict[str, Tuple[str, float]] = {}

    # -- protocol ---------------------------------------------------------

    def head_manifest(self, repo: str, ref: str) -> str:
        response = self._request(
            "HEAD", repo, f"/v2/{repo}/manifests/{ref}", operation="head-manifest",
            reference=self._ref(repo, ref),
            headers={"Accept": ", ".join(ACCEPTED_MANIFEST_TYPES)},
        )
        digest = response.headers.get("Docker-Content-Digest")
        if not digest:
            raise RegistryError(
                f"Registry did not return Docker-Content-Digest header for {repo}:{ref}",
                reference=self._ref(repo, ref), operation="head-manifest"
            )
        return digest

    def get_manifest(self, repo: str, ref: str) -> bytes:
        response = self._request(
            "GET", repo, f"/v2/{repo}/manifests/{ref}", operation="get-manifest",
            reference=self._ref(repo, ref),
            headers={"Accept": ", ".join(ACCEPTED_MANIFEST_TYPES)},
        )
        return response.content

    def put_manifest(self, repo: str, media_type: str, payload: bytes, tag: str) -> str:
        local_digest = f"sha256:{hashlib.sha256(payload).hexdigest()}"
        response = self._request(
            "PUT", repo, f"/v2/{repo}/manifests/{tag}", operation="push-manifest",
            reference=self._ref(repo, tag),
            headers={"Content-Type": media_type},
            content=payload,
        )
        server_digest = response.headers.get("Docker-Content-Digest", local_digest)
        if server_digest != local_digest:
            raise RegistryError(
                f"Manifest digest mismatch: registry reported {server_digest}, expected {local_digest}",
                reference=self._ref(repo, tag), operation="push-manifest"
            )
        logger.debug(f"Pushed manifest {local_digest} to {self._ref(repo, tag)}")
        return local_digest

    def get_blob(self, repo: str, digest: str) -> bytes:
        response = self._request(
            "GET", repo, f"/v2/{repo}/blobs/{digest}", operation="get-blob",
            reference=f"{self.registry}/{repo}@{digest}",
        )
        data = response.content
        actual = f"sha256:{hashlib.sha256(data).hexdigest()}"
        if actual != digest:
            raise RegistryError(
                f"Blob digest mismatch: expected {digest}, got {actual}",
                reference=f"{self.registry}/{repo}@{digest}", operation="get-blob"
            )
        return data

    def put_blob(self, repo: str, digest: str, data: Union[bytes, BinaryIO],
                 size: int | None = None) -> None:
        """Monolithic upload: POST to open an upload session, PUT the bytes with ?digest=."""
        reference = f"{self.registry}/{repo}@{digest}"
        start = self._request(
            "POST", repo, f"/v2/{repo}/blobs/uploads/", operation="push-blob",
            reference=reference,
        )
        location = start.headers.get("Location")
        if not location:
            raise RegistryError(
                f"Registry did not return upload location for {repo}",
                reference=reference, operation="push-blob", status_code=start.status_code
            )

        upload_url = httpx.URL(urljoin(self.base_url + "/", location)).copy_merge_params({"digest": digest})
        headers = {"Content-Type": "application/octet-stream"}
        content = data if isinstance(data, bytes) else data.read()
        if size is not None and len(content) != size:
            raise RegistryError(
                f"Blob {digest} has {len(content)} bytes, expected {size}",
                reference=reference, operation="push-blob"
            )
        self._request(
            "PUT", repo, str(upload_url), operation="push-blob",
            reference=reference, headers=headers, content=content,
        )
        logger.debug(f"Uploaded blob {digest} to {self.registry}/{repo}")

    def blob_exists(self, repo: str, digest: str) -> bool:
        try:
            self._request(
                "HEAD", repo, f"/v2/{repo}/blobs/{digest}", operation="head-blob",
                reference=f"{self.registry}/{repo}@{digest}",
            )
        except RegistryNotFound:
            return False
        return True

    # -- transport --------------------------------------------------------

    def _ref(self, repo: str, ref: str) -> str:
        sep = "@" if ref.startswith("sha256:") else ":"
        return f"{self.registry}/{repo}{sep}{ref}"

    def _send(self, method: str, url: str, headers: Dict[str, str], **kwargs) -> httpx.Response:
        """Send once, retrying timeouts up to self.retries extra times."""
        for attempt in Retrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=10),
            retry=retry_if_exception_type(httpx.TimeoutException),
            reraise=True,
        ):
            with attempt:
                return self.client.request(method, url, headers=headers, **kwargs)

    def _request(self, method: str, repo: str, path: str, *, operation: str,
                 reference: str, headers: Optional[dict] = None, **kwargs) -> httpx.Response:
        """
        Make HTTP request with transparent Basic/Bearer auth flow.

        Handles 401 responses by:
        1. Parsing WWW-Authenticate for the challenge scheme
        2. Looking up the keyring entry covering the repository
        3. Answering with Basic credentials or an exchanged Bearer token
        4. Retrying the original request once with the Authorization header
        """
        url = urljoin(self.base_url, path)
        request_headers = dict(headers or {})
        if repo in self._authorization:
            request_headers["Authorization"] = self._authorization[repo]

        try:
            response = self._send(method, url, request_headers, **kwargs)

            if response.status_code == 401:
                entry = self.keyring.get(f"{self.registry}/{repo}")
                if entry is None:
                    raise AuthError(
                        f"Registry requires authentication for {reference} and no credentials are configured",
                        operation=operation
                    )
                authorization = self._answer_challenge(
                    response.headers.get("WWW-Authenticate", ""), entry, operation, reference
                )
                self._authorization[repo] = authorization
                request_headers["Authorization"] = authorization
                response = self._send(method, url, request_headers, **kwargs)
        except httpx.TimeoutException as e:
            raise RegistryError(
                f"Timeout talking to registry: {e}",
                reference=reference, operation=operation, retryable=True
            ) from e
        except httpx.RequestError as e:
            raise RegistryError(
                f"Network error talking to registry: {e}",
                reference=reference, operation=operation, retryable=True
            ) from e

        self._raise_for_status(response, reference, operation)
        return response

    def _raise_for_status(self, response: httpx.Response, reference: str, operation: str) -> None:
        status = response.status_code
        if status < 400:
            return
        if status in (401, 403):
            raise AuthError(f"Registry rejected credentials for {reference} (HTTP {status})", operation=operation)
        if status == 404:
            raise RegistryNotFound(
                f"Not found: {reference}", reference=reference, status_code=status, operation=operation
            )
        raise RegistryError(
            f"Registry error {status} for {reference}",
            reference=reference, status_code=status, operation=operation,
            retryable=status == 429 or status >= 500
        )

    def _answer_challenge(self, www_authenticate: str, entry: KeyringEntry,
                          operation: str, reference: str) -> str:
        scheme, params = _parse_challenge(www_authenticate)
        username = entry.username
        password = entry.password
        if entry.identity_token:
            username, password = username or _IDENTITY_TOKEN_USER, entry.identity_token

        if scheme == "basic":
            credentials = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
            return f"Basic {credentials}"

        if scheme == "bearer":
            return f"Bearer {self._exchange_token(params, username, password, operation, reference)}"

        raise AuthError(f"Unsupported auth challenge '{www_authenticate}' for {reference}", operation=operation)

    def _exchange_token(self, params: Dict[str, str], username: str, password: str,
                        operation: str, reference: str) -> str:
        realm = params.get("realm")
        service = params.get("service")
        scope = params.get("scope")
        if not realm:
            raise AuthError(f"Bearer challenge without realm for {reference}", operation=operation)

        cache_key = f"{service or ''}:{scope or ''}:{username}"
        cached = self._token_cache.get(cache_key)
        if cached and time.time() < cached[1] - 30:
            return cached[0]

        query = {k: v for k, v in (("service", service), ("scope", scope)) if v}
        try:
            auth_response = self.client.get(realm, auth=(username, password), params=query)
        except httpx.RequestError as e:
            raise RegistryError(
                f"Token exchange with {realm} failed: {e}",
                reference=reference, operation=operation, retryable=True
            ) from e
        if auth_response.status_code in (401, 403):
            raise AuthError(f"Token exchange rejected credentials for {reference}", operation=operation)
        if auth_response.status_code >= 400:
            raise RegistryError(
                f"Token exchange with {realm} failed with HTTP {auth_response.status_code}",
                reference=reference, operation=operation, status_code=auth_response.status_code
            )

        token_data = auth_response.json()
        token = token_data.get("token") or token_data.get("access_token")
        if not token:
            raise AuthError(f"Token exchange for {reference} returned no token", operation=operation)

        expires_in = token_data.get("expires_in", 3600)
        self._token_cache[cache_key] = (token, time.time() + expires_in)
        return token

    def close(self):
        """Close HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
