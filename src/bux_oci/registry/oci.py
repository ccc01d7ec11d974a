"""OCI Distribution registry client (pull subset)."""

from __future__ import annotations

import json
from typing import Iterator

import httpx

from bux_oci.models.image import (
    DOCKER_MANIFEST_LIST,
    DOCKER_MANIFEST_V2,
    OCI_INDEX,
    OCI_MANIFEST,
    Digest,
)
from bux_oci.models.reference import Reference
from bux_oci.registry.auth import BearerChallenge, RepositorySession
from bux_oci.registry.base import FetchedManifest, RegistryAuth
from bux_oci.utils.config import RegistryConfig
from bux_oci.utils.errors import (
    AuthFailedError,
    BlobNotFoundError,
    DigestMismatchError,
    ManifestNotFoundError,
    RegistryError,
    RegistryTransportError,
)
from bux_oci.utils.hashing import compute_digest, new_hasher
from bux_oci.utils.logging import get_logger

logger = get_logger("registry.oci")


class OCIRegistry:
    """Registry client for OCI-compliant container registries.

    Implements the read side of the OCI Distribution Specification: the
    bearer-token challenge, manifest fetch and streaming blob fetch. All
    content is verified against its digest before it is handed out.

    Authentication state lives on the :class:`RepositorySession` passed to
    each call, never on the client, so sessions for different repositories
    do not interfere.

    Example:
        with OCIRegistry() as registry:
            session = registry.open_session(parse_reference("alpine"))
            registry.authenticate(session)
            manifest = registry.fetch_manifest(session, "latest")
    """

    # Well-known registry API endpoints
    REGISTRY_URLS = {
        "docker.io": "https://registry-1.docker.io",
    }

    MANIFEST_ACCEPT = ", ".join([OCI_INDEX, DOCKER_MANIFEST_LIST, OCI_MANIFEST, DOCKER_MANIFEST_V2])

    def __init__(
        self,
        auth: RegistryAuth | None = None,
        timeout: float = 30.0,
        insecure_registries: list[str] | None = None,
        transport: httpx.BaseTransport | None = None,
        chunk_size: int = 1024 * 1024,
    ) -> None:
        """Initialize the OCI registry client.

        Args:
            auth: Authentication credentials (falls back to environment variables)
            timeout: Request timeout in seconds
            insecure_registries: Registries to reach over plain HTTP
            transport: Custom httpx transport
            chunk_size: Read size for streamed blobs
        """
        self._auth = auth or RegistryAuth.from_env()
        self._timeout = timeout
        self._insecure = set(insecure_registries or [])
        self._transport = transport
        self._chunk_size = chunk_size
        self._client: httpx.Client | None = None

    @classmethod
    def from_config(
        cls,
        config: RegistryConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> "OCIRegistry":
        """Create a client from the registry section of the configuration."""
        auth = None
        if config.token:
            auth = RegistryAuth(token=config.token)
        elif config.username and config.password:
            auth = RegistryAuth(username=config.username, password=config.password)
        return cls(
            auth=auth,
            timeout=config.timeout,
            insecure_registries=config.insecure_registries,
            transport=transport,
        )

    def __enter__(self) -> "OCIRegistry":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    def get_registry_url(self, registry: str) -> str:
        """Get the API base URL for a registry host."""
        if registry in self.REGISTRY_URLS:
            return self.REGISTRY_URLS[registry]
        host = registry.split(":", 1)[0]
        if registry in self._insecure or host in ("localhost", "127.0.0.1"):
            return f"http://{registry}"
        return f"https://{registry}"

    def open_session(self, reference: Reference) -> RepositorySession:
        """Create an unauthenticated session for a reference's repository."""
        return RepositorySession(
            registry=reference.registry,
            repository=reference.repository,
            base_url=self.get_registry_url(reference.registry),
        )

    # -- authentication -------------------------------------------------

    def authenticate(self, session: RepositorySession, scope: str | None = None) -> None:
        """Authenticate ``session`` for pulling.

        An anonymous ``GET /v2/`` either succeeds (no auth needed) or is
        answered with a Bearer challenge, in which case a token is fetched
        from the challenge's realm.

        Args:
            session: Session to authenticate
            scope: Token scope; defaults to ``repository:<repo>:pull``

        Raises:
            AuthFailedError: If the registry demands an unsupported scheme or
                the token endpoint rejects the request
        """
        if self._auth and self._auth.token:
            session.authenticated(self._auth.token)
            return

        url = f"{session.base_url}/v2/"
        response = self._send("GET", url)
        if response.status_code == 401:
            self._handle_challenge(session, response, url, scope)
        elif response.is_success:
            logger.debug("Registry %s allows anonymous access", session.registry)
            session.authenticated(None)
        else:
            raise RegistryError(
                f"Registry API check failed: {response.status_code}",
                status=response.status_code,
                url=url,
            )

    def _handle_challenge(
        self,
        session: RepositorySession,
        response: httpx.Response,
        url: str,
        scope: str | None = None,
    ) -> None:
        challenge = BearerChallenge.parse(response.headers.get("www-authenticate", ""))
        if challenge is None:
            raise AuthFailedError(
                f"Registry {session.registry} requires unsupported authentication",
                status=response.status_code,
                url=url,
            )
        session.challenged(challenge)
        self._fetch_token(session, scope)

    def _fetch_token(self, session: RepositorySession, scope: str | None = None) -> None:
        challenge = session.challenge
        assert challenge is not None

        params = {"scope": scope or challenge.scope or session.default_scope}
        if challenge.service:
            params["service"] = challenge.service

        auth = None
        if self._auth and self._auth.has_credentials:
            auth = (self._auth.username, self._auth.password)

        logger.debug("Requesting token from %s scope=%s", challenge.realm, params["scope"])
        response = self._send("GET", challenge.realm, params=params, auth=auth)
        if not response.is_success:
            raise AuthFailedError(
                f"Token request for {session.repository} failed: {response.status_code}",
                status=response.status_code,
                url=challenge.realm,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise AuthFailedError("Token endpoint returned invalid JSON", url=challenge.realm) from e
        token = data.get("token") or data.get("access_token")
        if not token:
            raise AuthFailedError("Token endpoint returned no token", url=challenge.realm)
        session.authenticated(token)

    # -- transport --------------------------------------------------------

    def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
        stream: bool = False,
    ) -> httpx.Response:
        client = self._get_client()
        request = client.build_request(method, url, headers=headers, params=params)
        try:
            return client.send(request, stream=stream, auth=auth)
        except httpx.TransportError as e:
            raise RegistryTransportError(f"{method} {url} failed: {e}", url=url) from e

    def _request(
        self,
        session: RepositorySession,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        stream: bool = False,
    ) -> httpx.Response:
        """Make an authenticated request, answering one 401 challenge."""
        headers = dict(headers or {})
        response = self._send(method, url, stream=stream, headers={**headers, **session.auth_headers()})

        if response.status_code == 401:
            response.close()
            self._handle_challenge(session, response, url)
            response = self._send(method, url, stream=stream, headers={**headers, **session.auth_headers()})
            if response.status_code == 401:
                response.close()
                raise AuthFailedError(
                    f"Access to {session.registry}/{session.repository} denied",
                    status=401,
                    url=url,
                )

        return response

    # -- content ----------------------------------------------------------

    def fetch_manifest(self, session: RepositorySession, selector: str) -> FetchedManifest:
        """Fetch a manifest or image index by tag or digest.

        Args:
            session: Repository session
            selector: Tag or digest

        Returns:
            The raw document, its media type and verified digest
        """
        url = f"{session.base_url}/v2/{session.repository}/manifests/{selector}"
        response = self._request(session, "GET", url, headers={"Accept": self.MANIFEST_ACCEPT})

        separator = "@" if ":" in selector else ":"
        if response.status_code == 404:
            raise ManifestNotFoundError(f"{session.registry}/{session.repository}{separator}{selector}")
        elif not response.is_success:
            raise RegistryError(
                f"Failed to get manifest: {response.status_code}",
                status=response.status_code,
                url=url,
            )

        content = response.content
        media_type = response.headers.get("content-type", "").split(";")[0].strip()
        if media_type not in (OCI_INDEX, DOCKER_MANIFEST_LIST, OCI_MANIFEST, DOCKER_MANIFEST_V2):
            media_type = _sniff_media_type(content) or media_type

        expected = selector if ":" in selector else _header_digest(response)
        if expected:
            actual = compute_digest(content, Digest.parse(expected).algorithm)
            if actual != expected:
                raise DigestMismatchError(expected, actual)
            digest = expected
        else:
            digest = compute_digest(content)

        logger.debug("Fetched manifest %s (%s, %d bytes)", digest, media_type, len(content))
        return FetchedManifest(content=content, media_type=media_type, digest=digest)

    def fetch_blob(self, session: RepositorySession, digest: str) -> Iterator[bytes]:
        """Stream a blob, hashing it as it arrives.

        The digest is checked once the stream ends; a mismatch raises after
        the last chunk, so consumers must not publish data before the
        iterator is exhausted.

        Args:
            session: Repository session
            digest: Blob digest

        Yields:
            Chunks of blob content
        """
        expected = Digest.parse(digest)
        url = f"{session.base_url}/v2/{session.repository}/blobs/{digest}"
        response = self._request(session, "GET", url, stream=True)

        try:
            if response.status_code == 404:
                raise BlobNotFoundError(digest, session.repository)
            elif not response.is_success:
                raise RegistryError(
                    f"Failed to get blob {digest}: {response.status_code}",
                    status=response.status_code,
                    url=url,
                )

            hasher = new_hasher(expected.algorithm)
            try:
                for chunk in response.iter_bytes(self._chunk_size):
                    hasher.update(chunk)
                    yield chunk
            except httpx.TransportError as e:
                raise RegistryTransportError(f"Download of {digest} interrupted: {e}", url=url) from e

            actual = f"{expected.algorithm}:{hasher.hexdigest()}"
            if actual != digest:
                raise DigestMismatchError(digest, actual)
        finally:
            response.close()

    def fetch_blob_bytes(self, session: RepositorySession, digest: str) -> bytes:
        """Fetch a small blob (such as a config) fully into memory."""
        return b"".join(self.fetch_blob(session, digest))


def _header_digest(response: httpx.Response) -> str | None:
    value = response.headers.get("docker-content-digest")
    if not value:
        return None
    try:
        Digest.parse(value)
    except ValueError:
        logger.debug("Ignoring malformed Docker-Content-Digest header %r", value)
        return None
    return value


def _sniff_media_type(content: bytes) -> str | None:
    """Media type of a manifest whose Content-Type header is unhelpful."""
    try:
        document = json.loads(content)
    except ValueError:
        return None
    if not isinstance(document, dict):
        return None
    if document.get("mediaType"):
        return document["mediaType"]
    if "manifests" in document:
        return OCI_INDEX
    if "config" in document and "layers" in document:
        return OCI_MANIFEST
    return None
