"""Base registry protocol and types."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Iterator, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from bux_oci.models.image import INDEX_MEDIA_TYPES, MANIFEST_MEDIA_TYPES

if TYPE_CHECKING:
    from bux_oci.models.reference import Reference
    from bux_oci.registry.auth import RepositorySession


class RegistryAuth(BaseModel):
    """Authentication credentials for a container registry."""

    model_config = {"frozen": True}

    username: str | None = Field(default=None, description="Registry username")
    password: str | None = Field(default=None, description="Registry password or token")
    token: str | None = Field(default=None, description="Bearer token")

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)

    @classmethod
    def from_env(cls) -> "RegistryAuth | None":
        """Create auth from environment variables.

        Looks for BUX_REGISTRY_USERNAME and BUX_REGISTRY_PASSWORD,
        or BUX_REGISTRY_TOKEN for token auth.
        """
        username = os.environ.get("BUX_REGISTRY_USERNAME")
        password = os.environ.get("BUX_REGISTRY_PASSWORD")
        token = os.environ.get("BUX_REGISTRY_TOKEN")

        if token:
            return cls(token=token)
        if username and password:
            return cls(username=username, password=password)
        return None


class FetchedManifest(BaseModel):
    """Raw manifest or index document as served by the registry."""

    model_config = {"frozen": True}

    content: bytes = Field(description="Exact bytes served")
    media_type: str = Field(description="Content type reported by the registry")
    digest: str = Field(description="Verified digest of the content")

    @property
    def is_index(self) -> bool:
        return self.media_type in INDEX_MEDIA_TYPES

    @property
    def is_manifest(self) -> bool:
        return self.media_type in MANIFEST_MEDIA_TYPES


@runtime_checkable
class Registry(Protocol):
    """Protocol for the registry operations the pull pipeline needs.

    Every method may raise ``RegistryTransportError`` for connection-level
    failures; callers decide whether to retry. Protocol-level rejections
    raise the specific error named below and must not be retried.
    """

    def open_session(self, reference: "Reference") -> "RepositorySession":
        """Create an unauthenticated session for the reference's repository."""
        ...

    def authenticate(self, session: "RepositorySession", scope: str | None = None) -> None:
        """Run the challenge/token exchange for ``session``.

        Raises:
            AuthFailedError: If the token endpoint rejects the request
        """
        ...

    def fetch_manifest(self, session: "RepositorySession", selector: str) -> FetchedManifest:
        """Fetch a manifest or index by tag or digest.

        Raises:
            ManifestNotFoundError: On 404
            DigestMismatchError: If the content does not hash to the expected digest
            RegistryError: On any other non-2xx
        """
        ...

    def fetch_blob(self, session: "RepositorySession", digest: str) -> Iterator[bytes]:
        """Stream a blob, verifying its digest at end of stream.

        Raises:
            BlobNotFoundError: On 404
            DigestMismatchError: If the streamed content does not hash to ``digest``
        """
        ...
