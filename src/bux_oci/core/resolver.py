"""Manifest resolution: reference -> platform manifest + image config."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import ValidationError

from bux_oci.models.image import Descriptor, ImageConfig, ImageIndex, Manifest, Platform
from bux_oci.models.reference import Reference
from bux_oci.registry.auth import RepositorySession
from bux_oci.registry.base import FetchedManifest, Registry
from bux_oci.store.blobs import BlobStore
from bux_oci.utils.config import RegistryConfig
from bux_oci.utils.errors import PlatformNotSupportedError, RegistryError, call_with_retry
from bux_oci.utils.logging import get_logger

logger = get_logger("core.resolver")


@dataclass(frozen=True)
class ResolvedImage:
    """A reference pinned to one platform manifest."""

    reference: Reference
    digest: str
    manifest: Manifest
    config: ImageConfig


class ManifestResolver:
    """Turns a reference into the manifest for the local platform.

    Multi-architecture indexes are narrowed to the entry matching
    ``platform``; single manifests are used as-is. The config blob is
    fetched into the blob store (unless already there) and parsed.

    Resolution has no side effects beyond caching the config blob.
    """

    def __init__(
        self,
        registry: Registry,
        blobs: BlobStore,
        platform: Platform | None = None,
        retry_policy: RegistryConfig | None = None,
    ) -> None:
        self._registry = registry
        self._blobs = blobs
        self._platform = platform or Platform.local()
        self._retry_policy = retry_policy

    @property
    def platform(self) -> Platform:
        return self._platform

    def resolve(self, session: RepositorySession, reference: Reference) -> ResolvedImage:
        """Resolve ``reference`` to its platform manifest and config.

        Raises:
            ManifestNotFoundError: If the tag or digest does not exist
            PlatformNotSupportedError: If an index has no entry for this platform
            RegistryError: On unsupported documents or registry failures
        """
        top = self._fetch(session, reference.selector)
        if top.is_index:
            entry = self._select(reference, top)
            fetched = self._fetch(session, entry.digest)
            if not fetched.is_manifest:
                raise RegistryError(
                    f"Index entry {entry.digest} of {reference} is not an image manifest ({fetched.media_type})"
                )
        elif top.is_manifest:
            fetched = top
        else:
            raise RegistryError(f"Unsupported manifest media type for {reference}: {top.media_type!r}")

        manifest = self._parse(Manifest, fetched, reference)
        config = self._load_config(session, manifest)
        logger.info("Resolved %s to %s (%d layers)", reference, fetched.digest, len(manifest.layers))
        return ResolvedImage(reference=reference, digest=fetched.digest, manifest=manifest, config=config)

    def resolve_digest(self, session: RepositorySession, reference: Reference) -> str:
        """Current manifest digest for ``reference`` using a single registry fetch.

        For an index, the selected entry's digest is read from the index
        itself rather than fetching the platform manifest.
        """
        top = self._fetch(session, reference.selector)
        if top.is_index:
            return self._select(reference, top).digest
        if top.is_manifest:
            return top.digest
        raise RegistryError(f"Unsupported manifest media type for {reference}: {top.media_type!r}")

    def _fetch(self, session: RepositorySession, selector: str) -> FetchedManifest:
        return call_with_retry(self._registry.fetch_manifest, session, selector, policy=self._retry_policy)

    def _select(self, reference: Reference, fetched: FetchedManifest) -> Descriptor:
        index = self._parse(ImageIndex, fetched, reference)
        entry = index.select(self._platform)
        if entry is None:
            raise PlatformNotSupportedError(str(reference), str(self._platform), index.platforms)
        logger.debug("Selected %s for %s from index %s", entry.digest, self._platform, fetched.digest)
        return entry

    def _load_config(self, session: RepositorySession, manifest: Manifest) -> ImageConfig:
        digest = manifest.config.digest
        if self._blobs.has(digest):
            logger.debug("Config %s already cached", digest)
        else:
            call_with_retry(self._store_config, session, digest, policy=self._retry_policy)
        try:
            return ImageConfig.from_blob(self._blobs.read_bytes(digest))
        except ValueError as e:
            raise RegistryError(f"Invalid image config {digest}: {e}") from e

    def _store_config(self, session: RepositorySession, digest: str) -> None:
        self._blobs.put(digest, self._registry.fetch_blob(session, digest))

    @staticmethod
    def _parse(model, fetched: FetchedManifest, reference: Reference):
        try:
            return model.model_validate_json(fetched.content)
        except ValidationError as e:
            raise RegistryError(f"Malformed manifest {fetched.digest} for {reference}: {e}") from e
