"""Pull orchestration: reference in, extracted rootfs and config out."""

from __future__ import annotations

import shutil
from pathlib import Path

from pydantic import ValidationError

from bux_oci.core.extract import LayerExtractor
from bux_oci.core.reference import normalize_reference, parse_reference
from bux_oci.core.resolver import ManifestResolver, ResolvedImage
from bux_oci.models.image import SUPPORTED_LAYER_MEDIA_TYPES, Digest, ImageConfig, Platform
from bux_oci.models.pull import ProgressSink, PullProgress, PullResult, PullStage
from bux_oci.models.reference import Reference
from bux_oci.models.store import ImageRecord
from bux_oci.registry.auth import RepositorySession
from bux_oci.registry.base import Registry
from bux_oci.registry.oci import OCIRegistry
from bux_oci.store.blobs import BlobStore
from bux_oci.store.index import ImageIndex
from bux_oci.store.layout import StoreLayout, atomic_write
from bux_oci.utils.config import BuxOciConfig, get_config
from bux_oci.utils.errors import (
    ExtractionError,
    ImageNotFoundError,
    RegistryTransportError,
    StorageError,
    call_with_retry,
)
from bux_oci.utils.hashing import short_digest
from bux_oci.utils.logging import get_logger, get_logger_with_context

logger = get_logger("core.puller")


class Oci:
    """Acquires OCI images as extracted root filesystems.

    Ties the registry client, manifest resolver, blob store, layer
    extractor and image catalog together. Everything runs sequentially on
    the calling thread; progress callbacks are invoked inline.

    Example:
        with Oci() as oci:
            result = oci.pull("alpine:3.20")
            print(result.rootfs, result.config.command)
    """

    def __init__(
        self,
        config: BuxOciConfig | None = None,
        registry: Registry | None = None,
        store_dir: Path | str | None = None,
        platform: Platform | None = None,
    ) -> None:
        """Open (creating if needed) an image store.

        Args:
            config: Configuration; the global configuration when None
            registry: Registry client; an :class:`OCIRegistry` built from the
                configuration when None
            store_dir: Store root, overriding the configured directory
            platform: Platform to select from indexes, overriding the
                configured or detected one
        """
        self._config = config or get_config()
        self._layout = StoreLayout(Path(store_dir) if store_dir else self._config.store.path)
        self._blobs = BlobStore(self._layout)
        self._index = ImageIndex(self._layout)
        self._extractor = LayerExtractor()

        self._owns_registry = registry is None
        self._registry = registry or OCIRegistry.from_config(self._config.registry)

        if platform is None:
            wanted = self._config.platform
            platform = Platform.local(wanted.os, wanted.architecture, wanted.variant)
        self._resolver = ManifestResolver(
            self._registry,
            self._blobs,
            platform=platform,
            retry_policy=self._config.registry,
        )

    def __enter__(self) -> "Oci":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Release the registry client if this instance created it."""
        if self._owns_registry and isinstance(self._registry, OCIRegistry):
            self._registry.close()

    @property
    def layout(self) -> StoreLayout:
        return self._layout

    @property
    def blobs(self) -> BlobStore:
        return self._blobs

    @property
    def index(self) -> ImageIndex:
        return self._index

    @property
    def platform(self) -> Platform:
        return self._resolver.platform

    # -- pull ---------------------------------------------------------------

    def pull(self, reference: str, progress: ProgressSink | None = None) -> PullResult:
        """Download an image and extract its root filesystem.

        Blobs already in the store are not downloaded again, and a rootfs
        already extracted for the same manifest digest is reused. Nothing
        is recorded in the catalog unless every step succeeds.

        Args:
            reference: Image reference, e.g. ``ubuntu:24.04``
            progress: Optional callback receiving :class:`PullProgress` events

        Returns:
            Manifest digest, rootfs path and process config

        Raises:
            BuxOciError: Any failure; the catalog is left unchanged
        """
        ref = parse_reference(reference)
        log = get_logger_with_context("core.puller", reference=str(ref))
        _emit(progress, PullStage.RESOLVE, f"Resolving {ref}")

        session = self._authenticate(ref, progress)
        resolved = self._resolver.resolve(session, ref)
        manifest = resolved.manifest
        _emit(
            progress,
            PullStage.MANIFEST,
            f"Manifest {short_digest(resolved.digest)} with {len(manifest.layers)} layers",
            digest=resolved.digest,
        )
        _emit(progress, PullStage.CONFIG, f"Config {short_digest(manifest.config.digest)}", digest=manifest.config.digest)

        for layer in manifest.layers:
            if layer.media_type and layer.media_type not in SUPPORTED_LAYER_MEDIA_TYPES:
                raise ExtractionError(
                    f"Unsupported layer media type {layer.media_type!r} for {layer.digest}",
                    layer=layer.digest,
                )

        self._fetch_layers(session, resolved, progress)
        rootfs = self._materialize(resolved, progress)

        record = ImageRecord(
            reference=str(ref),
            digest=resolved.digest,
            size=manifest.total_size,
            config_digest=manifest.config.digest,
            layers=[layer.digest for layer in manifest.layers],
        )
        self._index.upsert(record)

        log.info("Pulled %s (%s)", ref, short_digest(resolved.digest))
        _emit(progress, PullStage.DONE, f"Pulled {ref}", digest=resolved.digest)
        return PullResult(reference=str(ref), digest=resolved.digest, rootfs=rootfs, config=resolved.config)

    def _authenticate(self, ref: Reference, progress: ProgressSink | None) -> RepositorySession:
        _emit(progress, PullStage.AUTH, f"Authenticating to {ref.registry}")
        session = self._registry.open_session(ref)
        call_with_retry(self._registry.authenticate, session, policy=self._config.registry)
        return session

    def _fetch_layers(
        self,
        session: RepositorySession,
        resolved: ResolvedImage,
        progress: ProgressSink | None,
    ) -> None:
        layers = resolved.manifest.layers
        total = len(layers)
        for i, layer in enumerate(layers, start=1):
            if self._blobs.has(layer.digest):
                logger.debug("Layer %s already in store", layer.digest)
                _emit(
                    progress,
                    PullStage.BLOB_CACHED,
                    f"Layer {i}/{total} {short_digest(layer.digest)} already present",
                    current=i,
                    total=total,
                    digest=layer.digest,
                )
                continue

            call_with_retry(self._download, session, layer.digest, policy=self._config.registry)
            _emit(
                progress,
                PullStage.BLOB,
                f"Layer {i}/{total} {short_digest(layer.digest)} downloaded",
                current=i,
                total=total,
                digest=layer.digest,
            )

    def _download(self, session: RepositorySession, digest: str) -> None:
        self._blobs.put(digest, self._registry.fetch_blob(session, digest))

    def _materialize(self, resolved: ResolvedImage, progress: ProgressSink | None) -> Path:
        """Extract (or reuse) the rootfs for a manifest and write its sidecar config."""
        entry = self._layout.rootfs_entry(resolved.digest)
        layers = resolved.manifest.layers

        if entry.path.is_dir():
            logger.debug("Reusing rootfs %s", entry.path)
            _emit(progress, PullStage.EXTRACT_START, "Using existing rootfs", digest=resolved.digest)
        else:
            _emit(
                progress,
                PullStage.EXTRACT_START,
                f"Extracting {len(layers)} layers",
                total=len(layers),
                digest=resolved.digest,
            )
            staging = self._layout.new_rootfs_staging(resolved.digest)
            try:
                self._extractor.extract([self._blobs.path(layer.digest) for layer in layers], staging)
                self._publish(staging, entry.path)
            except BaseException:
                shutil.rmtree(staging, ignore_errors=True)
                raise

        try:
            atomic_write(entry.config_path, resolved.config.model_dump_json(indent=2).encode("utf-8"))
        except OSError as e:
            raise StorageError(f"Cannot write image config: {e}", path=str(entry.config_path)) from e

        _emit(progress, PullStage.EXTRACT_END, f"Rootfs ready at {entry.path}", digest=resolved.digest)
        return entry.path

    @staticmethod
    def _publish(staging: Path, final: Path) -> None:
        try:
            staging.rename(final)
        except OSError as e:
            if final.is_dir():
                # another pull published the same manifest first
                logger.debug("Rootfs %s appeared during extraction, keeping it", final)
                shutil.rmtree(staging, ignore_errors=True)
                return
            raise StorageError(f"Cannot publish rootfs {final}: {e}", path=str(final)) from e

    # -- cache-aware access ---------------------------------------------------

    def ensure(self, reference: str, progress: ProgressSink | None = None) -> PullResult:
        """Return a current rootfs for ``reference``, pulling only when needed.

        One manifest fetch decides whether the cached entry is still
        current. When the registry cannot be reached at all, a complete
        cached entry is returned instead.

        Raises:
            BuxOciError: When nothing usable is cached and the pull fails
        """
        ref = parse_reference(reference)
        log = get_logger_with_context("core.puller", reference=str(ref))
        record = self._index.find(str(ref))
        cached = self._cached_result(record) if record else None

        try:
            session = self._authenticate(ref, progress)
            digest = self._resolver.resolve_digest(session, ref)
        except RegistryTransportError as e:
            if cached is None:
                raise
            log.warning("Registry unreachable, using cached image %s: %s", short_digest(cached.digest), e)
            _emit(progress, PullStage.DONE, f"Using cached {ref} (offline)", digest=cached.digest)
            return cached

        if cached is not None and cached.digest == digest:
            log.info("%s is up to date (%s)", ref, short_digest(digest))
            _emit(progress, PullStage.DONE, f"{ref} is up to date", digest=digest)
            return cached

        return self.pull(str(ref), progress)

    def inspect(self, reference: str) -> PullResult:
        """Describe a cached image without touching the network.

        Raises:
            ImageNotFoundError: If the image was never pulled
            StorageError: If its rootfs or config is missing from the store
        """
        record = self._index.find(reference)
        if record is None:
            raise ImageNotFoundError(normalize_reference(reference))
        result = self._cached_result(record)
        if result is None:
            entry = self._layout.rootfs_entry(record.digest)
            raise StorageError(f"Rootfs for {record.reference} is incomplete", path=str(entry.path))
        return result

    def _cached_result(self, record: ImageRecord) -> PullResult | None:
        entry = self._layout.rootfs_entry(record.digest)
        if not entry.complete:
            return None
        try:
            config = ImageConfig.model_validate_json(entry.config_path.read_bytes())
        except (ValidationError, OSError) as e:
            raise StorageError(f"Cannot read image config: {e}", path=str(entry.config_path)) from e
        return PullResult(reference=record.reference, digest=record.digest, rootfs=entry.path, config=config)

    # -- catalog --------------------------------------------------------------

    def images(self) -> list[ImageRecord]:
        """All pulled images, most recent first."""
        return self._index.list()

    def remove(self, reference: str) -> ImageRecord:
        """Forget an image. Its blobs stay in the store until :meth:`prune`.

        Raises:
            ImageNotFoundError: If the image is not in the catalog
        """
        return self._index.remove(reference)

    def prune(self) -> list[str]:
        """Delete blobs no catalog record uses, plus interrupted work.

        Also removes leftover staging files and rootfs directories that no
        record points at. Never runs implicitly.

        Returns:
            Digests of the removed blobs
        """
        records = self._index.load()
        referenced: set[str] = set()
        for record in records:
            referenced |= record.blobs
        live_keys = {Digest.parse(record.digest).key for record in records}

        removed = []
        for digest in list(self._blobs.digests()):
            if digest not in referenced and self._blobs.delete(digest):
                removed.append(digest)

        leftovers = self._layout.stale_staging()
        if self._layout.rootfs_dir.is_dir():
            for child in self._layout.rootfs_dir.iterdir():
                key = child.name[: -len(".json")] if child.name.endswith(".json") else child.name
                if not child.name.startswith(".") and key not in live_keys:
                    leftovers.append(child)
        for path in leftovers:
            try:
                if path.is_dir() and not path.is_symlink():
                    shutil.rmtree(path)
                else:
                    path.unlink()
            except OSError as e:
                raise StorageError(f"Failed to remove {path}: {e}", path=str(path)) from e

        logger.info("Pruned %d blobs and %d leftover paths", len(removed), len(leftovers))
        return removed


def _emit(progress: ProgressSink | None, stage: PullStage, message: str, **fields) -> None:
    logger.debug("[%s] %s", stage.value, message)
    if progress is not None:
        progress(PullProgress(stage=stage, message=message, **fields))
