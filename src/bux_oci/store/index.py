"""Persistent catalog of pulled images (``index.json``)."""

from __future__ import annotations

import shutil
from pathlib import Path

from pydantic import ValidationError

from bux_oci.core.reference import normalize_reference, parse_reference
from bux_oci.models.store import ImageCatalog, ImageRecord
from bux_oci.store.layout import StoreLayout, atomic_write
from bux_oci.utils.errors import ImageNotFoundError, StorageError
from bux_oci.utils.logging import get_logger

logger = get_logger("store.index")


class ImageIndex:
    """Catalog mapping references to manifest digests and rootfs entries.

    Every update rebuilds the full record list in memory and replaces the
    catalog file in one rename, so readers never see a partial catalog.
    Concurrent writers from other processes can still lose each other's
    updates; no file locking is done.
    """

    def __init__(self, layout: StoreLayout) -> None:
        self._layout = layout

    @property
    def path(self) -> Path:
        return self._layout.index_path

    def load(self) -> list[ImageRecord]:
        """Read all records. A missing catalog is an empty one.

        Raises:
            StorageError: If the catalog cannot be read or parsed
        """
        if not self.path.exists():
            return []
        try:
            catalog = ImageCatalog.model_validate_json(self.path.read_bytes())
        except ValidationError as e:
            raise StorageError(f"Corrupt image catalog: {e}", path=str(self.path)) from e
        except OSError as e:
            raise StorageError(f"Cannot read image catalog: {e}", path=str(self.path)) from e
        return list(catalog.images)

    def save(self, records: list[ImageRecord]) -> None:
        """Replace the catalog with ``records``."""
        data = ImageCatalog(images=records).model_dump_json(indent=2).encode("utf-8")
        try:
            atomic_write(self.path, data)
        except OSError as e:
            raise StorageError(f"Cannot write image catalog: {e}", path=str(self.path)) from e

    def list(self) -> list[ImageRecord]:
        """All records, most recently pulled first."""
        return sorted(self.load(), key=lambda r: r.created_at, reverse=True)

    def find(self, reference: str) -> ImageRecord | None:
        """Look up a record by reference.

        The lookup is normalized first, so ``ubuntu`` finds
        ``docker.io/library/ubuntu:latest``. A digest-pinned lookup also
        matches any record carrying that manifest digest.
        """
        ref = parse_reference(reference)
        records = self.load()
        wanted = str(ref)
        for record in records:
            if record.reference == wanted:
                return record
        if ref.digest:
            for record in records:
                if record.digest == ref.digest:
                    return record
        return None

    def upsert(self, record: ImageRecord) -> None:
        """Insert ``record``, replacing any record with the same reference."""
        records = [r for r in self.load() if r.reference != record.reference]
        records.append(record)
        self.save(records)
        logger.debug("Recorded %s -> %s", record.reference, record.digest)

    def remove(self, reference: str) -> ImageRecord:
        """Remove an image and, when unshared, its rootfs entry.

        Args:
            reference: Image reference to remove

        Returns:
            The removed record

        Raises:
            ImageNotFoundError: If no record matches (nothing is changed)
        """
        record = self.find(reference)
        if record is None:
            raise ImageNotFoundError(normalize_reference(reference))

        remaining = [r for r in self.load() if r.reference != record.reference]
        self.save(remaining)
        if not any(r.digest == record.digest for r in remaining):
            self.delete_rootfs(record.digest)
        logger.info("Removed %s", record.reference)
        return record

    def delete_rootfs(self, manifest_digest: str) -> None:
        """Delete the rootfs directory and sidecar config of a manifest."""
        entry = self._layout.rootfs_entry(manifest_digest)
        try:
            if entry.path.exists():
                shutil.rmtree(entry.path)
            entry.config_path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to remove rootfs {entry.path}: {e}", path=str(entry.path)) from e
