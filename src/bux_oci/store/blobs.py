"""Content-addressable blob storage."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator

from bux_oci.models.image import Digest
from bux_oci.store.layout import StoreLayout
from bux_oci.utils.errors import DigestMismatchError, StorageError
from bux_oci.utils.hashing import hash_file, new_hasher
from bux_oci.utils.logging import get_logger

logger = get_logger("store.blobs")


class BlobStore:
    """Blobs keyed by verified digest, shared by every image that uses them.

    Writes are staged and only published under their content address after
    the computed digest matches. Reads trust what was written: use
    :meth:`verify` to re-hash on demand.

    Example:
        store = BlobStore(StoreLayout("/var/lib/bux"))
        if not store.has(digest):
            store.put(digest, chunks)
        with store.open(digest) as f:
            ...
    """

    def __init__(self, layout: StoreLayout) -> None:
        self._layout = layout
        layout.ensure()

    def path(self, digest: str) -> Path:
        """Final path of a blob (whether or not it exists)."""
        return self._layout.blob_path(digest)

    def has(self, digest: str) -> bool:
        """Check the filesystem for a published blob."""
        return self.path(digest).is_file()

    def open(self, digest: str) -> BinaryIO:
        """Open a published blob for reading.

        Raises:
            StorageError: If the blob is not in the store
        """
        path = self.path(digest)
        try:
            return open(path, "rb")
        except FileNotFoundError as e:
            raise StorageError(f"Blob not in store: {digest}", path=str(path)) from e

    def read_bytes(self, digest: str) -> bytes:
        with self.open(digest) as f:
            return f.read()

    def put(self, digest: str, chunks: Iterable[bytes]) -> str:
        """Stream ``chunks`` into the store under ``digest``.

        Args:
            digest: Expected digest of the content
            chunks: Byte chunks, consumed once

        Returns:
            The committed digest

        Raises:
            DigestMismatchError: If the content hashes to something else
            StorageError: On local I/O failure
        """
        expected = Digest.parse(digest)
        final_path = self.path(digest)
        hasher = new_hasher(expected.algorithm)

        try:
            self._layout.blob_staging_dir.mkdir(parents=True, exist_ok=True)
            fd, staging_name = tempfile.mkstemp(prefix=f"{expected.key}-", dir=self._layout.blob_staging_dir)
        except OSError as e:
            raise StorageError(f"Cannot stage blob {digest}: {e}", path=str(final_path)) from e
        staging = Path(staging_name)

        try:
            size = 0
            with os.fdopen(fd, "wb") as f:
                for chunk in chunks:
                    hasher.update(chunk)
                    f.write(chunk)
                    size += len(chunk)
                f.flush()
                os.fsync(f.fileno())

            actual = f"{expected.algorithm}:{hasher.hexdigest()}"
            if actual != digest:
                raise DigestMismatchError(digest, actual)

            if final_path.exists():
                logger.debug("Blob %s already published, discarding staged copy", digest)
                staging.unlink(missing_ok=True)
                return digest

            final_path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(staging, final_path)
            logger.debug("Stored blob %s (%d bytes)", digest, size)
            return digest
        except OSError as e:
            staging.unlink(missing_ok=True)
            raise StorageError(f"Failed to store blob {digest}: {e}", path=str(final_path)) from e
        except BaseException:
            staging.unlink(missing_ok=True)
            raise

    def put_bytes(self, digest: str, data: bytes) -> str:
        return self.put(digest, [data])

    def verify(self, digest: str) -> bool:
        """Re-hash a stored blob and compare it with its address.

        Raises:
            StorageError: If the blob is not in the store
        """
        path = self.path(digest)
        if not path.is_file():
            raise StorageError(f"Blob not in store: {digest}", path=str(path))
        return hash_file(path, Digest.parse(digest).algorithm) == digest

    def delete(self, digest: str) -> bool:
        """Remove a blob. Returns whether it existed."""
        path = self.path(digest)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete blob {digest}: {e}", path=str(path)) from e
        return True

    def digests(self) -> Iterator[str]:
        """Digests of every published blob."""
        blobs_dir = self._layout.blobs_dir
        if not blobs_dir.is_dir():
            return
        for algorithm_dir in sorted(blobs_dir.iterdir()):
            if algorithm_dir.name.startswith(".") or not algorithm_dir.is_dir():
                continue
            for blob in sorted(algorithm_dir.iterdir()):
                yield f"{algorithm_dir.name}:{blob.name}"
