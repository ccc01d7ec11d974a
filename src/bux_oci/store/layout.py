"""On-disk layout of the image store.

Layout::

    {root}/
      index.json                      catalog of pulled images
      blobs/<algorithm>/<hex>         content-addressed blobs
      blobs/.staging/                 in-flight downloads
      rootfs/<algorithm>-<hex>/       extracted rootfs, keyed by manifest digest
      rootfs/<algorithm>-<hex>.json   sidecar image config
      rootfs/.staging-*/              in-flight extractions
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from bux_oci.models.image import Digest
from bux_oci.models.store import RootfsEntry
from bux_oci.utils.errors import StorageError

STAGING_PREFIX = ".staging-"


class StoreLayout:
    """Maps digests to paths under a store root."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self.blobs_dir = self.root / "blobs"
        self.blob_staging_dir = self.blobs_dir / ".staging"
        self.rootfs_dir = self.root / "rootfs"
        self.index_path = self.root / "index.json"

    def ensure(self) -> None:
        """Create the store directories."""
        try:
            for directory in (self.blobs_dir, self.blob_staging_dir, self.rootfs_dir):
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create store at {self.root}: {e}", path=str(self.root)) from e

    def blob_path(self, digest: str) -> Path:
        parsed = Digest.parse(digest)
        return self.blobs_dir / parsed.algorithm / parsed.hex

    def rootfs_entry(self, manifest_digest: str) -> RootfsEntry:
        key = Digest.parse(manifest_digest).key
        return RootfsEntry(
            key=key,
            path=self.rootfs_dir / key,
            config_path=self.rootfs_dir / f"{key}.json",
        )

    def new_rootfs_staging(self, manifest_digest: str) -> Path:
        """Create an empty staging directory beside the final rootfs."""
        key = Digest.parse(manifest_digest).key
        self.rootfs_dir.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"{STAGING_PREFIX}{key}-", dir=self.rootfs_dir))

    def stale_staging(self) -> list[Path]:
        """Leftover staging files and directories from interrupted runs."""
        found: list[Path] = []
        for directory in (self.blob_staging_dir, self.rootfs_dir):
            if not directory.is_dir():
                continue
            for child in directory.iterdir():
                if directory == self.blob_staging_dir or child.name.startswith(STAGING_PREFIX):
                    found.append(child)
        return found


def atomic_write(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via a temp file in the same directory and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
