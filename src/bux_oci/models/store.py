"""Models persisted in the local image store."""

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field

CATALOG_VERSION = 1


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class ImageRecord(BaseModel):
    """One catalog entry: a reference resolved to a manifest digest."""

    model_config = {"frozen": True}

    reference: str = Field(description="Canonical image reference")
    digest: str = Field(description="Manifest digest")
    size: int = Field(default=0, description="Total compressed layer size in bytes")
    config_digest: str | None = Field(default=None, description="Config blob digest")
    layers: list[str] = Field(default_factory=list, description="Layer digests, base first")
    created_at: str = Field(default_factory=_now, description="ISO 8601 time of the pull")

    @property
    def blobs(self) -> set[str]:
        """Every blob digest this image needs."""
        digests = set(self.layers)
        if self.config_digest:
            digests.add(self.config_digest)
        return digests


class ImageCatalog(BaseModel):
    """Serialized form of ``index.json``."""

    version: int = Field(default=CATALOG_VERSION)
    images: list[ImageRecord] = Field(default_factory=list)


class RootfsEntry(BaseModel):
    """Location of an extracted rootfs and its sidecar config."""

    model_config = {"frozen": True}

    key: str = Field(description="Storage key derived from the manifest digest")
    path: Path = Field(description="Extracted root filesystem directory")
    config_path: Path = Field(description="Sidecar ImageConfig JSON file")

    @property
    def complete(self) -> bool:
        """Both the published directory and its sidecar exist."""
        return self.path.is_dir() and self.config_path.is_file()
