"""Pull progress and result models."""

from enum import Enum
from pathlib import Path
from typing import Callable

from pydantic import BaseModel, Field

from bux_oci.models.image import ImageConfig


class PullStage(str, Enum):
    """Discrete steps reported while pulling."""

    RESOLVE = "resolve"
    AUTH = "auth"
    MANIFEST = "manifest"
    CONFIG = "config"
    BLOB = "blob"
    BLOB_CACHED = "blob_cached"
    EXTRACT_START = "extract_start"
    EXTRACT_END = "extract_end"
    DONE = "done"


class PullProgress(BaseModel):
    """A progress event delivered to the caller's sink."""

    model_config = {"frozen": True}

    stage: PullStage
    message: str
    current: int | None = Field(default=None, description="1-based blob index")
    total: int | None = Field(default=None, description="Number of blobs")
    digest: str | None = Field(default=None, description="Blob or manifest digest")

    def __str__(self) -> str:
        return self.message


ProgressSink = Callable[[PullProgress], None]


class PullResult(BaseModel):
    """What a successful pull hands to the VM runtime."""

    model_config = {"frozen": True}

    reference: str = Field(description="Canonical image reference")
    digest: str = Field(description="Manifest digest")
    rootfs: Path = Field(description="Extracted root filesystem directory")
    config: ImageConfig = Field(default_factory=ImageConfig, description="Inherited process config")
