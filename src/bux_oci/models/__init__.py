"""Data models for bux-oci."""

from bux_oci.models.common import ErrorInfo
from bux_oci.models.image import (
    Descriptor,
    Digest,
    ImageConfig,
    ImageIndex,
    Manifest,
    Platform,
)
from bux_oci.models.pull import ProgressSink, PullProgress, PullResult, PullStage
from bux_oci.models.reference import Reference
from bux_oci.models.store import ImageCatalog, ImageRecord, RootfsEntry

__all__ = [
    "ErrorInfo",
    "Descriptor",
    "Digest",
    "ImageConfig",
    "ImageIndex",
    "Manifest",
    "Platform",
    "ProgressSink",
    "PullProgress",
    "PullResult",
    "PullStage",
    "Reference",
    "ImageCatalog",
    "ImageRecord",
    "RootfsEntry",
]
