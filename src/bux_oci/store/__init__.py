"""Local image store: blobs, rootfs entries and the image catalog."""

from bux_oci.store.blobs import BlobStore
from bux_oci.store.index import ImageIndex
from bux_oci.store.layout import StoreLayout, atomic_write

__all__ = [
    "BlobStore",
    "ImageIndex",
    "StoreLayout",
    "atomic_write",
]
