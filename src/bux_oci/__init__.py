"""bux-oci: OCI image acquisition for micro-VM root filesystems.

This package turns an image reference into an extracted root filesystem
plus the process configuration a VM runtime needs to boot it:

- **Reference parsing**: Docker-style references normalized to canonical form
- **Registry client**: OCI Distribution pulls with bearer-token auth
- **Manifest resolution**: Multi-arch indexes narrowed to the local platform
- **Blob store**: Content-addressed, verified, shared across images
- **Layer extraction**: Whiteouts and opaque directories applied in order
- **Image catalog**: Atomic on-disk record of pulled images

Usage:
    from bux_oci import Oci

    with Oci() as oci:
        result = oci.pull("ubuntu:24.04")
        print(result.rootfs)
        print(result.config.command)

        # Re-use the cached rootfs when the tag has not moved
        result = oci.ensure("ubuntu:24.04")

CLI:
    bux-oci pull <image>
    bux-oci images
    bux-oci inspect <image>
    bux-oci rmi <image>
    bux-oci prune
"""

__version__ = "0.1.0"

# Core classes
from bux_oci.core.puller import Oci
from bux_oci.core.reference import normalize_reference, parse_reference
from bux_oci.core.extract import LayerExtractor
from bux_oci.core.resolver import ManifestResolver

# Models (commonly used)
from bux_oci.models.image import Descriptor, ImageConfig, Manifest, Platform
from bux_oci.models.pull import PullProgress, PullResult, PullStage
from bux_oci.models.reference import Reference
from bux_oci.models.store import ImageRecord

# Registry and store
from bux_oci.registry.oci import OCIRegistry
from bux_oci.store.blobs import BlobStore
from bux_oci.store.index import ImageIndex

# Errors
from bux_oci.utils.errors import BuxOciError

__all__ = [
    # Version
    "__version__",
    # Core
    "Oci",
    "parse_reference",
    "normalize_reference",
    "LayerExtractor",
    "ManifestResolver",
    # Models
    "Descriptor",
    "ImageConfig",
    "Manifest",
    "Platform",
    "PullProgress",
    "PullResult",
    "PullStage",
    "Reference",
    "ImageRecord",
    # Registry and store
    "OCIRegistry",
    "BlobStore",
    "ImageIndex",
    # Errors
    "BuxOciError",
]
