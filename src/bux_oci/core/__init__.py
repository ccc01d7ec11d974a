"""Core image acquisition logic for bux-oci.

This module provides the main library API for pulling OCI images into
local root filesystems.
"""

from bux_oci.core.reference import format_reference, normalize_reference, parse_reference
from bux_oci.core.extract import LayerExtractor
from bux_oci.core.resolver import ManifestResolver, ResolvedImage
from bux_oci.core.puller import Oci

__all__ = [
    "format_reference",
    "normalize_reference",
    "parse_reference",
    "LayerExtractor",
    "ManifestResolver",
    "ResolvedImage",
    "Oci",
]
