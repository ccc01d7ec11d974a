"""Utility functions for bux-oci."""

from bux_oci.utils.hashing import compute_digest, hash_file, short_digest
from bux_oci.utils.logging import configure_logging, get_logger, get_logger_with_context
from bux_oci.utils.errors import (
    BuxOciError,
    InvalidReferenceError,
    AuthFailedError,
    ManifestNotFoundError,
    PlatformNotSupportedError,
    BlobNotFoundError,
    DigestMismatchError,
    RegistryError,
    RegistryTransportError,
    ExtractionError,
    StorageError,
    ImageNotFoundError,
    ConfigurationError,
    retry,
    call_with_retry,
)
from bux_oci.utils.config import (
    BuxOciConfig,
    StoreConfig,
    RegistryConfig,
    PlatformConfig,
    LoggingConfig,
    load_config,
    save_config,
    get_config,
    set_config,
)

__all__ = [
    # Hashing
    "compute_digest",
    "hash_file",
    "short_digest",
    # Logging
    "configure_logging",
    "get_logger",
    "get_logger_with_context",
    # Errors
    "BuxOciError",
    "InvalidReferenceError",
    "AuthFailedError",
    "ManifestNotFoundError",
    "PlatformNotSupportedError",
    "BlobNotFoundError",
    "DigestMismatchError",
    "RegistryError",
    "RegistryTransportError",
    "ExtractionError",
    "StorageError",
    "ImageNotFoundError",
    "ConfigurationError",
    "retry",
    "call_with_retry",
    # Config
    "BuxOciConfig",
    "StoreConfig",
    "RegistryConfig",
    "PlatformConfig",
    "LoggingConfig",
    "load_config",
    "save_config",
    "get_config",
    "set_config",
]
