"""Container registry clients."""

from bux_oci.registry.auth import AuthState, BearerChallenge, RepositorySession
from bux_oci.registry.base import FetchedManifest, Registry, RegistryAuth
from bux_oci.registry.oci import OCIRegistry

__all__ = [
    "AuthState",
    "BearerChallenge",
    "RepositorySession",
    "FetchedManifest",
    "Registry",
    "RegistryAuth",
    "OCIRegistry",
]
