"""Image-related data models: digests, descriptors, manifests, configs."""

from __future__ import annotations

import json
import platform as _platform
import re
from typing import Any

from pydantic import BaseModel, Field, field_validator

# Manifest media types
DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"

MANIFEST_MEDIA_TYPES = (DOCKER_MANIFEST_V2, OCI_MANIFEST)
INDEX_MEDIA_TYPES = (DOCKER_MANIFEST_LIST, OCI_INDEX)

# Layer media types
OCI_LAYER_TAR = "application/vnd.oci.image.layer.v1.tar"
OCI_LAYER_GZIP = "application/vnd.oci.image.layer.v1.tar+gzip"
OCI_LAYER_ZSTD = "application/vnd.oci.image.layer.v1.tar+zstd"
DOCKER_LAYER_GZIP = "application/vnd.docker.image.rootfs.diff.tar.gzip"

SUPPORTED_LAYER_MEDIA_TYPES = (
    OCI_LAYER_TAR,
    OCI_LAYER_GZIP,
    DOCKER_LAYER_GZIP,
    "application/vnd.oci.image.layer.nondistributable.v1.tar",
    "application/vnd.oci.image.layer.nondistributable.v1.tar+gzip",
    "application/vnd.docker.image.rootfs.foreign.diff.tar.gzip",
)

_DIGEST_RE = re.compile(r"^(?P<algorithm>[a-z0-9]+):(?P<hex>[a-f0-9]+)$")
_HEX_LENGTHS = {"sha256": 64, "sha512": 128}

# platform.machine() values mapped to OCI architecture names
_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "armv6l": "arm",
    "armv5l": "arm",
    "armv5tel": "arm",
    "i386": "386",
    "i686": "386",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "riscv64": "riscv64",
}

# 32-bit ARM machine names that imply a variant
_ARM_VARIANTS = {
    "armv5l": "v5",
    "armv5tel": "v5",
    "armv6l": "v6",
    "armv7l": "v7",
}


class Digest(BaseModel):
    """Content digest, e.g. ``sha256:ab12...``."""

    model_config = {"frozen": True}

    algorithm: str = Field(default="sha256", description="Hash algorithm")
    hex: str = Field(description="Lowercase hex-encoded hash value")

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.hex}"

    @property
    def key(self) -> str:
        """Filesystem-safe form (``sha256-ab12...``)."""
        return f"{self.algorithm}-{self.hex}"

    @classmethod
    def parse(cls, digest: str) -> "Digest":
        """Parse and validate a digest string.

        Raises:
            ValueError: If the digest is malformed or uses an unsupported algorithm
        """
        match = _DIGEST_RE.match(digest or "")
        if not match:
            raise ValueError(f"Malformed digest: {digest!r}")
        algorithm = match.group("algorithm")
        hex_value = match.group("hex")
        expected = _HEX_LENGTHS.get(algorithm)
        if expected is None:
            raise ValueError(f"Unsupported digest algorithm: {algorithm}")
        if len(hex_value) != expected:
            raise ValueError(f"Digest {digest!r} must have {expected} hex characters")
        return cls(algorithm=algorithm, hex=hex_value)


class Platform(BaseModel):
    """Target platform of an image manifest."""

    model_config = {"frozen": True}

    os: str = Field(description="Operating system")
    architecture: str = Field(description="CPU architecture")
    variant: str | None = Field(default=None, description="CPU variant")

    def __str__(self) -> str:
        value = f"{self.os}/{self.architecture}"
        if self.variant:
            value += f"/{self.variant}"
        return value

    def matches(self, candidate: "Platform") -> bool:
        """Whether ``candidate`` satisfies this (wanted) platform.

        OS and architecture must be equal; the variant is compared only when
        this platform names one.
        """
        if self.os != candidate.os or self.architecture != candidate.architecture:
            return False
        return self.variant is None or self.variant == candidate.variant

    @classmethod
    def local(
        cls,
        os: str | None = None,
        architecture: str | None = None,
        variant: str | None = None,
    ) -> "Platform":
        """Platform of the running machine, with optional overrides.

        The OS is always ``linux``: the rootfs runs inside a Linux guest.
        On 32-bit ARM hosts the variant comes from the machine name
        (``armv7l`` is ``arm/v7``) unless an architecture override is given.
        """
        machine = _platform.machine().lower()
        if architecture is None and variant is None:
            variant = _ARM_VARIANTS.get(machine)
        return cls(
            os=os or "linux",
            architecture=architecture or _ARCH_ALIASES.get(machine, machine),
            variant=variant,
        )


class Descriptor(BaseModel):
    """Reference to content-addressable data (manifest, config or layer)."""

    model_config = {"frozen": True, "populate_by_name": True}

    media_type: str = Field(default="", alias="mediaType", description="Media type")
    digest: str = Field(description="Content digest")
    size: int = Field(default=0, ge=0, description="Content size in bytes")
    platform: Platform | None = Field(default=None, description="Platform (index entries)")
    annotations: dict[str, str] = Field(default_factory=dict, description="OCI annotations")

    @field_validator("digest")
    @classmethod
    def _validate_digest(cls, value: str) -> str:
        Digest.parse(value)
        return value


class Manifest(BaseModel):
    """Single-platform image manifest."""

    model_config = {"frozen": True, "populate_by_name": True}

    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: str = Field(default=OCI_MANIFEST, alias="mediaType")
    config: Descriptor = Field(description="Config blob descriptor")
    layers: list[Descriptor] = Field(default_factory=list, description="Layers, base first")

    @property
    def total_size(self) -> int:
        """Total compressed layer size."""
        return sum(layer.size for layer in self.layers)

    @property
    def blobs(self) -> list[Descriptor]:
        """Config followed by the layers, in fetch order."""
        return [self.config, *self.layers]


class ImageIndex(BaseModel):
    """Multi-platform manifest list / OCI image index."""

    model_config = {"frozen": True, "populate_by_name": True}

    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: str = Field(default=OCI_INDEX, alias="mediaType")
    manifests: list[Descriptor] = Field(default_factory=list)

    def select(self, wanted: Platform) -> Descriptor | None:
        """First entry whose platform satisfies ``wanted``."""
        for entry in self.manifests:
            if entry.platform is not None and wanted.matches(entry.platform):
                return entry
        return None

    @property
    def platforms(self) -> list[str]:
        """Platforms available in this index."""
        return [str(m.platform) for m in self.manifests if m.platform is not None]


class ImageConfig(BaseModel):
    """Subset of the image configuration relevant to VM execution."""

    model_config = {"frozen": True}

    cmd: list[str] = Field(default_factory=list, description="Default command (CMD)")
    entrypoint: list[str] = Field(default_factory=list, description="Entrypoint (ENTRYPOINT)")
    env: dict[str, str] = Field(default_factory=dict, description="Environment variables")
    working_dir: str | None = Field(default=None, description="Working directory")
    user: str | None = Field(default=None, description="Default user (USER)")
    exposed_ports: list[str] = Field(default_factory=list, description="Exposed ports (EXPOSE)")
    labels: dict[str, str] = Field(default_factory=dict, description="Image labels")
    architecture: str | None = Field(default=None, description="Image architecture")
    os: str | None = Field(default=None, description="Image operating system")

    @property
    def command(self) -> list[str]:
        """Entrypoint followed by cmd: the process the VM should run."""
        return [*self.entrypoint, *self.cmd]

    def env_list(self) -> list[str]:
        """Environment in ``KEY=VALUE`` form, in original order."""
        return [f"{key}={value}" for key, value in self.env.items()]

    @classmethod
    def from_blob(cls, data: bytes) -> "ImageConfig":
        """Parse a config blob.

        The runtime settings live under the top-level ``config`` key.

        Raises:
            ValueError: If the blob is not a JSON object
        """
        document = json.loads(data)
        if not isinstance(document, dict):
            raise ValueError("Image config blob is not a JSON object")
        container_config: dict[str, Any] = document.get("config") or {}

        env: dict[str, str] = {}
        for item in container_config.get("Env") or []:
            key, _, value = item.partition("=")
            env[key] = value

        return cls(
            cmd=container_config.get("Cmd") or [],
            entrypoint=container_config.get("Entrypoint") or [],
            env=env,
            working_dir=container_config.get("WorkingDir") or None,
            user=container_config.get("User") or None,
            exposed_ports=sorted((container_config.get("ExposedPorts") or {}).keys()),
            labels=container_config.get("Labels") or {},
            architecture=document.get("architecture"),
            os=document.get("os"),
        )
