"""Normalized image reference model."""

from pydantic import BaseModel, Field

DEFAULT_REGISTRY = "docker.io"
DEFAULT_TAG = "latest"
OFFICIAL_NAMESPACE = "library"


class Reference(BaseModel):
    """A parsed, normalized image reference.

    Produced by :func:`bux_oci.core.reference.parse_reference`.
    """

    model_config = {"frozen": True}

    registry: str = Field(description="Registry host[:port]")
    repository: str = Field(description="Repository path, e.g. library/ubuntu")
    tag: str | None = Field(default=None, description="Tag, if given or implied")
    digest: str | None = Field(default=None, description="Digest, if pinned")

    @property
    def name(self) -> str:
        """Registry and repository without a selector."""
        return f"{self.registry}/{self.repository}"

    @property
    def selector(self) -> str:
        """Tag or digest used in the manifest URL; the digest wins."""
        return self.digest or self.tag or DEFAULT_TAG

    def __str__(self) -> str:
        value = self.name
        if self.tag:
            value += f":{self.tag}"
        if self.digest:
            value += f"@{self.digest}"
        return value
