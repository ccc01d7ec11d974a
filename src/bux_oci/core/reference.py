"""Docker-style image reference parsing and normalization."""

from __future__ import annotations

import re

from bux_oci.models.image import Digest
from bux_oci.models.reference import (
    DEFAULT_REGISTRY,
    DEFAULT_TAG,
    OFFICIAL_NAMESPACE,
    Reference,
)
from bux_oci.utils.errors import InvalidReferenceError

NAME_TOTAL_LENGTH_MAX = 255

_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
DOMAIN_RE = re.compile(rf"^{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*(?::[0-9]+)?$")
PATH_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
TAG_RE = re.compile(r"^[\w][\w.-]{0,127}$")

# Aliases that all mean the public Docker Hub registry
_DOCKER_HUB_ALIASES = {"docker.io", "index.docker.io", "registry-1.docker.io"}


def _split_domain(name: str) -> tuple[str, str]:
    """Split ``name`` into (registry, repository).

    The first component is a registry only if it looks like a host: it
    contains a dot or a port, is ``localhost``, or has uppercase letters.
    """
    first, sep, rest = name.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost" or first.lower() != first):
        return first, rest
    return DEFAULT_REGISTRY, name


def parse_reference(text: str) -> Reference:
    """Parse an image reference into its normalized form.

    Examples:
        ``ubuntu`` -> ``docker.io/library/ubuntu:latest``
        ``ghcr.io/org/app:v1`` -> ``ghcr.io/org/app:v1``
        ``alpine@sha256:<hex>`` -> ``docker.io/library/alpine@sha256:<hex>``

    Args:
        text: Reference in ``[registry/]repository[:tag][@digest]`` form

    Returns:
        Normalized Reference

    Raises:
        InvalidReferenceError: If any component violates the reference grammar
    """
    if not text:
        raise InvalidReferenceError(text, "reference is empty")
    if text != text.strip() or any(c.isspace() for c in text):
        raise InvalidReferenceError(text, "reference contains whitespace")

    remainder = text
    digest: str | None = None
    if "@" in remainder:
        remainder, _, digest = remainder.partition("@")
        try:
            Digest.parse(digest)
        except ValueError as e:
            raise InvalidReferenceError(text, str(e)) from e

    tag: str | None = None
    colon = remainder.rfind(":")
    if colon > remainder.rfind("/"):
        remainder, tag = remainder[:colon], remainder[colon + 1 :]
        if not TAG_RE.match(tag):
            raise InvalidReferenceError(text, f"invalid tag {tag!r}")

    if not remainder:
        raise InvalidReferenceError(text, "repository name is empty")

    registry, repository = _split_domain(remainder)
    if not DOMAIN_RE.match(registry):
        raise InvalidReferenceError(text, f"invalid registry {registry!r}")
    if registry in _DOCKER_HUB_ALIASES:
        registry = DEFAULT_REGISTRY

    for component in repository.split("/"):
        if not PATH_COMPONENT_RE.match(component):
            raise InvalidReferenceError(text, f"invalid repository component {component!r}")

    if registry == DEFAULT_REGISTRY and "/" not in repository:
        repository = f"{OFFICIAL_NAMESPACE}/{repository}"

    if len(f"{registry}/{repository}") > NAME_TOTAL_LENGTH_MAX:
        raise InvalidReferenceError(
            text, f"repository name must not exceed {NAME_TOTAL_LENGTH_MAX} characters"
        )

    if tag is None and digest is None:
        tag = DEFAULT_TAG

    return Reference(registry=registry, repository=repository, tag=tag, digest=digest)


def format_reference(reference: Reference) -> str:
    """Render a Reference in canonical form (inverse of :func:`parse_reference`)."""
    return str(reference)


def normalize_reference(text: str) -> str:
    """Parse and re-format a reference string."""
    return format_reference(parse_reference(text))
