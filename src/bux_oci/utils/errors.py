"""Error taxonomy and retry helpers for bux-oci."""

from __future__ import annotations

import functools
import time
from typing import Any, Callable, TypeVar

from bux_oci.models.common import ErrorInfo
from bux_oci.utils.logging import get_logger

T = TypeVar("T")

logger = get_logger("utils.errors")


class BuxOciError(Exception):
    """Base exception for bux-oci."""

    def __init__(self, message: str, code: str = "UNKNOWN_ERROR", details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_error_info(self) -> ErrorInfo:
        """Convert to ErrorInfo model."""
        return ErrorInfo(code=self.code, message=self.message, details=self.details)


class InvalidReferenceError(BuxOciError):
    """Image reference could not be parsed."""

    def __init__(self, reference: str, reason: str):
        super().__init__(
            f"Invalid image reference {reference!r}: {reason}",
            code="INVALID_REFERENCE",
            details={"reference": reference, "reason": reason},
        )


class AuthFailedError(BuxOciError):
    """Registry authentication failed."""

    def __init__(self, message: str = "Authentication failed", status: int | None = None, url: str | None = None):
        details: dict[str, Any] = {}
        if status is not None:
            details["status"] = status
        if url:
            details["url"] = url
        super().__init__(message, code="AUTH_FAILED", details=details)


class ManifestNotFoundError(BuxOciError):
    """Manifest (tag or digest) does not exist in the repository."""

    def __init__(self, reference: str):
        super().__init__(
            f"Manifest not found: {reference}",
            code="MANIFEST_NOT_FOUND",
            details={"reference": reference},
        )


class PlatformNotSupportedError(BuxOciError):
    """No index entry matches the local platform."""

    def __init__(self, reference: str, platform: str, available: list[str] | None = None):
        available = available or []
        message = f"No manifest for platform {platform} in {reference}"
        if available:
            message += f" (available: {', '.join(available)})"
        super().__init__(
            message,
            code="PLATFORM_NOT_SUPPORTED",
            details={"reference": reference, "platform": platform, "available": available},
        )


class BlobNotFoundError(BuxOciError):
    """Blob does not exist in the repository."""

    def __init__(self, digest: str, repository: str | None = None):
        details = {"digest": digest}
        if repository:
            details["repository"] = repository
        super().__init__(f"Blob not found: {digest}", code="BLOB_NOT_FOUND", details=details)


class DigestMismatchError(BuxOciError):
    """Content does not hash to the expected digest."""

    def __init__(self, expected: str, actual: str):
        super().__init__(
            f"Digest mismatch: expected {expected}, got {actual}",
            code="DIGEST_MISMATCH",
            details={"expected": expected, "actual": actual},
        )


class RegistryError(BuxOciError):
    """Registry returned an unexpected response."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        url: str | None = None,
        code: str = "REGISTRY_ERROR",
    ):
        details: dict[str, Any] = {}
        if status is not None:
            details["status"] = status
        if url:
            details["url"] = url
        super().__init__(message, code=code, details=details)
        self.status = status


class RegistryTransportError(RegistryError):
    """Connection-level failure talking to a registry (retryable)."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message, url=url, code="REGISTRY_TRANSPORT")


class ExtractionError(BuxOciError):
    """Layer archive could not be applied to the rootfs."""

    def __init__(self, message: str, layer: str | None = None, member: str | None = None):
        details = {}
        if layer:
            details["layer"] = layer
        if member:
            details["member"] = member
        super().__init__(message, code="EXTRACTION_ERROR", details=details)


class StorageError(BuxOciError):
    """Local store I/O failure or catalog corruption."""

    def __init__(self, message: str, path: str | None = None):
        details = {"path": path} if path else {}
        super().__init__(message, code="STORAGE_ERROR", details=details)


class ImageNotFoundError(BuxOciError):
    """Image is not present in the local catalog."""

    def __init__(self, reference: str):
        super().__init__(
            f"Image not found: {reference}",
            code="IMAGE_NOT_FOUND",
            details={"reference": reference},
        )


class ConfigurationError(BuxOciError):
    """Configuration error."""

    def __init__(self, message: str, config_key: str | None = None):
        details = {"config_key": config_key} if config_key else {}
        super().__init__(message, code="CONFIG_ERROR", details=details)


def retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (RegistryTransportError,),
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator to retry a function on failure.

    Args:
        max_attempts: Maximum number of attempts
        delay: Initial delay between retries in seconds
        backoff: Multiplier for delay after each retry
        exceptions: Tuple of exceptions to catch and retry

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            last_exception: Exception | None = None
            current_delay = delay

            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    if attempt < max_attempts - 1:
                        logger.warning(
                            "Attempt %d/%d failed: %s; retrying in %.1fs",
                            attempt + 1,
                            max_attempts,
                            e,
                            current_delay,
                        )
                        time.sleep(current_delay)
                        current_delay *= backoff

            if last_exception:
                raise last_exception
            raise RuntimeError("Retry failed without exception")

        return wrapper

    return decorator


def call_with_retry(func: Callable[..., T], *args: Any, policy: Any = None, **kwargs: Any) -> T:
    """Call ``func`` retrying transient registry failures.

    Args:
        func: Callable to invoke
        *args: Positional arguments for ``func``
        policy: Object with ``max_retries``, ``retry_delay`` and ``retry_backoff``
            attributes (a RegistryConfig). Defaults apply when None.
        **kwargs: Keyword arguments for ``func``

    Returns:
        Whatever ``func`` returns
    """
    if policy is None:
        wrapped = retry()(func)
    else:
        wrapped = retry(
            max_attempts=max(1, policy.max_retries + 1),
            delay=policy.retry_delay,
            backoff=policy.retry_backoff,
        )(func)
    return wrapped(*args, **kwargs)
