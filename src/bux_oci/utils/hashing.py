"""Content digest helpers."""

import hashlib
from pathlib import Path

SUPPORTED_ALGORITHMS = {"sha256": 64, "sha512": 128}


def new_hasher(algorithm: str = "sha256") -> "hashlib._Hash":
    """Create a hash object for a digest algorithm.

    Raises:
        ValueError: If the algorithm is not a supported digest algorithm
    """
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported digest algorithm: {algorithm}")
    return hashlib.new(algorithm)


def compute_digest(data: bytes, algorithm: str = "sha256") -> str:
    """Compute the ``algorithm:hex`` digest of bytes.

    Args:
        data: Bytes to hash
        algorithm: Digest algorithm

    Returns:
        Digest string such as ``sha256:ab12...``
    """
    hasher = new_hasher(algorithm)
    hasher.update(data)
    return f"{algorithm}:{hasher.hexdigest()}"


def hash_file(path: Path | str, algorithm: str = "sha256", chunk_size: int = 65536) -> str:
    """Compute the ``algorithm:hex`` digest of a file.

    Args:
        path: Path to the file
        algorithm: Digest algorithm
        chunk_size: Size of chunks to read

    Returns:
        Digest string
    """
    hasher = new_hasher(algorithm)
    with open(path, "rb") as f:
        while chunk := f.read(chunk_size):
            hasher.update(chunk)
    return f"{algorithm}:{hasher.hexdigest()}"


def short_digest(digest: str, length: int = 12) -> str:
    """Shorten a digest for display (``sha256:abcdef...`` -> ``abcdef123456``)."""
    _, _, hex_part = digest.partition(":")
    return (hex_part or digest)[:length]
