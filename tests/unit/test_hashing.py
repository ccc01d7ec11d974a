"""Unit tests for digest helpers."""

import hashlib

import pytest

from bux_oci.models.image import Digest
from bux_oci.utils.hashing import compute_digest, hash_file, new_hasher, short_digest


class TestComputeDigest:
    """Tests for compute_digest and hash_file."""

    def test_sha256(self):
        """Test digest format and value."""
        assert compute_digest(b"hello") == "sha256:" + hashlib.sha256(b"hello").hexdigest()

    def test_sha512(self):
        """Test the algorithm prefix follows the algorithm."""
        assert compute_digest(b"hello", "sha512").startswith("sha512:")

    def test_unsupported_algorithm(self):
        """Test unknown algorithms are rejected."""
        with pytest.raises(ValueError):
            new_hasher("md5")

    def test_hash_file_matches_bytes(self, tmp_path):
        """Test file hashing in chunks equals hashing the content."""
        data = b"x" * 200_000
        path = tmp_path / "blob"
        path.write_bytes(data)
        assert hash_file(path, chunk_size=4096) == compute_digest(data)

    def test_short_digest(self):
        """Test display shortening."""
        assert short_digest("sha256:0123456789abcdef") == "0123456789ab"
        assert short_digest("plain", length=3) == "pla"


class TestDigest:
    """Tests for the Digest model."""

    def test_parse(self):
        """Test parsing a valid digest."""
        digest = Digest.parse("sha256:" + "b" * 64)
        assert digest.algorithm == "sha256"
        assert digest.key == "sha256-" + "b" * 64
        assert str(digest) == "sha256:" + "b" * 64

    @pytest.mark.parametrize(
        "value",
        ["", "sha256", "sha256:XYZ", "sha256:" + "a" * 63, "sha512:" + "a" * 64, "crc32:" + "a" * 8],
    )
    def test_parse_invalid(self, value):
        """Test malformed digests raise ValueError."""
        with pytest.raises(ValueError):
            Digest.parse(value)
