"""Unit tests for manifest resolution."""

from unittest.mock import patch

import pytest

from bux_oci.core.reference import parse_reference
from bux_oci.core.resolver import ManifestResolver
from bux_oci.models.image import OCI_MANIFEST, Platform
from bux_oci.store.blobs import BlobStore
from bux_oci.store.layout import StoreLayout
from bux_oci.utils.config import RegistryConfig
from bux_oci.utils.errors import PlatformNotSupportedError, RegistryError
from bux_oci.utils.hashing import compute_digest

AMD64 = Platform(os="linux", architecture="amd64")
ARM64 = Platform(os="linux", architecture="arm64")
REPO = "library/app"
REFERENCE = parse_reference("registry.test/library/app:1.0")


@pytest.fixture
def blobs(tmp_path):
    return BlobStore(StoreLayout(tmp_path / "store"))


@pytest.fixture
def make_resolver(registry_client, blobs):
    def _make(platform=AMD64):
        return ManifestResolver(registry_client, blobs, platform=platform, retry_policy=RegistryConfig(retry_delay=0))

    return _make


def _resolve(registry_client, resolver, reference=REFERENCE):
    session = registry_client.open_session(reference)
    registry_client.authenticate(session)
    return resolver.resolve(session, reference)


@pytest.fixture
def multiarch(fake_registry, build_layer, build_config):
    """An index with amd64 and arm64 images; returns their manifest digests."""
    amd = fake_registry.add_image(REPO, [build_layer(("file", "arch", b"amd64"))], tag=None, config=build_config())
    arm = fake_registry.add_image(
        REPO,
        [build_layer(("file", "arch", b"arm64"))],
        tag=None,
        config=build_config(architecture="arm64"),
    )
    fake_registry.add_index(REPO, [("linux/amd64", amd), ("linux/arm64", arm)], tag="1.0")
    return {"amd64": amd, "arm64": arm}


class TestResolveManifest:
    """Tests for single-platform manifests."""

    def test_single_manifest(self, fake_registry, registry_client, make_resolver, blobs, build_layer, build_config):
        """Test a plain manifest is used directly and its config parsed."""
        config = build_config(cmd=["nginx", "-g", "daemon off;"], entrypoint=["/docker-entrypoint.sh"])
        digest = fake_registry.add_image(REPO, [build_layer(("file", "a", b"a"))], tag="1.0", config=config)

        resolved = _resolve(registry_client, make_resolver())

        assert resolved.digest == digest
        assert len(resolved.manifest.layers) == 1
        assert resolved.config.command == ["/docker-entrypoint.sh", "nginx", "-g", "daemon off;"]
        assert blobs.has(compute_digest(config))

    def test_cached_config_not_fetched(self, fake_registry, registry_client, make_resolver, blobs, build_config):
        """Test a config blob already in the store is not downloaded."""
        config = build_config()
        fake_registry.add_image(REPO, [], tag="1.0", config=config)
        blobs.put_bytes(compute_digest(config), config)

        _resolve(registry_client, make_resolver())

        assert fake_registry.blob_fetches[compute_digest(config)] == 0

    def test_config_fetch_retried(self, fake_registry, registry_client, make_resolver, build_config):
        """Test a transient failure on the config blob is retried."""
        config = build_config()
        fake_registry.add_image(REPO, [], tag="1.0", config=config)
        fake_registry.flaky_blobs[compute_digest(config)] = 1

        resolved = _resolve(registry_client, make_resolver())

        assert resolved.config.cmd == ["/bin/sh"]
        assert fake_registry.blob_fetches[compute_digest(config)] == 2

    def test_malformed_manifest(self, fake_registry, registry_client, make_resolver):
        """Test a manifest without a config descriptor."""
        fake_registry.add_manifest(REPO, {"schemaVersion": 2, "layers": []}, OCI_MANIFEST, tag="1.0")
        with pytest.raises(RegistryError):
            _resolve(registry_client, make_resolver())

    def test_unsupported_media_type(self, fake_registry, registry_client, make_resolver):
        """Test schema 1 manifests are rejected."""
        fake_registry.add_manifest(
            REPO,
            {"schemaVersion": 1, "name": REPO, "fsLayers": []},
            "application/vnd.docker.distribution.manifest.v1+prettyjws",
            tag="1.0",
        )
        with pytest.raises(RegistryError) as exc_info:
            _resolve(registry_client, make_resolver())
        assert "prettyjws" in str(exc_info.value)

    def test_invalid_config_blob(self, fake_registry, registry_client, make_resolver):
        """Test a config blob that is not a JSON object."""
        fake_registry.add_image(REPO, [], tag="1.0", config=b"[1, 2, 3]")
        with pytest.raises(RegistryError):
            _resolve(registry_client, make_resolver())


class TestResolveIndex:
    """Tests for multi-architecture indexes."""

    def test_selects_local_platform(self, registry_client, make_resolver, multiarch):
        """Test the entry for the wanted platform is chosen."""
        assert _resolve(registry_client, make_resolver(AMD64)).digest == multiarch["amd64"]
        resolved = _resolve(registry_client, make_resolver(ARM64))
        assert resolved.digest == multiarch["arm64"]
        assert resolved.config.architecture == "arm64"

    def test_platform_not_supported(self, fake_registry, registry_client, make_resolver, blobs, multiarch):
        """Test a missing platform fails without caching anything."""
        resolver = make_resolver(Platform(os="linux", architecture="riscv64"))

        with pytest.raises(PlatformNotSupportedError) as exc_info:
            _resolve(registry_client, resolver)

        assert exc_info.value.details["available"] == ["linux/amd64", "linux/arm64"]
        assert list(blobs.digests()) == []
        assert sum(fake_registry.blob_fetches.values()) == 0

    def test_variant_matching(self, fake_registry, registry_client, make_resolver, build_config):
        """Test variants are compared only when the wanted platform has one."""
        v6 = fake_registry.add_image(REPO, [], tag=None, config=build_config(architecture="arm", variant="v6"))
        v7 = fake_registry.add_image(REPO, [], tag=None, config=build_config(architecture="arm", variant="v7"))
        fake_registry.add_index(REPO, [("linux/arm/v6", v6), ("linux/arm/v7", v7)], tag="1.0")

        assert _resolve(registry_client, make_resolver(Platform(os="linux", architecture="arm", variant="v7"))).digest == v7
        assert _resolve(registry_client, make_resolver(Platform(os="linux", architecture="arm"))).digest == v6

    @pytest.mark.parametrize("machine, expected", [("armv7l", "v7"), ("armv6l", "v6")])
    def test_local_arm_variant(self, fake_registry, registry_client, make_resolver, build_config, machine, expected):
        """Test a 32-bit ARM host picks the entry for its own variant."""
        v6 = fake_registry.add_image(REPO, [], tag=None, config=build_config(architecture="arm", variant="v6"))
        v7 = fake_registry.add_image(REPO, [], tag=None, config=build_config(architecture="arm", variant="v7"))
        fake_registry.add_index(REPO, [("linux/arm/v6", v6), ("linux/arm/v7", v7)], tag="1.0")

        with patch("bux_oci.models.image._platform.machine", return_value=machine):
            local = Platform.local()

        assert local == Platform(os="linux", architecture="arm", variant=expected)
        assert _resolve(registry_client, make_resolver(local)).digest == {"v6": v6, "v7": v7}[expected]

    def test_local_overrides(self):
        """Test explicit overrides win over the host machine."""
        with patch("bux_oci.models.image._platform.machine", return_value="armv7l"):
            assert Platform.local(architecture="arm64") == ARM64
            assert Platform.local(variant="v6").variant == "v6"

        with patch("bux_oci.models.image._platform.machine", return_value="x86_64"):
            assert Platform.local() == AMD64

    def test_nested_index_rejected(self, fake_registry, registry_client, make_resolver, multiarch):
        """Test an index entry must lead to an image manifest."""
        inner = fake_registry.manifests[(REPO, "1.0")][2]
        fake_registry.add_index(REPO, [("linux/amd64", inner)], tag="nested")

        with pytest.raises(RegistryError):
            _resolve(registry_client, make_resolver(), parse_reference("registry.test/library/app:nested"))

    def test_resolve_digest_single_fetch(self, fake_registry, registry_client, make_resolver, multiarch):
        """Test the current digest is learned from the index alone."""
        session = registry_client.open_session(REFERENCE)
        registry_client.authenticate(session)

        digest = make_resolver(ARM64).resolve_digest(session, REFERENCE)

        assert digest == multiarch["arm64"]
        assert sum(fake_registry.manifest_fetches.values()) == 1
        assert sum(fake_registry.blob_fetches.values()) == 0
