"""Shared test fixtures for bux-oci tests."""

import gzip
import hashlib
import io
import json
import posixpath
import re
import tarfile
from collections import Counter
from typing import Any

import httpx
import pytest

from bux_oci.core.puller import Oci
from bux_oci.models.image import DOCKER_LAYER_GZIP, OCI_INDEX, OCI_MANIFEST, Platform
from bux_oci.registry.base import RegistryAuth
from bux_oci.registry.oci import OCIRegistry
from bux_oci.utils.config import BuxOciConfig, RegistryConfig, StoreConfig, set_config

REGISTRY_HOST = "registry.test"
TOKEN_REALM = "https://auth.test/token"

_PATH_RE = re.compile(r"^/v2/(?P<repo>.+)/(?P<kind>manifests|blobs)/(?P<ref>[^/]+)$")


def sha256(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


def make_layer(*entries: tuple, compress: bool = True) -> bytes:
    """Build a layer archive in memory.

    Entries are tuples:
        ("file", path, data[, mode])
        ("dir", path[, mode])
        ("symlink", path, target)
        ("hardlink", path, target)
        ("fifo", path)
        ("whiteout", path)      -> <parent>/.wh.<name>
        ("opaque", directory)   -> <directory>/.wh..wh..opq
        ("raw", name, data)     -> regular file with an unchecked name
    """
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
        for kind, name, *rest in entries:
            info = tarfile.TarInfo(name)
            info.mtime = 1700000000
            data: bytes | None = None
            if kind in ("file", "raw"):
                data = rest[0]
                info.mode = rest[1] if len(rest) > 1 else 0o644
            elif kind == "dir":
                info.type = tarfile.DIRTYPE
                info.mode = rest[0] if rest else 0o755
            elif kind == "symlink":
                info.type = tarfile.SYMTYPE
                info.linkname = rest[0]
            elif kind == "hardlink":
                info.type = tarfile.LNKTYPE
                info.linkname = rest[0]
            elif kind == "fifo":
                info.type = tarfile.FIFOTYPE
            elif kind == "whiteout":
                parent, base = posixpath.split(name)
                info.name = posixpath.join(parent, f".wh.{base}")
                data = b""
            elif kind == "opaque":
                info.name = posixpath.join(name, ".wh..wh..opq")
                data = b""
            else:
                raise ValueError(f"unknown entry kind {kind}")

            if data is not None:
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
            else:
                tar.addfile(info)

    raw = buf.getvalue()
    return gzip.compress(raw, mtime=0) if compress else raw


def make_config(
    cmd: list[str] | None = None,
    entrypoint: list[str] | None = None,
    env: list[str] | None = None,
    architecture: str = "amd64",
    **extra: Any,
) -> bytes:
    container = {
        "Cmd": cmd if cmd is not None else ["/bin/sh"],
        "Env": env if env is not None else ["PATH=/usr/local/bin:/usr/bin:/bin"],
    }
    if entrypoint is not None:
        container["Entrypoint"] = entrypoint
    container.update(extra)
    return json.dumps(
        {"architecture": architecture, "os": "linux", "config": container, "rootfs": {"type": "layers"}}
    ).encode()


class FakeRegistry:
    """In-memory OCI registry served through ``httpx.MockTransport``."""

    def __init__(self, require_auth: bool = False) -> None:
        self.require_auth = require_auth
        self.token = "test-token"
        self.manifests: dict[tuple[str, str], tuple[bytes, str, str]] = {}
        self.blobs: dict[tuple[str, str], bytes] = {}
        self.requests: list[httpx.Request] = []
        self.manifest_fetches: Counter = Counter()
        self.blob_fetches: Counter = Counter()
        self.token_requests: list[httpx.Request] = []
        self.fail_blobs: set[str] = set()
        self.flaky_blobs: Counter = Counter()
        self.corrupt_blobs: set[str] = set()
        self.offline = False
        self.omit_digest_header = False

    # -- content ----------------------------------------------------------

    def add_blob(self, repo: str, data: bytes) -> str:
        digest = sha256(data)
        self.blobs[(repo, digest)] = data
        return digest

    def add_manifest(self, repo: str, document: dict, media_type: str, tag: str | None = None) -> str:
        content = json.dumps(document).encode()
        digest = sha256(content)
        self.manifests[(repo, digest)] = (content, media_type, digest)
        if tag:
            self.manifests[(repo, tag)] = (content, media_type, digest)
        return digest

    def add_image(
        self,
        repo: str,
        layers: list[bytes],
        tag: str | None = "latest",
        config: bytes | None = None,
        layer_media_type: str = DOCKER_LAYER_GZIP,
    ) -> str:
        """Publish a single-platform image; returns its manifest digest."""
        config = config if config is not None else make_config()
        document = {
            "schemaVersion": 2,
            "mediaType": OCI_MANIFEST,
            "config": {
                "mediaType": "application/vnd.oci.image.config.v1+json",
                "digest": self.add_blob(repo, config),
                "size": len(config),
            },
            "layers": [
                {"mediaType": layer_media_type, "digest": self.add_blob(repo, layer), "size": len(layer)}
                for layer in layers
            ],
        }
        return self.add_manifest(repo, document, OCI_MANIFEST, tag)

    def add_index(self, repo: str, entries: list[tuple[str, str]], tag: str = "latest") -> str:
        """Publish an index of (platform "os/arch[/variant]", manifest digest) entries."""
        manifests = []
        for platform, digest in entries:
            os_name, arch, *variant = platform.split("/")
            content = self.manifests[(repo, digest)][0]
            entry_platform = {"os": os_name, "architecture": arch}
            if variant:
                entry_platform["variant"] = variant[0]
            manifests.append(
                {"mediaType": OCI_MANIFEST, "digest": digest, "size": len(content), "platform": entry_platform}
            )
        return self.add_manifest(repo, {"schemaVersion": 2, "mediaType": OCI_INDEX, "manifests": manifests}, OCI_INDEX, tag)

    def move_tag(self, repo: str, tag: str, digest: str) -> None:
        self.manifests[(repo, tag)] = self.manifests[(repo, digest)]

    # -- HTTP -------------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("network is unreachable", request=request)

        if request.url.host == "auth.test":
            self.token_requests.append(request)
            return httpx.Response(200, json={"token": self.token})

        if self.require_auth and request.headers.get("authorization") != f"Bearer {self.token}":
            return httpx.Response(
                401,
                headers={"WWW-Authenticate": f'Bearer realm="{TOKEN_REALM}",service="{REGISTRY_HOST}"'},
                json={"errors": [{"code": "UNAUTHORIZED"}]},
            )

        if request.url.path == "/v2/":
            return httpx.Response(200, json={})

        match = _PATH_RE.match(request.url.path)
        if match is None:
            return httpx.Response(404)
        repo, kind, ref = match.group("repo"), match.group("kind"), match.group("ref")

        if kind == "manifests":
            self.manifest_fetches[ref] += 1
            item = self.manifests.get((repo, ref))
            if item is None:
                return httpx.Response(404, json={"errors": [{"code": "MANIFEST_UNKNOWN"}]})
            content, media_type, digest = item
            headers = {"Content-Type": media_type}
            if not self.omit_digest_header:
                headers["Docker-Content-Digest"] = digest
            return httpx.Response(200, content=content, headers=headers)

        self.blob_fetches[ref] += 1
        if ref in self.fail_blobs:
            raise httpx.ConnectError("connection reset by peer", request=request)
        if self.flaky_blobs[ref] > 0:
            self.flaky_blobs[ref] -= 1
            raise httpx.ReadTimeout("timed out", request=request)
        data = self.blobs.get((repo, ref))
        if data is None:
            return httpx.Response(404, json={"errors": [{"code": "BLOB_UNKNOWN"}]})
        if ref in self.corrupt_blobs:
            data = data + b"tampered"
        return httpx.Response(200, content=data, headers={"Content-Type": "application/octet-stream"})


@pytest.fixture(autouse=True)
def reset_global_config():
    """Keep the global configuration from leaking between tests."""
    set_config(None)
    yield
    set_config(None)


@pytest.fixture
def fake_registry() -> FakeRegistry:
    """An empty fake registry at registry.test."""
    return FakeRegistry()


@pytest.fixture
def registry_client(fake_registry):
    """OCIRegistry wired to the fake registry, ignoring environment credentials."""
    client = OCIRegistry(auth=RegistryAuth(), transport=fake_registry.transport())
    yield client
    client.close()


@pytest.fixture
def store_dir(tmp_path):
    return tmp_path / "store"


@pytest.fixture
def bux_config(store_dir) -> BuxOciConfig:
    """Configuration with a temporary store and instant retries."""
    return BuxOciConfig(
        store=StoreConfig(directory=str(store_dir)),
        registry=RegistryConfig(max_retries=2, retry_delay=0.0),
    )


@pytest.fixture
def oci(bux_config, registry_client):
    """Oci instance for linux/amd64 backed by the fake registry."""
    with Oci(bux_config, registry=registry_client, platform=Platform(os="linux", architecture="amd64")) as instance:
        yield instance


@pytest.fixture
def alpine_image(fake_registry) -> str:
    """A two-layer image published as registry.test/library/alpine:3.20."""
    base = make_layer(
        ("dir", "bin"),
        ("file", "bin/busybox", b"\x7fELF busybox", 0o755),
        ("symlink", "bin/sh", "busybox"),
        ("dir", "etc"),
        ("file", "etc/os-release", b"ID=alpine\n"),
        ("file", "etc/motd", b"welcome\n"),
    )
    app = make_layer(
        ("file", "etc/os-release", b"ID=alpine\nVERSION_ID=3.20\n"),
        ("whiteout", "etc/motd"),
    )
    config = make_config(cmd=["/bin/sh"], env=["PATH=/bin", "LANG=C.UTF-8"], WorkingDir="/root", User="nobody")
    fake_registry.add_image("library/alpine", [base, app], tag="3.20", config=config)
    return f"{REGISTRY_HOST}/library/alpine:3.20"


@pytest.fixture
def build_layer():
    """The in-memory layer builder (see :func:`make_layer`)."""
    return make_layer


@pytest.fixture
def build_config():
    """The image config blob builder (see :func:`make_config`)."""
    return make_config
