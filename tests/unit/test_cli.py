"""Unit tests for CLI commands."""

import json
import logging
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from bux_oci import __version__
from bux_oci.cli.main import app
from bux_oci.registry.base import RegistryAuth
from bux_oci.registry.oci import OCIRegistry

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_cli(tmp_path, monkeypatch):
    """Keep user config files and logging setup out of CLI runs."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    monkeypatch.delenv("BUX_HOME", raising=False)

    logger = logging.getLogger("bux_oci")
    handlers, level, propagate = logger.handlers[:], logger.level, logger.propagate
    yield
    logger.handlers, logger.propagate = handlers, propagate
    logger.setLevel(level)


@pytest.fixture
def fake_client(fake_registry):
    """Make the CLI's Oci talk to the fake registry."""
    client = OCIRegistry(auth=RegistryAuth(), transport=fake_registry.transport())
    with patch.object(OCIRegistry, "from_config", return_value=client):
        yield client


def invoke(store_dir, *args):
    return runner.invoke(app, ["-q", "--store", str(store_dir), *args])


class TestMainCLI:
    """Tests for main CLI app."""

    def test_help(self):
        """Test --help flag."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "pull" in result.stdout
        assert "prune" in result.stdout

    def test_no_args_shows_help(self):
        """Running without a command prints usage."""
        result = runner.invoke(app, [])
        assert "Usage" in result.output

    def test_version(self):
        """Test version command."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert f"bux-oci version {__version__}" in result.stdout

    def test_missing_config_file(self, tmp_path):
        """An explicit config file that does not exist is an error."""
        result = runner.invoke(app, ["--config", str(tmp_path / "nope.yaml"), "images"])
        assert result.exit_code == 1
        assert "[CONFIG_ERROR]" in result.stdout

    def test_invalid_log_level(self, tmp_path):
        """An unknown log level in the config file is reported."""
        config = tmp_path / "bux.yaml"
        config.write_text("logging:\n  level: LOUD\n")
        result = runner.invoke(app, ["--config", str(config), "--store", str(tmp_path / "store"), "images"])
        assert result.exit_code == 1
        assert "[CONFIG_ERROR]" in result.stdout


class TestImagesCommand:
    """Tests for images command."""

    def test_images_help(self):
        """Test images --help."""
        result = runner.invoke(app, ["images", "--help"])
        assert result.exit_code == 0

    def test_empty_store(self, store_dir):
        """An empty store lists no images."""
        result = invoke(store_dir, "images")
        assert result.exit_code == 0
        assert "No images" in result.stdout

    def test_empty_store_json(self, store_dir):
        """JSON output of an empty store is an empty list."""
        result = invoke(store_dir, "images", "--format", "json")
        assert result.exit_code == 0
        assert json.loads(result.stdout) == []

    def test_lists_pulled_image(self, oci, alpine_image, store_dir):
        """Pulled images appear in the JSON listing."""
        pulled = oci.pull(alpine_image)

        result = invoke(store_dir, "images", "-f", "json")
        assert result.exit_code == 0
        records = json.loads(result.stdout)
        assert [r["reference"] for r in records] == [alpine_image]
        assert records[0]["digest"] == pulled.digest

    def test_table_output(self, oci, alpine_image, store_dir):
        """The default format is a table."""
        oci.pull(alpine_image)

        result = invoke(store_dir, "images")
        assert result.exit_code == 0
        assert "Reference" in result.stdout


class TestInspectCommand:
    """Tests for inspect command."""

    def test_not_found(self, store_dir):
        """Inspecting an unknown image fails with its error code."""
        result = invoke(store_dir, "inspect", "alpine:3.20")
        assert result.exit_code == 1
        assert "[IMAGE_NOT_FOUND]" in result.stdout

    def test_json(self, oci, alpine_image, store_dir):
        """JSON output carries the process config."""
        pulled = oci.pull(alpine_image)

        result = invoke(store_dir, "inspect", alpine_image, "--format", "json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["digest"] == pulled.digest
        assert data["config"]["cmd"] == ["/bin/sh"]
        assert data["config"]["env"]["LANG"] == "C.UTF-8"

    def test_panel(self, oci, alpine_image, store_dir):
        """The default output shows command, user and environment."""
        oci.pull(alpine_image)

        result = invoke(store_dir, "inspect", alpine_image)
        assert result.exit_code == 0
        assert "/bin/sh" in result.stdout
        assert "nobody" in result.stdout
        assert "LANG=C.UTF-8" in result.stdout


class TestPullCommand:
    """Tests for pull command."""

    def test_pull_help(self):
        """Test pull --help."""
        result = runner.invoke(app, ["pull", "--help"])
        assert result.exit_code == 0
        assert "--if-needed" in result.stdout

    def test_pull(self, fake_client, fake_registry, alpine_image, store_dir):
        """A pull extracts the image into the store."""
        result = invoke(store_dir, "pull", alpine_image)

        assert result.exit_code == 0, result.output
        assert "Pulled" in result.stdout
        assert "Rootfs:" in result.stdout
        manifest_digest = fake_registry.manifests[("library/alpine", "3.20")][2]
        assert manifest_digest in result.stdout
        assert (store_dir / "index.json").exists()

    def test_pull_if_needed_skips_download(self, fake_client, fake_registry, alpine_image, store_dir):
        """--if-needed does not download blobs again when current."""
        assert invoke(store_dir, "pull", alpine_image).exit_code == 0
        blob_fetches = sum(fake_registry.blob_fetches.values())

        result = invoke(store_dir, "pull", "--if-needed", alpine_image)
        assert result.exit_code == 0, result.output
        assert sum(fake_registry.blob_fetches.values()) == blob_fetches

    def test_pull_unknown_tag(self, fake_client, alpine_image, store_dir):
        """A missing tag fails with its error code."""
        result = invoke(store_dir, "pull", "registry.test/library/alpine:9.99")
        assert result.exit_code == 1
        assert "[MANIFEST_NOT_FOUND]" in result.stdout

    def test_pull_invalid_reference(self, fake_client, store_dir):
        """A malformed reference is rejected before any request."""
        result = invoke(store_dir, "pull", "Alpine:3.20")
        assert result.exit_code == 1
        assert "[INVALID_REFERENCE]" in result.stdout


class TestRmiCommand:
    """Tests for rmi and prune commands."""

    def test_rmi_unknown(self, store_dir):
        """Removing an unknown image fails."""
        result = invoke(store_dir, "rmi", "alpine")
        assert result.exit_code == 1
        assert "[IMAGE_NOT_FOUND]" in result.stdout

    def test_rmi_then_prune(self, oci, alpine_image, store_dir):
        """rmi forgets the image and prune reclaims its blobs."""
        oci.pull(alpine_image)

        result = invoke(store_dir, "rmi", alpine_image)
        assert result.exit_code == 0
        assert "Removed" in result.stdout
        assert oci.images() == []

        result = invoke(store_dir, "prune")
        assert result.exit_code == 0
        assert "Pruned 3 blobs" in result.stdout
        assert list(oci.blobs.digests()) == []

    def test_prune_empty_store(self, store_dir):
        """Pruning an empty store deletes nothing."""
        result = invoke(store_dir, "prune")
        assert result.exit_code == 0
        assert "Pruned 0 blobs" in result.stdout
