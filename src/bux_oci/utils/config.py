"""Configuration file support for bux-oci."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from bux_oci.utils.errors import ConfigurationError


def default_store_dir() -> Path:
    """Return the default store root.

    ``$BUX_HOME`` wins, then ``$XDG_DATA_HOME/bux``, then ``~/.local/share/bux``.
    """
    home = os.environ.get("BUX_HOME")
    if home:
        return Path(home)
    xdg_data = os.environ.get("XDG_DATA_HOME")
    if xdg_data:
        return Path(xdg_data) / "bux"
    return Path.home() / ".local" / "share" / "bux"


class StoreConfig(BaseModel):
    """Local image store configuration."""

    directory: str | None = Field(default=None, description="Store root directory")

    @property
    def path(self) -> Path:
        """Resolved store root."""
        if self.directory:
            return Path(self.directory).expanduser()
        return default_store_dir()


class RegistryConfig(BaseModel):
    """Registry access configuration."""

    timeout: float = Field(default=30.0, description="HTTP timeout in seconds")
    max_retries: int = Field(default=3, ge=0, description="Retries for transient network errors")
    retry_delay: float = Field(default=1.0, ge=0, description="Initial delay between retries")
    retry_backoff: float = Field(default=2.0, ge=1, description="Delay multiplier per retry")
    insecure_registries: list[str] = Field(
        default_factory=list, description="Registries reached over plain HTTP"
    )
    username: str | None = Field(default=None, description="Registry username")
    password: str | None = Field(default=None, description="Registry password")
    token: str | None = Field(default=None, description="Static bearer token")


class PlatformConfig(BaseModel):
    """Override for the platform selected from multi-arch indexes."""

    os: str | None = Field(default=None, description="Operating system (e.g. linux)")
    architecture: str | None = Field(default=None, description="CPU architecture (e.g. arm64)")
    variant: str | None = Field(default=None, description="CPU variant (e.g. v8)")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    structured: bool = Field(default=False, description="Use structured log format")


class BuxOciConfig(BaseModel):
    """Main configuration for bux-oci."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    platform: PlatformConfig = Field(default_factory=PlatformConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def get_config_paths() -> list[Path]:
    """Get possible configuration file paths.

    Returns:
        List of paths to check for configuration files
    """
    paths = []

    paths.append(Path.cwd() / ".bux.yaml")
    paths.append(Path.cwd() / "bux.yaml")

    home = Path.home()
    paths.append(home / ".bux" / "config.yaml")
    paths.append(home / ".config" / "bux" / "config.yaml")

    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        paths.append(Path(xdg_config) / "bux" / "config.yaml")

    return paths


def load_config(config_path: Path | str | None = None) -> BuxOciConfig:
    """Load configuration from file.

    Args:
        config_path: Explicit path to config file. If None, searches default locations.

    Returns:
        Loaded configuration

    Raises:
        ConfigurationError: If an explicit file is missing or any file is invalid
    """
    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            return _load_config_file(path)
        raise ConfigurationError(f"Config file not found: {config_path}")

    for path in get_config_paths():
        if path.exists():
            return _load_config_file(path)

    return BuxOciConfig()


def _load_config_file(path: Path) -> BuxOciConfig:
    """Load configuration from a specific file."""
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read config file {path}: {e}") from e

    if data is None:
        return BuxOciConfig()
    try:
        return BuxOciConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config file {path}: {e}") from e


def save_config(config: BuxOciConfig, config_path: Path | str | None = None) -> Path:
    """Save configuration to file.

    Args:
        config: Configuration to save
        config_path: Path to save to. Defaults to ~/.config/bux/config.yaml

    Returns:
        Path where config was saved
    """
    if config_path is None:
        config_path = Path.home() / ".config" / "bux" / "config.yaml"
    else:
        config_path = Path(config_path)

    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump(mode="json", exclude_defaults=True)
    config_path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))

    return config_path


_config: BuxOciConfig | None = None


def get_config() -> BuxOciConfig:
    """Get the global configuration instance, loading it on first call."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: BuxOciConfig | None) -> None:
    """Set (or with None, reset) the global configuration instance."""
    global _config
    _config = config
