"""Main CLI entry point for bux-oci."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from bux_oci.cli import images, inspect, pull, rmi

app = typer.Typer(
    name="bux-oci",
    help="Pull OCI images into root filesystems for micro-VMs.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

# Register subcommands
app.command(name="pull")(pull.pull_cmd)
app.command(name="images")(images.images_cmd)
app.command(name="inspect")(inspect.inspect_cmd)
app.command(name="rmi")(rmi.rmi_cmd)
app.command(name="prune")(rmi.prune_cmd)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output"),
    store: Optional[Path] = typer.Option(
        None,
        "--store",
        "-s",
        help="Image store directory",
        envvar="BUX_HOME",
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a config YAML file",
    ),
) -> None:
    """
    bux-oci: Pull OCI images into root filesystems for micro-VMs.

    - [bold]pull[/bold]: Download an image and extract its rootfs
    - [bold]images[/bold]: List pulled images
    - [bold]inspect[/bold]: Show an image's rootfs and process config
    - [bold]rmi[/bold]: Remove an image
    - [bold]prune[/bold]: Delete unused blobs
    """
    from bux_oci.cli.utils import handle_error
    from bux_oci.utils.config import StoreConfig, load_config, set_config
    from bux_oci.utils.errors import ConfigurationError
    from bux_oci.utils.logging import configure_logging

    try:
        settings = load_config(config)
    except ConfigurationError as e:
        handle_error(e)

    if store is not None:
        settings = settings.model_copy(update={"store": StoreConfig(directory=str(store))})
    set_config(settings)

    if verbose:
        level = "DEBUG"
    elif quiet:
        level = "WARNING"
    else:
        level = settings.logging.level

    try:
        configure_logging(level=level, structured=settings.logging.structured)
    except ConfigurationError as e:
        handle_error(e)


@app.command()
def version() -> None:
    """Show the bux-oci version."""
    from bux_oci import __version__

    console.print(f"bux-oci version {__version__}")


if __name__ == "__main__":
    app()
