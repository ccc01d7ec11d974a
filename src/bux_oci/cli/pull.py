"""CLI command for pulling images."""

import typer
from rich.console import Console

from bux_oci.cli.utils import handle_error, open_oci
from bux_oci.models.pull import PullProgress, PullStage
from bux_oci.utils.errors import BuxOciError

console = Console()


def pull_cmd(
    image: str = typer.Argument(..., help="Image reference, e.g. ubuntu:24.04"),
    if_needed: bool = typer.Option(
        False,
        "--if-needed",
        help="Skip the download when the cached image is still current",
    ),
) -> None:
    """
    Pull an image and extract its root filesystem.

    Layers already in the local store are not downloaded again.

    Example:
        bux-oci pull ubuntu:24.04
    """
    with open_oci() as oci, console.status(f"Pulling {image}...") as status:

        def on_progress(event: PullProgress) -> None:
            status.update(event.message)
            if event.stage in (PullStage.BLOB, PullStage.BLOB_CACHED):
                console.print(f"  {event.message}")

        try:
            if if_needed:
                result = oci.ensure(image, progress=on_progress)
            else:
                result = oci.pull(image, progress=on_progress)
        except BuxOciError as e:
            handle_error(e)

    console.print(f"[green]Pulled[/green] {result.reference}")
    console.print(f"[bold]Digest:[/bold] {result.digest}")
    console.print(f"[bold]Rootfs:[/bold] {result.rootfs}")
