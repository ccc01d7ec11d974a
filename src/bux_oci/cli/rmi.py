"""CLI commands for removing images and pruning the store."""

import typer
from rich.console import Console

from bux_oci.cli.utils import handle_error, open_oci
from bux_oci.utils.errors import BuxOciError

console = Console()


def rmi_cmd(
    image: str = typer.Argument(..., help="Image reference"),
) -> None:
    """
    Remove an image from the local store.

    The rootfs is deleted once no other reference uses it. Blobs stay
    until the next prune.

    Example:
        bux-oci rmi alpine:3.20
    """
    with open_oci() as oci:
        try:
            record = oci.remove(image)
        except BuxOciError as e:
            handle_error(e)

    console.print(f"Removed {record.reference}")


def prune_cmd() -> None:
    """
    Delete blobs and leftovers no pulled image uses.

    Example:
        bux-oci prune
    """
    with open_oci() as oci:
        try:
            removed = oci.prune()
        except BuxOciError as e:
            handle_error(e)

    for digest in removed:
        console.print(f"Deleted {digest}")
    console.print(f"Pruned {len(removed)} blobs")
