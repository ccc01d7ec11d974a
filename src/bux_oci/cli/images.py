"""CLI command for listing pulled images."""

import typer
from rich.console import Console
from rich.table import Table

from bux_oci.cli.utils import handle_error, human_size, open_oci, output_json
from bux_oci.utils.errors import BuxOciError
from bux_oci.utils.hashing import short_digest

console = Console()


def images_cmd(
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, json)",
    ),
) -> None:
    """
    List images in the local store, most recently pulled first.

    Example:
        bux-oci images --format json
    """
    with open_oci() as oci:
        try:
            records = oci.images()
        except BuxOciError as e:
            handle_error(e)

    if format == "json":
        output_json(records)
        return

    if not records:
        console.print("No images")
        return

    table = Table()
    table.add_column("Reference", style="bold")
    table.add_column("Digest")
    table.add_column("Size", justify="right")
    table.add_column("Pulled")

    for record in records:
        table.add_row(
            record.reference,
            short_digest(record.digest),
            human_size(record.size),
            record.created_at,
        )

    console.print(table)
