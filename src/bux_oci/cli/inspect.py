"""CLI command for inspecting a pulled image."""

import typer
from rich.console import Console
from rich.panel import Panel

from bux_oci.cli.utils import handle_error, open_oci, output_json
from bux_oci.utils.errors import BuxOciError

console = Console()


def inspect_cmd(
    image: str = typer.Argument(..., help="Image reference"),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, json)",
    ),
) -> None:
    """
    Show the rootfs and process config of a pulled image.

    Reads only the local store; the registry is never contacted.

    Example:
        bux-oci inspect alpine:3.20
    """
    with open_oci() as oci:
        try:
            result = oci.inspect(image)
        except BuxOciError as e:
            handle_error(e)

    if format == "json":
        output_json(result)
        return

    config = result.config
    lines = [
        f"[bold]Reference:[/bold] {result.reference}",
        f"[bold]Digest:[/bold] {result.digest}",
        f"[bold]Rootfs:[/bold] {result.rootfs}",
        f"[bold]Command:[/bold] {' '.join(config.command) or '-'}",
        f"[bold]Working dir:[/bold] {config.working_dir or '/'}",
        f"[bold]User:[/bold] {config.user or 'root'}",
    ]
    if config.exposed_ports:
        lines.append(f"[bold]Ports:[/bold] {', '.join(config.exposed_ports)}")
    console.print(Panel("\n".join(lines), title="Image"))

    if config.env:
        console.print("[bold]Environment[/bold]")
        for item in config.env_list():
            console.print(f"  {item}", markup=False)
