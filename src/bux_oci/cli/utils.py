"""Shared utilities for CLI commands."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, NoReturn

import typer
from pydantic import BaseModel
from rich.console import Console
from rich.markup import escape

from bux_oci.utils.errors import BuxOciError

if TYPE_CHECKING:
    from bux_oci.core.puller import Oci

# Shared console instance
console = Console()


def open_oci() -> "Oci":
    """Open the image store described by the active configuration."""
    from bux_oci.core.puller import Oci
    from bux_oci.utils.config import get_config

    try:
        return Oci(get_config())
    except BuxOciError as e:
        handle_error(e)


def handle_error(error: BuxOciError) -> NoReturn:
    """Print ``[CODE] message`` and exit with status 1.

    Args:
        error: The failure to report
    """
    console.print(f"[red]Error:[/red] {escape(str(error.to_error_info()))}")
    raise typer.Exit(1)


def output_json(data: dict[str, Any] | list[Any] | BaseModel) -> None:
    """Print data as JSON.

    Args:
        data: Data to output (dict, list or Pydantic model)
    """
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    elif isinstance(data, list):
        data = [item.model_dump(mode="json") if isinstance(item, BaseModel) else item for item in data]

    json_str = json.dumps(data, indent=2, default=str)
    console.print(json_str, markup=False, highlight=False, soft_wrap=True)


def human_size(size: int) -> str:
    """Format a byte count the way ``docker images`` does.

    Args:
        size: Size in bytes

    Returns:
        Size with a decimal unit, e.g. ``28.4MB``
    """
    value = float(size)
    for unit in ("B", "kB", "MB", "GB"):
        if value < 1000:
            return f"{value:.0f}{unit}" if unit == "B" else f"{value:.1f}{unit}"
        value /= 1000
    return f"{value:.1f}TB"
