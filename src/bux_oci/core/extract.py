"""Layer extraction with whiteout and opaque-directory handling."""

from __future__ import annotations

import os
import posixpath
import shutil
import tarfile
import zlib
from pathlib import Path
from typing import Iterator, Sequence

from bux_oci.utils.errors import ExtractionError
from bux_oci.utils.logging import get_logger

logger = get_logger("core.extract")

WHITEOUT_PREFIX = ".wh."
WHITEOUT_META_PREFIX = ".wh..wh."
OPAQUE_MARKER = ".wh..wh..opq"

MAX_SYMLINK_HOPS = 255


def normalize_member_name(name: str, layer: str | None = None) -> str | None:
    """Relative POSIX path for an archive member; None for the root itself.

    Raises:
        ExtractionError: If the path contains ``..`` components
    """
    parts = [p for p in name.replace("\\", "/").split("/") if p not in ("", ".")]
    if ".." in parts:
        raise ExtractionError(f"Archive member escapes the rootfs: {name}", layer=layer, member=name)
    if not parts:
        return None
    return "/".join(parts)


def resolve_in_root(root: str, name: str, follow: bool = False, layer: str | None = None) -> str:
    """Resolve ``name`` against the tree at ``root`` as if ``root`` were ``/``.

    Symlinks in the leading components, and in the last one when ``follow``
    is set, are followed the way a process chrooted into ``root`` would see
    them: absolute targets restart at ``root`` and ``..`` stops there. The
    result is a relative path without symlinks above its last component,
    ``""`` being the root itself.

    Raises:
        ExtractionError: On a symlink loop
    """
    pending = name.split("/")[::-1]
    resolved: list[str] = []
    hops = 0
    while pending:
        part = pending.pop()
        if part in ("", "."):
            continue
        if part == "..":
            if resolved:
                resolved.pop()
            continue
        path = os.path.join(root, *resolved, part)
        if (pending or follow) and os.path.islink(path):
            hops += 1
            if hops > MAX_SYMLINK_HOPS:
                raise ExtractionError(f"Too many levels of symbolic links: {name}", layer=layer, member=name)
            target = os.readlink(path)
            if target.startswith("/"):
                resolved = []
            pending.extend(target.split("/")[::-1])
            continue
        resolved.append(part)
    return "/".join(resolved)


def _in_metadata_dir(name: str) -> bool:
    return any(part.startswith(WHITEOUT_META_PREFIX) for part in name.split("/")[:-1])


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()

class LayerExtractor:
    """Applies layer archives, in order, onto a rootfs directory.

    Each layer gets two passes over its archive. The first only reads
    member names and collects deletions: ``.wh.<name>`` removes the sibling
    ``<name>`` and ``.wh..wh..opq`` empties its directory. Deletions are
    applied to the destination, then the second pass extracts every
    non-marker member. Marker files are never written.

    Layers must be applied strictly in manifest order.

    Example:
        LayerExtractor().extract([base_layer, app_layer], Path("/tmp/rootfs"))
    """

    def extract(self, layers: Sequence[Path], destination: Path) -> None:
        """Apply ``layers`` (base first) onto ``destination``.

        Raises:
            ExtractionError: On malformed archives, unsafe paths or entries
                that cannot be created
        """
        destination.mkdir(parents=True, exist_ok=True)
        for i, layer in enumerate(layers, start=1):
            logger.debug("Applying layer %d/%d: %s", i, len(layers), layer.name)
            self.apply_layer(layer, destination)

    def apply_layer(self, layer: Path, destination: Path) -> None:
        """Apply a single layer archive onto ``destination``."""
        layer_name = layer.name
        dest_real = os.path.realpath(destination)
        try:
            opaque_dirs, whiteouts = self._scan_deletions(layer)
            self._apply_deletions(destination, dest_real, opaque_dirs, whiteouts, layer_name)
            with tarfile.open(layer, mode="r|*") as tar:
                tar.extractall(
                    destination,
                    members=self._members(tar, destination, dest_real, layer_name),
                    numeric_owner=True,
                    filter="fully_trusted",
                )
        except ExtractionError:
            raise
        except (tarfile.TarError, EOFError, zlib.error) as e:
            raise ExtractionError(f"Malformed layer archive {layer_name}: {e}", layer=layer_name) from e
        except OSError as e:
            raise ExtractionError(f"Cannot apply layer {layer_name}: {e}", layer=layer_name) from e

        if whiteouts or opaque_dirs:
            logger.debug(
                "Layer %s: %d whiteouts, %d opaque directories",
                layer_name,
                len(whiteouts),
                len(opaque_dirs),
            )

    def _scan_deletions(self, layer: Path) -> tuple[list[str], list[str]]:
        """Collect (opaque directories, whited-out paths) from a layer."""
        opaque_dirs: list[str] = []
        whiteouts: list[str] = []
        with tarfile.open(layer, mode="r|*") as tar:
            for member in tar:
                name = normalize_member_name(member.name, layer.name)
                if name is None or _in_metadata_dir(name):
                    continue
                parent, base = posixpath.split(name)
                if base == OPAQUE_MARKER:
                    opaque_dirs.append(parent)
                elif base.startswith(WHITEOUT_META_PREFIX):
                    continue
                elif base.startswith(WHITEOUT_PREFIX):
                    target = base[len(WHITEOUT_PREFIX) :]
                    if target:
                        whiteouts.append(posixpath.join(parent, target))
        return opaque_dirs, whiteouts

    def _apply_deletions(
        self,
        destination: Path,
        dest_real: str,
        opaque_dirs: list[str],
        whiteouts: list[str],
        layer_name: str,
    ) -> None:
        for directory in opaque_dirs:
            resolved = resolve_in_root(dest_real, directory, follow=True, layer=layer_name)
            target = destination / resolved if resolved else destination
            if target.is_dir() and not target.is_symlink():
                for child in target.iterdir():
                    _remove(child)

        for path in whiteouts:
            target = destination / resolve_in_root(dest_real, path, layer=layer_name)
            if os.path.lexists(target):
                _remove(target)

    def _members(
        self,
        tar: tarfile.TarFile,
        destination: Path,
        dest_real: str,
        layer_name: str,
    ) -> Iterator[tarfile.TarInfo]:
        """Yield the members to extract, clearing whatever they replace.

        Member names are rewritten to their in-rootfs resolution so that
        writes below a symlink land where the symlink points inside the
        rootfs, never on the host.
        """
        for member in tar:
            name = normalize_member_name(member.name, layer_name)
            if name is None:
                continue
            if _in_metadata_dir(name) or posixpath.basename(name).startswith(WHITEOUT_PREFIX):
                continue
            if not (
                member.isreg()
                or member.isdir()
                or member.issym()
                or member.islnk()
                or member.isdev()
            ):
                raise ExtractionError(
                    f"Unsupported entry type {member.type!r} for {name}",
                    layer=layer_name,
                    member=name,
                )

            if member.islnk():
                link = normalize_member_name(member.linkname, layer_name)
                if link is None:
                    raise ExtractionError(f"Hard link {name} has no target", layer=layer_name, member=name)
                link = resolve_in_root(dest_real, link, follow=True, layer=layer_name)
                if not link:
                    raise ExtractionError(f"Hard link {name} points at the rootfs", layer=layer_name, member=name)
                member.linkname = link

            member.name = resolve_in_root(dest_real, name, layer=layer_name)
            target = destination / member.name
            if os.path.lexists(target) and not (member.isdir() and target.is_dir() and not target.is_symlink()):
                _remove(target)

            # keep the tree writable for later layers when unprivileged
            if member.isdir():
                member.mode |= 0o700
            elif member.isreg():
                member.mode |= 0o600

            yield member
