from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Iterator

from . import state
from .cancellation import CancellationSignal
from .constants import IMAGE_EXTENSIONS


class DiscoveryError(Exception):
    """Raised when a directory under the source root cannot be listed."""


def is_image_file(name: str) -> bool:
    """Return True when the filename ends with one of the supported image extensions."""
    return name.lower().endswith(IMAGE_EXTENSIONS)


def _list_directory(directory: Path) -> list[os.DirEntry]:
    """Return directory entries sorted by name, wrapping OS failures in DiscoveryError."""
    try:
        with os.scandir(directory) as it:
            entries = list(it)
    except OSError as exc:
        raise DiscoveryError(f"Cannot read directory {directory}: {exc}") from exc
    entries.sort(key=lambda entry: entry.name)
    return entries


def discover_image_files(
    root: Path,
    recurse: bool,
    cancel: CancellationSignal | None = None,
    exclude: Iterable[Path] = (),
) -> Iterator[Path]:
    """
    Lazily yield image files under ``root``.

    Directories are walked depth-first; each directory is listed once, so every
    path is yielded at most once. Symlinked directories are not followed.
    Directories in ``exclude`` are skipped entirely. Once ``cancel`` is set no
    further paths are yielded.

    Raises:
        DiscoveryError: if ``root`` or any visited subdirectory cannot be read.
    """
    excluded = {Path(p).resolve() for p in exclude}
    pending = [Path(root)]

    while pending:
        directory = pending.pop()
        if cancel is not None and cancel.is_set():
            state.log.debug("Discovery stopped by cancellation before %s", directory)
            return

        subdirs: list[Path] = []
        for entry in _list_directory(directory):
            try:
                if entry.is_dir(follow_symlinks=False):
                    if recurse:
                        subdirs.append(Path(entry.path))
                    continue
                if not entry.is_file() or not is_image_file(entry.name):
                    continue
            except OSError as exc:
                state.log.warning("[SKIP] Cannot stat %s: %s", entry.path, exc)
                continue

            if cancel is not None and cancel.is_set():
                state.log.debug("Discovery stopped by cancellation at %s", entry.path)
                return
            yield Path(entry.path)

        for subdir in reversed(subdirs):
            if subdir.resolve() in excluded:
                state.log.debug("Skipping excluded directory %s", subdir)
                continue
            pending.append(subdir)
