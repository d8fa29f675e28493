from __future__ import annotations

import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from . import state
from .cancellation import CancellationSignal
from .constants import DEFAULT_JPEG_QUALITY, DEFAULT_OUTPUT_FORMAT
from .imaging import load_image, negate_image, resolve_format, save_image, scale_image


class OperationKind(str, Enum):
    """The transform applied to every discovered file of a job."""

    SCALE = "scale"
    NEGATE = "negate"
    REMOVE = "remove"
    COPY = "copy"


class OperationCancelled(Exception):
    """Raised by a strategy that stopped before writing because the run was cancelled."""


@dataclass(frozen=True)
class OutputSettings:
    """Encoding options shared by the in-place image strategies."""

    default_format: str = DEFAULT_OUTPUT_FORMAT
    jpeg_quality: int = DEFAULT_JPEG_QUALITY
    atomic_writes: bool = False


class Operation:
    """Common interface for per-file strategies."""

    kind: OperationKind

    def apply(self, path: Path, cancel: CancellationSignal | None = None) -> None:
        """Transform one file. Raise on failure; return normally on success."""
        raise NotImplementedError

    def describe(self) -> str:
        return self.kind.value


class _InPlaceImageOperation(Operation):
    """Read, transform and overwrite an image file in its original format."""

    def __init__(self, output: OutputSettings | None = None) -> None:
        self.output = output or OutputSettings()

    def transform(self, img):
        raise NotImplementedError

    def apply(self, path: Path, cancel: CancellationSignal | None = None) -> None:
        img = load_image(path)
        fmt = resolve_format(path, self.output.default_format)
        result = self.transform(img)
        # Nothing has been written yet, so stopping here leaves the file intact.
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(str(path))
        save_image(
            result,
            path,
            fmt,
            jpeg_quality=self.output.jpeg_quality,
            atomic=self.output.atomic_writes,
        )
        state.log.debug(
            "  -> %s %s (%sx%s -> %sx%s, mode=%s, format=%s)",
            self.kind.value,
            path,
            img.width,
            img.height,
            result.width,
            result.height,
            img.mode,
            fmt,
        )


class ScaleOperation(_InPlaceImageOperation):
    kind = OperationKind.SCALE

    def __init__(self, factor: float, output: OutputSettings | None = None) -> None:
        if factor <= 0:
            raise ValueError(f"Scale factor must be positive (got {factor!r}).")
        super().__init__(output)
        self.factor = factor

    def transform(self, img):
        return scale_image(img, self.factor)

    def describe(self) -> str:
        return f"scale({self.factor:g})"


class NegateOperation(_InPlaceImageOperation):
    kind = OperationKind.NEGATE

    def transform(self, img):
        return negate_image(img)


class RemoveOperation(Operation):
    """Delete the file; a file that is already gone counts as removed."""

    kind = OperationKind.REMOVE

    def apply(self, path: Path, cancel: CancellationSignal | None = None) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            state.log.debug("  -> %s already absent", path)


class CopyOperation(Operation):
    """Copy the file into ``target_dir`` under its own name, replacing any existing copy."""

    kind = OperationKind.COPY

    def __init__(self, target_dir: Path) -> None:
        self.target_dir = Path(target_dir)

    def apply(self, path: Path, cancel: CancellationSignal | None = None) -> None:
        shutil.copy2(path, self.target_dir / path.name)

    def describe(self) -> str:
        return f"copy({self.target_dir})"


def build_operation(
    kind: OperationKind,
    *,
    scale_factor: float | None = None,
    target_dir: Path | None = None,
    output: OutputSettings | None = None,
) -> Operation:
    """Return the strategy for ``kind``; parameters must match the kind."""
    if kind is OperationKind.SCALE:
        if scale_factor is None:
            raise ValueError("scale requires a scale factor.")
        return ScaleOperation(scale_factor, output)
    if kind is OperationKind.NEGATE:
        return NegateOperation(output)
    if kind is OperationKind.REMOVE:
        return RemoveOperation()
    if kind is OperationKind.COPY:
        if target_dir is None:
            raise ValueError("copy requires a target directory.")
        return CopyOperation(target_dir)
    raise ValueError(f"Unsupported operation: {kind!r}")
