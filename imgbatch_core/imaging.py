from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

from PIL import Image, ImageOps

from . import state
from .constants import DEFAULT_JPEG_QUALITY, EXTENSION_TO_FORMAT

# Modes each output format can store directly; anything else is converted first.
_SAVE_MODES = {
    "JPEG": {"L", "RGB", "CMYK"},
    "BMP": {"1", "L", "P", "RGB", "RGBA"},
    "GIF": {"1", "L", "P", "RGB", "RGBA"},
    "PNG": {"1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"},
}

# Palette slot reserved for transparent pixels when a paletted image is re-quantized.
_TRANSPARENT_INDEX = 255


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA", "RGBa", "La") or "transparency" in img.info


def resolve_format(path: Path, default_format: str) -> str:
    """Return the Pillow format name for a path's extension, or ``default_format`` when unknown."""
    suffix = path.suffix.lower().lstrip(".")
    return EXTENSION_TO_FORMAT.get(suffix, default_format)


def load_image(path: Path) -> Image.Image:
    """Decode an image fully into memory and release the file handle."""
    with Image.open(path) as img:
        img.load()
        return img.copy()


def compute_scaled_size(size: tuple[int, int], factor: float) -> tuple[int, int]:
    """Compute ``round(width*factor), round(height*factor)``, never below 1 px."""
    if factor <= 0:
        raise ValueError(f"Scale factor must be positive (got {factor!r}).")
    orig_w, orig_h = size
    new_w = max(1, int(round(orig_w * factor)))
    new_h = max(1, int(round(orig_h * factor)))
    return new_w, new_h


def get_palette_color_count(img: Image.Image) -> int | None:
    """Estimate number of colors used in a paletted image (up to 256)."""
    colors = img.getcolors(maxcolors=256)
    if colors is None:
        return None
    return len(colors)


def _quantize_with_transparency(rgba: Image.Image, colors: int) -> Image.Image:
    """Quantize to at most 255 colors and map pixels under half opacity to index 255."""
    paletted = rgba.convert("RGB").quantize(colors=min(colors, 255))
    palette = (paletted.getpalette() or [])[: 3 * _TRANSPARENT_INDEX]
    paletted.putpalette(palette + [0] * (768 - len(palette)))
    mask = rgba.getchannel("A").point(lambda a: 255 if a < 128 else 0)
    paletted.paste(_TRANSPARENT_INDEX, mask=mask)
    paletted.info["transparency"] = _TRANSPARENT_INDEX
    return paletted


def scale_image(img: Image.Image, factor: float) -> Image.Image:
    """
    Resize ``img`` by ``factor`` with Lanczos resampling.

    Paletted images are resampled in RGBA and quantized back to a palette of
    roughly the original color count; bilevel images are resampled as grayscale.
    """
    new_size = compute_scaled_size(img.size, factor)
    if new_size == img.size:
        return img.copy()

    if img.mode == "P":
        colors = get_palette_color_count(img) or 256
        colors = max(2, min(colors, 256))
        resized = img.convert("RGBA").resize(new_size, Image.Resampling.LANCZOS)
        if _has_alpha(img):
            return _quantize_with_transparency(resized, colors)
        return resized.convert("P", palette=Image.Palette.ADAPTIVE, colors=colors)
    if img.mode == "1":
        img = img.convert("L")
    return img.resize(new_size, Image.Resampling.LANCZOS)


def negate_image(img: Image.Image) -> Image.Image:
    """
    Replace every red, green and blue value ``v`` with ``255 - v``.

    Alpha is left alone. Grayscale images invert their single luminance
    channel and paletted images invert the palette, so the pixel indices and
    transparency stay as they were. Other modes are converted to RGB(A) first.
    """
    mode = img.mode
    if mode == "P":
        result = img.copy()
        palette = result.getpalette() or []
        result.putpalette([255 - value for value in palette])
        return result
    if mode in ("RGB", "L"):
        result = ImageOps.invert(img)
        # A tRNS colour key marks transparent pixels by value; invert it with them.
        key = img.info.get("transparency")
        if isinstance(key, int):
            result.info["transparency"] = 255 - key
        elif isinstance(key, tuple):
            result.info["transparency"] = tuple(255 - value for value in key)
        return result
    if mode in ("RGBA", "LA"):
        *color_bands, alpha = img.split()
        inverted = [ImageOps.invert(band) for band in color_bands]
        return Image.merge(mode, (*inverted, alpha))
    if mode == "1":
        return ImageOps.invert(img.convert("L"))

    return negate_image(img.convert("RGBA" if _has_alpha(img) else "RGB"))


def prepare_for_format(img: Image.Image, fmt: str) -> Image.Image:
    """Convert ``img`` to a mode the target format can store."""
    allowed = _SAVE_MODES.get(fmt)
    if allowed is None or img.mode in allowed:
        return img
    if fmt == "JPEG":
        return img.convert("L" if img.mode in ("LA", "I", "I;16", "F") else "RGB")
    return img.convert("RGBA" if _has_alpha(img) else "RGB")


def _save_options(fmt: str, jpeg_quality: int) -> dict[str, Any]:
    if fmt == "JPEG":
        return {"quality": jpeg_quality, "optimize": True}
    if fmt == "PNG":
        return {"optimize": True}
    return {}


def save_image(
    img: Image.Image,
    path: Path,
    fmt: str,
    jpeg_quality: int = DEFAULT_JPEG_QUALITY,
    atomic: bool = False,
) -> None:
    """
    Encode ``img`` as ``fmt`` and write it to ``path``.

    With ``atomic`` the image is written to a temporary sibling file and then
    renamed over ``path``; otherwise ``path`` is overwritten directly.
    """
    img = prepare_for_format(img, fmt)
    options = _save_options(fmt, jpeg_quality)

    if not atomic:
        img.save(path, format=fmt, **options)
        return

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    os.close(fd)
    try:
        img.save(tmp_name, format=fmt, **options)
        os.replace(tmp_name, path)
    except Exception:
        try:
            os.unlink(tmp_name)
        except OSError as cleanup_exc:
            state.log.debug("Could not remove temp file %s: %s", tmp_name, cleanup_exc)
        raise
