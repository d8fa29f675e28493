import sys
from pathlib import Path

import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parent.parent
# Ensure the real repo root is importable even when tests live behind reparse points.
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from imgbatch_core import state


@pytest.fixture(autouse=True)
def reset_state():
    """Reset global run state between tests to avoid cross-test leakage."""
    state.reset_state()
    yield
    state.reset_state()


@pytest.fixture
def gradient_image():
    """Factory fixture that builds an RGB(A) image with distinct pixel values."""
    def _factory(size=(8, 6), mode="RGB") -> Image.Image:
        width, height = size
        img = Image.new(mode, size)
        for y in range(height):
            for x in range(width):
                r = (x * 37) % 256
                g = (y * 53) % 256
                b = (x * y * 11 + 7) % 256
                if mode == "RGBA":
                    img.putpixel((x, y), (r, g, b, (x + y) * 9 % 256))
                else:
                    img.putpixel((x, y), (r, g, b))
        return img

    return _factory


@pytest.fixture
def write_image(gradient_image):
    """Factory fixture that writes an image file and returns its path."""
    def _factory(path: Path, size=(8, 6), mode="RGB", fmt=None) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        gradient_image(size=size, mode=mode).save(path, format=fmt)
        return path

    return _factory
