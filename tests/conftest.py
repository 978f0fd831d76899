import io

import numpy as np
import pytest
from PIL import Image

from skinscan.types import DecodedImage


def rgba_from_rgb(rgb: np.ndarray) -> np.ndarray:
    rgb = np.asarray(rgb, dtype=np.uint8)
    alpha = np.full(rgb.shape[:2] + (1,), 255, dtype=np.uint8)
    return np.concatenate([rgb, alpha], axis=2)


@pytest.fixture
def make_image():
    def _make(rgb: np.ndarray, source_size: int = 0) -> DecodedImage:
        pixels = rgba_from_rgb(rgb)
        height, width = pixels.shape[:2]
        return DecodedImage(width=width, height=height, pixels=pixels, source_size=source_size)

    return _make


@pytest.fixture
def solid_image(make_image):
    def _solid(width: int, height: int, color=(128, 128, 128)) -> DecodedImage:
        rgb = np.empty((height, width, 3), dtype=np.uint8)
        rgb[:, :] = color
        return make_image(rgb)

    return _solid


@pytest.fixture
def noise_rgb():
    def _noise(width: int, height: int, low: int = 80, high: int = 171, seed: int = 7) -> np.ndarray:
        rng = np.random.default_rng(seed)
        return rng.integers(low, high, size=(height, width, 3), dtype=np.uint8)

    return _noise


@pytest.fixture
def png_bytes():
    def _encode(rgb: np.ndarray, fmt: str = "PNG") -> bytes:
        buffer = io.BytesIO()
        Image.fromarray(np.asarray(rgb, dtype=np.uint8)).save(buffer, format=fmt)
        return buffer.getvalue()

    return _encode
