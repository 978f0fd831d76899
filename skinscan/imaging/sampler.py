"""Fixed-size pixel neighbourhood sampling around ROI centroids."""

from __future__ import annotations

import numpy as np

from skinscan.types import DecodedImage

EMPTY_SAMPLES = np.empty((0, 4), dtype=np.uint8)
EMPTY_SAMPLES.setflags(write=False)


def sample_pixels(image: DecodedImage, center_x: int, center_y: int, size: int = 10) -> np.ndarray:
    """Return RGBA samples from a ``size`` x ``size`` window centred on a pixel.

    Window cells outside the image are skipped, so windows near an edge yield
    fewer samples and a window entirely off-image yields an empty (0, 4) array.
    Samples are in row-major scan order.
    """
    if size <= 0:
        return EMPTY_SAMPLES
    half = size // 2
    x0 = int(center_x) - half
    y0 = int(center_y) - half
    x1 = x0 + size
    y1 = y0 + size
    cx0, cy0 = max(0, x0), max(0, y0)
    cx1, cy1 = min(image.width, x1), min(image.height, y1)
    if cx0 >= cx1 or cy0 >= cy1:
        return EMPTY_SAMPLES
    window = image.pixels[cy0:cy1, cx0:cx1]
    return window.reshape(-1, 4)


def mean_rgb(samples: np.ndarray) -> np.ndarray:
    """Mean (R, G, B) over a sample set; zeros for an empty set."""
    if len(samples) == 0:
        return np.zeros(3, dtype=np.float64)
    return samples[:, :3].astype(np.float64).mean(axis=0)
