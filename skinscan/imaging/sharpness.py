"""Laplacian-variance focus score."""

from __future__ import annotations

import logging

import cv2
import numpy as np

from skinscan.errors import ImageDecodeError
from skinscan.imaging.decode import downscale, luminance
from skinscan.types import DecodedImage

LOGGER = logging.getLogger("skinscan.imaging.sharpness")

LAPLACIAN_KERNEL = np.array(
    [
        [0.0, -1.0, 0.0],
        [-1.0, 4.0, -1.0],
        [0.0, -1.0, 0.0],
    ],
    dtype=np.float32,
)


def laplacian_response(gray: np.ndarray) -> np.ndarray:
    """Absolute Laplacian response over interior pixels (1px border dropped)."""
    filtered = cv2.filter2D(gray.astype(np.float32), cv2.CV_32F, LAPLACIAN_KERNEL)
    return np.abs(filtered[1:-1, 1:-1])


def estimate_sharpness(image: DecodedImage, max_side: int = 512, scale: float = 100.0) -> float:
    """Return a 0-1 focus score: variance of |Laplacian| divided by ``scale``, capped at 1.

    The image is downscaled first so scores stay comparable across resolutions.
    """
    if not isinstance(image, DecodedImage):
        raise ImageDecodeError(f"Expected DecodedImage, got {type(image).__name__}")
    pixels = downscale(image, max_side)
    gray = luminance(pixels[:, :, :3])
    if gray.shape[0] < 3 or gray.shape[1] < 3:
        LOGGER.debug("Image %dx%d too small for Laplacian interior", image.width, image.height)
        return 0.0
    response = laplacian_response(gray)
    variance = float(np.var(response))
    score = min(1.0, variance / scale)
    LOGGER.debug(
        "Sharpness %dx%d -> %dx%d variance=%.2f score=%.3f",
        image.width,
        image.height,
        gray.shape[1],
        gray.shape[0],
        variance,
        score,
    )
    return score
