"""Decode image sources into immutable RGBA buffers."""

from __future__ import annotations

import asyncio
import io
import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import cv2
import httpx
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from skinscan.errors import ImageDecodeError, RemoteServiceError
from skinscan.types import DecodedImage

LOGGER = logging.getLogger("skinscan.imaging.decode")

ImageSource = Union[bytes, bytearray, Path, str]


def decode_image(data: Union[bytes, bytearray]) -> DecodedImage:
    """Decode encoded image bytes (JPEG/PNG/WebP/GIF) into RGBA pixels."""
    if not data:
        raise ImageDecodeError("Image source is empty")
    try:
        with Image.open(io.BytesIO(bytes(data))) as image:
            fmt = image.format or "UNKNOWN"
            # Phone cameras store orientation in EXIF; landmarks expect upright pixels.
            upright = ImageOps.exif_transpose(image)
            rgba = upright.convert("RGBA")
            pixels = np.asarray(rgba, dtype=np.uint8)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise ImageDecodeError(f"Failed to decode image: {exc}") from exc
    height, width = pixels.shape[:2]
    LOGGER.debug("Decoded %s image %dx%d (%d bytes)", fmt, width, height, len(data))
    return DecodedImage(width=width, height=height, pixels=pixels, format=fmt, source_size=len(data))


def load_image(path: Path) -> DecodedImage:
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ImageDecodeError(f"Failed to read image {path}: {exc}") from exc
    return decode_image(data)


async def fetch_image_bytes(url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0) -> bytes:
    """Download a remote image; non-2xx responses raise RemoteServiceError."""
    if client is None:
        async with httpx.AsyncClient(timeout=timeout) as owned:
            return await fetch_image_bytes(url, owned, timeout)
    response = await client.get(url)
    if response.status_code >= 400:
        raise RemoteServiceError(
            f"Image fetch failed with status {response.status_code}", status=response.status_code
        )
    return response.content


async def decode_image_source(source: ImageSource, client: Optional[httpx.AsyncClient] = None) -> DecodedImage:
    """Decode bytes, a local path or an http(s) URL without blocking the event loop."""
    if isinstance(source, (bytes, bytearray)):
        return await asyncio.to_thread(decode_image, source)
    text = str(source)
    if text.startswith(("http://", "https://")):
        data = await fetch_image_bytes(text, client)
        return await asyncio.to_thread(decode_image, data)
    return await asyncio.to_thread(load_image, Path(text))


def downscale(image: DecodedImage, max_side: int) -> np.ndarray:
    """Return RGBA pixels with the longest side capped at ``max_side``."""
    width, height = image.width, image.height
    if max_side <= 0 or max(width, height) <= max_side:
        return image.pixels
    ratio = min(max_side / width, max_side / height)
    new_size: Tuple[int, int] = (max(1, int(width * ratio)), max(1, int(height * ratio)))
    # cv2 bindings want a writeable buffer; DecodedImage pixels are read-only.
    return cv2.resize(np.array(image.pixels), new_size, interpolation=cv2.INTER_AREA)


def luminance(rgb: np.ndarray) -> np.ndarray:
    """Per-pixel luminance 0.299R + 0.587G + 0.114B as float32."""
    rgb = np.asarray(rgb, dtype=np.float32)
    return 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]
