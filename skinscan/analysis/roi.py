"""Landmark-driven region-of-interest centroids."""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

import numpy as np

from skinscan.types import NormalizedLandmark, Point, round_half_up

LOGGER = logging.getLogger("skinscan.analysis.roi")

# MediaPipe Face Mesh indices (468 points, 478 with iris refinement).
ROI_LANDMARK_INDICES: Dict[str, Tuple[int, ...]] = {
    "leftCheek": (234, 227, 116, 117, 118, 119, 120, 121, 126, 142, 36, 205, 206, 207),
    "rightCheek": (454, 323, 361, 288, 397, 365, 379, 378, 400, 377, 152, 148, 176, 149),
    "forehead": (10, 151, 337, 299, 333, 298, 301, 368, 264, 447, 366, 401, 435, 410, 454),
    "leftUnderEye": (23, 24, 25, 110, 111, 112, 226, 228, 229, 230, 231, 232, 233),
    "rightUnderEye": (243, 244, 245, 466, 467, 468, 469, 470, 471, 472, 473, 474, 475),
}


def landmark_array(landmarks: Any) -> np.ndarray:
    """Coerce a LandmarkSet (objects, tuples or an (N, 2+) array) to float (N, 2)."""
    if landmarks is None:
        return np.empty((0, 2), dtype=np.float64)
    if isinstance(landmarks, np.ndarray):
        arr = landmarks.astype(np.float64, copy=False)
        if arr.ndim != 2 or arr.shape[0] == 0 or arr.shape[1] < 2:
            return np.empty((0, 2), dtype=np.float64)
        return arr[:, :2]
    points = []
    for item in landmarks:
        if isinstance(item, NormalizedLandmark) or hasattr(item, "x"):
            points.append((float(item.x), float(item.y)))
        elif isinstance(item, dict):
            points.append((float(item["x"]), float(item["y"])))
        else:
            points.append((float(item[0]), float(item[1])))
    if not points:
        return np.empty((0, 2), dtype=np.float64)
    return np.asarray(points, dtype=np.float64)


def _valid_indices(indices: Iterable[int], count: int) -> Sequence[int]:
    return [int(idx) for idx in indices if 0 <= int(idx) < count]


def resolve_centroid(landmarks: Any, roi_indices: Iterable[int], width: int, height: int) -> Optional[Point]:
    """Mean pixel position of the ROI's landmarks, or None when none resolve.

    Landmarks are converted to rounded pixel coordinates before averaging and
    out-of-range indices or non-finite coordinates are skipped.
    """
    points = landmark_array(landmarks)
    sum_x = 0
    sum_y = 0
    count = 0
    for idx in _valid_indices(roi_indices, len(points)):
        x, y = points[idx]
        if not (math.isfinite(x) and math.isfinite(y)):
            continue
        sum_x += round_half_up(x * width)
        sum_y += round_half_up(y * height)
        count += 1
    if count == 0:
        return None
    return round_half_up(sum_x / count), round_half_up(sum_y / count)


def resolve_roi_centroids(landmarks: Any, width: int, height: int) -> Dict[str, Optional[Point]]:
    centroids = {
        name: resolve_centroid(landmarks, indices, width, height)
        for name, indices in ROI_LANDMARK_INDICES.items()
    }
    LOGGER.debug("ROI centroids %s", centroids)
    return centroids
