"""Heuristic skin metrics derived from landmark ROI pixel samples.

The four metrics are proxies kept for parity with the product's UI labels:

* pigmentation <- brightness of cheek and forehead skin
* pores        <- luminance roughness (std-dev) within the cheeks
* wrinkles     <- under-eye darkness relative to the cheeks
* acne         <- redness of the cheeks (R above the G/B mean)

They are not validated dermatological measurements.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import numpy as np

from skinscan.analysis.roi import landmark_array, resolve_roi_centroids
from skinscan.errors import ImageDecodeError
from skinscan.imaging.decode import luminance
from skinscan.imaging.sampler import EMPTY_SAMPLES, mean_rgb, sample_pixels
from skinscan.types import (
    DEFAULT_PRIMARY_CONCERN,
    METRIC_KEYS,
    METRIC_LABELS,
    NEUTRAL_SCORE,
    DecodedImage,
    SkinAnalysisResult,
    SkinMetric,
    clamp_score,
    round_half_up,
)

LOGGER = logging.getLogger("skinscan.analysis.metrics")


def build_analysis_result(scores: Mapping[str, float]) -> SkinAnalysisResult:
    """Grade four metric scores and derive the total and primary concern."""
    details = {key: SkinMetric.from_score(scores[key]) for key in METRIC_KEYS}
    total = round_half_up(sum(details[key].score for key in METRIC_KEYS) / len(METRIC_KEYS))
    primary_key = METRIC_KEYS[0]
    for key in METRIC_KEYS[1:]:
        if details[key].score < details[primary_key].score:
            primary_key = key
    return SkinAnalysisResult(
        total_score=total,
        details=details,
        primary_concern=METRIC_LABELS[primary_key],
    )


def neutral_result() -> SkinAnalysisResult:
    result = build_analysis_result({key: NEUTRAL_SCORE for key in METRIC_KEYS})
    return SkinAnalysisResult(
        total_score=result.total_score,
        details=result.details,
        primary_concern=DEFAULT_PRIMARY_CONCERN,
    )


def pigmentation_score(face_samples: np.ndarray) -> float:
    if len(face_samples) == 0:
        return NEUTRAL_SCORE
    r, g, b = mean_rgb(face_samples)
    lum = 0.299 * r + 0.587 * g + 0.114 * b
    return clamp_score(lum / 255 * 100)


def pores_score(cheek_samples: np.ndarray) -> float:
    if len(cheek_samples) == 0:
        return NEUTRAL_SCORE
    std = float(np.std(luminance(cheek_samples[:, :3])))
    return clamp_score(100 - (std / 50) * 100)


def wrinkles_score(cheek_samples: np.ndarray, under_eye_samples: np.ndarray) -> float:
    if len(cheek_samples) == 0 or len(under_eye_samples) == 0:
        return NEUTRAL_SCORE
    cheek_lum = float(luminance(mean_rgb(cheek_samples)))
    under_eye_lum = float(luminance(mean_rgb(under_eye_samples)))
    return clamp_score(100 - (cheek_lum - under_eye_lum) * 3)


def acne_score(cheek_samples: np.ndarray) -> float:
    if len(cheek_samples) == 0:
        return NEUTRAL_SCORE
    r, g, b = mean_rgb(cheek_samples)
    return clamp_score(100 - (r - (g + b) / 2) * 2)


class SkinMetricEngine:
    """Samples the five facial ROIs and scores the four heuristic metrics."""

    def __init__(self, sample_size: int = 10) -> None:
        self.sample_size = sample_size

    def _samples(self, image: DecodedImage, centroid: Optional[tuple]) -> np.ndarray:
        if centroid is None:
            return EMPTY_SAMPLES
        return sample_pixels(image, centroid[0], centroid[1], self.sample_size)

    def compute(self, image: DecodedImage, landmarks: Any) -> SkinAnalysisResult:
        if not isinstance(image, DecodedImage):
            raise ImageDecodeError(f"Expected DecodedImage, got {type(image).__name__}")
        points = landmark_array(landmarks)
        if len(points) == 0:
            LOGGER.warning(
                "No landmarks for %dx%d image; all metrics use neutral default %d",
                image.width,
                image.height,
                NEUTRAL_SCORE,
            )
            return neutral_result()

        centroids = resolve_roi_centroids(points, image.width, image.height)
        samples: Dict[str, np.ndarray] = {
            name: self._samples(image, centroid) for name, centroid in centroids.items()
        }
        for name, roi_samples in samples.items():
            if len(roi_samples) == 0:
                LOGGER.warning("ROI %s unavailable; dependent metrics fall back to %d", name, NEUTRAL_SCORE)

        cheeks = np.concatenate([samples["leftCheek"], samples["rightCheek"]])
        forehead = samples["forehead"]
        under_eyes = np.concatenate([samples["leftUnderEye"], samples["rightUnderEye"]])

        raw = {
            "pigmentation": pigmentation_score(np.concatenate([cheeks, forehead])),
            "pores": pores_score(cheeks),
            "wrinkles": wrinkles_score(cheeks, under_eyes),
            "acne": acne_score(cheeks),
        }
        LOGGER.debug(
            "Raw metric scores %s (samples cheeks=%d forehead=%d under_eyes=%d)",
            raw,
            len(cheeks),
            len(forehead),
            len(under_eyes),
        )
        result = build_analysis_result(raw)
        LOGGER.info("Skin metrics total=%d primary=%s", result.total_score, result.primary_concern)
        return result


def compute_metrics(image: DecodedImage, landmarks: Any, sample_size: int = 10) -> SkinAnalysisResult:
    return SkinMetricEngine(sample_size).compute(image, landmarks)
