"""Image quality gate: sharpness, exposure and resolution checks."""

from __future__ import annotations

import logging
import mimetypes
from typing import List, Optional

import numpy as np

from skinscan.config import QualityConfig
from skinscan.errors import ImageDecodeError, ValidationError
from skinscan.imaging.decode import downscale
from skinscan.imaging.sharpness import estimate_sharpness
from skinscan.types import DecodedImage, QualityVerdict, clamp_score, round_half_up

LOGGER = logging.getLogger("skinscan.imaging.quality")

ALLOWED_MIME_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif")

REASON_BLURRY = "이미지가 흐릿합니다"
REASON_LOW_RESOLUTION = "해상도가 너무 낮습니다"
REASON_TOO_DARK = "조명이 너무 어둡습니다"
REASON_TOO_BRIGHT = "조명이 너무 밝습니다"
REASON_TOO_LARGE = "파일 크기가 너무 큽니다"


def brightness_score(image: DecodedImage, max_side: int = 512) -> float:
    """Map mean gray level to a 0-100 exposure score.

    0-80 gray is dark (0-40), 80-150 normal (40-60), 150-200 bright (60-80)
    and 200-255 very bright (80-100).
    """
    pixels = downscale(image, max_side)
    gray = float(np.mean(pixels[:, :, :3].astype(np.float32)))
    if gray < 80:
        score = (gray / 80) * 40
    elif gray <= 150:
        score = 40 + ((gray - 80) / 70) * 20
    elif gray <= 200:
        score = 60 + ((gray - 150) / 50) * 20
    else:
        score = 80 + ((gray - 200) / 55) * 20
    return clamp_score(score)


def resolution_score(image: DecodedImage, target_side: int) -> float:
    if target_side <= 0:
        return 100.0
    return clamp_score(min(image.width, image.height) / target_side * 100)


class ImageQualityGate:
    """Combines focus, exposure and resolution checks into a single verdict."""

    def __init__(self, config: Optional[QualityConfig] = None) -> None:
        self.config = config or QualityConfig()

    def check(self, image: DecodedImage) -> QualityVerdict:
        if not isinstance(image, DecodedImage):
            raise ImageDecodeError(f"Expected DecodedImage, got {type(image).__name__}")
        cfg = self.config
        reasons: List[str] = []
        recommendations: List[str] = []

        sharpness = round_half_up(
            estimate_sharpness(image, max_side=cfg.max_side, scale=cfg.sharpness_scale) * 100
        )
        if sharpness < cfg.min_sharpness:
            reasons.append(REASON_BLURRY)
            recommendations.append("더 선명한 사진을 촬영해주세요")
        elif sharpness < cfg.soft_sharpness:
            recommendations.append("초점을 더 정확히 맞춰주세요")

        brightness = round_half_up(brightness_score(image, cfg.max_side))
        if brightness < cfg.min_brightness:
            reasons.append(REASON_TOO_DARK)
            recommendations.append("밝은 곳에서 촬영해주세요")
        elif brightness > cfg.max_brightness:
            reasons.append(REASON_TOO_BRIGHT)
            recommendations.append("과도한 조명을 피해주세요")
        elif brightness < cfg.soft_brightness:
            recommendations.append("조명을 더 밝게 해주세요")

        resolution = round_half_up(resolution_score(image, cfg.target_side))
        if image.width < cfg.min_width or image.height < cfg.min_height:
            reasons.append(REASON_LOW_RESOLUTION)
            recommendations.append(f"{cfg.min_width}x{cfg.min_height} 이상의 사진을 사용해주세요")

        if image.source_size > cfg.max_file_size:
            reasons.append(REASON_TOO_LARGE)
            recommendations.append(
                f"{cfg.max_file_size // (1024 * 1024)}MB 이하의 이미지를 선택해주세요"
            )

        w_sharp, w_bright, w_res = cfg.weights
        overall = round_half_up(
            clamp_score(sharpness * w_sharp + brightness * w_bright + resolution * w_res)
        )
        is_good = overall >= cfg.min_score
        if cfg.require_all_checks and reasons:
            is_good = False

        LOGGER.info(
            "Quality %dx%d overall=%d sharpness=%d brightness=%d resolution=%d good=%s reasons=%s",
            image.width,
            image.height,
            overall,
            sharpness,
            brightness,
            resolution,
            is_good,
            reasons,
        )
        return QualityVerdict(
            overall_score=overall,
            is_good=is_good,
            reasons=tuple(reasons),
            recommendations=tuple(recommendations),
            sharpness=sharpness,
            brightness=brightness,
            resolution=resolution,
        )


def check_quality(image: DecodedImage, config: Optional[QualityConfig] = None) -> QualityVerdict:
    return ImageQualityGate(config).check(image)


def quality_message(score: float) -> str:
    """User-facing summary line for an overall quality score."""
    if score >= 80:
        return "완벽해요! 분석에 적합한 사진입니다"
    if score >= 60:
        return "좋아요! 분석 가능한 사진입니다"
    if score >= 40:
        return "개선이 필요합니다. 더 나은 사진을 권장합니다"
    return "재촬영을 권장합니다"


def validate_image_file(
    filename: str,
    size: int,
    content_type: Optional[str] = None,
    max_size: int = 10 * 1024 * 1024,
) -> None:
    """Reject non-image uploads and files over ``max_size`` before decoding."""
    mime = (content_type or mimetypes.guess_type(filename)[0] or "").lower()
    if not mime.startswith("image/"):
        raise ValidationError(f"Invalid format: {filename} is not an image")
    if mime not in ALLOWED_MIME_TYPES:
        raise ValidationError(f"Invalid format: {mime} is not supported (JPEG, PNG, WebP, GIF)")
    if size > max_size:
        raise ValidationError(
            f"File too large: {size} bytes exceeds {max_size // (1024 * 1024)}MB"
        )
