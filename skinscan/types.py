"""Common dataclasses and type aliases used across the skinscan package."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Sequence, Tuple, Union

import numpy as np

from skinscan.errors import ImageDecodeError

Point = Tuple[int, int]

# Metric keys in tie-break order for the primary concern.
METRIC_KEYS: Tuple[str, ...] = ("pigmentation", "pores", "wrinkles", "acne")

METRIC_LABELS: Dict[str, str] = {
    "pigmentation": "기미",
    "pores": "모공",
    "wrinkles": "주름",
    "acne": "여드름",
}

NEUTRAL_SCORE = 50
DEFAULT_PRIMARY_CONCERN = METRIC_LABELS["pigmentation"]


@dataclass(frozen=True)
class DecodedImage:
    """Decoded RGBA image; ``pixels`` is a read-only (height, width, 4) uint8 array."""

    width: int
    height: int
    pixels: np.ndarray
    format: str = "RAW"
    source_size: int = 0

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ImageDecodeError(f"Image has no pixels ({self.width}x{self.height})")
        pixels = np.asarray(self.pixels)
        if pixels.dtype != np.uint8 or pixels.shape != (self.height, self.width, 4):
            raise ImageDecodeError(
                f"Expected uint8 RGBA buffer of shape {(self.height, self.width, 4)}, "
                f"got {pixels.dtype} {pixels.shape}"
            )
        if pixels.flags.writeable:
            pixels = pixels.copy()
            pixels.setflags(write=False)
        object.__setattr__(self, "pixels", pixels)

    @classmethod
    def from_buffer(cls, width: int, height: int, buffer: Union[bytes, bytearray, memoryview]) -> "DecodedImage":
        """Build an image from a raw row-major RGBA byte buffer."""
        expected = int(width) * int(height) * 4
        if width <= 0 or height <= 0 or len(buffer) != expected:
            raise ImageDecodeError(
                f"RGBA buffer of {len(buffer)} bytes does not match {width}x{height}"
            )
        pixels = np.frombuffer(bytes(buffer), dtype=np.uint8).reshape(int(height), int(width), 4)
        return cls(width=int(width), height=int(height), pixels=pixels)

    @property
    def rgb(self) -> np.ndarray:
        return self.pixels[:, :, :3]


@dataclass(frozen=True)
class NormalizedLandmark:
    """Landmark position relative to image width/height."""

    x: float
    y: float


LandmarkSet = Sequence[NormalizedLandmark]


class SkinGrade(str, Enum):
    GOOD = "good"
    CAUTION = "caution"
    RISK = "risk"

    @property
    def label(self) -> str:
        return _GRADE_LABELS[self]


_GRADE_LABELS = {
    SkinGrade.GOOD: "양호",
    SkinGrade.CAUTION: "주의",
    SkinGrade.RISK: "위험",
}


def grade_for_score(score: float) -> SkinGrade:
    """Map a 0-100 score to its grade (>=80 good, >=50 caution, else risk)."""
    if score >= 80:
        return SkinGrade.GOOD
    if score >= 50:
        return SkinGrade.CAUTION
    return SkinGrade.RISK


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_score(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, float(value)))


@dataclass(frozen=True)
class SkinMetric:
    score: int
    grade: SkinGrade

    @classmethod
    def from_score(cls, score: float) -> "SkinMetric":
        rounded = round_half_up(clamp_score(score))
        return cls(score=rounded, grade=grade_for_score(rounded))

    def to_dict(self) -> Dict:
        return {"score": self.score, "grade": self.grade.value}


@dataclass(frozen=True)
class SkinAnalysisResult:
    """Aggregate heuristic skin analysis for one submitted image."""

    total_score: int
    details: Dict[str, SkinMetric]
    primary_concern: str

    def to_dict(self) -> Dict:
        return {
            "totalScore": self.total_score,
            "details": {key: self.details[key].to_dict() for key in METRIC_KEYS},
            "primaryConcern": self.primary_concern,
        }


@dataclass(frozen=True)
class QualityVerdict:
    """Outcome of the image quality gate for one candidate image."""

    overall_score: int
    is_good: bool
    reasons: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()
    sharpness: int = 0
    brightness: int = 0
    resolution: int = 0

    def to_dict(self) -> Dict:
        return {
            "overallScore": self.overall_score,
            "isGood": self.is_good,
            "reasons": list(self.reasons),
            "recommendations": list(self.recommendations),
            "sharpness": self.sharpness,
            "brightness": self.brightness,
            "resolution": self.resolution,
        }


class AnalysisStage(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    ANALYZING = "analyzing"
    SAVING = "saving"
    RETRYING = "retrying"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AnalysisStage.COMPLETE, AnalysisStage.FAILED)


@dataclass(frozen=True)
class AnalysisProgress:
    stage: AnalysisStage
    progress: float
    message: str
    timestamp: float

    def to_dict(self) -> Dict:
        return {
            "stage": self.stage.value,
            "progress": self.progress,
            "message": self.message,
            "timestamp": self.timestamp,
        }


@dataclass
class AnalysisContext:
    """Caller-supplied request context forwarded to the remote collaborators."""

    user_id: str
    access_token: str = ""
    user_profile: Dict = field(default_factory=dict)
    meta: Dict = field(default_factory=dict)
    image_urls: List[str] = field(default_factory=list)
    image_angles: List[str] = field(default_factory=list)
