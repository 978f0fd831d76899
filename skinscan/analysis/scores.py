"""Normalize loosely-typed score values coming back from the remote model."""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, Mapping, Optional

from skinscan.analysis.metrics import build_analysis_result
from skinscan.types import METRIC_KEYS, NEUTRAL_SCORE, SkinAnalysisResult

LOGGER = logging.getLogger("skinscan.analysis.scores")

_NON_NUMERIC = re.compile(r"[^\d.\-]")

# Remote condition names folded onto the four local metric keys.
METRIC_SYNONYMS: Dict[str, str] = {
    "pigmentation": "pigmentation",
    "brightness": "pigmentation",
    "tone": "pigmentation",
    "pores": "pores",
    "texture": "pores",
    "wrinkles": "wrinkles",
    "dark_circles": "wrinkles",
    "acne": "acne",
    "redness": "acne",
    "trouble": "acne",
}


def normalize_score_value(value: Any) -> Optional[float]:
    """Coerce a score-like value to a finite float, or ``None``.

    >>> normalize_score_value("85점")
    85.0
    >>> normalize_score_value({"score": {"score": 0.5}})
    0.5
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, Mapping):
        if "score" not in value:
            return None
        return normalize_score_value(value["score"])
    if isinstance(value, str):
        sanitized = _NON_NUMERIC.sub("", value)
        if not sanitized:
            return None
        try:
            number = float(sanitized)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def normalize_skin_scores(scores: Optional[Mapping[str, Any]]) -> Dict[str, float]:
    if not scores:
        return {}
    normalized: Dict[str, float] = {}
    for key, value in scores.items():
        number = normalize_score_value(value)
        if number is not None:
            normalized[key] = number
    return normalized


def average_score(scores: Optional[Mapping[str, Any]]) -> Optional[float]:
    values = list(normalize_skin_scores(scores).values())
    if not values:
        return None
    return sum(values) / len(values)


def _lookup(payload: Any, *path: str) -> Any:
    node = payload
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


def scores_from_payload(payload: Any) -> Dict[str, float]:
    """Read ``skin_condition_scores`` from the first known payload location that has them."""
    for path in (
        ("skin_condition_scores",),
        ("stage_a_vision_result", "skin_condition_scores"),
        ("analysis_data", "analysis_a", "skin_condition_scores"),
    ):
        source = _lookup(payload, *path)
        if source:
            return normalize_skin_scores(source)
    return {}


def _metric_scores(payload: Any) -> Dict[str, float]:
    raw = scores_from_payload(payload)
    if not raw:
        details = _lookup(payload, "details")
        if isinstance(details, Mapping):
            raw = normalize_skin_scores(details)
    found: Dict[str, float] = {}
    for name, value in raw.items():
        key = METRIC_SYNONYMS.get(str(name).lower())
        if key is not None and key not in found:
            found[key] = value
    return found


def result_from_payload(payload: Any) -> Optional[SkinAnalysisResult]:
    """Build a SkinAnalysisResult from a remote payload, or ``None`` if it carries no metric.

    Values in 0-1 are treated as fractions and scaled to 0-100. Metrics the
    payload does not mention take the neutral default.
    """
    found = _metric_scores(payload)
    if not found:
        LOGGER.debug("Payload carries no usable metric scores")
        return None
    if all(0.0 <= value <= 1.0 for value in found.values()):
        found = {key: value * 100 for key, value in found.items()}
    missing = [key for key in METRIC_KEYS if key not in found]
    if missing:
        LOGGER.warning("Remote payload missing metrics %s; using neutral default", missing)
    scores = {key: found.get(key, NEUTRAL_SCORE) for key in METRIC_KEYS}
    return build_analysis_result(scores)
