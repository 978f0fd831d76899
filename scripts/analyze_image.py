#!/usr/bin/env python3
"""CLI for computing heuristic skin metrics for a single photo."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, List, Optional, Sequence

from skinscan.analysis.metrics import SkinMetricEngine
from skinscan.config import load_pipeline_config
from skinscan.detectors.face_mesh import LandmarkDetectorHandle
from skinscan.imaging.decode import load_image
from skinscan.imaging.quality import ImageQualityGate
from skinscan.io_utils import dump_json, ensure_dir, load_json, resolve_path, setup_logging
from skinscan.types import NormalizedLandmark

LOGGER = logging.getLogger("scripts.analyze_image")

DEFAULT_CONFIG = Path("configs/pipeline.yaml")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compute heuristic skin metrics for one image")
    parser.add_argument("image", type=Path, help="Front-facing face photo")
    parser.add_argument(
        "--landmarks",
        type=Path,
        default=None,
        help="JSON file of normalized landmarks; MediaPipe Face Mesh is used when omitted",
    )
    parser.add_argument("--output", type=Path, default=None, help="Output JSON path (defaults to <image>.skin.json)")
    parser.add_argument("--config", type=str, default=str(DEFAULT_CONFIG), help="Pipeline YAML config")
    parser.add_argument("--sample-size", type=int, default=None, help="Override orchestrator.sample_size")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def load_landmarks(path: Path) -> List[NormalizedLandmark]:
    """Read landmarks saved as ``[[x, y], ...]``, ``[{"x":..,"y":..}, ...]`` or ``{"landmarks": [...]}``."""
    data: Any = load_json(path)
    if isinstance(data, dict):
        data = data.get("landmarks", [])
    landmarks: List[NormalizedLandmark] = []
    for item in data:
        if isinstance(item, dict):
            landmarks.append(NormalizedLandmark(x=float(item["x"]), y=float(item["y"])))
        else:
            landmarks.append(NormalizedLandmark(x=float(item[0]), y=float(item[1])))
    LOGGER.info("Loaded %d landmarks from %s", len(landmarks), path)
    return landmarks


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    config = load_pipeline_config(resolve_path(args.config, Path.cwd()))
    sample_size = args.sample_size if args.sample_size is not None else config.orchestrator.sample_size

    image = load_image(args.image)
    verdict = ImageQualityGate(config.quality).check(image)

    if args.landmarks is not None:
        landmarks = load_landmarks(args.landmarks)
    else:
        landmarks = LandmarkDetectorHandle().detect_sync(image)

    result = SkinMetricEngine(sample_size).compute(image, landmarks)

    output_path = args.output or args.image.with_suffix(".skin.json")
    ensure_dir(output_path.parent)
    dump_json(
        output_path,
        {
            "image": str(args.image),
            "landmarkCount": len(landmarks),
            "quality": verdict,
            "result": result,
        },
    )
    for name, metric in result.details.items():
        LOGGER.info("%s: %d (%s)", name, metric.score, metric.grade.label)
    LOGGER.info(
        "Skin score %d (primary concern %s) written to %s",
        result.total_score,
        result.primary_concern,
        output_path,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
