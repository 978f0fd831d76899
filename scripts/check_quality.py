#!/usr/bin/env python3
"""CLI for running the image quality gate over photos and writing a CSV report."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd

from skinscan.config import QualityConfig, load_pipeline_config
from skinscan.errors import ValidationError
from skinscan.imaging.decode import load_image
from skinscan.imaging.quality import ImageQualityGate, quality_message, validate_image_file
from skinscan.io_utils import IMAGE_SUFFIXES, ensure_dir, list_images, resolve_path, setup_logging

LOGGER = logging.getLogger("scripts.check_quality")

DEFAULT_CONFIG = Path("configs/pipeline.yaml")

REPORT_COLUMNS = [
    "path",
    "width",
    "height",
    "overall_score",
    "is_good",
    "sharpness",
    "brightness",
    "resolution",
    "reasons",
    "message",
    "error",
]


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Score photo quality for skin analysis")
    parser.add_argument("inputs", nargs="+", type=Path, help="Image files or directories of images")
    parser.add_argument("--config", type=str, default=str(DEFAULT_CONFIG), help="Pipeline YAML config")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("quality_report.csv"),
        help="CSV report path",
    )
    parser.add_argument("--min-score", type=float, default=None, help="Override quality.min_score")
    parser.add_argument("--max-side", type=int, default=None, help="Override quality.max_side")
    parser.add_argument(
        "--require-all-checks",
        action="store_true",
        help="Fail images with any failed sub-check even if the overall score passes",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def resolve_quality_config(args: argparse.Namespace, base: QualityConfig) -> QualityConfig:
    """Apply CLI overrides on top of the configured quality thresholds."""
    if args.min_score is not None:
        base.min_score = float(args.min_score)
    if args.max_side is not None:
        base.max_side = int(args.max_side)
    if args.require_all_checks:
        base.require_all_checks = True
    return base


def collect_images(inputs: Sequence[Path]) -> List[Path]:
    paths: List[Path] = []
    for item in inputs:
        if item.is_dir():
            paths.extend(list_images(item))
        elif item.suffix.lower() in IMAGE_SUFFIXES:
            paths.append(item)
        else:
            LOGGER.warning("Skipping %s: not an image file or directory", item)
    return paths


def evaluate(path: Path, gate: ImageQualityGate) -> Dict:
    row: Dict = {column: None for column in REPORT_COLUMNS}
    row["path"] = str(path)
    try:
        validate_image_file(path.name, path.stat().st_size, max_size=gate.config.max_file_size)
        image = load_image(path)
        verdict = gate.check(image)
    except (ValidationError, OSError) as exc:
        LOGGER.warning("Could not score %s: %s", path, exc)
        row["is_good"] = False
        row["error"] = str(exc)
        return row
    row.update(
        {
            "width": image.width,
            "height": image.height,
            "overall_score": verdict.overall_score,
            "is_good": verdict.is_good,
            "sharpness": verdict.sharpness,
            "brightness": verdict.brightness,
            "resolution": verdict.resolution,
            "reasons": "; ".join(verdict.reasons),
            "message": quality_message(verdict.overall_score),
        }
    )
    return row


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    config = load_pipeline_config(resolve_path(args.config, Path.cwd()))
    gate = ImageQualityGate(resolve_quality_config(args, config.quality))

    paths = collect_images(args.inputs)
    if not paths:
        LOGGER.error("No images found in %s", [str(p) for p in args.inputs])
        return 1

    df = pd.DataFrame([evaluate(path, gate) for path in paths], columns=REPORT_COLUMNS)
    ensure_dir(args.output.parent)
    df.to_csv(args.output, index=False)

    passed = int(df["is_good"].astype(bool).sum())
    LOGGER.info("%d/%d images passed the quality gate; report written to %s", passed, len(df), args.output)
    return 0 if passed == len(df) else 1


if __name__ == "__main__":
    raise SystemExit(main())
