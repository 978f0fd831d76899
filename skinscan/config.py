"""Pipeline configuration dataclasses and YAML loading."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Type, TypeVar

from skinscan.io_utils import load_yaml

LOGGER = logging.getLogger("skinscan.config")

T = TypeVar("T")


@dataclass
class QualityConfig:
    min_score: float = 60.0
    require_all_checks: bool = False
    max_side: int = 512
    sharpness_scale: float = 100.0
    min_sharpness: float = 50.0
    soft_sharpness: float = 70.0
    min_width: int = 480
    min_height: int = 480
    target_side: int = 1024
    min_brightness: float = 40.0
    soft_brightness: float = 60.0
    max_brightness: float = 90.0
    max_file_size: int = 10 * 1024 * 1024
    # sharpness, brightness, resolution
    weights: Tuple[float, float, float] = (0.4, 0.35, 0.25)


@dataclass
class RetryConfig:
    max_retries: int = 3
    initial_delay: float = 1.0
    retry_types: Tuple[str, ...] = ("network", "server")


@dataclass
class OrchestratorConfig:
    request_timeout: float = 30.0
    landmark_timeout: float = 10.0
    reject_low_quality: bool = False
    local_fallback: bool = True
    sample_size: int = 10
    upload_chunk_size: int = 64 * 1024


@dataclass
class ServiceConfig:
    base_url: str = ""
    bucket: str = "skin-images"
    analyze_function: str = "analyze"
    save_function: str = "analyze/save"
    api_key: str = ""


@dataclass
class PipelineConfig:
    quality: QualityConfig = field(default_factory=QualityConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)


def _build_section(cls: Type[T], values: Optional[Mapping[str, Any]], section: str) -> T:
    if not values:
        return cls()
    known = {f.name: f for f in fields(cls)}
    kwargs: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in known:
            LOGGER.warning("Ignoring unknown %s config key %r", section, key)
            continue
        if isinstance(value, list):
            value = tuple(value)
        kwargs[key] = value
    return cls(**kwargs)


def pipeline_config_from_dict(data: Mapping[str, Any]) -> PipelineConfig:
    for key in data:
        if key not in {"quality", "retry", "orchestrator", "service"}:
            LOGGER.warning("Ignoring unknown config section %r", key)
    config = PipelineConfig(
        quality=_build_section(QualityConfig, data.get("quality"), "quality"),
        retry=_build_section(RetryConfig, data.get("retry"), "retry"),
        orchestrator=_build_section(OrchestratorConfig, data.get("orchestrator"), "orchestrator"),
        service=_build_section(ServiceConfig, data.get("service"), "service"),
    )
    weights = config.quality.weights
    if len(weights) != 3 or abs(sum(weights) - 1.0) > 1e-4:
        raise ValueError(f"quality.weights must be three values summing to 1.0, got {weights}")
    return config


def load_pipeline_config(path: Optional[Path]) -> PipelineConfig:
    """Load pipeline config from YAML; missing file falls back to defaults."""
    if path is None or not path.exists():
        if path is not None:
            LOGGER.info("Pipeline config %s not found; using defaults", path)
        return PipelineConfig()
    return pipeline_config_from_dict(load_yaml(path))
