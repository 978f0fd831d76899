from pathlib import Path

import pytest

from skinscan.config import PipelineConfig, load_pipeline_config, pipeline_config_from_dict

REPO_CONFIG = Path(__file__).resolve().parents[1] / "configs" / "pipeline.yaml"


def test_missing_file_uses_defaults(tmp_path):
    config = load_pipeline_config(tmp_path / "absent.yaml")
    assert config == PipelineConfig()
    assert load_pipeline_config(None) == PipelineConfig()


def test_repo_config_matches_defaults():
    assert load_pipeline_config(REPO_CONFIG) == PipelineConfig()


def test_yaml_overrides_are_applied(tmp_path):
    path = tmp_path / "pipeline.yaml"
    path.write_text(
        "quality:\n"
        "  min_score: 75\n"
        "  weights: [0.5, 0.3, 0.2]\n"
        "retry:\n"
        "  max_retries: 5\n"
        "  retry_types: [network]\n"
        "orchestrator:\n"
        "  landmark_timeout: 4\n"
        "service:\n"
        "  base_url: https://example.supabase.co\n",
        encoding="utf-8",
    )

    config = load_pipeline_config(path)

    assert config.quality.min_score == 75
    assert config.quality.weights == (0.5, 0.3, 0.2)
    assert config.quality.max_side == 512
    assert config.retry.max_retries == 5
    assert config.retry.retry_types == ("network",)
    assert config.orchestrator.landmark_timeout == 4
    assert config.service.base_url == "https://example.supabase.co"
    assert config.service.bucket == "skin-images"


def test_unknown_keys_are_ignored(caplog):
    config = pipeline_config_from_dict({"quality": {"min_score": 70, "colour": "blue"}, "extras": {}})
    assert config.quality.min_score == 70
    assert "colour" in caplog.text
    assert "extras" in caplog.text


def test_weights_must_sum_to_one():
    with pytest.raises(ValueError):
        pipeline_config_from_dict({"quality": {"weights": [0.5, 0.5, 0.5]}})
