import json
from argparse import Namespace

import pandas as pd

from scripts import analyze_image, check_quality
from skinscan.config import QualityConfig


def test_quality_cli_writes_report(tmp_path, png_bytes, noise_rgb):
    images = tmp_path / "photos"
    images.mkdir()
    (images / "good.png").write_bytes(png_bytes(noise_rgb(640, 640)))
    (images / "broken.jpg").write_bytes(b"not really a jpeg")
    (images / "notes.txt").write_text("ignored", encoding="utf-8")
    report = tmp_path / "out" / "report.csv"

    exit_code = check_quality.main(
        [str(images), "--output", str(report), "--config", str(tmp_path / "missing.yaml")]
    )

    df = pd.read_csv(report)
    assert exit_code == 1
    assert len(df) == 2
    good = df[df["path"].str.endswith("good.png")].iloc[0]
    broken = df[df["path"].str.endswith("broken.jpg")].iloc[0]
    assert bool(good["is_good"])
    assert good["width"] == 640
    assert not bool(broken["is_good"])
    assert isinstance(broken["error"], str)


def test_quality_cli_overrides_config():
    args = Namespace(min_score=80.0, max_side=256, require_all_checks=True)
    config = check_quality.resolve_quality_config(args, QualityConfig())
    assert config.min_score == 80.0
    assert config.max_side == 256
    assert config.require_all_checks


def test_analyze_cli_with_landmark_file(tmp_path, png_bytes, solid_image, caplog):
    image_path = tmp_path / "face.png"
    image_path.write_bytes(png_bytes(solid_image(64, 64).rgb))
    landmarks_path = tmp_path / "landmarks.json"
    landmarks_path.write_text(json.dumps({"landmarks": []}), encoding="utf-8")
    output = tmp_path / "result.json"

    exit_code = analyze_image.main(
        [
            str(image_path),
            "--landmarks",
            str(landmarks_path),
            "--output",
            str(output),
            "--config",
            str(tmp_path / "missing.yaml"),
        ]
    )

    data = json.loads(output.read_text(encoding="utf-8"))
    assert exit_code == 0
    assert data["landmarkCount"] == 0
    assert data["result"]["totalScore"] == 50
    assert data["result"]["primaryConcern"] == "기미"
    assert "overallScore" in data["quality"]
    assert "pores: 50 (주의)" in caplog.messages


def test_load_landmarks_accepts_pairs_and_dicts(tmp_path):
    path = tmp_path / "landmarks.json"
    path.write_text(json.dumps([[0.1, 0.2], {"x": 0.3, "y": 0.4}]), encoding="utf-8")
    landmarks = analyze_image.load_landmarks(path)
    assert [(lm.x, lm.y) for lm in landmarks] == [(0.1, 0.2), (0.3, 0.4)]
