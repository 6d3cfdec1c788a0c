from pathlib import Path
import sys

import cv2
import numpy as np
import pytest
import yaml

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from image_morpher.configuration import build_config
from image_morpher.correspondence import LineSegment, Point
from image_morpher.main import main
from image_morpher.pipeline import fit_to_size, match_layout, pipeline_from_config, scale_features


@pytest.fixture
def inputs(tmp_path):
    rng = np.random.default_rng(99)
    image_a = rng.integers(0, 256, size=(20, 30, 3)).astype(np.uint8)
    image_b = rng.integers(0, 256, size=(20, 30, 3)).astype(np.uint8)
    cv2.imwrite(str(tmp_path / "a.png"), image_a)
    cv2.imwrite(str(tmp_path / "b.png"), image_b)
    features = {
        "features": [
            {"a": [[5, 5], [25, 6]], "b": [[4, 8], [26, 4]]},
            {"a": [15, 15], "b": [12, 14]},
        ]
    }
    (tmp_path / "features.yaml").write_text(yaml.safe_dump(features), encoding="utf-8")
    return tmp_path, image_a, image_b


def test_pipeline_exports_frames(inputs):
    tmp_path, image_a, image_b = inputs
    config = build_config(
        {
            "image_a": str(tmp_path / "a.png"),
            "image_b": str(tmp_path / "b.png"),
            "features": str(tmp_path / "features.yaml"),
            "output_frame_pattern": str(tmp_path / "frames" / "morph_{index:03d}.png"),
            "frames": 4,
            "workers": 2,
        }
    )
    written = pipeline_from_config(config).run()
    assert written == 4
    exported = sorted((tmp_path / "frames").glob("morph_*.png"))
    assert [p.name for p in exported] == ["morph_000.png", "morph_001.png", "morph_002.png", "morph_003.png"]
    np.testing.assert_array_equal(cv2.imread(str(exported[0])), image_a)
    np.testing.assert_array_equal(cv2.imread(str(exported[-1])), image_b)


def test_main_returns_error_code_for_bad_features(inputs):
    tmp_path, _, _ = inputs
    (tmp_path / "bad.yaml").write_text(yaml.safe_dump({"features": [{"a": [1, 1], "b": [[0, 0], [3, 3]]}]}))
    code = main(
        [
            "--image-a", str(tmp_path / "a.png"),
            "--image-b", str(tmp_path / "b.png"),
            "--features", str(tmp_path / "bad.yaml"),
            "--output-frame-pattern", str(tmp_path / "out_{index}.png"),
            "--frames", "2",
            "--log-level", "ERROR",
        ]
    )
    assert code == 1
    assert not list(tmp_path.glob("out_*.png"))


def test_main_returns_error_code_for_missing_files(inputs):
    tmp_path, _, _ = inputs
    base = [
        "--image-b", str(tmp_path / "b.png"),
        "--features", str(tmp_path / "features.yaml"),
        "--output-frame-pattern", str(tmp_path / "out_{index}.png"),
        "--frames", "2",
        "--log-level", "ERROR",
    ]
    assert main(["--image-a", str(tmp_path / "a.png"), "--preset", str(tmp_path / "none.yaml")] + base) == 1
    assert main(["--image-a", str(tmp_path / "nope.png")] + base) == 1
    assert not list(tmp_path.glob("out_*.png"))


def test_missing_image_raises(tmp_path, inputs):
    config = build_config(
        {
            "image_a": str(tmp_path / "nope.png"),
            "image_b": str(tmp_path / "b.png"),
            "features": str(tmp_path / "features.yaml"),
            "output_frame_pattern": str(tmp_path / "f_{index}.png"),
        }
    )
    with pytest.raises(FileNotFoundError):
        pipeline_from_config(config).run()


def test_fit_to_size_scales_features():
    pixels = np.zeros((10, 20, 3), dtype=np.uint8)
    features = [Point(10, 5), LineSegment(Point(0, 0), Point(20, 10))]
    resized, scaled = fit_to_size(pixels, features, (40, 5))
    assert resized.shape == (5, 40, 3)
    assert scaled == [Point(20.0, 2.5), LineSegment(Point(0.0, 0.0), Point(40.0, 5.0))]
    same, unchanged = fit_to_size(pixels, features, (20, 10))
    assert same is pixels
    assert unchanged == features
    assert scale_features([Point(1, 1)], 2.0, 3.0) == [Point(2.0, 3.0)]


def test_match_layout_promotes_channels():
    gray = np.zeros((4, 4, 1), dtype=np.uint8)
    bgra = np.zeros((4, 4, 4), dtype=np.uint8)
    a, b = match_layout(gray, bgra)
    assert a.shape == (4, 4, 4) and b.shape == (4, 4, 4)
    wide = np.full((4, 4, 3), 65535, dtype=np.uint16)
    narrow = np.zeros((4, 4, 3), dtype=np.uint8)
    a, b = match_layout(wide, narrow)
    assert a.dtype == np.uint8 and a[0, 0, 0] == 255
