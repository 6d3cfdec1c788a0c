from pathlib import Path
import sys

import pytest
import yaml

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from image_morpher.configuration import build_config, load_feature_file, load_preset
from image_morpher.correspondence import LineSegment, Point
from image_morpher.errors import ValidationError


def _cli(tmp_path, **extra):
    args = {
        "image_a": str(tmp_path / "a.png"),
        "image_b": str(tmp_path / "b.png"),
        "features": str(tmp_path / "features.yaml"),
        "output": str(tmp_path / "morph.mp4"),
    }
    args.update(extra)
    return args


def test_build_config_defaults(tmp_path):
    config = build_config(_cli(tmp_path))
    assert config.image_a == (tmp_path / "a.png")
    assert config.output_path == (tmp_path / "morph.mp4")
    assert config.mode == "full"
    assert config.frames == 30
    assert config.edge_policy == "clamp"
    warp = config.warp_config()
    assert (warp.a, warp.b, warp.p) == (1.0, 2.0, 0.5)


def test_preview_flag_adjusts_defaults(tmp_path):
    config = build_config(_cli(tmp_path, preview=True))
    assert config.mode == "preview"
    assert config.frames == 12
    assert config.scale == 0.5
    assert config.target_size((200, 100)) == (100, 50)


def test_cli_overrides_win_over_preset_and_mode(tmp_path):
    preset = {"frames": 50, "b": 1.5, "workers": 2}
    config = build_config(_cli(tmp_path, frames=5, preview=True, width=80), preset)
    assert config.frames == 5
    assert config.b == 1.5
    assert config.workers == 2
    assert config.scale == 1.0
    assert config.target_size((200, 100)) == (80, 40)


def test_preset_frames_survive_mode_defaults(tmp_path):
    full = build_config(_cli(tmp_path), {"frames": 10})
    assert full.mode == "full"
    assert full.frames == 10
    preview = build_config(_cli(tmp_path, preview=True), {"frames": 40, "width": 120})
    assert preview.frames == 40
    assert preview.scale == 1.0
    assert preview.target_size((200, 100)) == (120, 60)
    defaulted = build_config(_cli(tmp_path, preview=True), {"fps": 24})
    assert defaulted.frames == 12


def test_missing_inputs_or_outputs_raise(tmp_path):
    with pytest.raises(ValidationError):
        build_config({"image_a": "a.png"})
    args = _cli(tmp_path)
    del args["output"]
    with pytest.raises(ValidationError):
        build_config(args)


def test_invalid_values_raise(tmp_path):
    with pytest.raises(ValidationError):
        build_config(_cli(tmp_path, frames="many"))
    with pytest.raises(ValidationError):
        build_config(_cli(tmp_path, edge_policy="wrap"))
    with pytest.raises(ValidationError):
        build_config(_cli(tmp_path, a=0.0)).warp_config()


def test_load_preset_yaml_and_json(tmp_path):
    yaml_path = tmp_path / "preset.yaml"
    yaml_path.write_text("frames: 8\nfps: 12\n", encoding="utf-8")
    json_path = tmp_path / "preset.json"
    json_path.write_text('{"frames": 9}', encoding="utf-8")
    assert load_preset(yaml_path) == {"frames": 8, "fps": 12}
    assert load_preset(json_path) == {"frames": 9}
    with pytest.raises(FileNotFoundError):
        load_preset(tmp_path / "missing.yaml")


def test_load_feature_file(tmp_path):
    path = tmp_path / "features.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "features": [
                    {"a": [1, 2], "b": [3, 4]},
                    {"a": [[0, 0], [5, 0]], "b": [[0, 1], [5, 2]]},
                ]
            }
        ),
        encoding="utf-8",
    )
    features_a, features_b = load_feature_file(path)
    assert features_a == [Point(1.0, 2.0), LineSegment(Point(0.0, 0.0), Point(5.0, 0.0))]
    assert features_b[0] == Point(3.0, 4.0)


def test_load_feature_file_rejects_non_list(tmp_path):
    path = tmp_path / "features.json"
    path.write_text('{"features": {"a": [1, 2]}}', encoding="utf-8")
    with pytest.raises(ValidationError):
        load_feature_file(path)
