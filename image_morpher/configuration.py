from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import yaml

from .correspondence import FeaturePrimitive, split_feature_entries
from .errors import ValidationError
from .resample import check_edge_policy
from .warp_field import WarpConfig

logger = logging.getLogger(__name__)

PREVIEW_FRAMES = 12
FULL_MIN_FRAMES = 30


@dataclass
class PipelineConfig:
    image_a: Path
    image_b: Path
    features_path: Path
    output_path: Optional[Path] = None
    output_frame_pattern: Optional[Path] = None
    mode: str = "auto"
    frames: int = 30
    fps: float = 30.0
    width: Optional[int] = None
    height: Optional[int] = None
    a: float = 1.0
    b: float = 2.0
    p: float = 0.5
    edge_policy: str = "clamp"
    workers: Optional[int] = None
    chunk_rows: int = 64
    timeout: Optional[float] = None
    preview_mode: bool = False
    full_mode: bool = False
    scale: float = 1.0
    config_name: str = "cli"
    log_level: str = "INFO"
    cli_overrides: Set[str] = field(default_factory=set, repr=False)
    preset_keys: Set[str] = field(default_factory=set, repr=False)

    def resolve(self) -> None:
        self.image_a = self.image_a.expanduser()
        self.image_b = self.image_b.expanduser()
        self.features_path = self.features_path.expanduser()
        if self.output_path:
            self.output_path = self.output_path.expanduser()
        if self.output_frame_pattern:
            self.output_frame_pattern = self.output_frame_pattern.expanduser()
        if self.output_path is None and self.output_frame_pattern is None:
            raise ValidationError("Either an output video or an output frame pattern is required")
        self.edge_policy = check_edge_policy(self.edge_policy)

    def apply_mode_defaults(self) -> None:
        target_mode = self.mode
        if self.preview_mode and target_mode == "auto":
            target_mode = "preview"
        if self.full_mode:
            target_mode = "full"
        if target_mode == "auto":
            target_mode = "full"

        # Values set explicitly, on the command line or in a preset, are kept.
        explicit = self.cli_overrides | self.preset_keys
        if target_mode == "preview":
            if "frames" not in explicit:
                self.frames = PREVIEW_FRAMES
            if "width" not in explicit and "height" not in explicit:
                self.scale = 0.5
        elif target_mode == "full":
            if "frames" not in explicit:
                self.frames = max(self.frames, FULL_MIN_FRAMES)
        else:
            raise ValidationError(f"Unknown mode: {self.mode!r}")
        self.mode = target_mode

    def warp_config(self) -> WarpConfig:
        return WarpConfig(a=self.a, b=self.b, p=self.p)

    def target_size(self, source_size: Tuple[int, int]) -> Tuple[int, int]:
        src_w, src_h = source_size
        width = self.width
        height = self.height
        if width is None and height is None:
            return max(1, int(round(src_w * self.scale))), max(1, int(round(src_h * self.scale)))
        if width is None:
            width = max(1, int(round(src_w * height / src_h)))
        if height is None:
            height = max(1, int(round(src_h * width / src_w)))
        return width, height


def load_preset(path: Path) -> Dict[str, Any]:
    path = path.expanduser()
    if not path.exists():
        raise FileNotFoundError(path)
    with path.open("r", encoding="utf-8") as fh:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(fh)
        else:
            data = json.load(fh)
    logger.debug("Loaded preset %s", path)
    return data or {}


def load_feature_file(path: Path) -> Tuple[List[FeaturePrimitive], List[FeaturePrimitive]]:
    """Read paired features from YAML/JSON.

    The file holds either a bare list of ``{a: ..., b: ...}`` entries or a
    mapping with such a list under ``features``.
    """
    data = load_preset(path)
    entries = data.get("features", []) if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ValidationError(f"Feature file {path} must contain a list of feature pairs")
    features_a, features_b = split_feature_entries(entries)
    logger.info("Loaded %d feature pairs from %s", len(features_a), path)
    return features_a, features_b


def _optional(merged: Dict[str, Any], key: str, cast):
    value = merged.get(key)
    return cast(value) if value is not None else None


def build_config(cli_args: Dict[str, Any], preset: Optional[Dict[str, Any]] = None) -> PipelineConfig:
    merged: Dict[str, Any] = {}
    preset = preset or {}
    merged.update(preset)
    merged.update({k: v for k, v in cli_args.items() if v is not None})

    cli_overrides: Set[str] = {k for k, v in cli_args.items() if v is not None}

    mode = merged.get("mode", "auto")
    if merged.get("preview"):
        mode = "preview"
    if merged.get("full"):
        mode = "full"

    missing = [key for key in ("image_a", "image_b", "features") if not merged.get(key)]
    if missing:
        raise ValidationError(f"Missing required settings: {', '.join(missing)}")

    try:
        config = PipelineConfig(
            image_a=Path(merged["image_a"]),
            image_b=Path(merged["image_b"]),
            features_path=Path(merged["features"]),
            output_path=Path(merged["output"]) if merged.get("output") else None,
            output_frame_pattern=(
                Path(merged["output_frame_pattern"]) if merged.get("output_frame_pattern") else None
            ),
            mode=str(mode),
            frames=int(merged.get("frames", 30)),
            fps=float(merged.get("fps", 30.0)),
            width=_optional(merged, "width", int),
            height=_optional(merged, "height", int),
            a=float(merged.get("a", 1.0)),
            b=float(merged.get("b", 2.0)),
            p=float(merged.get("p", 0.5)),
            edge_policy=str(merged.get("edge_policy", "clamp")),
            workers=_optional(merged, "workers", int),
            chunk_rows=int(merged.get("chunk_rows", 64)),
            timeout=_optional(merged, "timeout", float),
            preview_mode=bool(merged.get("preview_mode", False) or merged.get("preview", False)),
            full_mode=bool(merged.get("full", False)),
            config_name=str(merged.get("config_name", "cli")),
            log_level=str(merged.get("log_level", "INFO")),
        )
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid configuration value: {exc}") from exc
    config.cli_overrides = cli_overrides
    config.preset_keys = {k for k, v in preset.items() if v is not None}
    config.resolve()
    config.apply_mode_defaults()
    return config
