from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

try:
    import cv2
except ImportError as exc:  # pragma: no cover
    raise RuntimeError("OpenCV required for pipeline") from exc

from .configuration import PipelineConfig, load_feature_file
from .correspondence import FeatureKind, FeaturePrimitive, LineSegment, Point
from .encode import VideoEncoder, export_frame
from .sequencer import CancellationToken, MorphSession, generate

logger = logging.getLogger(__name__)

_TO_BGRA = {
    1: cv2.COLOR_GRAY2BGRA,
    3: cv2.COLOR_BGR2BGRA,
}


def load_image(path: Path) -> np.ndarray:
    pixels = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if pixels is None:
        raise FileNotFoundError(f"Unable to read image: {path}")
    if pixels.ndim == 2:
        pixels = pixels[..., None]
    return pixels


def scale_features(features: Sequence[FeaturePrimitive], sx: float, sy: float) -> List[FeaturePrimitive]:
    scaled: List[FeaturePrimitive] = []
    for feature in features:
        if feature.kind is FeatureKind.POINT:
            scaled.append(Point(feature.x * sx, feature.y * sy))
        else:
            scaled.append(
                LineSegment(
                    Point(feature.start.x * sx, feature.start.y * sy),
                    Point(feature.end.x * sx, feature.end.y * sy),
                )
            )
    return scaled


def fit_to_size(
    pixels: np.ndarray,
    features: Sequence[FeaturePrimitive],
    size: Tuple[int, int],
) -> Tuple[np.ndarray, List[FeaturePrimitive]]:
    """Resize an image to ``size`` and carry its feature coordinates along."""
    height, width = pixels.shape[:2]
    if (width, height) == size:
        return pixels, list(features)
    shrinking = size[0] * size[1] < width * height
    interpolation = cv2.INTER_AREA if shrinking else cv2.INTER_LINEAR
    resized = cv2.resize(pixels, size, interpolation=interpolation)
    if resized.ndim == 2:
        resized = resized[..., None]
    logger.info("Resized %dx%d image to %dx%d", width, height, size[0], size[1])
    return resized, scale_features(features, size[0] / width, size[1] / height)


def match_layout(pixels_a: np.ndarray, pixels_b: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Bring two decoded images to a common dtype and channel count."""
    if pixels_a.dtype != pixels_b.dtype:
        pixels_a = _to_uint8(pixels_a)
        pixels_b = _to_uint8(pixels_b)
    if pixels_a.shape[2] != pixels_b.shape[2]:
        logger.info(
            "Converting %d and %d channel images to BGRA", pixels_a.shape[2], pixels_b.shape[2]
        )
        pixels_a = _to_bgra(pixels_a)
        pixels_b = _to_bgra(pixels_b)
    return pixels_a, pixels_b


def _to_uint8(pixels: np.ndarray) -> np.ndarray:
    if pixels.dtype == np.uint16:
        return (pixels >> 8).astype(np.uint8)
    return pixels


def _to_bgra(pixels: np.ndarray) -> np.ndarray:
    channels = pixels.shape[2]
    if channels == 4:
        return pixels
    if channels not in _TO_BGRA:
        raise ValueError(f"Unsupported channel count: {channels}")
    return cv2.cvtColor(np.ascontiguousarray(pixels), _TO_BGRA[channels])


class MorphPipeline:
    def __init__(self, config: PipelineConfig) -> None:
        self.config = config
        self.cancel_token = CancellationToken()
        self._encoder: Optional[VideoEncoder] = None

    def cancel(self) -> None:
        self.cancel_token.cancel()

    def build_session(self) -> MorphSession:
        cfg = self.config
        features_a, features_b = load_feature_file(cfg.features_path)
        pixels_a = load_image(cfg.image_a)
        pixels_b = load_image(cfg.image_b)
        target_size = cfg.target_size((pixels_a.shape[1], pixels_a.shape[0]))
        pixels_a, features_a = fit_to_size(pixels_a, features_a, target_size)
        pixels_b, features_b = fit_to_size(pixels_b, features_b, target_size)
        pixels_a, pixels_b = match_layout(pixels_a, pixels_b)
        return MorphSession.create(
            pixels_a,
            pixels_b,
            features_a,
            features_b,
            warp=cfg.warp_config(),
            edge_policy=cfg.edge_policy,
        )

    # ------------------------------------------------------------------
    def run(self) -> int:
        cfg = self.config
        session = self.build_session()
        sequence = generate(
            session,
            cfg.frames,
            workers=cfg.workers,
            cancel=self.cancel_token,
            timeout=cfg.timeout,
            chunk_rows=cfg.chunk_rows,
        )
        logger.info("Morphing %s -> %s with %d feature pairs", cfg.image_a, cfg.image_b, len(session.correspondences))

        if cfg.output_path:
            self._encoder = VideoEncoder(cfg.output_path, fps=cfg.fps, frame_size=session.size)

        written = 0
        progress = tqdm(total=len(sequence), desc="Morphing", unit="frame")
        try:
            for index, frame in enumerate(sequence):
                if self._encoder:
                    self._encoder.write(frame)
                if cfg.output_frame_pattern:
                    export_frame(cfg.output_frame_pattern, index, frame)
                written += 1
                progress.update(1)
        finally:
            progress.close()
            if self._encoder:
                self._encoder.close()
                self._encoder = None

        if written < len(sequence):
            logger.warning("Stopped after %d of %d frames", written, len(sequence))
        else:
            logger.info("Rendered %d frames", written)
        return written


def pipeline_from_config(config: PipelineConfig) -> MorphPipeline:
    logger.info("Pipeline configuration: %s", json.dumps(asdict(config), default=str, indent=2))
    return MorphPipeline(config)
