from __future__ import annotations

import logging
from typing import Tuple

import numpy as np

from .errors import InvalidCoordinateError, ValidationError
from .image_buffer import ImageBuffer

logger = logging.getLogger(__name__)

EDGE_POLICIES = ("clamp",)


def check_edge_policy(policy: str) -> str:
    normalized = str(policy).lower()
    if normalized not in EDGE_POLICIES:
        raise ValidationError(f"Unsupported edge policy: {policy!r} (supported: {', '.join(EDGE_POLICIES)})")
    return normalized


def resample(buffer: ImageBuffer, map_x: np.ndarray, map_y: np.ndarray) -> np.ndarray:
    """Bilinear lookup of ``buffer`` at fractional source coordinates.

    Coordinates outside the image are clamped to the nearest edge pixel
    before interpolating. The result keeps the shape of the maps plus a
    trailing channel axis and is left as float64 so that the caller decides
    when to round.
    """
    map_x = np.asarray(map_x, dtype=np.float64)
    map_y = np.asarray(map_y, dtype=np.float64)
    if map_x.shape != map_y.shape:
        raise ValidationError(f"Coordinate maps differ in shape: {map_x.shape} vs {map_y.shape}")
    if not (np.isfinite(map_x).all() and np.isfinite(map_y).all()):
        raise InvalidCoordinateError("Non-finite source coordinate passed to the resampler")

    pixels = buffer.pixels
    x = np.clip(map_x, 0.0, buffer.width - 1)
    y = np.clip(map_y, 0.0, buffer.height - 1)
    x0 = np.floor(x).astype(np.intp)
    y0 = np.floor(y).astype(np.intp)
    x1 = np.minimum(x0 + 1, buffer.width - 1)
    y1 = np.minimum(y0 + 1, buffer.height - 1)
    fx = np.expand_dims(x - x0, -1)
    fy = np.expand_dims(y - y0, -1)

    top_left = pixels[y0, x0].astype(np.float64)
    top_right = pixels[y0, x1].astype(np.float64)
    bottom_left = pixels[y1, x0].astype(np.float64)
    bottom_right = pixels[y1, x1].astype(np.float64)

    top = top_left + (top_right - top_left) * fx
    bottom = bottom_left + (bottom_right - bottom_left) * fx
    return top + (bottom - top) * fy


def sample(buffer: ImageBuffer, x: float, y: float) -> Tuple[float, ...]:
    values = resample(buffer, np.array(x, dtype=np.float64), np.array(y, dtype=np.float64))
    return tuple(float(v) for v in values)
