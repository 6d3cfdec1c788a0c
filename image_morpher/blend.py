from __future__ import annotations

import math
from typing import Sequence, Tuple

import numpy as np

from .errors import ValidationError


def _check_weight(t: float) -> float:
    try:
        t = float(t)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Blend weight must be a number, got {t!r}") from exc
    if not math.isfinite(t) or not 0.0 <= t <= 1.0:
        raise ValidationError(f"Blend weight must lie in [0, 1], got {t!r}")
    return t


def blend_arrays(a: np.ndarray, b: np.ndarray, t: float, dtype=np.uint8) -> np.ndarray:
    """Cross-dissolve two equally shaped arrays: ``rint((1 - t) * a + t * b)``.

    Rounding is half-to-even; the result is clamped to the integer range of
    ``dtype``. At ``t == 0`` and ``t == 1`` the output reproduces the rounded
    input exactly.
    """
    t = _check_weight(t)
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise ValidationError(f"Cannot blend arrays of shape {a.shape} and {b.shape}")
    mixed = np.rint((1.0 - t) * a + t * b)
    limits = np.iinfo(np.dtype(dtype))
    return np.clip(mixed, limits.min, limits.max).astype(dtype)


def blend(pixel_a: Sequence[float], pixel_b: Sequence[float], t: float, max_value: int = 255) -> Tuple[int, ...]:
    if len(pixel_a) != len(pixel_b):
        raise ValidationError(f"Channel counts differ: {len(pixel_a)} vs {len(pixel_b)}")
    t = _check_weight(t)
    mixed = np.rint((1.0 - t) * np.asarray(pixel_a, dtype=np.float64) + t * np.asarray(pixel_b, dtype=np.float64))
    return tuple(int(v) for v in np.clip(mixed, 0, max_value))
