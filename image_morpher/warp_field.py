from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Tuple, Union

import numpy as np

from .correspondence import MIN_SEGMENT_LENGTH, CorrespondenceSet
from .errors import ValidationError

logger = logging.getLogger(__name__)

ArrayLike = Union[float, np.ndarray]

# Upper bound on b and p; keeps b * p * log(length) well inside float range.
MAX_SHAPING_EXPONENT = 1e6


@dataclass(frozen=True)
class WarpConfig:
    """Shaping constants of the field warp weight ``(length**p / (a + dist))**b``.

    ``a`` keeps the weight finite for pixels lying on a feature, ``b`` controls
    how quickly influence falls off with distance and ``p`` how much longer
    segments dominate shorter ones.
    """

    a: float = 1.0
    b: float = 2.0
    p: float = 0.5

    def __post_init__(self) -> None:
        for name in ("a", "b", "p"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValidationError(f"Warp constant {name} must be a finite number, got {value!r}")
        if self.a <= 0.0:
            raise ValidationError(f"Warp constant a must be positive, got {self.a}")
        if self.b < 0.0 or self.p < 0.0:
            raise ValidationError(f"Warp constants b and p must be non-negative, got b={self.b}, p={self.p}")
        if self.b > MAX_SHAPING_EXPONENT or self.p > MAX_SHAPING_EXPONENT:
            raise ValidationError(
                f"Warp constants b and p must not exceed {MAX_SHAPING_EXPONENT:g}, got b={self.b}, p={self.p}"
            )


class WarpField:
    """Inverse mapping from target pixels to the source side of a correspondence set.

    Instances are immutable; the per-pixel vote is a fold over the feature
    pairs with local accumulators only, so one field can be evaluated from
    several threads at once.
    """

    __slots__ = ("_dest", "_source", "_is_segment", "config", "width", "height", "t")

    def __init__(
        self,
        dest: np.ndarray,
        source: np.ndarray,
        is_segment: np.ndarray,
        config: WarpConfig,
        width: int,
        height: int,
        t: float,
    ) -> None:
        self._dest = dest
        self._source = source
        self._is_segment = is_segment
        self.config = config
        self.width = width
        self.height = height
        self.t = t

    def __call__(self, px: ArrayLike, py: ArrayLike) -> Tuple[ArrayLike, ArrayLike]:
        scalar = np.ndim(px) == 0 and np.ndim(py) == 0
        x = np.asarray(px, dtype=np.float64)
        y = np.asarray(py, dtype=np.float64)
        x, y = np.broadcast_arrays(x, y)
        src_x, src_y = self._solve(x, y)
        if scalar:
            return float(src_x), float(src_y)
        return src_x, src_y

    def rows(self, y0: int, y1: int) -> Tuple[np.ndarray, np.ndarray]:
        """Source coordinates for the band of target scanlines ``[y0, y1)``."""
        y0 = max(0, y0)
        y1 = min(self.height, y1)
        ys, xs = np.mgrid[y0:y1, 0 : self.width].astype(np.float64)
        return self._solve(xs, ys)

    def grid(self) -> Tuple[np.ndarray, np.ndarray]:
        return self.rows(0, self.height)

    def _solve(self, x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        # Log-space fold against a running per-pixel maximum; the strongest
        # pair contributes exp(0) == 1, so the normaliser stays in [1, n].
        a, b, p = self.config.a, self.config.b, self.config.p
        peak = np.full(x.shape, -np.inf, dtype=np.float64)
        sum_x = np.zeros(x.shape, dtype=np.float64)
        sum_y = np.zeros(x.shape, dtype=np.float64)
        total = np.zeros(x.shape, dtype=np.float64)
        for dest, source, segment in zip(self._dest, self._source, self._is_segment):
            if segment:
                cand_x, cand_y, log_weight = _segment_vote(x, y, dest, source, a, b, p)
            else:
                cand_x, cand_y, log_weight = _point_vote(x, y, dest[:2], source[:2], a, b)
            new_peak = np.maximum(peak, log_weight)
            rescale = np.exp(peak - new_peak)
            weight = np.exp(log_weight - new_peak)
            sum_x = sum_x * rescale + weight * cand_x
            sum_y = sum_y * rescale + weight * cand_y
            total = total * rescale + weight
            peak = new_peak
        return sum_x / total, sum_y / total


def _segment_vote(x, y, dest, source, a, b, p):
    px, py, qx, qy = dest
    spx, spy, sqx, sqy = source
    dx, dy = qx - px, qy - py
    length = math.hypot(dx, dy)
    if length <= MIN_SEGMENT_LENGTH:
        # Opposing segments cross through a single point at this t.
        mid = np.array([(px + qx) / 2.0, (py + qy) / 2.0])
        src_mid = np.array([(spx + sqx) / 2.0, (spy + sqy) / 2.0])
        return _point_vote(x, y, mid, src_mid, a, b)
    sdx, sdy = sqx - spx, sqy - spy
    src_length = math.hypot(sdx, sdy)

    rel_x = x - px
    rel_y = y - py
    u = (rel_x * dx + rel_y * dy) / (length * length)
    v = (rel_x * -dy + rel_y * dx) / length

    cand_x = spx + u * sdx + v * -sdy / src_length
    cand_y = spy + u * sdy + v * sdx / src_length

    dist = np.abs(v)
    before = u < 0.0
    after = u > 1.0
    if before.any():
        dist = np.where(before, np.hypot(rel_x, rel_y), dist)
    if after.any():
        dist = np.where(after, np.hypot(x - qx, y - qy), dist)

    log_weight = b * (p * math.log(length) - np.log(a + dist))
    return cand_x, cand_y, log_weight


def _point_vote(x, y, dest, source, a, b):
    dist = np.hypot(x - dest[0], y - dest[1])
    log_weight = -b * np.log(a + dist)
    return x + (source[0] - dest[0]), y + (source[1] - dest[1]), log_weight


def field_at(
    t: float,
    correspondences: CorrespondenceSet,
    width: int,
    height: int,
    config: WarpConfig = WarpConfig(),
) -> WarpField:
    """Warp field from the in-between geometry at ``t`` back to the set's source side.

    For image B pass ``correspondences.swapped()`` together with ``1 - t``;
    both calls then target the same intermediate feature positions.
    """
    try:
        t = float(t)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Interpolation parameter must be a number, got {t!r}") from exc
    if not math.isfinite(t) or not 0.0 <= t <= 1.0:
        raise ValidationError(f"Interpolation parameter must lie in [0, 1], got {t!r}")
    if width <= 0 or height <= 0:
        raise ValidationError(f"Target dimensions must be positive, got {width}x{height}")
    # coords_a is the source side of the set, so the interpolation runs from it.
    dest = correspondences.interpolate(t)
    dest.flags.writeable = False
    logger.debug("Warp field at t=%.4f for %dx%d target, %d pairs", t, width, height, len(correspondences))
    return WarpField(
        dest,
        correspondences.coords_a,
        correspondences.is_segment,
        config,
        width,
        height,
        t,
    )
