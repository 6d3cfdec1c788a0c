from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import EmptyCorrespondenceError, ValidationError

logger = logging.getLogger(__name__)

MIN_SEGMENT_LENGTH = 1e-6


class FeatureKind(enum.Enum):
    POINT = "point"
    SEGMENT = "segment"


@dataclass(frozen=True)
class Point:
    x: float
    y: float

    kind = FeatureKind.POINT

    def coords(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.x, self.y)


@dataclass(frozen=True)
class LineSegment:
    start: Point
    end: Point

    kind = FeatureKind.SEGMENT

    @property
    def length(self) -> float:
        return math.hypot(self.end.x - self.start.x, self.end.y - self.start.y)

    def coords(self) -> Tuple[float, float, float, float]:
        return (self.start.x, self.start.y, self.end.x, self.end.y)


FeaturePrimitive = Union[Point, LineSegment]


@dataclass(frozen=True)
class FeaturePair:
    source: FeaturePrimitive
    dest: FeaturePrimitive

    @property
    def kind(self) -> FeatureKind:
        return self.source.kind


class CorrespondenceSet:
    """Ordered, immutable pairing of features on image A with features on image B.

    Geometry is kept as two ``(N, 4)`` float arrays (``x1, y1, x2, y2`` per
    feature, points repeat their coordinate) plus a boolean mask marking the
    segment rows, so that the warp solver can fold over the pairs without
    touching the dataclasses again.
    """

    __slots__ = ("_pairs", "_coords_a", "_coords_b", "_is_segment")

    def __init__(self, pairs: Sequence[FeaturePair]) -> None:
        pairs = tuple(pairs)
        if not pairs:
            raise EmptyCorrespondenceError("At least one feature pair is required to define a morph")
        for index, pair in enumerate(pairs):
            if pair.source.kind is not pair.dest.kind:
                raise ValidationError(
                    f"Feature kinds differ at index {index}: {pair.source.kind.value} vs {pair.dest.kind.value}"
                )
            _validate(pair.source, index, "A")
            _validate(pair.dest, index, "B")
        self._pairs = pairs
        self._coords_a = _readonly(np.array([p.source.coords() for p in pairs], dtype=np.float64))
        self._coords_b = _readonly(np.array([p.dest.coords() for p in pairs], dtype=np.float64))
        self._is_segment = _readonly(np.array([p.kind is FeatureKind.SEGMENT for p in pairs], dtype=bool))

    @classmethod
    def build(
        cls,
        features_a: Sequence[FeaturePrimitive],
        features_b: Sequence[FeaturePrimitive],
        *,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> "CorrespondenceSet":
        features_a = list(features_a)
        features_b = list(features_b)
        if not features_a and not features_b:
            raise EmptyCorrespondenceError("At least one feature pair is required to define a morph")
        if len(features_a) != len(features_b):
            raise ValidationError(
                f"Feature counts differ: {len(features_a)} on image A, {len(features_b)} on image B"
            )
        pairs = []
        for index, (feat_a, feat_b) in enumerate(zip(features_a, features_b)):
            if feat_a.kind is not feat_b.kind:
                raise ValidationError(
                    f"Feature kinds differ at index {index}: {feat_a.kind.value} vs {feat_b.kind.value}"
                )
            feat_a = _checked(feat_a, index, "A", width, height)
            feat_b = _checked(feat_b, index, "B", width, height)
            pairs.append(FeaturePair(feat_a, feat_b))
        logger.debug("Built correspondence set with %d pairs", len(pairs))
        return cls(pairs)

    @property
    def pairs(self) -> Tuple[FeaturePair, ...]:
        return self._pairs

    @property
    def coords_a(self) -> np.ndarray:
        return self._coords_a

    @property
    def coords_b(self) -> np.ndarray:
        return self._coords_b

    @property
    def is_segment(self) -> np.ndarray:
        return self._is_segment

    def interpolate(self, t: float) -> np.ndarray:
        """In-between geometry at ``t``; exactly A at 0 and exactly B at 1."""
        return (1.0 - t) * self._coords_a + t * self._coords_b

    def swapped(self) -> "CorrespondenceSet":
        return CorrespondenceSet([FeaturePair(p.dest, p.source) for p in self._pairs])

    def __len__(self) -> int:
        return len(self._pairs)

    def __iter__(self):
        return iter(self._pairs)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CorrespondenceSet):
            return NotImplemented
        return self._pairs == other._pairs

    def __hash__(self) -> int:
        return hash(self._pairs)

    def __repr__(self) -> str:
        segments = int(self._is_segment.sum())
        return f"CorrespondenceSet(pairs={len(self)}, segments={segments}, points={len(self) - segments})"


def build_correspondences(
    features_a: Sequence[FeaturePrimitive],
    features_b: Sequence[FeaturePrimitive],
    *,
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> CorrespondenceSet:
    return CorrespondenceSet.build(features_a, features_b, width=width, height=height)


def _readonly(array: np.ndarray) -> np.ndarray:
    array.flags.writeable = False
    return array


def _clamp_point(point: Point, width: Optional[int], height: Optional[int]) -> Point:
    x, y = point.x, point.y
    if width is not None:
        x = min(max(x, 0.0), float(width - 1))
    if height is not None:
        y = min(max(y, 0.0), float(height - 1))
    if (x, y) == (point.x, point.y):
        return point
    return Point(x, y)


def _checked(
    feature: FeaturePrimitive,
    index: int,
    side: str,
    width: Optional[int],
    height: Optional[int],
) -> FeaturePrimitive:
    if not all(math.isfinite(v) for v in feature.coords()):
        raise ValidationError(f"Non-finite coordinate in feature {index} of image {side}")
    if feature.kind is FeatureKind.POINT:
        return _clamp_point(feature, width, height)
    clamped = LineSegment(_clamp_point(feature.start, width, height), _clamp_point(feature.end, width, height))
    if clamped != feature:
        logger.debug("Clamped segment %d of image %s into image bounds", index, side)
    return clamped


def _validate(feature: FeaturePrimitive, index: int, side: str) -> None:
    if not all(math.isfinite(v) for v in feature.coords()):
        raise ValidationError(f"Non-finite coordinate in feature {index} of image {side}")
    if feature.kind is FeatureKind.SEGMENT and feature.length <= MIN_SEGMENT_LENGTH:
        raise ValidationError(f"Line segment {index} of image {side} has zero length")


def parse_feature(value: Any) -> FeaturePrimitive:
    """Turn plain data from a feature file into a primitive.

    Accepted forms: ``[x, y]`` or ``{"x": x, "y": y}`` for points and
    ``[[x1, y1], [x2, y2]]`` or ``{"start": ..., "end": ...}`` for segments.
    """
    if isinstance(value, Mapping):
        if "start" in value and "end" in value:
            return LineSegment(_parse_point(value["start"]), _parse_point(value["end"]))
        return _parse_point(value)
    if isinstance(value, (list, tuple)) and len(value) == 2:
        if all(isinstance(v, (list, tuple, Mapping)) for v in value):
            return LineSegment(_parse_point(value[0]), _parse_point(value[1]))
        return _parse_point(value)
    raise ValidationError(f"Cannot interpret feature {value!r}")


def _parse_point(value: Any) -> Point:
    try:
        if isinstance(value, Mapping):
            return Point(float(value["x"]), float(value["y"]))
        if isinstance(value, (list, tuple)) and len(value) == 2:
            return Point(float(value[0]), float(value[1]))
    except (KeyError, TypeError, ValueError) as exc:
        raise ValidationError(f"Cannot interpret point {value!r}") from exc
    raise ValidationError(f"Cannot interpret point {value!r}")


def correspondences_from_data(
    entries: Iterable[Mapping[str, Any]],
    *,
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> CorrespondenceSet:
    features_a, features_b = split_feature_entries(entries)
    return CorrespondenceSet.build(features_a, features_b, width=width, height=height)


def split_feature_entries(entries: Iterable[Mapping[str, Any]]):
    features_a = []
    features_b = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping) or "a" not in entry or "b" not in entry:
            raise ValidationError(f"Feature entry {index} must provide 'a' and 'b'")
        features_a.append(parse_feature(entry["a"]))
        features_b.append(parse_feature(entry["b"]))
    return features_a, features_b
