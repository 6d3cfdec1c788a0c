from pathlib import Path
import sys

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from image_morpher.correspondence import LineSegment, Point, build_correspondences
from image_morpher.errors import ValidationError
from image_morpher.warp_field import WarpConfig, field_at


def seg(x1, y1, x2, y2):
    return LineSegment(Point(x1, y1), Point(x2, y2))


def test_field_is_identity_on_source_geometry():
    corr = build_correspondences([seg(1, 1, 8, 3), Point(4, 6)], [seg(2, 0, 5, 9), Point(7, 7)])
    field = field_at(0.0, corr, 10, 10)
    xs, ys = field.grid()
    grid_y, grid_x = np.mgrid[0:10, 0:10]
    np.testing.assert_allclose(xs, grid_x, atol=1e-9)
    np.testing.assert_allclose(ys, grid_y, atol=1e-9)


def test_point_pair_translates_by_offset():
    corr = build_correspondences([Point(1, 1)], [Point(3, 1)])
    field_a = field_at(0.5, corr, 8, 8)
    field_b = field_at(0.5, corr.swapped(), 8, 8)
    assert field_a(5, 5) == pytest.approx((4.0, 5.0))
    assert field_b(5, 5) == pytest.approx((6.0, 5.0))


def test_segment_pair_maps_through_rotation():
    corr = build_correspondences([seg(0, 0, 10, 0)], [seg(0, 0, 0, 10)])
    field = field_at(1.0, corr, 12, 12)
    assert field(0, 5) == pytest.approx((5.0, 0.0))
    assert field(2, 5) == pytest.approx((5.0, -2.0))


def test_pixel_on_segment_stays_finite():
    corr = build_correspondences([seg(0, 0, 4, 0), seg(0, 2, 4, 2)], [seg(0, 1, 4, 1), seg(0, 3, 4, 3)])
    field = field_at(0.25, corr, 5, 5)
    xs, ys = field.grid()
    assert np.isfinite(xs).all() and np.isfinite(ys).all()


def test_closer_segment_dominates():
    corr = build_correspondences(
        [seg(0, 0, 10, 0), seg(0, 50, 10, 50)],
        [seg(0, 5, 10, 5), seg(0, 50, 10, 50)],
    )
    field = field_at(1.0, corr, 60, 60)
    x, y = field(5, 5)
    assert y == pytest.approx(0.0, abs=0.2)


def test_opposing_segments_collapse_to_point_vote():
    corr = build_correspondences([seg(0, 0, 10, 0)], [seg(10, 0, 0, 0)])
    field = field_at(0.5, corr, 12, 12)
    assert field(3, 3) == pytest.approx((3.0, 3.0))


def test_field_is_deterministic_and_vectorised():
    corr = build_correspondences([seg(0, 0, 6, 2), Point(3, 5)], [seg(1, 1, 5, 6), Point(2, 2)])
    first = field_at(0.3, corr, 7, 6).grid()
    second = field_at(0.3, corr, 7, 6).grid()
    np.testing.assert_array_equal(first[0], second[0])
    np.testing.assert_array_equal(first[1], second[1])
    band_x, band_y = field_at(0.3, corr, 7, 6).rows(2, 4)
    assert band_x.shape == (2, 7)
    np.testing.assert_allclose(band_x, first[0][2:4], rtol=0, atol=1e-12)
    single = field_at(0.3, corr, 7, 6)(np.array([3.0]), np.array([2.0]))
    assert single[0][0] == pytest.approx(first[0][2, 3], abs=1e-12)


def test_parameter_validation():
    corr = build_correspondences([Point(0, 0)], [Point(1, 1)])
    with pytest.raises(ValidationError):
        field_at(1.5, corr, 4, 4)
    with pytest.raises(ValidationError):
        field_at(float("nan"), corr, 4, 4)
    with pytest.raises(ValidationError):
        field_at(0.5, corr, 0, 4)
    with pytest.raises(ValidationError):
        WarpConfig(a=0.0)
    with pytest.raises(ValidationError):
        WarpConfig(b=-1.0)
    with pytest.raises(ValidationError):
        WarpConfig(p=float("inf"))
    with pytest.raises(ValidationError):
        WarpConfig(b=1e7)


def test_steep_falloff_stays_finite_far_from_features():
    corr = build_correspondences([Point(0, 0)], [Point(2, 0)], width=400, height=40)
    field = field_at(0.5, corr, 400, 40, WarpConfig(b=200.0))
    xs, ys = field.grid()
    assert np.isfinite(xs).all() and np.isfinite(ys).all()
    assert field(399, 39) == pytest.approx((398.0, 39.0))


def test_long_segment_with_large_length_exponent_stays_finite():
    corr = build_correspondences(
        [seg(0, 0, 399, 0), seg(0, 30, 10, 30)],
        [seg(0, 2, 399, 2), seg(0, 30, 10, 30)],
        width=400,
        height=40,
    )
    field = field_at(1.0, corr, 400, 40, WarpConfig(p=150.0))
    xs, ys = field.grid()
    assert np.isfinite(xs).all() and np.isfinite(ys).all()
    # The long segment outweighs the short one everywhere.
    assert field(5, 30) == pytest.approx((5.0, 28.0), abs=1e-6)
