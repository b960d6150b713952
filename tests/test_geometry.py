"""Tests for the geometry kernel."""

import math

import pytest

from troads_canvas.geometry import (
    closest_point_on_segment,
    deterministic_hash,
    finalize_points,
    label_anchor,
    lane_offset,
    orthogonalize,
    path_length,
    points_to_path,
    segment_length_inside,
    segment_overlap_length,
    segments_cross,
    simplify_orthogonal_points,
    valid_points,
)
from troads_canvas.models import Point, Rect


def test_valid_points_drops_bad_entries() -> None:
    pts = [Point(0, 0), None, Point(math.nan, 1), Point(2, 2)]
    assert valid_points(pts) == [Point(0, 0), Point(2, 2)]
    assert valid_points(None) == []


def test_path_length_is_manhattan() -> None:
    assert path_length([Point(0, 0), Point(10, 0), Point(10, 5)]) == 15


class TestHashing:
    def test_known_values(self) -> None:
        assert deterministic_hash("") == 0
        assert deterministic_hash("a") == 97
        assert deterministic_hash("ab") == 97 * 31 + 98

    def test_wraps_to_int32(self) -> None:
        h = deterministic_hash("x" * 50)
        assert -(2 ** 31) <= h < 2 ** 31

    def test_lane_offset_range_and_stability(self) -> None:
        for edge_id in ("e1", "edge-42", "ffffffff-0000"):
            lane = lane_offset(edge_id)
            assert -5 <= lane < 5
            assert lane == lane_offset(edge_id)
        assert lane_offset(None) == 0
        assert lane_offset("") == 0

    def test_lane_offset_value(self) -> None:
        # hash("a") = 97 -> 97 % 10 - 5
        assert lane_offset("a") == 2


class TestSegments:
    def test_overlap_horizontal(self) -> None:
        assert segment_overlap_length(
            Point(0, 0), Point(100, 0), Point(50, 2), Point(150, 2),
        ) == 50

    def test_overlap_requires_same_line(self) -> None:
        assert segment_overlap_length(
            Point(0, 0), Point(100, 0), Point(0, 20), Point(100, 20),
        ) == 0

    def test_overlap_mixed_orientation(self) -> None:
        assert segment_overlap_length(
            Point(0, 0), Point(100, 0), Point(50, -10), Point(50, 10),
        ) == 0

    def test_cross(self) -> None:
        assert segments_cross(Point(0, 0), Point(100, 0), Point(50, -10), Point(50, 10))
        assert not segments_cross(Point(0, 0), Point(100, 0), Point(150, -10), Point(150, 10))
        # Touching at an end point is not a crossing
        assert not segments_cross(Point(0, 0), Point(100, 0), Point(100, 0), Point(100, 10))

    def test_length_inside(self) -> None:
        rect = Rect(10, 20, 0, 10)
        assert segment_length_inside(Point(0, 5), Point(30, 5), rect) == pytest.approx(10)
        assert segment_length_inside(Point(0, 50), Point(30, 50), rect) == 0

    def test_length_inside_along_border_is_zero(self) -> None:
        rect = Rect(10, 20, 0, 10)
        assert segment_length_inside(Point(0, 0), Point(30, 0), rect) == 0

    def test_length_inside_invalid(self) -> None:
        assert segment_length_inside(None, Point(1, 1), Rect(0, 1, 0, 1)) == 0

    def test_closest_point(self) -> None:
        q, d = closest_point_on_segment(Point(5, 7), Point(0, 0), Point(10, 0))
        assert q == Point(5, 0) and d == 7
        q, d = closest_point_on_segment(Point(-3, 4), Point(0, 0), Point(10, 0))
        assert q == Point(0, 0) and d == 5

    def test_closest_point_degenerate_segment(self) -> None:
        q, _ = closest_point_on_segment(Point(3, 4), Point(1, 1), Point(1, 1))
        assert q == Point(1, 1)


class TestNormalization:
    def test_snap_and_merge(self) -> None:
        pts = [Point(0, 0), Point(50, 0.4), Point(100, 0), Point(100, 80)]
        assert simplify_orthogonal_points(pts) == [Point(0, 0), Point(100, 0), Point(100, 80)]

    def test_drops_duplicates_but_keeps_end(self) -> None:
        pts = [Point(0, 0), Point(0, 0), Point(10, 0), Point(10.05, 0.05)]
        assert simplify_orthogonal_points(pts) == [Point(0, 0), Point(10, 0)]

    def test_orthogonalize_inserts_corner(self) -> None:
        assert orthogonalize([Point(0, 0), Point(10, 20)]) == [
            Point(0, 0), Point(10, 0), Point(10, 20),
        ]

    def test_finalize_z_shape(self) -> None:
        pts = [
            Point(0, 0), Point(20, 0), Point(60, 0), Point(60, 40),
            Point(80, 40), Point(100, 40),
        ]
        assert finalize_points(pts) == [Point(0, 0), Point(60, 0), Point(60, 40), Point(100, 40)]

    def test_finalize_straight_collapses(self) -> None:
        pts = [Point(0, 100), Point(20, 100), Point(100, 100), Point(100, 100), Point(200, 100)]
        assert finalize_points(pts) == [Point(0, 100), Point(200, 100)]

    def test_finalize_is_stable(self) -> None:
        pts = [Point(0, 0), Point(30, 5), Point(30, 60), Point(90, 60)]
        once = finalize_points(pts)
        assert finalize_points(once) == once


class TestRendering:
    def test_straight_path(self) -> None:
        assert points_to_path([Point(0, 100), Point(200, 100)]) == "M 0 100 L 200 100"

    def test_rounded_corner(self) -> None:
        path = points_to_path([Point(0, 0), Point(100, 0), Point(100, 100)])
        assert path == "M 0 0 L 92 0 Q 100 0 100 8 L 100 100"

    def test_radius_clamped_on_short_segment(self) -> None:
        path = points_to_path([Point(0, 0), Point(10, 0), Point(10, 100)])
        assert "L 5 0 Q 10 0 10 5" in path

    def test_degenerate(self) -> None:
        assert points_to_path([Point(0, 0)]) == ""
        assert points_to_path(None) == ""

    def test_label_anchor_longest_segment(self) -> None:
        pts = [Point(0, 0), Point(10, 0), Point(10, 100), Point(20, 100)]
        assert label_anchor(pts) == (10, 50)
        assert label_anchor([]) == (0, 0)
