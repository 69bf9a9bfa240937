"""Unit tests for point, rectangle and polygon helpers."""
import pytest
from dataclasses import FrozenInstanceError

from pcb_registration.geometry import (
    IntRect,
    Point2D,
    bounding_rect,
    centroid,
    circle_points,
    convex_hull,
    intersect_convex_polygons,
    max_distance,
    point_in_polygon,
    polygon_area,
)


def square(x, y, size):
    return [Point2D(x, y), Point2D(x + size, y), Point2D(x + size, y + size), Point2D(x, y + size)]


class TestPoint2D:
    """Test suite for Point2D."""

    def test_distance(self):
        assert Point2D(0, 0).distance(Point2D(3, 4)) == pytest.approx(5.0)

    def test_arithmetic(self):
        p = Point2D(1, 2) + Point2D(3, 4)
        assert p == Point2D(4, 6)
        assert (p - Point2D(1, 1)) == Point2D(3, 5)
        assert Point2D(1, 2).scale(2) == Point2D(2, 4)
        assert Point2D(1, 2).translated(-1, 1) == Point2D(0, 3)

    def test_immutability(self):
        p = Point2D(1, 2)
        with pytest.raises(FrozenInstanceError):
            p.x = 5


class TestIntRect:
    """Test suite for IntRect."""

    def test_properties(self):
        r = IntRect(10, 20, 12, 72)
        assert (r.x2, r.y2, r.area) == (22, 92, 864)
        assert r.center == Point2D(16, 56)
        assert r.aspect_ratio == pytest.approx(6.0)

    def test_contains_is_half_open(self):
        r = IntRect(0, 0, 10, 10)
        assert r.contains(Point2D(0, 0))
        assert not r.contains(Point2D(10, 5))

    def test_intersects_and_union(self):
        a = IntRect(0, 0, 10, 10)
        b = IntRect(5, 5, 10, 10)
        assert a.intersects(b)
        assert not a.intersects(IntRect(10, 0, 5, 5))
        assert a.union(b) == IntRect(0, 0, 15, 15)

    def test_clamp(self):
        assert IntRect(-5, -5, 20, 20).clamp(10, 8) == IntRect(0, 0, 10, 8)
        assert IntRect(50, 50, 5, 5).clamp(10, 10).is_empty()

    def test_from_center(self):
        assert IntRect.from_center(Point2D(16, 46), 12, 72) == IntRect(10, 10, 12, 72)


class TestPolygons:
    """Test suite for polygon helpers."""

    def test_centroid_and_bounds(self):
        pts = square(0, 0, 10)
        assert centroid(pts) == Point2D(5, 5)
        assert bounding_rect(pts) == IntRect(0, 0, 10, 10)
        assert centroid([]) == Point2D(0, 0)

    def test_polygon_area(self):
        assert polygon_area(square(0, 0, 10)) == pytest.approx(100.0)
        assert polygon_area([Point2D(0, 0), Point2D(1, 1)]) == 0.0

    def test_convex_hull_drops_interior_points(self):
        pts = square(0, 0, 10) + [Point2D(5, 5), Point2D(2, 3)]
        hull = convex_hull(pts)
        assert len(hull) == 4
        assert polygon_area(hull) == pytest.approx(100.0)

    def test_point_in_polygon(self):
        pts = square(0, 0, 10)
        assert point_in_polygon(Point2D(5, 5), pts)
        assert point_in_polygon(Point2D(0, 5), pts)
        assert not point_in_polygon(Point2D(11, 5), pts)
        assert not point_in_polygon(Point2D(1, 1), pts[:2])

    def test_circle_points(self):
        pts = circle_points(Point2D(10, 10), 5.0, 16)
        assert len(pts) == 16
        assert max_distance(Point2D(10, 10), pts) == pytest.approx(5.0)

    def test_intersection_of_overlapping_squares(self):
        overlap = intersect_convex_polygons(square(0, 0, 10), square(5, 5, 10))
        assert polygon_area(overlap) == pytest.approx(25.0, abs=0.5)

    def test_intersection_ignores_winding(self):
        clockwise = list(reversed(square(0, 0, 10)))
        overlap = intersect_convex_polygons(clockwise, square(5, 0, 10))
        assert polygon_area(overlap) == pytest.approx(50.0, abs=0.5)

    def test_disjoint_polygons(self):
        assert intersect_convex_polygons(square(0, 0, 5), square(20, 20, 5)) == []
