"""Unit tests for the ray-casting pad boundary detector."""
import cv2
import numpy as np
import pytest

from pcb_registration.detection import (
    BoundaryResult,
    MetalBoundaryDetector,
    detect_metal_boundary,
    filter_green_points,
    merge_boundaries,
    refine_boundaries,
)
from pcb_registration.detection.metal_boundary import is_bright_metal, is_dark_hole, is_green_board
from pcb_registration.geometry import Point2D, circle_points, point_in_polygon
from pcb_registration.utils.error_handler import InvalidInputError

from conftest import GREEN_MASK, SILVER, draw_pad


class TestPixelPredicates:
    """Test suite for HSV pixel classification."""

    def test_predicates(self):
        assert is_bright_metal(20, 150, 200)
        assert is_bright_metal(0, 10, 150)
        assert not is_bright_metal(60, 180, 100)
        assert is_green_board(60, 180, 100)
        assert not is_green_board(20, 150, 200)
        assert is_dark_hole(0, 0, 30) and not is_dark_hole(0, 0, 90)


class TestMetalBoundaryDetector:
    """Test suite for MetalBoundaryDetector."""

    def test_round_pad_becomes_circle(self):
        result = detect_metal_boundary(draw_pad(radius=10), Point2D(50, 50), 20)

        assert result.is_circle
        assert result.detected
        assert result.boundary == []
        assert 7.0 <= result.radius <= 11.0
        assert result.center.distance(Point2D(50, 50)) < 1.5

    def test_annular_ring_around_open_hole(self):
        result = detect_metal_boundary(draw_pad(radius=12, hole_radius=5), Point2D(50, 50), 20)

        assert result.is_circle
        assert 9.0 <= result.radius <= 13.0

    def test_elongated_pad_keeps_polygon(self):
        image = np.zeros((100, 100, 3), dtype=np.uint8)
        image[:] = GREEN_MASK
        cv2.rectangle(image, (35, 45), (65, 55), SILVER, -1)

        result = MetalBoundaryDetector().detect(image, Point2D(50, 50), 25)

        assert not result.is_circle
        assert len(result.boundary) >= 4
        rect = result.bounding_rect()
        assert rect.width > 2 * rect.height

    def test_no_metal_gives_default_circle(self):
        image = np.zeros((60, 60, 3), dtype=np.uint8)
        image[:] = GREEN_MASK
        result = detect_metal_boundary(image, Point2D(30, 30), 16)

        assert result.is_circle
        assert result.radius == pytest.approx(8.0)
        assert result.center == Point2D(30, 30)
        assert not result.detected
        assert result.to_dict()['detected'] is False

    def test_seed_outside_image(self):
        result = detect_metal_boundary(draw_pad(), Point2D(500, 500), 10)
        assert result.radius == pytest.approx(5.0)

    @pytest.mark.parametrize("radius", [0, -3])
    def test_non_positive_radius(self, radius):
        with pytest.raises(InvalidInputError):
            detect_metal_boundary(draw_pad(), Point2D(50, 50), radius)


class TestBoundaryPostProcessing:
    """Test suite for merging, filtering and parallel refinement."""

    def test_merge_never_shrinks(self):
        a = BoundaryResult(Point2D(50, 50), 10.0)
        b = BoundaryResult(Point2D(56, 50), 4.0)

        merged = merge_boundaries(a, b)

        assert merged.radius >= 10.0
        for p in circle_points(Point2D(50, 50), 9.5, 16):
            assert point_in_polygon(p, merged.boundary)

    def test_merge_covers_both_inputs(self):
        a = BoundaryResult(Point2D(50, 50), 5.0)
        b = BoundaryResult(Point2D(62, 50), 5.0)

        merged = merge_boundaries(a, b)

        assert not merged.is_circle
        assert merged.radius >= 5.0
        assert point_in_polygon(Point2D(47, 50), merged.boundary)
        assert point_in_polygon(Point2D(65, 50), merged.boundary)
        assert merged.center.x == pytest.approx(56, abs=1.0)

    def test_filter_green_points(self):
        image = draw_pad(radius=10)
        points = [Point2D(50, 50), Point2D(5, 5), Point2D(-1, 50), Point2D(52, 48)]
        assert filter_green_points(image, points) == [Point2D(50, 50), Point2D(52, 48)]

    def test_refine_boundaries_keeps_seed_order(self):
        image = np.zeros((100, 200, 3), dtype=np.uint8)
        image[:] = GREEN_MASK
        cv2.circle(image, (40, 50), 8, SILVER, -1)
        cv2.circle(image, (150, 50), 12, SILVER, -1)

        results = refine_boundaries(image, [Point2D(150, 50), Point2D(40, 50)], 20, max_workers=2)

        assert results[0].center.distance(Point2D(150, 50)) < 1.5
        assert results[1].center.distance(Point2D(40, 50)) < 1.5
        assert results[0].radius > results[1].radius

    def test_refine_no_seeds(self):
        assert refine_boundaries(draw_pad(), [], 10) == []
