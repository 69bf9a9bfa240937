"""
Geometry Primitives
===================

Point, rectangle and polygon types shared by the detectors, the
alignment engine and the via matcher.

Features:
---------
- Immutable 2-D point and integer rectangle records
- Convex hull and convex polygon intersection (OpenCV backed)
- Ray-casting point-in-polygon test
- Circle sampling, centroid and bounding rectangle helpers

Author: PCB Registration Team
Version: 1.0.0

Usage:
------
>>> from pcb_registration.geometry import Point2D, convex_hull
>>> hull = convex_hull([Point2D(0, 0), Point2D(4, 0), Point2D(2, 3), Point2D(2, 1)])
>>> len(hull)
3
"""

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

import cv2
import numpy as np


# ============================================================
# POINT AND RECTANGLE TYPES
# ============================================================

@dataclass(frozen=True)
class Point2D:
    """A point in image pixel coordinates (x right, y down)."""
    x: float
    y: float

    def distance(self, other: 'Point2D') -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def __add__(self, other: 'Point2D') -> 'Point2D':
        return Point2D(self.x + other.x, self.y + other.y)

    def __sub__(self, other: 'Point2D') -> 'Point2D':
        return Point2D(self.x - other.x, self.y - other.y)

    def scale(self, factor: float) -> 'Point2D':
        return Point2D(self.x * factor, self.y * factor)

    def translated(self, dx: float, dy: float) -> 'Point2D':
        return Point2D(self.x + dx, self.y + dy)

    def to_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)

    def to_dict(self) -> Dict:
        return {'x': round(self.x, 3), 'y': round(self.y, 3)}


@dataclass(frozen=True)
class IntRect:
    """Axis-aligned integer rectangle stored as (x, y, width, height)."""
    x: int
    y: int
    width: int
    height: int

    @property
    def x2(self) -> int:
        return self.x + self.width

    @property
    def y2(self) -> int:
        return self.y + self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def center(self) -> Point2D:
        return Point2D(self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def aspect_ratio(self) -> float:
        """Height over width, the natural measure for an edge-connector finger."""
        return self.height / max(self.width, 1)

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def contains(self, p: Point2D) -> bool:
        return self.x <= p.x < self.x2 and self.y <= p.y < self.y2

    def intersects(self, other: 'IntRect') -> bool:
        return (self.x < other.x2 and other.x < self.x2 and
                self.y < other.y2 and other.y < self.y2)

    def union(self, other: 'IntRect') -> 'IntRect':
        x1 = min(self.x, other.x)
        y1 = min(self.y, other.y)
        return IntRect(x1, y1, max(self.x2, other.x2) - x1, max(self.y2, other.y2) - y1)

    def clamp(self, width: int, height: int) -> 'IntRect':
        """Clip the rectangle to an image of the given size."""
        x1 = min(max(self.x, 0), width)
        y1 = min(max(self.y, 0), height)
        x2 = min(max(self.x2, 0), width)
        y2 = min(max(self.y2, 0), height)
        return IntRect(x1, y1, max(x2 - x1, 0), max(y2 - y1, 0))

    def translated(self, dx: int, dy: int) -> 'IntRect':
        return IntRect(self.x + dx, self.y + dy, self.width, self.height)

    @classmethod
    def from_center(cls, center: Point2D, width: float, height: float) -> 'IntRect':
        return cls(int(round(center.x - width / 2.0)), int(round(center.y - height / 2.0)),
                   int(round(width)), int(round(height)))

    def to_tuple(self) -> Tuple[int, int, int, int]:
        """Return (x, y, width, height)."""
        return (self.x, self.y, self.width, self.height)

    def to_dict(self) -> Dict:
        return {
            'x': self.x,
            'y': self.y,
            'width': self.width,
            'height': self.height
        }


# ============================================================
# POLYGON HELPERS
# ============================================================

def points_to_array(points: Iterable[Point2D]) -> np.ndarray:
    """Convert points to a float32 (N, 2) array as OpenCV expects."""
    return np.array([[p.x, p.y] for p in points], dtype=np.float32).reshape(-1, 2)


def array_to_points(array: np.ndarray) -> List[Point2D]:
    if array is None:
        return []
    flat = np.asarray(array, dtype=np.float64).reshape(-1, 2)
    return [Point2D(float(x), float(y)) for x, y in flat]


def centroid(points: Sequence[Point2D]) -> Point2D:
    """Mean of the vertices; the origin for an empty list."""
    if not points:
        return Point2D(0.0, 0.0)
    n = float(len(points))
    return Point2D(sum(p.x for p in points) / n, sum(p.y for p in points) / n)


def bounding_rect(points: Sequence[Point2D]) -> IntRect:
    if not points:
        return IntRect(0, 0, 0, 0)
    xs = [p.x for p in points]
    ys = [p.y for p in points]
    x1, y1 = int(math.floor(min(xs))), int(math.floor(min(ys)))
    x2, y2 = int(math.ceil(max(xs))), int(math.ceil(max(ys)))
    return IntRect(x1, y1, x2 - x1, y2 - y1)


def polygon_area(points: Sequence[Point2D]) -> float:
    """Unsigned shoelace area."""
    if len(points) < 3:
        return 0.0
    arr = points_to_array(points).astype(np.float64)
    x, y = arr[:, 0], arr[:, 1]
    return float(abs(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))) / 2.0)


def convex_hull(points: Sequence[Point2D]) -> List[Point2D]:
    """Convex hull in consistent (counter-clockwise in image space) order."""
    if len(points) < 3:
        return list(points)
    hull = cv2.convexHull(points_to_array(points), clockwise=False)
    return array_to_points(hull)


def point_in_polygon(p: Point2D, polygon: Sequence[Point2D]) -> bool:
    """Ray-casting containment test; points on an edge count as inside."""
    if len(polygon) < 3:
        return False
    contour = points_to_array(polygon).reshape(-1, 1, 2)
    return cv2.pointPolygonTest(contour, (float(p.x), float(p.y)), False) >= 0


def circle_points(center: Point2D, radius: float, n: int = 32) -> List[Point2D]:
    """Sample ``n`` evenly spaced points on a circle."""
    return [
        Point2D(center.x + radius * math.cos(2 * math.pi * i / n),
                center.y + radius * math.sin(2 * math.pi * i / n))
        for i in range(n)
    ]


def intersect_convex_polygons(a: Sequence[Point2D], b: Sequence[Point2D]) -> List[Point2D]:
    """
    Intersection of two convex polygons.

    Both inputs are re-hulled first so their winding matches. Returns an
    empty list when the polygons do not overlap.
    """
    hull_a = convex_hull(a)
    hull_b = convex_hull(b)
    if len(hull_a) < 3 or len(hull_b) < 3:
        return []
    area, inter = cv2.intersectConvexConvex(points_to_array(hull_a), points_to_array(hull_b))
    if inter is None or area <= 0:
        return []
    return array_to_points(inter)


def max_distance(center: Point2D, points: Sequence[Point2D]) -> float:
    return max((center.distance(p) for p in points), default=0.0)
