"""
Metal Boundary Detector Module
==============================

Extracts the metal pad outline of a via around a seed point by casting
rays outward until they leave metal or reach the green solder mask.

Features:
---------
- Vectorized HSV pixel predicates (bright metal, green board, dark hole)
- Annular-ring handling when the seed lands in an open drill hole
- Circle promotion for round pads (low radius variation)
- Monotonic boundary merging (union hull plus enclosing circle)
- Green-vertex cleanup after merges
- Parallel per-via refinement on a fixed-size worker pool

Classes:
--------
- BoundaryResult: Center, radius, polygon and circle flag
- MetalBoundaryDetector: Ray-casting boundary detector

Functions:
----------
- detect_metal_boundary: One-shot detection with default settings
- merge_boundaries: Grow one boundary by another
- filter_green_points: Drop vertices that sample solder mask
- refine_boundaries: Detect many boundaries in parallel

Author: PCB Registration Team
Version: 1.0.0

Usage:
------
>>> from pcb_registration.detection import detect_metal_boundary
>>> result = detect_metal_boundary(image, Point2D(412, 388), max_radius=18)
>>> result.is_circle, round(result.radius)
(True, 9)
"""

import logging
import math
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from ..geometry import (
    IntRect,
    Point2D,
    bounding_rect,
    centroid,
    circle_points,
    convex_hull,
    max_distance,
)
from ..utils.error_handler import handle_errors, validate_positive
from ..utils.image_utils import image_size, in_bounds, to_hsv


logger = logging.getLogger(__name__)

# Callable mapping an HSV patch to a boolean "is via metal" mask
MetalPredicate = Callable[[np.ndarray], np.ndarray]


# ============================================================
# PIXEL PREDICATES (HSV, H in 0-180)
# ============================================================

def bright_metal_mask(hsv: np.ndarray) -> np.ndarray:
    """Bright warm metal, or grayish metal that is neither dark nor green."""
    h = hsv[..., 0].astype(np.int16)
    s = hsv[..., 1].astype(np.int16)
    v = hsv[..., 2].astype(np.int16)
    warm = (v >= 180) & (h < 40)
    gray = (s < 40) & (v >= 40) & ((h < 40) | (h > 90))
    return warm | gray


def green_board_mask(hsv: np.ndarray) -> np.ndarray:
    h = hsv[..., 0].astype(np.int16)
    s = hsv[..., 1].astype(np.int16)
    v = hsv[..., 2].astype(np.int16)
    return (h >= 40) & (h <= 85) & (s >= 30) & (v >= 40) & (v <= 220)


def dark_hole_mask(hsv: np.ndarray) -> np.ndarray:
    return hsv[..., 2] < 60


def is_bright_metal(h: int, s: int, v: int) -> bool:
    return bool(bright_metal_mask(np.array([[[h, s, v]]], dtype=np.uint8))[0, 0])


def is_green_board(h: int, s: int, v: int) -> bool:
    return bool(green_board_mask(np.array([[[h, s, v]]], dtype=np.uint8))[0, 0])


def is_dark_hole(h: int, s: int, v: int) -> bool:
    return v < 60


# ============================================================
# DATA CLASSES
# ============================================================

@dataclass
class BoundaryResult:
    """
    Detected pad geometry.

    Attributes
    ----------
    center : Point2D
        Centroid of the boundary
    radius : float
        Enclosing (or fitted, when circular) radius
    boundary : List[Point2D]
        Ordered polygon vertices; empty when ``is_circle`` is set
    is_circle : bool
        True when the pad is well approximated by a circle
    detected : bool
        False for the default circle returned when too few rays hit an edge
    """
    center: Point2D
    radius: float
    boundary: List[Point2D] = field(default_factory=list)
    is_circle: bool = True
    detected: bool = True

    def sample_points(self, n: int = 32) -> List[Point2D]:
        """Polygon vertices, or ``n`` circle samples for circular results."""
        if len(self.boundary) >= 3:
            return list(self.boundary)
        return circle_points(self.center, self.radius, n)

    def bounding_rect(self) -> IntRect:
        if len(self.boundary) >= 3:
            return bounding_rect(self.boundary)
        r = self.radius
        return IntRect(int(math.floor(self.center.x - r)), int(math.floor(self.center.y - r)),
                       int(math.ceil(2 * r)), int(math.ceil(2 * r)))

    def to_dict(self) -> Dict:
        return {
            'center': self.center.to_dict(),
            'radius': round(self.radius, 3),
            'boundary': [p.to_dict() for p in self.boundary],
            'is_circle': self.is_circle,
            'detected': self.detected
        }


def default_result(center: Point2D, radius: float) -> BoundaryResult:
    return BoundaryResult(center=center, radius=radius, boundary=[], is_circle=True, detected=False)


# ============================================================
# METAL BOUNDARY DETECTOR
# ============================================================

class MetalBoundaryDetector:
    """
    Ray-casting detector for via pad outlines.

    Attributes
    ----------
    num_rays : int
        Number of evenly spaced rays cast from the seed
    metal_predicate : callable
        HSV patch -> boolean mask of via metal
    circle_cv_threshold : float
        Radius coefficient of variation below which the pad is a circle
    """

    DEFAULT_NUM_RAYS = 64
    CIRCLE_CV_THRESHOLD = 0.20
    MAX_GAP_STEPS = 3

    def __init__(
        self,
        num_rays: int = DEFAULT_NUM_RAYS,
        metal_predicate: Optional[MetalPredicate] = None,
        circle_cv_threshold: float = CIRCLE_CV_THRESHOLD
    ):
        self.num_rays = num_rays
        self.metal_predicate = metal_predicate or bright_metal_mask
        self.circle_cv_threshold = circle_cv_threshold

    @handle_errors
    def detect(self, image: np.ndarray, seed: Point2D, max_radius: float) -> BoundaryResult:
        """
        Detect the pad boundary around ``seed``.

        Parameters
        ----------
        image : np.ndarray
            Image of one side
        seed : Point2D
            Click or coarse detection center
        max_radius : float
            Maximum search radius in pixels

        Returns
        -------
        BoundaryResult
            A default circle of ``max_radius / 2`` when too few rays hit an edge

        Raises
        ------
        InvalidInputError
            If the image is empty or ``max_radius`` is not positive
        """
        validate_positive(max_radius, "max_radius")
        hsv = to_hsv(image)
        return self.detect_hsv(hsv, seed, max_radius)

    def detect_hsv(self, hsv: np.ndarray, seed: Point2D, max_radius: float) -> BoundaryResult:
        """Same as :meth:`detect` on an already converted HSV image."""
        width, height = image_size(hsv)
        cx, cy = int(seed.x), int(seed.y)
        if not in_bounds(hsv.shape, cx, cy):
            logger.debug(f"Seed ({seed.x:.1f}, {seed.y:.1f}) outside image, using default circle")
            return default_result(seed, max_radius * 0.5)

        # Masks over the window reachable by the rays
        r = int(max_radius)
        window = IntRect(cx - r - 1, cy - r - 1, 2 * r + 3, 2 * r + 3).clamp(width, height)
        patch = hsv[window.y:window.y2, window.x:window.x2]
        metal = self.metal_predicate(patch)
        green = green_board_mask(patch)
        dark = dark_hole_mask(patch)

        def lookup(mask: np.ndarray, x: int, y: int) -> bool:
            return bool(mask[y - window.y, x - window.x])

        seed_on_dark = lookup(dark, cx, cy)
        points: List[Point2D] = []
        for i in range(self.num_rays):
            angle = 2.0 * math.pi * i / self.num_rays
            dx, dy = math.cos(angle), math.sin(angle)
            walker = self._walk_annular if seed_on_dark else self._walk_to_edge
            edge = walker(lookup, metal, green, dark, window, cx, cy, dx, dy, r)
            if edge is None:
                continue
            px, py = int(edge.x), int(edge.y)
            if window.contains(Point2D(px, py)) and not lookup(green, px, py):
                points.append(edge)

        if len(points) < 4:
            logger.debug(f"Only {len(points)} boundary points, using default circle")
            return default_result(seed, max_radius * 0.5)

        center = centroid(points)
        radii = np.array([center.distance(p) for p in points])
        mean_radius = float(radii.mean())
        cv = float(radii.std() / mean_radius) if mean_radius > 0 else 0.0

        if cv < self.circle_cv_threshold:
            logger.debug(f"Circular pad (CV={cv:.3f}) r={mean_radius * 0.95:.1f}")
            return BoundaryResult(center=center, radius=mean_radius * 0.95, boundary=[], is_circle=True)

        logger.debug(f"Irregular pad (CV={cv:.3f}) with {len(points)} points")
        return BoundaryResult(center=center, radius=mean_radius, boundary=points, is_circle=False)

    # --------------------------------------------------------
    # Ray walkers
    # --------------------------------------------------------

    def _walk_to_edge(self, lookup, metal, green, dark, window, cx, cy, dx, dy, max_steps) -> Optional[Point2D]:
        """Walk from metal toward the solder mask; return the last metal position."""
        last_metal = 0
        for step in range(1, max_steps + 1):
            x, y = int(cx + dx * step), int(cy + dy * step)
            if not window.contains(Point2D(x, y)):
                if last_metal > 0:
                    return Point2D(cx + dx * last_metal, cy + dy * last_metal)
                return Point2D(cx + dx * (step - 1), cy + dy * (step - 1)) if step > 1 else None
            if lookup(metal, x, y):
                last_metal = step
            if lookup(green, x, y):
                stop = last_metal if last_metal > 0 else step - 1
                return Point2D(cx + dx * stop, cy + dy * stop)
            if last_metal > 0 and step > last_metal + self.MAX_GAP_STEPS:
                return Point2D(cx + dx * last_metal, cy + dy * last_metal)
        stop = last_metal if last_metal > 0 else max_steps
        return Point2D(cx + dx * stop, cy + dy * stop)

    def _walk_annular(self, lookup, metal, green, dark, window, cx, cy, dx, dy, max_steps) -> Optional[Point2D]:
        """Step out of a dark drill hole onto the ring, then to the solder mask."""
        start = 0
        for step in range(1, max_steps + 1):
            x, y = int(cx + dx * step), int(cy + dy * step)
            if not window.contains(Point2D(x, y)):
                return None
            if not lookup(dark, x, y) and not lookup(green, x, y):
                start = step
                break
        if start == 0:
            return None

        last_metal = start
        for step in range(start, max_steps + 1):
            x, y = int(cx + dx * step), int(cy + dy * step)
            if not window.contains(Point2D(x, y)):
                break
            if not lookup(dark, x, y) and not lookup(green, x, y):
                last_metal = step
            if lookup(green, x, y):
                break
        return Point2D(cx + dx * last_metal, cy + dy * last_metal)


def detect_metal_boundary(image: np.ndarray, seed: Point2D, max_radius: float) -> BoundaryResult:
    """Detect a pad boundary with the default detector settings."""
    return MetalBoundaryDetector().detect(image, seed, max_radius)


# ============================================================
# BOUNDARY POST-PROCESSING
# ============================================================

def merge_boundaries(a: BoundaryResult, b: BoundaryResult) -> BoundaryResult:
    """
    Merge two boundaries of the same physical via.

    The result is the convex hull of both vertex sets (circle samples
    stand in for a side without a polygon) with an enclosing radius of at
    least ``max(a.radius, b.radius)``. Merging never shrinks a pad.
    """
    union = a.sample_points() + b.sample_points()
    floor_radius = max(a.radius, b.radius)
    if len(union) < 3:
        return a if a.radius >= b.radius else b

    hull = convex_hull(union)
    center = centroid(hull) if len(hull) >= 3 else centroid(union)
    radius = max(max_distance(center, union), floor_radius)

    if len(hull) < 3:
        return BoundaryResult(center=center, radius=radius, boundary=[], is_circle=True)
    return BoundaryResult(center=center, radius=radius, boundary=hull, is_circle=False)


def filter_green_points(image: np.ndarray, points: Sequence[Point2D]) -> List[Point2D]:
    """Drop vertices that fall outside the image or sample green solder mask."""
    if not points:
        return list(points)
    hsv = to_hsv(image)
    green = green_board_mask(hsv)
    kept = []
    for p in points:
        px, py = int(p.x), int(p.y)
        if in_bounds(hsv.shape, px, py) and not green[py, px]:
            kept.append(p)
    if len(kept) < len(points):
        logger.debug(f"Filtered {len(points) - len(kept)} green boundary points")
    return kept


def refine_boundaries(
    image: np.ndarray,
    seeds: Sequence[Point2D],
    max_radius: float,
    max_workers: Optional[int] = None,
    detector: Optional[MetalBoundaryDetector] = None
) -> List[BoundaryResult]:
    """
    Detect the boundary around every seed on a worker pool.

    The HSV conversion is shared read-only; each worker writes only its
    own result slot, so results come back in seed order.
    """
    if not seeds:
        return []
    validate_positive(max_radius, "max_radius")
    detector = detector or MetalBoundaryDetector()
    hsv = to_hsv(image)

    workers = min(max_workers or os.cpu_count() or 1, len(seeds))
    results: List[Optional[BoundaryResult]] = [None] * len(seeds)

    def work(index: int) -> None:
        results[index] = detector.detect_hsv(hsv, seeds[index], max_radius)

    with ThreadPoolExecutor(max_workers=workers) as executor:
        # list() re-raises the first worker exception, if any
        list(executor.map(work, range(len(seeds))))

    logger.info(f"Refined {len(seeds)} via boundaries on {workers} workers")
    return results
