"""
Via Models
==========

Records for single-side vias and cross-side confirmed vias.

Classes:
--------
- Side: Board side a feature was detected on
- ViaMethod: How a via was detected or placed
- Via: One plated hole seen on one side
- ConfirmedVia: A front/back via pair with its overlap boundary

Functions:
----------
- compute_intersection: Overlap geometry of a front/back pair
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..detection.metal_boundary import BoundaryResult
from ..geometry import (
    IntRect,
    Point2D,
    bounding_rect,
    centroid,
    circle_points,
    intersect_convex_polygons,
    point_in_polygon,
)


# ============================================================
# ENUMS
# ============================================================

class Side(Enum):
    FRONT = "front"
    BACK = "back"

    @property
    def opposite(self) -> 'Side':
        return Side.BACK if self is Side.FRONT else Side.FRONT


class ViaMethod(Enum):
    HOUGH_CIRCLE = "hough_circle"
    CONTOUR_FIT = "contour_fit"
    MANUAL = "manual"


# Points sampled on a circle standing in for a missing polygon
CIRCLE_SAMPLES = 32


# ============================================================
# VIA
# ============================================================

@dataclass
class Via:
    """
    A via detected or placed on one side of the board.

    Attributes
    ----------
    id : str
        Unique id within the features store ("via-001")
    center : Point2D
        Pad center in aligned image coordinates
    radius : float
        Pad radius in pixels
    side : Side
        Side the via was detected on
    pad_boundary : List[Point2D]
        Polygon of the pad (>= 3 points); empty means "treat as circle"
    confidence : float
        Detection confidence in [0, 1]
    method : ViaMethod
        Detection method or MANUAL
    matched_via_id : str, optional
        Id of the partner via on the opposite side
    both_sides_confirmed : bool
        True while the via is part of a ConfirmedVia
    circularity : float
        Shape circularity reported by the detector
    """
    id: str
    center: Point2D
    radius: float
    side: Side
    pad_boundary: List[Point2D] = field(default_factory=list)
    confidence: float = 1.0
    method: ViaMethod = ViaMethod.MANUAL
    matched_via_id: Optional[str] = None
    both_sides_confirmed: bool = False
    circularity: float = 1.0

    @property
    def has_polygon(self) -> bool:
        return len(self.pad_boundary) >= 3

    def bounds(self) -> IntRect:
        if self.has_polygon:
            return bounding_rect(self.pad_boundary)
        r = self.radius
        return IntRect(int(math.floor(self.center.x - r)), int(math.floor(self.center.y - r)),
                       int(math.ceil(2 * r)), int(math.ceil(2 * r)))

    def hit_test(self, p: Point2D) -> bool:
        if self.has_polygon:
            return point_in_polygon(p, self.pad_boundary)
        return self.center.distance(p) <= self.radius

    def outline(self) -> List[Point2D]:
        """Pad polygon, or circle samples when there is none."""
        if self.has_polygon:
            return list(self.pad_boundary)
        return circle_points(self.center, self.radius, CIRCLE_SAMPLES)

    def as_boundary(self) -> BoundaryResult:
        return BoundaryResult(
            center=self.center,
            radius=self.radius,
            boundary=list(self.pad_boundary),
            is_circle=not self.has_polygon
        )

    def with_boundary(self, result: BoundaryResult) -> 'Via':
        """Copy of this via carrying the geometry of ``result``."""
        return replace(self, center=result.center, radius=result.radius,
                       pad_boundary=list(result.boundary))

    def unmatched(self) -> 'Via':
        return replace(self, matched_via_id=None, both_sides_confirmed=False)

    def matched_to(self, other_id: str) -> 'Via':
        return replace(self, matched_via_id=other_id, both_sides_confirmed=True)

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'center': self.center.to_dict(),
            'radius': round(self.radius, 3),
            'side': self.side.value,
            'pad_boundary': [p.to_dict() for p in self.pad_boundary],
            'confidence': round(self.confidence, 4),
            'method': self.method.value,
            'matched_via_id': self.matched_via_id,
            'both_sides_confirmed': self.both_sides_confirmed,
            'circularity': round(self.circularity, 4)
        }


# ============================================================
# CONFIRMED VIA
# ============================================================

def compute_intersection(front: Via, back: Via) -> List[Point2D]:
    """
    Overlap boundary of a front/back via pair.

    Two polygons give their convex intersection. If either side has no
    polygon, or the polygons do not overlap, the smaller of the two
    bounding circles is used.
    """
    if front.has_polygon and back.has_polygon:
        overlap = intersect_convex_polygons(front.pad_boundary, back.pad_boundary)
        if len(overlap) >= 3:
            return overlap
    smaller = front if front.radius <= back.radius else back
    return circle_points(smaller.center, smaller.radius, CIRCLE_SAMPLES)


@dataclass
class ConfirmedVia:
    """A via seen on both sides, with the overlap of the two pads."""
    id: str
    front_via_id: str
    back_via_id: str
    center: Point2D
    radius: float
    intersection_boundary: List[Point2D] = field(default_factory=list)
    confidence: float = 1.0

    @classmethod
    def from_pair(cls, cv_id: str, front: Via, back: Via) -> 'ConfirmedVia':
        confirmed = cls(
            id=cv_id,
            front_via_id=front.id,
            back_via_id=back.id,
            center=Point2D((front.center.x + back.center.x) / 2.0,
                           (front.center.y + back.center.y) / 2.0),
            radius=(front.radius + back.radius) / 2.0,
            confidence=min(1.0, (front.confidence + back.confidence) / 2.0 * 1.2)
        )
        return confirmed.recomputed(front, back)

    def recomputed(self, front: Via, back: Via) -> 'ConfirmedVia':
        """Copy with the intersection and center recomputed from the pair."""
        boundary = compute_intersection(front, back)
        return replace(
            self,
            intersection_boundary=boundary,
            center=centroid(boundary),
            radius=(front.radius + back.radius) / 2.0
        )

    def via_ids(self) -> Tuple[str, str]:
        return (self.front_via_id, self.back_via_id)

    def references(self, via_id: str) -> bool:
        return via_id in (self.front_via_id, self.back_via_id)

    def hit_test(self, p: Point2D) -> bool:
        if len(self.intersection_boundary) >= 3:
            return point_in_polygon(p, self.intersection_boundary)
        return self.center.distance(p) <= self.radius

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'front_via_id': self.front_via_id,
            'back_via_id': self.back_via_id,
            'center': self.center.to_dict(),
            'radius': round(self.radius, 3),
            'intersection_boundary': [p.to_dict() for p in self.intersection_boundary],
            'confidence': round(self.confidence, 4)
        }
