"""
Overlay Records
===============

Plain geometric records describing what a viewer should draw on top of
a side image: contact boxes, expected slots, ejector marks, via pads and
confirmed-via intersections. Nothing here renders; colors are BGR.

Functions:
----------
- contact_overlays: Contacts colored by detection pass, plus search area and slots
- ejector_overlays: Crosshairs on ejector marks
- via_overlays: Pad polygons or circles per via
- confirmed_via_overlays: Intersection polygons of confirmed vias
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..detection.contact_detector import ContactDetectionResult, DetectionPass
from ..detection.ejector_detector import EjectorMark
from ..geometry import IntRect, Point2D

Color = Tuple[int, int, int]

PASS_COLORS = {
    DetectionPass.FIRST: (0, 255, 0),
    DetectionPass.BRUTE_FORCE: (0, 255, 255),
    DetectionPass.RESCUE: (0, 128, 255)
}
SEARCH_COLOR = (255, 255, 0)
EXPECTED_COLOR = (128, 128, 128)
EJECTOR_COLOR = (255, 0, 255)
VIA_COLORS = {
    'front': (255, 0, 0),
    'back': (0, 0, 255),
    'matched': (0, 255, 0)
}
CONFIRMED_COLOR = (0, 255, 0)


@dataclass
class OverlayRect:
    rect: IntRect
    label: Optional[str] = None
    color: Color = (128, 128, 128)

    def to_dict(self) -> Dict:
        return {'type': 'rect', 'rect': self.rect.to_dict(), 'label': self.label,
                'color': list(self.color)}


@dataclass
class OverlayPolygon:
    points: List[Point2D] = field(default_factory=list)
    label: Optional[str] = None
    color: Color = (128, 128, 128)
    filled: bool = False

    def to_dict(self) -> Dict:
        return {'type': 'polygon', 'points': [p.to_dict() for p in self.points],
                'label': self.label, 'color': list(self.color), 'filled': self.filled}


@dataclass
class OverlayCircle:
    center: Point2D
    radius: float
    label: Optional[str] = None
    color: Color = (128, 128, 128)

    def to_dict(self) -> Dict:
        return {'type': 'circle', 'center': self.center.to_dict(), 'radius': round(self.radius, 3),
                'label': self.label, 'color': list(self.color)}


@dataclass
class OverlayCrosshair:
    center: Point2D
    size: float = 10.0
    label: Optional[str] = None
    color: Color = (128, 128, 128)

    def to_dict(self) -> Dict:
        return {'type': 'crosshair', 'center': self.center.to_dict(), 'size': self.size,
                'label': self.label, 'color': list(self.color)}


Overlay = Union[OverlayRect, OverlayPolygon, OverlayCircle, OverlayCrosshair]


def contact_overlays(result: ContactDetectionResult, include_expected: bool = True) -> List[Overlay]:
    overlays: List[Overlay] = [OverlayRect(result.search_bounds, "search", SEARCH_COLOR)]
    if include_expected:
        overlays.extend(OverlayRect(r, None, EXPECTED_COLOR) for r in result.expected_positions)
    for i, c in enumerate(result.contacts):
        overlays.append(OverlayRect(c.bounds, str(i + 1), PASS_COLORS[c.detection_pass]))
    return overlays


def ejector_overlays(marks: Sequence[EjectorMark], size: float = 10.0) -> List[Overlay]:
    return [OverlayCrosshair(m.center, max(size, m.radius * 2), m.side.value, EJECTOR_COLOR)
            for m in marks]


def via_overlays(vias: Sequence) -> List[Overlay]:
    """One polygon per via with a pad boundary, a circle otherwise."""
    overlays: List[Overlay] = []
    for v in vias:
        color = VIA_COLORS['matched'] if v.both_sides_confirmed else VIA_COLORS[v.side.value]
        if v.has_polygon:
            overlays.append(OverlayPolygon(list(v.pad_boundary), v.id, color))
        else:
            overlays.append(OverlayCircle(v.center, v.radius, v.id, color))
    return overlays


def confirmed_via_overlays(confirmed: Sequence) -> List[Overlay]:
    return [OverlayPolygon(list(cv.intersection_boundary), cv.id, CONFIRMED_COLOR, filled=True)
            for cv in confirmed]
