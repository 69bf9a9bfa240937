"""
Ejector Mark Detector Module
============================

Finds the small circular registration holes in the card-ejector pads
near the board's bottom corners. They act as secondary fiducials below
the contact row for the shear/scale alignment.

Absence is a normal outcome (older boards have no ejectors), so the
detector returns an empty list rather than raising.

Author: PCB Registration Team
Version: 1.0.0

Usage:
------
>>> from pcb_registration.detection import EjectorDetector
>>> marks = EjectorDetector(descriptor).detect(image, result.contacts, result.dpi)
>>> [m.side.value for m in marks]
['left', 'right']
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence

import cv2
import numpy as np

from ..config import BoardDescriptor
from ..geometry import IntRect, Point2D
from ..utils.error_handler import handle_errors
from ..utils.image_utils import morph_close, to_gray


logger = logging.getLogger(__name__)


# ============================================================
# DATA CLASSES
# ============================================================

class MarkSide(Enum):
    LEFT = "left"
    RIGHT = "right"


@dataclass(frozen=True)
class EjectorMark:
    """Center of one ejector registration hole."""
    side: MarkSide
    center: Point2D
    radius: float = 0.0

    def shifted(self, dx: float, dy: float) -> 'EjectorMark':
        return EjectorMark(self.side, self.center.translated(dx, dy), self.radius)

    def to_dict(self) -> Dict:
        return {
            'side': self.side.value,
            'center': self.center.to_dict(),
            'radius': round(self.radius, 2)
        }


def marks_by_side(marks: Sequence[EjectorMark]) -> Dict[MarkSide, EjectorMark]:
    """Index marks by side; the first mark wins if a side repeats."""
    indexed: Dict[MarkSide, EjectorMark] = {}
    for mark in marks:
        indexed.setdefault(mark.side, mark)
    return indexed


# ============================================================
# EJECTOR DETECTOR
# ============================================================

class EjectorDetector:
    """
    Locates ejector holes in two search boxes derived from the contact row.

    The board outline is estimated from the outermost contacts: the board
    edges lie ``edge_to_first_contact_inches`` beyond the first and last
    contact, and its bottom lies ``contact_to_ejector_inches`` below the
    row. A one-inch square at each bottom corner is searched.
    """

    WHITE_THRESHOLD = 200
    HOLE_THRESHOLD = 180
    MIN_CIRCULARITY = 0.5

    def __init__(self, descriptor: Optional[BoardDescriptor] = None):
        self.descriptor = descriptor or BoardDescriptor()

    def search_boxes(self, contacts: Sequence, dpi: float) -> Dict[MarkSide, IntRect]:
        """Search rectangles (unclamped) for each side."""
        first = min(contacts, key=lambda c: c.center.x)
        last = max(contacts, key=lambda c: c.center.x)
        margin = self.descriptor.edge_to_first_contact_inches * dpi
        left_x = first.center.x - margin
        right_x = last.center.x + margin
        bottom_y = first.center.y + self.descriptor.contact_to_ejector_inches * dpi
        size = int(1.0 * dpi)
        return {
            MarkSide.LEFT: IntRect(int(left_x), int(bottom_y) - size, size, size),
            MarkSide.RIGHT: IntRect(int(right_x) - size, int(bottom_y) - size, size, size),
        }

    @handle_errors
    def detect(self, image: np.ndarray, contacts: Sequence, dpi: float) -> List[EjectorMark]:
        """
        Detect up to two ejector marks.

        Parameters
        ----------
        image : np.ndarray
            Image of one side
        contacts : sequence of Contact
            Detected contacts of the same side
        dpi : float
            Scan resolution; nothing is searched when it is unknown

        Returns
        -------
        List[EjectorMark]
            Zero, one or two marks tagged LEFT/RIGHT
        """
        if len(contacts) < 2 or dpi <= 0:
            logger.debug("Ejector search skipped (need 2 contacts and a known DPI)")
            return []

        gray = to_gray(image)
        hole_diameter = self.descriptor.ejector_hole_inches * dpi
        marks = []
        for side, box in self.search_boxes(contacts, dpi).items():
            found = self._find_mark(gray, box, hole_diameter, dpi)
            if found is not None:
                marks.append(EjectorMark(side, found[0], found[1]))

        logger.info(f"Ejector marks found: {[m.side.value for m in marks] or 'none'}")
        return marks

    # --------------------------------------------------------
    # Internals
    # --------------------------------------------------------

    def _find_mark(self, gray: np.ndarray, box: IntRect, hole_diameter: float, dpi: float):
        height, width = gray.shape[:2]
        region_rect = box.clamp(width, height)
        if region_rect.width < 5 or region_rect.height < 5:
            return None
        region = gray[region_rect.y:region_rect.y2, region_rect.x:region_rect.x2]

        # The ejector pad is a bright white area holding the hole
        _, white = cv2.threshold(region, self.WHITE_THRESHOLD, 255, cv2.THRESH_BINARY)
        contours, _ = cv2.findContours(white, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        min_white_area = (0.25 * dpi) ** 2 / 4.0
        pad = max(contours, key=cv2.contourArea) if contours else None

        if pad is not None and cv2.contourArea(pad) >= min_white_area:
            px, py, pw, ph = cv2.boundingRect(pad)
            sub = IntRect(region_rect.x + px, region_rect.y + py, pw, ph)
        else:
            sub = region_rect

        found = self._find_hole(gray[sub.y:sub.y2, sub.x:sub.x2], hole_diameter)
        if found is None:
            return None
        (hx, hy), radius = found
        return Point2D(sub.x + hx, sub.y + hy), radius

    def _find_hole(self, patch: np.ndarray, hole_diameter: float):
        """Best circular dark hole in ``patch`` as ((x, y), radius)."""
        if patch.size == 0:
            return None
        _, dark = cv2.threshold(patch, self.HOLE_THRESHOLD, 255, cv2.THRESH_BINARY_INV)
        dark = morph_close(dark, 3, cv2.MORPH_ELLIPSE)
        contours, _ = cv2.findContours(dark, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE)

        expected_radius = hole_diameter / 2.0
        expected_area = math.pi * expected_radius ** 2
        best, best_circularity = None, 0.0
        for contour in contours:
            area = cv2.contourArea(contour)
            if area < expected_area * 0.3 or area > expected_area * 3.0:
                continue
            perimeter = cv2.arcLength(contour, True)
            circularity = 4 * np.pi * area / (perimeter * perimeter + 1e-8)
            if circularity > best_circularity:
                best, best_circularity = contour, circularity

        if best is None or best_circularity < self.MIN_CIRCULARITY:
            return None
        (cx, cy), radius = cv2.minEnclosingCircle(best)
        if radius < expected_radius * 0.3 or radius > expected_radius * 2.0:
            return None
        return (float(cx), float(cy)), float(radius)
