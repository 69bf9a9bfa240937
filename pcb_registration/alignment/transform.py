"""
Alignment Transform Module
==========================

Geometry of the back-to-front registration: an integer translation
from the contact rows, followed by an edge-anchored shear and vertical
scale derived from the ejector marks.

The shear/scale warp pivots on the contact line: pixels on
``y == pivot_y`` never move, so the electrically critical edge stays
exact while the lower board region is corrected.

Classes:
--------
- AlignmentTransform: Translation plus pivoted shear/scale parameters

Functions:
----------
- compute_coarse_translation: Integer offset between contact means
- compute_shear_transform: Shear/scale from four ejector marks
- translate_image: Integer shift on a same-size canvas
- warp_shear: Inverse-mapped nearest-neighbour shear/scale warp
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Sequence, Tuple

import cv2
import numpy as np

from ..detection.ejector_detector import EjectorMark, MarkSide, marks_by_side
from ..geometry import Point2D
from ..utils.error_handler import (
    DegenerateGeometryError,
    InsufficientFeaturesError,
    validate_image,
)


logger = logging.getLogger(__name__)

# Spans shorter than this (pixels) make the shear/scale math blow up
MIN_SPAN_PX = 1.0


# ============================================================
# TRANSFORM
# ============================================================

@dataclass
class AlignmentTransform:
    """
    Back-side to front-side registration.

    The translation is applied first; the shear/scale part then acts on
    the translated back image. ``left_x``/``right_x`` are the ejector X
    positions between which the shear is interpolated.
    """
    translation: Tuple[int, int] = (0, 0)
    y_scale: float = 1.0
    shear_left: float = 0.0
    shear_right: float = 0.0
    pivot_y: float = 0.0
    left_x: float = 0.0
    right_x: float = 0.0

    @property
    def is_translation_only(self) -> bool:
        return self.y_scale == 1.0 and self.shear_left == 0.0 and self.shear_right == 0.0

    def shear_at(self, x: float) -> float:
        """Shear interpolated between the edges; clamped outside the ejector span."""
        span = self.right_x - self.left_x
        if abs(span) < MIN_SPAN_PX:
            return self.shear_left
        t = min(max((x - self.left_x) / span, 0.0), 1.0)
        return self.shear_left * (1.0 - t) + self.shear_right * t

    def source_point(self, x: float, y: float) -> Tuple[float, float]:
        """Inverse map: where output pixel (x, y) samples the translated back image."""
        dy = y - self.pivot_y
        src_y = self.pivot_y + dy / self.y_scale
        src_x = x - self.shear_at(x) * dy
        return src_x, src_y

    def forward_point(self, x: float, y: float, iterations: int = 4) -> Tuple[float, float]:
        """
        Map a point of the original back image into front coordinates.

        The shear depends on the output X, so the forward map is solved by
        a few fixed-point iterations of the inverse map.
        """
        tx, ty = x + self.translation[0], y + self.translation[1]
        out_y = self.pivot_y + (ty - self.pivot_y) * self.y_scale
        dy = out_y - self.pivot_y
        out_x = tx
        for _ in range(iterations):
            out_x = tx + self.shear_at(out_x) * dy
        return out_x, out_y

    def map_point(self, p: Point2D) -> Point2D:
        x, y = self.forward_point(p.x, p.y)
        return Point2D(x, y)

    def to_dict(self) -> Dict:
        return {
            'translation': list(self.translation),
            'y_scale': round(self.y_scale, 6),
            'shear_left': round(self.shear_left, 6),
            'shear_right': round(self.shear_right, 6),
            'pivot_y': round(self.pivot_y, 3),
            'left_x': round(self.left_x, 3),
            'right_x': round(self.right_x, 3)
        }


# ============================================================
# PARAMETER ESTIMATION
# ============================================================

def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def compute_coarse_translation(front_contacts: Sequence, back_contacts: Sequence) -> Tuple[int, int]:
    """
    Integer translation aligning the back contact row onto the front row.

    Both lists are truncated to the shorter length (contacts are matched
    by index) and the rounded difference of their mean centers is
    returned. Empty input gives ``(0, 0)``.
    """
    n = min(len(front_contacts), len(back_contacts))
    if n == 0:
        return 0, 0
    front_x = sum(c.center.x for c in front_contacts[:n]) / n
    front_y = sum(c.center.y for c in front_contacts[:n]) / n
    back_x = sum(c.center.x for c in back_contacts[:n]) / n
    back_y = sum(c.center.y for c in back_contacts[:n]) / n
    return _round_half_away(front_x - back_x), _round_half_away(front_y - back_y)


def compute_shear_transform(
    front_marks: Sequence[EjectorMark],
    back_marks: Sequence[EjectorMark],
    pivot_y: float,
    translation: Tuple[int, int] = (0, 0)
) -> AlignmentTransform:
    """
    Derive the pivoted shear/scale from ejector marks on both sides.

    Parameters
    ----------
    front_marks : sequence of EjectorMark
        Marks on the front image
    back_marks : sequence of EjectorMark
        Marks on the back image after the coarse translation
    pivot_y : float
        Y of the contact line (front mean contact Y)
    translation : (int, int)
        Coarse translation already applied to the back image

    Raises
    ------
    InsufficientFeaturesError
        Unless each side has exactly one LEFT and one RIGHT mark
    DegenerateGeometryError
        If the marks sit on the contact line or on top of each other
    """
    front = marks_by_side(front_marks)
    back = marks_by_side(back_marks)
    missing = [f"{name} {side.value}"
               for name, marks in (("front", front), ("back", back))
               for side in (MarkSide.LEFT, MarkSide.RIGHT) if side not in marks]
    if missing:
        raise InsufficientFeaturesError(
            f"missing ejector marks ({', '.join(missing)})",
            found=len(front) + len(back), expected=4
        )

    fl, fr = front[MarkSide.LEFT].center, front[MarkSide.RIGHT].center
    bl, br = back[MarkSide.LEFT].center, back[MarkSide.RIGHT].center

    back_y_dist = ((bl.y - pivot_y) + (br.y - pivot_y)) / 2.0
    front_y_dist = ((fl.y - pivot_y) + (fr.y - pivot_y)) / 2.0
    if abs(back_y_dist) < MIN_SPAN_PX or abs(front_y_dist) < MIN_SPAN_PX:
        raise DegenerateGeometryError("ejectors too close to contacts")

    span_x = br.x - bl.x
    if abs(span_x) < MIN_SPAN_PX:
        raise DegenerateGeometryError("ejectors too close together")

    transform = AlignmentTransform(
        translation=tuple(translation),
        y_scale=front_y_dist / back_y_dist,
        shear_left=(fl.x - bl.x) / front_y_dist,
        shear_right=(fr.x - br.x) / front_y_dist,
        pivot_y=pivot_y,
        left_x=bl.x,
        right_x=br.x
    )
    logger.info(f"yScale={transform.y_scale:.4f}, shear L={transform.shear_left:.4f} "
                f"R={transform.shear_right:.4f}")
    return transform


# ============================================================
# IMAGE WARPS
# ============================================================

def translate_image(image: np.ndarray, dx: int, dy: int) -> np.ndarray:
    """Shift ``image`` by an integer offset; uncovered pixels are left zero."""
    validate_image(image)
    height, width = image.shape[:2]
    matrix = np.float32([[1, 0, dx], [0, 1, dy]])
    return cv2.warpAffine(
        image, matrix, (width, height),
        flags=cv2.INTER_NEAREST,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=0
    )


def warp_shear(image: np.ndarray, transform: AlignmentTransform) -> np.ndarray:
    """
    Apply the shear/scale part of ``transform`` to an already translated image.

    Every destination pixel is inverse-mapped and sampled nearest-neighbour
    from the source; pixels that map outside the source stay zero. The
    source is not modified.
    """
    validate_image(image)
    height, width = image.shape[:2]
    ys, xs = np.indices((height, width), dtype=np.float64)

    dy = ys - transform.pivot_y
    src_y = transform.pivot_y + dy / transform.y_scale

    span = transform.right_x - transform.left_x
    if abs(span) >= MIN_SPAN_PX:
        t = np.clip((xs - transform.left_x) / span, 0.0, 1.0)
    else:
        t = np.zeros_like(xs)
    shear = transform.shear_left * (1.0 - t) + transform.shear_right * t
    src_x = xs - shear * dy

    sx = np.floor(src_x + 0.5).astype(np.int64)
    sy = np.floor(src_y + 0.5).astype(np.int64)
    valid = (sx >= 0) & (sx < width) & (sy >= 0) & (sy < height)

    output = np.zeros_like(image)
    output[valid] = image[sy[valid], sx[valid]]
    return output
