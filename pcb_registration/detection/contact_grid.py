"""
Contact Grid Module
===================

Uniform-grid fitting for a row of edge-connector contacts.

Given the centers of the contacts that were found, these helpers
recover the pitch, the row's line and slope, and the full set of
expected finger positions so missing fingers can be searched for
exactly where they should be.

Functions:
----------
- fit_contact_line: Least-squares y = slope * x + intercept
- line_angle_degrees: Row angle from the fitted slope
- find_best_fit_pitch: Histogram vote over pairwise intervals
- find_best_anchor_index: Seed best explained by pitch multiples
- dpi_from_spacing: Scan resolution from contact spacing
- fit_grid: Least-squares grid fit extended to the expected count
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..geometry import IntRect, Point2D


logger = logging.getLogger(__name__)

# Fewer spacings than this give an unreliable resolution estimate
MIN_CONTACTS_FOR_DPI = 10


# ============================================================
# LINE AND PITCH ESTIMATION
# ============================================================

def fit_contact_line(xs: Sequence[float], ys: Sequence[float]) -> Tuple[float, float]:
    """
    Fit ``y = slope * x + intercept`` through contact centers.

    Falls back to a flat line through the median Y when the X values do
    not span anything.
    """
    if len(xs) == 0:
        return 0.0, 0.0
    x = np.asarray(xs, dtype=np.float64)
    y = np.asarray(ys, dtype=np.float64)
    if len(x) < 2 or np.ptp(x) < 1e-6:
        return 0.0, float(np.median(y))
    slope, intercept = np.polyfit(x, y, 1)
    return float(slope), float(intercept)


def line_angle_degrees(slope: float) -> float:
    return math.degrees(math.atan(slope))


def find_best_fit_pitch(positions: Sequence[float], min_pitch: float) -> float:
    """
    Find the pitch that best explains all pairwise intervals.

    Every interval ``d`` votes for ``d / k`` (k = 1, 2, ...) while that
    stays above ``min_pitch``; votes land in 1 px bins and the answer is
    the mean of the votes in the winning bin.
    """
    if len(positions) < 2:
        return 0.0
    pos = sorted(float(p) for p in positions)
    intervals = [pos[j] - pos[i] for i in range(len(pos)) for j in range(i + 1, len(pos))
                 if pos[j] - pos[i] > 0]
    if not intervals:
        return float(min_pitch)
    min_pitch = max(float(min_pitch), 1.0)

    num_bins = int(max(intervals)) + 1
    counts = np.zeros(num_bins, dtype=np.int64)
    sums = np.zeros(num_bins, dtype=np.float64)
    for interval in intervals:
        k = 1
        while True:
            candidate = interval / k
            if candidate < min_pitch:
                break
            b = int(candidate)
            if 0 <= b < num_bins:
                counts[b] += 1
                sums[b] += candidate
            k += 1

    if counts.max() == 0:
        return float(min_pitch)
    best = int(np.argmax(counts))
    pitch = float(sums[best] / counts[best])
    logger.debug(f"Pitch histogram: {len(intervals)} intervals, best bin={best} "
                 f"with {counts[best]} votes, pitch={pitch:.2f}")
    return pitch


def find_best_anchor_index(positions: Sequence[float], pitch: float) -> int:
    """Index of the position whose distances to the others best fit pitch multiples."""
    if len(positions) == 0 or pitch <= 0:
        return 0
    best_idx, best_error = 0, math.inf
    for i, pos in enumerate(positions):
        total = 0.0
        for j, other in enumerate(positions):
            if i == j:
                continue
            interval = abs(other - pos)
            nearest = max(round(interval / pitch), 1)
            total += abs(interval - nearest * pitch)
        if total < best_error:
            best_error, best_idx = total, i
    return best_idx


def dpi_from_spacing(xs: Sequence[float], pitch_inches: float) -> float:
    """
    Estimate scan DPI from contact spacing.

    Uses the mean of the spacings within 0.7-1.3x of the median, which
    ignores gaps left by missing fingers. Returns 0 when there are too
    few contacts to trust.
    """
    if len(xs) < MIN_CONTACTS_FOR_DPI or pitch_inches <= 0:
        return 0.0
    centers = np.sort(np.asarray(xs, dtype=np.float64))
    spacings = np.diff(centers)
    median = float(np.median(spacings))
    valid = spacings[(spacings > median * 0.7) & (spacings < median * 1.3)]
    if len(valid) == 0:
        return 0.0
    return float(valid.mean() / pitch_inches)


# ============================================================
# GRID FIT
# ============================================================

@dataclass
class GridFit:
    """A uniform contact grid fitted along the contact row."""
    pitch: float
    slope: float
    intercept: float
    origin_x: float
    first_index: int
    last_index: int
    slot_width: float
    slot_height: float
    indices: List[int] = field(default_factory=list)

    @property
    def slot_count(self) -> int:
        return self.last_index - self.first_index + 1

    def slot_center(self, k: int) -> Point2D:
        x = self.origin_x + k * self.pitch
        return Point2D(x, self.slope * x + self.intercept)

    def slot_centers(self) -> List[Point2D]:
        return [self.slot_center(k) for k in range(self.first_index, self.last_index + 1)]

    def slot_rects(self) -> List[IntRect]:
        return [IntRect.from_center(c, self.slot_width, self.slot_height) for c in self.slot_centers()]

    def to_dict(self) -> Dict:
        return {
            'pitch': round(self.pitch, 3),
            'slope': round(self.slope, 6),
            'intercept': round(self.intercept, 3),
            'origin_x': round(self.origin_x, 3),
            'slots': self.slot_count
        }


def fit_grid(
    xs: Sequence[float],
    ys: Sequence[float],
    slot_size: Tuple[float, float],
    expected_count: int,
    image_width: int,
    pitch: Optional[float] = None
) -> Optional[GridFit]:
    """
    Fit a uniform ``expected_count`` x ``pitch`` grid to contact centers.

    Parameters
    ----------
    xs, ys : sequence of float
        Centers of the accepted contacts
    slot_size : (float, float)
        Width and height of one expected contact rectangle
    expected_count : int
        Number of fingers the board should have
    image_width : int
        Grid slots are kept inside ``[0, image_width)``
    pitch : float, optional
        Known pitch in pixels; estimated from the centers when omitted

    Returns
    -------
    GridFit or None
        None when fewer than two contacts are available
    """
    if len(xs) < 2:
        return None
    x = np.asarray(xs, dtype=np.float64)
    order = np.argsort(x)
    x = x[order]
    y = np.asarray(ys, dtype=np.float64)[order]
    slot_w, slot_h = slot_size

    if not pitch or pitch <= 0:
        pitch = find_best_fit_pitch(x, max(slot_w * 1.5, 2.0))
    if pitch <= 0:
        return None

    anchor = x[find_best_anchor_index(list(x), pitch)]
    k = np.round((x - anchor) / pitch).astype(int)

    # Least-squares translation/spacing refinement on the snapped indices
    origin = float(np.mean(x - k * pitch))
    if len(np.unique(k)) >= 2:
        fitted_pitch, fitted_origin = np.polyfit(k, x, 1)
        if abs(fitted_pitch - pitch) <= 0.2 * pitch:
            pitch, origin = float(fitted_pitch), float(fitted_origin)

    slope, intercept = fit_contact_line(x, y)

    k_min, k_max = int(k.min()), int(k.max())
    first, last = k_min, k_max
    missing = expected_count - (last - first + 1)
    if missing > 0:
        first -= missing // 2
        last += missing - missing // 2

    # Slide the window back onto the image without dropping found contacts
    half = slot_w / 2.0
    while first < k_min and origin + first * pitch - half < 0:
        first += 1
        last += 1
    while last > k_max and origin + last * pitch + half > image_width:
        first -= 1
        last -= 1

    return GridFit(
        pitch=float(pitch),
        slope=slope,
        intercept=intercept,
        origin_x=origin,
        first_index=first,
        last_index=last,
        slot_width=float(slot_w),
        slot_height=float(slot_h),
        indices=[int(v) for v in k]
    )
