"""
Contact Detector Module
=======================

Locates the row of gold-plated edge-connector fingers ("contacts")
along the top edge of one side's image.

Features:
---------
- HSV gold mask with morphological cleanup
- Three passes of increasing permissiveness (first, brute force, rescue)
- Dominant-row clustering to reject stray gold blobs
- Uniform grid fit giving the expected finger positions
- Outlier removal and width normalisation for bleeding fingers
- DPI estimation from finger spacing when the resolution is unknown

Classes:
--------
- DetectionPass: Which strategy produced a contact
- Contact: One detected finger
- ContactDetectionResult: Contacts, search bounds, angle, DPI, expected slots
- ContactDetector: Main class running the three passes

Author: PCB Registration Team
Version: 1.0.0

Usage:
------
>>> from pcb_registration.detection import ContactDetector
>>> detector = ContactDetector(descriptor, dpi=600)
>>> result = detector.detect(front_image)
>>> print(f"Found {len(result.contacts)} contacts at {result.contact_angle:.2f} deg")
"""

import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np

from ..config import BoardDescriptor, DetectionParams, HSVRange
from ..geometry import IntRect, Point2D
from ..utils.error_handler import InsufficientFeaturesError, handle_errors
from ..utils.image_utils import crop, image_size, morph_close, to_hsv
from .contact_grid import (
    GridFit,
    dpi_from_spacing,
    fit_contact_line,
    fit_grid,
    line_angle_degrees,
)


logger = logging.getLogger(__name__)


# ============================================================
# ENUMS AND DATA CLASSES
# ============================================================

class DetectionPass(Enum):
    """Detection strategy that found a contact, in order of preference."""
    FIRST = "first"
    BRUTE_FORCE = "brute_force"
    RESCUE = "rescue"


@dataclass(frozen=True)
class Contact:
    """One edge-connector finger."""
    bounds: IntRect
    center: Point2D
    detection_pass: DetectionPass = DetectionPass.FIRST

    def shifted(self, dx: float, dy: float) -> 'Contact':
        return Contact(
            bounds=self.bounds.translated(int(round(dx)), int(round(dy))),
            center=self.center.translated(dx, dy),
            detection_pass=self.detection_pass
        )

    def to_dict(self) -> Dict:
        return {
            'bounds': self.bounds.to_dict(),
            'center': self.center.to_dict(),
            'pass': self.detection_pass.value
        }


@dataclass
class ContactDetectionResult:
    """
    Results from contact detection on a single side.

    Attributes
    ----------
    contacts : List[Contact]
        Accepted contacts sorted by X
    search_bounds : IntRect
        Final strip that was scanned
    contact_angle : float
        Angle of the fitted contact row in degrees (positive = clockwise)
    dpi : float
        DPI supplied by the caller or estimated from the spacing (0 if unknown)
    expected_positions : List[IntRect]
        Slots of the fitted uniform grid
    expected_count : int
        Number of fingers the board descriptor calls for
    pitch_pixels : float
        Fitted pitch in pixels (0 if no grid could be fitted)
    processing_time : float
        Seconds spent in detection
    """
    contacts: List[Contact]
    search_bounds: IntRect
    contact_angle: float = 0.0
    dpi: float = 0.0
    expected_positions: List[IntRect] = field(default_factory=list)
    expected_count: int = 0
    pitch_pixels: float = 0.0
    processing_time: float = 0.0

    @property
    def num_contacts(self) -> int:
        return len(self.contacts)

    @property
    def is_complete(self) -> bool:
        return self.expected_count > 0 and len(self.contacts) >= self.expected_count

    def count_by_pass(self) -> Dict[str, int]:
        counts = {p.value: 0 for p in DetectionPass}
        for c in self.contacts:
            counts[c.detection_pass.value] += 1
        return counts

    def mean_center(self) -> Optional[Point2D]:
        if not self.contacts:
            return None
        n = len(self.contacts)
        return Point2D(sum(c.center.x for c in self.contacts) / n,
                       sum(c.center.y for c in self.contacts) / n)

    def to_dict(self) -> Dict:
        return {
            'num_contacts': self.num_contacts,
            'expected_count': self.expected_count,
            'by_pass': self.count_by_pass(),
            'search_bounds': self.search_bounds.to_dict(),
            'contact_angle': round(self.contact_angle, 4),
            'dpi': round(self.dpi, 2),
            'pitch_pixels': round(self.pitch_pixels, 3),
            'processing_time': round(self.processing_time, 4),
            'contacts': [c.to_dict() for c in self.contacts],
            'expected_positions': [r.to_dict() for r in self.expected_positions]
        }


@dataclass
class _SizeTemplate:
    """Size window learned from the first-pass contacts."""
    min_width: float
    max_width: float
    min_height: float
    max_height: float
    min_aspect: float
    max_aspect: float

    @classmethod
    def from_contacts(cls, contacts: List[Contact]) -> '_SizeTemplate':
        avg_w = float(np.mean([c.bounds.width for c in contacts]))
        avg_h = float(np.mean([c.bounds.height for c in contacts]))
        aspect = avg_h / max(avg_w, 1.0)
        return cls(avg_w * 0.7, avg_w * 1.3, avg_h * 0.7, avg_h * 1.3, aspect * 0.75, aspect * 1.25)

    def accepts(self, rect: IntRect) -> bool:
        return (self.min_width <= rect.width <= self.max_width and
                self.min_height <= rect.height <= self.max_height and
                self.min_aspect <= rect.aspect_ratio <= self.max_aspect)


# ============================================================
# CONTACT POST-PROCESSING
# ============================================================

def remove_outliers(contacts: List[Contact], max_fraction: float = 0.10) -> List[Contact]:
    """
    Drop contacts whose size or distance from the row line is abnormal.

    Each contact is scored by width deviation (weighted heavily), height
    deviation and residual from the fitted line. At least
    ``1 - max_fraction`` of the contacts are always kept.
    """
    if len(contacts) <= 2:
        return list(contacts)

    xs = [c.center.x for c in contacts]
    ys = [c.center.y for c in contacts]
    slope, intercept = fit_contact_line(xs, ys)
    residuals = np.array([abs(c.center.y - (slope * c.center.x + intercept)) for c in contacts])
    median_w = float(np.median([c.bounds.width for c in contacts]))
    median_h = float(np.median([c.bounds.height for c in contacts]))

    sorted_res = np.sort(residuals)
    iqr = sorted_res[len(sorted_res) * 3 // 4] - sorted_res[len(sorted_res) // 4]
    threshold_y = max(iqr * 3.0, 5.0)
    min_keep = max(int(len(contacts) * (1.0 - max_fraction)), 2)

    def ratio(value: float, median: float) -> float:
        r = value / max(median, 1e-6)
        return 1.0 / r if 0 < r < 1 else r

    scored = []
    for c, res in zip(contacts, residuals):
        score = ((ratio(c.bounds.width, median_w) - 1.0) * 3.0 +
                 (ratio(c.bounds.height, median_h) - 1.0) * 1.5 +
                 res / threshold_y)
        scored.append((score, c))
    scored.sort(key=lambda item: item[0])

    kept = [c for i, (score, c) in enumerate(scored) if i < min_keep or score < 1.0]
    if len(kept) < len(contacts):
        logger.info(f"Removed {len(contacts) - len(kept)} contact outliers")
    return sorted(kept, key=lambda c: c.center.x)


def normalize_contact_widths(contacts: List[Contact]) -> List[Contact]:
    """
    Trim fingers that bleed into the insulator and reject the worst ones.

    Widths above 1.15x the median are trimmed on the side that is out of
    line; widths above 1.30x or below 0.75x the median are rejected.
    """
    if len(contacts) < 3:
        return list(contacts)

    ordered = sorted(contacts, key=lambda c: c.bounds.x)
    median_w = int(np.median([c.bounds.width for c in ordered]))
    max_w = int(median_w * 1.15)
    reject_w = int(median_w * 1.30)
    min_w = int(median_w * 0.75)

    result, trimmed, rejected = [], 0, 0
    for c in ordered:
        b = c.bounds
        if b.width > reject_w or b.width < min_w:
            rejected += 1
            continue
        if b.width > max_w:
            excess = b.width - median_w
            left_error = b.x - (int(c.center.x) - median_w // 2)
            right_error = b.x2 - (int(c.center.x) + median_w // 2)
            new_x, new_w = b.x, b.width
            if left_error < 0 and abs(left_error) > abs(right_error):
                cut = min(-left_error, excess)
                new_x, new_w = b.x + cut, b.width - cut
            elif right_error > 0:
                new_w = b.width - min(right_error, excess)
            new_bounds = IntRect(new_x, b.y, new_w, b.height)
            c = replace(c, bounds=new_bounds,
                        center=Point2D(new_x + new_w / 2.0, c.center.y))
            trimmed += 1
        result.append(c)

    if trimmed or rejected:
        logger.info(f"Width normalization: {trimmed} trimmed, {rejected} rejected "
                    f"(median={median_w}, reject>{reject_w})")
    return result


def gold_blob_bounds(region: np.ndarray, piece_fraction: float = 0.5) -> Optional[IntRect]:
    """
    Bounding rect of the largest gold blob in a slot mask.

    Blobs with at least ``piece_fraction`` of the largest blob's area are
    treated as pieces of the same broken finger and joined to it; smaller
    specks are ignored. Returns None when the mask holds no blob.
    """
    contours, _ = cv2.findContours(region, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    if not contours:
        return None
    largest = max(contours, key=cv2.contourArea)
    min_area = cv2.contourArea(largest) * piece_fraction
    bounds = IntRect(*cv2.boundingRect(largest))
    for contour in contours:
        if contour is not largest and cv2.contourArea(contour) >= min_area:
            bounds = bounds.union(IntRect(*cv2.boundingRect(contour)))
    return bounds


# ============================================================
# MAIN CONTACT DETECTOR CLASS
# ============================================================

class ContactDetector:
    """
    Three-pass gold contact detector for the top edge of a board image.

    Attributes
    ----------
    descriptor : BoardDescriptor
        Expected count, pitch and color/aspect filters
    dpi : float
        Known scan resolution, 0 if unknown
    params : DetectionParams
        Concrete filters derived from the descriptor and DPI

    Examples
    --------
    >>> detector = ContactDetector(BoardDescriptor(contact_count=50), dpi=600)
    >>> result = detector.detect(image)
    >>> result.count_by_pass()
    {'first': 48, 'brute_force': 1, 'rescue': 1}
    """

    # Search strip heights as a fraction of the image height
    STRIP_FRACTION = 0.20
    WIDE_STRIP_FRACTION = 0.35

    # Minimum gold coverage for a rescued slot
    RESCUE_MIN_SCORE = 0.35

    def __init__(
        self,
        descriptor: Optional[BoardDescriptor] = None,
        dpi: float = 0.0,
        color_override: Optional[HSVRange] = None
    ):
        self.descriptor = descriptor or BoardDescriptor()
        self.dpi = float(dpi or 0.0)
        self.params = DetectionParams.from_descriptor(self.descriptor, self.dpi, color_override)

    @property
    def expected_count(self) -> int:
        return self.descriptor.contact_count

    @property
    def known_pitch(self) -> Optional[float]:
        if self.dpi > 0 and self.descriptor.pitch_inches > 0:
            return self.descriptor.pitch_inches * self.dpi
        return None

    # --------------------------------------------------------
    # Public API
    # --------------------------------------------------------

    @handle_errors
    def detect(self, image: np.ndarray) -> ContactDetectionResult:
        """
        Detect the contact row.

        Parameters
        ----------
        image : np.ndarray
            Gray, BGR or BGRA buffer of one side

        Returns
        -------
        ContactDetectionResult
            Possibly with fewer contacts than expected

        Raises
        ------
        InvalidInputError
            If the image is empty or malformed
        InsufficientFeaturesError
            If no contact is found at all; ``error.result`` holds the
            empty result
        """
        start = time.time()
        hsv = to_hsv(image)
        width, height = image_size(hsv)

        search_bounds = IntRect(0, 0, width, max(int(height * self.STRIP_FRACTION), 1))
        contacts = self._first_pass(hsv, search_bounds)
        logger.info(f"First pass: {len(contacts)}/{self.expected_count} contacts")

        seeds = list(contacts)
        if len(contacts) < self.expected_count:
            search_bounds = IntRect(0, 0, width, max(int(height * self.WIDE_STRIP_FRACTION), 1))
            extra = self._brute_force_pass(hsv, search_bounds, contacts)
            if extra:
                logger.info(f"Brute-force pass added {len(extra)} contacts")
            contacts = sorted(contacts + extra, key=lambda c: c.center.x)
            seeds = list(contacts)

        if len(contacts) > 5:
            contacts = remove_outliers(contacts, 0.10)
            contacts = normalize_contact_widths(contacts)

        dpi = self.dpi
        if dpi <= 0:
            dpi = dpi_from_spacing([c.center.x for c in contacts], self.descriptor.pitch_inches)
            if dpi > 0:
                logger.info(f"Estimated DPI from contact spacing: {dpi:.1f}")

        grid = self._fit_grid(contacts, width, dpi)
        if grid is not None and len(contacts) < self.expected_count:
            rescued = self._rescue_pass(hsv, grid, contacts)
            if rescued:
                logger.info(f"Rescue pass added {len(rescued)} contacts")
            contacts = sorted(contacts + rescued, key=lambda c: c.center.x)

        angle_source = [c for c in contacts if c.detection_pass != DetectionPass.RESCUE] or seeds
        slope, _ = fit_contact_line([c.center.x for c in angle_source],
                                    [c.center.y for c in angle_source])

        result = ContactDetectionResult(
            contacts=contacts,
            search_bounds=search_bounds,
            contact_angle=line_angle_degrees(slope) if len(angle_source) > 1 else 0.0,
            dpi=dpi,
            expected_positions=grid.slot_rects() if grid is not None else [],
            expected_count=self.expected_count,
            pitch_pixels=grid.pitch if grid is not None else 0.0,
            processing_time=time.time() - start
        )

        if not contacts:
            raise InsufficientFeaturesError(
                "No contacts found", found=0, expected=self.expected_count, result=result
            )
        if len(contacts) < self.expected_count:
            logger.warning(f"Found {len(contacts)} contacts (expected {self.expected_count})")
        logger.info(f"Contact row angle {result.contact_angle:.3f} deg, "
                    f"{len(contacts)} contacts in {result.processing_time:.3f}s")
        return result

    # --------------------------------------------------------
    # Masks and candidates
    # --------------------------------------------------------

    @staticmethod
    def gold_mask(hsv: np.ndarray, color: HSVRange) -> np.ndarray:
        mask = cv2.inRange(hsv, color.lower, color.upper)
        return morph_close(mask, 3)

    def _candidates(self, hsv: np.ndarray, bounds: IntRect, color: HSVRange) -> List[Tuple[IntRect, Point2D, float]]:
        """Gold blobs in ``bounds`` as (rect, moment center, area) in image coordinates."""
        mask = self.gold_mask(crop(hsv, bounds), color)
        contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        found = []
        for contour in contours:
            x, y, w, h = cv2.boundingRect(contour)
            rect = IntRect(x + bounds.x, y + bounds.y, w, h)
            m = cv2.moments(contour)
            if m['m00'] > 0:
                center = Point2D(m['m10'] / m['m00'] + bounds.x, m['m01'] / m['m00'] + bounds.y)
            else:
                center = rect.center
            found.append((rect, center, float(cv2.contourArea(contour))))
        return found

    def _dominant_row(self, contacts: List[Contact]) -> List[Contact]:
        """Keep the contacts inside the densest horizontal band."""
        if len(contacts) < 2:
            return contacts
        window = self.params.expected_height or float(np.median([c.bounds.height for c in contacts]))
        ys = sorted(c.center.y for c in contacts)
        best_start, best_count = ys[0], 0
        for i, y0 in enumerate(ys):
            count = sum(1 for y in ys[i:] if y - y0 <= window)
            if count > best_count:
                best_start, best_count = y0, count
        return [c for c in contacts if best_start <= c.center.y <= best_start + window]

    # --------------------------------------------------------
    # Passes
    # --------------------------------------------------------

    def _first_pass(self, hsv: np.ndarray, bounds: IntRect) -> List[Contact]:
        p = self.params
        contacts = []
        for rect, center, area in self._candidates(hsv, bounds, p.color_range):
            if not (p.min_area <= area <= p.max_area):
                continue
            if not (p.aspect_min <= rect.aspect_ratio <= p.aspect_max):
                continue
            contacts.append(Contact(rect, center, DetectionPass.FIRST))
        contacts = self._dominant_row(contacts)
        return sorted(contacts, key=lambda c: c.center.x)

    def _brute_force_pass(self, hsv: np.ndarray, bounds: IntRect, existing: List[Contact]) -> List[Contact]:
        relaxed = self.params.relaxed()
        template = _SizeTemplate.from_contacts(existing) if existing else None

        line = None
        tolerance_y = 0.0
        if len(existing) >= 2:
            line = fit_contact_line([c.center.x for c in existing], [c.center.y for c in existing])
            tolerance_y = max(float(np.mean([c.bounds.height for c in existing])) * 0.5, 5.0)

        added: List[Contact] = []
        for rect, center, area in self._candidates(hsv, bounds, relaxed.color_range):
            if template is not None:
                if not template.accepts(rect):
                    continue
            elif not (relaxed.min_area <= area <= relaxed.max_area and
                      relaxed.aspect_min <= rect.aspect_ratio <= relaxed.aspect_max):
                continue
            if line is not None and abs(center.y - (line[0] * center.x + line[1])) > tolerance_y:
                continue
            if any(rect.intersects(c.bounds) for c in existing + added):
                continue
            added.append(Contact(rect, center, DetectionPass.BRUTE_FORCE))

        if not existing:
            added = self._dominant_row(added)
        return added

    def _fit_grid(self, contacts: List[Contact], image_width: int, dpi: float) -> Optional[GridFit]:
        if len(contacts) < 2:
            return None
        size = self.descriptor.expected_contact_size(dpi)
        if size is None:
            size = (float(np.median([c.bounds.width for c in contacts])),
                    float(np.median([c.bounds.height for c in contacts])))
        pitch = self.descriptor.pitch_inches * dpi if dpi > 0 else None
        grid = fit_grid(
            [c.center.x for c in contacts],
            [c.center.y for c in contacts],
            size,
            self.expected_count,
            image_width,
            pitch=pitch
        )
        if grid is not None:
            logger.debug(f"Grid fit: {grid.to_dict()}")
        return grid

    def _rescue_pass(self, hsv: np.ndarray, grid: GridFit, existing: List[Contact]) -> List[Contact]:
        """Local search at every expected slot that has no contact yet."""
        mask = self.gold_mask(hsv, self.params.color_range.relaxed())
        height, width = mask.shape[:2]
        half_pitch = grid.pitch / 2.0

        scored = []
        for center, slot in zip(grid.slot_centers(), grid.slot_rects()):
            if any(abs(c.center.x - center.x) < half_pitch for c in existing):
                continue
            rect = slot.clamp(width, height)
            if rect.is_empty():
                continue
            region = mask[rect.y:rect.y2, rect.x:rect.x2]
            score = cv2.countNonZero(region) / float(rect.area)
            if score >= self.RESCUE_MIN_SCORE:
                scored.append((score, rect, region))

        scored.sort(key=lambda item: item[0], reverse=True)
        budget = max(self.expected_count - len(existing), 0)

        rescued = []
        for score, rect, region in scored[:budget]:
            blob = gold_blob_bounds(region)
            bounds = blob.translated(rect.x, rect.y) if blob is not None else rect
            rescued.append(Contact(bounds, bounds.center, DetectionPass.RESCUE))
            logger.debug(f"Rescued contact at {bounds.to_tuple()} (gold={score:.2f})")
        return rescued
