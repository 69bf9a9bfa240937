"""
Alignment Engine Module
=======================

Registers the back-side image onto the front-side image.

Pipeline states:
----------------
UNALIGNED -> CONTACTS_DETECTED -> COARSE_ALIGNED -> FINE_ALIGNED
                                               \\-> COARSE_ALIGNED (fallback)

Any re-detection of contacts invalidates everything downstream; callers
re-run from CONTACTS_DETECTED.

Author: PCB Registration Team
Version: 1.0.0

Usage:
------
>>> from pcb_registration.alignment import AlignmentEngine
>>> engine = AlignmentEngine(descriptor, dpi=600)
>>> result = engine.align(front_image, back_image)
>>> result.state, result.info
(<AlignmentState.FINE_ALIGNED: 'fine_aligned'>, 'yScale=1.0021, shear L=0.0004 R=-0.0002')
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..config import BoardDescriptor
from ..detection.contact_detector import Contact, ContactDetectionResult, ContactDetector
from ..detection.ejector_detector import EjectorDetector, EjectorMark
from ..geometry import IntRect, Point2D
from ..utils.error_handler import (
    DegenerateGeometryError,
    InsufficientFeaturesError,
    InvalidInputError,
)
from .transform import (
    AlignmentTransform,
    compute_coarse_translation,
    compute_shear_transform,
    translate_image,
    warp_shear,
)


logger = logging.getLogger(__name__)


# ============================================================
# STATE AND RESULT
# ============================================================

class AlignmentState(Enum):
    UNALIGNED = "unaligned"
    CONTACTS_DETECTED = "contacts_detected"
    COARSE_ALIGNED = "coarse_aligned"
    FINE_ALIGNED = "fine_aligned"


@dataclass
class AlignmentResult:
    """Outcome of a coarse or fine alignment run."""
    state: AlignmentState
    transform: AlignmentTransform
    aligned_back_image: Optional[np.ndarray] = None
    aligned_back_contacts: List[Contact] = field(default_factory=list)
    front_marks: List[EjectorMark] = field(default_factory=list)
    back_marks: List[EjectorMark] = field(default_factory=list)
    fallback_reason: Optional[str] = None
    info: str = ""
    processing_time: float = 0.0

    @property
    def success(self) -> bool:
        return self.state in (AlignmentState.COARSE_ALIGNED, AlignmentState.FINE_ALIGNED)

    @property
    def is_fine(self) -> bool:
        return self.state == AlignmentState.FINE_ALIGNED

    def to_dict(self) -> Dict:
        """Convert to dictionary (excluding the image)."""
        return {
            'state': self.state.value,
            'transform': self.transform.to_dict(),
            'front_marks': [m.to_dict() for m in self.front_marks],
            'back_marks': [m.to_dict() for m in self.back_marks],
            'fallback_reason': self.fallback_reason,
            'info': self.info,
            'processing_time': round(self.processing_time, 4)
        }


# ============================================================
# ALIGNMENT ENGINE
# ============================================================

class AlignmentEngine:
    """
    State machine driving contact detection, coarse and fine alignment.

    Attributes
    ----------
    descriptor : BoardDescriptor
        Board geometry shared by both sides
    state : AlignmentState
        Current pipeline state
    front_result, back_result : ContactDetectionResult
        Latest contact detections
    result : AlignmentResult
        Latest alignment outcome, None until aligned
    """

    def __init__(
        self,
        descriptor: Optional[BoardDescriptor] = None,
        dpi: float = 0.0,
        ejector_detector: Optional[EjectorDetector] = None
    ):
        self.descriptor = descriptor or BoardDescriptor()
        self._dpi = float(dpi or 0.0)
        self.ejector_detector = ejector_detector or EjectorDetector(self.descriptor)

        self.state = AlignmentState.UNALIGNED
        self.front_result: Optional[ContactDetectionResult] = None
        self.back_result: Optional[ContactDetectionResult] = None
        self.front_image: Optional[np.ndarray] = None
        self.back_image: Optional[np.ndarray] = None
        self.result: Optional[AlignmentResult] = None
        self._coarse: Optional[AlignmentResult] = None

    @property
    def dpi(self) -> float:
        """Known DPI, else the one estimated during contact detection."""
        if self._dpi > 0:
            return self._dpi
        for detection in (self.front_result, self.back_result):
            if detection is not None and detection.dpi > 0:
                return detection.dpi
        return 0.0

    @property
    def is_aligned(self) -> bool:
        return self.state in (AlignmentState.COARSE_ALIGNED, AlignmentState.FINE_ALIGNED)

    # --------------------------------------------------------
    # Contacts
    # --------------------------------------------------------

    def detect_contacts(
        self,
        front_image: np.ndarray,
        back_image: np.ndarray
    ) -> Tuple[ContactDetectionResult, ContactDetectionResult]:
        """
        Detect contacts on both sides and reset downstream state.

        A side with no contacts is kept as an empty detection so that
        coarse alignment degrades to a no-op instead of failing.
        """
        detector = ContactDetector(self.descriptor, self._dpi)
        results = []
        for name, image in (("front", front_image), ("back", back_image)):
            try:
                results.append(detector.detect(image))
            except InsufficientFeaturesError as e:
                logger.warning(f"{name}: {e}")
                results.append(e.result)
        self.set_contacts(results[0], results[1], front_image, back_image)
        return results[0], results[1]

    def set_contacts(
        self,
        front: ContactDetectionResult,
        back: ContactDetectionResult,
        front_image: Optional[np.ndarray] = None,
        back_image: Optional[np.ndarray] = None
    ) -> 'AlignmentEngine':
        """Install contact detections; invalidates any previous alignment."""
        self.front_result = front
        self.back_result = back
        if front_image is not None:
            self.front_image = front_image
        if back_image is not None:
            self.back_image = back_image
        self.result = None
        self._coarse = None
        self.state = AlignmentState.CONTACTS_DETECTED
        logger.info(f"Contacts set: front={len(front.contacts)} back={len(back.contacts)}")
        return self

    def invalidate(self) -> 'AlignmentEngine':
        """Drop alignment results, keeping detected contacts if any."""
        self.result = None
        self._coarse = None
        if self.front_result is not None and self.back_result is not None:
            self.state = AlignmentState.CONTACTS_DETECTED
        else:
            self.state = AlignmentState.UNALIGNED
        return self

    # --------------------------------------------------------
    # Alignment
    # --------------------------------------------------------

    def coarse_align(self) -> AlignmentResult:
        """
        Translate the back side so its contact row mean meets the front's.

        Returns a CONTACTS_DETECTED result with zero translation when a
        side has no contacts.
        """
        if self.state == AlignmentState.UNALIGNED:
            raise InvalidInputError("Contacts must be detected before alignment")
        start = time.time()

        front = self.front_result.contacts
        back = self.back_result.contacts
        if not front or not back:
            reason = "no contacts on " + ("front" if not front else "back")
            logger.warning(f"Coarse alignment skipped: {reason}")
            return AlignmentResult(
                state=AlignmentState.CONTACTS_DETECTED,
                transform=AlignmentTransform(),
                aligned_back_image=self.back_image,
                aligned_back_contacts=list(back),
                fallback_reason=reason,
                info=reason,
                processing_time=time.time() - start
            )

        dx, dy = compute_coarse_translation(front, back)
        aligned = translate_image(self.back_image, dx, dy) if self.back_image is not None else None
        shifted = [c.shifted(dx, dy) for c in back]

        self.result = AlignmentResult(
            state=AlignmentState.COARSE_ALIGNED,
            transform=AlignmentTransform(translation=(dx, dy), pivot_y=self._pivot_y()),
            aligned_back_image=aligned,
            aligned_back_contacts=shifted,
            info=f"translated ({dx}, {dy}) px",
            processing_time=time.time() - start
        )
        self._coarse = self.result
        self.state = AlignmentState.COARSE_ALIGNED
        logger.info(f"Coarse alignment: {self.result.info}")
        return self.result

    def fine_align(self) -> AlignmentResult:
        """
        Refine a coarse alignment with the ejector-mark shear/scale warp.

        Falls back to the coarse translation (state COARSE_ALIGNED, with
        ``fallback_reason`` set) when marks are missing or degenerate.
        """
        coarse = self._coarse if self.is_aligned and self._coarse is not None else self.coarse_align()
        if not coarse.success:
            return coarse
        if self.front_image is None or coarse.aligned_back_image is None:
            raise InvalidInputError("Fine alignment needs both side images")
        start = time.time()

        dx, dy = coarse.transform.translation
        dpi = self.dpi
        front_marks = self.ejector_detector.detect(self.front_image, self.front_result.contacts, dpi)
        back_marks = self.ejector_detector.detect(coarse.aligned_back_image, coarse.aligned_back_contacts, dpi)

        try:
            transform = compute_shear_transform(front_marks, back_marks, self._pivot_y(), (dx, dy))
        except (InsufficientFeaturesError, DegenerateGeometryError) as e:
            return self._fallback(coarse, str(e), front_marks, back_marks)

        warped = warp_shear(coarse.aligned_back_image, transform)
        contacts = []
        for c in coarse.aligned_back_contacts:
            center = transform.map_point(c.center.translated(-dx, -dy))
            contacts.append(Contact(
                bounds=IntRect.from_center(center, c.bounds.width, c.bounds.height),
                center=center,
                detection_pass=c.detection_pass
            ))

        self.result = AlignmentResult(
            state=AlignmentState.FINE_ALIGNED,
            transform=transform,
            aligned_back_image=warped,
            aligned_back_contacts=contacts,
            front_marks=front_marks,
            back_marks=back_marks,
            info=(f"yScale={transform.y_scale:.4f}, shear L={transform.shear_left:.4f} "
                  f"R={transform.shear_right:.4f}"),
            processing_time=coarse.processing_time + time.time() - start
        )
        self.state = AlignmentState.FINE_ALIGNED
        logger.info(f"Fine alignment: {self.result.info}")
        return self.result

    def align(self, front_image: np.ndarray, back_image: np.ndarray) -> AlignmentResult:
        """Run contact detection, coarse and fine alignment in order."""
        self.detect_contacts(front_image, back_image)
        return self.fine_align()

    # --------------------------------------------------------
    # Helpers
    # --------------------------------------------------------

    def _pivot_y(self) -> float:
        """Mean Y of the index-matched front contacts (the contact line)."""
        n = min(len(self.front_result.contacts), len(self.back_result.contacts))
        if n == 0:
            return 0.0
        return sum(c.center.y for c in self.front_result.contacts[:n]) / n

    def _fallback(
        self,
        coarse: AlignmentResult,
        reason: str,
        front_marks: List[EjectorMark],
        back_marks: List[EjectorMark]
    ) -> AlignmentResult:
        dx, dy = coarse.transform.translation
        logger.warning(f"Fine alignment fell back to translation only: {reason}")
        self.result = AlignmentResult(
            state=AlignmentState.COARSE_ALIGNED,
            transform=coarse.transform,
            aligned_back_image=coarse.aligned_back_image,
            aligned_back_contacts=coarse.aligned_back_contacts,
            front_marks=front_marks,
            back_marks=back_marks,
            fallback_reason=reason,
            info=f"translated ({dx}, {dy}) px ({reason})",
            processing_time=coarse.processing_time
        )
        self.state = AlignmentState.COARSE_ALIGNED
        return self.result
