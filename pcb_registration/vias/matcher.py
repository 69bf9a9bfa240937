"""
Via Matcher Module
==================

Pairs front-side and back-side vias after alignment and keeps the
confirmed-via set consistent under manual edits.

Matching is greedy nearest-first: every front/back pair within the
tolerance is a candidate, candidates are visited in order of distance
(ties broken by input order) and a pair is accepted when neither via is
taken yet. The result does not depend on which side is passed first.

Classes:
--------
- MatchPair: One accepted front/back pair and its distance
- MatchResult: Confirmed vias plus match statistics
- EditAction: What a manual click did
- ManualEditResult: Outcome of a manual click
- ViaMatcher: Matching and manual editing on a ProjectFeatures store

Functions:
----------
- match_across_sides: Pure greedy matcher
- suggest_match_tolerance: Tolerance in pixels for a DPI
- boost_matched_confidence: Raise confidence of confirmed vias
- find_unmatched_vias: Vias without a partner
- validate_alignment_with_vias: RMS error of matched pairs
- separate_by_side: Split vias into front and back lists

Author: PCB Registration Team
Version: 1.0.0

Usage:
------
>>> matcher = ViaMatcher(features, dpi=600)
>>> result = matcher.match_all()
>>> result.matched_count, round(result.avg_error, 2)
(42, 1.87)
"""

import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..config import RegistrationConfig
from ..detection.metal_boundary import (
    BoundaryResult,
    MetalBoundaryDetector,
    filter_green_points,
    merge_boundaries,
    refine_boundaries,
)
from ..geometry import Point2D
from ..utils.error_handler import InvalidInputError
from .features import ProjectFeatures
from .models import ConfirmedVia, Side, Via, ViaMethod
from .training import TrainingStore


logger = logging.getLogger(__name__)


# ============================================================
# RESULTS
# ============================================================

@dataclass(frozen=True)
class MatchPair:
    front_id: str
    back_id: str
    distance: float

    def to_dict(self) -> Dict:
        return {
            'front_id': self.front_id,
            'back_id': self.back_id,
            'distance': round(self.distance, 3)
        }


@dataclass
class MatchResult:
    """
    Outcome of matching two via sets.

    Attributes
    ----------
    confirmed_vias : List[ConfirmedVia]
        New confirmed records, one per accepted pair
    pairs : List[MatchPair]
        Accepted pairs in acceptance order
    unmatched_front, unmatched_back : List[str]
        Ids of vias left without a partner
    avg_error, max_error : float
        Mean and max center distance of the accepted pairs
    """
    confirmed_vias: List[ConfirmedVia] = field(default_factory=list)
    pairs: List[MatchPair] = field(default_factory=list)
    unmatched_front: List[str] = field(default_factory=list)
    unmatched_back: List[str] = field(default_factory=list)
    avg_error: float = 0.0
    max_error: float = 0.0

    @property
    def matched_count(self) -> int:
        return len(self.pairs)

    def to_dict(self) -> Dict:
        return {
            'matched_count': self.matched_count,
            'confirmed_vias': [cv.to_dict() for cv in self.confirmed_vias],
            'pairs': [p.to_dict() for p in self.pairs],
            'unmatched_front': list(self.unmatched_front),
            'unmatched_back': list(self.unmatched_back),
            'avg_error': round(self.avg_error, 3),
            'max_error': round(self.max_error, 3)
        }


class EditAction(Enum):
    ADDED = "added"
    MERGED = "merged"
    EXPANDED = "expanded"


@dataclass
class ManualEditResult:
    action: EditAction
    via: Via
    matched_via: Optional[Via] = None
    confirmed: Optional[ConfirmedVia] = None

    def to_dict(self) -> Dict:
        return {
            'action': self.action.value,
            'via': self.via.to_dict(),
            'matched_via': self.matched_via.to_dict() if self.matched_via else None,
            'confirmed': self.confirmed.to_dict() if self.confirmed else None
        }


# ============================================================
# PURE HELPERS
# ============================================================

def separate_by_side(vias: Sequence[Via]) -> Tuple[List[Via], List[Via]]:
    """Split vias into (front, back), preserving order within each side."""
    front = [v for v in vias if v.side == Side.FRONT]
    back = [v for v in vias if v.side == Side.BACK]
    return front, back


def suggest_match_tolerance(dpi: float, config: Optional[RegistrationConfig] = None) -> float:
    """Match tolerance in pixels; a fixed fallback when the DPI is unknown."""
    return (config or RegistrationConfig()).match_tolerance(dpi)


def match_across_sides(
    vias_a: Sequence[Via],
    vias_b: Sequence[Via],
    tolerance: float,
    id_factory: Optional[Callable[[int], str]] = None
) -> MatchResult:
    """
    Greedily pair front and back vias whose centers are within ``tolerance``.

    Parameters
    ----------
    vias_a, vias_b : sequence of Via
        Vias of either side, in any order; each via is classified by its
        own ``side``
    tolerance : float
        Maximum center distance in pixels (inclusive)
    id_factory : callable, optional
        Maps the pair number (0-based) to a confirmed-via id

    Returns
    -------
    MatchResult
        Input vias are not modified

    Raises
    ------
    InvalidInputError
        If ``tolerance`` is not positive
    """
    if not tolerance > 0:
        raise InvalidInputError(f"tolerance must be positive, got {tolerance}")
    id_factory = id_factory or (lambda k: f"cvia-{k + 1:03d}")

    front, back = separate_by_side(list(vias_a) + list(vias_b))

    candidates = []
    for i, f in enumerate(front):
        for j, b in enumerate(back):
            d = f.center.distance(b.center)
            if d <= tolerance:
                candidates.append((d, i, j))
    candidates.sort()

    used_front, used_back = set(), set()
    result = MatchResult()
    for d, i, j in candidates:
        if i in used_front or j in used_back:
            continue
        used_front.add(i)
        used_back.add(j)
        f, b = front[i], back[j]
        result.pairs.append(MatchPair(f.id, b.id, d))
        result.confirmed_vias.append(ConfirmedVia.from_pair(id_factory(len(result.pairs) - 1), f, b))

    result.unmatched_front = [v.id for i, v in enumerate(front) if i not in used_front]
    result.unmatched_back = [v.id for j, v in enumerate(back) if j not in used_back]
    if result.pairs:
        errors = [p.distance for p in result.pairs]
        result.avg_error = sum(errors) / len(errors)
        result.max_error = max(errors)
    return result


def boost_matched_confidence(vias: Sequence[Via], boost: float = 0.2) -> List[Via]:
    """Copies of ``vias`` with confirmed ones moved ``boost`` of the way to 1."""
    return [replace(v, confidence=v.confidence + (1.0 - v.confidence) * boost)
            if v.both_sides_confirmed else v
            for v in vias]


def find_unmatched_vias(vias: Sequence[Via]) -> List[Via]:
    return [v for v in vias if not v.both_sides_confirmed]


def validate_alignment_with_vias(result: MatchResult) -> float:
    """RMS center distance of the matched pairs, 0 when nothing matched."""
    if not result.pairs:
        return 0.0
    return math.sqrt(sum(p.distance ** 2 for p in result.pairs) / len(result.pairs))


# ============================================================
# VIA MATCHER
# ============================================================

class ViaMatcher:
    """
    Matching and manual via editing on top of a ProjectFeatures store.

    Parameters
    ----------
    features : ProjectFeatures
        Store that is read and updated in place
    config : RegistrationConfig, optional
        Tolerances; defaults are used when omitted
    dpi : float
        Image resolution; 0 selects the pixel fallbacks
    training_store : TrainingStore, optional
        Receives a sample for every manual add and delete
    boundary_detector : MetalBoundaryDetector, optional
        Detector used for clicks and refinement
    """

    def __init__(
        self,
        features: ProjectFeatures,
        config: Optional[RegistrationConfig] = None,
        dpi: float = 0.0,
        training_store: Optional[TrainingStore] = None,
        boundary_detector: Optional[MetalBoundaryDetector] = None
    ):
        self.features = features
        self.config = config or RegistrationConfig()
        self.dpi = float(dpi or 0.0)
        self.training_store = training_store
        self.boundary_detector = boundary_detector or MetalBoundaryDetector()

    @property
    def tolerance(self) -> float:
        return self.config.match_tolerance(self.dpi)

    @property
    def search_radius(self) -> float:
        """Max ray length when detecting a pad at a click."""
        return self.config.default_via_radius_px * 2.0

    # --------------------------------------------------------
    # Matching
    # --------------------------------------------------------

    def match_all(self, tolerance: Optional[float] = None) -> MatchResult:
        """Re-match every via in the store, replacing all confirmed vias."""
        tolerance = self.tolerance if tolerance is None else tolerance
        if not tolerance > 0:
            raise InvalidInputError(f"tolerance must be positive, got {tolerance}")

        self.features.clear_confirmed()
        result = match_across_sides(
            self.features.vias, [], tolerance,
            id_factory=lambda _: self.features.next_confirmed_id()
        )
        for cv in result.confirmed_vias:
            self.features.add_confirmed(cv)

        logger.info(f"Matched {result.matched_count} vias (tolerance {tolerance:.1f} px, "
                    f"avg error {result.avg_error:.2f} px, "
                    f"unmatched {len(result.unmatched_front)}/{len(result.unmatched_back)})")
        return result

    def quick_match_one(self, via_id: str) -> Optional[Via]:
        """
        Match a single via against unmatched vias on the opposite side.

        Returns the partner via, or None when nothing is within tolerance.
        """
        via = self.features.get_via(via_id)
        if via.both_sides_confirmed:
            return self.features.find_via(via.matched_via_id)

        tolerance = self.tolerance
        best, best_dist = None, math.inf
        for other in self.features.vias_by_side(via.side.opposite):
            if other.both_sides_confirmed:
                continue
            d = via.center.distance(other.center)
            if d <= tolerance and d < best_dist:
                best, best_dist = other, d
        if best is None:
            return None

        front, back = (via, best) if via.side == Side.FRONT else (best, via)
        self.features.add_confirmed(
            ConfirmedVia.from_pair(self.features.next_confirmed_id(), front, back))
        logger.debug(f"Quick-matched {via.id} with {best.id} ({best_dist:.2f} px)")
        return self.features.get_via(best.id)

    # --------------------------------------------------------
    # Manual edits
    # --------------------------------------------------------

    def _grow(self, via: Via, image: np.ndarray, click: Point2D, max_radius: float) -> Via:
        """Merge the pad detected at ``click`` into ``via`` and store it."""
        detected = self.boundary_detector.detect(image, click, max_radius)
        merged = merge_boundaries(via.as_boundary(), detected)
        if merged.boundary:
            kept = filter_green_points(image, merged.boundary)
            if len(kept) >= 3:
                merged = BoundaryResult(merged.center, merged.radius, kept, is_circle=False)
            else:
                merged = BoundaryResult(merged.center, merged.radius, [], is_circle=True)
        return self.features.replace_via(via.with_boundary(merged), recompute=True)

    def expand_confirmed(
        self,
        confirmed_id: str,
        click: Point2D,
        side: Side,
        image: np.ndarray,
        max_radius: Optional[float] = None
    ) -> ConfirmedVia:
        """Grow the ``side`` via of a confirmed via by the pad under ``click``."""
        cv = self.features.get_confirmed(confirmed_id)
        via = self.features.get_via(cv.front_via_id if side == Side.FRONT else cv.back_via_id)
        max_radius = max_radius or max(via.radius * 2.0, self.search_radius)
        self._grow(via, image, click, max_radius)
        return self.features.get_confirmed(confirmed_id)

    def add_manual_via(
        self,
        image: np.ndarray,
        click: Point2D,
        side: Side,
        aligned: bool = False
    ) -> ManualEditResult:
        """
        Handle a manual "add via" click on ``side``.

        A click inside a confirmed via expands it; a click near an existing
        via on the same side merges into it; otherwise a new via is created
        and, when the sides are aligned, matched against the other side.
        """
        cv = self.features.hit_test_confirmed(click)
        if cv is not None:
            cv = self.expand_confirmed(cv.id, click, side, image)
            via_id, other_id = ((cv.front_via_id, cv.back_via_id) if side == Side.FRONT
                                else (cv.back_via_id, cv.front_via_id))
            logger.info(f"Expanded confirmed via {cv.id} on {side.value}")
            return ManualEditResult(EditAction.EXPANDED, self.features.get_via(via_id),
                                    self.features.get_via(other_id), cv)

        existing = self.features.nearest_via(side, click, self.config.merge_tolerance(self.dpi))
        if existing is not None:
            via = self._grow(existing, image, click, max(existing.radius * 2.0, self.search_radius))
            logger.info(f"Merged click into {via.id}")
            return ManualEditResult(EditAction.MERGED, via,
                                    self.features.find_via(via.matched_via_id),
                                    self.features.confirmed_for_via(via.id))

        detected = self.boundary_detector.detect(image, click, self.search_radius)
        via = self.features.add_via(Via(
            id=self.features.next_via_id(),
            center=detected.center,
            radius=detected.radius,
            side=side,
            pad_boundary=list(detected.boundary),
            confidence=1.0,
            method=ViaMethod.MANUAL
        ))
        if self.training_store is not None:
            self.training_store.add_positive(via.center, via.radius, side, source="manual")

        matched = self.quick_match_one(via.id) if aligned else None
        via = self.features.get_via(via.id)
        logger.info(f"Added manual via {via.id} on {side.value}"
                    + (f", matched {matched.id}" if matched else ""))
        return ManualEditResult(EditAction.ADDED, via, matched,
                                self.features.confirmed_for_via(via.id))

    def remove_via_at(self, click: Point2D, side: Side) -> Optional[Via]:
        """Delete the nearest via on ``side`` within the click radius."""
        via = self.features.nearest_via(side, click, self.config.click_radius(self.dpi))
        if via is None:
            return None
        return self.remove_via(via.id)

    def remove_via(self, via_id: str) -> Via:
        """Delete a via by id and record it as a rejected training sample."""
        removed = self.features.remove_via(via_id)
        if self.training_store is not None:
            self.training_store.add_negative(removed.center, removed.radius, removed.side, source="rejected")
        logger.info(f"Removed via {removed.id} on {removed.side.value}")
        return removed

    def refine_via_boundaries(
        self,
        image: np.ndarray,
        side: Side,
        max_radius: Optional[float] = None
    ) -> List[Via]:
        """Re-detect the pad of every via on ``side`` in parallel."""
        vias = self.features.vias_by_side(side)
        if not vias:
            return []
        results = refine_boundaries(
            image,
            [v.center for v in vias],
            max_radius or self.search_radius,
            max_workers=self.config.max_workers,
            detector=self.boundary_detector
        )
        refined = []
        for via, result in zip(vias, results):
            if not result.detected:
                # Keep the existing pad when no edge was found
                logger.debug(f"No boundary found for {via.id}, keeping radius {via.radius:.1f}")
                refined.append(via)
                continue
            refined.append(self.features.replace_via(via.with_boundary(result), recompute=True))
        return refined
