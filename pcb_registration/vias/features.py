"""
Project Features Store
======================

Index-addressed collection of the vias and confirmed vias of one
project. Records are replaced by id rather than mutated through shared
references; removing a via cascades to every confirmed via that names
it and un-matches the partner.

The store is not internally locked: the host serialises add, remove
and match calls (single writer).
"""

import logging
import re
from typing import Dict, Iterator, List, Optional, Tuple

from ..geometry import Point2D
from ..utils.error_handler import InvalidInputError, NotFoundError
from .models import ConfirmedVia, Side, Via


logger = logging.getLogger(__name__)

_ID_NUMBER = re.compile(r"(\d+)$")


def _id_number(item_id: str) -> int:
    match = _ID_NUMBER.search(item_id)
    return int(match.group(1)) if match else 0


class ProjectFeatures:
    """
    Vias and confirmed vias of one board, keyed by id.

    Examples
    --------
    >>> features = ProjectFeatures()
    >>> via = features.add_via(Via(features.next_via_id(), Point2D(10, 10), 5.0, Side.FRONT))
    >>> via.id
    'via-001'
    """

    def __init__(self):
        self._vias: List[Via] = []
        self._via_index: Dict[str, int] = {}
        self._confirmed: List[ConfirmedVia] = []
        self._via_counter = 0
        self._confirmed_counter = 0

    def __len__(self) -> int:
        return len(self._vias)

    def __iter__(self) -> Iterator[Via]:
        return iter(list(self._vias))

    # ============================================================
    # IDS
    # ============================================================

    def next_via_id(self) -> str:
        self._via_counter += 1
        return f"via-{self._via_counter:03d}"

    def next_confirmed_id(self) -> str:
        self._confirmed_counter += 1
        return f"cvia-{self._confirmed_counter:03d}"

    # ============================================================
    # VIAS
    # ============================================================

    def add_via(self, via: Via) -> Via:
        if via.id in self._via_index:
            raise InvalidInputError(f"Duplicate via id: {via.id}")
        self._via_index[via.id] = len(self._vias)
        self._vias.append(via)
        self._via_counter = max(self._via_counter, _id_number(via.id))
        return via

    def find_via(self, via_id: Optional[str]) -> Optional[Via]:
        if via_id is None or via_id not in self._via_index:
            return None
        return self._vias[self._via_index[via_id]]

    def get_via(self, via_id: str) -> Via:
        via = self.find_via(via_id)
        if via is None:
            raise NotFoundError("Via", via_id)
        return via

    def replace_via(self, via: Via, recompute: bool = True) -> Via:
        """Store ``via`` in place of the record with the same id."""
        if via.id not in self._via_index:
            raise NotFoundError("Via", via.id)
        self._vias[self._via_index[via.id]] = via
        if recompute:
            for cv in self._confirmed:
                if cv.references(via.id):
                    self.recompute_confirmed(cv.id)
        return via

    def remove_via(self, via_id: str) -> Via:
        """Delete a via and every confirmed via that references it."""
        via = self.get_via(via_id)
        for cv in [cv for cv in self._confirmed if cv.references(via_id)]:
            self.remove_confirmed(cv.id)
        # Re-read: removing confirmed vias may have rewritten the record
        via = self.get_via(via_id)

        index = self._via_index.pop(via_id)
        del self._vias[index]
        for i in range(index, len(self._vias)):
            self._via_index[self._vias[i].id] = i
        logger.debug(f"Removed via {via_id}")
        return via

    @property
    def vias(self) -> List[Via]:
        return list(self._vias)

    def vias_by_side(self, side: Side) -> List[Via]:
        return [v for v in self._vias if v.side == side]

    def via_count_by_side(self) -> Tuple[int, int]:
        front = sum(1 for v in self._vias if v.side == Side.FRONT)
        return front, len(self._vias) - front

    def nearest_via(self, side: Side, point: Point2D, tolerance: float) -> Optional[Via]:
        """Closest via on ``side`` strictly within ``tolerance`` of ``point``."""
        best, best_dist = None, tolerance
        for v in self._vias:
            if v.side != side:
                continue
            d = v.center.distance(point)
            if d < best_dist:
                best, best_dist = v, d
        return best

    # ============================================================
    # CONFIRMED VIAS
    # ============================================================

    def add_confirmed(self, cv: ConfirmedVia) -> ConfirmedVia:
        """Store a confirmed via and mark both of its vias as matched."""
        if any(existing.id == cv.id for existing in self._confirmed):
            raise InvalidInputError(f"Duplicate confirmed via id: {cv.id}")
        front = self.get_via(cv.front_via_id)
        back = self.get_via(cv.back_via_id)
        self._confirmed.append(cv)
        self._confirmed_counter = max(self._confirmed_counter, _id_number(cv.id))
        self.replace_via(front.matched_to(back.id), recompute=False)
        self.replace_via(back.matched_to(front.id), recompute=False)
        return cv

    def find_confirmed(self, cv_id: str) -> Optional[ConfirmedVia]:
        return next((cv for cv in self._confirmed if cv.id == cv_id), None)

    def get_confirmed(self, cv_id: str) -> ConfirmedVia:
        cv = self.find_confirmed(cv_id)
        if cv is None:
            raise NotFoundError("Confirmed via", cv_id)
        return cv

    def confirmed_for_via(self, via_id: str) -> Optional[ConfirmedVia]:
        return next((cv for cv in self._confirmed if cv.references(via_id)), None)

    def recompute_confirmed(self, cv_id: str) -> ConfirmedVia:
        """Recompute the intersection of a confirmed via from its current vias."""
        cv = self.get_confirmed(cv_id)
        updated = cv.recomputed(self.get_via(cv.front_via_id), self.get_via(cv.back_via_id))
        self._confirmed[self._confirmed.index(cv)] = updated
        return updated

    def remove_confirmed(self, cv_id: str) -> ConfirmedVia:
        """Delete a confirmed via and reset the match state of both vias."""
        cv = self.get_confirmed(cv_id)
        self._confirmed.remove(cv)
        for via_id in cv.via_ids():
            via = self.find_via(via_id)
            if via is not None:
                self.replace_via(via.unmatched(), recompute=False)
        return cv

    def clear_confirmed(self) -> int:
        count = len(self._confirmed)
        for cv in list(self._confirmed):
            self.remove_confirmed(cv.id)
        self._confirmed_counter = 0
        return count

    @property
    def confirmed_vias(self) -> List[ConfirmedVia]:
        return list(self._confirmed)

    def hit_test_confirmed(self, p: Point2D) -> Optional[ConfirmedVia]:
        return next((cv for cv in self._confirmed if cv.hit_test(p)), None)
