"""Unit tests for cross-side via matching and manual edits."""
import cv2
import numpy as np
import pytest

from pcb_registration.config import RegistrationConfig
from pcb_registration.geometry import Point2D
from pcb_registration.vias import (
    ConfirmedVia,
    EditAction,
    Side,
    TrainingStore,
    ViaMatcher,
    boost_matched_confidence,
    find_unmatched_vias,
    match_across_sides,
    separate_by_side,
    suggest_match_tolerance,
    validate_alignment_with_vias,
)
from pcb_registration.utils.error_handler import InvalidInputError, NotFoundError

from conftest import GREEN_MASK, SILVER, draw_pad


class TestMatchAcrossSides:
    """Test suite for the pure greedy matcher."""

    def test_single_pair_within_tolerance(self, make_via):
        front = [make_via(100, 100)]
        back = [make_via(103, 100, side=Side.BACK)]

        result = match_across_sides(front, back, 5.0)

        assert result.matched_count == 1
        assert len(result.confirmed_vias) == 1
        assert result.avg_error == pytest.approx(3.0)
        assert result.unmatched_front == result.unmatched_back == []

    def test_pair_outside_tolerance(self, make_via):
        result = match_across_sides([make_via(0, 0)], [make_via(6, 0, side=Side.BACK)], 5.0)
        assert result.matched_count == 0
        assert len(result.unmatched_front) == len(result.unmatched_back) == 1

    def test_greedy_prefers_nearest(self, make_via):
        f1, f2 = make_via(0, 0), make_via(10, 0)
        b1 = make_via(6, 0, side=Side.BACK)

        result = match_across_sides([f1, f2], [b1], 10.0)

        assert [(p.front_id, p.back_id) for p in result.pairs] == [(f2.id, b1.id)]
        assert result.unmatched_front == [f1.id]

    def test_symmetric_in_argument_order(self, make_via):
        front = [make_via(x, 0) for x in (0, 10, 20, 30)]
        back = [make_via(x, 0, side=Side.BACK) for x in (4, 14, 16, 33)]

        ab = match_across_sides(front, back, 6.0)
        ba = match_across_sides(back, front, 6.0)

        assert [(p.front_id, p.back_id) for p in ab.pairs] == [(p.front_id, p.back_id) for p in ba.pairs]

    def test_larger_tolerance_never_matches_fewer(self, make_via):
        front = [make_via(x, y) for x, y in ((0, 0), (20, 5), (40, 0), (60, 3), (80, 0))]
        back = [make_via(x, y, side=Side.BACK) for x, y in ((2, 1), (27, 5), (41, 8), (66, 0), (95, 0))]

        counts = [match_across_sides(front, back, t).matched_count for t in (1, 3, 5, 8, 12, 20)]

        assert counts == sorted(counts)
        assert counts[-1] > counts[0]

    def test_inputs_not_modified(self, make_via):
        front = [make_via(0, 0)]
        back = [make_via(1, 0, side=Side.BACK)]
        match_across_sides(front, back, 5.0)
        assert not front[0].both_sides_confirmed
        assert back[0].matched_via_id is None

    @pytest.mark.parametrize("tolerance", [0, -1.0])
    def test_non_positive_tolerance(self, make_via, tolerance):
        with pytest.raises(InvalidInputError):
            match_across_sides([make_via(0, 0)], [], tolerance)


class TestMatchHelpers:
    """Test suite for matching helpers."""

    def test_suggest_tolerance(self):
        assert suggest_match_tolerance(600) == pytest.approx(24.0)
        assert suggest_match_tolerance(0) == pytest.approx(15.0)
        config = RegistrationConfig(match_tolerance_inches=0.015)
        assert suggest_match_tolerance(1000, config) == pytest.approx(15.0)

    def test_boost_only_confirmed(self, make_via):
        vias = [make_via(0, 0, confidence=0.5).matched_to("x"), make_via(5, 5, confidence=0.5)]
        boosted = boost_matched_confidence(vias, 0.2)
        assert boosted[0].confidence == pytest.approx(0.6)
        assert boosted[1].confidence == pytest.approx(0.5)

    def test_find_unmatched_and_separate(self, make_via):
        vias = [make_via(0, 0).matched_to("x"), make_via(1, 1), make_via(2, 2, side=Side.BACK)]
        assert [v.center.x for v in find_unmatched_vias(vias)] == [1, 2]
        front, back = separate_by_side(vias)
        assert len(front) == 2 and len(back) == 1

    def test_rms_error(self, make_via):
        front = [make_via(0, 0), make_via(50, 0)]
        back = [make_via(3, 0, side=Side.BACK), make_via(50, 4, side=Side.BACK)]
        result = match_across_sides(front, back, 5.0)
        assert validate_alignment_with_vias(result) == pytest.approx(np.sqrt((9 + 16) / 2))
        assert result.max_error == pytest.approx(4.0)

    def test_rms_of_empty_result(self):
        assert validate_alignment_with_vias(match_across_sides([], [], 5.0)) == 0.0


class TestViaMatcher:
    """Test suite for ViaMatcher on a features store."""

    @pytest.fixture
    def training(self):
        return TrainingStore()

    @pytest.fixture
    def matcher(self, features, training):
        return ViaMatcher(features, RegistrationConfig(), dpi=0, training_store=training)

    def test_match_all_stores_confirmed(self, features, matcher, make_via):
        features.add_via(make_via(100, 100))
        features.add_via(make_via(103, 100, side=Side.BACK))
        features.add_via(make_via(300, 300))

        result = matcher.match_all(tolerance=5.0)

        assert result.matched_count == 1
        assert len(features.confirmed_vias) == 1
        assert features.confirmed_vias[0].id == "cvia-001"
        assert len(find_unmatched_vias(features.vias)) == 1

    def test_match_all_is_repeatable(self, features, matcher, make_via):
        features.add_via(make_via(100, 100))
        features.add_via(make_via(103, 100, side=Side.BACK))
        matcher.match_all()
        result = matcher.match_all()
        assert result.matched_count == 1
        assert [cv.id for cv in features.confirmed_vias] == ["cvia-001"]

    def test_quick_match_one(self, features, matcher, make_via):
        front = features.add_via(make_via(100, 100))
        features.add_via(make_via(130, 100, side=Side.BACK))
        near = features.add_via(make_via(104, 100, side=Side.BACK))

        partner = matcher.quick_match_one(front.id)

        assert partner.id == near.id
        assert partner.both_sides_confirmed
        assert features.get_via(front.id).matched_via_id == near.id

    def test_quick_match_one_without_candidate(self, features, matcher, make_via):
        front = features.add_via(make_via(100, 100))
        assert matcher.quick_match_one(front.id) is None
        with pytest.raises(NotFoundError):
            matcher.quick_match_one("via-404")

    def test_add_manual_via_creates_and_matches(self, features, matcher, training, make_via):
        back = features.add_via(make_via(52, 50, side=Side.BACK, radius=6))

        edit = matcher.add_manual_via(draw_pad(radius=10), Point2D(50, 50), Side.FRONT, aligned=True)

        assert edit.action == EditAction.ADDED
        assert edit.via.confidence == 1.0
        assert edit.via.center.distance(Point2D(50, 50)) < 1.5
        assert edit.matched_via.id == back.id
        assert edit.confirmed is not None
        assert training.counts() == {'positive': 1, 'negative': 0, 'total': 1}
        assert training.positives[0].source == "manual"

    def test_add_manual_via_unaligned_does_not_match(self, features, matcher, make_via):
        features.add_via(make_via(52, 50, side=Side.BACK))
        edit = matcher.add_manual_via(draw_pad(radius=10), Point2D(50, 50), Side.FRONT)
        assert edit.matched_via is None
        assert features.confirmed_vias == []

    def test_click_near_existing_via_merges(self, features, matcher, training, make_via):
        existing = features.add_via(make_via(52, 50, radius=4))

        edit = matcher.add_manual_via(draw_pad(radius=10), Point2D(50, 50), Side.FRONT)

        assert edit.action == EditAction.MERGED
        assert edit.via.id == existing.id
        assert edit.via.radius >= 4
        assert len(features) == 1
        assert len(training) == 0

    def test_click_inside_confirmed_via_expands(self, features, matcher, make_via):
        front = features.add_via(make_via(50, 50, radius=4))
        back = features.add_via(make_via(51, 50, side=Side.BACK, radius=4))
        features.add_confirmed(ConfirmedVia.from_pair(features.next_confirmed_id(), front, back))

        edit = matcher.add_manual_via(draw_pad(radius=10), Point2D(50, 50), Side.FRONT)

        assert edit.action == EditAction.EXPANDED
        assert edit.via.id == front.id
        assert edit.via.radius > 4
        assert edit.matched_via.id == back.id
        assert edit.confirmed.front_via_id == front.id
        assert len(features) == 2

    def test_remove_via_at_records_negative(self, features, matcher, training, make_via):
        front = features.add_via(make_via(100, 100))
        back = features.add_via(make_via(102, 100, side=Side.BACK))
        matcher.match_all(tolerance=5.0)

        removed = matcher.remove_via_at(Point2D(105, 100), Side.FRONT)

        assert removed.id == front.id
        assert features.confirmed_vias == []
        assert not features.get_via(back.id).both_sides_confirmed
        assert training.negatives[0].source == "rejected"

    def test_remove_via_at_misses(self, matcher):
        assert matcher.remove_via_at(Point2D(0, 0), Side.FRONT) is None

    def test_remove_via_by_id(self, features, matcher, training, make_via):
        via = features.add_via(make_via(1, 1, radius=4))
        assert matcher.remove_via(via.id).id == via.id
        assert len(training.negatives) == 1
        assert training.negatives[0].source == "rejected"
        assert training.negatives[0].radius == 4
        assert training.negatives[0].side == Side.FRONT
        with pytest.raises(NotFoundError):
            matcher.remove_via(via.id)

    def test_refine_via_boundaries(self, features, matcher, make_via):
        image = np.zeros((100, 200, 3), dtype=np.uint8)
        image[:] = GREEN_MASK
        cv2.circle(image, (40, 50), 8, SILVER, -1)
        cv2.circle(image, (150, 50), 12, SILVER, -1)
        a = features.add_via(make_via(41, 50, radius=2))
        b = features.add_via(make_via(149, 50, radius=2))
        features.add_via(make_via(150, 50, side=Side.BACK, radius=2))

        refined = matcher.refine_via_boundaries(image, Side.FRONT, max_radius=20)

        assert [v.id for v in refined] == [a.id, b.id]
        assert features.get_via(a.id).radius > 5
        assert features.get_via(b.id).radius > features.get_via(a.id).radius
        assert features.vias_by_side(Side.BACK)[0].radius == 2

    def test_refine_keeps_pad_when_nothing_detected(self, features, matcher, make_via):
        image = np.zeros((100, 100, 3), dtype=np.uint8)
        image[:] = GREEN_MASK
        pad = [Point2D(44, 44), Point2D(56, 44), Point2D(56, 56), Point2D(44, 56)]
        via = features.add_via(make_via(50, 50, radius=6, pad_boundary=pad))

        refined = matcher.refine_via_boundaries(image, Side.FRONT, max_radius=20)

        assert refined[0] is via
        assert features.get_via(via.id).radius == 6
        assert features.get_via(via.id).pad_boundary == pad
