"""
Vias Module
===========

Via records, the per-project features store, cross-side matching and
the operator feedback log.

Classes:
--------
- Via, ConfirmedVia: Single-side and cross-side via records
- ProjectFeatures: Index-addressed via store
- ViaMatcher: Matching and manual edits
- TrainingStore: Labelled samples from manual edits
"""

from .models import (
    Side,
    ViaMethod,
    Via,
    ConfirmedVia,
    compute_intersection
)

from .features import ProjectFeatures

from .matcher import (
    ViaMatcher,
    MatchPair,
    MatchResult,
    EditAction,
    ManualEditResult,
    match_across_sides,
    suggest_match_tolerance,
    boost_matched_confidence,
    find_unmatched_vias,
    validate_alignment_with_vias,
    separate_by_side
)

from .training import (
    TrainingStore,
    TrainingSample,
    SampleLabel
)

__all__ = [
    # Records
    'Side',
    'ViaMethod',
    'Via',
    'ConfirmedVia',
    'compute_intersection',
    'ProjectFeatures',
    # Matching
    'ViaMatcher',
    'MatchPair',
    'MatchResult',
    'EditAction',
    'ManualEditResult',
    'match_across_sides',
    'suggest_match_tolerance',
    'boost_matched_confidence',
    'find_unmatched_vias',
    'validate_alignment_with_vias',
    'separate_by_side',
    # Feedback
    'TrainingStore',
    'TrainingSample',
    'SampleLabel'
]
