"""
Alignment Module
================

Registers the back-side image onto the front-side image.

Classes:
--------
- AlignmentEngine: Contact detection, coarse and fine alignment state machine
- AlignmentTransform: Translation plus pivoted shear/scale

Enums:
------
- AlignmentState: Pipeline state

Functions:
----------
- compute_coarse_translation: Integer offset from contact rows
- compute_shear_transform: Shear/scale from ejector marks
- translate_image: Integer image shift
- warp_shear: Nearest-neighbour shear/scale warp
"""

from .transform import (
    AlignmentTransform,
    compute_coarse_translation,
    compute_shear_transform,
    translate_image,
    warp_shear
)

from .alignment_engine import (
    AlignmentEngine,
    AlignmentState,
    AlignmentResult
)

__all__ = [
    'AlignmentEngine',
    'AlignmentState',
    'AlignmentResult',
    'AlignmentTransform',
    'compute_coarse_translation',
    'compute_shear_transform',
    'translate_image',
    'warp_shear'
]
