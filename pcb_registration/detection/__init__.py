"""
Detection Module
================

Feature detectors run on a single side image.

Classes:
--------
- ContactDetector: Three-pass edge-connector finger detection
- EjectorDetector: Ejector registration-hole detection
- MetalBoundaryDetector: Ray-cast via pad outlines

Enums:
------
- DetectionPass: Strategy that produced a contact
- MarkSide: Left or right ejector

Data Classes:
-------------
- Contact: One detected finger
- ContactDetectionResult: Contacts, angle, DPI and expected slots
- GridFit: Uniform contact grid
- EjectorMark: One ejector hole center
- BoundaryResult: Pad center, radius and polygon
"""

from .contact_grid import (
    GridFit,
    dpi_from_spacing,
    fit_contact_line,
    fit_grid,
    find_best_fit_pitch,
    find_best_anchor_index
)

from .contact_detector import (
    ContactDetector,
    DetectionPass,
    Contact,
    ContactDetectionResult,
    remove_outliers,
    normalize_contact_widths,
    gold_blob_bounds
)

from .ejector_detector import (
    EjectorDetector,
    MarkSide,
    EjectorMark,
    marks_by_side
)

from .metal_boundary import (
    MetalBoundaryDetector,
    BoundaryResult,
    detect_metal_boundary,
    merge_boundaries,
    filter_green_points,
    refine_boundaries
)

__all__ = [
    # Contacts
    'ContactDetector',
    'DetectionPass',
    'Contact',
    'ContactDetectionResult',
    'remove_outliers',
    'normalize_contact_widths',
    'gold_blob_bounds',
    'GridFit',
    'dpi_from_spacing',
    'fit_contact_line',
    'fit_grid',
    'find_best_fit_pitch',
    'find_best_anchor_index',
    # Ejectors
    'EjectorDetector',
    'MarkSide',
    'EjectorMark',
    'marks_by_side',
    # Via pads
    'MetalBoundaryDetector',
    'BoundaryResult',
    'detect_metal_boundary',
    'merge_boundaries',
    'filter_green_points',
    'refine_boundaries'
]
