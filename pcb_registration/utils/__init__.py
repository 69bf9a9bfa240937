"""
Utilities Module
================

Error types, logging setup and image helpers shared by all modules.
Overlay records live in ``pcb_registration.utils.overlays`` and are
imported from there directly.

Modules:
--------
- error_handler: Exception hierarchy and input validation
- logging_setup: Package logger configuration
- image_utils: Color conversion, cropping and morphology helpers
- overlays: Geometric records for viewers
"""

from .error_handler import (
    RegistrationError,
    InsufficientFeaturesError,
    DegenerateGeometryError,
    NotFoundError,
    InvalidInputError,
    handle_errors,
    validate_image,
    validate_positive
)

from .logging_setup import setup_logging

from .image_utils import (
    ensure_bgr,
    to_hsv,
    to_gray,
    clamp_rect,
    crop,
    morph_close
)

__all__ = [
    'RegistrationError',
    'InsufficientFeaturesError',
    'DegenerateGeometryError',
    'NotFoundError',
    'InvalidInputError',
    'handle_errors',
    'validate_image',
    'validate_positive',
    'setup_logging',
    'ensure_bgr',
    'to_hsv',
    'to_gray',
    'clamp_rect',
    'crop',
    'morph_close'
]
