"""
PCB Double-Sided Registration
=============================

Registers the front and back photographs of a double-sided printed
circuit board into a common pixel space, then pairs the plated vias
detected on each side into confirmed through-holes.

Modules:
--------
- geometry: Point, rectangle and polygon primitives
- config: Board descriptor, detection parameters and tuning settings
- detection: Contact, ejector-mark and metal-boundary detectors
- alignment: Coarse translation and edge-anchored shear alignment
- vias: Via records, features store, cross-side matcher, training store
- utils: Error handling, logging, image helpers and overlay records
"""

__version__ = "1.0.0"
__author__ = "PCB Registration Team"

from pathlib import Path

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Default location of the operator feedback log
DEFAULT_TRAINING_PATH = PROJECT_ROOT / "data" / "via_training.json"

# Pixel fallbacks used when the scan DPI is unknown
FALLBACK_MATCH_TOLERANCE_PX = 15.0
FALLBACK_MERGE_TOLERANCE_PX = 15.0
FALLBACK_CLICK_TOLERANCE_PX = 20.0
