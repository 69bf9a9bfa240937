"""
Configuration Module
====================

Board descriptor, concrete detection parameters and tuning settings.

The board descriptor is supplied by the board-specification side of the
application; the core only reads the fields defined here. Tuning
settings default from ``PCB_REGISTRATION_*`` environment variables
(a ``.env`` file is honoured).

Classes:
--------
- HSVRange: Inclusive HSV bounds on the OpenCV scale (H in 0-180)
- BoardDescriptor: Expected contact row and fiducial geometry
- DetectionParams: Concrete area/aspect/color filters for one run
- RegistrationConfig: Tolerances, worker count and store location
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np
from dotenv import load_dotenv

from . import (
    DEFAULT_TRAINING_PATH,
    FALLBACK_CLICK_TOLERANCE_PX,
    FALLBACK_MATCH_TOLERANCE_PX,
    FALLBACK_MERGE_TOLERANCE_PX,
)

load_dotenv()


# ============================================================
# COLOR RANGES
# ============================================================

@dataclass(frozen=True)
class HSVRange:
    """Inclusive HSV range; hue uses OpenCV's 0-180 scale."""
    h_min: int = 15
    h_max: int = 35
    s_min: int = 80
    s_max: int = 255
    v_min: int = 120
    v_max: int = 255

    @property
    def lower(self) -> np.ndarray:
        return np.array([self.h_min, self.s_min, self.v_min], dtype=np.uint8)

    @property
    def upper(self) -> np.ndarray:
        return np.array([self.h_max, self.s_max, self.v_max], dtype=np.uint8)

    def relaxed(self, hue_pad: int = 5, sat_scale: float = 0.7, val_scale: float = 0.7) -> 'HSVRange':
        """Widened copy used by the permissive detection passes."""
        return HSVRange(
            h_min=max(self.h_min - hue_pad, 0),
            h_max=min(self.h_max + hue_pad, 180),
            s_min=int(self.s_min * sat_scale),
            s_max=self.s_max,
            v_min=int(self.v_min * val_scale),
            v_max=self.v_max
        )

    def to_dict(self) -> Dict:
        return {
            'h': [self.h_min, self.h_max],
            's': [self.s_min, self.s_max],
            'v': [self.v_min, self.v_max]
        }


GOLD_HSV = HSVRange()


# ============================================================
# BOARD DESCRIPTOR
# ============================================================

@dataclass
class BoardDescriptor:
    """
    Physical description of the board edge used for fiducial detection.

    Attributes
    ----------
    contact_count : int
        Number of edge-connector fingers on one side
    pitch_inches : float
        Center-to-center finger spacing
    aspect_ratio_range : Tuple[float, float]
        Allowed finger height/width ratio when the size is unknown
    color_range : HSVRange
        Gold plating color bounds
    contact_width_inches, contact_height_inches : float, optional
        Nominal finger footprint; enables DPI-scaled size filters
    edge_to_first_contact_inches : float
        Distance from the board edge to the first finger center
    contact_to_ejector_inches : float
        Vertical distance from the contact row to the ejector holes
    ejector_hole_inches : float
        Diameter of the ejector registration hole
    """
    contact_count: int = 50
    pitch_inches: float = 0.125
    aspect_ratio_range: Tuple[float, float] = (4.0, 8.0)
    color_range: HSVRange = field(default_factory=HSVRange)
    contact_width_inches: Optional[float] = None
    contact_height_inches: Optional[float] = None
    edge_to_first_contact_inches: float = 2.125
    contact_to_ejector_inches: float = 5.4375
    ejector_hole_inches: float = 0.1

    def expected_contact_size(self, dpi: float) -> Optional[Tuple[float, float]]:
        """(width, height) in pixels, or None when it cannot be derived."""
        if dpi <= 0 or not self.contact_width_inches or not self.contact_height_inches:
            return None
        return (self.contact_width_inches * dpi, self.contact_height_inches * dpi)

    def to_dict(self) -> Dict:
        return {
            'contact_count': self.contact_count,
            'pitch_inches': self.pitch_inches,
            'aspect_ratio_range': list(self.aspect_ratio_range),
            'color_range': self.color_range.to_dict(),
            'contact_width_inches': self.contact_width_inches,
            'contact_height_inches': self.contact_height_inches
        }


# ============================================================
# DETECTION PARAMETERS
# ============================================================

@dataclass
class DetectionParams:
    """Concrete contact filter ranges for a single detection run."""
    color_range: HSVRange = field(default_factory=HSVRange)
    min_area: float = 2000.0
    max_area: float = 20000.0
    aspect_min: float = 4.0
    aspect_max: float = 8.0
    expected_width: Optional[float] = None
    expected_height: Optional[float] = None

    @classmethod
    def from_descriptor(
        cls,
        descriptor: BoardDescriptor,
        dpi: float = 0.0,
        color_override: Optional[HSVRange] = None
    ) -> 'DetectionParams':
        """Derive size filters from the descriptor, scaled by DPI when known."""
        color = color_override or descriptor.color_range
        size = descriptor.expected_contact_size(dpi)
        if size is None:
            aspect_min, aspect_max = descriptor.aspect_ratio_range
            return cls(color_range=color, aspect_min=aspect_min, aspect_max=aspect_max)

        width, height = size
        nominal_area = width * height
        nominal_aspect = height / width
        return cls(
            color_range=color,
            min_area=nominal_area * 0.4,
            max_area=nominal_area * 1.8,
            aspect_min=nominal_aspect * 0.5,
            aspect_max=nominal_aspect * 1.5,
            expected_width=width,
            expected_height=height
        )

    def relaxed(self) -> 'DetectionParams':
        """Permissive copy for the brute-force pass when no template exists."""
        return replace(
            self,
            color_range=self.color_range.relaxed(),
            min_area=self.min_area / 2.0,
            max_area=self.max_area * 1.5,
            aspect_min=self.aspect_min * 0.5,
            aspect_max=self.aspect_max * 1.5
        )


# ============================================================
# TUNING SETTINGS
# ============================================================

def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


@dataclass
class RegistrationConfig:
    """Tolerances and runtime settings for matching and manual edits."""
    match_tolerance_inches: float = 0.04
    match_tolerance_fallback_px: float = FALLBACK_MATCH_TOLERANCE_PX
    merge_tolerance_inches: float = 0.03937  # 1 mm
    merge_tolerance_fallback_px: float = FALLBACK_MERGE_TOLERANCE_PX
    click_radius_inches: float = 0.030
    click_radius_fallback_px: float = FALLBACK_CLICK_TOLERANCE_PX
    default_via_radius_px: float = 15.0
    confidence_boost: float = 0.2
    max_workers: Optional[int] = None
    training_path: Path = DEFAULT_TRAINING_PATH

    def match_tolerance(self, dpi: float) -> float:
        if dpi > 0:
            return self.match_tolerance_inches * dpi
        return self.match_tolerance_fallback_px

    def merge_tolerance(self, dpi: float) -> float:
        if dpi > 0:
            return self.merge_tolerance_inches * dpi
        return self.merge_tolerance_fallback_px

    def click_radius(self, dpi: float) -> float:
        if dpi > 0:
            return self.click_radius_inches * dpi
        return self.click_radius_fallback_px

    @classmethod
    def from_env(cls) -> 'RegistrationConfig':
        """Build settings from ``PCB_REGISTRATION_*`` environment variables."""
        workers = os.getenv("PCB_REGISTRATION_MAX_WORKERS")
        return cls(
            match_tolerance_inches=_env_float("PCB_REGISTRATION_MATCH_TOLERANCE_IN", 0.04),
            merge_tolerance_inches=_env_float("PCB_REGISTRATION_MERGE_TOLERANCE_IN", 0.03937),
            click_radius_inches=_env_float("PCB_REGISTRATION_CLICK_RADIUS_IN", 0.030),
            max_workers=int(workers) if workers else None,
            training_path=Path(os.getenv("PCB_REGISTRATION_TRAINING_PATH", str(DEFAULT_TRAINING_PATH)))
        )
