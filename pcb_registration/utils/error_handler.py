# File: pcb_registration/utils/error_handler.py

"""
Error types and validation helpers shared by every registration stage.

Each failure mode has its own exception so callers can branch on it and
fall back to a cruder strategy instead of aborting.
"""

import logging
from functools import wraps
from typing import Any, Optional

import cv2
import numpy as np


logger = logging.getLogger(__name__)


class RegistrationError(Exception):
    """Base exception for registration and via matching errors"""
    pass


class InsufficientFeaturesError(RegistrationError):
    """Too few contacts, ejector marks or vias to proceed"""

    def __init__(
        self,
        message: str,
        found: int = 0,
        expected: int = 0,
        result: Optional[Any] = None
    ):
        super().__init__(message)
        self.found = found
        self.expected = expected
        self.result = result


class DegenerateGeometryError(RegistrationError):
    """Near-zero spans that would blow up the shear/scale math"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class NotFoundError(RegistrationError):
    """Lookup of a via or confirmed via id that does not exist"""

    def __init__(self, kind: str, item_id: str):
        super().__init__(f"{kind} not found: {item_id}")
        self.kind = kind
        self.item_id = item_id


class InvalidInputError(RegistrationError):
    """Empty image, non-positive radius/tolerance or out-of-order call"""
    pass


def handle_errors(func):
    """Decorator mapping OpenCV failures onto the registration error types"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except RegistrationError:
            raise
        except cv2.error as e:
            logger.error(f"OpenCV error in {func.__name__}: {e}")
            raise InvalidInputError(f"Image processing failed: {e}") from e

    return wrapper


def validate_image(image: Any, name: str = "image") -> np.ndarray:
    """Validate that ``image`` is a non-empty 2-D or 3-D pixel buffer"""
    if image is None:
        raise InvalidInputError(f"{name} is None")
    if not isinstance(image, np.ndarray):
        raise InvalidInputError(f"{name} must be a numpy array, got {type(image).__name__}")
    if image.ndim not in (2, 3) or image.size == 0:
        raise InvalidInputError(f"{name} has no pixel data (shape={image.shape})")
    if image.ndim == 3 and image.shape[2] not in (1, 3, 4):
        raise InvalidInputError(f"{name} has unsupported channel count {image.shape[2]}")
    return image


def validate_positive(value: float, name: str) -> float:
    """Validate a strictly positive radius or tolerance"""
    if value is None or not np.isfinite(value) or value <= 0:
        raise InvalidInputError(f"{name} must be positive, got {value}")
    return float(value)
