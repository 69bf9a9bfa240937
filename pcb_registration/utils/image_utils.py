"""
Image Utilities Module
======================

Pixel-buffer helpers shared by the detectors.

The core never decodes files; callers hand over numpy buffers (gray,
BGR or BGRA) and these helpers normalise them for OpenCV.

Author: PCB Registration Team
Version: 1.0.0
"""

from typing import Tuple

import cv2
import numpy as np

from ..geometry import IntRect
from .error_handler import InvalidInputError, validate_image


# ============================================================
# COLOR CONVERSION
# ============================================================

def ensure_bgr(image: np.ndarray) -> np.ndarray:
    """
    Return a 3-channel uint8 BGR view of ``image``.

    Parameters
    ----------
    image : np.ndarray
        Gray (H, W), single channel (H, W, 1), BGR or BGRA buffer

    Returns
    -------
    np.ndarray
        BGR image; the input itself when it is already BGR uint8

    Raises
    ------
    InvalidInputError
        If the buffer is empty or has an unsupported layout
    """
    validate_image(image)
    if image.dtype != np.uint8:
        if np.issubdtype(image.dtype, np.floating) and image.max() <= 1.0:
            image = (image * 255.0).round()
        image = np.clip(image, 0, 255).astype(np.uint8)

    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    channels = image.shape[2]
    if channels == 1:
        return cv2.cvtColor(image[:, :, 0], cv2.COLOR_GRAY2BGR)
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    if channels == 3:
        return image
    raise InvalidInputError(f"Unsupported channel count: {channels}")


def to_hsv(image: np.ndarray) -> np.ndarray:
    """Convert any supported buffer to OpenCV HSV (H in 0-180)."""
    return cv2.cvtColor(ensure_bgr(image), cv2.COLOR_BGR2HSV)


def to_gray(image: np.ndarray) -> np.ndarray:
    return cv2.cvtColor(ensure_bgr(image), cv2.COLOR_BGR2GRAY)


# ============================================================
# REGION HELPERS
# ============================================================

def image_size(image: np.ndarray) -> Tuple[int, int]:
    """Return (width, height)."""
    return int(image.shape[1]), int(image.shape[0])


def clamp_rect(rect: IntRect, shape: Tuple[int, ...]) -> IntRect:
    """Clip ``rect`` to an image of the given numpy shape."""
    return rect.clamp(int(shape[1]), int(shape[0]))


def crop(image: np.ndarray, rect: IntRect) -> np.ndarray:
    r = clamp_rect(rect, image.shape)
    return image[r.y:r.y2, r.x:r.x2]


def in_bounds(shape: Tuple[int, ...], x: float, y: float) -> bool:
    return 0 <= x < shape[1] and 0 <= y < shape[0]


def morph_close(mask: np.ndarray, size: int = 3, shape: int = cv2.MORPH_RECT) -> np.ndarray:
    kernel = cv2.getStructuringElement(shape, (size, size))
    return cv2.morphologyEx(mask, cv2.MORPH_CLOSE, kernel)
