"""Pytest configuration and shared fixtures for the registration package.

Synthetic board images are drawn with OpenCV so every detector runs on
known geometry:

- 10 gold contacts (12 x 72 px, 25 px pitch) along the top edge
- two white ejector pads with a 10 px black hole near the bottom corners
- dark green solder mask everywhere else

At 200 DPI this matches ``board_descriptor`` below.
"""
import logging
from pathlib import Path
from typing import Iterable, Tuple

import cv2
import numpy as np
import pytest

from pcb_registration.config import BoardDescriptor, RegistrationConfig
from pcb_registration.geometry import Point2D
from pcb_registration.vias import ProjectFeatures, Side, Via


# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)


# BGR colors
GREEN_MASK = (40, 100, 30)
GOLD = (0, 180, 220)
DIM_GOLD = (0, 75, 100)
WHITE = (255, 255, 255)
SILVER = (200, 200, 200)
BLACK = (0, 0, 0)

BOARD_DPI = 200.0
BOARD_SIZE = (525, 500)  # width, height
CONTACT_COUNT = 10
FIRST_CONTACT_X = 150
CONTACT_PITCH = 25
CONTACT_TOP = 10
CONTACT_WIDTH = 12
CONTACT_HEIGHT = 72
EJECTOR_CENTERS = ((120, 300), (405, 300))
EJECTOR_HOLE_RADIUS = 10


def draw_board(
    offset: Tuple[int, int] = (0, 0),
    missing: Iterable[int] = (),
    dim: Iterable[int] = (),
    broken: Iterable[int] = (),
    ejectors: bool = True,
    ejector_offsets: Tuple[Tuple[int, int], Tuple[int, int]] = ((0, 0), (0, 0))
) -> np.ndarray:
    """Draw one side of the synthetic board shifted by ``offset``."""
    width, height = BOARD_SIZE
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:] = GREEN_MASK
    ox, oy = offset
    missing, dim, broken = set(missing), set(dim), set(broken)

    for i in range(CONTACT_COUNT):
        if i in missing:
            continue
        cx = FIRST_CONTACT_X + i * CONTACT_PITCH + ox
        x0, y0 = cx - CONTACT_WIDTH // 2, CONTACT_TOP + oy
        x1, y1 = x0 + CONTACT_WIDTH - 1, y0 + CONTACT_HEIGHT - 1
        if i in broken:
            # Two short pieces that fail the size filters but fill the slot
            cv2.rectangle(image, (x0, y0), (x1, y0 + 29), GOLD, -1)
            cv2.rectangle(image, (x0, y1 - 29), (x1, y1), GOLD, -1)
        else:
            cv2.rectangle(image, (x0, y0), (x1, y1), DIM_GOLD if i in dim else GOLD, -1)

    if ejectors:
        for (hx, hy), (ex, ey) in zip(EJECTOR_CENTERS, ejector_offsets):
            hx, hy = hx + ox + ex, hy + oy + ey
            cv2.rectangle(image, (hx - 30, hy - 30), (hx + 29, hy + 29), WHITE, -1)
            cv2.circle(image, (hx, hy), EJECTOR_HOLE_RADIUS, BLACK, -1)
    return image


def draw_pad(size: int = 100, center: Tuple[int, int] = (50, 50), radius: int = 10,
             hole_radius: int = 0) -> np.ndarray:
    """Round silver via pad, optionally with an open drill hole."""
    image = np.zeros((size, size, 3), dtype=np.uint8)
    image[:] = GREEN_MASK
    cv2.circle(image, center, radius, SILVER, -1)
    if hole_radius:
        cv2.circle(image, center, hole_radius, BLACK, -1)
    return image


@pytest.fixture(scope="session")
def project_root():
    """Provide project root directory path."""
    return Path(__file__).parent.parent


@pytest.fixture
def board_descriptor():
    """Descriptor matching the synthetic board at 200 DPI."""
    return BoardDescriptor(
        contact_count=CONTACT_COUNT,
        pitch_inches=0.125,
        contact_width_inches=0.06,
        contact_height_inches=0.36,
        edge_to_first_contact_inches=0.5,
        contact_to_ejector_inches=1.5,
        ejector_hole_inches=0.1
    )


@pytest.fixture
def front_image():
    return draw_board()


@pytest.fixture
def back_image():
    """Back side scanned 5 px right and 5 px down of the front."""
    return draw_board(offset=(5, 5))


@pytest.fixture
def blank_image():
    width, height = BOARD_SIZE
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:] = GREEN_MASK
    return image


@pytest.fixture
def config():
    return RegistrationConfig()


@pytest.fixture
def features():
    return ProjectFeatures()


@pytest.fixture
def make_via():
    """Factory for vias with sequential ids."""
    counter = {'n': 0}

    def _make(x: float, y: float, side: Side = Side.FRONT, radius: float = 5.0, **kwargs) -> Via:
        counter['n'] += 1
        return Via(id=kwargs.pop('id', f"via-{counter['n']:03d}"), center=Point2D(x, y),
                   radius=radius, side=side, **kwargs)

    return _make


@pytest.fixture
def temp_dir(tmp_path):
    """Provide a temporary directory for test files."""
    return tmp_path
