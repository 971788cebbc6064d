"""
Shared test fixtures for the foam cutout pipeline tests.
"""
import sys
from pathlib import Path

import numpy as np
import pytest

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from case_catalog import custom_case
from geometry_primitives import Contour, PixelBuffer, Unit
from layout_packer import LayoutItem


def rect_alpha(shape, rects, value=255):
    """Alpha plane with filled (row0, col0, row1, col1) rectangles."""
    alpha = np.zeros(shape, dtype=np.uint8)
    for r0, c0, r1, c1 in rects:
        alpha[r0:r1, c0:c1] = value
    return alpha


def rect_item(item_id, width, height, x=0.0, y=0.0, name=None):
    points = np.array([[0, 0], [width, 0], [width, height], [0, height]], dtype=float)
    return LayoutItem(
        id=item_id, name=name or item_id, points=points,
        x=x, y=y, width=width, height=height,
    )


@pytest.fixture
def two_object_buffer():
    """200x300 image with a 60x100 block and a 50x50 block, plus a speck."""
    alpha = rect_alpha(
        (200, 300),
        [(20, 20, 80, 120), (120, 180, 170, 230), (190, 5, 193, 8)],
    )
    return PixelBuffer.from_alpha(alpha)


@pytest.fixture
def ring_buffer():
    """A square ring: 80x80 block with a 30x30 hole in the middle."""
    alpha = rect_alpha((120, 120), [(20, 20, 100, 100)])
    alpha[45:75, 45:75] = 0
    return PixelBuffer.from_alpha(alpha)


@pytest.fixture
def case_24x18():
    return custom_case(24.0, 18.0)


@pytest.fixture
def square_contour_in():
    """A 4x2 inch rectangle contour, offset from the origin."""
    pts = np.array([[3, 5], [7, 5], [7, 7], [3, 7]], dtype=float)
    return Contour(points=pts, unit=Unit.INCH, name="Wrench")


@pytest.fixture
def circle_points():
    """64-point circle of radius 10 around (20, 20)."""
    t = np.linspace(0, 2 * np.pi, 64, endpoint=False)
    return np.column_stack([20 + 10 * np.cos(t), 20 + 10 * np.sin(t)])
