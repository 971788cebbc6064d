"""
Outer boundary tracing for refined object masks.

Moore-neighbor style following over 8-connected boundary pixels. The trace
starts at the first foreground pixel in row-major order and walks the
boundary until it returns to that pixel.
"""
import logging
from typing import List, Tuple

import numpy as np
from scipy import ndimage

from geometry_primitives import Contour, ObjectMask, Unit

logger = logging.getLogger(__name__)

MAX_TRACE_STEPS = 50_000
MIN_TRACED_POINTS = 10

# Clockwise on screen (y down), starting east.
DIRECTIONS: Tuple[Tuple[int, int], ...] = (
    (1, 0), (1, 1), (0, 1), (-1, 1),
    (-1, 0), (-1, -1), (0, -1), (1, -1),
)


class ContourError(Exception):
    """Base exception for contour extraction failures."""
    pass


class ContourTraceOverrun(ContourError):
    """Boundary walk hit the step cap without closing."""
    pass


class InsufficientContourPoints(ContourError):
    """Traced or simplified outline is too small to keep."""
    pass


def boundary_pixels(mask: np.ndarray) -> np.ndarray:
    """Foreground pixels with at least one background 8-neighbor.

    Pixels on the image edge always count as boundary.
    """
    mask = np.asarray(mask, dtype=bool)
    interior = ndimage.binary_erosion(
        mask, structure=np.ones((3, 3), dtype=bool), border_value=0,
    )
    return mask & ~interior


def trace_outer_boundary(
    mask: np.ndarray,
    max_steps: int = MAX_TRACE_STEPS,
) -> List[Tuple[int, int]]:
    """Walk the outer boundary of *mask* and return pixel coordinates.

    Each visited pixel is recorded once, in walk order.

    Raises:
        ContourTraceOverrun: The walk did not return to the start pixel
            within *max_steps* moves.
    """
    mask = np.asarray(mask, dtype=bool)
    height, width = mask.shape
    flat = np.flatnonzero(mask)
    if len(flat) == 0:
        return []

    start_y, start_x = divmod(int(flat[0]), width)
    edge = boundary_pixels(mask)

    contour: List[Tuple[int, int]] = []
    seen = set()
    x, y = start_x, start_y
    direction = 0
    steps = 0

    while True:
        if (x, y) not in seen:
            seen.add((x, y))
            contour.append((x, y))

        moved = False
        for i in range(8):
            candidate = (direction + 6 + i) % 8
            dx, dy = DIRECTIONS[candidate]
            nx, ny = x + dx, y + dy
            if 0 <= nx < width and 0 <= ny < height and edge[ny, nx]:
                x, y = nx, ny
                direction = candidate
                moved = True
                break

        if not moved:
            # Isolated pixel: nothing to follow.
            break

        steps += 1
        if x == start_x and y == start_y:
            break
        if steps >= max_steps:
            raise ContourTraceOverrun(
                f"Boundary trace exceeded {max_steps} steps without closing"
            )

    return contour


def extract_contour(
    obj: ObjectMask,
    min_points: int = MIN_TRACED_POINTS,
    max_steps: int = MAX_TRACE_STEPS,
) -> Contour:
    """Trace the outer contour of a refined mask.

    Raises:
        ContourTraceOverrun: See trace_outer_boundary.
        InsufficientContourPoints: Fewer than *min_points* boundary pixels.
    """
    traced = trace_outer_boundary(obj.mask, max_steps=max_steps)
    if len(traced) < min_points:
        raise InsufficientContourPoints(
            f"Object {obj.index} traced to {len(traced)} points (< {min_points})"
        )
    logger.debug("Object %d traced to %d points", obj.index, len(traced))
    return Contour(
        points=np.array(traced, dtype=np.float64),
        unit=Unit.PIXEL,
        source_index=obj.index,
    )
