"""
Shape cleanup for object masks.

Three ordered passes turn a raw segmentation mask into a forgiving cutout
silhouette:
1. Fill interior holes (trigger guards, handle loops) so the cutout is solid.
2. Morphological closing with a disk of radius ``gap_fill_px`` to bridge
   narrow gaps and concavities.
3. Dilation by ``margin_px`` so the foam pocket is slightly larger than the
   object.

Every pass returns a new array; input masks are never modified.
"""
import logging
from dataclasses import dataclass
from functools import lru_cache

import numpy as np
from scipy import ndimage

from geometry_primitives import BoundingBox, ObjectMask

logger = logging.getLogger(__name__)


@dataclass
class MaskRefineConfig:
    """Radii for the refinement passes, in pixels."""

    gap_fill_px: int = 14
    margin_px: int = 5

    def __post_init__(self):
        if self.gap_fill_px < 0 or self.margin_px < 0:
            raise ValueError("Refinement radii must be non-negative")


@lru_cache(maxsize=64)
def disk_structure(radius: int) -> np.ndarray:
    """Boolean disk of all offsets with dx^2 + dy^2 <= r^2."""
    r = int(radius)
    yy, xx = np.mgrid[-r:r + 1, -r:r + 1]
    disk = (xx * xx + yy * yy) <= r * r
    disk.setflags(write=False)
    return disk


def fill_holes(mask: np.ndarray) -> np.ndarray:
    """Set every pixel not reachable from the image border through background.

    The background flood fill is 4-connected and starts from all border
    pixels outside the mask.
    """
    return ndimage.binary_fill_holes(np.asarray(mask, dtype=bool))


def dilate(mask: np.ndarray, radius: int) -> np.ndarray:
    """Grow the mask by a Euclidean disk of *radius* pixels."""
    mask = np.asarray(mask, dtype=bool)
    if radius <= 0:
        return mask.copy()
    return ndimage.binary_dilation(mask, structure=disk_structure(radius))


def erode(mask: np.ndarray, radius: int) -> np.ndarray:
    """Keep pixels whose whole disk neighborhood is foreground.

    Pixels outside the image count as background, so erosion also eats in
    from the image border.
    """
    mask = np.asarray(mask, dtype=bool)
    if radius <= 0:
        return mask.copy()
    return ndimage.binary_erosion(mask, structure=disk_structure(radius), border_value=0)


def close(mask: np.ndarray, radius: int) -> np.ndarray:
    """Morphological closing: dilate then erode with the same disk."""
    if radius <= 0:
        return np.asarray(mask, dtype=bool).copy()
    return erode(dilate(mask, radius), radius)


def refine_mask_array(mask: np.ndarray, config: MaskRefineConfig) -> np.ndarray:
    """Run hole filling, closing and margin dilation on a bare array."""
    solid = fill_holes(mask)
    closed = close(solid, config.gap_fill_px)
    return dilate(closed, config.margin_px)


def refine_mask(obj: ObjectMask, config: MaskRefineConfig = None) -> ObjectMask:
    """Return a refined replacement for *obj*; the original is untouched."""
    if config is None:
        config = MaskRefineConfig()

    refined = refine_mask_array(obj.mask, config)
    rows = np.flatnonzero(refined.any(axis=1))
    cols = np.flatnonzero(refined.any(axis=0))
    if len(rows) == 0:
        bounds = BoundingBox(0.0, 0.0, 0.0, 0.0)
    else:
        bounds = BoundingBox(
            float(cols[0]), float(rows[0]),
            float(cols[-1] - cols[0] + 1), float(rows[-1] - rows[0] + 1),
        )

    area = int(refined.sum())
    logger.debug(
        "Refined object %d: %d px -> %d px (gap_fill=%d, margin=%d)",
        obj.index, obj.area_px, area, config.gap_fill_px, config.margin_px,
    )
    return ObjectMask(mask=refined, bounds=bounds, index=obj.index, area_px=area)
