"""
Object mask extraction from a background-removed image.

Each 4-connected region of foreground alpha becomes one ObjectMask. Regions
smaller than the minimum area are specks and get discarded.
"""
import io
import logging
import os
from typing import List, Union

import numpy as np
from PIL import Image
from scipy import ndimage

from geometry_primitives import ALPHA_THRESHOLD, BoundingBox, ObjectMask, PixelBuffer

logger = logging.getLogger(__name__)

DEFAULT_MIN_AREA_PX = 1000


def load_rgba(source: Union[str, os.PathLike, bytes]) -> PixelBuffer:
    """Decode an image file (or raw bytes) into an RGBA PixelBuffer.

    Images without an alpha channel come back fully opaque.
    """
    if isinstance(source, (bytes, bytearray)):
        image = Image.open(io.BytesIO(source))
    else:
        image = Image.open(source)
    with image:
        rgba = np.asarray(image.convert("RGBA"), dtype=np.uint8)
    logger.debug("Loaded %dx%d image", rgba.shape[1], rgba.shape[0])
    return PixelBuffer(rgba)


def alpha_channel(buffer: PixelBuffer) -> np.ndarray:
    return buffer.alpha


def foreground_mask(alpha: np.ndarray) -> np.ndarray:
    """Boolean mask of pixels with alpha >= 128."""
    return np.asarray(alpha) >= ALPHA_THRESHOLD


def find_object_masks(
    alpha: np.ndarray,
    min_area_px: int = DEFAULT_MIN_AREA_PX,
) -> List[ObjectMask]:
    """Split the alpha plane into one mask per connected object.

    Args:
        alpha: (H, W) alpha channel.
        min_area_px: Regions with fewer pixels are dropped.

    Returns:
        Masks ordered by the row-major position of each region's first
        pixel. An image with no qualifying region yields an empty list.
    """
    foreground = foreground_mask(alpha)
    # Default structuring element is the 4-connected cross.
    labels, count = ndimage.label(foreground)
    if count == 0:
        return []

    label_ids = np.arange(1, count + 1)
    areas = np.bincount(labels.ravel(), minlength=count + 1)
    flat_index = np.arange(labels.size).reshape(labels.shape)
    first_pixel = ndimage.minimum(flat_index, labels, index=label_ids)
    slices = ndimage.find_objects(labels)

    masks: List[ObjectMask] = []
    for order in np.argsort(first_pixel, kind="stable"):
        label_id = int(label_ids[order])
        area = int(areas[label_id])
        if area < min_area_px:
            logger.debug("Discarding region %d: %d px < %d px", label_id, area, min_area_px)
            continue
        rows, cols = slices[label_id - 1]
        masks.append(
            ObjectMask(
                mask=labels == label_id,
                bounds=BoundingBox(
                    float(cols.start), float(rows.start),
                    float(cols.stop - cols.start), float(rows.stop - rows.start),
                ),
                index=len(masks),
                area_px=area,
            )
        )

    logger.info("Found %d objects (%d regions before area filter)", len(masks), count)
    return masks


def masks_from_buffer(
    buffer: PixelBuffer,
    min_area_px: int = DEFAULT_MIN_AREA_PX,
) -> List[ObjectMask]:
    """Convenience wrapper over find_object_masks for a whole PixelBuffer."""
    return find_object_masks(alpha_channel(buffer), min_area_px)
