"""
Core geometry types for the foam cutout pipeline.

Pixel-side types (PixelBuffer, ObjectMask) come from the segmentation stage;
Contour is the ordered outline that flows from tracing through calibration
into the layout. Shapely is used for area, bounds and rendering helpers.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np
from shapely.geometry import Polygon

# Alpha values at or above this are foreground.
ALPHA_THRESHOLD = 128


class Unit(Enum):
    """Coordinate unit of a contour."""
    PIXEL = "px"
    INCH = "in"


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box, top-left origin, y grows downward."""
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @classmethod
    def from_points(cls, points: np.ndarray) -> "BoundingBox":
        if len(points) == 0:
            return cls(0.0, 0.0, 0.0, 0.0)
        mins = points.min(axis=0)
        maxs = points.max(axis=0)
        return cls(
            float(mins[0]), float(mins[1]),
            float(maxs[0] - mins[0]), float(maxs[1] - mins[1]),
        )


@dataclass(frozen=True, eq=False)
class PixelBuffer:
    """RGBA image with the background already knocked out.

    ``rgba`` is an (H, W, 4) uint8 array. The buffer is treated as
    read-only by every stage; masks are derived copies.
    """
    rgba: np.ndarray

    def __post_init__(self):
        rgba = np.array(self.rgba, dtype=np.uint8)
        if rgba.ndim != 3 or rgba.shape[2] != 4:
            raise ValueError(f"Expected (H, W, 4) RGBA array, got {rgba.shape}")
        rgba.setflags(write=False)
        object.__setattr__(self, "rgba", rgba)

    @property
    def width(self) -> int:
        return int(self.rgba.shape[1])

    @property
    def height(self) -> int:
        return int(self.rgba.shape[0])

    @property
    def alpha(self) -> np.ndarray:
        return self.rgba[:, :, 3]

    @classmethod
    def from_alpha(cls, alpha: np.ndarray) -> "PixelBuffer":
        """Build a buffer from a bare alpha plane (RGB left black)."""
        alpha = np.asarray(alpha, dtype=np.uint8)
        rgba = np.zeros(alpha.shape + (4,), dtype=np.uint8)
        rgba[:, :, 3] = alpha
        return cls(rgba)


@dataclass
class ObjectMask:
    """Binary bitmap for one physical object, same size as its source image."""
    mask: np.ndarray            # (H, W) bool
    bounds: BoundingBox         # pixel bounding box of the set pixels
    index: int                  # source object index, row-major discovery order
    area_px: int = 0

    @property
    def width(self) -> int:
        return int(self.mask.shape[1])

    @property
    def height(self) -> int:
        return int(self.mask.shape[0])


@dataclass
class Contour:
    """Ordered closed outline. The closing edge back to the first point is implicit."""
    points: np.ndarray                  # (N, 2) float64
    unit: Unit = Unit.PIXEL
    source_index: Optional[int] = None
    name: str = ""
    depth_in: Optional[float] = None
    cutouts: List[np.ndarray] = field(default_factory=list)

    def __post_init__(self):
        self.points = np.asarray(self.points, dtype=np.float64).reshape(-1, 2)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def bounds(self) -> BoundingBox:
        return BoundingBox.from_points(self.points)

    @property
    def is_closed(self) -> bool:
        """A ring needs at least three distinct vertices to close."""
        return len(np.unique(self.points, axis=0)) >= 3

    def to_shapely(self) -> Polygon:
        return profile_to_polygon(self.points)

    def scaled(self, factor: float, unit: Unit) -> "Contour":
        """Return a copy with every coordinate multiplied by *factor*."""
        return Contour(
            points=self.points * factor,
            unit=unit,
            source_index=self.source_index,
            name=self.name,
            depth_in=self.depth_in,
            cutouts=[c * factor for c in self.cutouts],
        )


# ─── Conversion functions ────────────────────────────────────────────────────

def polygon_to_profile(polygon: Polygon) -> List[Tuple[float, float]]:
    """Convert a Shapely Polygon to an origin-relative list of (x, y) tuples.

    Drops the closing duplicate and translates so the min corner is at 0, 0.
    """
    if polygon.is_empty:
        return []
    coords = list(polygon.exterior.coords[:-1])
    min_x = min(c[0] for c in coords)
    min_y = min(c[1] for c in coords)
    return [(c[0] - min_x, c[1] - min_y) for c in coords]


def profile_to_polygon(profile: Sequence[Sequence[float]]) -> Polygon:
    """Convert a point list to a Shapely Polygon (empty when under 3 points)."""
    if len(profile) < 3:
        return Polygon()
    return Polygon([(float(p[0]), float(p[1])) for p in profile])


def normalize_to_origin(points: np.ndarray) -> Tuple[np.ndarray, BoundingBox]:
    """Translate points so their bounding box starts at (0, 0)."""
    box = BoundingBox.from_points(points)
    return points - np.array([box.x, box.y]), box


def point_in_polygon(x: float, y: float, points: Sequence[Sequence[float]]) -> bool:
    """Ray-casting containment test against an implicitly closed ring."""
    inside = False
    n = len(points)
    if n < 3:
        return False
    j = n - 1
    for i in range(n):
        xi, yi = points[i][0], points[i][1]
        xj, yj = points[j][0], points[j][1]
        if (yi > y) != (yj > y):
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
            if x < x_cross:
                inside = not inside
        j = i
    return inside


def vertex_centroid(points: np.ndarray) -> np.ndarray:
    """Mean of the vertices (not the area centroid)."""
    if len(points) == 0:
        return np.zeros(2)
    return points.mean(axis=0)
