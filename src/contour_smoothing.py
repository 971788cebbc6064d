"""
Contour simplification and corner rounding.

Douglas-Peucker removes near-collinear points, then Chaikin corner cutting
rounds what is left. The result never has more points than the traced
input, so downstream export cost stays bounded by the trace.
"""
import logging
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from contour_tracer import InsufficientContourPoints
from geometry_primitives import Contour

logger = logging.getLogger(__name__)

MAX_SMOOTHING_LEVEL = 5


@dataclass
class SmoothingConfig:
    """Smoothing controls. ``level`` is the 0-5 user slider."""

    level: int = 2
    epsilon_per_level: float = 0.02
    max_chaikin_passes: int = 2
    max_points: int = 200
    resimplify_epsilon: float = 0.01

    def __post_init__(self):
        if not 0 <= self.level <= MAX_SMOOTHING_LEVEL:
            raise ValueError(
                f"Smoothing level must be 0-{MAX_SMOOTHING_LEVEL}, got {self.level}"
            )

    @property
    def epsilon(self) -> float:
        return self.epsilon_per_level * self.level


def douglas_peucker(points: np.ndarray, epsilon: float) -> np.ndarray:
    """Keep only points farther than *epsilon* from the chord of their span.

    First and last points are always kept. Distances are measured to the
    chord segment (projection clamped to its endpoints).
    """
    pts = np.asarray(points, dtype=np.float64)
    n = len(pts)
    if n < 3:
        return pts.copy()

    keep = np.zeros(n, dtype=bool)
    keep[0] = keep[-1] = True
    stack: List[Tuple[int, int]] = [(0, n - 1)]

    while stack:
        start, end = stack.pop()
        if end - start < 2:
            continue
        dists = _segment_distances(pts[start + 1:end], pts[start], pts[end])
        idx = int(np.argmax(dists))
        if dists[idx] > epsilon:
            split = start + 1 + idx
            keep[split] = True
            stack.append((start, split))
            stack.append((split, end))

    return pts[keep]


def chaikin(points: np.ndarray) -> np.ndarray:
    """One pass of closed-ring Chaikin corner cutting.

    Each edge p0 -> p1 becomes the points at 1/4 and 3/4 along it.
    """
    pts = np.asarray(points, dtype=np.float64)
    if len(pts) < 3:
        return pts.copy()
    nxt = np.roll(pts, -1, axis=0)
    out = np.empty((len(pts) * 2, 2), dtype=np.float64)
    out[0::2] = 0.75 * pts + 0.25 * nxt
    out[1::2] = 0.25 * pts + 0.75 * nxt
    return out


def smooth_points(points: np.ndarray, config: SmoothingConfig = None) -> np.ndarray:
    """Simplify then round a closed point ring.

    Chaikin passes are dropped one at a time if the rounded ring would end
    up with more points than the input.
    """
    if config is None:
        config = SmoothingConfig()
    pts = np.asarray(points, dtype=np.float64)
    if config.level <= 0 or len(pts) < 3:
        return pts.copy()

    simplified = douglas_peucker(pts, config.epsilon)
    passes = min(config.level, config.max_chaikin_passes)

    result = simplified
    for used in range(passes, -1, -1):
        result = simplified
        for _ in range(used):
            result = chaikin(result)
        if len(result) > config.max_points:
            result = douglas_peucker(result, config.resimplify_epsilon)
        if len(result) <= len(pts):
            if used < passes:
                logger.debug("Reduced Chaikin passes %d -> %d to stay within %d points",
                             passes, used, len(pts))
            break

    return result


def smooth_contour(contour: Contour, config: SmoothingConfig = None) -> Contour:
    """Smooth a Contour, keeping its metadata.

    Raises:
        InsufficientContourPoints: Fewer than 3 points survive.
    """
    smoothed = smooth_points(contour.points, config)
    if len(smoothed) < 3:
        raise InsufficientContourPoints(
            f"Contour {contour.source_index} simplified to {len(smoothed)} points"
        )
    return Contour(
        points=smoothed,
        unit=contour.unit,
        source_index=contour.source_index,
        name=contour.name,
        depth_in=contour.depth_in,
        cutouts=list(contour.cutouts),
    )


# ─── Internal helpers ────────────────────────────────────────────────────────

def _segment_distances(points: np.ndarray, a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Distance from each point to segment a-b."""
    ab = b - a
    length_sq = float(ab @ ab)
    if length_sq == 0.0:
        return np.linalg.norm(points - a, axis=1)
    t = np.clip((points - a) @ ab / length_sq, 0.0, 1.0)
    proj = a + t[:, None] * ab
    return np.linalg.norm(points - proj, axis=1)
