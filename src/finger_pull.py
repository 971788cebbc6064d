"""
Finger-pull notch for foam pockets.

Adds an arched bulge to one edge of an outline so the item can be lifted
out of the foam. Wide items get it on the bottom edge, tall ones on the
right.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np

logger = logging.getLogger(__name__)

_ARC_POINTS = 12
PULL_EDGES = ("bottom", "top", "left", "right")


@dataclass
class FingerPullConfig:
    enabled: bool = False
    width_in: float = 1.25
    depth_in: float = 0.75


def finger_pull_edge(width: float, height: float) -> str:
    return "bottom" if width > height else "right"


def add_finger_pull(
    points: np.ndarray,
    width: float,
    height: float,
    config: FingerPullConfig,
    edge: str = None,
) -> Tuple[np.ndarray, int]:
    """Insert an arc on the segment nearest the middle of *edge*.

    Points are origin-relative inches, y down. Returns (new_points,
    insert_index); the input is returned unchanged when the outline is
    too small or the feature is disabled.
    """
    pts = np.asarray(points, dtype=np.float64)
    if not config.enabled or config.width_in <= 0 or config.depth_in <= 0 or len(pts) < 4:
        return pts, 0
    if edge is None:
        edge = finger_pull_edge(width, height)
    if edge not in PULL_EDGES:
        raise ValueError(f"Unknown finger pull edge: {edge}")

    idx = _pick_segment(pts, width, height, edge)
    p1 = pts[idx]
    p2 = pts[(idx + 1) % len(pts)]
    mid = (p1 + p2) / 2.0

    t = np.arange(1, _ARC_POINTS) / _ARC_POINTS
    bulge = config.depth_in * np.sin(np.pi * t)
    along = p1 + (p2 - p1) * t[:, None]
    arc = along.copy()
    if edge == "bottom":
        arc[:, 1] = mid[1] + bulge
    elif edge == "top":
        arc[:, 1] = mid[1] - bulge
    elif edge == "right":
        arc[:, 0] = mid[0] + bulge
    else:
        arc[:, 0] = mid[0] - bulge

    result = np.concatenate([pts[:idx + 1], arc, pts[idx + 1:]])
    logger.debug("Finger pull added on %s edge at segment %d", edge, idx)
    return result, idx


def _pick_segment(pts: np.ndarray, width: float, height: float, edge: str) -> int:
    """Segment lying on *edge* closest to its center, else the nearest vertex."""
    nxt = np.roll(pts, -1, axis=0)
    tol = max(width, height) * 0.1
    horizontal = edge in ("bottom", "top")
    coord = 1 if horizontal else 0
    line = {"bottom": height, "top": 0.0, "right": width, "left": 0.0}[edge]
    target = width / 2 if horizontal else height / 2

    on_edge = (np.abs(pts[:, coord] - line) < tol) & (np.abs(nxt[:, coord] - line) < tol)
    if on_edge.any():
        centers = (pts[:, 1 - coord] + nxt[:, 1 - coord]) / 2
        dist = np.where(on_edge, np.abs(centers - target), np.inf)
        return int(np.argmin(dist))

    goal = np.array([target, line]) if horizontal else np.array([line, target])
    return int(np.argmin(np.linalg.norm(pts - goal, axis=1)))
