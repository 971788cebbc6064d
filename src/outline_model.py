"""
Cut model composition for foam export.

Turns a placed layout into the geometry that is actually cut: each item's
outline translated to its position, thinned, and grown by a manufacturing
tolerance so the gear slides in. Inner cutouts shrink by half the
tolerance. The composed model is centered on the origin before the DXF
and SVG writers serialize it.

The default offset is a centroid-relative isotropic scale. It is exact
for circles and close for convex, roughly symmetric outlines; concave
shapes distort. ``offset_method="buffer"`` switches to a true polygon
offset through shapely.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from shapely.geometry import MultiPolygon, Polygon

from case_catalog import CaseFootprint
from geometry_primitives import BoundingBox, vertex_centroid

logger = logging.getLogger(__name__)

OFFSET_METHODS = ("centroid_scale", "buffer")


class ExportBoundsExceeded(Exception):
    """Raised at manufacturing submission when items cannot fit the case."""

    def __init__(self, report: "FitReport"):
        self.report = report
        bad = [item.id for item in report.per_item if not item.fits]
        super().__init__(
            f"Layout does not fit the case (items: {', '.join(bad) or 'combined bounds'})"
        )


@dataclass
class OutlineConfig:
    tolerance_in: float = 0.1
    simplify_threshold_in: float = 0.02
    inner_offset_ratio: float = 0.5
    offset_method: str = "centroid_scale"

    def __post_init__(self):
        if self.offset_method not in OFFSET_METHODS:
            raise ValueError(f"Unknown offset method: {self.offset_method}")
        if self.simplify_threshold_in < 0:
            raise ValueError("simplify_threshold_in must be >= 0")


@dataclass(frozen=True, eq=False)
class ExportPath:
    """One closed cut path in case inches."""
    item_id: str
    kind: str               # "outer" | "inner"
    points: np.ndarray


@dataclass(frozen=True, eq=False)
class ExportModel:
    """Composed cut model. Immutable once built; centering returns a copy."""
    case_width: float
    case_height: float
    paths: Tuple[ExportPath, ...]
    case_origin: Tuple[float, float] = (0.0, 0.0)
    include_case: bool = True

    @property
    def case_points(self) -> np.ndarray:
        x0, y0 = self.case_origin
        return np.array([
            [x0, y0],
            [x0 + self.case_width, y0],
            [x0 + self.case_width, y0 + self.case_height],
            [x0, y0 + self.case_height],
        ])

    def all_points(self) -> np.ndarray:
        chunks = [p.points for p in self.paths]
        if self.include_case:
            chunks.append(self.case_points)
        if not chunks:
            return np.zeros((0, 2))
        return np.vstack(chunks)

    def bounds(self) -> BoundingBox:
        return BoundingBox.from_points(self.all_points())

    def translated(self, dx: float, dy: float) -> "ExportModel":
        shift = np.array([dx, dy])
        x0, y0 = self.case_origin
        return ExportModel(
            case_width=self.case_width,
            case_height=self.case_height,
            paths=tuple(ExportPath(p.item_id, p.kind, p.points + shift) for p in self.paths),
            case_origin=(x0 + dx, y0 + dy),
            include_case=self.include_case,
        )

    def centered(self) -> "ExportModel":
        """Move the model so its bounding box is centered on (0, 0)."""
        box = self.bounds()
        return self.translated(-(box.x + box.width / 2), -(box.y + box.height / 2))


@dataclass
class ItemFit:
    id: str
    fits: bool
    overflow_x: float = 0.0
    overflow_y: float = 0.0

    def to_dict(self) -> Dict:
        return {"id": self.id, "fits": self.fits,
                "overflow": {"x": self.overflow_x, "y": self.overflow_y}}


@dataclass
class FitReport:
    fits: bool
    per_item: List[ItemFit] = field(default_factory=list)
    total_width: float = 0.0
    total_height: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "fits": self.fits,
            "perItem": [item.to_dict() for item in self.per_item],
            "totalBounds": {"width": self.total_width, "height": self.total_height},
        }


# ─── Path operations ─────────────────────────────────────────────────────────

def radial_simplify(points: np.ndarray, threshold: float) -> np.ndarray:
    """Drop points closer than *threshold* to the last kept point.

    First and last points are always kept.
    """
    pts = np.asarray(points, dtype=np.float64)
    if len(pts) <= 2 or threshold <= 0:
        return pts.copy()
    kept = [pts[0]]
    for p in pts[1:-1]:
        if np.hypot(*(p - kept[-1])) >= threshold:
            kept.append(p)
    kept.append(pts[-1])
    return np.array(kept)


def offset_path(points: np.ndarray, offset: float, method: str = "centroid_scale") -> np.ndarray:
    """Grow (offset > 0) or shrink (offset < 0) a closed path."""
    pts = np.asarray(points, dtype=np.float64)
    if offset == 0 or len(pts) < 3:
        return pts.copy()
    if method == "buffer":
        return _buffer_offset(pts, offset)
    return _centroid_scale(pts, offset)


def _centroid_scale(pts: np.ndarray, offset: float) -> np.ndarray:
    center = vertex_centroid(pts)
    vec = pts - center
    dist = np.hypot(vec[:, 0], vec[:, 1])
    scale = np.ones_like(dist)
    nonzero = dist > 0
    scale[nonzero] = (dist[nonzero] + offset) / dist[nonzero]
    return center + vec * scale[:, None]


def _buffer_offset(pts: np.ndarray, offset: float) -> np.ndarray:
    poly = Polygon(pts)
    if not poly.is_valid:
        poly = poly.buffer(0)
    grown = poly.buffer(offset, join_style="mitre")
    if isinstance(grown, MultiPolygon):
        grown = max(grown.geoms, key=lambda g: g.area)
    if grown.is_empty:
        logger.warning("Buffer offset %.3f collapsed a path; keeping it unchanged", offset)
        return pts.copy()
    return np.array(grown.exterior.coords[:-1])


def prepare_outer(points: np.ndarray, config: OutlineConfig) -> np.ndarray:
    thinned = radial_simplify(points, config.simplify_threshold_in)
    return offset_path(thinned, config.tolerance_in, config.offset_method)


def prepare_inner(points: np.ndarray, config: OutlineConfig) -> np.ndarray:
    thinned = radial_simplify(points, config.simplify_threshold_in)
    shrink = -config.tolerance_in * config.inner_offset_ratio
    return offset_path(thinned, shrink, config.offset_method)


# ─── Model composition ───────────────────────────────────────────────────────

def compose_export_model(
    items: Sequence,
    case: CaseFootprint,
    config: Optional[OutlineConfig] = None,
    include_case: bool = True,
) -> ExportModel:
    """Case frame plus each item's toleranced outline at its placed position."""
    if config is None:
        config = OutlineConfig()

    paths: List[ExportPath] = []
    for item in items:
        origin = np.array([item.x, item.y])
        paths.append(ExportPath(item.id, "outer", prepare_outer(item.points + origin, config)))
        for cutout in getattr(item, "cutouts", []):
            if len(cutout) < 3:
                continue
            paths.append(ExportPath(item.id, "inner", prepare_inner(cutout + origin, config)))

    logger.debug("Composed %d cut paths for %d items", len(paths), len(items))
    return ExportModel(
        case_width=case.inner_width,
        case_height=case.inner_height,
        paths=tuple(paths),
        include_case=include_case,
    )


def build_centered_model(items: Sequence, case: CaseFootprint,
                         config: Optional[OutlineConfig] = None) -> ExportModel:
    return compose_export_model(items, case, config).centered()


# ─── Validation ──────────────────────────────────────────────────────────────

def validate_layout_for_case(
    items: Sequence,
    case: CaseFootprint,
    config: Optional[OutlineConfig] = None,
) -> FitReport:
    """Check every item's unplaced, toleranced bounds against the case.

    Placement is ignored: an item fails only if it is larger than the case
    interior on some axis. ``fits`` additionally requires the combined
    placed outlines to fit inside the case.
    """
    if config is None:
        config = OutlineConfig()

    per_item: List[ItemFit] = []
    for item in items:
        box = BoundingBox.from_points(prepare_outer(item.points, config))
        over_x = max(0.0, box.width - case.inner_width)
        over_y = max(0.0, box.height - case.inner_height)
        per_item.append(ItemFit(item.id, over_x == 0 and over_y == 0, over_x, over_y))

    model = compose_export_model(items, case, config, include_case=False)
    total = model.bounds()
    fits = (
        total.width <= case.inner_width
        and total.height <= case.inner_height
        and all(item.fits for item in per_item)
    )
    report = FitReport(fits, per_item, total.width, total.height)
    if not fits:
        logger.warning("Layout does not fit %s: %s", case.label, report.to_dict())
    return report


def require_manufacturable(report: FitReport) -> FitReport:
    """Gate for final manufacturing submission."""
    if not report.fits:
        raise ExportBoundsExceeded(report)
    return report
