"""
Pocket layout inside a case footprint.

LayoutItems are calibrated outlines (inches, origin-relative) with a
position in the case. The packer places them deterministically: biggest
first, first free grid cell in row-major order over the safe zone. After
that the user drags, rotates, duplicates and deletes items directly.

Overlap is judged on axis-aligned bounding boxes, which can only
over-report collisions for concave outlines, never under-report.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from case_catalog import BORDER_MARGIN_IN, ITEM_SPACING_IN, CaseFootprint
from finger_pull import FingerPullConfig, add_finger_pull
from fit_rules import check_layout_fit, fit_percentage, layout_is_complete
from geometry_primitives import Contour, Unit, normalize_to_origin, point_in_polygon

logger = logging.getLogger(__name__)

DEFAULT_DEPTH_IN = 1.5
DEFAULT_COLOR = "#FF4D00"
DUPLICATE_OFFSET_IN = 0.5
# Names that identify a calibration reference rather than gear.
REFERENCE_NAME_MARKERS = ("card", "quarter")

_EPS = 1e-9

Box = Tuple[float, float, float, float]


@dataclass
class PackerConfig:
    border_margin_in: float = BORDER_MARGIN_IN
    spacing_in: float = ITEM_SPACING_IN
    step_in: float = 0.25

    def __post_init__(self):
        if self.step_in <= 0:
            raise ValueError("Packer step must be positive")


@dataclass
class LayoutItem:
    """One pocket. ``points`` are inches relative to the item's top-left.

    ``rotation`` records the quarter turns already applied to ``points``.
    """

    id: str
    name: str
    points: np.ndarray
    x: float = 0.0
    y: float = 0.0
    rotation: int = 0
    width: float = 0.0
    height: float = 0.0
    depth: float = DEFAULT_DEPTH_IN
    color: str = DEFAULT_COLOR
    raw_points: Optional[np.ndarray] = None
    finger_pull_index: int = 0
    cutouts: List[np.ndarray] = field(default_factory=list)

    def __post_init__(self):
        self.points = np.asarray(self.points, dtype=np.float64).reshape(-1, 2)
        if self.raw_points is None:
            self.raw_points = self.points.copy()
        else:
            self.raw_points = np.asarray(self.raw_points, dtype=np.float64).reshape(-1, 2)
        self.cutouts = [np.asarray(c, dtype=np.float64).reshape(-1, 2) for c in self.cutouts]

    @property
    def box(self) -> Box:
        return (self.x, self.y, self.width, self.height)

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def area(self) -> float:
        return self.width * self.height

    def placed_points(self) -> np.ndarray:
        """Outline in case coordinates."""
        return self.points + np.array([self.x, self.y])

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "points": [[float(px), float(py)] for px, py in self.points],
            "x": float(self.x),
            "y": float(self.y),
            "rotation": int(self.rotation),
            "width": float(self.width),
            "height": float(self.height),
            "depth": float(self.depth),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "LayoutItem":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            points=np.array(data["points"], dtype=np.float64),
            x=float(data.get("x", 0.0)),
            y=float(data.get("y", 0.0)),
            rotation=int(data.get("rotation", 0)),
            width=float(data["width"]),
            height=float(data["height"]),
            depth=float(data.get("depth", DEFAULT_DEPTH_IN)),
        )


@dataclass
class PackResult:
    items: List[LayoutItem]
    overflow_ids: List[str] = field(default_factory=list)


# ─── Item construction ───────────────────────────────────────────────────────

def is_reference_name(name: str) -> bool:
    lowered = (name or "").lower()
    return any(marker in lowered for marker in REFERENCE_NAME_MARKERS)


def layout_item_from_contour(
    contour: Contour,
    item_id: str,
    name: Optional[str] = None,
    depth_in: Optional[float] = None,
    color: str = DEFAULT_COLOR,
    finger_pull: Optional[FingerPullConfig] = None,
) -> LayoutItem:
    """Build an unplaced LayoutItem from an inch contour."""
    if contour.unit != Unit.INCH:
        raise ValueError("Layout items need a calibrated (inch) contour")

    raw, box = normalize_to_origin(contour.points)
    origin = np.array([box.x, box.y])
    points = raw
    pull_index = 0
    if finger_pull is not None and finger_pull.enabled:
        points, pull_index = add_finger_pull(raw, box.width, box.height, finger_pull)
        points, box = normalize_to_origin(points)

    return LayoutItem(
        id=item_id,
        name=name or contour.name or item_id,
        points=points,
        width=box.width,
        height=box.height,
        depth=depth_in if depth_in is not None else (contour.depth_in or DEFAULT_DEPTH_IN),
        color=color,
        raw_points=raw,
        finger_pull_index=pull_index,
        cutouts=[c - origin for c in contour.cutouts],
    )


def build_layout_items(
    contours: Sequence[Contour],
    finger_pull: Optional[FingerPullConfig] = None,
) -> List[LayoutItem]:
    """One item per inch contour, skipping calibration references."""
    items: List[LayoutItem] = []
    for i, contour in enumerate(contours):
        name = contour.name or f"Item {i + 1}"
        if is_reference_name(name):
            logger.info("Skipping reference object %r", name)
            continue
        items.append(
            layout_item_from_contour(
                contour, item_id=f"item_{i + 1}", name=name, finger_pull=finger_pull,
            )
        )
    return items


# ─── Packing ─────────────────────────────────────────────────────────────────

def boxes_clear(a: Box, b: Box, spacing: float) -> bool:
    """True when a and b are separated by at least *spacing* on some axis."""
    ax, ay, aw, ah = a
    bx, by, bw, bh = b
    return (
        ax + aw + spacing <= bx + _EPS
        or bx + bw + spacing <= ax + _EPS
        or ay + ah + spacing <= by + _EPS
        or by + bh + spacing <= ay + _EPS
    )


def pack_items(
    items: Iterable[LayoutItem],
    case: CaseFootprint,
    config: Optional[PackerConfig] = None,
) -> PackResult:
    """Place items largest-first at the first free grid position.

    Items with no free position go to the safe-zone origin and are listed
    in ``overflow_ids``; the fit check will flag them.
    """
    if config is None:
        config = PackerConfig(border_margin_in=case.border_margin)

    ordered = sorted(items, key=lambda it: it.area, reverse=True)
    placed_boxes: List[Box] = []
    result: List[LayoutItem] = []
    overflow: List[str] = []

    for item in ordered:
        pos = _first_free_position(item.width, item.height, placed_boxes, case, config)
        if pos is None:
            logger.warning(
                "No room for %s (%.2f x %.2f in) in %s; placing at safe-zone origin",
                item.id, item.width, item.height, case.label,
            )
            overflow.append(item.id)
            pos = (config.border_margin_in, config.border_margin_in)
        else:
            placed_boxes.append((pos[0], pos[1], item.width, item.height))
        result.append(replace(
            item,
            x=pos[0],
            y=pos[1],
            points=item.points.copy(),
            raw_points=item.raw_points.copy(),
            cutouts=[c.copy() for c in item.cutouts],
        ))

    logger.info("Packed %d items into %s (%d overflow)", len(result), case.label, len(overflow))
    return PackResult(items=result, overflow_ids=overflow)


def _first_free_position(
    width: float,
    height: float,
    placed: Sequence[Box],
    case: CaseFootprint,
    config: PackerConfig,
) -> Optional[Tuple[float, float]]:
    m = config.border_margin_in
    s = config.spacing_in
    step = config.step_in
    max_x = case.inner_width - m - width
    max_y = case.inner_height - m - height
    if max_x < m - _EPS or max_y < m - _EPS:
        return None

    xs = m + np.arange(int(math.floor((max_x - m) / step + _EPS)) + 1) * step
    ys = m + np.arange(int(math.floor((max_y - m) / step + _EPS)) + 1) * step
    grid_x, grid_y = np.meshgrid(xs, ys)  # rows follow y: row-major scan

    free = np.ones(grid_x.shape, dtype=bool)
    for px, py, pw, ph in placed:
        free &= (
            (grid_x + width + s <= px + _EPS)
            | (px + pw + s <= grid_x + _EPS)
            | (grid_y + height + s <= py + _EPS)
            | (py + ph + s <= grid_y + _EPS)
        )
    if not free.any():
        return None
    row, col = np.unravel_index(int(np.argmax(free)), free.shape)
    return float(grid_x[row, col]), float(grid_y[row, col])


# ─── Manual edits ────────────────────────────────────────────────────────────

def rotate_item_clockwise(item: LayoutItem) -> LayoutItem:
    """Quarter turn: (x, y) -> (y, W - x), dimensions swap, center stays put."""
    old_w = item.width
    cx, cy = item.center

    def turn(pts: np.ndarray) -> np.ndarray:
        return np.column_stack([pts[:, 1], old_w - pts[:, 0]])

    new_w, new_h = item.height, item.width
    return replace(
        item,
        points=turn(item.points),
        raw_points=turn(item.raw_points),
        cutouts=[turn(c) for c in item.cutouts],
        width=new_w,
        height=new_h,
        x=cx - new_w / 2,
        y=cy - new_h / 2,
        rotation=(item.rotation + 90) % 360,
    )


def move_item(item: LayoutItem, x: float, y: float) -> LayoutItem:
    """Drag to (x, y), never letting more than half the item leave the case origin."""
    return replace(item, x=max(-item.width / 2, x), y=max(-item.height / 2, y))


def hit_test(items: Sequence[LayoutItem], x: float, y: float) -> Optional[LayoutItem]:
    """Top-most item whose outline contains the case point (x, y)."""
    for item in reversed(items):
        if not (item.x <= x <= item.x + item.width and item.y <= y <= item.y + item.height):
            continue
        if point_in_polygon(x - item.x, y - item.y, item.points):
            return item
    return None


class Layout:
    """Editable set of items for one case during a layout session."""

    def __init__(
        self,
        case: CaseFootprint,
        items: Optional[Iterable[LayoutItem]] = None,
        config: Optional[PackerConfig] = None,
    ):
        self.case = case
        self.config = config or PackerConfig(border_margin_in=case.border_margin)
        self.items: List[LayoutItem] = list(items or [])

    def __len__(self) -> int:
        return len(self.items)

    def get(self, item_id: str) -> LayoutItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise KeyError(item_id)

    def _swap(self, item_id: str, new_item: LayoutItem) -> LayoutItem:
        for i, item in enumerate(self.items):
            if item.id == item_id:
                self.items[i] = new_item
                return new_item
        raise KeyError(item_id)

    def auto_arrange(self) -> PackResult:
        result = pack_items(self.items, self.case, self.config)
        self.items = list(result.items)
        return result

    def move(self, item_id: str, x: float, y: float) -> LayoutItem:
        return self._swap(item_id, move_item(self.get(item_id), x, y))

    def rotate(self, item_id: str) -> LayoutItem:
        return self._swap(item_id, rotate_item_clockwise(self.get(item_id)))

    def delete(self, item_id: str) -> None:
        before = len(self.items)
        self.items = [item for item in self.items if item.id != item_id]
        if len(self.items) == before:
            raise KeyError(item_id)

    def duplicate(self, item_id: str) -> LayoutItem:
        return self.add_copies(item_id, 1)[0]

    def add_copies(self, item_id: str, count: int) -> List[LayoutItem]:
        """Append *count* copies, each offset a further 0.5 in down-right."""
        source = self.get(item_id)
        copies: List[LayoutItem] = []
        for i in range(count):
            offset = (i + 1) * DUPLICATE_OFFSET_IN
            copies.append(
                replace(
                    source,
                    id=self._unique_copy_id(source.id, copies),
                    x=source.x + offset,
                    y=source.y + offset,
                    points=source.points.copy(),
                    raw_points=source.raw_points.copy(),
                    cutouts=[c.copy() for c in source.cutouts],
                )
            )
        self.items.extend(copies)
        return copies

    def _unique_copy_id(self, base: str, pending: Sequence[LayoutItem]) -> str:
        taken = {item.id for item in self.items} | {item.id for item in pending}
        n = 1
        while f"{base}_copy_{n}" in taken:
            n += 1
        return f"{base}_copy_{n}"

    def hit_test(self, x: float, y: float) -> Optional[LayoutItem]:
        return hit_test(self.items, x, y)

    def fit_percentage(self) -> int:
        return fit_percentage(self.items, self.case)

    def is_complete(self) -> bool:
        return layout_is_complete(self.items, self.case)

    def violations(self):
        return check_layout_fit(self.items, self.case)

    def to_json(self) -> List[Dict]:
        return [item.to_dict() for item in self.items]
