"""
Safe-zone fit rules for a foam layout.

Every pocket's bounding box must sit inside the case interior minus the
border margin. Violations are reported, never raised: an overflowing item
blocks export until the user moves it, and the UI draws it in red.
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from case_catalog import CaseFootprint

logger = logging.getLogger(__name__)

# Float slack for positions that land exactly on the margin line.
_EPS = 1e-9


@dataclass
class PlacementViolation:
    """One item outside the safe zone, with how far it pokes out per side."""

    item_id: str
    message: str
    left: float = 0.0
    top: float = 0.0
    right: float = 0.0
    bottom: float = 0.0
    severity: str = "error"


def item_in_safe_zone(item, case: CaseFootprint) -> bool:
    """x >= m, y >= m, x + w <= W - m and y + h <= H - m."""
    m = case.border_margin
    return (
        item.x >= m - _EPS
        and item.y >= m - _EPS
        and item.x + item.width <= case.inner_width - m + _EPS
        and item.y + item.height <= case.inner_height - m + _EPS
    )


def fit_percentage(items: Sequence, case: CaseFootprint) -> int:
    """Share of items inside the safe zone, rounded half up; 0 with no items."""
    if not items:
        return 0
    inside = sum(1 for item in items if item_in_safe_zone(item, case))
    return int(math.floor(100.0 * inside / len(items) + 0.5))


def layout_is_complete(items: Sequence, case: CaseFootprint) -> bool:
    """Export is allowed only when every item is inside the safe zone."""
    return fit_percentage(items, case) == 100


def check_layout_fit(items: Iterable, case: CaseFootprint) -> List[PlacementViolation]:
    """Report every item whose bounding box leaves the safe zone."""
    m = case.border_margin
    violations: List[PlacementViolation] = []

    for item in items:
        if item_in_safe_zone(item, case):
            continue
        left = max(0.0, m - item.x)
        top = max(0.0, m - item.y)
        right = max(0.0, item.x + item.width - (case.inner_width - m))
        bottom = max(0.0, item.y + item.height - (case.inner_height - m))
        violations.append(
            PlacementViolation(
                item_id=item.id,
                message=(
                    f"{item.name or item.id} is outside the {m:g}\" safe zone "
                    f"(L {left:.2f}, T {top:.2f}, R {right:.2f}, B {bottom:.2f} in)"
                ),
                left=left,
                top=top,
                right=right,
                bottom=bottom,
            )
        )

    if violations:
        logger.debug("%d item(s) outside safe zone of %s", len(violations), case.label)
    return violations
