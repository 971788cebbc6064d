"""
Hard-case footprint catalog.

Interior dimensions (inches) of the cases foam inserts are cut for. Layout
uses width/height; depth caps the cut depth of pockets.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

# Every pocket must stay this far from the case wall (inches).
BORDER_MARGIN_IN = 1.0
# Minimum clearance between neighboring pockets (inches).
ITEM_SPACING_IN = 0.5

CUSTOM_CASE_ID = "custom"
DEFAULT_CUSTOM_SIZE_IN = (24.0, 18.0)


class UnknownCaseError(KeyError):
    """No preset with the requested id."""
    pass


@dataclass(frozen=True)
class CaseFootprint:
    """Inner footprint of a case. Immutable for a layout session."""

    id: str
    brand: str
    name: str
    inner_width: float   # inches
    inner_height: float  # inches
    inner_depth: Optional[float] = None
    border_margin: float = BORDER_MARGIN_IN

    def __post_init__(self):
        if self.inner_width <= 0 or self.inner_height <= 0:
            raise ValueError(
                f"Case size must be positive, got {self.inner_width}x{self.inner_height}"
            )

    @property
    def safe_zone(self) -> Tuple[float, float, float, float]:
        """(x, y, width, height) of the interior minus the border margin."""
        m = self.border_margin
        return (m, m, self.inner_width - 2 * m, self.inner_height - 2 * m)

    @property
    def label(self) -> str:
        return f"{self.brand} {self.name}"


CASE_PRESETS: Dict[str, CaseFootprint] = {
    "pelican-1535": CaseFootprint("pelican-1535", "Pelican", "1535 Air", 20.39, 11.20),
    "pelican-1615": CaseFootprint("pelican-1615", "Pelican", "1615 Air", 29.59, 15.50),
    "pelican-v300": CaseFootprint("pelican-v300", "Pelican", "V300 Vault", 16.00, 11.00),
    "pelican-v800": CaseFootprint("pelican-v800", "Pelican", "V800 Vault", 53.00, 16.00),
    "pelican-1200": CaseFootprint("pelican-1200", "Pelican", "1200 Case", 9.25, 7.12, 4.12),
    "pelican-1450": CaseFootprint("pelican-1450", "Pelican", "1450 Case", 14.62, 10.18, 6.0),
    "pelican-1510": CaseFootprint("pelican-1510", "Pelican", "1510 Carry-On Case", 19.75, 11.0, 7.6),
    "pelican-1600": CaseFootprint("pelican-1600", "Pelican", "1600 Case", 21.43, 16.5, 7.87),
    "pelican-1720": CaseFootprint("pelican-1720", "Pelican", "1720 Long Case", 42.0, 13.5, 5.25),
}

DEFAULT_CASE_ID = "pelican-1615"


def get_case(case_id: str) -> CaseFootprint:
    """Look up a preset footprint by id."""
    if case_id == CUSTOM_CASE_ID:
        return custom_case(*DEFAULT_CUSTOM_SIZE_IN)
    try:
        return CASE_PRESETS[case_id]
    except KeyError:
        raise UnknownCaseError(case_id) from None


def custom_case(width_in: float, height_in: float, depth_in: Optional[float] = None) -> CaseFootprint:
    """Footprint for user-entered dimensions."""
    return CaseFootprint(
        id=CUSTOM_CASE_ID,
        brand="Custom",
        name="Custom",
        inner_width=float(width_in),
        inner_height=float(height_in),
        inner_depth=depth_in,
    )
