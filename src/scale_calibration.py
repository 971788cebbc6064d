"""
Pixel-to-inch calibration from a reference object of known size.

The reference (credit card, coin, ruler) is measured in the photo as a
pixel bounding box. Pixels-per-inch is the measured span along one axis
divided by the known real dimension on that axis. Without any reference
the default 72 PPI is used and the result carries a warning.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from geometry_primitives import Contour, Unit

logger = logging.getLogger(__name__)

DEFAULT_PPI = 72.0
# Aspect-ratio mismatch below this is treated as "the box matches the reference".
ASPECT_TOLERANCE = 0.5


class CalibrationError(Exception):
    """Invalid calibration input."""
    pass


@dataclass(frozen=True)
class ReferenceObject:
    """Catalog entry for an object of known real-world size."""
    id: str
    name: str
    width_in: float
    height_in: float

    @property
    def aspect_ratio(self) -> float:
        return self.width_in / self.height_in


REFERENCE_OBJECTS: Dict[str, ReferenceObject] = {
    "credit-card": ReferenceObject("credit-card", "Credit Card", 3.375, 2.125),
    "quarter": ReferenceObject("quarter", "US Quarter", 0.955, 0.955),
    "ruler": ReferenceObject("ruler", "Ruler", 12.0, 1.0),
}


@dataclass
class CalibrationReference:
    """A reference object as measured in one photo."""
    reference: ReferenceObject
    width_px: float
    height_px: float
    measure_axis: Optional[str] = None  # "width" | "height"; None = auto

    def __post_init__(self):
        if self.width_px <= 0 or self.height_px <= 0:
            raise CalibrationError(
                f"Reference box must be positive, got {self.width_px}x{self.height_px} px"
            )
        if self.measure_axis not in (None, "width", "height"):
            raise CalibrationError(f"Unknown measure axis: {self.measure_axis}")


@dataclass
class CalibrationResult:
    """Derived scale plus how it was obtained."""
    pixels_per_inch: float
    method: str                     # "reference" | "span" | "manual" | "default"
    measure_axis: Optional[str] = None
    reference_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return self.method == "default"


def get_reference(reference_id: str) -> ReferenceObject:
    try:
        return REFERENCE_OBJECTS[reference_id]
    except KeyError:
        raise CalibrationError(f"Unknown reference object: {reference_id}") from None


def choose_measure_axis(ref: CalibrationReference) -> str:
    """Pick the axis whose pixel span best reflects the reference's scale.

    When the box's aspect ratio matches the reference's real aspect ratio
    (within ASPECT_TOLERANCE) width is used. Otherwise one axis is
    distorted: each axis implies a PPI and the lower one is used. This
    assumes the distorted span was inflated (loose detection boxes and
    perspective both grow a span). A box whose wrong axis was squashed
    instead is measured on that squashed axis; pass ``measure_axis`` to
    override when the distortion direction is known.
    """
    if ref.measure_axis is not None:
        return ref.measure_axis

    pixel_aspect = ref.width_px / ref.height_px
    if abs(pixel_aspect - ref.reference.aspect_ratio) < ASPECT_TOLERANCE:
        return "width"

    ppi_w = ref.width_px / ref.reference.width_in
    ppi_h = ref.height_px / ref.reference.height_in
    return "width" if ppi_w <= ppi_h else "height"


def ppi_from_reference(ref: CalibrationReference) -> CalibrationResult:
    """pixelsPerInch = measured pixel span / known inch dimension."""
    axis = choose_measure_axis(ref)
    if axis == "width":
        ppi = ref.width_px / ref.reference.width_in
    else:
        ppi = ref.height_px / ref.reference.height_in
    logger.info("Calibrated %.3f PPI from %s (%s axis)", ppi, ref.reference.name, axis)
    return CalibrationResult(
        pixels_per_inch=ppi,
        method="reference",
        measure_axis=axis,
        reference_id=ref.reference.id,
    )


def ppi_from_span(pixel_distance: float, known_in: float) -> CalibrationResult:
    """Scale from a line drawn over a feature of known length."""
    if pixel_distance <= 0 or known_in <= 0:
        raise CalibrationError(
            f"Span and known length must be positive ({pixel_distance}, {known_in})"
        )
    return CalibrationResult(pixels_per_inch=pixel_distance / known_in, method="span")


def manual_ppi(value: float) -> CalibrationResult:
    """User-entered PPI, bypassing any reference."""
    if value is None or not math.isfinite(value) or value <= 0:
        raise CalibrationError(f"Manual PPI must be > 0, got {value}")
    return CalibrationResult(pixels_per_inch=float(value), method="manual")


def calibrate(
    reference: Optional[CalibrationReference] = None,
    manual: Optional[float] = None,
) -> CalibrationResult:
    """Resolve the pixels-per-inch for a photo.

    Manual PPI wins over a reference. With neither, falls back to
    DEFAULT_PPI and records a warning rather than failing.
    """
    if manual is not None:
        return manual_ppi(manual)
    if reference is not None:
        return ppi_from_reference(reference)

    message = (
        f"No calibration reference or manual PPI; using default {DEFAULT_PPI:g} PPI. "
        "Measurements may be inaccurate."
    )
    logger.warning(message)
    return CalibrationResult(pixels_per_inch=DEFAULT_PPI, method="default", warnings=[message])


def reference_from_detection(
    hint: Mapping,
    image_width: int,
    image_height: int,
) -> CalibrationReference:
    """Build a CalibrationReference from an AI detection hint.

    The hint's bounding box is in percent of the image size:
    ``{"referenceObject": "Credit Card", "boundingBox": {"x", "y", "width",
    "height"}, "measureAxis": "width"}``.
    """
    name = str(hint.get("referenceObject", "")).strip()
    ref_obj = _lookup_by_name(name)
    box = hint.get("boundingBox") or {}
    try:
        width_px = float(box["width"]) / 100.0 * image_width
        height_px = float(box["height"]) / 100.0 * image_height
    except (KeyError, TypeError, ValueError) as exc:
        raise CalibrationError(f"Malformed detection bounding box: {box}") from exc

    return CalibrationReference(
        reference=ref_obj,
        width_px=width_px,
        height_px=height_px,
        measure_axis=hint.get("measureAxis"),
    )


def contour_to_inches(contour: Contour, pixels_per_inch: float) -> Contour:
    """Convert a pixel contour to inches."""
    if pixels_per_inch <= 0:
        raise CalibrationError(f"pixels_per_inch must be > 0, got {pixels_per_inch}")
    if contour.unit == Unit.INCH:
        return contour
    return contour.scaled(1.0 / pixels_per_inch, Unit.INCH)


# ─── Internal helpers ────────────────────────────────────────────────────────

def _lookup_by_name(name: str) -> ReferenceObject:
    slug = name.lower().replace(" ", "-")
    if slug in REFERENCE_OBJECTS:
        return REFERENCE_OBJECTS[slug]
    for ref in REFERENCE_OBJECTS.values():
        if ref.name.lower() == name.lower() or ref.id in slug:
            return ref
    raise CalibrationError(f"Unknown reference object: {name!r}")
