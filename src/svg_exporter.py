"""
SVG preview exporter for foam cut models.

Renders a composed ExportModel in inches on a dark background: the case
interior as a dashed frame and every cut path in the orange preview
style. SVG and layout coordinates both grow downward, so no flip.
"""

import logging
import os

import numpy as np
import svgwrite

from outline_model import ExportModel

logger = logging.getLogger(__name__)

VIEWBOX_PADDING_IN = 0.5
BACKGROUND = "#1a1a1a"

# Cut path styling matches the web preview.
PREVIEW_CSS = """
    path { stroke: #FF4D00; stroke-width: 0.02; fill: rgba(255, 77, 0, 0.1); }
    .case { fill: none; stroke: #333; stroke-width: 0.02; stroke-dasharray: 0.1 0.1; }
"""


def path_data(points: np.ndarray) -> str:
    """Closed SVG path data for a point ring."""
    if len(points) == 0:
        return ""
    head, *rest = [f"{x:.4f},{y:.4f}" for x, y in points]
    return f"M {head} " + "".join(f"L {p} " for p in rest) + "Z"


def build_drawing(
    model: ExportModel,
    filepath: str = "outline.svg",
    padding: float = VIEWBOX_PADDING_IN,
) -> svgwrite.Drawing:
    """
    Build the svgwrite drawing for a cut model.

    Args:
        model: Composed (usually centered) export model
        filepath: Filename used if the drawing is later saved
        padding: Margin around the model bounds (inches)

    Returns:
        svgwrite.Drawing
    """
    box = model.bounds()
    vb_x = box.x - padding
    vb_y = box.y - padding
    vb_w = box.width + 2 * padding
    vb_h = box.height + 2 * padding

    dwg = svgwrite.Drawing(
        filepath,
        size=(f"{vb_w:g}in", f"{vb_h:g}in"),
        viewBox=f"{vb_x:g} {vb_y:g} {vb_w:g} {vb_h:g}",
        style=f"background: {BACKGROUND};",
    )
    dwg.defs.add(dwg.style(PREVIEW_CSS))

    if model.include_case:
        x0, y0 = model.case_origin
        dwg.add(dwg.rect(
            insert=(x0, y0),
            size=(model.case_width, model.case_height),
            class_="case",
        ))

    for path in model.paths:
        dwg.add(dwg.path(d=path_data(path.points), class_=f"cut {path.kind}"))
    return dwg


def model_to_svg(model: ExportModel, padding: float = VIEWBOX_PADDING_IN) -> str:
    """Serialize a cut model to SVG markup."""
    markup = build_drawing(model, padding=padding).tostring()
    logger.info("Serialized SVG preview with %d cut paths", len(model.paths))
    return markup


def save_svg(model: ExportModel, filepath: str, padding: float = VIEWBOX_PADDING_IN) -> str:
    """Write the SVG preview to disk and return its path."""
    os.makedirs(os.path.dirname(filepath) or ".", exist_ok=True)
    dwg = build_drawing(model, filepath, padding)
    dwg.save()
    logger.info("Exported SVG: %s", filepath)
    return filepath
