"""
DXF export for CNC foam cutting.

Uses ezdxf to produce DXF files with proper layers:
  - CUT (red, ACI 1): pocket outlines and inner cutouts
  - CASE (gray, ACI 8): case interior frame, for reference only

Units: inches. Format: R2010. Layout coordinates grow downward, so y is
mirrored on output to read the same way as the on-screen layout.
"""
import io
import logging
import os
from dataclasses import dataclass
from typing import Optional

import ezdxf
from ezdxf.enums import TextEntityAlignment

from outline_model import ExportModel

logger = logging.getLogger(__name__)


@dataclass
class DXFExportConfig:
    """Configuration for DXF export."""
    cut_layer: str = "CUT"
    case_layer: str = "CASE"
    cut_color: int = 1       # ACI red
    case_color: int = 8      # ACI gray
    include_case: bool = True
    add_item_labels: bool = False
    label_height_in: float = 0.25


def model_to_dxf_document(model: ExportModel, config: Optional[DXFExportConfig] = None):
    """Build an ezdxf document for a composed cut model."""
    if config is None:
        config = DXFExportConfig()

    doc = ezdxf.new("R2010")
    doc.units = ezdxf.units.IN
    msp = doc.modelspace()
    _setup_layers(doc, config)

    if config.include_case and model.include_case:
        _add_closed_path(msp, model.case_points, config.case_layer)

    for path in model.paths:
        _add_closed_path(msp, path.points, config.cut_layer)
        if config.add_item_labels and path.kind == "outer":
            cx, cy = path.points.mean(axis=0)
            msp.add_text(
                path.item_id,
                height=config.label_height_in,
                dxfattribs={"layer": config.case_layer},
            ).set_placement((float(cx), float(-cy)), align=TextEntityAlignment.MIDDLE_CENTER)

    return doc


def model_to_dxf(model: ExportModel, config: Optional[DXFExportConfig] = None) -> str:
    """Serialize a cut model to DXF text.

    Args:
        model: Composed (usually centered) export model.
        config: DXF export settings.

    Returns:
        The DXF document as a string.
    """
    doc = model_to_dxf_document(model, config)
    stream = io.StringIO()
    doc.write(stream)
    logger.info("Serialized DXF with %d cut paths", len(model.paths))
    return stream.getvalue()


def save_dxf(model: ExportModel, filepath: str, config: Optional[DXFExportConfig] = None) -> str:
    """Write a cut model to a DXF file and return its path."""
    doc = model_to_dxf_document(model, config)
    os.makedirs(os.path.dirname(filepath) or ".", exist_ok=True)
    doc.saveas(filepath)
    logger.info("Exported DXF: %s", filepath)
    return filepath


# ─── Internal helpers ────────────────────────────────────────────────────────

def _setup_layers(doc, config: DXFExportConfig) -> None:
    """Create CUT and CASE layers."""
    doc.layers.add(config.cut_layer, color=config.cut_color)
    doc.layers.add(config.case_layer, color=config.case_color)


def _add_closed_path(msp, points, layer: str) -> None:
    """Add a point ring as a closed LWPolyline with y mirrored."""
    coords = [(float(x), float(-y)) for x, y in points]
    if len(coords) < 3:
        return
    msp.add_lwpolyline(coords, close=True, dxfattribs={"layer": layer})
