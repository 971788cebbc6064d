"""Foam cutout pipeline: cleaned image -> polygons -> packed layout -> run artifacts."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from case_catalog import DEFAULT_CASE_ID, CaseFootprint, custom_case, get_case
from contour_smoothing import SmoothingConfig, smooth_contour
from contour_tracer import ContourError, extract_contour
from dxf_exporter import DXFExportConfig, save_dxf
from finger_pull import FingerPullConfig
from geometry_primitives import Contour, PixelBuffer
from layout_packer import Layout, PackerConfig, build_layout_items
from mask_builder import load_rgba, masks_from_buffer
from mask_refiner import MaskRefineConfig, refine_mask
from outline_model import OutlineConfig, build_centered_model, validate_layout_for_case
from run_protocol import (
    copy_input_image,
    prepare_run_dir,
    update_latest_pointer,
    write_json,
    write_text,
)
from scale_calibration import CalibrationReference, CalibrationResult, calibrate, contour_to_inches
from svg_exporter import save_svg
from template_matching import ShapeTemplate, best_name

logger = logging.getLogger(__name__)


@dataclass
class ProcessParams:
    """Slider parameters for re-running the pixel stages."""
    min_area_px: int = 1000
    gap_fill_px: int = 14
    margin_px: int = 5
    smoothing_level: int = 2

    def refine_config(self) -> MaskRefineConfig:
        return MaskRefineConfig(gap_fill_px=self.gap_fill_px, margin_px=self.margin_px)

    def smoothing_config(self) -> SmoothingConfig:
        return SmoothingConfig(level=self.smoothing_level)


@dataclass
class DroppedObject:
    index: int
    reason: str


@dataclass
class PolygonSet:
    """Clean pixel polygons from one process() call."""
    contours: List[Contour] = field(default_factory=list)
    dropped: List[DroppedObject] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.contours)


def process(cleaned: PixelBuffer, params: Optional[ProcessParams] = None) -> PolygonSet:
    """Masks -> refined masks -> traced contours -> smoothed contours.

    Pure: the buffer is never modified and equal inputs give equal output.
    Objects whose trace fails or comes out too small are dropped and logged.
    """
    if params is None:
        params = ProcessParams()
    refine_cfg = params.refine_config()
    smooth_cfg = params.smoothing_config()

    result = PolygonSet()
    for obj in masks_from_buffer(cleaned, params.min_area_px):
        try:
            contour = extract_contour(refine_mask(obj, refine_cfg))
            result.contours.append(smooth_contour(contour, smooth_cfg))
        except ContourError as exc:
            logger.warning("Dropping object %d: %s", obj.index, exc)
            result.dropped.append(DroppedObject(obj.index, f"{type(exc).__name__}: {exc}"))

    logger.info(
        "Processed %d objects (%d dropped)", len(result.contours), len(result.dropped),
    )
    return result


class CleanedImageCache:
    """Holds the one cleaned buffer of the current image, keyed by job id.

    Submitting a new image replaces the entry, so every slider change after
    that re-processes the new buffer and never a stale one.
    """

    def __init__(self):
        self._job_id: Optional[str] = None
        self._buffer: Optional[PixelBuffer] = None

    @property
    def job_id(self) -> Optional[str]:
        return self._job_id

    def store(self, job_id: str, buffer: PixelBuffer) -> None:
        if self._job_id is not None and self._job_id != job_id:
            logger.debug("Replacing cleaned image for job %s with %s", self._job_id, job_id)
        self._job_id = job_id
        self._buffer = buffer

    def get(self, job_id: str) -> Optional[PixelBuffer]:
        if job_id != self._job_id:
            return None
        return self._buffer

    def invalidate(self) -> None:
        self._job_id = None
        self._buffer = None

    def process(self, job_id: str, params: Optional[ProcessParams] = None) -> PolygonSet:
        buffer = self.get(job_id)
        if buffer is None:
            raise KeyError(f"No cleaned image cached for job {job_id}")
        return process(buffer, params)


def calibrate_polygons(
    polygons: PolygonSet,
    calibration: CalibrationResult,
    templates: Sequence[ShapeTemplate] = (),
) -> List[Contour]:
    """Convert pixel polygons to inches and name them."""
    inch_contours: List[Contour] = []
    for i, contour in enumerate(polygons.contours):
        converted = contour_to_inches(contour, calibration.pixels_per_inch)
        fallback = contour.name or f"Item {i + 1}"
        converted.name = best_name(converted.points, templates, fallback) if templates else fallback
        inch_contours.append(converted)
    return inch_contours


@dataclass
class PipelineConfig:
    runs_dir: str = "runs"
    case_id: str = DEFAULT_CASE_ID
    case_size_in: Optional[Tuple[float, float]] = None
    params: ProcessParams = field(default_factory=ProcessParams)
    reference: Optional[CalibrationReference] = None
    manual_ppi: Optional[float] = None
    outline: OutlineConfig = field(default_factory=OutlineConfig)
    packer: Optional[PackerConfig] = None
    finger_pull: FingerPullConfig = field(default_factory=FingerPullConfig)
    dxf: DXFExportConfig = field(default_factory=DXFExportConfig)
    export_dxf: bool = True
    export_svg: bool = True
    templates: List[ShapeTemplate] = field(default_factory=list)

    def resolve_case(self) -> CaseFootprint:
        if self.case_size_in is not None:
            return custom_case(*self.case_size_in)
        return get_case(self.case_id)


@dataclass
class PipelineResult:
    run_id: str
    run_dir: str
    layout_path: str
    fit_report_path: str
    metrics_path: str
    summary_path: str
    manifest_path: str
    image_input_path: str
    layout: Layout
    calibration: CalibrationResult
    polygons: PolygonSet
    fit_percentage: int
    fits: bool
    dxf_path: Optional[str] = None
    svg_path: Optional[str] = None


def run_pipeline_from_image(
    image_path: str,
    job_name: str = "foam",
    config: Optional[PipelineConfig] = None,
    cleaned: Optional[PixelBuffer] = None,
) -> PipelineResult:
    """Run the full offline pipeline on a background-removed image.

    Args:
        image_path: RGBA image with the background knocked out.
        job_name: Used in the run folder name.
        config: Pipeline settings.
        cleaned: Already-decoded buffer (e.g. from the segmentation service);
            decoded from image_path when omitted.
    """
    if not os.path.isfile(image_path):
        raise FileNotFoundError(f"Image file not found: {image_path}")

    if config is None:
        config = PipelineConfig()

    started = time.perf_counter()
    case = config.resolve_case()
    paths = prepare_run_dir(config.runs_dir, job_name)
    copied_image = copy_input_image(image_path, paths.input_dir)

    buffer = cleaned if cleaned is not None else load_rgba(str(copied_image))
    logger.info("Processing %s (%dx%d px)", copied_image, buffer.width, buffer.height)
    polygons = process(buffer, config.params)

    calibration = calibrate(reference=config.reference, manual=config.manual_ppi)
    inch_contours = calibrate_polygons(polygons, calibration, config.templates)

    layout = Layout(case, build_layout_items(inch_contours, config.finger_pull), config.packer)
    pack = layout.auto_arrange()
    write_json(paths.layout_path, layout.to_json())

    report = validate_layout_for_case(layout.items, case, config.outline)
    write_json(paths.fit_report_path, report.to_dict())
    fit_pct = layout.fit_percentage()

    dxf_path = None
    svg_path = None
    if layout.items:
        model = build_centered_model(layout.items, case, config.outline)
        if config.export_dxf:
            dxf_path = save_dxf(model, str(paths.dxf_path), config.dxf)
        if config.export_svg:
            svg_path = save_svg(model, str(paths.svg_path))
    else:
        logger.warning("No items to export for %s", copied_image)

    elapsed = time.perf_counter() - started

    metrics_payload: Dict[str, object] = {
        "run_id": paths.run_id,
        "elapsed_s": round(elapsed, 3),
        "pixels_per_inch": calibration.pixels_per_inch,
        "calibration_method": calibration.method,
        "fit_percentage": fit_pct,
        "fits": report.fits,
        "warnings": list(calibration.warnings),
        "dropped": [asdict(d) for d in polygons.dropped],
        "overflow_ids": list(pack.overflow_ids),
        "counts": {
            "objects": len(polygons.contours) + len(polygons.dropped),
            "polygons": len(polygons.contours),
            "items": len(layout.items),
        },
    }
    write_json(paths.metrics_path, metrics_payload)

    summary = _build_summary(paths.run_id, case, layout, calibration, polygons, fit_pct, elapsed)
    write_text(paths.summary_path, summary)

    manifest = {
        "run_id": paths.run_id,
        "job_name": job_name,
        "input_image": str(copied_image),
        "case": asdict(case),
        "created_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "config": {
            "params": asdict(config.params),
            "outline": asdict(config.outline),
            "finger_pull": asdict(config.finger_pull),
            "manual_ppi": config.manual_ppi,
        },
        "artifacts": {
            "layout": str(paths.layout_path),
            "fit_report": str(paths.fit_report_path),
            "metrics": str(paths.metrics_path),
            "summary": str(paths.summary_path),
            "dxf": dxf_path,
            "svg": svg_path,
        },
    }
    write_json(paths.manifest_path, manifest)
    update_latest_pointer(config.runs_dir, paths.run_dir)

    return PipelineResult(
        run_id=paths.run_id,
        run_dir=str(paths.run_dir),
        layout_path=str(paths.layout_path),
        fit_report_path=str(paths.fit_report_path),
        metrics_path=str(paths.metrics_path),
        summary_path=str(paths.summary_path),
        manifest_path=str(paths.manifest_path),
        image_input_path=str(copied_image),
        layout=layout,
        calibration=calibration,
        polygons=polygons,
        fit_percentage=fit_pct,
        fits=report.fits,
        dxf_path=dxf_path,
        svg_path=svg_path,
    )


def _build_summary(
    run_id: str,
    case: CaseFootprint,
    layout: Layout,
    calibration: CalibrationResult,
    polygons: PolygonSet,
    fit_pct: int,
    elapsed_s: float,
) -> str:
    lines = [
        f"# Run {run_id}",
        "",
        f"- Case: {case.label} ({case.inner_width:g} x {case.inner_height:g} in)",
        f"- Duration: {elapsed_s:.2f}s",
        f"- Scale: {calibration.pixels_per_inch:.2f} PPI ({calibration.method})",
        f"- Items: {len(layout.items)}",
        f"- Dropped objects: {len(polygons.dropped)}",
        f"- Fit: **{fit_pct}%**",
        "",
        "## Items",
    ]
    if not layout.items:
        lines.append("- None")
    for item in layout.items:
        lines.append(
            f"- {item.name} ({item.id}): {item.width:.2f} x {item.height:.2f} in "
            f"at ({item.x:.2f}, {item.y:.2f})"
        )

    lines += ["", "## Warnings"]
    warnings = list(calibration.warnings) + [v.message for v in layout.violations()]
    lines += [f"- {w}" for w in warnings] or ["- None"]
    return "\n".join(lines) + "\n"
