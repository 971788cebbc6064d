#!/usr/bin/env python3
"""
Turn a top-down photo of gear into foam cut files packed in a case.

Usage:
    # Background already removed (RGBA PNG)
    python scripts/cut_foam.py --input gear.png --case pelican-1510 --ppi 42

    # Calibrate from a credit card measured at 212 x 133 px
    python scripts/cut_foam.py --input gear.png --reference credit-card --reference-box 212 133

    # Let the segmentation service remove the background first
    python scripts/cut_foam.py --remote-segment https://example.com/photo.jpg --case-size 24 18

The segmentation endpoint is read from SEGMENT_API_URL (key: SEGMENT_API_KEY).
"""
import sys
import argparse
import logging
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from PIL import Image

from case_catalog import CASE_PRESETS, DEFAULT_CASE_ID, UnknownCaseError
from contour_smoothing import MAX_SMOOTHING_LEVEL
from finger_pull import FingerPullConfig
from outline_model import OutlineConfig
from pipeline import PipelineConfig, ProcessParams, run_pipeline_from_image
from scale_calibration import (
    REFERENCE_OBJECTS,
    CalibrationError,
    CalibrationReference,
    get_reference,
)
from segmentation_client import (
    HttpSegmentationBackend,
    SegmentationConfig,
    SegmentationError,
    segment_image,
)
from template_matching import load_templates


def main():
    parser = argparse.ArgumentParser(
        description="Generate foam insert cut files from a photo of gear"
    )

    input_group = parser.add_mutually_exclusive_group(required=True)
    input_group.add_argument("--input", type=str, help="Background-removed RGBA image")
    input_group.add_argument(
        "--remote-segment", type=str, metavar="URL",
        help="Image URL to send through the segmentation service first",
    )

    case_group = parser.add_mutually_exclusive_group()
    case_group.add_argument(
        "--case", type=str, default=DEFAULT_CASE_ID,
        choices=sorted(list(CASE_PRESETS.keys()) + ["custom"]),
        help=f"Case preset (default: {DEFAULT_CASE_ID})",
    )
    case_group.add_argument(
        "--case-size", type=float, nargs=2, metavar=("W", "H"),
        help="Custom case interior in inches",
    )

    parser.add_argument(
        "--reference", type=str, choices=sorted(REFERENCE_OBJECTS.keys()),
        help="Reference object visible in the photo",
    )
    parser.add_argument(
        "--reference-box", type=float, nargs=2, metavar=("W_PX", "H_PX"),
        help="Measured pixel size of the reference object",
    )
    parser.add_argument("--ppi", type=float, default=None, help="Manual pixels per inch")

    parser.add_argument("--min-area", type=int, default=1000, help="Minimum object area px^2 (default: 1000)")
    parser.add_argument("--gap-fill", type=int, default=14, help="Gap bridging radius px (default: 14)")
    parser.add_argument("--margin", type=int, default=5, help="Margin dilation radius px (default: 5)")
    parser.add_argument(
        "--smoothing", type=int, default=2, choices=range(MAX_SMOOTHING_LEVEL + 1),
        help="Smoothing level 0-5 (default: 2)",
    )
    parser.add_argument("--tolerance", type=float, default=0.1, help="Cut tolerance in inches (default: 0.1)")
    parser.add_argument(
        "--offset-method", type=str, default="centroid_scale",
        choices=["centroid_scale", "buffer"],
        help="How the tolerance is applied (default: centroid_scale)",
    )
    parser.add_argument("--finger-pull", action="store_true", help="Add finger-pull notches")
    parser.add_argument("--templates", type=str, default=None, help="JSON shape template library")
    parser.add_argument("--output", type=str, default="runs", help="Runs directory (default: runs)")
    parser.add_argument("--name", type=str, default="foam", help="Job name")
    parser.add_argument("-v", "--verbose", action="store_true")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if (args.reference is None) != (args.reference_box is None):
        parser.error("--reference and --reference-box must be given together")

    try:
        reference = None
        if args.reference:
            reference = CalibrationReference(
                reference=get_reference(args.reference),
                width_px=args.reference_box[0],
                height_px=args.reference_box[1],
            )
        config = PipelineConfig(
            runs_dir=args.output,
            case_id=args.case,
            case_size_in=tuple(args.case_size) if args.case_size else None,
            params=ProcessParams(
                min_area_px=args.min_area,
                gap_fill_px=args.gap_fill,
                margin_px=args.margin,
                smoothing_level=args.smoothing,
            ),
            reference=reference,
            manual_ppi=args.ppi,
            outline=OutlineConfig(tolerance_in=args.tolerance, offset_method=args.offset_method),
            finger_pull=FingerPullConfig(enabled=args.finger_pull),
            templates=load_templates(args.templates) if args.templates else [],
        )
    except (CalibrationError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    cleaned = None
    image_path = args.input
    if args.remote_segment:
        try:
            backend = HttpSegmentationBackend(SegmentationConfig.from_env())
            job, cleaned = segment_image(backend, args.remote_segment)
        except SegmentationError as e:
            hint = " (retry later)" if e.retryable else ""
            print(f"Error: {e}{hint}")
            return 1
        image_path = str(Path(args.output) / f"{args.name}_cleaned.png")
        Path(args.output).mkdir(parents=True, exist_ok=True)
        Image.fromarray(cleaned.rgba).save(image_path)
        print(f"Segmentation job {job.job_id} completed")

    try:
        result = run_pipeline_from_image(image_path, args.name, config, cleaned=cleaned)
    except (FileNotFoundError, UnknownCaseError) as e:
        print(f"Error: {e}")
        return 1

    print(f"\nRun: {result.run_dir}")
    print(f"Scale: {result.calibration.pixels_per_inch:.2f} PPI ({result.calibration.method})")
    for warning in result.calibration.warnings:
        print(f"  Warning: {warning}")
    print(f"Items: {len(result.layout.items)} ({len(result.polygons.dropped)} objects dropped)")
    for item in result.layout.items:
        print(
            f"  {item.name}: {item.width:.2f} x {item.height:.2f} in "
            f"at ({item.x:.2f}, {item.y:.2f})"
        )
    print(f"\nFit: {result.fit_percentage}%{'' if result.fits else ' (does not fit case)'}")
    if result.dxf_path:
        print(f"DXF: {result.dxf_path}")
    if result.svg_path:
        print(f"SVG: {result.svg_path}")

    return 0 if result.fit_percentage == 100 else 2


if __name__ == "__main__":
    sys.exit(main())
