"""Tests for scale_calibration module."""
import logging

import pytest

from geometry_primitives import Contour, Unit
from scale_calibration import (
    DEFAULT_PPI,
    CalibrationError,
    CalibrationReference,
    calibrate,
    choose_measure_axis,
    contour_to_inches,
    get_reference,
    manual_ppi,
    ppi_from_reference,
    ppi_from_span,
    reference_from_detection,
)


@pytest.fixture
def card():
    return get_reference("credit-card")


class TestReferenceCalibration:
    """PPI from a measured reference box."""

    def test_credit_card_exact(self, card):
        ref = CalibrationReference(card, width_px=337.5, height_px=212.5)
        result = ppi_from_reference(ref)
        assert result.pixels_per_inch == 100.0
        assert result.measure_axis == "width"
        assert result.reference_id == "credit-card"

    def test_stretched_box_uses_lower_ppi_axis(self, card):
        ref = CalibrationReference(card, width_px=400, height_px=100)
        assert choose_measure_axis(ref) == "height"
        assert ppi_from_reference(ref).pixels_per_inch == pytest.approx(100 / 2.125)

    def test_squashed_box_uses_lower_ppi_axis(self, card):
        ref = CalibrationReference(card, width_px=337.5, height_px=100)
        assert choose_measure_axis(ref) == "height"
        explicit = CalibrationReference(card, width_px=337.5, height_px=100, measure_axis="width")
        assert ppi_from_reference(explicit).pixels_per_inch == 100.0

    def test_explicit_axis_wins(self, card):
        ref = CalibrationReference(card, width_px=337.5, height_px=212.5, measure_axis="height")
        assert ppi_from_reference(ref).pixels_per_inch == pytest.approx(100.0)
        assert choose_measure_axis(ref) == "height"

    def test_zero_box_rejected(self, card):
        with pytest.raises(CalibrationError):
            CalibrationReference(card, width_px=0, height_px=10)

    def test_unknown_reference(self):
        with pytest.raises(CalibrationError):
            get_reference("banana")


class TestCalibrate:
    """Resolution order and fallback."""

    def test_fallback_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="scale_calibration"):
            result = calibrate()
        assert result.pixels_per_inch == DEFAULT_PPI
        assert result.is_fallback
        assert result.warnings
        assert "default" in caplog.text

    def test_manual_beats_reference(self, card):
        ref = CalibrationReference(card, width_px=337.5, height_px=212.5)
        result = calibrate(reference=ref, manual=50.0)
        assert result.pixels_per_inch == 50.0
        assert result.method == "manual"

    @pytest.mark.parametrize("bad", [0, -3, float("nan"), float("inf")])
    def test_manual_must_be_positive(self, bad):
        with pytest.raises(CalibrationError):
            manual_ppi(bad)

    def test_span(self):
        assert ppi_from_span(500, 5).pixels_per_inch == 100.0
        with pytest.raises(CalibrationError):
            ppi_from_span(0, 5)


class TestDetectionHint:
    """Percent-of-image bounding boxes from object detection."""

    def test_credit_card_hint(self):
        hint = {
            "referenceObject": "Credit Card",
            "boundingBox": {"x": 10, "y": 10, "width": 25, "height": 20},
        }
        ref = reference_from_detection(hint, 1000, 800)
        assert ref.reference.id == "credit-card"
        assert ref.width_px == pytest.approx(250.0)
        assert ref.height_px == pytest.approx(160.0)

    def test_quarter_by_display_name(self):
        hint = {
            "referenceObject": "US Quarter",
            "boundingBox": {"x": 0, "y": 0, "width": 5, "height": 5},
            "measureAxis": "height",
        }
        ref = reference_from_detection(hint, 2000, 2000)
        assert ref.reference.id == "quarter"
        assert ref.measure_axis == "height"

    def test_malformed_box(self):
        with pytest.raises(CalibrationError):
            reference_from_detection({"referenceObject": "Ruler", "boundingBox": {}}, 100, 100)


class TestContourToInches:
    def test_converts_pixels(self):
        c = Contour(points=[[0, 0], [800, 0], [800, 400], [0, 400]])
        out = contour_to_inches(c, 100.0)
        assert out.unit == Unit.INCH
        assert out.bounds.width == pytest.approx(8.0)
        assert out.bounds.height == pytest.approx(4.0)

    def test_inch_contour_unchanged(self):
        c = Contour(points=[[0, 0], [1, 0], [1, 1]], unit=Unit.INCH)
        assert contour_to_inches(c, 100.0) is c

    def test_rejects_zero_ppi(self):
        with pytest.raises(CalibrationError):
            contour_to_inches(Contour(points=[[0, 0], [1, 0], [1, 1]]), 0)
