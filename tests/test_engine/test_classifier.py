"""
Risk Classifier Tests.

Covers:
- Band boundaries for attendance and marks
- The conjunctive at-risk rule
- Metric validation
- GPA conversion
"""

import math

import pytest
from hypothesis import given, settings as hyp_settings
from hypothesis import strategies as st

from guardianlink.engine.classifier import (
    attendance_band,
    calculate_gpa,
    classify,
    is_at_risk,
    marks_band,
    validate_metric,
)
from guardianlink.exceptions import ValidationError
from guardianlink.schemas.risk import StatusBand


class TestBands:
    @pytest.mark.parametrize("value,band", [
        (100, StatusBand.GOOD),
        (85, StatusBand.GOOD),
        (84.9, StatusBand.WARNING),
        (80, StatusBand.WARNING),
        (79.9, StatusBand.CRITICAL),
        (0, StatusBand.CRITICAL),
    ])
    def test_attendance_band(self, value, band):
        assert attendance_band(value) == band

    @pytest.mark.parametrize("value,band", [
        (75, StatusBand.GOOD),
        (74.5, StatusBand.WARNING),
        (60, StatusBand.WARNING),
        (59.99, StatusBand.CRITICAL),
    ])
    def test_marks_band(self, value, band):
        assert marks_band(value) == band


class TestClassify:
    def test_both_critical_is_at_risk(self):
        result = classify(79, 59)
        assert result.at_risk is True
        assert result.attendance_band == StatusBand.CRITICAL
        assert result.marks_band == StatusBand.CRITICAL

    def test_marks_at_threshold_not_at_risk(self):
        assert classify(79, 60).at_risk is False

    def test_single_critical_metric_not_at_risk(self):
        """Critical marks alone only show as a critical band."""
        result = classify(80, 50)
        assert result.at_risk is False
        assert result.marks_band == StatusBand.CRITICAL

    def test_healthy(self):
        result = classify(92, 81)
        assert result.at_risk is False
        assert result.attendance_band == StatusBand.GOOD
        assert result.marks_band == StatusBand.GOOD

    @given(
        attendance=st.floats(min_value=0, max_value=100, allow_nan=False),
        marks=st.floats(min_value=0, max_value=100, allow_nan=False),
    )
    @hyp_settings(max_examples=200)
    def test_risk_consistent(self, attendance, marks):
        """at_risk iff attendance < 80 and marks < 60, for every valid pair."""
        result = classify(attendance, marks)
        assert result.at_risk == (attendance < 80 and marks < 60)
        assert result.at_risk == is_at_risk(attendance, marks)

    @given(
        attendance=st.floats(min_value=0, max_value=100, allow_nan=False),
        marks=st.floats(min_value=0, max_value=100, allow_nan=False),
    )
    @hyp_settings(max_examples=50)
    def test_at_risk_implies_both_bands_critical(self, attendance, marks):
        result = classify(attendance, marks)
        if result.at_risk:
            assert result.attendance_band == StatusBand.CRITICAL
            assert result.marks_band == StatusBand.CRITICAL


class TestValidation:
    @pytest.mark.parametrize("bad", [-1, 100.01, math.nan, "80", None, True])
    def test_rejects_malformed_metric(self, bad):
        with pytest.raises(ValidationError) as exc:
            classify(bad, 70)
        assert exc.value.field == "attendance"

    def test_accepts_ints_and_returns_float(self):
        assert validate_metric("marks", 70) == 70.0
        assert isinstance(validate_metric("marks", 70), float)


class TestGpa:
    @pytest.mark.parametrize("marks,gpa", [
        (95, 4.0), (90, 4.0), (85, 3.0), (72, 2.0), (60, 1.0), (59, 0.0),
    ])
    def test_scale(self, marks, gpa):
        assert calculate_gpa(marks) == gpa
