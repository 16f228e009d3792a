"""
Risk Classifier — maps (attendance, marks) to status bands and the at-risk flag.

The at-risk rule is conjunctive: a student is at risk only when BOTH metrics
are critical. A single critical metric shows as a critical band but does not
flag the student.
"""

import math

from guardianlink.exceptions import ValidationError
from guardianlink.schemas.risk import Classification, StatusBand

# ── Configuration ─────────────────────────────────────────────────────────

ATTENDANCE_GOOD: float = 85.0
ATTENDANCE_CRITICAL: float = 80.0     # below this → critical
MARKS_GOOD: float = 75.0
MARKS_CRITICAL: float = 60.0          # below this → critical

GPA_SCALE: tuple[tuple[float, float], ...] = (
    (90.0, 4.0),
    (80.0, 3.0),
    (70.0, 2.0),
    (60.0, 1.0),
)


def validate_metric(name: str, value) -> float:
    """Reject anything that is not a finite number in [0, 100]."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be a number", field=name, value=value)
    if math.isnan(value) or not 0.0 <= value <= 100.0:
        raise ValidationError(f"{name} must be between 0 and 100", field=name, value=value)
    return float(value)


def attendance_band(attendance: float) -> StatusBand:
    if attendance >= ATTENDANCE_GOOD:
        return StatusBand.GOOD
    if attendance >= ATTENDANCE_CRITICAL:
        return StatusBand.WARNING
    return StatusBand.CRITICAL


def marks_band(marks: float) -> StatusBand:
    if marks >= MARKS_GOOD:
        return StatusBand.GOOD
    if marks >= MARKS_CRITICAL:
        return StatusBand.WARNING
    return StatusBand.CRITICAL


def is_at_risk(attendance: float, marks: float) -> bool:
    return attendance < ATTENDANCE_CRITICAL and marks < MARKS_CRITICAL


def classify(attendance: float, marks: float) -> Classification:
    """
    Classify a pair of metrics.

    Args:
        attendance: Attendance percentage (0-100)
        marks: Marks percentage (0-100)

    Returns:
        Classification with both bands and the at-risk flag
    """
    attendance = validate_metric("attendance", attendance)
    marks = validate_metric("marks", marks)
    return Classification(
        attendance_band=attendance_band(attendance),
        marks_band=marks_band(marks),
        at_risk=is_at_risk(attendance, marks),
    )


def calculate_gpa(marks: float) -> float:
    """Convert a marks percentage to a 4-point GPA."""
    marks = validate_metric("marks", marks)
    for floor, gpa in GPA_SCALE:
        if marks >= floor:
            return gpa
    return 0.0
