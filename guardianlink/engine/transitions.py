"""
Risk Transition Evaluator — detects escalation into and recovery from at-risk.

Pure: the result depends only on the arguments. The event timestamp is taken
from ``occurred_at`` so repeated evaluation of the same change yields the
same result.

Caller contract:
- recovered      → clear any active intervention
- newly_at_risk  → notify the parent with the escalation message
"""

from datetime import datetime
from typing import Optional

import structlog

from guardianlink.engine.classifier import classify
from guardianlink.schemas.common import utcnow
from guardianlink.schemas.risk import RiskEvent, RiskEventType, RiskTransition

logger = structlog.get_logger(__name__)


def _pct(value: float) -> str:
    # 70.0 → "70", 33.3333333 → "33.3333333"
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


def escalation_message(attendance: float, marks: float, attendance_band: str, marks_band: str) -> str:
    return (
        f"Student flagged as At-Risk: Attendance {_pct(attendance)}% ({attendance_band}), "
        f"Marks {_pct(marks)}% ({marks_band})"
    )


def recovery_message(attendance: float, marks: float) -> str:
    return (
        f"Student recovered from At-Risk status: Attendance {_pct(attendance)}%, "
        f"Marks {_pct(marks)}%"
    )


def evaluate_risk_change(
    old_attendance: float,
    old_marks: float,
    new_attendance: float,
    new_marks: float,
    occurred_at: Optional[datetime] = None,
) -> RiskTransition:
    """
    Evaluate a metric update.

    Args:
        old_attendance, old_marks: Metrics before the update
        new_attendance, new_marks: Metrics after the update
        occurred_at: Timestamp for the risk event (defaults to now)

    Returns:
        RiskTransition; risk_event is set only when the at-risk flag flips
    """
    before = classify(old_attendance, old_marks)
    after = classify(new_attendance, new_marks)

    newly_at_risk = not before.at_risk and after.at_risk
    recovered = before.at_risk and not after.at_risk

    risk_event: Optional[RiskEvent] = None
    if newly_at_risk or recovered:
        when = occurred_at or utcnow()
        if newly_at_risk:
            risk_event = RiskEvent(
                type=RiskEventType.ESCALATION,
                timestamp=when,
                attendance=float(new_attendance),
                marks=float(new_marks),
                message=escalation_message(
                    new_attendance, new_marks, after.attendance_band, after.marks_band
                ),
            )
        else:
            risk_event = RiskEvent(
                type=RiskEventType.RECOVERY,
                timestamp=when,
                attendance=float(new_attendance),
                marks=float(new_marks),
                message=recovery_message(new_attendance, new_marks),
            )
        logger.debug(
            "risk_transition_detected",
            event_type=risk_event.type.value,
            attendance_band=after.attendance_band.value,
            marks_band=after.marks_band.value,
        )

    return RiskTransition(
        attendance_band=after.attendance_band,
        marks_band=after.marks_band,
        at_risk=after.at_risk,
        newly_at_risk=newly_at_risk,
        recovered=recovered,
        risk_event=risk_event,
    )
