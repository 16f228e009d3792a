"""
Risk Schemas.

Status bands, classification output, transition result and the immutable
risk event audit record.
"""

from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class StatusBand(StrEnum):
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"


class RiskEventType(StrEnum):
    ESCALATION = "escalation"
    RECOVERY = "recovery"


class Classification(BaseModel):
    """Per-metric status bands plus the conjunctive at-risk flag."""
    model_config = ConfigDict(frozen=True)

    attendance_band: StatusBand
    marks_band: StatusBand
    at_risk: bool


class RiskEvent(BaseModel):
    """
    Audit record of a risk transition — append-only, never mutated.
    """
    model_config = ConfigDict(frozen=True)

    type: RiskEventType
    timestamp: datetime
    attendance: float
    marks: float
    message: str


class RiskTransition(BaseModel):
    """Result of comparing old and new metrics."""
    model_config = ConfigDict(frozen=True)

    attendance_band: StatusBand
    marks_band: StatusBand
    at_risk: bool
    newly_at_risk: bool
    recovered: bool
    risk_event: Optional[RiskEvent] = None
