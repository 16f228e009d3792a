"""
Student Record Schemas.

The student document owns its metric history, risk events, notes, tasks,
meetings and personal goals. Records are never hard-deleted.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from guardianlink.schemas.common import new_id, utcnow
from guardianlink.schemas.meeting import Meeting
from guardianlink.schemas.note import Note
from guardianlink.schemas.risk import RiskEvent
from guardianlink.schemas.task import Task


class MetricSnapshot(BaseModel):
    attendance: float
    marks: float
    timestamp: datetime = Field(default_factory=utcnow)


class Intervention(BaseModel):
    initiated: bool = True
    note: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    mentor_id: str


class PersonalGoal(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    target_date: Optional[str] = None
    progress: int = Field(default=0, ge=0, le=100)
    completed: bool = False
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class Student(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    email: str
    parent_email: Optional[str] = None
    mentor_id: str

    # Metrics; is_at_risk is derived but persisted for querying
    attendance: float = Field(ge=0, le=100)
    marks: float = Field(ge=0, le=100)
    is_at_risk: bool = False
    history: list[MetricSnapshot] = Field(default_factory=list)
    risk_events: list[RiskEvent] = Field(default_factory=list)
    intervention: Optional[Intervention] = None
    mentor_feedback: str = ""

    # Owned collections
    notes: list[Note] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list)
    meetings: list[Meeting] = Field(default_factory=list)
    personal_goals: list[PersonalGoal] = Field(default_factory=list)

    # Lifecycle
    deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
