"""
Meeting Schemas.

An embedded Meeting lives on the student record; a MeetingRequest is a
separate top-level document that a mentor turns into a Meeting or discards.
"""

from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from guardianlink.auth.rbac import Role
from guardianlink.schemas.common import new_id, utcnow


class MeetingStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    RESCHEDULED = "rescheduled"


class RequestStatus(StrEnum):
    PENDING = "pending"


class Meeting(BaseModel):
    id: str = Field(default_factory=new_id)
    date: str
    time: Optional[str] = None
    agenda: str = ""
    invitees: list[Role] = Field(default_factory=lambda: [Role.STUDENT])
    status: MeetingStatus = MeetingStatus.PENDING
    reschedule_count: int = 0
    call_session_id: str
    requested_by: Optional[Role] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("reschedule_count", mode="before")
    @classmethod
    def missing_count_is_zero(cls, v):
        return 0 if v is None else v


class MeetingRequest(BaseModel):
    id: str = Field(default_factory=new_id)
    student_id: str
    student_name: str
    student_email: str
    parent_email: Optional[str] = None
    mentor_id: str
    requested_by: Role
    date: str
    time: Optional[str] = None
    reason: str = ""
    status: RequestStatus = RequestStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
