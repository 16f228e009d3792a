"""
Notification & Domain Event Schemas.

Defines the events that trigger fan-out, the per-recipient intents the policy
produces, and the stored notification document.
"""

from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field

from guardianlink.auth.rbac import Role
from guardianlink.schemas.common import new_id, utcnow


# ── Enums ──────────────────────────────────────────────────────────────


class NotificationType(StrEnum):
    RISK_ALERT = "risk_alert"
    NOTE_APPROVAL = "note_approval"
    NOTE_APPROVED = "note_approved"
    NOTE_REJECTED = "note_rejected"
    TASK_ASSIGNED = "task_assigned"
    MEETING_SCHEDULED = "meeting_scheduled"
    MEETING_REQUEST = "meeting_request"
    MEETING_DECLINED = "meeting_declined"
    MEETING_RESCHEDULED = "meeting_rescheduled"
    INTERVENTION = "intervention"


class EventType(StrEnum):
    RISK_ESCALATED = "risk.escalated"
    SENSITIVE_NOTE_ADDED = "note.sensitive_added"
    NOTE_APPROVAL_RESOLVED = "note.approval_resolved"
    TASK_ASSIGNED = "task.assigned"
    MEETING_SCHEDULED = "meeting.scheduled"
    MEETING_REQUEST_CREATED = "meeting_request.created"
    MEETING_REQUEST_APPROVED = "meeting_request.approved"
    MEETING_REQUEST_DECLINED = "meeting_request.declined"
    MEETING_RESCHEDULED = "meeting.rescheduled"
    INTERVENTION_TRIGGERED = "intervention.triggered"


# ── Domain Events ──────────────────────────────────────────────────────


class DomainEvent(BaseModel):
    """Base event. Every event names the student record it concerns."""
    event_type: EventType
    student_id: str
    student_name: str = ""
    student_email: Optional[str] = None
    parent_email: Optional[str] = None
    mentor_id: Optional[str] = None


class RiskEscalated(DomainEvent):
    event_type: EventType = EventType.RISK_ESCALATED
    message: str


class SensitiveNoteAdded(DomainEvent):
    event_type: EventType = EventType.SENSITIVE_NOTE_ADDED
    note_id: str


class NoteApprovalResolved(DomainEvent):
    event_type: EventType = EventType.NOTE_APPROVAL_RESOLVED
    note_id: str
    approved: bool
    note_excerpt: str = ""


class TaskAssigned(DomainEvent):
    event_type: EventType = EventType.TASK_ASSIGNED
    task_title: str


class MeetingScheduled(DomainEvent):
    event_type: EventType = EventType.MEETING_SCHEDULED
    invitees: list[Role] = Field(default_factory=list)
    date: str
    time: Optional[str] = None
    agenda: str = ""


class MeetingRequestCreated(DomainEvent):
    event_type: EventType = EventType.MEETING_REQUEST_CREATED
    requested_by: Role
    date: str
    time: Optional[str] = None
    reason: str = ""


class MeetingRequestApproved(DomainEvent):
    event_type: EventType = EventType.MEETING_REQUEST_APPROVED
    requested_by: Role
    date: str
    time: Optional[str] = None


class MeetingRequestDeclined(DomainEvent):
    event_type: EventType = EventType.MEETING_REQUEST_DECLINED
    requested_by: Role
    date: str
    time: Optional[str] = None


class MeetingRescheduled(DomainEvent):
    event_type: EventType = EventType.MEETING_RESCHEDULED
    new_date: str
    new_time: Optional[str] = None


class InterventionTriggered(DomainEvent):
    event_type: EventType = EventType.INTERVENTION_TRIGGERED
    note: str = ""


# ── Fan-out Output ─────────────────────────────────────────────────────


class NotificationIntent(BaseModel):
    """One (recipient, message) pair produced by the fan-out policy."""
    type: NotificationType
    recipient_role: Role
    # "student_email" | "parent_email" for student/parent targets, None for mentor
    email_field: Optional[str] = None
    recipient: str
    message: str
    student_id: str
    note_id: Optional[str] = None


# ── Stored Notification ────────────────────────────────────────────────


class Notification(BaseModel):
    """
    A stored notification — one document per recipient.

    Only ``read`` ever changes after creation, and only by its recipient.
    """
    id: str = Field(default_factory=new_id)
    type: NotificationType
    recipient_role: Role
    student_email: Optional[str] = None
    parent_email: Optional[str] = None
    mentor_id: Optional[str] = None
    student_id: Optional[str] = None
    note_id: Optional[str] = None
    message: str
    read: bool = False
    created_at: datetime = Field(default_factory=utcnow)
