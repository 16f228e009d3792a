"""
Notification Fan-out Policy — who hears about what.

| event                     | recipients                          |
|---------------------------|-------------------------------------|
| risk escalation           | parent (+ student, configurable)    |
| sensitive note added      | student (approval request)          |
| note approved/rejected    | mentor                              |
| task assigned             | student                             |
| meeting scheduled         | each invited role                   |
| meeting request created   | mentor                              |
| meeting request approved  | requester + the other linked role   |
| meeting request declined  | requester only                      |
| meeting rescheduled       | mentor + parent                     |
| intervention triggered    | parent                              |

Stateless and without dedup: the same event twice yields the same intents
twice, and each one becomes its own notification.
"""

from typing import Callable, Optional

import structlog

from guardianlink.alerting.schemas import (
    DomainEvent,
    EventType,
    InterventionTriggered,
    MeetingRequestApproved,
    MeetingRequestCreated,
    MeetingRequestDeclined,
    MeetingRescheduled,
    MeetingScheduled,
    NoteApprovalResolved,
    NotificationIntent,
    NotificationType,
    RiskEscalated,
    SensitiveNoteAdded,
    TaskAssigned,
)
from guardianlink.auth.rbac import Role
from guardianlink.config import settings

logger = structlog.get_logger(__name__)

NOTE_EXCERPT_CHARS = 50


def _when(date: str, time: Optional[str]) -> str:
    return f"{date} at {time}" if time else date


class FanOutPolicy:
    """Map a domain event to the list of notifications it should produce."""

    def __init__(self, include_student_on_risk: Optional[bool] = None):
        if include_student_on_risk is None:
            include_student_on_risk = settings.risk_alert_include_student
        self.include_student_on_risk = include_student_on_risk
        self._handlers: dict[EventType, Callable[[DomainEvent], list[NotificationIntent]]] = {
            EventType.RISK_ESCALATED: self._risk_escalated,
            EventType.SENSITIVE_NOTE_ADDED: self._sensitive_note_added,
            EventType.NOTE_APPROVAL_RESOLVED: self._note_approval_resolved,
            EventType.TASK_ASSIGNED: self._task_assigned,
            EventType.MEETING_SCHEDULED: self._meeting_scheduled,
            EventType.MEETING_REQUEST_CREATED: self._meeting_request_created,
            EventType.MEETING_REQUEST_APPROVED: self._meeting_request_approved,
            EventType.MEETING_REQUEST_DECLINED: self._meeting_request_declined,
            EventType.MEETING_RESCHEDULED: self._meeting_rescheduled,
            EventType.INTERVENTION_TRIGGERED: self._intervention_triggered,
        }

    def fan_out(self, event: DomainEvent) -> list[NotificationIntent]:
        """
        Compute the notifications for an event.

        Recipients whose contact is unknown (no parent email, no mentor id)
        are skipped.
        """
        handler = self._handlers[event.event_type]
        intents = handler(event)
        logger.debug(
            "fan_out_computed",
            event_type=event.event_type.value,
            student_id=event.student_id,
            recipients=[i.recipient_role.value for i in intents],
        )
        return intents

    # ── Recipient builders ────────────────────────────────────────────

    def _to(
        self,
        event: DomainEvent,
        role: Role,
        notification_type: NotificationType,
        message: str,
        note_id: Optional[str] = None,
    ) -> list[NotificationIntent]:
        if role == Role.STUDENT:
            recipient, email_field = event.student_email, "student_email"
        elif role == Role.PARENT:
            recipient, email_field = event.parent_email, "parent_email"
        else:
            recipient, email_field = event.mentor_id, None

        if not recipient:
            logger.debug(
                "fan_out_recipient_missing",
                event_type=event.event_type.value,
                role=role.value,
                student_id=event.student_id,
            )
            return []

        return [
            NotificationIntent(
                type=notification_type,
                recipient_role=role,
                email_field=email_field,
                recipient=recipient,
                message=message,
                student_id=event.student_id,
                note_id=note_id,
            )
        ]

    # ── Event handlers ────────────────────────────────────────────────

    def _risk_escalated(self, event: RiskEscalated) -> list[NotificationIntent]:
        intents = self._to(event, Role.PARENT, NotificationType.RISK_ALERT, event.message)
        if self.include_student_on_risk:
            intents += self._to(event, Role.STUDENT, NotificationType.RISK_ALERT, event.message)
        return intents

    def _sensitive_note_added(self, event: SensitiveNoteAdded) -> list[NotificationIntent]:
        return self._to(
            event,
            Role.STUDENT,
            NotificationType.NOTE_APPROVAL,
            "A mentor has added a sensitive note. Please approve or reject parent visibility.",
            note_id=event.note_id,
        )

    def _note_approval_resolved(self, event: NoteApprovalResolved) -> list[NotificationIntent]:
        if event.approved:
            return self._to(
                event,
                Role.MENTOR,
                NotificationType.NOTE_APPROVED,
                f"{event.student_name} approved a sensitive note for parent visibility",
                note_id=event.note_id,
            )
        excerpt = event.note_excerpt[:NOTE_EXCERPT_CHARS]
        return self._to(
            event,
            Role.MENTOR,
            NotificationType.NOTE_REJECTED,
            f'{event.student_name} rejected parent visibility for a sensitive note: "{excerpt}..."',
            note_id=event.note_id,
        )

    def _task_assigned(self, event: TaskAssigned) -> list[NotificationIntent]:
        return self._to(
            event,
            Role.STUDENT,
            NotificationType.TASK_ASSIGNED,
            f"New task assigned: {event.task_title}",
        )

    def _meeting_scheduled(self, event: MeetingScheduled) -> list[NotificationIntent]:
        when = _when(event.date, event.time)
        intents: list[NotificationIntent] = []
        if Role.STUDENT in event.invitees:
            intents += self._to(
                event,
                Role.STUDENT,
                NotificationType.MEETING_SCHEDULED,
                f"New meeting scheduled for {when}: {event.agenda}",
            )
        if Role.PARENT in event.invitees:
            intents += self._to(
                event,
                Role.PARENT,
                NotificationType.MEETING_SCHEDULED,
                f"A mentoring session for {event.student_name} has been scheduled "
                f"for {when}: {event.agenda}",
            )
        return intents

    def _meeting_request_created(self, event: MeetingRequestCreated) -> list[NotificationIntent]:
        who = (
            f"{event.student_name}'s parent"
            if event.requested_by == Role.PARENT
            else event.student_name
        )
        return self._to(
            event,
            Role.MENTOR,
            NotificationType.MEETING_REQUEST,
            f"{who} has requested a meeting on {_when(event.date, event.time)}: {event.reason}",
        )

    def _meeting_request_approved(self, event: MeetingRequestApproved) -> list[NotificationIntent]:
        when = _when(event.date, event.time)
        other = Role.PARENT if event.requested_by == Role.STUDENT else Role.STUDENT
        intents = self._to(
            event,
            event.requested_by,
            NotificationType.MEETING_SCHEDULED,
            f"Your meeting request for {when} has been approved!",
        )
        intents += self._to(
            event,
            other,
            NotificationType.MEETING_SCHEDULED,
            f"Meeting for {event.student_name} on {when} has been approved.",
        )
        return intents

    def _meeting_request_declined(self, event: MeetingRequestDeclined) -> list[NotificationIntent]:
        return self._to(
            event,
            event.requested_by,
            NotificationType.MEETING_DECLINED,
            f"Meeting request for {_when(event.date, event.time)} was declined by the mentor.",
        )

    def _meeting_rescheduled(self, event: MeetingRescheduled) -> list[NotificationIntent]:
        when = _when(event.new_date, event.new_time)
        intents = self._to(
            event,
            Role.MENTOR,
            NotificationType.MEETING_RESCHEDULED,
            f"{event.student_name} rescheduled a meeting to {when}",
        )
        intents += self._to(
            event,
            Role.PARENT,
            NotificationType.MEETING_RESCHEDULED,
            f"Meeting for {event.student_name} has been rescheduled to {when}",
        )
        return intents

    def _intervention_triggered(self, event: InterventionTriggered) -> list[NotificationIntent]:
        message = f"An intervention has been started for {event.student_name}."
        if event.note:
            message = f"{message} Mentor note: {event.note}"
        return self._to(event, Role.PARENT, NotificationType.INTERVENTION, message)


def fan_out(event: DomainEvent) -> list[NotificationIntent]:
    """Fan out with the default policy."""
    return FanOutPolicy().fan_out(event)
