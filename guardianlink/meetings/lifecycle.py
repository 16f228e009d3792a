"""
Meeting Lifecycle State Machine.

    pending ──accept──────────► accepted  (terminal; call joinable)
       │                           ▲
       └─reschedule─► rescheduled ─┘ accept
                        │    ▲
                        └────┘ reschedule (while count < cap)

The reschedule counter is checked before anything is mutated: a request at
the cap is rejected and leaves the meeting exactly as it was. Accepted
meetings cannot be rescheduled.

Meeting requests are a separate document: opened by the student or the
linked parent, resolved by the owning mentor (approve -> Meeting, decline ->
discarded).
"""

import uuid
from typing import Optional

import structlog

from guardianlink.auth.rbac import (
    Actor,
    Capability,
    Role,
    check_linked_parent,
    check_owning_mentor,
    check_subject_student,
)
from guardianlink.config import settings
from guardianlink.exceptions import (
    InvalidTransitionError,
    PermissionDeniedError,
    QuotaExceededError,
    ValidationError,
)
from guardianlink.schemas.meeting import Meeting, MeetingRequest, MeetingStatus
from guardianlink.schemas.student import Student

logger = structlog.get_logger(__name__)


def new_call_session_id(student_id: str) -> str:
    return f"meeting_{student_id}_{uuid.uuid4().hex[:12]}"


def can_join_call(meeting: Meeting) -> bool:
    """Only accepted meetings expose the call."""
    return meeting.status == MeetingStatus.ACCEPTED


class MeetingLifecycle:
    """
    Meeting state transitions with the reschedule quota.

    Every transition returns a new Meeting; inputs are never mutated.
    """

    ALLOWED: dict[str, frozenset[MeetingStatus]] = {
        "accept": frozenset({MeetingStatus.PENDING, MeetingStatus.RESCHEDULED}),
        "reschedule": frozenset({MeetingStatus.PENDING, MeetingStatus.RESCHEDULED}),
    }

    def __init__(self, max_reschedules: Optional[int] = None):
        self.max_reschedules = (
            settings.max_reschedules if max_reschedules is None else max_reschedules
        )

    # ── Meetings ──────────────────────────────────────────────────────

    def create_meeting(
        self,
        student_id: str,
        date: str,
        time: Optional[str] = None,
        agenda: str = "",
        invitees: Optional[list[Role]] = None,
        requested_by: Optional[Role] = None,
    ) -> Meeting:
        if not date:
            raise ValidationError("Meeting date is required", field="date")
        meeting = Meeting(
            date=date,
            time=time,
            agenda=agenda,
            invitees=invitees if invitees is not None else [Role.STUDENT],
            call_session_id=new_call_session_id(student_id),
            requested_by=requested_by,
        )
        logger.info(
            "meeting_created",
            meeting_id=meeting.id,
            student_id=student_id,
            invitees=[r.value for r in meeting.invitees],
        )
        return meeting

    def accept(self, meeting: Meeting, actor: Actor, student_email: str) -> Meeting:
        """Invited student accepts: pending|rescheduled -> accepted."""
        self._check_invited_student(meeting, actor, student_email)
        self._check_allowed(meeting, "accept")
        updated = meeting.model_copy(update={"status": MeetingStatus.ACCEPTED})
        logger.info("meeting_accepted", meeting_id=meeting.id, user_id=actor.user_id)
        return updated

    def reschedule(
        self,
        meeting: Meeting,
        actor: Actor,
        student_email: str,
        new_date: str,
        new_time: Optional[str] = None,
    ) -> Meeting:
        """
        Invited student moves the meeting.

        Raises:
            InvalidTransitionError: meeting already accepted
            QuotaExceededError: counter already at the cap (nothing changes)
        """
        self._check_invited_student(meeting, actor, student_email)
        self._check_allowed(meeting, "reschedule")
        if not new_date:
            raise ValidationError("New meeting date is required", field="new_date")

        count = meeting.reschedule_count or 0
        if count >= self.max_reschedules:
            logger.info(
                "reschedule_quota_exceeded",
                meeting_id=meeting.id,
                reschedule_count=count,
                limit=self.max_reschedules,
            )
            raise QuotaExceededError(
                f"You can only reschedule this meeting {self.max_reschedules} times",
                limit=self.max_reschedules,
                current=count,
            )

        updated = meeting.model_copy(update={
            "date": new_date,
            "time": new_time if new_time is not None else meeting.time,
            "status": MeetingStatus.RESCHEDULED,
            "reschedule_count": count + 1,
        })
        logger.info(
            "meeting_rescheduled",
            meeting_id=meeting.id,
            reschedule_count=updated.reschedule_count,
        )
        return updated

    def remaining_reschedules(self, meeting: Meeting) -> int:
        return max(self.max_reschedules - (meeting.reschedule_count or 0), 0)

    def can_join_call(self, meeting: Meeting) -> bool:
        return can_join_call(meeting)

    # ── Requests ──────────────────────────────────────────────────────

    def open_request(
        self,
        student: Student,
        actor: Actor,
        date: str,
        time: Optional[str] = None,
        reason: str = "",
    ) -> MeetingRequest:
        """The student or the linked parent asks the mentor for a meeting."""
        if actor.role == Role.PARENT:
            check_linked_parent(actor, student.parent_email, Capability.MEETING_REQUESTS_OPEN)
        else:
            check_subject_student(actor, student.email, Capability.MEETING_REQUESTS_OPEN)
        if not date:
            raise ValidationError("Meeting date is required", field="date")

        request = MeetingRequest(
            student_id=student.id,
            student_name=student.name,
            student_email=student.email,
            parent_email=student.parent_email,
            mentor_id=student.mentor_id,
            requested_by=actor.role,
            date=date,
            time=time,
            reason=reason,
        )
        logger.info(
            "meeting_request_opened",
            request_id=request.id,
            student_id=student.id,
            requested_by=actor.role.value,
        )
        return request

    def approve_request(self, request: MeetingRequest, actor: Actor) -> Meeting:
        """Owning mentor approves; the request becomes a pending Meeting."""
        check_owning_mentor(actor, request.mentor_id, Capability.MEETING_REQUESTS_RESOLVE)
        invitees = [Role.STUDENT]
        if request.parent_email:
            invitees.append(Role.PARENT)
        meeting = self.create_meeting(
            student_id=request.student_id,
            date=request.date,
            time=request.time,
            agenda=request.reason or "Requested meeting",
            invitees=invitees,
            requested_by=request.requested_by,
        )
        logger.info("meeting_request_approved", request_id=request.id, meeting_id=meeting.id)
        return meeting

    def decline_request(self, request: MeetingRequest, actor: Actor) -> None:
        check_owning_mentor(actor, request.mentor_id, Capability.MEETING_REQUESTS_RESOLVE)
        logger.info("meeting_request_declined", request_id=request.id)

    # ── Checks ────────────────────────────────────────────────────────

    def _check_allowed(self, meeting: Meeting, action: str) -> None:
        if meeting.status not in self.ALLOWED[action]:
            raise InvalidTransitionError(
                f"Cannot {action} a meeting that is {meeting.status.value}",
                from_state=meeting.status.value,
                action=action,
            )

    @staticmethod
    def _check_invited_student(meeting: Meeting, actor: Actor, student_email: str) -> None:
        check_subject_student(actor, student_email, Capability.MEETINGS_RESPOND)
        if Role.STUDENT not in meeting.invitees:
            raise PermissionDeniedError(
                "The student is not invited to this meeting",
                role=actor.role.value,
                capability=Capability.MEETINGS_RESPOND.value,
            )
