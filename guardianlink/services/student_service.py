"""
Student Service — the product flows over the document store.

Each operation:
1. Loads the student record
2. Checks the actor (owning mentor, subject student or linked parent)
3. Applies the pure rule from engine / notes / meetings
4. Writes only the fields it changed (merge), so concurrent edits of
   different fields do not clobber each other
5. Dispatches the domain event, if any, to the notification service

List fields (notes, tasks, meetings, goals) are written whole; concurrent
edits of the same list are last-writer-wins.
"""

from typing import Any, Optional

import structlog

from guardianlink.alerting.notifier import NotificationService
from guardianlink.alerting.schemas import (
    DomainEvent,
    InterventionTriggered,
    MeetingRequestApproved,
    MeetingRequestCreated,
    MeetingRequestDeclined,
    MeetingRescheduled,
    MeetingScheduled,
    NoteApprovalResolved,
    RiskEscalated,
    SensitiveNoteAdded,
    TaskAssigned,
)
from guardianlink.auth.rbac import (
    Actor,
    Capability,
    Role,
    check_capability,
    check_owning_mentor,
    check_subject_student,
)
from guardianlink.config import settings
from guardianlink.engine.classifier import classify, validate_metric
from guardianlink.engine.transitions import evaluate_risk_change
from guardianlink.exceptions import (
    DataNotFoundError,
    InvalidTransitionError,
    PermissionDeniedError,
    ValidationError,
)
from guardianlink.meetings.lifecycle import MeetingLifecycle
from guardianlink.notes import visibility
from guardianlink.schemas.common import utcnow
from guardianlink.schemas.meeting import Meeting, MeetingRequest
from guardianlink.schemas.note import Note
from guardianlink.schemas.risk import RiskTransition
from guardianlink.schemas.student import Intervention, MetricSnapshot, PersonalGoal, Student
from guardianlink.schemas.task import Task
from guardianlink.store.base import DocumentStore
from guardianlink.store.paths import join_path

logger = structlog.get_logger(__name__)

# Baseline used to evaluate a brand-new record: "was not at risk".
_HEALTHY_BASELINE = (100.0, 100.0)


def _find(items: list, item_id: str, resource_type: str):
    for item in items:
        if item.id == item_id:
            return item
    raise DataNotFoundError(
        f"{resource_type.capitalize()} {item_id} not found",
        resource_type=resource_type,
        resource_id=item_id,
    )


def _replace(items: list, updated) -> list:
    return [updated if item.id == updated.id else item for item in items]


def _remove(items: list, item_id: str, resource_type: str) -> list:
    _find(items, item_id, resource_type)
    return [item for item in items if item.id != item_id]


class StudentService:
    """Mentor, student and parent operations on student records."""

    def __init__(
        self,
        store: DocumentStore,
        notifier: Optional[NotificationService] = None,
        lifecycle: Optional[MeetingLifecycle] = None,
        collection: Optional[str] = None,
        requests_collection: Optional[str] = None,
    ):
        self._store = store
        self._notifier = notifier or NotificationService(store)
        self._lifecycle = lifecycle or MeetingLifecycle()
        self._collection = collection or settings.students_collection
        self._requests_collection = requests_collection or settings.meeting_requests_collection

    # ========================================================================
    # PERSISTENCE HELPERS
    # ========================================================================

    def _path(self, student_id: str) -> str:
        return join_path(self._collection, student_id)

    async def get_student(self, student_id: str) -> Student:
        data = await self._store.get(self._path(student_id))
        if data is None:
            raise DataNotFoundError(
                f"Student {student_id} not found",
                resource_type="student",
                resource_id=student_id,
            )
        return Student.model_validate(data)

    async def _write(self, student: Student, *fields: str) -> None:
        await self._store.set(
            self._path(student.id),
            student.model_dump(mode="json", include=set(fields)),
            merge=True,
        )

    async def _emit(self, event: DomainEvent) -> None:
        await self._notifier.dispatch(event)

    @staticmethod
    def _context(student: Student) -> dict[str, Any]:
        return {
            "student_id": student.id,
            "student_name": student.name,
            "student_email": student.email,
            "parent_email": student.parent_email,
            "mentor_id": student.mentor_id,
        }

    # ========================================================================
    # RECORDS
    # ========================================================================

    async def create_student(
        self,
        actor: Actor,
        name: str,
        email: str,
        attendance: float,
        marks: float,
        parent_email: Optional[str] = None,
    ) -> Student:
        """Create a record owned by the acting mentor; alert if it starts at-risk."""
        check_capability(actor, Capability.STUDENTS_MANAGE)
        if not name or not email:
            raise ValidationError("Student name and email are required", field="email")
        attendance = validate_metric("attendance", attendance)
        marks = validate_metric("marks", marks)

        transition = evaluate_risk_change(*_HEALTHY_BASELINE, attendance, marks)
        student = Student(
            name=name,
            email=email,
            parent_email=parent_email or None,
            mentor_id=actor.user_id,
            attendance=attendance,
            marks=marks,
            is_at_risk=transition.at_risk,
            history=[MetricSnapshot(attendance=attendance, marks=marks)],
            risk_events=[transition.risk_event] if transition.risk_event else [],
        )
        await self._store.set(self._path(student.id), student.model_dump(mode="json"))
        logger.info(
            "student_created",
            student_id=student.id,
            mentor_id=actor.user_id,
            at_risk=student.is_at_risk,
        )

        if transition.newly_at_risk:
            await self._emit(RiskEscalated(
                **self._context(student), message=transition.risk_event.message,
            ))
        return student

    async def list_students(self, mentor_id: Optional[str] = None) -> list[Student]:
        """Active (not soft-deleted) records, optionally for one mentor."""
        docs = await self._store.list(self._collection)
        students = [Student.model_validate(data) for _, data in docs]
        return [
            s for s in students
            if not s.deleted and (mentor_id is None or s.mentor_id == mentor_id)
        ]

    async def find_by_email(self, email: str) -> Optional[Student]:
        for student in await self.list_students():
            if student.email.lower() == email.lower():
                return student
        return None

    async def find_by_parent_email(self, parent_email: str) -> list[Student]:
        return [
            s for s in await self.list_students()
            if s.parent_email and s.parent_email.lower() == parent_email.lower()
        ]

    async def update_profile(
        self,
        actor: Actor,
        student_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        parent_email: Optional[str] = None,
    ) -> Student:
        student = await self.get_student(student_id)
        check_owning_mentor(actor, student.mentor_id, Capability.STUDENTS_MANAGE)
        update = {
            k: v for k, v in
            {"name": name, "email": email, "parent_email": parent_email}.items()
            if v is not None
        }
        if not update:
            return student
        student = student.model_copy(update=update)
        await self._write(student, *update)
        return student

    async def update_metrics(
        self,
        actor: Actor,
        student_id: str,
        attendance: float,
        marks: float,
    ) -> RiskTransition:
        """
        Record new metrics.

        Appends a history snapshot, records a risk event on a transition,
        clears the active intervention on recovery and alerts on escalation.
        """
        student = await self.get_student(student_id)
        check_owning_mentor(actor, student.mentor_id, Capability.METRICS_WRITE)
        attendance = validate_metric("attendance", attendance)
        marks = validate_metric("marks", marks)

        transition = evaluate_risk_change(student.attendance, student.marks, attendance, marks)

        fields = ["attendance", "marks", "is_at_risk", "history"]
        update: dict[str, Any] = {
            "attendance": attendance,
            "marks": marks,
            "is_at_risk": transition.at_risk,
            "history": [*student.history, MetricSnapshot(attendance=attendance, marks=marks)],
        }
        if transition.risk_event:
            update["risk_events"] = [*student.risk_events, transition.risk_event]
            fields.append("risk_events")
        if transition.recovered and student.intervention is not None:
            update["intervention"] = None
            fields.append("intervention")

        student = student.model_copy(update=update)
        await self._write(student, *fields)

        if transition.newly_at_risk:
            logger.warning(
                "risk_escalated",
                student_id=student.id,
                attendance_band=transition.attendance_band.value,
                marks_band=transition.marks_band.value,
            )
            await self._emit(RiskEscalated(
                **self._context(student), message=transition.risk_event.message,
            ))
        elif transition.recovered:
            logger.info("risk_recovered", student_id=student.id)

        return transition

    async def soft_delete(self, actor: Actor, student_id: str) -> Student:
        student = await self.get_student(student_id)
        check_owning_mentor(actor, student.mentor_id, Capability.STUDENTS_MANAGE)
        if student.deleted:
            return student
        student = student.model_copy(update={"deleted": True, "deleted_at": utcnow()})
        await self._write(student, "deleted", "deleted_at")
        logger.info("student_deleted", student_id=student.id)
        return student

    async def set_feedback(self, actor: Actor, student_id: str, feedback: str) -> Student:
        """Mentor's parent-facing feedback summary."""
        student = await self.get_student(student_id)
        check_owning_mentor(actor, student.mentor_id, Capability.FEEDBACK_WRITE)
        if not feedback or not feedback.strip():
            raise ValidationError("Feedback must not be empty", field="mentor_feedback")
        student = student.model_copy(update={"mentor_feedback": feedback})
        await self._write(student, "mentor_feedback")
        return student

    # ========================================================================
    # NOTES
    # ========================================================================

    async def add_note(
        self,
        actor: Actor,
        student_id: str,
        content: str,
        is_confidential: bool = False,
        is_sensitive: bool = False,
        is_parent_visible: bool = True,
    ) -> Note:
        student = await self.get_student(student_id)
        check_owning_mentor(actor, student.mentor_id, Capability.NOTES_WRITE)
        note = visibility.build_note(
            content,
            is_confidential=is_confidential,
            is_sensitive=is_sensitive,
            is_parent_visible=is_parent_visible,
            mentor_id=actor.user_id,
        )
        student = student.model_copy(update={"notes": [*student.notes, note]})
        await self._write(student, "notes")
        logger.info(
            "note_added",
            student_id=student.id,
            note_id=note.id,
            confidential=note.is_confidential,
            sensitive=note.is_sensitive,
        )
        if note.is_sensitive:
            await self._emit(SensitiveNoteAdded(**self._context(student), note_id=note.id))
        return note

    async def edit_note(self, actor: Actor, student_id: str, note_id: str, content: str) -> Note:
        student = await self.get_student(student_id)
        check_owning_mentor(actor, student.mentor_id, Capability.NOTES_WRITE)
        note = visibility.edit_content(_find(student.notes, note_id, "note"), content)
        await self._write(student.model_copy(update={"notes": _replace(student.notes, note)}), "notes")
        return note

    async def delete_note(self, actor: Actor, student_id: str, note_id: str) -> None:
        student = await self.get_student(student_id)
        check_owning_mentor(actor, student.mentor_id, Capability.NOTES_WRITE)
        notes = _remove(student.notes, note_id, "note")
        await self._write(student.model_copy(update={"notes": notes}), "notes")
        logger.info("note_deleted", student_id=student.id, note_id=note_id)

    async def set_note_confidential(
        self, actor: Actor, student_id: str, note_id: str, confidential: bool,
    ) -> Note:
        student = await self.get_student(student_id)
        check_owning_mentor(actor, student.mentor_id, Capability.NOTES_WRITE)
        note = visibility.set_confidential(_find(student.notes, note_id, "note"), confidential)
        await self._write(student.model_copy(update={"notes": _replace(student.notes, note)}), "notes")
        return note

    async def respond_to_note(
        self, actor: Actor, student_id: str, note_id: str, approve: bool,
    ) -> Note:
        """The student approves or rejects parent visibility of a sensitive note."""
        student = await self.get_student(student_id)
        check_subject_student(actor, student.email, Capability.NOTES_APPROVE)
        original = _find(student.notes, note_id, "note")
        if original.is_confidential:
            # The student cannot see confidential notes, so cannot answer them.
            raise DataNotFoundError(
                f"Note {note_id} not found", resource_type="note", resource_id=note_id,
            )
        note = visibility.apply_approval(original, approve)
        await self._write(student.model_copy(update={"notes": _replace(student.notes, note)}), "notes")
        await self._emit(NoteApprovalResolved(
            **self._context(student),
            note_id=note.id,
            approved=approve,
            note_excerpt=note.content,
        ))
        return note

    async def notes_for(self, actor: Actor, student_id: str) -> list[Note]:
        """The notes of a record as the actor is allowed to see them."""
        student = await self.get_student(student_id)
        if actor.role == Role.MENTOR:
            if actor.user_id != student.mentor_id:
                raise PermissionDeniedError(
                    "Only the owning mentor may read these notes",
                    role=actor.role.value,
                    capability=Capability.NOTES_WRITE.value,
                )
        elif actor.role == Role.STUDENT:
            if not actor.email or actor.email.lower() != student.email.lower():
                raise PermissionDeniedError(
                    "Students may only read their own notes",
                    role=actor.role.value,
                )
        elif (
            not actor.email
            or not student.parent_email
            or actor.email.lower() != student.parent_email.lower()
        ):
            raise PermissionDeniedError(
                "Parents may only read notes of their linked student",
                role=actor.role.value,
            )
        return visibility.visible_notes(student.notes, actor.role)

    async def pending_approvals(self, actor: Actor, student_id: str) -> list[Note]:
        """Sensitive notes still waiting for this student's answer."""
        student = await self.get_student(student_id)
        check_subject_student(actor, student.email, Capability.NOTES_APPROVE)
        return [
            n for n in student.notes
            if visibility.needs_approval(n) and visibility.is_visible_to(n, Role.STUDENT)
        ]

    # ========================================================================
    # TASKS
    # ========================================================================

    async def assign_task(
        self,
        actor: Actor,
        student_id: str,
        title: str,
        description: str = "",
        due_date: Optional[str] = None,
    ) -> Task:
        student = await self.get_student(student_id)
        check_owning_mentor(actor, student.mentor_id, Capability.TASKS_WRITE)
        if not title or not title.strip():
            raise ValidationError("Task title must not be empty", field="title")
        task = Task(title=title, description=description, due_date=due_date)
        await self._write(student.model_copy(update={"tasks": [*student.tasks, task]}), "tasks")
        logger.info("task_assigned", student_id=student.id, task_id=task.id)
        await self._emit(TaskAssigned(**self._context(student), task_title=task.title))
        return task

    async def edit_task(
        self,
        actor: Actor,
        student_id: str,
        task_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        due_date: Optional[str] = None,
    ) -> Task:
        student = await self.get_student(student_id)
        check_owning_mentor(actor, student.mentor_id, Capability.TASKS_WRITE)
        update = {
            k: v for k, v in
            {"title": title, "description": description, "due_date": due_date}.items()
            if v is not None
        }
        task = _find(student.tasks, task_id, "task").model_copy(update=update)
        await self._write(student.model_copy(update={"tasks": _replace(student.tasks, task)}), "tasks")
        return task

    async def delete_task(self, actor: Actor, student_id: str, task_id: str) -> None:
        student = await self.get_student(student_id)
        check_owning_mentor(actor, student.mentor_id, Capability.TASKS_WRITE)
        tasks = _remove(student.tasks, task_id, "task")
        await self._write(student.model_copy(update={"tasks": tasks}), "tasks")

    async def set_task_completed(
        self, actor: Actor, student_id: str, task_id: str, completed: bool = True,
    ) -> Task:
        """Only the student toggles completion."""
        student = await self.get_student(student_id)
        check_subject_student(actor, student.email, Capability.TASKS_COMPLETE)
        task = _find(student.tasks, task_id, "task").model_copy(update={
            "completed": completed,
            "completed_at": utcnow() if completed else None,
        })
        await self._write(student.model_copy(update={"tasks": _replace(student.tasks, task)}), "tasks")
        return task

    # ========================================================================
    # MEETINGS
    # ========================================================================

    async def schedule_meeting(
        self,
        actor: Actor,
        student_id: str,
        date: str,
        agenda: str = "",
        time: Optional[str] = None,
        invitees: Optional[list[Role]] = None,
    ) -> Meeting:
        """Mentor schedules; invites the student, and the parent when linked."""
        student = await self.get_student(student_id)
        check_owning_mentor(actor, student.mentor_id, Capability.MEETINGS_SCHEDULE)
        if invitees is None:
            invitees = [Role.STUDENT] + ([Role.PARENT] if student.parent_email else [])
        meeting = self._lifecycle.create_meeting(
            student_id=student.id, date=date, time=time, agenda=agenda, invitees=invitees,
        )
        await self._write(
            student.model_copy(update={"meetings": [*student.meetings, meeting]}), "meetings",
        )
        await self._emit(MeetingScheduled(
            **self._context(student),
            invitees=meeting.invitees,
            date=meeting.date,
            time=meeting.time,
            agenda=meeting.agenda,
        ))
        return meeting

    async def accept_meeting(self, actor: Actor, student_id: str, meeting_id: str) -> Meeting:
        student = await self.get_student(student_id)
        meeting = self._lifecycle.accept(
            _find(student.meetings, meeting_id, "meeting"), actor, student.email,
        )
        await self._write(
            student.model_copy(update={"meetings": _replace(student.meetings, meeting)}),
            "meetings",
        )
        return meeting

    async def reschedule_meeting(
        self,
        actor: Actor,
        student_id: str,
        meeting_id: str,
        new_date: str,
        new_time: Optional[str] = None,
    ) -> Meeting:
        student = await self.get_student(student_id)
        meeting = self._lifecycle.reschedule(
            _find(student.meetings, meeting_id, "meeting"),
            actor,
            student.email,
            new_date,
            new_time,
        )
        await self._write(
            student.model_copy(update={"meetings": _replace(student.meetings, meeting)}),
            "meetings",
        )
        await self._emit(MeetingRescheduled(
            **self._context(student), new_date=meeting.date, new_time=meeting.time,
        ))
        return meeting

    # ── Meeting requests ──────────────────────────────────────────────

    def _request_path(self, request_id: str) -> str:
        return join_path(self._requests_collection, request_id)

    async def request_meeting(
        self,
        actor: Actor,
        student_id: str,
        date: str,
        time: Optional[str] = None,
        reason: str = "",
    ) -> MeetingRequest:
        student = await self.get_student(student_id)
        request = self._lifecycle.open_request(student, actor, date, time, reason)
        await self._store.set(self._request_path(request.id), request.model_dump(mode="json"))
        await self._emit(MeetingRequestCreated(
            **self._context(student),
            requested_by=request.requested_by,
            date=request.date,
            time=request.time,
            reason=request.reason,
        ))
        return request

    async def get_request(self, request_id: str) -> MeetingRequest:
        data = await self._store.get(self._request_path(request_id))
        if data is None:
            raise DataNotFoundError(
                f"Meeting request {request_id} not found",
                resource_type="meeting_request",
                resource_id=request_id,
            )
        return MeetingRequest.model_validate(data)

    async def pending_requests(self, actor: Actor) -> list[MeetingRequest]:
        """Open requests addressed to the acting mentor."""
        check_capability(actor, Capability.MEETING_REQUESTS_RESOLVE)
        docs = await self._store.list(self._requests_collection)
        requests = [MeetingRequest.model_validate(data) for _, data in docs]
        return [r for r in requests if r.mentor_id == actor.user_id]

    async def approve_meeting_request(self, actor: Actor, request_id: str) -> Meeting:
        request = await self.get_request(request_id)
        meeting = self._lifecycle.approve_request(request, actor)
        student = await self.get_student(request.student_id)
        await self._write(
            student.model_copy(update={"meetings": [*student.meetings, meeting]}), "meetings",
        )
        await self._store.delete(self._request_path(request.id))
        await self._emit(MeetingRequestApproved(
            **self._context(student),
            requested_by=request.requested_by,
            date=request.date,
            time=request.time,
        ))
        return meeting

    async def decline_meeting_request(self, actor: Actor, request_id: str) -> None:
        request = await self.get_request(request_id)
        self._lifecycle.decline_request(request, actor)
        await self._store.delete(self._request_path(request.id))
        await self._emit(MeetingRequestDeclined(
            student_id=request.student_id,
            student_name=request.student_name,
            student_email=request.student_email,
            parent_email=request.parent_email,
            mentor_id=request.mentor_id,
            requested_by=request.requested_by,
            date=request.date,
            time=request.time,
        ))

    # ========================================================================
    # INTERVENTIONS
    # ========================================================================

    async def trigger_intervention(
        self, actor: Actor, student_id: str, note: str = "",
    ) -> Intervention:
        """Start an intervention for an at-risk student and tell the parent."""
        student = await self.get_student(student_id)
        check_owning_mentor(actor, student.mentor_id, Capability.INTERVENTIONS_TRIGGER)
        if not classify(student.attendance, student.marks).at_risk:
            raise InvalidTransitionError(
                "Interventions can only be started for at-risk students",
                from_state="not_at_risk",
                action="trigger_intervention",
            )
        intervention = Intervention(note=note, mentor_id=actor.user_id)
        await self._write(student.model_copy(update={"intervention": intervention}), "intervention")
        logger.info("intervention_triggered", student_id=student.id, mentor_id=actor.user_id)
        await self._emit(InterventionTriggered(**self._context(student), note=note))
        return intervention

    # ========================================================================
    # PERSONAL GOALS
    # ========================================================================

    async def add_goal(
        self,
        actor: Actor,
        student_id: str,
        title: str,
        description: str = "",
        target_date: Optional[str] = None,
    ) -> PersonalGoal:
        student = await self.get_student(student_id)
        check_subject_student(actor, student.email, Capability.GOALS_WRITE)
        if not title or not title.strip():
            raise ValidationError("Goal title must not be empty", field="title")
        goal = PersonalGoal(title=title, description=description, target_date=target_date)
        await self._write(
            student.model_copy(update={"personal_goals": [*student.personal_goals, goal]}),
            "personal_goals",
        )
        return goal

    async def edit_goal(
        self,
        actor: Actor,
        student_id: str,
        goal_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        target_date: Optional[str] = None,
    ) -> PersonalGoal:
        student = await self.get_student(student_id)
        check_subject_student(actor, student.email, Capability.GOALS_WRITE)
        update = {
            k: v for k, v in
            {"title": title, "description": description, "target_date": target_date}.items()
            if v is not None
        }
        goal = _find(student.personal_goals, goal_id, "goal").model_copy(update=update)
        await self._write(
            student.model_copy(update={"personal_goals": _replace(student.personal_goals, goal)}),
            "personal_goals",
        )
        return goal

    async def update_goal_progress(
        self, actor: Actor, student_id: str, goal_id: str, progress: int,
    ) -> PersonalGoal:
        """Progress of 100 completes the goal."""
        student = await self.get_student(student_id)
        check_subject_student(actor, student.email, Capability.GOALS_WRITE)
        if isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100:
            raise ValidationError("Progress must be 0..100", field="progress", value=progress)
        goal = _find(student.personal_goals, goal_id, "goal")
        update: dict[str, Any] = {"progress": progress}
        if progress >= 100 and not goal.completed:
            update.update(completed=True, completed_at=utcnow())
        goal = goal.model_copy(update=update)
        await self._write(
            student.model_copy(update={"personal_goals": _replace(student.personal_goals, goal)}),
            "personal_goals",
        )
        return goal

    async def delete_goal(self, actor: Actor, student_id: str, goal_id: str) -> None:
        student = await self.get_student(student_id)
        check_subject_student(actor, student.email, Capability.GOALS_WRITE)
        goals = _remove(student.personal_goals, goal_id, "goal")
        await self._write(student.model_copy(update={"personal_goals": goals}), "personal_goals")

    # ========================================================================
    # PARENT VIEW
    # ========================================================================

    async def children_of(self, actor: Actor) -> list[Student]:
        """Records linked to the acting parent, with notes filtered to the parent view."""
        if actor.role != Role.PARENT or not actor.email:
            raise PermissionDeniedError("Only parents have linked students", role=actor.role.value)
        return [
            child.model_copy(update={"notes": visibility.visible_notes(child.notes, Role.PARENT)})
            for child in await self.find_by_parent_email(actor.email)
        ]
