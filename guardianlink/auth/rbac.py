"""
Role-Based Access Control — single authorization layer.

Defines:
- The three roles of the product (mentor, student, parent)
- Capabilities per role
- Actor identity checks (the subject student, the owning mentor,
  the linked parent)

Identity itself is supplied by the external identity provider; the core trusts
the Actor it is handed and only decides what that actor may do.
"""

from enum import StrEnum
from typing import Optional

import structlog
from pydantic import BaseModel

from guardianlink.exceptions import PermissionDeniedError

logger = structlog.get_logger(__name__)


class Role(StrEnum):
    MENTOR = "mentor"
    STUDENT = "student"
    PARENT = "parent"


class Capability(StrEnum):
    """Fine-grained capabilities checked before a mutation reaches the core."""

    STUDENTS_MANAGE = "students:manage"
    METRICS_WRITE = "metrics:write"
    FEEDBACK_WRITE = "feedback:write"
    NOTES_WRITE = "notes:write"
    NOTES_APPROVE = "notes:approve"
    TASKS_WRITE = "tasks:write"
    TASKS_COMPLETE = "tasks:complete"
    MEETINGS_SCHEDULE = "meetings:schedule"
    MEETINGS_RESPOND = "meetings:respond"
    MEETING_REQUESTS_OPEN = "meeting_requests:open"
    MEETING_REQUESTS_RESOLVE = "meeting_requests:resolve"
    INTERVENTIONS_TRIGGER = "interventions:trigger"
    GOALS_WRITE = "goals:write"
    CALLS_JOIN = "calls:join"


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.MENTOR: frozenset({
        Capability.STUDENTS_MANAGE,
        Capability.METRICS_WRITE,
        Capability.FEEDBACK_WRITE,
        Capability.NOTES_WRITE,
        Capability.TASKS_WRITE,
        Capability.MEETINGS_SCHEDULE,
        Capability.MEETING_REQUESTS_RESOLVE,
        Capability.INTERVENTIONS_TRIGGER,
        Capability.CALLS_JOIN,
    }),
    Role.STUDENT: frozenset({
        Capability.NOTES_APPROVE,
        Capability.TASKS_COMPLETE,
        Capability.MEETINGS_RESPOND,
        Capability.MEETING_REQUESTS_OPEN,
        Capability.GOALS_WRITE,
        Capability.CALLS_JOIN,
    }),
    Role.PARENT: frozenset({
        Capability.MEETING_REQUESTS_OPEN,
        Capability.CALLS_JOIN,
    }),
}


class Actor(BaseModel):
    """Caller identity as supplied by the identity provider."""
    user_id: str
    role: Role
    email: Optional[str] = None
    name: str = ""


def has_capability(role: Role, capability: Capability) -> bool:
    """Check if a role has a specific capability."""
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def check_capability(actor: Actor, capability: Capability) -> None:
    """
    Check that the actor's role grants the capability.

    Raises PermissionDeniedError if denied.
    """
    if not has_capability(actor.role, capability):
        logger.warning(
            "permission_denied",
            user_id=actor.user_id,
            role=actor.role.value,
            required_capability=capability.value,
        )
        raise PermissionDeniedError(
            f"Role '{actor.role.value}' may not perform '{capability.value}'",
            role=actor.role.value,
            capability=capability.value,
        )


def check_subject_student(actor: Actor, student_email: str, capability: Capability) -> None:
    """The actor must be the student the record belongs to."""
    check_capability(actor, capability)
    if not actor.email or actor.email.lower() != (student_email or "").lower():
        logger.warning(
            "subject_mismatch",
            user_id=actor.user_id,
            required_capability=capability.value,
        )
        raise PermissionDeniedError(
            "Only the student this record belongs to may do this",
            role=actor.role.value,
            capability=capability.value,
        )


def check_owning_mentor(actor: Actor, mentor_id: str, capability: Capability) -> None:
    """The actor must be the mentor that owns the student record."""
    check_capability(actor, capability)
    if actor.user_id != mentor_id:
        logger.warning(
            "mentor_mismatch",
            user_id=actor.user_id,
            required_capability=capability.value,
        )
        raise PermissionDeniedError(
            "Only the owning mentor may do this",
            role=actor.role.value,
            capability=capability.value,
        )


def check_linked_parent(actor: Actor, parent_email: Optional[str], capability: Capability) -> None:
    """The actor must be the parent linked to the student record."""
    check_capability(actor, capability)
    if not parent_email or not actor.email or actor.email.lower() != parent_email.lower():
        raise PermissionDeniedError(
            "Only the linked parent may do this",
            role=actor.role.value,
            capability=capability.value,
        )
