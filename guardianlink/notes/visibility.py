"""
Note Visibility Engine.

Decides who sees a note and owns the note flag rules:

- mentor  → always
- student → unless confidential (sensitive notes stay visible to the student;
            approval gates the parent, not the student)
- parent  → not confidential AND parent-visible AND
            (not sensitive OR approved is True)

Confidential dominates: a confidential note is never parent-visible, whatever
the stored parent-visible flag says.
"""

from typing import Iterable, Optional

import structlog

from guardianlink.auth.rbac import Role
from guardianlink.exceptions import InvalidTransitionError, ValidationError
from guardianlink.schemas.common import utcnow
from guardianlink.schemas.note import Note

logger = structlog.get_logger(__name__)


def is_visible_to(note: Note, role: Role) -> bool:
    """Check whether a note is visible to a viewer role."""
    if role == Role.MENTOR:
        return True
    if role == Role.STUDENT:
        return not note.is_confidential
    if role == Role.PARENT:
        return is_parent_visible(note)
    return False


def is_parent_visible(note: Note) -> bool:
    return (
        not note.is_confidential
        and note.is_parent_visible
        and (not note.is_sensitive or note.approved is True)
    )


def visible_notes(notes: Iterable[Note], role: Role) -> list[Note]:
    return [note for note in notes if is_visible_to(note, role)]


def needs_approval(note: Note) -> bool:
    """A sensitive note still waiting for the student's answer."""
    return note.is_sensitive and note.approved is None


def build_note(
    content: str,
    is_confidential: bool = False,
    is_sensitive: bool = False,
    is_parent_visible: bool = True,
    mentor_id: Optional[str] = None,
) -> Note:
    """
    Create a note with the creation-time invariants applied.

    Confidential forces parent-visible off; sensitive notes start with
    ``approved=None`` (waiting for the student), all others with True.
    """
    if not content or not content.strip():
        raise ValidationError("Note content must not be empty", field="content")
    return Note(
        content=content,
        is_confidential=is_confidential,
        is_sensitive=is_sensitive,
        is_parent_visible=is_parent_visible and not is_confidential,
        approved=None if is_sensitive else True,
        mentor_id=mentor_id,
    )


def set_confidential(note: Note, confidential: bool) -> Note:
    """Write the confidential flag; setting it clears parent-visible in the same update."""
    update: dict = {"is_confidential": confidential, "updated_at": utcnow()}
    if confidential:
        update["is_parent_visible"] = False
    return note.model_copy(update=update)


def edit_content(note: Note, content: str) -> Note:
    """Mentor edit. Approval state is left as it is (a rejection stays rejected)."""
    if not content or not content.strip():
        raise ValidationError("Note content must not be empty", field="content")
    return note.model_copy(update={"content": content, "updated_at": utcnow()})


def apply_approval(note: Note, approve: bool) -> Note:
    """
    Record the student's answer on a sensitive note.

    Only a pending sensitive note (``approved is None``) can be answered, and
    only once. Rejection also turns parent-visible off.
    """
    if not note.is_sensitive:
        raise InvalidTransitionError(
            "Only sensitive notes need approval",
            from_state="not_sensitive",
            action="approve" if approve else "reject",
        )
    if note.approved is not None:
        raise InvalidTransitionError(
            "This note has already been answered",
            from_state="approved" if note.approved else "rejected",
            action="approve" if approve else "reject",
        )
    update: dict = {"approved": approve, "updated_at": utcnow()}
    if not approve:
        update["is_parent_visible"] = False
    logger.info(
        "note_approval_recorded",
        note_id=note.id,
        approved=approve,
    )
    return note.model_copy(update=update)
