"""Mentor note embedded in a student record."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from guardianlink.schemas.common import new_id, utcnow


class Note(BaseModel):
    """
    A mentor note.

    ``approved`` is tri-state and only meaningful for sensitive notes:
    None = waiting for the student, True = parent may see it,
    False = rejected by the student.
    """
    id: str = Field(default_factory=new_id)
    content: str
    is_confidential: bool = False
    is_sensitive: bool = False
    is_parent_visible: bool = True
    approved: Optional[bool] = None
    mentor_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
