"""Mentor-assigned task embedded in a student record."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from guardianlink.schemas.common import new_id, utcnow


class Task(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    due_date: Optional[str] = None
    completed: bool = False
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
