"""Application services over the document store."""

from guardianlink.services.student_service import StudentService

__all__ = ["StudentService"]
