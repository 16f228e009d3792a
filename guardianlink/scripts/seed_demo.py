"""Seed the demo roster — one mentor, three students (healthy, warning, at-risk)."""
import asyncio
from typing import Optional

import structlog

from guardianlink.auth.rbac import Actor, Role
from guardianlink.logging_config import configure_logging
from guardianlink.schemas.student import Student
from guardianlink.services.student_service import StudentService
from guardianlink.store.memory import InMemoryDocumentStore

logger = structlog.get_logger(__name__)

DEMO_MENTOR = Actor(
    user_id="demo-mentor",
    role=Role.MENTOR,
    email="mentor@guardianlink.edu",
    name="Dr. Meera Rao",
)

DEMO_STUDENTS = [
    {
        "name": "Aarav Sharma",
        "email": "aarav@student.edu",
        "parent_email": "parent.aarav@guardianlink.edu",
        "attendance": 92,
        "marks": 81,
    },
    {
        "name": "Riya Patel",
        "email": "riya@student.edu",
        "parent_email": "parent.riya@guardianlink.edu",
        "attendance": 78,
        "marks": 65,
    },
    {
        "name": "Kabir Singh",
        "email": "kabir@student.edu",
        "parent_email": "parent.kabir@guardianlink.edu",
        "attendance": 68,
        "marks": 55,
    },
]


async def seed_demo(service: StudentService, mentor: Optional[Actor] = None) -> list[Student]:
    """Create the demo students; records that already exist (by email) are kept."""
    mentor = mentor or DEMO_MENTOR
    seeded = []
    for row in DEMO_STUDENTS:
        existing = await service.find_by_email(row["email"])
        if existing is not None:
            logger.info("demo_student_exists", student_id=existing.id)
            seeded.append(existing)
            continue
        student = await service.create_student(mentor, **row)
        logger.info("demo_student_created", student_id=student.id, at_risk=student.is_at_risk)
        seeded.append(student)
    return seeded


async def main() -> None:
    configure_logging()
    store = InMemoryDocumentStore()
    students = await seed_demo(StudentService(store))
    for student in students:
        print(
            f"{student.name:<14} attendance={student.attendance:g}% "
            f"marks={student.marks:g}% at_risk={student.is_at_risk}"
        )
    await store.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
