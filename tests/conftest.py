"""
Test fixtures for GuardianLink tests.

Provides:
- In-memory document store (closed after each test)
- Actors for every role
- Notification and student services over the shared store
"""

import pytest
import pytest_asyncio

from guardianlink.alerting.notifier import NotificationService
from guardianlink.auth.rbac import Actor, Role
from guardianlink.logging_config import configure_logging
from guardianlink.meetings.lifecycle import MeetingLifecycle
from guardianlink.services.student_service import StudentService
from guardianlink.store.memory import InMemoryDocumentStore

configure_logging()


# ── Store ────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def store():
    """Fresh in-memory store per test."""
    mem = InMemoryDocumentStore()
    yield mem
    await mem.close()


# ── Actors ───────────────────────────────────────────────────────────────


@pytest.fixture
def mentor() -> Actor:
    return Actor(user_id="mentor-1", role=Role.MENTOR, email="mentor@guardianlink.edu", name="Dr. Meera Rao")


@pytest.fixture
def other_mentor() -> Actor:
    return Actor(user_id="mentor-2", role=Role.MENTOR, email="other@guardianlink.edu", name="Dr. Other")


@pytest.fixture
def student_actor() -> Actor:
    return Actor(user_id="student-1", role=Role.STUDENT, email="kabir@student.edu", name="Kabir Singh")


@pytest.fixture
def parent_actor() -> Actor:
    return Actor(
        user_id="parent-1",
        role=Role.PARENT,
        email="parent.kabir@guardianlink.edu",
        name="Parent of Kabir",
    )


# ── Services ─────────────────────────────────────────────────────────────


@pytest.fixture
def notifier(store) -> NotificationService:
    return NotificationService(store)


@pytest.fixture
def service(store, notifier) -> StudentService:
    return StudentService(store, notifier=notifier, lifecycle=MeetingLifecycle(max_reschedules=2))


@pytest_asyncio.fixture
async def kabir(service, mentor):
    """Healthy student record linked to the parent fixture."""
    return await service.create_student(
        mentor,
        name="Kabir Singh",
        email="kabir@student.edu",
        parent_email="parent.kabir@guardianlink.edu",
        attendance=90,
        marks=80,
    )
