"""Session management: creation, lookup, joining and the public status view."""

import logging
import secrets
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    PhaseError,
    ValidationError,
)
from ..db.models import (
    AnalysisJob,
    LessonGroup,
    LessonGroupStudent,
    LessonPlan,
    PracticeTest,
    ProgressReport,
    Question,
    RetestAnswer,
    RetestQuestion,
    Session,
    SessionStudent,
    Student,
    StudentAnswer,
    Tutor,
)
from ..engine.phases import JOINABLE, SessionStatus, as_utc, parse_status, remaining_time_ms

logger = logging.getLogger(__name__)

TUTOR_COUNT_RANGE = (1, 3)
RETEST_COUNT_RANGE = (5, 50)
DURATION_RANGE = (10, 300)
MAX_PIN_ATTEMPTS = 20


def generate_pin() -> str:
    return str(100000 + secrets.randbelow(900000))


def _check_range(name: str, value: int, bounds: tuple[int, int]) -> None:
    low, high = bounds
    if not low <= value <= high:
        raise ValidationError(f"{name} must be between {low} and {high}")


async def _unique_lobby_pin(db: AsyncSession) -> str:
    """Pick a PIN that no session currently in the lobby is using."""
    for _ in range(MAX_PIN_ATTEMPTS):
        pin = generate_pin()
        taken = await db.execute(
            select(Session.id).where(Session.pin_code == pin, Session.status == SessionStatus.LOBBY.value)
        )
        if taken.first() is None:
            return pin
    raise ConflictError("Could not allocate a unique PIN, please retry")


# =============================================================================
# Lookups
# =============================================================================


async def load_session(db: AsyncSession, session_id: int) -> Session:
    session = await db.get(Session, session_id)
    if session is None:
        raise NotFoundError("Session not found")
    return session


async def load_owned_session(db: AsyncSession, session_id: int, tutor: Tutor) -> Session:
    """Load a session that belongs to the tutor's organization."""
    session = await load_session(db, session_id)
    if session.org_id != tutor.org_id:
        raise PermissionDeniedError("Session belongs to another organization")
    return session


async def load_session_questions(db: AsyncSession, test_id: int) -> list[Question]:
    result = await db.execute(
        select(Question).where(Question.test_id == test_id).order_by(Question.question_number)
    )
    return list(result.scalars().all())


async def load_roster(db: AsyncSession, session_id: int) -> list[tuple[SessionStudent, Student]]:
    """Students who joined a session, in join order."""
    result = await db.execute(
        select(SessionStudent, Student)
        .join(Student, Student.id == SessionStudent.student_id)
        .where(SessionStudent.session_id == session_id)
        .order_by(SessionStudent.joined_at, SessionStudent.id)
    )
    return list(result.tuples().all())


# =============================================================================
# Tutor operations
# =============================================================================


async def create_session(
    db: AsyncSession,
    tutor: Tutor,
    test_id: int,
    tutor_count: int,
    retest_question_count: Optional[int] = None,
    test_duration_minutes: Optional[int] = None,
) -> Session:
    """Create a session in the lobby with a fresh PIN."""
    settings = get_settings()
    if retest_question_count is None:
        retest_question_count = settings.DEFAULT_RETEST_QUESTION_COUNT
    if test_duration_minutes is None:
        test_duration_minutes = settings.DEFAULT_TEST_DURATION_MINUTES

    _check_range("tutor_count", tutor_count, TUTOR_COUNT_RANGE)
    _check_range("retest_question_count", retest_question_count, RETEST_COUNT_RANGE)
    _check_range("test_duration_minutes", test_duration_minutes, DURATION_RANGE)

    test = await db.get(PracticeTest, test_id)
    if test is None or test.org_id != tutor.org_id:
        raise NotFoundError("Test not found")

    session = Session(
        org_id=tutor.org_id,
        test_id=test.id,
        created_by=tutor.id,
        pin_code=await _unique_lobby_pin(db),
        status=SessionStatus.LOBBY.value,
        tutor_count=tutor_count,
        retest_question_count=retest_question_count,
        test_duration_minutes=test_duration_minutes,
        total_paused_ms=0,
    )
    db.add(session)
    await db.commit()
    await db.refresh(session)

    logger.info(f"Session {session.id} created for test {test.id} with PIN {session.pin_code}")
    return session


async def list_sessions(db: AsyncSession, tutor: Tutor) -> list[tuple[Session, str]]:
    """Organization sessions, newest first, with their test names."""
    result = await db.execute(
        select(Session, PracticeTest.name)
        .join(PracticeTest, PracticeTest.id == Session.test_id)
        .where(Session.org_id == tutor.org_id)
        .order_by(Session.created_at.desc(), Session.id.desc())
    )
    return list(result.tuples().all())


async def get_session_detail(db: AsyncSession, session_id: int, tutor: Tutor) -> dict[str, Any]:
    """Session with roster; after the lobby also the question grid and every answer."""
    session = await load_owned_session(db, session_id, tutor)
    test = await db.get(PracticeTest, session.test_id)
    roster = await load_roster(db, session.id)

    detail: dict[str, Any] = {
        "session": session,
        "test_name": test.name if test else None,
        "total_questions": test.total_questions if test else 0,
        "students": roster,
        "questions": [],
        "answers": [],
    }
    if session.status != SessionStatus.LOBBY.value:
        detail["questions"] = await load_session_questions(db, session.test_id)
        answers = await db.execute(select(StudentAnswer).where(StudentAnswer.session_id == session.id))
        detail["answers"] = list(answers.scalars().all())
    return detail


async def delete_session(db: AsyncSession, session_id: int, tutor: Tutor) -> None:
    """Delete a session and everything hanging off it, children first."""
    session = await load_session(db, session_id)
    if session.created_by != tutor.id:
        raise PermissionDeniedError("Only the tutor who created the session can delete it")

    group_ids = select(LessonGroup.id).where(LessonGroup.session_id == session.id)
    for stmt in (
        delete(RetestAnswer).where(RetestAnswer.session_id == session.id),
        delete(RetestQuestion).where(RetestQuestion.session_id == session.id),
        delete(StudentAnswer).where(StudentAnswer.session_id == session.id),
        delete(LessonPlan).where(LessonPlan.session_id == session.id),
        delete(LessonGroupStudent).where(LessonGroupStudent.group_id.in_(group_ids)),
        delete(LessonGroup).where(LessonGroup.session_id == session.id),
        delete(ProgressReport).where(ProgressReport.session_id == session.id),
        delete(SessionStudent).where(SessionStudent.session_id == session.id),
        delete(AnalysisJob).where(AnalysisJob.session_id == session.id),
        delete(Session).where(Session.id == session.id),
    ):
        await db.execute(stmt)
    await db.commit()

    logger.info(f"Session {session_id} deleted by tutor {tutor.id}")


# =============================================================================
# Student entry
# =============================================================================


async def find_session_by_pin(db: AsyncSession, pin: str) -> tuple[Session, list[Student]]:
    """Find a joinable session by PIN along with the organization's roster."""
    if not (len(pin) == 6 and pin.isdigit()):
        raise ValidationError("PIN must be 6 digits")

    result = await db.execute(
        select(Session)
        .where(Session.pin_code == pin, Session.status.in_([status.value for status in JOINABLE]))
        .order_by(Session.created_at.desc(), Session.id.desc())
        .limit(1)
    )
    session = result.scalar_one_or_none()
    if session is None:
        raise NotFoundError("Session not found")

    students = await db.execute(
        select(Student).where(Student.org_id == session.org_id).order_by(Student.name)
    )
    return session, list(students.scalars().all())


async def join_session(
    db: AsyncSession,
    session_id: int,
    pin: str,
    student_id: int,
) -> tuple[Session, Student, SessionStudent]:
    """Join a student to a session.

    Re-joining returns the existing record. Losing the insert race to another
    device for the same name surfaces as a conflict.
    """
    session = await load_session(db, session_id)
    if session.pin_code != pin:
        raise PermissionDeniedError("Invalid PIN")
    if parse_status(session.status) not in JOINABLE:
        raise PhaseError("Session is not accepting students")

    student = await db.get(Student, student_id)
    if student is None or student.org_id != session.org_id:
        raise NotFoundError("Student not found")

    existing = await db.execute(
        select(SessionStudent).where(
            SessionStudent.session_id == session.id,
            SessionStudent.student_id == student.id,
        )
    )
    membership = existing.scalar_one_or_none()
    if membership is not None:
        return session, student, membership

    membership = SessionStudent(session_id=session.id, student_id=student.id)
    db.add(membership)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("This name has already been taken")
    await db.refresh(membership)

    logger.info(f"Student {student.id} joined session {session.id}")
    return session, student, membership


async def get_status_snapshot(
    db: AsyncSession,
    session_id: int,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Public polling view: phase, clock and roster. Never includes answers."""
    session = await load_session(db, session_id)
    roster = await load_roster(db, session.id)

    return {
        "session_id": session.id,
        "status": session.status,
        "test_started_at": as_utc(session.test_started_at),
        "test_duration_minutes": session.test_duration_minutes,
        "paused_at": as_utc(session.paused_at),
        "total_paused_ms": session.total_paused_ms or 0,
        "remaining_ms": remaining_time_ms(
            session.test_started_at,
            session.test_duration_minutes,
            session.total_paused_ms or 0,
            session.paused_at,
            now,
        ),
        "poll_interval_seconds": get_settings().STATUS_POLL_INTERVAL_SECONDS,
        "students": [
            {
                "student_id": student.id,
                "name": student.name,
                "test_submitted": membership.test_submitted,
            }
            for membership, student in roster
        ],
    }
