"""Per-student progress reports, generated once and then served from storage."""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import NotFoundError, PhaseError
from ..db.base import upsert
from ..db.models import ProgressReport, Question, RetestAnswer, Student, StudentAnswer
from ..engine.phases import SessionStatus, parse_status
from ..engine.report import GradedAnswer, build_report
from .analysis import find_student_group
from .sessions import load_session

logger = logging.getLogger(__name__)

REPORTABLE = frozenset({SessionStatus.RETEST, SessionStatus.COMPLETE})


async def _graded_answers(db: AsyncSession, model, session_id: int, student_id: int) -> list[GradedAnswer]:
    result = await db.execute(
        select(model.question_id, model.is_correct, Question.concept_tag)
        .join(Question, Question.id == model.question_id)
        .where(model.session_id == session_id, model.student_id == student_id)
        .order_by(Question.question_number)
    )
    return [GradedAnswer(question_id, is_correct, concept_tag) for question_id, is_correct, concept_tag in result]


async def get_report(db: AsyncSession, session_id: int, student_id: int) -> dict[str, Any]:
    """The student's test-vs-retest report; the first call after the retest opens stores it."""
    session = await load_session(db, session_id)
    if parse_status(session.status) not in REPORTABLE:
        raise PhaseError("Report not available yet")

    existing = await db.execute(
        select(ProgressReport.summary).where(
            ProgressReport.session_id == session_id,
            ProgressReport.student_id == student_id,
        )
    )
    summary = existing.scalar_one_or_none()
    if summary is not None:
        return summary

    student = await db.get(Student, student_id)
    if student is None:
        raise NotFoundError("Student not found")
    group = await find_student_group(db, session_id, student_id)

    report = build_report(
        student.name,
        await _graded_answers(db, StudentAnswer, session_id, student_id),
        await _graded_answers(db, RetestAnswer, session_id, student_id),
        group_type=group.group_type if group else None,
        concept_focus=group.concept_focus if group else None,
    )
    summary = report.to_dict()
    await upsert(
        db,
        ProgressReport,
        {"session_id": session_id, "student_id": student_id, "summary": summary},
        keys=["session_id", "student_id"],
        update_fields=["summary"],
    )
    await db.commit()

    logger.info(f"Progress report generated for student {student_id} in session {session_id}")
    return summary
