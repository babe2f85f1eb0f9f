"""Retest preparation: auto-grading leftovers and assembling per-student retests."""

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import PhaseError
from ..db.base import get_db_session, insert_ignore
from ..db.models import Question, RetestAnswer, RetestQuestion, Session, StudentAnswer
from ..engine.phases import SessionStatus, parse_status, utcnow
from ..engine.retest import duration_for_questions, retest_seed, select_retest_questions
from .sessions import load_roster, load_session, load_session_questions

logger = logging.getLogger(__name__)

PREPARABLE = {SessionStatus.RETEST, SessionStatus.COMPLETE}


async def grade_unanswered(
    db: AsyncSession,
    session_id: int,
    student_id: int,
    questions: list[Question],
) -> int:
    """Record every unanswered question as incorrect. Existing answers win."""
    answered = await db.execute(
        select(StudentAnswer.question_id).where(
            StudentAnswer.session_id == session_id,
            StudentAnswer.student_id == student_id,
        )
    )
    answered_ids = set(answered.scalars().all())
    now = utcnow()
    rows = [
        {
            "session_id": session_id,
            "student_id": student_id,
            "question_id": question.id,
            "selected_answer": None,
            "is_correct": False,
            "answered_at": now,
        }
        for question in questions
        if question.id not in answered_ids
    ]
    await insert_ignore(db, StudentAnswer, rows)
    return len(rows)


async def missed_question_ids(db: AsyncSession, session_id: int, student_id: int) -> list[int]:
    """Main-test misses in test order. Ungraded answers count as misses."""
    result = await db.execute(
        select(StudentAnswer.question_id)
        .join(Question, Question.id == StudentAnswer.question_id)
        .where(
            StudentAnswer.session_id == session_id,
            StudentAnswer.student_id == student_id,
            or_(StudentAnswer.is_correct.is_(False), StudentAnswer.is_correct.is_(None)),
        )
        .order_by(Question.question_number)
    )
    return list(result.scalars().all())


async def has_retest(db: AsyncSession, session_id: int, student_id: int) -> bool:
    result = await db.execute(
        select(func.count(RetestQuestion.id)).where(
            RetestQuestion.session_id == session_id,
            RetestQuestion.student_id == student_id,
        )
    )
    return result.scalar_one() > 0


async def assemble_retest(
    db: AsyncSession,
    session: Session,
    student_id: int,
    questions: Optional[list[Question]] = None,
) -> int:
    """Assemble one student's retest once; later calls are no-ops.

    Returns how many rows this call selected (0 when already assembled).
    """
    if await has_retest(db, session.id, student_id):
        return 0

    if questions is None:
        questions = await load_session_questions(db, session.test_id)
    missed = await missed_question_ids(db, session.id, student_id)
    items = select_retest_questions(
        questions,
        missed,
        session.retest_question_count,
        rng=random.Random(retest_seed(session.id, student_id)),
    )

    # The unique constraints turn a racing duplicate assembly into a no-op
    await insert_ignore(
        db,
        RetestQuestion,
        [
            {
                "session_id": session.id,
                "student_id": student_id,
                "question_id": item.question_id,
                "source": item.source,
                "question_order": item.order,
            }
            for item in items
        ],
    )
    await db.commit()

    logger.info(
        f"Retest assembled for student {student_id} in session {session.id}: "
        f"{len(items)} questions, {sum(1 for item in items if item.source == 'missed')} missed"
    )
    return len(items)


@dataclass
class RetestPreparation:
    """Rows selected per student, plus the students whose assembly failed."""

    assembled: dict[int, int] = field(default_factory=dict)
    failed: list[int] = field(default_factory=list)


async def prepare_retests_in(db: AsyncSession, session_id: int) -> RetestPreparation:
    """Grade leftovers as incorrect, then assemble every joined student's retest.

    Only runs once the session has reached the retest phase, so answers still
    being written are never graded. A failure for one student is logged and
    rolled back; the rest of the roster is still prepared.
    """
    session = await load_session(db, session_id)
    if parse_status(session.status) not in PREPARABLE:
        raise PhaseError("Retest not open yet")

    questions = await load_session_questions(db, session.test_id)
    student_ids = [student.id for _, student in await load_roster(db, session.id)]

    preparation = RetestPreparation()
    for student_id in student_ids:
        try:
            await grade_unanswered(db, session.id, student_id, questions)
            await db.commit()
            preparation.assembled[student_id] = await assemble_retest(db, session, student_id, questions)
        except Exception:
            logger.exception(f"Retest preparation failed for student {student_id} in session {session_id}")
            await db.rollback()
            preparation.failed.append(student_id)
            # Rollback expires loaded rows
            session = await load_session(db, session_id)
            questions = await load_session_questions(db, session.test_id)
    return preparation


async def prepare_retests(session_id: int) -> RetestPreparation:
    """Background entry point with its own database session."""
    async with get_db_session() as db:
        return await prepare_retests_in(db, session_id)


async def get_retest_questions(db: AsyncSession, session_id: int, student_id: int) -> dict[str, Any]:
    """A student's retest in order, with their current selections and time budget."""
    result = await db.execute(
        select(RetestQuestion, Question)
        .join(Question, Question.id == RetestQuestion.question_id)
        .where(RetestQuestion.session_id == session_id, RetestQuestion.student_id == student_id)
        .order_by(RetestQuestion.question_order)
    )
    rows = list(result.tuples().all())
    if not rows:
        return {"questions": [], "duration": 0}

    answers = await db.execute(
        select(RetestAnswer.question_id, RetestAnswer.selected_answer).where(
            RetestAnswer.session_id == session_id,
            RetestAnswer.student_id == student_id,
        )
    )
    selected = dict(answers.tuples().all())

    return {
        "questions": [
            {
                "question": question,
                "retest_order": retest_question.question_order,
                "source": retest_question.source,
                "selected_answer": selected.get(question.id),
            }
            for retest_question, question in rows
        ],
        "duration": duration_for_questions(question for _, question in rows),
    }
