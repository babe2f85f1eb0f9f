"""Student answers for the main test and the retest."""

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import NotFoundError, PhaseError, ValidationError
from ..db.base import upsert
from ..db.models import ANSWER_CHOICES, Question, RetestAnswer, RetestQuestion, SessionStudent, StudentAnswer
from ..engine.phases import TEST_ACTIVE, SessionStatus, parse_status, utcnow
from .retest import grade_unanswered
from .sessions import load_session, load_session_questions

logger = logging.getLogger(__name__)

REVIEWABLE = frozenset({SessionStatus.RETEST, SessionStatus.COMPLETE})


def normalize_choice(selected_answer: str) -> str:
    choice = (selected_answer or "").strip().upper()
    if choice not in ANSWER_CHOICES:
        raise ValidationError("selected_answer must be one of A, B, C, D")
    return choice


async def _load_test_question(db: AsyncSession, test_id: int, question_id: int) -> Question:
    question = await db.get(Question, question_id)
    if question is None or question.test_id != test_id:
        raise NotFoundError("Question not found")
    return question


async def record_answer(
    db: AsyncSession,
    session_id: int,
    student_id: int,
    question_id: int,
    selected_answer: str,
) -> bool:
    """Save a main-test answer, graded at write time. Returns correctness."""
    choice = normalize_choice(selected_answer)
    session = await load_session(db, session_id)
    if parse_status(session.status) not in TEST_ACTIVE:
        raise PhaseError("Test not active")
    question = await _load_test_question(db, session.test_id, question_id)

    is_correct = choice == question.correct_answer
    await upsert(
        db,
        StudentAnswer,
        {
            "session_id": session.id,
            "student_id": student_id,
            "question_id": question.id,
            "selected_answer": choice,
            "is_correct": is_correct,
            "answered_at": utcnow(),
        },
        keys=["session_id", "student_id", "question_id"],
        update_fields=["selected_answer", "is_correct", "answered_at"],
    )
    await db.commit()
    return is_correct


async def submit_test(db: AsyncSession, session_id: int, student_id: int) -> int:
    """Finish a student's main test. Unanswered questions become incorrect."""
    session = await load_session(db, session_id)
    questions = await load_session_questions(db, session.test_id)

    auto_graded = await grade_unanswered(db, session.id, student_id, questions)
    await db.execute(
        update(SessionStudent)
        .where(SessionStudent.session_id == session.id, SessionStudent.student_id == student_id)
        .values(test_submitted=True, test_submitted_at=utcnow())
    )
    await db.commit()

    logger.info(f"Student {student_id} submitted session {session.id} ({auto_graded} auto-graded)")
    return auto_graded


async def get_test_questions(db: AsyncSession, session_id: int, student_id: int) -> list[dict[str, Any]]:
    """Questions for a running test with the student's selections so far."""
    session = await load_session(db, session_id)
    if parse_status(session.status) not in TEST_ACTIVE:
        raise PhaseError("Test not active")

    questions = await load_session_questions(db, session.test_id)
    answers = await db.execute(
        select(StudentAnswer.question_id, StudentAnswer.selected_answer).where(
            StudentAnswer.session_id == session.id,
            StudentAnswer.student_id == student_id,
        )
    )
    selected = dict(answers.tuples().all())
    return [{"question": question, "selected_answer": selected.get(question.id)} for question in questions]


async def record_retest_answer(
    db: AsyncSession,
    session_id: int,
    student_id: int,
    question_id: int,
    selected_answer: str,
) -> bool:
    """Save a retest answer. Only questions on the student's retest are accepted."""
    choice = normalize_choice(selected_answer)
    session = await load_session(db, session_id)
    if parse_status(session.status) is not SessionStatus.RETEST:
        raise PhaseError("Retest not active")

    assigned = await db.execute(
        select(RetestQuestion.id).where(
            RetestQuestion.session_id == session.id,
            RetestQuestion.student_id == student_id,
            RetestQuestion.question_id == question_id,
        )
    )
    if assigned.first() is None:
        raise NotFoundError("Question is not part of this retest")
    question = await _load_test_question(db, session.test_id, question_id)

    is_correct = choice == question.correct_answer
    await upsert(
        db,
        RetestAnswer,
        {
            "session_id": session.id,
            "student_id": student_id,
            "question_id": question.id,
            "selected_answer": choice,
            "is_correct": is_correct,
            "answered_at": utcnow(),
        },
        keys=["session_id", "student_id", "question_id"],
        update_fields=["selected_answer", "is_correct", "answered_at"],
    )
    await db.commit()
    return is_correct


async def get_review(db: AsyncSession, session_id: int, student_id: int) -> list[dict[str, Any]]:
    """Main-test questions with correct answers, once the retest has opened."""
    session = await load_session(db, session_id)
    if parse_status(session.status) not in REVIEWABLE:
        raise PhaseError("Review not available yet")

    questions = await load_session_questions(db, session.test_id)
    answers = await db.execute(
        select(StudentAnswer).where(
            StudentAnswer.session_id == session.id,
            StudentAnswer.student_id == student_id,
        )
    )
    by_question = {answer.question_id: answer for answer in answers.scalars()}
    review = []
    for question in questions:
        answer = by_question.get(question.id)
        review.append({
            "question": question,
            "selected_answer": answer.selected_answer if answer else None,
            "is_correct": answer.is_correct if answer else None,
        })
    return review
