"""Analysis pipeline and its job tracker.

The pipeline grades every student, ranks the missed concepts, clusters the
students into lesson groups and asks the content generator for a tutor guide
or practice set per group. Each stage is recorded on the session's
``AnalysisJob`` row, which students and tutors poll.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..content.gateway import ContentGenerator
from ..core.config import get_settings
from ..core.errors import ConflictError, ValidationError
from ..db.base import bulk_insert, get_db_session
from ..db.models import (
    AnalysisJob,
    LessonGroup,
    LessonGroupStudent,
    LessonPlan,
    Question,
    Session,
    Student,
    StudentAnswer,
)
from ..engine.clustering import ClusterGroup, cluster_students
from ..engine.phases import SessionStatus, utcnow
from ..engine.scoring import (
    GapAnalysis,
    StudentScore,
    analyze_gaps,
    build_concept_frequency_matrix,
    concept_of,
    score_student,
)
from .sessions import load_roster, load_session, load_session_questions

logger = logging.getLogger(__name__)

# Fixed progress checkpoints; pollers key UI states off these values
CHECKPOINTS = {
    "pending": 0,
    "grading": 10,
    "analyzing": 30,
    "clustering": 50,
    "generating_lessons": 60,
    "generating_practice": 80,
    "complete": 100,
}
ERROR = "error"
# A new run may only start from these
IDLE = ("complete", ERROR)
ALREADY_RUNNING = "Analysis is already running for this session"


class AnalysisJobTracker:
    """Moves a session's analysis job forward through the checkpoints.

    Progress only moves forward. A checkpoint at or below the current one is
    ignored; ``fail`` is accepted from any state.
    """

    def __init__(self, db: AsyncSession, session_id: int):
        self.db = db
        self.session_id = session_id
        self.status: Optional[str] = None
        self.progress = 0

    async def load(self) -> Optional[AnalysisJob]:
        result = await self.db.execute(
            select(AnalysisJob).where(AnalysisJob.session_id == self.session_id)
        )
        job = result.scalar_one_or_none()
        if job is not None:
            self.status = job.status
            self.progress = job.progress
        return job

    async def advance(self, status: str) -> bool:
        """Record a checkpoint and commit so pollers see it."""
        if status not in CHECKPOINTS:
            raise ValueError(f"Unknown analysis status: {status}")
        if self.status == ERROR:
            return False

        progress = CHECKPOINTS[status]
        if progress < self.progress or (status == self.status and progress == self.progress):
            logger.debug(f"Analysis job {self.session_id}: ignoring {status} at {self.progress}%")
            return False

        values: dict[str, Any] = {"status": status, "progress": progress}
        if status == "complete":
            values["completed_at"] = utcnow()
        await self.db.execute(
            update(AnalysisJob).where(AnalysisJob.session_id == self.session_id).values(**values)
        )
        await self.db.commit()

        self.status = status
        self.progress = progress
        logger.info(f"Analysis job {self.session_id}: {status} ({progress}%)")
        return True

    async def fail(self, message: str) -> None:
        await self.db.execute(
            update(AnalysisJob)
            .where(AnalysisJob.session_id == self.session_id)
            .values(status=ERROR, error_message=message[:2000])
        )
        await self.db.commit()
        self.status = ERROR
        logger.error(f"Analysis job {self.session_id} failed: {message}")


# =============================================================================
# Job lifecycle
# =============================================================================


async def claim_analysis(db: AsyncSession, session_id: int, now: Optional[datetime] = None) -> None:
    """Point the session's job back at ``pending`` and drop stale groups.

    Only a job that is absent, complete or errored can be claimed. While a
    run is in progress the claim fails with ``ConflictError`` and the caller's
    transaction is rolled back. Does not commit otherwise; callers fold this
    into their own transaction.
    """
    values = {
        "status": "pending",
        "progress": CHECKPOINTS["pending"],
        "error_message": None,
        "started_at": now or utcnow(),
        "completed_at": None,
    }
    claimed = await db.execute(
        update(AnalysisJob)
        .where(AnalysisJob.session_id == session_id, AnalysisJob.status.in_(IDLE))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        existing = await db.execute(select(AnalysisJob.id).where(AnalysisJob.session_id == session_id))
        if existing.first() is not None:
            await db.rollback()
            raise ConflictError(ALREADY_RUNNING)
        db.add(AnalysisJob(session_id=session_id, **values))
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise ConflictError(ALREADY_RUNNING)

    group_ids = select(LessonGroup.id).where(LessonGroup.session_id == session_id)
    await db.execute(delete(LessonPlan).where(LessonPlan.session_id == session_id))
    await db.execute(delete(LessonGroupStudent).where(LessonGroupStudent.group_id.in_(group_ids)))
    await db.execute(delete(LessonGroup).where(LessonGroup.session_id == session_id))


async def start_analysis(db: AsyncSession, session_id: int) -> None:
    """Claim the job for a (re-)run; the caller schedules ``run_analysis``."""
    await load_session(db, session_id)
    await claim_analysis(db, session_id)
    await db.commit()
    logger.info(f"Analysis started for session {session_id}")


async def get_job_status(db: AsyncSession, session_id: int) -> dict[str, Any]:
    result = await db.execute(select(AnalysisJob).where(AnalysisJob.session_id == session_id))
    job = result.scalar_one_or_none()
    if job is None:
        return {"status": "not_started", "progress": 0, "error": None}
    return {"status": job.status, "progress": job.progress, "error": job.error_message}


# =============================================================================
# Pipeline
# =============================================================================


async def grade_session(
    db: AsyncSession,
    session_id: int,
    questions: list[Question],
    student_ids: list[int],
) -> list[StudentScore]:
    result = await db.execute(select(StudentAnswer).where(StudentAnswer.session_id == session_id))
    answers_by_student: dict[int, list[StudentAnswer]] = defaultdict(list)
    for answer in result.scalars():
        answers_by_student[answer.student_id].append(answer)

    return [
        score_student(student_id, questions, answers_by_student.get(student_id, []))
        for student_id in student_ids
    ]


async def compute_gap_analysis(db: AsyncSession, session_id: int) -> GapAnalysis:
    """Top missed concepts and per-student weak areas, computed on demand."""
    session = await load_session(db, session_id)
    questions = await load_session_questions(db, session.test_id)
    roster = await load_roster(db, session.id)
    scores = await grade_session(db, session.id, questions, [student.id for _, student in roster])
    frequencies = build_concept_frequency_matrix(scores)
    return analyze_gaps(
        scores,
        frequencies,
        all_concepts={question.id: concept_of(question) for question in questions},
    )


async def _save_group(db: AsyncSession, session_id: int, group: ClusterGroup) -> LessonGroup:
    lesson_group = LessonGroup(
        session_id=session_id,
        group_type=group.group_type,
        concept_focus=group.concept_focus,
    )
    db.add(lesson_group)
    await db.flush()
    await bulk_insert(
        db,
        LessonGroupStudent,
        [{"group_id": lesson_group.id, "student_id": student_id} for student_id in group.student_ids],
    )
    return lesson_group


async def _practice_for_group(
    generator: ContentGenerator,
    group: ClusterGroup,
    scores: list[StudentScore],
    questions: list[Question],
) -> list[dict[str, Any]]:
    """Practice problems for the group's own most-missed concepts."""
    settings = get_settings()
    members = set(group.student_ids)
    group_frequencies = build_concept_frequency_matrix(
        score for score in scores if score.student_id in members
    )

    problems: list[dict[str, Any]] = []
    for frequency in group_frequencies[: settings.PRACTICE_CONCEPT_LIMIT]:
        sample = next((q for q in questions if concept_of(q) == frequency.concept), None)
        problems.extend(
            await generator.generate_practice_problems(
                frequency.concept,
                sample.section if sample else "math",
                sample.question_text if sample else None,
                settings.PRACTICE_PROBLEMS_PER_CONCEPT,
            )
        )
    return problems


async def _run_pipeline(
    db: AsyncSession,
    tracker: AnalysisJobTracker,
    session_id: int,
    generator: ContentGenerator,
) -> None:
    settings = get_settings()
    session = await load_session(db, session_id)
    questions = await load_session_questions(db, session.test_id)
    if not questions:
        raise ValidationError("No questions found")
    roster = await load_roster(db, session.id)
    if not roster:
        raise ValidationError("No students in session")
    names = {student.id: student.name for _, student in roster}

    await tracker.advance("grading")
    scores = await grade_session(db, session.id, questions, list(names))

    await tracker.advance("analyzing")
    frequencies = build_concept_frequency_matrix(scores)

    await tracker.advance("clustering")
    groups = cluster_students(scores, frequencies, session.tutor_count)
    logger.info(
        f"Session {session.id}: {len(groups)} groups "
        f"({', '.join(f'{g.group_type}={len(g.student_ids)}' for g in groups)})"
    )

    for group in groups:
        lesson_group = await _save_group(db, session.id, group)
        await tracker.advance("generating_lessons")

        if group.is_tutor_group:
            concept_questions = [q for q in questions if concept_of(q) == group.concept_focus]
            guide = await generator.generate_tutor_guide(
                group.concept_focus,
                concept_questions[: settings.TUTOR_GUIDE_QUESTION_LIMIT],
                [names.get(student_id, "Unknown") for student_id in group.student_ids],
            )
            plan = LessonPlan(session_id=session.id, group_id=lesson_group.id, tutor_guide=guide, practice_problems=[])
        else:
            await tracker.advance("generating_practice")
            problems = await _practice_for_group(generator, group, scores, questions)
            plan = LessonPlan(session_id=session.id, group_id=lesson_group.id, tutor_guide=None, practice_problems=problems)

        db.add(plan)
        await db.commit()

    await tracker.advance("complete")

    # Only a session still waiting on analysis moves on to the lesson
    result = await db.execute(
        update(Session)
        .where(Session.id == session.id, Session.status == SessionStatus.ANALYZING.value)
        .values(status=SessionStatus.LESSON.value)
    )
    await db.commit()
    if result.rowcount:
        logger.info(f"Session {session.id}: analyzing -> lesson")


async def run_analysis(session_id: int, generator: ContentGenerator) -> None:
    """Background entry point; failures land on the job row as ``error``."""
    async with get_db_session() as db:
        tracker = AnalysisJobTracker(db, session_id)
        await tracker.load()
        try:
            await _run_pipeline(db, tracker, session_id, generator)
        except Exception as exc:
            logger.exception(f"Analysis pipeline failed for session {session_id}")
            await db.rollback()
            message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
            await tracker.fail(message)


# =============================================================================
# Reads
# =============================================================================


async def list_groups(db: AsyncSession, session_id: int) -> list[dict[str, Any]]:
    """Lesson groups with their members and plan."""
    groups = await db.execute(
        select(LessonGroup).where(LessonGroup.session_id == session_id).order_by(LessonGroup.id)
    )
    groups = list(groups.scalars().all())
    if not groups:
        return []

    group_ids = [group.id for group in groups]
    members = await db.execute(
        select(LessonGroupStudent.group_id, Student.id, Student.name)
        .join(Student, Student.id == LessonGroupStudent.student_id)
        .where(LessonGroupStudent.group_id.in_(group_ids))
        .order_by(LessonGroupStudent.id)
    )
    members_by_group: dict[int, list[dict[str, Any]]] = defaultdict(list)
    for group_id, student_id, name in members:
        members_by_group[group_id].append({"student_id": student_id, "name": name})

    plans = await db.execute(select(LessonPlan).where(LessonPlan.group_id.in_(group_ids)))
    plans_by_group = {plan.group_id: plan for plan in plans.scalars()}

    listing = []
    for group in groups:
        plan = plans_by_group.get(group.id)
        listing.append({
            "id": group.id,
            "group_type": group.group_type,
            "concept_focus": group.concept_focus,
            "students": members_by_group.get(group.id, []),
            "tutor_guide": plan.tutor_guide if plan else None,
            "practice_problems": (plan.practice_problems or []) if plan else [],
        })
    return listing


async def find_student_group(db: AsyncSession, session_id: int, student_id: int) -> Optional[LessonGroup]:
    result = await db.execute(
        select(LessonGroup)
        .join(LessonGroupStudent, LessonGroupStudent.group_id == LessonGroup.id)
        .where(LessonGroup.session_id == session_id, LessonGroupStudent.student_id == student_id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_practice(db: AsyncSession, session_id: int, student_id: int) -> dict[str, Any]:
    """Practice view for a student: tutor-group members work with their tutor."""
    group = await find_student_group(db, session_id, student_id)
    if group is None:
        return {"group": None, "problems": [], "with_tutor": False}

    summary = {"type": group.group_type, "concept": group.concept_focus}
    if group.group_type != "independent":
        return {"group": summary, "problems": [], "with_tutor": True}

    result = await db.execute(select(LessonPlan).where(LessonPlan.group_id == group.id))
    plan = result.scalar_one_or_none()
    return {
        "group": summary,
        "problems": (plan.practice_problems or []) if plan else [],
        "with_tutor": False,
    }
