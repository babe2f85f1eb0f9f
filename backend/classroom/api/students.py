"""Student endpoints, authenticated with the token issued on join."""

import logging
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from ..db.base import get_db_session
from ..services import analysis, answers, reports, retest
from .auth import StudentIdentity, get_current_student

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/student", tags=["Student"])


# ==============================================================================
# Pydantic Models
# ==============================================================================

class AnswerSubmit(BaseModel):
    question_id: int
    selected_answer: Literal["A", "B", "C", "D"]


class StudentQuestion(BaseModel):
    """Question as a student sees it during a test. No correct answer."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    question_number: int
    question_text: Optional[str] = None
    answer_a: Optional[str] = None
    answer_b: Optional[str] = None
    answer_c: Optional[str] = None
    answer_d: Optional[str] = None
    section: str
    has_graphic: bool = False
    answers_are_visual: bool = False


class TestQuestionResponse(StudentQuestion):
    selected_answer: Optional[str] = None


class RetestQuestionResponse(StudentQuestion):
    selected_answer: Optional[str] = None
    retest_order: int
    source: str


class RetestResponse(BaseModel):
    questions: list[RetestQuestionResponse]
    duration: int


class ReviewQuestionResponse(StudentQuestion):
    correct_answer: str
    selected_answer: Optional[str] = None
    is_correct: Optional[bool] = None


class PracticeGroup(BaseModel):
    type: str
    concept: Optional[str] = None


class PracticeResponse(BaseModel):
    group: Optional[PracticeGroup] = None
    problems: list[dict[str, Any]] = Field(default_factory=list)
    with_tutor: bool = False


def _with_question(model: type[BaseModel], row: dict[str, Any]) -> BaseModel:
    question = StudentQuestion.model_validate(row["question"]).model_dump()
    extras = {key: value for key, value in row.items() if key != "question"}
    if model is ReviewQuestionResponse:
        extras["correct_answer"] = row["question"].correct_answer
    return model(**question, **extras)


# ==============================================================================
# Main Test
# ==============================================================================

@router.get("/test/questions", response_model=list[TestQuestionResponse])
async def get_test_questions(
    student: StudentIdentity = Depends(get_current_student),
) -> list[TestQuestionResponse]:
    """Questions for the running test with the student's selections so far."""
    async with get_db_session() as db:
        rows = await answers.get_test_questions(db, student.session_id, student.student_id)
    return [_with_question(TestQuestionResponse, row) for row in rows]


@router.post("/answers")
async def submit_answer(
    answer_in: AnswerSubmit,
    student: StudentIdentity = Depends(get_current_student),
) -> dict[str, bool]:
    """Save one answer; allowed while the test is running or paused."""
    async with get_db_session() as db:
        await answers.record_answer(
            db, student.session_id, student.student_id, answer_in.question_id, answer_in.selected_answer
        )
    return {"success": True}


@router.post("/test/submit")
async def submit_test(student: StudentIdentity = Depends(get_current_student)) -> dict[str, Any]:
    """Finish the main test; unanswered questions are graded incorrect."""
    async with get_db_session() as db:
        auto_graded = await answers.submit_test(db, student.session_id, student.student_id)
    return {"success": True, "auto_graded": auto_graded}


@router.get("/test/review", response_model=list[ReviewQuestionResponse])
async def get_test_review(
    student: StudentIdentity = Depends(get_current_student),
) -> list[ReviewQuestionResponse]:
    """The student's own main-test results, available from the retest on."""
    async with get_db_session() as db:
        rows = await answers.get_review(db, student.session_id, student.student_id)
    return [_with_question(ReviewQuestionResponse, row) for row in rows]


# ==============================================================================
# Retest
# ==============================================================================

@router.get("/retest/questions", response_model=RetestResponse)
async def get_retest_questions(
    student: StudentIdentity = Depends(get_current_student),
) -> RetestResponse:
    """The student's retest in order, with its time budget in minutes."""
    async with get_db_session() as db:
        result = await retest.get_retest_questions(db, student.session_id, student.student_id)
    return RetestResponse(
        questions=[_with_question(RetestQuestionResponse, row) for row in result["questions"]],
        duration=result["duration"],
    )


@router.post("/retest/answers")
async def submit_retest_answer(
    answer_in: AnswerSubmit,
    student: StudentIdentity = Depends(get_current_student),
) -> dict[str, bool]:
    async with get_db_session() as db:
        await answers.record_retest_answer(
            db, student.session_id, student.student_id, answer_in.question_id, answer_in.selected_answer
        )
    return {"success": True}


@router.post("/retest/submit")
async def submit_retest(student: StudentIdentity = Depends(get_current_student)) -> dict[str, bool]:
    """Answers are saved as they come in, so this only acknowledges."""
    logger.info(f"Student {student.student_id} finished the retest in session {student.session_id}")
    return {"success": True}


# ==============================================================================
# Lesson and Report
# ==============================================================================

@router.get("/practice", response_model=PracticeResponse)
async def get_practice(student: StudentIdentity = Depends(get_current_student)) -> PracticeResponse:
    """Practice problems for independent students; tutor-group students get none."""
    async with get_db_session() as db:
        practice = await analysis.get_practice(db, student.session_id, student.student_id)
    return PracticeResponse(**practice)


@router.get("/report")
async def get_report(student: StudentIdentity = Depends(get_current_student)) -> dict[str, Any]:
    """Test versus retest report, stored on first request."""
    async with get_db_session() as db:
        return await reports.get_report(db, student.session_id, student.student_id)
