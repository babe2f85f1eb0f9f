"""Practice test API endpoints (tutor only)."""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from ..db.base import get_db_session
from ..db.models import Tutor
from ..services import practice_tests
from .auth import get_current_tutor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tests", tags=["Tests"])


# ==============================================================================
# Pydantic Models
# ==============================================================================

class ExtractedQuestion(BaseModel):
    """One question as produced by the upstream extraction step."""
    question_text: Optional[str] = None
    answer_a: Optional[str] = None
    answer_b: Optional[str] = None
    answer_c: Optional[str] = None
    answer_d: Optional[str] = None
    correct_answer: Optional[str] = None
    section: Optional[str] = None
    concept_tag: Optional[str] = None
    ai_confidence: Optional[float] = None
    has_graphic: bool = False
    answers_are_visual: bool = False


class TestCreate(BaseModel):
    name: str
    questions: list[ExtractedQuestion] = Field(default_factory=list)


class QuestionResponse(BaseModel):
    """Tutor view of a question, correct answer included."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    test_id: int
    question_number: int
    question_text: Optional[str] = None
    answer_a: Optional[str] = None
    answer_b: Optional[str] = None
    answer_c: Optional[str] = None
    answer_d: Optional[str] = None
    correct_answer: str
    section: str
    concept_tag: Optional[str] = None
    ai_confidence: Optional[float] = None
    has_graphic: bool = False
    answers_are_visual: bool = False


class TestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    status: str
    total_questions: int
    created_at: Optional[datetime] = None


class TestDetailResponse(TestResponse):
    questions: list[QuestionResponse] = Field(default_factory=list)


def _test_detail(test, questions) -> TestDetailResponse:
    return TestDetailResponse(
        **TestResponse.model_validate(test).model_dump(),
        questions=[QuestionResponse.model_validate(question) for question in questions],
    )


# ==============================================================================
# Endpoints
# ==============================================================================

@router.post("", response_model=TestDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_test(
    test_in: TestCreate,
    current_tutor: Tutor = Depends(get_current_tutor),
) -> TestDetailResponse:
    """Store a test from already-extracted questions."""
    raw_questions: list[dict[str, Any]] = [question.model_dump() for question in test_in.questions]
    async with get_db_session() as db:
        test, questions = await practice_tests.create_test(db, current_tutor, test_in.name, raw_questions)
    return _test_detail(test, questions)


@router.get("", response_model=list[TestResponse])
async def list_tests(current_tutor: Tutor = Depends(get_current_tutor)) -> list[TestResponse]:
    """List the organization's tests, newest first."""
    async with get_db_session() as db:
        tests = await practice_tests.list_tests(db, current_tutor)
    return [TestResponse.model_validate(test) for test in tests]


@router.get("/{test_id}", response_model=TestDetailResponse)
async def get_test(
    test_id: int,
    current_tutor: Tutor = Depends(get_current_tutor),
) -> TestDetailResponse:
    """Get a test with its questions for review."""
    async with get_db_session() as db:
        test, questions = await practice_tests.get_test(db, test_id, current_tutor)
    return _test_detail(test, questions)
