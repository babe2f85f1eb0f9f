"""Question review and counterpart endpoints (tutor only)."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..content.gateway import ContentGenerator, get_content_generator
from ..db.base import get_db_session
from ..db.models import Tutor
from ..services import practice_tests
from .auth import get_current_tutor
from .tests import QuestionResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/questions", tags=["Questions"])


class QuestionUpdate(BaseModel):
    """Tutor corrections; only the fields sent are changed."""
    question_text: Optional[str] = None
    answer_a: Optional[str] = None
    answer_b: Optional[str] = None
    answer_c: Optional[str] = None
    answer_d: Optional[str] = None
    correct_answer: Optional[Literal["A", "B", "C", "D"]] = None
    section: Optional[Literal["reading_writing", "math"]] = None
    concept_tag: Optional[str] = None


class CounterpartResponse(BaseModel):
    question_text: str
    answer_a: str
    answer_b: str
    answer_c: str
    answer_d: str
    correct_answer: str


@router.patch("/{question_id}", response_model=QuestionResponse)
async def update_question(
    question_id: int,
    question_in: QuestionUpdate,
    current_tutor: Tutor = Depends(get_current_tutor),
) -> QuestionResponse:
    """Correct an extracted question."""
    async with get_db_session() as db:
        question = await practice_tests.update_question(
            db, question_id, current_tutor, question_in.model_dump(exclude_unset=True)
        )
    return QuestionResponse.model_validate(question)


@router.get("/{question_id}/counterpart", response_model=CounterpartResponse)
async def get_counterpart(
    question_id: int,
    current_tutor: Tutor = Depends(get_current_tutor),
    generator: ContentGenerator = Depends(get_content_generator),
) -> CounterpartResponse:
    """A fresh question on the same concept, generated once and then cached."""
    async with get_db_session() as db:
        counterpart = await practice_tests.get_counterpart(db, question_id, current_tutor.org_id, generator)
    return CounterpartResponse(**counterpart)
