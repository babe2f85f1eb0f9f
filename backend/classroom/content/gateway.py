"""Content generation gateway.

The analysis pipeline and the counterpart endpoint depend only on the
``ContentGenerator`` protocol; ``LLMContentGenerator`` implements it on top
of an OpenAI-compatible chat model.
"""

import logging
from typing import Any, Literal, Optional, Protocol, Sequence

from langchain_core.exceptions import OutputParserException
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field, ValidationError

from ..core.config import get_settings
from ..core.errors import ContentGenerationError
from .llm import get_llm, get_llm_for_structured_output
from .prompts import (
    COUNTERPART_ANSWER_PROMPT,
    COUNTERPART_ORIGINAL_NOTE,
    COUNTERPART_QUESTION_PROMPT,
    MATH_ANSWER_GEN_PROMPT,
    MATH_QUESTION_GEN_PROMPT,
    PRACTICE_ORIGINAL_BLOCK,
    PRACTICE_PROMPT,
    PRACTICE_SYSTEM_PROMPT,
    RW_ANSWER_GEN_PROMPT,
    RW_QUESTION_GEN_PROMPT,
    TUTOR_GUIDE_PROMPT,
    TUTOR_GUIDE_SYSTEM_PROMPT,
)

logger = logging.getLogger(__name__)

AnswerChoice = Literal["A", "B", "C", "D"]


# =============================================================================
# Structured output schemas
# =============================================================================


class PracticeProblemDraft(BaseModel):
    """One generated practice problem."""
    question_text: str
    answer_a: str
    answer_b: str
    answer_c: str
    answer_d: str
    correct_answer: AnswerChoice
    explanation: str = ""
    difficulty: Optional[int] = Field(default=None, ge=1, le=5)


class PracticeProblemSet(BaseModel):
    problems: list[PracticeProblemDraft] = Field(default_factory=list)


class CounterpartQuestionText(BaseModel):
    question_text: str


class CounterpartAnswers(BaseModel):
    answer_a: str
    answer_b: str
    answer_c: str
    answer_d: str
    correct_answer: AnswerChoice


# =============================================================================
# Gateway contract
# =============================================================================


class ContentGenerator(Protocol):
    async def generate_tutor_guide(
        self,
        concept: str,
        missed_questions: Sequence[Any],
        student_names: Sequence[str],
    ) -> str:
        ...

    async def generate_practice_problems(
        self,
        concept: str,
        section: str,
        sample_question_text: Optional[str],
        count: int,
    ) -> list[dict[str, Any]]:
        ...

    async def generate_counterpart(self, question: Any) -> dict[str, Any]:
        ...


def summarize_questions(questions: Sequence[Any], limit: int = 5) -> str:
    lines = []
    for index, question in enumerate(questions[:limit], start=1):
        text = question.question_text or f"Question #{question.question_number}"
        lines.append(f"{index}. {text} ({question.section})")
    return "\n".join(lines)


def format_answers(question: Any) -> str:
    lines = []
    for letter in ("a", "b", "c", "d"):
        text = getattr(question, f"answer_{letter}", None)
        if text:
            lines.append(f"{letter.upper()}) {text}")
    return "\n".join(lines)


def practice_problem_payload(concept: str, index: int, draft: PracticeProblemDraft) -> dict[str, Any]:
    return {
        "id": f"practice-{concept}-{index}",
        "question_text": draft.question_text,
        "answer_a": draft.answer_a,
        "answer_b": draft.answer_b,
        "answer_c": draft.answer_c,
        "answer_d": draft.answer_d,
        "correct_answer": draft.correct_answer,
        "explanation": draft.explanation,
        "difficulty": draft.difficulty or min(index + 1, 5),
        "concept_tag": concept,
        "has_graphic": False,
    }


class LLMContentGenerator:
    """ContentGenerator backed by the configured chat model."""

    def __init__(self, guide_question_limit: int = 5):
        self.guide_question_limit = guide_question_limit

    async def generate_tutor_guide(
        self,
        concept: str,
        missed_questions: Sequence[Any],
        student_names: Sequence[str],
    ) -> str:
        prompt = TUTOR_GUIDE_PROMPT.format(
            concept=concept,
            student_names=", ".join(student_names),
            question_summary=summarize_questions(missed_questions, self.guide_question_limit),
        )
        response = await get_llm(max_tokens=1500).ainvoke(
            [SystemMessage(content=TUTOR_GUIDE_SYSTEM_PROMPT), HumanMessage(content=prompt)]
        )
        return response.content or ""

    async def generate_practice_problems(
        self,
        concept: str,
        section: str,
        sample_question_text: Optional[str],
        count: int,
    ) -> list[dict[str, Any]]:
        original_block = (
            PRACTICE_ORIGINAL_BLOCK.format(question_text=sample_question_text)
            if sample_question_text
            else ""
        )
        prompt = PRACTICE_PROMPT.format(
            count=count,
            concept=concept,
            section=section,
            original_block=original_block,
        )
        llm = get_llm_for_structured_output(PracticeProblemSet)
        try:
            result = await llm.ainvoke(
                [SystemMessage(content=PRACTICE_SYSTEM_PROMPT), HumanMessage(content=prompt)]
            )
        except (OutputParserException, ValidationError) as exc:
            logger.warning(f"Discarding unparseable practice problems for {concept!r}: {exc}")
            return []

        problems = result.problems if result else []
        return [practice_problem_payload(concept, i, draft) for i, draft in enumerate(problems)]

    async def generate_counterpart(self, question: Any) -> dict[str, Any]:
        is_reading_writing = question.section == "reading_writing"
        concept = question.concept_tag or "unknown"
        answers = format_answers(question)

        question_prompt = COUNTERPART_QUESTION_PROMPT.format(
            section=question.section,
            concept=concept,
            question_text=question.question_text or "No text available",
            answers=answers,
            correct_answer=question.correct_answer,
        )
        text_llm = get_llm_for_structured_output(CounterpartQuestionText, max_tokens=1024)
        generated = await text_llm.ainvoke([
            SystemMessage(content=RW_QUESTION_GEN_PROMPT if is_reading_writing else MATH_QUESTION_GEN_PROMPT),
            HumanMessage(content=question_prompt),
        ])
        if not generated or not generated.question_text:
            raise ContentGenerationError("Invalid question generation response")

        original_note = (
            COUNTERPART_ORIGINAL_NOTE.format(answers=answers, correct_answer=question.correct_answer)
            if is_reading_writing
            else ""
        )
        answer_prompt = COUNTERPART_ANSWER_PROMPT.format(
            section=question.section,
            concept=concept,
            question_text=generated.question_text,
            original_note=original_note,
        )
        answer_llm = get_llm_for_structured_output(CounterpartAnswers, max_tokens=1024)
        choices = await answer_llm.ainvoke([
            SystemMessage(content=RW_ANSWER_GEN_PROMPT if is_reading_writing else MATH_ANSWER_GEN_PROMPT),
            HumanMessage(content=answer_prompt),
        ])
        if not choices or not choices.answer_a:
            raise ContentGenerationError("Invalid answer generation response")

        return {"question_text": generated.question_text, **choices.model_dump()}


def get_content_generator() -> ContentGenerator:
    """FastAPI dependency; tests override it with a canned generator."""
    return LLMContentGenerator(guide_question_limit=get_settings().TUTOR_GUIDE_QUESTION_LIMIT)
