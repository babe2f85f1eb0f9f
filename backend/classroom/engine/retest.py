"""Retest question selection and time budgets."""

import math
import random
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Sequence

from .scoring import concept_of

MISSED = "missed"
PADDING = "padding"

MATH_MINUTES_PER_QUESTION = 1.5
READING_WRITING_MINUTES_PER_QUESTION = 1.25


class RetestCandidate(Protocol):
    id: int
    concept_tag: Optional[str]


class Sectioned(Protocol):
    section: str


@dataclass(frozen=True)
class RetestItem:
    question_id: int
    source: str
    order: int


def retest_seed(session_id: int, student_id: int) -> str:
    """Seed for the random padding tier.

    Keyed on (session, student) so a repeated or racing assembly picks the
    same padding questions.
    """
    return f"retest:{session_id}:{student_id}"


def select_retest_questions(
    questions: Sequence[RetestCandidate],
    missed_question_ids: Iterable[int],
    target_count: int,
    rng: Optional[random.Random] = None,
) -> list[RetestItem]:
    """Pick up to ``target_count`` retest questions.

    Fill order:
    1. every missed question, in the order given
    2. unused questions sharing a concept with a missed question, in test order
    3. any remaining question, shuffled with ``rng``

    The result is truncated to ``target_count`` and numbered from 1.
    """
    if target_count <= 0:
        return []

    rng = rng or random.Random()
    by_id = {question.id: question for question in questions}

    chosen: dict[int, str] = {}
    for question_id in missed_question_ids:
        if question_id in by_id and question_id not in chosen:
            chosen[question_id] = MISSED

    if len(chosen) < target_count:
        missed_concepts = {concept_of(by_id[qid]) for qid in chosen}
        for question in questions:
            if len(chosen) >= target_count:
                break
            if question.id not in chosen and concept_of(question) in missed_concepts:
                chosen[question.id] = PADDING

    if len(chosen) < target_count:
        remaining = [question.id for question in questions if question.id not in chosen]
        rng.shuffle(remaining)
        for question_id in remaining[: target_count - len(chosen)]:
            chosen[question_id] = PADDING

    return [
        RetestItem(question_id=question_id, source=source, order=index)
        for index, (question_id, source) in enumerate(list(chosen.items())[:target_count], start=1)
    ]


def calculate_retest_duration(math_count: int, rw_count: int) -> int:
    """Minutes allowed for a question mix; math is weighted heavier."""
    return math.ceil(
        math_count * MATH_MINUTES_PER_QUESTION + rw_count * READING_WRITING_MINUTES_PER_QUESTION
    )


def duration_for_questions(questions: Iterable[Sectioned]) -> int:
    math_count = 0
    rw_count = 0
    for question in questions:
        if question.section == "math":
            math_count += 1
        else:
            rw_count += 1
    return calculate_retest_duration(math_count, rw_count)
