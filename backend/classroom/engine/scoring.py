"""Scoring and concept-gap aggregation.

Everything here is a pure function over plain records: the analysis pipeline
loads questions and answers from the database and hands them in.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

UNKNOWN_CONCEPT = "unknown"


class QuestionLike(Protocol):
    id: int
    concept_tag: Optional[str]


class AnswerLike(Protocol):
    question_id: int
    is_correct: Optional[bool]


@dataclass
class StudentScore:
    """Per-student grading result."""

    student_id: int
    total_questions: int
    correct_count: int
    incorrect_count: int
    unanswered: int
    percentage: int
    missed_question_ids: list[int] = field(default_factory=list)
    # concept -> question ids, in question order
    missed_by_concept: dict[str, list[int]] = field(default_factory=dict)


@dataclass
class ConceptFrequency:
    """How often a concept was missed across the whole session."""

    concept: str
    count: int
    student_ids: list[int]
    question_ids: list[int]


@dataclass
class StudentGapSummary:
    student_id: int
    weak_areas: list[str]
    strong_areas: list[str]
    score: int


@dataclass
class GapAnalysis:
    top_concepts: list[ConceptFrequency]
    student_summaries: list[StudentGapSummary]


def concept_of(question: QuestionLike) -> str:
    return question.concept_tag or UNKNOWN_CONCEPT


def percent(correct: int, total: int) -> int:
    """Whole-number percentage, 0 when there is nothing to score.

    Rounds half up, so 12.5 becomes 13 rather than round()'s 12.
    """
    if total <= 0:
        return 0
    return int(correct * 100 / total + 0.5)


def score_student(
    student_id: int,
    questions: Sequence[QuestionLike],
    answers: Iterable[AnswerLike],
) -> StudentScore:
    """Grade one student against the full question set.

    A question counts as missed unless its answer is marked correct, so
    unanswered and ungraded questions are both misses.
    """
    answers = list(answers)
    answer_map = {answer.question_id: answer for answer in answers}
    missed_question_ids: list[int] = []
    missed_by_concept: dict[str, list[int]] = {}
    correct_count = 0

    for question in questions:
        answer = answer_map.get(question.id)
        if answer is not None and answer.is_correct:
            correct_count += 1
            continue
        missed_question_ids.append(question.id)
        missed_by_concept.setdefault(concept_of(question), []).append(question.id)

    total = len(questions)
    return StudentScore(
        student_id=student_id,
        total_questions=total,
        correct_count=correct_count,
        incorrect_count=len(missed_question_ids),
        unanswered=max(0, total - len(answers)),
        percentage=percent(correct_count, total),
        missed_question_ids=missed_question_ids,
        missed_by_concept=missed_by_concept,
    )


def build_concept_frequency_matrix(scores: Iterable[StudentScore]) -> list[ConceptFrequency]:
    """Merge every student's misses into a table ranked by miss count.

    Ties keep the order in which concepts were first encountered.
    """
    # dicts keep insertion order, which doubles as an ordered set
    concept_map: dict[str, dict[str, Any]] = {}

    for score in scores:
        for concept, question_ids in score.missed_by_concept.items():
            entry = concept_map.setdefault(
                concept, {"count": 0, "student_ids": {}, "question_ids": {}}
            )
            entry["count"] += len(question_ids)
            entry["student_ids"][score.student_id] = None
            for question_id in question_ids:
                entry["question_ids"][question_id] = None

    frequencies = [
        ConceptFrequency(
            concept=concept,
            count=data["count"],
            student_ids=list(data["student_ids"]),
            question_ids=list(data["question_ids"]),
        )
        for concept, data in concept_map.items()
    ]
    # sorted() is stable
    return sorted(frequencies, key=lambda item: item.count, reverse=True)


def analyze_gaps(
    scores: Sequence[StudentScore],
    concept_frequencies: Sequence[ConceptFrequency],
    all_concepts: Optional[Mapping[int, str]] = None,
    top_n: int = 10,
) -> GapAnalysis:
    """Summarize weak areas per student plus the session's top concepts.

    ``all_concepts`` maps question id to concept; when given, strong areas are
    the concepts a student never missed.
    """
    tested_concepts = list(dict.fromkeys(all_concepts.values())) if all_concepts else []

    summaries = []
    for score in scores:
        weak_areas = list(score.missed_by_concept)
        strong_areas = [concept for concept in tested_concepts if concept not in score.missed_by_concept]
        summaries.append(
            StudentGapSummary(
                student_id=score.student_id,
                weak_areas=weak_areas,
                strong_areas=strong_areas,
                score=score.percentage,
            )
        )

    return GapAnalysis(top_concepts=list(concept_frequencies[:top_n]), student_summaries=summaries)
