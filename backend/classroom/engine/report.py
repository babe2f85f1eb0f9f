"""Student improvement report built from main-test and retest answers."""

from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Optional

from .scoring import UNKNOWN_CONCEPT, percent


@dataclass
class GradedAnswer:
    question_id: int
    is_correct: Optional[bool]
    concept_tag: Optional[str]


@dataclass
class ScoreLine:
    correct: int
    total: int
    percentage: int


@dataclass
class ConceptProgress:
    concept: str
    missed_count: int
    retest_correct: int


@dataclass
class ReportSummary:
    student_name: str
    test_score: ScoreLine
    retest_score: ScoreLine
    improvement: int
    missed_concepts: list[ConceptProgress] = field(default_factory=list)
    practice_completed: bool = True
    group_type: Optional[str] = None
    concept_focus: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _score_line(answers: list[GradedAnswer]) -> ScoreLine:
    correct = sum(1 for answer in answers if answer.is_correct)
    return ScoreLine(correct=correct, total=len(answers), percentage=percent(correct, len(answers)))


def build_report(
    student_name: str,
    test_answers: Iterable[GradedAnswer],
    retest_answers: Iterable[GradedAnswer],
    group_type: Optional[str] = None,
    concept_focus: Optional[str] = None,
) -> ReportSummary:
    """Compare the main test with the retest, concept by concept.

    Only concepts missed on the main test are listed; a retest answer counts
    toward a concept only if that concept was missed originally.
    """
    test_answers = list(test_answers)
    retest_answers = list(retest_answers)
    test_score = _score_line(test_answers)
    retest_score = _score_line(retest_answers)

    concepts: dict[str, ConceptProgress] = {}
    for answer in test_answers:
        if not answer.is_correct:
            concept = answer.concept_tag or UNKNOWN_CONCEPT
            concepts.setdefault(concept, ConceptProgress(concept, 0, 0)).missed_count += 1

    for answer in retest_answers:
        concept = answer.concept_tag or UNKNOWN_CONCEPT
        if answer.is_correct and concept in concepts:
            concepts[concept].retest_correct += 1

    return ReportSummary(
        student_name=student_name,
        test_score=test_score,
        retest_score=retest_score,
        improvement=retest_score.percentage - test_score.percentage,
        missed_concepts=sorted(concepts.values(), key=lambda item: item.missed_count, reverse=True),
        group_type=group_type,
        concept_focus=concept_focus,
    )
