"""Partition students into tutor-led and independent lesson groups."""

from dataclasses import dataclass
from typing import Sequence

from .scoring import ConceptFrequency, StudentScore

TUTOR_GROUP_TYPES = ("tutor_1", "tutor_2", "tutor_3")
INDEPENDENT = "independent"
MIXED_FOCUS = "mixed"
GENERAL_REVIEW_FOCUS = "general review"


@dataclass
class ClusterGroup:
    group_type: str
    concept_focus: str
    student_ids: list[int]

    @property
    def is_tutor_group(self) -> bool:
        return self.group_type != INDEPENDENT


def cluster_students(
    scores: Sequence[StudentScore],
    concept_frequencies: Sequence[ConceptFrequency],
    tutor_count: int,
) -> list[ClusterGroup]:
    """Greedy clustering by concept rank.

    The top ``tutor_count`` concepts each get a tutor group holding the
    students who missed that concept and are not yet placed, so a student
    who missed several top concepts lands in the highest-ranked one. Everyone
    left over forms a single independent group.
    """
    tutor_count = max(0, min(tutor_count, len(TUTOR_GROUP_TYPES)))
    groups: list[ClusterGroup] = []
    assigned: set[int] = set()

    for group_type, frequency in zip(TUTOR_GROUP_TYPES[:tutor_count], concept_frequencies):
        eligible = [sid for sid in frequency.student_ids if sid not in assigned]
        if not eligible:
            continue
        groups.append(ClusterGroup(group_type, frequency.concept, eligible))
        assigned.update(eligible)

    if not groups:
        # No concept data to split on
        return [ClusterGroup(INDEPENDENT, GENERAL_REVIEW_FOCUS, [score.student_id for score in scores])]

    independent = [score.student_id for score in scores if score.student_id not in assigned]
    if independent:
        groups.append(ClusterGroup(INDEPENDENT, MIXED_FOCUS, independent))

    return groups
